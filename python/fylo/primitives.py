"""
Filesystem primitives consumed by the stream and watcher core.

Each function is a single host call (run off the loop through aiofiles)
plus error translation: any OSError is re-raised as a classified FyloError
carrying the offending path. Recursive directory removal and clearing fan
out one task per entry and join on all of them; the first failure
propagates.
"""

import asyncio
import os
import shutil
import stat as stat_module
from dataclasses import dataclass
from typing import Optional, Union

import aiofiles
import aiofiles.os

from fylo.errors import CrossDeviceError, NotFoundError, ValidationError, classify

PathLike = Union[str, os.PathLike]


@dataclass(frozen=True)
class PathStat:
    """Subset of stat information the core relies on."""

    is_file: bool
    is_directory: bool
    modified_time: float
    size: int

    @classmethod
    def from_stat_result(cls, st: os.stat_result) -> "PathStat":
        return cls(
            is_file=stat_module.S_ISREG(st.st_mode),
            is_directory=stat_module.S_ISDIR(st.st_mode),
            modified_time=st.st_mtime,
            size=st.st_size,
        )


def normalize_path(path: PathLike) -> str:
    """Normalize a path, rejecting empty values."""
    if path is None or (isinstance(path, str) and not path):
        raise ValidationError("File path must be provided.", path=None)
    try:
        raw = os.fspath(path)
    except TypeError:
        raise ValidationError(f"Invalid path: {path!r}", path=None) from None
    if isinstance(raw, bytes):
        raw = os.fsdecode(raw)
    if not raw:
        raise ValidationError("File path must be provided.", path=None)
    return os.path.normpath(raw)


# ==================== Queries ====================


async def exists(path: PathLike) -> bool:
    """True if something exists at path; permission errors are raised."""
    target = normalize_path(path)
    try:
        await aiofiles.os.stat(target)
    except FileNotFoundError:
        return False
    except OSError as e:
        raise classify(e, target) from e
    return True


async def access(path: PathLike, read: bool = False, write: bool = False, execute: bool = False) -> None:
    """Raise a classified error unless the process has the requested access."""
    target = normalize_path(path)
    mode = os.F_OK
    if read:
        mode |= os.R_OK
    if write:
        mode |= os.W_OK
    if execute:
        mode |= os.X_OK
    # F_OK alone must exist; os.access itself does not tell ENOENT from EACCES
    await stat_path(target)
    if not await asyncio.to_thread(os.access, target, mode):
        raise classify("EACCES", target)


async def stat_path(path: PathLike) -> PathStat:
    target = normalize_path(path)
    try:
        st = await aiofiles.os.stat(target)
    except OSError as e:
        raise classify(e, target) from e
    return PathStat.from_stat_result(st)


def stat_path_sync(path: PathLike) -> PathStat:
    """Blocking stat, used for construction-time validation."""
    target = normalize_path(path)
    try:
        st = os.stat(target)
    except OSError as e:
        raise classify(e, target) from e
    return PathStat.from_stat_result(st)


async def list_directory(path: PathLike) -> list[str]:
    """Entry names of a directory (no "." or "..")."""
    target = normalize_path(path)
    try:
        return await aiofiles.os.listdir(target)
    except OSError as e:
        raise classify(e, target) from e


def list_directory_sync(path: PathLike) -> list[str]:
    target = normalize_path(path)
    try:
        return os.listdir(target)
    except OSError as e:
        raise classify(e, target) from e


# ==================== Files ====================


async def read_file(path: PathLike, encoding: Optional[str] = "utf-8") -> Union[str, bytes]:
    """Read a whole file; pass encoding=None for bytes."""
    target = normalize_path(path)
    mode = "r" if encoding else "rb"
    try:
        async with aiofiles.open(target, mode, encoding=encoding) as f:
            return await f.read()
    except OSError as e:
        raise classify(e, target) from e


async def write_file(
    path: PathLike,
    data: Union[str, bytes],
    encoding: str = "utf-8",
    append: bool = False,
) -> None:
    target = normalize_path(path)
    payload = data.encode(encoding) if isinstance(data, str) else bytes(data)
    try:
        async with aiofiles.open(target, "ab" if append else "wb") as f:
            await f.write(payload)
    except OSError as e:
        raise classify(e, target) from e


async def append_file(path: PathLike, data: Union[str, bytes], encoding: str = "utf-8") -> None:
    await write_file(path, data, encoding=encoding, append=True)


async def remove_path(path: PathLike) -> None:
    """Remove a file or symbolic link."""
    target = normalize_path(path)
    try:
        await aiofiles.os.remove(target)
    except OSError as e:
        raise classify(e, target) from e


async def rename_path(old_path: PathLike, new_path: PathLike) -> None:
    source = normalize_path(old_path)
    destination = normalize_path(new_path)
    try:
        await aiofiles.os.rename(source, destination)
    except OSError as e:
        raise classify(e, source) from e


async def copy_path(src_path: PathLike, dest_path: PathLike) -> None:
    """Copy a single file (content and metadata)."""
    source = normalize_path(src_path)
    destination = normalize_path(dest_path)
    try:
        await asyncio.to_thread(shutil.copy2, source, destination)
    except OSError as e:
        raise classify(e, source) from e


async def move_path(src_path: PathLike, dest_path: PathLike) -> None:
    """Rename, falling back to copy + remove across devices."""
    try:
        await rename_path(src_path, dest_path)
    except CrossDeviceError:
        await copy_path(src_path, dest_path)
        await remove_path(src_path)


async def symlink(target: PathLike, link_path: PathLike, is_directory: bool = False) -> None:
    link = normalize_path(link_path)
    try:
        await aiofiles.os.symlink(normalize_path(target), link, target_is_directory=is_directory)
    except OSError as e:
        raise classify(e, link) from e


async def hardlink(target: PathLike, link_path: PathLike) -> None:
    link = normalize_path(link_path)
    try:
        await aiofiles.os.link(normalize_path(target), link)
    except OSError as e:
        raise classify(e, link) from e


# ==================== Directories ====================


async def create_directory(path: PathLike, recursive: bool = False, mode: int = 0o777) -> None:
    """Create a directory; an existing directory is not an error."""
    target = normalize_path(path)
    try:
        if recursive:
            await aiofiles.os.makedirs(target, mode=mode, exist_ok=True)
        else:
            await aiofiles.os.mkdir(target, mode=mode)
    except FileExistsError as e:
        if not os.path.isdir(target):
            raise classify(e, target) from e
    except OSError as e:
        raise classify(e, target) from e


async def _remove_entry(full_path: str) -> None:
    try:
        st = await asyncio.to_thread(os.lstat, full_path)
    except OSError as e:
        raise classify(e, full_path) from e
    if stat_module.S_ISDIR(st.st_mode):
        await remove_directory(full_path)
    else:
        await remove_path(full_path)


async def empty_directory(path: PathLike) -> None:
    """Remove every entry inside a directory, keeping the directory."""
    target = normalize_path(path)
    entries = await list_directory(target)
    await asyncio.gather(*(_remove_entry(os.path.join(target, name)) for name in entries))


async def remove_directory(path: PathLike) -> None:
    """Remove a directory and everything below it."""
    target = normalize_path(path)
    await empty_directory(target)
    try:
        await aiofiles.os.rmdir(target)
    except OSError as e:
        raise classify(e, target) from e


async def remove_directory_if_exists(path: PathLike) -> bool:
    """remove_directory() that reports False instead of raising NotFound."""
    try:
        await remove_directory(path)
    except NotFoundError:
        return False
    return True
