"""
Error taxonomy and host error classification.

Every failure that leaves the public API is a FyloError subclass carrying
the error kind, the offending path and a readable message. Host OSErrors
are reduced to a small set of kinds by classify().
"""

import errno
from enum import Enum
from typing import Optional, Union


class ErrorKind(Enum):
    """Classified error kinds."""

    NOT_FOUND = "not_found"
    PERMISSION_DENIED = "permission_denied"
    IS_A_DIRECTORY = "is_a_directory"
    ALREADY_EXISTS = "already_exists"
    CROSS_DEVICE = "cross_device"
    ALREADY_OPEN = "already_open"
    NOT_OPEN = "not_open"
    NOT_INITIALIZED = "not_initialized"
    INVALID_DESTINATION = "invalid_destination"
    TIMEOUT = "timeout"
    VALIDATION = "validation"
    UNKNOWN = "unknown"


class FyloError(Exception):
    """Base class for all classified errors."""

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.path = path
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind.value!r}, path={self.path!r}, message={self.message!r})"


class NotFoundError(FyloError):
    kind = ErrorKind.NOT_FOUND


class PermissionDeniedError(FyloError):
    kind = ErrorKind.PERMISSION_DENIED


class IsADirectoryPathError(FyloError):
    kind = ErrorKind.IS_A_DIRECTORY


class AlreadyExistsError(FyloError):
    kind = ErrorKind.ALREADY_EXISTS


class CrossDeviceError(FyloError):
    kind = ErrorKind.CROSS_DEVICE


class AlreadyOpenError(FyloError):
    kind = ErrorKind.ALREADY_OPEN


class NotOpenError(FyloError):
    kind = ErrorKind.NOT_OPEN


class NotAvailableError(NotOpenError):
    """Raised by read() when the stream cannot be pulled from."""


class NotInitializedError(FyloError):
    kind = ErrorKind.NOT_INITIALIZED


class InvalidDestinationError(FyloError):
    kind = ErrorKind.INVALID_DESTINATION


class ValidationError(FyloError):
    kind = ErrorKind.VALIDATION


class UnknownFilesystemError(FyloError):
    kind = ErrorKind.UNKNOWN


class StreamTimeoutError(FyloError):
    """Raised when a guarded operation misses its deadline."""

    kind = ErrorKind.TIMEOUT

    def __init__(self, label: str, duration_ms: float, path: Optional[str] = None) -> None:
        super().__init__(f"{label} timed out after {duration_ms}ms", path=path)
        self.label = label
        self.duration_ms = duration_ms


_ERRNO_TO_CODE = {
    errno.ENOENT: "ENOENT",
    errno.EACCES: "EACCES",
    errno.EPERM: "EPERM",
    errno.EISDIR: "EISDIR",
    errno.EEXIST: "EEXIST",
    errno.EXDEV: "EXDEV",
}

_CODE_TO_CLASS = {
    "ENOENT": NotFoundError,
    "EACCES": PermissionDeniedError,
    "EPERM": PermissionDeniedError,
    "EISDIR": IsADirectoryPathError,
    "EEXIST": AlreadyExistsError,
    "EXDEV": CrossDeviceError,
}


def _code_of(raw: Union[BaseException, int, str, None]) -> Optional[str]:
    if isinstance(raw, str):
        return raw.upper()
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return _ERRNO_TO_CODE.get(raw)
    if isinstance(raw, OSError):
        if raw.errno is not None:
            return _ERRNO_TO_CODE.get(raw.errno)
        # Subclasses raised without an errno (e.g. FileNotFoundError("x"))
        if isinstance(raw, FileNotFoundError):
            return "ENOENT"
        if isinstance(raw, PermissionError):
            return "EACCES"
        if isinstance(raw, IsADirectoryError):
            return "EISDIR"
        if isinstance(raw, FileExistsError):
            return "EEXIST"
    return None


def _describe(raw: Union[BaseException, int, str, None]) -> str:
    if isinstance(raw, OSError):
        return raw.strerror or str(raw) or type(raw).__name__
    if isinstance(raw, BaseException):
        return str(raw) or type(raw).__name__
    return str(raw)


def classify(raw: Union[BaseException, int, str, None], path: Optional[str] = None) -> FyloError:
    """
    Reduce a host error to a classified FyloError.

    Args:
        raw: An exception, an errno integer or a POSIX code string ("ENOENT")
        path: The path the failing operation was applied to

    Returns:
        FyloError subclass instance; never raises. An input that is already
        a FyloError is returned unchanged.
    """
    if isinstance(raw, FyloError):
        return raw

    path_str = str(path) if path is not None else None
    cause = raw if isinstance(raw, BaseException) else None
    code = _code_of(raw)
    error_cls = _CODE_TO_CLASS.get(code, UnknownFilesystemError)

    if error_cls is NotFoundError:
        message = f"No such file or directory at path: {path_str}."
    elif error_cls is PermissionDeniedError:
        message = f"Permission denied at path: {path_str}."
    elif error_cls is IsADirectoryPathError:
        message = f"Expected a file but found a directory at path: {path_str}."
    elif error_cls is AlreadyExistsError:
        message = f"File or directory already exists at path: {path_str}."
    elif error_cls is CrossDeviceError:
        message = f"Cannot perform operation across different file systems at path: {path_str}."
    else:
        message = f"Failed to perform operation at path: {path_str}. Error: {_describe(raw)}"

    return error_cls(message, path=path_str, cause=cause)
