"""
Watcher core shared by FileWatcher and DirectoryWatcher.

A watcher is bound to one absolute path, validated at construction, and
alternates between idle and running:

    IDLE -(start)-> RUNNING -(stop)-> IDLE

Subclasses implement start(). Notifications are delivered as events on the
watcher itself (on/off/once); every watcher emits "error" and "stopped".
"""

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from typing import Any, Mapping, Optional, Union

from fylo.errors import (
    ErrorKind,
    FyloError,
    NotFoundError,
    PermissionDeniedError,
    UnknownFilesystemError,
    ValidationError,
    classify,
)
from fylo.events import EventEmitter, Listener
from fylo.primitives import PathLike, PathStat, stat_path_sync
from fylo.watcher.types import WatcherOptions, WatchMode

logger = logging.getLogger(__name__)

OptionsInput = Union[None, WatcherOptions, Mapping[str, Any]]


class BaseWatcher(ABC):
    """
    Base class for path watchers.

    Construction Args:
    ------------------
    path: Absolute path to watch (relative paths are rejected)
    options: WatcherOptions or a mapping with the same keys

    Raises:
    -------
    ValidationError: If path is empty or relative, or options are invalid
    NotFoundError / PermissionDeniedError: If path cannot be inspected
    """

    def __init__(self, path: PathLike, options: OptionsInput = None) -> None:
        self.options = WatcherOptions.from_value(options)
        self.watch_path = self._validate_path(path)
        self._events = EventEmitter(f"{type(self).__name__}:{self.watch_path}")
        self._running = False
        self._handle: Any = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @staticmethod
    def _validate_path(path: PathLike) -> str:
        if path is None or (isinstance(path, str) and not path.strip()):
            raise ValidationError("Watch path must be a non-empty string.")
        try:
            raw = os.fsdecode(os.fspath(path))
        except TypeError:
            raise ValidationError(f"Invalid watch path: {path!r}") from None
        if not raw.strip():
            raise ValidationError("Watch path must be a non-empty string.")
        if not os.path.isabs(raw):
            raise ValidationError(f"Watch path must be absolute: {raw}", path=raw)
        return os.path.normpath(raw)

    def _stat_watch_path(self) -> PathStat:
        """Stat the watched path, raising a classified error if it is unusable."""
        stat = stat_path_sync(self.watch_path)
        if not os.access(self.watch_path, os.R_OK):
            raise classify("EACCES", self.watch_path)
        return stat

    # ==================== Properties ====================

    @property
    def mode(self) -> WatchMode:
        return self.options.mode

    @property
    def polling_interval(self) -> int:
        return self.options.polling_interval

    def is_running(self) -> bool:
        """Check if the watcher is currently active."""
        return self._running

    # ==================== Events ====================

    def on(self, event: str, listener: Listener) -> "BaseWatcher":
        self._events.on(event, listener)
        return self

    def once(self, event: str, listener: Listener) -> "BaseWatcher":
        self._events.once(event, listener)
        return self

    def off(self, event: str, listener: Listener) -> "BaseWatcher":
        self._events.off(event, listener)
        return self

    def emit(self, event: str, *args: Any) -> bool:
        return self._events.emit(event, *args)

    # ==================== Lifecycle ====================

    @abstractmethod
    def start(self) -> None:
        """Begin watching. Must be called from code running inside the event loop."""
        raise NotImplementedError

    def stop(self) -> None:
        """
        Stop watching and release the native watch handle.

        No-op unless running. Emits "stopped".
        """
        if not self._running:
            return
        self._running = False
        self._release_handle()
        logger.info(f"Stopped watching {self.watch_path}")
        self._events.emit("stopped")

    def set_watcher(self, handle: Any) -> None:
        """Replace the native watch handle, closing the previous one first."""
        if self._running and self._handle is not None and self._handle is not handle:
            self._release_handle()
        self._handle = handle

    def _release_handle(self) -> None:
        handle, self._handle = self._handle, None
        if handle is None:
            return
        try:
            handle.close()
        except Exception as e:
            logger.warning(f"Failed to close watch handle for {self.watch_path}: {e}")

    def _mark_running(self) -> asyncio.AbstractEventLoop:
        self._loop = asyncio.get_running_loop()
        self._running = True
        return self._loop

    # ==================== Errors ====================

    def handle_error(self, error: Union[BaseException, int, str]) -> FyloError:
        """
        Classify error and emit it as an "error" event.

        Does not change the running state.

        Returns:
            The emitted, classified error
        """
        classified = classify(error, self.watch_path)
        path = classified.path or self.watch_path
        if classified.kind is ErrorKind.NOT_FOUND:
            error_class, message = NotFoundError, f"Path not found: {path}"
        elif classified.kind is ErrorKind.PERMISSION_DENIED:
            error_class, message = PermissionDeniedError, f"Permission denied: {path}"
        else:
            error_class = UnknownFilesystemError
            message = f"Error watching {path}: {classified.message}"

        cause = error if isinstance(error, BaseException) else None
        emitted = error_class(message, path=path, cause=cause)

        if not self._events.emit("error", emitted):
            logger.error(message)
        else:
            logger.debug(message)
        return emitted
