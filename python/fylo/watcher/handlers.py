"""
Native watch handle built on watchdog.

This module provides the low-level watchdog event handler and the handle
that owns the observer thread. Raw watchdog events are reduced to the two
native kinds ("change" / "rename") with the entry's file name, and are
marshalled onto the asyncio loop before any watcher code sees them.
"""

import asyncio
import logging
import os
from typing import Callable, Optional

from watchdog.events import (
    DirDeletedEvent,
    DirModifiedEvent,
    FileModifiedEvent,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from fylo.errors import FyloError, NotFoundError, classify
from fylo.watcher.types import NativeEvent

logger = logging.getLogger(__name__)

EventCallback = Callable[[NativeEvent, Optional[str]], None]
ErrorCallback = Callable[[FyloError], None]


class WatchEventHandler(FileSystemEventHandler):
    """
    Internal event handler for watchdog.

    Receives raw events on the observer thread and forwards them to the
    loop. Only direct children of the watched directory are reported;
    modifications of the directory itself are ignored, its deletion is an
    error.
    """

    def __init__(
        self,
        watched_dir: str,
        loop: asyncio.AbstractEventLoop,
        on_event: EventCallback,
        on_error: ErrorCallback,
        only: Optional[str] = None,
    ) -> None:
        super().__init__()
        self.watched_dir = os.path.normpath(watched_dir)
        self.loop = loop
        self.on_event = on_event
        self.on_error = on_error
        self.only = only

    def dispatch(self, event: FileSystemEvent) -> None:
        """Dispatch file system events to the loop."""
        src = os.path.normpath(os.fsdecode(event.src_path))

        if src == self.watched_dir:
            if isinstance(event, DirDeletedEvent):
                error = NotFoundError(f"Watched directory was removed: {src}", path=src)
                self._post(self.on_error, error)
            return

        if event.event_type == "modified" and isinstance(event, (FileModifiedEvent, DirModifiedEvent)):
            self._report(NativeEvent.CHANGE, src)
        elif event.event_type in ("created", "deleted"):
            self._report(NativeEvent.RENAME, src)
        elif event.event_type == "moved":
            self._report(NativeEvent.RENAME, src)
            self._report(NativeEvent.RENAME, os.path.normpath(os.fsdecode(event.dest_path)))

    def _report(self, kind: NativeEvent, full_path: str) -> None:
        if os.path.dirname(full_path) != self.watched_dir:
            return
        filename = os.path.basename(full_path)
        if self.only is not None and filename != self.only:
            return
        self._post(self.on_event, kind, filename)

    def _post(self, callback, *args) -> None:
        try:
            self.loop.call_soon_threadsafe(callback, *args)
        except RuntimeError:
            # Loop already closed; nothing left to notify
            logger.debug(f"Dropped watch event for {self.watched_dir}: loop is closed")


class NativeWatchHandle:
    """
    Owns one watchdog observer watching a single directory (non-recursive).

    Example:
        handle = NativeWatchHandle(directory, loop, on_event, on_error)
        handle.start()
        ...
        handle.close()
    """

    def __init__(
        self,
        watched_dir: str,
        loop: asyncio.AbstractEventLoop,
        on_event: EventCallback,
        on_error: ErrorCallback,
        only: Optional[str] = None,
    ) -> None:
        self.watched_dir = watched_dir
        self._handler = WatchEventHandler(watched_dir, loop, on_event, on_error, only=only)
        self._observer: Optional[Observer] = None

    def start(self) -> None:
        """
        Start the observer thread.

        Raises:
            FyloError: Classified failure to start watching
        """
        observer = Observer()
        try:
            observer.schedule(self._handler, self.watched_dir, recursive=False)
            observer.start()
        except OSError as e:
            raise classify(e, self.watched_dir) from e
        self._observer = observer
        logger.debug(f"Watching {self.watched_dir}")

    def close(self) -> None:
        """Stop the observer thread and wait for it to exit."""
        observer, self._observer = self._observer, None
        if observer is None:
            return
        observer.stop()
        if observer.is_alive():
            observer.join()
        logger.debug(f"Stopped watching {self.watched_dir}")
