"""
DirectoryWatcher: entry-level change notification for one directory.

Polling mode diffs successive listings. Event mode turns native
notifications into added/removed/changed events, using a stat to tell
appearing entries from disappearing ones. Any watch failure triggers an
automatic restart after `restart_delay` seconds, indefinitely.
"""

import asyncio
import logging
import os
from typing import Optional

from fylo.errors import FyloError, NotFoundError, ValidationError
from fylo.primitives import PathLike, list_directory, list_directory_sync, stat_path
from fylo.watcher.core import BaseWatcher, OptionsInput
from fylo.watcher.handlers import NativeWatchHandle
from fylo.watcher.poller import IntervalTimer
from fylo.watcher.types import NativeEvent, WatchMode

logger = logging.getLogger(__name__)


class DirectoryWatcher(BaseWatcher):
    """
    Watch the direct entries of a directory.

    Events (all paths are full paths):
        added(path), removed(path), changed(path), error(err), stopped

    The first listing taken after start() is the baseline; entries already
    present at that point are not reported as added.
    """

    def __init__(self, path: PathLike, options: OptionsInput = None) -> None:
        super().__init__(path, options)
        if not self._stat_watch_path().is_directory:
            raise ValidationError(f"Path is not a directory: {self.watch_path}", path=self.watch_path)
        self.previous_entries: Optional[set[str]] = None
        self._timer: Optional[IntervalTimer] = None
        self._restart_handle: Optional[asyncio.TimerHandle] = None
        self._pending: set[asyncio.Task] = set()

    # ==================== Lifecycle ====================

    def start(self) -> None:
        if self._running:
            logger.debug(f"DirectoryWatcher for {self.watch_path} is already running")
            return
        loop = self._mark_running()

        if self.mode is WatchMode.POLLING:
            logger.info(f"Polling {self.watch_path} every {self.polling_interval}ms")
            self._timer = IntervalTimer(self.polling_interval / 1000, self._poll, loop=loop, immediate=True)
            self._timer.start()
            return

        try:
            self._snapshot_baseline()
            handle = NativeWatchHandle(self.watch_path, loop, self._on_native_event, self._recover)
            handle.start()
        except FyloError as e:
            self._recover(e)
            return
        self.set_watcher(handle)
        logger.info(f"Watching {self.watch_path} for entry changes")

    def stop(self) -> None:
        """Stop watching; also cancels polling and any scheduled restart."""
        if self._restart_handle is not None:
            self._restart_handle.cancel()
            self._restart_handle = None
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        for task in list(self._pending):
            if task is not asyncio.current_task():
                task.cancel()
        self._pending.clear()
        super().stop()

    def _full_path(self, name: str) -> str:
        return os.path.join(self.watch_path, name)

    # ==================== Polling ====================

    async def _poll(self) -> None:
        try:
            names = await list_directory(self.watch_path)
        except Exception as e:
            self._recover(e)
            return
        if not self._running:
            return

        current = {self._full_path(name) for name in names}
        previous = self.previous_entries
        self.previous_entries = current
        if previous is None:
            return

        for path in sorted(current - previous):
            self.emit("added", path)
        for path in sorted(previous - current):
            self.emit("removed", path)

    # ==================== Native events ====================

    def _snapshot_baseline(self) -> None:
        if self.previous_entries is not None:
            return
        self.previous_entries = {self._full_path(name) for name in list_directory_sync(self.watch_path)}

    def _on_native_event(self, kind: NativeEvent, filename: Optional[str]) -> None:
        if not self._running or not filename:
            return
        full_path = self._full_path(filename)

        if kind is NativeEvent.CHANGE:
            self.emit("changed", full_path)
        elif kind is NativeEvent.RENAME:
            task = asyncio.ensure_future(self._handle_rename(full_path))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def _handle_rename(self, full_path: str) -> None:
        """Decide whether a rename notification means the entry appeared or vanished."""
        try:
            await stat_path(full_path)
        except NotFoundError:
            if not self._running:
                return
            if self.previous_entries is not None:
                self.previous_entries.discard(full_path)
            self.emit("removed", full_path)
            return
        except Exception as e:
            if self._running:
                self.handle_error(e)
            return

        if not self._running:
            return
        if self.previous_entries is None:
            self.previous_entries = set()
        if full_path not in self.previous_entries:
            self.previous_entries.add(full_path)
            self.emit("added", full_path)

    # ==================== Recovery ====================

    def _recover(self, error: BaseException) -> None:
        """Report error, stop, and schedule a restart."""
        if not self._running:
            return
        self.handle_error(error)
        loop = self._loop
        self.stop()
        if loop is None or loop.is_closed():
            return
        delay = self.options.restart_delay
        logger.warning(f"Restarting watcher for {self.watch_path} in {delay}s")
        self._restart_handle = loop.call_later(delay, self._restart)

    def _restart(self) -> None:
        self._restart_handle = None
        logger.info(f"Restarting watcher for {self.watch_path}")
        self.start()
