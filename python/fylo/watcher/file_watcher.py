"""
FileWatcher: change notification for a single file.
"""

import logging
import os
from typing import Optional

from fylo.errors import FyloError, ValidationError
from fylo.primitives import PathLike, stat_path
from fylo.watcher.core import BaseWatcher, OptionsInput
from fylo.watcher.handlers import NativeWatchHandle
from fylo.watcher.poller import IntervalTimer
from fylo.watcher.types import NativeEvent, WatchMode

logger = logging.getLogger(__name__)


class FileWatcher(BaseWatcher):
    """
    Watch one file for content changes.

    Emits "changed(path)" when the file's content changes, "error(err)" on
    failures (the watcher keeps running) and "stopped".

    Example:
        watcher = FileWatcher("/var/log/app.log", {"usePolling": True, "pollingInterval": 250})
        watcher.on("changed", lambda path: print("changed", path))
        watcher.start()
    """

    def __init__(self, path: PathLike, options: OptionsInput = None) -> None:
        super().__init__(path, options)
        if not self._stat_watch_path().is_file:
            raise ValidationError(f"Path is not a file: {self.watch_path}", path=self.watch_path)
        self._timer: Optional[IntervalTimer] = None
        self._last_mtime: Optional[float] = None

    def start(self) -> None:
        if self._running:
            logger.debug(f"FileWatcher for {self.watch_path} is already running")
            return
        loop = self._mark_running()

        if self.mode is WatchMode.POLLING:
            logger.info(f"Polling {self.watch_path} every {self.polling_interval}ms")
            self._last_mtime = None
            self._timer = IntervalTimer(self.polling_interval / 1000, self._poll, loop=loop, immediate=True)
            self._timer.start()
            return

        handle = NativeWatchHandle(
            os.path.dirname(self.watch_path),
            loop,
            self._on_native_event,
            self.handle_error,
            only=os.path.basename(self.watch_path),
        )
        try:
            handle.start()
        except FyloError as e:
            self.handle_error(e)
            return
        self.set_watcher(handle)
        logger.info(f"Watching {self.watch_path} for changes")

    def stop(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        super().stop()

    async def _poll(self) -> None:
        try:
            stat = await stat_path(self.watch_path)
        except Exception as e:
            self.handle_error(e)
            return
        if not self._running:
            return

        previous, self._last_mtime = self._last_mtime, stat.modified_time
        if previous is not None and stat.modified_time != previous:
            self.emit("changed", self.watch_path)

    def _on_native_event(self, kind: NativeEvent, filename: Optional[str]) -> None:
        if not self._running:
            return
        # Only content changes are reported; "rename" notifications are not mapped
        if kind is NativeEvent.CHANGE:
            self.emit("changed", self.watch_path)
