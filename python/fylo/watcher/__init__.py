"""
Path watchers.

FileWatcher reports content changes of a single file; DirectoryWatcher
reports entries added to, removed from or changed in a directory. Both
either poll or use OS notifications through watchdog.
"""

from fylo.watcher.core import BaseWatcher
from fylo.watcher.directory_watcher import DirectoryWatcher
from fylo.watcher.file_watcher import FileWatcher
from fylo.watcher.types import NativeEvent, WatcherOptions, WatchMode

__all__ = [
    "BaseWatcher",
    "DirectoryWatcher",
    "FileWatcher",
    "NativeEvent",
    "WatcherOptions",
    "WatchMode",
]
