"""
fylo - asyncio filesystem streams and watchers

Stream controllers (WriteStream / ReadStream) wrap buffered file handles in
an explicit, timeout-guarded lifecycle; watchers (FileWatcher /
DirectoryWatcher) report changes by polling or through OS notifications.
"""

__version__ = "0.1.0"

from fylo.errors import ErrorKind, FyloError, classify
from fylo.streams import GenericSink, ReadStream, StreamState, WriteStream
from fylo.timeouts import with_timeout
from fylo.watcher import DirectoryWatcher, FileWatcher, WatcherOptions, WatchMode

__all__ = [
    "ErrorKind",
    "FyloError",
    "classify",
    "GenericSink",
    "ReadStream",
    "StreamState",
    "WriteStream",
    "with_timeout",
    "DirectoryWatcher",
    "FileWatcher",
    "WatcherOptions",
    "WatchMode",
]
