"""
Stream controllers with an explicit, timeout-guarded lifecycle.
"""

from fylo.streams.base import StreamController, StreamState
from fylo.streams.native import FileReadHandle, FileWriteHandle
from fylo.streams.options import (
    ReadStreamOptions,
    WriteStreamOptions,
    validate_read_options,
    validate_write_options,
)
from fylo.streams.pipe import ControlledDestination, Destination, GenericSink
from fylo.streams.reader import ReadStream
from fylo.streams.writer import WriteStream

__all__ = [
    "StreamController",
    "StreamState",
    "FileReadHandle",
    "FileWriteHandle",
    "ReadStreamOptions",
    "WriteStreamOptions",
    "validate_read_options",
    "validate_write_options",
    "ControlledDestination",
    "Destination",
    "GenericSink",
    "ReadStream",
    "WriteStream",
]
