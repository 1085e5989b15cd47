"""
WriteStream: lifecycle controller for a buffered file writer.
"""

import asyncio
import logging
from typing import Any, Optional, Union

from fylo.errors import ValidationError
from fylo.events import Listener
from fylo.streams.base import StreamController, StreamState
from fylo.streams.native import FileWriteHandle
from fylo.streams.options import WriteStreamOptions, validate_write_options

logger = logging.getLogger(__name__)


class WriteStream(StreamController):
    """
    Write data to a file through an explicitly opened stream.

    Example:
        stream = WriteStream("/tmp/out.txt")
        await stream.open({"flags": "a"})
        await stream.write("hello\\n")
        await stream.close()

    Events: finish, error(err), close, drain.
    """

    kind = "write"

    options: Optional[WriteStreamOptions]

    def __init__(self, path, debug: Optional[bool] = None, *, handle_factory=None) -> None:
        super().__init__(path, debug, handle_factory=handle_factory)
        self._bytes_written = 0

    def _default_handle_factory(self, path: str, options: WriteStreamOptions) -> FileWriteHandle:
        return FileWriteHandle(path, options)

    def _validate_options(self, options: Any) -> WriteStreamOptions:
        return validate_write_options(options)

    def _native_event_map(self) -> dict[str, Listener]:
        return {
            "finish": self._on_native_finish,
            "drain": self._on_native_drain,
        }

    def _request_close(self, native: Any) -> None:
        native.end()

    def _emits_close(self) -> bool:
        return self.options is None or self.options.emit_close

    def _finalize(self, final_state: StreamState) -> None:
        if self._native is not None:
            self._bytes_written = getattr(self._native, "bytes_written", self._bytes_written)
        super()._finalize(final_state)

    @property
    def bytes_written(self) -> int:
        if self._native is not None:
            return getattr(self._native, "bytes_written", self._bytes_written)
        return self._bytes_written

    async def write(self, chunk: Union[bytes, str]) -> None:
        """
        Write one chunk.

        Completes when the chunk has been written or, if the native buffer is
        full, once it has drained.

        Raises:
            NotOpenError: If the stream is not OPEN
            ValidationError: If chunk is not bytes or str
            FyloError: Classified write failure
        """
        native = self._require_open("write")
        if not isinstance(chunk, (bytes, bytearray, memoryview, str)):
            raise ValidationError(
                f"Chunk must be bytes or str, not {type(chunk).__name__}.", path=self.path
            )

        done = asyncio.get_running_loop().create_future()
        waiting_for_drain = False

        def on_error(error: BaseException) -> None:
            if not done.done():
                done.set_exception(self._wrap_error(error, "write to stream"))

        def on_written(error: Optional[BaseException]) -> None:
            if error is not None:
                on_error(error)
            elif not waiting_for_drain and not done.done():
                done.set_result(None)

        def on_drain(*_: Any) -> None:
            if not done.done():
                done.set_result(None)

        native.once("error", on_error)
        try:
            try:
                accepted = native.write(chunk, on_written)
            except (TypeError, ValueError) as e:
                raise ValidationError(f"Cannot encode chunk: {e}", path=self.path) from e
            if accepted is False:
                waiting_for_drain = True
                native.on_drain(on_drain)
                self._log("write buffer full, waiting for drain")
            await done
        finally:
            native.off("error", on_error)

    # ==================== Native events ====================

    def _on_native_finish(self, *_: Any) -> None:
        self._log("finish")
        self._events.emit("finish")

    def _on_native_drain(self, *_: Any) -> None:
        self._events.emit("drain")
