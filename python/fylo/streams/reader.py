"""
ReadStream: lifecycle controller for a chunked file reader.

Data can be consumed three ways:
    - pull: await stream.read() until it returns None
    - push: enable_flowing_mode() and listen for "data"
    - async iteration: async for chunk in stream
"""

import asyncio
import logging
from typing import Any, AsyncIterator, Optional, Union

from fylo.errors import FyloError, NotAvailableError
from fylo.events import Listener
from fylo.streams.base import StreamController, StreamState
from fylo.streams.native import FileReadHandle
from fylo.streams.options import ReadStreamOptions, validate_read_options
from fylo.streams.pipe import pipe_stream

logger = logging.getLogger(__name__)

Chunk = Union[bytes, str]


class ReadStream(StreamController):
    """
    Read a file through an explicitly opened stream.

    The stream starts in paused mode. When the underlying file reaches its
    end, "end" handlers run and the stream closes itself.

    Events: data(chunk), end, error(err), close, pause, resume.
    """

    kind = "read"

    options: Optional[ReadStreamOptions]

    def __init__(self, path, debug: Optional[bool] = None, *, handle_factory=None) -> None:
        super().__init__(path, debug, handle_factory=handle_factory)
        self.flowing = False
        self._bytes_read = 0

    def _default_handle_factory(self, path: str, options: ReadStreamOptions) -> FileReadHandle:
        return FileReadHandle(path, options)

    def _validate_options(self, options: Any) -> ReadStreamOptions:
        return validate_read_options(options)

    def _native_event_map(self) -> dict[str, Listener]:
        return {
            "data": self._on_native_data,
            "end": self._on_native_end,
            "pause": self._on_native_pause,
            "resume": self._on_native_resume,
        }

    def _request_close(self, native: Any) -> None:
        native.close()

    def _finalize(self, final_state: StreamState) -> None:
        if self._native is not None:
            self._bytes_read = getattr(self._native, "bytes_read", self._bytes_read)
        super()._finalize(final_state)
        self.flowing = False

    @property
    def bytes_read(self) -> int:
        if self._native is not None:
            return getattr(self._native, "bytes_read", self._bytes_read)
        return self._bytes_read

    # ==================== Pull mode ====================

    async def read(self) -> Optional[Chunk]:
        """
        Read the next chunk in paused mode.

        Returns:
            The next chunk, or None once the end of the data is reached

        Raises:
            NotAvailableError: If the stream is not OPEN or is in flowing mode
            FyloError: Classified read failure
        """
        if self.state is not StreamState.OPEN or self._native is None or self.flowing:
            raise NotAvailableError("Stream is not available for reading.", path=self.path)

        native = self._native
        ready = asyncio.get_running_loop().create_future()

        def on_ready(*_: Any) -> None:
            if not ready.done():
                ready.set_result(None)

        def on_error(error: BaseException) -> None:
            if not ready.done():
                ready.set_exception(self._wrap_error(error, "read from stream"))

        listeners = {"readable": on_ready, "end": on_ready, "close": on_ready, "error": on_error}
        for event, listener in listeners.items():
            native.once(event, listener)
        try:
            native.request()
            await ready
        finally:
            for event, listener in listeners.items():
                native.off(event, listener)

        return native.read()

    # ==================== Flowing mode ====================

    def enable_flowing_mode(self) -> None:
        if self.state is not StreamState.OPEN or self._native is None:
            self._log("cannot enable flowing mode: stream is not open")
            return
        self.flowing = True
        self._native.resume()

    def disable_flowing_mode(self) -> None:
        if self.state is not StreamState.OPEN or self._native is None:
            self._log("cannot disable flowing mode: stream is not open")
            return
        self.flowing = False
        self._native.pause()

    # ==================== Pipe ====================

    def pipe(self, destination: Any, end: bool = True) -> Any:
        """
        Pipe this stream into a WriteStream or a GenericSink.

        Args:
            destination: WriteStream (opened on demand) or GenericSink
            end: Close/end the destination once this stream ends

        Returns:
            destination, unchanged

        Raises:
            NotOpenError: If this stream is not OPEN
            InvalidDestinationError: If destination is neither kind
        """
        return pipe_stream(self, destination, end=end)

    # ==================== Async iteration ====================

    def __aiter__(self) -> AsyncIterator[Chunk]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[Chunk]:
        if self.state is not StreamState.OPEN or self._native is None:
            return

        native = self._native
        queue: asyncio.Queue = asyncio.Queue()
        listeners = {
            "data": lambda chunk: queue.put_nowait(("data", chunk)),
            "end": lambda *_: queue.put_nowait(("end", None)),
            "close": lambda *_: queue.put_nowait(("close", None)),
            "error": lambda error: queue.put_nowait(("error", error)),
        }
        for event, listener in listeners.items():
            native.on(event, listener)

        try:
            while True:
                if self.flowing or not queue.empty():
                    kind, value = await queue.get()
                    if kind == "data":
                        yield value
                        continue
                    if kind == "error":
                        logger.error(f"Iteration over {self.path} stopped: {value}")
                    return

                if self.state is not StreamState.OPEN:
                    return
                try:
                    chunk = await self.read()
                except NotAvailableError:
                    continue
                except FyloError as e:
                    logger.error(f"Iteration over {self.path} stopped: {e.message}")
                    return
                if chunk is None:
                    return
                yield chunk
        finally:
            for event, listener in listeners.items():
                native.off(event, listener)

    # ==================== Native events ====================

    def _on_native_data(self, chunk: Chunk) -> None:
        if self.flowing:
            self._events.emit("data", chunk)

    def _on_native_end(self, *_: Any) -> None:
        self._log("end")
        asyncio.ensure_future(self._handle_end())

    async def _handle_end(self) -> None:
        await self._events.emit_async("end")
        if self.state is not StreamState.OPEN:
            return
        try:
            await self.close()
        except FyloError as e:
            logger.warning(f"Automatic close of {self.path} after end failed: {e.message}")

    def _on_native_pause(self, *_: Any) -> None:
        self._events.emit("pause")

    def _on_native_resume(self, *_: Any) -> None:
        self._events.emit("resume")
