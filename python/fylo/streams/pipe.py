"""
Piping a ReadStream into a destination.

A destination is one of two explicit kinds:
    - ControlledDestination: a WriteStream, whose lifecycle the pipe drives
      (opened on demand, closed when the source ends)
    - GenericSink: plain callables (write, optional end, emit_error, on_drain)

Data is never buffered in full: the native read handle pauses whenever the
destination reports backpressure and resumes on drain.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

from fylo.errors import FyloError, InvalidDestinationError, NotOpenError
from fylo.streams.base import StreamState
from fylo.streams.writer import WriteStream

logger = logging.getLogger(__name__)

ControlledDestination = WriteStream


@dataclass
class GenericSink:
    """
    Pipe destination built from callables.

    Attributes:
        write: Called with each chunk; returning False signals backpressure
        end: Called once when the source ends (if the pipe propagates end)
        emit_error: Receives errors raised by the source
        on_drain: Registers a one-shot callback for when the sink can accept
            more data; without it a saturated sink is resumed immediately
    """

    write: Callable[[Any], Any]
    end: Optional[Callable[[], Any]] = None
    emit_error: Optional[Callable[[BaseException], Any]] = None
    on_drain: Optional[Callable[[Callable[[], Any]], Any]] = None

    @classmethod
    def wrap(cls, target: Any, close_on_end: bool = False) -> "GenericSink":
        """
        Build a sink from a file-like object (e.g. io.BytesIO).

        end() flushes the object, and also closes it if close_on_end is set.
        """
        write = getattr(target, "write", None)
        if not callable(write):
            raise InvalidDestinationError(f"{type(target).__name__} has no write() method.")

        flush = getattr(target, "flush", None)
        close = getattr(target, "close", None) if close_on_end else None

        def end() -> None:
            if callable(flush):
                flush()
            if callable(close):
                close()

        return cls(
            write=write,
            end=end,
            emit_error=getattr(target, "emit_error", None),
            on_drain=getattr(target, "on_drain", None),
        )


Destination = Union[WriteStream, GenericSink]


class _SinkAdapter:
    """Presents a GenericSink to the native read handle."""

    def __init__(self, sink: GenericSink) -> None:
        self._sink = sink

    def write(self, chunk: Any, callback: Optional[Callable[..., Any]] = None) -> bool:
        result = self._sink.write(chunk)
        if inspect.isawaitable(result):
            _log_task_failure(asyncio.ensure_future(result), "sink write")
            return True
        return result is not False

    def on_drain(self, listener: Callable[[], Any]) -> None:
        if self._sink.on_drain is not None:
            self._sink.on_drain(listener)
        else:
            asyncio.get_running_loop().call_soon(listener)

    def end(self, callback: Optional[Callable[[], Any]] = None) -> None:
        if self._sink.end is not None:
            self._sink.end()


def _log_task_failure(task: "asyncio.Future[Any]", what: str) -> None:
    def _done(t: "asyncio.Future[Any]") -> None:
        if t.cancelled():
            return
        exc = t.exception()
        if exc is not None:
            message = exc.message if isinstance(exc, FyloError) else str(exc)
            logger.warning(f"Pipe {what} failed: {message}")

    task.add_done_callback(_done)


def pipe_stream(source: Any, destination: Destination, end: bool = True) -> Destination:
    """
    Connect source (an OPEN ReadStream) to destination.

    Raises:
        NotOpenError: If source is not OPEN
        InvalidDestinationError: If destination is not a WriteStream or GenericSink
    """
    if source.state is not StreamState.OPEN:
        raise NotOpenError("Cannot pipe: read stream is not open.", path=source.path)

    if isinstance(destination, WriteStream):
        _pipe_to_stream(source, destination, end)
    elif isinstance(destination, GenericSink):
        _pipe_to_sink(source, destination, end)
    else:
        raise InvalidDestinationError(
            f"Cannot pipe into {type(destination).__name__}: expected WriteStream or GenericSink.",
            path=source.path,
        )
    return destination


def _pipe_to_stream(source: Any, destination: WriteStream, end: bool) -> None:
    opening: Optional["asyncio.Future[None]"] = None
    if destination.state is StreamState.CLOSED:
        try:
            opening = destination.open()
        except FyloError as e:
            logger.warning(f"Pipe cannot open {destination.path}: {e.message}")
            return
        _log_task_failure(opening, f"open of {destination.path}")
    elif destination.state not in (StreamState.OPENING, StreamState.OPEN):
        logger.warning(f"Pipe cannot write to {destination.path}: stream is {destination.state.value}")
        return

    source.get_native_stream().pipe(destination.get_native_stream(), end=False)
    source.on("error", lambda error: destination.emit("error", error))

    if not end:
        return

    ended = False

    async def close_destination() -> None:
        nonlocal ended
        if ended:
            return
        ended = True
        try:
            if opening is not None and not opening.done():
                await opening
            if destination.is_stream_open():
                await destination.close()
        except FyloError as e:
            logger.warning(f"Pipe could not close {destination.path}: {e.message}")

    source.once("end", close_destination)


def _pipe_to_sink(source: Any, sink: GenericSink, end: bool) -> None:
    source.get_native_stream().pipe(_SinkAdapter(sink), end=False)

    def forward_error(error: BaseException) -> None:
        if sink.emit_error is not None:
            sink.emit_error(error)
        else:
            logger.warning(f"Unforwarded pipe error from {source.path}: {error}")

    source.on("error", forward_error)

    if end and sink.end is not None:
        ended = False

        def end_sink() -> None:
            nonlocal ended
            if ended:
                return
            ended = True
            sink.end()

        source.once("end", end_sink)
