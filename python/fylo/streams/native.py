"""
Native stream handles.

These are the low-level, event-emitting file handles that the stream
controllers own. They start opening as soon as they are constructed (so
they must be created inside a running event loop) and report progress only
through events:

    write handle: open, drain, finish, error, close
    read handle:  open, readable, data, end, pause, resume, error, close

File I/O runs through aiofiles. A handle emits "close" exactly once, after
its file has been released.
"""

import asyncio
import logging
import os
from collections import deque
from typing import Any, Callable, Optional, Protocol, Union

import aiofiles

from fylo.config import get_settings
from fylo.errors import FyloError, NotOpenError, classify
from fylo.events import EventEmitter, Listener
from fylo.streams.encodings import ChunkDecoder, to_bytes
from fylo.streams.options import ReadStreamOptions, WriteStreamOptions, open_spec

logger = logging.getLogger(__name__)

WriteCallback = Callable[[Optional[BaseException]], Any]
Chunk = Union[bytes, str]


class DrainableSink(Protocol):
    """What a read handle needs from the other end of a pipe."""

    def write(self, chunk: Chunk, callback: Optional[WriteCallback] = None) -> bool: ...

    def on_drain(self, listener: Callable[[], Any]) -> None: ...

    def end(self, callback: Optional[Callable[[], Any]] = None) -> None: ...


async def _open_file(path: str, flags: str, mode: int = 0o666):
    os_flags, file_mode = open_spec(flags)
    return await aiofiles.open(path, file_mode, opener=lambda p, _: os.open(p, os_flags, mode))


class _HandleBase:
    """Event plumbing shared by both handle kinds."""

    def __init__(self, path: str, kind: str) -> None:
        self.path = path
        self.events = EventEmitter(f"{kind}:{os.path.basename(path)}")
        self.opened = False
        self.closed = False
        self._file = None

    def on(self, event: str, listener: Listener) -> "_HandleBase":
        self.events.on(event, listener)
        return self

    def once(self, event: str, listener: Listener) -> "_HandleBase":
        self.events.once(event, listener)
        return self

    def off(self, event: str, listener: Listener) -> "_HandleBase":
        self.events.off(event, listener)
        return self

    async def _release_file(self) -> None:
        file, self._file = self._file, None
        if file is None:
            return
        try:
            await file.close()
        except OSError as e:
            logger.warning(f"Failed to close {self.path}: {e}")

    def _emit_close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.events.emit("close")

    def _fail(self, error: BaseException) -> FyloError:
        classified = classify(error, self.path)
        self.events.emit("error", classified)
        return classified


# ==================== Write handle ====================


class FileWriteHandle(_HandleBase):
    """
    Buffered, queue-backed file writer.

    write() only enqueues; a single writer task drains the queue in order.
    write() returns False once the buffered byte count reaches the high
    water mark, and "drain" is emitted when the queue empties again.
    """

    def __init__(self, path: str, options: Optional[WriteStreamOptions] = None) -> None:
        super().__init__(path, "write")
        self.options = options or WriteStreamOptions()
        self.high_water_mark = self.options.high_water_mark or get_settings().high_water_mark
        self.bytes_written = 0

        self._queue: deque[tuple[bytes, Optional[WriteCallback]]] = deque()
        self._buffered = 0
        self._need_drain = False
        self._ending = False
        self._destroyed = False
        self._wakeup = asyncio.Event()

        self._task = asyncio.get_running_loop().create_task(self._run())
        self._task.add_done_callback(self._on_task_done)

    def write(self, chunk: Chunk, callback: Optional[WriteCallback] = None) -> bool:
        """Queue chunk; returns False when the caller should wait for drain."""
        if self._ending or self._destroyed:
            error = NotOpenError("write after end", path=self.path)
            if callback is not None:
                asyncio.get_running_loop().call_soon(callback, error)
            self.events.emit("error", error)
            return False

        data = to_bytes(chunk, self.options.encoding)
        self._queue.append((data, callback))
        self._buffered += len(data)
        self._wakeup.set()

        if self._buffered >= self.high_water_mark:
            self._need_drain = True
            return False
        return True

    def on_drain(self, listener: Callable[[], Any]) -> None:
        self.events.once("drain", listener)

    def end(self, callback: Optional[Callable[[], Any]] = None) -> None:
        """Flush queued writes, emit finish, then close. Idempotent."""
        if callback is not None:
            if self.closed:
                asyncio.get_running_loop().call_soon(callback)
            else:
                self.events.once("close", callback)
        if self._ending or self._destroyed:
            return
        self._ending = True
        self._wakeup.set()

    def destroy(self) -> None:
        """Abort pending writes and release the file."""
        if self._destroyed:
            return
        self._destroyed = True
        if not self._task.done():
            self._task.cancel()

    async def _run(self) -> None:
        try:
            self._file = await _open_file(self.path, self.options.flags, int(self.options.mode))
            if self.options.start is not None:
                await self._file.seek(int(self.options.start))
            self.opened = True
            self.events.emit("open")

            while True:
                while self._queue:
                    data, callback = self._queue[0]
                    try:
                        await self._file.write(data)
                    except OSError as e:
                        self._queue.popleft()
                        error = self._fail(e)
                        if callback is not None:
                            callback(error)
                        if self.options.auto_close:
                            return
                        await self._wait_for_release()
                        return
                    self._queue.popleft()
                    self._buffered -= len(data)
                    self.bytes_written += len(data)
                    if callback is not None:
                        callback(None)

                if self._need_drain:
                    self._need_drain = False
                    self.events.emit("drain")

                if self._ending and not self._queue:
                    await self._finish()
                    return

                self._wakeup.clear()
                if not self._queue and not self._ending:
                    await self._wakeup.wait()
        except asyncio.CancelledError:
            self._abort_pending()
            raise
        except OSError as e:
            self._fail(e)
        finally:
            await self._release_file()

    async def _finish(self) -> None:
        try:
            await self._file.flush()
            if self.options.flush:
                await asyncio.to_thread(os.fsync, self._file.fileno())
        except OSError as e:
            self._fail(e)
            return
        self.events.emit("finish")

    async def _wait_for_release(self) -> None:
        # Without auto_close the file stays open after an error until end() or destroy()
        while not self._ending:
            self._wakeup.clear()
            await self._wakeup.wait()

    def _abort_pending(self) -> None:
        pending, self._queue = list(self._queue), deque()
        self._buffered = 0
        error = NotOpenError("Stream was destroyed", path=self.path)
        for _, callback in pending:
            if callback is not None:
                callback(error)

    def _on_task_done(self, task: "asyncio.Task[None]") -> None:
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Writer task for {self.path} failed: {task.exception()}")
            self._fail(task.exception())
        self._abort_pending()
        self._emit_close()


# ==================== Read handle ====================


class FileReadHandle(_HandleBase):
    """
    Chunked file reader supporting paused (pull) and flowing (push) modes.

    In paused mode chunks are produced on demand: request() asks for data
    and "readable" announces that read() will return a chunk (or None at
    end of file). In flowing mode chunks are emitted as "data" events until
    pause() is called. "end" is emitted once, when the last chunk has been
    consumed.
    """

    def __init__(self, path: str, options: Optional[ReadStreamOptions] = None) -> None:
        super().__init__(path, "read")
        self.options = options or ReadStreamOptions()
        self.high_water_mark = self.options.high_water_mark or get_settings().high_water_mark
        self.bytes_read = 0
        self.flowing = False

        self._buffer: deque[Chunk] = deque()
        self._decoder = ChunkDecoder(self.options.encoding) if self.options.encoding else None
        self._remaining: Optional[int] = None
        if self.options.end is not None:
            self._remaining = self.options.end - (self.options.start or 0) + 1
        self._wanted = False
        self._eof = False
        self._ended = False
        self._wakeup = asyncio.Event()
        self._closing = False

        self._task = asyncio.get_running_loop().create_task(self._run())
        self._task.add_done_callback(self._on_task_done)

    # ---------- consumer surface ----------

    def request(self) -> None:
        """Ask for the next chunk; "readable" follows once one is available."""
        if self._buffer or self._eof:
            asyncio.get_running_loop().call_soon(self.events.emit, "readable")
            return
        self._wanted = True
        self._wakeup.set()

    def read(self) -> Optional[Chunk]:
        """Return the next buffered chunk, or None if nothing is buffered."""
        if self._buffer:
            return self._buffer.popleft()
        if self._eof:
            self._emit_end()
        return None

    def resume(self) -> None:
        if self.flowing:
            return
        self.flowing = True
        self.events.emit("resume")
        self._wakeup.set()
        if self._task.done() and self._eof and not self._closing:
            while self._buffer and self.flowing:
                self.events.emit("data", self._buffer.popleft())
            if not self._buffer:
                self._emit_end()

    def pause(self) -> None:
        if not self.flowing:
            return
        self.flowing = False
        self.events.emit("pause")

    def pipe(self, destination: DrainableSink, end: bool = True) -> DrainableSink:
        """
        Push every chunk into destination, pausing while it is saturated.

        Switches the handle to flowing mode.
        """

        def on_data(chunk: Chunk) -> None:
            if destination.write(chunk) is False:
                self.pause()
                destination.on_drain(self.resume)

        self.events.on("data", on_data)
        if end:
            self.events.once("end", destination.end)
        self.resume()
        return destination

    def close(self) -> None:
        """Stop reading and release the file; "close" follows."""
        if self._closing:
            return
        self._closing = True
        if self._task.done():
            asyncio.get_running_loop().create_task(self._finalize())
        else:
            self._task.cancel()

    destroy = close

    # ---------- producer ----------

    async def _run(self) -> None:
        try:
            self._file = await _open_file(self.path, self.options.flags)
            if self.options.start:
                await self._file.seek(self.options.start)
            self.opened = True
            self.events.emit("open")

            while not self._eof:
                while self.flowing and self._buffer:
                    self.events.emit("data", self._buffer.popleft())

                if not (self.flowing or self._wanted):
                    self._wakeup.clear()
                    await self._wakeup.wait()
                    continue

                chunk = await self._read_chunk()
                if chunk is None:
                    continue
                self._wanted = False
                if self.flowing:
                    self.events.emit("data", chunk)
                else:
                    self._buffer.append(chunk)
                    self.events.emit("readable")

            # Flush anything buffered before pause() flipped back to flowing
            while self._buffer:
                if not self.flowing:
                    self._wakeup.clear()
                    await self._wakeup.wait()
                    continue
                self.events.emit("data", self._buffer.popleft())

            if self.flowing:
                self._emit_end()
        except OSError as e:
            self._fail(e)
            self._closing = True

    async def _read_chunk(self) -> Optional[Chunk]:
        size = self.high_water_mark
        if self._remaining is not None:
            size = min(size, self._remaining)

        data = await self._file.read(size) if size > 0 else b""
        if not data:
            self._eof = True
            tail = self._decoder.decode(b"", final=True) if self._decoder else ""
            if tail:
                self._buffer.append(tail)
            if not self.flowing:
                self.events.emit("readable")
            return None

        self.bytes_read += len(data)
        if self._remaining is not None:
            self._remaining -= len(data)
        if self._decoder is None:
            return data
        text = self._decoder.decode(data)
        return text or None

    def _emit_end(self) -> None:
        if self._ended:
            return
        self._ended = True
        asyncio.get_running_loop().call_soon(self.events.emit, "end")

    async def _finalize(self) -> None:
        await self._release_file()
        self._emit_close()

    def _on_task_done(self, task: "asyncio.Task[None]") -> None:
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Reader task for {self.path} failed: {task.exception()}")
            self._fail(task.exception())
            self._closing = True
        if self._closing:
            asyncio.get_running_loop().create_task(self._finalize())
