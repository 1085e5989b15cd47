"""
Lifecycle shared by the read and write stream controllers.

A controller owns at most one native handle and walks it through

    CLOSED -> OPENING -> OPEN -> CLOSING -> CLOSED | DESTROYED

Controllers are one-shot: once a close or destroy has completed, open()
fails with AlreadyOpenError. open/close/destroy are bounded by a deadline
(fylo.timeouts.with_timeout); on expiry the native handle is destroyed on a
best-effort basis and any late acknowledgment is ignored.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Optional

from fylo.config import get_settings
from fylo.errors import (
    AlreadyOpenError,
    FyloError,
    NotInitializedError,
    NotOpenError,
    StreamTimeoutError,
    classify,
)
from fylo.events import EventEmitter, Listener
from fylo.primitives import PathLike, normalize_path
from fylo.timeouts import with_timeout

logger = logging.getLogger(__name__)

HandleFactory = Callable[[str, Any], Any]


class StreamState(Enum):
    """Lifecycle state of a stream controller."""

    CLOSED = "closed"
    OPENING = "opening"
    OPEN = "open"
    CLOSING = "closing"
    DESTROYED = "destroyed"


class StreamController:
    """
    Base class for WriteStream and ReadStream.

    Subclasses provide the default native handle factory, option
    validation, the native events they care about and how a graceful
    close is requested from the handle.
    """

    kind = "stream"

    def __init__(
        self,
        path: PathLike,
        debug: Optional[bool] = None,
        *,
        handle_factory: Optional[HandleFactory] = None,
    ) -> None:
        self.path = normalize_path(path)
        self.debug = get_settings().debug if debug is None else bool(debug)
        self.state = StreamState.CLOSED
        self.options: Any = None

        self._events = EventEmitter(f"{self.kind}:{self.path}")
        self._native: Any = None
        self._handle_factory = handle_factory or self._default_handle_factory
        self._native_listeners: list[tuple[str, Listener]] = []
        self._open_waiter: Optional[asyncio.Future] = None
        self._used = False

    # ==================== Subclass hooks ====================

    def _default_handle_factory(self, path: str, options: Any) -> Any:
        raise NotImplementedError

    def _validate_options(self, options: Any) -> Any:
        raise NotImplementedError

    def _native_event_map(self) -> dict[str, Listener]:
        return {}

    def _request_close(self, native: Any) -> None:
        raise NotImplementedError

    def _emits_close(self) -> bool:
        return True

    # ==================== Event surface ====================

    def on(self, event: str, listener: Listener) -> "StreamController":
        self._events.on(event, listener)
        return self

    def once(self, event: str, listener: Listener) -> "StreamController":
        self._events.once(event, listener)
        return self

    def off(self, event: str, listener: Listener) -> "StreamController":
        self._events.off(event, listener)
        return self

    def emit(self, event: str, *args: Any) -> bool:
        return self._events.emit(event, *args)

    # ==================== Introspection ====================

    def is_stream_open(self) -> bool:
        return self.state is StreamState.OPEN

    def get_native_stream(self) -> Any:
        if self._native is None:
            raise NotInitializedError(f"{self.kind.capitalize()} stream is not initialized.", path=self.path)
        return self._native

    def _log(self, message: str) -> None:
        if self.debug:
            logger.info(f"[{self.kind}:{self.path}] {message}")

    def _require_open(self, action: str) -> Any:
        if self.state is not StreamState.OPEN or self._native is None:
            raise NotOpenError(f"Cannot {action}: {self.kind} stream is not open.", path=self.path)
        return self._native

    def _wrap_error(self, error: BaseException, action: str) -> FyloError:
        """Classify error and prefix its message with the failed action."""
        classified = classify(error, self.path)
        if isinstance(classified, StreamTimeoutError):
            return classified
        wrapped = type(classified)(f"Failed to {action}: {classified.message}", path=self.path, cause=error)
        return wrapped

    # ==================== Open ====================

    def open(self, options: Any = None, timeout_ms: Optional[float] = None) -> "asyncio.Future[None]":
        """
        Start opening the stream.

        State and options are checked synchronously, so misuse raises here
        rather than from the returned task.

        Args:
            options: Stream options (mapping, options instance or encoding string)
            timeout_ms: Open deadline (default: FYLO_DEFAULT_TIMEOUT_MS)

        Returns:
            Task that completes once the native handle acknowledges the open

        Raises:
            AlreadyOpenError: If the stream is not CLOSED or was already used
            ValidationError: On invalid options (no native handle is created)
        """
        if self.state is not StreamState.CLOSED or self._used:
            raise AlreadyOpenError(
                f"{self.kind.capitalize()} stream is already open or has been used.", path=self.path
            )

        parsed = self._validate_options(options)
        loop = asyncio.get_running_loop()
        timeout_ms = get_settings().default_timeout_ms if timeout_ms is None else timeout_ms

        native = self._handle_factory(self.path, parsed)
        self.options = parsed
        self._native = native
        self._open_waiter = loop.create_future()
        self._attach(native)
        self.state = StreamState.OPENING
        self._log("opening")

        return asyncio.ensure_future(self._await_open(native, self._open_waiter, timeout_ms))

    async def _await_open(self, native: Any, waiter: "asyncio.Future[None]", timeout_ms: float) -> None:
        try:
            await with_timeout(
                waiter,
                timeout_ms,
                label=f"open {self.kind} stream",
                on_timeout=native.destroy,
                path=self.path,
            )
        except FyloError:
            self._reset_failed_open(native)
            raise
        finally:
            if self._open_waiter is waiter:
                self._open_waiter = None
        self._log("open")

    def _reset_failed_open(self, native: Any) -> None:
        if self._native is not native:
            return
        self._detach()
        try:
            native.destroy()
        except Exception as e:
            logger.warning(f"Failed to release {self.kind} handle for {self.path}: {e}")
        self._native = None
        self.state = StreamState.CLOSED

    # ==================== Close / destroy ====================

    async def close(self, timeout_ms: Optional[float] = None) -> None:
        """
        Gracefully close the stream and wait for the native close.

        Raises:
            NotOpenError: If the stream is not OPEN
            StreamTimeoutError: If the native close does not arrive in time
            FyloError: If the handle reported an error (e.g. a failed flush) before closing
        """
        native = self._require_open("close")
        await self._shutdown(native, StreamState.CLOSED, self._request_close, "close", timeout_ms)

    async def destroy(self, timeout_ms: Optional[float] = None) -> None:
        """
        Abort the stream (pending work is discarded) and wait for the native close.

        Raises:
            NotOpenError: If the stream is not OPEN
            StreamTimeoutError: If the native close does not arrive in time
        """
        native = self._require_open("destroy")
        await self._shutdown(native, StreamState.DESTROYED, lambda n: n.destroy(), "destroy", timeout_ms)

    async def _shutdown(
        self,
        native: Any,
        final_state: StreamState,
        request: Callable[[Any], Any],
        action: str,
        timeout_ms: Optional[float],
    ) -> None:
        timeout_ms = get_settings().default_timeout_ms if timeout_ms is None else timeout_ms
        self.state = StreamState.CLOSING
        self._log(f"{action} requested")

        closed = asyncio.get_running_loop().create_future()

        def on_close(*_: Any) -> None:
            if not closed.done():
                closed.set_result(None)

        failures: list[BaseException] = []

        def on_error(error: BaseException) -> None:
            failures.append(error)

        if getattr(native, "closed", False):
            on_close()
        else:
            native.once("close", on_close)
        native.on("error", on_error)

        try:
            request(native)
            await with_timeout(
                closed,
                timeout_ms,
                label=f"{action} {self.kind} stream",
                on_timeout=native.destroy,
                path=self.path,
            )
        finally:
            native.off("close", on_close)
            native.off("error", on_error)
            self._finalize(final_state)

        self._log(action)
        if self._emits_close():
            self._events.emit("close")
        if failures:
            raise self._wrap_error(failures[0], f"{action} {self.kind} stream")

    def _finalize(self, final_state: StreamState) -> None:
        self._detach()
        self._native = None
        self._used = True
        self.state = final_state

    # ==================== Native listeners ====================

    def _attach(self, native: Any) -> None:
        events = {
            "open": self._on_native_open,
            "error": self._on_native_error,
            "close": self._on_native_close,
        }
        events.update(self._native_event_map())
        for event, listener in events.items():
            native.on(event, listener)
            self._native_listeners.append((event, listener))

    def _detach(self) -> None:
        native = self._native
        listeners, self._native_listeners = self._native_listeners, []
        if native is None:
            return
        for event, listener in listeners:
            native.off(event, listener)

    def _on_native_open(self, *_: Any) -> None:
        if self.state is not StreamState.OPENING:
            return
        self.state = StreamState.OPEN
        if self._open_waiter is not None and not self._open_waiter.done():
            self._open_waiter.set_result(None)

    def _on_native_error(self, error: BaseException) -> None:
        classified = classify(error, self.path)
        self._log(f"error: {classified.message}")
        if not self._events.emit("error", classified):
            logger.error(f"Unhandled {self.kind} stream error: {classified.message}")

        waiter = self._open_waiter
        if self.state is StreamState.OPENING and waiter is not None and not waiter.done():
            waiter.set_exception(self._wrap_error(classified, f"open {self.kind} stream"))
        elif self.state is StreamState.OPEN:
            asyncio.ensure_future(self._close_after_error())

    async def _close_after_error(self) -> None:
        if self.state is not StreamState.OPEN:
            return
        try:
            await self.close()
        except FyloError as e:
            logger.warning(f"Best-effort close of {self.path} after error failed: {e.message}")

    def _on_native_close(self, *_: Any) -> None:
        # close()/destroy() handle the acknowledgment themselves while CLOSING
        if self.state is StreamState.OPENING:
            waiter = self._open_waiter
            if waiter is not None and not waiter.done():
                waiter.set_exception(
                    NotOpenError(f"{self.kind.capitalize()} stream closed before it opened.", path=self.path)
                )
        elif self.state is StreamState.OPEN:
            self._log("closed by native handle")
            self._finalize(StreamState.CLOSED)
            if self._emits_close():
                self._events.emit("close")

    # ==================== Context manager ====================

    async def __aenter__(self) -> "StreamController":
        if self.state is StreamState.CLOSED and not self._used:
            await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self.state is StreamState.OPEN:
            await self.close()
