"""
Deadline guard for in-flight asynchronous operations.
"""

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

from fylo.errors import StreamTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TIMEOUT_MS = 30000


async def with_timeout(
    operation: Awaitable[T],
    duration_ms: float = DEFAULT_TIMEOUT_MS,
    label: str = "operation",
    on_timeout: Optional[Callable[[], Any]] = None,
    path: Optional[str] = None,
) -> T:
    """
    Await operation, failing with StreamTimeoutError after duration_ms.

    If operation settles first its outcome propagates unchanged. If the
    deadline fires first the operation is cancelled (its late outcome is
    discarded), on_timeout is invoked as best-effort cleanup, and
    StreamTimeoutError is raised. A coroutine returned by on_timeout is
    scheduled but not awaited, so a stuck cleanup never hangs the caller.

    Args:
        operation: Awaitable to guard
        duration_ms: Deadline in milliseconds
        label: Name of the operation, used in the error message
        on_timeout: Optional cleanup callback run when the deadline fires
        path: Path reported on the timeout error
    """
    future = asyncio.ensure_future(operation)
    try:
        done, _ = await asyncio.wait({future}, timeout=max(duration_ms, 0) / 1000)
    except asyncio.CancelledError:
        future.cancel()
        raise

    if future in done:
        return future.result()

    future.cancel()
    # Retrieve the late result so asyncio never reports it as unhandled
    future.add_done_callback(_discard_outcome)

    error = StreamTimeoutError(label, duration_ms, path=path)
    logger.warning(f"{error.message}" + (f" ({path})" if path else ""))

    if on_timeout is not None:
        _run_cleanup(on_timeout, label)

    raise error


def _discard_outcome(future: "asyncio.Future[Any]") -> None:
    if not future.cancelled():
        future.exception()


def _run_cleanup(cleanup: Callable[[], Any], label: str) -> None:
    try:
        result = cleanup()
    except Exception as e:
        logger.warning(f"Cleanup after {label} timeout failed: {e}")
        return

    if inspect.isawaitable(result):
        task = asyncio.ensure_future(result)

        def _done(t: "asyncio.Future[Any]") -> None:
            if not t.cancelled() and t.exception() is not None:
                logger.warning(f"Cleanup after {label} timeout failed: {t.exception()}")

        task.add_done_callback(_done)
