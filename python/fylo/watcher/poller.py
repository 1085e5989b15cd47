"""
Interval timer for polling watchers.

Ticks are driven by loop.call_later. A tick may be a coroutine function;
the next tick is only scheduled once the current one has finished, so
polls never overlap.
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class IntervalTimer:
    """
    Repeatedly run a callback every `interval` seconds until cancelled.

    Example:
        timer = IntervalTimer(0.5, poll, loop=loop, immediate=True)
        timer.start()
        ...
        timer.cancel()
    """

    def __init__(
        self,
        interval: float,
        callback: Callable[[], Any],
        loop: Optional[asyncio.AbstractEventLoop] = None,
        immediate: bool = False,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")

        self._interval = interval
        self._callback = callback
        self._loop = loop or asyncio.get_running_loop()
        self._immediate = immediate
        self._timer_handle: Optional[asyncio.TimerHandle] = None
        self._task: Optional[asyncio.Task] = None
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    def start(self) -> None:
        if self._active:
            return
        self._active = True
        if self._immediate:
            self._timer_handle = self._loop.call_soon(self._tick)
        else:
            self._schedule()

    def cancel(self) -> None:
        """Stop ticking; a tick that is already running is cancelled too."""
        self._active = False
        if self._timer_handle:
            self._timer_handle.cancel()
            self._timer_handle = None
        task = self._task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        self._task = None

    def _schedule(self) -> None:
        if self._active:
            self._timer_handle = self._loop.call_later(self._interval, self._tick)

    def _tick(self) -> None:
        self._timer_handle = None
        if not self._active:
            return

        try:
            result = self._callback()
        except Exception as e:
            logger.error(f"Error in interval callback: {e}", exc_info=True)
            self._schedule()
            return

        if inspect.isawaitable(result):
            self._task = asyncio.ensure_future(result)
            self._task.add_done_callback(self._on_done)
        else:
            self._schedule()

    def _on_done(self, task: "asyncio.Future[Any]") -> None:
        if task is self._task:
            self._task = None
        if task.cancelled():
            return
        if task.exception() is not None:
            logger.error(f"Error in interval callback: {task.exception()}")
        self._schedule()
