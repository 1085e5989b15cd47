"""
Minimal publish/subscribe emitter.

Each stream controller, native handle and watcher composes one EventEmitter
instead of inheriting dispatch behaviour. Listeners are kept per event name
in registration order. A listener may be a plain callable or a coroutine
function; coroutine results are scheduled on the running loop.
"""

import asyncio
import inspect
import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)

Listener = Callable[..., Any]


class EventEmitter:
    """Mapping of event name to an ordered list of listeners."""

    def __init__(self, owner: str = "emitter") -> None:
        self._owner = owner
        self._listeners: dict[str, list[Listener]] = {}
        # Wrappers registered through once(), keyed by (event, original)
        self._once_wrappers: dict[tuple[str, Listener], list[Listener]] = {}

    def on(self, event: str, listener: Listener) -> "EventEmitter":
        if not callable(listener):
            raise TypeError("listener must be callable")
        self._listeners.setdefault(event, []).append(listener)
        return self

    def once(self, event: str, listener: Listener) -> "EventEmitter":
        """Register a listener that is removed before its first call."""

        def wrapper(*args: Any) -> Any:
            self._remove(event, wrapper)
            wrappers = self._once_wrappers.get((event, listener))
            if wrappers and wrapper in wrappers:
                wrappers.remove(wrapper)
                if not wrappers:
                    del self._once_wrappers[(event, listener)]
            return listener(*args)

        self._once_wrappers.setdefault((event, listener), []).append(wrapper)
        return self.on(event, wrapper)

    def off(self, event: str, listener: Listener) -> "EventEmitter":
        """Remove the most recently added registration of listener."""
        wrappers = self._once_wrappers.get((event, listener))
        if wrappers:
            wrapper = wrappers.pop()
            if not wrappers:
                del self._once_wrappers[(event, listener)]
            self._remove(event, wrapper)
            return self
        self._remove(event, listener)
        return self

    def _remove(self, event: str, listener: Listener) -> None:
        listeners = self._listeners.get(event)
        if not listeners:
            return
        for i in range(len(listeners) - 1, -1, -1):
            if listeners[i] is listener:
                del listeners[i]
                break
        if not listeners:
            del self._listeners[event]

    def remove_all_listeners(self, event: str | None = None) -> "EventEmitter":
        if event is None:
            self._listeners.clear()
            self._once_wrappers.clear()
        else:
            self._listeners.pop(event, None)
            for key in [k for k in self._once_wrappers if k[0] == event]:
                del self._once_wrappers[key]
        return self

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))

    def emit(self, event: str, *args: Any) -> bool:
        """
        Call every listener registered for event, in order.

        Exceptions raised by a listener are logged and do not stop dispatch
        to the remaining listeners.

        Returns:
            True if the event had listeners, False otherwise
        """
        listeners = list(self._listeners.get(event, ()))
        if not listeners:
            return False

        for listener in listeners:
            try:
                result = listener(*args)
            except Exception as e:
                logger.error(f"[{self._owner}] Listener for '{event}' failed: {e}", exc_info=True)
                continue
            if inspect.isawaitable(result):
                self._schedule(event, result)
        return True

    async def emit_async(self, event: str, *args: Any) -> bool:
        """Like emit(), but awaits async listeners before returning."""
        listeners = list(self._listeners.get(event, ()))
        if not listeners:
            return False

        async def run(listener: Listener) -> None:
            try:
                result = listener(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"[{self._owner}] Handler for '{event}' failed: {e}", exc_info=True)

        await asyncio.gather(*(run(listener) for listener in listeners))
        return True

    def _schedule(self, event: str, awaitable: Any) -> None:
        task = asyncio.ensure_future(awaitable)

        def _done(t: "asyncio.Future[Any]") -> None:
            if t.cancelled():
                return
            exc = t.exception()
            if exc is not None:
                logger.error(f"[{self._owner}] Async listener for '{event}' failed: {exc}")

        task.add_done_callback(_done)
