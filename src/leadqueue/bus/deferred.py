"""Single-slot deferred task."""

import asyncio
import inspect
import logging
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class DeferredTask:
    """
    One pending run of a callback, at most.

    ``schedule`` coalesces: while a run is pending, further requests are
    dropped (trailing debounce keyed on the first request). ``reschedule``
    replaces the pending run (last request wins). Cancelling only drops the
    pending run; a callback that already started is allowed to finish.
    """

    def __init__(self, name: str, callback: Callable[[], Any], delay: float):
        self.name = name
        self.delay = delay
        self._callback = callback
        self._handle: Optional[asyncio.TimerHandle] = None
        self._running: set[asyncio.Future] = set()

    @property
    def pending(self) -> bool:
        return self._handle is not None

    @property
    def running(self) -> bool:
        return bool(self._running)

    def schedule(self, delay: Optional[float] = None) -> bool:
        """Schedule a run unless one is already pending."""
        if self._handle is not None:
            return False
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay if delay is None else delay, self._fire)
        return True

    def reschedule(self, delay: Optional[float] = None) -> None:
        """Replace any pending run with a fresh one."""
        self.cancel()
        self.schedule(delay)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    async def drain(self) -> None:
        """Wait for callbacks that already started."""
        while self._running:
            await asyncio.gather(*list(self._running), return_exceptions=True)

    def _fire(self) -> None:
        self._handle = None
        try:
            result = self._callback()
        except Exception as e:
            logger.error(f"Deferred task {self.name} failed: {e}", exc_info=True)
            return
        if inspect.isawaitable(result):
            future = asyncio.ensure_future(result)
            self._running.add(future)
            future.add_done_callback(self._finished)

    def _finished(self, future: asyncio.Future) -> None:
        self._running.discard(future)
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error(f"Deferred task {self.name} failed: {error}", exc_info=error)
