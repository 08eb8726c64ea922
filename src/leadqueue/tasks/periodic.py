"""Periodic background loops (poll, health probe, hold-timer tick)."""

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class PeriodicTask:
    """
    Run ``callback`` every ``interval`` seconds until stopped.

    The first run happens one interval after ``start`` unless
    ``run_immediately`` is set. Callback errors are logged and the loop
    carries on. With ``jitter`` the interval is randomized by +/-20% so many
    sessions started together do not poll in lockstep.
    """

    def __init__(
        self,
        name: str,
        interval: float,
        callback: Callable[[], Awaitable[Any] | Any],
        jitter: bool = False,
        run_immediately: bool = False,
    ):
        self.name = name
        self.interval = interval
        self.callback = callback
        self.jitter = jitter
        self.run_immediately = run_immediately
        self._task: Optional[asyncio.Task] = None
        self._shutdown_event: Optional[asyncio.Event] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _next_interval(self) -> float:
        if not self.jitter:
            return self.interval
        return self.interval * random.uniform(0.8, 1.2)

    async def _loop(self, shutdown: asyncio.Event) -> None:
        logger.debug(f"{self.name} loop started (interval: {self.interval}s)")
        first = True
        while not shutdown.is_set():
            if not (first and self.run_immediately):
                try:
                    await asyncio.wait_for(shutdown.wait(), timeout=self._next_interval())
                    break
                except asyncio.TimeoutError:
                    pass
            first = False
            try:
                result = self.callback()
                if asyncio.iscoroutine(result) or isinstance(result, asyncio.Future):
                    await result
            except Exception as e:
                logger.error(f"{self.name} error: {e}", exc_info=True)
        logger.debug(f"{self.name} loop stopped")

    def start(self) -> None:
        """Start the loop; no-op while already running."""
        if self.running:
            return
        self._shutdown_event = asyncio.Event()
        self._task = asyncio.create_task(self._loop(self._shutdown_event))

    async def stop(self, timeout: float = 5.0) -> None:
        """Stop the loop, cancelling it if it does not finish in ``timeout``."""
        task, shutdown = self._task, self._shutdown_event
        self._task = None
        self._shutdown_event = None
        if shutdown:
            shutdown.set()
        if task is None:
            return
        try:
            await asyncio.wait_for(task, timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"{self.name} did not stop gracefully, cancelling")
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
