"""Hold timer - live "time held" display derived from lease timestamps."""

import logging
from datetime import datetime
from typing import Callable, Iterable, Optional

from leadqueue.config import settings
from leadqueue.models import QueueRecord
from leadqueue.tasks.periodic import PeriodicTask
from leadqueue.utils.time import ensure_aware, utc_now

logger = logging.getLogger(__name__)

TickListener = Callable[[dict[str, str]], None]


def elapsed_seconds(acquired_at: datetime, now: datetime) -> int:
    """Whole seconds since ``acquired_at``, never negative (clock skew)."""
    delta = (ensure_aware(now) - ensure_aware(acquired_at)).total_seconds()
    return max(0, int(delta))


def format_hold_time(seconds: int) -> str:
    """``MM:SS`` with unbounded minutes."""
    minutes, secs = divmod(max(0, seconds), 60)
    return f"{minutes:02d}:{secs:02d}"


class HoldTimer:
    """
    Ticks once per ``tick_seconds`` while any visible record is leased.

    The projection decides which leases exist; the timer only turns their
    ``acquired_at`` into a display string. ``sync`` must be called with every
    new projection so the tick starts and stops with the leases.
    """

    def __init__(
        self,
        tick_seconds: Optional[float] = None,
        clock: Callable[[], datetime] = utc_now,
        on_tick: Optional[TickListener] = None,
    ):
        self.clock = clock
        self._listeners: list[TickListener] = [on_tick] if on_tick else []
        self._leased: dict[str, datetime] = {}
        self.hold_times: dict[str, str] = {}
        self._ticker = PeriodicTask(
            "hold-timer",
            settings.timer_tick_seconds if tick_seconds is None else tick_seconds,
            self.tick,
        )

    @property
    def running(self) -> bool:
        return self._ticker.running

    def add_listener(self, listener: TickListener) -> None:
        self._listeners.append(listener)

    def display_for(self, record: QueueRecord) -> str:
        if not record.is_leased or record.acquired_at is None:
            return ""
        return format_hold_time(elapsed_seconds(record.acquired_at, self.clock()))

    async def sync(self, projection: Iterable[QueueRecord]) -> None:
        """Adopt a new projection; start or stop ticking to match it."""
        self._leased = {
            record.record_id: record.acquired_at
            for record in projection
            if record.is_leased and record.acquired_at is not None
        }
        self.tick()
        if self._leased and not self._ticker.running:
            self._ticker.start()
            logger.debug(f"Hold timer started for {len(self._leased)} leased record(s)")
        elif not self._leased and self._ticker.running:
            await self._ticker.stop()
            logger.debug("Hold timer stopped, no leased records visible")

    def tick(self) -> None:
        now = self.clock()
        self.hold_times = {
            record_id: format_hold_time(elapsed_seconds(acquired_at, now))
            for record_id, acquired_at in self._leased.items()
        }
        for listener in list(self._listeners):
            try:
                listener(dict(self.hold_times))
            except Exception as e:
                logger.warning(f"Hold timer listener failed: {e}")

    async def stop(self) -> None:
        self._leased = {}
        self.hold_times = {}
        await self._ticker.stop()
