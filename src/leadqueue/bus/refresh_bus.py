"""Refresh bus - many unreliable channels in, one debounced reconcile out."""

import logging
from typing import Any, Callable, Iterable, Optional
from uuid import uuid4

from leadqueue.bus.channels import NotificationChannel
from leadqueue.bus.deferred import DeferredTask
from leadqueue.config import settings
from leadqueue.models import RefreshAction, RefreshSignal
from leadqueue.observability.metrics import metrics
from leadqueue.utils.time import to_epoch_ms, utc_now

logger = logging.getLogger(__name__)


def new_origin_id() -> str:
    """Random token identifying one session (tab)."""
    return f"{to_epoch_ms(utc_now())}-{uuid4().hex[:12]}"


class RefreshBus:
    """
    Fan-in/fan-out over notification channels.

    Inbound:
    - signals carrying this bus's own ``origin_id`` are discarded
    - any other signal schedules ``on_refresh`` after ``debounce_seconds``;
      while a run is pending further signals are coalesced into it

    Outbound: ``publish`` tags a signal with ``origin_id`` and sends it on
    every connected channel.

    Channel failures (subscribe, publish, close) are logged and never reach
    the caller or stop the other channels.
    """

    def __init__(
        self,
        channels: Iterable[NotificationChannel],
        on_refresh: Optional[Callable[[], Any]] = None,
        origin_id: Optional[str] = None,
        source: Optional[str] = None,
        debounce_seconds: Optional[float] = None,
    ):
        self.channels = list(channels)
        self.on_refresh = on_refresh
        self.origin_id = origin_id or new_origin_id()
        self.source = source or settings.signal_source
        delay = settings.refresh_debounce_seconds if debounce_seconds is None else debounce_seconds
        self._pending = DeferredTask("refresh-bus", self._run_refresh, delay)
        self._connected: list[NotificationChannel] = []
        self._is_connected = False

    @property
    def connected_channels(self) -> list[NotificationChannel]:
        return list(self._connected)

    @property
    def refresh_pending(self) -> bool:
        return self._pending.pending

    async def connect(self) -> None:
        """Subscribe every channel; a channel that fails is skipped."""
        if self._is_connected:
            return
        self._is_connected = True
        for channel in self.channels:
            try:
                await channel.connect(self.handle_signal)
            except Exception as e:
                metrics.inc_counter("bus.channel.errors", channel=channel.name, op="connect")
                logger.warning(
                    f"Refresh channel {channel.name} unavailable, continuing without it: {e}"
                )
                continue
            self._connected.append(channel)
        logger.info(
            f"Refresh bus {self.origin_id} connected "
            f"({', '.join(c.name for c in self._connected) or 'no channels'})"
        )

    async def publish(self, action: RefreshAction) -> RefreshSignal:
        """Announce a local mutation to every other session."""
        signal = RefreshSignal(action=action, origin_id=self.origin_id, source=self.source)
        for channel in self._connected:
            try:
                await channel.publish(signal)
            except Exception as e:
                metrics.inc_counter("bus.channel.errors", channel=channel.name, op="publish")
                logger.warning(f"Publishing {action.value} on {channel.name} failed: {e}")
        return signal

    def handle_signal(self, signal: RefreshSignal) -> None:
        """Inbound entry point shared by every channel."""
        metrics.inc_counter("bus.signals.received")
        if signal.origin_id is not None and signal.origin_id == self.origin_id:
            metrics.inc_counter("bus.signals.suppressed")
            return
        if not self._is_connected:
            return
        if self._pending.schedule():
            metrics.inc_counter("bus.reconcile.scheduled")
            logger.debug(f"Reconcile scheduled by {signal.action.value} from {signal.source}")

    def _run_refresh(self) -> Any:
        if self.on_refresh is None:
            return None
        return self.on_refresh()

    async def teardown(self) -> None:
        """Cancel the pending refresh and close every channel. Idempotent."""
        self._pending.cancel()
        connected, self._connected = self._connected, []
        self._is_connected = False
        for channel in connected:
            try:
                await channel.close()
            except Exception as e:
                metrics.inc_counter("bus.channel.errors", channel=channel.name, op="close")
                logger.warning(f"Closing refresh channel {channel.name} failed: {e}")
