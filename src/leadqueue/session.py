"""Session wiring - one viewer's bus, assignment client and view model."""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

from leadqueue.assignment import AssignmentClient, LeaseService, QueueDataService
from leadqueue.bus import (
    BroadcastChannel,
    BroadcastHub,
    ChangeFeedChannel,
    InMemoryChangeFeed,
    MessageHub,
    NotificationChannel,
    PubSubChannel,
    RedisBroadcastChannel,
    RefreshBus,
    SignalStorage,
    StorageSignalChannel,
)
from leadqueue.config import settings
from leadqueue.queue import HoldTimer, QueueViewModel

logger = logging.getLogger(__name__)


class SessionService(LeaseService, QueueDataService, Protocol):
    """A service that answers both lease and queue queries for one holder."""


@dataclass
class SharedSignals:
    """
    Signal primitives shared by every session in one process.

    Sessions built from the same ``SharedSignals`` behave like browser tabs of
    one user agent: they see each other's broadcasts, storage writes and
    pub/sub messages, and all of them receive the server change feed.
    With ``redis_url`` set, sessions in other processes are reached over
    Redis pub/sub as well.
    """

    hub: MessageHub = field(default_factory=MessageHub)
    broadcast: BroadcastHub = field(default_factory=BroadcastHub)
    storage: SignalStorage = field(default_factory=SignalStorage)
    change_feed: Any = field(default_factory=InMemoryChangeFeed)
    redis_url: Optional[str] = field(default_factory=lambda: settings.redis_url)

    def channels(self) -> list[NotificationChannel]:
        """A fresh set of channels for one session."""
        channels: list[NotificationChannel] = [
            PubSubChannel(self.hub),
            BroadcastChannel(self.broadcast, settings.broadcast_channel_name),
            StorageSignalChannel(self.storage, settings.storage_signal_key),
            ChangeFeedChannel(
                self.change_feed,
                settings.change_feed_channel,
                settings.change_feed_relevant_fields,
            ),
        ]
        if self.redis_url:
            channels.append(RedisBroadcastChannel(self.redis_url, settings.broadcast_channel_name))
        return channels


class QueueSession:
    """
    One viewer session.

    The bus announces this session's claims and releases and turns every
    other session's announcements into a debounced reconciliation of the view
    model.
    """

    def __init__(
        self,
        service: SessionService,
        channels: list[NotificationChannel],
        origin_id: Optional[str] = None,
        timer: Optional[HoldTimer] = None,
        refresh_debounce_seconds: Optional[float] = None,
        **view_options: Any,
    ):
        self.service = service
        self.bus = RefreshBus(
            channels,
            origin_id=origin_id,
            debounce_seconds=refresh_debounce_seconds,
        )
        self.client = AssignmentClient(service, publisher=self.bus)
        self.view_model = QueueViewModel(self.client, service, timer=timer, **view_options)
        self.bus.on_refresh = self.view_model.reconcile

    @property
    def origin_id(self) -> str:
        return self.bus.origin_id

    async def start(self) -> None:
        await self.bus.connect()
        await self.view_model.start()
        logger.info(f"Queue session {self.origin_id} started")

    async def teardown(self) -> None:
        """Disconnect the bus, then stop every loop. Idempotent."""
        await self.bus.teardown()
        await self.view_model.teardown()

    async def __aenter__(self) -> "QueueSession":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.teardown()
