"""Refresh bus and its notification channels."""

from leadqueue.bus.channels import (
    BroadcastChannel,
    BroadcastHub,
    ChangeFeed,
    ChangeFeedChannel,
    InMemoryChangeFeed,
    MessageHub,
    NotificationChannel,
    PubSubChannel,
    RedisBroadcastChannel,
    SignalStorage,
    StorageSignalChannel,
)
from leadqueue.bus.deferred import DeferredTask
from leadqueue.bus.refresh_bus import RefreshBus, new_origin_id

__all__ = [
    "BroadcastChannel",
    "BroadcastHub",
    "ChangeFeed",
    "ChangeFeedChannel",
    "DeferredTask",
    "InMemoryChangeFeed",
    "MessageHub",
    "NotificationChannel",
    "PubSubChannel",
    "RedisBroadcastChannel",
    "RefreshBus",
    "SignalStorage",
    "StorageSignalChannel",
    "new_origin_id",
]
