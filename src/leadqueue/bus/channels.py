"""Notification channels feeding the refresh bus.

Each channel is optional and best-effort. The bus only sees parsed
``RefreshSignal`` objects; how a channel moves bytes is its own business.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from itertools import count
from typing import Any, Callable, Iterable, Optional, Protocol
from uuid import uuid4

import redis.asyncio as aioredis
from pydantic import ValidationError

from leadqueue.models import ChangeEvent, RefreshAction, RefreshSignal
from leadqueue.observability.metrics import metrics

logger = logging.getLogger(__name__)

SignalHandler = Callable[[RefreshSignal], None]


class NotificationChannel(ABC):
    """A source and/or sink of refresh signals."""

    name: str = "channel"

    @abstractmethod
    async def connect(self, handler: SignalHandler) -> None:
        """Start delivering inbound signals to ``handler``."""

    @abstractmethod
    async def publish(self, signal: RefreshSignal) -> None:
        """Send ``signal`` to other listeners on this channel."""

    @abstractmethod
    async def close(self) -> None:
        """Stop delivering and release resources."""


# ============================================================================
# In-process pub/sub (same session, cross-component)
# ============================================================================


@dataclass(frozen=True)
class Subscription:
    topic: str
    subscription_id: int


class MessageHub:
    """Application-scoped topic pub/sub; subscribers include the publisher."""

    def __init__(self) -> None:
        self._subscribers: dict[str, dict[int, Callable[[Any], None]]] = {}
        self._ids = count(1)

    def subscribe(self, topic: str, callback: Callable[[Any], None]) -> Subscription:
        subscription = Subscription(topic=topic, subscription_id=next(self._ids))
        self._subscribers.setdefault(topic, {})[subscription.subscription_id] = callback
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        self._subscribers.get(subscription.topic, {}).pop(subscription.subscription_id, None)

    def publish(self, topic: str, payload: Any) -> None:
        for callback in list(self._subscribers.get(topic, {}).values()):
            try:
                callback(payload)
            except Exception as e:
                logger.warning(f"Subscriber on {topic} failed: {e}")


class PubSubChannel(NotificationChannel):
    """Refresh signals over a shared ``MessageHub`` topic."""

    name = "pubsub"

    def __init__(self, hub: MessageHub, topic: str = "LeadQueueRefresh__c"):
        self.hub = hub
        self.topic = topic
        self._subscription: Optional[Subscription] = None

    async def connect(self, handler: SignalHandler) -> None:
        if self._subscription is not None:
            return

        def on_message(payload: Any) -> None:
            signal = RefreshSignal.from_payload(payload)
            if signal is not None:
                handler(signal)

        self._subscription = self.hub.subscribe(self.topic, on_message)

    async def publish(self, signal: RefreshSignal) -> None:
        self.hub.publish(self.topic, signal.to_payload())

    async def close(self) -> None:
        if self._subscription is None:
            return
        self.hub.unsubscribe(self._subscription)
        self._subscription = None


# ============================================================================
# Broadcast (cross-tab, low-level)
# ============================================================================


class BroadcastPort:
    """One context's handle on a named broadcast channel."""

    def __init__(self, hub: "BroadcastHub", name: str):
        self.hub = hub
        self.name = name
        self.on_message: Optional[Callable[[Any], None]] = None
        self.closed = False

    def post_message(self, data: Any) -> None:
        if self.closed:
            raise RuntimeError(f"Broadcast port {self.name} is closed")
        self.hub.deliver(self, data)

    def close(self) -> None:
        self.closed = True
        self.hub.detach(self)


class BroadcastHub:
    """
    Named broadcast primitive shared by every context in the process.

    A message reaches every other open port with the same name, never the
    sender's own port, and is delivered on the next loop iteration.
    """

    def __init__(self) -> None:
        self._ports: dict[str, list[BroadcastPort]] = {}

    def open(self, name: str) -> BroadcastPort:
        port = BroadcastPort(self, name)
        self._ports.setdefault(name, []).append(port)
        return port

    def detach(self, port: BroadcastPort) -> None:
        ports = self._ports.get(port.name, [])
        if port in ports:
            ports.remove(port)

    def deliver(self, sender: BroadcastPort, data: Any) -> None:
        loop = asyncio.get_running_loop()
        for port in list(self._ports.get(sender.name, [])):
            if port is sender or port.on_message is None:
                continue
            loop.call_soon(self._dispatch, port, data)

    @staticmethod
    def _dispatch(port: BroadcastPort, data: Any) -> None:
        if port.closed or port.on_message is None:
            return
        try:
            port.on_message(data)
        except Exception as e:
            logger.warning(f"Broadcast listener on {port.name} failed: {e}")


class BroadcastChannel(NotificationChannel):
    """Refresh signals over a ``BroadcastHub`` port."""

    name = "broadcast"

    def __init__(self, hub: BroadcastHub, channel_name: str = "leadQueueRefresh"):
        self.hub = hub
        self.channel_name = channel_name
        self._port: Optional[BroadcastPort] = None

    async def connect(self, handler: SignalHandler) -> None:
        if self._port is not None:
            return

        def on_message(data: Any) -> None:
            signal = RefreshSignal.from_payload(data)
            if signal is not None:
                handler(signal)

        self._port = self.hub.open(self.channel_name)
        self._port.on_message = on_message

    async def publish(self, signal: RefreshSignal) -> None:
        if self._port is None:
            return
        self._port.post_message(signal.to_payload())

    async def close(self) -> None:
        if self._port is None:
            return
        self._port.close()
        self._port = None


class RedisBroadcastChannel(NotificationChannel):
    """
    Refresh signals over Redis pub/sub, for sessions in separate processes.

    Redis echoes a publisher's own messages back to it; the bus's
    self-suppression takes care of those.
    """

    name = "redis-broadcast"

    def __init__(
        self,
        redis_url: Optional[str] = None,
        channel_name: str = "leadQueueRefresh",
        client: Optional[aioredis.Redis] = None,
    ):
        if client is None and not redis_url:
            raise ValueError("redis_url or client required for RedisBroadcastChannel")
        self._owns_client = client is None
        self.redis = client or aioredis.from_url(redis_url, decode_responses=True)
        self.channel_name = channel_name
        self._pubsub = None
        self._listener: Optional[asyncio.Task] = None
        self._closed = False

    async def connect(self, handler: SignalHandler) -> None:
        if self._pubsub is not None:
            return
        pubsub = self.redis.pubsub(ignore_subscribe_messages=True)
        await pubsub.subscribe(self.channel_name)
        self._pubsub = pubsub
        self._listener = asyncio.create_task(self._listen(pubsub, handler))

    async def _listen(self, pubsub, handler: SignalHandler) -> None:
        try:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                signal = RefreshSignal.from_payload(message.get("data"))
                if signal is not None:
                    handler(signal)
        except Exception as e:
            metrics.inc_counter("bus.channel.errors", channel=self.name, op="listen")
            logger.warning(f"Refresh channel {self.name} stopped listening: {e}")

    @property
    def listening(self) -> bool:
        return self._listener is not None and not self._listener.done()

    async def publish(self, signal: RefreshSignal) -> None:
        await self.redis.publish(self.channel_name, signal.to_json())

    async def close(self) -> None:
        """Stop listening and drop the subscription. Idempotent."""
        if self._closed:
            return
        self._closed = True
        if self._listener is not None:
            listener, self._listener = self._listener, None
            listener.cancel()
            try:
                await listener
            except asyncio.CancelledError:
                pass
        try:
            if self._pubsub is not None:
                pubsub, self._pubsub = self._pubsub, None
                await pubsub.unsubscribe(self.channel_name)
                await pubsub.aclose()
        finally:
            if self._owns_client:
                await self.redis.aclose()


# ============================================================================
# Storage-write observation (cross-tab, redundant with broadcast)
# ============================================================================


@dataclass(frozen=True)
class StorageEvent:
    key: str
    old_value: Optional[str]
    new_value: Optional[str]


class SignalStorage:
    """
    Shared key-value storage whose writes are observed by other contexts.

    As with browser storage events, the writing context is not notified of
    its own write.
    """

    def __init__(self) -> None:
        self._items: dict[str, str] = {}
        self._listeners: dict[str, Callable[[StorageEvent], None]] = {}

    def add_listener(self, callback: Callable[[StorageEvent], None]) -> str:
        token = uuid4().hex
        self._listeners[token] = callback
        return token

    def remove_listener(self, token: str) -> None:
        self._listeners.pop(token, None)

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str, writer: Optional[str] = None) -> None:
        old_value = self._items.get(key)
        self._items[key] = value
        event = StorageEvent(key=key, old_value=old_value, new_value=value)
        for token, callback in list(self._listeners.items()):
            if token == writer:
                continue
            try:
                callback(event)
            except Exception as e:
                logger.warning(f"Storage listener failed: {e}")


class StorageSignalChannel(NotificationChannel):
    """Refresh signals written as JSON under one ``SignalStorage`` key."""

    name = "storage"

    def __init__(self, storage: SignalStorage, key: str = "leadQueueRefresh"):
        self.storage = storage
        self.key = key
        self._token: Optional[str] = None

    async def connect(self, handler: SignalHandler) -> None:
        if self._token is not None:
            return

        def on_storage(event: StorageEvent) -> None:
            if event.key != self.key or not event.new_value:
                return
            signal = RefreshSignal.from_payload(event.new_value)
            if signal is not None:
                handler(signal)

        self._token = self.storage.add_listener(on_storage)

    async def publish(self, signal: RefreshSignal) -> None:
        self.storage.set_item(self.key, signal.to_json(), writer=self._token)

    async def close(self) -> None:
        if self._token is None:
            return
        self.storage.remove_listener(self._token)
        self._token = None


# ============================================================================
# Server change feed (inbound only)
# ============================================================================


class ChangeFeed(Protocol):
    """Server change-data-capture subscription service."""

    async def subscribe(self, channel: str, callback: Callable[[Any], None]) -> Any:
        ...

    async def unsubscribe(self, subscription: Any) -> None:
        ...


class InMemoryChangeFeed:
    """Change feed driven by ``emit``; used by the dev server and tests."""

    def __init__(self) -> None:
        self._hub = MessageHub()

    async def subscribe(self, channel: str, callback: Callable[[Any], None]) -> Subscription:
        return self._hub.subscribe(channel, callback)

    async def unsubscribe(self, subscription: Subscription) -> None:
        self._hub.unsubscribe(subscription)

    def emit(self, channel: str, event: ChangeEvent | dict[str, Any]) -> None:
        self._hub.publish(channel, event)


class ChangeFeedChannel(NotificationChannel):
    """
    Change-feed deliveries turned into ``unknown-change`` signals.

    Update events are dropped unless they touch a field in the relevant-field
    allow-list, which bounds reconciliation load under unrelated edits.
    """

    name = "change-feed"

    def __init__(
        self,
        feed: ChangeFeed,
        channel: str,
        relevant_fields: Iterable[str],
    ):
        self.feed = feed
        self.channel = channel
        self.relevant_fields = frozenset(relevant_fields)
        self._subscription: Any = None

    def _parse(self, message: Any) -> Optional[ChangeEvent]:
        if isinstance(message, ChangeEvent):
            return message
        if not isinstance(message, dict):
            return None
        data = message.get("data")
        payload = data.get("payload", message) if isinstance(data, dict) else message
        header = payload.get("ChangeEventHeader", payload)
        if not isinstance(header, dict):
            return None
        try:
            return ChangeEvent(
                change_type=header.get("changeType", header.get("change_type")),
                changed_fields=header.get("changedFields", header.get("changed_fields")),
                record_ids=header.get("recordIds", header.get("record_ids")) or [],
            )
        except (ValidationError, TypeError):
            return None

    async def connect(self, handler: SignalHandler) -> None:
        if self._subscription is not None:
            return

        def on_change(message: Any) -> None:
            event = self._parse(message)
            if event is None:
                return
            if not event.touches(self.relevant_fields):
                metrics.inc_counter("bus.changes.ignored")
                return
            handler(RefreshSignal(action=RefreshAction.UNKNOWN_CHANGE, source=self.name))

        self._subscription = await self.feed.subscribe(self.channel, on_change)

    async def publish(self, signal: RefreshSignal) -> None:
        return None

    async def close(self) -> None:
        if self._subscription is None:
            return
        subscription, self._subscription = self._subscription, None
        await self.feed.unsubscribe(subscription)
