"""
Refresh bus tests: self-suppression, coalescing, change-feed filtering and
channel failure isolation.
"""

import asyncio

import pytest

from conftest import wait_until
from leadqueue.bus import (
    BroadcastChannel,
    BroadcastHub,
    ChangeFeedChannel,
    DeferredTask,
    InMemoryChangeFeed,
    MessageHub,
    NotificationChannel,
    PubSubChannel,
    RedisBroadcastChannel,
    RefreshBus,
    SignalStorage,
    StorageSignalChannel,
)
from leadqueue.models import ChangeEvent, ChangeType, RefreshAction, RefreshSignal
from leadqueue.observability.metrics import metrics
from leadqueue.session import SharedSignals

DEBOUNCE = 0.05
FEED = "/data/TestChangeEvent"
RELEVANT = ["Status__c", "Priority_Score__c"]


class Counter:
    def __init__(self):
        self.calls = 0

    async def __call__(self):
        self.calls += 1


class BrokenChannel(NotificationChannel):
    name = "broken"

    def __init__(self, fail_connect=True, fail_publish=False):
        self.fail_connect = fail_connect
        self.fail_publish = fail_publish

    async def connect(self, handler):
        if self.fail_connect:
            raise ConnectionError("subscribe refused")

    async def publish(self, signal):
        if self.fail_publish:
            raise ConnectionError("publish refused")

    async def close(self):
        raise ConnectionError("close refused")


def make_bus(channels, origin_id=None):
    refresh = Counter()
    bus = RefreshBus(channels, on_refresh=refresh, origin_id=origin_id, debounce_seconds=DEBOUNCE)
    return bus, refresh


def foreign(action=RefreshAction.ASSIGN):
    return RefreshSignal(action=action, origin_id="other-tab", source="test")


@pytest.mark.asyncio
async def test_own_signal_is_suppressed():
    bus, refresh = make_bus([])
    await bus.connect()

    bus.handle_signal(RefreshSignal(action=RefreshAction.ASSIGN, origin_id=bus.origin_id))
    await asyncio.sleep(DEBOUNCE * 3)

    assert refresh.calls == 0
    assert metrics.counter("bus.signals.suppressed") == 1
    await bus.teardown()


@pytest.mark.asyncio
async def test_burst_of_signals_coalesces_into_one_refresh():
    bus, refresh = make_bus([])
    await bus.connect()

    for _ in range(5):
        bus.handle_signal(foreign())
    assert refresh.calls == 0
    assert bus.refresh_pending

    await asyncio.sleep(DEBOUNCE * 3)
    assert refresh.calls == 1
    assert metrics.counter("bus.reconcile.scheduled") == 1
    await bus.teardown()


@pytest.mark.asyncio
async def test_signal_after_refresh_schedules_another():
    bus, refresh = make_bus([])
    await bus.connect()

    bus.handle_signal(foreign())
    await asyncio.sleep(DEBOUNCE * 3)
    bus.handle_signal(foreign(RefreshAction.RELEASE))
    await asyncio.sleep(DEBOUNCE * 3)

    assert refresh.calls == 2
    await bus.teardown()


@pytest.mark.asyncio
async def test_cross_tab_publish_reaches_other_bus_once():
    """Three redundant channels deliver the same signal; one refresh results."""
    hub, broadcast, storage = MessageHub(), BroadcastHub(), SignalStorage()

    def channels():
        return [
            PubSubChannel(hub),
            BroadcastChannel(broadcast),
            StorageSignalChannel(storage),
        ]

    tab_a, refresh_a = make_bus(channels())
    tab_b, refresh_b = make_bus(channels())
    await tab_a.connect()
    await tab_b.connect()

    signal = await tab_a.publish(RefreshAction.ASSIGN)
    assert signal.origin_id == tab_a.origin_id
    await asyncio.sleep(DEBOUNCE * 3)

    assert refresh_a.calls == 0
    assert refresh_b.calls == 1
    assert storage.get_item("leadQueueRefresh") == signal.to_json()

    await tab_a.teardown()
    await tab_b.teardown()


@pytest.mark.asyncio
async def test_disjoint_update_does_not_refresh():
    feed = InMemoryChangeFeed()
    bus, refresh = make_bus([ChangeFeedChannel(feed, FEED, RELEVANT)])
    await bus.connect()

    feed.emit(FEED, ChangeEvent(change_type=ChangeType.UPDATE, changed_fields=["Description"]))
    feed.emit(FEED, ChangeEvent(change_type=ChangeType.UPDATE, changed_fields=[]))
    await asyncio.sleep(DEBOUNCE * 3)

    assert refresh.calls == 0
    assert metrics.counter("bus.changes.ignored") == 2
    await bus.teardown()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "event",
    [
        ChangeEvent(change_type=ChangeType.UPDATE, changed_fields=["Description", "Status__c"]),
        ChangeEvent(change_type=ChangeType.UPDATE, changed_fields=None),
        ChangeEvent(change_type=ChangeType.CREATE, changed_fields=["Description"]),
        ChangeEvent(change_type=ChangeType.DELETE),
    ],
)
async def test_relevant_change_refreshes(event):
    feed = InMemoryChangeFeed()
    bus, refresh = make_bus([ChangeFeedChannel(feed, FEED, RELEVANT)])
    await bus.connect()

    feed.emit(FEED, event)
    await asyncio.sleep(DEBOUNCE * 3)

    assert refresh.calls == 1
    await bus.teardown()


@pytest.mark.asyncio
async def test_change_feed_wire_shape_is_parsed():
    feed = InMemoryChangeFeed()
    bus, refresh = make_bus([ChangeFeedChannel(feed, FEED, RELEVANT)])
    await bus.connect()

    feed.emit(
        FEED,
        {
            "data": {
                "payload": {
                    "ChangeEventHeader": {
                        "changeType": "UPDATE",
                        "changedFields": ["Priority_Score__c"],
                        "recordIds": ["R123"],
                    }
                }
            }
        },
    )
    feed.emit(FEED, {"data": "garbage"})
    await asyncio.sleep(DEBOUNCE * 3)

    assert refresh.calls == 1
    await bus.teardown()


@pytest.mark.asyncio
async def test_failing_channel_does_not_stop_the_others():
    hub = MessageHub()
    bus, refresh = make_bus([BrokenChannel(), PubSubChannel(hub)])
    await bus.connect()

    assert [c.name for c in bus.connected_channels] == ["pubsub"]
    assert metrics.counter("bus.channel.errors") == 1
    assert metrics.counter("bus.channel.errors", channel="broken", op="connect") == 1

    hub.publish("LeadQueueRefresh__c", foreign().to_payload())
    await asyncio.sleep(DEBOUNCE * 3)
    assert refresh.calls == 1
    await bus.teardown()


@pytest.mark.asyncio
async def test_failing_publish_is_isolated():
    hub = MessageHub()
    received = []
    hub.subscribe("LeadQueueRefresh__c", received.append)

    bus, _ = make_bus([BrokenChannel(fail_connect=False, fail_publish=True), PubSubChannel(hub)])
    await bus.connect()

    await bus.publish(RefreshAction.RELEASE)
    assert len(received) == 1
    assert received[0]["action"] == "release"
    assert received[0]["originId"] == bus.origin_id

    # Close errors are logged, never raised.
    await bus.teardown()


@pytest.mark.asyncio
async def test_teardown_cancels_pending_refresh_and_is_idempotent():
    bus, refresh = make_bus([PubSubChannel(MessageHub())])
    await bus.connect()

    bus.handle_signal(foreign())
    await bus.teardown()
    await bus.teardown()
    bus.handle_signal(foreign())
    await asyncio.sleep(DEBOUNCE * 3)

    assert refresh.calls == 0
    assert bus.connected_channels == []


@pytest.mark.parametrize(
    "payload",
    ["not json", b"[1, 2]", 42, {"originId": None, "action": "bogus"}],
)
def test_unusable_payloads_are_dropped(payload):
    assert RefreshSignal.from_payload(payload) is None


def test_unknown_action_with_origin_reads_as_unknown_change():
    signal = RefreshSignal.from_payload('{"action": "reassign", "originId": "tab-9"}')
    assert signal.action == RefreshAction.UNKNOWN_CHANGE
    assert signal.origin_id == "tab-9"


@pytest.mark.asyncio
async def test_deferred_task_reschedule_keeps_last_request():
    calls = []
    task = DeferredTask("test", lambda: calls.append("fired"), DEBOUNCE)

    task.schedule()
    assert task.schedule() is False
    task.reschedule(DEBOUNCE * 2)
    await asyncio.sleep(DEBOUNCE * 1.5)
    assert calls == []
    await asyncio.sleep(DEBOUNCE * 1.5)
    assert calls == ["fired"]
    assert not task.pending


class DroppingPubSub:
    """Redis pub/sub stand-in that delivers one message, then loses the connection."""

    def __init__(self, payload):
        self.payload = payload
        self.closed = False

    async def subscribe(self, channel):
        pass

    async def listen(self):
        yield {"type": "subscribe", "data": 1}
        yield {"type": "message", "data": self.payload}
        raise ConnectionError("Connection closed by server.")

    async def unsubscribe(self, channel):
        pass

    async def aclose(self):
        self.closed = True


class DroppingRedis:
    def __init__(self, payload):
        self.pubsub_connection = DroppingPubSub(payload)

    def pubsub(self, ignore_subscribe_messages=False):
        return self.pubsub_connection

    async def publish(self, channel, data):
        return 1


@pytest.mark.asyncio
async def test_redis_connection_loss_is_logged_not_raised(caplog):
    redis = DroppingRedis(foreign().to_json())
    channel = RedisBroadcastChannel(client=redis)
    bus, refresh = make_bus([channel])
    await bus.connect()

    await wait_until(lambda: not channel.listening)
    await asyncio.sleep(DEBOUNCE * 3)
    assert refresh.calls == 1
    assert metrics.counter("bus.channel.errors", channel="redis-broadcast", op="listen") == 1
    assert "stopped listening" in caplog.text

    await bus.teardown()
    await channel.close()
    assert redis.pubsub_connection.closed
    assert metrics.counter("bus.channel.errors") == 1


@pytest.mark.asyncio
async def test_shared_signals_add_redis_broadcast_when_configured():
    assert "redis-broadcast" not in [c.name for c in SharedSignals(redis_url=None).channels()]

    channels = SharedSignals(redis_url="redis://localhost:6379/15").channels()
    assert channels[-1].name == "redis-broadcast"
    assert channels[-1].channel_name == "leadQueueRefresh"
    # Never connected; closing only drops the client.
    await channels[-1].close()
