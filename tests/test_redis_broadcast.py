"""
Redis broadcast channel tests: refresh signals between separate processes.

Run against a real server by setting LEADQUEUE_TEST_REDIS_URL, e.g.
redis://localhost:6379/15. Skipped otherwise.
"""

import asyncio
import os
from uuid import uuid4

import pytest

from conftest import wait_until
from leadqueue.bus import RedisBroadcastChannel, RefreshBus
from leadqueue.models import RefreshAction
from leadqueue.observability.metrics import metrics

REDIS_URL = os.getenv("LEADQUEUE_TEST_REDIS_URL")

pytestmark = pytest.mark.skipif(not REDIS_URL, reason="LEADQUEUE_TEST_REDIS_URL not set")


@pytest.fixture
def channel_name():
    return f"leadqueue-test-{uuid4().hex[:8]}"


def make_bus(channel_name):
    calls = []

    async def refresh():
        calls.append(1)

    bus = RefreshBus(
        [RedisBroadcastChannel(REDIS_URL, channel_name)],
        on_refresh=refresh,
        debounce_seconds=0.05,
    )
    return bus, calls


@pytest.mark.asyncio
async def test_signal_reaches_session_on_separate_connection(channel_name):
    bus_a, calls_a = make_bus(channel_name)
    bus_b, calls_b = make_bus(channel_name)
    await bus_a.connect()
    await bus_b.connect()
    try:
        assert [c.name for c in bus_b.connected_channels] == ["redis-broadcast"]

        await bus_a.publish(RefreshAction.ASSIGN)
        await wait_until(lambda: calls_b == [1], timeout=2.0)

        # Redis echoes the publisher's own message; the bus drops it.
        await wait_until(lambda: metrics.counter("bus.signals.suppressed") == 1, timeout=2.0)
        await asyncio.sleep(0.15)
        assert calls_a == []
    finally:
        await bus_a.teardown()
        await bus_b.teardown()


@pytest.mark.asyncio
async def test_unrelated_channel_name_is_not_heard(channel_name):
    bus_a, _ = make_bus(channel_name)
    bus_b, calls_b = make_bus(f"{channel_name}-other")
    await bus_a.connect()
    await bus_b.connect()
    try:
        await bus_a.publish(RefreshAction.RELEASE)
        await asyncio.sleep(0.2)
        assert calls_b == []
    finally:
        await bus_a.teardown()
        await bus_b.teardown()


@pytest.mark.asyncio
async def test_close_is_idempotent(channel_name):
    channel = RedisBroadcastChannel(REDIS_URL, channel_name)
    await channel.connect(lambda signal: None)
    assert channel.listening

    await channel.close()
    await channel.close()
    assert not channel.listening
    assert metrics.counter("bus.channel.errors") == 0
