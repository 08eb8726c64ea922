"""
Pytest fixtures for lead queue tests.
"""

import asyncio
import os
from datetime import datetime, timedelta, timezone

import pytest
from httpx import ASGITransport, AsyncClient

# Ensure test config is set before importing leadqueue modules.
os.environ.setdefault("LEADQUEUE_ALLOW_INSECURE_DEV", "true")
os.environ.setdefault("LEADQUEUE_ENV", "development")
os.environ.setdefault("LEADQUEUE_STORE_BACKEND", "memory")

from leadqueue.engine import InMemoryRecordSource, IntakeRecord, LeaseEngine
from leadqueue.observability.metrics import metrics
from leadqueue.store import InMemoryLeaseStore

pytest_plugins = ("pytest_asyncio",)

T0 = datetime(2026, 3, 2, 14, 0, 0, tzinfo=timezone.utc)


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


async def wait_until(predicate, timeout: float = 1.0, interval: float = 0.005) -> None:
    """Poll ``predicate`` until it holds; fail the test on timeout."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(interval)


def make_records() -> list[IntakeRecord]:
    """Six intake records, highest priority first."""
    return [
        IntakeRecord(record_id="R123", fields={"status": "New", "case_type": "Auto"}),
        IntakeRecord(record_id="R124", fields={"status": "New", "case_type": "Premises"}),
        IntakeRecord(record_id="R125", fields={"status": "Callback", "case_type": "Auto"}),
        IntakeRecord(record_id="R126", fields={"status": "New", "case_type": "Auto"}),
        IntakeRecord(record_id="R127", fields={"status": "Callback", "case_type": "Premises"}),
        IntakeRecord(record_id="R128", fields={"status": "New", "case_type": "Auto"}),
    ]


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def store(clock):
    return InMemoryLeaseStore(clock=clock)


@pytest.fixture
def records():
    return InMemoryRecordSource(make_records())


@pytest.fixture
def engine(store, records):
    return LeaseEngine(store, records, lease_ttl_seconds=1800)


@pytest.fixture
async def client(engine):
    """Async test client with the lease engine overridden."""
    from leadqueue.api.deps import get_lease_engine
    from leadqueue.main import app

    async def override_get_lease_engine():
        return engine

    app.dependency_overrides[get_lease_engine] = override_get_lease_engine

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
