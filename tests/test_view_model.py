"""
Queue view model tests: latest-wins reconciliation, filter debounce,
assignment notifications, store degradation and the cross-tab flow.
"""

import asyncio

import pytest

from conftest import T0, wait_until
from leadqueue.assignment import AssignmentClient, EngineLeaseService
from leadqueue.engine import LeaseEngine
from leadqueue.models import NoticeLevel, QueuePage, QueueRecord, ViewState
from leadqueue.observability.metrics import metrics
from leadqueue.queue import HoldTimer, QueueViewModel
from leadqueue.session import QueueSession, SharedSignals

FAST = dict(
    filter_debounce_seconds=0.03,
    notify_delay_seconds=0.01,
    poll_interval_seconds=60,
    health_probe_interval_seconds=60,
)


def page_of(*record_ids):
    return QueuePage(
        records=[QueueRecord(record_id=r, priority_rank=i) for i, r in enumerate(record_ids, 1)],
        total_records=len(record_ids),
        stats={"total_records": len(record_ids), "assigned_count": 0},
    )


class ScriptedQueue:
    """Queue data service whose responses the test releases one by one."""

    def __init__(self):
        self.calls = []

    async def fetch_queue(self, filters):
        future = asyncio.get_running_loop().create_future()
        self.calls.append((filters, future))
        return await future

    def respond(self, index, page):
        self.calls[index][1].set_result(page)

    def fail(self, index, error):
        self.calls[index][1].set_exception(error)


class FlakyStore:
    """Wraps a lease store; ``up`` toggles whether it answers pings."""

    def __init__(self, inner):
        self.inner = inner
        self.up = True

    def __getattr__(self, name):
        return getattr(self.inner, name)

    async def ping(self):
        return self.up


@pytest.fixture
def assignment(engine):
    return AssignmentClient(EngineLeaseService(engine, "user-a"))


@pytest.fixture
async def scripted_model(assignment):
    queue = ScriptedQueue()
    model = QueueViewModel(assignment, queue, **FAST)
    yield model, queue
    await model.teardown()


@pytest.fixture
async def engine_model(engine, clock):
    service = EngineLeaseService(engine, "user-a")
    model = QueueViewModel(
        AssignmentClient(service),
        service,
        timer=HoldTimer(tick_seconds=0.02, clock=clock),
        **FAST,
    )
    yield model
    await model.teardown()


@pytest.mark.asyncio
async def test_late_response_for_earlier_request_is_discarded(scripted_model):
    model, queue = scripted_model
    first = asyncio.create_task(model.reconcile())
    second = asyncio.create_task(model.reconcile())
    await wait_until(lambda: len(queue.calls) == 2)

    queue.respond(1, page_of("B1", "B2"))
    assert await second is True
    queue.respond(0, page_of("A1"))
    assert await first is False

    assert [r.record_id for r in model.projection] == ["B1", "B2"]
    assert model.state == ViewState.READY
    assert metrics.counter("queue.reconcile.stale") == 1
    assert metrics.counter("queue.reconcile.applied") == 1


@pytest.mark.asyncio
async def test_filter_change_while_reconcile_in_flight(scripted_model):
    model, queue = scripted_model
    in_flight = asyncio.create_task(model.reconcile())
    await wait_until(lambda: len(queue.calls) == 1)

    model.set_filters(status="Callback")
    queue.respond(0, page_of("R123", "R124"))
    assert await in_flight is False
    assert model.projection == ()
    assert model.is_loading

    await wait_until(lambda: len(queue.calls) == 2)
    assert queue.calls[1][0].status == "Callback"
    queue.respond(1, page_of("R125"))
    await wait_until(lambda: model.state == ViewState.READY)
    assert [r.record_id for r in model.projection] == ["R125"]


@pytest.mark.asyncio
async def test_rapid_filter_changes_collapse_into_one_reconcile(scripted_model):
    model, queue = scripted_model
    model.set_filters(status="New")
    model.set_filters(case_type="Auto")
    model.set_filters(status="Callback")

    await wait_until(lambda: len(queue.calls) == 1)
    await asyncio.sleep(0.1)
    assert len(queue.calls) == 1
    filters = queue.calls[0][0]
    assert (filters.status, filters.case_type) == ("Callback", "Auto")
    queue.respond(0, page_of())


@pytest.mark.asyncio
async def test_unknown_filter_is_rejected(scripted_model):
    model, _ = scripted_model
    with pytest.raises(ValueError):
        model.set_filters(owner="me")


@pytest.mark.asyncio
async def test_failed_reconcile_keeps_previous_projection(scripted_model):
    model, queue = scripted_model
    notices = []
    model.add_notice_listener(notices.append)

    task = asyncio.create_task(model.reconcile())
    await wait_until(lambda: len(queue.calls) == 1)
    queue.respond(0, page_of("R1"))
    assert await task is True

    task = asyncio.create_task(model.reconcile())
    await wait_until(lambda: len(queue.calls) == 2)
    queue.fail(1, RuntimeError("connection reset"))
    assert await task is False

    assert model.state == ViewState.ERROR
    assert model.error_state.code == "TRANSIENT_NETWORK_ERROR"
    assert [r.record_id for r in model.projection] == ["R1"]
    assert notices[-1].level == NoticeLevel.ERROR
    assert model.store_available is True


@pytest.mark.asyncio
async def test_claim_notifies_assignment_change(engine_model, clock):
    changes = []
    engine_model.add_assignment_listener(changes.append)

    result = await engine_model.claim()
    assert result.success is True
    assert engine_model.holder_lease.record_id == "R123"
    assert engine_model.holder_lease.acquired_at == T0
    await wait_until(lambda: changes == [True])

    await engine_model.release()
    assert engine_model.holder_lease is None
    await wait_until(lambda: changes == [True, False])


@pytest.mark.asyncio
async def test_claim_while_holding_warns_and_reconciles(engine, engine_model):
    await engine.claim_specific("user-a", "R127")
    notices = []
    engine_model.add_notice_listener(notices.append)

    assert await engine_model.claim() is None
    assert notices[-1].level == NoticeLevel.WARNING
    assert engine_model.holder_lease.record_id == "R127"


@pytest.mark.asyncio
async def test_claim_of_taken_record_is_a_warning(engine, engine_model):
    await engine.claim_specific("user-b", "R124")
    result = await engine_model.claim("R124")
    assert result.success is False
    assert engine_model.last_notice.level == NoticeLevel.WARNING
    assert engine_model.holder_lease is None


@pytest.mark.asyncio
async def test_claim_refused_while_busy(engine_model):
    engine_model.is_releasing = True
    assert await engine_model.claim() is None
    engine_model.is_releasing = False
    engine_model.is_assigning = True
    assert await engine_model.release() is None


@pytest.mark.asyncio
async def test_hold_time_follows_acquired_at(engine_model, clock):
    await engine_model.claim("R126")
    assert engine_model.timer.running
    assert engine_model.snapshot().hold_times == {"R126": "00:00"}

    clock.advance(125)
    await wait_until(lambda: engine_model.timer.hold_times.get("R126") == "02:05")

    await engine_model.release()
    assert not engine_model.timer.running
    assert engine_model.snapshot().hold_times == {}


@pytest.mark.asyncio
async def test_store_outage_disables_claims_until_probe_succeeds(engine, records, clock):
    flaky = FlakyStore(engine.store)
    service = EngineLeaseService(LeaseEngine(flaky, records), "user-a")
    model = QueueViewModel(AssignmentClient(service), service, **FAST)
    notices = []
    model.add_notice_listener(notices.append)

    flaky.up = False
    await model.start()
    try:
        assert model.store_available is False
        assert notices[0].level == NoticeLevel.WARNING
        snapshot = model.snapshot()
        assert snapshot.can_claim is False
        assert snapshot.store_warning
        # Queue still shows, read-only.
        assert len(model.projection) == 6

        assert await model.claim() is None
        assert notices[-1].level == NoticeLevel.ERROR
        assert await engine.holder_lease("user-a") is None

        flaky.up = True
        assert await model.probe_store() is True
        assert model.store_available is True
        assert (await model.claim()).success is True
    finally:
        await model.teardown()


@pytest.mark.asyncio
async def test_teardown_drops_in_flight_response(scripted_model):
    model, queue = scripted_model
    task = asyncio.create_task(model.reconcile())
    await wait_until(lambda: len(queue.calls) == 1)

    await model.teardown()
    await model.teardown()
    queue.respond(0, page_of("R1"))
    assert await task is False
    assert model.projection == ()


@pytest.mark.asyncio
async def test_second_tab_sees_claim_from_first(engine, clock):
    """Holder claims R123 in one tab; the other tab reconciles to the same lease."""
    shared = SharedSignals()

    def open_tab():
        return QueueSession(
            EngineLeaseService(engine, "user-h"),
            shared.channels(),
            timer=HoldTimer(tick_seconds=0.05, clock=clock),
            refresh_debounce_seconds=0.03,
            **FAST,
        )

    async with open_tab() as tab_a, open_tab() as tab_b:
        assert tab_a.origin_id != tab_b.origin_id
        assert tab_b.view_model.holder_lease is None

        result = await tab_a.view_model.claim("R123")
        assert result.success is True
        assert result.acquired_at == T0

        await wait_until(lambda: tab_b.view_model.holder_lease is not None)
        for tab in (tab_a, tab_b):
            lease = tab.view_model.holder_lease
            assert (lease.record_id, lease.acquired_at) == ("R123", T0)
        row = next(r for r in tab_b.view_model.projection if r.record_id == "R123")
        assert row.holder_id == "user-h"

        # Releasing in tab B clears tab A through the same path.
        await tab_b.view_model.release()
        await wait_until(lambda: tab_a.view_model.holder_lease is None)


@pytest.mark.asyncio
async def test_change_feed_event_reconciles_session(engine, records, clock):
    shared = SharedSignals()
    session = QueueSession(
        EngineLeaseService(engine, "user-h"),
        shared.channels(),
        refresh_debounce_seconds=0.03,
        **FAST,
    )
    async with session:
        assert len(session.view_model.projection) == 6
        records.remove("R128")
        shared.change_feed.emit(
            "/data/litify_pm__Intake__ChangeEvent",
            {"ChangeEventHeader": {"changeType": "DELETE", "recordIds": ["R128"]}},
        )
        await wait_until(lambda: len(session.view_model.projection) == 5)


@pytest.mark.asyncio
async def test_assignment_flip_reverted_within_delay_is_not_announced(engine, clock):
    service = EngineLeaseService(engine, "user-a")
    model = QueueViewModel(
        AssignmentClient(service),
        service,
        timer=HoldTimer(tick_seconds=0.02, clock=clock),
        **{**FAST, "notify_delay_seconds": 0.1},
    )
    changes = []
    model.add_assignment_listener(changes.append)
    try:
        assert (await model.claim()).success is True
        await model.release()
        assert model.has_assignment is False

        await asyncio.sleep(0.2)
        assert changes == []

        await model.claim()
        await wait_until(lambda: changes == [True])
    finally:
        await model.teardown()


@pytest.mark.asyncio
async def test_poll_catches_up_without_any_channel(engine, clock):
    """With no push channel at all, the periodic poll still converges."""
    session = QueueSession(
        EngineLeaseService(engine, "user-a"),
        [],
        timer=HoldTimer(tick_seconds=0.05, clock=clock),
        **{**FAST, "poll_interval_seconds": 0.05},
    )
    async with session:
        assert session.bus.connected_channels == []
        assert session.view_model.holder_lease is None

        # Another process claims for this holder; nothing is announced here.
        await engine.claim_specific("user-a", "R125")
        await wait_until(lambda: session.view_model.holder_lease is not None)
        assert session.view_model.holder_lease.record_id == "R125"
        row = next(r for r in session.view_model.projection if r.record_id == "R125")
        assert row.holder_id == "user-a"

        await engine.release("user-a")
        await wait_until(lambda: session.view_model.holder_lease is None)
    assert metrics.counter("queue.reconcile.applied") >= 3
