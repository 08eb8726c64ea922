"""Queue view model - local projection of the queue and the holder's lease."""

import asyncio
import logging
from time import perf_counter
from typing import Callable, Optional

from leadqueue.assignment.client import AssignmentClient
from leadqueue.assignment.service import QueueDataService
from leadqueue.bus.deferred import DeferredTask
from leadqueue.config import settings
from leadqueue.engine.errors import (
    AlreadyHeld,
    LeadQueueError,
    StaleResponseDiscarded,
    StoreUnavailable,
    as_lead_queue_error,
)
from leadqueue.models import (
    ClaimResult,
    ErrorState,
    HolderLease,
    Notice,
    NoticeLevel,
    QueueFilters,
    QueuePage,
    QueueRecord,
    ReleaseResult,
    ViewSnapshot,
    ViewState,
)
from leadqueue.observability.metrics import metrics
from leadqueue.queue.timer import HoldTimer
from leadqueue.tasks.periodic import PeriodicTask

logger = logging.getLogger(__name__)

NoticeListener = Callable[[Notice], None]
AssignmentListener = Callable[[bool], None]


class InvalidViewTransition(RuntimeError):
    def __init__(self, current: ViewState, requested: ViewState):
        super().__init__(f"Invalid transition from {current.value} to {requested.value}")
        self.current = current
        self.requested = requested


class QueueViewModel:
    """
    One session's view of the queue.

    State machine: idle -> loading -> {ready, error}; ready/error -> loading
    on every reconciliation. Each reconciliation is tagged with a sequence
    number and its response is applied only if no later one was issued
    since, so a slow early response never overwrites a fast later one.
    Responses are dropped, not aborted.

    The projection is rebuilt wholesale from the queue data service and the
    lease service on every applied reconciliation; nothing is patched from
    assumptions about prior state.
    """

    def __init__(
        self,
        assignment: AssignmentClient,
        queue_data: QueueDataService,
        timer: Optional[HoldTimer] = None,
        filters: Optional[QueueFilters] = None,
        filter_debounce_seconds: Optional[float] = None,
        notify_delay_seconds: Optional[float] = None,
        poll_interval_seconds: Optional[float] = None,
        health_probe_interval_seconds: Optional[float] = None,
    ):
        self.assignment = assignment
        self.queue_data = queue_data
        self.timer = timer or HoldTimer()
        self.filters = filters or QueueFilters()
        self.filter_debounce_seconds = (
            settings.filter_debounce_seconds if filter_debounce_seconds is None else filter_debounce_seconds
        )

        self.state = ViewState.IDLE
        self.projection: tuple[QueueRecord, ...] = ()
        self.holder_lease: Optional[HolderLease] = None
        self.stats: dict[str, int] = {}
        self.total_records = 0
        self.error_state: Optional[ErrorState] = None
        self.store_available = True
        self.store_warning: Optional[str] = None
        self.is_assigning = False
        self.is_releasing = False
        self.last_notice: Optional[Notice] = None

        self._issued = 0
        self._has_assignment = False
        self._notified_assignment = False
        self._started = False
        self._notice_listeners: list[NoticeListener] = []
        self._assignment_listeners: list[AssignmentListener] = []

        self._deferred_reconcile = DeferredTask(
            "deferred-reconcile", self.reconcile, self.filter_debounce_seconds
        )
        self._assignment_notify = DeferredTask(
            "assignment-notify",
            self._notify_assignment_changed,
            settings.assignment_notify_delay_seconds if notify_delay_seconds is None else notify_delay_seconds,
        )
        self._poll = PeriodicTask(
            "queue-poll",
            settings.poll_interval_seconds if poll_interval_seconds is None else poll_interval_seconds,
            self.reconcile,
            jitter=True,
        )
        self._health_probe = PeriodicTask(
            "store-health-probe",
            settings.health_probe_interval_seconds
            if health_probe_interval_seconds is None
            else health_probe_interval_seconds,
            self.probe_store,
        )

    # =========================================================================
    # Listeners and derived state
    # =========================================================================

    def add_notice_listener(self, listener: NoticeListener) -> None:
        self._notice_listeners.append(listener)

    def add_assignment_listener(self, listener: AssignmentListener) -> None:
        """Called with the new value after ``has_assignment`` flips."""
        self._assignment_listeners.append(listener)

    @property
    def has_assignment(self) -> bool:
        return self._has_assignment

    @property
    def is_loading(self) -> bool:
        return self.state == ViewState.LOADING

    @property
    def latest_sequence(self) -> int:
        return self._issued

    def snapshot(self) -> ViewSnapshot:
        """Render boundary for the presentation layer."""
        return ViewSnapshot(
            state=self.state,
            projection=list(self.projection),
            holder_lease=self.holder_lease,
            is_loading=self.is_loading,
            error_state=self.error_state,
            store_available=self.store_available,
            store_warning=self.store_warning,
            stats=dict(self.stats),
            total_records=self.total_records,
            hold_times=dict(self.timer.hold_times),
            filters=self.filters,
            is_assigning=self.is_assigning,
            is_releasing=self.is_releasing,
        )

    def _transition(self, target: ViewState) -> None:
        if not self.state.can_transition_to(target):
            raise InvalidViewTransition(self.state, target)
        self.state = target

    def _notice(self, level: NoticeLevel, title: str, message: str) -> None:
        notice = Notice(level=level, title=title, message=message)
        self.last_notice = notice
        for listener in list(self._notice_listeners):
            try:
                listener(notice)
            except Exception as e:
                logger.warning(f"Notice listener failed: {e}")

    def _notify_assignment_changed(self) -> None:
        # A flip that reverted inside the delay window is not a change.
        if self._has_assignment == self._notified_assignment:
            return
        self._notified_assignment = self._has_assignment
        for listener in list(self._assignment_listeners):
            try:
                listener(self._has_assignment)
            except Exception as e:
                logger.warning(f"Assignment listener failed: {e}")

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """First reconciliation plus the poll and health-probe loops."""
        if self._started:
            return
        self._started = True
        await self.probe_store()
        await self.reconcile()
        self._poll.start()
        self._health_probe.start()

    async def teardown(self) -> None:
        """Stop every loop and pending task; in-flight responses are dropped. Idempotent."""
        self._started = False
        self._issued += 1
        self._deferred_reconcile.cancel()
        self._assignment_notify.cancel()
        await self._poll.stop()
        await self._health_probe.stop()
        await self.timer.stop()

    # =========================================================================
    # Reconciliation
    # =========================================================================

    def _is_stale(self, sequence: int) -> bool:
        if sequence == self._issued:
            return False
        discarded = StaleResponseDiscarded(sequence, self._issued)
        metrics.inc_counter("queue.reconcile.stale")
        logger.debug(discarded.message)
        return True

    async def reconcile(self) -> bool:
        """
        Re-read the queue and the holder's lease and replace local state.

        Returns True when this call's response was applied, False when it
        failed or was superseded.
        """
        self._issued += 1
        sequence = self._issued
        filters = self.filters
        self._transition(ViewState.LOADING)
        started = perf_counter()

        try:
            if self.store_available:
                page, lease = await asyncio.gather(
                    self.queue_data.fetch_queue(filters),
                    self.assignment.query_holder_lease(),
                )
            else:
                page, lease = await self.queue_data.fetch_queue(filters), None
        except Exception as e:
            error = as_lead_queue_error(e)
            if self._is_stale(sequence):
                return False
            self._apply_failure(error)
            return False

        if self._is_stale(sequence):
            return False
        await self._apply(page, lease)
        metrics.observe("queue.reconcile.duration_ms", (perf_counter() - started) * 1000.0)
        return True

    async def _apply(self, page: QueuePage, lease: Optional[HolderLease]) -> None:
        self.projection = tuple(page.records)
        self.holder_lease = lease
        self.stats = dict(page.stats)
        self.total_records = page.total_records
        self.error_state = None
        self._transition(ViewState.READY)
        metrics.inc_counter("queue.reconcile.applied")

        has_assignment = lease is not None
        if has_assignment != self._has_assignment:
            self._has_assignment = has_assignment
            self._assignment_notify.reschedule()

        await self.timer.sync(self.projection)

    def _apply_failure(self, error: LeadQueueError) -> None:
        metrics.inc_counter("queue.reconcile.failed", code=error.code)
        self.error_state = ErrorState(code=error.code, message=error.message)
        self._transition(ViewState.ERROR)
        if isinstance(error, StoreUnavailable):
            if self._degrade(error):
                # Show the queue read-only while the store is down.
                self._deferred_reconcile.schedule(0)
            return
        logger.error(f"Reconciliation failed: {error.code}: {error.message}")
        self._notice(NoticeLevel.ERROR, "Error", f"Failed to load lead queue: {error.message}")

    # =========================================================================
    # Store health
    # =========================================================================

    def _degrade(self, error: StoreUnavailable) -> bool:
        if not self.store_available:
            return False
        self.store_available = False
        self.store_warning = error.message
        logger.warning(f"Lease store unavailable, claims disabled: {error.message}")
        self._notice(NoticeLevel.WARNING, "Lease store unavailable", error.message)
        return True

    async def probe_store(self) -> bool:
        """Check the lease store; leaves or enters read-only mode accordingly."""
        configured = await self.assignment.is_store_configured()
        if configured and not self.store_available:
            self.store_available = True
            self.store_warning = None
            logger.info("Lease store available again, claims enabled")
            await self.reconcile()
        elif not configured:
            self._degrade(StoreUnavailable())
        return configured

    # =========================================================================
    # Inbound actions
    # =========================================================================

    def _action_failed(self, action: str, error: LeadQueueError) -> None:
        if error.expected:
            logger.info(f"{action} refused: {error.code}")
            self._notice(NoticeLevel.WARNING, "Warning", error.message)
        elif isinstance(error, StoreUnavailable):
            self._degrade(error)
        else:
            logger.error(f"{action} failed: {error.code}: {error.message}")
            self._notice(NoticeLevel.ERROR, "Error", f"{action} failed: {error.message}")

    def _refuse_while_degraded(self) -> bool:
        if self.store_available:
            return False
        self._notice(
            NoticeLevel.ERROR,
            "Error",
            self.store_warning or StoreUnavailable().message,
        )
        return True

    async def claim(self, record_id: Optional[str] = None) -> Optional[ClaimResult]:
        """Claim ``record_id``, or the next eligible record when None."""
        if self._refuse_while_degraded() or self.is_assigning or self.is_releasing:
            return None

        self.is_assigning = True
        try:
            if record_id is None:
                result = await self.assignment.claim_next(self.filters)
            else:
                result = await self.assignment.claim_specific(record_id)
        except LeadQueueError as e:
            self._action_failed("Assignment", e)
            if isinstance(e, AlreadyHeld):
                await self.reconcile()
            return None
        finally:
            self.is_assigning = False

        if not result.success:
            logger.info(f"Claim of {record_id} refused: {result.message}")
            self._notice(NoticeLevel.WARNING, "Warning", result.message)
            return result

        await self.reconcile()
        return result

    async def release(self) -> Optional[ReleaseResult]:
        """Release the holder's lease; releasing nothing still succeeds."""
        if self._refuse_while_degraded() or self.is_assigning or self.is_releasing:
            return None

        self.is_releasing = True
        try:
            result = await self.assignment.release()
        except LeadQueueError as e:
            self._action_failed("Release", e)
            return None
        finally:
            self.is_releasing = False

        self._notice(NoticeLevel.SUCCESS, "Success", "Released all assignments")
        await self.reconcile()
        return result

    def set_filters(self, **changes) -> QueueFilters:
        """
        Change filters and reconcile after the filter debounce.

        In-flight reconciliations for the old filters are invalidated right
        away; repeated changes inside the debounce window collapse into one
        reconciliation with the final values.
        """
        self.filters = self.filters.with_changes(**changes)
        self._issued += 1
        self._deferred_reconcile.reschedule(self.filter_debounce_seconds)
        return self.filters

    def clear_filters(self) -> QueueFilters:
        defaults = QueueFilters()
        return self.set_filters(**defaults.model_dump())
