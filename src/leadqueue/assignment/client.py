"""Assignment client - claim/release/query against the lease service."""

import logging
from typing import Optional, Protocol

from leadqueue.assignment.service import LeaseService
from leadqueue.engine.errors import (
    AlreadyHeld,
    LeadQueueError,
    NoEligibleRecord,
    RecordUnavailable,
    as_lead_queue_error,
)
from leadqueue.models import (
    ClaimResult,
    HolderLease,
    Lease,
    QueueFilters,
    RefreshAction,
    ReleaseResult,
)
from leadqueue.observability.metrics import metrics

logger = logging.getLogger(__name__)


class SignalPublisher(Protocol):
    async def publish(self, action: RefreshAction) -> object:
        ...


class AssignmentClient:
    """
    Thin, retry-free wrapper over a holder-scoped ``LeaseService``.

    Nothing about a lease is remembered here: every call is a fresh round
    trip and the store's answer is final. Failures leave as one of the
    ``LeadQueueError`` kinds; successful claims and releases are announced
    on the refresh bus so other sessions reconcile.
    """

    def __init__(self, service: LeaseService, publisher: Optional[SignalPublisher] = None):
        self.service = service
        self.publisher = publisher

    async def _announce(self, action: RefreshAction) -> None:
        if self.publisher is None:
            return
        try:
            await self.publisher.publish(action)
        except Exception as e:
            logger.warning(f"Announcing {action.value} failed: {e}")

    async def claim_next(self, filters: Optional[QueueFilters] = None) -> ClaimResult:
        """
        Lease the highest-priority eligible record.

        Raises:
            NoEligibleRecord: nothing is available (expected outcome)
            AlreadyHeld: holder already has a record; never overridden here
            StoreUnavailable / TransientNetworkError: the call failed
        """
        try:
            lease: Lease = await self.service.claim_next(filters or QueueFilters())
        except (NoEligibleRecord, AlreadyHeld) as e:
            logger.info(f"Claim next refused: {e.code}")
            raise
        except LeadQueueError:
            raise
        except Exception as e:
            raise as_lead_queue_error(e) from e

        metrics.inc_counter("assignment.claims", mode="next")
        await self._announce(RefreshAction.ASSIGN)
        return ClaimResult(
            success=True,
            record_id=lease.record_id,
            acquired_at=lease.acquired_at,
            message="Record assigned",
        )

    async def claim_specific(self, record_id: str) -> ClaimResult:
        """Lease ``record_id``; business refusals return ``success=False``."""
        try:
            result = await self.service.claim_specific(record_id)
        except (AlreadyHeld, RecordUnavailable) as e:
            logger.info(f"Claim of {record_id} refused: {e.code}")
            return ClaimResult(success=False, record_id=record_id, message=e.message)
        except LeadQueueError:
            raise
        except Exception as e:
            raise as_lead_queue_error(e) from e

        if result.success:
            metrics.inc_counter("assignment.claims", mode="specific")
            await self._announce(RefreshAction.ASSIGN)
        return result

    async def release(self, record_id: Optional[str] = None) -> ReleaseResult:
        """Release the holder's lease; an absent lease is a no-op success."""
        try:
            result = await self.service.release(record_id)
        except LeadQueueError:
            raise
        except Exception as e:
            raise as_lead_queue_error(e) from e

        metrics.inc_counter("assignment.releases")
        await self._announce(RefreshAction.RELEASE)
        return result

    async def query_holder_lease(self) -> Optional[HolderLease]:
        """Read-only lookup used by reconciliation."""
        try:
            return await self.service.query_holder_lease()
        except LeadQueueError:
            raise
        except Exception as e:
            raise as_lead_queue_error(e) from e

    async def query_all_leases(self) -> list[Lease]:
        try:
            return await self.service.query_all_leases()
        except LeadQueueError:
            raise
        except Exception as e:
            raise as_lead_queue_error(e) from e

    async def is_store_configured(self) -> bool:
        """Health probe; any failure reads as not configured."""
        try:
            return bool(await self.service.is_configured())
        except LeadQueueError as e:
            logger.warning(f"Lease store health probe failed: {e.code}")
            return False
        except Exception as e:
            logger.warning(f"Lease store health probe failed: {e}")
            return False
