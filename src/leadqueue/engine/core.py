"""Lead queue lease engine - server-side claim/release operations."""

import logging
from collections import Counter
from typing import Optional

from leadqueue.config import settings
from leadqueue.engine.errors import AlreadyHeld, NoEligibleRecord, RecordUnavailable
from leadqueue.engine.records import RecordSource
from leadqueue.models import (
    ClaimResult,
    HolderLease,
    Lease,
    QueueFilters,
    QueuePage,
    QueueRecord,
    ReleaseResult,
)
from leadqueue.observability.metrics import metrics
from leadqueue.store.base import LeaseStore

logger = logging.getLogger(__name__)


class LeaseEngine:
    """Core engine implementing the lease service operations."""

    def __init__(
        self,
        store: LeaseStore,
        records: RecordSource,
        lease_ttl_seconds: Optional[int] = None,
    ):
        self.store = store
        self.records = records
        self.lease_ttl_seconds = lease_ttl_seconds or settings.lease_ttl_seconds

    # =========================================================================
    # Claims
    # =========================================================================

    async def claim_next(self, holder_id: str, filters: Optional[QueueFilters] = None) -> Lease:
        """
        Lease the highest-priority eligible record nobody holds.

        Selection rules:
        - Holder must not already hold an unexpired lease (AlreadyHeld)
        - Records come from the record source in priority order
        - Records leased by anyone are skipped; a record lost to a concurrent
          claim between listing and acquiring is skipped too
        """
        existing = await self.store.get_holder_lease(holder_id)
        if existing is not None:
            raise AlreadyHeld(holder_id=holder_id, record_id=existing.record_id)

        candidates = await self.records.list_records(filters or QueueFilters())
        leased = {lease.record_id for lease in await self.store.list_leases()}

        for record in candidates:
            if record.record_id in leased:
                continue
            try:
                lease = await self.store.acquire(record.record_id, holder_id, self.lease_ttl_seconds)
            except RecordUnavailable:
                continue
            metrics.inc_counter("leases.claimed", mode="next")
            logger.info(f"Holder {holder_id} claimed next record {lease.record_id}")
            return lease

        raise NoEligibleRecord()

    async def claim_specific(self, holder_id: str, record_id: str) -> ClaimResult:
        """Lease one named record; refusals come back as ``success=False``."""
        try:
            lease = await self.store.acquire(record_id, holder_id, self.lease_ttl_seconds)
        except (AlreadyHeld, RecordUnavailable) as e:
            logger.info(f"Holder {holder_id} could not claim {record_id}: {e.code}")
            return ClaimResult(success=False, record_id=record_id, message=e.message)

        metrics.inc_counter("leases.claimed", mode="specific")
        logger.info(f"Holder {holder_id} claimed record {record_id}")
        return ClaimResult(
            success=True,
            record_id=lease.record_id,
            acquired_at=lease.acquired_at,
            message="Record claimed successfully",
        )

    # =========================================================================
    # Releases
    # =========================================================================

    async def release(self, holder_id: str, record_id: Optional[str] = None) -> ReleaseResult:
        """Release the holder's lease. Releasing nothing is success."""
        released = await self.store.release_holder(holder_id, record_id)
        if released:
            metrics.inc_counter("leases.released")
            logger.info(f"Holder {holder_id} released {', '.join(released)}")
        return ReleaseResult(released_record_ids=released)

    async def force_release(self, record_id: str) -> Optional[Lease]:
        """
        Drop the lease on a record after a qualifying change to it.

        Holders see this exactly like expiry: the lease is absent on their
        next reconciliation.
        """
        lease = await self.store.release_record(record_id)
        if lease is not None:
            metrics.inc_counter("leases.force_released")
            logger.info(f"Force-released {record_id} held by {lease.holder_id}")
        return lease

    # =========================================================================
    # Queries
    # =========================================================================

    async def holder_lease(self, holder_id: str) -> Optional[HolderLease]:
        lease = await self.store.get_holder_lease(holder_id)
        return lease.to_holder_lease() if lease else None

    async def all_leases(self) -> list[Lease]:
        return await self.store.list_leases()

    async def is_configured(self) -> bool:
        return await self.store.ping()

    async def queue_page(self, filters: Optional[QueueFilters] = None) -> QueuePage:
        """Queue contents annotated with the current leases."""
        filters = filters or QueueFilters()
        records = await self.records.list_records(filters)
        leases = {lease.record_id: lease for lease in await self.store.list_leases()}

        rows = []
        for rank, record in enumerate(records, start=1):
            lease = leases.get(record.record_id)
            rows.append(
                QueueRecord(
                    record_id=record.record_id,
                    fields=record.fields,
                    holder_id=lease.holder_id if lease else None,
                    acquired_at=lease.acquired_at if lease else None,
                    priority_rank=rank,
                )
            )

        status_counts = Counter(str(row.fields.get("status", "")) for row in rows)
        options = {
            "status": sorted({str(r.fields["status"]) for r in rows if r.fields.get("status")}),
            "case_type": sorted({str(r.fields["case_type"]) for r in rows if r.fields.get("case_type")}),
        }
        return QueuePage(
            records=rows,
            total_records=len(rows),
            stats={
                "total_records": len(rows),
                "assigned_count": sum(1 for row in rows if row.is_leased),
                **{f"status:{name}": count for name, count in status_counts.items() if name},
            },
            filter_options=options,
        )
