"""Ports the assignment client and view model talk to."""

from typing import Optional, Protocol

from leadqueue.engine.core import LeaseEngine
from leadqueue.models import (
    ClaimResult,
    HolderLease,
    Lease,
    QueueFilters,
    QueuePage,
    ReleaseResult,
)


class LeaseService(Protocol):
    """Holder-scoped lease operations. Each call is atomic on the store side."""

    async def claim_next(self, filters: QueueFilters) -> Lease:
        ...

    async def claim_specific(self, record_id: str) -> ClaimResult:
        ...

    async def release(self, record_id: Optional[str] = None) -> ReleaseResult:
        ...

    async def query_holder_lease(self) -> Optional[HolderLease]:
        ...

    async def query_all_leases(self) -> list[Lease]:
        ...

    async def is_configured(self) -> bool:
        ...


class QueueDataService(Protocol):
    """Read-only queue page with embedded lease annotations."""

    async def fetch_queue(self, filters: QueueFilters) -> QueuePage:
        ...


class EngineLeaseService:
    """Both ports served in-process by a ``LeaseEngine`` for one holder."""

    def __init__(self, engine: LeaseEngine, holder_id: str):
        self.engine = engine
        self.holder_id = holder_id

    async def claim_next(self, filters: QueueFilters) -> Lease:
        return await self.engine.claim_next(self.holder_id, filters)

    async def claim_specific(self, record_id: str) -> ClaimResult:
        return await self.engine.claim_specific(self.holder_id, record_id)

    async def release(self, record_id: Optional[str] = None) -> ReleaseResult:
        return await self.engine.release(self.holder_id, record_id)

    async def query_holder_lease(self) -> Optional[HolderLease]:
        return await self.engine.holder_lease(self.holder_id)

    async def query_all_leases(self) -> list[Lease]:
        return await self.engine.all_leases()

    async def is_configured(self) -> bool:
        return await self.engine.is_configured()

    async def fetch_queue(self, filters: QueueFilters) -> QueuePage:
        return await self.engine.queue_page(filters)
