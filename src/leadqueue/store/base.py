"""Lease store backend interface."""

from abc import ABC, abstractmethod
from typing import Optional

from leadqueue.models import Lease


class LeaseStore(ABC):
    """
    Abstract key-value lease store with TTL.

    The store is the only writer of lease truth. ``acquire`` is the single
    atomic operation the coordination protocol relies on: it enforces one
    lease per record and one lease per holder in one step.
    """

    @abstractmethod
    async def acquire(self, record_id: str, holder_id: str, ttl_seconds: int) -> Lease:
        """
        Atomically lease ``record_id`` to ``holder_id``.

        Re-acquiring the record the holder already holds returns the existing
        lease unchanged (``acquired_at`` and ``expires_at`` are never extended).

        Raises:
            AlreadyHeld: holder holds an unexpired lease on another record
            RecordUnavailable: another holder holds this record
        """

    @abstractmethod
    async def release_holder(self, holder_id: str, record_id: Optional[str] = None) -> list[str]:
        """Release the holder's lease (only if on ``record_id`` when given). Idempotent."""

    @abstractmethod
    async def release_record(self, record_id: str) -> Optional[Lease]:
        """Force-release whatever lease exists on ``record_id``."""

    @abstractmethod
    async def get_holder_lease(self, holder_id: str) -> Optional[Lease]:
        """Get the holder's unexpired lease."""

    @abstractmethod
    async def list_leases(self) -> list[Lease]:
        """List every unexpired lease."""

    @abstractmethod
    async def ping(self) -> bool:
        """Whether the store is configured and reachable."""

    async def close(self) -> None:
        """Release backend resources."""
        return None
