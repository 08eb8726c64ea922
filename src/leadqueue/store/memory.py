"""In-memory lease store for development, tests and single-process servers."""

import asyncio
import logging
from datetime import datetime
from typing import Callable, Optional

from leadqueue.engine.errors import AlreadyHeld, RecordUnavailable
from leadqueue.models import Lease
from leadqueue.store.base import LeaseStore
from leadqueue.utils.time import utc_now

logger = logging.getLogger(__name__)


class InMemoryLeaseStore(LeaseStore):
    """
    Lease store backed by two dicts under an asyncio lock.

    Expiry is lazy: expired entries are purged on every access, so they are
    invisible to callers exactly as with a TTL cache.
    Not suitable for multi-instance deployments (no shared state).
    """

    def __init__(self, clock: Callable[[], datetime] = utc_now):
        self._clock = clock
        self._by_record: dict[str, Lease] = {}
        self._by_holder: dict[str, str] = {}
        self._lock = asyncio.Lock()

    def _purge_expired(self, now: datetime) -> None:
        expired = [lease for lease in self._by_record.values() if lease.is_expired(now)]
        for lease in expired:
            self._drop(lease)
            logger.debug(f"Lease on {lease.record_id} for {lease.holder_id} expired")

    def _drop(self, lease: Lease) -> None:
        self._by_record.pop(lease.record_id, None)
        if self._by_holder.get(lease.holder_id) == lease.record_id:
            del self._by_holder[lease.holder_id]

    async def acquire(self, record_id: str, holder_id: str, ttl_seconds: int) -> Lease:
        async with self._lock:
            now = self._clock()
            self._purge_expired(now)

            held_record = self._by_holder.get(holder_id)
            if held_record is not None:
                if held_record == record_id:
                    return self._by_record[record_id]
                raise AlreadyHeld(holder_id=holder_id, record_id=held_record)

            if record_id in self._by_record:
                raise RecordUnavailable(record_id)

            lease = Lease.acquire(record_id, holder_id, ttl_seconds, now=now)
            self._by_record[record_id] = lease
            self._by_holder[holder_id] = record_id
            return lease

    async def release_holder(self, holder_id: str, record_id: Optional[str] = None) -> list[str]:
        async with self._lock:
            self._purge_expired(self._clock())
            held_record = self._by_holder.get(holder_id)
            if held_record is None:
                return []
            if record_id is not None and record_id != held_record:
                return []
            self._drop(self._by_record[held_record])
            return [held_record]

    async def release_record(self, record_id: str) -> Optional[Lease]:
        async with self._lock:
            self._purge_expired(self._clock())
            lease = self._by_record.get(record_id)
            if lease is not None:
                self._drop(lease)
            return lease

    async def get_holder_lease(self, holder_id: str) -> Optional[Lease]:
        async with self._lock:
            self._purge_expired(self._clock())
            record_id = self._by_holder.get(holder_id)
            return self._by_record.get(record_id) if record_id else None

    async def list_leases(self) -> list[Lease]:
        async with self._lock:
            self._purge_expired(self._clock())
            return sorted(self._by_record.values(), key=lambda lease: lease.acquired_at)

    async def ping(self) -> bool:
        return True
