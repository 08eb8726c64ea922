"""Lease store backends."""

from typing import Optional

from leadqueue.config import StoreBackend, settings
from leadqueue.store.base import LeaseStore
from leadqueue.store.memory import InMemoryLeaseStore

__all__ = [
    "InMemoryLeaseStore",
    "LeaseStore",
    "create_lease_store",
]


def create_lease_store(backend: Optional[StoreBackend] = None) -> LeaseStore:
    """Build the configured lease store."""
    backend = backend or settings.store_backend
    if backend == StoreBackend.REDIS:
        from leadqueue.store.redis import RedisLeaseStore

        return RedisLeaseStore(settings.redis_url, key_prefix=settings.redis_key_prefix)
    return InMemoryLeaseStore()
