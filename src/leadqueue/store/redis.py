"""Redis-backed lease store."""

import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import AsyncIterator, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from leadqueue.engine.errors import AlreadyHeld, RecordUnavailable, StoreUnavailable
from leadqueue.models import Lease
from leadqueue.store.base import LeaseStore
from leadqueue.utils.time import utc_now

logger = logging.getLogger(__name__)


# KEYS: holder key, record key. ARGV: record id, lease json, ttl seconds.
_ACQUIRE_SCRIPT = """
local held = redis.call('GET', KEYS[1])
if held then
    if held ~= ARGV[1] then
        return {'elsewhere', held}
    end
    local current = redis.call('GET', KEYS[2])
    if current then
        return {'held', current}
    end
end
local existing = redis.call('GET', KEYS[2])
if existing then
    return {'taken', existing}
end
redis.call('SET', KEYS[2], ARGV[2], 'EX', ARGV[3])
redis.call('SET', KEYS[1], ARGV[1], 'EX', ARGV[3])
return {'acquired', ARGV[2]}
"""

# KEYS: holder key. ARGV: record key prefix, holder id, required record id or ''.
_RELEASE_HOLDER_SCRIPT = """
local record = redis.call('GET', KEYS[1])
if not record then
    return false
end
if ARGV[3] ~= '' and ARGV[3] ~= record then
    return false
end
redis.call('DEL', KEYS[1])
local record_key = ARGV[1] .. record
local current = redis.call('GET', record_key)
if current then
    local lease = cjson.decode(current)
    if lease['holder_id'] == ARGV[2] then
        redis.call('DEL', record_key)
    end
end
return record
"""

# KEYS: record key. ARGV: holder key prefix.
_RELEASE_RECORD_SCRIPT = """
local current = redis.call('GET', KEYS[1])
if not current then
    return false
end
redis.call('DEL', KEYS[1])
local lease = cjson.decode(current)
local holder_key = ARGV[1] .. lease['holder_id']
if redis.call('GET', holder_key) == lease['record_id'] then
    redis.call('DEL', holder_key)
end
return current
"""


class RedisLeaseStore(LeaseStore):
    """
    Lease store on Redis keys with native TTL.

    Layout: ``{prefix}:record:{record_id}`` holds the lease JSON and
    ``{prefix}:holder:{holder_id}`` holds the record id; both carry the lease
    TTL so Redis expires them together. Claims and releases run as Lua
    scripts so each is atomic on the server.
    Suitable for multi-instance production deployments.
    """

    def __init__(self, redis_url: str, key_prefix: str = "leadqueue", client: Optional[aioredis.Redis] = None):
        self.redis = client or aioredis.from_url(redis_url, decode_responses=True)
        self.key_prefix = key_prefix
        self._acquire = self.redis.register_script(_ACQUIRE_SCRIPT)
        self._release_holder = self.redis.register_script(_RELEASE_HOLDER_SCRIPT)
        self._release_record = self.redis.register_script(_RELEASE_RECORD_SCRIPT)
        logger.info(f"Redis lease store initialized (prefix: {key_prefix})")

    def _record_key(self, record_id: str) -> str:
        return f"{self.key_prefix}:record:{record_id}"

    def _holder_key(self, holder_id: str) -> str:
        return f"{self.key_prefix}:holder:{holder_id}"

    @asynccontextmanager
    async def _store_errors(self) -> AsyncIterator[None]:
        try:
            yield
        except RedisError as e:
            logger.error(f"Redis lease store error: {e}")
            raise StoreUnavailable(f"Lease store unavailable: {e}") from e

    async def acquire(self, record_id: str, holder_id: str, ttl_seconds: int) -> Lease:
        now = utc_now()
        candidate = Lease(
            record_id=record_id,
            holder_id=holder_id,
            acquired_at=now,
            expires_at=now + timedelta(seconds=ttl_seconds),
        )
        async with self._store_errors():
            outcome, value = await self._acquire(
                keys=[self._holder_key(holder_id), self._record_key(record_id)],
                args=[record_id, candidate.model_dump_json(), ttl_seconds],
            )

        if outcome == "elsewhere":
            raise AlreadyHeld(holder_id=holder_id, record_id=value)
        if outcome == "taken":
            raise RecordUnavailable(record_id)
        return Lease.model_validate_json(value)

    async def release_holder(self, holder_id: str, record_id: Optional[str] = None) -> list[str]:
        async with self._store_errors():
            released = await self._release_holder(
                keys=[self._holder_key(holder_id)],
                args=[f"{self.key_prefix}:record:", holder_id, record_id or ""],
            )
        return [released] if released else []

    async def release_record(self, record_id: str) -> Optional[Lease]:
        async with self._store_errors():
            released = await self._release_record(
                keys=[self._record_key(record_id)],
                args=[f"{self.key_prefix}:holder:"],
            )
        return Lease.model_validate_json(released) if released else None

    async def get_holder_lease(self, holder_id: str) -> Optional[Lease]:
        async with self._store_errors():
            record_id = await self.redis.get(self._holder_key(holder_id))
            if not record_id:
                return None
            raw = await self.redis.get(self._record_key(record_id))
        if not raw:
            return None
        lease = Lease.model_validate_json(raw)
        return lease if lease.holder_id == holder_id else None

    async def list_leases(self) -> list[Lease]:
        async with self._store_errors():
            keys = [key async for key in self.redis.scan_iter(match=self._record_key("*"))]
            values = await self.redis.mget(keys) if keys else []
        leases = [Lease.model_validate_json(raw) for raw in values if raw]
        return sorted(leases, key=lambda lease: lease.acquired_at)

    async def ping(self) -> bool:
        try:
            return bool(await self.redis.ping())
        except RedisError as e:
            logger.warning(f"Redis lease store ping failed: {e}")
            return False

    async def close(self) -> None:
        await self.redis.aclose()
