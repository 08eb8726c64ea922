"""Lease model - a holder's exclusive claim on a queue record."""

from datetime import datetime, timedelta

from pydantic import BaseModel

from leadqueue.utils.time import utc_now


class Lease(BaseModel):
    """Represents one holder's time-bounded hold on one record."""

    record_id: str
    holder_id: str
    acquired_at: datetime
    expires_at: datetime

    @classmethod
    def acquire(cls, record_id: str, holder_id: str, ttl_seconds: int, now: datetime | None = None) -> "Lease":
        """Build a fresh lease starting at ``now``."""
        if now is None:
            now = utc_now()
        return cls(
            record_id=record_id,
            holder_id=holder_id,
            acquired_at=now,
            expires_at=now + timedelta(seconds=ttl_seconds),
        )

    def is_expired(self, now: datetime | None = None) -> bool:
        """Check if lease has expired."""
        if now is None:
            now = utc_now()
        return now >= self.expires_at

    def to_holder_lease(self) -> "HolderLease":
        return HolderLease(record_id=self.record_id, acquired_at=self.acquired_at)


class HolderLease(BaseModel):
    """The calling holder's current lease, as seen by reconciliation."""

    record_id: str
    acquired_at: datetime
