"""API request/response schemas."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from leadqueue.models import HolderLease, Lease, QueueFilters


# ============================================================================
# Shared schemas
# ============================================================================


class ErrorDetail(BaseModel):
    """Body of ``detail`` on every lead queue error response."""

    code: str = Field(..., description="Error kind, e.g. ALREADY_HELD")
    message: str = Field(..., description="Plain-language message")


class ErrorResponse(BaseModel):
    """Error response as FastAPI renders an ``HTTPException``."""

    detail: ErrorDetail


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    store_configured: bool


# ============================================================================
# Lease schemas
# ============================================================================


class ClaimNextRequest(BaseModel):
    """Claim the highest-priority eligible record."""

    filters: QueueFilters = Field(default_factory=QueueFilters)


class ClaimRequest(BaseModel):
    """Claim one specific record."""

    record_id: str = Field(..., min_length=1, description="Record to claim")


class ReleaseRequest(BaseModel):
    """Release the caller's lease, optionally only on ``record_id``."""

    record_id: Optional[str] = None


class HolderLeaseResponse(BaseModel):
    """The caller's current lease, or null."""

    lease: Optional[HolderLease] = None


class LeaseResponse(BaseModel):
    record_id: str
    holder_id: str
    acquired_at: datetime
    expires_at: datetime

    @classmethod
    def from_lease(cls, lease: Lease) -> "LeaseResponse":
        return cls(**lease.model_dump())


class LeaseListResponse(BaseModel):
    leases: list[LeaseResponse]


# ============================================================================
# Record change schemas
# ============================================================================


class RecordChangedRequest(BaseModel):
    """A record edit reported by the record system."""

    changed_fields: Optional[list[str]] = Field(
        None, description="Fields the edit touched; null means unknown"
    )


class RecordChangedResponse(BaseModel):
    record_id: str
    released: bool
    holder_id: Optional[str] = None


class MetricsResponse(BaseModel):
    counters: dict[str, float]
    labelled_counters: dict[str, dict[str, float]] = {}
    gauges: dict[str, float]
    histograms: dict[str, Any]
