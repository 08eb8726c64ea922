"""REST API router."""

from typing import NoReturn, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query

from leadqueue import __version__
from leadqueue.api.deps import get_holder_id, get_lease_engine, verify_api_key
from leadqueue.api.schemas import (
    ClaimNextRequest,
    ClaimRequest,
    ErrorDetail,
    ErrorResponse,
    HealthResponse,
    HolderLeaseResponse,
    LeaseListResponse,
    LeaseResponse,
    MetricsResponse,
    RecordChangedRequest,
    RecordChangedResponse,
    ReleaseRequest,
)
from leadqueue.config import settings
from leadqueue.engine import (
    AlreadyHeld,
    LeadQueueError,
    LeaseEngine,
    NoEligibleRecord,
    RecordUnavailable,
    StoreUnavailable,
)
from leadqueue.models import ChangeEvent, ChangeType, ClaimResult, QueueFilters, QueuePage, ReleaseResult
from leadqueue.observability.metrics import metrics

router = APIRouter(prefix="/v1", dependencies=[Depends(verify_api_key)])

STATUS_BY_ERROR = {
    AlreadyHeld: 409,
    NoEligibleRecord: 404,
    RecordUnavailable: 409,
    StoreUnavailable: 503,
}

ERROR_RESPONSES = {
    status_code: {"model": ErrorResponse} for status_code in sorted(set(STATUS_BY_ERROR.values()))
}


def raise_http(error: LeadQueueError) -> NoReturn:
    """Map a lead queue error onto its HTTP status and ``{code, message}`` body."""
    status_code = STATUS_BY_ERROR.get(type(error), 502)
    raise HTTPException(
        status_code=status_code,
        detail=ErrorDetail(code=error.code, message=error.message).model_dump(),
    )


# ============================================================================
# Health & Metrics
# ============================================================================


@router.get("/health", response_model=HealthResponse)
async def health_check(engine: LeaseEngine = Depends(get_lease_engine)):
    """Health check endpoint; reports whether the lease store answers."""
    configured = await engine.is_configured()
    return HealthResponse(
        status="healthy" if configured else "degraded",
        version=__version__,
        store_configured=configured,
    )


@router.get("/metrics", response_model=MetricsResponse)
async def get_metrics():
    return MetricsResponse(**metrics.snapshot())


# ============================================================================
# Queue
# ============================================================================


@router.get("/queue", response_model=QueuePage, responses=ERROR_RESPONSES)
async def get_queue(
    status: str = Query(""),
    case_type: str = Query(""),
    due_date: str = Query(""),
    show_scheduled_calls: bool = Query(False),
    engine: LeaseEngine = Depends(get_lease_engine),
):
    """Queue page with each record's lease annotation."""
    filters = QueueFilters(
        status=status,
        case_type=case_type,
        due_date=due_date,
        show_scheduled_calls=show_scheduled_calls,
    )
    try:
        return await engine.queue_page(filters)
    except LeadQueueError as e:
        raise_http(e)


# ============================================================================
# Leases
# ============================================================================


@router.post("/leases/claim-next", response_model=LeaseResponse, responses=ERROR_RESPONSES)
async def claim_next(
    request: Optional[ClaimNextRequest] = Body(None),
    holder_id: str = Depends(get_holder_id),
    engine: LeaseEngine = Depends(get_lease_engine),
):
    """
    Lease the highest-priority eligible record.

    409 ALREADY_HELD when the caller holds a lease, 404 NO_ELIGIBLE_RECORD when
    nothing matches.
    """
    filters = request.filters if request else QueueFilters()
    try:
        lease = await engine.claim_next(holder_id, filters)
    except LeadQueueError as e:
        raise_http(e)
    return LeaseResponse.from_lease(lease)


@router.post("/leases/claim", response_model=ClaimResult)
async def claim_specific(
    request: ClaimRequest,
    holder_id: str = Depends(get_holder_id),
    engine: LeaseEngine = Depends(get_lease_engine),
):
    """Claim one record. Refusals come back as ``success: false``, not errors."""
    try:
        return await engine.claim_specific(holder_id, request.record_id)
    except LeadQueueError as e:
        raise_http(e)


@router.post("/leases/release", response_model=ReleaseResult)
async def release(
    request: Optional[ReleaseRequest] = Body(None),
    holder_id: str = Depends(get_holder_id),
    engine: LeaseEngine = Depends(get_lease_engine),
):
    """Release the caller's lease. Releasing nothing succeeds."""
    try:
        return await engine.release(holder_id, request.record_id if request else None)
    except LeadQueueError as e:
        raise_http(e)


@router.get("/leases/mine", response_model=HolderLeaseResponse)
async def get_my_lease(
    holder_id: str = Depends(get_holder_id),
    engine: LeaseEngine = Depends(get_lease_engine),
):
    try:
        return HolderLeaseResponse(lease=await engine.holder_lease(holder_id))
    except LeadQueueError as e:
        raise_http(e)


@router.get("/leases", response_model=LeaseListResponse)
async def list_leases(engine: LeaseEngine = Depends(get_lease_engine)):
    try:
        leases = await engine.all_leases()
    except LeadQueueError as e:
        raise_http(e)
    return LeaseListResponse(leases=[LeaseResponse.from_lease(lease) for lease in leases])


# ============================================================================
# Record changes
# ============================================================================


@router.post("/records/{record_id}/changed", response_model=RecordChangedResponse)
async def record_changed(
    record_id: str,
    request: Optional[RecordChangedRequest] = Body(None),
    engine: LeaseEngine = Depends(get_lease_engine),
):
    """
    Drop the lease on a record after an edit that can move it out of the queue.

    Edits touching none of the relevant fields leave the lease alone.
    """
    event = ChangeEvent(
        change_type=ChangeType.UPDATE,
        changed_fields=request.changed_fields if request else None,
        record_ids=[record_id],
    )
    if not event.touches(frozenset(settings.change_feed_relevant_fields)):
        return RecordChangedResponse(record_id=record_id, released=False)

    try:
        lease = await engine.force_release(record_id)
    except LeadQueueError as e:
        raise_http(e)
    return RecordChangedResponse(
        record_id=record_id,
        released=lease is not None,
        holder_id=lease.holder_id if lease else None,
    )
