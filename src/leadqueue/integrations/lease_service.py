"""HTTP client for the lease service API."""

import logging
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from leadqueue.config import settings
from leadqueue.engine.errors import (
    ERRORS_BY_CODE,
    AlreadyHeld,
    LeadQueueError,
    RecordUnavailable,
    StoreUnavailable,
    TransientNetworkError,
)
from leadqueue.models import (
    ClaimResult,
    HolderLease,
    Lease,
    QueueFilters,
    QueuePage,
    ReleaseResult,
)

logger = logging.getLogger(__name__)


class LeaseServiceClient:
    """
    Remote ``LeaseService`` and ``QueueDataService`` for one holder.

    Usage:
        client = LeaseServiceClient("https://leads.example.com", holder_id="005xx")
        page = await client.fetch_queue(QueueFilters())
        await client.aclose()

    Every HTTP or transport failure leaves as a ``LeadQueueError``; nothing
    is retried.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        holder_id: str = "",
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        base_url = base_url or settings.lease_service_url
        if not base_url:
            raise ValueError("base_url or LEADQUEUE_LEASE_SERVICE_URL required")
        if not holder_id:
            raise ValueError("holder_id required")

        self.holder_id = holder_id
        headers = {"X-Holder-ID": holder_id}
        api_key = api_key or settings.api_key
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"

        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout if timeout is not None else settings.request_timeout_ms / 1000,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "LeaseServiceClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # =========================================================================
    # Transport
    # =========================================================================

    @staticmethod
    def _error_from_response(response: httpx.Response) -> LeadQueueError:
        try:
            detail = response.json().get("detail")
        except ValueError:
            detail = None

        if isinstance(detail, dict) and detail.get("code") in ERRORS_BY_CODE:
            code = detail["code"]
            message = detail.get("message") or ""
            if code == "ALREADY_HELD":
                return AlreadyHeld()
            if code == "RECORD_UNAVAILABLE":
                return RecordUnavailable()
            error_cls = ERRORS_BY_CODE[code]
            return error_cls(message) if message else error_cls()

        if response.status_code == 503:
            return StoreUnavailable()
        return TransientNetworkError(
            f"Lead queue service returned {response.status_code} for {response.request.url.path}"
        )

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning(f"{method} {path} timed out: {e}")
            raise TransientNetworkError("The lead queue service timed out") from e
        except httpx.TransportError as e:
            logger.warning(f"{method} {path} failed: {e}")
            raise TransientNetworkError() from e

        if response.is_error:
            raise self._error_from_response(response)
        try:
            return response.json()
        except ValueError as e:
            raise TransientNetworkError(f"Malformed response from {path}") from e

    @staticmethod
    def _parse(model, data: Any):
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise TransientNetworkError(f"Malformed {model.__name__} response") from e

    # =========================================================================
    # LeaseService
    # =========================================================================

    async def claim_next(self, filters: QueueFilters) -> Lease:
        data = await self._request(
            "POST", "/v1/leases/claim-next", json={"filters": filters.model_dump()}
        )
        return self._parse(Lease, data)

    async def claim_specific(self, record_id: str) -> ClaimResult:
        data = await self._request("POST", "/v1/leases/claim", json={"record_id": record_id})
        return self._parse(ClaimResult, data)

    async def release(self, record_id: Optional[str] = None) -> ReleaseResult:
        data = await self._request("POST", "/v1/leases/release", json={"record_id": record_id})
        return self._parse(ReleaseResult, data)

    async def query_holder_lease(self) -> Optional[HolderLease]:
        data = await self._request("GET", "/v1/leases/mine")
        lease = data.get("lease") if isinstance(data, dict) else None
        return self._parse(HolderLease, lease) if lease else None

    async def query_all_leases(self) -> list[Lease]:
        data = await self._request("GET", "/v1/leases")
        return [self._parse(Lease, item) for item in data.get("leases", [])]

    async def is_configured(self) -> bool:
        data = await self._request("GET", "/v1/health")
        return bool(data.get("store_configured"))

    # =========================================================================
    # QueueDataService
    # =========================================================================

    async def fetch_queue(self, filters: QueueFilters) -> QueuePage:
        params = {key: value for key, value in filters.model_dump().items() if value}
        data = await self._request("GET", "/v1/queue", params=params)
        return self._parse(QueuePage, data)
