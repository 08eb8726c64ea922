"""External service integrations."""

from leadqueue.integrations.lease_service import LeaseServiceClient

__all__ = ["LeaseServiceClient"]
