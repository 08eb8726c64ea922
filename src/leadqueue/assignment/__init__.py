"""Assignment client and the service ports it depends on."""

from leadqueue.assignment.client import AssignmentClient
from leadqueue.assignment.service import EngineLeaseService, LeaseService, QueueDataService

__all__ = [
    "AssignmentClient",
    "EngineLeaseService",
    "LeaseService",
    "QueueDataService",
]
