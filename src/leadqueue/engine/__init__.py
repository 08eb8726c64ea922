"""Lead queue engine - lease service operations and error taxonomy."""

from leadqueue.engine.core import LeaseEngine
from leadqueue.engine.errors import (
    AlreadyHeld,
    LeadQueueError,
    NoEligibleRecord,
    RecordUnavailable,
    StaleResponseDiscarded,
    StoreUnavailable,
    TransientNetworkError,
)
from leadqueue.engine.records import (
    InMemoryRecordSource,
    IntakeRecord,
    RecordSource,
    create_record_source,
)

__all__ = [
    "AlreadyHeld",
    "InMemoryRecordSource",
    "IntakeRecord",
    "LeadQueueError",
    "LeaseEngine",
    "NoEligibleRecord",
    "RecordSource",
    "RecordUnavailable",
    "StaleResponseDiscarded",
    "StoreUnavailable",
    "TransientNetworkError",
    "create_record_source",
]
