"""Lead queue data models."""

from leadqueue.models.enums import ChangeType, NoticeLevel, RefreshAction, ViewState
from leadqueue.models.lease import HolderLease, Lease
from leadqueue.models.queue import (
    ClaimResult,
    ErrorState,
    Notice,
    QueueFilters,
    QueuePage,
    QueueRecord,
    ReleaseResult,
    ViewSnapshot,
)
from leadqueue.models.signal import ChangeEvent, RefreshSignal

__all__ = [
    "ChangeEvent",
    "ChangeType",
    "ClaimResult",
    "ErrorState",
    "HolderLease",
    "Lease",
    "Notice",
    "NoticeLevel",
    "QueueFilters",
    "QueuePage",
    "QueueRecord",
    "RefreshAction",
    "RefreshSignal",
    "ReleaseResult",
    "ViewSnapshot",
    "ViewState",
]
