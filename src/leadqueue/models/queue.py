"""Queue projection models."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from leadqueue.models.enums import NoticeLevel, ViewState
from leadqueue.models.lease import HolderLease


class QueueFilters(BaseModel):
    """Server-side queue filters chosen by the user."""

    model_config = ConfigDict(frozen=True)

    status: str = ""
    case_type: str = ""
    due_date: str = ""
    show_scheduled_calls: bool = False

    def with_changes(self, **changes: Any) -> "QueueFilters":
        unknown = set(changes) - set(type(self).model_fields)
        if unknown:
            raise ValueError(f"Unknown queue filters: {sorted(unknown)}")
        return self.model_copy(update=changes)

    def matches(self, fields: dict[str, Any]) -> bool:
        """Exact-match filtering on status and case type."""
        if self.status and fields.get("status") != self.status:
            return False
        if self.case_type and fields.get("case_type") != self.case_type:
            return False
        return True


class QueueRecord(BaseModel):
    """One row of the local queue projection."""

    model_config = ConfigDict(frozen=True)

    record_id: str
    fields: dict[str, Any] = Field(default_factory=dict)
    holder_id: Optional[str] = None
    acquired_at: Optional[datetime] = None
    priority_rank: int = 0

    @property
    def is_leased(self) -> bool:
        return self.holder_id is not None


class QueuePage(BaseModel):
    """Queue data service response: records with embedded lease annotations."""

    records: list[QueueRecord] = Field(default_factory=list)
    total_records: int = 0
    stats: dict[str, int] = Field(default_factory=dict)
    filter_options: dict[str, list[str]] = Field(default_factory=dict)


class ClaimResult(BaseModel):
    """Outcome of a claim call."""

    success: bool
    record_id: Optional[str] = None
    acquired_at: Optional[datetime] = None
    message: str = ""


class ReleaseResult(BaseModel):
    """Outcome of a release call; empty when nothing was held."""

    released_record_ids: list[str] = Field(default_factory=list)


class Notice(BaseModel):
    """A plain-language message for the toast or banner sink."""

    level: NoticeLevel
    title: str
    message: str


class ErrorState(BaseModel):
    """Last reconciliation failure shown by the presentation layer."""

    code: str
    message: str


class ViewSnapshot(BaseModel):
    """Everything the presentation layer renders."""

    state: ViewState
    projection: list[QueueRecord]
    holder_lease: Optional[HolderLease] = None
    is_loading: bool = False
    error_state: Optional[ErrorState] = None
    store_available: bool = True
    store_warning: Optional[str] = None
    stats: dict[str, int] = Field(default_factory=dict)
    total_records: int = 0
    hold_times: dict[str, str] = Field(default_factory=dict)
    filters: QueueFilters = Field(default_factory=QueueFilters)
    is_assigning: bool = False
    is_releasing: bool = False

    @property
    def has_assignment(self) -> bool:
        return self.holder_lease is not None

    @property
    def can_claim(self) -> bool:
        return (
            self.store_available
            and not self.is_loading
            and not self.is_assigning
            and not self.is_releasing
        )
