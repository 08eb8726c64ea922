"""Refresh signals and change-feed events."""

import json
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from leadqueue.models.enums import ChangeType, RefreshAction
from leadqueue.utils.time import to_epoch_ms, utc_now


def _now_ms() -> int:
    return to_epoch_ms(utc_now())


class RefreshSignal(BaseModel):
    """
    Non-authoritative hint that lease or queue state may have changed.

    A signal only ever triggers a reconciliation read; its payload is never
    applied to view state. ``timestamp`` is the producer's wall clock in epoch
    milliseconds and is advisory (debug ordering only).
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    action: RefreshAction
    origin_id: Optional[str] = Field(default=None, alias="originId")
    source: Optional[str] = None
    timestamp: int = Field(default_factory=_now_ms)

    def to_payload(self) -> dict[str, Any]:
        """Wire payload shared by every channel."""
        return self.model_dump(mode="json", by_alias=True)

    def to_json(self) -> str:
        return json.dumps(self.to_payload())

    @classmethod
    def from_payload(cls, payload: Any) -> Optional["RefreshSignal"]:
        """Parse a payload from an untrusted channel; None if unusable."""
        if isinstance(payload, (str, bytes)):
            try:
                payload = json.loads(payload)
            except ValueError:
                return None
        if not isinstance(payload, dict):
            return None
        try:
            return cls.model_validate(payload)
        except ValidationError:
            # Unknown actions still mean "something changed".
            if payload.get("originId") is None and payload.get("origin_id") is None:
                return None
            return cls(
                action=RefreshAction.UNKNOWN_CHANGE,
                origin_id=payload.get("originId") or payload.get("origin_id"),
                source=payload.get("source") if isinstance(payload.get("source"), str) else None,
            )


class ChangeEvent(BaseModel):
    """One change-feed delivery for one or more intake records."""

    change_type: ChangeType
    changed_fields: Optional[list[str]] = None  # None: the feed did not say
    record_ids: list[str] = Field(default_factory=list)

    def touches(self, relevant_fields: set[str] | frozenset[str]) -> bool:
        """Whether this change can affect queue membership or assignment display."""
        if self.change_type != ChangeType.UPDATE:
            return True
        if self.changed_fields is None:
            return True
        return any(name in relevant_fields for name in self.changed_fields)
