"""Record sources: the server-owned, priority-ordered queue contents."""

import logging
from pathlib import Path
from typing import Any, Optional, Protocol

from pydantic import BaseModel, Field, TypeAdapter

from leadqueue.config import settings
from leadqueue.models import QueueFilters

logger = logging.getLogger(__name__)


class IntakeRecord(BaseModel):
    """An intake record as the server ranks it (highest priority first)."""

    record_id: str
    fields: dict[str, Any] = Field(default_factory=dict)


_records_adapter = TypeAdapter(list[IntakeRecord])


class RecordSource(Protocol):
    """Prioritization and filtering live behind this interface."""

    async def list_records(self, filters: QueueFilters) -> list[IntakeRecord]:
        """Eligible records for ``filters``, highest priority first."""
        ...


class InMemoryRecordSource:
    """Static record list, kept in the order given."""

    def __init__(self, records: list[IntakeRecord] | None = None):
        self._records: list[IntakeRecord] = list(records or [])

    @classmethod
    def from_file(cls, path: str | Path) -> "InMemoryRecordSource":
        """
        Load a JSON array of ``{"record_id": ..., "fields": {...}}`` objects.

        Array order is priority order. A missing or malformed file raises.
        """
        records = _records_adapter.validate_json(Path(path).read_bytes())
        logger.info(f"Loaded {len(records)} intake records from {path}")
        return cls(records)

    def replace(self, records: list[IntakeRecord]) -> None:
        self._records = list(records)

    def remove(self, record_id: str) -> None:
        self._records = [r for r in self._records if r.record_id != record_id]

    async def list_records(self, filters: QueueFilters) -> list[IntakeRecord]:
        return [record for record in self._records if filters.matches(record.fields)]


def create_record_source(records_file: Optional[str] = None) -> InMemoryRecordSource:
    """Build the configured record source; empty when no records file is set."""
    records_file = records_file or settings.records_file
    if not records_file:
        logger.warning("No LEADQUEUE_RECORDS_FILE configured; the queue starts empty")
        return InMemoryRecordSource()
    return InMemoryRecordSource.from_file(records_file)
