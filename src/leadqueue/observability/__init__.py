"""Observability helpers for the lead queue."""

from leadqueue.observability.metrics import metrics

__all__ = ["metrics"]
