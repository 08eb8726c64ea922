"""Lead queue background tasks."""

from leadqueue.tasks.periodic import PeriodicTask

__all__ = ["PeriodicTask"]
