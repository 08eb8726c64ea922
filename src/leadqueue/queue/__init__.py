"""Queue view model and hold timer."""

from leadqueue.queue.timer import HoldTimer, elapsed_seconds, format_hold_time
from leadqueue.queue.view_model import QueueViewModel

__all__ = [
    "HoldTimer",
    "QueueViewModel",
    "elapsed_seconds",
    "format_hold_time",
]
