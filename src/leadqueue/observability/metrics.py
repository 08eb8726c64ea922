"""In-process metrics for the lease service and queue sessions."""

from dataclasses import dataclass, field
from threading import Lock
from typing import Any

# Sorted (label, value) pairs, e.g. (("channel", "pubsub"), ("op", "connect")).
LabelSet = tuple[tuple[str, str], ...]


def label_set(labels: dict[str, Any]) -> LabelSet:
    return tuple(sorted((key, str(value)) for key, value in labels.items()))


def format_labels(labels: LabelSet) -> str:
    return ",".join(f"{key}={value}" for key, value in labels)


@dataclass
class Counter:
    """Total across all label sets, plus a per-label-set breakdown."""

    value: float = 0.0
    by_labels: dict[LabelSet, float] = field(default_factory=dict)

    def inc(self, amount: float = 1.0, labels: LabelSet = ()) -> None:
        self.value += amount
        if labels:
            self.by_labels[labels] = self.by_labels.get(labels, 0.0) + amount

    def get(self, labels: LabelSet = ()) -> float:
        if not labels:
            return self.value
        return self.by_labels.get(labels, 0.0)


@dataclass
class Gauge:
    value: float = 0.0

    def set(self, value: float) -> None:
        self.value = value


@dataclass
class Histogram:
    count: int = 0
    total: float = 0.0
    minimum: float | None = None
    maximum: float | None = None

    def observe(self, value: float) -> None:
        self.count += 1
        self.total += value
        if self.minimum is None or value < self.minimum:
            self.minimum = value
        if self.maximum is None or value > self.maximum:
            self.maximum = value

    def snapshot(self) -> dict[str, Any]:
        average = self.total / self.count if self.count else 0.0
        return {
            "count": self.count,
            "total": self.total,
            "min": self.minimum,
            "max": self.maximum,
            "avg": average,
        }


class MetricsRegistry:
    """
    Thread-safe registry for counters, gauges, and histograms.

    Counters take optional labels; ``counter(name)`` is the total and
    ``counter(name, channel="pubsub")`` one label set. Names used by the
    package:

    - bus.signals.received / bus.signals.suppressed / bus.reconcile.scheduled
    - bus.channel.errors (channel, op)
    - bus.changes.ignored
    - queue.reconcile.applied / queue.reconcile.stale / queue.reconcile.failed (code)
    - queue.reconcile.duration_ms
    - leases.claimed (mode) / leases.released / leases.force_released
    - assignment.claims (mode) / assignment.releases
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self.counters: dict[str, Counter] = {}
        self.gauges: dict[str, Gauge] = {}
        self.histograms: dict[str, Histogram] = {}

    def inc_counter(self, name: str, amount: float = 1.0, **labels: Any) -> None:
        with self._lock:
            counter = self.counters.setdefault(name, Counter())
            counter.inc(amount, label_set(labels))

    def set_gauge(self, name: str, value: float) -> None:
        with self._lock:
            gauge = self.gauges.setdefault(name, Gauge())
            gauge.set(value)

    def observe(self, name: str, value: float) -> None:
        with self._lock:
            histogram = self.histograms.setdefault(name, Histogram())
            histogram.observe(value)

    def counter(self, name: str, **labels: Any) -> float:
        with self._lock:
            counter = self.counters.get(name)
            return counter.get(label_set(labels)) if counter else 0.0

    def reset(self) -> None:
        with self._lock:
            self.counters.clear()
            self.gauges.clear()
            self.histograms.clear()

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "counters": {name: counter.value for name, counter in self.counters.items()},
                "labelled_counters": {
                    name: {format_labels(labels): value for labels, value in counter.by_labels.items()}
                    for name, counter in self.counters.items()
                    if counter.by_labels
                },
                "gauges": {name: gauge.value for name, gauge in self.gauges.items()},
                "histograms": {name: hist.snapshot() for name, hist in self.histograms.items()},
            }


metrics = MetricsRegistry()
