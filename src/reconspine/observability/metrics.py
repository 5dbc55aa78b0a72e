"""
In-process metrics primitives with Prometheus text export.

Counters, gauges and histograms keyed by label sets. A
:class:`MetricsRegistry` is constructed by the application and passed to the
services that record into it.

Example:
    registry = MetricsRegistry()
    cycles = registry.counter("recon_cycles_total", "Cycles processed", ["outcome"])
    cycles.labels(outcome="ok").inc()
    print(registry.export_prometheus())
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class Labels:
    """Immutable label set for metrics."""

    _labels: tuple[tuple[str, str], ...]

    @classmethod
    def from_dict(cls, d: dict[str, str] | None) -> Labels:
        if not d:
            return cls(())
        return cls(tuple(sorted((k, str(v)) for k, v in d.items())))

    def to_dict(self) -> dict[str, str]:
        return dict(self._labels)


class Metric(ABC):
    """Base class for metrics."""

    metric_type = "untyped"

    def __init__(self, name: str, description: str = "", labels: list[str] | None = None):
        self.name = name
        self.description = description
        self.label_names = labels or []
        self._lock = threading.Lock()

    @abstractmethod
    def collect(self) -> list[dict[str, Any]]:
        """Collect metric values for export."""
        ...

    @abstractmethod
    def reset(self) -> None:
        ...


class Counter(Metric):
    """A monotonically increasing counter."""

    metric_type = "counter"

    def __init__(self, name: str, description: str = "", labels: list[str] | None = None):
        super().__init__(name, description, labels)
        self._values: dict[Labels, float] = {}

    def labels(self, **kwargs: str) -> CounterChild:
        return CounterChild(self, Labels.from_dict(kwargs))

    def inc(self, value: float = 1.0) -> None:
        self.labels().inc(value)

    @property
    def value(self) -> float:
        return self.labels().value

    def _inc(self, labels: Labels, value: float) -> None:
        with self._lock:
            self._values[labels] = self._values.get(labels, 0.0) + value

    def _get(self, labels: Labels) -> float:
        with self._lock:
            return self._values.get(labels, 0.0)

    def total(self) -> float:
        """Sum over every label set."""
        with self._lock:
            return sum(self._values.values())

    def collect(self) -> list[dict[str, Any]]:
        with self._lock:
            return [
                {"name": self.name, "type": "counter", "labels": labels.to_dict(), "value": value}
                for labels, value in self._values.items()
            ]

    def reset(self) -> None:
        with self._lock:
            self._values.clear()


class CounterChild:
    """Counter with fixed labels."""

    def __init__(self, counter: Counter, labels: Labels):
        self._counter = counter
        self._labels = labels

    def inc(self, value: float = 1.0) -> None:
        if value < 0:
            raise ValueError("Counter can only increase")
        self._counter._inc(self._labels, value)

    @property
    def value(self) -> float:
        return self._counter._get(self._labels)


class Gauge(Metric):
    """A value that can go up or down."""

    metric_type = "gauge"

    def __init__(self, name: str, description: str = "", labels: list[str] | None = None):
        super().__init__(name, description, labels)
        self._values: dict[Labels, float] = {}

    def labels(self, **kwargs: str) -> GaugeChild:
        return GaugeChild(self, Labels.from_dict(kwargs))

    def set(self, value: float) -> None:
        self.labels().set(value)

    def inc(self, value: float = 1.0) -> None:
        self.labels().inc(value)

    def dec(self, value: float = 1.0) -> None:
        self.labels().inc(-value)

    @property
    def value(self) -> float:
        return self.labels().value

    def _add(self, labels: Labels, delta: float) -> None:
        with self._lock:
            self._values[labels] = self._values.get(labels, 0.0) + delta

    def _set(self, labels: Labels, value: float) -> None:
        with self._lock:
            self._values[labels] = value

    def _get(self, labels: Labels) -> float:
        with self._lock:
            return self._values.get(labels, 0.0)

    def collect(self) -> list[dict[str, Any]]:
        with self._lock:
            return [
                {"name": self.name, "type": "gauge", "labels": labels.to_dict(), "value": value}
                for labels, value in self._values.items()
            ]

    def reset(self) -> None:
        with self._lock:
            self._values.clear()


class GaugeChild:
    """Gauge with fixed labels."""

    def __init__(self, gauge: Gauge, labels: Labels):
        self._gauge = gauge
        self._labels = labels

    def set(self, value: float) -> None:
        self._gauge._set(self._labels, value)

    def inc(self, value: float = 1.0) -> None:
        self._gauge._add(self._labels, value)

    def dec(self, value: float = 1.0) -> None:
        self._gauge._add(self._labels, -value)

    @property
    def value(self) -> float:
        return self._gauge._get(self._labels)


class Histogram(Metric):
    """A distribution of values (durations, extension sizes)."""

    metric_type = "histogram"

    DEFAULT_BUCKETS = (0.1, 0.5, 1.0, 5.0, 30.0, 60.0, 300.0, float("inf"))

    def __init__(
        self,
        name: str,
        description: str = "",
        labels: list[str] | None = None,
        buckets: tuple[float, ...] | None = None,
    ):
        super().__init__(name, description, labels)
        self._buckets = tuple(sorted(buckets or self.DEFAULT_BUCKETS))
        if self._buckets[-1] != float("inf"):
            self._buckets = self._buckets + (float("inf"),)
        self._data: dict[Labels, dict[str, Any]] = {}

    def labels(self, **kwargs: str) -> HistogramChild:
        return HistogramChild(self, Labels.from_dict(kwargs))

    def observe(self, value: float) -> None:
        self.labels().observe(value)

    def _empty(self) -> dict[str, Any]:
        return {"buckets": dict.fromkeys(self._buckets, 0), "sum": 0.0, "count": 0}

    def _observe(self, labels: Labels, value: float) -> None:
        with self._lock:
            data = self._data.setdefault(labels, self._empty())
            data["sum"] += value
            data["count"] += 1
            for bucket in self._buckets:
                if value <= bucket:
                    data["buckets"][bucket] += 1

    def _get(self, labels: Labels) -> dict[str, Any]:
        with self._lock:
            return self._data.get(labels, self._empty())

    def collect(self) -> list[dict[str, Any]]:
        with self._lock:
            return [
                {
                    "name": self.name,
                    "type": "histogram",
                    "labels": labels.to_dict(),
                    "buckets": dict(data["buckets"]),
                    "sum": data["sum"],
                    "count": data["count"],
                }
                for labels, data in self._data.items()
            ]

    def reset(self) -> None:
        with self._lock:
            self._data.clear()


class HistogramChild:
    """Histogram with fixed labels."""

    def __init__(self, histogram: Histogram, labels: Labels):
        self._histogram = histogram
        self._labels = labels

    def observe(self, value: float) -> None:
        self._histogram._observe(self._labels, value)

    @property
    def data(self) -> dict[str, Any]:
        return self._histogram._get(self._labels)


class MetricsRegistry:
    """Registry of all metrics for collection and export."""

    def __init__(self):
        self._metrics: dict[str, Metric] = {}
        self._lock = threading.Lock()

    def _get_or_create(self, cls: type[Metric], name: str, *args: Any) -> Any:
        with self._lock:
            existing = self._metrics.get(name)
            if existing is None:
                existing = cls(name, *args)
                self._metrics[name] = existing
            elif not isinstance(existing, cls):
                raise ValueError(
                    f"Metric {name!r} already registered as {existing.metric_type}"
                )
            return existing

    def counter(self, name: str, description: str = "", labels: list[str] | None = None) -> Counter:
        """Get or create a counter."""
        return self._get_or_create(Counter, name, description, labels)

    def gauge(self, name: str, description: str = "", labels: list[str] | None = None) -> Gauge:
        """Get or create a gauge."""
        return self._get_or_create(Gauge, name, description, labels)

    def histogram(
        self,
        name: str,
        description: str = "",
        labels: list[str] | None = None,
        buckets: tuple[float, ...] | None = None,
    ) -> Histogram:
        """Get or create a histogram."""
        return self._get_or_create(Histogram, name, description, labels, buckets)

    def get(self, name: str) -> Metric | None:
        with self._lock:
            return self._metrics.get(name)

    def collect(self) -> list[dict[str, Any]]:
        with self._lock:
            metrics = list(self._metrics.values())
        results = []
        for metric in metrics:
            results.extend(metric.collect())
        return results

    def reset(self) -> None:
        """Zero every metric, keeping registrations."""
        with self._lock:
            metrics = list(self._metrics.values())
        for metric in metrics:
            metric.reset()

    def export_prometheus(self) -> str:
        """Export metrics in Prometheus text format."""
        lines: list[str] = []
        with self._lock:
            metrics = list(self._metrics.values())

        for metric in metrics:
            samples = metric.collect()
            if not samples:
                continue
            if metric.description:
                lines.append(f"# HELP {metric.name} {metric.description}")
            lines.append(f"# TYPE {metric.name} {metric.metric_type}")

            for data in samples:
                label_str = _format_labels(data.get("labels", {}))
                if data["type"] in ("counter", "gauge"):
                    lines.append(f"{metric.name}{label_str} {data['value']}")
                    continue
                for bucket, count in data["buckets"].items():
                    le = "+Inf" if bucket == float("inf") else repr(bucket)
                    lines.append(
                        f"{metric.name}_bucket{_format_labels(data['labels'], le=le)} {count}"
                    )
                lines.append(f"{metric.name}_sum{label_str} {data['sum']}")
                lines.append(f"{metric.name}_count{label_str} {data['count']}")

        return "\n".join(lines)


def _format_labels(labels: dict[str, str], **extra: str) -> str:
    merged = {**labels, **extra}
    if not merged:
        return ""
    return "{" + ",".join(f'{k}="{v}"' for k, v in merged.items()) + "}"


__all__ = [
    "Labels",
    "Metric",
    "Counter",
    "Gauge",
    "Histogram",
    "MetricsRegistry",
]
