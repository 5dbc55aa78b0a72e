"""Observability for reconspine.

- metrics: in-process Counter / Gauge / Histogram with Prometheus export
- reconciliation_metrics: per-job durations, rates and performance patterns
"""

from reconspine.observability.metrics import Counter, Gauge, Histogram, MetricsRegistry
from reconspine.observability.reconciliation_metrics import (
    JobDurationMetric,
    PerformancePattern,
    ReconciliationMetricsService,
    ReconciliationMetricsSummary,
)

__all__ = [
    "Counter",
    "Gauge",
    "Histogram",
    "MetricsRegistry",
    "JobDurationMetric",
    "PerformancePattern",
    "ReconciliationMetricsService",
    "ReconciliationMetricsSummary",
]
