"""
reconspine - month-end data reconciliation.

Watches a periodically refreshed feed of district statistics, records every
observation in a per-job timeline, and finalizes a month once its data has
stayed quiet for the configured stability window.

- reconspine.core: errors, results, logging, settings, cache, timestamps
- reconspine.execution: circuit breaker, retry, resilient executor
- reconspine.framework.alerts: alert manager and channels
- reconspine.observability: metrics registry and job metrics
- reconspine.domain.reconciliation: models, policy and the orchestrator
"""

__version__ = "0.1.0"
