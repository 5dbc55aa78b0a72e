"""Month-end reconciliation.

Quick start::

    from reconspine.container import build_services
    from reconspine.domain.reconciliation import ReconciliationPhase

    services = build_services()
    orchestrator = services.orchestrator
    job = await orchestrator.start_reconciliation("42", "2024-01")
    status = await orchestrator.process_reconciliation_cycle(job.id, current, cached)
    if status.phase == ReconciliationPhase.FINALIZING:
        await orchestrator.finalize_reconciliation(job.id)
"""

from reconspine.domain.reconciliation.models import (
    CacheUpdateResult,
    DataChanges,
    DistrictStatistics,
    ExtensionInfo,
    JobStatus,
    ReconciliationConfig,
    ReconciliationEntry,
    ReconciliationJob,
    ReconciliationPhase,
    ReconciliationStatus,
    ReconciliationTimeline,
    SignificantChangeThresholds,
    TriggeredBy,
    make_job_id,
)
from reconspine.domain.reconciliation.validation import (
    ConfigValidationResult,
    validate_configuration,
)

__all__ = [
    "CacheUpdateResult",
    "DataChanges",
    "DistrictStatistics",
    "ExtensionInfo",
    "JobStatus",
    "ReconciliationConfig",
    "ReconciliationEntry",
    "ReconciliationJob",
    "ReconciliationPhase",
    "ReconciliationStatus",
    "ReconciliationTimeline",
    "SignificantChangeThresholds",
    "TriggeredBy",
    "make_job_id",
    "ConfigValidationResult",
    "validate_configuration",
]
