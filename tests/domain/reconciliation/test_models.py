"""Tests for reconciliation domain models."""

from datetime import timedelta

import pytest

from reconspine.domain.reconciliation.models import (
    DataChanges,
    JobStatus,
    MembershipChange,
    ReconciliationConfig,
    ReconciliationEntry,
    ReconciliationJob,
    ReconciliationTimeline,
    SignificantChangeThresholds,
    make_job_id,
)


class TestJobId:
    def test_deterministic(self):
        assert make_job_id("42", "2024-01") == "reconciliation-42-2024-01"


class TestReconciliationConfig:
    def test_defaults(self):
        cfg = ReconciliationConfig()
        assert cfg.max_reconciliation_days == 15
        assert cfg.stability_period_days == 3
        assert cfg.check_frequency_hours == 24
        assert cfg.max_extension_days == 5
        assert cfg.auto_extension_enabled is True
        assert cfg.significant_change_thresholds == SignificantChangeThresholds(1.0, 1, 2.0)

    def test_merged_overlays_scalars_and_thresholds(self):
        cfg = ReconciliationConfig().merged(
            {
                "stability_period_days": 5,
                "significant_change_thresholds": {"membership_percent": 2.5},
            }
        )
        assert cfg.stability_period_days == 5
        assert cfg.significant_change_thresholds.membership_percent == 2.5
        assert cfg.significant_change_thresholds.club_count_absolute == 1

    def test_merged_leaves_original_untouched(self):
        original = ReconciliationConfig()
        original.merged({"max_extension_days": 0})
        assert original.max_extension_days == 5

    def test_from_dict_ignores_unknown(self):
        cfg = ReconciliationConfig.from_dict({"stability_period_days": 4, "legacy": True})
        assert cfg.stability_period_days == 4


class TestReconciliationJob:
    def test_rejects_deadline_before_start(self, make_job):
        job = make_job()
        with pytest.raises(ValueError, match="max_end_date"):
            ReconciliationJob(
                id=job.id,
                district_id=job.district_id,
                target_month=job.target_month,
                status=JobStatus.ACTIVE,
                start_date=job.start_date,
                max_end_date=job.start_date - timedelta(days=1),
                config=job.config,
                metadata=job.metadata,
            )

    def test_is_active(self, make_job):
        assert make_job().is_active
        assert not make_job(status=JobStatus.CANCELLED).is_active

    def test_serialization_preserves_fields(self, make_job):
        job = make_job(stability_period_days=4)
        job.current_data_date = "2024-01-31"
        restored = ReconciliationJob.from_dict(job.to_dict())
        assert restored == job
        assert restored.start_date.tzinfo is not None


class TestTimeline:
    def test_serialization_preserves_entries(self, make_job, make_timeline, clock):
        job = make_job()
        timeline = make_timeline(job, [True, False])
        timeline.append(
            ReconciliationEntry(
                date=clock(),
                source_data_date="2024-01-31",
                changes=DataChanges(
                    has_changes=True,
                    changed_fields=["membership"],
                    timestamp=clock(),
                    source_data_date="2024-01-31",
                    membership_change=MembershipChange(1000, 1020, 2.0),
                ),
                is_significant=True,
                cache_updated=False,
                notes="Significant changes detected",
            )
        )
        restored = ReconciliationTimeline.from_dict(timeline.to_dict())
        assert restored == timeline
        assert restored.entries[-1].changes.membership_change.percent_change == 2.0

    def test_entries_are_immutable(self, make_job, make_timeline):
        entry = make_timeline(make_job(), [False]).entries[0]
        with pytest.raises(AttributeError):
            entry.is_significant = True
