"""Tests for ReconciliationMetricsService."""

from dataclasses import replace
from datetime import timedelta

import pytest

from reconspine.domain.reconciliation.models import JobStatus


def _finish(job, status, clock, days=1):
    return replace(job, status=status, end_date=clock() + timedelta(days=days))


class TestRecording:
    """Start, completion, extension and failure recording."""

    def test_start_updates_counters_and_gauge(self, metrics, make_job):
        metrics.record_job_start(make_job("1"))
        metrics.record_job_start(make_job("2"))
        assert metrics.jobs_started.labels(triggered_by="manual").value == 2
        assert metrics.active_jobs.value == 2

    def test_completion(self, metrics, make_job, clock):
        job = make_job()
        metrics.record_job_start(job)
        metrics.record_job_completion(_finish(job, JobStatus.COMPLETED, clock, days=4), 3)

        [record] = metrics.get_job_duration_metrics()
        assert record.status == JobStatus.COMPLETED
        assert record.duration_seconds == 4 * 86400
        assert record.final_stability_days == 3
        assert metrics.active_jobs.value == 0
        assert metrics.jobs_finished.labels(status="completed").value == 1

    def test_completion_without_start_creates_record(self, metrics, make_job, clock):
        metrics.record_job_completion(_finish(make_job(), JobStatus.CANCELLED, clock), 0)
        assert metrics.get_metrics().cancelled_jobs == 1

    def test_extension(self, metrics, make_job):
        job = make_job()
        metrics.record_job_start(job)
        metrics.record_job_extension(job.id, 3)
        metrics.record_job_extension(job.id, 2)

        [record] = metrics.get_job_duration_metrics()
        assert record.was_extended
        assert record.extension_count == 2
        assert record.extension_days == 5
        assert metrics.extensions.value == 2

    def test_extension_for_unknown_job_ignored(self, metrics):
        metrics.record_job_extension("reconciliation-x-2024-01", 3)
        assert metrics.get_job_duration_metrics() == []

    @pytest.mark.asyncio
    async def test_cycle_failure_keeps_job_active(self, metrics, make_job, alert_channel):
        job = make_job()
        metrics.record_job_start(job)
        await metrics.record_job_failure(job, "storage down")

        [record] = metrics.get_job_duration_metrics()
        assert record.status == JobStatus.ACTIVE
        assert record.end_time is None
        assert record.error == "storage down"
        assert record.failure_count == 1
        assert metrics.cycle_failures.value == 1
        assert metrics.jobs_finished.labels(status="failed").value == 0
        assert metrics.active_jobs.value == 1
        [alert] = alert_channel.find(title="Reconciliation Failed")
        assert alert.job_id == job.id

    @pytest.mark.asyncio
    async def test_completion_after_cycle_failures_counted_once(self, metrics, make_job, clock):
        job = make_job()
        metrics.record_job_start(job)
        await metrics.record_job_failure(job, "storage down")
        await metrics.record_job_failure(job, "storage down")
        metrics.record_job_completion(_finish(job, JobStatus.COMPLETED, clock, days=4), 3)

        assert metrics.jobs_finished.labels(status="completed").value == 1
        assert metrics.jobs_finished.labels(status="failed").value == 0
        assert metrics.active_jobs.value == 0
        summary = metrics.get_metrics()
        assert summary.successful_jobs == 1
        assert summary.failed_jobs == 0
        assert summary.jobs_with_cycle_failures == 1
        assert summary.cycle_failures == 2

    @pytest.mark.asyncio
    async def test_failed_job_finishes_record(self, metrics, make_job, clock):
        job = make_job()
        metrics.record_job_start(job)
        await metrics.record_job_failure(_finish(job, JobStatus.FAILED, clock, days=2), "gave up")

        [record] = metrics.get_job_duration_metrics()
        assert record.status == JobStatus.FAILED
        assert record.duration_seconds == 2 * 86400
        assert metrics.jobs_finished.labels(status="failed").value == 1
        assert metrics.cycle_failures.value == 0
        assert metrics.active_jobs.value == 0


class TestSummaries:
    def test_empty_summary(self, metrics):
        summary = metrics.get_metrics()
        assert summary.total_jobs == 0
        assert summary.success_rate == 0.0

    def test_rates_and_averages(self, metrics, make_job, clock):
        a, b, c, d = (make_job(str(i)) for i in range(4))
        for job in (a, b, c, d):
            metrics.record_job_start(job)
        metrics.record_job_completion(_finish(a, JobStatus.COMPLETED, clock, days=2), 3)
        metrics.record_job_completion(_finish(b, JobStatus.COMPLETED, clock, days=4), 5)
        metrics.record_job_completion(_finish(c, JobStatus.CANCELLED, clock, days=6), 0)
        metrics.record_job_extension(a.id, 1)

        summary = metrics.get_metrics()
        assert summary.total_jobs == 4
        assert summary.active_jobs == 1
        assert summary.successful_jobs == 2
        assert summary.cancelled_jobs == 1
        assert summary.success_rate == 50.0
        assert summary.extension_rate == 25.0
        assert summary.average_duration_seconds == 4 * 86400
        assert summary.median_duration_seconds == 4 * 86400
        assert summary.average_stability_days == 4.0

    def test_district_filter(self, metrics, make_job):
        metrics.record_job_start(make_job("1"))
        metrics.record_job_start(make_job("2"))
        assert metrics.get_district_metrics("1").total_jobs == 1
        assert metrics.get_district_metrics("9").total_jobs == 0


class TestPatterns:
    @pytest.mark.asyncio
    async def test_frequent_failures_alerted_once(self, metrics, make_job, alert_channel):
        for i in range(4):
            await metrics.record_job_failure(make_job(str(i)), "boom")

        patterns = {p.pattern for p in metrics.get_performance_patterns()}
        assert "frequent_failures" in patterns
        alerts = alert_channel.find(title="Performance Pattern Detected: frequent_failures")
        assert len(alerts) == 1
        assert metrics.get_health_status()["is_healthy"] is False

    def test_repeated_extensions(self, metrics, make_job):
        for district in ("1", "2"):
            job = make_job(district)
            metrics.record_job_start(job)
            metrics.record_job_extension(job.id, 1)
            metrics.record_job_extension(job.id, 1)
        [pattern] = metrics.get_performance_patterns()
        assert pattern.pattern == "extended"
        assert pattern.severity == "medium"

    @pytest.mark.asyncio
    async def test_timeouts(self, metrics, make_job, clock):
        for district in ("1", "2"):
            job = make_job(district, max_reconciliation_days=2)
            metrics.record_job_start(job)
            await metrics.record_job_failure(_finish(job, JobStatus.FAILED, clock, days=3), "late")
        assert "timeout" in {p.pattern for p in metrics.get_performance_patterns()}


class TestMaintenance:
    def test_cleanup_drops_old_finished_records(self, metrics, make_job, clock):
        old, active = make_job("1"), make_job("2")
        metrics.record_job_start(old)
        metrics.record_job_start(active)
        metrics.record_job_completion(_finish(old, JobStatus.COMPLETED, clock, days=0), 3)

        clock.advance(days=91)
        assert metrics.cleanup_old_metrics() == 1
        assert [m.job_id for m in metrics.get_job_duration_metrics()] == [active.id]

    def test_health_and_reset(self, metrics, make_job):
        metrics.record_job_start(make_job())
        health = metrics.get_health_status()
        assert health["is_healthy"] is True
        assert health["active_jobs"] == 1

        metrics.reset_metrics()
        assert metrics.get_metrics().total_jobs == 0
        assert metrics.active_jobs.value == 0
