"""Tests for the service container."""

from datetime import UTC, datetime

import pytest

from reconspine.container import STORAGE_CIRCUIT, ReconciliationServices, build_services
from reconspine.core.config import ReconSettings
from reconspine.core.timestamps import FrozenClock
from reconspine.domain.reconciliation.storage import (
    FileReconciliationStorage,
    InMemoryReconciliationStorage,
)


@pytest.fixture
def clock():
    return FrozenClock(datetime(2024, 2, 1, tzinfo=UTC))


@pytest.fixture
def services(clock):
    return build_services(
        ReconSettings(storage_backend="memory"), clock=clock, configure_logs=False
    )


class TestWiring:
    def test_components_are_lazy_singletons(self, services):
        assert isinstance(services, ReconciliationServices)
        assert services._orchestrator is None

        orchestrator = services.orchestrator
        assert services.orchestrator is orchestrator
        assert services.storage is services.storage
        assert services.alert_manager is services.alert_manager
        assert services.metrics is services.metrics

    def test_memory_backend(self, services):
        assert isinstance(services.storage, InMemoryReconciliationStorage)

    def test_file_backend(self, tmp_path, clock):
        settings = ReconSettings(storage_backend="file", storage_dir=str(tmp_path / "recon"))
        services = build_services(settings, clock=clock, configure_logs=False)
        assert isinstance(services.storage, FileReconciliationStorage)
        assert services.storage.storage_dir == tmp_path / "recon"

    def test_storage_breaker_from_settings(self, clock):
        settings = ReconSettings(
            storage_backend="memory",
            breaker_failure_threshold=7,
            breaker_recovery_timeout_seconds=12.0,
        )
        services = build_services(settings, clock=clock, configure_logs=False)
        breaker = services.storage_breaker

        assert breaker.name == STORAGE_CIRCUIT == "reconciliation-storage"
        assert breaker.failure_threshold == 7
        assert breaker.recovery_timeout == 12.0
        assert services.storage_breaker is breaker

    def test_policy_defaults_from_settings(self, clock):
        settings = ReconSettings(storage_backend="memory", default_stability_period_days=5)
        services = build_services(settings, clock=clock, configure_logs=False)
        assert services.config_service.defaults.stability_period_days == 5

    def test_alert_channels(self, clock):
        plain = build_services(ReconSettings(storage_backend="memory"), clock=clock, configure_logs=False)
        assert plain.alert_manager.list_channels() == ["console"]

        hooked = build_services(
            ReconSettings(storage_backend="memory", alert_webhook_url="https://hooks.example/recon"),
            clock=clock,
            configure_logs=False,
        )
        assert hooked.alert_manager.list_channels() == ["console", "webhook"]


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_context_manager_flushes(self, services):
        storage = services.storage
        async with services:
            await services.orchestrator.start_reconciliation("42", "2024-01")
        assert storage.flush_count >= 2

    @pytest.mark.asyncio
    async def test_aclose_without_storage(self, services):
        await services.aclose()
        assert services._storage is None

    @pytest.mark.asyncio
    async def test_end_to_end(self, tmp_path, clock):
        settings = ReconSettings(storage_backend="file", storage_dir=str(tmp_path))
        async with build_services(settings, clock=clock, configure_logs=False) as services:
            job = await services.orchestrator.start_reconciliation("42", "2024-01")
            assert services.storage.pending_writes > 0

        reopened = FileReconciliationStorage(tmp_path, clock=clock)
        assert (await reopened.get_job(job.id)).district_id == "42"
