"""
Lazy-initialised service container.

:class:`ReconciliationServices` wires the orchestrator and its collaborators
from :class:`~reconspine.core.config.ReconSettings`. Every component is
created on first property access and shared by everything built from the
same container; nothing is registered globally.

Usage::

    from reconspine.container import build_services

    services = build_services()               # settings from RECON_* env
    job = await services.orchestrator.start_reconciliation("42", "2024-01")

    # Explicit settings and a controllable clock for tests:
    services = build_services(ReconSettings(storage_backend="memory"), clock=clock)

    # As an async context manager, pending writes are flushed on exit:
    async with build_services() as services:
        await services.orchestrator.process_reconciliation_cycle(job_id, current, cached)
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Any

from reconspine.core.cache import InMemoryCache
from reconspine.core.config.settings import ReconSettings, get_settings
from reconspine.core.logging import configure_logging, get_logger
from reconspine.core.timestamps import Clock, utc_now
from reconspine.domain.reconciliation.cache_service import ReconciliationCacheService
from reconspine.domain.reconciliation.cache_updater import SnapshotCacheUpdater
from reconspine.domain.reconciliation.change_detection import ChangeDetectionEngine
from reconspine.domain.reconciliation.config_service import (
    ReconciliationConfigService,
    policy_from_settings,
)
from reconspine.domain.reconciliation.orchestrator import ReconciliationOrchestrator
from reconspine.domain.reconciliation.storage import (
    FileReconciliationStorage,
    InMemoryReconciliationStorage,
)
from reconspine.execution.circuit_breaker import CircuitBreaker, CircuitBreakerRegistry
from reconspine.execution.resilience import ResilientExecutor
from reconspine.execution.retry import ExponentialBackoff, Sleeper
from reconspine.framework.alerts import (
    AlertManager,
    AlertSeverity,
    ConsoleChannel,
    WebhookChannel,
)
from reconspine.observability.metrics import MetricsRegistry
from reconspine.observability.reconciliation_metrics import ReconciliationMetricsService

logger = get_logger(__name__)

STORAGE_CIRCUIT = "reconciliation-storage"


class ReconciliationServices:
    """Lazy-initialised dependency container.

    Components are created on first property access and released via
    :meth:`aclose` (or the async context-manager protocol).
    """

    def __init__(
        self,
        settings: ReconSettings | None = None,
        *,
        clock: Clock = utc_now,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self._settings = settings
        self.clock = clock
        self._sleep = sleep
        self._alert_manager: AlertManager | None = None
        self._metrics_registry: MetricsRegistry | None = None
        self._metrics: ReconciliationMetricsService | None = None
        self._breakers: CircuitBreakerRegistry | None = None
        self._storage_executor: ResilientExecutor | None = None
        self._storage: Any | None = None
        self._cache: ReconciliationCacheService | None = None
        self._snapshot_cache: InMemoryCache | None = None
        self._config_service: ReconciliationConfigService | None = None
        self._change_detector: ChangeDetectionEngine | None = None
        self._cache_updater: SnapshotCacheUpdater | None = None
        self._orchestrator: ReconciliationOrchestrator | None = None

    # ── Properties (lazy) ────────────────────────────────────────

    @property
    def settings(self) -> ReconSettings:
        if self._settings is None:
            self._settings = get_settings()
        return self._settings

    @property
    def alert_manager(self) -> AlertManager:
        if self._alert_manager is None:
            s = self.settings
            manager = AlertManager(
                throttle_window=timedelta(minutes=s.alert_throttle_minutes),
                min_severity=AlertSeverity(s.alert_min_severity),
                clock=self.clock,
            )
            manager.register(ConsoleChannel(color=False))
            if s.alert_webhook_url:
                manager.register(WebhookChannel("webhook", s.alert_webhook_url))
            self._alert_manager = manager
        return self._alert_manager

    @property
    def metrics_registry(self) -> MetricsRegistry:
        if self._metrics_registry is None:
            self._metrics_registry = MetricsRegistry()
        return self._metrics_registry

    @property
    def metrics(self) -> ReconciliationMetricsService:
        if self._metrics is None:
            self._metrics = ReconciliationMetricsService(
                self.metrics_registry, self.alert_manager, clock=self.clock
            )
        return self._metrics

    @property
    def breakers(self) -> CircuitBreakerRegistry:
        if self._breakers is None:
            self._breakers = CircuitBreakerRegistry(clock=self.clock)
        return self._breakers

    @property
    def storage_breaker(self) -> CircuitBreaker:
        s = self.settings
        return self.breakers.get_or_create(
            STORAGE_CIRCUIT,
            failure_threshold=s.breaker_failure_threshold,
            recovery_timeout=s.breaker_recovery_timeout_seconds,
            monitoring_window=s.breaker_monitoring_window_seconds,
        )

    @property
    def storage_executor(self) -> ResilientExecutor:
        if self._storage_executor is None:
            s = self.settings
            self._storage_executor = ResilientExecutor(
                self.storage_breaker,
                lambda: ExponentialBackoff(
                    max_attempts=s.retry_max_attempts,
                    base_delay=s.retry_base_delay_seconds,
                    max_delay=s.retry_max_delay_seconds,
                    multiplier=s.retry_multiplier,
                ),
                sleep=self._sleep,
            )
        return self._storage_executor

    @property
    def storage(self) -> FileReconciliationStorage | InMemoryReconciliationStorage:
        if self._storage is None:
            s = self.settings
            if s.storage_backend == "memory":
                self._storage = InMemoryReconciliationStorage(clock=self.clock)
            else:
                self._storage = FileReconciliationStorage(
                    s.storage_dir,
                    default_config=policy_from_settings(s),
                    clock=self.clock,
                )
        return self._storage

    @property
    def cache(self) -> ReconciliationCacheService:
        if self._cache is None:
            s = self.settings
            self._cache = ReconciliationCacheService(
                InMemoryCache(max_size=s.cache_max_size, default_ttl_seconds=s.cache_ttl_seconds)
            )
        return self._cache

    @property
    def snapshot_cache(self) -> InMemoryCache:
        """Downstream cache that readers of district statistics consume."""
        if self._snapshot_cache is None:
            self._snapshot_cache = InMemoryCache(
                max_size=self.settings.cache_max_size, default_ttl_seconds=None
            )
        return self._snapshot_cache

    @property
    def config_service(self) -> ReconciliationConfigService:
        if self._config_service is None:
            self._config_service = ReconciliationConfigService(
                self.storage, defaults=policy_from_settings(self.settings)
            )
        return self._config_service

    @property
    def change_detector(self) -> ChangeDetectionEngine:
        if self._change_detector is None:
            self._change_detector = ChangeDetectionEngine(clock=self.clock)
        return self._change_detector

    @property
    def cache_updater(self) -> SnapshotCacheUpdater:
        if self._cache_updater is None:
            self._cache_updater = SnapshotCacheUpdater(self.snapshot_cache, clock=self.clock)
        return self._cache_updater

    @property
    def orchestrator(self) -> ReconciliationOrchestrator:
        if self._orchestrator is None:
            self._orchestrator = ReconciliationOrchestrator(
                storage=self.storage,
                cache=self.cache,
                config_service=self.config_service,
                change_detector=self.change_detector,
                cache_updater=self.cache_updater,
                storage_executor=self.storage_executor,
                alert_manager=self.alert_manager,
                metrics=self.metrics,
                clock=self.clock,
            )
        return self._orchestrator

    # ── Lifecycle ────────────────────────────────────────────────

    async def aclose(self) -> None:
        """Flush pending storage writes."""
        if self._storage is not None:
            await self._storage.flush()
            logger.debug("services.closed")

    async def __aenter__(self) -> ReconciliationServices:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()


def build_services(
    settings: ReconSettings | None = None,
    *,
    clock: Clock = utc_now,
    sleep: Sleeper = asyncio.sleep,
    configure_logs: bool = True,
) -> ReconciliationServices:
    """Create a container and configure logging from its settings."""
    services = ReconciliationServices(settings, clock=clock, sleep=sleep)
    if configure_logs:
        s = services.settings
        configure_logging(
            level=s.log_level,
            json_format=s.log_format == "json",
            service=s.service_name,
        )
    return services


__all__ = ["ReconciliationServices", "build_services", "STORAGE_CIRCUIT"]
