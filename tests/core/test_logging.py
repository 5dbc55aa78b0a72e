"""Tests for structlog configuration and scoped log context."""

import structlog
import pytest

from reconspine.core.logging import (
    LogContext,
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
)


@pytest.fixture(autouse=True)
def _clean_context():
    clear_context()
    yield
    clear_context()
    structlog.reset_defaults()


class TestLogContext:
    def test_sync_context_binds_and_unbinds(self):
        with LogContext(job_id="reconciliation-42-2024-01"):
            assert structlog.contextvars.get_contextvars() == {
                "job_id": "reconciliation-42-2024-01"
            }
        assert "job_id" not in structlog.contextvars.get_contextvars()

    @pytest.mark.asyncio
    async def test_async_context_binds_and_unbinds(self):
        async with LogContext(job_id="j1", district_id="42"):
            ctx = structlog.contextvars.get_contextvars()
            assert ctx["job_id"] == "j1"
            assert ctx["district_id"] == "42"
        assert structlog.contextvars.get_contextvars() == {}

    def test_outer_context_survives(self):
        bind_context(service_run="r1")
        with LogContext(job_id="j1"):
            pass
        assert structlog.contextvars.get_contextvars() == {"service_run": "r1"}


class TestConfigureLogging:
    def test_json_output(self, capsys):
        configure_logging(level="INFO", json_format=True, service="recon-test")
        get_logger("tests").info("reconciliation.started", job_id="j1")
        out = capsys.readouterr().out
        assert '"event": "reconciliation.started"' in out
        assert '"job_id": "j1"' in out
        assert '"service.name": "recon-test"' in out

    def test_level_filters(self, capsys):
        configure_logging(level="WARNING", json_format=True)
        get_logger("tests").info("reconciliation.hidden")
        assert "reconciliation.hidden" not in capsys.readouterr().out
