"""
Tests for the logging module.

Tests verify:
- LogContext binds and unbinds contextvars
- Service metadata is added to every event
- configure_logging is idempotent unless forced
"""

from __future__ import annotations

import logging

import pytest
import structlog
from structlog.testing import capture_logs

from schemaflow.core import logging as sf_logging
from schemaflow.core.logging import (
    LogContext,
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    is_configured,
    unbind_context,
)


@pytest.fixture
def fresh_logging(monkeypatch):
    """Run configure_logging against a clean slate and restore it afterwards."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    monkeypatch.setattr(sf_logging, "_configured", False)
    yield
    structlog.reset_defaults()
    root.handlers[:] = handlers
    root.setLevel(level)


class TestContext:
    def setup_method(self):
        clear_context()

    def teardown_method(self):
        clear_context()

    def test_log_context_binds_and_unbinds(self):
        with LogContext(invocation_id="abc123"):
            assert structlog.contextvars.get_contextvars() == {"invocation_id": "abc123"}
        assert structlog.contextvars.get_contextvars() == {}

    def test_bind_and_unbind(self):
        bind_context(datasource="reporting", phase="connect")
        unbind_context("phase")
        assert structlog.contextvars.get_contextvars() == {"datasource": "reporting"}

    def test_nested_contexts(self):
        with LogContext(invocation_id="abc123"):
            with LogContext(changeset="changelog.xml::1::ops"):
                assert structlog.contextvars.get_contextvars() == {
                    "invocation_id": "abc123",
                    "changeset": "changelog.xml::1::ops",
                }
            assert structlog.contextvars.get_contextvars() == {"invocation_id": "abc123"}

    def test_get_logger_emits_events(self):
        log = get_logger("schemaflow.test")
        with capture_logs() as logs:
            log.info("workspace.created", path="/tmp/x")
        assert logs == [{"event": "workspace.created", "path": "/tmp/x", "log_level": "info"}]


class TestServiceMetadata:
    def test_service_added(self):
        assert sf_logging._add_service_metadata(None, "info", {"event": "x"}) == {"event": "x", "service": "schemaflow"}

    def test_existing_service_kept(self):
        event = {"event": "x", "service": "host"}
        assert sf_logging._add_service_metadata(None, "info", event)["service"] == "host"


class TestConfigureLogging:
    def test_configures_once(self, fresh_logging):
        configure_logging(level="WARNING", format="json")
        assert is_configured()
        assert structlog.is_configured()
        assert logging.getLogger("schemaflow").level == logging.WARNING

        configure_logging(level="DEBUG", format="json")
        assert logging.getLogger("schemaflow").level == logging.WARNING

    def test_force_reconfigures(self, fresh_logging):
        configure_logging(level="WARNING", format="console")
        configure_logging(level="DEBUG", format="json", force=True)
        assert logging.getLogger("schemaflow").level == logging.DEBUG

    def test_level_from_environment(self, fresh_logging, monkeypatch):
        monkeypatch.setenv("SCHEMAFLOW_LOG_LEVEL", "error")
        configure_logging(format="json")
        assert logging.getLogger("schemaflow").level == logging.ERROR

    def test_json_renderer_selected(self, fresh_logging):
        configure_logging(level="INFO", format="json")
        processors = structlog.get_config()["processors"]
        assert isinstance(processors[-1], structlog.processors.JSONRenderer)
