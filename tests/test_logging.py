"""Tests for logging configuration and formatters."""

import re
import json

import structlog

from projectledger import audit
from projectledger.config import Config, LoggingConfig
from projectledger.logging import (
    bind_request_context,
    clear_request_context,
    configure_logging,
    splunk_processor,
    json_processor,
)


class TestSplunkProcessor:
    """Tests for splunk_processor function."""

    def test_basic_format(self):
        """Basic message formatting."""
        event_dict = {
            "level": "INFO",
            "event": "Test message",
        }

        result = splunk_processor(None, "info", event_dict)

        # Should match format: timestamp LEVEL message
        assert "INFO" in result
        assert "Test message" in result
        # Timestamp format check
        assert re.match(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}Z", result)

    def test_with_key_value_pairs(self):
        """Message with additional key-value pairs."""
        event_dict = {
            "level": "INFO",
            "event": "invoice_created",
            "line_items": 3,
            "rate": 8.5,
        }

        result = splunk_processor(None, "info", event_dict)

        assert "line_items=3" in result
        assert "rate=8.5" in result
        assert "invoice_created" in result

    def test_quotes_values_with_spaces(self):
        """Values with spaces are quoted."""
        event_dict = {
            "level": "INFO",
            "event": "Operation",
            "description": "file with spaces",
        }

        result = splunk_processor(None, "info", event_dict)

        assert 'description="file with spaces"' in result

    def test_level_uppercase(self):
        """Level is uppercased."""
        event_dict = {
            "level": "debug",
            "event": "Debug message",
        }

        result = splunk_processor(None, "debug", event_dict)

        assert "DEBUG" in result

    def test_default_level(self):
        """Missing level defaults to INFO."""
        event_dict = {
            "event": "No level",
        }

        result = splunk_processor(None, "info", event_dict)

        assert "INFO" in result

    def test_skips_internal_keys(self):
        """Keys starting with _ are skipped."""
        event_dict = {
            "level": "INFO",
            "event": "Test",
            "_internal": "should not appear",
            "visible": "appears",
        }

        result = splunk_processor(None, "info", event_dict)

        assert "_internal" not in result
        assert "visible=appears" in result

    def test_empty_kvs(self):
        """Message without extra key-values."""
        event_dict = {
            "level": "INFO",
            "event": "Simple message",
        }

        result = splunk_processor(None, "info", event_dict)

        # Should not have trailing space
        assert result.endswith("Simple message")

    def test_sorted_keys(self):
        """Keys are sorted alphabetically."""
        event_dict = {
            "level": "INFO",
            "event": "Test",
            "zebra": "z",
            "alpha": "a",
            "middle": "m",
        }

        result = splunk_processor(None, "info", event_dict)

        # Find positions of keys
        alpha_pos = result.find("alpha=")
        middle_pos = result.find("middle=")
        zebra_pos = result.find("zebra=")

        assert alpha_pos < middle_pos < zebra_pos


class TestJsonProcessor:
    """Tests for json_processor function."""

    def test_adds_timestamp(self):
        """Adds ISO timestamp."""
        event_dict = {
            "event": "Test message",
        }

        result = json_processor(None, "info", event_dict)

        assert "timestamp" in result
        # ISO format check
        assert re.match(
            r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}",
            result["timestamp"]
        )

    def test_level_uppercase(self):
        """Level is uppercased."""
        event_dict = {
            "level": "debug",
            "event": "Test",
        }

        result = json_processor(None, "debug", event_dict)

        assert result["level"] == "DEBUG"

    def test_default_level(self):
        """Missing level defaults to INFO."""
        event_dict = {
            "event": "Test",
        }

        result = json_processor(None, "info", event_dict)

        assert result["level"] == "INFO"

    def test_preserves_event_dict(self):
        """Other fields are preserved."""
        event_dict = {
            "event": "Test message",
            "custom_field": "custom_value",
            "count": 42,
        }

        result = json_processor(None, "info", event_dict)

        assert result["event"] == "Test message"
        assert result["custom_field"] == "custom_value"
        assert result["count"] == 42

    def test_returns_dict(self):
        """Returns a dictionary (for JSON renderer)."""
        event_dict = {
            "event": "Test",
        }

        result = json_processor(None, "info", event_dict)

        assert isinstance(result, dict)

    def test_serializable(self):
        """Result is JSON serializable."""
        event_dict = {
            "event": "Test",
            "nested": {"key": "value"},
            "list": [1, 2, 3],
        }

        result = json_processor(None, "info", event_dict)

        # Should not raise
        json_str = json.dumps(result)
        assert json_str is not None


class TestAudit:
    """Tests for audit event emission."""

    def test_emits_dotted_event(self, monkeypatch):
        """Audit events are named <type>.<action> with the fields attached."""
        events = []

        class Recorder:
            def info(self, event, **kwargs):
                events.append((event, kwargs))

        monkeypatch.setattr(audit, "_logger", Recorder())
        monkeypatch.setattr(audit, "_enabled", True)

        audit.log_tracking_code_regenerated(7, deactivated=1, user="admin@example.com")

        assert events == [
            (
                "tracking_code.regenerated",
                {
                    "event_type": "tracking_code",
                    "action": "regenerated",
                    "project_id": 7,
                    "deactivated": 1,
                    "user": "admin@example.com",
                },
            )
        ]

    def test_disabled(self, monkeypatch):
        """Nothing is emitted when audit logging is off."""
        events = []

        class Recorder:
            def info(self, event, **kwargs):
                events.append(event)

        monkeypatch.setattr(audit, "_logger", Recorder())
        audit.configure(enabled=False)
        try:
            audit.log_project_created(1, "Kitchen remodel")
        finally:
            audit.configure(enabled=True)

        assert events == []


class TestRequestContext:
    """Tests for per-request log context."""

    def test_binds_request_fields(self):
        request_id = bind_request_context("POST", "/invoices", actor="auth|admin")
        try:
            context = structlog.contextvars.get_contextvars()
            assert context == {
                "request_id": request_id,
                "method": "POST",
                "path": "/invoices",
                "actor": "auth|admin",
            }
        finally:
            clear_request_context()

        assert structlog.contextvars.get_contextvars() == {}

    def test_keeps_supplied_request_id(self):
        try:
            assert bind_request_context("GET", "/track/TC-ABC234", request_id="abc") == "abc"
            assert "actor" not in structlog.contextvars.get_contextvars()
        finally:
            clear_request_context()

    def test_context_reaches_formatter(self):
        """Bound fields appear in rendered key=value output."""
        bind_request_context("GET", "/projects", actor="auth|admin", request_id="r1")
        try:
            event_dict = structlog.contextvars.merge_contextvars(
                None, "info", {"event": "project_listed", "level": "info"}
            )
            result = splunk_processor(None, "info", event_dict)
        finally:
            clear_request_context()

        assert "request_id=r1" in result
        assert "actor=auth|admin" in result


class TestAuditFile:
    """Tests for routing audit events to their own file."""

    def test_audit_events_written_to_audit_file(self, tmp_path):
        main_log = tmp_path / "app.log"
        audit_log = tmp_path / "audit" / "audit.log"
        config = Config(logging=LoggingConfig(file=main_log, audit_file=audit_log))

        configure_logging(config)
        try:
            audit.log_project_created(7, "Kitchen remodel")
            structlog.get_logger("projectledger.test").info("project_listed")
        finally:
            configure_logging(Config())

        assert "project.created" in audit_log.read_text()
        assert "project.created" not in main_log.read_text()
        assert "project_listed" in main_log.read_text()

    def test_disabled_audit_config(self):
        """logging.enabled false turns audit events off."""
        configure_logging(Config(logging=LoggingConfig(enabled=False)))
        try:
            assert audit._enabled is False
        finally:
            configure_logging(Config())
        assert audit._enabled is True
