"""
Tests for the JSONL audit log of coordinated executions and rollbacks.
"""

import json
import pytest
import tempfile
import shutil
from pathlib import Path
from src.toolrouter.utils.audit import AuditLogger, _sanitize_arguments
from src.toolrouter.utils.config import AuditConfig


@pytest.fixture
def temp_log_dir():
    """Create a temporary directory for audit logs."""
    temp_dir = tempfile.mkdtemp()
    yield temp_dir
    shutil.rmtree(temp_dir, ignore_errors=True)


def read_entries(log_dir) -> list:
    log_file = Path(log_dir) / "audit.jsonl"
    with open(log_file, "r") as f:
        return [json.loads(line) for line in f if line.strip()]


class TestAuditLogger:
    """Test suite for AuditLogger functionality."""

    def test_creates_log_directory(self, temp_log_dir):
        log_path = Path(temp_log_dir) / "audit_logs"
        assert not log_path.exists()

        audit = AuditLogger(log_dir=str(log_path))
        audit.close()

        assert log_path.is_dir()

    def test_tool_execution_entry(self, temp_log_dir):
        audit = AuditLogger(log_dir=temp_log_dir)
        audit.log_tool_execution(
            tool_name="get_weather",
            path="new",
            arguments={"city": "Lisbon"},
            duration_seconds=0.123456,
            success=True,
        )
        audit.close()

        entry = read_entries(temp_log_dir)[0]
        assert entry["event_type"] == "tool_execution"
        assert entry["tool_name"] == "get_weather"
        assert entry["path"] == "new"
        assert entry["arguments"] == {"city": "Lisbon"}
        assert entry["duration_seconds"] == 0.1235
        assert entry["status"] == "success"
        assert entry["fell_back"] is False
        assert "error" not in entry
        assert "timestamp" in entry

    def test_failed_execution_records_error(self, temp_log_dir):
        audit = AuditLogger(log_dir=temp_log_dir)
        audit.log_tool_execution(
            tool_name="menu_parse",
            path="legacy",
            arguments=None,
            duration_seconds=1.0,
            success=False,
            error="timeout",
            fell_back=True,
        )
        audit.close()

        entry = read_entries(temp_log_dir)[0]
        assert entry["status"] == "error"
        assert entry["error"] == "timeout"
        assert entry["fell_back"] is True
        assert entry["arguments"] is None

    def test_rollback_entry(self, temp_log_dir):
        audit = AuditLogger(log_dir=temp_log_dir)
        audit.log_rollback("trigger:user_complaints", "hybrid")
        audit.close()

        entry = read_entries(temp_log_dir)[0]
        assert entry["event_type"] == "emergency_rollback"
        assert entry["reason"] == "trigger:user_complaints"
        assert entry["previous_state"] == "hybrid"

    def test_sensitive_arguments_redacted(self, temp_log_dir):
        audit = AuditLogger(log_dir=temp_log_dir)
        audit.log_tool_execution(
            tool_name="web_search",
            path="new",
            arguments={"q": "tapas", "api_key": "sk-123", "nested": {"Bearer": "x"}},
            duration_seconds=0.1,
            success=True,
        )
        audit.close()

        entry = read_entries(temp_log_dir)[0]
        assert entry["arguments"]["q"] == "tapas"
        assert entry["arguments"]["api_key"] == "***REDACTED***"
        assert entry["arguments"]["nested"]["Bearer"] == "***REDACTED***"

    def test_accepts_config_object(self, temp_log_dir):
        config = AuditConfig(log_dir=temp_log_dir, rotation="1 MB", retention="1 day", compression=None)
        audit = AuditLogger(config=config)
        assert audit.config.rotation == "1 MB"
        audit.close()


def test_sanitize_arguments_passthrough():
    assert _sanitize_arguments(None) is None
    assert _sanitize_arguments("raw") == "raw"
    assert _sanitize_arguments({"password": "p", "city": "Oslo"}) == {
        "password": "***REDACTED***",
        "city": "Oslo",
    }
