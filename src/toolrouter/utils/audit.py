"""
Audit logging for coordinated tool executions and emergency rollbacks.

Writes one JSON object per line with rotation support.
"""

from typing import Any, Dict, Optional
from pathlib import Path
from datetime import datetime, timezone
import json
import re

from loguru import logger

from src.toolrouter.protocol import sanitize_json
from .config import AuditConfig, DEFAULT_AUDIT_CONFIG

_SENSITIVE_KEYS = re.compile(
    r"(api[_-]?key|token|password|passwd|secret|credential|auth|bearer)",
    re.IGNORECASE,
)
_REDACTED = "***REDACTED***"


def _sanitize_arguments(args):
    """Recursively redact sensitive values from an arguments dict."""
    if args is None:
        return None
    if not isinstance(args, dict):
        return args
    sanitized = {}
    for key, value in args.items():
        if _SENSITIVE_KEYS.search(str(key)):
            sanitized[key] = _REDACTED
        elif isinstance(value, dict):
            sanitized[key] = _sanitize_arguments(value)
        else:
            sanitized[key] = value
    return sanitized


class AuditLogger:
    """
    Audit logger for tool executions.

    Each coordinated execution and each emergency rollback becomes one JSONL
    entry in ``<log_dir>/audit.jsonl``.
    """

    def __init__(
        self,
        log_dir: Optional[str] = None,
        rotation: Optional[str] = None,
        retention: Optional[str] = None,
        compression: Optional[str] = None,
        config: Optional[AuditConfig] = None,
    ):
        if config:
            self.config = config
        else:
            self.config = AuditConfig(
                log_dir=log_dir or DEFAULT_AUDIT_CONFIG.log_dir,
                rotation=rotation or DEFAULT_AUDIT_CONFIG.rotation,
                retention=retention or DEFAULT_AUDIT_CONFIG.retention,
                compression=compression or DEFAULT_AUDIT_CONFIG.compression,
            )

        self.log_path = Path(self.config.log_dir)
        self.log_path.mkdir(parents=True, exist_ok=True)
        self.log_file = self.log_path / "audit.jsonl"

        self._sink_id = logger.add(
            str(self.log_file),
            format="{message}",
            rotation=self.config.rotation,
            retention=self.config.retention,
            compression=self.config.compression,
            serialize=False,
            enqueue=True,
            filter=lambda record: record["extra"].get("audit") is True,
        )

    def log_tool_execution(
        self,
        tool_name: str,
        path: str,
        arguments: Optional[Dict[str, Any]],
        duration_seconds: float,
        success: bool,
        error: Optional[str] = None,
        fell_back: bool = False,
    ) -> None:
        """
        Log one coordinated execution.

        Args:
            tool_name: Name of the tool called
            path: "new" or "legacy", the path that produced the result
            arguments: Arguments passed to the tool
            duration_seconds: Wall time of the whole execution
            success: Whether the result was a success
            error: Error message when not successful
            fell_back: True when the new path failed and legacy answered
        """
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event_type": "tool_execution",
            "tool_name": tool_name,
            "path": path,
            "arguments": _sanitize_arguments(sanitize_json(arguments)),
            "duration_seconds": round(duration_seconds, 4),
            "status": "success" if success else "error",
            "fell_back": fell_back,
        }
        if error is not None:
            entry["error"] = error
        self._write_entry(entry)

    def log_rollback(self, reason: str, previous_state: str) -> None:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event_type": "emergency_rollback",
            "reason": reason,
            "previous_state": previous_state,
        }
        self._write_entry(entry)

    def _write_entry(self, entry: Dict[str, Any]) -> None:
        json_line = json.dumps(entry, separators=(",", ":"), default=str)
        logger.bind(audit=True).info(json_line)

    def close(self) -> None:
        """Remove the audit sink from loguru, flushing queued lines."""
        logger.remove(self._sink_id)
