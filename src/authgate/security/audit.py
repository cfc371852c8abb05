"""
Audit Logging System.
Created: 2026-02-02

Append-only JSONL audit trail for security-relevant authorization events:
client registration, token issuance and revocation, device and CIBA approvals.
"""

import json
import logging
import uuid
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

logger = logging.getLogger("audit")


class AuditSeverity(str, Enum):
    INFO = "info"  # Normal operation (e.g. token issued)
    WARNING = "warning"  # Sensitive change (e.g. secret regenerated)
    CRITICAL = "critical"  # Revocation of credentials
    ALERT = "alert"  # Security violation (e.g. replayed code)


@dataclass
class AuditEvent:
    """A single audit log entry."""

    id: str
    timestamp: str
    severity: AuditSeverity
    actor: str  # Who performed the action (user id, client id or "system")
    action: str  # What happened (e.g. "token_issued", "client_revoked")
    target: str  # The object of the action (e.g. "client:abc")
    status: str  # "success", "denied", "error"
    context: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        severity: AuditSeverity,
        actor: str,
        action: str,
        target: str,
        status: str,
        **context: Any,
    ) -> "AuditEvent":
        return cls(
            id=str(uuid.uuid4()),
            timestamp=datetime.now(tz=UTC).isoformat(),
            severity=severity,
            actor=actor,
            action=action,
            target=target,
            status=status,
            context=context,
        )


class AuditLogger:
    """
    Append-only audit logger.
    Writes to ~/.authgate/audit.jsonl unless a path is given.
    """

    def __init__(self, log_path: Path | None = None):
        if log_path:
            self.log_path = log_path
        else:
            base_dir = Path.home() / ".authgate"
            base_dir.mkdir(parents=True, exist_ok=True)
            self.log_path = base_dir / "audit.jsonl"

        self._callbacks: list[Callable[[dict], None]] = []

    def on_log(self, callback: Callable[[dict], None]) -> None:
        """Register a callback to be called after each audit log write."""
        self._callbacks.append(callback)

    def log(self, event: AuditEvent) -> None:
        """Write an event to the audit log."""
        try:
            event_dict = asdict(event)
            with open(self.log_path, "a", encoding="utf-8") as f:
                f.write(json.dumps(event_dict, default=str) + "\n")
            for cb in self._callbacks:
                try:
                    cb(event_dict)
                except Exception:
                    logger.debug("Audit callback failed", exc_info=True)
        except Exception as e:
            # Fallback to system logger if audit fails (critical failure)
            logger.critical(f"FAILED TO WRITE AUDIT LOG: {e} | Event: {event.action}")

    def log_api_event(
        self,
        action: str,
        target: str,
        actor: str = "system",
        severity: AuditSeverity = AuditSeverity.INFO,
        status: str = "success",
        **context: Any,
    ) -> str:
        """Helper to log an authorization-server event."""
        event = AuditEvent.create(
            severity=severity,
            actor=actor,
            action=action,
            target=target,
            status=status,
            **context,
        )
        self.log(event)
        return event.id


# Singleton
_audit_logger: AuditLogger | None = None


def get_audit_logger() -> AuditLogger:
    global _audit_logger
    if _audit_logger is None:
        from authgate.config import get_settings

        path = get_settings().audit_log_path
        _audit_logger = AuditLogger(Path(path) if path else None)
    return _audit_logger


def reset_audit_logger() -> None:
    global _audit_logger
    _audit_logger = None
