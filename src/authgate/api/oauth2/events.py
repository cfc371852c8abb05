# Event sinks for authorization-server activity.
# Created: 2026-02-20
#
# Engines emit an event after a state transition has been committed. Sinks
# must never break the flow that emitted the event.

from __future__ import annotations

import logging
from typing import Any, Protocol

from authgate.security.audit import AuditLogger, AuditSeverity, get_audit_logger

logger = logging.getLogger(__name__)

# Events that revoke or re-key credentials are recorded at a higher severity
_SEVERITIES = {
    "client_revoked": AuditSeverity.CRITICAL,
    "client_secret_regenerated": AuditSeverity.WARNING,
    "token_revoked": AuditSeverity.WARNING,
    "user_tokens_revoked": AuditSeverity.CRITICAL,
    "scope_deleted": AuditSeverity.WARNING,
}


class EventSink(Protocol):
    def emit(self, action: str, target: str, **context: Any) -> None: ...


class NullEventSink:
    def emit(self, action: str, target: str, **context: Any) -> None:
        return None


class LoggingEventSink:
    """Writes events to the application log."""

    def emit(self, action: str, target: str, **context: Any) -> None:
        logger.info("%s %s %s", action, target, context or "")


class AuditEventSink:
    """Appends events to the JSONL audit trail."""

    def __init__(self, audit_logger: AuditLogger | None = None):
        self._audit = audit_logger

    def emit(self, action: str, target: str, **context: Any) -> None:
        audit = self._audit or get_audit_logger()
        actor = str(context.pop("actor", "system"))
        audit.log_api_event(
            action=action,
            target=target,
            actor=actor,
            severity=_SEVERITIES.get(action, AuditSeverity.INFO),
            **context,
        )


class RecordingEventSink:
    """Keeps events in memory; handy for inspection in tests and the admin shell."""

    def __init__(self) -> None:
        self.events: list[tuple[str, str, dict[str, Any]]] = []

    def emit(self, action: str, target: str, **context: Any) -> None:
        self.events.append((action, target, context))

    def actions(self) -> list[str]:
        return [action for action, _, _ in self.events]


def emit_event(sink: EventSink | None, action: str, target: str, **context: Any) -> None:
    """Deliver one event, logging (not raising) sink failures."""
    if sink is None:
        return
    try:
        sink.emit(action, target, **context)
    except Exception:
        logger.warning("Event sink failed for %s", action, exc_info=True)
