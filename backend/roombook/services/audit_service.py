# backend/roombook/services/audit_service.py
"""Fire-and-forget audit events for ledger operations."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
import logging
from typing import Any, Literal, Mapping, Protocol

logger = logging.getLogger(__name__)

ActorType = Literal["user", "system", "admin"]


class AuditSink(Protocol):
    def emit(self, event: Mapping[str, Any]) -> None: ...


class LoggingAuditSink:
    """Default sink: one structured log line per event."""

    def __init__(self, logger_name: str = "roombook.audit"):
        self._logger = logging.getLogger(logger_name)

    def emit(self, event: Mapping[str, Any]) -> None:
        self._logger.info("audit %s %s", event.get("action"), event.get("resource_id"), extra={"audit": dict(event)})


_sink: AuditSink = LoggingAuditSink()


def set_audit_sink(sink: AuditSink) -> None:
    global _sink
    _sink = sink


def get_audit_sink() -> AuditSink:
    return _sink


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class AuditService:
    """Build audit events and hand them to the configured sink."""

    def __init__(self, sink: AuditSink | None = None):
        self._explicit_sink = sink

    @property
    def sink(self) -> AuditSink:
        return self._explicit_sink or get_audit_sink()

    def log(
        self,
        action: str,
        resource_type: str,
        *,
        resource_id: str | None = None,
        actor_id: str | None = None,
        actor_type: ActorType = "user",
        metadata: Mapping[str, Any] | None = None,
        timestamp: datetime | None = None,
    ) -> bool:
        """
        Emit an audit event.

        Sink failures are logged and swallowed; returns False in that case so
        callers that care can tell, but a ledger transaction is never aborted
        by auditing.
        """
        event = {
            "timestamp": (timestamp or datetime.now(timezone.utc)).isoformat(),
            "action": action,
            "resource_type": resource_type,
            "resource_id": resource_id,
            "actor_type": actor_type,
            "actor_id": actor_id,
            "metadata": {key: _jsonable(value) for key, value in (metadata or {}).items()},
        }
        try:
            self.sink.emit(event)
            return True
        except Exception:
            logger.warning("Audit sink failed for %s on %s", action, resource_id, exc_info=True)
            return False
