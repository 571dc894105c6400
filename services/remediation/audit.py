"""Append-only audit sinks for remediation workflow events."""

from __future__ import annotations

import threading
from collections.abc import Callable, Mapping
from contextlib import AbstractContextManager
from datetime import datetime
from typing import Any, NamedTuple, Protocol

from infra.logging_config import StructuredLogger
from services.remediation.models import utc_now


class RemediationAuditEvent(NamedTuple):
    """Immutable audit record for one workflow transition."""

    action: str
    actor_id: str
    target_id: str
    details: Mapping[str, Any]
    timestamp: datetime
    correlation_id: str = ""

    @classmethod
    def build(
        cls,
        action: str,
        *,
        actor_id: str,
        target_id: str,
        details: Mapping[str, Any] | None = None,
        correlation_id: str = "",
        timestamp: datetime | None = None,
    ) -> RemediationAuditEvent:
        return cls(
            action=action,
            actor_id=actor_id,
            target_id=target_id,
            details=dict(details or {}),
            timestamp=timestamp or utc_now(),
            correlation_id=correlation_id,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action,
            "actor_id": self.actor_id,
            "target_id": self.target_id,
            "details": dict(self.details),
            "timestamp": self.timestamp.isoformat(),
            "correlation_id": self.correlation_id,
        }


class AuditSink(Protocol):
    """Protocol for remediation audit event sinks."""

    def sink_name(self) -> str:
        """Return deterministic sink name for diagnostics."""

    def append(self, event: RemediationAuditEvent) -> None:
        """Record one audit event."""


class NoopAuditSink:
    """No-op sink used when no audit destination is configured."""

    def sink_name(self) -> str:
        return "noop"

    def append(self, event: RemediationAuditEvent) -> None:
        _ = event


class InMemoryAuditSink:
    """In-memory audit sink for deterministic unit tests."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._events: list[RemediationAuditEvent] = []

    def sink_name(self) -> str:
        return "in_memory"

    def append(self, event: RemediationAuditEvent) -> None:
        """Store audit event in insertion order."""
        with self._lock:
            self._events.append(event)

    def events(self) -> list[RemediationAuditEvent]:
        """Return a copy of recorded events."""
        with self._lock:
            return list(self._events)

    def actions(self) -> list[str]:
        return [e.action for e in self.events()]


class LoggingAuditSink:
    """Emit each audit event as a structured log line."""

    def __init__(self, name: str = "remediation.audit") -> None:
        self._log = StructuredLogger(name)

    def sink_name(self) -> str:
        return "logging"

    def append(self, event: RemediationAuditEvent) -> None:
        self._log.info(
            "audit_event",
            audit_action=event.action,
            actor_id=event.actor_id,
            target_id=event.target_id,
            details=dict(event.details),
            event_timestamp=event.timestamp.isoformat(),
            audit_correlation_id=event.correlation_id,
        )


def _default_connection() -> AbstractContextManager[Any]:
    from apps.backend.db import db_conn

    return db_conn()


class PostgresAuditSink:
    """Insert-only audit trail in ``remediation_audit_events``."""

    def __init__(self, *, connection: Callable[[], AbstractContextManager[Any]] = _default_connection) -> None:
        self._connection = connection

    def sink_name(self) -> str:
        return "postgres"

    def append(self, event: RemediationAuditEvent) -> None:
        from apps.backend.db import execute_conn, to_jsonb

        with self._connection() as conn:
            execute_conn(
                conn,
                """
                INSERT INTO remediation_audit_events
                    (action, actor_id, target_id, details, occurred_at, correlation_id)
                VALUES (%s, %s, %s, %s::jsonb, %s, %s)
                """,
                (
                    event.action,
                    event.actor_id,
                    event.target_id,
                    to_jsonb(dict(event.details)),
                    event.timestamp,
                    event.correlation_id,
                ),
            )
            conn.commit()
