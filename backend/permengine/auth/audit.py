"""Audit events for denials and sensitive-field overrides.

The engine builds AuditEvents and hands them to an AuditSink through
AuditEmitter.  Recording is fire-and-forget from the engine's point of
view: a slow or failing sink is logged and the event dropped, and the
enforced operation carries on.  No retries.

Usage:
    emitter = AuditEmitter(SqlAuditSink(session_factory), timeout=1.0)
    await emitter.emit(AuditEvent.denied(principal, capability, {...}))
"""

from __future__ import annotations

import asyncio
import enum
import logging
from datetime import datetime, timezone
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from permengine.auth.catalog import Capability
from permengine.auth.principal import Principal
from permengine.middleware.exceptions import AuditWriteFailure
from permengine.models.audit_log import PermissionAuditLog

logger = logging.getLogger(__name__)


class AuditOutcome(str, enum.Enum):
    DENIED = "denied"
    OVERRIDDEN = "overridden"


class AuditEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    principal_id: str
    role: str
    category: str | None = None
    capability: str | None = None
    outcome: AuditOutcome
    context: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def for_principal(
        cls,
        principal: Principal,
        outcome: AuditOutcome,
        capability: Capability | None = None,
        context: dict[str, Any] | None = None,
    ) -> "AuditEvent":
        return cls(
            principal_id=principal.id,
            role=principal.role.value,
            category=capability.category.value if capability else None,
            capability=capability.name if capability else None,
            outcome=outcome,
            context=context or {},
        )


class AuditSink(Protocol):
    async def record(self, event: AuditEvent) -> None:
        ...


class AuditEmitter:
    """Bounded, non-raising wrapper around an AuditSink."""

    def __init__(self, sink: AuditSink, timeout: float = 1.0):
        self._sink = sink
        self._timeout = timeout

    async def emit(self, event: AuditEvent) -> bool:
        """Record the event.  Returns False if it was dropped."""
        try:
            await asyncio.wait_for(self._sink.record(event), timeout=self._timeout)
            return True
        except asyncio.TimeoutError:
            failure = AuditWriteFailure(f"Audit sink timed out after {self._timeout}s")
        except Exception as e:
            failure = AuditWriteFailure(f"Audit sink failed: {e}")

        logger.warning(
            f"{failure.error_code}: {failure.message} (event dropped)",
            extra={
                "principal_id": event.principal_id,
                "outcome": event.outcome.value,
                "capability": event.capability,
            },
        )
        return False


# ── Sinks ───────────────────────────────────────────────────

class LoggingAuditSink:
    """Writes events to the process log.  Default when no store is wired."""

    def __init__(self, logger_name: str = "permengine.audit"):
        self._logger = logging.getLogger(logger_name)

    async def record(self, event: AuditEvent) -> None:
        self._logger.info(
            f"AUDIT {event.outcome.value} {event.category}.{event.capability} "
            f"principal={event.principal_id} role={event.role}",
            extra={"audit": event.model_dump(mode="json")},
        )


class MemoryAuditSink:
    """Keeps events in a list (tests, local debugging)."""

    def __init__(self):
        self.events: list[AuditEvent] = []

    async def record(self, event: AuditEvent) -> None:
        self.events.append(event)

    def by_outcome(self, outcome: AuditOutcome) -> list[AuditEvent]:
        return [e for e in self.events if e.outcome == outcome]


class SqlAuditSink:
    """Appends one `permission_audit_logs` row per event in its own session."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def record(self, event: AuditEvent) -> None:
        async with self._session_factory() as session:
            session.add(PermissionAuditLog(
                principal_id=event.principal_id,
                role=event.role,
                outcome=event.outcome.value,
                category=event.category,
                capability=event.capability,
                context=event.model_dump(mode="json")["context"],
                created_at=event.timestamp.replace(tzinfo=None),
            ))
            await session.commit()
