"""
AuditEmitter -- post-commit structured audit events.

Responsibility:
    Buffers ``{entity, entity_id, action, company_id, actor_id, before,
    after}`` events recorded during a unit of work and hands them to an
    AuditSink only once the session commits.

Architecture position:
    Kernel > Services.  One emitter per Session, stored in ``session.info``
    and wired to the session's commit and rollback hooks.

Invariants enforced:
    - Nothing reaches the sink before the outermost transaction commits;
      releasing a SAVEPOINT does not flush the buffer.
    - A rollback discards exactly the events recorded since the rolled-back
      transaction or SAVEPOINT began.

Failure modes:
    - Sink exceptions propagate from ``session.commit()``; the data is
      already durable at that point.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any, Protocol
from uuid import UUID

from sqlalchemy import event
from sqlalchemy.orm import Session

from lease_kernel.domain.clock import Clock, SystemClock
from lease_kernel.domain.dtos import AuditEvent
from lease_kernel.domain.tenancy import TenancyContext
from lease_kernel.logging_config import get_logger

logger = get_logger("services.audit")

_SESSION_KEY = "lease_kernel.audit_emitter"


class AuditSink(Protocol):
    """Receives committed audit events."""

    def emit(self, event: AuditEvent) -> None: ...


class LoggingAuditSink:
    """Default sink: one structured ``audit_event`` log line per event."""

    def emit(self, event: AuditEvent) -> None:
        logger.info("audit_event", extra=event.as_dict())


class CollectingAuditSink:
    """Keeps events in memory.  Used by tests and by callers that forward in bulk."""

    def __init__(self) -> None:
        self.events: list[AuditEvent] = []

    def emit(self, event: AuditEvent) -> None:
        self.events.append(event)

    def actions(self, entity: str | None = None) -> list[str]:
        return [e.action for e in self.events if entity is None or e.entity == entity]

    def clear(self) -> None:
        self.events.clear()


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def snapshot(entity, fields: tuple[str, ...]) -> MappingProxyType:
    """Freeze the named attributes of an entity into a plain mapping."""
    return MappingProxyType({name: _plain(getattr(entity, name)) for name in fields})


class AuditEmitter:
    """Per-session audit buffer flushed on commit."""

    def __init__(self, session: Session, sink: AuditSink, clock: Clock):
        self._session = session
        self.sink = sink
        self._clock = clock
        self._pending: list[AuditEvent] = []
        self._marks: dict = {}
        event.listen(session, "after_commit", self._on_after_commit)
        event.listen(session, "after_soft_rollback", self._on_after_soft_rollback)
        event.listen(session, "after_transaction_create", self._on_transaction_create)

    @classmethod
    def for_session(
        cls,
        session: Session,
        sink: AuditSink | None = None,
        clock: Clock | None = None,
    ) -> "AuditEmitter":
        """
        Return the emitter attached to ``session``, creating it once.

        A sink passed later replaces the current one.
        """
        emitter = session.info.get(_SESSION_KEY)
        if emitter is None:
            emitter = cls(session, sink or LoggingAuditSink(), clock or SystemClock())
            session.info[_SESSION_KEY] = emitter
        elif sink is not None:
            emitter.sink = sink
        return emitter

    @property
    def pending(self) -> tuple[AuditEvent, ...]:
        return tuple(self._pending)

    def record(
        self,
        ctx: TenancyContext,
        entity: str,
        entity_id: UUID,
        action: str,
        before: MappingProxyType | None = None,
        after: MappingProxyType | None = None,
    ) -> None:
        if not self._session.in_transaction():
            # Begin now so a rollback before the next flush still discards this event.
            self._session.begin()
        self._pending.append(AuditEvent(
            entity=entity,
            entity_id=entity_id,
            action=action,
            company_id=ctx.company_id,
            actor_id=ctx.actor_id,
            occurred_at=self._clock.now(),
            before=before,
            after=after,
            correlation_id=ctx.correlation_id,
        ))

    def _on_transaction_create(self, session: Session, transaction) -> None:
        if transaction.nested:
            self._marks[transaction] = len(self._pending)

    def _on_after_commit(self, session: Session) -> None:
        # Releasing a savepoint also fires after_commit; wait for the outermost commit.
        if session.in_nested_transaction():
            self._marks.pop(session.get_nested_transaction(), None)
            return
        self._marks.clear()
        events, self._pending = self._pending, []
        for audit_event in events:
            self.sink.emit(audit_event)

    def _on_after_soft_rollback(self, session: Session, previous_transaction) -> None:
        if previous_transaction.nested:
            keep = self._marks.pop(previous_transaction, 0)
        else:
            keep = 0
            self._marks.clear()
        discarded = len(self._pending) - keep
        if discarded > 0:
            logger.debug("audit_events_discarded", extra={"count": discarded})
            del self._pending[keep:]
