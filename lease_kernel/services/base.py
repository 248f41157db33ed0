"""
BaseService -- shared plumbing for every lease kernel service.

Responsibility:
    Holds the session, clock, TenancyGuard, SoftDeleteStore and AuditEmitter
    that each service needs, and provides the unit-of-work scope that every
    public mutating operation runs inside.

Architecture position:
    Kernel > Services.  Concrete services (OccupancyLifecycle, InvoiceEngine,
    PaymentLedger, CompanyService, PropertyService, ResidentService) extend
    this class.

Invariants enforced:
    - One public mutating call is one transaction: checks and writes run,
      then the session commits.  Any exception rolls the session back and is
      re-raised unchanged.
    - Audit events are buffered and handed to the sink only after commit
      (see services/audit_emitter.py).

Failure modes:
    - Whatever the wrapped operation raises; the session is always left
      usable (rolled back) afterwards.
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy.orm import Session

from lease_kernel.domain.clock import Clock, SystemClock
from lease_kernel.domain.tenancy import TenancyContext
from lease_kernel.logging_config import LogContext, get_logger
from lease_kernel.services.audit_emitter import AuditEmitter, AuditSink
from lease_kernel.services.soft_delete import SoftDeleteStore
from lease_kernel.services.tenancy_guard import TenancyGuard

logger = get_logger("services.base")


class BaseService:
    """
    Base class for services that commit their own work.

    Contract:
        Subclasses wrap every public mutating method body in
        ``with self._unit_of_work(ctx, "<operation>"):``.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        audit_sink: AuditSink | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._guard = TenancyGuard(session)
        self._soft_delete = SoftDeleteStore(session, self._clock)
        self._audit = AuditEmitter.for_session(session, sink=audit_sink, clock=self._clock)

    @property
    def session(self) -> Session:
        return self._session

    @contextmanager
    def _unit_of_work(self, ctx: TenancyContext, operation: str) -> Generator[None, None, None]:
        """Run the body, commit on success, roll back and re-raise on failure."""
        with LogContext.bind(**ctx.log_fields()):
            try:
                yield
                self._session.commit()
            except Exception as exc:
                self._session.rollback()
                logger.info(
                    "operation_rolled_back",
                    extra={
                        "operation": operation,
                        "error": type(exc).__name__,
                        "error_code": getattr(exc, "code", None),
                    },
                )
                raise
