"""
lease_batch.dispatcher -- runs typed invoice jobs against the kernel.

One session per job, opened from the injected session factory and closed
when the job finishes.  The job's id, company and actor are bound into
LogContext so every kernel log line emitted during the job carries them.
The factory may be bound to any engine, so the dispatcher registers the
ORM immutability listeners itself.

Failure modes:
    - Single-invoice jobs propagate kernel errors (for example
      DuplicateInvoicePeriodError) so the queue can record the failure.
    - Monthly jobs return a BulkGenerationResult even when every occupancy
      failed; only CrossTenantAccessError and company-level errors
      propagate.
"""

from __future__ import annotations

import threading
from typing import Any, Callable, Mapping

from sqlalchemy.orm import Session

from lease_batch.jobs import GenerateMonthlyJob, GenerateSingleJob, InvoiceJob, parse_job
from lease_config import LeaseCoreConfig, get_active_config
from lease_config.bridges import build_invoice_engine
from lease_kernel.db.immutability import register_immutability_listeners
from lease_kernel.domain.clock import Clock
from lease_kernel.domain.dtos import BulkGenerationResult
from lease_kernel.domain.tenancy import TenancyContext
from lease_kernel.exceptions import UnknownJobTypeError
from lease_kernel.logging_config import LogContext, get_logger
from lease_kernel.models.invoice import Invoice
from lease_kernel.services.audit_emitter import AuditSink

logger = get_logger("batch.dispatcher")


class InvoiceJobDispatcher:
    """Executes GenerateMonthlyJob / GenerateSingleJob variants."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        audit_sink: AuditSink | None = None,
        config: LeaseCoreConfig | None = None,
    ):
        register_immutability_listeners()
        if config is None:
            config = get_active_config()
        self._session_factory = session_factory
        self._clock = clock
        self._audit_sink = audit_sink
        self._config = config

    def dispatch(
        self,
        job: InvoiceJob,
        cancel_event: threading.Event | None = None,
    ) -> BulkGenerationResult | Invoice:
        ctx = TenancyContext(
            company_id=job.company_id,
            actor_id=job.actor_id,
            correlation_id=str(job.job_id),
        )
        with LogContext.bind(job_id=job.job_id, company_id=job.company_id, actor_id=job.actor_id):
            logger.info("invoice_job_started", extra={"job_type": job.job_type, "month": job.month})
            session = self._session_factory()
            try:
                engine = build_invoice_engine(session, self._config, self._clock, self._audit_sink)
                match job:
                    case GenerateMonthlyJob():
                        result = engine.generate_monthly(
                            ctx,
                            job.month,
                            due_day=job.due_day,
                            occupancy_ids=list(job.occupancy_ids) if job.occupancy_ids is not None else None,
                            skip_existing=job.skip_existing,
                            cancel_event=cancel_event,
                        )
                    case GenerateSingleJob():
                        result = engine.generate_for_occupancy(
                            ctx, job.occupancy_id, job.month, due_day=job.due_day
                        )
                    case _:
                        raise UnknownJobTypeError(type(job).__name__)
            except Exception:
                logger.error("invoice_job_failed", extra={"job_type": job.job_type}, exc_info=True)
                raise
            finally:
                session.close()

            logger.info("invoice_job_completed", extra={"job_type": job.job_type})
            return result

    def dispatch_payload(
        self,
        payload: Mapping[str, Any],
        cancel_event: threading.Event | None = None,
    ) -> BulkGenerationResult | Invoice:
        """Parse a raw queue payload and dispatch it."""
        return self.dispatch(parse_job(payload), cancel_event=cancel_event)
