"""
PaymentLedger -- payment application and overdue derivation.

Responsibility:
    Records immutable Payment rows against invoices, keeps
    ``invoice.amount_paid`` and ``invoice.status`` consistent with them, and
    re-derives the overdue status in batch.

Architecture position:
    Kernel > Services.  Reads and writes Invoice rows owned by
    InvoiceEngine; never creates invoices.

Invariants enforced:
    - amount_paid <= total_amount after every application, including under
      concurrent applications to the same invoice.  The invoice row is read
      with SELECT ... FOR UPDATE (PostgreSQL) inside a BEGIN IMMEDIATE
      transaction (SQLite), and the write is additionally guarded by the
      invoice's version column.  A stale write is retried from a fresh read.
    - status == paid iff amount_paid == total_amount.
    - Payments are never updated or deleted (db/immutability.py).
    - recompute_overdue only touches status; re-running it is a no-op.

Failure modes:
    - InvalidAmountError: amount <= 0, not a decimal, or a float.
    - InvoiceCancelledError: the invoice is cancelled.
    - OverpaymentError: amount + amount_paid > total_amount.  Never capped.
    - OptimisticLockError: version conflicts persisted past
      max_apply_attempts.

Audit relevance:
    Each application records Payment "create" and Invoice "apply_payment";
    each overdue transition records Invoice "mark_overdue".
"""

from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from types import MappingProxyType
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from lease_kernel.db.types import ZERO, round2, to_money
from lease_kernel.domain.billing import status_after_payment
from lease_kernel.domain.clock import Clock
from lease_kernel.domain.dtos import PaymentStats
from lease_kernel.domain.tenancy import TenancyContext
from lease_kernel.domain.workflows import INVOICE_WORKFLOW, invoice_transition_allowed
from lease_kernel.exceptions import (
    InvalidAmountError,
    InvalidDateRangeError,
    InvalidTransitionError,
    InvoiceCancelledError,
    OptimisticLockError,
    OverpaymentError,
)
from lease_kernel.logging_config import get_logger
from lease_kernel.models.invoice import Invoice, InvoiceStatus
from lease_kernel.models.payment import Payment, PaymentMethod
from lease_kernel.services.audit_emitter import AuditSink, snapshot
from lease_kernel.services.base import BaseService

logger = get_logger("services.payment_ledger")

DEFAULT_MAX_APPLY_ATTEMPTS = 3

_INVOICE_FIELDS = ("amount_paid", "total_amount", "status", "paid_date", "version")
_PAYMENT_FIELDS = ("invoice_id", "amount", "paid_at", "method", "reference")


class PaymentLedger(BaseService):
    """Payment application.  Every public mutating method commits."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        audit_sink: AuditSink | None = None,
        max_apply_attempts: int = DEFAULT_MAX_APPLY_ATTEMPTS,
    ):
        super().__init__(session, clock, audit_sink)
        if max_apply_attempts < 1:
            raise ValueError("max_apply_attempts must be >= 1")
        self._max_apply_attempts = max_apply_attempts

    # ------------------------------------------------------------------
    # Apply
    # ------------------------------------------------------------------

    def apply_payment(
        self,
        ctx: TenancyContext,
        invoice_id: UUID,
        amount: Decimal,
        paid_at: datetime,
        method: PaymentMethod | str,
        reference: str | None = None,
        notes: str | None = None,
    ) -> Payment:
        """
        Record a payment and advance the invoice.

        Partial payments are accepted.  Any amount that would take
        amount_paid past total_amount is rejected with OverpaymentError.
        """
        value = to_money(amount, "amount")
        if value <= 0:
            raise InvalidAmountError("amount", value)
        try:
            payment_method = PaymentMethod(method)
        except ValueError as exc:
            raise InvalidAmountError("method", method) from exc

        for attempt in range(1, self._max_apply_attempts + 1):
            try:
                payment = self._apply_once(ctx, invoice_id, value, paid_at, payment_method, reference, notes)
            except StaleDataError:
                logger.warning(
                    "payment_apply_conflict",
                    extra={"invoice_id": str(invoice_id), "attempt": attempt},
                )
                continue

            logger.info(
                "payment_applied",
                extra={
                    "invoice_id": str(invoice_id),
                    "payment_id": str(payment.id),
                    "amount": value,
                    "attempt": attempt,
                },
            )
            return payment

        raise OptimisticLockError("Invoice", str(invoice_id), self._max_apply_attempts)

    def _apply_once(
        self,
        ctx: TenancyContext,
        invoice_id: UUID,
        value: Decimal,
        paid_at: datetime,
        method: PaymentMethod,
        reference: str | None,
        notes: str | None,
    ) -> Payment:
        with self._unit_of_work(ctx, "payment_apply"):
            self._guard.require_writable(ctx)
            invoice = self._guard.get(ctx, Invoice, invoice_id, for_update=True)
            if invoice.status == InvoiceStatus.CANCELLED:
                raise InvoiceCancelledError(str(invoice.id))

            new_paid = round2(invoice.amount_paid + value)
            if new_paid > invoice.total_amount:
                raise OverpaymentError(str(invoice.id), value, invoice.amount_paid, invoice.total_amount)

            new_status = status_after_payment(
                invoice.status, new_paid, invoice.total_amount, invoice.due_date, self._clock.today()
            )
            if not invoice_transition_allowed(invoice.status, new_status, "apply_payment"):
                raise InvalidTransitionError("Invoice", str(invoice.id), invoice.status, "apply_payment")

            before = snapshot(invoice, _INVOICE_FIELDS)
            payment = Payment(
                company_id=ctx.company_id,
                invoice_id=invoice.id,
                amount=value,
                paid_at=paid_at,
                method=method,
                reference=reference,
                notes=notes,
                created_by_id=ctx.actor_id,
            )
            self._session.add(payment)

            invoice.amount_paid = new_paid
            invoice.status = new_status
            if new_status == InvoiceStatus.PAID:
                invoice.paid_date = paid_at.date()
            invoice.updated_by_id = ctx.actor_id
            self._session.flush()

            self._audit.record(ctx, "Payment", payment.id, "create",
                               after=snapshot(payment, _PAYMENT_FIELDS))
            self._audit.record(ctx, "Invoice", invoice.id, "apply_payment",
                               before=before, after=snapshot(invoice, _INVOICE_FIELDS))
        return payment

    # ------------------------------------------------------------------
    # Overdue
    # ------------------------------------------------------------------

    def recompute_overdue(self, ctx: TenancyContext, as_of: date | None = None) -> int:
        """
        Move every sent, unpaid invoice whose due date has passed to overdue.

        Returns the number of invoices transitioned by this call.
        """
        as_of = as_of or self._clock.today()
        with self._unit_of_work(ctx, "payment_recompute_overdue"):
            self._guard.require_writable(ctx)
            stmt = (
                self._guard.scoped(ctx, Invoice)
                .where(
                    Invoice.status == InvoiceStatus.SENT,
                    Invoice.due_date < as_of,
                    Invoice.amount_paid < Invoice.total_amount,
                )
                .order_by(Invoice.due_date, Invoice.id)
                .with_for_update()
            )
            invoices = list(self._session.execute(stmt).scalars())
            for invoice in invoices:
                before = snapshot(invoice, _INVOICE_FIELDS)
                invoice.status = INVOICE_WORKFLOW.require(invoice.id, invoice.status, "mark_overdue")
                invoice.updated_by_id = ctx.actor_id
                self._audit.record(ctx, "Invoice", invoice.id, "mark_overdue",
                                   before=before, after=snapshot(invoice, _INVOICE_FIELDS))
            self._session.flush()

        logger.info(
            "overdue_recomputed",
            extra={"as_of": as_of, "transitioned": len(invoices)},
        )
        return len(invoices)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_for_invoice(self, ctx: TenancyContext, invoice_id: UUID) -> list[Payment]:
        invoice = self._guard.get(ctx, Invoice, invoice_id, include_deleted=True)
        stmt = (
            select(Payment)
            .where(Payment.company_id == ctx.company_id, Payment.invoice_id == invoice.id)
            .order_by(Payment.paid_at, Payment.created_at)
        )
        return list(self._session.execute(stmt).scalars())

    def payment_stats(
        self,
        ctx: TenancyContext,
        start: date | None = None,
        end: date | None = None,
    ) -> PaymentStats:
        """Count and total of payments received in [start, end], per method."""
        if start is not None and end is not None and end < start:
            raise InvalidDateRangeError("end", start, end)

        stmt = (
            select(Payment.method, func.count(Payment.id), func.sum(Payment.amount))
            .where(Payment.company_id == ctx.company_id)
            .group_by(Payment.method)
        )
        if start is not None:
            stmt = stmt.where(Payment.paid_at >= datetime.combine(start, time.min, tzinfo=timezone.utc))
        if end is not None:
            stmt = stmt.where(
                Payment.paid_at < datetime.combine(end + timedelta(days=1), time.min, tzinfo=timezone.utc)
            )

        by_method: dict[str, Decimal] = {}
        count = 0
        total = ZERO
        for method, method_count, method_total in self._session.execute(stmt).all():
            method_sum = round2(method_total or ZERO)
            by_method[PaymentMethod(method).value] = method_sum
            count += method_count
            total = round2(total + method_sum)

        return PaymentStats(
            start=start,
            end=end,
            count=count,
            total=total,
            by_method=MappingProxyType(by_method),
        )
