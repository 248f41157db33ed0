"""
InvoiceEngine -- single and bulk invoice generation, numbering, transitions.

Responsibility:
    Creates draft invoices (validated line items, company-unique numbers),
    moves them through draft -> sent and -> cancelled, and runs the monthly
    bulk generation that turns every billable lease into one rent invoice
    per billing period.

Architecture position:
    Kernel > Services.  Reads active leases through OccupancyLifecycle and
    allocates numbers through SequenceService.  PaymentLedger depends on it.

Invariants enforced:
    - due_date >= invoice_date; every line amount == round2(qty * price);
      total == round2(subtotal + tax) > 0 (domain/billing.py).
    - invoice_number is unique within a company (uq_invoices_company_number);
      numbers come from a locked per-company counter.
    - At most one invoice per (company, occupancy, billing_period).  The
      check-then-insert is backed by uq_invoices_occupancy_period; a
      conflict at flush is re-read and reported as a duplicate.
    - Bulk generation is per-occupancy atomic: each occupancy runs in its
      own SAVEPOINT and is committed on its own.  There is no batch-wide
      rollback and the call always returns a BulkGenerationResult.
    - Cancelling an invoice that has received money is refused.
    - Invoices are only created for a company whose currency is in the
      supported set (domain/currency.py).

Failure modes:
    - InvalidDateRangeError, InvalidLineItemError, InvalidBillingMonthError
      before any write.
    - DuplicateInvoicePeriodError on single-invoice paths only.
    - CrossTenantAccessError aborts a bulk call before any occupancy runs.
    - UnsupportedCurrencyError when the company currency is not supported.
    - InvalidTransitionError, InvoiceHasPaymentsError on transitions.

Audit relevance:
    create / send / cancel / delete / restore each record one event.
"""

import threading
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, SessionTransaction

from lease_kernel.db.types import ZERO, round2
from lease_kernel.domain.billing import (
    BillingPeriod,
    LineItemSpec,
    PricedLineItem,
    InvoiceTotals,
    compute_totals,
    price_line_items,
    rent_line_item,
    validate_invoice_dates,
)
from lease_kernel.domain.clock import Clock
from lease_kernel.domain.currency import validate_currency
from lease_kernel.domain.dtos import (
    BulkGenerationResult,
    GenerationError,
    GenerationOutcome,
)
from lease_kernel.domain.tenancy import TenancyContext
from lease_kernel.domain.workflows import INVOICE_WORKFLOW
from lease_kernel.exceptions import (
    CrossTenantAccessError,
    DuplicateInvoicePeriodError,
    InvalidTransitionError,
    InvoiceHasPaymentsError,
    OccupancyNotBillableError,
)
from lease_kernel.logging_config import get_logger
from lease_kernel.models.company import Company
from lease_kernel.models.invoice import Invoice, InvoiceLineItem, InvoiceStatus
from lease_kernel.models.occupancy import Occupancy, OccupancyStatus
from lease_kernel.services.audit_emitter import AuditSink, snapshot
from lease_kernel.services.base import BaseService
from lease_kernel.services.occupancy_lifecycle import OccupancyLifecycle
from lease_kernel.services.sequence_service import SequenceService

logger = get_logger("services.invoice_engine")

DEFAULT_DUE_DAY = 5
DEFAULT_NUMBER_PREFIX = "INV"
DUPLICATE_PERIOD_REASON = "duplicate period"

_AUDIT_FIELDS = (
    "invoice_number",
    "occupancy_id",
    "billing_period",
    "invoice_date",
    "due_date",
    "total_amount",
    "amount_paid",
    "status",
)


@dataclass
class _BulkTally:
    """Mutable accumulator frozen into BulkGenerationResult at the end."""

    processed: int = 0
    created_ids: list[UUID] = field(default_factory=list)
    skipped_ids: list[UUID] = field(default_factory=list)
    errors: list[GenerationError] = field(default_factory=list)
    total_amount: Decimal = ZERO
    cancelled: bool = False


class InvoiceEngine(BaseService):
    """Invoice generation and lifecycle.  Every public mutating method commits."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        audit_sink: AuditSink | None = None,
        number_prefix: str = DEFAULT_NUMBER_PREFIX,
        default_due_day: int = DEFAULT_DUE_DAY,
    ):
        super().__init__(session, clock, audit_sink)
        self._occupancies = OccupancyLifecycle(session, self._clock, audit_sink)
        self._sequences = SequenceService(session)
        self._number_prefix = number_prefix
        self._default_due_day = default_due_day

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, ctx: TenancyContext, invoice_id: UUID, include_deleted: bool = False) -> Invoice:
        return self._guard.get(ctx, Invoice, invoice_id, include_deleted=include_deleted)

    def find_for_period(
        self,
        ctx: TenancyContext,
        occupancy_id: UUID,
        period: BillingPeriod | str,
    ) -> Invoice | None:
        """Invoice holding (occupancy, period), soft-deleted rows included."""
        key = BillingPeriod.parse(period).key
        return self._session.execute(
            select(Invoice).where(
                Invoice.company_id == ctx.company_id,
                Invoice.occupancy_id == occupancy_id,
                Invoice.billing_period == key,
            )
        ).scalar_one_or_none()

    def list_for_occupancy(self, ctx: TenancyContext, occupancy_id: UUID) -> list[Invoice]:
        self._guard.get(ctx, Occupancy, occupancy_id)
        stmt = (
            self._guard.scoped(ctx, Invoice)
            .where(Invoice.occupancy_id == occupancy_id)
            .order_by(Invoice.invoice_date, Invoice.invoice_number)
        )
        return list(self._session.execute(stmt).scalars())

    # ------------------------------------------------------------------
    # Internal insert (no commit)
    # ------------------------------------------------------------------

    def _next_invoice_number(self, ctx: TenancyContext, invoice_date: date) -> str:
        seq = self._sequences.next_value(SequenceService.invoice_sequence(ctx.company_id))
        return f"{self._number_prefix}-{invoice_date:%Y%m}-{seq:05d}"

    def _insert(
        self,
        ctx: TenancyContext,
        occupancy: Occupancy,
        invoice_date: date,
        due_date: date,
        lines: tuple[PricedLineItem, ...],
        totals: InvoiceTotals,
        billing_period: str | None,
        notes: str | None,
    ) -> Invoice:
        invoice = Invoice(
            company_id=ctx.company_id,
            occupancy_id=occupancy.id,
            invoice_number=self._next_invoice_number(ctx, invoice_date),
            invoice_date=invoice_date,
            due_date=due_date,
            billing_period=billing_period,
            subtotal=totals.subtotal,
            tax_amount=totals.tax_amount,
            total_amount=totals.total_amount,
            amount_paid=ZERO,
            status=InvoiceStatus.DRAFT,
            notes=notes,
            created_by_id=ctx.actor_id,
        )
        invoice.line_items = [
            InvoiceLineItem(
                company_id=ctx.company_id,
                position=line.position,
                description=line.description,
                item_type=line.item_type.value,
                quantity=line.quantity,
                unit_price=line.unit_price,
                amount=line.amount,
                created_by_id=ctx.actor_id,
            )
            for line in lines
        ]
        self._session.add(invoice)
        self._session.flush()
        self._audit.record(ctx, "Invoice", invoice.id, "create",
                           after=snapshot(invoice, _AUDIT_FIELDS))
        return invoice

    def _insert_for_period(
        self,
        ctx: TenancyContext,
        occupancy: Occupancy,
        period: BillingPeriod,
        invoice_date: date,
        due_date: date,
        lines: tuple[PricedLineItem, ...],
        totals: InvoiceTotals,
        notes: str | None = None,
    ) -> Invoice:
        """
        Insert an invoice bound to a billing period inside a SAVEPOINT.

        A unique-index conflict is re-read and raised as
        DuplicateInvoicePeriodError.
        """
        existing = self.find_for_period(ctx, occupancy.id, period)
        if existing is not None:
            raise DuplicateInvoicePeriodError(str(occupancy.id), period.key, str(existing.id))

        savepoint = self._session.begin_nested()
        try:
            invoice = self._insert(ctx, occupancy, invoice_date, due_date, lines, totals, period.key, notes)
            savepoint.commit()
            return invoice
        except IntegrityError as exc:
            savepoint.rollback()
            existing = self.find_for_period(ctx, occupancy.id, period)
            if existing is None:
                raise
            logger.info(
                "invoice_period_conflict",
                extra={"occupancy_id": str(occupancy.id), "billing_period": period.key},
            )
            raise DuplicateInvoicePeriodError(str(occupancy.id), period.key, str(existing.id)) from exc

    # ------------------------------------------------------------------
    # Single invoice
    # ------------------------------------------------------------------

    def create_draft(
        self,
        ctx: TenancyContext,
        occupancy_id: UUID,
        invoice_date: date,
        due_date: date,
        line_items: list[LineItemSpec],
        tax_amount: Decimal = ZERO,
        total_amount: Decimal | None = None,
        billing_period: str | None = None,
        notes: str | None = None,
    ) -> Invoice:
        """
        Create a draft invoice from caller-supplied line items.

        When billing_period is given the invoice claims that period for the
        occupancy and a second claim raises DuplicateInvoicePeriodError.
        """
        validate_invoice_dates(invoice_date, due_date)
        lines = price_line_items(line_items)
        totals = compute_totals(lines, tax_amount, total_amount)
        period = BillingPeriod.parse(billing_period) if billing_period is not None else None

        with self._unit_of_work(ctx, "invoice_create_draft"):
            self._require_billing_company(ctx)
            occupancy = self._guard.get(ctx, Occupancy, occupancy_id)
            if period is None:
                invoice = self._insert(ctx, occupancy, invoice_date, due_date, lines, totals, None, notes)
            else:
                invoice = self._insert_for_period(
                    ctx, occupancy, period, invoice_date, due_date, lines, totals, notes
                )

        logger.info(
            "invoice_created",
            extra={
                "invoice_id": str(invoice.id),
                "invoice_number": invoice.invoice_number,
                "total_amount": invoice.total_amount,
            },
        )
        return invoice

    def _require_billing_company(self, ctx: TenancyContext) -> Company:
        """Writable company whose currency is still a supported one."""
        company = self._guard.require_writable(ctx)
        validate_currency(company.currency)
        return company

    def _require_billable(self, occupancy: Occupancy, period: BillingPeriod) -> None:
        if occupancy.status != OccupancyStatus.ACTIVE:
            raise OccupancyNotBillableError(str(occupancy.id), f"status is '{occupancy.status}'")
        if not occupancy.covers(period.first_day, period.last_day):
            raise OccupancyNotBillableError(str(occupancy.id), f"lease does not cover {period.key}")

    def _rent_invoice(
        self,
        ctx: TenancyContext,
        occupancy: Occupancy,
        period: BillingPeriod,
        due_date: date,
    ) -> Invoice:
        self._require_billable(occupancy, period)
        lines = price_line_items([rent_line_item(occupancy.monthly_rent, period)])
        totals = compute_totals(lines)
        return self._insert_for_period(ctx, occupancy, period, period.first_day, due_date, lines, totals)

    def generate_for_occupancy(
        self,
        ctx: TenancyContext,
        occupancy_id: UUID,
        month: str | BillingPeriod,
        due_day: int | None = None,
    ) -> Invoice:
        """Generate one rent invoice for one active lease and month."""
        period = BillingPeriod.parse(month)
        due_date = period.due_date(due_day if due_day is not None else self._default_due_day)

        with self._unit_of_work(ctx, "invoice_generate_single"):
            self._require_billing_company(ctx)
            occupancy = self._guard.get(ctx, Occupancy, occupancy_id)
            invoice = self._rent_invoice(ctx, occupancy, period, due_date)

        logger.info(
            "invoice_created",
            extra={
                "invoice_id": str(invoice.id),
                "invoice_number": invoice.invoice_number,
                "billing_period": period.key,
            },
        )
        return invoice

    # ------------------------------------------------------------------
    # Bulk generation
    # ------------------------------------------------------------------

    def _discard_item(self, savepoint: SessionTransaction | None) -> None:
        """Undo one bulk item: its SAVEPOINT if still open, else the failed commit."""
        if savepoint is not None and savepoint.is_active:
            savepoint.rollback()
        else:
            self._session.rollback()

    def _generate_one(
        self,
        ctx: TenancyContext,
        occupancy_id: UUID,
        period: BillingPeriod,
        due_date: date,
        skip_existing: bool,
        tally: _BulkTally,
    ) -> GenerationOutcome:
        savepoint = None
        try:
            savepoint = self._session.begin_nested()
            occupancy = self._guard.get(ctx, Occupancy, occupancy_id)
            invoice = self._rent_invoice(ctx, occupancy, period, due_date)
            savepoint.commit()
            self._session.commit()
        except CrossTenantAccessError:
            self._discard_item(savepoint)
            raise
        except DuplicateInvoicePeriodError as exc:
            self._discard_item(savepoint)
            if skip_existing:
                if exc.existing_invoice_id is not None:
                    tally.skipped_ids.append(UUID(exc.existing_invoice_id))
                return GenerationOutcome.SKIPPED
            tally.errors.append(GenerationError(occupancy_id, type(exc).__name__, DUPLICATE_PERIOD_REASON))
            return GenerationOutcome.FAILED
        except Exception as exc:
            self._discard_item(savepoint)
            logger.info(
                "bulk_generation_item_failed",
                extra={"occupancy_id": str(occupancy_id), "error": type(exc).__name__},
            )
            tally.errors.append(GenerationError(occupancy_id, type(exc).__name__, str(exc)))
            return GenerationOutcome.FAILED

        tally.created_ids.append(invoice.id)
        tally.total_amount = round2(tally.total_amount + invoice.total_amount)
        return GenerationOutcome.CREATED

    def generate_monthly(
        self,
        ctx: TenancyContext,
        month: str | BillingPeriod,
        due_day: int | None = None,
        occupancy_ids: list[UUID] | None = None,
        skip_existing: bool = True,
        cancel_event: threading.Event | None = None,
    ) -> BulkGenerationResult:
        """
        Generate one rent invoice per target occupancy for ``month``.

        Targets are the supplied occupancy_ids, or every active occupancy of
        the company whose lease overlaps the month.  invoice_date is the
        first of the month; due_date is due_day of the month, clamped to its
        last day.  Existing (occupancy, month) invoices are recorded as
        skipped when skip_existing, otherwise as failed with reason
        "duplicate period".

        Setting cancel_event stops scheduling further occupancies; the
        occupancy already in flight completes or rolls back cleanly.
        """
        period = BillingPeriod.parse(month)
        due_date = period.due_date(due_day if due_day is not None else self._default_due_day)

        with self._unit_of_work(ctx, "invoice_generate_monthly_prepare"):
            self._require_billing_company(ctx)
            if occupancy_ids is not None:
                targets = list(dict.fromkeys(occupancy_ids))
                self._guard.require_ids_in_scope(ctx, Occupancy, targets)
            else:
                targets = [o.id for o in self._occupancies.billable_for_period(ctx, period)]

        logger.info(
            "bulk_generation_started",
            extra={
                "billing_period": period.key,
                "target_count": len(targets),
                "skip_existing": skip_existing,
                "explicit_targets": occupancy_ids is not None,
            },
        )

        tally = _BulkTally()
        counts = {outcome: 0 for outcome in GenerationOutcome}
        with self._unit_of_work(ctx, "invoice_generate_monthly"):
            for occupancy_id in targets:
                if cancel_event is not None and cancel_event.is_set():
                    tally.cancelled = True
                    logger.warning(
                        "bulk_generation_cancelled",
                        extra={"billing_period": period.key, "processed": tally.processed},
                    )
                    break
                outcome = self._generate_one(ctx, occupancy_id, period, due_date, skip_existing, tally)
                counts[outcome] += 1
                tally.processed += 1

        result = BulkGenerationResult(
            company_id=ctx.company_id,
            billing_period=period.key,
            processed=tally.processed,
            created=counts[GenerationOutcome.CREATED],
            skipped=counts[GenerationOutcome.SKIPPED],
            failed=counts[GenerationOutcome.FAILED],
            created_invoice_ids=tuple(tally.created_ids),
            skipped_invoice_ids=tuple(tally.skipped_ids),
            errors=tuple(tally.errors),
            total_amount=tally.total_amount,
            cancelled=tally.cancelled,
        )
        logger.info(
            "bulk_generation_completed",
            extra={
                "billing_period": period.key,
                "processed": result.processed,
                "created_count": result.created,
                "skipped_count": result.skipped,
                "failed_count": result.failed,
                "total_amount": result.total_amount,
                "cancelled": result.cancelled,
            },
        )
        return result

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def send(self, ctx: TenancyContext, invoice_id: UUID) -> Invoice:
        """draft -> sent.  Already-dispatched invoices are returned unchanged."""
        with self._unit_of_work(ctx, "invoice_send"):
            self._guard.require_writable(ctx)
            invoice = self._guard.get(ctx, Invoice, invoice_id, for_update=True)
            if invoice.status in (InvoiceStatus.SENT, InvoiceStatus.OVERDUE):
                return invoice
            before = snapshot(invoice, _AUDIT_FIELDS)
            invoice.status = INVOICE_WORKFLOW.require(invoice.id, invoice.status, "send")
            invoice.sent_at = self._clock.now()
            invoice.updated_by_id = ctx.actor_id
            self._session.flush()
            self._audit.record(ctx, "Invoice", invoice.id, "send",
                               before=before, after=snapshot(invoice, _AUDIT_FIELDS))

        logger.info("invoice_sent", extra={"invoice_id": str(invoice_id)})
        return invoice

    def cancel(self, ctx: TenancyContext, invoice_id: UUID) -> Invoice:
        """
        Cancel an unpaid invoice (terminal).

        Refused with InvoiceHasPaymentsError once any amount has been paid.
        Cancelling a cancelled invoice returns it unchanged.
        """
        with self._unit_of_work(ctx, "invoice_cancel"):
            self._guard.require_writable(ctx)
            invoice = self._guard.get(ctx, Invoice, invoice_id, for_update=True)
            if invoice.amount_paid > 0:
                raise InvoiceHasPaymentsError(str(invoice.id), invoice.amount_paid)
            if invoice.status == InvoiceStatus.CANCELLED:
                return invoice
            before = snapshot(invoice, _AUDIT_FIELDS)
            invoice.status = INVOICE_WORKFLOW.require(invoice.id, invoice.status, "cancel")
            invoice.updated_by_id = ctx.actor_id
            self._session.flush()
            self._audit.record(ctx, "Invoice", invoice.id, "cancel",
                               before=before, after=snapshot(invoice, _AUDIT_FIELDS))

        logger.info("invoice_cancelled", extra={"invoice_id": str(invoice_id)})
        return invoice

    def delete(self, ctx: TenancyContext, invoice_id: UUID) -> None:
        """Soft-delete a draft or cancelled invoice that has no payments."""
        with self._unit_of_work(ctx, "invoice_delete"):
            self._guard.require_writable(ctx)
            invoice = self._guard.get(ctx, Invoice, invoice_id, for_update=True)
            if invoice.amount_paid > 0:
                raise InvoiceHasPaymentsError(str(invoice.id), invoice.amount_paid)
            if invoice.status not in (InvoiceStatus.DRAFT, InvoiceStatus.CANCELLED):
                raise InvalidTransitionError("Invoice", str(invoice.id), invoice.status, "delete")
            self._soft_delete.soft_delete(invoice, ctx.actor_id)
            self._audit.record(ctx, "Invoice", invoice.id, "delete",
                               before=snapshot(invoice, _AUDIT_FIELDS))

    def restore(self, ctx: TenancyContext, invoice_id: UUID) -> Invoice:
        """Clear deleted_at.  The owning occupancy must be live."""
        with self._unit_of_work(ctx, "invoice_restore"):
            self._guard.require_writable(ctx)
            invoice = self._guard.get(ctx, Invoice, invoice_id, include_deleted=True, for_update=True)
            if invoice.deleted_at is None:
                return invoice
            self._guard.get(ctx, Occupancy, invoice.occupancy_id)
            self._soft_delete.restore(invoice, ctx.actor_id)
            self._audit.record(ctx, "Invoice", invoice.id, "restore",
                               after=snapshot(invoice, _AUDIT_FIELDS))
        return invoice
