"""
Module: lease_kernel.selectors.billing_feed
Responsibility: Read feeds for the notification/reminder collaborator and
    dashboard statistics: invoices nearing or past due, invoice and
    occupancy aggregates.
Architecture position: Kernel > Selectors.

Overdue here is date-derived (sent or overdue, unpaid, due_date < as_of),
so the feed is correct even before PaymentLedger.recompute_overdue has run.
"""

from datetime import date, timedelta
from types import MappingProxyType

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from lease_kernel.db.types import ZERO, round2
from lease_kernel.domain.clock import Clock
from lease_kernel.domain.dtos import InvoiceStats, InvoiceSummary, OccupancyStats
from lease_kernel.domain.tenancy import TenancyContext
from lease_kernel.exceptions import InvalidDateRangeError
from lease_kernel.models.invoice import Invoice, InvoiceStatus
from lease_kernel.models.occupancy import Occupancy, OccupancyStatus
from lease_kernel.selectors.base import BaseSelector

DEFAULT_DUE_SOON_DAYS = 7
DEFAULT_EXPIRING_DAYS = 30

_OPEN_STATUSES = (InvoiceStatus.SENT.value, InvoiceStatus.OVERDUE.value)


def _summary(invoice: Invoice) -> InvoiceSummary:
    return InvoiceSummary(
        invoice_id=invoice.id,
        invoice_number=invoice.invoice_number,
        occupancy_id=invoice.occupancy_id,
        status=invoice.status,
        due_date=invoice.due_date,
        total_amount=invoice.total_amount,
        amount_paid=invoice.amount_paid,
    )


class BillingFeedSelector(BaseSelector):
    """Reminder feeds and statistics.  Returns DTOs, never ORM rows."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        due_soon_days: int = DEFAULT_DUE_SOON_DAYS,
        expiring_days: int = DEFAULT_EXPIRING_DAYS,
    ):
        super().__init__(session, clock)
        self.due_soon_days = due_soon_days
        self.expiring_days = expiring_days

    def invoices_due_soon(
        self,
        ctx: TenancyContext,
        within_days: int | None = None,
        as_of: date | None = None,
    ) -> list[InvoiceSummary]:
        """Unpaid sent invoices due in [as_of, as_of + within_days]."""
        if within_days is None:
            within_days = self.due_soon_days
        if within_days < 0:
            raise InvalidDateRangeError("within_days", 0, within_days)
        start = as_of or self.clock.today()
        stmt = (
            self.guard.scoped(ctx, Invoice)
            .where(
                Invoice.status == InvoiceStatus.SENT.value,
                Invoice.due_date >= start,
                Invoice.due_date <= start + timedelta(days=within_days),
                Invoice.amount_paid < Invoice.total_amount,
            )
            .order_by(Invoice.due_date, Invoice.invoice_number)
        )
        return [_summary(inv) for inv in self.session.execute(stmt).scalars()]

    def _overdue_predicates(self, as_of: date) -> list:
        return [
            Invoice.status.in_(_OPEN_STATUSES),
            Invoice.due_date < as_of,
            Invoice.amount_paid < Invoice.total_amount,
        ]

    def invoices_overdue(self, ctx: TenancyContext, as_of: date | None = None) -> list[InvoiceSummary]:
        as_of = as_of or self.clock.today()
        stmt = (
            self.guard.scoped(ctx, Invoice)
            .where(*self._overdue_predicates(as_of))
            .order_by(Invoice.due_date, Invoice.invoice_number)
        )
        return [_summary(inv) for inv in self.session.execute(stmt).scalars()]

    def invoice_stats(self, ctx: TenancyContext, as_of: date | None = None) -> InvoiceStats:
        """
        Counts per status plus invoiced / paid / outstanding totals.

        Cancelled invoices are counted but excluded from the money totals.
        """
        as_of = as_of or self.clock.today()
        predicates = self.guard.predicates(ctx, Invoice)

        rows = self.session.execute(
            select(
                Invoice.status,
                func.count(Invoice.id),
                func.sum(Invoice.total_amount),
                func.sum(Invoice.amount_paid),
            )
            .where(*predicates)
            .group_by(Invoice.status)
        ).all()

        counts: dict[str, int] = {}
        total_invoiced = ZERO
        total_paid = ZERO
        for status, count, invoiced, paid in rows:
            counts[status] = count
            if status == InvoiceStatus.CANCELLED.value:
                continue
            total_invoiced = round2(total_invoiced + (invoiced or ZERO))
            total_paid = round2(total_paid + (paid or ZERO))

        overdue_count = self.session.execute(
            select(func.count(Invoice.id)).where(*predicates, *self._overdue_predicates(as_of))
        ).scalar_one()

        return InvoiceStats(
            as_of=as_of,
            counts_by_status=MappingProxyType(counts),
            total_invoiced=total_invoiced,
            total_paid=total_paid,
            outstanding=round2(total_invoiced - total_paid),
            overdue_count=overdue_count,
        )

    def occupancy_stats(
        self,
        ctx: TenancyContext,
        as_of: date | None = None,
        expiring_within_days: int | None = None,
    ) -> OccupancyStats:
        as_of = as_of or self.clock.today()
        if expiring_within_days is None:
            expiring_within_days = self.expiring_days
        predicates = self.guard.predicates(ctx, Occupancy)

        counts = {
            status: count
            for status, count in self.session.execute(
                select(Occupancy.status, func.count(Occupancy.id))
                .where(*predicates)
                .group_by(Occupancy.status)
            ).all()
        }

        active = Occupancy.status == OccupancyStatus.ACTIVE.value
        expiring = self.session.execute(
            select(func.count(Occupancy.id)).where(
                *predicates,
                active,
                Occupancy.lease_end_date >= as_of,
                Occupancy.lease_end_date <= as_of + timedelta(days=expiring_within_days),
            )
        ).scalar_one()
        rent_roll = self.session.execute(
            select(func.sum(Occupancy.monthly_rent)).where(*predicates, active)
        ).scalar_one()

        return OccupancyStats(
            as_of=as_of,
            counts_by_status=MappingProxyType(counts),
            expiring_soon=expiring,
            monthly_rent_roll=round2(rent_roll or ZERO),
        )
