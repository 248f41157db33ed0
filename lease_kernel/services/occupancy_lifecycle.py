"""
OccupancyLifecycle -- lease state machine and apartment binding.

Responsibility:
    Creates leases, moves them through pending -> active -> ended (or
    pending -> cancelled) and keeps the apartment's status in step: an
    apartment is ``occupied`` iff it has an active occupancy.  Also exposes
    the active-lease reads InvoiceEngine enumerates and the expiring-lease
    feed used by the reminder collaborator.

Architecture position:
    Kernel > Services.  Depends on TenancyGuard; InvoiceEngine depends on it.

Invariants enforced:
    - At most one active occupancy per apartment.  The application check
      is backed by the partial unique index
      uq_occupancies_one_active_per_apartment; an IntegrityError at flush is
      reported as ApartmentNotAvailableError.
    - lease_end_date >= lease_start_date.
    - Once move_out_date is set (or the lease is terminal) lease dates are
      frozen.
    - Creation never changes the apartment's status; activation does.

Failure modes:
    - ApartmentNotAvailableError, InvalidDateRangeError,
      CrossTenantReferenceError on create.
    - InvalidTransitionError on any transition outside the workflow.
    - LeaseDatesLockedError, DepositExceedsRequiredError,
      InvoiceHasPaymentsError on the supporting operations.

Audit relevance:
    create / activate / end / cancel / update_dates / record_deposit /
    delete / restore each record one event (plus one per cascaded invoice).
"""

from datetime import date, timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from lease_kernel.db.types import ZERO, to_money
from lease_kernel.domain.billing import BillingPeriod
from lease_kernel.domain.tenancy import TenancyContext
from lease_kernel.domain.workflows import OCCUPANCY_WORKFLOW
from lease_kernel.exceptions import (
    ApartmentNotAvailableError,
    DepositExceedsRequiredError,
    InvalidAmountError,
    InvalidDateRangeError,
    InvalidTransitionError,
    InvoiceHasPaymentsError,
    LeaseDatesLockedError,
)
from lease_kernel.logging_config import get_logger
from lease_kernel.models.invoice import Invoice
from lease_kernel.models.occupancy import Occupancy, OccupancyStatus
from lease_kernel.models.property import Apartment, ApartmentStatus
from lease_kernel.models.tenant import Tenant
from lease_kernel.services.audit_emitter import snapshot
from lease_kernel.services.base import BaseService

logger = get_logger("services.occupancy")

_AUDIT_FIELDS = (
    "status",
    "apartment_id",
    "tenant_id",
    "lease_start_date",
    "lease_end_date",
    "move_in_date",
    "move_out_date",
    "monthly_rent",
    "security_deposit",
    "deposit_paid",
)


class ExpiringOccupancies:
    """
    Finite, restartable sequence of active leases ending in a window.

    Each iteration re-runs the query; nothing is cached between passes.
    """

    def __init__(self, session: Session, stmt):
        self._session = session
        self._stmt = stmt

    def __iter__(self):
        return iter(self._session.execute(self._stmt).scalars())


class OccupancyLifecycle(BaseService):
    """Lease state machine.  Every public mutating method commits."""

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, ctx: TenancyContext, occupancy_id: UUID, include_deleted: bool = False) -> Occupancy:
        return self._guard.get(ctx, Occupancy, occupancy_id, include_deleted=include_deleted)

    def active_occupancy_for_apartment(
        self,
        ctx: TenancyContext,
        apartment_id: UUID,
        exclude_id: UUID | None = None,
    ) -> Occupancy | None:
        stmt = self._guard.scoped(ctx, Occupancy).where(
            Occupancy.apartment_id == apartment_id,
            Occupancy.status == OccupancyStatus.ACTIVE,
        )
        if exclude_id is not None:
            stmt = stmt.where(Occupancy.id != exclude_id)
        return self._session.execute(stmt.limit(1)).scalar_one_or_none()

    def has_active_for_tenant(self, ctx: TenancyContext, tenant_id: UUID) -> bool:
        stmt = self._guard.scoped(ctx, Occupancy).where(
            Occupancy.tenant_id == tenant_id,
            Occupancy.status == OccupancyStatus.ACTIVE,
        )
        return self._session.execute(stmt.limit(1)).first() is not None

    def billable_for_period(self, ctx: TenancyContext, period: BillingPeriod) -> list[Occupancy]:
        """Active occupancies whose lease overlaps the billing month, oldest first."""
        stmt = (
            self._guard.scoped(ctx, Occupancy)
            .where(
                Occupancy.status == OccupancyStatus.ACTIVE,
                Occupancy.lease_start_date <= period.last_day,
                Occupancy.lease_end_date >= period.first_day,
            )
            .order_by(Occupancy.lease_start_date, Occupancy.id)
        )
        return list(self._session.execute(stmt).scalars())

    def list_for_apartment(self, ctx: TenancyContext, apartment_id: UUID) -> list[Occupancy]:
        self._guard.get(ctx, Apartment, apartment_id)
        stmt = (
            self._guard.scoped(ctx, Occupancy)
            .where(Occupancy.apartment_id == apartment_id)
            .order_by(Occupancy.lease_start_date.desc())
        )
        return list(self._session.execute(stmt).scalars())

    def list_for_tenant(self, ctx: TenancyContext, tenant_id: UUID) -> list[Occupancy]:
        self._guard.get(ctx, Tenant, tenant_id)
        stmt = (
            self._guard.scoped(ctx, Occupancy)
            .where(Occupancy.tenant_id == tenant_id)
            .order_by(Occupancy.lease_start_date.desc())
        )
        return list(self._session.execute(stmt).scalars())

    def list_active_expiring(
        self,
        ctx: TenancyContext,
        within_days: int,
        as_of: date | None = None,
    ) -> ExpiringOccupancies:
        """Active leases whose end date falls within [as_of, as_of + within_days]."""
        if within_days < 0:
            raise InvalidDateRangeError("within_days", 0, within_days)
        start = as_of or self._clock.today()
        stmt = (
            self._guard.scoped(ctx, Occupancy)
            .where(
                Occupancy.status == OccupancyStatus.ACTIVE,
                Occupancy.lease_end_date >= start,
                Occupancy.lease_end_date <= start + timedelta(days=within_days),
            )
            .order_by(Occupancy.lease_end_date, Occupancy.id)
        )
        return ExpiringOccupancies(self._session, stmt)

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create(
        self,
        ctx: TenancyContext,
        apartment_id: UUID,
        tenant_id: UUID,
        lease_start_date: date,
        lease_end_date: date,
        monthly_rent: Decimal,
        security_deposit: Decimal | None = None,
        deposit_paid: Decimal = ZERO,
        notes: str | None = None,
    ) -> Occupancy:
        """
        Create a pending lease.

        Raises ApartmentNotAvailableError only when the new lease's dates
        overlap the apartment's current active lease; a later,
        non-overlapping lease may be created and activated once the current
        one ends.
        """
        if lease_end_date < lease_start_date:
            raise InvalidDateRangeError("lease_end_date", lease_start_date, lease_end_date)
        rent = to_money(monthly_rent, "monthly_rent")
        if rent <= 0:
            raise InvalidAmountError("monthly_rent", rent)
        deposit = to_money(security_deposit, "security_deposit") if security_deposit is not None else None
        paid = to_money(deposit_paid, "deposit_paid")
        if paid < 0:
            raise InvalidAmountError("deposit_paid", paid)
        if paid > (deposit or ZERO):
            raise DepositExceedsRequiredError(None, deposit, paid)

        with self._unit_of_work(ctx, "occupancy_create"):
            self._guard.require_writable(ctx)
            apartment = self._guard.get_reference(ctx, Apartment, apartment_id)
            self._guard.get_reference(ctx, Tenant, tenant_id)

            active = self.active_occupancy_for_apartment(ctx, apartment.id)
            if active is not None and active.covers(lease_start_date, lease_end_date):
                raise ApartmentNotAvailableError(str(apartment.id), str(active.id))

            occupancy = Occupancy(
                company_id=ctx.company_id,
                apartment_id=apartment.id,
                tenant_id=tenant_id,
                lease_start_date=lease_start_date,
                lease_end_date=lease_end_date,
                monthly_rent=rent,
                security_deposit=deposit,
                deposit_paid=paid,
                status=OccupancyStatus.PENDING,
                notes=notes,
                created_by_id=ctx.actor_id,
            )
            self._session.add(occupancy)
            self._session.flush()
            self._audit.record(ctx, "Occupancy", occupancy.id, "create",
                               after=snapshot(occupancy, _AUDIT_FIELDS))

        logger.info(
            "occupancy_created",
            extra={"occupancy_id": str(occupancy.id), "apartment_id": str(apartment_id)},
        )
        return occupancy

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def activate(self, ctx: TenancyContext, occupancy_id: UUID, move_in_date: date | None = None) -> Occupancy:
        """pending -> active; the apartment becomes occupied."""
        with self._unit_of_work(ctx, "occupancy_activate"):
            self._guard.require_writable(ctx)
            occupancy = self._guard.get(ctx, Occupancy, occupancy_id, for_update=True)
            before = snapshot(occupancy, _AUDIT_FIELDS)
            OCCUPANCY_WORKFLOW.require(occupancy.id, occupancy.status, "activate")

            move_in = move_in_date or occupancy.lease_start_date
            if move_in > occupancy.lease_end_date:
                raise InvalidDateRangeError("move_in_date", move_in, occupancy.lease_end_date)

            apartment = self._guard.get_reference(ctx, Apartment, occupancy.apartment_id, for_update=True)
            other = self.active_occupancy_for_apartment(ctx, apartment.id, exclude_id=occupancy.id)
            if other is not None:
                raise ApartmentNotAvailableError(str(apartment.id), str(other.id))

            occupancy.status = OccupancyStatus.ACTIVE
            occupancy.move_in_date = move_in
            occupancy.updated_by_id = ctx.actor_id
            apartment.status = ApartmentStatus.OCCUPIED
            apartment.updated_by_id = ctx.actor_id
            try:
                self._session.flush()
            except IntegrityError as exc:
                logger.warning(
                    "occupancy_activation_conflict",
                    extra={"occupancy_id": str(occupancy_id), "apartment_id": str(apartment.id)},
                )
                raise ApartmentNotAvailableError(str(apartment.id)) from exc

            self._audit.record(ctx, "Occupancy", occupancy.id, "activate",
                               before=before, after=snapshot(occupancy, _AUDIT_FIELDS))
            self._audit.record(ctx, "Apartment", apartment.id, "status_change",
                               after=snapshot(apartment, ("status",)))

        logger.info(
            "occupancy_activated",
            extra={"occupancy_id": str(occupancy_id), "apartment_id": str(occupancy.apartment_id)},
        )
        return occupancy

    def end(self, ctx: TenancyContext, occupancy_id: UUID, move_out_date: date) -> Occupancy:
        """active -> ended; the apartment is released unless another active lease holds it."""
        with self._unit_of_work(ctx, "occupancy_end"):
            self._guard.require_writable(ctx)
            occupancy = self._guard.get(ctx, Occupancy, occupancy_id, for_update=True)
            before = snapshot(occupancy, _AUDIT_FIELDS)
            OCCUPANCY_WORKFLOW.require(occupancy.id, occupancy.status, "end")
            if move_out_date < occupancy.lease_start_date:
                raise InvalidDateRangeError("move_out_date", occupancy.lease_start_date, move_out_date)

            occupancy.status = OccupancyStatus.ENDED
            occupancy.move_out_date = move_out_date
            occupancy.updated_by_id = ctx.actor_id

            apartment = self._guard.get_reference(ctx, Apartment, occupancy.apartment_id, for_update=True)
            other = self.active_occupancy_for_apartment(ctx, apartment.id, exclude_id=occupancy.id)
            if other is None:
                apartment.status = ApartmentStatus.AVAILABLE
                apartment.updated_by_id = ctx.actor_id
            else:
                logger.warning(
                    "apartment_still_occupied",
                    extra={"apartment_id": str(apartment.id), "other_occupancy_id": str(other.id)},
                )
            self._session.flush()

            self._audit.record(ctx, "Occupancy", occupancy.id, "end",
                               before=before, after=snapshot(occupancy, _AUDIT_FIELDS))
            self._audit.record(ctx, "Apartment", apartment.id, "status_change",
                               after=snapshot(apartment, ("status",)))

        logger.info("occupancy_ended", extra={"occupancy_id": str(occupancy_id)})
        return occupancy

    def cancel(self, ctx: TenancyContext, occupancy_id: UUID) -> Occupancy:
        """pending -> cancelled (terminal)."""
        with self._unit_of_work(ctx, "occupancy_cancel"):
            self._guard.require_writable(ctx)
            occupancy = self._guard.get(ctx, Occupancy, occupancy_id, for_update=True)
            before = snapshot(occupancy, _AUDIT_FIELDS)
            OCCUPANCY_WORKFLOW.require(occupancy.id, occupancy.status, "cancel")
            occupancy.status = OccupancyStatus.CANCELLED
            occupancy.updated_by_id = ctx.actor_id
            self._session.flush()
            self._audit.record(ctx, "Occupancy", occupancy.id, "cancel",
                               before=before, after=snapshot(occupancy, _AUDIT_FIELDS))

        logger.info("occupancy_cancelled", extra={"occupancy_id": str(occupancy_id)})
        return occupancy

    # ------------------------------------------------------------------
    # Supporting mutations
    # ------------------------------------------------------------------

    def update_lease_dates(
        self,
        ctx: TenancyContext,
        occupancy_id: UUID,
        lease_start_date: date,
        lease_end_date: date,
    ) -> Occupancy:
        """Change lease dates while the lease is pending or active and not moved out."""
        if lease_end_date < lease_start_date:
            raise InvalidDateRangeError("lease_end_date", lease_start_date, lease_end_date)

        with self._unit_of_work(ctx, "occupancy_update_dates"):
            self._guard.require_writable(ctx)
            occupancy = self._guard.get(ctx, Occupancy, occupancy_id, for_update=True)
            if occupancy.move_out_date is not None or OCCUPANCY_WORKFLOW.is_terminal(occupancy.status):
                raise LeaseDatesLockedError(str(occupancy.id), occupancy.status)
            if occupancy.move_in_date is not None and occupancy.move_in_date > lease_end_date:
                raise InvalidDateRangeError("lease_end_date", occupancy.move_in_date, lease_end_date)
            if occupancy.status == OccupancyStatus.PENDING:
                active = self.active_occupancy_for_apartment(ctx, occupancy.apartment_id)
                if active is not None and active.covers(lease_start_date, lease_end_date):
                    raise ApartmentNotAvailableError(str(occupancy.apartment_id), str(active.id))

            before = snapshot(occupancy, _AUDIT_FIELDS)
            occupancy.lease_start_date = lease_start_date
            occupancy.lease_end_date = lease_end_date
            occupancy.updated_by_id = ctx.actor_id
            self._session.flush()
            self._audit.record(ctx, "Occupancy", occupancy.id, "update_dates",
                               before=before, after=snapshot(occupancy, _AUDIT_FIELDS))
        return occupancy

    def record_deposit(self, ctx: TenancyContext, occupancy_id: UUID, amount: Decimal) -> Occupancy:
        """Add to deposit_paid; the running total may not exceed security_deposit."""
        value = to_money(amount, "amount")
        if value <= 0:
            raise InvalidAmountError("amount", value)

        with self._unit_of_work(ctx, "occupancy_record_deposit"):
            self._guard.require_writable(ctx)
            occupancy = self._guard.get(ctx, Occupancy, occupancy_id, for_update=True)
            if OCCUPANCY_WORKFLOW.is_terminal(occupancy.status):
                raise InvalidTransitionError("Occupancy", str(occupancy.id), occupancy.status, "record_deposit")
            new_total = occupancy.deposit_paid + value
            if occupancy.security_deposit is None or new_total > occupancy.security_deposit:
                raise DepositExceedsRequiredError(str(occupancy.id), occupancy.security_deposit, new_total)

            before = snapshot(occupancy, _AUDIT_FIELDS)
            occupancy.deposit_paid = new_total
            occupancy.updated_by_id = ctx.actor_id
            self._session.flush()
            self._audit.record(ctx, "Occupancy", occupancy.id, "record_deposit",
                               before=before, after=snapshot(occupancy, _AUDIT_FIELDS))
        return occupancy

    def delete(self, ctx: TenancyContext, occupancy_id: UUID) -> None:
        """
        Soft-delete a non-active occupancy and its invoices.

        Refused while active, and refused when any of its invoices carries
        payments.
        """
        with self._unit_of_work(ctx, "occupancy_delete"):
            self._guard.require_writable(ctx)
            occupancy = self._guard.get(ctx, Occupancy, occupancy_id, for_update=True)
            if occupancy.status == OccupancyStatus.ACTIVE:
                raise InvalidTransitionError("Occupancy", str(occupancy.id), occupancy.status, "delete")

            invoices = list(self._session.execute(
                self._guard.scoped(ctx, Invoice).where(Invoice.occupancy_id == occupancy.id)
            ).scalars())
            for invoice in invoices:
                if invoice.amount_paid > 0:
                    raise InvoiceHasPaymentsError(str(invoice.id), invoice.amount_paid)

            self._soft_delete.soft_delete(occupancy, ctx.actor_id)
            for invoice in invoices:
                invoice.deleted_at = occupancy.deleted_at
                invoice.updated_by_id = ctx.actor_id
            self._session.flush()

            self._audit.record(ctx, "Occupancy", occupancy.id, "delete")
            for invoice in invoices:
                self._audit.record(ctx, "Invoice", invoice.id, "delete",
                                   after=snapshot(invoice, ("occupancy_id",)))

        logger.info(
            "occupancy_deleted",
            extra={"occupancy_id": str(occupancy_id), "cascaded_invoices": len(invoices)},
        )

    def restore(self, ctx: TenancyContext, occupancy_id: UUID) -> Occupancy:
        """Undo delete(): restores the occupancy and the invoices deleted with it."""
        with self._unit_of_work(ctx, "occupancy_restore"):
            self._guard.require_writable(ctx)
            occupancy = self._guard.get(ctx, Occupancy, occupancy_id, include_deleted=True)
            deleted_at = occupancy.deleted_at
            if deleted_at is None:
                return occupancy

            cascaded = list(self._session.execute(
                select(Invoice).where(
                    Invoice.company_id == ctx.company_id,
                    Invoice.occupancy_id == occupancy.id,
                    Invoice.deleted_at == deleted_at,
                )
            ).scalars())
            self._soft_delete.restore(occupancy, ctx.actor_id)
            for invoice in cascaded:
                self._soft_delete.restore(invoice, ctx.actor_id)

            self._audit.record(ctx, "Occupancy", occupancy.id, "restore")
            for invoice in cascaded:
                self._audit.record(ctx, "Invoice", invoice.id, "restore")
        return occupancy
