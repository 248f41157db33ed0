"""
Tests for OccupancyLifecycle.

Covers:
- Creation validation and the "create is allowed, activate is not" race
- Apartment status tracking across activate / end / cancel
- Lease date locking, deposits, soft delete with invoice cascade
- Expiring-lease feed
"""

from datetime import UTC, date, datetime
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from lease_kernel.domain.billing import BillingPeriod
from lease_kernel.exceptions import (
    ApartmentNotAvailableError,
    DepositExceedsRequiredError,
    EntityNotFoundError,
    InvalidAmountError,
    InvalidDateRangeError,
    InvalidTransitionError,
    InvoiceHasPaymentsError,
    LeaseDatesLockedError,
)
from lease_kernel.models.occupancy import OccupancyStatus
from lease_kernel.models.property import ApartmentStatus


class TestCreate:

    def test_create_is_pending_and_leaves_apartment_available(
        self, ctx, occupancy_lifecycle, create_apartment, create_resident,
    ):
        apartment = create_apartment()
        tenant = create_resident()

        occupancy = occupancy_lifecycle.create(
            ctx, apartment.id, tenant.id,
            date(2024, 1, 1), date(2024, 12, 31), Decimal("1500.00"),
        )

        assert occupancy.status == OccupancyStatus.PENDING
        assert occupancy.company_id == ctx.company_id
        assert apartment.status == ApartmentStatus.AVAILABLE

    def test_end_before_start_rejected(self, ctx, occupancy_lifecycle, create_apartment, create_resident):
        with pytest.raises(InvalidDateRangeError):
            occupancy_lifecycle.create(
                ctx, create_apartment().id, create_resident().id,
                date(2024, 2, 1), date(2024, 1, 31), Decimal("1500.00"),
            )

    def test_single_day_lease_allowed(self, ctx, occupancy_lifecycle, create_apartment, create_resident):
        occupancy = occupancy_lifecycle.create(
            ctx, create_apartment().id, create_resident().id,
            date(2024, 1, 1), date(2024, 1, 1), Decimal("100.00"),
        )
        assert occupancy.lease_start_date == occupancy.lease_end_date

    @pytest.mark.parametrize("rent", [Decimal("0"), Decimal("-5")])
    def test_non_positive_rent_rejected(self, ctx, occupancy_lifecycle, create_apartment, create_resident, rent):
        with pytest.raises(InvalidAmountError):
            occupancy_lifecycle.create(
                ctx, create_apartment().id, create_resident().id,
                date(2024, 1, 1), date(2024, 12, 31), rent,
            )

    def test_deposit_paid_above_required_rejected(
        self, ctx, occupancy_lifecycle, create_apartment, create_resident,
    ):
        with pytest.raises(DepositExceedsRequiredError):
            occupancy_lifecycle.create(
                ctx, create_apartment().id, create_resident().id,
                date(2024, 1, 1), date(2024, 12, 31), Decimal("1500.00"),
                security_deposit=Decimal("1000.00"), deposit_paid=Decimal("1000.01"),
            )

    def test_overlapping_active_lease_rejected(self, ctx, occupancy_lifecycle, create_occupancy, create_resident):
        first = create_occupancy()

        with pytest.raises(ApartmentNotAvailableError):
            occupancy_lifecycle.create(
                ctx, first.apartment_id, create_resident().id,
                date(2024, 6, 1), date(2025, 5, 31), Decimal("1500.00"),
            )

    def test_create_audited(self, ctx, occupancy_lifecycle, audit_sink, create_apartment, create_resident):
        apartment = create_apartment()
        tenant = create_resident()
        audit_sink.clear()

        occupancy = occupancy_lifecycle.create(
            ctx, apartment.id, tenant.id,
            date(2024, 1, 1), date(2024, 12, 31), Decimal("1500.00"),
        )

        (event,) = [e for e in audit_sink.events if e.entity == "Occupancy"]
        assert event.action == "create"
        assert event.entity_id == occupancy.id
        assert event.company_id == ctx.company_id
        assert event.actor_id == ctx.actor_id
        assert event.after["status"] == "pending"
        assert event.correlation_id == "test-corr"


class TestSecondLeaseOnOccupiedApartment:
    """An apartment with an active lease accepts a follow-on lease but not a second activation."""

    def test_create_succeeds_activate_fails(self, ctx, occupancy_lifecycle, create_occupancy, create_resident):
        first = create_occupancy()

        second = occupancy_lifecycle.create(
            ctx, first.apartment_id, create_resident().id,
            date(2025, 1, 1), date(2025, 12, 31), Decimal("1600.00"),
        )
        assert second.status == OccupancyStatus.PENDING

        with pytest.raises(ApartmentNotAvailableError) as exc_info:
            occupancy_lifecycle.activate(ctx, second.id)
        assert exc_info.value.code == "APARTMENT_NOT_AVAILABLE"

        assert occupancy_lifecycle.get(ctx, first.id).status == OccupancyStatus.ACTIVE
        assert occupancy_lifecycle.get(ctx, second.id).status == OccupancyStatus.PENDING

    def test_index_conflict_reported_when_check_misses(
        self, ctx, occupancy_lifecycle, create_occupancy, create_resident, captured_logs, monkeypatch,
    ):
        first = create_occupancy()
        second = occupancy_lifecycle.create(
            ctx, first.apartment_id, create_resident().id,
            date(2025, 1, 1), date(2025, 12, 31), Decimal("1600.00"),
        )
        # Another writer's activation is not yet visible to the application check.
        monkeypatch.setattr(occupancy_lifecycle, "active_occupancy_for_apartment", lambda *args, **kwargs: None)

        with pytest.raises(ApartmentNotAvailableError) as exc_info:
            occupancy_lifecycle.activate(ctx, second.id)
        monkeypatch.undo()

        assert isinstance(exc_info.value.__cause__, IntegrityError)
        assert any(r["message"] == "occupancy_activation_conflict" for r in captured_logs())
        assert occupancy_lifecycle.get(ctx, second.id).status == OccupancyStatus.PENDING
        assert occupancy_lifecycle.get(ctx, first.id).status == OccupancyStatus.ACTIVE

    def test_follow_on_lease_activates_after_first_ends(
        self, ctx, occupancy_lifecycle, property_service, create_occupancy, create_resident,
    ):
        first = create_occupancy()
        second = occupancy_lifecycle.create(
            ctx, first.apartment_id, create_resident().id,
            date(2025, 1, 1), date(2025, 12, 31), Decimal("1600.00"),
        )

        occupancy_lifecycle.end(ctx, first.id, date(2024, 12, 31))
        occupancy_lifecycle.activate(ctx, second.id)

        assert property_service.get_apartment(ctx, first.apartment_id).status == ApartmentStatus.OCCUPIED


class TestTransitions:

    def test_activate_occupies_apartment(
        self, ctx, occupancy_lifecycle, property_service, create_occupancy,
    ):
        occupancy = create_occupancy(activate=False)

        activated = occupancy_lifecycle.activate(ctx, occupancy.id)

        assert activated.status == OccupancyStatus.ACTIVE
        assert activated.move_in_date == date(2024, 1, 1)
        assert property_service.get_apartment(ctx, occupancy.apartment_id).status == ApartmentStatus.OCCUPIED

    def test_activate_twice_rejected(self, ctx, occupancy_lifecycle, create_occupancy):
        occupancy = create_occupancy()
        with pytest.raises(InvalidTransitionError):
            occupancy_lifecycle.activate(ctx, occupancy.id)

    def test_move_in_after_lease_end_rejected(self, ctx, occupancy_lifecycle, create_occupancy):
        occupancy = create_occupancy(activate=False)
        with pytest.raises(InvalidDateRangeError):
            occupancy_lifecycle.activate(ctx, occupancy.id, move_in_date=date(2025, 1, 1))

    def test_end_releases_apartment(self, ctx, occupancy_lifecycle, property_service, create_occupancy):
        occupancy = create_occupancy()

        ended = occupancy_lifecycle.end(ctx, occupancy.id, date(2024, 6, 30))

        assert ended.status == OccupancyStatus.ENDED
        assert ended.move_out_date == date(2024, 6, 30)
        assert property_service.get_apartment(ctx, occupancy.apartment_id).status == ApartmentStatus.AVAILABLE

    def test_end_pending_rejected(self, ctx, occupancy_lifecycle, create_occupancy):
        occupancy = create_occupancy(activate=False)
        with pytest.raises(InvalidTransitionError):
            occupancy_lifecycle.end(ctx, occupancy.id, date(2024, 6, 30))

    def test_move_out_before_start_rejected(self, ctx, occupancy_lifecycle, create_occupancy):
        occupancy = create_occupancy()
        with pytest.raises(InvalidDateRangeError):
            occupancy_lifecycle.end(ctx, occupancy.id, date(2023, 12, 31))

    def test_cancel_pending(self, ctx, occupancy_lifecycle, create_occupancy):
        occupancy = create_occupancy(activate=False)
        assert occupancy_lifecycle.cancel(ctx, occupancy.id).status == OccupancyStatus.CANCELLED

    def test_cancel_active_rejected(self, ctx, occupancy_lifecycle, create_occupancy):
        occupancy = create_occupancy()
        with pytest.raises(InvalidTransitionError):
            occupancy_lifecycle.cancel(ctx, occupancy.id)

    def test_failed_transition_records_no_audit(self, ctx, occupancy_lifecycle, audit_sink, create_occupancy):
        occupancy = create_occupancy()
        audit_sink.clear()

        with pytest.raises(InvalidTransitionError):
            occupancy_lifecycle.cancel(ctx, occupancy.id)

        assert audit_sink.events == []


class TestLeaseDates:

    def test_update_pending_dates(self, ctx, occupancy_lifecycle, create_occupancy):
        occupancy = create_occupancy(activate=False)

        updated = occupancy_lifecycle.update_lease_dates(ctx, occupancy.id, date(2024, 2, 1), date(2025, 1, 31))

        assert (updated.lease_start_date, updated.lease_end_date) == (date(2024, 2, 1), date(2025, 1, 31))

    def test_dates_locked_after_move_out(self, ctx, occupancy_lifecycle, create_occupancy):
        occupancy = create_occupancy()
        occupancy_lifecycle.end(ctx, occupancy.id, date(2024, 6, 30))

        with pytest.raises(LeaseDatesLockedError):
            occupancy_lifecycle.update_lease_dates(ctx, occupancy.id, date(2024, 1, 1), date(2024, 9, 30))

    def test_end_before_move_in_rejected(self, ctx, occupancy_lifecycle, create_occupancy):
        occupancy = create_occupancy()
        with pytest.raises(InvalidDateRangeError):
            occupancy_lifecycle.update_lease_dates(ctx, occupancy.id, date(2023, 6, 1), date(2023, 12, 31))


class TestDeposit:

    def test_record_deposit(self, ctx, occupancy_lifecycle, create_occupancy):
        occupancy = create_occupancy()

        occupancy_lifecycle.record_deposit(ctx, occupancy.id, Decimal("1000.00"))
        updated = occupancy_lifecycle.record_deposit(ctx, occupancy.id, Decimal("500.00"))

        assert updated.deposit_paid == Decimal("1500.00")

    def test_deposit_cannot_exceed_required(self, ctx, occupancy_lifecycle, create_occupancy):
        occupancy = create_occupancy()
        occupancy_lifecycle.record_deposit(ctx, occupancy.id, Decimal("1500.00"))

        with pytest.raises(DepositExceedsRequiredError):
            occupancy_lifecycle.record_deposit(ctx, occupancy.id, Decimal("0.01"))


class TestDeleteAndRestore:

    def test_active_occupancy_cannot_be_deleted(self, ctx, occupancy_lifecycle, create_occupancy):
        occupancy = create_occupancy()
        with pytest.raises(InvalidTransitionError):
            occupancy_lifecycle.delete(ctx, occupancy.id)

    def test_delete_cascades_to_invoices_and_restore_reverses(
        self, ctx, occupancy_lifecycle, invoice_engine, create_occupancy,
    ):
        occupancy = create_occupancy()
        invoice = invoice_engine.generate_for_occupancy(ctx, occupancy.id, "2024-01")
        occupancy_lifecycle.end(ctx, occupancy.id, date(2024, 1, 31))

        occupancy_lifecycle.delete(ctx, occupancy.id)

        with pytest.raises(EntityNotFoundError):
            occupancy_lifecycle.get(ctx, occupancy.id)
        with pytest.raises(EntityNotFoundError):
            invoice_engine.get(ctx, invoice.id)

        occupancy_lifecycle.restore(ctx, occupancy.id)

        assert occupancy_lifecycle.get(ctx, occupancy.id).deleted_at is None
        assert invoice_engine.get(ctx, invoice.id).deleted_at is None

    def test_delete_refused_when_invoice_has_payments(
        self, ctx, occupancy_lifecycle, invoice_engine, payment_ledger, create_occupancy,
    ):
        occupancy = create_occupancy()
        invoice = invoice_engine.generate_for_occupancy(ctx, occupancy.id, "2024-01")
        invoice_engine.send(ctx, invoice.id)
        payment_ledger.apply_payment(ctx, invoice.id, Decimal("100.00"), datetime(2024, 1, 3, tzinfo=UTC), "CASH")
        occupancy_lifecycle.end(ctx, occupancy.id, date(2024, 1, 31))

        with pytest.raises(InvoiceHasPaymentsError):
            occupancy_lifecycle.delete(ctx, occupancy.id)


class TestReads:

    def test_billable_for_period(self, ctx, occupancy_lifecycle, create_occupancy):
        inside = create_occupancy()
        create_occupancy(start=date(2024, 3, 1), end=date(2024, 12, 31))
        create_occupancy(activate=False)

        billable = occupancy_lifecycle.billable_for_period(ctx, BillingPeriod.parse("2024-01"))

        assert [o.id for o in billable] == [inside.id]

    def test_list_active_expiring_is_restartable(self, ctx, occupancy_lifecycle, create_occupancy):
        soon = create_occupancy(end=date(2024, 2, 1))
        create_occupancy(end=date(2024, 12, 31))

        feed = occupancy_lifecycle.list_active_expiring(ctx, within_days=30, as_of=date(2024, 1, 15))

        assert [o.id for o in feed] == [soon.id]
        assert [o.id for o in feed] == [soon.id]

    def test_has_active_for_tenant(self, ctx, occupancy_lifecycle, create_occupancy):
        occupancy = create_occupancy()
        assert occupancy_lifecycle.has_active_for_tenant(ctx, occupancy.tenant_id)
