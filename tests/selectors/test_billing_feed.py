"""
Tests for BillingFeedSelector: reminder feeds and dashboard statistics.
"""

from datetime import UTC, date, datetime
from decimal import Decimal

import pytest

from lease_kernel.domain.dtos import InvoiceSummary
from lease_kernel.exceptions import InvalidDateRangeError
from lease_kernel.selectors.billing_feed import BillingFeedSelector

AS_OF = date(2024, 1, 15)


@pytest.fixture
def selector(session, deterministic_clock):
    return BillingFeedSelector(session, deterministic_clock)


@pytest.fixture
def ledger_book(ctx, invoice_engine, payment_ledger, create_occupancy):
    """
    Four January invoices:
      past_due  sent, due 01-05, unpaid
      due_soon  sent, due 01-20, 200.00 paid
      draft     draft, due 01-05
      voided    cancelled
    """
    past_due = invoice_engine.generate_for_occupancy(ctx, create_occupancy().id, "2024-01", due_day=5)
    invoice_engine.send(ctx, past_due.id)

    due_soon = invoice_engine.generate_for_occupancy(ctx, create_occupancy().id, "2024-01", due_day=20)
    invoice_engine.send(ctx, due_soon.id)
    payment_ledger.apply_payment(ctx, due_soon.id, Decimal("200.00"), datetime(2024, 1, 14, tzinfo=UTC), "MOBILE")

    draft = invoice_engine.generate_for_occupancy(ctx, create_occupancy().id, "2024-01", due_day=5)

    voided = invoice_engine.generate_for_occupancy(ctx, create_occupancy().id, "2024-01", due_day=5)
    invoice_engine.cancel(ctx, voided.id)

    return {"past_due": past_due, "due_soon": due_soon, "draft": draft, "voided": voided}


class TestFeeds:

    def test_due_soon(self, ctx, selector, ledger_book):
        feed = selector.invoices_due_soon(ctx, within_days=7, as_of=AS_OF)

        assert [s.invoice_id for s in feed] == [ledger_book["due_soon"].id]
        assert isinstance(feed[0], InvoiceSummary)
        assert feed[0].balance_due == Decimal("1300.00")

    def test_due_soon_window_excludes_later(self, ctx, selector, ledger_book):
        assert selector.invoices_due_soon(ctx, within_days=4, as_of=AS_OF) == []

    def test_negative_window(self, ctx, selector):
        with pytest.raises(InvalidDateRangeError):
            selector.invoices_due_soon(ctx, within_days=-1)

    def test_overdue_is_date_derived(self, ctx, selector, ledger_book):
        feed = selector.invoices_overdue(ctx, as_of=AS_OF)

        assert [s.invoice_id for s in feed] == [ledger_book["past_due"].id]
        assert feed[0].status == "sent"

    def test_overdue_defaults_to_clock(self, ctx, selector, ledger_book):
        assert [s.invoice_id for s in selector.invoices_overdue(ctx)] == [ledger_book["past_due"].id]

    def test_feeds_are_company_scoped(self, other_ctx, selector, ledger_book):
        assert selector.invoices_overdue(other_ctx, as_of=AS_OF) == []
        assert selector.invoices_due_soon(other_ctx, as_of=AS_OF) == []


class TestInvoiceStats:

    def test_stats(self, ctx, selector, ledger_book):
        stats = selector.invoice_stats(ctx, as_of=AS_OF)

        assert dict(stats.counts_by_status) == {"sent": 2, "draft": 1, "cancelled": 1}
        assert stats.total_invoiced == Decimal("4500.00")
        assert stats.total_paid == Decimal("200.00")
        assert stats.outstanding == Decimal("4300.00")
        assert stats.overdue_count == 1

    def test_empty_company(self, ctx, selector):
        stats = selector.invoice_stats(ctx, as_of=AS_OF)
        assert (stats.total_invoiced, stats.outstanding, stats.overdue_count) == (Decimal("0"), Decimal("0"), 0)


class TestOccupancyStats:

    def test_stats(self, ctx, selector, create_occupancy):
        create_occupancy(end=date(2024, 2, 1), monthly_rent=Decimal("1000.00"))
        create_occupancy(end=date(2024, 12, 31), monthly_rent=Decimal("1250.50"))
        create_occupancy(activate=False, monthly_rent=Decimal("999.00"))

        stats = selector.occupancy_stats(ctx, as_of=AS_OF, expiring_within_days=30)

        assert dict(stats.counts_by_status) == {"active": 2, "pending": 1}
        assert stats.expiring_soon == 1
        assert stats.monthly_rent_roll == Decimal("2250.50")
