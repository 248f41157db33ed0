"""
Unit tests for pure billing arithmetic (lease_kernel/domain/billing.py).

Covers:
- Billing month parsing and due-day clamping
- Line item pricing and total validation
- Invoice date boundary (due_date == invoice_date)
- Post-payment status derivation
"""

from datetime import date
from decimal import Decimal

import pytest

from lease_kernel.domain.billing import (
    BillingPeriod,
    LineItemSpec,
    LineItemType,
    compute_totals,
    is_overdue,
    price_line_items,
    rent_line_item,
    status_after_payment,
    validate_invoice_dates,
)
from lease_kernel.exceptions import (
    InvalidBillingMonthError,
    InvalidDateRangeError,
    InvalidLineItemError,
)


class TestBillingPeriod:

    def test_parse(self):
        period = BillingPeriod.parse("2024-01")
        assert period == BillingPeriod(2024, 1)
        assert period.key == "2024-01"
        assert str(period) == "2024-01"

    def test_parse_passthrough(self):
        period = BillingPeriod(2024, 3)
        assert BillingPeriod.parse(period) is period

    @pytest.mark.parametrize("value", ["2024-1", "2024/01", "24-01", "", "2024-01-01", None, 202401])
    def test_parse_rejects_malformed(self, value):
        with pytest.raises(InvalidBillingMonthError):
            BillingPeriod.parse(value)

    def test_parse_rejects_month_13(self):
        with pytest.raises(InvalidBillingMonthError) as exc_info:
            BillingPeriod.parse("2024-13")
        assert exc_info.value.reason == "month out of range"

    def test_first_and_last_day(self):
        period = BillingPeriod.parse("2024-02")
        assert period.first_day == date(2024, 2, 1)
        assert period.last_day == date(2024, 2, 29)
        assert period.days_in_month == 29

    def test_due_date(self):
        assert BillingPeriod.parse("2024-01").due_date(5) == date(2024, 1, 5)

    def test_due_day_clamped_to_month_end(self):
        assert BillingPeriod.parse("2023-02").due_date(31) == date(2023, 2, 28)
        assert BillingPeriod.parse("2024-04").due_date(31) == date(2024, 4, 30)

    @pytest.mark.parametrize("due_day", [0, -1, 32, True, "5"])
    def test_invalid_due_day(self, due_day):
        with pytest.raises(InvalidBillingMonthError):
            BillingPeriod.parse("2024-01").due_date(due_day)

    def test_ordering(self):
        assert BillingPeriod(2023, 12) < BillingPeriod(2024, 1)

    def test_overlaps_lease(self):
        period = BillingPeriod.parse("2024-01")
        assert period.overlaps_lease(date(2023, 6, 1), date(2024, 1, 1))
        assert period.overlaps_lease(date(2024, 1, 31), date(2024, 6, 1))
        assert not period.overlaps_lease(date(2024, 2, 1), date(2024, 6, 1))


class TestPriceLineItems:

    def test_amount_is_quantity_times_price(self):
        (line,) = price_line_items([LineItemSpec("Water", Decimal("3"), Decimal("12.35"))])
        assert line.amount == Decimal("37.05")
        assert line.unit_price == Decimal("12.35")
        assert line.position == 0
        assert line.item_type == LineItemType.OTHER

    def test_fractional_quantity_rounds_amount(self):
        (line,) = price_line_items([LineItemSpec("Power", Decimal("2.3333"), Decimal("0.15"))])
        assert line.amount == Decimal("0.35")
        assert line.amount == (line.quantity * line.unit_price).quantize(Decimal("0.01"))

    @pytest.mark.parametrize("unit_price", [Decimal("12.345"), Decimal("10.005"), Decimal("0.001")])
    def test_unit_price_precision_rejected(self, unit_price):
        with pytest.raises(InvalidLineItemError) as exc_info:
            price_line_items([LineItemSpec("Water", Decimal("3"), unit_price)])
        assert exc_info.value.index == 0

    def test_quantity_precision_rejected(self):
        with pytest.raises(InvalidLineItemError):
            price_line_items([LineItemSpec("Water", Decimal("1.00001"), Decimal("10.00"))])

    def test_trailing_zeros_accepted(self):
        (line,) = price_line_items([LineItemSpec("Rent", Decimal("1.0000"), Decimal("1500.000"))])
        assert line.unit_price == Decimal("1500.00")
        assert line.amount == Decimal("1500.00")

    def test_positions_follow_input_order(self):
        lines = price_line_items([
            LineItemSpec("Rent", Decimal("1"), Decimal("1000"), LineItemType.RENT),
            LineItemSpec("Power", Decimal("1"), Decimal("50"), LineItemType.UTILITY),
        ])
        assert [line.position for line in lines] == [0, 1]
        assert [line.item_type for line in lines] == [LineItemType.RENT, LineItemType.UTILITY]

    def test_supplied_amount_must_match(self):
        with pytest.raises(InvalidLineItemError) as exc_info:
            price_line_items([
                LineItemSpec("Rent", Decimal("2"), Decimal("10.00"), amount=Decimal("21.00")),
            ])
        assert exc_info.value.index == 0

    def test_supplied_amount_matching_after_rounding(self):
        (line,) = price_line_items([
            LineItemSpec("Rent", Decimal("2"), Decimal("10.00"), amount=Decimal("20.001")),
        ])
        assert line.amount == Decimal("20.00")

    @pytest.mark.parametrize("quantity,unit_price", [
        (Decimal("0"), Decimal("10")),
        (Decimal("-1"), Decimal("10")),
        (Decimal("1"), Decimal("0")),
        (Decimal("1"), Decimal("-5")),
    ])
    def test_non_positive_rejected(self, quantity, unit_price):
        with pytest.raises(InvalidLineItemError):
            price_line_items([LineItemSpec("Item", quantity, unit_price)])

    def test_amount_rounding_to_zero_rejected(self):
        with pytest.raises(InvalidLineItemError):
            price_line_items([LineItemSpec("Tiny", Decimal("0.001"), Decimal("1"))])

    def test_float_rejected(self):
        with pytest.raises(InvalidLineItemError):
            price_line_items([LineItemSpec("Rent", 1.0, Decimal("10"))])

    def test_empty_rejected(self):
        with pytest.raises(InvalidLineItemError):
            price_line_items([])

    def test_blank_description_rejected(self):
        with pytest.raises(InvalidLineItemError):
            price_line_items([LineItemSpec("  ", Decimal("1"), Decimal("10"))])


class TestComputeTotals:

    def test_subtotal_and_total(self):
        lines = price_line_items([
            LineItemSpec("Rent", Decimal("1"), Decimal("1500.00")),
            LineItemSpec("Water", Decimal("2"), Decimal("12.50")),
        ])
        totals = compute_totals(lines, Decimal("10.00"))
        assert totals.subtotal == Decimal("1525.00")
        assert totals.tax_amount == Decimal("10.00")
        assert totals.total_amount == Decimal("1535.00")

    def test_zero_tax_allowed(self):
        lines = price_line_items([LineItemSpec("Rent", Decimal("1"), Decimal("100"))])
        assert compute_totals(lines).total_amount == Decimal("100.00")

    def test_negative_tax_rejected(self):
        lines = price_line_items([LineItemSpec("Rent", Decimal("1"), Decimal("100"))])
        with pytest.raises(InvalidLineItemError):
            compute_totals(lines, Decimal("-0.01"))

    def test_expected_total_mismatch(self):
        lines = price_line_items([LineItemSpec("Rent", Decimal("1"), Decimal("100"))])
        with pytest.raises(InvalidLineItemError):
            compute_totals(lines, Decimal("5"), expected_total=Decimal("104.99"))

    def test_expected_total_match(self):
        lines = price_line_items([LineItemSpec("Rent", Decimal("1"), Decimal("100"))])
        totals = compute_totals(lines, Decimal("5"), expected_total=Decimal("105.00"))
        assert totals.total_amount == Decimal("105.00")


class TestInvoiceDates:

    def test_due_equal_to_invoice_date_is_valid(self):
        validate_invoice_dates(date(2024, 1, 1), date(2024, 1, 1))

    def test_due_before_invoice_date_rejected(self):
        with pytest.raises(InvalidDateRangeError) as exc_info:
            validate_invoice_dates(date(2024, 1, 2), date(2024, 1, 1))
        assert exc_info.value.field == "due_date"


class TestRentLineItem:

    def test_rent_line(self):
        item = rent_line_item(Decimal("1500.00"), BillingPeriod.parse("2024-01"))
        assert item.description == "Monthly rent - January 2024"
        assert item.quantity == Decimal("1")
        assert item.unit_price == Decimal("1500.00")
        assert item.item_type == LineItemType.RENT

    def test_zero_rent_fails_pricing(self):
        item = rent_line_item(Decimal("0"), BillingPeriod.parse("2024-01"))
        with pytest.raises(InvalidLineItemError):
            price_line_items([item])


class TestStatusAfterPayment:

    DUE = date(2024, 1, 5)

    def test_full_payment_is_paid(self):
        assert status_after_payment("sent", Decimal("100"), Decimal("100.00"), self.DUE, date(2024, 2, 1)) == "paid"

    def test_partial_before_due_stays_sent(self):
        assert status_after_payment("sent", Decimal("50"), Decimal("100"), self.DUE, date(2024, 1, 3)) == "sent"

    def test_partial_after_due_is_overdue(self):
        assert status_after_payment("sent", Decimal("50"), Decimal("100"), self.DUE, date(2024, 1, 6)) == "overdue"

    def test_partial_on_due_date_is_not_overdue(self):
        assert status_after_payment("sent", Decimal("50"), Decimal("100"), self.DUE, self.DUE) == "sent"

    def test_overdue_stays_overdue(self):
        assert status_after_payment("overdue", Decimal("50"), Decimal("100"), self.DUE, date(2024, 1, 1)) == "overdue"

    def test_draft_receiving_money_becomes_sent(self):
        assert status_after_payment("draft", Decimal("50"), Decimal("100"), self.DUE, date(2024, 1, 1)) == "sent"

    def test_is_overdue(self):
        assert is_overdue("sent", Decimal("0"), Decimal("100"), self.DUE, date(2024, 1, 6))
        assert not is_overdue("sent", Decimal("100"), Decimal("100"), self.DUE, date(2024, 1, 6))
        assert not is_overdue("draft", Decimal("0"), Decimal("100"), self.DUE, date(2024, 1, 6))
