"""
Billing -- pure invoice arithmetic and period handling.

Responsibility:
    Parses billing months, derives invoice and due dates, validates line
    items and computes invoice totals.  Also derives the date-based invoice
    status used after payments and by the overdue sweep.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Used by
    services/invoice_engine.py and services/payment_ledger.py.

Invariants enforced:
    - amount == round2(quantity * unit_price) for every line, computed from
      the stored values: unit_price has at most 2 decimal places and
      quantity at most 4.
    - quantity, unit_price and amount are strictly positive.
    - subtotal == sum(amounts); total == round2(subtotal + tax) > 0; tax >= 0.
    - due_date >= invoice_date.
    - Every comparison happens on values already rounded to two places.

Failure modes:
    - InvalidLineItemError for any arithmetic or sign violation.
    - InvalidDateRangeError when due_date < invoice_date.
    - InvalidBillingMonthError for malformed months or due days.
"""

import calendar
import re
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from enum import Enum

from lease_kernel.db.types import MONEY_DECIMAL_PLACES, ZERO, round2, round_money
from lease_kernel.exceptions import (
    InvalidBillingMonthError,
    InvalidDateRangeError,
    InvalidLineItemError,
)

# Scale of invoice_line_items.quantity.
QUANTITY_DECIMAL_PLACES = 4

_MONTH_RE = re.compile(r"^(\d{4})-(\d{2})$")


class LineItemType(str, Enum):
    RENT = "rent"
    UTILITY = "utility"
    MAINTENANCE = "maintenance"
    OTHER = "other"


@dataclass(frozen=True, order=True)
class BillingPeriod:
    """A calendar month invoices are generated for."""

    year: int
    month: int

    @classmethod
    def parse(cls, value: "str | BillingPeriod") -> "BillingPeriod":
        if isinstance(value, BillingPeriod):
            return value
        if not isinstance(value, str):
            raise InvalidBillingMonthError(value)
        match = _MONTH_RE.match(value)
        if match is None:
            raise InvalidBillingMonthError(value)
        year, month = int(match.group(1)), int(match.group(2))
        if not 1 <= month <= 12 or year < 1:
            raise InvalidBillingMonthError(value, "month out of range")
        return cls(year, month)

    @classmethod
    def of(cls, day: date) -> "BillingPeriod":
        return cls(day.year, day.month)

    @property
    def key(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"

    @property
    def days_in_month(self) -> int:
        return calendar.monthrange(self.year, self.month)[1]

    @property
    def first_day(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def last_day(self) -> date:
        return date(self.year, self.month, self.days_in_month)

    def due_date(self, due_day: int) -> date:
        """Due date on due_day of this month, clamped to the month's last day."""
        if isinstance(due_day, bool) or not isinstance(due_day, int) or not 1 <= due_day <= 31:
            raise InvalidBillingMonthError(self.key, f"invalid due day {due_day!r}")
        return date(self.year, self.month, min(due_day, self.days_in_month))

    def overlaps_lease(self, lease_start: date, lease_end: date) -> bool:
        """True when [lease_start, lease_end] intersects this month."""
        return lease_start <= self.last_day and lease_end >= self.first_day

    def __str__(self) -> str:
        return self.key


@dataclass(frozen=True)
class LineItemSpec:
    """
    Caller-supplied line item.

    amount is optional; when given it must equal round2(quantity * unit_price).
    """

    description: str
    quantity: Decimal
    unit_price: Decimal
    item_type: LineItemType = LineItemType.OTHER
    amount: Decimal | None = None


@dataclass(frozen=True)
class PricedLineItem:
    """A validated line item with its computed amount."""

    description: str
    quantity: Decimal
    unit_price: Decimal
    amount: Decimal
    item_type: LineItemType
    position: int


@dataclass(frozen=True)
class InvoiceTotals:
    subtotal: Decimal
    tax_amount: Decimal
    total_amount: Decimal


def _as_decimal(value, field: str, index: int | None) -> Decimal:
    if isinstance(value, (bool, float)):
        raise InvalidLineItemError(f"{field} must be a Decimal, not {type(value).__name__}", index)
    try:
        parsed = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidLineItemError(f"{field} is not a number: {value!r}", index) from None
    if not parsed.is_finite():
        raise InvalidLineItemError(f"{field} is not finite", index)
    return parsed


def price_line_items(items) -> tuple[PricedLineItem, ...]:
    """Validate line items and compute their amounts."""
    items = tuple(items)
    if not items:
        raise InvalidLineItemError("invoice must have at least one line item")

    priced: list[PricedLineItem] = []
    for index, item in enumerate(items):
        if not item.description or not item.description.strip():
            raise InvalidLineItemError("description is required", index)
        quantity = _as_decimal(item.quantity, "quantity", index)
        unit_price = _as_decimal(item.unit_price, "unit_price", index)
        if quantity <= 0:
            raise InvalidLineItemError(f"quantity must be > 0, got {quantity}", index)
        if unit_price <= 0:
            raise InvalidLineItemError(f"unit_price must be > 0, got {unit_price}", index)
        if unit_price != round2(unit_price):
            raise InvalidLineItemError(
                f"unit_price has more than {MONEY_DECIMAL_PLACES} decimal places: {unit_price}", index
            )
        if quantity != round_money(quantity, QUANTITY_DECIMAL_PLACES):
            raise InvalidLineItemError(
                f"quantity has more than {QUANTITY_DECIMAL_PLACES} decimal places: {quantity}", index
            )
        quantity = round_money(quantity, QUANTITY_DECIMAL_PLACES)
        unit_price = round2(unit_price)

        amount = round2(quantity * unit_price)
        if amount <= 0:
            raise InvalidLineItemError(f"amount rounds to {amount}", index)
        if item.amount is not None:
            supplied = round2(_as_decimal(item.amount, "amount", index))
            if supplied != amount:
                raise InvalidLineItemError(
                    f"amount {supplied} != quantity * unit_price ({amount})", index
                )

        priced.append(PricedLineItem(
            description=item.description.strip(),
            quantity=quantity,
            unit_price=unit_price,
            amount=amount,
            item_type=LineItemType(item.item_type),
            position=index,
        ))
    return tuple(priced)


def compute_totals(
    lines: tuple[PricedLineItem, ...],
    tax_amount: Decimal = ZERO,
    expected_total: Decimal | None = None,
) -> InvoiceTotals:
    """
    Compute subtotal and total for priced lines.

    If expected_total is supplied it must match the computed total to the cent.
    """
    tax = round2(_as_decimal(tax_amount, "tax_amount", None))
    if tax < 0:
        raise InvalidLineItemError(f"tax_amount must be >= 0, got {tax}")
    subtotal = round2(sum((line.amount for line in lines), ZERO))
    total = round2(subtotal + tax)
    if total <= 0:
        raise InvalidLineItemError(f"total_amount must be > 0, got {total}")
    if expected_total is not None and round2(expected_total) != total:
        raise InvalidLineItemError(
            f"total_amount {round2(expected_total)} != subtotal + tax ({total})"
        )
    return InvoiceTotals(subtotal=subtotal, tax_amount=tax, total_amount=total)


def validate_invoice_dates(invoice_date: date, due_date: date) -> None:
    if due_date < invoice_date:
        raise InvalidDateRangeError("due_date", invoice_date, due_date)


def rent_line_item(monthly_rent, period: BillingPeriod) -> LineItemSpec:
    """Synthesize the single rent line used by bulk generation."""
    return LineItemSpec(
        description=f"Monthly rent - {period.first_day:%B %Y}",
        quantity=Decimal("1"),
        unit_price=monthly_rent,
        item_type=LineItemType.RENT,
    )


def status_after_payment(
    current_status: str,
    amount_paid: Decimal,
    total_amount: Decimal,
    due_date: date,
    as_of: date,
) -> str:
    """
    Derive invoice status once a payment has been applied.

    paid when fully settled; otherwise overdue once due_date has passed,
    else sent.  A draft that receives money becomes sent.
    """
    if round2(amount_paid) == round2(total_amount):
        return "paid"
    if due_date < as_of:
        return "overdue"
    if current_status == "overdue":
        return "overdue"
    return "sent"


def is_overdue(status: str, amount_paid: Decimal, total_amount: Decimal, due_date: date, as_of: date) -> bool:
    return status == "sent" and due_date < as_of and round2(amount_paid) < round2(total_amount)
