"""
Module: lease_kernel.db.types
Responsibility: Fixed-point helpers for monetary values.  Centralizes
    precision and rounding so every model and service uses the same rules.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/ and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    - All amounts are Decimal with two decimal places (the Numeric(15, 2)
      column type in db/base.py).  round2() is the only sanctioned rounding
      function for stored amounts.
    - No floats.  to_money() refuses float input.

Failure modes:
    - InvalidAmountError on non-numeric, non-finite or float input.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from lease_kernel.exceptions import InvalidAmountError

MONEY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP
ZERO = Decimal("0.00")


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """Round a monetary value to the given number of decimal places."""
    return value.quantize(Decimal(1).scaleb(-decimal_places), rounding=rounding)


def round2(value: Decimal) -> Decimal:
    """Round to the two-decimal minor unit used for every stored amount."""
    return round_money(value, MONEY_DECIMAL_PLACES)


def money_from_str(value: str, field: str = "amount") -> Decimal:
    """
    Parse a string into a Decimal amount (not rounded).

    Raises:
        InvalidAmountError: If value is not a finite number.
    """
    try:
        parsed = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidAmountError(field, value) from None
    if not parsed.is_finite():
        raise InvalidAmountError(field, value)
    return parsed


def to_money(value: Decimal | int | str, field: str = "amount") -> Decimal:
    """
    Coerce an int, str or Decimal into a two-decimal amount.

    Floats are rejected; binary floating point never enters billing
    arithmetic.
    """
    if isinstance(value, (bool, float)):
        raise InvalidAmountError(field, value)
    if isinstance(value, Decimal):
        if not value.is_finite():
            raise InvalidAmountError(field, value)
        return round2(value)
    if isinstance(value, int):
        return round2(Decimal(value))
    return round2(money_from_str(value, field))
