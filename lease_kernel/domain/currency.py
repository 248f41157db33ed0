"""
CurrencyPolicy -- the closed set of company currencies.

Responsibility:
    Validates that a company's currency belongs to the supported set and
    carries display metadata (name, symbol, decimal places) for each code.

Architecture position:
    Kernel > Domain -- pure, zero I/O.

Invariants enforced:
    - Only members of SupportedCurrency are ever written to a company row.
    - validate_currency() NEVER substitutes a default.  The only path that
      maps an unknown value to a fallback is migrate_legacy_currency(),
      reserved for one-time data correction, and it logs each substitution.

Note:
    Stored amounts are always two-decimal fixed point.  decimal_places here
    affects display formatting only.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from types import MappingProxyType

from lease_kernel.db.types import round_money
from lease_kernel.exceptions import UnsupportedCurrencyError
from lease_kernel.logging_config import get_logger

logger = get_logger("domain.currency")


class SupportedCurrency(str, Enum):
    # Major world currencies
    USD = "USD"
    EUR = "EUR"
    GBP = "GBP"
    JPY = "JPY"
    CNY = "CNY"
    CHF = "CHF"
    CAD = "CAD"
    AUD = "AUD"
    NZD = "NZD"
    SGD = "SGD"
    HKD = "HKD"
    # African currencies
    KES = "KES"
    TZS = "TZS"
    UGX = "UGX"
    ZAR = "ZAR"
    NGN = "NGN"
    EGP = "EGP"
    GHS = "GHS"
    RWF = "RWF"
    ETB = "ETB"
    # Middle East and Asia
    AED = "AED"
    SAR = "SAR"
    INR = "INR"
    PKR = "PKR"
    # Latin America
    BRL = "BRL"
    MXN = "MXN"


@dataclass(frozen=True)
class CurrencyInfo:
    """Display metadata for a supported currency."""

    code: SupportedCurrency
    name: str
    symbol: str
    decimal_places: int


def _info(code: str, name: str, symbol: str, decimal_places: int = 2) -> CurrencyInfo:
    return CurrencyInfo(SupportedCurrency(code), name, symbol, decimal_places)


CURRENCY_METADATA: MappingProxyType = MappingProxyType({
    info.code: info
    for info in (
        _info("USD", "US Dollar", "$"),
        _info("EUR", "Euro", "€"),
        _info("GBP", "British Pound", "£"),
        _info("JPY", "Japanese Yen", "¥", 0),
        _info("CNY", "Chinese Yuan", "¥"),
        _info("CHF", "Swiss Franc", "CHF"),
        _info("CAD", "Canadian Dollar", "C$"),
        _info("AUD", "Australian Dollar", "A$"),
        _info("NZD", "New Zealand Dollar", "NZ$"),
        _info("SGD", "Singapore Dollar", "S$"),
        _info("HKD", "Hong Kong Dollar", "HK$"),
        _info("KES", "Kenyan Shilling", "KSh"),
        _info("TZS", "Tanzanian Shilling", "TSh"),
        _info("UGX", "Ugandan Shilling", "USh", 0),
        _info("ZAR", "South African Rand", "R"),
        _info("NGN", "Nigerian Naira", "₦"),
        _info("EGP", "Egyptian Pound", "E£"),
        _info("GHS", "Ghanaian Cedi", "GH₵"),
        _info("RWF", "Rwandan Franc", "FRw", 0),
        _info("ETB", "Ethiopian Birr", "Br"),
        _info("AED", "UAE Dirham", "AED"),
        _info("SAR", "Saudi Riyal", "SAR"),
        _info("INR", "Indian Rupee", "₹"),
        _info("PKR", "Pakistani Rupee", "Rs"),
        _info("BRL", "Brazilian Real", "R$"),
        _info("MXN", "Mexican Peso", "$"),
    )
})


def validate_currency(value) -> SupportedCurrency:
    """
    Validate a currency code against the supported set.

    Accepts a SupportedCurrency member or its exact uppercase code.  Any
    other value, including lowercase or padded strings, is rejected.

    Raises:
        UnsupportedCurrencyError: If value is not a supported code.
    """
    if isinstance(value, SupportedCurrency):
        return value
    if not isinstance(value, str):
        raise UnsupportedCurrencyError(value)
    try:
        return SupportedCurrency(value)
    except ValueError:
        raise UnsupportedCurrencyError(value) from None


def is_supported(value) -> bool:
    try:
        validate_currency(value)
        return True
    except UnsupportedCurrencyError:
        return False


def currency_info(value) -> CurrencyInfo:
    return CURRENCY_METADATA[validate_currency(value)]


def format_amount(amount: Decimal, currency) -> str:
    """Render an amount with the currency's symbol and display precision."""
    info = currency_info(currency)
    rounded = round_money(amount, info.decimal_places)
    return f"{info.symbol}{rounded:,}"


def migrate_legacy_currency(
    value,
    fallback: SupportedCurrency,
    *,
    company_id=None,
) -> SupportedCurrency:
    """
    Map a legacy stored value onto the supported set for data correction.

    Normalizes case and whitespace first; if the value is still unknown the
    explicit fallback is used and the substitution is logged.  Not for use
    on any request path.
    """
    fallback = validate_currency(fallback)
    if isinstance(value, str) and is_supported(value.strip().upper()):
        return SupportedCurrency(value.strip().upper())
    logger.warning(
        "currency_fallback_applied",
        extra={
            "company_id": company_id,
            "legacy_value": value,
            "fallback": fallback.value,
        },
    )
    return fallback
