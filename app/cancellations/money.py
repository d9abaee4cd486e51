"""
Money helpers for refund amounts.

Amounts are stored as Decimal in major units (e.g. 475.00) and sent to
the gateway as integers in the currency's smallest unit (e.g. 47500).
Conversion is exact: an amount with more precision than the currency
allows is rejected rather than silently rounded.

Usage:
    from cancellations.money import quantize, to_minor_units

    quantize(Decimal("12.345"))              # Decimal("12.35")
    to_minor_units(Decimal("475.00"), "usd") # 47500
    to_minor_units(Decimal("5000"), "jpy")   # 5000
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from core.exceptions import ValidationError

CENT = Decimal("0.01")

# Currencies without a minor unit (Stripe's list).
ZERO_DECIMAL_CURRENCIES = frozenset(
    {
        "bif", "clp", "djf", "gnf", "jpy", "kmf", "krw", "mga",
        "pyg", "rwf", "ugx", "vnd", "vuv", "xaf", "xof", "xpf",
    }
)

# Currencies with three decimal places.
THREE_DECIMAL_CURRENCIES = frozenset({"bhd", "jod", "kwd", "omr", "tnd"})


def to_decimal(value: Any) -> Decimal:
    """Coerce a number or numeric string to Decimal without float drift."""
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError) as exc:
        raise ValidationError(
            f"Invalid monetary amount: {value!r}",
            error_code="INVALID_AMOUNT",
        ) from exc


def quantize(value: Any) -> Decimal:
    """Round to cents, half up."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def minor_unit_exponent(currency: str) -> int:
    code = (currency or "").lower()
    if code in ZERO_DECIMAL_CURRENCIES:
        return 0
    if code in THREE_DECIMAL_CURRENCIES:
        return 3
    return 2


def to_minor_units(amount: Any, currency: str) -> int:
    """
    Convert a major-unit amount to an integer of minor units.

    Raises:
        ValidationError: If the amount has a fractional minor unit
    """
    value = to_decimal(amount)
    scaled = value.scaleb(minor_unit_exponent(currency))
    if scaled != scaled.to_integral_value():
        raise ValidationError(
            f"Amount {value} has more precision than {currency.upper()} allows",
            error_code="INVALID_AMOUNT_PRECISION",
            details={"amount": str(value), "currency": currency},
        )
    return int(scaled)


def from_minor_units(amount: int, currency: str) -> Decimal:
    return Decimal(int(amount)).scaleb(-minor_unit_exponent(currency))


__all__ = [
    "CENT",
    "ZERO_DECIMAL_CURRENCIES",
    "from_minor_units",
    "minor_unit_exponent",
    "quantize",
    "to_decimal",
    "to_minor_units",
]
