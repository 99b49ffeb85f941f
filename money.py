"""Conversions between display amounts and integer minor units.

Every amount inside the ledger is an int count of minor units (paise, cents).
Decimal is only used here, at the edge, to parse input and format output.
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from config import get_settings
from errors import ValidationError

CENTS = Decimal("0.01")


def _as_decimal(value) -> Decimal:
    if isinstance(value, bool):
        raise ValidationError(f"Not an amount: {value!r}")
    try:
        # floats come from UI widgets; str() keeps their shortest repr
        return Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Not an amount: {value!r}") from None


def to_minor(value) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value * 100
    amount = _as_decimal(value)
    if not amount.is_finite():
        raise ValidationError(f"Not an amount: {value!r}")
    if amount != amount.quantize(CENTS):
        raise ValidationError(f"Amount {value} has more than two decimal places")
    return int(amount * 100)


def to_display(minor: int) -> Decimal:
    return (Decimal(minor) / 100).quantize(CENTS)


def format_money(minor: int, symbol=None) -> str:
    symbol = get_settings().currency_symbol if symbol is None else symbol
    sign = "-" if minor < 0 else ""
    return f"{sign}{symbol}{to_display(abs(minor)):,.2f}"


def to_percentage(value) -> Decimal:
    """Parse a declared percentage as given; rounding happens only on the sum."""
    pct = _as_decimal(value)
    if not pct.is_finite():
        raise ValidationError(f"Not a percentage: {value!r}")
    return pct


def round_cents(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def balance_message(net: int, counterpart: str = "Friend", symbol=None) -> str:
    """Human-readable line for a signed balance seen from the current user."""
    if net > 0:
        return f"{counterpart} owes you {format_money(net, symbol)}"
    if net < 0:
        return f"You owe {counterpart} {format_money(-net, symbol)}"
    return "All settled"
