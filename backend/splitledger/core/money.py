"""
Fixed-point money helpers.

The ledger stores and computes every amount as integer minor units (cents).
Decimal values only appear at the API boundary.
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union

from splitledger.core.config import settings
from splitledger.core.exceptions import LedgerValidationError

CENTS = Decimal("0.01")
HUNDRED = Decimal(100)


def to_cents(amount: Union[Decimal, str, int]) -> int:
    """Convert a decimal amount (e.g. "12.34") to integer cents.

    Floats are refused: they cannot carry an exact decimal amount.
    """
    if isinstance(amount, float):
        raise LedgerValidationError("Amounts must be given as decimal strings, not floats")
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        raise LedgerValidationError(f"Invalid amount format: {amount!r}")
    if not value.is_finite():
        raise LedgerValidationError(f"Invalid amount format: {amount!r}")
    if value != value.quantize(CENTS):
        raise LedgerValidationError(f"Amount {amount} has more than two decimal places")
    return int(value * 100)


def from_cents(cents: int) -> Decimal:
    """Convert integer cents back to a two-place Decimal."""
    return (Decimal(cents) / 100).quantize(CENTS)


def format_cents(cents: int) -> str:
    """Human readable amount, e.g. 3334 -> "$33.34"."""
    return f"{settings.CURRENCY_SYMBOL}{from_cents(cents)}"


def percent_of(part_cents: int, total_cents: int) -> Decimal:
    """Share of total as a display percentage rounded to 2 decimals."""
    if total_cents == 0:
        return Decimal("0.00")
    return (Decimal(part_cents) * HUNDRED / Decimal(total_cents)).quantize(CENTS, rounding=ROUND_HALF_UP)


def apply_percentage(total_cents: int, percentage: Decimal) -> int:
    """round(total * percentage / 100) to the nearest cent, halves away from zero."""
    exact = Decimal(total_cents) * Decimal(percentage) / HUNDRED
    return int(exact.quantize(Decimal(1), rounding=ROUND_HALF_UP))
