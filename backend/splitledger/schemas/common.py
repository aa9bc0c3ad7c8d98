"""
Shared schema types.
"""
from decimal import Decimal
from typing import Annotated

from pydantic import BaseModel, BeforeValidator, Field, PlainSerializer

from splitledger.core.exceptions import LedgerValidationError
from splitledger.core.money import from_cents, to_cents


def _cents_to_str(cents: int) -> str:
    return str(from_cents(cents))


def _parse_money(value):
    """Integer cents pass through; a decimal string (the serialized form) is read back as cents."""
    if isinstance(value, (str, Decimal)):
        try:
            return to_cents(value)
        except LedgerValidationError as e:
            raise ValueError(e.message)
    return value


# Integer cents inside the application, decimal string on the wire.
Money = Annotated[int, BeforeValidator(_parse_money), PlainSerializer(_cents_to_str, return_type=str)]

# Incoming amounts: decimal with at most two places.
AmountIn = Annotated[Decimal, Field(gt=0, max_digits=15, decimal_places=2)]


class Pagination(BaseModel):
    """Pagination block for list responses."""
    current_page: int
    total_pages: int
    total_items: int
    limit: int
    has_next_page: bool
    has_prev_page: bool

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "Pagination":
        total_pages = (total + limit - 1) // limit if limit else 0
        return cls(
            current_page=page,
            total_pages=total_pages,
            total_items=total,
            limit=limit,
            has_next_page=page < total_pages,
            has_prev_page=page > 1,
        )
