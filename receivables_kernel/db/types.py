"""
Money conversion and enum column helpers.

Amounts cross the service boundary as ``Decimal`` only.  ``to_money`` is the
single conversion point for caller input and refuses floats outright;
``round_money`` defines the two-place scale the ``Numeric(18, 2)`` columns
store.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum

from sqlalchemy import Enum as SAEnum

MONEY_QUANTUM = Decimal("0.01")


def to_money(value: Decimal | int | str) -> Decimal:
    """
    Raises:
        ValueError: float input, or a string that is not a number.
    """
    if isinstance(value, float):
        raise ValueError("Monetary amounts must not be floats")
    try:
        return Decimal(value)
    except (InvalidOperation, TypeError) as exc:
        raise ValueError(f"Not a monetary amount: {value!r}") from exc


def round_money(value: Decimal) -> Decimal:
    return value.quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


def enum_column(enum_cls: type[Enum], length: int = 16) -> SAEnum:
    """Enum stored as a VARCHAR of the member name, not a native DB enum."""
    return SAEnum(enum_cls, native_enum=False, length=length, validate_strings=True)
