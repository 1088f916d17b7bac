"""
Module: inventory_kernel.db.types
Responsibility: Annotated column aliases and the one sanctioned rounding
    helper for unit and total costs.
Architecture position: Kernel > DB.  Importable from models/, domain/,
    services/ and selectors/.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Annotated

from sqlalchemy import Integer, Numeric, String

from inventory_kernel.exceptions import ValidationError

# Unit and extended costs
Money = Annotated[Decimal, Numeric(38, 9)]

# Unit quantities are whole numbers
Quantity = Annotated[int, Integer]

ShortCode = Annotated[str, String(50)]

LongText = Annotated[str, String(4000)]

MONEY_DECIMAL_PLACES = 9
DEFAULT_ROUNDING = ROUND_HALF_UP

_QUANTUM = Decimal(1).scaleb(-MONEY_DECIMAL_PLACES)


def round_money(amount: Decimal) -> Decimal:
    """Round a cost to the stored precision."""
    return amount.quantize(_QUANTUM, rounding=DEFAULT_ROUNDING)


def to_decimal(value: Decimal | int | float | str, field: str = "amount") -> Decimal:
    """
    Coerce user input to Decimal without passing through float.

    Raises ValidationError naming ``field`` when the value is not a finite
    number.
    """
    if isinstance(value, bool):
        raise ValidationError(field, f"must be a number, got {value!r}")
    try:
        if isinstance(value, float):
            amount = Decimal(str(value))
        elif isinstance(value, Decimal):
            amount = value
        else:
            amount = Decimal(value)
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise ValidationError(field, f"must be a number, got {value!r}") from exc
    if not amount.is_finite():
        raise ValidationError(field, f"must be finite, got {value!r}")
    return amount
