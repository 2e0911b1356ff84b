"""
Module: stock_kernel.db.types
Responsibility: Annotated type aliases and rounding helpers for stock
    quantities and costs.  Centralizes precision so that every model, engine
    and service uses identical definitions.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    engines and services.  MUST NOT import from any of those layers.

Invariants enforced:
    - No floats anywhere.  Quantities and costs use Decimal with explicit
      precision.
    - round_avg_cost() is the ONLY sanctioned rounding function for the
      weighted-average unit cost (4 places, half away from zero).

Failure modes:
    - ValueError from to_decimal() on values that are not numeric.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Annotated

from sqlalchemy import Numeric, String


# Monetary amount: 38 digits total, 9 decimal places
Money = Annotated[Decimal, Numeric(38, 9)]

# Stock quantity: same storage precision as money
Quantity = Annotated[Decimal, Numeric(38, 9)]

# Short identifier strings (movement type, kind, reference type)
ShortCode = Annotated[str, String(50)]

# Long text for notes and reasons
LongText = Annotated[str, String(4000)]


AVG_COST_DECIMAL_PLACES = 4
# Decimal's ROUND_HALF_UP rounds ties away from zero.
AVG_COST_ROUNDING = ROUND_HALF_UP

ZERO = Decimal("0")

# Scale of every Numeric(38, 9) column
STORAGE_DECIMAL_PLACES = 9

_AVG_COST_QUANTUM = Decimal(1).scaleb(-AVG_COST_DECIMAL_PLACES)
_STORAGE_QUANTUM = Decimal(1).scaleb(-STORAGE_DECIMAL_PLACES)


def round_avg_cost(value: Decimal) -> Decimal:
    """
    Round a weighted-average unit cost to 4 decimal places.

    INVARIANT: applied after every weighted-average recomputation, and the
    rounded value is what the next recomputation starts from.

    Args:
        value: Unrounded average cost.

    Returns:
        value quantized to 0.0001, ties rounded away from zero.
    """
    return value.quantize(_AVG_COST_QUANTUM, rounding=AVG_COST_ROUNDING)


def to_storage_scale(value: Decimal) -> Decimal:
    """
    Quantize to the column scale, so a computed value equals what is read back.

    Raises:
        ValueError: the value has too many integer digits for the scale.
    """
    try:
        return value.quantize(_STORAGE_QUANTUM, rounding=ROUND_HALF_UP)
    except InvalidOperation as exc:
        raise ValueError(f"{value} exceeds storage precision") from exc


def to_decimal(value: Decimal | int | str | float, field: str = "value") -> Decimal:
    """
    Coerce an inbound numeric value to Decimal.

    Floats are converted through ``str`` so that 0.1 becomes Decimal("0.1")
    rather than its binary expansion.

    Raises:
        ValueError: If the value is not numeric or not finite.
    """
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool):
        raise ValueError(f"Invalid {field}: {value!r}")
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError) as exc:
            raise ValueError(f"Invalid {field}: {value!r}") from exc
    if not result.is_finite():
        raise ValueError(f"Invalid {field}: {value!r}")
    return result
