"""
stock_engines.classifier -- Movement Classifier.

Responsibility:
    Map a raw movement (kind + legacy type + signed quantity) to exactly one
    of five semantic categories: OPENING, IN, OUT, WASTAGE, ADJUST.

Architecture position:
    Engines -- pure function, zero I/O.

Invariants enforced:
    - Total: every (kind, type, quantity) combination maps to a category,
      including unknown strings and None.  classify() never raises.
    - First match wins, evaluated kind first, then legacy type.
    - A legacy ADJUST without a kind is split by the sign of its quantity
      (> 0 is IN, otherwise OUT).  Replay therefore never routes a kindless
      ADJUST into the ADJUST branch.

Usage:
    category = classify_movement(record)
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Protocol

from stock_kernel.domain.movements import (
    INBOUND_KINDS,
    OUTBOUND_KINDS,
    MovementCategory,
    MovementKind,
    MovementType,
)


class ClassifiableMovement(Protocol):
    kind: Any
    type: Any
    quantity: Any


def _is_positive(quantity: Any) -> bool:
    if quantity is None or isinstance(quantity, bool):
        return False
    try:
        value = quantity if isinstance(quantity, Decimal) else Decimal(str(quantity))
    except (InvalidOperation, ValueError):
        return False
    return value.is_finite() and value > 0


def classify(kind: Any, movement_type: Any, quantity: Any) -> MovementCategory:
    """
    Classify a movement from its raw fields.

    Args:
        kind: MovementKind, its string value, None, or anything else.
        movement_type: MovementType, its string value, None, or anything else.
        quantity: Signed quantity as recorded.

    Returns:
        The movement's MovementCategory.
    """
    parsed_kind = MovementKind.parse(kind)

    if parsed_kind is MovementKind.OPENING:
        return MovementCategory.OPENING
    if parsed_kind in INBOUND_KINDS:
        return MovementCategory.IN
    if parsed_kind in OUTBOUND_KINDS:
        return MovementCategory.OUT
    if parsed_kind is MovementKind.WASTAGE:
        return MovementCategory.WASTAGE
    if parsed_kind is MovementKind.ADJUSTMENT:
        return MovementCategory.ADJUST

    # No recognized kind: legacy type fallback
    parsed_type = MovementType.parse(movement_type)
    if parsed_type is MovementType.IN:
        return MovementCategory.IN
    if parsed_type is MovementType.OUT:
        return MovementCategory.OUT
    if parsed_type is MovementType.ADJUST:
        return MovementCategory.IN if _is_positive(quantity) else MovementCategory.OUT

    return MovementCategory.IN


def classify_movement(movement: ClassifiableMovement) -> MovementCategory:
    """Classify any object exposing ``kind``, ``type`` and ``quantity``."""
    return classify(
        getattr(movement, "kind", None),
        getattr(movement, "type", None),
        getattr(movement, "quantity", None),
    )
