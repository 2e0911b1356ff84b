"""
Module: stock_engines
Responsibility:
    Pure valuation engines: the Movement Classifier and the Weighted-Average
    Ledger Replayer.  Canonical import surface for stock_services.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import stock_kernel.domain, stock_kernel.db.types and
    stock_kernel.logging_config.  MUST NOT import stock_services.

Invariants enforced:
    - Purity: engines never read the clock or the database.
    - Decimal-only arithmetic.
    - Determinism: identical inputs always produce identical outputs.
"""

from stock_engines.classifier import classify, classify_movement
from stock_engines.weighted_average import (
    ItemState,
    apply_movement,
    blend_average_cost,
    movement_order_key,
    replay_movements,
    signed_quantity,
    sort_movements,
)

__all__ = [
    "classify",
    "classify_movement",
    "ItemState",
    "apply_movement",
    "blend_average_cost",
    "movement_order_key",
    "replay_movements",
    "signed_quantity",
    "sort_movements",
]
