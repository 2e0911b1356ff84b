"""
stock_engines.weighted_average -- Weighted-Average Ledger Replayer.

Responsibility:
    Replay an append-only movement history into per-item running state:
    on-hand quantity, moving weighted-average unit cost, and opening /
    received / issued / wastage quantity and value accumulators.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Consumed by the Stock
    Overview Aggregator and by balance reconciliation.  The Atomic Stock
    Adjuster reuses blend_average_cost() so the online path and replay
    share one weighted-average formula.

Invariants enforced:
    - Determinism: movements are sorted by movement_order_key() before
      processing, so any permutation of the same set gives the same result.
    - Non-negativity: outflows clamp on-hand quantity at zero.
    - Zero reset: avg cost becomes exactly 0 the moment an outflow brings
      on-hand quantity to 0.
    - Rounding: avg cost is rounded to 4 places (half away from zero) after
      every recomputation, and the rounded value is carried forward.
    - Decimal only.  No float arithmetic anywhere.

Failure modes:
    - None on well-typed input.  A movement whose quantity is not a Decimal
      raises TypeError from Decimal arithmetic; selectors always supply
      Decimals.

Per-category recipe:

    OPENING / IN      in_qty = |qty|; in_cost = unit_cost, else current avg
                      accumulate (in_qty, in_qty * in_cost) into opening or
                      received; avg = blend(...); on_hand += in_qty
    OUT / WASTAGE     out_qty = |qty|; valued at current avg; accumulate into
                      issued or wastage; on_hand = max(0, on_hand - out_qty)
    ADJUST            signed qty > 0 follows IN into received; otherwise OUT
                      into issued.  An ADJUSTMENT row of type OUT counts as
                      negative (see signed_quantity)
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from stock_engines.classifier import classify_movement
from stock_engines.tracer import traced_engine
from stock_kernel.db.types import ZERO, round_avg_cost
from stock_kernel.domain.clock import as_utc
from stock_kernel.domain.movements import (
    MovementCategory,
    MovementType,
    StockMovementRecord,
)

ENGINE_NAME = "weighted_average_replay"
ENGINE_VERSION = "1.0"


@dataclass
class ItemState:
    """
    Running replay state for one stock item.

    Ephemeral: created lazily at zero on the first movement for the item
    and discarded after the replay run.
    """

    stock_item_id: UUID
    on_hand_qty: Decimal = ZERO
    avg_cost: Decimal = ZERO
    opening_qty: Decimal = ZERO
    opening_value: Decimal = ZERO
    received_qty: Decimal = ZERO
    received_value: Decimal = ZERO
    issued_qty: Decimal = ZERO
    issued_value: Decimal = ZERO
    wastage_qty: Decimal = ZERO
    wastage_value: Decimal = ZERO
    movement_count: int = 0
    last_movement_id: UUID | None = field(default=None, compare=False)

    @property
    def total_value(self) -> Decimal:
        return self.on_hand_qty * self.avg_cost


def movement_order_key(movement: StockMovementRecord) -> tuple[datetime, datetime, str]:
    """
    Canonical total order for replay.

    Business date first, system insert time second, and the identifier
    compared as a string for same-instant inserts.
    """
    return (
        as_utc(movement.movement_date),
        as_utc(movement.created_at),
        str(movement.id),
    )


def sort_movements(movements: Iterable[StockMovementRecord]) -> list[StockMovementRecord]:
    return sorted(movements, key=movement_order_key)


def blend_average_cost(
    on_hand_qty: Decimal,
    avg_cost: Decimal,
    in_qty: Decimal,
    in_cost: Decimal,
) -> Decimal:
    """
    Moving weighted average after receiving ``in_qty`` at ``in_cost``.

    Returns the blended cost rounded to 4 places.  When the resulting
    quantity is not positive the inbound cost itself (rounded) is used, or
    0 when that cost is not positive.
    """
    new_qty = on_hand_qty + in_qty
    if new_qty > 0:
        return round_avg_cost((on_hand_qty * avg_cost + in_qty * in_cost) / new_qty)
    return round_avg_cost(in_cost) if in_cost > 0 else ZERO


def _apply_inbound(state: ItemState, movement: StockMovementRecord, *, opening: bool) -> None:
    in_qty = abs(movement.quantity)
    in_cost = movement.unit_cost if movement.unit_cost is not None else state.avg_cost
    value = in_qty * in_cost

    if opening:
        state.opening_qty += in_qty
        state.opening_value += value
    else:
        state.received_qty += in_qty
        state.received_value += value

    state.avg_cost = blend_average_cost(state.on_hand_qty, state.avg_cost, in_qty, in_cost)
    state.on_hand_qty += in_qty


def _apply_outbound(state: ItemState, movement: StockMovementRecord, *, wastage: bool) -> None:
    out_qty = abs(movement.quantity)
    value = out_qty * state.avg_cost

    if wastage:
        state.wastage_qty += out_qty
        state.wastage_value += value
    else:
        state.issued_qty += out_qty
        state.issued_value += value

    state.on_hand_qty = max(ZERO, state.on_hand_qty - out_qty)
    if state.on_hand_qty == 0:
        state.avg_cost = ZERO


def signed_quantity(movement: StockMovementRecord) -> Decimal:
    """
    Quantity with its direction applied.

    Stored quantities are positive for adjuster-written rows, with the
    direction carried by ``type``.  An OUT row therefore counts as negative.
    Other rows keep the sign they were stored with.
    """
    if MovementType.parse(movement.type) is MovementType.OUT and movement.quantity > 0:
        return -movement.quantity
    return movement.quantity


def apply_movement(state: ItemState, movement: StockMovementRecord) -> MovementCategory:
    """Fold one movement into ``state`` and return its category."""
    category = classify_movement(movement)

    if category is MovementCategory.OPENING:
        _apply_inbound(state, movement, opening=True)
    elif category is MovementCategory.IN:
        _apply_inbound(state, movement, opening=False)
    elif category is MovementCategory.OUT:
        _apply_outbound(state, movement, wastage=False)
    elif category is MovementCategory.WASTAGE:
        _apply_outbound(state, movement, wastage=True)
    elif signed_quantity(movement) > 0:
        _apply_inbound(state, movement, opening=False)
    else:
        _apply_outbound(state, movement, wastage=False)

    state.movement_count += 1
    state.last_movement_id = movement.id
    return category


@traced_engine(ENGINE_NAME, ENGINE_VERSION, fingerprint_fields=("movements",))
def replay_movements(movements: Iterable[StockMovementRecord]) -> dict[UUID, ItemState]:
    """
    Replay movements into per-item state.

    Pure and idempotent: the input is not mutated and the same movement set
    always yields equal output regardless of input order.

    Args:
        movements: Movements for one or more stock items, in any order.

    Returns:
        ItemState per stock item id, in order of each item's first movement.
    """
    states: dict[UUID, ItemState] = {}
    for movement in sort_movements(movements):
        state = states.get(movement.stock_item_id)
        if state is None:
            state = ItemState(stock_item_id=movement.stock_item_id)
            states[movement.stock_item_id] = state
        apply_movement(state, movement)
    return states
