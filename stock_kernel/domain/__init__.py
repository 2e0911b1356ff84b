"""Pure domain layer: clock abstraction and stock DTOs.  Zero I/O."""

from stock_kernel.domain.clock import Clock, DeterministicClock, SystemClock, as_utc
from stock_kernel.domain.movements import (
    INBOUND_KINDS,
    OUTBOUND_KINDS,
    BalanceSnapshot,
    MovementCategory,
    MovementKind,
    MovementPage,
    MovementType,
    ProjectRef,
    ReferenceType,
    StockItemPage,
    StockItemRef,
    StockMovementRecord,
    StockScope,
)

__all__ = [
    "Clock",
    "SystemClock",
    "DeterministicClock",
    "as_utc",
    "MovementType",
    "MovementKind",
    "MovementCategory",
    "INBOUND_KINDS",
    "OUTBOUND_KINDS",
    "ReferenceType",
    "StockMovementRecord",
    "BalanceSnapshot",
    "StockItemRef",
    "ProjectRef",
    "StockScope",
    "MovementPage",
    "StockItemPage",
]
