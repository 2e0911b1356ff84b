"""
Movements -- Pure domain data transfer objects for stock.

Responsibility:
    Defines the immutable data structures that flow between the ORM layer,
    the pure valuation engines and the services: movement enums
    (MovementType, MovementKind, MovementCategory), the movement record fed
    to replay, balance snapshots returned by the adjuster, and stock item
    references.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    from_model() class methods exist as boundary converters but are only
    invoked from selectors and services (never from engine logic).

Invariants enforced:
    - Quantities and costs are Decimal, never float.
    - Movement records are frozen; corrections are new movements.
    - Enum parsing is total: unknown strings parse to None, never raise.

Data flow:
    StockMovementModel -> StockMovementRecord -> replay_movements() -> ItemState
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import UUID

if TYPE_CHECKING:
    from stock_kernel.models.stock import StockBalance as StockBalanceModel
    from stock_kernel.models.stock import StockItem as StockItemModel
    from stock_kernel.models.stock import StockMovementModel


class MovementType(str, Enum):
    """
    Legacy coarse movement direction.

    Contract:
        Exactly three values.  The adjuster dispatches on this; replay only
        falls back to it when no kind is recorded.
    """

    IN = "IN"
    OUT = "OUT"
    ADJUST = "ADJUST"

    @classmethod
    def parse(cls, value: Any) -> MovementType | None:
        """Coerce a raw value to a MovementType, or None if unrecognized."""
        return _parse_enum(cls, value)


class MovementKind(str, Enum):
    """Fine-grained business meaning of a movement."""

    OPENING = "OPENING"
    RECEIVE = "RECEIVE"
    TRANSFER_IN = "TRANSFER_IN"
    RETURN_IN = "RETURN_IN"
    ISSUE = "ISSUE"
    TRANSFER_OUT = "TRANSFER_OUT"
    WASTAGE = "WASTAGE"
    ADJUSTMENT = "ADJUSTMENT"

    @classmethod
    def parse(cls, value: Any) -> MovementKind | None:
        """Coerce a raw value to a MovementKind, or None if unrecognized."""
        return _parse_enum(cls, value)


class MovementCategory(str, Enum):
    """
    Semantic category used by the ledger replayer.

    Contract:
        Every movement maps to exactly one of these five categories.
    """

    OPENING = "OPENING"
    IN = "IN"
    OUT = "OUT"
    WASTAGE = "WASTAGE"
    ADJUST = "ADJUST"


INBOUND_KINDS = frozenset(
    {MovementKind.RECEIVE, MovementKind.TRANSFER_IN, MovementKind.RETURN_IN}
)
OUTBOUND_KINDS = frozenset({MovementKind.ISSUE, MovementKind.TRANSFER_OUT})


def _parse_enum(enum_cls, value):
    if value is None:
        return None
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        try:
            return enum_cls(value.strip().upper())
        except ValueError:
            return None
    return None


# Well-known idempotency reference types written by the services.
class ReferenceType:
    OPENING_STOCK = "OPENING_STOCK"
    PURCHASE_VOUCHER = "PURCHASE_VOUCHER"
    PURCHASE_REVERSAL = "PURCHASE_REVERSAL"
    STOCK_ISSUE = "STOCK_ISSUE"
    STOCK_WASTAGE = "STOCK_WASTAGE"
    STOCK_ADJUSTMENT = "STOCK_ADJUSTMENT"


@dataclass(frozen=True)
class StockMovementRecord:
    """
    One append-only stock event, as consumed by classification and replay.

    Contract:
        ``type`` and ``kind`` hold whatever was recorded (enum member, raw
        string or None).  The classifier interprets them; nothing here
        validates them, so historical rows with unexpected values still
        replay.

    Guarantees:
        - quantity is signed as stored.
        - unit_cost is None when no cost was recorded (distinct from 0).
    """

    id: UUID
    company_id: UUID
    stock_item_id: UUID
    type: MovementType | str | None
    quantity: Decimal
    movement_date: datetime
    created_at: datetime
    kind: MovementKind | str | None = None
    unit_cost: Decimal | None = None
    project_id: UUID | None = None
    destination_project_id: UUID | None = None
    vendor_id: UUID | None = None
    reference_type: str | None = None
    reference_id: str | None = None
    notes: str | None = None
    reason: str | None = None
    created_by_id: UUID | None = None
    approved_by_id: UUID | None = None

    @property
    def line_total(self) -> Decimal:
        """qty x unit cost, 0 when no cost was recorded."""
        if self.unit_cost is None:
            return Decimal("0")
        return self.quantity * self.unit_cost

    @classmethod
    def from_model(cls, model: StockMovementModel) -> StockMovementRecord:
        return cls(
            id=model.id,
            company_id=model.company_id,
            stock_item_id=model.stock_item_id,
            type=model.type,
            kind=model.kind,
            quantity=Decimal(model.quantity),
            unit_cost=None if model.unit_cost is None else Decimal(model.unit_cost),
            movement_date=model.movement_date,
            created_at=model.created_at,
            project_id=model.project_id,
            destination_project_id=model.destination_project_id,
            vendor_id=model.vendor_id,
            reference_type=model.reference_type,
            reference_id=model.reference_id,
            notes=model.notes,
            reason=model.reason,
            created_by_id=model.created_by_id,
            approved_by_id=model.approved_by_id,
        )


@dataclass(frozen=True)
class BalanceSnapshot:
    """Persisted on-hand quantity and weighted-average cost for one item."""

    stock_item_id: UUID
    quantity: Decimal
    avg_cost: Decimal
    version: int = 0

    @property
    def total_value(self) -> Decimal:
        return self.quantity * self.avg_cost

    @classmethod
    def empty(cls, stock_item_id: UUID) -> BalanceSnapshot:
        return cls(stock_item_id=stock_item_id, quantity=Decimal("0"), avg_cost=Decimal("0"))

    @classmethod
    def from_model(cls, model: StockBalanceModel) -> BalanceSnapshot:
        return cls(
            stock_item_id=model.stock_item_id,
            quantity=Decimal(model.quantity),
            avg_cost=Decimal(model.avg_cost),
            version=model.version,
        )


@dataclass(frozen=True)
class StockItemRef:
    """Identity and reporting attributes of a stock item."""

    id: UUID
    company_id: UUID
    name: str
    unit: str
    sku: str | None = None
    category: str | None = None
    reorder_level: Decimal | None = None
    is_active: bool = True

    @classmethod
    def from_model(cls, model: StockItemModel) -> StockItemRef:
        return cls(
            id=model.id,
            company_id=model.company_id,
            name=model.name,
            unit=model.unit,
            sku=model.sku,
            category=model.category,
            reorder_level=(
                None if model.reorder_level is None else Decimal(model.reorder_level)
            ),
            is_active=model.is_active,
        )


@dataclass(frozen=True)
class ProjectRef:
    id: UUID
    company_id: UUID
    name: str


@dataclass(frozen=True)
class StockScope:
    """
    Reporting boundary: one project, or the whole company when project_id
    is None.
    """

    company_id: UUID
    project_id: UUID | None = None

    @property
    def is_company_wide(self) -> bool:
        return self.project_id is None

    @classmethod
    def company(cls, company_id: UUID) -> StockScope:
        return cls(company_id=company_id)

    @classmethod
    def project(cls, company_id: UUID, project_id: UUID) -> StockScope:
        return cls(company_id=company_id, project_id=project_id)


@dataclass(frozen=True)
class MovementPage:
    """One page of a movement listing, newest first."""

    movements: tuple[StockMovementRecord, ...]
    total: int
    page: int
    page_size: int
    items: dict[UUID, StockItemRef] = field(default_factory=dict)

    @property
    def total_pages(self) -> int:
        if self.page_size <= 0:
            return 0
        return (self.total + self.page_size - 1) // self.page_size


@dataclass(frozen=True)
class StockItemPage:
    """One page of the item catalog, ordered by name."""

    items: tuple[StockItemRef, ...]
    total: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        if self.page_size <= 0:
            return 0
        return (self.total + self.page_size - 1) // self.page_size
