"""
Module: stock_kernel.models.stock
Responsibility: ORM persistence for stock items, the append-only movement
    stream, the cached per-item balance, and per-project low-stock settings.
Architecture position: Kernel > Models.  May import from db/base.py and
    db/types.py only.  MUST NOT import from services/, selectors/, or outer
    layers.

Invariants enforced:
    - Movements are append-only.  UPDATE and DELETE are blocked by ORM
      listeners (db/immutability.py).
    - Idempotency key: (company_id, stock_item_id, type, reference_type,
      reference_id) is unique.  Rows with a NULL reference never collide.
    - One balance row per (company_id, stock_item_id).
    - Balance.version is the SQLAlchemy version counter: a stale writer's
      UPDATE matches zero rows and raises StaleDataError.
    - One low-stock setting per (project_id, stock_item_id).
    - Item name and SKU are unique per company.

Failure modes:
    - IntegrityError on a duplicate reference key or a concurrent balance
      INSERT (the adjuster maps both to TransactionConflictError).
    - StaleDataError on a balance UPDATE against an outdated version.

Audit relevance:
    The balance is a materialized projection of the movement stream and
    must be reproducible by replaying every movement for the item.
    StockReconciliationService verifies exactly that.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import TrackedBase, UUIDString


class StockItem(TrackedBase):
    """
    A stockable material owned by a company.

    Contract:
        Administrative edits (name, unit, reorder level, category, active flag)
        are allowed; identity and company never change.

    Non-goals:
        - Does not hold quantities.  See StockBalance and StockMovementModel.
    """

    __tablename__ = "stock_items"

    __table_args__ = (
        UniqueConstraint("company_id", "name", name="uq_stock_item_company_name"),
        UniqueConstraint("company_id", "sku", name="uq_stock_item_company_sku"),
        Index("idx_stock_item_company_active", "company_id", "is_active"),
    )

    company_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("companies.id"),
        nullable=False,
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    sku: Mapped[str | None] = mapped_column(String(100), nullable=True)

    unit: Mapped[str] = mapped_column(String(20), nullable=False)

    category: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Company-wide low-stock threshold, overridden per project by
    # ProjectStockSetting.min_qty
    reorder_level: Mapped[Decimal | None] = mapped_column(
        Numeric(38, 9),
        nullable=True,
    )

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<StockItem {self.id}: {self.name} ({self.unit})>"


class StockMovementModel(TrackedBase):
    """
    One append-only stock event.

    Contract:
        ``type`` is the coarse direction the adjuster applied (IN/OUT/ADJUST).
        ``kind`` is the optional business meaning used by replay.  ``quantity``
        is stored as supplied; for ADJUST written by the adjuster it is the
        absolute target quantity.

    Guarantees:
        - created_at is assigned from the injected clock (replay tiebreak).
        - unit_cost is NULL when no cost was supplied, never defaulted to 0.
    """

    __tablename__ = "stock_movements"

    __table_args__ = (
        UniqueConstraint(
            "company_id",
            "stock_item_id",
            "type",
            "reference_type",
            "reference_id",
            name="uq_stock_movement_reference",
        ),
        # Query: replay order for an item
        Index(
            "idx_stock_movement_item_order",
            "company_id",
            "stock_item_id",
            "movement_date",
            "created_at",
        ),
        # Query: project ledger
        Index("idx_stock_movement_project_date", "project_id", "movement_date"),
        # Query: transfers into a project
        Index("idx_stock_movement_destination", "destination_project_id"),
        # Query: purchase reversal lookup
        Index("idx_stock_movement_reference", "reference_type", "reference_id"),
    )

    company_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("companies.id"),
        nullable=False,
    )

    stock_item_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("stock_items.id"),
        nullable=False,
    )

    movement_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    type: Mapped[str] = mapped_column(String(20), nullable=False)

    kind: Mapped[str | None] = mapped_column(String(20), nullable=True)

    quantity: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    unit_cost: Mapped[Decimal | None] = mapped_column(Numeric(38, 9), nullable=True)

    project_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("projects.id"),
        nullable=True,
    )

    source_project_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("projects.id"),
        nullable=True,
    )

    destination_project_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("projects.id"),
        nullable=True,
    )

    vendor_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    # Idempotency key (with company, item, type)
    reference_type: Mapped[str | None] = mapped_column(String(50), nullable=True)

    reference_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    notes: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    approved_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    approved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    meta: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<StockMovement {self.id}: {self.type}/{self.kind} "
            f"item={self.stock_item_id} qty={self.quantity}>"
        )


class StockBalance(TrackedBase):
    """
    Cached on-hand quantity and weighted-average cost for one item.

    Contract:
        Mutated only by StockAdjuster, always in the same transaction as the
        movement that caused the change.

    Guarantees:
        - quantity >= 0 (enforced by the adjuster before flush).
        - avg_cost == 0 whenever quantity == 0.
        - version increments on every UPDATE.
    """

    __tablename__ = "stock_balances"

    __table_args__ = (
        UniqueConstraint("company_id", "stock_item_id", name="uq_stock_balance_item"),
    )

    company_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("companies.id"),
        nullable=False,
    )

    stock_item_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("stock_items.id"),
        nullable=False,
    )

    quantity: Mapped[Decimal] = mapped_column(
        Numeric(38, 9),
        nullable=False,
        default=Decimal("0"),
    )

    avg_cost: Mapped[Decimal] = mapped_column(
        Numeric(38, 9),
        nullable=False,
        default=Decimal("0"),
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<StockBalance item={self.stock_item_id} "
            f"qty={self.quantity} avg={self.avg_cost} v{self.version}>"
        )


class ProjectStockSetting(TrackedBase):
    """Per-project low-stock threshold for one item."""

    __tablename__ = "project_stock_settings"

    __table_args__ = (
        UniqueConstraint("project_id", "stock_item_id", name="uq_project_stock_setting"),
    )

    company_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("companies.id"),
        nullable=False,
    )

    project_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("projects.id"),
        nullable=False,
    )

    stock_item_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("stock_items.id"),
        nullable=False,
    )

    min_qty: Mapped[Decimal | None] = mapped_column(Numeric(38, 9), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<ProjectStockSetting project={self.project_id} "
            f"item={self.stock_item_id} min={self.min_qty}>"
        )
