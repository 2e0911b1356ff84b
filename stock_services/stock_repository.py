"""
StockRepository -- unit-of-work persistence port for the stock adjuster.

Responsibility:
    Abstracts the reads and writes the Atomic Stock Adjuster performs:
    company-scoped reference lookups, locked balance reads, balance writes,
    movement inserts, and idempotency lookups by external reference.

Architecture position:
    Services.  ``StockRepository`` is the port; ``SqlAlchemyStockRepository``
    is the relational adapter over a caller-owned Session.

Invariants enforced:
    - Every call runs inside the caller's transaction.  The adapter flushes,
      never commits.
    - Locked reads refresh any instance already in the identity map, so a
      long-lived session never computes from a balance it read earlier.
    - get_balance(lock=True) takes a row lock (SELECT ... FOR UPDATE) on
      backends that support it.  On SQLite the transaction already holds the
      database write lock from BEGIN IMMEDIATE.
    - upsert_balance writes through the instance read by get_balance, so the
      UPDATE carries the version that was read.  A concurrent writer that got
      there first makes the flush raise StaleDataError.

Failure modes:
    - TransactionConflictError when a concurrent insert of the same balance
      row or the same movement reference wins the race.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stock_kernel.domain.movements import (
    BalanceSnapshot,
    ProjectRef,
    StockItemRef,
    StockMovementRecord,
)
from stock_kernel.exceptions import TransactionConflictError
from stock_kernel.models.organization import Project
from stock_kernel.models.stock import StockBalance, StockItem, StockMovementModel
from stock_services.base import BaseService


class StockRepository(ABC):
    """Persistence port used by StockAdjuster.  All methods share one unit of work."""

    @abstractmethod
    def get_stock_item(self, company_id: UUID, stock_item_id: UUID) -> StockItemRef | None:
        ...

    @abstractmethod
    def get_project(self, company_id: UUID, project_id: UUID) -> ProjectRef | None:
        ...

    @abstractmethod
    def get_balance(
        self,
        company_id: UUID,
        stock_item_id: UUID,
        *,
        lock: bool = True,
    ) -> BalanceSnapshot | None:
        ...

    @abstractmethod
    def create_balance(
        self,
        company_id: UUID,
        stock_item_id: UUID,
        actor_id: UUID,
    ) -> BalanceSnapshot:
        ...

    @abstractmethod
    def upsert_balance(
        self,
        company_id: UUID,
        stock_item_id: UUID,
        quantity: Decimal,
        avg_cost: Decimal,
        actor_id: UUID,
    ) -> BalanceSnapshot:
        ...

    @abstractmethod
    def create_movement(self, **fields: Any) -> StockMovementRecord:
        ...

    @abstractmethod
    def find_movement_by_reference(
        self,
        company_id: UUID,
        stock_item_id: UUID,
        movement_type: str,
        reference_type: str,
        reference_id: str,
    ) -> StockMovementRecord | None:
        ...

    @abstractmethod
    def find_movements_by_reference(
        self,
        company_id: UUID,
        reference_type: str,
        reference_id: str,
        *,
        movement_type: str | None = None,
    ) -> list[StockMovementRecord]:
        ...

    def get_or_create_balance(
        self,
        company_id: UUID,
        stock_item_id: UUID,
        actor_id: UUID,
    ) -> BalanceSnapshot:
        """Locked read of the balance, inserting a zero row if absent."""
        balance = self.get_balance(company_id, stock_item_id, lock=True)
        if balance is None:
            balance = self.create_balance(company_id, stock_item_id, actor_id)
        return balance


class SqlAlchemyStockRepository(BaseService, StockRepository):
    """StockRepository over one SQLAlchemy Session."""

    def __init__(self, session: Session):
        super().__init__(session)
        self._balances: dict[tuple[UUID, UUID], StockBalance] = {}

    def get_stock_item(self, company_id: UUID, stock_item_id: UUID) -> StockItemRef | None:
        row = self.session.execute(
            select(StockItem).where(
                StockItem.id == stock_item_id,
                StockItem.company_id == company_id,
            )
        ).scalar_one_or_none()
        return StockItemRef.from_model(row) if row is not None else None

    def get_project(self, company_id: UUID, project_id: UUID) -> ProjectRef | None:
        row = self.session.execute(
            select(Project).where(
                Project.id == project_id,
                Project.company_id == company_id,
            )
        ).scalar_one_or_none()
        if row is None:
            return None
        return ProjectRef(id=row.id, company_id=row.company_id, name=row.name)

    def get_balance(
        self,
        company_id: UUID,
        stock_item_id: UUID,
        *,
        lock: bool = True,
    ) -> BalanceSnapshot | None:
        stmt = select(StockBalance).where(
            StockBalance.company_id == company_id,
            StockBalance.stock_item_id == stock_item_id,
        )
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        row = self.session.execute(stmt).scalar_one_or_none()
        if row is None:
            return None
        self._balances[(company_id, stock_item_id)] = row
        return BalanceSnapshot.from_model(row)

    def create_balance(
        self,
        company_id: UUID,
        stock_item_id: UUID,
        actor_id: UUID,
    ) -> BalanceSnapshot:
        row = StockBalance(
            company_id=company_id,
            stock_item_id=stock_item_id,
            quantity=Decimal("0"),
            avg_cost=Decimal("0"),
            created_by_id=actor_id,
        )
        self.session.add(row)
        try:
            self.session.flush()
        except IntegrityError as exc:
            # Another transaction inserted the row between our read and write.
            raise TransactionConflictError("StockBalance", str(stock_item_id)) from exc
        self._balances[(company_id, stock_item_id)] = row
        return BalanceSnapshot.from_model(row)

    def upsert_balance(
        self,
        company_id: UUID,
        stock_item_id: UUID,
        quantity: Decimal,
        avg_cost: Decimal,
        actor_id: UUID,
    ) -> BalanceSnapshot:
        row = self._balances.get((company_id, stock_item_id))
        if row is None:
            self.get_balance(company_id, stock_item_id, lock=True)
            row = self._balances.get((company_id, stock_item_id))
        if row is None:
            self.create_balance(company_id, stock_item_id, actor_id)
            row = self._balances[(company_id, stock_item_id)]

        row.quantity = quantity
        row.avg_cost = avg_cost
        row.updated_by_id = actor_id
        self.session.flush()
        return BalanceSnapshot.from_model(row)

    def create_movement(self, **fields: Any) -> StockMovementRecord:
        row = StockMovementModel(**fields)
        self.session.add(row)
        try:
            self.session.flush()
        except IntegrityError as exc:
            raise TransactionConflictError(
                "StockMovement",
                f"{fields.get('reference_type')}:{fields.get('reference_id')}",
            ) from exc
        return StockMovementRecord.from_model(row)

    def find_movement_by_reference(
        self,
        company_id: UUID,
        stock_item_id: UUID,
        movement_type: str,
        reference_type: str,
        reference_id: str,
    ) -> StockMovementRecord | None:
        row = self.session.execute(
            select(StockMovementModel).where(
                StockMovementModel.company_id == company_id,
                StockMovementModel.stock_item_id == stock_item_id,
                StockMovementModel.type == movement_type,
                StockMovementModel.reference_type == reference_type,
                StockMovementModel.reference_id == reference_id,
            )
        ).scalar_one_or_none()
        return StockMovementRecord.from_model(row) if row is not None else None

    def find_movements_by_reference(
        self,
        company_id: UUID,
        reference_type: str,
        reference_id: str,
        *,
        movement_type: str | None = None,
    ) -> list[StockMovementRecord]:
        stmt = select(StockMovementModel).where(
            StockMovementModel.company_id == company_id,
            StockMovementModel.reference_type == reference_type,
            StockMovementModel.reference_id == reference_id,
        )
        if movement_type is not None:
            stmt = stmt.where(StockMovementModel.type == movement_type)
        stmt = stmt.order_by(StockMovementModel.created_at, StockMovementModel.id)
        return [
            StockMovementRecord.from_model(row)
            for row in self.session.execute(stmt).scalars()
        ]

