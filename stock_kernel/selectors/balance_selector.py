"""
Module: stock_kernel.selectors.balance_selector
Responsibility: Read-only access to the cached per-item stock balances.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Items without a balance row report quantity 0 and avg cost 0.
    - Only active items are listed.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import and_, func, or_, select

from stock_kernel.domain.movements import BalanceSnapshot, StockItemRef
from stock_kernel.models.stock import StockBalance, StockItem
from stock_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class BalanceRow:
    """One line of the company stock balance listing."""

    item: StockItemRef
    quantity: Decimal
    avg_cost: Decimal

    @property
    def total_value(self) -> Decimal:
        return self.quantity * self.avg_cost

    @property
    def is_low_stock(self) -> bool:
        if self.item.reorder_level is None:
            return False
        return self.quantity <= self.item.reorder_level


class StockBalanceSelector(BaseSelector):
    """Queries over stock_balances joined to stock_items."""

    def get_balance(self, company_id: UUID, stock_item_id: UUID) -> BalanceSnapshot | None:
        row = self.session.execute(
            select(StockBalance).where(
                StockBalance.company_id == company_id,
                StockBalance.stock_item_id == stock_item_id,
            )
        ).scalar_one_or_none()
        return BalanceSnapshot.from_model(row) if row is not None else None

    def balances_by_item(self, company_id: UUID) -> dict[UUID, BalanceSnapshot]:
        rows = self.session.execute(
            select(StockBalance).where(StockBalance.company_id == company_id)
        ).scalars()
        return {row.stock_item_id: BalanceSnapshot.from_model(row) for row in rows}

    def list_balances(
        self,
        company_id: UUID,
        *,
        search: str | None = None,
        category: str | None = None,
        low_stock_only: bool = False,
    ) -> list[BalanceRow]:
        """
        Active items with their persisted balance, ordered by item name.

        Args:
            search: Case-insensitive substring of item name or SKU.
            category: Exact category match.
            low_stock_only: Keep only items at or below their reorder level.
        """
        stmt = (
            select(StockItem, StockBalance)
            .outerjoin(
                StockBalance,
                and_(
                    StockBalance.stock_item_id == StockItem.id,
                    StockBalance.company_id == StockItem.company_id,
                ),
            )
            .where(StockItem.company_id == company_id, StockItem.is_active.is_(True))
            .order_by(StockItem.name)
        )
        if search:
            pattern = f"%{search.lower()}%"
            stmt = stmt.where(
                or_(
                    func.lower(StockItem.name).like(pattern),
                    func.lower(StockItem.sku).like(pattern),
                )
            )
        if category:
            stmt = stmt.where(StockItem.category == category)

        rows = []
        for item, balance in self.session.execute(stmt).all():
            rows.append(
                BalanceRow(
                    item=StockItemRef.from_model(item),
                    quantity=Decimal(balance.quantity) if balance else Decimal("0"),
                    avg_cost=Decimal(balance.avg_cost) if balance else Decimal("0"),
                )
            )
        if low_stock_only:
            rows = [row for row in rows if row.is_low_stock]
        return rows
