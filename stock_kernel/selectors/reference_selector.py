"""
Module: stock_kernel.selectors.reference_selector
Responsibility: Company-scoped lookups of the reference data the stock
    services depend on: stock items, projects, and per-project low-stock
    thresholds.  Also the paginated item catalog.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Every lookup filters on company_id.  An id belonging to another
      company resolves to None, indistinguishable from a missing row.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, or_, select

from stock_kernel.domain.movements import StockItemPage, StockItemRef
from stock_kernel.models.organization import Company, Project
from stock_kernel.models.stock import ProjectStockSetting, StockItem
from stock_kernel.selectors.base import BaseSelector


class StockReferenceSelector(BaseSelector):
    """Items, projects and thresholds for one company."""

    def get_stock_item(self, company_id: UUID, stock_item_id: UUID) -> StockItemRef | None:
        row = self.session.execute(
            select(StockItem).where(
                StockItem.id == stock_item_id,
                StockItem.company_id == company_id,
            )
        ).scalar_one_or_none()
        return StockItemRef.from_model(row) if row is not None else None

    def items_by_id(
        self,
        company_id: UUID,
        stock_item_ids: set[UUID] | None = None,
    ) -> dict[UUID, StockItemRef]:
        """Items for the company, optionally restricted to the given ids."""
        stmt = select(StockItem).where(StockItem.company_id == company_id)
        if stock_item_ids is not None:
            if not stock_item_ids:
                return {}
            stmt = stmt.where(StockItem.id.in_(list(stock_item_ids)))
        return {
            row.id: StockItemRef.from_model(row)
            for row in self.session.execute(stmt).scalars()
        }

    def find_item_by_name(
        self,
        company_id: UUID,
        name: str,
        *,
        exclude_id: UUID | None = None,
    ) -> StockItemRef | None:
        """Case-insensitive name lookup, ignoring ``exclude_id``."""
        stmt = select(StockItem).where(
            StockItem.company_id == company_id,
            func.lower(StockItem.name) == name.strip().lower(),
        )
        if exclude_id is not None:
            stmt = stmt.where(StockItem.id != exclude_id)
        row = self.session.execute(stmt.limit(1)).scalar_one_or_none()
        return StockItemRef.from_model(row) if row is not None else None

    def find_item_by_sku(
        self,
        company_id: UUID,
        sku: str,
        *,
        exclude_id: UUID | None = None,
    ) -> StockItemRef | None:
        stmt = select(StockItem).where(
            StockItem.company_id == company_id,
            StockItem.sku == sku,
        )
        if exclude_id is not None:
            stmt = stmt.where(StockItem.id != exclude_id)
        row = self.session.execute(stmt.limit(1)).scalar_one_or_none()
        return StockItemRef.from_model(row) if row is not None else None

    def list_items(
        self,
        company_id: UUID,
        *,
        search: str | None = None,
        category: str | None = None,
        is_active: bool | None = None,
        page: int = 1,
        page_size: int = 25,
        max_page_size: int = 100,
    ) -> StockItemPage:
        """
        Paginated item catalog, ordered by name.

        Args:
            search: Case-insensitive substring of item name or SKU.
            category: Exact category match.
            is_active: Keep only active (True) or inactive (False) items.
                None lists both.
            page: 1-based page number, clamped to >= 1.
            page_size: Clamped to [1, max_page_size].
        """
        page = max(1, page)
        page_size = max(1, min(page_size, max_page_size))

        conditions = [StockItem.company_id == company_id]
        if search:
            pattern = f"%{search.lower()}%"
            conditions.append(
                or_(
                    func.lower(StockItem.name).like(pattern),
                    func.lower(StockItem.sku).like(pattern),
                )
            )
        if category:
            conditions.append(StockItem.category == category)
        if is_active is not None:
            conditions.append(StockItem.is_active.is_(is_active))

        total = self.session.execute(
            select(func.count()).select_from(StockItem).where(*conditions)
        ).scalar_one()
        rows = self.session.execute(
            select(StockItem)
            .where(*conditions)
            .order_by(StockItem.name, StockItem.id)
            .offset((page - 1) * page_size)
            .limit(page_size)
        ).scalars()
        return StockItemPage(
            items=tuple(StockItemRef.from_model(row) for row in rows),
            total=total,
            page=page,
            page_size=page_size,
        )

    def company_exists(self, company_id: UUID) -> bool:
        found = self.session.execute(
            select(Company.id).where(Company.id == company_id)
        ).scalar_one_or_none()
        return found is not None

    def project_exists(self, company_id: UUID, project_id: UUID) -> bool:
        found = self.session.execute(
            select(Project.id).where(
                Project.id == project_id,
                Project.company_id == company_id,
            )
        ).scalar_one_or_none()
        return found is not None

    def low_stock_thresholds(
        self,
        company_id: UUID,
        project_id: UUID,
    ) -> dict[UUID, Decimal]:
        """Explicit per-project minimum quantities, keyed by item id."""
        rows = self.session.execute(
            select(ProjectStockSetting).where(
                ProjectStockSetting.company_id == company_id,
                ProjectStockSetting.project_id == project_id,
                ProjectStockSetting.min_qty.is_not(None),
            )
        ).scalars()
        return {row.stock_item_id: Decimal(row.min_qty) for row in rows}
