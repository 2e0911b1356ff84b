"""
Module: stock_kernel.selectors.movement_selector
Responsibility: Read-only queries over the stock movement stream: scope-wide
    feeds for replay, company feeds for reconciliation, reference lookups for
    idempotency, and the paginated project and company movement ledgers.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Project scope includes movements whose project is the scope AND
      TRANSFER_IN movements whose destination is the scope, even when the
      movement's primary project differs.
    - Feeds for replay are returned in canonical order (movement_date,
      created_at, id).  Replay re-sorts in Python regardless, so ordering
      differences between backends cannot change results.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from uuid import UUID

from sqlalchemy import and_, func, or_, select

from stock_kernel.domain.clock import as_utc
from stock_kernel.domain.movements import (
    MovementKind,
    MovementPage,
    MovementType,
    StockItemRef,
    StockMovementRecord,
    StockScope,
)
from stock_kernel.models.stock import StockItem, StockMovementModel
from stock_kernel.selectors.base import BaseSelector


def _day_start(value: date | datetime) -> datetime:
    return as_utc(value)


def _date_conditions(date_from, date_to) -> list:
    conditions = []
    if date_from is not None:
        conditions.append(StockMovementModel.movement_date >= _day_start(date_from))
    if date_to is not None:
        if isinstance(date_to, datetime):
            conditions.append(StockMovementModel.movement_date <= date_to)
        else:
            conditions.append(
                StockMovementModel.movement_date < _day_start(date_to + timedelta(days=1))
            )
    return conditions


class StockMovementSelector(BaseSelector):
    """Read-only access to stock movements."""

    def _scope_clause(self, scope: StockScope):
        clause = StockMovementModel.company_id == scope.company_id
        if scope.project_id is None:
            return clause
        return and_(
            clause,
            or_(
                StockMovementModel.project_id == scope.project_id,
                and_(
                    StockMovementModel.destination_project_id == scope.project_id,
                    StockMovementModel.kind == MovementKind.TRANSFER_IN.value,
                ),
            ),
        )

    def movements_for_scope(self, scope: StockScope) -> list[StockMovementRecord]:
        """All movements in scope, in replay order."""
        stmt = (
            select(StockMovementModel)
            .where(self._scope_clause(scope))
            .order_by(
                StockMovementModel.movement_date,
                StockMovementModel.created_at,
                StockMovementModel.id,
            )
        )
        return [
            StockMovementRecord.from_model(m)
            for m in self.session.execute(stmt).scalars()
        ]

    def movements_for_company(self, company_id: UUID) -> list[StockMovementRecord]:
        return self.movements_for_scope(StockScope.company(company_id))

    def find_by_reference(
        self,
        company_id: UUID,
        reference_type: str,
        reference_id: str,
        *,
        movement_type: str | None = None,
        stock_item_id: UUID | None = None,
    ) -> list[StockMovementRecord]:
        """Movements carrying the given external reference, oldest first."""
        stmt = select(StockMovementModel).where(
            StockMovementModel.company_id == company_id,
            StockMovementModel.reference_type == reference_type,
            StockMovementModel.reference_id == reference_id,
        )
        if movement_type is not None:
            stmt = stmt.where(StockMovementModel.type == movement_type)
        if stock_item_id is not None:
            stmt = stmt.where(StockMovementModel.stock_item_id == stock_item_id)
        stmt = stmt.order_by(StockMovementModel.created_at, StockMovementModel.id)
        return [
            StockMovementRecord.from_model(m)
            for m in self.session.execute(stmt).scalars()
        ]

    def list_project_movements(
        self,
        company_id: UUID,
        project_id: UUID,
        *,
        date_from: date | datetime | None = None,
        date_to: date | datetime | None = None,
        stock_item_id: UUID | None = None,
        kind: MovementKind | str | None = None,
        created_by_id: UUID | None = None,
        page: int = 1,
        page_size: int = 50,
        max_page_size: int = 100,
    ) -> MovementPage:
        """
        Paginated movement ledger for a project, newest first.

        ``date_to`` is inclusive when given as a date.  ``page_size`` is
        clamped to [1, max_page_size] and ``page`` to >= 1.
        """
        conditions = [self._scope_clause(StockScope.project(company_id, project_id))]
        conditions.extend(_date_conditions(date_from, date_to))
        if stock_item_id is not None:
            conditions.append(StockMovementModel.stock_item_id == stock_item_id)
        if kind is not None:
            parsed = MovementKind.parse(kind)
            conditions.append(
                StockMovementModel.kind == (parsed.value if parsed else str(kind))
            )
        if created_by_id is not None:
            conditions.append(StockMovementModel.created_by_id == created_by_id)
        return self._page(conditions, page, page_size, max_page_size)

    def list_company_movements(
        self,
        company_id: UUID,
        *,
        date_from: date | datetime | None = None,
        date_to: date | datetime | None = None,
        stock_item_id: UUID | None = None,
        movement_type: MovementType | str | None = None,
        project_id: UUID | None = None,
        page: int = 1,
        page_size: int = 25,
        max_page_size: int = 100,
    ) -> MovementPage:
        """
        Paginated company-wide movement ledger, newest first.

        ``project_id`` matches the movement's own project only; transfers
        into a project are listed under their source project.  Date and
        paging rules are those of list_project_movements().
        """
        conditions = [StockMovementModel.company_id == company_id]
        conditions.extend(_date_conditions(date_from, date_to))
        if stock_item_id is not None:
            conditions.append(StockMovementModel.stock_item_id == stock_item_id)
        if movement_type is not None:
            parsed = MovementType.parse(movement_type)
            conditions.append(
                StockMovementModel.type == (parsed.value if parsed else str(movement_type))
            )
        if project_id is not None:
            conditions.append(StockMovementModel.project_id == project_id)
        return self._page(conditions, page, page_size, max_page_size)

    def _page(self, conditions, page: int, page_size: int, max_page_size: int) -> MovementPage:
        page = max(1, page)
        page_size = max(1, min(page_size, max_page_size))

        total = self.session.execute(
            select(func.count()).select_from(StockMovementModel).where(*conditions)
        ).scalar_one()

        stmt = (
            select(StockMovementModel)
            .where(*conditions)
            .order_by(
                StockMovementModel.movement_date.desc(),
                StockMovementModel.created_at.desc(),
                StockMovementModel.id.desc(),
            )
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        movements = tuple(
            StockMovementRecord.from_model(m)
            for m in self.session.execute(stmt).scalars()
        )

        item_ids = {m.stock_item_id for m in movements}
        items: dict[UUID, StockItemRef] = {}
        if item_ids:
            rows = self.session.execute(
                select(StockItem).where(StockItem.id.in_(list(item_ids)))
            ).scalars()
            items = {row.id: StockItemRef.from_model(row) for row in rows}

        return MovementPage(
            movements=movements,
            total=total,
            page=page,
            page_size=page_size,
            items=items,
        )
