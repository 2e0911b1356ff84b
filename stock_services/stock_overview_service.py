"""
StockOverviewService -- the Stock Overview Aggregator.

Responsibility:
    Build the valuation report for a scope (one project, or a whole company)
    by replaying the scope's movement history: per-item opening, received,
    issued and wastage quantities and values, remaining quantity, weighted
    average cost, low-stock flag, and scope totals.  Also derives the
    project dashboard stock status from that report.

Architecture position:
    Services -- read-only orchestration.  Selectors fetch movements,
    items and thresholds; stock_engines.weighted_average does the math.

Invariants enforced:
    - Scope validation first: an unknown company, or a project that belongs
      to another company, yields NOT_FOUND before anything is replayed.
    - Project scope includes TRANSFER_IN movements whose destination is the
      project.
    - Low-stock threshold is the explicit per-project minimum, else the
      item's reorder level, else 0.  An item is low when remaining qty is
      strictly below it.
    - Percentages are shares of remaining + used value, and 0 when that sum
      is 0.

Consistency:
    Reads take no locks.  A report computed while adjustments are in flight
    reflects whatever was committed when the movements were read.

Failure modes (returned, not raised):
    NOT_FOUND for unknown scopes.
"""

from __future__ import annotations

import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy.orm import Session

from stock_config.schema import ReportingConfig
from stock_engines.weighted_average import ItemState, replay_movements
from stock_kernel.db.types import ZERO
from stock_kernel.domain.movements import StockItemRef, StockScope
from stock_kernel.exceptions import NotFoundError, ScopeNotFoundError
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.selectors.movement_selector import StockMovementSelector
from stock_kernel.selectors.reference_selector import StockReferenceSelector

logger = get_logger("services.stock_overview")

HUNDRED = Decimal("100")


class OverviewStatus(str, Enum):
    SUCCESS = "success"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class StockOverviewItem:
    """Valuation breakdown of one stock item within a scope."""

    stock_item_id: UUID
    name: str
    unit: str
    opening_qty: Decimal
    opening_value: Decimal
    received_qty: Decimal
    received_value: Decimal
    issued_qty: Decimal
    issued_value: Decimal
    wastage_qty: Decimal
    wastage_value: Decimal
    remaining_qty: Decimal
    avg_cost: Decimal
    total_value: Decimal
    min_qty: Decimal | None
    reorder_level: Decimal | None
    is_low_stock: bool

    @property
    def low_stock_threshold(self) -> Decimal:
        if self.min_qty is not None:
            return self.min_qty
        if self.reorder_level is not None:
            return self.reorder_level
        return ZERO


@dataclass(frozen=True)
class StockOverviewSummary:
    total_qty_on_hand: Decimal = ZERO
    total_stock_value: Decimal = ZERO
    used_stock_value: Decimal = ZERO
    remaining_stock_value: Decimal = ZERO
    wastage_value: Decimal = ZERO
    used_percentage: Decimal = ZERO
    remaining_percentage: Decimal = ZERO


@dataclass(frozen=True)
class StockOverview:
    scope: StockScope
    summary: StockOverviewSummary
    items: tuple[StockOverviewItem, ...]

    def item(self, stock_item_id: UUID) -> StockOverviewItem | None:
        for entry in self.items:
            if entry.stock_item_id == stock_item_id:
                return entry
        return None


@dataclass(frozen=True)
class StockOverviewResult:
    status: OverviewStatus
    overview: StockOverview | None = None
    message: str | None = None
    error_code: str | None = None

    @property
    def is_success(self) -> bool:
        return self.status == OverviewStatus.SUCCESS


@dataclass(frozen=True)
class LowStockItem:
    stock_item_id: UUID
    name: str
    unit: str
    current_qty: Decimal
    threshold: Decimal


@dataclass(frozen=True)
class ProjectStockStatus:
    """Dashboard stock metrics for one project."""

    received_total: Decimal
    used_total: Decimal
    current_balance: Decimal
    low_stock_items: tuple[LowStockItem, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class ProjectStockStatusResult:
    status: OverviewStatus
    stock_status: ProjectStockStatus | None = None
    message: str | None = None
    error_code: str | None = None

    @property
    def is_success(self) -> bool:
        return self.status == OverviewStatus.SUCCESS


def build_overview_item(
    state: ItemState,
    item: StockItemRef,
    min_qty: Decimal | None,
) -> StockOverviewItem:
    remaining_qty = state.on_hand_qty
    if min_qty is not None:
        threshold = min_qty
    elif item.reorder_level is not None:
        threshold = item.reorder_level
    else:
        threshold = ZERO
    return StockOverviewItem(
        stock_item_id=item.id,
        name=item.name,
        unit=item.unit,
        opening_qty=state.opening_qty,
        opening_value=state.opening_value,
        received_qty=state.received_qty,
        received_value=state.received_value,
        issued_qty=state.issued_qty,
        issued_value=state.issued_value,
        wastage_qty=state.wastage_qty,
        wastage_value=state.wastage_value,
        remaining_qty=remaining_qty,
        avg_cost=state.avg_cost,
        total_value=remaining_qty * state.avg_cost,
        min_qty=min_qty,
        reorder_level=item.reorder_level,
        is_low_stock=remaining_qty < threshold,
    )


def summarize(items: tuple[StockOverviewItem, ...]) -> StockOverviewSummary:
    """Scope totals and used/remaining percentages."""
    total_qty = sum((i.remaining_qty for i in items), ZERO)
    remaining_value = sum((i.total_value for i in items), ZERO)
    used_value = sum((i.issued_value for i in items), ZERO)
    wastage_value = sum((i.wastage_value for i in items), ZERO)

    used_pct = remaining_pct = ZERO
    denominator = remaining_value + used_value
    if denominator > 0:
        used_pct = used_value / denominator * HUNDRED
        remaining_pct = remaining_value / denominator * HUNDRED

    return StockOverviewSummary(
        total_qty_on_hand=total_qty,
        total_stock_value=remaining_value,
        used_stock_value=used_value,
        remaining_stock_value=remaining_value,
        wastage_value=wastage_value,
        used_percentage=used_pct,
        remaining_percentage=remaining_pct,
    )


class StockOverviewService:
    """
    Read-side stock valuation for projects and companies.

    Contract:
        get_overview() and get_project_stock_status() return result
        objects; NotFound is reported in the result, not raised.
        compute_overview() is the raising variant used by other services.
    Non-goals:
        Never writes.  Persisted balances are not consulted; everything is
        derived from the movement history.
    """

    def __init__(self, session: Session, config: ReportingConfig | None = None):
        self._session = session
        self._config = config or ReportingConfig()
        self._movements = StockMovementSelector(session)
        self._references = StockReferenceSelector(session)

    def compute_overview(self, company_id: UUID, scope: StockScope) -> StockOverview:
        """
        Replay the scope's history into a StockOverview.

        Raises:
            ScopeNotFoundError: unknown company, or project not in company.
        """
        if scope.company_id != company_id:
            raise ScopeNotFoundError(company_id, scope.project_id)
        if scope.project_id is None:
            if not self._references.company_exists(company_id):
                raise ScopeNotFoundError(company_id)
            thresholds: Mapping[UUID, Decimal] = {}
        else:
            if not self._references.project_exists(company_id, scope.project_id):
                raise ScopeNotFoundError(company_id, scope.project_id)
            thresholds = self._references.low_stock_thresholds(company_id, scope.project_id)

        t0 = time.monotonic()
        movements = self._movements.movements_for_scope(scope)
        states = replay_movements(movements)
        refs = self._references.items_by_id(company_id, set(states))

        items = tuple(
            build_overview_item(state, refs[item_id], thresholds.get(item_id))
            for item_id, state in states.items()
            if item_id in refs
        )
        overview = StockOverview(scope=scope, summary=summarize(items), items=items)

        logger.info(
            "stock_overview_computed",
            extra={
                "project_id": str(scope.project_id) if scope.project_id else None,
                "movement_count": len(movements),
                "item_count": len(items),
                "remaining_stock_value": str(overview.summary.remaining_stock_value),
                "duration_ms": round((time.monotonic() - t0) * 1000, 2),
            },
        )
        return overview

    def get_overview(self, company_id: UUID, scope: StockScope) -> StockOverviewResult:
        with LogContext.bind(company_id=str(company_id)):
            try:
                overview = self.compute_overview(company_id, scope)
            except NotFoundError as exc:
                logger.warning(
                    "stock_overview_scope_not_found",
                    extra={"error_code": exc.code, "error_message": str(exc)},
                )
                return StockOverviewResult(
                    status=OverviewStatus.NOT_FOUND,
                    message=str(exc),
                    error_code=exc.code,
                )
            return StockOverviewResult(status=OverviewStatus.SUCCESS, overview=overview)

    def project_on_hand(
        self,
        company_id: UUID,
        project_id: UUID,
        stock_item_id: UUID,
    ) -> Decimal:
        """Replayed on-hand quantity of one item within a project."""
        overview = self.compute_overview(company_id, StockScope.project(company_id, project_id))
        entry = overview.item(stock_item_id)
        return entry.remaining_qty if entry is not None else ZERO

    def get_project_stock_status(
        self,
        company_id: UUID,
        project_id: UUID,
    ) -> ProjectStockStatusResult:
        """Received/used/current totals and the lowest low-stock items."""
        result = self.get_overview(company_id, StockScope.project(company_id, project_id))
        if not result.is_success:
            return ProjectStockStatusResult(
                status=result.status,
                message=result.message,
                error_code=result.error_code,
            )

        overview = result.overview
        received = sum((i.opening_qty + i.received_qty for i in overview.items), ZERO)
        used = sum((i.issued_qty for i in overview.items), ZERO)
        low = sorted(
            (i for i in overview.items if i.is_low_stock),
            key=lambda i: i.remaining_qty,
        )[: self._config.low_stock_top_n]

        return ProjectStockStatusResult(
            status=OverviewStatus.SUCCESS,
            stock_status=ProjectStockStatus(
                received_total=received,
                used_total=used,
                current_balance=overview.summary.total_qty_on_hand,
                low_stock_items=tuple(
                    LowStockItem(
                        stock_item_id=i.stock_item_id,
                        name=i.name,
                        unit=i.unit,
                        current_qty=i.remaining_qty,
                        threshold=i.low_stock_threshold,
                    )
                    for i in low
                ),
            ),
        )
