"""
ProjectStockService -- project stock forms: opening stock, issue, wastage
and manual adjustment.

Responsibility:
    Turn each form submission into one or more adjuster requests with the
    right movement kind, reference and approval stamps, and run them in a
    single transaction owned by this service.

Architecture position:
    Services.  Every mutation goes through StockAdjuster (auto_commit=False),
    so the movement kind and metadata are written in the same insert as the
    movement.  There is no follow-up UPDATE of the movement row.

Invariants enforced:
    - Each public method owns its transaction: commit on success, rollback
      on any failure.  Opening stock is all-or-nothing across its lines.
    - Issue checks the project's replayed on-hand quantity after taking the
      balance lock, so a concurrent issue cannot slip between check and write.
    - Opening stock is recorded once per project (reference OPENING_STOCK /
      project id).  A second submission returns ALREADY_APPLIED.
    - Wastage and adjustment require a reason and are auto-approved by the
      acting user.

Failure modes:
    Returned as results with an AdjustmentStatus.  Transaction conflicts are
    retried up to the configured attempt limit, then reported as CONFLICT.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, TypeVar
from uuid import UUID

from sqlalchemy.orm import Session

from stock_config.schema import AdjusterConfig, ReportingConfig
from stock_kernel.db.types import ZERO, to_decimal, to_storage_scale
from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.movements import MovementKind, MovementType, ReferenceType
from stock_kernel.exceptions import (
    InsufficientStockError,
    StockItemNotFoundError,
    StockKernelError,
    StockValidationError,
    TransactionConflictError,
)
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.selectors.movement_selector import StockMovementSelector
from stock_services.concurrency import CONFLICT_ERRORS, run_with_retry
from stock_services.stock_adjuster import (
    AdjustmentStatus,
    AdjustStockRequest,
    StockAdjuster,
    StockAdjustmentResult,
)
from stock_services.stock_overview_service import StockOverviewService
from stock_services.stock_repository import SqlAlchemyStockRepository

logger = get_logger("services.project_stock")

R = TypeVar("R")


@dataclass(frozen=True)
class OpeningStockLine:
    stock_item_id: UUID
    quantity: Decimal | int | str
    unit_cost: Decimal | int | str
    notes: str | None = None


@dataclass(frozen=True)
class OpeningStockResult:
    status: AdjustmentStatus
    movement_ids: tuple[UUID, ...] = ()
    message: str | None = None
    error_code: str | None = None

    @property
    def is_success(self) -> bool:
        return self.status in (
            AdjustmentStatus.APPLIED,
            AdjustmentStatus.ALREADY_APPLIED,
        )

    @property
    def lines_created(self) -> int:
        return len(self.movement_ids) if self.status == AdjustmentStatus.APPLIED else 0

    @classmethod
    def from_adjustment(cls, result: StockAdjustmentResult) -> OpeningStockResult:
        return cls(status=result.status, message=result.message, error_code=result.error_code)


@dataclass
class _MergedLine:
    stock_item_id: UUID
    quantity: Decimal
    unit_cost: Decimal
    notes: str | None


def _positive(value: Any, field: str) -> Decimal:
    try:
        amount = to_decimal(value, field)
    except ValueError as exc:
        raise StockValidationError(str(exc), field=field) from exc
    if amount <= 0:
        raise StockValidationError("Quantity must be greater than 0", field=field)
    return amount


def _require_reason(reason: str | None) -> str:
    if reason is None or not reason.strip():
        raise StockValidationError("A reason is required", field="reason")
    return reason.strip()


def merge_opening_lines(lines: Sequence[OpeningStockLine]) -> list[_MergedLine]:
    """
    Validate opening lines and merge repeats of the same item.

    Repeated items collapse into one line whose unit cost is the
    quantity-weighted mean of the merged lines.  Notes are joined with "; ".
    """
    if not lines:
        raise StockValidationError("At least one opening stock line is required", field="lines")

    merged: dict[UUID, _MergedLine] = {}
    for line in lines:
        if line.stock_item_id is None:
            raise StockValidationError("Each line needs a stock item", field="stock_item_id")
        quantity = _positive(line.quantity, "quantity")
        if line.unit_cost is None:
            raise StockValidationError("Each line needs a unit cost", field="unit_cost")
        try:
            unit_cost = to_decimal(line.unit_cost, "unit_cost")
        except ValueError as exc:
            raise StockValidationError(str(exc), field="unit_cost") from exc
        if unit_cost < 0:
            raise StockValidationError("Unit cost cannot be negative", field="unit_cost")

        current = merged.get(line.stock_item_id)
        if current is None:
            merged[line.stock_item_id] = _MergedLine(
                line.stock_item_id, quantity, unit_cost, line.notes or None
            )
            continue
        total_qty = current.quantity + quantity
        total_value = current.quantity * current.unit_cost + quantity * unit_cost
        current.quantity = total_qty
        current.unit_cost = to_storage_scale(total_value / total_qty)
        if line.notes:
            current.notes = f"{current.notes}; {line.notes}" if current.notes else line.notes
    return list(merged.values())


class ProjectStockService:
    """
    Project stock forms.

    Contract:
        Every method returns a result; nothing but programming errors is
        raised.  The session must not have pending work from the caller.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        adjuster_config: AdjusterConfig | None = None,
        reporting_config: ReportingConfig | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._config = adjuster_config or AdjusterConfig()
        self._adjuster = StockAdjuster(
            session, clock=self._clock, auto_commit=False, config=self._config
        )
        self._overview = StockOverviewService(session, reporting_config)
        self._movements = StockMovementSelector(session)
        self._sleep = time.sleep

    # -- transaction handling ------------------------------------------------

    def _run(
        self,
        operation: str,
        work: Callable[[], R],
        failure: Callable[[StockKernelError], R],
    ) -> R:
        """
        Run ``work`` in its own transaction, retrying on conflicts.

        ``work`` returns a result with ``status``/``is_success``.  Successful
        results are committed, unsuccessful ones rolled back.  A CONFLICT
        result is turned back into an exception so it is retried.
        """

        def attempt() -> R:
            result = work()
            if result.status == AdjustmentStatus.CONFLICT:
                self._session.rollback()
                raise TransactionConflictError("StockBalance", operation)
            if not result.is_success:
                self._session.rollback()
                return result
            try:
                self._session.commit()
            except CONFLICT_ERRORS as exc:
                raise TransactionConflictError("StockBalance", operation) from exc
            return result

        try:
            result = run_with_retry(
                attempt,
                attempts=self._config.max_attempts,
                backoff_base=self._config.backoff_base_seconds,
                on_retry=self._session.rollback,
                sleep=self._sleep,
            )
        except StockKernelError as exc:
            self._session.rollback()
            logger.warning(
                "project_stock_rejected",
                extra={"operation": operation, "error_code": exc.code, "error_message": str(exc)},
            )
            return failure(exc)
        except Exception:
            self._session.rollback()
            logger.error("project_stock_failed", extra={"operation": operation}, exc_info=True)
            raise

        logger.info(
            "project_stock_recorded",
            extra={"operation": operation, "status": result.status.value},
        )
        return result

    # -- forms ---------------------------------------------------------------

    def record_opening_stock(
        self,
        company_id: UUID,
        project_id: UUID,
        actor_id: UUID,
        opening_date: date | datetime,
        lines: Sequence[OpeningStockLine],
    ) -> OpeningStockResult:
        """
        Record a project's opening stock in one transaction.

        Each item becomes one IN movement of kind OPENING dated
        ``opening_date``.  If the project already has opening stock the
        existing movement ids are returned with ALREADY_APPLIED.
        """
        with LogContext.bind(company_id=str(company_id), actor_id=str(actor_id)):
            try:
                merged = merge_opening_lines(lines)
            except StockValidationError as exc:
                return OpeningStockResult.from_adjustment(StockAdjustmentResult.rejected(exc))

            reference_id = str(project_id)

            def work() -> OpeningStockResult:
                existing = [
                    m
                    for m in self._movements.find_by_reference(
                        company_id,
                        ReferenceType.OPENING_STOCK,
                        reference_id,
                        movement_type=MovementType.IN.value,
                    )
                    if m.project_id == project_id
                ]
                if existing:
                    return OpeningStockResult(
                        status=AdjustmentStatus.ALREADY_APPLIED,
                        movement_ids=tuple(m.id for m in existing),
                    )

                movement_ids = []
                for line in merged:
                    result = self._adjuster.adjust_stock(
                        AdjustStockRequest(
                            company_id=company_id,
                            stock_item_id=line.stock_item_id,
                            type=MovementType.IN,
                            kind=MovementKind.OPENING,
                            quantity=line.quantity,
                            unit_cost=line.unit_cost,
                            project_id=project_id,
                            reference_type=ReferenceType.OPENING_STOCK,
                            reference_id=reference_id,
                            notes=line.notes,
                            actor_id=actor_id,
                            movement_date=opening_date,
                        )
                    )
                    if not result.is_success:
                        return OpeningStockResult.from_adjustment(result)
                    movement_ids.append(result.movement_id)
                return OpeningStockResult(
                    status=AdjustmentStatus.APPLIED,
                    movement_ids=tuple(movement_ids),
                )

            return self._run(
                "record_opening_stock",
                work,
                lambda exc: OpeningStockResult.from_adjustment(StockAdjustmentResult.rejected(exc)),
            )

    def issue_stock(
        self,
        company_id: UUID,
        project_id: UUID,
        actor_id: UUID,
        stock_item_id: UUID,
        quantity: Decimal | int | str,
        *,
        movement_date: date | datetime | None = None,
        notes: str | None = None,
        meta: dict[str, Any] | None = None,
    ) -> StockAdjustmentResult:
        """Issue stock out of a project (OUT, kind ISSUE)."""
        with LogContext.bind(company_id=str(company_id), actor_id=str(actor_id)):
            try:
                requested = _positive(quantity, "quantity")
            except StockValidationError as exc:
                return StockAdjustmentResult.rejected(exc)

            def work() -> StockAdjustmentResult:
                repository = SqlAlchemyStockRepository(self._session)
                item = repository.get_stock_item(company_id, stock_item_id)
                if item is None:
                    raise StockItemNotFoundError(company_id, stock_item_id)
                # Serialize with other writers of this item before reading.
                repository.get_balance(company_id, stock_item_id, lock=True)

                available = self._overview.project_on_hand(company_id, project_id, stock_item_id)
                if available < requested:
                    return StockAdjustmentResult.rejected(
                        InsufficientStockError(stock_item_id, available, requested, item.unit)
                    )
                return self._adjuster.adjust_stock(
                    AdjustStockRequest(
                        company_id=company_id,
                        stock_item_id=stock_item_id,
                        type=MovementType.OUT,
                        kind=MovementKind.ISSUE,
                        quantity=requested,
                        project_id=project_id,
                        notes=notes,
                        meta=meta,
                        actor_id=actor_id,
                        movement_date=movement_date,
                    )
                )

            return self._run("issue_stock", work, StockAdjustmentResult.rejected)

    def record_wastage(
        self,
        company_id: UUID,
        project_id: UUID,
        actor_id: UUID,
        stock_item_id: UUID,
        quantity: Decimal | int | str,
        reason: str,
        *,
        movement_date: date | datetime | None = None,
    ) -> StockAdjustmentResult:
        """Record wasted stock (OUT, kind WASTAGE), auto-approved."""
        with LogContext.bind(company_id=str(company_id), actor_id=str(actor_id)):
            try:
                reason = _require_reason(reason)
            except StockValidationError as exc:
                return StockAdjustmentResult.rejected(exc)

            request = AdjustStockRequest(
                company_id=company_id,
                stock_item_id=stock_item_id,
                type=MovementType.OUT,
                kind=MovementKind.WASTAGE,
                quantity=quantity,
                project_id=project_id,
                notes=reason,
                reason=reason,
                approved_by_id=actor_id,
                actor_id=actor_id,
                movement_date=movement_date,
            )
            return self._run(
                "record_wastage",
                lambda: self._adjuster.adjust_stock(request),
                StockAdjustmentResult.rejected,
            )

    def record_adjustment(
        self,
        company_id: UUID,
        project_id: UUID,
        actor_id: UUID,
        stock_item_id: UUID,
        quantity: Decimal | int | str,
        reason: str,
        *,
        unit_cost: Decimal | int | str | None = None,
        movement_date: date | datetime | None = None,
    ) -> StockAdjustmentResult:
        """
        Record a manual correction, auto-approved.

        ``quantity`` is signed: positive adds stock (IN, valued at
        ``unit_cost`` when given), negative removes ``|quantity|`` (OUT).
        """
        with LogContext.bind(company_id=str(company_id), actor_id=str(actor_id)):
            try:
                reason = _require_reason(reason)
                try:
                    signed = to_decimal(quantity, "quantity")
                except ValueError as exc:
                    raise StockValidationError(str(exc), field="quantity") from exc
                if signed == 0:
                    raise StockValidationError("Adjustment quantity must not be zero", field="quantity")
            except StockValidationError as exc:
                return StockAdjustmentResult.rejected(exc)

            request = AdjustStockRequest(
                company_id=company_id,
                stock_item_id=stock_item_id,
                type=MovementType.IN if signed > ZERO else MovementType.OUT,
                kind=MovementKind.ADJUSTMENT,
                quantity=abs(signed),
                unit_cost=unit_cost if signed > ZERO else None,
                project_id=project_id,
                notes=reason,
                reason=reason,
                approved_by_id=actor_id,
                actor_id=actor_id,
                movement_date=movement_date,
            )
            return self._run(
                "record_adjustment",
                lambda: self._adjuster.adjust_stock(request),
                StockAdjustmentResult.rejected,
            )
