"""
StockAdjuster -- the Atomic Stock Adjuster, the only stock mutation entry point.

Responsibility:
    Append one movement and update the cached per-item balance atomically,
    re-deriving on-hand quantity and weighted-average cost from the CURRENT
    PERSISTED balance (not a history replay).  Enforces non-negative stock
    and idempotency by external reference.

Architecture position:
    Services -- imperative shell.  Pure arithmetic is in
    compute_adjusted_balance() (and blend_average_cost() from the engines);
    persistence goes through StockRepository.

Adjustment flow (one attempt, one transaction):
    1. Validate the request (quantity > 0, type, kind/type agreement,
       reference pair).
    2. Resolve the stock item (and projects, when given) for the company.
    3. Get-or-create the balance row under lock.
    4. Idempotency: an existing movement with the same (company, item,
       type, reference_type, reference_id) short-circuits to ALREADY_APPLIED
       with the current balance.  Checked after the lock so two identical
       concurrent requests cannot both pass it.
    5. Compute the new balance.  OUT beyond on-hand is rejected, never clamped.
    6. Insert the movement; update the balance (version-checked).

Semantics by type:
    IN      qty added; avg blended with unit_cost when supplied, else unchanged
    OUT     rejected when on-hand < qty; avg unchanged
    ADJUST  qty is the new ABSOLUTE on-hand quantity; avg replaced by
            unit_cost when supplied.  Replay treats ADJUST as a signed delta
            instead, so a live balance and a replayed history can disagree
            after an ADJUST.  StockReconciliationService reports such items.
    Any type: avg is reset to 0 when the new quantity is 0.

Concurrency:
    Writers on the same item serialize on the balance row (FOR UPDATE on
    PostgreSQL, BEGIN IMMEDIATE on SQLite).  The balance ``version`` column
    catches any writer that slipped past the lock.  Duplicate-key races,
    stale versions and lock timeouts surface as TransactionConflictError.
    With auto_commit=True the whole attempt is retried from a rolled-back
    session; with auto_commit=False the conflict is reported to the caller.

Failure modes (all returned as StockAdjustmentResult, never raised):
    VALIDATION_FAILED, INVALID_MOVEMENT_TYPE, NOT_FOUND, INSUFFICIENT_STOCK,
    NEGATIVE_RESULT, CONFLICT.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from stock_config.schema import AdjusterConfig
from stock_engines.weighted_average import blend_average_cost
from stock_kernel.db.types import ZERO, round_avg_cost, to_decimal, to_storage_scale
from stock_kernel.domain.clock import Clock, SystemClock, as_utc
from stock_kernel.domain.movements import BalanceSnapshot, MovementKind, MovementType
from stock_kernel.exceptions import (
    ConcurrencyError,
    InsufficientStockError,
    InvalidMovementTypeError,
    NegativeResultRejectedError,
    NotFoundError,
    ScopeNotFoundError,
    StockItemNotFoundError,
    StockKernelError,
    StockValidationError,
    TransactionConflictError,
)
from stock_kernel.logging_config import LogContext, get_logger
from stock_services.concurrency import CONFLICT_ERRORS, run_with_retry
from stock_services.stock_repository import SqlAlchemyStockRepository, StockRepository

logger = get_logger("services.stock_adjuster")


class AdjustmentStatus(str, Enum):
    """Outcome of one stock adjustment."""

    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    VALIDATION_FAILED = "validation_failed"
    NOT_FOUND = "not_found"
    INSUFFICIENT_STOCK = "insufficient_stock"
    NEGATIVE_RESULT = "negative_result"
    INVALID_MOVEMENT_TYPE = "invalid_movement_type"
    CONFLICT = "conflict"


@dataclass(frozen=True)
class AdjustStockRequest:
    """
    One requested movement.

    ``quantity`` is always positive; direction comes from ``type``.  For
    ADJUST it is the target on-hand quantity.
    """

    company_id: UUID
    stock_item_id: UUID
    type: MovementType | str
    quantity: Decimal | int | str
    actor_id: UUID
    kind: MovementKind | str | None = None
    unit_cost: Decimal | int | str | None = None
    reference_type: str | None = None
    reference_id: str | UUID | None = None
    project_id: UUID | None = None
    source_project_id: UUID | None = None
    destination_project_id: UUID | None = None
    vendor_id: UUID | None = None
    notes: str | None = None
    reason: str | None = None
    approved_by_id: UUID | None = None
    meta: dict[str, Any] | None = None
    movement_date: date | datetime | None = None


@dataclass(frozen=True)
class StockAdjustmentResult:
    """Result of StockAdjuster.adjust_stock()."""

    status: AdjustmentStatus
    movement_id: UUID | None = None
    balance: BalanceSnapshot | None = None
    message: str | None = None
    error_code: str | None = None
    available_quantity: Decimal | None = None
    requested_quantity: Decimal | None = None

    @property
    def is_success(self) -> bool:
        return self.status in (
            AdjustmentStatus.APPLIED,
            AdjustmentStatus.ALREADY_APPLIED,
        )

    @classmethod
    def rejected(cls, exc: StockKernelError) -> StockAdjustmentResult:
        """
        Map a typed kernel error to a failed result.

        Raises:
            TypeError: for kernel errors that are not business rejections.
        """
        available = requested = None
        if isinstance(exc, InvalidMovementTypeError):
            status = AdjustmentStatus.INVALID_MOVEMENT_TYPE
        elif isinstance(exc, StockValidationError):
            status = AdjustmentStatus.VALIDATION_FAILED
        elif isinstance(exc, NotFoundError):
            status = AdjustmentStatus.NOT_FOUND
        elif isinstance(exc, InsufficientStockError):
            status = AdjustmentStatus.INSUFFICIENT_STOCK
            available, requested = exc.available, exc.requested
        elif isinstance(exc, NegativeResultRejectedError):
            status = AdjustmentStatus.NEGATIVE_RESULT
        elif isinstance(exc, ConcurrencyError):
            status = AdjustmentStatus.CONFLICT
        else:
            raise TypeError(f"{type(exc).__name__} is not a stock rejection") from exc
        return cls(
            status=status,
            message=str(exc),
            error_code=exc.code,
            available_quantity=available,
            requested_quantity=requested,
        )


# Kinds that only make sense in one direction.  ADJUSTMENT may go either way.
_KIND_DIRECTION = {
    MovementKind.OPENING: MovementType.IN,
    MovementKind.RECEIVE: MovementType.IN,
    MovementKind.TRANSFER_IN: MovementType.IN,
    MovementKind.RETURN_IN: MovementType.IN,
    MovementKind.ISSUE: MovementType.OUT,
    MovementKind.TRANSFER_OUT: MovementType.OUT,
    MovementKind.WASTAGE: MovementType.OUT,
}


@dataclass(frozen=True)
class _ValidatedAdjustment:
    request: AdjustStockRequest
    type: MovementType
    kind: MovementKind | None
    quantity: Decimal
    unit_cost: Decimal | None
    reference_id: str | None


def _validate(request: AdjustStockRequest) -> _ValidatedAdjustment:
    for field_name in ("company_id", "stock_item_id", "actor_id"):
        if getattr(request, field_name) is None:
            raise StockValidationError(f"{field_name} is required", field=field_name)

    try:
        quantity = to_storage_scale(to_decimal(request.quantity, "quantity"))
    except ValueError as exc:
        raise StockValidationError(str(exc), field="quantity") from exc
    if quantity <= 0:
        raise StockValidationError("Quantity must be positive", field="quantity")

    movement_type = MovementType.parse(request.type)
    if movement_type is None:
        raise InvalidMovementTypeError(str(request.type))

    unit_cost = None
    if request.unit_cost is not None:
        try:
            unit_cost = to_storage_scale(to_decimal(request.unit_cost, "unit_cost"))
        except ValueError as exc:
            raise StockValidationError(str(exc), field="unit_cost") from exc
        if unit_cost < 0:
            raise StockValidationError("Unit cost must not be negative", field="unit_cost")

    kind = None
    if request.kind is not None:
        kind = MovementKind.parse(request.kind)
        if kind is None:
            raise StockValidationError(f"Invalid movement kind: {request.kind}", field="kind")
        expected = _KIND_DIRECTION.get(kind)
        if expected is not None and movement_type is not expected:
            raise StockValidationError(
                f"Movement kind {kind.value} requires type {expected.value}",
                field="kind",
            )

    reference_id = str(request.reference_id) if request.reference_id is not None else None
    if bool(request.reference_type) != bool(reference_id):
        raise StockValidationError(
            "reference_type and reference_id must be supplied together",
            field="reference_id",
        )

    return _ValidatedAdjustment(
        request=request,
        type=movement_type,
        kind=kind,
        quantity=quantity,
        unit_cost=unit_cost,
        reference_id=reference_id,
    )


def compute_adjusted_balance(
    balance: BalanceSnapshot,
    movement_type: MovementType,
    quantity: Decimal,
    unit_cost: Decimal | None = None,
    *,
    unit: str | None = None,
) -> tuple[Decimal, Decimal]:
    """
    New (quantity, avg_cost) after applying one movement to ``balance``.

    Pure.  See the module docstring for per-type semantics.

    Raises:
        InsufficientStockError: OUT with quantity above the on-hand balance.
        NegativeResultRejectedError: the new quantity would be below zero.
        InvalidMovementTypeError: unknown movement type.
    """
    current_qty = balance.quantity
    current_avg = balance.avg_cost

    if movement_type is MovementType.IN:
        new_qty = current_qty + quantity
        if unit_cost is not None:
            new_avg = blend_average_cost(current_qty, current_avg, quantity, unit_cost)
        else:
            new_avg = current_avg
    elif movement_type is MovementType.OUT:
        if current_qty < quantity:
            raise InsufficientStockError(balance.stock_item_id, current_qty, quantity, unit)
        new_qty = current_qty - quantity
        new_avg = current_avg
    elif movement_type is MovementType.ADJUST:
        new_qty = quantity
        new_avg = round_avg_cost(unit_cost) if unit_cost is not None else current_avg
    else:
        raise InvalidMovementTypeError(str(movement_type))

    if new_qty < 0:
        raise NegativeResultRejectedError(balance.stock_item_id, new_qty)
    if new_qty == 0:
        new_avg = ZERO
    return new_qty, new_avg


def _reference_label(request: AdjustStockRequest) -> str | None:
    if request.reference_type and request.reference_id is not None:
        return f"{request.reference_type}:{request.reference_id}"
    return None


class StockAdjuster:
    """
    Atomic Stock Adjuster.

    Contract:
        adjust_stock() applies one AdjustStockRequest and returns a
        StockAdjustmentResult.  Business rejections and exhausted conflicts
        are results, not exceptions.  Only programming errors propagate.

    Guarantees:
        - All-or-nothing: a failed attempt leaves no movement and no balance
          row behind (the attempt runs inside a SAVEPOINT).
        - Exactly-once per idempotency key.
        - With auto_commit=True the adjuster commits on success and rolls
          back on failure.  With auto_commit=False it only flushes, and the
          caller owns the transaction.

    Non-goals:
        - Does not replay history.  See stock_engines.weighted_average.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        auto_commit: bool = True,
        config: AdjusterConfig | None = None,
        repository_factory=SqlAlchemyStockRepository,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._auto_commit = auto_commit
        self._config = config or AdjusterConfig()
        self._repository_factory = repository_factory
        self._sleep = time.sleep

    def adjust_stock(self, request: AdjustStockRequest) -> StockAdjustmentResult:
        """Apply one movement.  See the module docstring for the flow."""
        with LogContext.bind(
            correlation_id=str(uuid4()),
            company_id=str(request.company_id),
            actor_id=str(request.actor_id),
            stock_item_id=str(request.stock_item_id),
            reference=_reference_label(request),
        ):
            logger.info(
                "stock_adjustment_started",
                extra={
                    "movement_type": str(getattr(request.type, "value", request.type)),
                    "movement_kind": str(getattr(request.kind, "value", request.kind)),
                    "quantity": str(request.quantity),
                    "auto_commit": self._auto_commit,
                },
            )
            t0 = time.monotonic()

            try:
                validated = _validate(request)
                if self._auto_commit:
                    result = run_with_retry(
                        lambda: self._attempt_and_commit(validated),
                        attempts=self._config.max_attempts,
                        backoff_base=self._config.backoff_base_seconds,
                        on_retry=self._session.rollback,
                        sleep=self._sleep,
                    )
                else:
                    result = self._attempt(validated)
            except StockKernelError as exc:
                if self._auto_commit:
                    self._session.rollback()
                result = StockAdjustmentResult.rejected(exc)
                logger.warning(
                    "stock_adjustment_rejected",
                    extra={
                        "status": result.status.value,
                        "error_code": result.error_code,
                        "error_message": result.message,
                        "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                    },
                )
                return result
            except Exception:
                if self._auto_commit:
                    self._session.rollback()
                logger.error(
                    "stock_adjustment_failed",
                    extra={"duration_ms": round((time.monotonic() - t0) * 1000, 2)},
                    exc_info=True,
                )
                raise

            logger.info(
                "stock_adjustment_completed",
                extra={
                    "status": result.status.value,
                    "movement_id": str(result.movement_id),
                    "on_hand_qty": str(result.balance.quantity) if result.balance else None,
                    "avg_cost": str(result.balance.avg_cost) if result.balance else None,
                    "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                },
            )
            return result

    def _attempt_and_commit(self, validated: _ValidatedAdjustment) -> StockAdjustmentResult:
        result = self._attempt(validated)
        try:
            self._session.commit()
        except CONFLICT_ERRORS as exc:
            raise TransactionConflictError(
                "StockBalance", str(validated.request.stock_item_id)
            ) from exc
        return result

    def _attempt(self, validated: _ValidatedAdjustment) -> StockAdjustmentResult:
        repository = self._repository_factory(self._session)
        try:
            with self._session.begin_nested():
                return self._apply(repository, validated)
        except CONFLICT_ERRORS as exc:
            raise TransactionConflictError(
                "StockBalance", str(validated.request.stock_item_id)
            ) from exc

    def _apply(
        self,
        repository: StockRepository,
        validated: _ValidatedAdjustment,
    ) -> StockAdjustmentResult:
        request = validated.request
        company_id = request.company_id
        stock_item_id = request.stock_item_id

        item = repository.get_stock_item(company_id, stock_item_id)
        if item is None:
            raise StockItemNotFoundError(company_id, stock_item_id)
        for project_id in (
            request.project_id,
            request.source_project_id,
            request.destination_project_id,
        ):
            if project_id is not None and repository.get_project(company_id, project_id) is None:
                raise ScopeNotFoundError(company_id, project_id)

        balance = repository.get_or_create_balance(company_id, stock_item_id, request.actor_id)

        if request.reference_type and validated.reference_id:
            existing = repository.find_movement_by_reference(
                company_id,
                stock_item_id,
                validated.type.value,
                request.reference_type,
                validated.reference_id,
            )
            if existing is not None:
                logger.info(
                    "stock_adjustment_already_applied",
                    extra={"movement_id": str(existing.id)},
                )
                return StockAdjustmentResult(
                    status=AdjustmentStatus.ALREADY_APPLIED,
                    movement_id=existing.id,
                    balance=balance,
                )

        new_qty, new_avg = compute_adjusted_balance(
            balance,
            validated.type,
            validated.quantity,
            validated.unit_cost,
            unit=item.unit,
        )

        now = self._clock.now()
        movement = repository.create_movement(
            company_id=company_id,
            stock_item_id=stock_item_id,
            movement_date=as_utc(request.movement_date or now),
            created_at=as_utc(now),
            type=validated.type.value,
            kind=validated.kind.value if validated.kind else None,
            quantity=validated.quantity,
            unit_cost=validated.unit_cost,
            project_id=request.project_id,
            source_project_id=request.source_project_id,
            destination_project_id=request.destination_project_id,
            vendor_id=request.vendor_id,
            reference_type=request.reference_type,
            reference_id=validated.reference_id,
            notes=request.notes,
            reason=request.reason,
            approved_by_id=request.approved_by_id,
            approved_at=as_utc(now) if request.approved_by_id else None,
            meta=request.meta,
            created_by_id=request.actor_id,
        )
        updated = repository.upsert_balance(
            company_id, stock_item_id, new_qty, new_avg, request.actor_id
        )
        return StockAdjustmentResult(
            status=AdjustmentStatus.APPLIED,
            movement_id=movement.id,
            balance=updated,
        )


def adjust_stock(
    session: Session,
    request: AdjustStockRequest,
    *,
    clock: Clock | None = None,
    config: AdjusterConfig | None = None,
) -> StockAdjustmentResult:
    """Apply one movement in its own transaction (auto-commit with retry)."""
    return StockAdjuster(session, clock=clock, config=config).adjust_stock(request)
