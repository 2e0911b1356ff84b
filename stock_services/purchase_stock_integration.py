"""
PurchaseStockIntegration -- stock receipts for posted purchases and their
reversal.

Responsibility:
    When a purchase is posted, receive every material line into stock
    (IN, kind RECEIVE).  When it is reversed, take the same quantities back
    out with plain OUT movements referencing PURCHASE_REVERSAL.

Architecture position:
    Services.  The purchase arrives as a DTO; voucher posting and its
    journal entries live elsewhere.  Every movement goes through
    StockAdjuster inside one transaction per purchase.

Invariants enforced:
    - Idempotent per (item, purchase): a purchase posted twice receives its
      stock once, and a reversal applied twice removes it once.  A second
      material line for an item already received under the same purchase
      is skipped the same way.
    - Line-level failures (bad quantity, unknown item, insufficient stock on
      reversal) are logged and skipped.  Other lines still apply.

Failure modes:
    - NOT_FOUND when the purchase belongs to another company.
    - INVALID_STATUS when the purchase is not POSTED.
    - CONFLICT when retries are exhausted.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy.orm import Session

from stock_config.schema import AdjusterConfig
from stock_kernel.db.types import ZERO, to_decimal, to_storage_scale
from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.movements import MovementKind, MovementType, ReferenceType
from stock_kernel.exceptions import StockKernelError, TransactionConflictError
from stock_kernel.logging_config import LogContext, get_logger
from stock_services.concurrency import CONFLICT_ERRORS, run_with_retry
from stock_services.stock_adjuster import (
    AdjustmentStatus,
    AdjustStockRequest,
    StockAdjuster,
)
from stock_services.stock_repository import SqlAlchemyStockRepository

logger = get_logger("services.purchase_stock")

MATERIAL_LINE = "MATERIAL"
POSTED = "POSTED"


@dataclass(frozen=True)
class PurchaseLineDTO:
    id: UUID
    line_type: str
    stock_item_id: UUID | None = None
    quantity: Decimal | None = None
    unit_rate: Decimal | None = None
    line_total: Decimal | None = None

    @property
    def unit_cost(self) -> Decimal:
        """Unit rate when given, else line total / quantity at column scale, else 0."""
        if self.unit_rate is not None:
            return to_decimal(self.unit_rate, "unit_rate")
        if self.line_total is not None and self.quantity:
            return to_storage_scale(
                to_decimal(self.line_total, "line_total") / to_decimal(self.quantity, "quantity")
            )
        return ZERO


@dataclass(frozen=True)
class PurchaseDTO:
    id: UUID
    company_id: UUID
    status: str
    date: date | datetime
    lines: tuple[PurchaseLineDTO, ...] = ()
    project_id: UUID | None = None
    vendor_id: UUID | None = None
    challan_no: str | None = None

    @property
    def label(self) -> str:
        return self.challan_no or str(self.id)


class PurchaseStockStatus(str, Enum):
    SUCCESS = "success"
    NOT_FOUND = "not_found"
    INVALID_STATUS = "invalid_status"
    CONFLICT = "conflict"


@dataclass(frozen=True)
class PurchaseStockResult:
    status: PurchaseStockStatus
    movements_created: int = 0
    message: str | None = None

    @property
    def is_success(self) -> bool:
        return self.status == PurchaseStockStatus.SUCCESS


class PurchaseStockIntegration:
    """Receives and reverses purchase stock through the adjuster."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: AdjusterConfig | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._config = config or AdjusterConfig()
        self._adjuster = StockAdjuster(
            session, clock=self._clock, auto_commit=False, config=self._config
        )
        self._sleep = time.sleep

    def _in_transaction(self, purchase_id: UUID, work) -> PurchaseStockResult:
        def attempt() -> int:
            created = work()
            try:
                self._session.commit()
            except CONFLICT_ERRORS as exc:
                raise TransactionConflictError("Purchase", str(purchase_id)) from exc
            return created

        try:
            created = run_with_retry(
                attempt,
                attempts=self._config.max_attempts,
                backoff_base=self._config.backoff_base_seconds,
                on_retry=self._session.rollback,
                sleep=self._sleep,
            )
        except StockKernelError as exc:
            self._session.rollback()
            logger.warning(
                "purchase_stock_conflict",
                extra={"purchase_id": str(purchase_id), "error_message": str(exc)},
            )
            return PurchaseStockResult(status=PurchaseStockStatus.CONFLICT, message=str(exc))
        except Exception:
            self._session.rollback()
            logger.error(
                "purchase_stock_failed",
                extra={"purchase_id": str(purchase_id)},
                exc_info=True,
            )
            raise
        return PurchaseStockResult(status=PurchaseStockStatus.SUCCESS, movements_created=created)

    def _apply(self, request: AdjustStockRequest, line_ref: str) -> bool:
        result = self._adjuster.adjust_stock(request)
        if result.status == AdjustmentStatus.CONFLICT:
            raise TransactionConflictError("StockBalance", str(request.stock_item_id))
        if result.status == AdjustmentStatus.APPLIED:
            return True
        if not result.is_success:
            logger.warning(
                "purchase_stock_line_skipped",
                extra={
                    "line": line_ref,
                    "status": result.status.value,
                    "error_message": result.message,
                },
            )
        return False

    def record_posted_purchase(
        self,
        company_id: UUID,
        actor_id: UUID,
        purchase: PurchaseDTO,
    ) -> PurchaseStockResult:
        """
        Receive stock for every material line of a posted purchase.

        Returns the number of movements created by this call (0 when the
        purchase was already received).
        """
        if purchase.company_id != company_id:
            return PurchaseStockResult(
                status=PurchaseStockStatus.NOT_FOUND, message="Purchase not found"
            )
        if purchase.status != POSTED:
            return PurchaseStockResult(
                status=PurchaseStockStatus.INVALID_STATUS,
                message="Purchase must be POSTED to create stock movements",
            )

        def work() -> int:
            created = 0
            for line in purchase.lines:
                if line.line_type != MATERIAL_LINE or line.stock_item_id is None:
                    continue
                if line.quantity is None or line.quantity <= 0:
                    logger.warning(
                        "purchase_stock_line_skipped",
                        extra={"line": str(line.id), "status": "invalid_quantity"},
                    )
                    continue
                request = AdjustStockRequest(
                    company_id=company_id,
                    stock_item_id=line.stock_item_id,
                    type=MovementType.IN,
                    kind=MovementKind.RECEIVE,
                    quantity=line.quantity,
                    unit_cost=line.unit_cost,
                    reference_type=ReferenceType.PURCHASE_VOUCHER,
                    reference_id=str(purchase.id),
                    project_id=purchase.project_id,
                    vendor_id=purchase.vendor_id,
                    notes=f"Purchase: {purchase.label}",
                    actor_id=actor_id,
                    movement_date=purchase.date,
                )
                if self._apply(request, str(line.id)):
                    created += 1
            return created

        with LogContext.bind(
            company_id=str(company_id),
            actor_id=str(actor_id),
            reference=f"{ReferenceType.PURCHASE_VOUCHER}:{purchase.id}",
        ):
            result = self._in_transaction(purchase.id, work)
            logger.info(
                "purchase_stock_received",
                extra={"status": result.status.value, "movements_created": result.movements_created},
            )
            return result

    def reverse_purchase(
        self,
        company_id: UUID,
        actor_id: UUID,
        purchase_id: UUID,
        *,
        label: str | None = None,
    ) -> PurchaseStockResult:
        """Take back out every quantity received under the purchase."""

        def work() -> int:
            repository = SqlAlchemyStockRepository(self._session)
            originals = repository.find_movements_by_reference(
                company_id,
                ReferenceType.PURCHASE_VOUCHER,
                str(purchase_id),
                movement_type=MovementType.IN.value,
            )
            reversed_count = 0
            for original in originals:
                request = AdjustStockRequest(
                    company_id=company_id,
                    stock_item_id=original.stock_item_id,
                    type=MovementType.OUT,
                    quantity=original.quantity,
                    reference_type=ReferenceType.PURCHASE_REVERSAL,
                    reference_id=str(purchase_id),
                    project_id=original.project_id,
                    notes=f"Reversal of purchase: {label or purchase_id}",
                    actor_id=actor_id,
                    movement_date=self._clock.now(),
                )
                if self._apply(request, str(original.id)):
                    reversed_count += 1
            return reversed_count

        with LogContext.bind(
            company_id=str(company_id),
            actor_id=str(actor_id),
            reference=f"{ReferenceType.PURCHASE_REVERSAL}:{purchase_id}",
        ):
            result = self._in_transaction(purchase_id, work)
            logger.info(
                "purchase_stock_reversed",
                extra={"status": result.status.value, "movements_created": result.movements_created},
            )
            return result
