"""
StockItemService -- the company's stock item catalog.

Responsibility:
    Create, edit and delete the materials a company stocks.  Quantities are
    never touched here; they only change through StockAdjuster.

Invariants enforced:
    - Item names are unique per company, compared case-insensitively.
    - A SKU, when given, is unique per company.
    - Reorder level is >= 0 or absent.
    - An item with movements cannot be deleted, only deactivated.

Failure modes (all returned as StockItemResult, never raised):
    VALIDATION_FAILED, DUPLICATE, NOT_FOUND, IN_USE.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stock_kernel.db.types import to_decimal, to_storage_scale
from stock_kernel.domain.movements import StockItemRef
from stock_kernel.exceptions import (
    DuplicateStockItemError,
    NotFoundError,
    ScopeNotFoundError,
    StockItemInUseError,
    StockItemNotFoundError,
    StockKernelError,
    StockValidationError,
)
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.models.stock import (
    ProjectStockSetting,
    StockBalance,
    StockItem,
    StockMovementModel,
)
from stock_kernel.selectors.reference_selector import StockReferenceSelector
from stock_services.base import BaseService

logger = get_logger("services.stock_items")

UPDATABLE_FIELDS = frozenset({"name", "sku", "unit", "category", "reorder_level", "is_active"})


class StockItemStatus(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    VALIDATION_FAILED = "validation_failed"
    DUPLICATE = "duplicate"
    NOT_FOUND = "not_found"
    IN_USE = "in_use"


_SUCCESS = frozenset({StockItemStatus.CREATED, StockItemStatus.UPDATED, StockItemStatus.DELETED})


@dataclass(frozen=True)
class StockItemResult:
    status: StockItemStatus
    item: StockItemRef | None = None
    message: str | None = None
    error_code: str | None = None

    @property
    def is_success(self) -> bool:
        return self.status in _SUCCESS


def _required_text(value: Any, field: str, message: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise StockValidationError(message, field=field)
    return value.strip()


def _optional_text(value: Any, field: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise StockValidationError(f"{field} must be text", field=field)
    return value.strip() or None


def _reorder_level(value: Any) -> Decimal | None:
    if value is None:
        return None
    try:
        level = to_storage_scale(to_decimal(value, "reorder_level"))
    except ValueError as exc:
        raise StockValidationError(str(exc), field="reorder_level") from exc
    if level < 0:
        raise StockValidationError("Reorder level must be non-negative", field="reorder_level")
    return level


def _is_active(value: Any) -> bool:
    if not isinstance(value, bool):
        raise StockValidationError("is_active must be true or false", field="is_active")
    return value


_CLEANERS = {
    "name": lambda v: _required_text(v, "name", "Stock item name is required"),
    "unit": lambda v: _required_text(v, "unit", "Unit is required"),
    "sku": lambda v: _optional_text(v, "sku"),
    "category": lambda v: _optional_text(v, "category"),
    "reorder_level": _reorder_level,
    "is_active": _is_active,
}


class StockItemService(BaseService):
    """Owns its transaction: commit on success, rollback on rejection."""

    def __init__(self, session: Session):
        super().__init__(session)
        self._references = StockReferenceSelector(session)

    def create_item(
        self,
        company_id: UUID,
        actor_id: UUID,
        *,
        name: str,
        unit: str,
        sku: str | None = None,
        category: str | None = None,
        reorder_level: Decimal | int | str | None = None,
        is_active: bool = True,
    ) -> StockItemResult:
        fields = {
            "name": name,
            "unit": unit,
            "sku": sku,
            "category": category,
            "reorder_level": reorder_level,
            "is_active": is_active,
        }
        with LogContext.bind(company_id=str(company_id), actor_id=str(actor_id)):
            return self._run(
                StockItemStatus.CREATED,
                lambda: self._create(company_id, actor_id, fields),
            )

    def update_item(
        self,
        company_id: UUID,
        stock_item_id: UUID,
        actor_id: UUID,
        **changes: Any,
    ) -> StockItemResult:
        """
        Change the given fields and leave the rest alone.

        Accepts any of name, sku, unit, category, reorder_level and
        is_active.  Passing None for sku, category or reorder_level clears
        it.

        Raises:
            TypeError: a field outside that set was passed.
        """
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise TypeError(f"Cannot update stock item fields: {sorted(unknown)}")
        with LogContext.bind(
            company_id=str(company_id),
            actor_id=str(actor_id),
            stock_item_id=str(stock_item_id),
        ):
            return self._run(
                StockItemStatus.UPDATED,
                lambda: self._update(company_id, stock_item_id, actor_id, changes),
            )

    def delete_item(
        self,
        company_id: UUID,
        stock_item_id: UUID,
        actor_id: UUID,
    ) -> StockItemResult:
        """Remove an item that never moved, with its balance and thresholds."""
        with LogContext.bind(
            company_id=str(company_id),
            actor_id=str(actor_id),
            stock_item_id=str(stock_item_id),
        ):
            return self._run(
                StockItemStatus.DELETED,
                lambda: self._delete(company_id, stock_item_id),
            )

    def _run(self, success: StockItemStatus, operation) -> StockItemResult:
        try:
            item = operation()
            self.session.commit()
        except DuplicateStockItemError as exc:
            return self._reject(StockItemStatus.DUPLICATE, exc)
        except StockValidationError as exc:
            return self._reject(StockItemStatus.VALIDATION_FAILED, exc)
        except NotFoundError as exc:
            return self._reject(StockItemStatus.NOT_FOUND, exc)
        except StockItemInUseError as exc:
            return self._reject(StockItemStatus.IN_USE, exc)
        except Exception:
            self.session.rollback()
            raise

        logger.info(
            f"stock_item_{success.value}",
            extra={"stock_item_id": str(item.id), "item_name": item.name},
        )
        return StockItemResult(status=success, item=item)

    def _reject(self, status: StockItemStatus, exc: StockKernelError) -> StockItemResult:
        self.session.rollback()
        logger.warning(
            "stock_item_rejected",
            extra={"status": status.value, "error_code": exc.code, "error_message": str(exc)},
        )
        return StockItemResult(status=status, message=str(exc), error_code=exc.code)

    def _create(self, company_id: UUID, actor_id: UUID, fields: dict[str, Any]) -> StockItemRef:
        values = {key: _CLEANERS[key](value) for key, value in fields.items()}
        if not self._references.company_exists(company_id):
            raise ScopeNotFoundError(company_id)
        self._check_unique(company_id, values, exclude_id=None)

        row = StockItem(company_id=company_id, created_by_id=actor_id, **values)
        self.session.add(row)
        self._flush()
        return StockItemRef.from_model(row)

    def _update(
        self,
        company_id: UUID,
        stock_item_id: UUID,
        actor_id: UUID,
        changes: dict[str, Any],
    ) -> StockItemRef:
        values = {key: _CLEANERS[key](value) for key, value in changes.items()}
        row = self._load(company_id, stock_item_id)
        self._check_unique(company_id, values, exclude_id=stock_item_id)

        for key, value in values.items():
            setattr(row, key, value)
        row.updated_by_id = actor_id
        self._flush()
        return StockItemRef.from_model(row)

    def _delete(self, company_id: UUID, stock_item_id: UUID) -> StockItemRef:
        row = self._load(company_id, stock_item_id)
        movements = self.session.execute(
            select(func.count())
            .select_from(StockMovementModel)
            .where(
                StockMovementModel.company_id == company_id,
                StockMovementModel.stock_item_id == stock_item_id,
            )
        ).scalar_one()
        if movements:
            raise StockItemInUseError(stock_item_id, movements)

        ref = StockItemRef.from_model(row)
        self.session.execute(
            delete(StockBalance).where(StockBalance.stock_item_id == stock_item_id)
        )
        self.session.execute(
            delete(ProjectStockSetting).where(ProjectStockSetting.stock_item_id == stock_item_id)
        )
        self.session.delete(row)
        self.session.flush()
        return ref

    def _load(self, company_id: UUID, stock_item_id: UUID) -> StockItem:
        row = self.session.execute(
            select(StockItem).where(
                StockItem.id == stock_item_id,
                StockItem.company_id == company_id,
            )
        ).scalar_one_or_none()
        if row is None:
            raise StockItemNotFoundError(company_id, stock_item_id)
        return row

    def _check_unique(
        self,
        company_id: UUID,
        values: dict[str, Any],
        exclude_id: UUID | None,
    ) -> None:
        name = values.get("name")
        if name and self._references.find_item_by_name(company_id, name, exclude_id=exclude_id):
            raise DuplicateStockItemError("name", name)
        sku = values.get("sku")
        if sku and self._references.find_item_by_sku(company_id, sku, exclude_id=exclude_id):
            raise DuplicateStockItemError("sku", sku)

    def _flush(self) -> None:
        try:
            self.session.flush()
        except IntegrityError as exc:
            raise StockValidationError(
                "Stock item was saved concurrently, retry", field="name"
            ) from exc
