"""
StockSettingsService -- per-project low-stock thresholds.

Upserts the minimum quantity below which an item is flagged as low stock
in a project overview.  Without a row the item's reorder level applies.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stock_kernel.db.types import to_decimal
from stock_kernel.exceptions import (
    NotFoundError,
    ScopeNotFoundError,
    StockItemNotFoundError,
    StockValidationError,
)
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.models.stock import ProjectStockSetting
from stock_kernel.selectors.reference_selector import StockReferenceSelector
from stock_services.base import BaseService

logger = get_logger("services.stock_settings")


class SettingStatus(str, Enum):
    SAVED = "saved"
    VALIDATION_FAILED = "validation_failed"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class MinQtySettingResult:
    status: SettingStatus
    stock_item_id: UUID | None = None
    min_qty: Decimal | None = None
    message: str | None = None
    error_code: str | None = None

    @property
    def is_success(self) -> bool:
        return self.status == SettingStatus.SAVED


class StockSettingsService(BaseService):
    """Owns its transaction: commit on save, rollback on rejection."""

    def __init__(self, session: Session):
        super().__init__(session)
        self._references = StockReferenceSelector(session)

    def set_min_qty(
        self,
        company_id: UUID,
        project_id: UUID,
        stock_item_id: UUID,
        min_qty: Decimal | int | str,
        actor_id: UUID,
    ) -> MinQtySettingResult:
        with LogContext.bind(company_id=str(company_id), actor_id=str(actor_id)):
            try:
                saved = self._upsert(company_id, project_id, stock_item_id, min_qty, actor_id)
                self.session.commit()
            except StockValidationError as exc:
                self.session.rollback()
                return MinQtySettingResult(
                    status=SettingStatus.VALIDATION_FAILED,
                    message=str(exc),
                    error_code=exc.code,
                )
            except NotFoundError as exc:
                self.session.rollback()
                return MinQtySettingResult(
                    status=SettingStatus.NOT_FOUND,
                    message=str(exc),
                    error_code=exc.code,
                )
            except Exception:
                self.session.rollback()
                raise

            logger.info(
                "stock_min_qty_saved",
                extra={
                    "project_id": str(project_id),
                    "stock_item_id": str(stock_item_id),
                    "min_qty": str(saved),
                },
            )
            return MinQtySettingResult(
                status=SettingStatus.SAVED,
                stock_item_id=stock_item_id,
                min_qty=saved,
            )

    def _upsert(
        self,
        company_id: UUID,
        project_id: UUID,
        stock_item_id: UUID,
        min_qty: Decimal | int | str,
        actor_id: UUID,
    ) -> Decimal:
        try:
            value = to_decimal(min_qty, "min_qty")
        except ValueError as exc:
            raise StockValidationError(str(exc), field="min_qty") from exc
        if value < 0:
            raise StockValidationError("Minimum quantity cannot be negative", field="min_qty")

        if not self._references.project_exists(company_id, project_id):
            raise ScopeNotFoundError(company_id, project_id)
        if self._references.get_stock_item(company_id, stock_item_id) is None:
            raise StockItemNotFoundError(company_id, stock_item_id)

        setting = self.session.execute(
            select(ProjectStockSetting).where(
                ProjectStockSetting.project_id == project_id,
                ProjectStockSetting.stock_item_id == stock_item_id,
            )
        ).scalar_one_or_none()

        if setting is None:
            setting = ProjectStockSetting(
                company_id=company_id,
                project_id=project_id,
                stock_item_id=stock_item_id,
                min_qty=value,
                created_by_id=actor_id,
            )
            self.session.add(setting)
        else:
            setting.min_qty = value
            setting.updated_by_id = actor_id

        try:
            self.session.flush()
        except IntegrityError as exc:
            raise StockValidationError(
                "Threshold was saved concurrently, retry", field="min_qty"
            ) from exc
        return value
