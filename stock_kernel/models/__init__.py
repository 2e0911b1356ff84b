"""ORM models for the stock kernel."""

from stock_kernel.models.organization import Company, Project
from stock_kernel.models.stock import (
    ProjectStockSetting,
    StockBalance,
    StockItem,
    StockMovementModel,
)

__all__ = [
    "Company",
    "Project",
    "StockItem",
    "StockMovementModel",
    "StockBalance",
    "ProjectStockSetting",
]
