"""Read-only query selectors."""

from stock_kernel.selectors.balance_selector import BalanceRow, StockBalanceSelector
from stock_kernel.selectors.base import BaseSelector
from stock_kernel.selectors.movement_selector import StockMovementSelector
from stock_kernel.selectors.reference_selector import StockReferenceSelector

__all__ = [
    "BaseSelector",
    "BalanceRow",
    "StockBalanceSelector",
    "StockMovementSelector",
    "StockReferenceSelector",
]
