"""
stock_services -- stateful stock services over the kernel and engines.

Every stock-affecting workflow routes through StockAdjuster.  Read-side
reporting replays movement history through stock_engines.
"""

from stock_services.concurrency import CONFLICT_ERRORS, run_with_retry
from stock_services.project_stock_service import (
    OpeningStockLine,
    OpeningStockResult,
    ProjectStockService,
)
from stock_services.purchase_stock_integration import (
    PurchaseDTO,
    PurchaseLineDTO,
    PurchaseStockIntegration,
    PurchaseStockResult,
    PurchaseStockStatus,
)
from stock_services.reconciliation_service import (
    BalanceMismatch,
    ReconciliationReport,
    StockReconciliationService,
)
from stock_services.stock_adjuster import (
    AdjustmentStatus,
    AdjustStockRequest,
    StockAdjuster,
    StockAdjustmentResult,
    adjust_stock,
    compute_adjusted_balance,
)
from stock_services.stock_item_service import (
    StockItemResult,
    StockItemService,
    StockItemStatus,
)
from stock_services.stock_overview_service import (
    LowStockItem,
    OverviewStatus,
    ProjectStockStatus,
    ProjectStockStatusResult,
    StockOverview,
    StockOverviewItem,
    StockOverviewResult,
    StockOverviewService,
    StockOverviewSummary,
)
from stock_services.stock_repository import SqlAlchemyStockRepository, StockRepository
from stock_services.stock_settings_service import (
    MinQtySettingResult,
    SettingStatus,
    StockSettingsService,
)

__all__ = [
    "AdjustStockRequest",
    "AdjustmentStatus",
    "BalanceMismatch",
    "CONFLICT_ERRORS",
    "LowStockItem",
    "MinQtySettingResult",
    "OpeningStockLine",
    "OpeningStockResult",
    "OverviewStatus",
    "ProjectStockService",
    "ProjectStockStatus",
    "ProjectStockStatusResult",
    "PurchaseDTO",
    "PurchaseLineDTO",
    "PurchaseStockIntegration",
    "PurchaseStockResult",
    "PurchaseStockStatus",
    "ReconciliationReport",
    "SettingStatus",
    "SqlAlchemyStockRepository",
    "StockAdjuster",
    "StockAdjustmentResult",
    "StockItemResult",
    "StockItemService",
    "StockItemStatus",
    "StockOverview",
    "StockOverviewItem",
    "StockOverviewResult",
    "StockOverviewService",
    "StockOverviewSummary",
    "StockReconciliationService",
    "StockRepository",
    "StockSettingsService",
    "adjust_stock",
    "compute_adjusted_balance",
    "run_with_retry",
]
