"""
StockReconciliationService -- compare persisted balances with replayed
history.

Responsibility:
    Replay every movement of a company and compare each item's replayed
    on-hand quantity and average cost with its cached stock_balances row.

Architecture position:
    Services -- read-only.  Uses the same replay engine as the overview, so
    any difference comes from the write path, not from report math.

Why mismatches occur:
    The adjuster treats ADJUST as an absolute quantity while replay treats it
    as a signed delta.  The adjuster blends cost against the persisted
    balance while replay blends against replayed state, and replay clamps
    outflows at zero where the adjuster rejects them.  Items touched by an
    ADJUST movement are the usual source of reported drift.

Audit relevance:
    Each mismatch is logged as ``stock_balance_mismatch`` at WARNING.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from stock_engines.weighted_average import replay_movements
from stock_kernel.db.types import ZERO
from stock_kernel.domain.movements import BalanceSnapshot
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.selectors.balance_selector import StockBalanceSelector
from stock_kernel.selectors.movement_selector import StockMovementSelector

logger = get_logger("services.stock_reconciliation")


@dataclass(frozen=True)
class BalanceMismatch:
    stock_item_id: UUID
    persisted_qty: Decimal
    replayed_qty: Decimal
    persisted_avg_cost: Decimal
    replayed_avg_cost: Decimal

    @property
    def qty_difference(self) -> Decimal:
        return self.persisted_qty - self.replayed_qty


@dataclass(frozen=True)
class ReconciliationReport:
    company_id: UUID
    items_checked: int
    mismatches: tuple[BalanceMismatch, ...] = ()

    @property
    def is_consistent(self) -> bool:
        return not self.mismatches


class StockReconciliationService:
    def __init__(self, session: Session):
        self._movements = StockMovementSelector(session)
        self._balances = StockBalanceSelector(session)

    def reconcile(self, company_id: UUID) -> ReconciliationReport:
        with LogContext.bind(company_id=str(company_id)):
            states = replay_movements(self._movements.movements_for_company(company_id))
            persisted = self._balances.balances_by_item(company_id)

            mismatches = []
            for item_id in sorted(set(states) | set(persisted), key=str):
                balance = persisted.get(item_id) or BalanceSnapshot.empty(item_id)
                state = states.get(item_id)
                replayed_qty = state.on_hand_qty if state else ZERO
                replayed_avg = state.avg_cost if state else ZERO
                if balance.quantity == replayed_qty and balance.avg_cost == replayed_avg:
                    continue
                mismatch = BalanceMismatch(
                    stock_item_id=item_id,
                    persisted_qty=balance.quantity,
                    replayed_qty=replayed_qty,
                    persisted_avg_cost=balance.avg_cost,
                    replayed_avg_cost=replayed_avg,
                )
                mismatches.append(mismatch)
                logger.warning(
                    "stock_balance_mismatch",
                    extra={
                        "stock_item_id": str(item_id),
                        "persisted_qty": str(mismatch.persisted_qty),
                        "replayed_qty": str(mismatch.replayed_qty),
                        "persisted_avg_cost": str(mismatch.persisted_avg_cost),
                        "replayed_avg_cost": str(mismatch.replayed_avg_cost),
                    },
                )

            report = ReconciliationReport(
                company_id=company_id,
                items_checked=len(set(states) | set(persisted)),
                mismatches=tuple(mismatches),
            )
            logger.info(
                "stock_reconciliation_completed",
                extra={
                    "items_checked": report.items_checked,
                    "mismatch_count": len(report.mismatches),
                },
            )
            return report
