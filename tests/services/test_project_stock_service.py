"""
Tests for the project stock forms.

Covers:
- Opening stock: merge of repeated items, all-or-nothing, once per project
- Issue: checked against the project's replayed on-hand quantity
- Wastage and adjustment: reason required, auto-approval stamps
- Signed manual adjustment written as IN or OUT with kind ADJUSTMENT
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from stock_kernel.domain.clock import as_utc
from stock_kernel.domain.movements import MovementKind, MovementType, StockScope
from stock_kernel.exceptions import StockValidationError
from stock_kernel.models.stock import StockMovementModel
from stock_kernel.selectors.balance_selector import StockBalanceSelector
from stock_services.project_stock_service import (
    OpeningStockLine,
    ProjectStockService,
    merge_opening_lines,
)
from stock_services.reconciliation_service import StockReconciliationService
from stock_services.stock_adjuster import AdjustmentStatus
from stock_services.stock_overview_service import StockOverviewService


@pytest.fixture
def forms(session, deterministic_clock, fast_retry_config):
    service = ProjectStockService(
        session, clock=deterministic_clock, adjuster_config=fast_retry_config
    )
    service._sleep = lambda _: None
    return service


def balance(session, company_id, stock_item_id):
    return StockBalanceSelector(session).get_balance(company_id, stock_item_id)


def project_item(session, company_id, project_id, stock_item_id):
    overview = StockOverviewService(session).compute_overview(
        company_id, StockScope.project(company_id, project_id)
    )
    return overview.item(stock_item_id)


class TestMergeOpeningLines:
    def test_repeated_items_merge_with_weighted_cost(self):
        item = uuid4()
        merged = merge_opening_lines([
            OpeningStockLine(item, 10, 100, notes="Shed"),
            OpeningStockLine(item, 30, 200, notes="Yard"),
        ])
        assert len(merged) == 1
        assert merged[0].quantity == Decimal("40")
        assert merged[0].unit_cost == Decimal("175")
        assert merged[0].notes == "Shed; Yard"

    def test_empty_submission(self):
        with pytest.raises(StockValidationError):
            merge_opening_lines([])

    @pytest.mark.parametrize("quantity", [0, -1, "abc"])
    def test_bad_quantity(self, quantity):
        with pytest.raises(StockValidationError):
            merge_opening_lines([OpeningStockLine(uuid4(), quantity, 1)])

    def test_negative_cost(self):
        with pytest.raises(StockValidationError):
            merge_opening_lines([OpeningStockLine(uuid4(), 1, -1)])


class TestOpeningStock:
    def test_records_one_opening_movement_per_item(
        self, forms, session, company_id, project_id, cement_id, steel_id, test_actor_id
    ):
        result = forms.record_opening_stock(
            company_id,
            project_id,
            test_actor_id,
            date(2024, 1, 1),
            [
                OpeningStockLine(cement_id, 10, 100),
                OpeningStockLine(steel_id, 200, "55.5"),
                OpeningStockLine(cement_id, 10, 200),
            ],
        )

        assert result.status is AdjustmentStatus.APPLIED
        assert result.lines_created == 2
        cement_row = session.get(StockMovementModel, result.movement_ids[0])
        assert cement_row.kind == MovementKind.OPENING.value
        assert cement_row.type == MovementType.IN.value
        assert cement_row.reference_type == "OPENING_STOCK"
        assert cement_row.reference_id == str(project_id)
        assert as_utc(cement_row.movement_date) == datetime(2024, 1, 1, tzinfo=timezone.utc)

        cement = project_item(session, company_id, project_id, cement_id)
        assert cement.opening_qty == Decimal("20")
        assert cement.opening_value == Decimal("3000")
        assert cement.avg_cost == Decimal("150")
        assert balance(session, company_id, cement_id).avg_cost == Decimal("150")

    def test_second_submission_is_already_applied(
        self, forms, session, company_id, project_id, cement_id, test_actor_id
    ):
        first = forms.record_opening_stock(
            company_id, project_id, test_actor_id, date(2024, 1, 1), [OpeningStockLine(cement_id, 10, 100)]
        )
        second = forms.record_opening_stock(
            company_id, project_id, test_actor_id, date(2024, 1, 2), [OpeningStockLine(cement_id, 99, 1)]
        )

        assert second.status is AdjustmentStatus.ALREADY_APPLIED
        assert second.is_success
        assert second.lines_created == 0
        assert second.movement_ids == first.movement_ids
        assert balance(session, company_id, cement_id).quantity == Decimal("10")

    def test_each_project_has_its_own_opening(
        self, forms, company_id, project_id, other_project_id, cement_id, test_actor_id
    ):
        forms.record_opening_stock(
            company_id, project_id, test_actor_id, date(2024, 1, 1), [OpeningStockLine(cement_id, 1, 1)]
        )
        other = forms.record_opening_stock(
            company_id, other_project_id, test_actor_id, date(2024, 1, 1), [OpeningStockLine(cement_id, 1, 1)]
        )
        assert other.status is AdjustmentStatus.APPLIED

    def test_unknown_item_rolls_back_every_line(
        self, forms, session, company_id, project_id, cement_id, test_actor_id
    ):
        result = forms.record_opening_stock(
            company_id,
            project_id,
            test_actor_id,
            date(2024, 1, 1),
            [OpeningStockLine(cement_id, 10, 100), OpeningStockLine(uuid4(), 1, 1)],
        )

        assert result.status is AdjustmentStatus.NOT_FOUND
        assert result.movement_ids == ()
        assert balance(session, company_id, cement_id) is None

    def test_unknown_project(self, forms, company_id, cement_id, test_actor_id):
        result = forms.record_opening_stock(
            company_id, uuid4(), test_actor_id, date(2024, 1, 1), [OpeningStockLine(cement_id, 1, 1)]
        )
        assert result.status is AdjustmentStatus.NOT_FOUND

    def test_validation_failure(self, forms, company_id, project_id, test_actor_id):
        result = forms.record_opening_stock(company_id, project_id, test_actor_id, date(2024, 1, 1), [])
        assert result.status is AdjustmentStatus.VALIDATION_FAILED


class TestIssueStock:
    @pytest.fixture
    def stocked(self, forms, company_id, project_id, cement_id, test_actor_id):
        forms.record_opening_stock(
            company_id, project_id, test_actor_id, date(2024, 1, 1), [OpeningStockLine(cement_id, 10, 100)]
        )

    def test_issue_within_project_stock(
        self, stocked, forms, session, company_id, project_id, cement_id, test_actor_id
    ):
        result = forms.issue_stock(
            company_id, project_id, test_actor_id, cement_id, 4, notes="Slab pour", meta={"floor": 2}
        )

        assert result.status is AdjustmentStatus.APPLIED
        row = session.get(StockMovementModel, result.movement_id)
        assert row.kind == MovementKind.ISSUE.value
        assert row.type == MovementType.OUT.value
        assert row.meta == {"floor": 2}
        assert project_item(session, company_id, project_id, cement_id).remaining_qty == Decimal("6")

    def test_issue_limited_by_project_not_company(
        self, stocked, forms, adjust, company_id, project_id, other_project_id, cement_id, test_actor_id
    ):
        # Company-wide balance is 30, but Site A only holds 10.
        adjust(cement_id, MovementType.IN, 20, unit_cost=100, project_id=other_project_id)
        result = forms.issue_stock(company_id, project_id, test_actor_id, cement_id, 15)

        assert result.status is AdjustmentStatus.INSUFFICIENT_STOCK
        assert result.message == "Insufficient stock. Available: 10 bag, Requested: 15 bag"

    def test_issue_from_project_without_stock(
        self, stocked, forms, company_id, other_project_id, cement_id, test_actor_id
    ):
        result = forms.issue_stock(company_id, other_project_id, test_actor_id, cement_id, 1)
        assert result.status is AdjustmentStatus.INSUFFICIENT_STOCK
        assert result.available_quantity == Decimal("0")

    @pytest.mark.parametrize("quantity", [0, -2])
    def test_non_positive_quantity(self, forms, company_id, project_id, cement_id, test_actor_id, quantity):
        result = forms.issue_stock(company_id, project_id, test_actor_id, cement_id, quantity)
        assert result.status is AdjustmentStatus.VALIDATION_FAILED

    def test_unknown_item(self, forms, company_id, project_id, test_actor_id):
        result = forms.issue_stock(company_id, project_id, test_actor_id, uuid4(), 1)
        assert result.status is AdjustmentStatus.NOT_FOUND

    def test_unknown_project(self, forms, company_id, cement_id, test_actor_id):
        result = forms.issue_stock(company_id, uuid4(), test_actor_id, cement_id, 1)
        assert result.status is AdjustmentStatus.NOT_FOUND

    def test_rejection_is_logged(self, forms, company_id, project_id, cement_id, test_actor_id, captured_logs):
        forms.issue_stock(company_id, uuid4(), test_actor_id, cement_id, 1)
        rejected = next(r for r in captured_logs() if r["message"] == "project_stock_rejected")
        assert rejected["operation"] == "issue_stock"
        assert rejected["error_code"] == "SCOPE_NOT_FOUND"


class TestWastage:
    def test_wastage_is_auto_approved(
        self, forms, adjust, session, company_id, project_id, cement_id, test_actor_id,
        deterministic_clock,
    ):
        adjust(cement_id, MovementType.IN, 10, unit_cost=100, project_id=project_id)
        deterministic_clock.advance(1)
        result = forms.record_wastage(
            company_id, project_id, test_actor_id, cement_id, 3, "  Rain damage  "
        )

        assert result.status is AdjustmentStatus.APPLIED
        row = session.get(StockMovementModel, result.movement_id)
        assert row.kind == MovementKind.WASTAGE.value
        assert row.reason == "Rain damage"
        assert row.approved_by_id == test_actor_id
        assert row.approved_at is not None
        item = project_item(session, company_id, project_id, cement_id)
        assert item.wastage_qty == Decimal("3")
        assert item.wastage_value == Decimal("300")

    def test_wasting_every_receipt_matches_replay(
        self, forms, adjust, session, company_id, project_id, cement_id, test_actor_id,
        deterministic_clock,
    ):
        for _ in range(5):
            adjust(cement_id, MovementType.IN, 10, unit_cost=100, project_id=project_id)
            deterministic_clock.advance(1)
            forms.record_wastage(company_id, project_id, test_actor_id, cement_id, 10, "Expired")

        item = project_item(session, company_id, project_id, cement_id)
        assert item.wastage_value == Decimal("5000")
        assert item.remaining_qty == Decimal("0")
        assert StockReconciliationService(session).reconcile(company_id).is_consistent

    @pytest.mark.parametrize("reason", [None, "", "   "])
    def test_reason_required(self, forms, company_id, project_id, cement_id, test_actor_id, reason):
        result = forms.record_wastage(company_id, project_id, test_actor_id, cement_id, 1, reason)
        assert result.status is AdjustmentStatus.VALIDATION_FAILED
        assert result.message == "A reason is required"

    def test_wastage_beyond_stock(self, forms, session, company_id, project_id, cement_id, test_actor_id):
        result = forms.record_wastage(company_id, project_id, test_actor_id, cement_id, 1, "Spilled")
        assert result.status is AdjustmentStatus.INSUFFICIENT_STOCK
        assert balance(session, company_id, cement_id) is None


class TestManualAdjustment:
    def test_positive_adjustment_adds_stock(
        self, forms, adjust, session, company_id, project_id, cement_id, test_actor_id,
        deterministic_clock,
    ):
        adjust(cement_id, MovementType.IN, 10, unit_cost=100, project_id=project_id)
        deterministic_clock.advance(1)
        result = forms.record_adjustment(
            company_id, project_id, test_actor_id, cement_id, 10, "Count correction", unit_cost=200
        )

        assert result.status is AdjustmentStatus.APPLIED
        row = session.get(StockMovementModel, result.movement_id)
        assert row.type == MovementType.IN.value
        assert row.kind == MovementKind.ADJUSTMENT.value
        assert row.approved_by_id == test_actor_id
        assert result.balance.quantity == Decimal("20")
        assert result.balance.avg_cost == Decimal("150")

    def test_negative_adjustment_removes_stock(
        self, forms, adjust, session, company_id, project_id, cement_id, test_actor_id,
        deterministic_clock,
    ):
        adjust(cement_id, MovementType.IN, 10, unit_cost=100, project_id=project_id)
        deterministic_clock.advance(1)
        result = forms.record_adjustment(
            company_id, project_id, test_actor_id, cement_id, "-4", "Count correction", unit_cost=999
        )

        assert result.status is AdjustmentStatus.APPLIED
        row = session.get(StockMovementModel, result.movement_id)
        assert row.type == MovementType.OUT.value
        assert row.quantity == Decimal("4")
        assert row.unit_cost is None
        assert result.balance.quantity == Decimal("6")

        item = project_item(session, company_id, project_id, cement_id)
        assert item.remaining_qty == Decimal("6")
        assert item.issued_qty == Decimal("4")

    def test_zero_adjustment(self, forms, company_id, project_id, cement_id, test_actor_id):
        result = forms.record_adjustment(company_id, project_id, test_actor_id, cement_id, 0, "Nothing")
        assert result.status is AdjustmentStatus.VALIDATION_FAILED

    def test_reason_required(self, forms, company_id, project_id, cement_id, test_actor_id):
        result = forms.record_adjustment(company_id, project_id, test_actor_id, cement_id, 5, "")
        assert result.status is AdjustmentStatus.VALIDATION_FAILED

    def test_negative_adjustment_beyond_stock(
        self, forms, adjust, company_id, project_id, cement_id, test_actor_id
    ):
        adjust(cement_id, MovementType.IN, 2, unit_cost=100, project_id=project_id)
        result = forms.record_adjustment(company_id, project_id, test_actor_id, cement_id, -3, "Lost")
        assert result.status is AdjustmentStatus.INSUFFICIENT_STOCK

    def test_success_is_logged(
        self, forms, adjust, company_id, project_id, cement_id, test_actor_id, captured_logs
    ):
        forms.record_adjustment(company_id, project_id, test_actor_id, cement_id, 1, "Found")
        recorded = next(r for r in captured_logs() if r["message"] == "project_stock_recorded")
        assert recorded["operation"] == "record_adjustment"
        assert recorded["status"] == "applied"
