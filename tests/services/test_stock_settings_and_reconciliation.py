"""
Tests for per-project low-stock settings and balance reconciliation.
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from stock_kernel.domain.movements import MovementKind, MovementType
from stock_kernel.models.stock import ProjectStockSetting
from stock_services.reconciliation_service import StockReconciliationService
from stock_services.stock_settings_service import SettingStatus, StockSettingsService
from tests.factories import seed_company


class TestSetMinQty:
    def test_insert_then_update(self, session, company_id, project_id, cement_id, test_actor_id):
        service = StockSettingsService(session)

        first = service.set_min_qty(company_id, project_id, cement_id, "12.5", test_actor_id)
        second = service.set_min_qty(company_id, project_id, cement_id, 30, test_actor_id)

        assert first.status is SettingStatus.SAVED
        assert second.is_success
        assert second.min_qty == Decimal("30")
        rows = session.execute(select(ProjectStockSetting)).scalars().all()
        assert len(rows) == 1
        assert rows[0].min_qty == Decimal("30")
        assert rows[0].updated_by_id == test_actor_id

    def test_zero_is_allowed(self, session, company_id, project_id, cement_id, test_actor_id):
        result = StockSettingsService(session).set_min_qty(
            company_id, project_id, cement_id, 0, test_actor_id
        )
        assert result.status is SettingStatus.SAVED

    @pytest.mark.parametrize("min_qty", [-1, "lots"])
    def test_invalid_value(self, session, company_id, project_id, cement_id, test_actor_id, min_qty):
        result = StockSettingsService(session).set_min_qty(
            company_id, project_id, cement_id, min_qty, test_actor_id
        )
        assert result.status is SettingStatus.VALIDATION_FAILED
        assert result.error_code == "VALIDATION_ERROR"

    def test_unknown_project(self, session, company_id, cement_id, test_actor_id):
        result = StockSettingsService(session).set_min_qty(
            company_id, uuid4(), cement_id, 1, test_actor_id
        )
        assert result.status is SettingStatus.NOT_FOUND
        assert result.error_code == "SCOPE_NOT_FOUND"

    def test_item_of_another_company(self, session, company_id, project_id, test_actor_id):
        other = seed_company(session, test_actor_id, name="Other Builders")
        result = StockSettingsService(session).set_min_qty(
            company_id, project_id, other["cement"].id, 1, test_actor_id
        )
        assert result.status is SettingStatus.NOT_FOUND
        assert result.error_code == "STOCK_ITEM_NOT_FOUND"

    def test_save_is_logged(self, session, company_id, project_id, cement_id, test_actor_id, captured_logs):
        StockSettingsService(session).set_min_qty(company_id, project_id, cement_id, 4, test_actor_id)
        saved = next(r for r in captured_logs() if r["message"] == "stock_min_qty_saved")
        assert saved["min_qty"] == "4"


class TestReconciliation:
    def test_in_and_out_history_matches_balances(self, adjust, session, company_id, cement_id, steel_id):
        adjust(cement_id, MovementType.IN, 10, kind=MovementKind.OPENING, unit_cost=100)
        adjust(cement_id, MovementType.IN, 10, kind=MovementKind.RECEIVE, unit_cost=200)
        adjust(cement_id, MovementType.OUT, 5, kind=MovementKind.ISSUE)
        adjust(steel_id, MovementType.IN, 3, unit_cost="1.25")

        report = StockReconciliationService(session).reconcile(company_id)

        assert report.is_consistent
        assert report.items_checked == 2

    def test_negative_manual_adjustment_replays_as_outflow(
        self, adjust, session, company_id, cement_id
    ):
        adjust(cement_id, MovementType.IN, 10, unit_cost=100)
        adjust(cement_id, MovementType.OUT, 4, kind=MovementKind.ADJUSTMENT)

        assert StockReconciliationService(session).reconcile(company_id).is_consistent

    def test_absolute_adjust_is_reported(self, adjust, session, company_id, cement_id, captured_logs):
        adjust(cement_id, MovementType.IN, 10, unit_cost=100)
        adjust(cement_id, MovementType.ADJUST, 4)

        report = StockReconciliationService(session).reconcile(company_id)

        # The balance holds 4; replay adds the ADJUST row as +4.
        assert not report.is_consistent
        mismatch = report.mismatches[0]
        assert mismatch.stock_item_id == cement_id
        assert mismatch.persisted_qty == Decimal("4")
        assert mismatch.replayed_qty == Decimal("14")
        assert mismatch.qty_difference == Decimal("-10")
        logged = [r for r in captured_logs() if r["message"] == "stock_balance_mismatch"]
        assert len(logged) == 1
        assert logged[0]["level"] == "WARNING"

    def test_company_without_stock(self, session, company_id):
        report = StockReconciliationService(session).reconcile(company_id)
        assert report.is_consistent
        assert report.items_checked == 0
