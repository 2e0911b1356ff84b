"""
Tests for the Stock Overview Aggregator.

Covers:
- Per-item valuation for a project scope built from replayed history
- TRANSFER_IN movements included through their destination project
- Low-stock thresholds: per-project minimum, reorder level, none
- Summary totals and used/remaining percentages
- Company scope across projects
- NOT_FOUND for unknown or foreign scopes
- Dashboard stock status with top-N low-stock items
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from stock_config.schema import ReportingConfig
from stock_kernel.domain.movements import MovementKind, MovementType, StockScope
from stock_kernel.exceptions import ScopeNotFoundError
from stock_services.stock_overview_service import (
    OverviewStatus,
    StockOverviewService,
    summarize,
)
from stock_services.stock_settings_service import StockSettingsService
from tests.factories import seed_company

HUNDRED = Decimal("100")


@pytest.fixture
def seed_scenario(adjust, cement_id, project_id):
    """Opening 10@100, receive 10@200, issue 5, waste 5 in Site A."""
    adjust(cement_id, MovementType.IN, 10, kind=MovementKind.OPENING, unit_cost=100, project_id=project_id)
    adjust(cement_id, MovementType.IN, 10, kind=MovementKind.RECEIVE, unit_cost=200, project_id=project_id)
    adjust(cement_id, MovementType.OUT, 5, kind=MovementKind.ISSUE, project_id=project_id)
    adjust(cement_id, MovementType.OUT, 5, kind=MovementKind.WASTAGE, project_id=project_id)


@pytest.fixture
def overview_service(session):
    return StockOverviewService(session)


def project_overview(service, company_id, project_id):
    result = service.get_overview(company_id, StockScope.project(company_id, project_id))
    assert result.is_success
    return result.overview


class TestProjectOverview:
    def test_seed_scenario_valuation(
        self, seed_scenario, overview_service, company_id, project_id, cement_id
    ):
        overview = project_overview(overview_service, company_id, project_id)
        cement = overview.item(cement_id)

        assert cement.name == "Cement"
        assert cement.unit == "bag"
        assert cement.opening_qty == Decimal("10")
        assert cement.opening_value == Decimal("1000")
        assert cement.received_qty == Decimal("10")
        assert cement.received_value == Decimal("2000")
        assert cement.issued_qty == Decimal("5")
        assert cement.issued_value == Decimal("750")
        assert cement.wastage_qty == Decimal("5")
        assert cement.wastage_value == Decimal("750")
        assert cement.remaining_qty == Decimal("10")
        assert cement.avg_cost == Decimal("150")
        assert cement.total_value == Decimal("1500")

    def test_summary_and_percentages(self, seed_scenario, overview_service, company_id, project_id):
        summary = project_overview(overview_service, company_id, project_id).summary

        assert summary.total_qty_on_hand == Decimal("10")
        assert summary.total_stock_value == Decimal("1500")
        assert summary.remaining_stock_value == Decimal("1500")
        assert summary.used_stock_value == Decimal("750")
        assert summary.wastage_value == Decimal("750")
        assert summary.used_percentage.quantize(Decimal("0.0001")) == Decimal("33.3333")
        assert summary.remaining_percentage.quantize(Decimal("0.0001")) == Decimal("66.6667")

    def test_other_project_movements_are_excluded(
        self, seed_scenario, adjust, overview_service, company_id, project_id, other_project_id, steel_id
    ):
        adjust(steel_id, MovementType.IN, 3, kind=MovementKind.RECEIVE, unit_cost=9, project_id=other_project_id)
        overview = project_overview(overview_service, company_id, project_id)
        assert overview.item(steel_id) is None

    def test_transfer_in_counts_for_destination(
        self, adjust, overview_service, company_id, project_id, other_project_id, steel_id
    ):
        adjust(
            steel_id,
            MovementType.IN,
            8,
            kind=MovementKind.TRANSFER_IN,
            unit_cost=50,
            project_id=other_project_id,
            source_project_id=other_project_id,
            destination_project_id=project_id,
        )
        steel = project_overview(overview_service, company_id, project_id).item(steel_id)
        assert steel.received_qty == Decimal("8")
        assert steel.avg_cost == Decimal("50")

    def test_transfer_out_with_destination_does_not_leak(
        self, adjust, overview_service, company_id, project_id, other_project_id, steel_id
    ):
        adjust(steel_id, MovementType.IN, 8, unit_cost=50, project_id=other_project_id)
        adjust(
            steel_id,
            MovementType.OUT,
            2,
            kind=MovementKind.TRANSFER_OUT,
            project_id=other_project_id,
            destination_project_id=project_id,
        )
        assert project_overview(overview_service, company_id, project_id).item(steel_id) is None

    def test_empty_project(self, overview_service, company_id, project_id):
        overview = project_overview(overview_service, company_id, project_id)
        assert overview.items == ()
        assert overview.summary.total_qty_on_hand == Decimal("0")
        assert overview.summary.used_percentage == Decimal("0")
        assert overview.summary.remaining_percentage == Decimal("0")

    def test_items_follow_first_movement_order(
        self, adjust, overview_service, company_id, project_id, cement_id, steel_id, sand_id
    ):
        adjust(sand_id, MovementType.IN, 1, project_id=project_id)
        adjust(cement_id, MovementType.IN, 1, project_id=project_id)
        adjust(steel_id, MovementType.IN, 1, project_id=project_id)
        overview = project_overview(overview_service, company_id, project_id)
        assert [i.stock_item_id for i in overview.items] == [sand_id, cement_id, steel_id]

    def test_overview_is_logged(self, seed_scenario, overview_service, company_id, project_id, captured_logs):
        project_overview(overview_service, company_id, project_id)
        computed = next(r for r in captured_logs() if r["message"] == "stock_overview_computed")
        assert computed["movement_count"] == 4
        assert computed["item_count"] == 1
        assert computed["company_id"] == str(company_id)


class TestLowStock:
    def test_reorder_level_applies_without_setting(
        self, seed_scenario, overview_service, company_id, project_id, cement_id
    ):
        cement = project_overview(overview_service, company_id, project_id).item(cement_id)
        assert cement.min_qty is None
        assert cement.low_stock_threshold == Decimal("20")
        assert cement.is_low_stock

    def test_project_minimum_overrides_reorder_level(
        self, seed_scenario, session, overview_service, company_id, project_id, cement_id, test_actor_id
    ):
        StockSettingsService(session).set_min_qty(company_id, project_id, cement_id, 5, test_actor_id)
        cement = project_overview(overview_service, company_id, project_id).item(cement_id)
        assert cement.min_qty == Decimal("5")
        assert not cement.is_low_stock

    def test_remaining_equal_to_threshold_is_not_low(
        self, seed_scenario, session, overview_service, company_id, project_id, cement_id, test_actor_id
    ):
        StockSettingsService(session).set_min_qty(company_id, project_id, cement_id, 10, test_actor_id)
        cement = project_overview(overview_service, company_id, project_id).item(cement_id)
        assert not cement.is_low_stock

    def test_item_without_any_threshold_is_never_low(
        self, adjust, overview_service, company_id, project_id, steel_id
    ):
        adjust(steel_id, MovementType.IN, 1, project_id=project_id)
        adjust(steel_id, MovementType.OUT, 1, project_id=project_id)
        steel = project_overview(overview_service, company_id, project_id).item(steel_id)
        assert steel.remaining_qty == Decimal("0")
        assert steel.low_stock_threshold == Decimal("0")
        assert not steel.is_low_stock

    def test_minimum_is_per_project(
        self, adjust, session, overview_service, company_id, project_id, other_project_id, cement_id,
        test_actor_id,
    ):
        StockSettingsService(session).set_min_qty(company_id, other_project_id, cement_id, 1, test_actor_id)
        adjust(cement_id, MovementType.IN, 5, project_id=project_id)
        cement = project_overview(overview_service, company_id, project_id).item(cement_id)
        assert cement.min_qty is None
        assert cement.is_low_stock


class TestCompanyScope:
    def test_company_scope_spans_projects(
        self, adjust, overview_service, company_id, project_id, other_project_id, cement_id
    ):
        adjust(cement_id, MovementType.IN, 10, unit_cost=100, project_id=project_id)
        adjust(cement_id, MovementType.IN, 30, unit_cost=20, project_id=other_project_id)
        adjust(cement_id, MovementType.IN, 10, unit_cost=10)

        result = overview_service.get_overview(company_id, StockScope.company(company_id))
        cement = result.overview.item(cement_id)

        assert result.is_success
        assert cement.remaining_qty == Decimal("50")
        assert cement.avg_cost == Decimal("34")
        assert cement.min_qty is None
        assert not cement.is_low_stock


class TestScopeValidation:
    def test_unknown_company(self, overview_service):
        company_id = uuid4()
        result = overview_service.get_overview(company_id, StockScope.company(company_id))
        assert result.status is OverviewStatus.NOT_FOUND
        assert result.error_code == "SCOPE_NOT_FOUND"
        assert result.overview is None

    def test_unknown_project(self, overview_service, company_id):
        result = overview_service.get_overview(company_id, StockScope.project(company_id, uuid4()))
        assert result.status is OverviewStatus.NOT_FOUND

    def test_project_of_another_company(self, session, overview_service, company_id, test_actor_id):
        other = seed_company(session, test_actor_id, name="Other Builders")
        result = overview_service.get_overview(
            company_id, StockScope.project(company_id, other["project"].id)
        )
        assert result.status is OverviewStatus.NOT_FOUND

    def test_scope_for_another_company(self, session, overview_service, company_id, test_actor_id):
        other = seed_company(session, test_actor_id, name="Other Builders")
        result = overview_service.get_overview(
            company_id, StockScope.company(other["company"].id)
        )
        assert result.status is OverviewStatus.NOT_FOUND

    def test_compute_overview_raises(self, overview_service, company_id):
        with pytest.raises(ScopeNotFoundError):
            overview_service.compute_overview(company_id, StockScope.project(company_id, uuid4()))

    def test_not_found_is_logged(self, overview_service, company_id, captured_logs):
        overview_service.get_overview(company_id, StockScope.project(company_id, uuid4()))
        warning = next(
            r for r in captured_logs() if r["message"] == "stock_overview_scope_not_found"
        )
        assert warning["level"] == "WARNING"


class TestProjectStockStatus:
    def test_totals(
        self, seed_scenario, adjust, overview_service, company_id, project_id, sand_id, steel_id
    ):
        adjust(sand_id, MovementType.IN, 50, kind=MovementKind.RECEIVE, unit_cost=10, project_id=project_id)
        adjust(steel_id, MovementType.IN, 8, kind=MovementKind.RECEIVE, unit_cost=60, project_id=project_id)

        result = overview_service.get_project_stock_status(company_id, project_id)
        status = result.stock_status

        assert result.is_success
        assert status.received_total == Decimal("78")
        assert status.used_total == Decimal("5")
        assert status.current_balance == Decimal("68")

    def test_low_stock_items_sorted_and_limited(
        self, seed_scenario, adjust, session, company_id, project_id, cement_id, sand_id
    ):
        adjust(sand_id, MovementType.IN, 50, unit_cost=10, project_id=project_id)

        full = StockOverviewService(session).get_project_stock_status(company_id, project_id)
        assert [i.stock_item_id for i in full.stock_status.low_stock_items] == [cement_id, sand_id]
        assert full.stock_status.low_stock_items[1].threshold == Decimal("100")
        assert full.stock_status.low_stock_items[1].current_qty == Decimal("50")

        top_one = StockOverviewService(
            session, ReportingConfig(low_stock_top_n=1)
        ).get_project_stock_status(company_id, project_id)
        assert [i.stock_item_id for i in top_one.stock_status.low_stock_items] == [cement_id]

    def test_unknown_project(self, overview_service, company_id):
        result = overview_service.get_project_stock_status(company_id, uuid4())
        assert result.status is OverviewStatus.NOT_FOUND
        assert result.stock_status is None


def test_summarize_without_items():
    summary = summarize(())
    assert summary.total_stock_value == Decimal("0")
    assert summary.used_percentage == Decimal("0")
