#!/usr/bin/env python3
"""
Print stock reports from the database.

Reads configuration through get_active_config() (STOCK_CONFIG_PATH and
STOCK_DATABASE_URL apply) unless --db-url is given.

Usage:
    python3 scripts/stock_report.py overview --company-id <uuid> [--project-id <uuid>]
    python3 scripts/stock_report.py status --company-id <uuid> --project-id <uuid>
    python3 scripts/stock_report.py reconcile --company-id <uuid>
    python3 scripts/stock_report.py balances --company-id <uuid> [--low-stock] [--search <text>]
    python3 scripts/stock_report.py items --company-id <uuid> [--search <text>] [--page N]
    python3 scripts/stock_report.py ledger --company-id <uuid> [--project-id <uuid>] [--page N]
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path
from uuid import UUID

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

W = 96


def banner(title: str) -> None:
    print("=" * W)
    print(f"  {title}".center(W))
    print("=" * W)


def fmt(value, places: int = 2) -> str:
    return f"{value:,.{places}f}"


def print_overview(overview) -> None:
    scope = overview.scope
    banner(f"STOCK OVERVIEW  project={scope.project_id or 'ALL'}")
    print(
        f"  {'Item':<28} {'Unit':<6} {'Received':>12} {'Issued':>12} "
        f"{'Wastage':>10} {'On hand':>12} {'Avg cost':>12} {'Value':>14}"
    )
    print("  " + "-" * (W - 2))
    for item in overview.items:
        flag = "  LOW" if item.is_low_stock else ""
        print(
            f"  {item.name[:28]:<28} {item.unit[:6]:<6} "
            f"{fmt(item.opening_qty + item.received_qty, 3):>12} "
            f"{fmt(item.issued_qty, 3):>12} {fmt(item.wastage_qty, 3):>10} "
            f"{fmt(item.remaining_qty, 3):>12} {fmt(item.avg_cost, 4):>12} "
            f"{fmt(item.total_value):>14}{flag}"
        )
    s = overview.summary
    print("  " + "-" * (W - 2))
    print(f"  Total on hand:        {fmt(s.total_qty_on_hand, 3)}")
    print(f"  Remaining value:      {fmt(s.remaining_stock_value)}  ({fmt(s.remaining_percentage)}%)")
    print(f"  Used value:           {fmt(s.used_stock_value)}  ({fmt(s.used_percentage)}%)")
    print(f"  Wastage value:        {fmt(s.wastage_value)}")
    print()


def print_status(status) -> None:
    banner("PROJECT STOCK STATUS")
    print(f"  Received total:  {fmt(status.received_total, 3)}")
    print(f"  Used total:      {fmt(status.used_total, 3)}")
    print(f"  Current balance: {fmt(status.current_balance, 3)}")
    if status.low_stock_items:
        print("  Low stock:")
        for item in status.low_stock_items:
            print(
                f"    {item.name:<28} {fmt(item.current_qty, 3):>12} {item.unit}"
                f"  (threshold {fmt(item.threshold, 3)})"
            )
    print()


def print_reconciliation(report) -> None:
    banner("BALANCE RECONCILIATION")
    print(f"  Items checked: {report.items_checked}")
    if report.is_consistent:
        print("  [OK] Persisted balances match replayed history")
        print()
        return
    print(f"  [FAIL] {len(report.mismatches)} mismatched item(s)")
    for m in report.mismatches:
        print(
            f"    {m.stock_item_id}  qty {fmt(m.persisted_qty, 3)} vs {fmt(m.replayed_qty, 3)}"
            f"  avg {fmt(m.persisted_avg_cost, 4)} vs {fmt(m.replayed_avg_cost, 4)}"
        )
    print()


def print_balances(rows) -> None:
    banner("STOCK BALANCES")
    for row in rows:
        flag = "  LOW" if row.is_low_stock else ""
        print(
            f"  {row.item.name[:32]:<32} {fmt(row.quantity, 3):>12} {row.item.unit:<6}"
            f" {fmt(row.avg_cost, 4):>12} {fmt(row.total_value):>14}{flag}"
        )
    print()


def print_items(page) -> None:
    banner(f"STOCK ITEMS  page {page.page}/{max(page.total_pages, 1)}  ({page.total} total)")
    for item in page.items:
        flag = "" if item.is_active else "  INACTIVE"
        print(
            f"  {item.name[:32]:<32} {(item.sku or '-')[:12]:<12} {item.unit:<6}"
            f" {(item.category or '-')[:16]:<16}{flag}"
        )
    print()


def print_ledger(page) -> None:
    banner(f"STOCK LEDGER  page {page.page}/{max(page.total_pages, 1)}  ({page.total} total)")
    for m in page.movements:
        item = page.items.get(m.stock_item_id)
        cost = fmt(m.unit_cost, 4) if m.unit_cost is not None else "-"
        print(
            f"  {m.movement_date:%Y-%m-%d} {str(m.type):<6} {str(m.kind or ''):<12}"
            f" {(item.name if item else str(m.stock_item_id))[:28]:<28}"
            f" {fmt(m.quantity, 3):>12} {cost:>12}"
        )
    print()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Stock valuation reports.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "examples:\n"
            "  python3 scripts/stock_report.py overview --company-id a1b2...\n"
            "  python3 scripts/stock_report.py reconcile --company-id a1b2... --json\n"
        ),
    )
    parser.add_argument(
        "command", choices=("overview", "status", "reconcile", "balances", "items", "ledger")
    )
    parser.add_argument("--company-id", type=str, required=True, help="Company UUID")
    parser.add_argument("--project-id", type=str, help="Project UUID (overview, status, ledger)")
    parser.add_argument("--low-stock", action="store_true", help="Only low-stock balances")
    parser.add_argument("--search", type=str, help="Name or SKU substring (balances, items)")
    parser.add_argument("--page", type=int, default=1, help="Page number (items, ledger)")
    parser.add_argument("--json", action="store_true", help="Output JSON instead of text")
    parser.add_argument("--db-url", type=str, help="Database URL (default: from config)")
    parser.add_argument("--config", type=str, help="Config YAML path")
    parser.add_argument("--verbose", action="store_true", help="Write JSON logs to stderr")
    args = parser.parse_args(argv)

    try:
        company_id = UUID(args.company_id)
        project_id = UUID(args.project_id) if args.project_id else None
    except ValueError as exc:
        print(f"  ERROR: Invalid UUID: {exc}", file=sys.stderr)
        return 1
    if args.command == "status" and project_id is None:
        print("  ERROR: status needs --project-id", file=sys.stderr)
        return 1

    from stock_config import get_active_config
    from stock_kernel.db.engine import get_session, init_engine_from_url
    from stock_kernel.domain.movements import StockScope
    from stock_kernel.logging_config import configure_logging
    from stock_kernel.selectors.balance_selector import StockBalanceSelector
    from stock_kernel.selectors.movement_selector import StockMovementSelector
    from stock_kernel.selectors.reference_selector import StockReferenceSelector
    from stock_services.reconciliation_service import StockReconciliationService
    from stock_services.stock_overview_service import StockOverviewService

    config = get_active_config(args.config)
    if args.verbose:
        configure_logging(level=config.logging.level, stream=sys.stderr)
    else:
        logging.disable(logging.CRITICAL)

    try:
        init_engine_from_url(
            args.db_url or config.database.url,
            echo=config.database.echo,
            sqlite_busy_timeout=config.database.sqlite_busy_timeout_seconds,
        )
    except Exception as exc:
        print(f"  ERROR: Cannot connect to database: {exc}", file=sys.stderr)
        return 1

    session = get_session()
    try:
        if args.command == "balances":
            rows = StockBalanceSelector(session).list_balances(
                company_id, search=args.search, low_stock_only=args.low_stock
            )
            if args.json:
                print(json.dumps([asdict(r) for r in rows], indent=2, default=str))
            else:
                print_balances(rows)
            return 0

        reporting = config.reporting
        if args.command in ("items", "ledger"):
            paging = {
                "page": args.page,
                "page_size": reporting.default_page_size,
                "max_page_size": reporting.max_page_size,
            }
            if args.command == "items":
                page = StockReferenceSelector(session).list_items(
                    company_id, search=args.search, **paging
                )
                printer = print_items
            else:
                page = StockMovementSelector(session).list_company_movements(
                    company_id, project_id=project_id, **paging
                )
                printer = print_ledger
            if args.json:
                payload = asdict(page)
                if args.command == "ledger":
                    payload["items"] = {str(k): v for k, v in payload["items"].items()}
                print(json.dumps(payload, indent=2, default=str))
            else:
                printer(page)
            return 0

        if args.command == "reconcile":
            report = StockReconciliationService(session).reconcile(company_id)
            if args.json:
                print(json.dumps(asdict(report), indent=2, default=str))
            else:
                print_reconciliation(report)
            return 0 if report.is_consistent else 2

        service = StockOverviewService(session, reporting)
        if args.command == "status":
            result = service.get_project_stock_status(company_id, project_id)
            payload = result.stock_status
        else:
            scope = StockScope(company_id=company_id, project_id=project_id)
            result = service.get_overview(company_id, scope)
            payload = result.overview
        if not result.is_success:
            print(f"  ERROR: {result.message}", file=sys.stderr)
            return 1

        if args.json:
            print(json.dumps(asdict(payload), indent=2, default=str))
        elif args.command == "status":
            print_status(payload)
        else:
            print_overview(payload)
        return 0
    finally:
        session.close()


if __name__ == "__main__":
    sys.exit(main())
