#!/usr/bin/env python3
"""StreamVault billing run — bills one period for all or selected tenants.

Usage:
    python scripts/run_billing.py                       # previous calendar month
    python scripts/run_billing.py --period 2026-09
    python scripts/run_billing.py --period 2026-09 --tenant acme --tenant globex
    python scripts/run_billing.py --start 2026-09-01T00:00:00+00:00 --end 2026-09-16T00:00:00+00:00
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from datetime import datetime, timezone
from pathlib import Path

# Ensure project root is on path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from config.settings import get_settings
from src.billing.catalog import load_catalog
from src.billing.payments import RedisPaymentQueue
from src.billing.runner import BillingRunReport, previous_month_period
from src.billing.wiring import build_sql_services
from src.core.exceptions import InvalidBillingConfiguration
from src.core.logging import get_logger, setup_logging
from src.data.db import close_engine, get_engine

setup_logging()
log = get_logger(__name__)


def _month_period(value: str) -> tuple[datetime, datetime]:
    """Parse ``YYYY-MM`` into ``[first of month, first of next month)`` UTC."""
    try:
        start = datetime.strptime(value, "%Y-%m").replace(tzinfo=timezone.utc)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM, got {value!r}") from exc
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    return start, end


def _aware(value: str) -> datetime:
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run StreamVault usage billing")
    parser.add_argument("--period", type=_month_period, help="Calendar month YYYY-MM")
    parser.add_argument("--start", type=_aware, help="Period start (ISO 8601)")
    parser.add_argument("--end", type=_aware, help="Period end, exclusive (ISO 8601)")
    parser.add_argument(
        "--tenant",
        action="append",
        dest="tenants",
        help="Bill only this tenant (repeatable)",
    )
    args = parser.parse_args(argv)

    if (args.start is None) != (args.end is None):
        parser.error("--start and --end must be given together")
    if args.period is not None and args.start is not None:
        parser.error("--period cannot be combined with --start/--end")
    return args


def _print_report(report: BillingRunReport) -> None:
    print(
        f"\nBilling period {report.period_start:%Y-%m-%d} .. {report.period_end:%Y-%m-%d}: "
        f"{len(report.invoiced)} invoiced, {len(report.failed)} failed"
    )
    for outcome in report.outcomes:
        if outcome.succeeded and outcome.invoice is not None:
            inv = outcome.invoice
            print(
                f"  OK   {outcome.tenant_id:<24} {inv.total_amount:>12} {inv.currency} "
                f"[{inv.status.value}]"
            )
        else:
            print(f"  FAIL {outcome.tenant_id:<24} {outcome.error_type}: {outcome.error}")


async def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    settings = get_settings()

    if args.period is not None:
        period_start, period_end = args.period
    elif args.start is not None:
        period_start, period_end = args.start, args.end
    else:
        period_start, period_end = previous_month_period()

    try:
        catalog = load_catalog(settings.billing_config_path)
    except InvalidBillingConfiguration as exc:
        log.error("billing_catalog_invalid", error=str(exc), **exc.context)
        return 2

    gateway = RedisPaymentQueue()
    engine = await get_engine()
    try:
        services = build_sql_services(
            engine,
            gateway,
            catalog,
            due_days=settings.invoice_due_days,
            concurrency=settings.billing_concurrency,
        )
        report = await services.runner.run(period_start, period_end, args.tenants)
    finally:
        await gateway.close()
        await close_engine()

    _print_report(report)
    return 1 if report.failed else 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
