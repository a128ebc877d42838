#!/usr/bin/env python3
"""Prepare a StreamVault billing deployment — validate the catalog, create tables.

Usage:
    python scripts/setup_db.py
    python scripts/setup_db.py --catalog-only     # validate config/billing.yaml and exit
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from config.settings import get_settings
from src.billing.catalog import load_catalog
from src.core.exceptions import InvalidBillingConfiguration
from src.core.logging import get_logger, setup_logging
from src.data.db import close_engine, init_schema

log = get_logger(__name__)


async def _create_schema() -> None:
    try:
        await init_schema()
    finally:
        await close_engine()


def main() -> int:
    parser = argparse.ArgumentParser(description="StreamVault billing setup")
    parser.add_argument(
        "--catalog-only",
        action="store_true",
        help="Only validate the billing catalog; do not touch the database",
    )
    args = parser.parse_args()

    setup_logging()
    path = get_settings().billing_config_path
    try:
        catalog = load_catalog(path)
    except InvalidBillingConfiguration as exc:
        log.error("billing_catalog_invalid", path=str(path), error=str(exc), context=exc.context)
        return 1
    log.info(
        "billing_catalog_valid",
        path=str(path),
        plans=sorted(catalog.plans),
        multipliers=len(catalog.multipliers),
    )

    if args.catalog_only:
        return 0

    asyncio.run(_create_schema())
    return 0


if __name__ == "__main__":
    sys.exit(main())
