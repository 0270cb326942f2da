#!/usr/bin/env python3
"""
Recalculate FIFO costing for one product or for every product with demand.

Reverses every consumption from the given date, replays the demand lines in
chronological order and records one recalculation audit entry per product.
Use after data corrections made outside the inventory workflows, or to
repair lines costed at zero before stock was received.

Usage:
  python3 scripts/recalculate_fifo.py --product SKU-001 --from-date 2024-01-02
  python3 scripts/recalculate_fifo.py --all --reason manual --note "year-end check"
  python3 scripts/recalculate_fifo.py --product SKU-001 --zero-cogs

Database:
  STOCK_DATABASE_URL (or --db-url, or database_url in --config) selects the
  database.  The whole run is one transaction per attempt; lock conflicts are
  retried up to max_retry_attempts.
"""

import argparse
import logging
import sys
from datetime import date
from pathlib import Path
from uuid import UUID

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from sqlalchemy import select  # noqa: E402

from stock_config import get_active_config  # noqa: E402
from stock_kernel.db.engine import get_session_factory, init_engine_from_url  # noqa: E402
from stock_kernel.db.immutability import register_immutability_listeners  # noqa: E402
from stock_kernel.exceptions import ProductNotFoundError, StockKernelError  # noqa: E402
from stock_kernel.logging_config import configure_logging  # noqa: E402
from stock_kernel.models.product import Product  # noqa: E402
from stock_kernel.models.recalculation_audit import ReasonCode  # noqa: E402
from stock_services.inventory_service import InventoryService  # noqa: E402
from stock_services.retry import run_with_retry  # noqa: E402


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Reverse and replay FIFO consumptions from a date")
    target = p.add_mutually_exclusive_group(required=True)
    target.add_argument("--product", help="Product SKU or id")
    target.add_argument("--all", action="store_true", help="Every product that has demand lines")
    p.add_argument(
        "--from-date",
        type=date.fromisoformat,
        default=None,
        help="First transaction date to replay (YYYY-MM-DD; default: earliest demand per product)",
    )
    p.add_argument(
        "--zero-cogs",
        action="store_true",
        help="Replay from the earliest line still costed at zero (with --product)",
    )
    p.add_argument(
        "--reason",
        choices=[code.value for code in ReasonCode],
        default=ReasonCode.MANUAL.value,
        help="Reason code stored on the audit entry (default: manual)",
    )
    p.add_argument("--note", default=None, help="Free-text note stored on the audit entry")
    p.add_argument("--config", type=Path, default=None, help="YAML file overriding packaged defaults")
    p.add_argument("--db-url", default=None, help="Database URL (overrides config)")
    args = p.parse_args(argv)
    if args.zero_cogs and not args.product:
        p.error("--zero-cogs requires --product")
    return args


def _find_product(session, key: str) -> Product:
    try:
        product = session.get(Product, UUID(key))
    except ValueError:
        product = session.execute(select(Product).where(Product.sku == key)).scalar_one_or_none()
    if product is None:
        raise ProductNotFoundError(key)
    return product


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    config = get_active_config(args.config)
    if args.db_url:
        config = config.with_overrides(database_url=args.db_url)

    configure_logging(level=getattr(logging, config.log_level))
    init_engine_from_url(
        config.database_url,
        statement_timeout_seconds=config.statement_timeout_seconds,
    )
    register_immutability_listeners()

    def work(session):
        inventory = InventoryService(session, config=config)
        if args.all:
            return inventory.recalculate_all(args.from_date, args.reason, args.note)
        product = _find_product(session, args.product)
        if args.zero_cogs:
            result = inventory.recalculate_zero_cogs(product.id)
            return [result] if result is not None else []
        return [inventory.recalculate_product(product.id, args.from_date, args.reason, args.note)]

    try:
        results = run_with_retry(get_session_factory(), work, config.max_retry_attempts)
    except StockKernelError as exc:
        print(f"  ERROR [{exc.code}]: {exc}", file=sys.stderr)
        return 1

    print()
    if not results:
        print("  Nothing to recalculate.")
    for result in results:
        print(
            f"  {result.product_id}  from {result.from_date}  "
            f"lines={result.lines_replayed}  reversed={result.consumptions_reversed}  "
            f"COGS {result.cogs_before} -> {result.cogs_after} ({result.cogs_delta:+})"
        )
        for warning in result.warnings:
            print(f"    WARNING: {warning}")
    print()
    print(f"  Done. {len(results)} product(s), {sum(r.lines_replayed for r in results)} line(s) replayed.")
    print()
    return 0


if __name__ == "__main__":
    sys.exit(main())
