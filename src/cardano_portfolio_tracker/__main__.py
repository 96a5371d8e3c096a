"""Command line entry point.

Usage:
    python -m cardano_portfolio_tracker init-db
    python -m cardano_portfolio_tracker seed-tokens
    python -m cardano_portfolio_tracker snapshot [--batch N --batch-size N | --wallet-id ID]
    python -m cardano_portfolio_tracker check-thresholds [--bucket ISO]
    python -m cardano_portfolio_tracker test-price UNIT
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
import uuid
from collections.abc import Sequence
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from cardano_portfolio_tracker.config import Settings, get_settings
from cardano_portfolio_tracker.service import PortfolioService, PortfolioServiceError

logger = logging.getLogger(__name__)


def _parse_bucket(value: str) -> datetime:
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"Invalid ISO timestamp: {value}") from e


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cardano-portfolio-tracker",
        description="Cardano wallet portfolio tracker",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create database tables")
    sub.add_parser("seed-tokens", help="Insert base token definitions and manual price overrides")

    snapshot = sub.add_parser("snapshot", help="Snapshot wallet balances and prices")
    snapshot.add_argument("--batch", type=int, default=None, help="Batch index for paginated runs")
    snapshot.add_argument("--batch-size", type=int, default=None, help="Wallets per batch")
    snapshot.add_argument("--wallet-id", type=uuid.UUID, default=None, help="Manual snapshot of one wallet")

    check = sub.add_parser("check-thresholds", help="Evaluate wallets and send threshold alerts")
    check.add_argument("--bucket", type=_parse_bucket, default=None, help="Snapshot bucket (ISO 8601)")

    price = sub.add_parser("test-price", help="Resolve the USD price of one unit")
    price.add_argument("unit", help="Token unit (policy id + hex asset name, lovelace or BTC)")
    return parser


async def _run(args: argparse.Namespace, settings: Settings) -> dict[str, Any]:
    service = PortfolioService.from_settings(settings)
    try:
        if args.command == "init-db":
            await service.db.init_schema_async()
            return {"ok": True}
        if args.command == "seed-tokens":
            return await service.seed_tokens(settings.pricing.token_usd_price_overrides_json)
        if args.command == "snapshot":
            if args.wallet_id is not None:
                return (await service.run_manual_snapshot(args.wallet_id)).to_dict()
            if args.batch is None and args.batch_size is None:
                return (await service.run_manual_snapshot()).to_dict()
            batch = await service.run_batch_snapshot(args.batch or 0, args.batch_size)
            return batch.to_dict()
        if args.command == "check-thresholds":
            return (await service.check_thresholds(snapshot_bucket=args.bucket)).to_dict()
        if args.command == "test-price":
            quote = await service.test_price(args.unit)
            return {
                "unit": quote.unit,
                "price_usd": quote.price_usd,
                "source": quote.source,
                "error": quote.error,
            }
        raise ValueError(f"Unknown command: {args.command}")
    finally:
        await service.close()


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = get_settings()
        settings.validate_requirements(command=args.command)
    except (ValidationError, ValueError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    logging.basicConfig(
        level=settings.get_logging_level(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.debug("Settings: %s", settings.redacted_summary())

    try:
        result = asyncio.run(_run(args, settings))
    except (PortfolioServiceError, ValueError) as e:
        print(json.dumps({"error": str(e)}), file=sys.stderr)
        return 1

    print(json.dumps(result, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
