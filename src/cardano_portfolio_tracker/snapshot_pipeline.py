"""Hourly snapshot pipeline.

One run takes a set of wallets through four stages:

1. fetch balances for every stake address in one batched provider call
2. upsert one snapshot row per wallet for the hour bucket (committed)
3. upsert balances for each wallet's monitored units plus ADA
4. resolve USD prices once for the union of units and upsert them into the
   shared (bucket, unit) price table

Re-running within the same hour overwrites rather than duplicates. A failed
balance fetch aborts the run; failures in stages 3 and 4 are reported but
leave the committed snapshot rows in place.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import defaultdict
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from cardano_portfolio_tracker.portfolio.units import (
    BTC_UNIT,
    LOVELACE_DECIMALS,
    LOVELACE_UNIT,
    to_snapshot_bucket,
)
from cardano_portfolio_tracker.storage.repos import (
    SnapshotBalanceDTO,
    SnapshotBalanceRepository,
    SnapshotRepository,
    TokenPriceRepository,
    TokenPriceSnapshotDTO,
    WalletDTO,
)

if TYPE_CHECKING:
    from cardano_portfolio_tracker.pricing.resolver import PriceResolver
    from cardano_portfolio_tracker.providers.koios import BalanceProvider
    from cardano_portfolio_tracker.providers.models import AccountAsset, AccountInfo
    from cardano_portfolio_tracker.storage.database import DatabaseManager

logger = logging.getLogger(__name__)

ERROR_SAVE_SNAPSHOTS = "Failed to save snapshots to database"
ERROR_SAVE_BALANCES = "Failed to save wallet snapshot balances to database"
ERROR_SAVE_PRICES = "Failed to save token price snapshots to database"


@dataclass
class SnapshotRunResult:
    """Outcome of one snapshot run."""

    processed: int
    bucket: datetime
    errors: list[str] = field(default_factory=list)
    balances_saved: int = 0
    prices_saved: int = 0

    def to_dict(self) -> dict[str, object]:
        return {
            "processed": self.processed,
            "errors": list(self.errors),
            "bucket": self.bucket.isoformat(),
            "balances_saved": self.balances_saved,
            "prices_saved": self.prices_saved,
        }


class SnapshotPipeline:
    """Snapshots wallet balances and prices into hour buckets."""

    def __init__(
        self,
        db: DatabaseManager,
        balances: BalanceProvider,
        prices: PriceResolver,
    ) -> None:
        self.db = db
        self.balances = balances
        self.prices = prices

    async def run(
        self,
        wallets: Sequence[WalletDTO],
        monitored_units_by_wallet: Mapping[uuid.UUID, Iterable[str]],
        units_to_price: Iterable[str],
        now: datetime | None = None,
    ) -> SnapshotRunResult:
        """Snapshot ``wallets`` into the bucket containing ``now``.

        Args:
            wallets: Wallets to snapshot.
            monitored_units_by_wallet: Units whose balances are kept per wallet
                (ADA is always kept).
            units_to_price: Units to price for this run; ADA and BTC are
                always added.
            now: Snapshot instant (defaults to the current UTC time).

        Returns:
            Count of wallets snapshotted, errors and the bucket used.
        """
        now = now or datetime.now(UTC)
        if now.tzinfo is None:
            now = now.replace(tzinfo=UTC)
        bucket = to_snapshot_bucket(now)
        result = SnapshotRunResult(processed=0, bucket=bucket)
        if not wallets:
            return result

        addresses = [w.stake_address for w in wallets]
        try:
            account_info, account_assets = await asyncio.gather(
                self.balances.get_account_info(addresses),
                self.balances.get_account_assets(addresses),
            )
        except Exception as e:
            logger.error("Balance fetch failed for %d wallets: %s", len(wallets), e)
            result.errors.append(str(e))
            return result

        info_by_address: dict[str, AccountInfo] = {i.stake_address: i for i in account_info}
        assets_by_address: dict[str, list[AccountAsset]] = defaultdict(list)
        for asset in account_assets:
            assets_by_address[asset.stake_address].append(asset)

        present: list[WalletDTO] = []
        for wallet in wallets:
            if wallet.stake_address not in info_by_address:
                result.errors.append(f"No account info found for wallet {wallet.stake_address}")
                continue
            present.append(wallet)
        if not present:
            return result

        try:
            async with self.db.get_async_session() as session:
                snapshot_ids = await SnapshotRepository(session).upsert_many(
                    [w.id for w in present],
                    snapshot_at=now,
                    snapshot_bucket=bucket,
                )
        except Exception:
            logger.exception("Snapshot upsert failed for bucket %s", bucket.isoformat())
            result.errors.append(ERROR_SAVE_SNAPSHOTS)
            return result
        result.processed = len(present)

        balance_rows = self._balance_rows(
            present, snapshot_ids, info_by_address, assets_by_address, monitored_units_by_wallet
        )
        if balance_rows:
            try:
                async with self.db.get_async_session() as session:
                    result.balances_saved = await SnapshotBalanceRepository(session).upsert_batch(balance_rows)
            except Exception:
                logger.exception("Balance upsert failed for bucket %s", bucket.isoformat())
                result.errors.append(ERROR_SAVE_BALANCES)

        units = list(dict.fromkeys([LOVELACE_UNIT, BTC_UNIT, *units_to_price]))
        quotes = await self.prices.resolve_prices(units)
        price_rows = [
            TokenPriceSnapshotDTO(
                snapshot_bucket=bucket,
                unit=q.unit,
                price_usd=q.price_usd,
                source=q.source,
            )
            for q in quotes.values()
        ]
        if price_rows:
            try:
                async with self.db.get_async_session() as session:
                    result.prices_saved = await TokenPriceRepository(session).upsert_batch(price_rows)
            except Exception:
                logger.exception("Price upsert failed for bucket %s", bucket.isoformat())
                result.errors.append(ERROR_SAVE_PRICES)

        logger.info(
            "Snapshot run %s: %d/%d wallets, %d balances, %d prices, %d errors",
            bucket.isoformat(),
            result.processed,
            len(wallets),
            result.balances_saved,
            result.prices_saved,
            len(result.errors),
        )
        return result

    @staticmethod
    def _balance_rows(
        wallets: Sequence[WalletDTO],
        snapshot_ids: Mapping[uuid.UUID, uuid.UUID],
        info_by_address: Mapping[str, AccountInfo],
        assets_by_address: Mapping[str, list[AccountAsset]],
        monitored_units_by_wallet: Mapping[uuid.UUID, Iterable[str]],
    ) -> list[SnapshotBalanceDTO]:
        rows: list[SnapshotBalanceDTO] = []
        for wallet in wallets:
            snapshot_id = snapshot_ids.get(wallet.id)
            if snapshot_id is None:
                continue
            info = info_by_address[wallet.stake_address]
            rows.append(
                SnapshotBalanceDTO(
                    snapshot_id=snapshot_id,
                    unit=LOVELACE_UNIT,
                    quantity_raw=info.total_balance,
                    decimals=LOVELACE_DECIMALS,
                )
            )

            monitored = set(monitored_units_by_wallet.get(wallet.id, ()))
            monitored.discard(LOVELACE_UNIT)
            seen: set[str] = set()
            for asset in assets_by_address.get(wallet.stake_address, []):
                unit = asset.unit
                if unit not in monitored or unit in seen:
                    continue
                seen.add(unit)
                rows.append(
                    SnapshotBalanceDTO(
                        snapshot_id=snapshot_id,
                        unit=unit,
                        quantity_raw=asset.quantity_raw,
                        decimals=asset.decimals,
                    )
                )
            # A monitored unit the wallet no longer holds is recorded as zero,
            # replacing any row an earlier run in the same bucket wrote.
            for unit in sorted(monitored - seen):
                rows.append(
                    SnapshotBalanceDTO(
                        snapshot_id=snapshot_id,
                        unit=unit,
                        quantity_raw=0,
                        decimals=0,
                    )
                )
        return rows
