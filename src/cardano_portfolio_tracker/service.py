"""Portfolio service facade.

Wires storage, providers, pricing, the snapshot pipeline and the threshold
evaluator together behind the operations an API or CLI layer calls. Each
operation opens its own session(s); nothing here holds a session between
calls.
"""

from __future__ import annotations

import hmac
import json
import logging
import math
import uuid
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from redis.asyncio import Redis

from cardano_portfolio_tracker.alerter.discord import DiscordWebhookSink
from cardano_portfolio_tracker.alerter.formatter import ThresholdAlertFormatter
from cardano_portfolio_tracker.portfolio.targets import (
    TargetInput,
    validate_targets,
    validate_wallet_settings,
)
from cardano_portfolio_tracker.portfolio.units import (
    BTC_UNIT,
    LOVELACE_UNIT,
    to_human,
    to_snapshot_bucket,
)
from cardano_portfolio_tracker.portfolio.valuation import Basis, value_portfolio
from cardano_portfolio_tracker.pricing.rate_cache import RedisRateCache
from cardano_portfolio_tracker.pricing.resolver import (
    PriceQuote,
    PriceResolver,
    base_unit_sources_from_settings,
)
from cardano_portfolio_tracker.providers.coingecko import CoinGeckoClient
from cardano_portfolio_tracker.providers.koios import KoiosClient
from cardano_portfolio_tracker.providers.kraken import KrakenClient
from cardano_portfolio_tracker.snapshot_pipeline import SnapshotPipeline, SnapshotRunResult
from cardano_portfolio_tracker.storage.database import DatabaseManager
from cardano_portfolio_tracker.storage.repos import (
    SnapshotBalanceRepository,
    SnapshotRepository,
    TargetDTO,
    TargetRepository,
    TokenDTO,
    TokenPriceRepository,
    TokenRepository,
    WalletDTO,
    WalletRepository,
)
from cardano_portfolio_tracker.threshold_alerts import ThresholdAlertEvaluator, ThresholdRunResult

if TYPE_CHECKING:
    from cardano_portfolio_tracker.config import Settings

logger = logging.getLogger(__name__)

PRICING_SOURCES = ("kraken", "coingecko", "manual")
MAX_SERIES_HOURS = 24 * 365
AUTH_HEADER = "x-snapshot-auth-token"

BASE_TOKEN_DEFINITIONS = (
    TokenDTO(
        unit=LOVELACE_UNIT,
        pricing_source="kraken",
        display_name="Cardano",
        ticker="ADA",
        kraken_pair_query="ADAUSD",
        kraken_result_key_hint="ADAUSD",
        coingecko_id="cardano",
    ),
    TokenDTO(
        unit=BTC_UNIT,
        pricing_source="kraken",
        display_name="Bitcoin",
        ticker="BTC",
        kraken_pair_query="XBTUSD",
        kraken_result_key_hint="XXBTZUSD",
        coingecko_id="bitcoin",
    ),
)


# ============================================================================
# Errors
# ============================================================================


class PortfolioServiceError(Exception):
    """Base class for service-level failures."""


class WalletNotFoundError(PortfolioServiceError):
    """Raised when a wallet id does not name a known wallet."""

    def __init__(self, wallet_id: uuid.UUID) -> None:
        super().__init__(f"Wallet not found: {wallet_id}")
        self.wallet_id = wallet_id


class SnapshotCooldownError(PortfolioServiceError):
    """Raised when a manual snapshot is requested too soon after the last one."""

    def __init__(self, cooldown_minutes: int, remaining_minutes: int) -> None:
        super().__init__(
            f"Manual snapshots are limited to once every {cooldown_minutes} minutes. "
            f"Try again in ~{remaining_minutes} minute(s)."
        )
        self.cooldown_minutes = cooldown_minutes
        self.remaining_minutes = remaining_minutes


class UnauthorizedError(PortfolioServiceError):
    """Raised when a snapshot trigger is not authorized."""


class TokenDefinitionError(ValueError):
    """Raised when a token definition cannot be stored."""


# ============================================================================
# Results
# ============================================================================


@dataclass
class BatchSnapshotResult:
    """Outcome of one page of the scheduled snapshot."""

    processed: int
    total: int
    has_more: bool
    next_batch: int | None
    bucket: datetime
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        return {
            "processed": self.processed,
            "total": self.total,
            "has_more": self.has_more,
            "next_batch": self.next_batch,
            "errors": list(self.errors),
            "bucket": self.bucket.isoformat(),
        }


@dataclass
class AllocationPoint:
    """One point of a wallet's allocation history."""

    snapshot_bucket: datetime
    basis: Basis
    total_value: float
    total_value_usd: float
    allocations_pct: dict[str, float]

    def to_dict(self) -> dict[str, object]:
        return {
            "snapshot_bucket": self.snapshot_bucket.isoformat(),
            "basis": self.basis.value,
            "total_value": self.total_value,
            "total_value_usd": self.total_value_usd,
            "allocations_pct": dict(self.allocations_pct),
        }


# ============================================================================
# Helpers
# ============================================================================


class DatabaseTokenStore:
    """Token definition lookups that open their own session per call."""

    def __init__(self, db: DatabaseManager) -> None:
        self.db = db

    async def get_definitions(self, units: Iterable[str]) -> list[TokenDTO]:
        async with self.db.get_async_session() as session:
            return await TokenRepository(session).get_definitions(units)


def extract_auth_token(
    headers: Mapping[str, str] | None = None,
    query: Mapping[str, str] | None = None,
) -> str | None:
    """Pull a snapshot auth token from request headers or query parameters.

    Checked in order: the ``x-snapshot-auth-token`` header, a Bearer
    ``Authorization`` header, then a ``token`` query parameter.
    """
    lowered = {k.lower(): v for k, v in (headers or {}).items()}
    token = (lowered.get(AUTH_HEADER) or "").strip()
    if token:
        return token
    authorization = (lowered.get("authorization") or "").strip()
    if authorization.lower().startswith("bearer "):
        token = authorization[7:].strip()
        if token:
            return token
    token = ((query or {}).get("token") or "").strip()
    return token or None


def parse_price_overrides(raw: str | None) -> dict[str, float]:
    """Parse ``{"<unit>": {"priceUsd": n}}`` into unit -> USD price.

    Entries without a positive finite price are skipped.

    Raises:
        ValueError: If the document is not a JSON object.
    """
    if not raw or not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid token price overrides JSON: {e}") from e
    if not isinstance(data, dict):
        raise ValueError("Token price overrides must be a JSON object")

    overrides: dict[str, float] = {}
    for unit, entry in data.items():
        unit = str(unit).strip()
        value = entry.get("priceUsd") if isinstance(entry, dict) else None
        try:
            price = float(value)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            price = math.nan
        if not unit or not math.isfinite(price) or price <= 0:
            logger.warning("Skipping invalid price override for %r", unit)
            continue
        overrides[unit] = price
    return overrides


# ============================================================================
# Service
# ============================================================================


class PortfolioService:
    """Entry point for wallet, target, token, snapshot and alert operations."""

    def __init__(
        self,
        db: DatabaseManager,
        pipeline: SnapshotPipeline,
        evaluator: ThresholdAlertEvaluator,
        resolver: PriceResolver,
        *,
        auth_token: str | None = None,
        manual_cooldown_minutes: int = 10,
        default_batch_size: int = 25,
        default_series_hours: int = 168,
    ) -> None:
        self.db = db
        self.pipeline = pipeline
        self.evaluator = evaluator
        self.resolver = resolver
        self.auth_token = auth_token
        self.manual_cooldown_minutes = manual_cooldown_minutes
        self.default_batch_size = default_batch_size
        self.default_series_hours = default_series_hours
        self._closeables: list[Any] = []
        self._redis: Redis | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> PortfolioService:
        """Build a fully wired service from application settings."""
        db = DatabaseManager(settings.database.url)

        redis: Redis | None = None
        rate_cache = None
        if settings.redis.enabled:
            logger.debug("Initializing Redis connection...")
            redis = Redis.from_url(settings.redis.url)  # type: ignore[arg-type]
            rate_cache = RedisRateCache(redis, ttl_seconds=settings.pricing.reference_cache_ttl_seconds)

        api_key = settings.koios.api_key.get_secret_value() if settings.koios.api_key else None
        koios = KoiosClient(
            settings.koios.base_url,
            api_key=api_key,
            timeout=settings.koios.timeout_seconds,
            max_retries=settings.koios.max_retries,
        )
        kraken = KrakenClient(
            settings.pricing.kraken_base_url,
            timeout=settings.pricing.timeout_seconds,
            max_retries=settings.pricing.max_retries,
        )
        coingecko = CoinGeckoClient(
            settings.pricing.coingecko_base_url,
            timeout=settings.pricing.timeout_seconds,
            max_retries=settings.pricing.max_retries,
        )
        resolver = PriceResolver(
            DatabaseTokenStore(db),
            kraken,
            coingecko,
            rate_cache=rate_cache,
            base_units=base_unit_sources_from_settings(settings.pricing),
        )

        sink = None
        if settings.discord.enabled:
            sink = DiscordWebhookSink(
                settings.discord.webhook_url.get_secret_value(),  # type: ignore[union-attr]
                timeout=settings.discord.timeout_seconds,
            )
        evaluator = ThresholdAlertEvaluator(
            db,
            sink,
            formatter=ThresholdAlertFormatter(
                max_suggestions=settings.alert.max_suggestions,
                max_notes=settings.alert.max_notes,
            ),
            dry_run=settings.dry_run,
        )

        auth_token = settings.snapshot.auth_token.get_secret_value() if settings.snapshot.auth_token else None
        service = cls(
            db,
            SnapshotPipeline(db, koios, resolver),
            evaluator,
            resolver,
            auth_token=auth_token,
            manual_cooldown_minutes=settings.snapshot.manual_cooldown_minutes,
            default_batch_size=settings.snapshot.batch_size,
            default_series_hours=settings.snapshot.series_default_hours,
        )
        service._redis = redis
        service._closeables = [koios, kraken, coingecko, *([sink] if sink else [])]
        return service

    async def close(self) -> None:
        """Release HTTP sessions, the Redis connection and the engine."""
        for client in self._closeables:
            client.close()
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
        await self.db.dispose_async()

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    def authorize(self, token: str | None) -> None:
        """Check a snapshot trigger token.

        Raises:
            UnauthorizedError: If no token is configured, none was given, or
                it does not match.
        """
        if not self.auth_token or not token:
            raise UnauthorizedError("Unauthorized")
        if not hmac.compare_digest(token.encode(), self.auth_token.encode()):
            raise UnauthorizedError("Unauthorized")

    # ------------------------------------------------------------------
    # Wallets and targets
    # ------------------------------------------------------------------

    async def register_wallet(self, stake_address: str, wallet_name: str | None = None) -> WalletDTO:
        stake_address = (stake_address or "").strip()
        if not stake_address:
            raise ValueError("stake_address is required")
        async with self.db.get_async_session() as session:
            wallet = await WalletRepository(session).register(stake_address, (wallet_name or "").strip() or None)
        logger.info("Registered wallet %s (%s)", wallet.id, wallet.label)
        return wallet

    async def deactivate_wallet(self, wallet_id: uuid.UUID) -> None:
        async with self.db.get_async_session() as session:
            if not await WalletRepository(session).deactivate(wallet_id):
                raise WalletNotFoundError(wallet_id)
        logger.info("Deactivated wallet %s", wallet_id)

    async def update_wallet_settings(
        self,
        wallet_id: uuid.UUID,
        *,
        threshold_basis: str | None = None,
        deviation_threshold_pct_points: object | None = None,
        swap_fee_bps: object | None = None,
    ) -> WalletDTO:
        patch = validate_wallet_settings(
            threshold_basis=threshold_basis,
            deviation_threshold_pct_points=deviation_threshold_pct_points,
            swap_fee_bps=swap_fee_bps,
        )
        async with self.db.get_async_session() as session:
            wallet = await WalletRepository(session).update_settings(wallet_id, patch.as_values())
        if wallet is None:
            raise WalletNotFoundError(wallet_id)
        return wallet

    async def replace_targets(
        self,
        wallet_id: uuid.UUID,
        targets: Iterable[TargetInput | Mapping[str, object]],
    ) -> list[TargetDTO]:
        """Validate and store a wallet's full target set.

        Raises:
            TargetValidationError: If the set is invalid; stored targets are
                left untouched.
            WalletNotFoundError: If the wallet does not exist.
        """
        cleaned = validate_targets(targets)
        async with self.db.get_async_session() as session:
            if await WalletRepository(session).get(wallet_id) is None:
                raise WalletNotFoundError(wallet_id)
            repo = TargetRepository(session)
            await repo.replace_all(wallet_id, [(t.unit, t.target_pct_points) for t in cleaned])
            return await repo.list_for_wallet(wallet_id)

    async def get_targets(self, wallet_id: uuid.UUID) -> list[TargetDTO]:
        async with self.db.get_async_session() as session:
            return await TargetRepository(session).list_for_wallet(wallet_id)

    # ------------------------------------------------------------------
    # Tokens and prices
    # ------------------------------------------------------------------

    async def upsert_token(self, definition: TokenDTO) -> TokenDTO:
        unit = (definition.unit or "").strip()
        if not unit:
            raise TokenDefinitionError("unit is required")
        source = (definition.pricing_source or "manual").strip().lower()
        if source not in PRICING_SOURCES:
            raise TokenDefinitionError(f"Unsupported pricing_source: {definition.pricing_source!r}")
        if definition.manual_price_usd is not None:
            price = float(definition.manual_price_usd)
            if not math.isfinite(price) or price < 0:
                raise TokenDefinitionError(f"Invalid manual_price_usd: {definition.manual_price_usd!r}")

        token = replace(definition, unit=unit, pricing_source=source)
        async with self.db.get_async_session() as session:
            return await TokenRepository(session).upsert(token)

    async def list_tokens(self) -> list[TokenDTO]:
        async with self.db.get_async_session() as session:
            return await TokenRepository(session).list_all()

    async def test_price(self, unit: str) -> PriceQuote:
        """Resolve one unit through the live pricing path."""
        unit = (unit or "").strip()
        if not unit:
            raise ValueError("unit is required")
        quotes = await self.resolver.resolve_prices([unit])
        return quotes[unit]

    async def seed_tokens(self, overrides_json: str | None = None) -> dict[str, int]:
        """Ensure base definitions exist and load manual USD overrides.

        Existing definitions are never overwritten.

        Returns:
            Count of base definitions and overrides inserted.
        """
        overrides = parse_price_overrides(overrides_json)
        seeded = {"base": 0, "overrides": 0}
        async with self.db.get_async_session() as session:
            repo = TokenRepository(session)
            for token in BASE_TOKEN_DEFINITIONS:
                if await repo.insert_if_missing(token):
                    seeded["base"] += 1
            for unit, price in overrides.items():
                token = TokenDTO(unit=unit, pricing_source="manual", manual_price_usd=price)
                if await repo.insert_if_missing(token):
                    seeded["overrides"] += 1
        logger.info("Seeded %d base token(s) and %d override(s)", seeded["base"], seeded["overrides"])
        return seeded

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    async def _snapshot_wallets(self, wallets: Sequence[WalletDTO], now: datetime | None) -> SnapshotRunResult:
        async with self.db.get_async_session() as session:
            targets = await TargetRepository(session).list_for_wallets([w.id for w in wallets])
        monitored = {wid: [t.unit for t in rows] for wid, rows in targets.items()}
        units_to_price = [unit for units in monitored.values() for unit in units]
        return await self.pipeline.run(wallets, monitored, units_to_price, now=now)

    async def run_batch_snapshot(
        self,
        batch: int = 0,
        batch_size: int | None = None,
        now: datetime | None = None,
    ) -> BatchSnapshotResult:
        """Snapshot one page of active wallets.

        Raises:
            ValueError: On a negative batch or non-positive batch size.
        """
        size = self.default_batch_size if batch_size is None else batch_size
        if batch < 0 or size <= 0:
            raise ValueError(f"Invalid batch parameters: batch={batch} batch_size={size}")
        offset = batch * size

        async with self.db.get_async_session() as session:
            repo = WalletRepository(session)
            total = await repo.count_active()
            wallets = await repo.list_active(offset=offset, limit=size)

        result = await self._snapshot_wallets(wallets, now)
        has_more = offset + size < total
        logger.info("Batch %d: %d wallet(s) of %d, has_more=%s", batch, len(wallets), total, has_more)
        return BatchSnapshotResult(
            processed=result.processed,
            total=total,
            has_more=has_more,
            next_batch=batch + 1 if has_more else None,
            bucket=result.bucket,
            errors=result.errors,
        )

    async def run_manual_snapshot(
        self,
        wallet_id: uuid.UUID | None = None,
        now: datetime | None = None,
    ) -> SnapshotRunResult:
        """Snapshot one wallet (or all active ones) on demand.

        Raises:
            WalletNotFoundError: If ``wallet_id`` is unknown or inactive.
            SnapshotCooldownError: If any selected wallet was snapshotted
                within the cooldown window.
        """
        now = now or datetime.now(UTC)
        if now.tzinfo is None:
            now = now.replace(tzinfo=UTC)

        async with self.db.get_async_session() as session:
            repo = WalletRepository(session)
            if wallet_id is not None:
                wallets = await repo.list_active([wallet_id])
                if not wallets:
                    raise WalletNotFoundError(wallet_id)
            else:
                wallets = await repo.list_active()
            last = await SnapshotRepository(session).latest_snapshot_at([w.id for w in wallets])

        cooldown = timedelta(minutes=self.manual_cooldown_minutes)
        if last is not None and now - last < cooldown:
            remaining = cooldown - (now - last)
            raise SnapshotCooldownError(
                self.manual_cooldown_minutes,
                max(1, math.ceil(remaining.total_seconds() / 60)),
            )
        return await self._snapshot_wallets(wallets, now)

    # ------------------------------------------------------------------
    # Alerts and history
    # ------------------------------------------------------------------

    async def check_thresholds(
        self,
        wallet_ids: Sequence[uuid.UUID] | None = None,
        snapshot_bucket: datetime | None = None,
    ) -> ThresholdRunResult:
        return await self.evaluator.evaluate(wallet_ids, snapshot_bucket)

    async def allocation_series(
        self,
        wallet_id: uuid.UUID,
        hours: int | None = None,
        now: datetime | None = None,
    ) -> list[AllocationPoint]:
        """Allocation history over the wallet's target units, oldest first.

        ``hours`` is clamped to [1, 8760]. Without targets every unit in the
        snapshot is tracked.
        """
        hours = self.default_series_hours if hours is None else int(hours)
        hours = min(max(hours, 1), MAX_SERIES_HOURS)
        now = now or datetime.now(UTC)
        if now.tzinfo is None:
            now = now.replace(tzinfo=UTC)
        since = to_snapshot_bucket(now - timedelta(hours=hours))

        async with self.db.get_async_session() as session:
            wallet = await WalletRepository(session).get(wallet_id)
            if wallet is None:
                raise WalletNotFoundError(wallet_id)
            targets = [t.unit for t in await TargetRepository(session).list_for_wallet(wallet_id)]
            snapshots = await SnapshotRepository(session).list_in_window(wallet_id, since)
            balances = await SnapshotBalanceRepository(session).list_for_snapshots([s.id for s in snapshots])
            units = {b.unit for rows in balances.values() for b in rows}
            prices = await TokenPriceRepository(session).list_for_buckets(
                [s.snapshot_bucket for s in snapshots], [LOVELACE_UNIT, BTC_UNIT, *targets, *units]
            )

        basis = Basis.parse(wallet.threshold_basis)
        points: list[AllocationPoint] = []
        for snapshot in snapshots:
            rows = balances.get(snapshot.id, [])
            quantities = {b.unit: to_human(b.quantity_raw, b.decimals) for b in rows}
            bucket_prices = {u: p.price_usd for u, p in prices.get(snapshot.snapshot_bucket, {}).items()}
            tracked = targets or list(quantities)
            valuation = value_portfolio(quantities, bucket_prices, tracked, basis)
            points.append(
                AllocationPoint(
                    snapshot_bucket=snapshot.snapshot_bucket,
                    basis=Basis.USD if valuation.degraded_to_usd else valuation.basis,
                    total_value=valuation.total_value,
                    total_value_usd=valuation.total_value_usd,
                    allocations_pct=valuation.allocations_pct,
                )
            )
        return points
