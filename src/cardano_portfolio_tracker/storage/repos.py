"""Repository pattern implementations for data access.

This module provides narrow data access abstractions for wallets, targets,
snapshots, snapshot balances, shared price snapshots, token definitions and
alert events. Business logic only ever sees the DTOs defined here.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from cardano_portfolio_tracker.storage.models import (
    TokenModel,
    TokenPriceSnapshotModel,
    WalletAlertEventModel,
    WalletModel,
    WalletSnapshotBalanceModel,
    WalletSnapshotModel,
    WalletTargetModel,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


def _as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops tzinfo)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _dec(value: float | int | Decimal | None) -> Decimal | None:
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _float(value: Decimal | float | None) -> float | None:
    return float(value) if value is not None else None


def _insert(session: AsyncSession, model: type[Any]) -> Any:
    """Dialect-specific INSERT supporting ON CONFLICT upserts."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert(model)
    if dialect == "sqlite":
        return sqlite_insert(model)
    raise NotImplementedError(f"Upserts are not supported on dialect {dialect!r}")


# ============================================================================
# DTOs
# ============================================================================


@dataclass
class WalletDTO:
    """Data transfer object for tracked wallets."""

    id: uuid.UUID
    stake_address: str
    wallet_name: str | None = None
    is_active: bool = True
    threshold_basis: str = "usd"
    deviation_threshold_pct_points: float = 10.0
    swap_fee_bps: int = 30
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def label(self) -> str:
        return self.wallet_name or f"{self.stake_address[:12]}…"

    @classmethod
    def from_model(cls, model: WalletModel) -> WalletDTO:
        return cls(
            id=model.id,
            stake_address=model.stake_address,
            wallet_name=model.wallet_name,
            is_active=model.is_active,
            threshold_basis=model.threshold_basis,
            deviation_threshold_pct_points=float(model.deviation_threshold_pct_points),
            swap_fee_bps=int(model.swap_fee_bps),
            created_at=_as_utc(model.created_at),
            updated_at=_as_utc(model.updated_at),
        )


@dataclass
class TargetDTO:
    """Data transfer object for a wallet's target allocation of one unit."""

    wallet_id: uuid.UUID
    unit: str
    target_pct_points: float

    @classmethod
    def from_model(cls, model: WalletTargetModel) -> TargetDTO:
        return cls(
            wallet_id=model.wallet_id,
            unit=model.unit,
            target_pct_points=float(model.target_pct_points),
        )


@dataclass
class SnapshotDTO:
    """Data transfer object for wallet snapshots."""

    id: uuid.UUID
    wallet_id: uuid.UUID
    snapshot_at: datetime
    snapshot_bucket: datetime

    @classmethod
    def from_model(cls, model: WalletSnapshotModel) -> SnapshotDTO:
        return cls(
            id=model.id,
            wallet_id=model.wallet_id,
            snapshot_at=_as_utc(model.snapshot_at),  # type: ignore[arg-type]
            snapshot_bucket=_as_utc(model.snapshot_bucket),  # type: ignore[arg-type]
        )


@dataclass
class SnapshotBalanceDTO:
    """Data transfer object for a raw balance inside a snapshot."""

    snapshot_id: uuid.UUID
    unit: str
    quantity_raw: int
    decimals: int | None = None

    @classmethod
    def from_model(cls, model: WalletSnapshotBalanceModel) -> SnapshotBalanceDTO:
        return cls(
            snapshot_id=model.snapshot_id,
            unit=model.unit,
            quantity_raw=int(model.quantity_raw),
            decimals=model.decimals,
        )


@dataclass
class TokenPriceSnapshotDTO:
    """Data transfer object for a shared (bucket, unit) USD price."""

    snapshot_bucket: datetime
    unit: str
    price_usd: float | None
    source: str | None = None

    @classmethod
    def from_model(cls, model: TokenPriceSnapshotModel) -> TokenPriceSnapshotDTO:
        return cls(
            snapshot_bucket=_as_utc(model.snapshot_bucket),  # type: ignore[arg-type]
            unit=model.unit,
            price_usd=_float(model.price_usd),
            source=model.source,
        )


@dataclass
class TokenDTO:
    """Data transfer object for token pricing definitions."""

    unit: str
    pricing_source: str = "manual"
    display_name: str | None = None
    ticker: str | None = None
    is_active: bool = True
    kraken_pair_query: str | None = None
    kraken_result_key_hint: str | None = None
    coingecko_id: str | None = None
    manual_price_usd: float | None = None

    @classmethod
    def from_model(cls, model: TokenModel) -> TokenDTO:
        return cls(
            unit=model.unit,
            pricing_source=model.pricing_source,
            display_name=model.display_name,
            ticker=model.ticker,
            is_active=model.is_active,
            kraken_pair_query=model.kraken_pair_query,
            kraken_result_key_hint=model.kraken_result_key_hint,
            coingecko_id=model.coingecko_id,
            manual_price_usd=_float(model.manual_price_usd),
        )


@dataclass
class AlertEventDTO:
    """Data transfer object for threshold alert events."""

    wallet_id: uuid.UUID
    snapshot_id: uuid.UUID
    deviation_threshold_pct_points: float
    details: dict[str, Any] = field(default_factory=dict)
    delivery_sent: bool = False
    delivery_error: str | None = None
    id: int | None = None
    created_at: datetime | None = None

    @classmethod
    def from_model(cls, model: WalletAlertEventModel) -> AlertEventDTO:
        return cls(
            id=model.id,
            wallet_id=model.wallet_id,
            snapshot_id=model.snapshot_id,
            deviation_threshold_pct_points=float(model.deviation_threshold_pct_points),
            details=dict(model.details or {}),
            delivery_sent=model.delivery_sent,
            delivery_error=model.delivery_error,
            created_at=_as_utc(model.created_at),
        )


# ============================================================================
# Repositories
# ============================================================================


class WalletRepository:
    """Repository for tracked wallets."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, wallet_id: uuid.UUID) -> WalletDTO | None:
        model = await self.session.get(WalletModel, wallet_id)
        return WalletDTO.from_model(model) if model else None

    async def get_by_stake_address(self, stake_address: str) -> WalletDTO | None:
        result = await self.session.execute(
            select(WalletModel).where(WalletModel.stake_address == stake_address)
        )
        model = result.scalar_one_or_none()
        return WalletDTO.from_model(model) if model else None

    async def list_active(
        self,
        wallet_ids: Sequence[uuid.UUID] | None = None,
        *,
        offset: int = 0,
        limit: int | None = None,
    ) -> list[WalletDTO]:
        """Active wallets in stable registration order."""
        query = select(WalletModel).where(WalletModel.is_active.is_(True))
        if wallet_ids is not None:
            if not wallet_ids:
                return []
            query = query.where(WalletModel.id.in_(list(wallet_ids)))
        query = query.order_by(WalletModel.created_at, WalletModel.id).offset(offset)
        if limit is not None:
            query = query.limit(limit)
        result = await self.session.execute(query)
        return [WalletDTO.from_model(m) for m in result.scalars().all()]

    async def count_active(self) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(WalletModel).where(WalletModel.is_active.is_(True))
        )
        return int(result.scalar_one())

    async def register(self, stake_address: str, wallet_name: str | None = None) -> WalletDTO:
        """Create a wallet, or reactivate (and optionally rename) an existing one."""
        result = await self.session.execute(
            select(WalletModel).where(WalletModel.stake_address == stake_address)
        )
        model = result.scalar_one_or_none()
        if model is None:
            now = datetime.now(UTC)
            model = WalletModel(
                id=uuid.uuid4(),
                stake_address=stake_address,
                wallet_name=wallet_name,
                is_active=True,
                threshold_basis="usd",
                deviation_threshold_pct_points=Decimal("10"),
                swap_fee_bps=30,
                created_at=now,
                updated_at=now,
            )
            self.session.add(model)
        else:
            model.is_active = True
            if wallet_name:
                model.wallet_name = wallet_name
        await self.session.flush()
        return WalletDTO.from_model(model)

    async def deactivate(self, wallet_id: uuid.UUID) -> bool:
        result = await self.session.execute(
            update(WalletModel)
            .where(WalletModel.id == wallet_id)
            .values(is_active=False, updated_at=datetime.now(UTC))
        )
        return (result.rowcount or 0) > 0

    async def update_settings(self, wallet_id: uuid.UUID, values: dict[str, Any]) -> WalletDTO | None:
        model = await self.session.get(WalletModel, wallet_id)
        if model is None:
            return None
        for key, value in values.items():
            if key == "deviation_threshold_pct_points":
                value = _dec(value)
            setattr(model, key, value)
        model.updated_at = datetime.now(UTC)
        await self.session.flush()
        return WalletDTO.from_model(model)


class TargetRepository:
    """Repository for wallet target allocations."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def list_for_wallet(self, wallet_id: uuid.UUID) -> list[TargetDTO]:
        result = await self.session.execute(
            select(WalletTargetModel)
            .where(WalletTargetModel.wallet_id == wallet_id)
            .order_by(WalletTargetModel.unit)
        )
        return [TargetDTO.from_model(m) for m in result.scalars().all()]

    async def list_for_wallets(self, wallet_ids: Sequence[uuid.UUID]) -> dict[uuid.UUID, list[TargetDTO]]:
        out: dict[uuid.UUID, list[TargetDTO]] = {wid: [] for wid in wallet_ids}
        if not wallet_ids:
            return out
        result = await self.session.execute(
            select(WalletTargetModel)
            .where(WalletTargetModel.wallet_id.in_(list(wallet_ids)))
            .order_by(WalletTargetModel.wallet_id, WalletTargetModel.unit)
        )
        for model in result.scalars().all():
            out.setdefault(model.wallet_id, []).append(TargetDTO.from_model(model))
        return out

    async def replace_all(self, wallet_id: uuid.UUID, targets: Iterable[tuple[str, float]]) -> int:
        """Replace a wallet's targets wholesale (delete, then insert)."""
        await self.session.execute(delete(WalletTargetModel).where(WalletTargetModel.wallet_id == wallet_id))
        now = datetime.now(UTC)
        count = 0
        for unit, pct in targets:
            self.session.add(
                WalletTargetModel(
                    wallet_id=wallet_id,
                    unit=unit,
                    target_pct_points=_dec(pct),
                    created_at=now,
                )
            )
            count += 1
        await self.session.flush()
        return count


class SnapshotRepository:
    """Repository for hourly wallet snapshots."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def upsert_many(
        self,
        wallet_ids: Sequence[uuid.UUID],
        *,
        snapshot_at: datetime,
        snapshot_bucket: datetime,
    ) -> dict[uuid.UUID, uuid.UUID]:
        """Upsert one snapshot per wallet for the bucket.

        Re-running within the same bucket refreshes ``snapshot_at`` and keeps
        the existing row id.

        Returns:
            Mapping wallet_id -> snapshot_id for the bucket.
        """
        wallet_ids = list(dict.fromkeys(wallet_ids))
        if not wallet_ids:
            return {}
        now = datetime.now(UTC)
        values = [
            {
                "id": uuid.uuid4(),
                "wallet_id": wid,
                "snapshot_at": snapshot_at,
                "snapshot_bucket": snapshot_bucket,
                "created_at": now,
            }
            for wid in wallet_ids
        ]
        stmt = _insert(self.session, WalletSnapshotModel).values(values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["wallet_id", "snapshot_bucket"],
            set_={"snapshot_at": stmt.excluded.snapshot_at},
        )
        await self.session.execute(stmt)
        await self.session.flush()

        result = await self.session.execute(
            select(WalletSnapshotModel.wallet_id, WalletSnapshotModel.id).where(
                WalletSnapshotModel.wallet_id.in_(list(wallet_ids)),
                WalletSnapshotModel.snapshot_bucket == snapshot_bucket,
            )
        )
        return {row.wallet_id: row.id for row in result.all()}

    async def get_for_bucket(self, wallet_id: uuid.UUID, snapshot_bucket: datetime) -> SnapshotDTO | None:
        result = await self.session.execute(
            select(WalletSnapshotModel).where(
                WalletSnapshotModel.wallet_id == wallet_id,
                WalletSnapshotModel.snapshot_bucket == snapshot_bucket,
            )
        )
        model = result.scalar_one_or_none()
        return SnapshotDTO.from_model(model) if model else None

    async def get_latest(self, wallet_id: uuid.UUID) -> SnapshotDTO | None:
        result = await self.session.execute(
            select(WalletSnapshotModel)
            .where(WalletSnapshotModel.wallet_id == wallet_id)
            .order_by(WalletSnapshotModel.snapshot_at.desc())
            .limit(1)
        )
        model = result.scalar_one_or_none()
        return SnapshotDTO.from_model(model) if model else None

    async def list_in_window(self, wallet_id: uuid.UUID, since: datetime) -> list[SnapshotDTO]:
        result = await self.session.execute(
            select(WalletSnapshotModel)
            .where(
                WalletSnapshotModel.wallet_id == wallet_id,
                WalletSnapshotModel.snapshot_bucket >= since,
            )
            .order_by(WalletSnapshotModel.snapshot_bucket)
        )
        return [SnapshotDTO.from_model(m) for m in result.scalars().all()]

    async def latest_snapshot_at(self, wallet_ids: Sequence[uuid.UUID]) -> datetime | None:
        if not wallet_ids:
            return None
        result = await self.session.execute(
            select(func.max(WalletSnapshotModel.snapshot_at)).where(
                WalletSnapshotModel.wallet_id.in_(list(wallet_ids))
            )
        )
        return _as_utc(result.scalar_one_or_none())


class SnapshotBalanceRepository:
    """Repository for per-snapshot balances."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def upsert_batch(self, rows: Sequence[SnapshotBalanceDTO]) -> int:
        """Upsert balances on (snapshot_id, unit); latest fetch wins."""
        if not rows:
            return 0
        values = [
            {
                "snapshot_id": r.snapshot_id,
                "unit": r.unit,
                "quantity_raw": Decimal(int(r.quantity_raw)),
                "decimals": r.decimals,
            }
            for r in rows
        ]
        stmt = _insert(self.session, WalletSnapshotBalanceModel).values(values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["snapshot_id", "unit"],
            set_={
                "quantity_raw": stmt.excluded.quantity_raw,
                "decimals": stmt.excluded.decimals,
            },
        )
        await self.session.execute(stmt)
        await self.session.flush()
        return len(values)

    async def list_for_snapshot(self, snapshot_id: uuid.UUID) -> list[SnapshotBalanceDTO]:
        result = await self.session.execute(
            select(WalletSnapshotBalanceModel)
            .where(WalletSnapshotBalanceModel.snapshot_id == snapshot_id)
            .order_by(WalletSnapshotBalanceModel.unit)
        )
        return [SnapshotBalanceDTO.from_model(m) for m in result.scalars().all()]

    async def list_for_snapshots(
        self, snapshot_ids: Sequence[uuid.UUID]
    ) -> dict[uuid.UUID, list[SnapshotBalanceDTO]]:
        out: dict[uuid.UUID, list[SnapshotBalanceDTO]] = {sid: [] for sid in snapshot_ids}
        if not snapshot_ids:
            return out
        result = await self.session.execute(
            select(WalletSnapshotBalanceModel).where(
                WalletSnapshotBalanceModel.snapshot_id.in_(list(snapshot_ids))
            )
        )
        for model in result.scalars().all():
            out.setdefault(model.snapshot_id, []).append(SnapshotBalanceDTO.from_model(model))
        return out


class TokenPriceRepository:
    """Repository for shared (bucket, unit) price snapshots."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def upsert_batch(self, rows: Sequence[TokenPriceSnapshotDTO]) -> int:
        """Upsert prices on (snapshot_bucket, unit); one row per key across all wallets."""
        if not rows:
            return 0
        now = datetime.now(UTC)
        # A statement may not touch the same conflict key twice.
        deduped = {(r.snapshot_bucket, r.unit): r for r in rows}
        values = [
            {
                "snapshot_bucket": r.snapshot_bucket,
                "unit": r.unit,
                "price_usd": _dec(r.price_usd),
                "source": r.source,
                "created_at": now,
            }
            for r in deduped.values()
        ]
        stmt = _insert(self.session, TokenPriceSnapshotModel).values(values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["snapshot_bucket", "unit"],
            set_={
                "price_usd": stmt.excluded.price_usd,
                "source": stmt.excluded.source,
            },
        )
        await self.session.execute(stmt)
        await self.session.flush()
        return len(values)

    async def get_for_bucket(
        self, snapshot_bucket: datetime, units: Iterable[str]
    ) -> dict[str, TokenPriceSnapshotDTO]:
        unit_list = list(dict.fromkeys(units))
        if not unit_list:
            return {}
        result = await self.session.execute(
            select(TokenPriceSnapshotModel).where(
                TokenPriceSnapshotModel.snapshot_bucket == snapshot_bucket,
                TokenPriceSnapshotModel.unit.in_(unit_list),
            )
        )
        return {m.unit: TokenPriceSnapshotDTO.from_model(m) for m in result.scalars().all()}

    async def list_for_buckets(
        self, snapshot_buckets: Iterable[datetime], units: Iterable[str]
    ) -> dict[datetime, dict[str, TokenPriceSnapshotDTO]]:
        bucket_list = list(dict.fromkeys(snapshot_buckets))
        unit_list = list(dict.fromkeys(units))
        out: dict[datetime, dict[str, TokenPriceSnapshotDTO]] = {b: {} for b in bucket_list}
        if not bucket_list or not unit_list:
            return out
        result = await self.session.execute(
            select(TokenPriceSnapshotModel).where(
                TokenPriceSnapshotModel.snapshot_bucket.in_(bucket_list),
                TokenPriceSnapshotModel.unit.in_(unit_list),
            )
        )
        for model in result.scalars().all():
            dto = TokenPriceSnapshotDTO.from_model(model)
            out.setdefault(dto.snapshot_bucket, {})[dto.unit] = dto
        return out


class TokenRepository:
    """Repository for token pricing definitions."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, unit: str) -> TokenDTO | None:
        model = await self.session.get(TokenModel, unit)
        return TokenDTO.from_model(model) if model else None

    async def get_definitions(self, units: Iterable[str]) -> list[TokenDTO]:
        unit_list = list(dict.fromkeys(units))
        if not unit_list:
            return []
        result = await self.session.execute(select(TokenModel).where(TokenModel.unit.in_(unit_list)))
        return [TokenDTO.from_model(m) for m in result.scalars().all()]

    async def list_all(self) -> list[TokenDTO]:
        result = await self.session.execute(select(TokenModel).order_by(TokenModel.unit))
        return [TokenDTO.from_model(m) for m in result.scalars().all()]

    def _values(self, dto: TokenDTO) -> dict[str, Any]:
        return {
            "unit": dto.unit,
            "pricing_source": dto.pricing_source,
            "display_name": dto.display_name,
            "ticker": dto.ticker,
            "is_active": dto.is_active,
            "kraken_pair_query": dto.kraken_pair_query,
            "kraken_result_key_hint": dto.kraken_result_key_hint,
            "coingecko_id": dto.coingecko_id,
            "manual_price_usd": _dec(dto.manual_price_usd),
        }

    async def upsert(self, dto: TokenDTO) -> TokenDTO:
        now = datetime.now(UTC)
        values = self._values(dto)
        stmt = _insert(self.session, TokenModel).values(**values, created_at=now, updated_at=now)
        stmt = stmt.on_conflict_do_update(
            index_elements=["unit"],
            set_={
                **{k: getattr(stmt.excluded, k) for k in values if k != "unit"},
                "updated_at": now,
            },
        )
        await self.session.execute(stmt)
        await self.session.flush()
        return dto

    async def insert_if_missing(self, dto: TokenDTO) -> bool:
        """Insert a definition unless the unit already has one.

        Returns:
            True if a row was inserted.
        """
        now = datetime.now(UTC)
        stmt = (
            _insert(self.session, TokenModel)
            .values(**self._values(dto), created_at=now, updated_at=now)
            .on_conflict_do_nothing(index_elements=["unit"])
        )
        result = await self.session.execute(stmt)
        await self.session.flush()
        return (result.rowcount or 0) > 0


class AlertEventRepository:
    """Repository for threshold alert events."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def exists_for_snapshot(self, wallet_id: uuid.UUID, snapshot_id: uuid.UUID) -> bool:
        result = await self.session.execute(
            select(WalletAlertEventModel.id)
            .where(
                WalletAlertEventModel.wallet_id == wallet_id,
                WalletAlertEventModel.snapshot_id == snapshot_id,
            )
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def insert(self, dto: AlertEventDTO) -> AlertEventDTO:
        model = WalletAlertEventModel(
            wallet_id=dto.wallet_id,
            snapshot_id=dto.snapshot_id,
            deviation_threshold_pct_points=_dec(dto.deviation_threshold_pct_points),
            details=dto.details,
            delivery_sent=dto.delivery_sent,
            delivery_error=dto.delivery_error,
            created_at=datetime.now(UTC),
        )
        self.session.add(model)
        await self.session.flush()
        return AlertEventDTO.from_model(model)

    async def mark_delivery(self, event_id: int, *, sent: bool, error: str | None = None) -> None:
        await self.session.execute(
            update(WalletAlertEventModel)
            .where(WalletAlertEventModel.id == event_id)
            .values(delivery_sent=sent, delivery_error=None if sent else error)
        )
        await self.session.flush()

    async def list_for_wallet(self, wallet_id: uuid.UUID) -> list[AlertEventDTO]:
        result = await self.session.execute(
            select(WalletAlertEventModel)
            .where(WalletAlertEventModel.wallet_id == wallet_id)
            .order_by(WalletAlertEventModel.created_at)
        )
        return [AlertEventDTO.from_model(m) for m in result.scalars().all()]
