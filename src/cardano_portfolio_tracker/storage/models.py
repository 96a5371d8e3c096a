"""SQLAlchemy models for persistent storage.

This module defines the database schema for tracked wallets, their
targets, hourly snapshots, the shared price table, token pricing
definitions and threshold alert events.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

JSONType = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class WalletModel(Base):
    """A tracked stake address and its alerting settings."""

    __tablename__ = "user_wallets"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    stake_address: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    wallet_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    threshold_basis: Mapped[str] = mapped_column(String(16), nullable=False, default="usd")
    deviation_threshold_pct_points: Mapped[Decimal] = mapped_column(
        Numeric(10, 4), nullable=False, default=Decimal("10")
    )
    swap_fee_bps: Mapped[int] = mapped_column(Integer, nullable=False, default=30)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "threshold_basis IN ('usd', 'ada', 'btc', 'holdings')", name="ck_user_wallets_basis"
        ),
        CheckConstraint("deviation_threshold_pct_points >= 0", name="ck_user_wallets_threshold"),
        CheckConstraint("swap_fee_bps >= 0", name="ck_user_wallets_fee"),
        Index("idx_user_wallets_active", "is_active"),
    )


class WalletTargetModel(Base):
    """Desired allocation for one unit in one wallet."""

    __tablename__ = "wallet_token_targets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    wallet_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("user_wallets.id", ondelete="CASCADE"), nullable=False
    )
    unit: Mapped[str] = mapped_column(String(255), nullable=False)
    target_pct_points: Mapped[Decimal] = mapped_column(Numeric(10, 4), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        UniqueConstraint("wallet_id", "unit", name="uq_wallet_token_targets_wallet_unit"),
        CheckConstraint("target_pct_points >= 0", name="ck_wallet_token_targets_pct"),
    )


class WalletSnapshotModel(Base):
    """One snapshot per wallet per hourly bucket."""

    __tablename__ = "wallet_snapshots"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    wallet_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("user_wallets.id", ondelete="CASCADE"), nullable=False
    )
    snapshot_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    snapshot_bucket: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        UniqueConstraint("wallet_id", "snapshot_bucket", name="uq_wallet_snapshots_wallet_bucket"),
        Index("idx_wallet_snapshots_wallet_at", "wallet_id", "snapshot_at"),
    )


class WalletSnapshotBalanceModel(Base):
    """Raw on-chain quantity of one unit inside a snapshot."""

    __tablename__ = "wallet_snapshot_balances"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    snapshot_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("wallet_snapshots.id", ondelete="CASCADE"), nullable=False
    )
    unit: Mapped[str] = mapped_column(String(255), nullable=False)
    # uint64 quantities times token scaling can exceed BIGINT.
    quantity_raw: Mapped[Decimal] = mapped_column(Numeric(78, 0), nullable=False)
    decimals: Mapped[int | None] = mapped_column(Integer, nullable=True)

    __table_args__ = (
        UniqueConstraint("snapshot_id", "unit", name="uq_wallet_snapshot_balances_snapshot_unit"),
    )


class TokenPriceSnapshotModel(Base):
    """USD price of a unit for an hourly bucket, shared by all wallets."""

    __tablename__ = "token_price_snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    snapshot_bucket: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    unit: Mapped[str] = mapped_column(String(255), nullable=False)
    price_usd: Mapped[Decimal | None] = mapped_column(Numeric(38, 18), nullable=True)
    source: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        UniqueConstraint("snapshot_bucket", "unit", name="uq_token_price_snapshots_bucket_unit"),
        Index("idx_token_price_snapshots_unit_bucket", "unit", "snapshot_bucket"),
    )


class TokenModel(Base):
    """Pricing definition for a unit."""

    __tablename__ = "tokens"

    unit: Mapped[str] = mapped_column(String(255), primary_key=True)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    ticker: Mapped[str | None] = mapped_column(String(32), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    pricing_source: Mapped[str] = mapped_column(String(16), nullable=False, default="manual")
    kraken_pair_query: Mapped[str | None] = mapped_column(String(64), nullable=True)
    kraken_result_key_hint: Mapped[str | None] = mapped_column(String(64), nullable=True)
    coingecko_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    manual_price_usd: Mapped[Decimal | None] = mapped_column(Numeric(38, 18), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "pricing_source IN ('kraken', 'coingecko', 'manual')", name="ck_tokens_pricing_source"
        ),
    )


class WalletAlertEventModel(Base):
    """A threshold alert raised for a wallet snapshot, with delivery status."""

    __tablename__ = "wallet_alert_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    wallet_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("user_wallets.id", ondelete="CASCADE"), nullable=False
    )
    snapshot_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("wallet_snapshots.id", ondelete="CASCADE"), nullable=False
    )
    deviation_threshold_pct_points: Mapped[Decimal] = mapped_column(Numeric(10, 4), nullable=False)
    details: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    delivery_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    delivery_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        UniqueConstraint("wallet_id", "snapshot_id", name="uq_wallet_alert_events_wallet_snapshot"),
    )
