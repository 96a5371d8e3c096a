"""Initial schema for wallets, targets, snapshots, prices, tokens and alerts.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000+00:00
"""

from datetime import datetime, timezone
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Tracked wallets
    op.create_table(
        "user_wallets",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("stake_address", sa.String(128), nullable=False),
        sa.Column("wallet_name", sa.String(255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("threshold_basis", sa.String(16), nullable=False),
        sa.Column("deviation_threshold_pct_points", sa.Numeric(10, 4), nullable=False),
        sa.Column("swap_fee_bps", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("stake_address"),
        sa.CheckConstraint(
            "threshold_basis IN ('usd', 'ada', 'btc', 'holdings')", name="ck_user_wallets_basis"
        ),
        sa.CheckConstraint("deviation_threshold_pct_points >= 0", name="ck_user_wallets_threshold"),
        sa.CheckConstraint("swap_fee_bps >= 0", name="ck_user_wallets_fee"),
    )
    op.create_index("idx_user_wallets_active", "user_wallets", ["is_active"])

    # Per-wallet target allocations
    op.create_table(
        "wallet_token_targets",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("wallet_id", sa.Uuid(), nullable=False),
        sa.Column("unit", sa.String(255), nullable=False),
        sa.Column("target_pct_points", sa.Numeric(10, 4), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["wallet_id"], ["user_wallets.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("wallet_id", "unit", name="uq_wallet_token_targets_wallet_unit"),
        sa.CheckConstraint("target_pct_points >= 0", name="ck_wallet_token_targets_pct"),
    )

    # Hourly wallet snapshots
    op.create_table(
        "wallet_snapshots",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("wallet_id", sa.Uuid(), nullable=False),
        sa.Column("snapshot_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("snapshot_bucket", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["wallet_id"], ["user_wallets.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("wallet_id", "snapshot_bucket", name="uq_wallet_snapshots_wallet_bucket"),
    )
    op.create_index("idx_wallet_snapshots_wallet_at", "wallet_snapshots", ["wallet_id", "snapshot_at"])

    # Raw balances inside a snapshot
    op.create_table(
        "wallet_snapshot_balances",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("snapshot_id", sa.Uuid(), nullable=False),
        sa.Column("unit", sa.String(255), nullable=False),
        sa.Column("quantity_raw", sa.Numeric(78, 0), nullable=False),
        sa.Column("decimals", sa.Integer(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["snapshot_id"], ["wallet_snapshots.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("snapshot_id", "unit", name="uq_wallet_snapshot_balances_snapshot_unit"),
    )

    # Shared per-bucket USD prices
    op.create_table(
        "token_price_snapshots",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("snapshot_bucket", sa.DateTime(timezone=True), nullable=False),
        sa.Column("unit", sa.String(255), nullable=False),
        sa.Column("price_usd", sa.Numeric(38, 18), nullable=True),
        sa.Column("source", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("snapshot_bucket", "unit", name="uq_token_price_snapshots_bucket_unit"),
    )
    op.create_index(
        "idx_token_price_snapshots_unit_bucket", "token_price_snapshots", ["unit", "snapshot_bucket"]
    )

    # Token pricing definitions
    tokens = op.create_table(
        "tokens",
        sa.Column("unit", sa.String(255), nullable=False),
        sa.Column("display_name", sa.String(255), nullable=True),
        sa.Column("ticker", sa.String(32), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("pricing_source", sa.String(16), nullable=False),
        sa.Column("kraken_pair_query", sa.String(64), nullable=True),
        sa.Column("kraken_result_key_hint", sa.String(64), nullable=True),
        sa.Column("coingecko_id", sa.String(128), nullable=True),
        sa.Column("manual_price_usd", sa.Numeric(38, 18), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("unit"),
        sa.CheckConstraint(
            "pricing_source IN ('kraken', 'coingecko', 'manual')", name="ck_tokens_pricing_source"
        ),
    )

    # Threshold alert events
    op.create_table(
        "wallet_alert_events",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("wallet_id", sa.Uuid(), nullable=False),
        sa.Column("snapshot_id", sa.Uuid(), nullable=False),
        sa.Column("deviation_threshold_pct_points", sa.Numeric(10, 4), nullable=False),
        sa.Column("details", sa.JSON().with_variant(postgresql.JSONB(), "postgresql"), nullable=False),
        sa.Column("delivery_sent", sa.Boolean(), nullable=False),
        sa.Column("delivery_error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["wallet_id"], ["user_wallets.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["snapshot_id"], ["wallet_snapshots.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("wallet_id", "snapshot_id", name="uq_wallet_alert_events_wallet_snapshot"),
    )

    # ADA and BTC are always priced
    now = datetime.now(timezone.utc)
    op.bulk_insert(
        tokens,
        [
            {
                "unit": "lovelace",
                "display_name": "Cardano",
                "ticker": "ADA",
                "is_active": True,
                "pricing_source": "kraken",
                "kraken_pair_query": "ADAUSD",
                "kraken_result_key_hint": "ADAUSD",
                "coingecko_id": "cardano",
                "created_at": now,
                "updated_at": now,
            },
            {
                "unit": "BTC",
                "display_name": "Bitcoin",
                "ticker": "BTC",
                "is_active": True,
                "pricing_source": "kraken",
                "kraken_pair_query": "XBTUSD",
                "kraken_result_key_hint": "XXBTZUSD",
                "coingecko_id": "bitcoin",
                "created_at": now,
                "updated_at": now,
            },
        ],
    )


def downgrade() -> None:
    op.drop_table("wallet_alert_events")
    op.drop_table("tokens")
    op.drop_index("idx_token_price_snapshots_unit_bucket", table_name="token_price_snapshots")
    op.drop_table("token_price_snapshots")
    op.drop_table("wallet_snapshot_balances")
    op.drop_index("idx_wallet_snapshots_wallet_at", table_name="wallet_snapshots")
    op.drop_table("wallet_snapshots")
    op.drop_table("wallet_token_targets")
    op.drop_index("idx_user_wallets_active", table_name="user_wallets")
    op.drop_table("user_wallets")
