"""Storage layer - Database schemas and repositories."""

from cardano_portfolio_tracker.storage.database import (
    DatabaseManager,
    build_async_engine,
    create_schema,
    to_async_url,
)
from cardano_portfolio_tracker.storage.models import (
    Base,
    TokenModel,
    TokenPriceSnapshotModel,
    WalletAlertEventModel,
    WalletModel,
    WalletSnapshotBalanceModel,
    WalletSnapshotModel,
    WalletTargetModel,
)
from cardano_portfolio_tracker.storage.repos import (
    AlertEventDTO,
    AlertEventRepository,
    SnapshotBalanceDTO,
    SnapshotBalanceRepository,
    SnapshotDTO,
    SnapshotRepository,
    TargetDTO,
    TargetRepository,
    TokenDTO,
    TokenPriceRepository,
    TokenPriceSnapshotDTO,
    TokenRepository,
    WalletDTO,
    WalletRepository,
)

__all__ = [
    "AlertEventDTO",
    "AlertEventRepository",
    "Base",
    "DatabaseManager",
    "SnapshotBalanceDTO",
    "SnapshotBalanceRepository",
    "SnapshotDTO",
    "SnapshotRepository",
    "TargetDTO",
    "TargetRepository",
    "TokenDTO",
    "TokenModel",
    "TokenPriceRepository",
    "TokenPriceSnapshotDTO",
    "TokenPriceSnapshotModel",
    "TokenRepository",
    "WalletAlertEventModel",
    "WalletDTO",
    "WalletModel",
    "WalletRepository",
    "WalletSnapshotBalanceModel",
    "WalletSnapshotModel",
    "WalletTargetModel",
    "build_async_engine",
    "create_schema",
    "to_async_url",
]
