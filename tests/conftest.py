"""Pytest configuration and fixtures."""

from collections.abc import Sequence
from datetime import UTC, datetime

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from cardano_portfolio_tracker.providers.models import AccountAsset, AccountInfo
from cardano_portfolio_tracker.storage.database import DatabaseManager
from cardano_portfolio_tracker.storage.models import Base

POLICY_A = "a" * 56
POLICY_B = "b" * 56
# Native token units: policy id + hex asset name.
UNIT_A = f"{POLICY_A}41"
UNIT_B = f"{POLICY_B}42"


@pytest.fixture
async def async_engine():
    """Create an async SQLite engine for testing."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def async_session(async_engine) -> AsyncSession:
    """Create an async session for testing."""
    session_factory = async_sessionmaker(bind=async_engine, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest.fixture
async def db(tmp_path) -> DatabaseManager:
    """File-backed database shared across the sessions a component opens."""
    manager = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path / 'tracker.db'}")
    await manager.init_schema_async()
    yield manager
    await manager.dispose_async()


@pytest.fixture
def now() -> datetime:
    """A fixed instant inside the 12:00 UTC bucket."""
    return datetime(2026, 3, 1, 12, 34, 56, tzinfo=UTC)


class FakeBalanceProvider:
    """In-memory balance provider recording each batched call."""

    def __init__(
        self,
        info: Sequence[AccountInfo] = (),
        assets: Sequence[AccountAsset] = (),
        error: Exception | None = None,
    ) -> None:
        self.info = list(info)
        self.assets = list(assets)
        self.error = error
        self.calls: list[list[str]] = []

    async def get_account_info(self, stake_addresses: Sequence[str]) -> list[AccountInfo]:
        self.calls.append(list(stake_addresses))
        if self.error is not None:
            raise self.error
        return [i for i in self.info if i.stake_address in stake_addresses]

    async def get_account_assets(self, stake_addresses: Sequence[str]) -> list[AccountAsset]:
        if self.error is not None:
            raise self.error
        return [a for a in self.assets if a.stake_address in stake_addresses]


class FakeTicker:
    """Kraken-like ticker returning fixed result keys."""

    def __init__(self, result: dict[str, float] | None = None, error: Exception | None = None) -> None:
        self.result = result or {}
        self.error = error
        self.calls: list[list[str]] = []

    async def get_ticker(self, pairs: Sequence[str]) -> dict[str, float]:
        self.calls.append(list(pairs))
        if self.error is not None:
            raise self.error
        return dict(self.result)


class FakeAggregator:
    """CoinGecko-like aggregator returning fixed prices by id."""

    def __init__(self, result: dict[str, float] | None = None, error: Exception | None = None) -> None:
        self.result = result or {}
        self.error = error
        self.calls: list[list[str]] = []

    async def get_simple_price(self, ids: Sequence[str]) -> dict[str, float]:
        self.calls.append(list(ids))
        if self.error is not None:
            raise self.error
        return {i: p for i, p in self.result.items() if i in ids}


class FakeSink:
    """Notification sink that records messages, optionally failing."""

    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.messages: list[str] = []

    async def send(self, text: str) -> None:
        if self.error is not None:
            raise self.error
        self.messages.append(text)
