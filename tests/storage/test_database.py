"""Tests for engine and session handling."""

import uuid

import pytest
from sqlalchemy.exc import IntegrityError

from cardano_portfolio_tracker.storage.database import to_async_url
from cardano_portfolio_tracker.storage.repos import (
    SnapshotBalanceDTO,
    SnapshotBalanceRepository,
    WalletRepository,
)


class TestToAsyncUrl:
    """Tests for to_async_url."""

    @pytest.mark.parametrize(
        "url, expected",
        [
            ("postgresql://u:p@db/portfolio", "postgresql+asyncpg://u:p@db/portfolio"),
            ("postgres://u:p@db/portfolio", "postgresql+asyncpg://u:p@db/portfolio"),
            ("postgresql+asyncpg://u:p@db/portfolio", "postgresql+asyncpg://u:p@db/portfolio"),
            ("sqlite+aiosqlite:///tracker.db", "sqlite+aiosqlite:///tracker.db"),
        ],
    )
    def test_rewrites_sync_postgres(self, url, expected) -> None:
        assert to_async_url(url) == expected


class TestDatabaseManager:
    """Tests for DatabaseManager sessions."""

    async def test_commits_on_success(self, db) -> None:
        async with db.get_async_session() as session:
            wallet = await WalletRepository(session).register("stake1u_alice")

        async with db.get_async_session() as session:
            assert await WalletRepository(session).get(wallet.id) is not None

    async def test_rolls_back_on_error(self, db) -> None:
        with pytest.raises(RuntimeError):
            async with db.get_async_session() as session:
                await WalletRepository(session).register("stake1u_alice")
                raise RuntimeError("boom")

        async with db.get_async_session() as session:
            assert await WalletRepository(session).get_by_stake_address("stake1u_alice") is None

    async def test_sqlite_enforces_foreign_keys(self, db) -> None:
        """Balances cannot point at a snapshot that does not exist."""
        with pytest.raises(IntegrityError):
            async with db.get_async_session() as session:
                await SnapshotBalanceRepository(session).upsert_batch(
                    [SnapshotBalanceDTO(uuid.uuid4(), "lovelace", 1, 6)]
                )

    async def test_dispose_allows_reuse(self, db) -> None:
        await db.dispose_async()

        async with db.get_async_session() as session:
            assert await WalletRepository(session).count_active() == 0
