"""Tests for the reference-rate caches."""

import json
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

from cardano_portfolio_tracker.pricing.rate_cache import (
    RATE_KEY_PREFIX,
    CachedRate,
    InMemoryRateCache,
    RedisRateCache,
)


def _rate(fetched_at: datetime | None = None) -> CachedRate:
    return CachedRate(
        unit="lovelace",
        price_usd=0.45,
        source="kraken:ADAUSD",
        fetched_at=fetched_at or datetime.now(UTC),
    )


class TestRedisRateCache:
    """Tests for RedisRateCache."""

    async def test_put_sets_ttl(self) -> None:
        redis = AsyncMock()
        cache = RedisRateCache(redis, ttl_seconds=120)
        rate = _rate()

        await cache.put(rate)

        redis.set.assert_awaited_once()
        args, kwargs = redis.set.call_args
        assert args[0] == f"{RATE_KEY_PREFIX}lovelace"
        assert json.loads(args[1])["source"] == "kraken:ADAUSD"
        assert kwargs == {"ex": 120}

    async def test_get_decodes_bytes(self) -> None:
        rate = _rate(datetime(2026, 3, 1, 12, tzinfo=UTC))
        redis = AsyncMock()
        redis.get.return_value = json.dumps(rate.to_dict()).encode("utf-8")

        assert await RedisRateCache(redis).get("lovelace") == rate

    async def test_get_miss(self) -> None:
        redis = AsyncMock()
        redis.get.return_value = None

        assert await RedisRateCache(redis).get("BTC") is None

    async def test_get_malformed_is_miss(self) -> None:
        redis = AsyncMock()
        redis.get.return_value = b"{not json"

        assert await RedisRateCache(redis).get("BTC") is None


class TestInMemoryRateCache:
    """Tests for InMemoryRateCache."""

    async def test_round_trip(self) -> None:
        cache = InMemoryRateCache(ttl_seconds=60)
        rate = _rate()

        await cache.put(rate)

        assert await cache.get("lovelace") == rate

    async def test_expired_entries_are_dropped(self) -> None:
        cache = InMemoryRateCache(ttl_seconds=60)
        await cache.put(_rate(datetime.now(UTC) - timedelta(minutes=5)))

        assert await cache.get("lovelace") is None

    async def test_instances_do_not_share_state(self) -> None:
        first = InMemoryRateCache()
        await first.put(_rate())

        assert await InMemoryRateCache().get("lovelace") is None
