"""Reference exchange-rate cache (ADA/USD, BTC/USD) with a TTL."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = logging.getLogger(__name__)

RATE_KEY_PREFIX = "cardano:pricing:rate:"
DEFAULT_TTL_SECONDS = 300


@dataclass(frozen=True)
class CachedRate:
    """A USD rate and when it was fetched."""

    unit: str
    price_usd: float
    source: str
    fetched_at: datetime

    def is_fresh(self, now: datetime, ttl_seconds: int) -> bool:
        return now - self.fetched_at <= timedelta(seconds=ttl_seconds)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["fetched_at"] = self.fetched_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CachedRate:
        fetched_at = datetime.fromisoformat(str(data["fetched_at"]))
        if fetched_at.tzinfo is None:
            fetched_at = fetched_at.replace(tzinfo=UTC)
        return cls(
            unit=str(data["unit"]),
            price_usd=float(data["price_usd"]),
            source=str(data["source"]),
            fetched_at=fetched_at,
        )


class RateCache(Protocol):
    """Cache port for reference rates."""

    async def get(self, unit: str) -> CachedRate | None: ...

    async def put(self, rate: CachedRate) -> None: ...


class RedisRateCache:
    """Redis-backed rate cache; entries expire after ``ttl_seconds``."""

    def __init__(self, redis: Redis, *, ttl_seconds: int = DEFAULT_TTL_SECONDS) -> None:
        self.redis = redis
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def _key(unit: str) -> str:
        return f"{RATE_KEY_PREFIX}{unit}"

    async def get(self, unit: str) -> CachedRate | None:
        raw = await self.redis.get(self._key(unit))
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        try:
            return CachedRate.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError):
            logger.warning("Discarding malformed cached rate for %s", unit)
            return None

    async def put(self, rate: CachedRate) -> None:
        await self.redis.set(self._key(rate.unit), json.dumps(rate.to_dict()), ex=self.ttl_seconds)


class InMemoryRateCache:
    """Process-local rate cache owned by its caller (no module-level state)."""

    def __init__(self, *, ttl_seconds: int = DEFAULT_TTL_SECONDS) -> None:
        self.ttl_seconds = ttl_seconds
        self._rates: dict[str, CachedRate] = {}

    async def get(self, unit: str) -> CachedRate | None:
        rate = self._rates.get(unit)
        if rate is None:
            return None
        if not rate.is_fresh(datetime.now(UTC), self.ttl_seconds):
            del self._rates[unit]
            return None
        return rate

    async def put(self, rate: CachedRate) -> None:
        self._rates[rate.unit] = rate
