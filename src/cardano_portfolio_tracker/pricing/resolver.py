"""USD price resolution across pluggable sources.

Each requested unit is priced by the source named in its token definition:

* ``kraken``    - exchange ticker, one batched ``Ticker`` call for all pairs
* ``coingecko`` - aggregator, one batched ``simple/price`` call for all ids
* ``manual``    - the fixed price stored on the definition

``lovelace`` and ``BTC`` are the reference units for the ADA and BTC bases.
They are always tried on Kraken first, whether or not a definition exists,
then on CoinGecko, then from the reference-rate cache.

Failures never escape :meth:`PriceResolver.resolve_prices`; they become a
``None`` price with an ``error`` on the affected units only.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Protocol

from cardano_portfolio_tracker.portfolio.units import BTC_UNIT, LOVELACE_UNIT
from cardano_portfolio_tracker.pricing.rate_cache import CachedRate, RateCache

if TYPE_CHECKING:
    from cardano_portfolio_tracker.config import PricingSettings
    from cardano_portfolio_tracker.storage.repos import TokenDTO

logger = logging.getLogger(__name__)

ERROR_STORE_FAILED = "Failed to query token definitions"
ERROR_NO_DEFINITION = "No token definition"
ERROR_PRICE_NOT_FOUND = "Price not found"
ERROR_INCOMPLETE_DEFINITION = "Incomplete token definition"
ERROR_UNSUPPORTED_SOURCE = "Unsupported pricing_source"


class TokenDefinitionStore(Protocol):
    async def get_definitions(self, units: Iterable[str]) -> list[TokenDTO]: ...


class TickerSource(Protocol):
    async def get_ticker(self, pairs: Sequence[str]) -> dict[str, float]: ...


class AggregatorSource(Protocol):
    async def get_simple_price(self, ids: Sequence[str]) -> dict[str, float]: ...


@dataclass(frozen=True)
class PriceQuote:
    """Resolution outcome for one unit."""

    unit: str
    price_usd: float | None
    source: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.price_usd is not None


@dataclass(frozen=True)
class BaseUnitSource:
    """Default lookup keys for a reference unit."""

    kraken_pair: str
    kraken_result_key_hint: str | None
    coingecko_id: str


DEFAULT_BASE_UNIT_SOURCES: dict[str, BaseUnitSource] = {
    LOVELACE_UNIT: BaseUnitSource("ADAUSD", "ADAUSD", "cardano"),
    BTC_UNIT: BaseUnitSource("XBTUSD", "XXBTZUSD", "bitcoin"),
}


def base_unit_sources_from_settings(settings: PricingSettings) -> dict[str, BaseUnitSource]:
    return {
        LOVELACE_UNIT: BaseUnitSource(
            settings.ada_kraken_pair, settings.ada_kraken_result_key_hint, settings.ada_coingecko_id
        ),
        BTC_UNIT: BaseUnitSource(
            settings.btc_kraken_pair, settings.btc_kraken_result_key_hint, settings.btc_coingecko_id
        ),
    }


def _valid_price(value: float | None) -> float | None:
    if value is None:
        return None
    try:
        price = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(price) or price <= 0:
        return None
    return price


def _find_key(keys: Sequence[str], needle: str | None) -> str | None:
    if not needle:
        return None
    upper = needle.upper()
    for key in keys:
        if key.upper() == upper:
            return key
    for key in keys:
        if upper in key.upper():
            return key
    return None


def match_ticker_keys(
    pair_hints: Mapping[str, str | None],
    result_keys: Iterable[str],
) -> dict[str, str]:
    """Map each queried pair to the result key that answers it.

    Kraken renames pairs in its response (``XBTUSD`` comes back as
    ``XXBTZUSD``), so each pair is matched by its hint, then by the pair name.
    If exactly one pair is left unresolved and exactly one result key is left
    unclaimed, they are paired up.

    Args:
        pair_hints: Queried pair -> optional result-key hint.
        result_keys: Keys present in the ticker response.

    Returns:
        Pair -> result key, for the pairs that could be matched.
    """
    keys = list(result_keys)
    matched: dict[str, str] = {}
    claimed: set[str] = set()

    for pair, hint in pair_hints.items():
        available = [k for k in keys if k not in claimed]
        key = _find_key(available, hint) or _find_key(available, pair)
        if key is not None:
            matched[pair] = key
            claimed.add(key)

    unresolved = [p for p in pair_hints if p not in matched]
    unclaimed = [k for k in keys if k not in claimed]
    if len(unresolved) == 1 and len(unclaimed) == 1:
        matched[unresolved[0]] = unclaimed[0]
    return matched


class PriceResolver:
    """Resolve USD prices for a set of units in one batched pass."""

    def __init__(
        self,
        token_store: TokenDefinitionStore,
        ticker: TickerSource,
        aggregator: AggregatorSource,
        *,
        rate_cache: RateCache | None = None,
        base_units: Mapping[str, BaseUnitSource] | None = None,
    ) -> None:
        self.token_store = token_store
        self.ticker = ticker
        self.aggregator = aggregator
        self.rate_cache = rate_cache
        self.base_units = dict(base_units or DEFAULT_BASE_UNIT_SOURCES)

    async def resolve_prices(self, units: Iterable[str]) -> dict[str, PriceQuote]:
        """Resolve a USD price for every unit.

        Args:
            units: Units to price; duplicates are ignored.

        Returns:
            Unit -> PriceQuote, in first-seen order. Never raises for
            provider or store failures.
        """
        wanted = list(dict.fromkeys(u for u in units if u))
        if not wanted:
            return {}

        try:
            definitions = await self.token_store.get_definitions(wanted)
        except Exception as e:
            logger.warning("Token definition lookup failed for %d units: %s", len(wanted), e)
            return {u: PriceQuote(u, None, None, ERROR_STORE_FAILED) for u in wanted}
        by_unit = {d.unit: d for d in definitions if d.is_active}

        quotes: dict[str, PriceQuote] = {}
        kraken_wanted: dict[str, tuple[str, str | None]] = {}
        coingecko_wanted: dict[str, str] = {}

        for unit in wanted:
            definition = by_unit.get(unit)
            if unit in self.base_units:
                kraken_wanted[unit] = self._base_kraken_lookup(unit, definition)
                continue
            if definition is None:
                quotes[unit] = PriceQuote(unit, None, None, ERROR_NO_DEFINITION)
                continue

            source = definition.pricing_source
            if source == "manual":
                price = _valid_price(definition.manual_price_usd)
                quotes[unit] = PriceQuote(
                    unit, price, "manual", None if price is not None else ERROR_INCOMPLETE_DEFINITION
                )
            elif source == "kraken":
                if not definition.kraken_pair_query:
                    quotes[unit] = PriceQuote(unit, None, "kraken:unknown", ERROR_INCOMPLETE_DEFINITION)
                else:
                    kraken_wanted[unit] = (definition.kraken_pair_query, definition.kraken_result_key_hint)
            elif source == "coingecko":
                if not definition.coingecko_id:
                    quotes[unit] = PriceQuote(unit, None, "coingecko:unknown", ERROR_INCOMPLETE_DEFINITION)
                else:
                    coingecko_wanted[unit] = definition.coingecko_id
            else:
                quotes[unit] = PriceQuote(unit, None, None, ERROR_UNSUPPORTED_SOURCE)

        kraken_quotes = await self._resolve_kraken(kraken_wanted)
        for unit, quote in kraken_quotes.items():
            if unit in self.base_units and not quote.ok:
                coingecko_wanted[unit] = self._base_coingecko_id(unit, by_unit.get(unit))
            else:
                quotes[unit] = quote

        quotes.update(await self._resolve_coingecko(coingecko_wanted))

        for unit in wanted:
            if unit in self.base_units:
                quotes[unit] = await self._finish_base_unit(unit, quotes[unit], by_unit.get(unit))

        resolved = sum(1 for q in quotes.values() if q.ok)
        logger.info("Resolved %d/%d prices", resolved, len(wanted))
        return {u: quotes[u] for u in wanted}

    def _base_kraken_lookup(self, unit: str, definition: TokenDTO | None) -> tuple[str, str | None]:
        if definition is not None and definition.pricing_source == "kraken" and definition.kraken_pair_query:
            return definition.kraken_pair_query, definition.kraken_result_key_hint
        base = self.base_units[unit]
        return base.kraken_pair, base.kraken_result_key_hint

    def _base_coingecko_id(self, unit: str, definition: TokenDTO | None) -> str:
        if definition is not None and definition.pricing_source == "coingecko" and definition.coingecko_id:
            return definition.coingecko_id
        return self.base_units[unit].coingecko_id

    async def _resolve_kraken(self, wanted: Mapping[str, tuple[str, str | None]]) -> dict[str, PriceQuote]:
        if not wanted:
            return {}
        pair_hints: dict[str, str | None] = {}
        for pair, hint in wanted.values():
            if pair not in pair_hints or (hint and not pair_hints[pair]):
                pair_hints[pair] = hint

        error = ERROR_PRICE_NOT_FOUND
        try:
            result = await self.ticker.get_ticker(list(pair_hints))
        except Exception as e:
            logger.warning("Kraken ticker request failed for %s: %s", list(pair_hints), e)
            result = {}
            error = f"Kraken request failed: {e}"

        keys_by_pair = match_ticker_keys(pair_hints, result.keys())
        quotes = {}
        for unit, (pair, _hint) in wanted.items():
            key = keys_by_pair.get(pair)
            price = _valid_price(result.get(key)) if key else None
            if price is not None:
                quotes[unit] = PriceQuote(unit, price, f"kraken:{key}")
            else:
                quotes[unit] = PriceQuote(unit, None, f"kraken:{pair}", error)
        return quotes

    async def _resolve_coingecko(self, wanted: Mapping[str, str]) -> dict[str, PriceQuote]:
        if not wanted:
            return {}
        ids = list(dict.fromkeys(wanted.values()))

        error = ERROR_PRICE_NOT_FOUND
        try:
            result = await self.aggregator.get_simple_price(ids)
        except Exception as e:
            logger.warning("CoinGecko request failed for %s: %s", ids, e)
            result = {}
            error = f"CoinGecko request failed: {e}"

        quotes = {}
        for unit, coin_id in wanted.items():
            price = _valid_price(result.get(coin_id))
            if price is not None:
                quotes[unit] = PriceQuote(unit, price, f"coingecko:{coin_id}")
            else:
                quotes[unit] = PriceQuote(unit, None, f"coingecko:{coin_id}", error)
        return quotes

    async def _finish_base_unit(
        self, unit: str, quote: PriceQuote, definition: TokenDTO | None
    ) -> PriceQuote:
        """Cache a fresh reference price, or fall back to manual/cached values."""
        if quote.ok:
            await self._cache_put(CachedRate(unit, quote.price_usd, quote.source or "", datetime.now(UTC)))  # type: ignore[arg-type]
            return quote

        if definition is not None and definition.pricing_source == "manual":
            price = _valid_price(definition.manual_price_usd)
            if price is not None:
                return PriceQuote(unit, price, "manual")

        cached = await self._cache_get(unit)
        if cached is not None:
            logger.info("Using cached %s rate from %s", unit, cached.fetched_at.isoformat())
            return PriceQuote(unit, cached.price_usd, f"cache:{cached.source}")
        return quote

    async def _cache_get(self, unit: str) -> CachedRate | None:
        if self.rate_cache is None:
            return None
        try:
            return await self.rate_cache.get(unit)
        except Exception as e:
            logger.warning("Rate cache read failed for %s: %s", unit, e)
            return None

    async def _cache_put(self, rate: CachedRate) -> None:
        if self.rate_cache is None:
            return
        try:
            await self.rate_cache.put(rate)
        except Exception as e:
            logger.warning("Rate cache write failed for %s: %s", rate.unit, e)
