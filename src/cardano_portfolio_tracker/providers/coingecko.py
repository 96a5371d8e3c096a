"""CoinGecko simple price client."""

from __future__ import annotations

import asyncio
import math
from collections.abc import Sequence

from cardano_portfolio_tracker.providers.http import JsonHttpClient, ProviderResponseError

DEFAULT_BASE_URL = "https://api.coingecko.com/api/v3"


class CoinGeckoClient:
    """Batched USD prices from CoinGecko's ``simple/price`` endpoint."""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        *,
        timeout: float = 10.0,
        max_retries: int = 2,
        http: JsonHttpClient | None = None,
    ) -> None:
        self._http = http or JsonHttpClient(base_url, timeout=timeout, max_retries=max_retries)

    def get_simple_price_sync(self, ids: Sequence[str]) -> dict[str, float]:
        unique = list(dict.fromkeys(i for i in ids if i))
        if not unique:
            return {}
        payload = self._http.get_json(
            "simple/price", params={"ids": ",".join(unique), "vs_currencies": "usd"}
        )
        if not isinstance(payload, dict):
            raise ProviderResponseError("CoinGecko simple/price returned a non-object body")

        prices: dict[str, float] = {}
        for coin_id, quote in payload.items():
            if not isinstance(quote, dict):
                continue
            try:
                price = float(quote.get("usd"))
            except (TypeError, ValueError):
                continue
            if math.isfinite(price) and price > 0:
                prices[str(coin_id)] = price
        return prices

    async def get_simple_price(self, ids: Sequence[str]) -> dict[str, float]:
        return await asyncio.to_thread(self.get_simple_price_sync, ids)

    def close(self) -> None:
        self._http.close()
