"""Koios chain indexer client for batched stake account balances."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import Any, Protocol

from cardano_portfolio_tracker.providers.http import JsonHttpClient, ProviderResponseError
from cardano_portfolio_tracker.providers.models import AccountAsset, AccountInfo

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.koios.rest/api/v1"


class BalanceProvider(Protocol):
    """Batched balance lookups for a set of stake addresses."""

    async def get_account_info(self, stake_addresses: Sequence[str]) -> list[AccountInfo]: ...

    async def get_account_assets(self, stake_addresses: Sequence[str]) -> list[AccountAsset]: ...


def _expect_list(payload: Any, endpoint: str) -> list[dict[str, Any]]:
    if not isinstance(payload, list):
        raise ProviderResponseError(f"Koios {endpoint} returned {type(payload).__name__}, expected a list")
    return [row for row in payload if isinstance(row, dict)]


class KoiosClient:
    """Koios REST client.

    Both endpoints take every address of a run in a single POST body, so a
    snapshot run costs two requests regardless of wallet count.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        *,
        api_key: str | None = None,
        timeout: float = 20.0,
        max_retries: int = 2,
        http: JsonHttpClient | None = None,
    ) -> None:
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._http = http or JsonHttpClient(
            base_url,
            timeout=timeout,
            max_retries=max_retries,
            headers=headers,
        )

    def get_account_info_sync(self, stake_addresses: Sequence[str]) -> list[AccountInfo]:
        payload = self._http.post_json("account_info", {"_stake_addresses": list(stake_addresses)})
        return [AccountInfo.from_dict(row) for row in _expect_list(payload, "account_info")]

    def get_account_assets_sync(self, stake_addresses: Sequence[str]) -> list[AccountAsset]:
        payload = self._http.post_json("account_assets", {"_stake_addresses": list(stake_addresses)})
        return [AccountAsset.from_dict(row) for row in _expect_list(payload, "account_assets")]

    async def get_account_info(self, stake_addresses: Sequence[str]) -> list[AccountInfo]:
        rows = await asyncio.to_thread(self.get_account_info_sync, stake_addresses)
        logger.debug("Koios account_info: %d addresses -> %d rows", len(stake_addresses), len(rows))
        return rows

    async def get_account_assets(self, stake_addresses: Sequence[str]) -> list[AccountAsset]:
        rows = await asyncio.to_thread(self.get_account_assets_sync, stake_addresses)
        logger.debug("Koios account_assets: %d addresses -> %d rows", len(stake_addresses), len(rows))
        return rows

    def close(self) -> None:
        self._http.close()
