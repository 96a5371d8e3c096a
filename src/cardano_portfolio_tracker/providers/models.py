"""Data models for external provider payloads."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from cardano_portfolio_tracker.portfolio.units import asset_unit


def _parse_int(value: Any) -> int:
    """Parse an integer-as-string quantity, 0 when malformed."""
    if value is None or isinstance(value, bool):
        return 0
    try:
        return int(str(value).strip())
    except ValueError:
        return 0


def _parse_decimals(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class AccountInfo:
    """Stake account summary (Koios ``account_info``)."""

    stake_address: str
    total_balance: int

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AccountInfo:
        return cls(
            stake_address=str(data["stake_address"]),
            total_balance=_parse_int(data.get("total_balance")),
        )


@dataclass(frozen=True)
class AccountAsset:
    """Native token held by a stake account (Koios ``account_assets``)."""

    stake_address: str
    policy_id: str
    asset_name: str
    quantity_raw: int
    decimals: int | None = None
    fingerprint: str | None = None

    @property
    def unit(self) -> str:
        return asset_unit(self.policy_id, self.asset_name)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AccountAsset:
        return cls(
            stake_address=str(data["stake_address"]),
            policy_id=str(data.get("policy_id") or ""),
            asset_name=str(data.get("asset_name") or ""),
            quantity_raw=_parse_int(data.get("quantity")),
            decimals=_parse_decimals(data.get("decimals")),
            fingerprint=data.get("fingerprint"),
        )
