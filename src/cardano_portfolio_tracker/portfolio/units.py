"""Asset unit identifiers and raw quantity normalization."""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation

# Native ADA is tracked in lovelace (1 ADA = 1_000_000 lovelace).
LOVELACE_UNIT = "lovelace"
LOVELACE_DECIMALS = 6

# Reference commodity; only ever priced, never held on-chain.
BTC_UNIT = "BTC"

BASE_UNITS = (LOVELACE_UNIT, BTC_UNIT)


def to_human(raw_quantity: object, decimals: int | None = None) -> float:
    """Convert a raw integer quantity into a human-readable amount.

    Malformed input yields 0.0 so a single bad row cannot abort a batch.

    Args:
        raw_quantity: Integer quantity as str, int or Decimal.
        decimals: Asset decimals. Absent or <= 0 returns the raw value unchanged.

    Returns:
        The human-readable amount.
    """
    if raw_quantity is None or isinstance(raw_quantity, bool):
        return 0.0
    try:
        value = Decimal(str(raw_quantity).strip())
    except (InvalidOperation, ValueError):
        return 0.0
    if not value.is_finite():
        return 0.0
    if decimals is None or decimals <= 0:
        return float(value)
    return float(value.scaleb(-int(decimals)))


def to_snapshot_bucket(moment: datetime) -> datetime:
    """Truncate a timestamp to the top of its UTC hour.

    Naive datetimes are treated as UTC.
    """
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    else:
        moment = moment.astimezone(UTC)
    return moment.replace(minute=0, second=0, microsecond=0)


def asset_unit(policy_id: str, asset_name: str | None) -> str:
    """Build the canonical unit for a native token (policy id + hex asset name)."""
    return f"{policy_id}{asset_name or ''}"


def format_unit(unit: str) -> str:
    """Short display form for a unit."""
    if unit == LOVELACE_UNIT:
        return "ADA"
    if len(unit) <= 16:
        return unit
    return f"{unit[:8]}…{unit[-6:]}"
