"""Valuation engine: quantities and USD prices into per-asset values.

Supported bases:

* ``usd``      - quantity x USD price. Unpriced assets are left out.
* ``ada``      - USD value divided by the lovelace (ADA) USD price.
* ``btc``      - USD value divided by the BTC USD price.
* ``holdings`` - the human quantity itself. Quantities of different
  assets are not comparable, so percentages under this basis mix units.

When the ADA or BTC reference price is missing, the ``ada`` / ``btc``
bases fall back to plain USD values.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum

from cardano_portfolio_tracker.portfolio.allocation import allocate
from cardano_portfolio_tracker.portfolio.units import BTC_UNIT, LOVELACE_UNIT

logger = logging.getLogger(__name__)


class Basis(str, Enum):
    """Denomination used to compare asset values."""

    USD = "usd"
    ADA = "ada"
    BTC = "btc"
    HOLDINGS = "holdings"

    @classmethod
    def parse(cls, value: str | Basis | None) -> Basis:
        """Parse a stored basis, defaulting to USD for unknown values."""
        if isinstance(value, Basis):
            return value
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            return cls.USD


def _usable_price(price: float | None) -> float | None:
    if price is None:
        return None
    try:
        p = float(price)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(p) or p <= 0:
        return None
    return p


def reference_price(prices_usd: Mapping[str, float | None], basis: Basis) -> float | None:
    """USD price of the basis reference asset, if the basis has one."""
    if basis == Basis.ADA:
        return _usable_price(prices_usd.get(LOVELACE_UNIT))
    if basis == Basis.BTC:
        return _usable_price(prices_usd.get(BTC_UNIT))
    return None


def usd_values(
    quantities: Mapping[str, float],
    prices_usd: Mapping[str, float | None],
) -> dict[str, float]:
    """USD value per asset; assets without a usable price are excluded."""
    values: dict[str, float] = {}
    for unit, qty in quantities.items():
        price = _usable_price(prices_usd.get(unit))
        if price is None:
            continue
        values[unit] = float(qty) * price
    return values


def value_per_asset(
    quantities: Mapping[str, float],
    prices_usd: Mapping[str, float | None],
    basis: Basis | str,
) -> dict[str, float]:
    """Value each asset under ``basis``.

    Args:
        quantities: Human-readable quantity per unit.
        prices_usd: USD price per unit (None when unresolved).
        basis: Valuation basis.

    Returns:
        Mapping unit -> value. Under price-based bases unpriced units are absent.
    """
    basis = Basis.parse(basis)
    if basis == Basis.HOLDINGS:
        return {unit: float(qty) for unit, qty in quantities.items()}

    values = usd_values(quantities, prices_usd)
    if basis == Basis.USD:
        return values

    ref = reference_price(prices_usd, basis)
    if ref is None:
        logger.debug("No %s reference price; valuing in USD instead", basis.value)
        return values
    return {unit: v / ref for unit, v in values.items()}


@dataclass
class PortfolioValuation:
    """Valuation of a set of tracked units under one basis."""

    basis: Basis
    values: dict[str, float]
    usd_values: dict[str, float]
    allocations_pct: dict[str, float]
    missing_prices: list[str] = field(default_factory=list)
    degraded_to_usd: bool = False

    @property
    def total_value(self) -> float:
        return sum(self.values.values())

    @property
    def total_value_usd(self) -> float:
        return sum(self.usd_values.values())


def value_portfolio(
    quantities: Mapping[str, float],
    prices_usd: Mapping[str, float | None],
    tracked_units: Iterable[str],
    basis: Basis | str,
) -> PortfolioValuation:
    """Value the tracked units of a wallet and compute their allocation.

    Units that are tracked but not held count as zero quantity.
    """
    basis = Basis.parse(basis)
    units = list(dict.fromkeys(tracked_units))
    tracked_qty = {unit: float(quantities.get(unit, 0.0)) for unit in units}

    missing = [unit for unit in units if _usable_price(prices_usd.get(unit)) is None]

    values = value_per_asset(tracked_qty, prices_usd, basis)
    degraded = basis in (Basis.ADA, Basis.BTC) and reference_price(prices_usd, basis) is None
    if degraded:
        logger.warning(
            "Reference price for %s basis unavailable; allocation computed in USD",
            basis.value,
        )

    return PortfolioValuation(
        basis=basis,
        values=values,
        usd_values=usd_values(tracked_qty, prices_usd),
        allocations_pct=allocate(values),
        missing_prices=missing,
        degraded_to_usd=degraded,
    )
