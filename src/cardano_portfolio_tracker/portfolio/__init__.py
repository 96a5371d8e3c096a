"""Portfolio math - unit normalization, valuation, allocation and rebalancing."""

from cardano_portfolio_tracker.portfolio.allocation import (
    Deviation,
    allocate,
    breaches,
    compute_deviations,
)
from cardano_portfolio_tracker.portfolio.rebalance import (
    AllocationRow,
    RebalancePlan,
    SwapSuggestion,
    plan_rebalance,
)
from cardano_portfolio_tracker.portfolio.units import (
    BTC_UNIT,
    LOVELACE_DECIMALS,
    LOVELACE_UNIT,
    to_human,
    to_snapshot_bucket,
)
from cardano_portfolio_tracker.portfolio.valuation import (
    Basis,
    PortfolioValuation,
    value_per_asset,
    value_portfolio,
)

__all__ = [
    "AllocationRow",
    "BTC_UNIT",
    "Basis",
    "Deviation",
    "LOVELACE_DECIMALS",
    "LOVELACE_UNIT",
    "PortfolioValuation",
    "RebalancePlan",
    "SwapSuggestion",
    "allocate",
    "breaches",
    "compute_deviations",
    "plan_rebalance",
    "to_human",
    "to_snapshot_bucket",
    "value_per_asset",
    "value_portfolio",
]
