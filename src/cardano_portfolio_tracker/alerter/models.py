"""Data models for the alerter module."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from cardano_portfolio_tracker.portfolio.allocation import Deviation
from cardano_portfolio_tracker.portfolio.rebalance import RebalancePlan
from cardano_portfolio_tracker.portfolio.valuation import Basis


@dataclass
class ThresholdAlert:
    """Everything needed to describe one wallet's threshold breach."""

    wallet_label: str
    snapshot_bucket: datetime
    basis: Basis
    threshold_pct_points: float
    deviations: list[Deviation]
    plan: RebalancePlan
    missing_prices: list[str] = field(default_factory=list)

    def to_details(self) -> dict[str, Any]:
        """JSON payload stored on the alert event."""
        return {
            "snapshot_bucket": self.snapshot_bucket.isoformat(),
            "basis": self.basis.value,
            "threshold_pct_points": self.threshold_pct_points,
            "missing_prices": list(self.missing_prices),
            "deviations": [d.to_dict() for d in self.deviations],
            "plan": self.plan.to_dict(),
        }
