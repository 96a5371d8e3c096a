"""Tests for the alert message formatter."""

from datetime import UTC, datetime

import pytest

from cardano_portfolio_tracker.alerter.formatter import (
    NO_PLAN_LINE,
    ThresholdAlertFormatter,
    format_number,
)
from cardano_portfolio_tracker.alerter.models import ThresholdAlert
from cardano_portfolio_tracker.portfolio.allocation import Deviation
from cardano_portfolio_tracker.portfolio.rebalance import RebalancePlan, SwapSuggestion
from cardano_portfolio_tracker.portfolio.valuation import Basis

UNIT = "c" * 56 + "4d494e"


@pytest.fixture
def alert() -> ThresholdAlert:
    return ThresholdAlert(
        wallet_label="Alice",
        snapshot_bucket=datetime(2026, 3, 1, 12, tzinfo=UTC),
        basis=Basis.ADA,
        threshold_pct_points=10.0,
        deviations=[
            Deviation("lovelace", 83.333333, 50.0, 33.333333),
            Deviation(UNIT, 16.666667, 50.0, -33.333333),
        ],
        plan=RebalancePlan(
            suggestions=[SwapSuggestion("lovelace", UNIT, 400.0, 199.4, 200.0)],
        ),
    )


class TestFormatNumber:
    """Tests for format_number."""

    @pytest.mark.parametrize(
        "value, dp, expected",
        [
            (400.0, 8, "400"),
            (199.4, 8, "199.4"),
            (0.000000001, 8, "0"),
            (-0.0, 8, "0"),
            (12.3456, 2, "12.35"),
        ],
    )
    def test_compact(self, value, dp, expected) -> None:
        assert format_number(value, dp) == expected


class TestThresholdAlertFormatter:
    """Tests for ThresholdAlertFormatter."""

    def test_header_and_deviations(self, alert) -> None:
        lines = ThresholdAlertFormatter().format(alert).splitlines()

        assert lines[:4] == [
            "**Wallet threshold alert**: Alice",
            "Snapshot bucket (UTC): 2026-03-01 12:00 UTC",
            "Threshold basis: ADA",
            "Deviation threshold: 10 percentage points",
        ]
        assert "- ADA: 83.33% → 50.00% (diff 33.33pp)" in lines
        assert "- cccccccc…4d494e: 16.67% → 50.00% (diff -33.33pp)" in lines

    def test_swap_line(self, alert) -> None:
        text = ThresholdAlertFormatter().format(alert)

        assert "- Swap ~400 ADA → ~199.4 cccccccc…4d494e (value ~$200 before fees)" in text
        assert NO_PLAN_LINE not in text
        assert "Notes:" not in text

    def test_missing_prices_and_empty_plan(self, alert) -> None:
        alert.missing_prices = [UNIT]
        alert.plan = RebalancePlan(notes=["Missing USD price for x; cannot suggest swap for this leg."])

        text = ThresholdAlertFormatter().format(alert)

        assert "Missing prices: cccccccc…4d494e" in text
        assert NO_PLAN_LINE in text
        assert text.endswith("Notes:\n- Missing USD price for x; cannot suggest swap for this leg.")

    def test_limits(self, alert) -> None:
        alert.plan = RebalancePlan(
            suggestions=[SwapSuggestion("lovelace", f"unit{i}", 1.0, 1.0, 1.0) for i in range(4)],
            notes=[f"note {i}" for i in range(4)],
        )

        text = ThresholdAlertFormatter(max_suggestions=2, max_notes=1).format(alert)

        assert text.count("- Swap ~") == 2
        assert "note 0" in text
        assert "note 1" not in text
