"""Tests for the valuation engine."""

import pytest

from cardano_portfolio_tracker.portfolio.units import BTC_UNIT, LOVELACE_UNIT
from cardano_portfolio_tracker.portfolio.valuation import (
    Basis,
    value_per_asset,
    value_portfolio,
)

PRICES = {LOVELACE_UNIT: 0.5, BTC_UNIT: 50_000.0, "A": 2.0, "B": None}


class TestBasis:
    """Tests for Basis parsing."""

    def test_parse_known(self) -> None:
        assert Basis.parse("ADA") == Basis.ADA
        assert Basis.parse(" holdings ") == Basis.HOLDINGS
        assert Basis.parse(Basis.BTC) == Basis.BTC

    def test_parse_unknown_defaults_to_usd(self) -> None:
        assert Basis.parse("eur") == Basis.USD
        assert Basis.parse(None) == Basis.USD


class TestValuePerAsset:
    """Tests for value_per_asset."""

    def test_usd_skips_unpriced(self) -> None:
        values = value_per_asset({LOVELACE_UNIT: 100.0, "A": 10.0, "B": 5.0}, PRICES, Basis.USD)

        assert values == {LOVELACE_UNIT: 50.0, "A": 20.0}

    def test_ada_divides_by_ada_price(self) -> None:
        values = value_per_asset({LOVELACE_UNIT: 100.0, "A": 10.0}, PRICES, "ada")

        assert values == pytest.approx({LOVELACE_UNIT: 100.0, "A": 40.0})

    def test_btc_divides_by_btc_price(self) -> None:
        values = value_per_asset({"A": 25_000.0}, PRICES, Basis.BTC)

        assert values == pytest.approx({"A": 1.0})

    def test_holdings_returns_quantities(self) -> None:
        """Holdings ignores prices entirely, including unpriced units."""
        values = value_per_asset({"A": 10.0, "B": 5.0}, PRICES, Basis.HOLDINGS)

        assert values == {"A": 10.0, "B": 5.0}

    def test_missing_reference_falls_back_to_usd(self) -> None:
        values = value_per_asset({"A": 10.0}, {"A": 2.0}, Basis.ADA)

        assert values == {"A": 20.0}

    def test_non_positive_price_is_unpriced(self) -> None:
        values = value_per_asset({"A": 10.0, "B": 1.0}, {"A": 0.0, "B": -1.0}, Basis.USD)

        assert values == {}


class TestValuePortfolio:
    """Tests for value_portfolio."""

    def test_allocations_over_tracked_units(self) -> None:
        """Untracked holdings are ignored; tracked-but-absent count as zero."""
        valuation = value_portfolio(
            {LOVELACE_UNIT: 120.0, "A": 20.0, "Z": 1_000.0},
            PRICES,
            [LOVELACE_UNIT, "A", "C"],
            Basis.USD,
        )

        assert valuation.values == {LOVELACE_UNIT: 60.0, "A": 40.0}
        assert valuation.allocations_pct == pytest.approx({LOVELACE_UNIT: 60.0, "A": 40.0})
        assert valuation.total_value == pytest.approx(100.0)
        assert valuation.missing_prices == ["C"]
        assert valuation.degraded_to_usd is False

    def test_ada_basis_reports_usd_total(self) -> None:
        valuation = value_portfolio({LOVELACE_UNIT: 100.0, "A": 25.0}, PRICES, [LOVELACE_UNIT, "A"], "ada")

        assert valuation.total_value == pytest.approx(200.0)
        assert valuation.total_value_usd == pytest.approx(100.0)
        assert valuation.allocations_pct == pytest.approx({LOVELACE_UNIT: 50.0, "A": 50.0})

    def test_degrades_to_usd_without_reference(self, caplog: pytest.LogCaptureFixture) -> None:
        """Allocation is still produced, in USD, and the fallback is logged."""
        valuation = value_portfolio({"A": 10.0, "B": 10.0}, {"A": 1.0, "B": 3.0}, ["A", "B"], Basis.BTC)

        assert valuation.degraded_to_usd is True
        assert valuation.allocations_pct == pytest.approx({"A": 25.0, "B": 75.0})
        assert "unavailable" in caplog.text

    def test_zero_total_allocations_are_zero(self) -> None:
        valuation = value_portfolio({}, PRICES, ["A"], Basis.USD)

        assert valuation.total_value == 0
        assert valuation.allocations_pct == {"A": 0.0}
