"""Tests for target and wallet settings validation."""

import pytest

from cardano_portfolio_tracker.portfolio.targets import (
    TargetInput,
    TargetValidationError,
    WalletSettingsError,
    validate_targets,
    validate_wallet_settings,
)
from cardano_portfolio_tracker.portfolio.valuation import Basis


class TestValidateTargets:
    """Tests for validate_targets."""

    def test_accepts_valid_set(self) -> None:
        cleaned = validate_targets(
            [{"unit": " lovelace ", "target_pct_points": "60"}, TargetInput("BTC", 40.0)]
        )

        assert cleaned == [TargetInput("lovelace", 60.0), TargetInput("BTC", 40.0)]

    def test_sum_within_tolerance(self) -> None:
        validate_targets([TargetInput("A", 33.333), TargetInput("B", 33.333), TargetInput("C", 33.333)])

    def test_sum_outside_tolerance(self) -> None:
        with pytest.raises(TargetValidationError, match=r"Targets must sum to 100 \(got 99\.9800\)"):
            validate_targets([TargetInput("A", 50.0), TargetInput("B", 49.98)])

    def test_empty_rejected(self) -> None:
        with pytest.raises(TargetValidationError, match="Missing targets"):
            validate_targets([])

    @pytest.mark.parametrize(
        "targets",
        [
            [{"unit": "", "target_pct_points": 100}],
            [{"unit": "A", "target_pct_points": -1}, {"unit": "B", "target_pct_points": 101}],
            [{"unit": "A", "target_pct_points": "nan"}],
            [{"unit": "A", "target_pct_points": "abc"}],
            [{"unit": "A", "target_pct_points": 50}, {"unit": "A", "target_pct_points": 50}],
        ],
    )
    def test_invalid_entries_rejected(self, targets: list[dict[str, object]]) -> None:
        with pytest.raises(TargetValidationError):
            validate_targets(targets)


class TestValidateWalletSettings:
    """Tests for validate_wallet_settings."""

    def test_partial_update(self) -> None:
        patch = validate_wallet_settings(threshold_basis="BTC", swap_fee_bps="25")

        assert patch.threshold_basis == Basis.BTC
        assert patch.as_values() == {"threshold_basis": "btc", "swap_fee_bps": 25}

    def test_no_fields(self) -> None:
        with pytest.raises(WalletSettingsError, match="No valid fields to update"):
            validate_wallet_settings()

    def test_unknown_basis(self) -> None:
        with pytest.raises(WalletSettingsError):
            validate_wallet_settings(threshold_basis="eur")

    def test_negative_threshold(self) -> None:
        with pytest.raises(WalletSettingsError):
            validate_wallet_settings(deviation_threshold_pct_points=-0.5)

    def test_fractional_fee(self) -> None:
        with pytest.raises(WalletSettingsError):
            validate_wallet_settings(swap_fee_bps=12.5)

    def test_zero_values_are_allowed(self) -> None:
        patch = validate_wallet_settings(deviation_threshold_pct_points=0, swap_fee_bps=0)

        assert patch.as_values() == {"deviation_threshold_pct_points": 0.0, "swap_fee_bps": 0}
