"""Write-boundary validation for wallet targets and wallet settings."""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from cardano_portfolio_tracker.portfolio.valuation import Basis

TARGET_SUM_PCT = 100.0
TARGET_SUM_TOLERANCE = 0.01


class TargetValidationError(ValueError):
    """Raised when a target set cannot be stored."""


class WalletSettingsError(ValueError):
    """Raised when a wallet settings update is invalid."""


@dataclass(frozen=True)
class TargetInput:
    unit: str
    target_pct_points: float


@dataclass(frozen=True)
class WalletSettingsPatch:
    threshold_basis: Basis | None = None
    deviation_threshold_pct_points: float | None = None
    swap_fee_bps: int | None = None

    def as_values(self) -> dict[str, object]:
        values: dict[str, object] = {}
        if self.threshold_basis is not None:
            values["threshold_basis"] = self.threshold_basis.value
        if self.deviation_threshold_pct_points is not None:
            values["deviation_threshold_pct_points"] = self.deviation_threshold_pct_points
        if self.swap_fee_bps is not None:
            values["swap_fee_bps"] = self.swap_fee_bps
        return values


def _as_number(value: object, name: str, error: type[ValueError]) -> float:
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as e:
        raise error(f"Invalid {name}: {value!r}") from e
    if not math.isfinite(number) or number < 0:
        raise error(f"Invalid {name}: {value!r}")
    return number


def validate_targets(targets: Iterable[TargetInput | Mapping[str, object]]) -> list[TargetInput]:
    """Validate a full replacement target set.

    Every unit must be non-blank and unique, every percentage finite and
    non-negative, and the set must sum to 100 within 0.01.

    Raises:
        TargetValidationError: If any rule is violated.
    """
    cleaned: list[TargetInput] = []
    seen: set[str] = set()
    for raw in targets:
        if isinstance(raw, TargetInput):
            unit_raw, pct_raw = raw.unit, raw.target_pct_points
        else:
            unit_raw, pct_raw = raw.get("unit"), raw.get("target_pct_points")
        unit = str(unit_raw or "").strip()
        if not unit:
            raise TargetValidationError("Target unit must not be empty")
        if unit in seen:
            raise TargetValidationError(f"Duplicate target unit: {unit}")
        seen.add(unit)
        pct = _as_number(pct_raw, f"target_pct_points for {unit}", TargetValidationError)
        cleaned.append(TargetInput(unit=unit, target_pct_points=pct))

    if not cleaned:
        raise TargetValidationError("Missing targets")

    total = sum(t.target_pct_points for t in cleaned)
    if abs(total - TARGET_SUM_PCT) > TARGET_SUM_TOLERANCE:
        raise TargetValidationError(f"Targets must sum to 100 (got {total:.4f})")
    return cleaned


def validate_wallet_settings(
    *,
    threshold_basis: str | None = None,
    deviation_threshold_pct_points: object | None = None,
    swap_fee_bps: object | None = None,
) -> WalletSettingsPatch:
    """Validate a partial wallet settings update.

    Raises:
        WalletSettingsError: On an unknown basis, a negative or non-finite
            number, or when no field is given.
    """
    basis: Basis | None = None
    if threshold_basis is not None:
        try:
            basis = Basis(str(threshold_basis).strip().lower())
        except ValueError as e:
            raise WalletSettingsError(f"Invalid threshold_basis: {threshold_basis!r}") from e

    threshold = None
    if deviation_threshold_pct_points is not None:
        threshold = _as_number(
            deviation_threshold_pct_points, "deviation_threshold_pct_points", WalletSettingsError
        )

    fee = None
    if swap_fee_bps is not None:
        fee_value = _as_number(swap_fee_bps, "swap_fee_bps", WalletSettingsError)
        if not fee_value.is_integer():
            raise WalletSettingsError(f"Invalid swap_fee_bps: {swap_fee_bps!r}")
        fee = int(fee_value)

    patch = WalletSettingsPatch(
        threshold_basis=basis,
        deviation_threshold_pct_points=threshold,
        swap_fee_bps=fee,
    )
    if not patch.as_values():
        raise WalletSettingsError("No valid fields to update")
    return patch
