"""Greedy, fee-aware rebalance planner.

Value is moved from the most overweight asset to the most underweight one,
pair by pair, until either side runs out. The result is a single pass over
the sorted deltas; it does not try to minimise swap count or trading cost.
Suggestions are advisory only.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field

# Absorbs floating-point noise when comparing deltas to zero.
EPSILON = 1e-12

ZERO_TOTAL_NOTE = "Portfolio total value is zero; cannot rebalance."
NO_SUGGESTIONS_NOTE = "No actionable swap suggestions (already balanced or missing pricing)."


@dataclass(frozen=True)
class AllocationRow:
    unit: str
    current_pct: float
    target_pct: float
    diff_pct_points: float


@dataclass(frozen=True)
class SwapSuggestion:
    """One advisory swap. Quantities are human units; trade value is pre-fee."""

    from_unit: str
    to_unit: str
    from_qty_human: float
    to_qty_human: float
    trade_value: float


@dataclass
class RebalancePlan:
    allocations: list[AllocationRow] = field(default_factory=list)
    suggestions: list[SwapSuggestion] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, list]:
        return {
            "allocations": [asdict(a) for a in self.allocations],
            "suggestions": [asdict(s) for s in self.suggestions],
            "notes": list(self.notes),
        }


@dataclass
class _Leg:
    unit: str
    delta: float


def _round_half_up(value: float, dp: int) -> float:
    p = 10**dp
    return math.floor(value * p + 0.5) / p


def _price(prices: Mapping[str, float | None], unit: str) -> float | None:
    price = prices.get(unit)
    if price is None:
        return None
    try:
        p = float(price)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(p) or p <= 0:
        return None
    return p


def _missing_price_note(from_unit: str | None, to_unit: str | None) -> str:
    names = " and ".join(u for u in (from_unit, to_unit) if u)
    return f"Missing USD price for {names}; cannot suggest swap for this leg."


def plan_rebalance(
    total_value: float,
    current_values: Mapping[str, float],
    target_pct: Mapping[str, float],
    prices: Mapping[str, float | None],
    swap_fee_bps: float = 0,
) -> RebalancePlan:
    """Propose swaps that move the portfolio toward its targets.

    Args:
        total_value: Portfolio total, in the same denomination as ``current_values``.
        current_values: Current value per unit.
        target_pct: Target percentage points per unit.
        prices: Price per unit in the ``current_values`` denomination
            (None or non-positive means unpriced).
        swap_fee_bps: Fee charged on each swap, in basis points.

    Returns:
        The plan: per-unit allocation rows, swap suggestions and notes.
    """
    if not math.isfinite(total_value) or total_value <= 0:
        return RebalancePlan(notes=[ZERO_TOTAL_NOTE])

    units = list(dict.fromkeys([*current_values.keys(), *target_pct.keys()]))
    notes: list[str] = []

    allocations = []
    legs = []
    for unit in units:
        current = float(current_values.get(unit, 0.0))
        target = float(target_pct.get(unit, 0.0))
        current_pct = current / total_value * 100.0
        allocations.append(
            AllocationRow(
                unit=unit,
                current_pct=current_pct,
                target_pct=target,
                diff_pct_points=current_pct - target,
            )
        )
        desired = target / 100.0 * total_value
        legs.append(_Leg(unit=unit, delta=current - desired))

    overweight = sorted(
        (leg for leg in legs if leg.delta > EPSILON), key=lambda leg: (-leg.delta, leg.unit)
    )
    underweight = sorted(
        (leg for leg in legs if leg.delta < -EPSILON), key=lambda leg: (leg.delta, leg.unit)
    )

    fee_rate = max(0.0, float(swap_fee_bps)) / 10_000
    suggestions: list[SwapSuggestion] = []

    i = j = 0
    while i < len(overweight) and j < len(underweight):
        src = overweight[i]
        dst = underweight[j]

        move = min(src.delta, -dst.delta)
        if move <= 0:
            break

        src_price = _price(prices, src.unit)
        dst_price = _price(prices, dst.unit)
        if src_price is None or dst_price is None:
            notes.append(
                _missing_price_note(
                    src.unit if src_price is None else None,
                    dst.unit if dst_price is None else None,
                )
            )
            if src_price is None:
                i += 1
            if dst_price is None:
                j += 1
            continue

        received = move * (1 - fee_rate)
        suggestions.append(
            SwapSuggestion(
                from_unit=src.unit,
                to_unit=dst.unit,
                from_qty_human=_round_half_up(move / src_price, 8),
                to_qty_human=_round_half_up(received / dst_price, 8),
                trade_value=_round_half_up(move, 6),
            )
        )

        src.delta -= move
        dst.delta += move
        if src.delta <= EPSILON:
            i += 1
        if dst.delta >= -EPSILON:
            j += 1

    if not suggestions:
        notes.append(NO_SUGGESTIONS_NOTE)

    return RebalancePlan(allocations=allocations, suggestions=suggestions, notes=notes)
