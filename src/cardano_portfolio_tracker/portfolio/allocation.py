"""Allocation percentages and deviation from targets."""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from dataclasses import asdict, dataclass


@dataclass(frozen=True)
class Deviation:
    """Current vs target allocation of one unit, in percentage points."""

    unit: str
    current_pct: float
    target_pct: float
    diff_pct_points: float

    def to_dict(self) -> dict[str, object]:
        return asdict(self)


def allocate(values: Mapping[str, float]) -> dict[str, float]:
    """Percentage of the total held by each unit.

    A non-positive (or non-finite) total yields 0 for every unit; callers must
    treat that as "cannot evaluate".
    """
    total = sum(values.values())
    if not math.isfinite(total) or total <= 0:
        return {unit: 0.0 for unit in values}
    return {unit: 100.0 * v / total for unit, v in values.items()}


def compute_deviations(
    current_pct: Mapping[str, float],
    targets: Mapping[str, float],
) -> list[Deviation]:
    """Deviation for every target unit (current - target)."""
    deviations = []
    for unit, target in targets.items():
        current = float(current_pct.get(unit, 0.0))
        deviations.append(
            Deviation(
                unit=unit,
                current_pct=current,
                target_pct=float(target),
                diff_pct_points=current - float(target),
            )
        )
    return deviations


def breaches(deviations: Iterable[Deviation], threshold_pct_points: float) -> list[Deviation]:
    """Deviations whose magnitude reaches the threshold (inclusive)."""
    return [d for d in deviations if abs(d.diff_pct_points) >= threshold_pct_points]
