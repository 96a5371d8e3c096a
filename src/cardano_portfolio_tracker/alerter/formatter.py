"""Alert message formatter.

Turns a ThresholdAlert into the Markdown text posted to the notification
sink (Discord renders ``**bold**``).
"""

from __future__ import annotations

from datetime import datetime

from cardano_portfolio_tracker.alerter.models import ThresholdAlert
from cardano_portfolio_tracker.portfolio.units import format_unit

DEFAULT_MAX_SUGGESTIONS = 10
DEFAULT_MAX_NOTES = 5

NO_PLAN_LINE = "- (no swap plan available; missing pricing or already balanced)"


def format_number(value: float, max_dp: int = 8) -> str:
    """Compact number: no trailing zeros, no exponent."""
    text = f"{value:.{max_dp}f}".rstrip("0").rstrip(".")
    return "0" if text in ("", "-0") else text


def format_pct(value: float) -> str:
    return f"{value:.2f}"


def format_bucket(bucket: datetime) -> str:
    return bucket.strftime("%Y-%m-%d %H:%M UTC")


class ThresholdAlertFormatter:
    """Formats threshold alerts as plain Markdown text."""

    def __init__(
        self,
        *,
        max_suggestions: int = DEFAULT_MAX_SUGGESTIONS,
        max_notes: int = DEFAULT_MAX_NOTES,
    ) -> None:
        self.max_suggestions = max_suggestions
        self.max_notes = max_notes

    def format(self, alert: ThresholdAlert) -> str:
        lines = [
            f"**Wallet threshold alert**: {alert.wallet_label}",
            f"Snapshot bucket (UTC): {format_bucket(alert.snapshot_bucket)}",
            f"Threshold basis: {alert.basis.value.upper()}",
            f"Deviation threshold: {format_number(alert.threshold_pct_points, 4)} percentage points",
        ]
        if alert.missing_prices:
            lines.append(f"Missing prices: {', '.join(format_unit(u) for u in alert.missing_prices)}")

        lines.append("")
        lines.append("**Deviations** (current → target):")
        for d in alert.deviations:
            lines.append(
                f"- {format_unit(d.unit)}: {format_pct(d.current_pct)}% → "
                f"{format_pct(d.target_pct)}% (diff {format_pct(d.diff_pct_points)}pp)"
            )

        lines.append("")
        lines.append("**Suggested swaps (approx)**:")
        suggestions = alert.plan.suggestions
        if not suggestions:
            lines.append(NO_PLAN_LINE)
        for s in suggestions[: self.max_suggestions]:
            lines.append(
                f"- Swap ~{format_number(s.from_qty_human)} {format_unit(s.from_unit)} → "
                f"~{format_number(s.to_qty_human)} {format_unit(s.to_unit)} "
                f"(value ~${format_number(s.trade_value, 2)} before fees)"
            )

        notes = alert.plan.notes[: self.max_notes]
        if notes:
            lines.append("")
            lines.append("Notes:")
            lines.extend(f"- {note}" for note in notes)

        return "\n".join(lines)
