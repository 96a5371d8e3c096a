"""Threshold alert evaluation.

For each active wallet, the evaluator loads its targets and a snapshot (the
requested bucket, or the latest), values the target units under the
wallet's basis and checks each deviation against the wallet threshold. On
a breach it builds a USD rebalance plan, records an alert event and then
delivers the message. Wallets are processed one at a time; a failure in one
wallet does not stop the others.

At most one alert event exists per (wallet, snapshot). The event is
committed before delivery, and delivery status is written back onto it.
"""

from __future__ import annotations

import logging
import uuid
from collections import Counter
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

from cardano_portfolio_tracker.alerter.formatter import ThresholdAlertFormatter
from cardano_portfolio_tracker.alerter.models import ThresholdAlert
from cardano_portfolio_tracker.portfolio.allocation import breaches, compute_deviations
from cardano_portfolio_tracker.portfolio.rebalance import plan_rebalance
from cardano_portfolio_tracker.portfolio.units import BTC_UNIT, LOVELACE_UNIT, to_human, to_snapshot_bucket
from cardano_portfolio_tracker.portfolio.valuation import Basis, usd_values, value_portfolio
from cardano_portfolio_tracker.storage.repos import (
    AlertEventDTO,
    AlertEventRepository,
    SnapshotBalanceDTO,
    SnapshotBalanceRepository,
    SnapshotDTO,
    SnapshotRepository,
    TargetRepository,
    TokenPriceRepository,
    WalletDTO,
    WalletRepository,
)

if TYPE_CHECKING:
    from cardano_portfolio_tracker.alerter.discord import NotificationSink
    from cardano_portfolio_tracker.storage.database import DatabaseManager

logger = logging.getLogger(__name__)


class WalletOutcome(str, Enum):
    """What happened to one wallet during an evaluation run."""

    NO_TARGETS = "no_targets"
    NO_SNAPSHOT = "no_snapshot"
    ALREADY_ALERTED = "already_alerted"
    NOT_EVALUABLE = "not_evaluable"
    WITHIN_THRESHOLD = "within_threshold"
    DRY_RUN = "dry_run"
    PERSIST_FAILED = "persist_failed"
    RECORDED = "recorded"
    SENT = "sent"
    DELIVERY_FAILED = "delivery_failed"
    FAILED = "failed"


@dataclass
class ThresholdRunResult:
    """Outcome of one evaluation run."""

    processed_wallets: int = 0
    alerts_sent: int = 0
    outcomes: Counter[str] = field(default_factory=Counter)

    def to_dict(self) -> dict[str, object]:
        return {
            "processed_wallets": self.processed_wallets,
            "alerts_sent": self.alerts_sent,
            "outcomes": dict(self.outcomes),
        }


def assess_wallet(
    wallet: WalletDTO,
    snapshot: SnapshotDTO,
    targets: Mapping[str, float],
    balances: Sequence[SnapshotBalanceDTO],
    prices_usd: Mapping[str, float | None],
) -> ThresholdAlert | None:
    """Decide whether a wallet snapshot breaches its threshold.

    Returns:
        The alert to record, or None when nothing reaches the threshold.

    Raises:
        ValueError: If the tracked units have no value under the wallet basis.
    """
    basis = Basis.parse(wallet.threshold_basis)
    quantities = {b.unit: to_human(b.quantity_raw, b.decimals) for b in balances}
    valuation = value_portfolio(quantities, prices_usd, targets.keys(), basis)
    if valuation.total_value <= 0:
        raise ValueError(f"Tracked units have no {basis.value} value")

    deviations = breaches(
        compute_deviations(valuation.allocations_pct, targets),
        wallet.deviation_threshold_pct_points,
    )
    if not deviations:
        return None

    # Untargeted ADA joins the plan as a funding source; the total stays
    # over the target units.
    plan_values = dict(valuation.usd_values)
    if LOVELACE_UNIT not in targets:
        plan_values.update(
            usd_values({LOVELACE_UNIT: quantities.get(LOVELACE_UNIT, 0.0)}, prices_usd)
        )
    plan_prices = {unit: prices_usd.get(unit) for unit in [*targets, LOVELACE_UNIT]}
    plan = plan_rebalance(
        valuation.total_value_usd,
        plan_values,
        targets,
        plan_prices,
        wallet.swap_fee_bps,
    )
    return ThresholdAlert(
        wallet_label=wallet.label,
        snapshot_bucket=snapshot.snapshot_bucket,
        basis=basis,
        threshold_pct_points=wallet.deviation_threshold_pct_points,
        deviations=deviations,
        plan=plan,
        missing_prices=valuation.missing_prices,
    )


class ThresholdAlertEvaluator:
    """Evaluates wallets against their targets and dispatches alerts."""

    def __init__(
        self,
        db: DatabaseManager,
        sink: NotificationSink | None = None,
        *,
        formatter: ThresholdAlertFormatter | None = None,
        dry_run: bool = False,
    ) -> None:
        self.db = db
        self.sink = sink
        self.formatter = formatter or ThresholdAlertFormatter()
        self.dry_run = dry_run

    async def evaluate(
        self,
        wallet_ids: Sequence[uuid.UUID] | None = None,
        snapshot_bucket: datetime | None = None,
    ) -> ThresholdRunResult:
        """Evaluate active wallets.

        Args:
            wallet_ids: Restrict to these wallets (None or empty means all).
            snapshot_bucket: Evaluate this bucket instead of each wallet's
                latest snapshot.

        Returns:
            Number of wallets considered and alerts delivered.
        """
        bucket = to_snapshot_bucket(snapshot_bucket) if snapshot_bucket is not None else None
        async with self.db.get_async_session() as session:
            wallets = await WalletRepository(session).list_active(wallet_ids or None)

        result = ThresholdRunResult(processed_wallets=len(wallets))
        for wallet in wallets:
            try:
                outcome = await self._evaluate_wallet(wallet, bucket)
            except Exception:
                logger.exception("Threshold evaluation failed for wallet %s", wallet.id)
                outcome = WalletOutcome.FAILED
            result.outcomes[outcome.value] += 1
            if outcome == WalletOutcome.SENT:
                result.alerts_sent += 1

        logger.info(
            "Threshold run: %d wallets, %d alerts sent, outcomes=%s",
            result.processed_wallets,
            result.alerts_sent,
            dict(result.outcomes),
        )
        return result

    async def _evaluate_wallet(self, wallet: WalletDTO, bucket: datetime | None) -> WalletOutcome:
        async with self.db.get_async_session() as session:
            targets = await TargetRepository(session).list_for_wallet(wallet.id)
            if not targets:
                return WalletOutcome.NO_TARGETS

            snapshots = SnapshotRepository(session)
            if bucket is not None:
                snapshot = await snapshots.get_for_bucket(wallet.id, bucket)
            else:
                snapshot = await snapshots.get_latest(wallet.id)
            if snapshot is None:
                return WalletOutcome.NO_SNAPSHOT

            if await AlertEventRepository(session).exists_for_snapshot(wallet.id, snapshot.id):
                logger.debug("Alert already recorded for wallet %s snapshot %s", wallet.id, snapshot.id)
                return WalletOutcome.ALREADY_ALERTED

            target_map = {t.unit: t.target_pct_points for t in targets}
            balances = await SnapshotBalanceRepository(session).list_for_snapshot(snapshot.id)
            price_rows = await TokenPriceRepository(session).get_for_bucket(
                snapshot.snapshot_bucket, [LOVELACE_UNIT, BTC_UNIT, *target_map]
            )

        prices = {unit: row.price_usd for unit, row in price_rows.items()}
        try:
            alert = assess_wallet(wallet, snapshot, target_map, balances, prices)
        except ValueError as e:
            logger.debug("Skipping wallet %s: %s", wallet.id, e)
            return WalletOutcome.NOT_EVALUABLE
        if alert is None:
            return WalletOutcome.WITHIN_THRESHOLD

        text = self.formatter.format(alert)
        if self.dry_run:
            logger.info("[DRY RUN] Would send alert for wallet %s:\n%s", wallet.id, text)
            return WalletOutcome.DRY_RUN

        try:
            async with self.db.get_async_session() as session:
                event = await AlertEventRepository(session).insert(
                    AlertEventDTO(
                        wallet_id=wallet.id,
                        snapshot_id=snapshot.id,
                        deviation_threshold_pct_points=wallet.deviation_threshold_pct_points,
                        details=alert.to_details(),
                    )
                )
        except Exception:
            logger.exception("Failed to record alert for wallet %s; not sending", wallet.id)
            return WalletOutcome.PERSIST_FAILED

        if self.sink is None:
            return WalletOutcome.RECORDED

        error: str | None = None
        try:
            await self.sink.send(text)
        except Exception as e:
            error = str(e)
            logger.warning("Alert delivery failed for wallet %s: %s", wallet.id, error)

        try:
            async with self.db.get_async_session() as session:
                await AlertEventRepository(session).mark_delivery(
                    event.id,  # type: ignore[arg-type]
                    sent=error is None,
                    error=error,
                )
        except Exception:
            logger.exception("Failed to record delivery status for alert %s", event.id)
        return WalletOutcome.SENT if error is None else WalletOutcome.DELIVERY_FAILED
