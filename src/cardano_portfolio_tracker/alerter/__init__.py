"""Alerter - threshold alert formatting and delivery."""

from cardano_portfolio_tracker.alerter.discord import (
    DiscordWebhookSink,
    NotificationError,
    NotificationSink,
)
from cardano_portfolio_tracker.alerter.formatter import ThresholdAlertFormatter
from cardano_portfolio_tracker.alerter.models import ThresholdAlert

__all__ = [
    "DiscordWebhookSink",
    "NotificationError",
    "NotificationSink",
    "ThresholdAlert",
    "ThresholdAlertFormatter",
]
