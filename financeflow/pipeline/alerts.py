"""Threshold alert rules evaluated against a snapshot.

Rule order: the 24h-movement rule over each item of the ``items`` view (item
order), then the global dominance rule. The engine is pure: no I/O, no clock,
no randomness, so the same snapshot always yields the same alerts.
"""

from typing import List, Optional

from financeflow.core.config import AlertThresholds
from financeflow.core.logger import logger
from financeflow.models.datatypes import Alert, AlertKind, MarketItem, Priority, Snapshot


class AlertEngine:
    """Evaluates the static alert table.

    Args:
        thresholds: Percent thresholds; defaults to 10% move, 15% high, 50% dominance.
    """

    def __init__(self, thresholds: Optional[AlertThresholds] = None) -> None:
        self.thresholds = thresholds or AlertThresholds()

    def evaluate(self, snapshot: Snapshot) -> List[Alert]:
        alerts: List[Alert] = []
        if snapshot.has_view("items"):
            for item in snapshot.view("items"):
                alert = self._movement_alert(item)
                if alert is not None:
                    alerts.append(alert)
        if snapshot.has_view("global"):
            alert = self._dominance_alert(snapshot.view("global").btc_dominance)
            if alert is not None:
                alerts.append(alert)
        logger.info(f"AlertEngine: {len(alerts)} alert(s) raised")
        return alerts

    def _movement_alert(self, item: MarketItem) -> Optional[Alert]:
        change = item.change_24h
        magnitude = abs(change)
        if magnitude <= self.thresholds.move_threshold:
            return None
        rising = change > 0
        return Alert(
            kind=AlertKind.OPPORTUNITY if rising else AlertKind.WARNING,
            title=f"{item.name} {'Surge' if rising else 'Drop'}",
            message=(
                f"{item.symbol} has {'gained' if rising else 'lost'} {magnitude:.2f}% "
                f"in the last 24 hours."
            ),
            priority=Priority.HIGH if magnitude > self.thresholds.high_threshold else Priority.MEDIUM,
        )

    def _dominance_alert(self, btc_dominance: float) -> Optional[Alert]:
        if btc_dominance >= self.thresholds.dominance_threshold:
            return None
        return Alert(
            kind=AlertKind.INFO,
            title="Altcoin Season Indicator",
            message=(
                f"BTC dominance is at {btc_dominance:.1f}%, suggesting increased altcoin activity."
            ),
            priority=Priority.MEDIUM,
        )
