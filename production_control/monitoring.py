"""Saturation alerting for production lines."""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional
from uuid import uuid4

from .config import SaturationOptions
from .domain import Alert, AlertSeverity, EntityType, LineOccupancy, utcnow
from .errors import PreconditionError
from .history import SYSTEM_USER, HistoryLedger

logger = logging.getLogger(__name__)

LINE_SATURATION = "line_saturation"


class SaturationMonitor:
    """Raises alerts for lines whose occupancy rate crosses a threshold.

    Every qualifying line yields one new alert per evaluation. Unresolved
    alerts already on record for the same line are left as they are, so a
    run of allocations onto a busy line produces a run of alerts.
    """

    def __init__(
        self,
        store,
        history: HistoryLedger,
        options: Optional[SaturationOptions] = None,
    ) -> None:
        self._store = store
        self._history = history
        self.options = options or SaturationOptions()

    def classify(self, rate: float) -> Optional[AlertSeverity]:
        if rate >= self.options.critical_threshold:
            return AlertSeverity.CRITICAL
        if rate > self.options.warning_threshold:
            return AlertSeverity.WARNING
        return None

    def evaluate(
        self, snapshot: Iterable[LineOccupancy], order_id: Optional[str] = None
    ) -> List[Alert]:
        """Persist one alert per saturated line in ``snapshot``."""

        raised: List[Alert] = []
        for line in snapshot:
            severity = self.classify(line.rate)
            if severity is None:
                continue
            alert = Alert(
                id=str(uuid4()),
                type=LINE_SATURATION,
                severity=severity,
                message=(
                    f"{line.name} is at {line.rate * 100:.1f}% of capacity "
                    f"({line.occupancy}/{line.capacity})"
                ),
                related_order_id=order_id,
                related_line_id=line.line_id,
            )
            self._store.alerts.add(alert.id, alert)
            logger.warning("Saturation %s: %s", severity.value, alert.message)
            raised.append(alert)
        return raised

    def resolve(self, alert_id: str, *, acting_user: str = SYSTEM_USER) -> Alert:
        with self._store.transaction():
            alert = self._store.alerts.get(alert_id)
            if alert.is_resolved:
                raise PreconditionError(
                    f"Alert {alert_id!r} was already resolved",
                    {"alert_id": alert_id},
                )
            alert.resolved_at = utcnow()
            alert.resolved_by = acting_user
            self._store.alerts.upsert(alert.id, alert)
            self._history.record(
                EntityType.ALERT,
                alert.id,
                "resolved",
                None,
                alert.resolved_at.isoformat(),
                acting_user=acting_user,
            )
        logger.info("Alert %s resolved by %s", alert_id, acting_user)
        return alert

    def open_alerts(self, severity: Optional[AlertSeverity] = None) -> List[Alert]:
        alerts = self._store.alerts.filter(
            lambda alert: not alert.is_resolved
            and (severity is None or alert.severity == severity)
        )
        alerts.sort(key=lambda alert: alert.created_at, reverse=True)
        return alerts

    def alerts_for_line(self, line_id: str) -> List[Alert]:
        alerts = self._store.alerts.filter(lambda alert: alert.related_line_id == line_id)
        alerts.sort(key=lambda alert: alert.created_at)
        return alerts


__all__ = ["SaturationMonitor", "LINE_SATURATION"]
