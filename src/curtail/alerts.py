"""Alert recording for threshold crossings.

Alerts are written synchronously during evaluation. A failed write is logged and
dropped so that alerting never blocks a control decision.

Suppression: with `cooldown_seconds == 0` (the default) every triggering
evaluation writes an alert, so a sustained breach produces one alert per
evaluation cycle. With a positive cooldown, an alert is skipped while an active
alert of the same type and rule exists that is younger than the cooldown.
"""

import logging
import sqlite3
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable

from .db import get_connection
from .models import Alert, AlertType, GridStressLevel, PriceDirection

logger = logging.getLogger(__name__)

DEFAULT_COOLDOWN_SECONDS = 0
DEFAULT_ACTIVE_ALERTS_LIMIT = 10


def _row_to_alert(row) -> Alert:
    return Alert(
        id=row["id"],
        alert_type=AlertType(row["alert_type"]),
        current_price=row["current_price"],
        threshold_price=row["threshold_price"],
        price_direction=PriceDirection(row["price_direction"]) if row["price_direction"] else None,
        forecast_breach_hours=row["forecast_breach_hours"],
        grid_stress_level=GridStressLevel(row["grid_stress_level"] or "normal"),
        rule_id=row["rule_id"],
        active=bool(row["is_active"]),
        created_at=datetime.fromisoformat(row["created_at"]),
        acknowledged_at=(
            datetime.fromisoformat(row["acknowledged_at"]) if row["acknowledged_at"] else None
        ),
    )


class AlertEmitter:
    """Writes alerts to the alert store, applying the suppression policy."""

    def __init__(
        self,
        db_path: Path | None = None,
        cooldown_seconds: int = DEFAULT_COOLDOWN_SECONDS,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.db_path = db_path
        self.cooldown_seconds = cooldown_seconds
        self.clock = clock

    def _is_suppressed(self, conn: sqlite3.Connection, alert: Alert, now: datetime) -> bool:
        if self.cooldown_seconds <= 0:
            return False
        since = now - timedelta(seconds=self.cooldown_seconds)
        row = conn.execute(
            """SELECT id FROM alerts
               WHERE alert_type = ? AND rule_id IS ? AND is_active = 1 AND created_at >= ?
               LIMIT 1""",
            (alert.alert_type.value, alert.rule_id, since.isoformat()),
        ).fetchone()
        return row is not None

    def emit(self, alert: Alert) -> Alert | None:
        """Record an alert. Returns the stored alert, or None if suppressed or failed."""
        now = self.clock()
        try:
            with get_connection(self.db_path) as conn:
                if self._is_suppressed(conn, alert, now):
                    logger.debug(
                        "Suppressed %s alert for rule %s (cooldown %ss)",
                        alert.alert_type.value,
                        alert.rule_id,
                        self.cooldown_seconds,
                    )
                    return None

                cursor = conn.execute(
                    """INSERT INTO alerts
                       (alert_type, current_price, threshold_price, price_direction,
                        forecast_breach_hours, grid_stress_level, rule_id, is_active, created_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    (
                        alert.alert_type.value,
                        alert.current_price,
                        alert.threshold_price,
                        alert.price_direction.value if alert.price_direction else None,
                        alert.forecast_breach_hours,
                        alert.grid_stress_level.value,
                        alert.rule_id,
                        int(alert.active),
                        now.isoformat(),
                    ),
                )
                conn.commit()
                alert.id = cursor.lastrowid
                alert.created_at = now
        except sqlite3.Error:
            logger.exception("Failed to record %s alert", alert.alert_type.value)
            return None

        logger.info(
            "Alert %s: price %.2f vs threshold %.2f (stress %s)",
            alert.alert_type.value,
            alert.current_price,
            alert.threshold_price,
            alert.grid_stress_level.value,
        )
        return alert


def get_active_alerts(
    limit: int = DEFAULT_ACTIVE_ALERTS_LIMIT, db_path: Path | None = None
) -> list[Alert]:
    """Get the most recent unacknowledged alerts, newest first."""
    with get_connection(db_path) as conn:
        rows = conn.execute(
            """SELECT * FROM alerts WHERE is_active = 1
               ORDER BY created_at DESC, id DESC LIMIT ?""",
            (limit,),
        ).fetchall()
        return [_row_to_alert(row) for row in rows]


def get_alerts_for_period(
    start: datetime, end: datetime, db_path: Path | None = None
) -> list[Alert]:
    with get_connection(db_path) as conn:
        rows = conn.execute(
            """SELECT * FROM alerts WHERE created_at >= ? AND created_at <= ?
               ORDER BY created_at""",
            (start.isoformat(), end.isoformat()),
        ).fetchall()
        return [_row_to_alert(row) for row in rows]


def acknowledge_alert(alert_id: int, db_path: Path | None = None, now: datetime | None = None) -> bool:
    """Mark an alert as acknowledged and inactive. Returns False if it was not active."""
    now = now or datetime.now()
    with get_connection(db_path) as conn:
        cursor = conn.execute(
            "UPDATE alerts SET is_active = 0, acknowledged_at = ? WHERE id = ? AND is_active = 1",
            (now.isoformat(), alert_id),
        )
        conn.commit()
        return cursor.rowcount > 0
