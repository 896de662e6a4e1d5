"""Automation log and decision history storage."""

from datetime import datetime
from pathlib import Path

from .db import get_connection
from .models import AutomationLogEntry, Decision, DecisionType, GridStressLevel, PriorityGroup


def _split(value: str | None) -> list[str]:
    return [v for v in (value or "").split(",") if v]


def _row_to_entry(row) -> AutomationLogEntry:
    return AutomationLogEntry(
        id=row["id"],
        action_type=DecisionType(row["action_type"]),
        trigger_price=row["trigger_price"] or 0.0,
        estimated_savings=row["estimated_savings"] or 0.0,
        duration_seconds=row["duration_seconds"],
        rule_id=row["rule_id"],
        affected_devices=_split(row["affected_devices"]),
        affected_priority_groups=frozenset(
            PriorityGroup(g) for g in _split(row["affected_priority_groups"])
        ),
        total_load_affected_kw=row["total_load_affected_kw"] or 0.0,
        grid_stress_level=(
            GridStressLevel(row["grid_stress_level"]) if row["grid_stress_level"] else None
        ),
        decision_confidence=row["decision_confidence"],
        status=row["status"] or "completed",
        executed_at=datetime.fromisoformat(row["executed_at"]),
        completed_at=datetime.fromisoformat(row["completed_at"]) if row["completed_at"] else None,
    )


def save_log_entry(entry: AutomationLogEntry, db_path: Path | None = None) -> AutomationLogEntry:
    """Append an executed action to the automation log."""
    with get_connection(db_path) as conn:
        cursor = conn.execute(
            """INSERT INTO automation_log
               (action_type, trigger_price, estimated_savings, duration_seconds, rule_id,
                affected_devices, affected_priority_groups, total_load_affected_kw,
                grid_stress_level, decision_confidence, status, executed_at, completed_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                entry.action_type.value,
                entry.trigger_price,
                entry.estimated_savings,
                entry.duration_seconds,
                entry.rule_id,
                ",".join(entry.affected_devices),
                ",".join(sorted(g.value for g in entry.affected_priority_groups)),
                entry.total_load_affected_kw,
                entry.grid_stress_level.value if entry.grid_stress_level else None,
                entry.decision_confidence,
                entry.status,
                entry.executed_at.isoformat(),
                entry.completed_at.isoformat() if entry.completed_at else None,
            ),
        )
        conn.commit()
        entry.id = cursor.lastrowid
    return entry


def complete_open_shutdowns(
    groups: frozenset[PriorityGroup], completed_at: datetime, db_path: Path | None = None
) -> int:
    """Close ongoing shutdowns that touched any of `groups`, recording their duration.

    Returns the number of log entries closed.
    """
    closed = 0
    with get_connection(db_path) as conn:
        rows = conn.execute(
            """SELECT id, executed_at, affected_priority_groups FROM automation_log
               WHERE action_type = ? AND completed_at IS NULL AND status != 'failed'""",
            (DecisionType.SHUTDOWN.value,),
        ).fetchall()

        for row in rows:
            shut_groups = {PriorityGroup(g) for g in _split(row["affected_priority_groups"])}
            if not shut_groups & set(groups):
                continue
            started = datetime.fromisoformat(row["executed_at"])
            duration = max(0, int((completed_at - started).total_seconds()))
            conn.execute(
                "UPDATE automation_log SET completed_at = ?, duration_seconds = ? WHERE id = ?",
                (completed_at.isoformat(), duration, row["id"]),
            )
            closed += 1

        conn.commit()
    return closed


def get_log_entries(
    start: datetime, end: datetime | None = None, db_path: Path | None = None
) -> list[AutomationLogEntry]:
    """Get log entries executed in [start, end], newest first."""
    end = end or datetime.now()
    with get_connection(db_path) as conn:
        rows = conn.execute(
            """SELECT * FROM automation_log
               WHERE executed_at >= ? AND executed_at <= ?
               ORDER BY executed_at DESC, id DESC""",
            (start.isoformat(), end.isoformat()),
        ).fetchall()
        return [_row_to_entry(row) for row in rows]


def save_decision(decision: Decision, db_path: Path | None = None) -> int:
    """Store an evaluated decision. Returns its row id."""
    with get_connection(db_path) as conn:
        cursor = conn.execute(
            """INSERT INTO decisions
               (timestamp, decision, current_price, predicted_price_1h, predicted_price_6h,
                grid_stress_level, affected_priority_groups, reason, confidence_score,
                estimated_savings, rule_id)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                decision.timestamp.isoformat(),
                decision.decision.value,
                decision.current_price,
                decision.predicted_price_1h,
                decision.predicted_price_6h,
                decision.grid_stress_level.value,
                ",".join(sorted(g.value for g in decision.affected_priority_groups)),
                decision.reason,
                decision.confidence_score,
                decision.estimated_savings,
                decision.rule_id,
            ),
        )
        conn.commit()
        return cursor.lastrowid


def get_recent_decisions(limit: int = 20, db_path: Path | None = None) -> list[Decision]:
    with get_connection(db_path) as conn:
        rows = conn.execute(
            "SELECT * FROM decisions ORDER BY timestamp DESC, id DESC LIMIT ?", (limit,)
        ).fetchall()

    return [
        Decision(
            timestamp=datetime.fromisoformat(row["timestamp"]),
            current_price=row["current_price"],
            predicted_price_1h=row["predicted_price_1h"],
            predicted_price_6h=row["predicted_price_6h"],
            grid_stress_level=GridStressLevel(row["grid_stress_level"]),
            decision=DecisionType(row["decision"]),
            affected_priority_groups=frozenset(
                PriorityGroup(g) for g in _split(row["affected_priority_groups"])
            ),
            reason=row["reason"],
            confidence_score=row["confidence_score"],
            estimated_savings=row["estimated_savings"],
            rule_id=row["rule_id"],
        )
        for row in rows
    ]
