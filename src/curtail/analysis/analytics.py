"""Savings and curtailment metrics from the automation log."""

from datetime import datetime, timedelta
from pathlib import Path

from ..alerts import DEFAULT_ACTIVE_ALERTS_LIMIT, get_active_alerts
from ..history import get_log_entries
from ..models import AutomationLogEntry, DecisionType

DEFAULT_RECENT_LOGS_LIMIT = 20


def summarize(entries: list[AutomationLogEntry]) -> dict:
    """Aggregate log entries into shutdown/resume counts, savings and curtailment hours.

    Entries whose commands all failed curtailed nothing and are left out.
    """
    entries = [e for e in entries if e.status != "failed"]
    shutdowns = [e for e in entries if e.action_type == DecisionType.SHUTDOWN]
    resumes = [e for e in entries if e.action_type == DecisionType.RESUME]

    total_savings = sum(e.estimated_savings or 0 for e in entries)
    total_hours = sum((e.duration_seconds or 0) / 3600 for e in shutdowns)
    avg_price = (
        sum(e.trigger_price or 0 for e in shutdowns) / len(shutdowns) if shutdowns else 0.0
    )

    return {
        "total_shutdowns": len(shutdowns),
        "total_resumes": len(resumes),
        "total_savings": total_savings,
        "total_curtailment_hours": total_hours,
        "average_price_avoided": avg_price,
    }


def get_analytics(
    period_days: int = 30,
    db_path: Path | None = None,
    recent_logs_limit: int = DEFAULT_RECENT_LOGS_LIMIT,
    active_alerts_limit: int = DEFAULT_ACTIVE_ALERTS_LIMIT,
    now: datetime | None = None,
) -> dict:
    """Summarize the last `period_days` of automation, with recent logs and active alerts."""
    end = now or datetime.now()
    start = end - timedelta(days=period_days)

    entries = get_log_entries(start, end, db_path)
    analytics = {"period_days": period_days}
    analytics.update(summarize(entries))
    analytics["recent_logs"] = entries[:recent_logs_limit]
    analytics["active_alerts"] = get_active_alerts(active_alerts_limit, db_path)
    return analytics


def analytics_to_dict(analytics: dict) -> dict:
    """JSON-friendly form of `get_analytics` output."""
    data = {k: v for k, v in analytics.items() if k not in ("recent_logs", "active_alerts")}
    data["total_savings"] = round(data["total_savings"], 2)
    data["total_curtailment_hours"] = round(data["total_curtailment_hours"], 2)
    data["average_price_avoided"] = round(data["average_price_avoided"], 2)
    data["recent_logs"] = [
        {
            "action_type": e.action_type.value,
            "executed_at": e.executed_at.isoformat(),
            "trigger_price": e.trigger_price,
            "estimated_savings": e.estimated_savings,
            "duration_seconds": e.duration_seconds,
            "affected_devices": e.affected_devices,
            "status": e.status,
        }
        for e in analytics.get("recent_logs", [])
    ]
    data["active_alerts"] = [
        {
            "id": a.id,
            "alert_type": a.alert_type.value,
            "current_price": a.current_price,
            "threshold_price": a.threshold_price,
            "grid_stress_level": a.grid_stress_level.value,
            "rule_id": a.rule_id,
            "created_at": a.created_at.isoformat() if a.created_at else None,
        }
        for a in analytics.get("active_alerts", [])
    ]
    return data


def format_analytics_text(analytics: dict) -> str:
    """Format analytics as human-readable text."""
    lines = [
        f"Curtailment Analytics (last {analytics['period_days']} days)",
        f"- Shutdowns: {analytics['total_shutdowns']}",
        f"- Resumes: {analytics['total_resumes']}",
        f"- Curtailment: {analytics['total_curtailment_hours']:.1f} hours",
        f"- Estimated savings: ${analytics['total_savings']:.2f}",
    ]
    if analytics["total_shutdowns"]:
        lines.append(f"- Average price avoided: ${analytics['average_price_avoided']:.2f}/MWh")

    alerts = analytics.get("active_alerts", [])
    if alerts:
        lines.extend(["", f"Active alerts ({len(alerts)}):"])
        for alert in alerts:
            when = alert.created_at.strftime("%Y-%m-%d %H:%M") if alert.created_at else "?"
            lines.append(
                f"  - [{when}] {alert.alert_type.value}: "
                f"${alert.current_price:.2f} vs ${alert.threshold_price:.2f}"
            )

    return "\n".join(lines)
