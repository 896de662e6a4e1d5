"""Tests for curtailment analytics."""

from datetime import timedelta

import pytest
from curtail.alerts import AlertEmitter
from curtail.analysis.analytics import (
    analytics_to_dict,
    format_analytics_text,
    get_analytics,
    summarize,
)
from curtail.history import save_log_entry
from curtail.models import Alert, AlertType, AutomationLogEntry, DecisionType, GridStressLevel


def entry(action, executed_at, price=0.0, savings=0.0, duration=None):
    return AutomationLogEntry(
        action_type=action,
        trigger_price=price,
        estimated_savings=savings,
        executed_at=executed_at,
        duration_seconds=duration,
    )


def test_summarize_empty():
    assert summarize([]) == {
        "total_shutdowns": 0,
        "total_resumes": 0,
        "total_savings": 0,
        "total_curtailment_hours": 0,
        "average_price_avoided": 0.0,
    }


def test_summarize(now):
    entries = [
        entry(DecisionType.SHUTDOWN, now, price=120, savings=30, duration=3600),
        entry(DecisionType.SHUTDOWN, now, price=180, savings=12.5, duration=5400),
        entry(DecisionType.SHUTDOWN, now, price=150, savings=0),  # still curtailed
        entry(DecisionType.RESUME, now, price=15, savings=0, duration=0),
    ]

    result = summarize(entries)

    assert result["total_shutdowns"] == 3
    assert result["total_resumes"] == 1
    assert result["total_savings"] == pytest.approx(42.5)
    assert result["total_curtailment_hours"] == pytest.approx(2.5)
    assert result["average_price_avoided"] == pytest.approx(150)


def test_get_analytics_window_and_limits(db_path, now):
    for i in range(25):
        save_log_entry(entry(DecisionType.SHUTDOWN, now - timedelta(hours=i), price=100, savings=1), db_path)
    save_log_entry(entry(DecisionType.SHUTDOWN, now - timedelta(days=45), price=900, savings=500), db_path)

    emitter = AlertEmitter(db_path, clock=lambda: now)
    for _ in range(12):
        emitter.emit(Alert(AlertType.CEILING_BREACH, 120.0, 100.0, GridStressLevel.NORMAL, rule_id=1))

    analytics = get_analytics(30, db_path, now=now)

    assert analytics["period_days"] == 30
    assert analytics["total_shutdowns"] == 25
    assert analytics["total_savings"] == pytest.approx(25)
    assert len(analytics["recent_logs"]) == 20
    assert analytics["recent_logs"][0].executed_at == now
    assert len(analytics["active_alerts"]) == 10


def test_analytics_to_dict_is_json_friendly(db_path, now):
    save_log_entry(entry(DecisionType.SHUTDOWN, now, price=100, savings=1.234), db_path)
    data = analytics_to_dict(get_analytics(7, db_path, now=now))

    assert data["total_savings"] == 1.23
    assert data["recent_logs"][0]["action_type"] == "shutdown"
    assert data["recent_logs"][0]["executed_at"] == now.isoformat()
    assert data["active_alerts"] == []


def test_format_analytics_text(now):
    analytics = {"period_days": 7, "active_alerts": [], "recent_logs": []}
    analytics.update(summarize([entry(DecisionType.SHUTDOWN, now, price=120, savings=30, duration=7200)]))

    text = format_analytics_text(analytics)

    assert "last 7 days" in text
    assert "Shutdowns: 1" in text
    assert "2.0 hours" in text
    assert "$30.00" in text
    assert "$120.00/MWh" in text
