"""Tests for alert recording, suppression and acknowledgement."""

from datetime import timedelta

from conftest import Clock
from curtail.alerts import AlertEmitter, acknowledge_alert, get_active_alerts, get_alerts_for_period
from curtail.models import Alert, AlertType, GridStressLevel, PriceDirection


def make_alert(alert_type=AlertType.CEILING_BREACH, rule_id=1):
    return Alert(
        alert_type=alert_type,
        current_price=105.0,
        threshold_price=100.0,
        grid_stress_level=GridStressLevel.NORMAL,
        price_direction=PriceDirection.RISING,
        rule_id=rule_id,
    )


def test_emit_stores_alert(db_path, now):
    emitter = AlertEmitter(db_path, clock=lambda: now)
    stored = emitter.emit(make_alert())

    assert stored.id is not None
    assert stored.created_at == now

    alerts = get_active_alerts(db_path=db_path)
    assert len(alerts) == 1
    assert alerts[0].alert_type == AlertType.CEILING_BREACH
    assert alerts[0].price_direction == PriceDirection.RISING
    assert alerts[0].rule_id == 1


def test_default_policy_records_every_alert(db_path, now):
    emitter = AlertEmitter(db_path, clock=lambda: now)
    for _ in range(3):
        emitter.emit(make_alert())

    assert len(get_active_alerts(db_path=db_path)) == 3


def test_cooldown_suppresses_repeats(db_path, now):
    clock = Clock(now)
    emitter = AlertEmitter(db_path, cooldown_seconds=300, clock=clock)

    assert emitter.emit(make_alert()) is not None
    clock.advance(seconds=60)
    assert emitter.emit(make_alert()) is None
    # Different type or rule is not suppressed
    assert emitter.emit(make_alert(AlertType.CEILING_WARNING)) is not None
    assert emitter.emit(make_alert(rule_id=2)) is not None

    clock.advance(seconds=300)
    assert emitter.emit(make_alert()) is not None
    assert len(get_active_alerts(db_path=db_path)) == 4


def test_cooldown_matches_alerts_without_rule(db_path, now):
    emitter = AlertEmitter(db_path, cooldown_seconds=300, clock=lambda: now)
    assert emitter.emit(make_alert(AlertType.GRID_STRESS, rule_id=None)) is not None
    assert emitter.emit(make_alert(AlertType.GRID_STRESS, rule_id=None)) is None


def test_acknowledged_alert_no_longer_suppresses(db_path, now):
    emitter = AlertEmitter(db_path, cooldown_seconds=300, clock=lambda: now)
    first = emitter.emit(make_alert())

    assert acknowledge_alert(first.id, db_path)
    assert not acknowledge_alert(first.id, db_path)
    assert emitter.emit(make_alert()) is not None


def test_write_failure_is_swallowed(tmp_path, now):
    # No schema: the insert fails
    emitter = AlertEmitter(tmp_path / "empty.db", clock=lambda: now)
    assert emitter.emit(make_alert()) is None


def test_active_alerts_newest_first_and_limited(db_path, now):
    clock = Clock(now)
    emitter = AlertEmitter(db_path, clock=clock)
    for rule_id in range(1, 13):
        emitter.emit(make_alert(rule_id=rule_id))
        clock.advance(seconds=1)

    alerts = get_active_alerts(db_path=db_path)
    assert len(alerts) == 10
    assert alerts[0].rule_id == 12
    assert alerts[-1].rule_id == 3


def test_alerts_for_period(db_path, now):
    clock = Clock(now)
    emitter = AlertEmitter(db_path, clock=clock)
    emitter.emit(make_alert(rule_id=1))
    clock.advance(seconds=3600)
    emitter.emit(make_alert(rule_id=2))

    alerts = get_alerts_for_period(now + timedelta(minutes=30), now + timedelta(hours=2), db_path)
    assert [a.rule_id for a in alerts] == [2]


def test_acknowledge_records_given_time(db_path, now):
    emitter = AlertEmitter(db_path, clock=lambda: now)
    alert = emitter.emit(make_alert())
    acked_at = now + timedelta(minutes=5)

    assert acknowledge_alert(alert.id, db_path, now=acked_at)

    [stored] = get_alerts_for_period(now, now, db_path)
    assert stored.acknowledged_at == acked_at
    assert not stored.active
    assert get_active_alerts(db_path=db_path) == []
