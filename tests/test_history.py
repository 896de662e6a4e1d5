from datetime import datetime, timedelta

from curtail.history import complete_open_shutdowns, get_log_entries, save_log_entry
from curtail.models import AutomationLogEntry, DecisionType, PriorityGroup

LOW = frozenset({PriorityGroup.LOW})
HIGH = frozenset({PriorityGroup.HIGH})


def shutdown(executed_at, groups=LOW, status="completed"):
    return AutomationLogEntry(
        action_type=DecisionType.SHUTDOWN,
        trigger_price=150.0,
        estimated_savings=20.0,
        executed_at=executed_at,
        affected_devices=["pdu-1", "pdu-2"],
        affected_priority_groups=groups,
        status=status,
    )


def test_save_and_read_entries(db_path, now):
    save_log_entry(shutdown(now - timedelta(hours=3)), db_path)
    save_log_entry(shutdown(now - timedelta(hours=1)), db_path)
    save_log_entry(shutdown(now - timedelta(days=40)), db_path)

    entries = get_log_entries(now - timedelta(days=1), now, db_path)

    assert len(entries) == 2
    assert entries[0].executed_at == now - timedelta(hours=1)
    assert entries[0].affected_devices == ["pdu-1", "pdu-2"]
    assert entries[0].affected_priority_groups == LOW


def test_complete_open_shutdowns_only_touches_matching_groups(db_path, now):
    save_log_entry(shutdown(now - timedelta(minutes=90)), db_path)
    save_log_entry(shutdown(now - timedelta(minutes=30), groups=HIGH), db_path)
    save_log_entry(shutdown(now - timedelta(minutes=20), status="failed"), db_path)

    assert complete_open_shutdowns(LOW, now, db_path) == 1
    # Already closed entries stay closed
    assert complete_open_shutdowns(LOW, now + timedelta(hours=1), db_path) == 0

    entries = {e.executed_at: e for e in get_log_entries(now - timedelta(days=1), now, db_path)}
    closed = entries[now - timedelta(minutes=90)]
    assert closed.duration_seconds == 5400
    assert closed.completed_at == now
    assert entries[now - timedelta(minutes=30)].completed_at is None
    assert entries[now - timedelta(minutes=20)].completed_at is None


def test_save_log_entry_sets_id(db_path):
    entry = save_log_entry(shutdown(datetime(2026, 1, 1)), db_path)
    assert entry.id is not None
