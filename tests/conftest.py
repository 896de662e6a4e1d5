"""Shared fixtures for curtailment tests."""

from datetime import datetime, timedelta

import pytest
from curtail.db import init_db
from curtail.models import (
    CommandOutcome,
    Device,
    DeviceCommandResult,
    DeviceStatus,
    MarketSnapshot,
    PriorityGroup,
    Rule,
)


@pytest.fixture
def db_path(tmp_path):
    path = tmp_path / "curtail.db"
    init_db(path)
    return path


@pytest.fixture
def now():
    return datetime(2026, 3, 10, 14, 0)


def make_rule(**overrides) -> Rule:
    fields = {
        "name": "Low priority",
        "hard_ceiling_price": 100.0,
        "soft_ceiling_price": 85.0,
        "floor_price": 20.0,
        "affected_priority_groups": frozenset({PriorityGroup.LOW}),
        "id": 1,
    }
    fields.update(overrides)
    return Rule(**fields)


def make_snapshot(**overrides) -> MarketSnapshot:
    fields = {
        "current_price": 50.0,
        "predicted_price_1h": 50.0,
        "predicted_price_6h": 50.0,
        "grid_stress_score": 30.0,
        "reserve_margin_percent": 20.0,
    }
    fields.update(overrides)
    return MarketSnapshot(**fields)


class Clock:
    """Settable stand-in for datetime.now."""

    def __init__(self, start):
        self.current = start

    def __call__(self):
        return self.current

    def advance(self, **kwargs):
        self.current += timedelta(**kwargs)


class FakeDeviceService:
    """In-memory device controller that applies power commands to its devices."""

    def __init__(self, devices=None, failing=(), list_error=None):
        self.devices = {d.id: d for d in devices or []}
        self.failing = set(failing)
        self.list_error = list_error
        self.calls = []

    def get_devices(self):
        if self.list_error is not None:
            raise self.list_error
        return [
            Device(d.id, d.priority_group, d.current_status, d.current_load_kw, d.name)
            for d in self.devices.values()
        ]

    def set_power(self, device_ids, target_state, reason=None):
        self.calls.append((list(device_ids), target_state))
        results = []
        for device_id in device_ids:
            if device_id in self.failing:
                results.append(DeviceCommandResult(device_id, CommandOutcome.FAILED, "PDU unreachable"))
                continue
            self.devices[device_id].current_status = target_state
            results.append(DeviceCommandResult(device_id, CommandOutcome.SENT))
        return results


class FakeSnapshotProvider:
    def __init__(self, snapshot=None, error=None):
        self.snapshot = snapshot or make_snapshot()
        self.error = error

    def get_snapshot(self):
        if self.error is not None:
            raise self.error
        return self.snapshot


@pytest.fixture
def fleet():
    return [
        Device("pdu-low-1", PriorityGroup.LOW, DeviceStatus.ONLINE, 500.0),
        Device("pdu-low-2", PriorityGroup.LOW, DeviceStatus.OFFLINE, 200.0),
        Device("pdu-med-1", PriorityGroup.MEDIUM, DeviceStatus.ONLINE, 300.0),
        Device("pdu-crit-1", PriorityGroup.CRITICAL, DeviceStatus.ONLINE, 1000.0),
    ]
