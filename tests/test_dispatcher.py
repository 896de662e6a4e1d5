"""Tests for turning decisions into PDU power commands."""

from datetime import datetime

from conftest import FakeDeviceService
from curtail.collectors.pdu import DeviceControlError
from curtail.control.dispatcher import CommandDispatcher
from curtail.models import (
    CommandOutcome,
    Decision,
    DecisionType,
    DeviceStatus,
    GridStressLevel,
    PriorityGroup,
)


def make_decision(decision_type, groups=(PriorityGroup.LOW,)):
    return Decision(
        timestamp=datetime(2026, 3, 10, 14, 0),
        current_price=120.0,
        predicted_price_1h=110.0,
        predicted_price_6h=80.0,
        grid_stress_level=GridStressLevel.NORMAL,
        decision=decision_type,
        affected_priority_groups=frozenset(groups),
        reason="test",
        confidence_score=0.95,
        estimated_savings=10.0,
    )


def test_shutdown_targets_online_devices_in_groups(fleet):
    service = FakeDeviceService(fleet)
    result = CommandDispatcher(service).execute(make_decision(DecisionType.SHUTDOWN))

    assert result.target_state == DeviceStatus.OFFLINE
    assert result.sent == ["pdu-low-1"]
    assert result.skipped == ["pdu-low-2"]
    assert result.failed == []
    assert result.success
    assert service.devices["pdu-low-1"].current_status == DeviceStatus.OFFLINE
    assert service.devices["pdu-med-1"].current_status == DeviceStatus.ONLINE
    assert service.devices["pdu-crit-1"].current_status == DeviceStatus.ONLINE
    assert result.message == "1 sent, 1 already offline, 0 failed"


def test_resume_targets_offline_devices(fleet):
    service = FakeDeviceService(fleet)
    result = CommandDispatcher(service).execute(make_decision(DecisionType.RESUME))

    assert result.target_state == DeviceStatus.ONLINE
    assert result.sent == ["pdu-low-2"]
    assert result.skipped == ["pdu-low-1"]
    assert service.calls == [(["pdu-low-2"], DeviceStatus.ONLINE)]


def test_advisory_decisions_send_nothing(fleet):
    service = FakeDeviceService(fleet)
    dispatcher = CommandDispatcher(service)

    for decision_type in (DecisionType.CONTINUE, DecisionType.PREPARE_SHUTDOWN):
        result = dispatcher.execute(make_decision(decision_type))
        assert result.results == []
        assert result.target_state is None
        assert "no device commands" in result.message

    assert service.calls == []


def test_execute_twice_is_idempotent(fleet):
    service = FakeDeviceService(fleet)
    dispatcher = CommandDispatcher(service)
    decision = make_decision(DecisionType.SHUTDOWN, groups=(PriorityGroup.LOW, PriorityGroup.MEDIUM))

    first = dispatcher.execute(decision)
    second = dispatcher.execute(decision)

    assert sorted(first.sent) == ["pdu-low-1", "pdu-med-1"]
    assert second.sent == []
    assert second.failed == []
    assert sorted(second.skipped) == ["pdu-low-1", "pdu-low-2", "pdu-med-1"]
    assert all(
        service.devices[d].current_status == DeviceStatus.OFFLINE
        for d in ("pdu-low-1", "pdu-low-2", "pdu-med-1")
    )


def test_one_failing_device_does_not_block_others(fleet):
    service = FakeDeviceService(fleet, failing={"pdu-low-1"})
    decision = make_decision(DecisionType.SHUTDOWN, groups=(PriorityGroup.LOW, PriorityGroup.MEDIUM))

    result = CommandDispatcher(service).execute(decision)

    assert result.sent == ["pdu-med-1"]
    assert [f.device_id for f in result.failed] == ["pdu-low-1"]
    assert result.failed[0].error == "PDU unreachable"
    assert result.success


def test_device_command_exception_is_isolated(fleet):
    service = FakeDeviceService(fleet)
    original = service.set_power

    def flaky(device_ids, target_state, reason=None):
        if "pdu-low-1" in device_ids:
            raise DeviceControlError("connection refused")
        return original(device_ids, target_state, reason)

    service.set_power = flaky
    decision = make_decision(DecisionType.SHUTDOWN, groups=(PriorityGroup.LOW, PriorityGroup.MEDIUM))

    result = CommandDispatcher(service).execute(decision)

    assert result.sent == ["pdu-med-1"]
    assert result.failed[0].outcome == CommandOutcome.FAILED
    assert "connection refused" in result.failed[0].error


def test_results_carry_device_load(fleet):
    result = CommandDispatcher(FakeDeviceService(fleet)).execute(make_decision(DecisionType.SHUTDOWN))
    loads = {r.device_id: r.load_kw for r in result.results}
    assert loads == {"pdu-low-1": 500.0, "pdu-low-2": 200.0}


def test_unavailable_device_list_is_reported(fleet):
    service = FakeDeviceService(fleet, list_error=DeviceControlError("timeout"))
    result = CommandDispatcher(service).execute(make_decision(DecisionType.SHUTDOWN))

    assert not result.success
    assert result.error == "timeout"
    assert result.results == []


def test_no_matching_devices(fleet):
    result = CommandDispatcher(FakeDeviceService(fleet)).execute(
        make_decision(DecisionType.SHUTDOWN, groups=(PriorityGroup.HIGH,))
    )
    assert result.results == []
    assert result.message == "No PDUs match the criteria"
    assert result.success
