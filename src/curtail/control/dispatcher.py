"""Translate decisions into PDU power commands."""

import logging
from typing import Protocol

from ..collectors.pdu import DeviceControlError
from ..models import (
    CommandOutcome,
    Decision,
    DecisionType,
    Device,
    DeviceCommandResult,
    DeviceStatus,
    ExecutionResult,
)

logger = logging.getLogger(__name__)

# Decisions that move devices, and the state they move them to
TARGET_STATES = {
    DecisionType.SHUTDOWN: DeviceStatus.OFFLINE,
    DecisionType.RESUME: DeviceStatus.ONLINE,
}


class DeviceService(Protocol):
    def get_devices(self) -> list[Device]: ...

    def set_power(
        self, device_ids: list[str], target_state: DeviceStatus, reason: str | None = None
    ) -> list[DeviceCommandResult]: ...


class CommandDispatcher:
    """Applies a decision to the device fleet.

    Each device gets its own command so one failing PDU cannot block the rest.
    Devices already in the target state are skipped, which makes repeated
    execution of the same decision harmless.
    """

    def __init__(self, device_service: DeviceService):
        self.device_service = device_service

    def _send(self, device: Device, target: DeviceStatus, reason: str) -> DeviceCommandResult:
        try:
            results = self.device_service.set_power([device.id], target, reason)
        except DeviceControlError as e:
            logger.warning("Power command to %s failed: %s", device.id, e)
            return DeviceCommandResult(device.id, CommandOutcome.FAILED, str(e))

        for result in results:
            if result.device_id == device.id:
                if result.outcome == CommandOutcome.FAILED:
                    logger.warning("PDU %s rejected command: %s", device.id, result.error)
                return result
        return DeviceCommandResult(device.id, CommandOutcome.FAILED, "No result reported")

    def execute(self, decision: Decision, devices: list[Device] | None = None) -> ExecutionResult:
        """Send power commands for a shutdown or resume decision.

        `continue` and `prepare_shutdown` are advisory and send nothing.
        """
        target = TARGET_STATES.get(decision.decision)
        if target is None:
            return ExecutionResult(
                decision=decision.decision,
                target_state=None,
                message=f"Decision: {decision.decision.value} (no device commands)",
            )

        if devices is None:
            try:
                devices = self.device_service.get_devices()
            except DeviceControlError as e:
                logger.error("Could not list devices for %s: %s", decision.decision.value, e)
                return ExecutionResult(
                    decision=decision.decision,
                    target_state=target,
                    message="Device list unavailable",
                    error=str(e),
                )

        selected = [d for d in devices if d.priority_group in decision.affected_priority_groups]
        if not selected:
            return ExecutionResult(
                decision=decision.decision,
                target_state=target,
                message="No PDUs match the criteria",
            )

        results = []
        for device in selected:
            if device.current_status == target:
                result = DeviceCommandResult(device.id, CommandOutcome.SKIPPED)
            else:
                result = self._send(device, target, decision.reason)
            result.load_kw = device.current_load_kw or 0.0
            results.append(result)

        execution = ExecutionResult(decision=decision.decision, target_state=target, results=results)
        execution.message = (
            f"{len(execution.sent)} sent, {len(execution.skipped)} already {target.value}, "
            f"{len(execution.failed)} failed"
        )
        logger.info("Executed %s: %s", decision.decision.value, execution.message)
        return execution
