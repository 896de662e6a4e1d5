"""Device-control service client for power distribution units.

Lists PDUs with their priority group, status and load, and sends power
commands. Safety interlocks are enforced by the device-control service itself.
"""

from typing import Any

import httpx

from ..models import CommandOutcome, Device, DeviceCommandResult, DeviceStatus, PriorityGroup
from .retry import RetryPolicy, call_with_retry

# Command names understood by the PDU controller
POWER_ACTIONS = {
    DeviceStatus.OFFLINE: "shutdown",
    DeviceStatus.ONLINE: "power_on",
}


class DeviceControlError(Exception):
    """A request to the device-control service failed."""

    pass


def device_from_dict(data: dict[str, Any]) -> Device:
    """Parse a PDU record from the device-control service."""
    try:
        return Device(
            id=str(data["id"]),
            name=data.get("name"),
            priority_group=PriorityGroup(data.get("priority_group", "medium")),
            current_status=DeviceStatus(data.get("current_status", "offline")),
            current_load_kw=float(data.get("current_load_kw") or 0.0),
        )
    except (KeyError, ValueError, TypeError) as e:
        raise DeviceControlError(f"Invalid PDU record {data!r}: {e}") from e


class HttpDeviceControlService:
    """Talks to the PDU controller over HTTP."""

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        timeout: float = 30.0,
        retry: RetryPolicy | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.retry = retry or RetryPolicy()
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def get_devices(self) -> list[Device]:
        """List all PDUs and their current status."""

        def fetch():
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.get(f"{self.base_url}/pdus", headers=self._headers())
                response.raise_for_status()
                return response.json()

        try:
            data = call_with_retry(fetch, "devices.list", self.retry)
        except httpx.HTTPError as e:
            raise DeviceControlError(f"Could not list PDUs: {e}") from e
        except ValueError as e:
            raise DeviceControlError(f"PDU list response was not JSON: {e}") from e

        records = data.get("pdus", []) if isinstance(data, dict) else data
        return [device_from_dict(r) for r in records or []]

    def set_power(
        self,
        device_ids: list[str],
        target_state: DeviceStatus,
        reason: str | None = None,
    ) -> list[DeviceCommandResult]:
        """Switch devices to `target_state`.

        Returns one result per requested device. Devices the controller does
        not report on are marked failed.
        """
        if not device_ids:
            return []

        payload = {
            "action": POWER_ACTIONS[target_state],
            "pdu_ids": list(device_ids),
            "reason": reason,
        }

        def send():
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.post(
                    f"{self.base_url}/pdus/power", json=payload, headers=self._headers()
                )
                response.raise_for_status()
                return response.json()

        try:
            data = call_with_retry(send, f"devices.{payload['action']}", self.retry, idempotent=False)
        except httpx.HTTPError as e:
            raise DeviceControlError(f"Power command failed: {e}") from e
        except ValueError as e:
            raise DeviceControlError(f"Power command response was not JSON: {e}") from e

        items = data.get("results", []) if isinstance(data, dict) else None
        if not isinstance(items, list) or not all(isinstance(item, dict) for item in items):
            raise DeviceControlError(f"Unexpected power command response: {data!r}")

        reported = {}
        for item in items:
            pdu_id = str(item.get("pdu_id", item.get("device_id")))
            if item.get("success"):
                reported[pdu_id] = DeviceCommandResult(pdu_id, CommandOutcome.SENT)
            else:
                reported[pdu_id] = DeviceCommandResult(
                    pdu_id, CommandOutcome.FAILED, item.get("error") or "Command rejected"
                )

        return [
            reported.get(
                device_id,
                DeviceCommandResult(device_id, CommandOutcome.FAILED, "No result reported"),
            )
            for device_id in device_ids
        ]
