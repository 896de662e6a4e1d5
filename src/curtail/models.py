"""Data models for curtailment rules, market data, decisions and schedules."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

# Soft ceiling defaults to this fraction of the hard ceiling
SOFT_CEILING_RATIO = 0.85


class PriorityGroup(str, Enum):
    """Tag selecting which devices a rule affects."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class DeviceStatus(str, Enum):
    """Power state of a PDU, also used as the target of a power command."""

    ONLINE = "online"
    OFFLINE = "offline"


class GridStressLevel(str, Enum):
    """Ordinal classification of system-wide supply risk."""

    NORMAL = "normal"
    ELEVATED = "elevated"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def severity(self) -> int:
        return _STRESS_ORDER.index(self)

    def __lt__(self, other):
        if not isinstance(other, GridStressLevel):
            return NotImplemented
        return self.severity < other.severity

    def __le__(self, other):
        if not isinstance(other, GridStressLevel):
            return NotImplemented
        return self.severity <= other.severity

    def __gt__(self, other):
        if not isinstance(other, GridStressLevel):
            return NotImplemented
        return self.severity > other.severity

    def __ge__(self, other):
        if not isinstance(other, GridStressLevel):
            return NotImplemented
        return self.severity >= other.severity


_STRESS_ORDER = [
    GridStressLevel.NORMAL,
    GridStressLevel.ELEVATED,
    GridStressLevel.HIGH,
    GridStressLevel.CRITICAL,
]


class DecisionType(str, Enum):
    """Outcome of a single evaluation."""

    CONTINUE = "continue"
    PREPARE_SHUTDOWN = "prepare_shutdown"
    SHUTDOWN = "shutdown"
    RESUME = "resume"

    @property
    def precedence(self) -> int:
        """Higher wins when several rules match in one evaluation."""
        return _DECISION_PRECEDENCE[self]


_DECISION_PRECEDENCE = {
    DecisionType.CONTINUE: 0,
    DecisionType.RESUME: 1,
    DecisionType.PREPARE_SHUTDOWN: 2,
    DecisionType.SHUTDOWN: 3,
}


class AlertType(str, Enum):
    CEILING_WARNING = "ceiling_warning"
    CEILING_BREACH = "ceiling_breach"
    FLOOR_BREACH = "floor_breach"
    GRID_STRESS = "grid_stress"


class PriceDirection(str, Enum):
    RISING = "rising"
    FALLING = "falling"


class CommandOutcome(str, Enum):
    """Per-device result of a dispatched decision."""

    SENT = "sent"
    SKIPPED = "skipped"
    FAILED = "failed"


class SchedulePriority(str, Enum):
    COST = "cost"
    CARBON = "carbon"
    BALANCED = "balanced"


@dataclass
class Rule:
    """A curtailment rule with price thresholds and affected device groups."""

    name: str
    hard_ceiling_price: float
    floor_price: float
    affected_priority_groups: frozenset[PriorityGroup]
    soft_ceiling_price: float | None = None  # None = SOFT_CEILING_RATIO x hard ceiling
    active: bool = True
    description: str | None = None
    grace_period_seconds: int = 0
    id: int | None = None
    trigger_count: int = 0
    last_triggered_at: datetime | None = None
    created_at: datetime | None = None

    @property
    def effective_soft_ceiling(self) -> float:
        if self.soft_ceiling_price is not None:
            return self.soft_ceiling_price
        return self.hard_ceiling_price * SOFT_CEILING_RATIO


@dataclass
class Device:
    """A power distribution unit as reported by the device-control service."""

    id: str
    priority_group: PriorityGroup
    current_status: DeviceStatus
    current_load_kw: float = 0.0
    name: str | None = None

    @property
    def is_online(self) -> bool:
        return self.current_status == DeviceStatus.ONLINE


@dataclass(frozen=True)
class MarketSnapshot:
    """Point-in-time market and grid conditions."""

    current_price: float
    predicted_price_1h: float
    predicted_price_6h: float
    grid_stress_score: float  # 0-100
    reserve_margin_percent: float


@dataclass(frozen=True)
class Decision:
    """Result of one evaluation of the control loop."""

    timestamp: datetime
    current_price: float
    predicted_price_1h: float
    predicted_price_6h: float
    grid_stress_level: GridStressLevel
    decision: DecisionType
    affected_priority_groups: frozenset[PriorityGroup]
    reason: str
    confidence_score: float
    estimated_savings: float
    rule_id: int | None = None
    warnings: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "current_price": self.current_price,
            "predicted_price_1h": self.predicted_price_1h,
            "predicted_price_6h": self.predicted_price_6h,
            "grid_stress_level": self.grid_stress_level.value,
            "decision": self.decision.value,
            "affected_priority_groups": sorted(g.value for g in self.affected_priority_groups),
            "reason": self.reason,
            "confidence_score": self.confidence_score,
            "estimated_savings": self.estimated_savings,
            "rule_id": self.rule_id,
            "warnings": list(self.warnings),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Decision":
        """Build a Decision from its dict form.

        Raises ValueError for unknown decision types, stress levels or groups.
        """
        try:
            return cls(
                timestamp=datetime.fromisoformat(data["timestamp"]),
                current_price=float(data["current_price"]),
                predicted_price_1h=float(data.get("predicted_price_1h", data["current_price"])),
                predicted_price_6h=float(data.get("predicted_price_6h", data["current_price"])),
                grid_stress_level=GridStressLevel(data.get("grid_stress_level", "normal")),
                decision=DecisionType(data["decision"]),
                affected_priority_groups=frozenset(
                    PriorityGroup(g) for g in data.get("affected_priority_groups", [])
                ),
                reason=data.get("reason", ""),
                confidence_score=float(data.get("confidence_score", 0.0)),
                estimated_savings=float(data.get("estimated_savings", 0.0)),
                rule_id=data.get("rule_id"),
                warnings=tuple(data.get("warnings", ())),
            )
        except KeyError as e:
            raise ValueError(f"Decision is missing field {e}") from e


@dataclass
class Alert:
    """A recorded threshold-crossing event."""

    alert_type: AlertType
    current_price: float
    threshold_price: float
    grid_stress_level: GridStressLevel
    price_direction: PriceDirection | None = None
    rule_id: int | None = None
    forecast_breach_hours: int | None = None
    active: bool = True
    id: int | None = None
    created_at: datetime | None = None
    acknowledged_at: datetime | None = None


@dataclass
class AutomationLogEntry:
    """Record of an executed shutdown or resume."""

    action_type: DecisionType
    trigger_price: float
    estimated_savings: float
    executed_at: datetime
    duration_seconds: int | None = None
    rule_id: int | None = None
    affected_devices: list[str] = field(default_factory=list)
    affected_priority_groups: frozenset[PriorityGroup] = frozenset()
    total_load_affected_kw: float = 0.0
    grid_stress_level: GridStressLevel | None = None
    decision_confidence: float | None = None
    status: str = "completed"
    completed_at: datetime | None = None
    id: int | None = None


@dataclass
class DeviceCommandResult:
    device_id: str
    outcome: CommandOutcome
    error: str | None = None
    load_kw: float = 0.0


@dataclass
class ExecutionResult:
    """Per-device outcome of applying a decision."""

    decision: DecisionType
    target_state: DeviceStatus | None
    results: list[DeviceCommandResult] = field(default_factory=list)
    message: str = ""
    error: str | None = None  # set when no command could be attempted at all

    @property
    def sent(self) -> list[str]:
        return [r.device_id for r in self.results if r.outcome == CommandOutcome.SENT]

    @property
    def skipped(self) -> list[str]:
        return [r.device_id for r in self.results if r.outcome == CommandOutcome.SKIPPED]

    @property
    def failed(self) -> list[DeviceCommandResult]:
        return [r for r in self.results if r.outcome == CommandOutcome.FAILED]

    @property
    def success(self) -> bool:
        # Per-device failures are reported in `failed`, not as an overall failure
        return self.error is None


@dataclass
class OptimizationParams:
    """Inputs for the load schedule optimizer."""

    demand_mw: float
    operating_hours: float
    flexibility_window_hours: int
    demand_charge_rate: float  # $/kW
    transmission_rate: float  # $/MWh
    carbon_price: float  # $/tonne CO2
    carbon_intensity: float  # kg CO2/MWh
    priority: SchedulePriority = SchedulePriority.BALANCED


@dataclass
class ScheduleSlot:
    """Cost and carbon breakdown for running the load in one hour."""

    hour: int
    time_slot: str
    energy_price: float
    energy_cost: float
    demand_charge: float
    transmission_cost: float
    carbon_cost: float
    total_cost: float
    carbon_emissions: float  # tonnes
    recommendation_score: float = 0.0
    is_optimal: bool = False


@dataclass
class OptimizationResult:
    schedule_options: list[ScheduleSlot]  # ordered by hour
    optimal_slots: list[ScheduleSlot]  # best first
    worst_slots: list[ScheduleSlot]
    cost_savings: float
    carbon_savings: float
    percent_savings: float
    best_start_time: str
    total_cost: float
    total_emissions: float
