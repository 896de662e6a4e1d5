"""Price-responsive curtailment decision logic.

The evaluator is a pure function of a market snapshot, an ordered rule list and
the current device fleet. Rules are expected in ascending hard-ceiling order
(see `rules.sort_rules`); they are not re-sorted here.

Precedence, highest first:
    critical grid stress shutdown == rule ceiling shutdown
    > prepare_shutdown > resume > continue

A ceiling shutdown stops rule iteration. Lower-precedence matches never replace a
higher one, and among equal matches the earlier (more conservative) rule is kept.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from ..models import (
    Alert,
    AlertType,
    Decision,
    DecisionType,
    Device,
    DeviceStatus,
    GridStressLevel,
    MarketSnapshot,
    PriceDirection,
    PriorityGroup,
    Rule,
)
from .stress import classify

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 0.9
SHUTDOWN_CONFIDENCE = 0.95
PREPARE_CONFIDENCE = 0.75
RESUME_CONFIDENCE = 0.85
GRID_STRESS_CONFIDENCE = 0.99

# Resume only if the 1h forecast stays within 10% of the floor
RESUME_FORECAST_MARGIN = 1.1

GRID_STRESS_GROUPS = frozenset({PriorityGroup.LOW, PriorityGroup.MEDIUM})

AlertSink = Callable[[Alert], None]


@dataclass
class _RuleMatch:
    decision: DecisionType
    rule: Rule
    reason: str
    confidence: float
    estimated_savings: float
    alert: Alert


def affected_load_kw(devices: list[Device], groups: frozenset[PriorityGroup]) -> float:
    """Total load of online devices in the given groups."""
    return sum(
        d.current_load_kw or 0.0
        for d in devices
        if d.is_online and d.priority_group in groups
    )


def estimate_savings(current_price: float, floor_price: float, load_kw: float) -> float:
    """Hourly savings of curtailing `load_kw` at `current_price` instead of the floor.

    Prices are per MWh, so the kW load is scaled by 1/1000.
    """
    return (current_price - floor_price) * load_kw / 1000


def _match_rule(
    rule: Rule,
    snapshot: MarketSnapshot,
    devices: list[Device],
    stress_level: GridStressLevel,
) -> _RuleMatch | None:
    current = snapshot.current_price
    forecast_1h = snapshot.predicted_price_1h
    hard = rule.hard_ceiling_price
    soft = rule.effective_soft_ceiling
    floor = rule.floor_price
    groups = rule.affected_priority_groups

    if current >= hard:
        return _RuleMatch(
            decision=DecisionType.SHUTDOWN,
            rule=rule,
            reason=f"Price ${current:.2f} exceeds hard ceiling ${hard:.2f}",
            confidence=SHUTDOWN_CONFIDENCE,
            estimated_savings=estimate_savings(current, floor, affected_load_kw(devices, groups)),
            alert=Alert(
                alert_type=AlertType.CEILING_BREACH,
                current_price=current,
                threshold_price=hard,
                price_direction=(
                    PriceDirection.FALLING if current > forecast_1h else PriceDirection.RISING
                ),
                grid_stress_level=stress_level,
                rule_id=rule.id,
            ),
        )

    if current >= soft or forecast_1h >= hard:
        return _RuleMatch(
            decision=DecisionType.PREPARE_SHUTDOWN,
            rule=rule,
            reason=(
                f"Price approaching ceiling. Current: ${current:.2f}, "
                f"1h forecast: ${forecast_1h:.2f}"
            ),
            confidence=PREPARE_CONFIDENCE,
            estimated_savings=0.0,
            alert=Alert(
                alert_type=AlertType.CEILING_WARNING,
                current_price=current,
                threshold_price=soft,
                price_direction=PriceDirection.RISING,
                forecast_breach_hours=1,
                grid_stress_level=stress_level,
                rule_id=rule.id,
            ),
        )

    if current <= floor and forecast_1h <= floor * RESUME_FORECAST_MARGIN:
        offline = [
            d for d in devices
            if d.current_status == DeviceStatus.OFFLINE and d.priority_group in groups
        ]
        if offline:
            return _RuleMatch(
                decision=DecisionType.RESUME,
                rule=rule,
                reason=f"Price ${current:.2f} below floor ${floor:.2f}, forecast stable",
                confidence=RESUME_CONFIDENCE,
                estimated_savings=0.0,
                alert=Alert(
                    alert_type=AlertType.FLOOR_BREACH,
                    current_price=current,
                    threshold_price=floor,
                    price_direction=PriceDirection.FALLING,
                    grid_stress_level=stress_level,
                    rule_id=rule.id,
                ),
            )

    return None


def _emit(on_alert: AlertSink | None, alert: Alert) -> None:
    if on_alert is None:
        return
    try:
        on_alert(alert)
    except Exception:
        logger.exception("Alert sink failed for %s alert", alert.alert_type.value)


def evaluate(
    snapshot: MarketSnapshot,
    rules: list[Rule],
    devices: list[Device],
    on_alert: AlertSink | None = None,
    now: datetime | None = None,
) -> Decision:
    """Decide whether the fleet should continue, prepare, shut down or resume.

    Args:
        snapshot: Current market and grid conditions
        rules: Rules in ascending hard-ceiling order; inactive ones are ignored
        devices: Current device fleet status
        on_alert: Called once per triggering branch (e.g. `AlertEmitter.emit`)
        now: Decision timestamp, defaults to the current time

    Returns:
        A new Decision. With no active rules and normal grid conditions this is
        always `continue`.
    """
    stress_level = classify(snapshot.grid_stress_score, snapshot.reserve_margin_percent)

    decision = DecisionType.CONTINUE
    groups: frozenset[PriorityGroup] = frozenset()
    reason = "Normal operation"
    confidence = DEFAULT_CONFIDENCE
    savings = 0.0
    rule_id = None

    for rule in rules:
        if not rule.active:
            continue

        match = _match_rule(rule, snapshot, devices, stress_level)
        if match is None:
            continue

        _emit(on_alert, match.alert)

        if match.decision.precedence > decision.precedence:
            decision = match.decision
            groups = match.rule.affected_priority_groups
            reason = match.reason
            confidence = match.confidence
            savings = match.estimated_savings
            rule_id = match.rule.id

        if decision == DecisionType.SHUTDOWN:
            break

    if stress_level == GridStressLevel.CRITICAL and decision != DecisionType.SHUTDOWN:
        decision = DecisionType.SHUTDOWN
        groups = GRID_STRESS_GROUPS
        reason = (
            f"Grid stress critical ({snapshot.grid_stress_score:g}/100), "
            f"reserve margin {snapshot.reserve_margin_percent:.1f}%"
        )
        confidence = GRID_STRESS_CONFIDENCE
        savings = 0.0
        rule_id = None
        _emit(
            on_alert,
            Alert(
                alert_type=AlertType.GRID_STRESS,
                current_price=snapshot.current_price,
                threshold_price=0.0,
                grid_stress_level=stress_level,
            ),
        )

    result = Decision(
        timestamp=now or datetime.now(),
        current_price=snapshot.current_price,
        predicted_price_1h=snapshot.predicted_price_1h,
        predicted_price_6h=snapshot.predicted_price_6h,
        grid_stress_level=stress_level,
        decision=decision,
        affected_priority_groups=groups,
        reason=reason,
        confidence_score=confidence,
        estimated_savings=savings,
        rule_id=rule_id,
    )
    logger.info(
        "Decision %s (confidence %.2f, stress %s): %s",
        result.decision.value,
        result.confidence_score,
        result.grid_stress_level.value,
        result.reason,
    )
    return result
