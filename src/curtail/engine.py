"""Curtailment automation: evaluate, execute, rules, analytics and optimization.

`AutomationEngine` wires the pure decision logic to its collaborators: a market
snapshot provider, the device-control service and the local SQLite store. It
holds no mutable state of its own, so evaluations may run concurrently.
"""

import dataclasses
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Protocol

import httpx

from . import rules as rule_store
from .alerts import DEFAULT_ACTIVE_ALERTS_LIMIT, AlertEmitter
from .analysis.analytics import DEFAULT_RECENT_LOGS_LIMIT, get_analytics
from .collectors.market import MarketDataError
from .collectors.pdu import DeviceControlError
from .control.dispatcher import CommandDispatcher, DeviceService
from .control.evaluator import evaluate
from .history import complete_open_shutdowns, save_decision, save_log_entry
from .models import (
    AutomationLogEntry,
    CommandOutcome,
    Decision,
    DecisionType,
    DeviceCommandResult,
    ExecutionResult,
    GridStressLevel,
    MarketSnapshot,
    OptimizationParams,
    OptimizationResult,
    Rule,
)
from .scheduling.optimizer import optimize

logger = logging.getLogger(__name__)

FAIL_SAFE_CONFIDENCE = 0.0


class SnapshotProvider(Protocol):
    def get_snapshot(self) -> MarketSnapshot: ...


def _curtailed_share(sent: list[DeviceCommandResult], failed: list[DeviceCommandResult]) -> float:
    """Fraction of the attempted load that was actually switched off."""
    attempted = sent + failed
    if not attempted:
        return 0.0
    attempted_kw = sum(r.load_kw for r in attempted)
    if attempted_kw <= 0:
        return len(sent) / len(attempted)
    return sum(r.load_kw for r in sent) / attempted_kw


class AutomationEngine:
    """Runs the price-responsive curtailment loop against live collaborators."""

    def __init__(
        self,
        snapshot_provider: SnapshotProvider,
        device_service: DeviceService,
        db_path: Path | None = None,
        alert_emitter: AlertEmitter | None = None,
        clock: Callable[[], datetime] = datetime.now,
        recent_logs_limit: int = DEFAULT_RECENT_LOGS_LIMIT,
        active_alerts_limit: int = DEFAULT_ACTIVE_ALERTS_LIMIT,
    ):
        self.snapshot_provider = snapshot_provider
        self.device_service = device_service
        self.db_path = db_path
        self.alert_emitter = alert_emitter or AlertEmitter(db_path, clock=clock)
        self.clock = clock
        self.dispatcher = CommandDispatcher(device_service)
        self.recent_logs_limit = recent_logs_limit
        self.active_alerts_limit = active_alerts_limit

    def _fail_safe(self, message: str) -> Decision:
        logger.warning("Evaluation failed, continuing without curtailment: %s", message)
        return Decision(
            timestamp=self.clock(),
            current_price=0.0,
            predicted_price_1h=0.0,
            predicted_price_6h=0.0,
            grid_stress_level=GridStressLevel.NORMAL,
            decision=DecisionType.CONTINUE,
            affected_priority_groups=frozenset(),
            reason=f"Fail-safe: {message}",
            confidence_score=FAIL_SAFE_CONFIDENCE,
            estimated_savings=0.0,
            warnings=(message,),
        )

    def evaluate(self) -> Decision:
        """Evaluate current conditions. Never raises; data failures yield `continue`."""
        try:
            snapshot = self.snapshot_provider.get_snapshot()
        except (MarketDataError, httpx.HTTPError) as e:
            return self._fail_safe(f"Market data unavailable: {e}")

        try:
            active_rules = rule_store.get_active_rules(self.db_path)
        except (sqlite3.Error, ValueError) as e:
            return self._fail_safe(f"Rules unavailable: {e}")

        warnings = []
        try:
            devices = self.device_service.get_devices()
        except DeviceControlError as e:
            message = f"Device status unavailable: {e}"
            logger.warning(message)
            warnings.append(message)
            devices = []

        decision = evaluate(
            snapshot,
            active_rules,
            devices,
            on_alert=self.alert_emitter.emit,
            now=self.clock(),
        )
        if warnings:
            decision = dataclasses.replace(decision, warnings=tuple(warnings))
        return decision

    def execute(self, decision: Decision) -> ExecutionResult:
        """Apply a previously evaluated decision and log any power changes."""
        result = self.dispatcher.execute(decision)
        if decision.decision not in (DecisionType.SHUTDOWN, DecisionType.RESUME):
            return result

        # Nothing attempted (all skipped or no device list) leaves no log entry
        if not result.sent and not result.failed:
            return result

        now = self.clock()
        sent = [r for r in result.results if r.outcome == CommandOutcome.SENT]
        if not result.failed:
            status = "completed"
        elif sent:
            status = "partial"
        else:
            status = "failed"

        savings = 0.0
        if decision.decision == DecisionType.SHUTDOWN:
            savings = decision.estimated_savings * _curtailed_share(sent, result.failed)

        try:
            if decision.decision == DecisionType.RESUME and sent:
                closed = complete_open_shutdowns(decision.affected_priority_groups, now, self.db_path)
                logger.info("Closed %s open shutdown(s)", closed)

            save_log_entry(
                AutomationLogEntry(
                    action_type=decision.decision,
                    trigger_price=decision.current_price,
                    estimated_savings=savings,
                    executed_at=now,
                    rule_id=decision.rule_id,
                    affected_devices=[r.device_id for r in sent],
                    affected_priority_groups=decision.affected_priority_groups,
                    total_load_affected_kw=sum(r.load_kw for r in sent),
                    grid_stress_level=decision.grid_stress_level,
                    decision_confidence=decision.confidence_score,
                    status=status,
                    completed_at=now if decision.decision == DecisionType.RESUME else None,
                    duration_seconds=0 if decision.decision == DecisionType.RESUME else None,
                ),
                self.db_path,
            )

            if decision.rule_id is not None and sent:
                rule_store.record_trigger(decision.rule_id, now, self.db_path)
        except sqlite3.Error:
            logger.exception("Failed to record %s in the automation log", decision.decision.value)

        return result

    def run_cycle(self, execute: bool = False, persist: bool = False) -> tuple[Decision, ExecutionResult | None]:
        """One scheduler tick: evaluate, optionally store the decision and execute it."""
        decision = self.evaluate()
        if persist:
            try:
                save_decision(decision, self.db_path)
            except sqlite3.Error:
                logger.exception("Failed to store decision")
        result = self.execute(decision) if execute else None
        return decision, result

    def get_rules(self) -> list[Rule]:
        return rule_store.get_rules(self.db_path)

    def create_rule(self, data: dict[str, Any]) -> Rule:
        return rule_store.create_rule(data, self.db_path)

    def update_rule(self, rule_id: int, data: dict[str, Any]) -> Rule:
        return rule_store.update_rule(rule_id, data, self.db_path)

    def delete_rule(self, rule_id: int) -> None:
        rule_store.delete_rule(rule_id, self.db_path)

    def get_analytics(self, period_days: int = 30) -> dict:
        return get_analytics(
            period_days,
            self.db_path,
            recent_logs_limit=self.recent_logs_limit,
            active_alerts_limit=self.active_alerts_limit,
            now=self.clock(),
        )

    def optimize(self, price_forecast: list[float | None], params: OptimizationParams) -> OptimizationResult:
        return optimize(price_forecast, params)
