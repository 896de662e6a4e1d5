"""Command-line interface for price-responsive load curtailment."""

import json
import logging
from pathlib import Path

import click
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from . import db
from .alerts import AlertEmitter, acknowledge_alert, get_active_alerts
from .analysis.analytics import analytics_to_dict, format_analytics_text, get_analytics
from .collectors.market import (
    FileSnapshotProvider,
    HttpMarketSnapshotProvider,
    MarketDataError,
    parse_hourly_forecast,
)
from .collectors.pdu import HttpDeviceControlService
from .config import ConfigError, load_settings
from .engine import AutomationEngine
from .models import Decision, DecisionType, OptimizationParams, SchedulePriority
from .rules import (
    DEFAULT_CONFIG_PATH as DEFAULT_RULES_PATH,
    RuleNotFoundError,
    RuleValidationError,
    create_rule,
    delete_rule,
    get_rules,
    load_rules_from_yaml,
    save_rules_to_db,
    update_rule,
)
from .scheduling.economics import (
    DemandResponseParams,
    StorageParams,
    analyze_demand_response,
    calculate_storage_roi,
)
from .scheduling.optimizer import HOURS_PER_DAY, result_to_dict
from .scheduling.optimizer import optimize as optimize_schedule

console = Console()

DECISION_STYLES = {
    DecisionType.CONTINUE: "green",
    DecisionType.PREPARE_SHUTDOWN: "yellow",
    DecisionType.SHUTDOWN: "red",
    DecisionType.RESUME: "cyan",
}


@click.group()
@click.option("--db-path", type=click.Path(), help="Path to SQLite database")
@click.option("--config", "config_path", type=click.Path(), help="Path to curtail.yaml")
@click.option("-v", "--verbose", is_flag=True, help="Show debug logging")
@click.pass_context
def cli(ctx, db_path, config_path, verbose):
    """Price-responsive load curtailment for data center PDUs."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )

    try:
        settings = load_settings(Path(config_path) if config_path else None)
    except ConfigError as e:
        raise click.ClickException(str(e))

    if db_path:
        settings.db_path = Path(db_path)

    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings
    ctx.obj["db_path"] = settings.db_path


def _device_service(settings):
    if not settings.devices_url:
        raise click.ClickException(
            "No device controller configured. Set devices.base_url or CURTAIL_DEVICES_URL."
        )
    return HttpDeviceControlService(
        settings.devices_url,
        api_key=settings.devices_api_key,
        timeout=settings.devices_timeout,
        retry=settings.retry,
    )


def _market_provider(settings):
    if not settings.market_url:
        raise click.ClickException(
            "No market data service configured. Set market.base_url or CURTAIL_MARKET_URL."
        )
    return HttpMarketSnapshotProvider(
        settings.market_url,
        api_key=settings.market_api_key,
        timeout=settings.market_timeout,
        retry=settings.retry,
    )


def _build_engine(ctx, snapshot_file=None) -> AutomationEngine:
    settings = ctx.obj["settings"]
    if snapshot_file:
        provider = FileSnapshotProvider(Path(snapshot_file))
    else:
        provider = _market_provider(settings)

    return AutomationEngine(
        provider,
        _device_service(settings),
        db_path=settings.db_path,
        alert_emitter=AlertEmitter(settings.db_path, settings.alert_cooldown_seconds),
        recent_logs_limit=settings.recent_logs_limit,
        active_alerts_limit=settings.active_alerts_limit,
    )


def _print_decision(decision: Decision) -> None:
    style = DECISION_STYLES[decision.decision]
    console.print(f"[bold {style}]{decision.decision.value.upper()}[/bold {style}]  {decision.reason}")

    table = Table(show_header=False, box=None)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Current price", f"${decision.current_price:.2f}/MWh")
    table.add_row("Forecast 1h / 6h", f"${decision.predicted_price_1h:.2f} / ${decision.predicted_price_6h:.2f}")
    table.add_row("Grid stress", decision.grid_stress_level.value)
    groups = ", ".join(sorted(g.value for g in decision.affected_priority_groups)) or "-"
    table.add_row("Affected groups", groups)
    table.add_row("Confidence", f"{decision.confidence_score:.2f}")
    table.add_row("Estimated savings", f"${decision.estimated_savings:.2f}/h")
    if decision.rule_id is not None:
        table.add_row("Rule", str(decision.rule_id))
    console.print(table)

    for warning in decision.warnings:
        console.print(f"[yellow]Warning: {warning}[/yellow]")


def _print_execution(result) -> None:
    colour = "red" if result.error or result.failed else "green"
    console.print(f"[{colour}]{result.message}[/{colour}]")
    if result.error:
        console.print(f"[red]{result.error}[/red]")
    for failure in result.failed:
        console.print(f"  [red]✗ {failure.device_id}: {failure.error}[/red]")


# Database commands
@cli.group("db")
def database():
    """Database management commands."""
    pass


@database.command("init")
@click.pass_context
def db_init(ctx):
    """Initialize the database schema."""
    db.init_db(ctx.obj["db_path"])
    console.print("[green]Database initialized successfully[/green]")

    if DEFAULT_RULES_PATH.exists():
        rule_list = load_rules_from_yaml(DEFAULT_RULES_PATH)
        count = save_rules_to_db(rule_list, ctx.obj["db_path"])
        console.print(f"[green]Loaded {count} rule(s) from config[/green]")


@database.command("stats")
@click.pass_context
def db_stats(ctx):
    """Show database statistics."""
    stats = db.get_stats(ctx.obj["db_path"])

    table = Table(title="Database Statistics")
    table.add_column("Category", style="cyan")
    table.add_column("Count", justify="right")
    table.add_column("Range")

    rules = stats["rules"]
    table.add_row("Rules", str(rules["count"]), f"{rules['active']} active")

    alerts = stats["alerts"]
    table.add_row(
        "Alerts",
        str(alerts["count"]),
        f"{alerts['earliest'] or 'N/A'} → {alerts['latest'] or 'N/A'}",
    )

    log = stats["automation_log"]
    table.add_row(
        "Automation log",
        str(log["count"]),
        f"{log['earliest'] or 'N/A'} → {log['latest'] or 'N/A'}",
    )
    for action, count in stats.get("automation_log_by_action", {}).items():
        table.add_row(f"  └ {action}", str(count), "")

    decisions = stats["decisions"]
    table.add_row(
        "Decisions",
        str(decisions["count"]),
        f"{decisions['earliest'] or 'N/A'} → {decisions['latest'] or 'N/A'}",
    )

    console.print(table)


# Rule commands
@cli.group()
def rules():
    """Curtailment rule management."""
    pass


@rules.command("list")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def rules_list(ctx, as_json):
    """List all rules, lowest hard ceiling first."""
    rule_list = get_rules(ctx.obj["db_path"])

    if as_json:
        data = [
            {
                "id": r.id,
                "name": r.name,
                "hard_ceiling_price": r.hard_ceiling_price,
                "soft_ceiling_price": r.effective_soft_ceiling,
                "floor_price": r.floor_price,
                "affected_priority_groups": sorted(g.value for g in r.affected_priority_groups),
                "active": r.active,
                "trigger_count": r.trigger_count,
            }
            for r in rule_list
        ]
        console.print(json.dumps(data, indent=2))
        return

    if not rule_list:
        console.print("[yellow]No rules found[/yellow]")
        return

    table = Table(title="Curtailment Rules")
    table.add_column("ID", justify="right", style="cyan")
    table.add_column("Name")
    table.add_column("Floor", justify="right")
    table.add_column("Soft", justify="right")
    table.add_column("Hard", justify="right")
    table.add_column("Groups")
    table.add_column("Active")
    table.add_column("Triggers", justify="right")

    for r in rule_list:
        table.add_row(
            str(r.id),
            r.name,
            f"${r.floor_price:.2f}",
            f"${r.effective_soft_ceiling:.2f}",
            f"${r.hard_ceiling_price:.2f}",
            ", ".join(sorted(g.value for g in r.affected_priority_groups)),
            "[green]yes[/green]" if r.active else "[dim]no[/dim]",
            str(r.trigger_count),
        )

    console.print(table)


def _rule_options(func):
    options = [
        click.option("--name", help="Rule name"),
        click.option("--description", help="Free-text description"),
        click.option("--hard", "hard_ceiling_price", type=float, help="Hard ceiling price ($/MWh)"),
        click.option("--soft", "soft_ceiling_price", type=float, help="Soft ceiling price ($/MWh)"),
        click.option("--floor", "floor_price", type=float, help="Floor price ($/MWh)"),
        click.option("--groups", "affected_priority_groups", help="Comma-separated priority groups"),
        click.option("--grace", "grace_period_seconds", type=int, help="Grace period in seconds"),
        click.option("--active/--inactive", default=None, help="Enable or disable the rule"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


@rules.command("add")
@_rule_options
@click.pass_context
def rules_add(ctx, **fields):
    """Create a curtailment rule."""
    data = {k: v for k, v in fields.items() if v is not None}
    try:
        rule = create_rule(data, ctx.obj["db_path"])
    except RuleValidationError as e:
        console.print(f"[red]Invalid rule: {e}[/red]")
        raise SystemExit(1)
    console.print(f"[green]Created rule {rule.id} ({rule.name})[/green]")


@rules.command("update")
@click.argument("rule_id", type=int)
@_rule_options
@click.pass_context
def rules_update(ctx, rule_id, **fields):
    """Update fields of an existing rule."""
    data = {k: v for k, v in fields.items() if v is not None}
    if not data:
        console.print("[yellow]Nothing to update[/yellow]")
        return

    try:
        rule = update_rule(rule_id, data, ctx.obj["db_path"])
    except RuleNotFoundError as e:
        console.print(f"[red]{e}[/red]")
        raise SystemExit(1)
    except RuleValidationError as e:
        console.print(f"[red]Invalid rule: {e}[/red]")
        raise SystemExit(1)
    console.print(f"[green]Updated rule {rule.id} ({rule.name})[/green]")


@rules.command("delete")
@click.argument("rule_id", type=int)
@click.pass_context
def rules_delete(ctx, rule_id):
    """Delete a rule."""
    try:
        delete_rule(rule_id, ctx.obj["db_path"])
    except RuleNotFoundError as e:
        console.print(f"[red]{e}[/red]")
        raise SystemExit(1)
    console.print(f"[green]Deleted rule {rule_id}[/green]")


@rules.command("load")
@click.option("--file", "file_path", type=click.Path(exists=True), help="Path to rules.yaml")
@click.pass_context
def rules_load(ctx, file_path):
    """Load rules from YAML config, replacing rules with the same name."""
    try:
        rule_list = load_rules_from_yaml(Path(file_path) if file_path else None)
    except RuleValidationError as e:
        console.print(f"[red]Invalid rule in config: {e}[/red]")
        raise SystemExit(1)
    count = save_rules_to_db(rule_list, ctx.obj["db_path"])
    console.print(f"[green]Loaded {count} rule(s)[/green]")


# Control loop commands
@cli.command()
@click.option("--execute", "do_execute", is_flag=True, help="Apply shutdown/resume decisions")
@click.option("--save", is_flag=True, help="Store the decision in the database")
@click.option(
    "--snapshot",
    "snapshot_file",
    type=click.Path(exists=True),
    help="Read market conditions from a YAML/JSON file instead of the market service",
)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def evaluate(ctx, do_execute, save, snapshot_file, as_json):
    """Evaluate market conditions against the active rules.

    Run this at a fixed interval (e.g. from cron) with --execute to operate
    the control loop.
    """
    engine = _build_engine(ctx, snapshot_file)
    decision, result = engine.run_cycle(execute=do_execute, persist=save)

    if as_json:
        data = {"decision": decision.to_dict()}
        if result is not None:
            data["execution"] = {
                "message": result.message,
                "success": result.success,
                "error": result.error,
                "sent": result.sent,
                "skipped": result.skipped,
                "failed": [{"device_id": r.device_id, "error": r.error} for r in result.failed],
            }
        console.print(json.dumps(data, indent=2))
        return

    _print_decision(decision)
    if result is not None:
        _print_execution(result)


@cli.command()
@click.option(
    "--decision-file",
    type=click.Path(exists=True),
    required=True,
    help="Decision JSON as written by `evaluate --json`",
)
@click.pass_context
def execute(ctx, decision_file):
    """Execute a previously evaluated decision."""
    with open(decision_file) as f:
        data = json.load(f)

    try:
        decision = Decision.from_dict(data.get("decision", data))
    except ValueError as e:
        console.print(f"[red]Invalid decision file: {e}[/red]")
        raise SystemExit(1)

    settings = ctx.obj["settings"]
    engine = AutomationEngine(
        snapshot_provider=None,
        device_service=_device_service(settings),
        db_path=settings.db_path,
    )
    result = engine.execute(decision)
    _print_execution(result)
    if not result.success:
        raise SystemExit(1)


# Alert commands
@cli.group()
def alerts():
    """Price alert commands."""
    pass


@alerts.command("list")
@click.option("--limit", default=10, help="Maximum number of alerts to show")
@click.pass_context
def alerts_list(ctx, limit):
    """List active alerts, newest first."""
    alert_list = get_active_alerts(limit, ctx.obj["db_path"])

    if not alert_list:
        console.print("[green]No active alerts[/green]")
        return

    table = Table(title="Active Alerts")
    table.add_column("ID", justify="right", style="cyan")
    table.add_column("Time")
    table.add_column("Type")
    table.add_column("Price", justify="right")
    table.add_column("Threshold", justify="right")
    table.add_column("Direction")
    table.add_column("Stress")
    table.add_column("Rule", justify="right")

    for a in alert_list:
        table.add_row(
            str(a.id),
            a.created_at.strftime("%Y-%m-%d %H:%M") if a.created_at else "",
            a.alert_type.value,
            f"${a.current_price:.2f}",
            f"${a.threshold_price:.2f}",
            a.price_direction.value if a.price_direction else "",
            a.grid_stress_level.value,
            str(a.rule_id) if a.rule_id is not None else "",
        )

    console.print(table)


@alerts.command("ack")
@click.argument("alert_id", type=int)
@click.pass_context
def alerts_ack(ctx, alert_id):
    """Acknowledge an alert."""
    if acknowledge_alert(alert_id, ctx.obj["db_path"]):
        console.print(f"[green]Acknowledged alert {alert_id}[/green]")
    else:
        console.print(f"[yellow]No active alert with id {alert_id}[/yellow]")


@cli.command()
@click.option("--days", default=30, help="Number of days to include")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def analytics(ctx, days, as_json):
    """Summarize curtailment activity and savings."""
    settings = ctx.obj["settings"]
    data = get_analytics(
        days,
        ctx.obj["db_path"],
        recent_logs_limit=settings.recent_logs_limit,
        active_alerts_limit=settings.active_alerts_limit,
    )

    if as_json:
        console.print(json.dumps(analytics_to_dict(data), indent=2))
    else:
        console.print(format_analytics_text(data))


# Scheduling commands
def _load_prices(ctx, prices_file, flat_price) -> list[float]:
    if prices_file:
        with open(prices_file) as f:
            data = yaml.safe_load(f)
        if isinstance(data, dict):
            data = data.get("prices", data.get("predictions", []))
        return parse_hourly_forecast(list(data or []))
    if flat_price is not None:
        return [flat_price] * HOURS_PER_DAY
    return _market_provider(ctx.obj["settings"]).get_hourly_forecast()


def _price_options(func):
    func = click.option("--flat-price", type=float, help="Use the same price for every hour")(func)
    func = click.option(
        "--prices",
        "prices_file",
        type=click.Path(exists=True),
        help="YAML/JSON file with 24 hourly prices (defaults to the market forecast)",
    )(func)
    return func


@cli.command()
@_price_options
@click.option("--demand-mw", default=10.0, help="Load to schedule (MW)")
@click.option("--hours", "operating_hours", default=4.0, help="Operating hours")
@click.option("--window", "flexibility_window_hours", default=4, help="Flexibility window (hours)")
@click.option("--demand-charge", "demand_charge_rate", default=15.0, help="Demand charge ($/kW)")
@click.option("--transmission", "transmission_rate", default=5.0, help="Transmission rate ($/MWh)")
@click.option("--carbon-price", default=50.0, help="Carbon price ($/tonne)")
@click.option("--carbon-intensity", default=400.0, help="Grid carbon intensity (kg/MWh)")
@click.option(
    "--priority",
    type=click.Choice([p.value for p in SchedulePriority]),
    default=SchedulePriority.BALANCED.value,
)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def optimize(ctx, prices_file, flat_price, as_json, priority, **params):
    """Find the cheapest hours to run a flexible load."""
    try:
        prices = _load_prices(ctx, prices_file, flat_price)
        result = optimize_schedule(
            prices, OptimizationParams(priority=SchedulePriority(priority), **params)
        )
    except (MarketDataError, ValueError) as e:
        console.print(f"[red]{e}[/red]")
        raise SystemExit(1)

    if as_json:
        console.print(json.dumps(result_to_dict(result), indent=2))
        return

    table = Table(title=f"Load Schedule ({priority})")
    table.add_column("Slot", style="cyan")
    table.add_column("Price", justify="right")
    table.add_column("Total cost", justify="right")
    table.add_column("CO₂ (t)", justify="right")
    table.add_column("Score", justify="right")

    for slot in result.schedule_options:
        marker = "[green]★[/green] " if slot.is_optimal else ""
        table.add_row(
            f"{marker}{slot.time_slot}",
            f"${slot.energy_price:.2f}",
            f"${slot.total_cost:,.2f}",
            f"{slot.carbon_emissions:.2f}",
            f"{slot.recommendation_score:.1f}",
        )

    console.print(table)
    console.print(f"Best start: [bold]{result.best_start_time}[/bold]")
    console.print(
        f"Savings vs worst hours: [green]${result.cost_savings:,.2f}[/green] "
        f"({result.percent_savings:.1f}%), {result.carbon_savings:.2f} t CO₂"
    )


@cli.command("storage-roi")
@_price_options
@click.option("--capacity-mwh", default=10.0, help="Storage capacity (MWh)")
@click.option("--power-mw", default=5.0, help="Charge/discharge power (MW)")
@click.option("--capital-cost", default=5_000_000.0, help="Installed cost ($)")
@click.option("--operating-cost", "operating_cost_per_year", default=50_000.0, help="Operating cost ($/year)")
@click.option("--life-years", "project_life_years", default=15, help="Project life (years)")
@click.option("--discount-rate", default=0.08, help="Discount rate")
@click.pass_context
def storage_roi(ctx, prices_file, flat_price, **params):
    """Estimate the return on a battery installation."""
    try:
        prices = _load_prices(ctx, prices_file, flat_price)
        data = calculate_storage_roi(prices, StorageParams(**params))
    except (MarketDataError, ValueError) as e:
        console.print(f"[red]{e}[/red]")
        raise SystemExit(1)
    console.print(json.dumps(data, indent=2))


@cli.command("demand-response")
@click.option("--baseline-mw", "baseline_load_mw", default=20.0, help="Baseline load (MW)")
@click.option("--capacity-mw", "curtailment_capacity_mw", default=5.0, help="Curtailable load (MW)")
@click.option("--duration-hours", "curtailment_duration_hours", default=4.0, help="Event duration (hours)")
@click.option("--incentive-rate", default=100.0, help="Payment per MWh curtailed ($)")
@click.option("--availability-payment", default=1000.0, help="Availability payment per day ($)")
@click.option("--days", "participation_days", default=30, help="Participation days per month")
def demand_response(**params):
    """Estimate demand response programme revenue."""
    console.print(json.dumps(analyze_demand_response(DemandResponseParams(**params)), indent=2))


if __name__ == "__main__":
    cli()
