"""Load schedule optimization over a 24-hour price forecast.

Each hour is costed for energy, demand charges, transmission and carbon, then
ranked by a normalised cost/carbon score. The best and worst hours need not be
contiguous.
"""

import logging

from ..models import OptimizationParams, OptimizationResult, SchedulePriority, ScheduleSlot

logger = logging.getLogger(__name__)

HOURS_PER_DAY = 24
FALLBACK_PRICE = 50.0  # $/MWh for missing forecast hours
PEAK_START_HOUR = 16
PEAK_END_HOUR = 20  # inclusive
OFF_PEAK_DEMAND_FACTOR = 0.5
MAX_FLEXIBILITY_HOURS = 8
BALANCED_COST_WEIGHT = 0.7
BALANCED_CARBON_WEIGHT = 0.3
NEUTRAL_SCORE = 50.0


def is_peak_hour(hour: int) -> bool:
    return PEAK_START_HOUR <= hour <= PEAK_END_HOUR


def format_time_slot(hour: int) -> str:
    return f"{hour:02d}:00-{(hour + 1) % HOURS_PER_DAY:02d}:00"


def cost_slot(hour: int, energy_price: float, params: OptimizationParams) -> ScheduleSlot:
    """Cost of running the load starting in `hour`."""
    energy_mwh = params.demand_mw * params.operating_hours
    energy_cost = energy_price * energy_mwh

    demand_factor = 1.0 if is_peak_hour(hour) else OFF_PEAK_DEMAND_FACTOR
    demand_charge = params.demand_mw * params.demand_charge_rate * demand_factor

    transmission_cost = params.transmission_rate * energy_mwh

    carbon_emissions = params.carbon_intensity * energy_mwh / 1000  # kg -> tonnes
    carbon_cost = carbon_emissions * params.carbon_price

    return ScheduleSlot(
        hour=hour,
        time_slot=format_time_slot(hour),
        energy_price=energy_price,
        energy_cost=energy_cost,
        demand_charge=demand_charge,
        transmission_cost=transmission_cost,
        carbon_cost=carbon_cost,
        total_cost=energy_cost + demand_charge + transmission_cost + carbon_cost,
        carbon_emissions=carbon_emissions,
    )


def normalised_score(value: float, low: float, high: float) -> float:
    """Score in [0, 100] where the lowest value scores 100."""
    if high == low:
        return NEUTRAL_SCORE
    return 100 * (high - value) / (high - low)


def score_slots(slots: list[ScheduleSlot], priority: SchedulePriority) -> None:
    """Set `recommendation_score` on every slot, relative to the whole day."""
    costs = [s.total_cost for s in slots]
    emissions = [s.carbon_emissions for s in slots]
    min_cost, max_cost = min(costs), max(costs)
    min_carbon, max_carbon = min(emissions), max(emissions)

    for slot in slots:
        cost_score = normalised_score(slot.total_cost, min_cost, max_cost)
        carbon_score = normalised_score(slot.carbon_emissions, min_carbon, max_carbon)
        if priority == SchedulePriority.COST:
            slot.recommendation_score = cost_score
        elif priority == SchedulePriority.CARBON:
            slot.recommendation_score = carbon_score
        else:
            slot.recommendation_score = (
                BALANCED_COST_WEIGHT * cost_score + BALANCED_CARBON_WEIGHT * carbon_score
            )


def _mean(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def optimize(price_forecast: list[float | None], params: OptimizationParams) -> OptimizationResult:
    """Rank the 24 hours of a day for a flexible load.

    Args:
        price_forecast: 24 hourly prices in $/MWh; None entries use FALLBACK_PRICE
        params: Load size, cost rates and optimisation priority

    Returns:
        OptimizationResult with all slots (by hour), the top
        min(flexibility_window_hours, 8) slots marked optimal, the same number
        of worst slots, and the mean savings of optimal over worst.

    Raises:
        ValueError: If the forecast is not 24 values long or the window is not positive.
    """
    if len(price_forecast) != HOURS_PER_DAY:
        raise ValueError(f"Expected {HOURS_PER_DAY} hourly prices, got {len(price_forecast)}")
    window = min(int(params.flexibility_window_hours), MAX_FLEXIBILITY_HOURS)
    if window < 1:
        raise ValueError("flexibility_window_hours must be at least 1")

    slots = [
        cost_slot(hour, FALLBACK_PRICE if price is None else float(price), params)
        for hour, price in enumerate(price_forecast)
    ]
    score_slots(slots, params.priority)

    # Stable sort keeps earlier hours first among equal scores
    ranked = sorted(slots, key=lambda s: s.recommendation_score, reverse=True)
    optimal = ranked[:window]
    worst = ranked[-window:]
    for slot in optimal:
        slot.is_optimal = True

    best_cost = _mean([s.total_cost for s in optimal])
    worst_cost = _mean([s.total_cost for s in worst])
    best_emissions = _mean([s.carbon_emissions for s in optimal])
    worst_emissions = _mean([s.carbon_emissions for s in worst])
    cost_savings = worst_cost - best_cost

    result = OptimizationResult(
        schedule_options=slots,
        optimal_slots=optimal,
        worst_slots=worst,
        cost_savings=cost_savings,
        carbon_savings=worst_emissions - best_emissions,
        percent_savings=cost_savings / worst_cost * 100 if worst_cost else 0.0,
        best_start_time=optimal[0].time_slot,
        total_cost=best_cost,
        total_emissions=best_emissions,
    )
    logger.info(
        "Optimized %s-priority schedule: best %s, saving %.2f (%.1f%%)",
        params.priority.value,
        result.best_start_time,
        result.cost_savings,
        result.percent_savings,
    )
    return result


def result_to_dict(result: OptimizationResult) -> dict:
    """JSON-friendly form of an optimization result."""

    def slot_dict(slot: ScheduleSlot) -> dict:
        return {
            "hour": slot.hour,
            "time_slot": slot.time_slot,
            "energy_price": round(slot.energy_price, 2),
            "energy_cost": round(slot.energy_cost, 2),
            "demand_charge": round(slot.demand_charge, 2),
            "transmission_cost": round(slot.transmission_cost, 2),
            "carbon_cost": round(slot.carbon_cost, 2),
            "total_cost": round(slot.total_cost, 2),
            "carbon_emissions": round(slot.carbon_emissions, 3),
            "recommendation_score": round(slot.recommendation_score, 1),
            "is_optimal": slot.is_optimal,
        }

    return {
        "schedule_options": [slot_dict(s) for s in result.schedule_options],
        "optimal_slots": [slot_dict(s) for s in result.optimal_slots],
        "savings": {
            "cost_savings": round(result.cost_savings, 2),
            "carbon_savings": round(result.carbon_savings, 3),
            "percent_savings": round(result.percent_savings, 1),
        },
        "summary": {
            "best_start_time": result.best_start_time,
            "total_cost": round(result.total_cost, 2),
            "total_emissions": round(result.total_emissions, 3),
        },
    }
