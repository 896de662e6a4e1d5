"""Battery storage ROI and demand response revenue estimates."""

from dataclasses import dataclass

ARBITRAGE_HOURS = 8  # cheapest hours to charge, dearest to discharge
DEFAULT_DEMAND_CHARGE_RATE = 15.0  # $/kW-month
FREQUENCY_REGULATION_RATE = 15.0  # $/MW-month
SPINNING_RESERVE_RATE = 5.0  # $/MW-month
DR_DISPATCH_RATE = 0.15  # share of participation days with a dispatch event
DR_CONTROL_COST_PER_MW = 500.0  # control system cost
DR_OPERATING_COST_SHARE = 0.1


@dataclass
class StorageParams:
    capacity_mwh: float
    power_mw: float
    capital_cost: float
    operating_cost_per_year: float
    project_life_years: int
    discount_rate: float
    charge_efficiency: float = 0.95
    discharge_efficiency: float = 0.95
    demand_charge_rate: float = DEFAULT_DEMAND_CHARGE_RATE


@dataclass
class DemandResponseParams:
    baseline_load_mw: float
    curtailment_capacity_mw: float
    curtailment_duration_hours: float
    incentive_rate: float  # $/MWh curtailed
    availability_payment: float  # $ per participation day, paid monthly
    participation_days: int


def arbitrage_revenue(
    prices: list[float],
    capacity_mwh: float,
    power_mw: float,
    charge_efficiency: float,
    discharge_efficiency: float,
) -> float:
    """Yearly revenue from charging in the cheapest hours and discharging in the dearest."""
    ordered = sorted(prices)
    charge = ordered[:ARBITRAGE_HOURS]
    discharge = ordered[-ARBITRAGE_HOURS:]
    spread = sum(discharge) / len(discharge) - sum(charge) / len(charge)

    daily_cycles = min(1.0, power_mw / capacity_mwh)
    round_trip = charge_efficiency * discharge_efficiency
    daily = spread * capacity_mwh * daily_cycles * round_trip
    return max(0.0, daily * 365)


def internal_rate_of_return(initial_investment: float, annual_cash_flow: float, years: int) -> float:
    """Approximate IRR by Newton-Raphson, clamped to [0, 1]."""
    if annual_cash_flow <= 0:
        return 0.0
    rate = 0.1
    for _ in range(10):
        npv = -initial_investment
        d_npv = 0.0
        for year in range(1, years + 1):
            npv += annual_cash_flow / (1 + rate) ** year
            d_npv -= year * annual_cash_flow / (1 + rate) ** (year + 1)
        if abs(npv) < 1 or d_npv == 0:
            break
        rate -= npv / d_npv
        if rate <= -1:
            break
    return max(0.0, min(1.0, rate))


def calculate_storage_roi(prices: list[float], params: StorageParams) -> dict:
    """Estimate NPV, payback and IRR of a battery installation.

    Revenue combines daily price arbitrage, peak-shaving demand-charge savings
    and ancillary services.
    """
    if params.capacity_mwh <= 0 or params.power_mw <= 0:
        raise ValueError("Storage capacity and power must be positive")
    if len(prices) < ARBITRAGE_HOURS:
        raise ValueError(f"Need at least {ARBITRAGE_HOURS} hourly prices")

    arbitrage = arbitrage_revenue(
        prices,
        params.capacity_mwh,
        params.power_mw,
        params.charge_efficiency,
        params.discharge_efficiency,
    )
    demand_savings = params.power_mw * params.demand_charge_rate * 12
    ancillary = params.power_mw * (FREQUENCY_REGULATION_RATE + SPINNING_RESERVE_RATE) * 12

    annual_revenue = arbitrage + demand_savings + ancillary
    net_cash_flow = annual_revenue - params.operating_cost_per_year

    npv = -params.capital_cost
    for year in range(1, params.project_life_years + 1):
        npv += net_cash_flow / (1 + params.discount_rate) ** year

    payback = params.capital_cost / net_cash_flow if net_cash_flow > 0 else None
    irr = internal_rate_of_return(params.capital_cost, net_cash_flow, params.project_life_years)
    lifetime_mwh = params.capacity_mwh * 365 * params.project_life_years
    lcos = (params.capital_cost + params.operating_cost_per_year * params.project_life_years) / lifetime_mwh

    return {
        "npv": round(npv),
        "payback_period_years": round(payback, 1) if payback is not None else None,
        "irr_percent": round(irr * 100, 1),
        "annual_revenue": round(annual_revenue),
        "revenue_breakdown": {
            "arbitrage": round(arbitrage),
            "demand_charges": round(demand_savings),
            "ancillary_services": round(ancillary),
        },
        "levelized_cost_of_storage": round(lcos),
    }


def analyze_demand_response(params: DemandResponseParams) -> dict:
    """Estimate annual demand response revenue and payback of the control system."""
    availability = params.availability_payment * params.participation_days * 12
    dispatch_events = int(params.participation_days * DR_DISPATCH_RATE)
    dispatch = (
        dispatch_events
        * params.curtailment_capacity_mw
        * params.curtailment_duration_hours
        * params.incentive_rate
    )

    total = availability + dispatch
    implementation_cost = params.curtailment_capacity_mw * DR_CONTROL_COST_PER_MW
    operating_cost = total * DR_OPERATING_COST_SHARE
    net_benefit = total - operating_cost
    payback = implementation_cost / net_benefit if net_benefit > 0 else None

    return {
        "annual_revenue": round(total),
        "revenue_breakdown": {
            "availability": round(availability),
            "dispatch": round(dispatch),
        },
        "implementation_cost": round(implementation_cost),
        "annual_operating_cost": round(operating_cost),
        "payback_period_years": round(payback, 1) if payback is not None else None,
        "net_annual_benefit": round(net_benefit),
        "dispatch_events": dispatch_events,
    }
