import pytest
from curtail.scheduling.economics import (
    DemandResponseParams,
    StorageParams,
    analyze_demand_response,
    arbitrage_revenue,
    calculate_storage_roi,
    internal_rate_of_return,
)

PRICES = [20.0] * 8 + [50.0] * 8 + [100.0] * 8


@pytest.fixture
def storage():
    return StorageParams(
        capacity_mwh=10,
        power_mw=5,
        capital_cost=500_000,
        operating_cost_per_year=20_000,
        project_life_years=15,
        discount_rate=0.08,
    )


def test_arbitrage_uses_cheapest_and_dearest_hours():
    # Spread 80, half a cycle per day, 0.9025 round trip
    revenue = arbitrage_revenue(PRICES, 10, 5, 0.95, 0.95)
    assert revenue == pytest.approx(80 * 10 * 0.5 * 0.9025 * 365)


def test_flat_prices_give_no_arbitrage():
    assert arbitrage_revenue([50.0] * 24, 10, 5, 0.95, 0.95) == 0


def test_storage_roi(storage):
    result = calculate_storage_roi(PRICES, storage)

    breakdown = result["revenue_breakdown"]
    assert breakdown["arbitrage"] == pytest.approx(131765, abs=1)
    assert breakdown["demand_charges"] == 900
    assert breakdown["ancillary_services"] == 1200
    assert result["annual_revenue"] == pytest.approx(133865, abs=1)
    assert result["npv"] > 0
    assert result["payback_period_years"] == pytest.approx(500_000 / (133865 - 20_000), abs=0.1)
    assert 0 < result["irr_percent"] <= 100
    assert result["levelized_cost_of_storage"] == round((500_000 + 20_000 * 15) / (10 * 365 * 15))


def test_unprofitable_storage_has_no_payback(storage):
    storage.operating_cost_per_year = 10_000_000
    result = calculate_storage_roi([50.0] * 24, storage)
    assert result["payback_period_years"] is None
    assert result["npv"] < 0
    assert result["irr_percent"] == 0


@pytest.mark.parametrize("field", ["capacity_mwh", "power_mw"])
def test_storage_requires_positive_size(storage, field):
    setattr(storage, field, 0)
    with pytest.raises(ValueError):
        calculate_storage_roi(PRICES, storage)


def test_storage_requires_enough_prices(storage):
    with pytest.raises(ValueError):
        calculate_storage_roi([50.0] * 7, storage)


def test_irr_of_break_even_investment_is_zero():
    assert internal_rate_of_return(1000, 100, 10) == pytest.approx(0, abs=0.001)


def test_irr_is_clamped():
    assert internal_rate_of_return(100, 1000, 10) == 1.0


def test_demand_response():
    result = analyze_demand_response(
        DemandResponseParams(
            baseline_load_mw=20,
            curtailment_capacity_mw=5,
            curtailment_duration_hours=4,
            incentive_rate=100,
            availability_payment=1000,
            participation_days=20,
        )
    )

    assert result["dispatch_events"] == 3
    assert result["revenue_breakdown"] == {"availability": 240000, "dispatch": 6000}
    assert result["annual_revenue"] == 246000
    assert result["implementation_cost"] == 2500
    assert result["annual_operating_cost"] == 24600
    assert result["net_annual_benefit"] == 221400
    assert result["payback_period_years"] == 0.0
