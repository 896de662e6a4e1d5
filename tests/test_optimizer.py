"""Tests for the load schedule optimizer."""

import pytest
from curtail.models import OptimizationParams, SchedulePriority
from curtail.scheduling.optimizer import (
    cost_slot,
    format_time_slot,
    is_peak_hour,
    normalised_score,
    optimize,
    result_to_dict,
)

PEAK_HOURS = {16, 17, 18, 19, 20}


@pytest.fixture
def params():
    return OptimizationParams(
        demand_mw=10,
        operating_hours=1,
        flexibility_window_hours=4,
        demand_charge_rate=15,
        transmission_rate=2,
        carbon_price=30,
        carbon_intensity=400,
        priority=SchedulePriority.BALANCED,
    )


def test_peak_hours():
    assert [h for h in range(24) if is_peak_hour(h)] == sorted(PEAK_HOURS)


def test_format_time_slot():
    assert format_time_slot(0) == "00:00-01:00"
    assert format_time_slot(16) == "16:00-17:00"
    assert format_time_slot(23) == "23:00-00:00"


def test_cost_slot_breakdown(params):
    off_peak = cost_slot(3, 50.0, params)
    assert off_peak.energy_cost == 500
    assert off_peak.demand_charge == 75
    assert off_peak.transmission_cost == 20
    assert off_peak.carbon_emissions == pytest.approx(4)
    assert off_peak.carbon_cost == pytest.approx(120)
    assert off_peak.total_cost == pytest.approx(715)

    peak = cost_slot(17, 50.0, params)
    assert peak.demand_charge == 150
    assert peak.total_cost == pytest.approx(790)


def test_normalised_score():
    assert normalised_score(10, 10, 20) == 100
    assert normalised_score(20, 10, 20) == 0
    assert normalised_score(15, 10, 20) == 50
    assert normalised_score(7, 7, 7) == 50


def test_flat_prices_avoid_peak_hours(params):
    result = optimize([50.0] * 24, params)

    assert len(result.optimal_slots) == 4
    assert all(s.hour not in PEAK_HOURS for s in result.optimal_slots)
    assert [s.hour for s in result.optimal_slots] == [0, 1, 2, 3]
    assert result.best_start_time == "00:00-01:00"

    # Only the peak premium differentiates cost and score
    off_peak = {round(s.total_cost, 6) for s in result.schedule_options if s.hour not in PEAK_HOURS}
    peak = {round(s.total_cost, 6) for s in result.schedule_options if s.hour in PEAK_HOURS}
    assert off_peak == {715.0}
    assert peak == {790.0}
    scores = {s.hour: s.recommendation_score for s in result.schedule_options}
    assert all(scores[h] == pytest.approx(85) for h in range(24) if h not in PEAK_HOURS)
    assert all(scores[h] == pytest.approx(15) for h in PEAK_HOURS)

    assert all(s.hour in PEAK_HOURS for s in result.worst_slots)
    assert result.cost_savings == pytest.approx(75)
    assert result.percent_savings == pytest.approx(75 / 790 * 100)
    assert result.carbon_savings == pytest.approx(0)


def test_schedule_options_ordered_by_hour(params):
    prices = [float(100 - h) for h in range(24)]
    result = optimize(prices, params)
    assert [s.hour for s in result.schedule_options] == list(range(24))
    assert sum(s.is_optimal for s in result.schedule_options) == 4


def test_optimal_hours_need_not_be_contiguous(params):
    prices = [80.0] * 24
    for hour in (2, 9, 13, 23):
        prices[hour] = 10.0
    params.priority = SchedulePriority.COST

    result = optimize(prices, params)

    assert sorted(s.hour for s in result.optimal_slots) == [2, 9, 13, 23]


def test_window_is_capped_at_eight(params):
    params.flexibility_window_hours = 12
    result = optimize([50.0] * 24, params)
    assert len(result.optimal_slots) == 8
    assert len(result.worst_slots) == 8


def test_missing_prices_fall_back(params):
    prices = [None] * 24
    prices[5] = 10.0
    params.priority = SchedulePriority.COST
    result = optimize(prices, params)

    assert result.schedule_options[0].energy_price == 50.0
    assert result.best_start_time == "05:00-06:00"


def test_forecast_must_have_24_values(params):
    with pytest.raises(ValueError, match="24"):
        optimize([50.0] * 23, params)


def test_window_must_be_positive(params):
    params.flexibility_window_hours = 0
    with pytest.raises(ValueError):
        optimize([50.0] * 24, params)


def test_zero_cost_gives_zero_percent_savings():
    params = OptimizationParams(
        demand_mw=0,
        operating_hours=1,
        flexibility_window_hours=2,
        demand_charge_rate=0,
        transmission_rate=0,
        carbon_price=0,
        carbon_intensity=0,
    )
    result = optimize([50.0] * 24, params)
    assert result.percent_savings == 0


def test_result_to_dict(params):
    data = result_to_dict(optimize([50.0] * 24, params))
    assert data["summary"]["best_start_time"] == "00:00-01:00"
    assert data["savings"]["cost_savings"] == 75
    assert len(data["schedule_options"]) == 24
    assert data["optimal_slots"][0]["is_optimal"] is True
