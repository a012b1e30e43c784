# tests/test_metrics.py

import random
from dataclasses import replace
from datetime import datetime, timedelta

import pytest

from conftest import NOON, TZ, make_generation, make_records
from gridlens.errors import AggregationError
from gridlens.metrics import (
    ALERT_HIGH_DEMAND,
    ALERT_HIGH_TEMPERATURE,
    ALERT_LOW_MARGIN,
    MetricsAggregator,
    carbon_intensity,
    classify_status,
    emissions_reduction,
    estimate_capacity,
    generation_margin,
    renewable_percentage,
    stability_score,
    total_generation,
)
from gridlens.models import DemandRecord, GridHealth, SourceRecords, WeatherRecord


def _random_mix(rng, ts=NOON, **fixed):
    values = {fuel: rng.uniform(0, 10000) for fuel in
              ("nuclear", "hydro", "gas", "wind", "solar", "biomass", "coal")}
    values.update(fixed)
    return make_generation(ts, **values)


# ---------------------------------------------------------------------------
# Per-record formulas
# ---------------------------------------------------------------------------


def test_renewable_percentage_matches_formula_and_stays_in_range():
    rng = random.Random(11)
    for _ in range(500):
        rec = _random_mix(rng)
        pct = renewable_percentage(rec)
        expected = (rec.solar + rec.wind + rec.hydro + rec.biomass) / total_generation(rec) * 100
        assert 0.0 <= pct <= 100.0
        assert pct == pytest.approx(expected)


def test_renewable_percentage_is_zero_when_nothing_generates():
    rec = make_generation(nuclear=0, hydro=0, gas=0, wind=0, solar=0, biomass=0, coal=0)
    assert total_generation(rec) == 0
    assert renewable_percentage(rec) == 0.0
    assert carbon_intensity(rec) == 0.0


def test_carbon_intensity_formula():
    rec = make_generation()
    expected = (200 * 820 + 2500 * 490 + 9000 * 12) / 18900
    assert carbon_intensity(rec) == pytest.approx(expected)


def test_carbon_intensity_never_drops_as_coal_grows():
    rng = random.Random(3)
    for _ in range(200):
        rec = _random_mix(rng)
        more_coal = replace(rec, coal=rec.coal + rng.uniform(1, 5000))
        assert carbon_intensity(more_coal) >= carbon_intensity(rec) - 1e-9


def test_carbon_intensity_never_drops_as_gas_grows_without_coal():
    rng = random.Random(5)
    for _ in range(200):
        rec = _random_mix(rng, coal=0.0)
        more_gas = replace(rec, gas=rec.gas + rng.uniform(1, 5000))
        assert carbon_intensity(more_gas) >= carbon_intensity(rec) - 1e-9


def test_emissions_reduction_is_clamped():
    assert emissions_reduction(125.0) == pytest.approx(50.0)
    assert emissions_reduction(400.0) == 0.0
    assert emissions_reduction(0.0) == 100.0


def test_margin_status_and_stability():
    margin = generation_margin(18900, 15000)
    assert margin == pytest.approx(26.0)
    assert classify_status(margin) is GridHealth.ONLINE
    assert stability_score(margin) == 100.0

    assert classify_status(10.0) is GridHealth.WARNING
    assert classify_status(5.0) is GridHealth.OFFLINE
    assert stability_score(-40.0) == 50.0
    assert stability_score(5.0) == 85.0


def test_margin_rejects_non_positive_demand():
    with pytest.raises(AggregationError):
        generation_margin(18900, 0)


def test_capacity_follows_weather():
    assert estimate_capacity("solar", None) == 4000.0
    weather = WeatherRecord(temperature=20, wind_speed=7.5, solar_radiation=500, humidity=70)
    assert estimate_capacity("solar", weather) == pytest.approx(2000.0)
    assert estimate_capacity("wind", weather) == pytest.approx(6000.0)
    assert estimate_capacity("hydro", weather) == pytest.approx(6000.0)
    assert estimate_capacity("biomass", weather) == 2000.0


# ---------------------------------------------------------------------------
# Aggregator
# ---------------------------------------------------------------------------


def test_reference_scenario():
    snap = MetricsAggregator().aggregate(make_records(demand=15000.0))

    assert snap.grid_overview.total_generation == pytest.approx(18900.0)
    assert snap.grid_overview.total_demand == 15000.0
    assert snap.grid_overview.renewable_percentage == pytest.approx(7200 / 18900 * 100)
    assert snap.grid_overview.grid_efficiency == pytest.approx(96.7)

    status = snap.grid_status
    assert status.status is GridHealth.ONLINE
    assert status.stability == 100.0
    assert status.frequency == pytest.approx(60.104)
    assert status.voltage == pytest.approx(235.2)
    assert status.alerts == ()


def test_aggregate_is_deterministic():
    records = make_records()
    agg = MetricsAggregator()
    assert agg.aggregate(records) == agg.aggregate(records)


def test_energy_mix_sorted_deduplicated_and_floored():
    later = NOON + timedelta(hours=1)
    records = SourceRecords(
        demand=(DemandRecord(NOON, 15000, 15000),),
        generation=(
            make_generation(later, coal=-50.0),
            make_generation(NOON, gas=1000.0),
            make_generation(NOON, gas=2000.0),
        ),
    )
    snap = MetricsAggregator().aggregate(records)

    assert [p.timestamp for p in snap.energy_mix] == [NOON, later]
    assert snap.energy_mix[0].gas == 2000.0
    assert snap.energy_mix[1].coal == 0.0
    assert len(snap.carbon_emissions) == 2
    assert all(p.target == 200.0 for p in snap.carbon_emissions)


def test_repeated_fall_back_hour_keeps_both_readings():
    first  = datetime(2024, 11, 3, 1, tzinfo=TZ)
    repeat = first.replace(fold=1)
    records = SourceRecords(
        demand=(DemandRecord(repeat, 15000, 15000),),
        generation=(
            make_generation(repeat, gas=2600.0),
            make_generation(first, gas=2400.0),
            make_generation(datetime(2024, 11, 3, 0, tzinfo=TZ)),
            make_generation(datetime(2024, 11, 3, 2, tzinfo=TZ)),
        ),
    )
    snap = MetricsAggregator().aggregate(records)

    stamps = [p.to_dict()["timestamp"] for p in snap.energy_mix]
    assert len(set(stamps)) == 4
    assert [p.gas for p in snap.energy_mix[1:3]] == [2400.0, 2600.0]


def test_latest_demand_row_wins():
    records = replace(
        make_records(),
        demand=(
            DemandRecord(NOON, 20000, 20000),
            DemandRecord(NOON - timedelta(hours=2), 10000, 10000),
        ),
    )
    snap = MetricsAggregator().aggregate(records)
    assert snap.grid_overview.total_demand == 20000


def test_alerts():
    snap = MetricsAggregator().aggregate(make_records(demand=18500.0))
    assert ALERT_HIGH_DEMAND in snap.grid_status.alerts
    assert ALERT_LOW_MARGIN in snap.grid_status.alerts
    assert snap.grid_status.status is GridHealth.OFFLINE


def test_heat_lowers_efficiency_and_raises_alert(hot_weather):
    cool = MetricsAggregator().aggregate(make_records())
    hot = MetricsAggregator().aggregate(make_records(weather=hot_weather))
    assert ALERT_HIGH_TEMPERATURE in hot.grid_status.alerts
    assert hot.grid_overview.grid_efficiency < cool.grid_overview.grid_efficiency
    assert hot.renewable_progress.solar_capacity == pytest.approx(4000.0)


@pytest.mark.parametrize(
    "records",
    [
        SourceRecords(),
        replace(make_records(), generation=()),
        replace(make_records(), demand=()),
        make_records(demand=0.0),
    ],
)
def test_missing_or_bad_inputs_raise(records):
    with pytest.raises(AggregationError):
        MetricsAggregator().aggregate(records)


def test_snapshot_to_dict_uses_camel_case():
    out = MetricsAggregator().aggregate(make_records()).to_dict()
    assert set(out) == {"gridOverview", "energyMix", "carbonEmissions", "renewableProgress", "gridStatus"}
    assert out["gridStatus"]["status"] == "online"
    assert "totalGeneration" in out["gridOverview"]
