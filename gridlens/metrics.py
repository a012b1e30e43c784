"""
GridLens — Metrics Aggregator
Turns raw per-source records (live or synthetic) into the published Snapshot.

Formulas
--------
    Total generation   =  Σ fuel outputs of the latest generation record
    Renewable %        =  (solar + wind + hydro + biomass) / total × 100
    Carbon intensity   =  Σ (output × emission factor) / total      [gCO₂e/kWh]
    Margin %           =  (total generation − demand) / demand × 100
    Stability          =  clamp(75 + 2 × margin, 50, 100)

Emission factors (lifecycle, gCO₂e/kWh)
---------------------------------------
    coal 820 · gas 490 · nuclear 12 · solar/wind/hydro/biomass 0

Status classification
---------------------
    margin > 10 %   → online
    margin >  5 %   → warning
    otherwise       → offline

Both ratios divide by a total that can legitimately be zero; they report 0
in that case instead of NaN.  The same functions are used by the synthetic
model so live and synthetic carbon figures are directly comparable.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from loguru import logger

from gridlens.errors import AggregationError
from gridlens.models import (
    CarbonEmissionsPoint,
    DemandRecord,
    EnergyMixPoint,
    GenerationRecord,
    GridHealth,
    GridOverview,
    GridStatus,
    RenewableProgress,
    Snapshot,
    SourceRecords,
    WeatherRecord,
)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMISSION_FACTORS: dict[str, float] = {
    "coal":    820.0,
    "gas":     490.0,
    "nuclear":  12.0,
    "solar":     0.0,
    "wind":      0.0,
    "hydro":     0.0,
    "biomass":   0.0,
}

# Installed capacity before weather adjustment (MW)
BASE_CAPACITY_MW: dict[str, float] = {
    "solar":   4000.0,
    "wind":   12000.0,
    "hydro":   5000.0,
    "biomass": 2000.0,
}

REFERENCE_SOLAR_RADIATION = 1000.0   # W/m² at which solar capacity is nameplate
REFERENCE_WIND_SPEED      = 15.0     # km/h at which wind capacity is nameplate

EMISSIONS_BASELINE = 250.0   # gCO₂e/kWh the reduction figure is measured against

ALERT_LOW_MARGIN       = "Low generation margin detected"
ALERT_HIGH_DEMAND      = "High demand detected"
ALERT_HIGH_TEMPERATURE = "High temperature affecting grid efficiency"


@dataclass(frozen=True)
class MetricsConfig:
    emissions_target:       float = 200.0   # gCO₂e/kWh
    renewable_target:       float = 80.0    # % of generation
    online_margin_pct:      float = 10.0
    warning_margin_pct:     float = 5.0
    low_margin_alert_pct:   float = 5.0
    high_demand_mw:         float = 18000.0
    heat_alert_c:           float = 30.0
    nominal_frequency_hz:   float = 60.0
    nominal_voltage_v:      float = 230.0


# ---------------------------------------------------------------------------
# Per-record formulas
# ---------------------------------------------------------------------------


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _instant(ts: datetime) -> datetime:
    # Same-zone comparisons ignore fold; UTC keeps the repeated fall-back hour apart.
    return ts.astimezone(timezone.utc) if ts.tzinfo is not None else ts


def total_generation(rec: GenerationRecord) -> float:
    return rec.solar + rec.wind + rec.hydro + rec.nuclear + rec.gas + rec.coal + rec.biomass


def renewable_percentage(rec: GenerationRecord) -> float:
    """Renewable share of total output, 0 when nothing is generating."""
    total = total_generation(rec)
    if total <= 0:
        return 0.0
    renewable = rec.solar + rec.wind + rec.hydro + rec.biomass
    return _clamp(renewable / total * 100, 0.0, 100.0)


def carbon_intensity(rec: GenerationRecord) -> float:
    """Output-weighted emission factor in gCO₂e/kWh, 0 when nothing is generating."""
    total = total_generation(rec)
    if total <= 0:
        return 0.0
    emitted = (
        rec.coal    * EMISSION_FACTORS["coal"]
        + rec.gas     * EMISSION_FACTORS["gas"]
        + rec.nuclear * EMISSION_FACTORS["nuclear"]
    )
    return max(0.0, emitted / total)


def emissions_reduction(emissions: float) -> float:
    return _clamp((EMISSIONS_BASELINE - emissions) / EMISSIONS_BASELINE * 100, 0.0, 100.0)


def generation_margin(total: float, demand: float) -> float:
    """Generation surplus as a percentage of demand."""
    if demand <= 0:
        raise AggregationError(f"demand must be positive to compute a margin (got {demand})")
    return (total - demand) / demand * 100


def classify_status(margin: float, config: MetricsConfig = MetricsConfig()) -> GridHealth:
    if margin > config.online_margin_pct:
        return GridHealth.ONLINE
    if margin > config.warning_margin_pct:
        return GridHealth.WARNING
    return GridHealth.OFFLINE


def stability_score(margin: float) -> float:
    return _clamp(75 + margin * 2, 50.0, 100.0)


def estimate_capacity(source: str, weather: Optional[WeatherRecord]) -> float:
    """
    Weather-adjusted available capacity for a renewable source (MW).

    Solar follows radiation, wind follows wind speed, hydro moves a little
    with humidity and biomass ignores the weather altogether.
    """
    base = BASE_CAPACITY_MW[source]
    if weather is None:
        return base

    if source == "solar":
        multiplier = weather.solar_radiation / REFERENCE_SOLAR_RADIATION
    elif source == "wind":
        multiplier = weather.wind_speed / REFERENCE_WIND_SPEED
    elif source == "hydro":
        multiplier = 1 + (weather.humidity - 50) / 100
    else:
        multiplier = 1.0
    return max(0.0, base * multiplier)


def build_alerts(
    margin: float,
    demand: float,
    weather: Optional[WeatherRecord],
    config: MetricsConfig = MetricsConfig(),
) -> tuple[str, ...]:
    alerts: list[str] = []
    if margin < config.low_margin_alert_pct:
        alerts.append(ALERT_LOW_MARGIN)
    if demand > config.high_demand_mw:
        alerts.append(ALERT_HIGH_DEMAND)
    if weather is not None and weather.temperature > config.heat_alert_c:
        alerts.append(ALERT_HIGH_TEMPERATURE)
    return tuple(alerts)


# ---------------------------------------------------------------------------
# Aggregator
# ---------------------------------------------------------------------------


class MetricsAggregator:
    """
    Pure transformation from ``SourceRecords`` to ``Snapshot``.

    The generation rows become the energy-mix series (sorted, one row per
    timestamp, negative readings floored at zero); the latest row drives the
    overview figures and the latest demand row drives the margin-based
    status, stability and alerts.

    Parameters
    ----------
    config:
        Thresholds and targets; the defaults match the IESO dashboard.
    """

    def __init__(self, config: Optional[MetricsConfig] = None) -> None:
        self.config = config or MetricsConfig()

    def aggregate(self, records: SourceRecords) -> Snapshot:
        generation = self._normalise_generation(records.generation)
        demand_rec = self._latest_demand(records.demand)
        weather    = records.weather
        cfg        = self.config

        latest  = generation[-1]
        total   = total_generation(latest)
        demand  = demand_rec.demand
        margin  = generation_margin(total, demand)
        renew   = renewable_percentage(latest)

        energy_mix = tuple(
            EnergyMixPoint(
                timestamp=g.timestamp,
                solar=g.solar, wind=g.wind, hydro=g.hydro, nuclear=g.nuclear,
                gas=g.gas, coal=g.coal, biomass=g.biomass,
            )
            for g in generation
        )
        carbon_emissions = tuple(self._emissions_point(g) for g in generation)

        overview = GridOverview(
            total_generation=total,
            total_demand=demand,
            renewable_percentage=renew,
            carbon_intensity=carbon_intensity(latest),
            grid_efficiency=self._efficiency(margin, weather),
        )
        progress = RenewableProgress(
            current=renew,
            target=cfg.renewable_target,
            solar_capacity=estimate_capacity("solar", weather),
            wind_capacity=estimate_capacity("wind", weather),
            hydro_capacity=estimate_capacity("hydro", weather),
            biomass_capacity=estimate_capacity("biomass", weather),
        )
        status = GridStatus(
            status=classify_status(margin, cfg),
            frequency=cfg.nominal_frequency_hz + _clamp(margin * 0.004, -0.2, 0.2),
            voltage=cfg.nominal_voltage_v + _clamp(margin * 0.2, -10.0, 10.0),
            stability=stability_score(margin),
            alerts=build_alerts(margin, demand, weather, cfg),
        )

        logger.debug(
            "Aggregated {} points | total={:.0f} MW | demand={:.0f} MW | margin={:.1f}% | {}",
            len(energy_mix), total, demand, margin, status.status.value,
        )
        return Snapshot(
            grid_overview=overview,
            energy_mix=energy_mix,
            carbon_emissions=carbon_emissions,
            renewable_progress=progress,
            grid_status=status,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _normalise_generation(rows: tuple[GenerationRecord, ...]) -> list[GenerationRecord]:
        """Sort by instant, keep the last row per instant, floor negatives."""
        if not rows:
            raise AggregationError("no generation records to aggregate")

        by_instant: dict[datetime, GenerationRecord] = {}
        for row in rows:
            by_instant[_instant(row.timestamp)] = row

        return [
            GenerationRecord(
                timestamp=r.timestamp,
                nuclear=max(0.0, r.nuclear),
                hydro=max(0.0, r.hydro),
                gas=max(0.0, r.gas),
                wind=max(0.0, r.wind),
                solar=max(0.0, r.solar),
                biomass=max(0.0, r.biomass),
                coal=max(0.0, r.coal),
            )
            for _, r in sorted(by_instant.items(), key=lambda kv: kv[0])
        ]

    @staticmethod
    def _latest_demand(rows: tuple[DemandRecord, ...]) -> DemandRecord:
        if not rows:
            raise AggregationError("no demand records to aggregate")
        return max(rows, key=lambda r: _instant(r.timestamp))

    def _emissions_point(self, rec: GenerationRecord) -> CarbonEmissionsPoint:
        emissions = carbon_intensity(rec)
        return CarbonEmissionsPoint(
            timestamp=rec.timestamp,
            emissions=emissions,
            target=self.config.emissions_target,
            reduction=emissions_reduction(emissions),
        )

    @staticmethod
    def _efficiency(margin: float, weather: Optional[WeatherRecord]) -> float:
        # Losses grow with imbalance and with heat on the lines.
        losses = 2.0 + abs(margin) * 0.05
        if weather is not None:
            losses += max(0.0, weather.temperature - 25.0) * 0.3
        return _clamp(100.0 - losses, 0.0, 100.0)
