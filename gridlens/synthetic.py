"""
GridLens — Synthetic Grid Model
Generates statistically plausible generation-mix time series for use when
live IESO feeds are unavailable, and for the long-horizon decarbonization
view.

How a point is built
--------------------
  1. **Diurnal solar** — between 06:00 and 18:00 local time a 70 MW solar
     unit is scaled by a 5–35× draw; at night the draw is 0–0.5× so output
     stays near zero.

  2. **Bounded draws** — wind, hydro, nuclear, gas, coal and biomass are
     drawn independently from source-specific ranges taken from Ontario's
     historical operating envelope.

  3. **Shared oscillation** — ``sin(step × 0.1) × 200`` MW is added to every
     source (weighted per source) so neighbouring points move together
     instead of looking like white noise.

  4. **Long-horizon trend** — for multi-year requests a linear term scaled
     by the point's position in the window is added: renewables ramp up
     toward the present and fossil output ramps down, so a 50-year window
     shows a far larger shift than a 1-year window.  The newest point always
     carries zero trend, i.e. it looks like today's grid.

Every value is floored at zero; nuclear's 8 GW floor guarantees a positive
total.  The random source is injected, so a seeded ``random.Random`` gives
a reproducible series.
"""

from __future__ import annotations

import math
import random
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

import pandas as pd
from loguru import logger

from gridlens.metrics import carbon_intensity, renewable_percentage, total_generation
from gridlens.models import (
    FUELS,
    DemandRecord,
    GenerationRecord,
    SourceRecords,
    WeatherRecord,
)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_TIMEZONE = ZoneInfo("America/Toronto")

DAYTIME_START_HOUR = 6
DAYTIME_END_HOUR   = 18   # inclusive

SOLAR_UNIT_MW = 70.0
SOLAR_DAY_FACTOR   = (5.0, 35.0)
SOLAR_NIGHT_FACTOR = (0.0, 0.5)

# (min, max) MW per source
_SOURCE_RANGES: dict[str, tuple[float, float]] = {
    "wind":    (1000.0, 4000.0),
    "hydro":   (3000.0, 5000.0),
    "nuclear": (8000.0, 9000.0),   # Bruce, Pickering, Darlington
    "gas":     (1000.0, 3000.0),
    "coal":    (0.0,     600.0),
    "biomass": (200.0,   700.0),
}

OSCILLATION_AMPLITUDE_MW = 200.0
OSCILLATION_STEP         = 0.1

_OSCILLATION_WEIGHT: dict[str, float] = {
    "solar":   1.0,
    "wind":    1.0,
    "hydro":   1.0,
    "biomass": 0.2,
    "nuclear": 0.5,
    "gas":     0.3,
    "coal":    0.1,
}

# MW per year of horizon; positive = grows toward the present
_TREND_MW_PER_YEAR: dict[str, float] = {
    "solar":    40.0,
    "wind":     80.0,
    "hydro":    10.0,
    "biomass":   5.0,
    "nuclear":   0.0,
    "gas":     -50.0,
    "coal":    -30.0,
}

WEEKDAY_DEMAND_MW = 15000.0
WEEKEND_DEMAND_MW = 12000.0
DEMAND_VARIATION  = (0.85, 1.15)
FORECAST_ERROR    = 0.05

SNAPSHOT_POINTS   = 24
SNAPSHOT_INTERVAL = timedelta(hours=1)


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TrendPoint:
    """One synthetic interval plus its derived totals."""

    mix:                  GenerationRecord
    total:                float
    renewable_percentage: float
    carbon_intensity:     float

    @property
    def timestamp(self) -> datetime:
        return self.mix.timestamp

    def to_dict(self) -> dict:
        out = {"timestamp": self.mix.timestamp.isoformat()}
        out.update({fuel: getattr(self.mix, fuel) for fuel in FUELS})
        out.update({
            "total":               self.total,
            "renewablePercentage": self.renewable_percentage,
            "carbonIntensity":     self.carbon_intensity,
        })
        return out


@dataclass(frozen=True)
class TimeSeries:
    """Oldest-first sequence of synthetic points."""

    points:        tuple[TrendPoint, ...]
    interval:      timedelta
    horizon_years: Optional[int] = None

    def __len__(self) -> int:
        return len(self.points)

    @property
    def records(self) -> tuple[GenerationRecord, ...]:
        return tuple(p.mix for p in self.points)

    def to_frame(self) -> pd.DataFrame:
        """Flatten the series into a DataFrame, one row per point."""
        if not self.points:
            return pd.DataFrame(
                columns=["timestamp", *FUELS, "total", "renewable_percentage", "carbon_intensity"]
            )
        rows = []
        for p in self.points:
            row = {"timestamp": p.mix.timestamp}
            row.update({fuel: getattr(p.mix, fuel) for fuel in FUELS})
            row["total"]                = p.total
            row["renewable_percentage"] = p.renewable_percentage
            row["carbon_intensity"]     = p.carbon_intensity
            rows.append(row)
        return pd.DataFrame(rows)


# ---------------------------------------------------------------------------
# Model
# ---------------------------------------------------------------------------


def _is_daytime(ts: datetime, tz: ZoneInfo) -> bool:
    local = ts.astimezone(tz) if ts.tzinfo is not None else ts
    return DAYTIME_START_HOUR <= local.hour <= DAYTIME_END_HOUR


class SyntheticModel:
    """
    Seedable generator of synthetic grid data.

    Parameters
    ----------
    rng:
        Random source.  Pass ``random.Random(seed)`` for reproducible output;
        defaults to an unseeded generator.
    tz:
        Timezone whose local hour decides day and night for solar output.
    """

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        tz: ZoneInfo = DEFAULT_TIMEZONE,
    ) -> None:
        self._rng = rng or random.Random()
        self._tz  = tz

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def generate(
        self,
        reference_time: datetime,
        point_count: int,
        interval: timedelta,
        horizon_years: Optional[int] = None,
    ) -> TimeSeries:
        """
        Build ``point_count`` points ending at ``reference_time``.

        Parameters
        ----------
        reference_time:
            Timestamp of the newest point.
        point_count:
            Number of points to return (0 gives an empty series).
        interval:
            Spacing between consecutive points; must be positive.
        horizon_years:
            When given, adds the long-horizon decarbonization trend scaled
            by this many years.

        Returns
        -------
        TimeSeries
            Points ordered oldest to newest.
        """
        if point_count < 0:
            raise ValueError(f"point_count must be >= 0 (got {point_count})")
        if interval <= timedelta(0):
            raise ValueError(f"interval must be positive (got {interval})")

        # Step back in elapsed time; local wall-clock arithmetic breaks across DST.
        ref_utc = reference_time.astimezone(timezone.utc)
        points: list[TrendPoint] = []
        for i in range(point_count):
            steps_back = point_count - 1 - i
            ts         = (ref_utc - interval * steps_back).astimezone(self._tz)
            position   = i / (point_count - 1) if point_count > 1 else 1.0
            mix        = self._point(ts, steps_back, position, horizon_years)
            points.append(
                TrendPoint(
                    mix=mix,
                    total=total_generation(mix),
                    renewable_percentage=renewable_percentage(mix),
                    carbon_intensity=carbon_intensity(mix),
                )
            )

        logger.debug(
            "Synthetic series | points={} | interval={} | horizon={}",
            point_count, interval, horizon_years,
        )
        return TimeSeries(points=tuple(points), interval=interval, horizon_years=horizon_years)

    def synthetic_records(self, reference_time: datetime) -> SourceRecords:
        """
        Stand-in for one full live fetch: 24 hourly generation rows, the
        current demand and a weather observation.
        """
        series  = self.generate(reference_time, SNAPSHOT_POINTS, SNAPSHOT_INTERVAL)
        demand  = self.demand(reference_time)
        weather = self.weather()
        return SourceRecords(demand=(demand,), generation=series.records, weather=weather)

    def demand(self, reference_time: datetime) -> DemandRecord:
        local   = reference_time.astimezone(self._tz) if reference_time.tzinfo else reference_time
        base    = WEEKEND_DEMAND_MW if local.weekday() >= 5 else WEEKDAY_DEMAND_MW
        actual  = base * self._rng.uniform(*DEMAND_VARIATION)
        forecast = actual * self._rng.uniform(1 - FORECAST_ERROR, 1 + FORECAST_ERROR)
        return DemandRecord(timestamp=reference_time, demand=actual, forecast=forecast)

    def weather(self) -> WeatherRecord:
        rng = self._rng
        return WeatherRecord(
            temperature=rng.uniform(5.0, 35.0),
            wind_speed=rng.uniform(10.0, 30.0),
            solar_radiation=rng.uniform(500.0, 1500.0),
            humidity=rng.uniform(40.0, 80.0),
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _point(
        self,
        ts: datetime,
        steps_back: int,
        position: float,
        horizon_years: Optional[int],
    ) -> GenerationRecord:
        rng       = self._rng
        daytime   = _is_daytime(ts, self._tz)
        variation = math.sin(steps_back * OSCILLATION_STEP) * OSCILLATION_AMPLITUDE_MW

        factor = rng.uniform(*(SOLAR_DAY_FACTOR if daytime else SOLAR_NIGHT_FACTOR))
        raw: dict[str, float] = {"solar": SOLAR_UNIT_MW * factor}
        for fuel, (low, high) in _SOURCE_RANGES.items():
            raw[fuel] = rng.uniform(low, high)

        values: dict[str, float] = {}
        for fuel in FUELS:
            value = raw[fuel]
            if fuel != "solar" or daytime:
                value += variation * _OSCILLATION_WEIGHT[fuel]
            if horizon_years:
                value += _TREND_MW_PER_YEAR[fuel] * horizon_years * (position - 1.0)
            values[fuel] = max(0.0, value)

        return GenerationRecord(timestamp=ts, **values)


# ---------------------------------------------------------------------------
# Smoke test  (python -m gridlens.synthetic)
# ---------------------------------------------------------------------------


if __name__ == "__main__":
    import sys

    logger.remove()
    logger.add(sys.stderr, level="INFO")

    model = SyntheticModel(random.Random(42))
    now   = datetime.now(tz=DEFAULT_TIMEZONE)

    logger.info("=== GridLens — Synthetic Model Smoke Test ===")
    series = model.generate(now, 24, timedelta(hours=1))
    logger.success("24h series — {} points", len(series))
    logger.info("\n{}", series.to_frame()[["timestamp", "solar", "total", "carbon_intensity"]].to_string(index=False))

    for years in (1, 50):
        s = model.generate(now, years * 365, timedelta(days=1), horizon_years=years)
        first, last = s.points[0], s.points[-1]
        logger.info(
            "{:>2}y horizon | renewable {:.1f}% → {:.1f}% | intensity {:.0f} → {:.0f} g/kWh",
            years, first.renewable_percentage, last.renewable_percentage,
            first.carbon_intensity, last.carbon_intensity,
        )
