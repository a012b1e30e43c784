"""
GridLens — Decarbonization Trend Windows
Maps the trend view's time-frame selector onto synthetic-model requests and
summarises the resulting series.

Windows
-------
  1h      60 points × 1 min
  6h      72 points × 5 min
  24h     96 points × 15 min
  7d     168 points × 1 h
  30d     30 points × 1 day
  custom  horizon_years × 365 daily points, with the long-horizon trend

``horizon_years`` outside 1–50 is clamped rather than rejected, so a
request for 100 years quietly becomes a 50-year projection.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from loguru import logger

from gridlens.synthetic import SyntheticModel, TimeSeries

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

MIN_HORIZON_YEARS = 1
MAX_HORIZON_YEARS = 50
DEFAULT_HORIZON_YEARS = 5

DAYS_PER_YEAR = 365


class TimeWindow(str, Enum):
    HOUR      = "1h"
    SIX_HOURS = "6h"
    DAY       = "24h"
    WEEK      = "7d"
    MONTH     = "30d"
    CUSTOM    = "custom"


# window → (points, interval); CUSTOM is derived from the horizon
_WINDOW_LAYOUT: dict[TimeWindow, tuple[int, timedelta]] = {
    TimeWindow.HOUR:      (60,  timedelta(minutes=1)),
    TimeWindow.SIX_HOURS: (72,  timedelta(minutes=5)),
    TimeWindow.DAY:       (96,  timedelta(minutes=15)),
    TimeWindow.WEEK:      (168, timedelta(hours=1)),
    TimeWindow.MONTH:     (30,  timedelta(days=1)),
}


def clamp_horizon(years: int) -> int:
    return max(MIN_HORIZON_YEARS, min(MAX_HORIZON_YEARS, int(years)))


@dataclass(frozen=True)
class TrendRequest:
    window:        TimeWindow = TimeWindow.DAY
    horizon_years: int = DEFAULT_HORIZON_YEARS

    def __post_init__(self) -> None:
        clamped = clamp_horizon(self.horizon_years)
        if clamped != self.horizon_years:
            logger.info("Trend horizon {}y clamped to {}y.", self.horizon_years, clamped)
            object.__setattr__(self, "horizon_years", clamped)

    @property
    def point_count(self) -> int:
        if self.window is TimeWindow.CUSTOM:
            return self.horizon_years * DAYS_PER_YEAR
        return _WINDOW_LAYOUT[self.window][0]

    @property
    def interval(self) -> timedelta:
        if self.window is TimeWindow.CUSTOM:
            return timedelta(days=1)
        return _WINDOW_LAYOUT[self.window][1]


@dataclass(frozen=True)
class TrendSummary:
    """Headline figures for the latest point of a trend series."""

    renewable_percentage:        float
    carbon_intensity:            float
    renewable_change_pct:        float
    carbon_intensity_change_pct: float
    points:                      int

    def to_dict(self) -> dict:
        return {
            "renewablePercentage":      self.renewable_percentage,
            "carbonIntensity":          self.carbon_intensity,
            "renewableChangePct":       self.renewable_change_pct,
            "carbonIntensityChangePct": self.carbon_intensity_change_pct,
            "points":                   self.points,
        }


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def build_trend(
    request: TrendRequest,
    model: SyntheticModel,
    reference_time: datetime,
) -> TimeSeries:
    """Generate the synthetic series behind one trend-view request."""
    horizon: Optional[int] = request.horizon_years if request.window is TimeWindow.CUSTOM else None
    logger.info(
        "Trend | window={} | points={} | horizon={}",
        request.window.value, request.point_count, horizon,
    )
    return model.generate(reference_time, request.point_count, request.interval, horizon)


def summarize_trend(series: TimeSeries) -> TrendSummary:
    """
    Latest renewable share and carbon intensity, with the percentage change
    against the previous point.

    A zero previous renewable share is treated as 1 so the change stays
    finite; a zero previous intensity reports no change.
    """
    if not series.points:
        return TrendSummary(0.0, 0.0, 0.0, 0.0, 0)

    cur  = series.points[-1]
    prev = series.points[-2] if len(series.points) > 1 else cur

    prev_renew   = prev.renewable_percentage or 1.0
    renew_change = (cur.renewable_percentage - prev.renewable_percentage) / prev_renew * 100

    prev_ci   = prev.carbon_intensity
    ci_change = (cur.carbon_intensity - prev_ci) / prev_ci * 100 if prev_ci else 0.0

    return TrendSummary(
        renewable_percentage=cur.renewable_percentage,
        carbon_intensity=cur.carbon_intensity,
        renewable_change_pct=renew_change,
        carbon_intensity_change_pct=ci_change,
        points=len(series.points),
    )
