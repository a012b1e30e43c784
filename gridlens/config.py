"""
GridLens — Runtime configuration

Settings are read once from the process environment (a ``.env`` file in the
working directory is loaded first).  Feed URLs default to the IESO public
chart CSVs and the Environment Canada observation API; every numeric knob
falls back to its default when the variable is missing or malformed.
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from zoneinfo import ZoneInfo

from dotenv import load_dotenv
from loguru import logger

load_dotenv()

# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

IESO_BASE_URL   = "https://www.ieso.ca/-/media/files/ieso/uploaded/chart"
WEATHER_API_URL = "https://api.weather.gc.ca/collections/observation/items"

DEFAULT_TIMEZONE = "America/Toronto"

SOURCE_TIMEOUT_SECONDS = 10.0   # per-feed ceiling; a hung feed counts as a failed branch
MAX_ATTEMPTS           = 2
RETRY_BACKOFF_SECONDS  = 1.0

LIVE_INTERVAL_SECONDS      = 300.0
SYNTHETIC_INTERVAL_SECONDS = 5.0


# ---------------------------------------------------------------------------
# Env helpers
# ---------------------------------------------------------------------------


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw.strip())
    except ValueError:
        logger.warning("Ignoring malformed {}={!r}; using {}.", name, raw, default)
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        logger.warning("Ignoring malformed {}={!r}; using {}.", name, raw, default)
        return default


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Settings:
    demand_url:         str   = f"{IESO_BASE_URL}/price_forecast.csv"
    generation_url:     str   = f"{IESO_BASE_URL}/generation_by_fuel_type.csv"
    weather_url:        str   = WEATHER_API_URL
    weather_station:    str   = "TORONTO"
    timezone_name:      str   = DEFAULT_TIMEZONE
    source_timeout:     float = SOURCE_TIMEOUT_SECONDS
    max_attempts:       int   = MAX_ATTEMPTS
    retry_backoff:      float = RETRY_BACKOFF_SECONDS
    live_interval:      float = LIVE_INTERVAL_SECONDS
    synthetic_interval: float = SYNTHETIC_INTERVAL_SECONDS
    nominal_frequency:  float = 60.0
    log_level:          str   = "INFO"

    @property
    def timezone(self) -> ZoneInfo:
        return ZoneInfo(self.timezone_name)

    @classmethod
    def from_env(cls) -> "Settings":
        defaults = cls()
        return cls(
            demand_url         = os.getenv("GRIDLENS_DEMAND_URL", defaults.demand_url),
            generation_url     = os.getenv("GRIDLENS_GENERATION_URL", defaults.generation_url),
            weather_url        = os.getenv("GRIDLENS_WEATHER_URL", defaults.weather_url),
            weather_station    = os.getenv("GRIDLENS_WEATHER_STATION", defaults.weather_station),
            timezone_name      = os.getenv("GRIDLENS_TIMEZONE", defaults.timezone_name),
            source_timeout     = _env_float("GRIDLENS_SOURCE_TIMEOUT", defaults.source_timeout),
            max_attempts       = max(1, _env_int("GRIDLENS_MAX_ATTEMPTS", defaults.max_attempts)),
            retry_backoff      = _env_float("GRIDLENS_RETRY_BACKOFF", defaults.retry_backoff),
            live_interval      = _env_float("GRIDLENS_LIVE_INTERVAL", defaults.live_interval),
            synthetic_interval = _env_float("GRIDLENS_SYNTHETIC_INTERVAL", defaults.synthetic_interval),
            nominal_frequency  = _env_float("GRIDLENS_NOMINAL_FREQUENCY", defaults.nominal_frequency),
            log_level          = os.getenv("LOG_LEVEL", defaults.log_level).upper(),
        )


def configure_logging(level: str = "INFO") -> None:
    """Send loguru output to stderr at the requested level."""
    logger.remove()
    logger.add(sys.stderr, level=level)
