"""
GridLens — Raw Source Client
Fetches one upstream feed and parses it into typed records.

Feeds
-----
  demand      IESO chart CSV     header + rows of  timestamp,demand,forecast
  generation  IESO chart CSV     header + rows of  timestamp,nuclear,hydro,gas,
                                                   wind,solar,biomass,coal
  weather     Environment Canada observation API (GeoJSON); the first
              feature's properties carry temperature, wind_speed,
              solar_radiation and humidity

Contract
--------
``fetch()`` never raises for the three expected failure kinds; it always
returns a FetchResult carrying either the parsed records or a FetchError:

  transport failure / timeout   → network
  non-2xx status                → badStatus
  wrong field count, bad number,
  bad timestamp, bad JSON       → parseError

Blank lines are skipped.  One bad row fails the whole fetch: a partially
parsed generation feed would silently skew every derived metric.

There are no retries here; the orchestrator owns the retry policy.
"""

from __future__ import annotations

import io
import math
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional
from zoneinfo import ZoneInfo

import httpx
import pandas as pd
from loguru import logger

from gridlens.config import Settings
from gridlens.errors import FetchError, FetchErrorKind
from gridlens.models import DemandRecord, GenerationRecord, WeatherRecord

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEMAND_FIELDS     = ("timestamp", "demand", "forecast")
GENERATION_FIELDS = ("timestamp", "nuclear", "hydro", "gas", "wind", "solar", "biomass", "coal")

# Used when an observation omits a property
WEATHER_DEFAULTS: dict[str, float] = {
    "temperature":     20.0,
    "wind_speed":      15.0,
    "solar_radiation": 800.0,
    "humidity":        60.0,
}


class SourceKind(str, Enum):
    DEMAND     = "demand"
    GENERATION = "generation"
    WEATHER    = "weather"


@dataclass(frozen=True)
class FetchResult:
    """Outcome of one fetch: records on success, an error otherwise."""

    source:     SourceKind
    records:    tuple = ()
    error:      Optional[FetchError] = None
    latency_ms: Optional[float] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def failure(cls, source: SourceKind, error: FetchError,
                latency_ms: Optional[float] = None) -> "FetchResult":
        return cls(source=source, records=(), error=error, latency_ms=latency_ms)


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------

_OFFSET_SUFFIX = r"(?:Z|[+-]\d{2}:?\d{2})$"


def _parse_error(detail: str) -> FetchError:
    return FetchError(FetchErrorKind.PARSE_ERROR, detail)


def _read_feed(text: str, fields: tuple[str, ...]) -> pd.DataFrame:
    """
    Read a chart CSV into a string-typed DataFrame with exactly ``fields``.

    The first non-blank line is the header and must match ``fields``.  A row
    with too many columns is a ParserError; one with too few shows up as
    NaN.  Both fail the feed.
    """
    try:
        raw = pd.read_csv(
            io.StringIO(text),
            header=None,
            dtype=str,
            skip_blank_lines=True,
            on_bad_lines="error",
        )
    except pd.errors.EmptyDataError:
        return pd.DataFrame(columns=list(fields))
    except (pd.errors.ParserError, ValueError) as exc:
        raise _parse_error(f"malformed CSV: {exc}") from exc

    header = tuple(str(c).strip() for c in raw.iloc[0].tolist())
    if header != fields:
        raise _parse_error(f"expected columns {fields}, got {header}")

    df = raw.iloc[1:].reset_index(drop=True)
    df.columns = list(fields)
    for col in fields:
        df[col] = df[col].str.strip()

    missing = df.isna().any(axis=1)
    if missing.any():
        row = int(missing.idxmax()) + 1
        raise _parse_error(f"row {row}: expected {len(fields)} fields with values")
    return df


def _to_numbers(df: pd.DataFrame, columns: tuple[str, ...]) -> pd.DataFrame:
    out = pd.DataFrame(index=df.index)
    for col in columns:
        try:
            values = pd.to_numeric(df[col], errors="raise")
        except (ValueError, TypeError) as exc:
            raise _parse_error(f"{col}: {exc}") from exc
        if not all(math.isfinite(v) for v in values):
            raise _parse_error(f"{col}: non-finite value")
        out[col] = values.astype(float)
    return out


def _to_timestamps(column: pd.Series, tz: ZoneInfo) -> list[datetime]:
    """
    Parse ISO timestamps into aware datetimes.

    Rows with an offset keep it.  Naive rows are IESO local wall-clock time:
    in the repeated fall-back hour the first occurrence is daylight time and
    the repeat is standard time, so both readings stay distinct instants.
    """
    if column.empty:
        return []

    has_offset = column.str.contains(_OFFSET_SUFFIX, regex=True)
    try:
        if has_offset.all():
            parsed = pd.to_datetime(column, format="ISO8601", utc=True)
            return [ts.to_pydatetime() for ts in parsed]
        if has_offset.any():
            raise _parse_error("timestamps mix local and offset times")

        naive = pd.to_datetime(column, format="ISO8601")
        local = naive.dt.tz_localize(
            tz,
            ambiguous=(~naive.duplicated(keep="first")).to_numpy(),
            nonexistent="shift_forward",
        )
    except (ValueError, TypeError) as exc:
        raise _parse_error(f"bad timestamp: {exc}") from exc

    # Via UTC so the fold of repeated wall-clock times is set correctly
    return [ts.tz_convert("UTC").to_pydatetime().astimezone(tz) for ts in local]


def parse_demand_csv(text: str, tz: ZoneInfo) -> tuple[DemandRecord, ...]:
    df      = _read_feed(text, DEMAND_FIELDS)
    stamps  = _to_timestamps(df["timestamp"], tz)
    numbers = _to_numbers(df, DEMAND_FIELDS[1:])
    return tuple(
        DemandRecord(timestamp=ts, demand=float(row.demand), forecast=float(row.forecast))
        for ts, row in zip(stamps, numbers.itertuples(index=False))
    )


def parse_generation_csv(text: str, tz: ZoneInfo) -> tuple[GenerationRecord, ...]:
    df      = _read_feed(text, GENERATION_FIELDS)
    stamps  = _to_timestamps(df["timestamp"], tz)
    numbers = _to_numbers(df, GENERATION_FIELDS[1:])
    return tuple(
        GenerationRecord(timestamp=ts, **{k: float(v) for k, v in row._asdict().items()})
        for ts, row in zip(stamps, numbers.itertuples(index=False))
    )


def parse_weather_json(body: object) -> tuple[WeatherRecord, ...]:
    """Return the latest observation, or an empty tuple when none was published."""
    if not isinstance(body, dict):
        raise _parse_error("weather payload is not a JSON object")
    features = body.get("features") or []
    if not isinstance(features, list):
        raise _parse_error("weather 'features' is not a list")
    if not features:
        return ()

    props = features[0].get("properties") if isinstance(features[0], dict) else None
    if not isinstance(props, dict):
        raise _parse_error("weather feature has no properties object")

    values: dict[str, float] = {}
    for field, default in WEATHER_DEFAULTS.items():
        raw = props.get(field)
        if raw is None:
            values[field] = default
            continue
        try:
            value = float(raw)
        except (TypeError, ValueError) as exc:
            raise _parse_error(f"weather {field}={raw!r} is not a number") from exc
        if not math.isfinite(value):
            raise _parse_error(f"weather {field}={raw!r} is not finite")
        values[field] = value
    return (WeatherRecord(**values),)


# ---------------------------------------------------------------------------
# Core client
# ---------------------------------------------------------------------------


class RawSourceClient:
    """
    Async fetcher for the three GridLens feeds.

    Parameters
    ----------
    http:
        Shared ``httpx.AsyncClient``; its lifetime belongs to the caller.
    settings:
        Feed URLs, weather station and the timezone used for naive
        timestamps.
    """

    def __init__(self, http: httpx.AsyncClient, settings: Optional[Settings] = None) -> None:
        self._http     = http
        self._settings = settings or Settings()
        self._tz       = self._settings.timezone

    async def fetch(self, source: SourceKind) -> FetchResult:
        url, params = self._request_for(source)
        started = time.perf_counter()

        logger.debug("GET {} ({}) params={}", url, source.value, params)
        try:
            resp = await self._http.get(url, params=params)
        except httpx.TransportError as exc:
            latency = (time.perf_counter() - started) * 1000
            logger.warning("{} feed transport error: {}", source.value, exc)
            return FetchResult.failure(
                source, FetchError(FetchErrorKind.NETWORK, str(exc) or type(exc).__name__), latency,
            )
        latency = (time.perf_counter() - started) * 1000

        if not resp.is_success:
            logger.warning("{} feed responded with status {}", source.value, resp.status_code)
            return FetchResult.failure(
                source,
                FetchError(
                    FetchErrorKind.BAD_STATUS,
                    f"{source.value} feed responded with status {resp.status_code}",
                    status_code=resp.status_code,
                ),
                latency,
            )

        try:
            records = self._parse(source, resp)
        except FetchError as exc:
            logger.warning("{} feed parse error: {}", source.value, exc.detail)
            return FetchResult.failure(source, exc, latency)

        logger.debug("{} feed: {} records in {:.0f} ms", source.value, len(records), latency)
        return FetchResult(source=source, records=records, latency_ms=latency)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _request_for(self, source: SourceKind) -> tuple[str, Optional[dict]]:
        s = self._settings
        if source is SourceKind.DEMAND:
            return s.demand_url, None
        if source is SourceKind.GENERATION:
            return s.generation_url, None
        return s.weather_url, {"station": s.weather_station, "limit": 1}

    def _parse(self, source: SourceKind, resp: httpx.Response) -> tuple:
        if source is SourceKind.DEMAND:
            return parse_demand_csv(resp.text, self._tz)
        if source is SourceKind.GENERATION:
            return parse_generation_csv(resp.text, self._tz)
        try:
            body = resp.json()
        except ValueError as exc:
            raise _parse_error(f"weather payload is not valid JSON: {exc}") from exc
        return parse_weather_json(body)
