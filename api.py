"""
GridLens — FastAPI Server
Serves the refresh scheduler's published grid snapshot and the synthetic
decarbonization trend to the GridLens dashboard.

Run:  uvicorn api:app --reload --port 8000
Docs: http://localhost:8000/docs
"""

from __future__ import annotations

import random
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Optional

import httpx
from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger
from pydantic import BaseModel

from gridlens.config import Settings, configure_logging
from gridlens.metrics import MetricsAggregator, MetricsConfig
from gridlens.models import Mode, PublishedState
from gridlens.orchestrator import FallbackOrchestrator
from gridlens.scheduler import RefreshScheduler
from gridlens.sources import RawSourceClient, SourceKind
from gridlens.synthetic import SyntheticModel
from gridlens.trend import DEFAULT_HORIZON_YEARS, TimeWindow, TrendRequest, build_trend, summarize_trend

# ---------------------------------------------------------------------------
# Application state — shared httpx client and the refresh pipeline
# ---------------------------------------------------------------------------

_settings:     Settings = Settings.from_env()
_http_client:  Optional[httpx.AsyncClient] = None
_orchestrator: Optional[FallbackOrchestrator] = None
_scheduler:    Optional[RefreshScheduler] = None


def _make_http_client(settings: Settings) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=settings.source_timeout, follow_redirects=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the pipeline once, run the scheduler for the process lifetime."""
    global _http_client, _orchestrator, _scheduler
    configure_logging(_settings.log_level)

    _http_client  = _make_http_client(_settings)
    aggregator    = MetricsAggregator(MetricsConfig(nominal_frequency_hz=_settings.nominal_frequency))
    _orchestrator = FallbackOrchestrator(
        RawSourceClient(_http_client, _settings),
        model=SyntheticModel(tz=_settings.timezone),
        aggregator=aggregator,
        settings=_settings,
    )
    _scheduler = RefreshScheduler(_orchestrator, _settings)
    logger.info("httpx AsyncClient initialised.")

    await _scheduler.start()
    yield

    _scheduler.stop()
    await _http_client.aclose()
    logger.info("httpx AsyncClient closed.")


# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------

app = FastAPI(
    title="GridLens API",
    description=(
        "Ontario grid metrics for the GridLens dashboard. Live IESO and "
        "Environment Canada feeds when reachable, synthetic data otherwise."
    ),
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Envelope — standard top-level wrapper for data endpoints
# ---------------------------------------------------------------------------


class EnvelopeMeta(BaseModel):
    """Metadata block present on every GridLens data response."""
    api_version:  str = "1.0"
    is_demo:      bool
    mode:         str             # "live" | "synthetic"
    timezone:     str
    generated_at: str             # server timestamp when response was built
    units:        str
    data_quality: str             # "LIVE" | "SYNTHETIC" | "DEMO"


class SnapshotResponse(BaseModel):
    """Published state: snapshot, lastUpdated, mode, error, isRefreshing."""
    meta: EnvelopeMeta
    data: dict[str, Any]


class TrendResponse(BaseModel):
    meta:          EnvelopeMeta
    window:        str
    horizon_years: Optional[int]
    data:          list[dict[str, Any]]
    summary:       dict[str, Any]


# ---------------------------------------------------------------------------
# Meta-only models (health, sync-status — not wrapped in envelope)
# ---------------------------------------------------------------------------


class HealthResponse(BaseModel):
    status:            str
    timestamp:         str
    mode:              str
    scheduler_running: bool


class DataSourceStatus(BaseModel):
    """Status of one upstream feed after the last refresh cycle."""
    name:       str
    endpoint:   str
    status:     str               # "LIVE" | "ERROR" | "DEMO" | "PENDING"
    error:      Optional[str] = None
    latency_ms: Optional[float] = None


class SyncStatusResponse(BaseModel):
    mode:               str
    last_updated:       Optional[str]
    demo_mode_active:   bool
    is_refreshing:      bool
    message:            str
    data_sources:       list[DataSourceStatus]


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

_SOURCE_NAMES = {
    SourceKind.DEMAND:     "IESO Ontario Demand",
    SourceKind.GENERATION: "IESO Generation by Fuel",
    SourceKind.WEATHER:    "Environment Canada Observations",
}


def _now() -> datetime:
    return datetime.now(tz=_settings.timezone)


def _require_scheduler() -> RefreshScheduler:
    if _scheduler is None:
        raise HTTPException(status_code=503, detail="Refresh scheduler is not running.")
    return _scheduler


def _make_meta(*, mode: Mode, is_demo: bool, units: str) -> EnvelopeMeta:
    if is_demo:
        quality = "DEMO"
    else:
        quality = "LIVE" if mode is Mode.LIVE else "SYNTHETIC"
    return EnvelopeMeta(
        is_demo=is_demo,
        mode=mode.value,
        timezone=_settings.timezone_name,
        generated_at=_now().isoformat(),
        units=units,
        data_quality=quality,
    )


def _source_endpoint(kind: SourceKind) -> str:
    return {
        SourceKind.DEMAND:     _settings.demand_url,
        SourceKind.GENERATION: _settings.generation_url,
        SourceKind.WEATHER:    _settings.weather_url,
    }[kind]


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

_DEMO_QUERY = Query(
    default=False,
    description=(
        "Return a freshly generated synthetic snapshot instead of the "
        "scheduler's published state. No live feed is contacted."
    ),
)


@app.get("/health", response_model=HealthResponse, tags=["Meta"])
async def health():
    """Returns service health, the current mode and whether the scheduler runs."""
    return HealthResponse(
        status="ok",
        timestamp=_now().isoformat(),
        mode=_scheduler.mode.value if _scheduler else Mode.LIVE.value,
        scheduler_running=bool(_scheduler and _scheduler.running),
    )


@app.get("/snapshot", response_model=SnapshotResponse, tags=["Grid"])
async def get_snapshot(demo: bool = _DEMO_QUERY):
    """
    Return the latest published grid state.

    ``data`` carries ``snapshot``, ``lastUpdated``, ``mode``, ``error`` and
    ``isRefreshing``.  ``snapshot`` is null until the first refresh cycle
    has finished.
    """
    if demo:
        logger.info("GET /snapshot [DEMO]")
        if _orchestrator is None:
            raise HTTPException(status_code=503, detail="Pipeline is not initialised.")
        state = PublishedState(
            snapshot=_orchestrator.synthetic_snapshot(),
            last_updated=_now(),
            mode=Mode.SYNTHETIC,
            error=None,
            is_refreshing=False,
        )
        return SnapshotResponse(
            meta=_make_meta(mode=Mode.SYNTHETIC, is_demo=True, units="MW"),
            data=state.to_dict(),
        )

    scheduler = _require_scheduler()
    state = scheduler.state
    logger.info("GET /snapshot | mode={}", state.mode.value)
    return SnapshotResponse(
        meta=_make_meta(mode=state.mode, is_demo=False, units="MW"),
        data=state.to_dict(),
    )


@app.post("/refresh", response_model=SnapshotResponse, tags=["Grid"])
async def refresh():
    """Run a refresh cycle now and return the state it published."""
    scheduler = _require_scheduler()
    logger.info("POST /refresh")
    state = await scheduler.refresh_now()
    return SnapshotResponse(
        meta=_make_meta(mode=state.mode, is_demo=False, units="MW"),
        data=state.to_dict(),
    )


@app.get("/sync-status", response_model=SyncStatusResponse, tags=["Meta"])
async def get_sync_status():
    """
    Report the current mode, the advisory message and how each upstream feed
    fared in the last refresh cycle.

    In synthetic mode feeds that did answer are reported as `DEMO`, since
    their data is not what the dashboard is showing.
    """
    scheduler = _require_scheduler()
    state     = scheduler.state
    sources   = scheduler.sources
    synthetic = state.mode is Mode.SYNTHETIC

    statuses: list[DataSourceStatus] = []
    for kind in (SourceKind.DEMAND, SourceKind.GENERATION, SourceKind.WEATHER):
        result = sources.get(kind)
        if result is None:
            status, error, latency = "PENDING", None, None
        elif result.error is not None:
            status, error, latency = "ERROR", str(result.error), result.latency_ms
        else:
            status  = "DEMO" if synthetic else "LIVE"
            error   = None
            latency = result.latency_ms
        statuses.append(
            DataSourceStatus(
                name=_SOURCE_NAMES[kind],
                endpoint=_source_endpoint(kind),
                status=status,
                error=error,
                latency_ms=round(latency, 1) if latency is not None else None,
            )
        )

    if state.error:
        message = state.error
    elif synthetic:
        message = "Showing synthetic data."
    else:
        message = "All GridLens core feeds are live."

    return SyncStatusResponse(
        mode=state.mode.value,
        last_updated=state.last_updated.isoformat() if state.last_updated else None,
        demo_mode_active=synthetic,
        is_refreshing=state.is_refreshing,
        message=message,
        data_sources=statuses,
    )


@app.get("/trend", response_model=TrendResponse, tags=["Trend"])
async def get_trend(
    window: TimeWindow = Query(
        default=TimeWindow.DAY,
        description="Time frame: 1h, 6h, 24h, 7d, 30d or custom.",
    ),
    years: int = Query(
        default=DEFAULT_HORIZON_YEARS,
        description="Projection horizon for the custom window; clamped to 1–50.",
    ),
    seed: Optional[int] = Query(
        default=None,
        description="Seed for a reproducible series.",
    ),
):
    """
    Return a synthetic generation-mix series for the decarbonization view,
    newest point last, with the latest renewable share and carbon intensity
    and their change against the previous point.
    """
    request = TrendRequest(window=window, horizon_years=years)
    model   = SyntheticModel(random.Random(seed), tz=_settings.timezone)
    series  = build_trend(request, model, _now())
    summary = summarize_trend(series)

    logger.info("GET /trend | window={} | points={}", window.value, len(series))
    return TrendResponse(
        meta=_make_meta(mode=Mode.SYNTHETIC, is_demo=True, units="MW / gCO2e/kWh"),
        window=window.value,
        horizon_years=series.horizon_years,
        data=[p.to_dict() for p in series.points],
        summary=summary.to_dict(),
    )
