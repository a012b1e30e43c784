"""
GridLens — Fallback Orchestrator
Runs one refresh cycle: fetch the three feeds concurrently, then build a
live snapshot if the core feeds arrived or a synthetic one if they did not.

Policy
------
  demand OK  and  generation OK   → live snapshot (weather used if present)
  anything else                   → synthetic snapshot + advisory message
  live aggregation blows up       → synthetic snapshot + advisory message

The three branches are joined with ``asyncio.gather(return_exceptions=True)``
so every branch settles before a decision is made; a fast failure on one
feed never cancels the others.  Each branch is bounded by a per-source
timeout and retried (network errors and 5xx only) with linear backoff.

This is the only component that substitutes data, and ``run()`` never
raises: the worst outcome is a synthetic snapshot with an advisory.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from loguru import logger

from gridlens.config import Settings
from gridlens.errors import FetchError, FetchErrorKind
from gridlens.metrics import MetricsAggregator
from gridlens.models import Mode, Snapshot, SourceRecords
from gridlens.sources import FetchResult, RawSourceClient, SourceKind
from gridlens.synthetic import SyntheticModel

UNAVAILABLE_ADVISORY = "Live grid data unavailable ({}); showing synthetic data."


@dataclass(frozen=True)
class CycleResult:
    snapshot: Snapshot
    mode:     Mode
    error:    Optional[str] = None
    sources:  dict[SourceKind, FetchResult] = field(default_factory=dict)


class FallbackOrchestrator:
    """
    Assembles one Snapshot per call, from live feeds when possible.

    Parameters
    ----------
    client:
        Fetcher for the raw feeds (anything with an async ``fetch(kind)``).
    model:
        Synthetic model used for the fallback path.
    aggregator:
        Metric derivation shared by the live and synthetic paths.
    settings:
        Supplies per-source timeout, attempt count and retry backoff.
    clock:
        Returns "now"; the synthetic series ends at this time.
    """

    def __init__(
        self,
        client: RawSourceClient,
        model: Optional[SyntheticModel] = None,
        aggregator: Optional[MetricsAggregator] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._settings   = settings or Settings()
        self._client     = client
        self._model      = model or SyntheticModel(tz=self._settings.timezone)
        self._aggregator = aggregator or MetricsAggregator()
        self._clock      = clock or (lambda: datetime.now(tz=self._settings.timezone))

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run(self) -> CycleResult:
        kinds = (SourceKind.DEMAND, SourceKind.GENERATION, SourceKind.WEATHER)
        settled = await asyncio.gather(
            *(self._fetch_with_policy(kind) for kind in kinds),
            return_exceptions=True,
        )

        results: dict[SourceKind, FetchResult] = {}
        for kind, outcome in zip(kinds, settled):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.opt(exception=outcome).error("{} branch raised unexpectedly", kind.value)
                outcome = FetchResult.failure(
                    kind, FetchError(FetchErrorKind.NETWORK, f"unexpected error: {outcome!r}"),
                )
            results[kind] = outcome

        demand, generation, weather = (results[k] for k in kinds)
        if demand.ok and generation.ok:
            records = SourceRecords(
                demand=demand.records,
                generation=generation.records,
                weather=weather.records[0] if weather.ok and weather.records else None,
            )
            try:
                snapshot = self._aggregator.aggregate(records)
            except Exception as exc:
                logger.opt(exception=exc).warning("Live aggregation failed; falling back to synthetic data.")
                return self._fallback(UNAVAILABLE_ADVISORY.format(f"aggregation: {exc}"), results)

            if not weather.ok:
                logger.info("Weather feed unavailable; capacity estimates use base values.")
            logger.info("Live snapshot built from {} generation rows.", len(generation.records))
            return CycleResult(snapshot=snapshot, mode=Mode.LIVE, sources=results)

        reasons = "; ".join(
            f"{r.source.value}: {r.error.kind.value}"
            for r in (demand, generation) if r.error is not None
        )
        logger.warning("Core feeds failed ({}); using synthetic data.", reasons)
        return self._fallback(UNAVAILABLE_ADVISORY.format(reasons), results)

    def synthetic_snapshot(self) -> Snapshot:
        """Build a synthetic snapshot without touching the network."""
        return self._aggregator.aggregate(self._model.synthetic_records(self._clock()))

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _fetch_with_policy(self, kind: SourceKind) -> FetchResult:
        """Bounded, retried fetch of one feed; always returns a FetchResult."""
        s = self._settings
        result: Optional[FetchResult] = None
        attempts = max(1, s.max_attempts)
        for attempt in range(1, attempts + 1):
            try:
                result = await asyncio.wait_for(self._client.fetch(kind), timeout=s.source_timeout)
            except asyncio.TimeoutError:
                logger.warning("{} feed timed out after {:.1f}s (attempt {})", kind.value, s.source_timeout, attempt)
                result = FetchResult.failure(
                    kind,
                    FetchError(FetchErrorKind.NETWORK, f"timed out after {s.source_timeout:.1f}s"),
                    latency_ms=s.source_timeout * 1000,
                )

            if result.ok or not result.error.retryable or attempt == attempts:
                return result

            wait = s.retry_backoff * attempt
            logger.info("Retrying {} feed in {:.1f}s…", kind.value, wait)
            await asyncio.sleep(wait)
        return result

    def _fallback(self, advisory: str, sources: dict[SourceKind, FetchResult]) -> CycleResult:
        snapshot = self.synthetic_snapshot()
        return CycleResult(snapshot=snapshot, mode=Mode.SYNTHETIC, error=advisory, sources=sources)
