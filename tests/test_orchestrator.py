# tests/test_orchestrator.py

import asyncio
import random
from dataclasses import replace

import pytest

from conftest import NOON, TEST_SETTINGS, WEATHER_JSON, make_records
from gridlens.errors import FetchError, FetchErrorKind
from gridlens.models import Mode
from gridlens.orchestrator import FallbackOrchestrator
from gridlens.sources import FetchResult, SourceKind, parse_weather_json
from gridlens.synthetic import SyntheticModel


LIVE = make_records()


def ok(kind):
    if kind is SourceKind.DEMAND:
        return FetchResult(kind, records=LIVE.demand, latency_ms=12.0)
    if kind is SourceKind.GENERATION:
        return FetchResult(kind, records=LIVE.generation, latency_ms=15.0)
    return FetchResult(kind, records=(), latency_ms=9.0)


def failed(kind, error_kind=FetchErrorKind.NETWORK, status_code=None):
    return FetchResult.failure(kind, FetchError(error_kind, "boom", status_code=status_code))


class FakeClient:
    """Scripted RawSourceClient: one queued outcome per call and feed."""

    def __init__(self, **scripts):
        self.scripts = {SourceKind(k): list(v) for k, v in scripts.items()}
        self.calls = {kind: 0 for kind in SourceKind}

    async def fetch(self, kind):
        self.calls[kind] += 1
        queue = self.scripts.get(kind) or [ok(kind)]
        outcome = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(outcome, Exception):
            raise outcome
        if callable(outcome):
            return await outcome(kind)
        return outcome


def _orchestrator(client, **settings):
    return FallbackOrchestrator(
        client,
        model=SyntheticModel(random.Random(1)),
        settings=replace(TEST_SETTINGS, **settings),
        clock=lambda: NOON,
    )


def _run(orchestrator):
    return asyncio.run(orchestrator.run())


def _assert_valid_snapshot(snap):
    assert snap.energy_mix
    stamps = [p.timestamp for p in snap.energy_mix]
    assert stamps == sorted(stamps)
    assert 0 <= snap.grid_overview.renewable_percentage <= 100
    assert snap.grid_overview.carbon_intensity >= 0
    assert snap.grid_overview.total_demand > 0
    assert 50 <= snap.grid_status.stability <= 100


def test_live_when_core_feeds_arrive():
    result = _run(_orchestrator(FakeClient()))
    assert result.mode is Mode.LIVE
    assert result.error is None
    assert result.snapshot.grid_overview.total_generation == pytest.approx(18900.0)
    assert set(result.sources) == set(SourceKind)


def test_weather_failure_keeps_live_mode():
    client = FakeClient(weather=[failed(SourceKind.WEATHER, FetchErrorKind.PARSE_ERROR)])
    result = _run(_orchestrator(client))
    assert result.mode is Mode.LIVE
    assert result.snapshot.renewable_progress.solar_capacity == 4000.0


def test_both_core_feeds_failing_falls_back():
    client = FakeClient(
        demand=[failed(SourceKind.DEMAND)],
        generation=[failed(SourceKind.GENERATION, FetchErrorKind.BAD_STATUS, 404)],
    )
    result = _run(_orchestrator(client))
    assert result.mode is Mode.SYNTHETIC
    assert "unavailable" in result.error
    assert "demand: network" in result.error
    assert "generation: badStatus" in result.error
    _assert_valid_snapshot(result.snapshot)
    assert len(result.snapshot.energy_mix) == 24


def test_demand_failure_alone_falls_back():
    client = FakeClient(demand=[failed(SourceKind.DEMAND, FetchErrorKind.PARSE_ERROR)])
    result = _run(_orchestrator(client))
    assert result.mode is Mode.SYNTHETIC
    assert "unavailable" in result.error
    assert "generation" not in result.error
    _assert_valid_snapshot(result.snapshot)


def test_empty_generation_feed_falls_back_on_aggregation():
    client = FakeClient(generation=[FetchResult(SourceKind.GENERATION, records=())])
    result = _run(_orchestrator(client))
    assert result.mode is Mode.SYNTHETIC
    assert "aggregation" in result.error


def test_unexpected_exception_counts_as_network_failure():
    client = FakeClient(generation=[RuntimeError("kaboom")])
    result = _run(_orchestrator(client))
    assert result.mode is Mode.SYNTHETIC
    assert result.sources[SourceKind.GENERATION].error.kind is FetchErrorKind.NETWORK
    assert result.sources[SourceKind.DEMAND].ok


def test_hung_feed_times_out_without_blocking_the_others():
    async def hang(kind):
        await asyncio.sleep(10)
        return ok(kind)

    client = FakeClient(demand=[hang])
    result = _run(_orchestrator(client, source_timeout=0.05))
    assert result.mode is Mode.SYNTHETIC
    assert result.sources[SourceKind.DEMAND].error.kind is FetchErrorKind.NETWORK
    assert "timed out" in result.sources[SourceKind.DEMAND].error.detail
    assert result.sources[SourceKind.GENERATION].ok


def test_server_errors_are_retried():
    client = FakeClient(
        demand=[failed(SourceKind.DEMAND, FetchErrorKind.BAD_STATUS, 503), ok(SourceKind.DEMAND)],
    )
    result = _run(_orchestrator(client, max_attempts=2))
    assert result.mode is Mode.LIVE
    assert client.calls[SourceKind.DEMAND] == 2
    assert client.calls[SourceKind.GENERATION] == 1


def test_client_errors_and_parse_errors_are_not_retried():
    client = FakeClient(
        demand=[failed(SourceKind.DEMAND, FetchErrorKind.BAD_STATUS, 404), ok(SourceKind.DEMAND)],
        generation=[failed(SourceKind.GENERATION, FetchErrorKind.PARSE_ERROR), ok(SourceKind.GENERATION)],
    )
    result = _run(_orchestrator(client, max_attempts=3))
    assert result.mode is Mode.SYNTHETIC
    assert client.calls[SourceKind.DEMAND] == 1
    assert client.calls[SourceKind.GENERATION] == 1


def test_attempts_are_bounded():
    client = FakeClient(demand=[failed(SourceKind.DEMAND)])
    result = _run(_orchestrator(client, max_attempts=3))
    assert result.mode is Mode.SYNTHETIC
    assert client.calls[SourceKind.DEMAND] == 3


def test_synthetic_snapshot_needs_no_client():
    snap = _orchestrator(FakeClient()).synthetic_snapshot()
    _assert_valid_snapshot(snap)
    assert snap.energy_mix[-1].timestamp == NOON


def test_live_snapshot_uses_weather_when_present():
    weather = parse_weather_json(WEATHER_JSON)
    client = FakeClient(weather=[FetchResult(SourceKind.WEATHER, records=weather)])
    result = _run(_orchestrator(client))
    assert result.mode is Mode.LIVE
    assert result.snapshot.renewable_progress.solar_capacity == pytest.approx(3600.0)
