"""
GridLens — Refresh Scheduler
Owns the current Mode and the pending refresh timer, runs the orchestrator on
an adaptive cadence and publishes the result to consumers.

Cadence
-------
  live mode        every 300 s   (IESO charts update every five minutes)
  synthetic mode   every   5 s   (cheap, and keeps a demo feeling live)

The first cycle runs as soon as ``start()`` is awaited.  After every cycle
the outstanding timer is cancelled and a new one armed with the interval of
the mode that cycle produced, so a live→synthetic switch never waits out the
remainder of a five-minute timer.

``stop()`` cancels the pending timer.  A cycle already in flight finishes,
but its result is dropped rather than published.

Timer and clock are injectable: tests hand in a fake timer they fire by
hand instead of sleeping.
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime
from typing import Awaitable, Callable, Optional, Protocol

from loguru import logger

from gridlens.config import Settings
from gridlens.models import Mode, PublishedState
from gridlens.orchestrator import FallbackOrchestrator
from gridlens.sources import FetchResult, SourceKind

Listener = Callable[[PublishedState], None]


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], Awaitable[None]]], TimerHandle]


class _LoopTimerHandle:
    def __init__(self, loop: asyncio.AbstractEventLoop, delay: float,
                 callback: Callable[[], Awaitable[None]]) -> None:
        self._loop     = loop
        self._callback = callback
        self._task: Optional[asyncio.Task] = None
        self._handle   = loop.call_later(delay, self._fire)

    def _fire(self) -> None:
        self._task = self._loop.create_task(self._callback())

    def cancel(self) -> None:
        # Only the wait is cancelled; a cycle that already started runs to completion.
        self._handle.cancel()


class LoopTimer:
    """Default timer backed by ``loop.call_later``."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop or asyncio.get_running_loop()

    def __call__(self, delay: float, callback: Callable[[], Awaitable[None]]) -> TimerHandle:
        return _LoopTimerHandle(self._loop, delay, callback)


class RefreshScheduler:
    """
    Drives the refresh loop and publishes ``PublishedState``.

    Parameters
    ----------
    orchestrator:
        Produces one CycleResult per call to ``run()``.
    settings:
        Supplies the live and synthetic intervals.
    timer:
        ``(delay, callback) -> handle``; defaults to a ``LoopTimer`` on the
        running loop, created in ``start()``.
    clock:
        Source of the ``last_updated`` timestamp.
    """

    def __init__(
        self,
        orchestrator: FallbackOrchestrator,
        settings: Optional[Settings] = None,
        timer: Optional[TimerFactory] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._settings     = settings or Settings()
        self._timer        = timer
        self._clock        = clock or (lambda: datetime.now(tz=self._settings.timezone))

        self._mode      = Mode.LIVE
        self._pending:  Optional[TimerHandle] = None
        self._listeners: list[Listener] = []
        self._started   = False
        self._stopped   = False
        self._in_flight = False
        self._sources:  dict[SourceKind, FetchResult] = {}
        self._state     = PublishedState(
            snapshot=None, last_updated=None, mode=self._mode, error=None, is_refreshing=False,
        )

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def state(self) -> PublishedState:
        return self._state

    @property
    def mode(self) -> Mode:
        return self._mode

    @property
    def sources(self) -> dict[SourceKind, FetchResult]:
        """Per-feed outcome of the last completed cycle (empty before the first)."""
        return dict(self._sources)

    @property
    def running(self) -> bool:
        return self._started and not self._stopped

    def interval_for(self, mode: Mode) -> float:
        if mode is Mode.LIVE:
            return self._settings.live_interval
        return self._settings.synthetic_interval

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener for every published state; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Run the first cycle now; later cycles follow on the timer."""
        if self._started:
            return
        self._started = True
        if self._timer is None:
            self._timer = LoopTimer()
        logger.info("Refresh scheduler started.")
        await self._cycle()

    def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        self._cancel_pending()
        logger.info("Refresh scheduler stopped.")

    async def refresh_now(self) -> PublishedState:
        """Cancel the pending timer and refresh immediately."""
        if not self.running:
            return self._state
        self._cancel_pending()
        await self._cycle()
        return self._state

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _on_timer(self) -> None:
        self._pending = None
        await self._cycle()

    async def _cycle(self) -> None:
        if self._stopped or self._in_flight:
            return
        self._in_flight = True
        self._publish(replace(self._state, is_refreshing=True))

        try:
            result = await self._orchestrator.run()
        except Exception as exc:
            # run() contains its own failures; this only guards against bugs.
            logger.opt(exception=exc).error("Refresh cycle failed unexpectedly.")
            result = None
        finally:
            self._in_flight = False

        if self._stopped:
            # Stored, not published: listeners hear nothing after stop().
            self._state = replace(self._state, is_refreshing=False)
            logger.info("Scheduler stopped during refresh; result discarded.")
            return

        if result is None:
            self._publish(replace(self._state, is_refreshing=False,
                                  error="Refresh failed unexpectedly; showing previous data."))
            self._arm()
            return

        if result.mode is not self._mode:
            logger.info("Mode change: {} → {}", self._mode.value, result.mode.value)
        self._mode    = result.mode
        self._sources = dict(result.sources)

        self._publish(
            PublishedState(
                snapshot=result.snapshot,
                last_updated=self._clock(),
                mode=result.mode,
                error=result.error,
                is_refreshing=False,
            )
        )
        self._arm()

    def _arm(self) -> None:
        self._cancel_pending()
        delay = self.interval_for(self._mode)
        self._pending = self._timer(delay, self._on_timer)
        logger.debug("Next refresh in {:.0f}s ({} mode).", delay, self._mode.value)

    def _cancel_pending(self) -> None:
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None

    def _publish(self, state: PublishedState) -> None:
        self._state = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception as exc:
                logger.opt(exception=exc).warning("Snapshot listener raised; ignoring.")
