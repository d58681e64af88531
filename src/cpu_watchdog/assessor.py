"""Sustained-overload assessment.

The assessor samples the target's CPU rate every `interval_seconds` and counts
samples at or above `rate_threshold` ("hits") inside a window of
`window_seconds`. Hits need not be consecutive: a workload under GC pressure
tends to spike intermittently, and a strict streak would miss it.

Once `hit_threshold` hits land in one window a CaptureSignal is queued and the
assessor goes silent for `silent_seconds`. Every exit from silence starts a
fresh window.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

import structlog

from cpu_watchdog.config import AssessmentConfig
from cpu_watchdog.metrics import MetricsUnavailable

log = structlog.get_logger()


class Mode(Enum):
    """Assessor modes."""

    SAMPLING = "sampling"
    SILENT = "silent"


class Verdict(Enum):
    """Outcome of one sampling tick."""

    EXPIRED = "expired"  # Window ran out, evidence discarded
    NO_SAMPLE = "no_sample"  # Fetch failed, neutral
    MISS = "miss"  # Below threshold
    HIT = "hit"  # At or above threshold, not enough hits yet
    FIRE = "fire"  # Hit threshold reached, capture signalled


@dataclass(frozen=True)
class CaptureSignal:
    """Request for one capture of the configured target."""

    fired_at: datetime = field(default_factory=datetime.now)


@dataclass
class AssessmentState:
    """Mutable evidence owned by the assessor loop."""

    window_start: float
    hits: int = 0
    mode: Mode = Mode.SAMPLING

    def reset(self, now: float) -> None:
        """Drop accumulated hits and start a new window at `now`."""
        self.hits = 0
        self.window_start = now


class Assessor:
    """Hit-counting state machine driving capture signals."""

    def __init__(
        self,
        config: AssessmentConfig,
        sample: Callable[[], Awaitable[float]],
        signals: asyncio.Queue[CaptureSignal],
        shutdown: asyncio.Event | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self._sample = sample
        self._signals = signals
        self._shutdown = shutdown or asyncio.Event()
        self._clock = clock
        self.state = AssessmentState(window_start=clock())

    @property
    def mode(self) -> Mode:
        return self.state.mode

    @property
    def hits(self) -> int:
        return self.state.hits

    def update(self, rate: float | None, now: float) -> Verdict:
        """Apply one sample to the state.

        Args:
            rate: CPU rate in percent, or None if the fetch failed
            now: Monotonic time the sample was taken

        Returns:
            What the sample did to the state
        """
        if self.state.mode is not Mode.SAMPLING:
            raise RuntimeError("update() called while silent")

        if now - self.state.window_start >= self.config.window_seconds:
            self.state.reset(now)
            return Verdict.EXPIRED

        if rate is None:
            return Verdict.NO_SAMPLE

        if rate < self.config.rate_threshold:
            return Verdict.MISS

        self.state.hits += 1
        if self.state.hits >= self.config.hit_threshold:
            self.state.reset(now)
            self.state.mode = Mode.SILENT
            return Verdict.FIRE
        return Verdict.HIT

    def end_silence(self, now: float) -> None:
        """Leave silent mode and start a fresh window."""
        self.state.reset(now)
        self.state.mode = Mode.SAMPLING

    async def tick(self) -> Verdict:
        """Take one sample, update state and queue a signal if it fired."""
        rate: float | None
        try:
            rate = await self._sample()
        except MetricsUnavailable as e:
            log.warning("sample_failed", error=str(e))
            rate = None

        verdict = self.update(rate, self._clock())

        if verdict is Verdict.EXPIRED:
            log.info("window_expired", window_seconds=self.config.window_seconds)
        elif verdict is not Verdict.NO_SAMPLE:
            hits = self.config.hit_threshold if verdict is Verdict.FIRE else self.state.hits
            log.info(
                "rate_assessed",
                rate=rate,
                rate_threshold=self.config.rate_threshold,
                hits=hits,
                hit_threshold=self.config.hit_threshold,
            )

        if verdict is Verdict.FIRE:
            signal = CaptureSignal()
            log.info("capture_signalled", fired_at=signal.fired_at.isoformat())
            # Blocks while a previous signal is still waiting for the dispatcher
            await self._signals.put(signal)

        return verdict

    async def _wait(self, seconds: float) -> bool:
        """Sleep for `seconds` unless shutdown is requested first.

        Returns:
            True if shutdown was requested during the wait
        """
        try:
            await asyncio.wait_for(self._shutdown.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False

    async def run(self) -> None:
        """Run the assessment loop until shutdown."""
        while not self._shutdown.is_set():
            if self.state.mode is Mode.SILENT:
                log.info("silence_started", seconds=self.config.silent_seconds)
                if await self._wait(self.config.silent_seconds):
                    break
                self.end_silence(self._clock())
                log.info("silence_ended")
                continue

            try:
                verdict = await self.tick()
            except Exception as e:
                log.exception("assessment_tick_failed", error=str(e))
                verdict = Verdict.NO_SAMPLE

            # An expired window is re-evaluated straight away
            if verdict in (Verdict.EXPIRED, Verdict.FIRE):
                continue

            if await self._wait(self.config.interval_seconds):
                break
