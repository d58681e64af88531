"""Watchdog daemon: runs the assessor and the capture dispatcher side by side."""

import asyncio
import signal
from dataclasses import dataclass
from datetime import datetime

import structlog

from cpu_watchdog.assessor import Assessor, CaptureSignal
from cpu_watchdog.config import Config
from cpu_watchdog.dispatcher import CaptureDispatcher
from cpu_watchdog.metrics import PrometheusClient

log = structlog.get_logger()


@dataclass
class WatchdogState:
    """Runtime counters of the watchdog, reported on shutdown."""

    running: bool = False
    sample_count: int = 0
    failed_samples: int = 0
    last_rate: float | None = None
    last_sample_time: datetime | None = None

    def record_sample(self, rate: float) -> None:
        """Update state after a successful sample."""
        self.sample_count += 1
        self.last_rate = rate
        self.last_sample_time = datetime.now()

    def record_failure(self) -> None:
        """Update state after a failed sample."""
        self.sample_count += 1
        self.failed_samples += 1


class Watchdog:
    """Owns the signal channel and both long-running tasks."""

    def __init__(self, config: Config, metrics: PrometheusClient | None = None):
        self.config = config
        self.state = WatchdogState()
        self.metrics = metrics or PrometheusClient(config.prometheus)

        # One slot: a second firing waits until the dispatcher takes the first
        self.signals: asyncio.Queue[CaptureSignal] = asyncio.Queue(maxsize=1)
        self._shutdown_event = asyncio.Event()

        self.assessor = Assessor(
            config.assessment,
            sample=self._sample,
            signals=self.signals,
            shutdown=self._shutdown_event,
        )
        self.dispatcher = CaptureDispatcher(config, self.signals)

        self._tasks: list[asyncio.Task] = []
        self._installed_signals: list[signal.Signals] = []

    async def _sample(self) -> float:
        """Fetch the current rate, keeping runtime counters up to date."""
        try:
            rate = await self.metrics.current_rate(self.config.target)
        except Exception:
            self.state.record_failure()
            raise
        self.state.record_sample(rate)
        return rate

    def _handle_signal(self, sig: signal.Signals) -> None:
        """Handle shutdown signals."""
        log.info("signal_received", signal=sig.name)
        self._shutdown_event.set()

    async def start(self) -> None:
        """Start both tasks and block until shutdown."""
        from importlib.metadata import version

        target = self.config.target
        assessment = self.config.assessment
        log.info("watchdog_starting", version=version("cpu-watchdog"))
        log.info(
            "watchdog_config",
            pod=target.pod_name,
            process_name=target.process_name,
            cpu_limit=target.cpu_limit,
            hit_threshold=assessment.hit_threshold,
            rate_threshold=assessment.rate_threshold,
            window_seconds=assessment.window_seconds,
            interval_seconds=assessment.interval_seconds,
            silent_seconds=assessment.silent_seconds,
            store_dir=str(self.config.store_dir),
        )

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda s=sig: self._handle_signal(s))
            self._installed_signals.append(sig)

        self.state.running = True
        self._tasks = [
            asyncio.create_task(self.assessor.run(), name="assessor"),
            asyncio.create_task(self.dispatcher.run(), name="dispatcher"),
        ]
        log.info("watchdog_started")

        await self._shutdown_event.wait()

    async def stop(self) -> None:
        """Stop the watchdog gracefully."""
        log.info("watchdog_stopping")
        self.state.running = False
        self._shutdown_event.set()

        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []

        loop = asyncio.get_running_loop()
        for sig in self._installed_signals:
            loop.remove_signal_handler(sig)
        self._installed_signals = []

        await self.metrics.aclose()

        log.info(
            "watchdog_stopped",
            samples=self.state.sample_count,
            failed_samples=self.state.failed_samples,
            captures=self.dispatcher.capture_count,
            last_rate=self.state.last_rate,
        )


async def run_watchdog(config: Config) -> None:
    """Run the watchdog until SIGTERM/SIGINT."""
    watchdog = Watchdog(config)

    try:
        await watchdog.start()
    except Exception as e:
        log.exception("watchdog_crashed", error=str(e))
        raise
    finally:
        await watchdog.stop()
