"""Capture dispatch: turns capture signals into thread dump snapshots."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime
from pathlib import Path

import structlog

from cpu_watchdog.assessor import CaptureSignal
from cpu_watchdog.capture import CaptureResult, run_capture_tool, snapshot_path, write_snapshot
from cpu_watchdog.config import Config
from cpu_watchdog.process import NOT_FOUND, find_pid

log = structlog.get_logger()


class CaptureDispatcher:
    """Consumes capture signals, one capture attempt per signal.

    Failures are logged and never retried. The snapshot file is written even
    when the target was not found or the tool failed, so every firing leaves
    a trace on disk.
    """

    def __init__(
        self,
        config: Config,
        signals: asyncio.Queue[CaptureSignal],
        lookup: Callable[[str], int] = find_pid,
        capture: Callable[[str, int, float], Awaitable[CaptureResult]] = run_capture_tool,
    ) -> None:
        self.config = config
        self._signals = signals
        self._lookup = lookup
        self._capture = capture
        self.capture_count = 0

    async def dispatch(self, when: datetime | None = None) -> Path | None:
        """Capture the target once and persist the output.

        Args:
            when: Timestamp embedded in the snapshot name, defaults to now

        Returns:
            Path of the written snapshot, or None if it could not be written
        """
        target = self.config.target
        capture = self.config.capture

        pid = self._lookup(target.process_name)
        if pid == NOT_FOUND:
            # The tool gets the sentinel anyway and reports the failure itself
            log.warning("target_process_not_found", process_name=target.process_name)

        log.info("capture_started", pid=pid, tool=capture.tool)
        result = await self._capture(capture.tool, pid, capture.timeout_seconds)
        if not result.ok:
            log.warning(
                "capture_incomplete",
                pid=pid,
                returncode=result.returncode,
                error=result.error,
                size=len(result.output),
            )

        path = snapshot_path(
            self.config.store_dir,
            target.pod_name,
            capture.suffix,
            when or datetime.now(),
        )
        written = write_snapshot(path, result.output)
        self.capture_count += 1
        log.info("capture_finished", pid=pid, path=str(path), written=written)
        return path if written else None

    async def run(self) -> None:
        """Wait for signals and dispatch a capture for each, forever."""
        while True:
            signal = await self._signals.get()
            log.info("capture_signal_received", fired_at=signal.fired_at.isoformat())
            try:
                await self.dispatch()
            except Exception as e:
                log.exception("capture_dispatch_failed", error=str(e))
            finally:
                self._signals.task_done()
