"""Thread dump capture and snapshot persistence."""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

import structlog

log = structlog.get_logger()


@dataclass
class CaptureResult:
    """Outcome of one capture tool run.

    `output` is whatever the tool wrote to stdout, possibly empty. `returncode`
    is None when the tool never ran to completion (missing binary, timeout).
    """

    output: bytes
    returncode: int | None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and self.error is None


def snapshot_path(store_dir: Path, pod_name: str, suffix: str, when: datetime) -> Path:
    """Build the snapshot file path: `<store_dir>/<pod>-<RFC3339>-<suffix>.txt`."""
    timestamp = when.astimezone().isoformat(timespec="seconds")
    return store_dir / f"{pod_name}-{timestamp}-{suffix}.txt"


async def run_capture_tool(tool: str, pid: int, timeout: float = 60.0) -> CaptureResult:
    """Run `<tool> <pid>` and collect its stdout regardless of exit status.

    Args:
        tool: Capture executable (e.g. jstack)
        pid: Target process ID, passed as the only argument
        timeout: Maximum seconds to wait before killing the tool

    Returns:
        CaptureResult with the captured output
    """
    try:
        process = await asyncio.create_subprocess_exec(
            tool,
            str(pid),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        log.warning("capture_tool_failed", tool=tool, pid=pid, error=str(e))
        return CaptureResult(output=b"", returncode=None, error=str(e))

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        log.warning("capture_tool_timeout", tool=tool, pid=pid, timeout=timeout)
        return CaptureResult(output=b"", returncode=None, error=f"timed out after {timeout}s")

    if process.returncode != 0:
        error_msg = stderr.decode("utf-8", errors="replace").strip()
        log.warning(
            "capture_tool_failed",
            tool=tool,
            pid=pid,
            returncode=process.returncode,
            error=error_msg,
        )
        return CaptureResult(
            output=stdout,
            returncode=process.returncode,
            error=error_msg or f"exit status {process.returncode}",
        )

    return CaptureResult(output=stdout, returncode=0)


def write_snapshot(path: Path, data: bytes) -> bool:
    """Write snapshot bytes to disk.

    Returns:
        True if the file was written, False on any OS error (logged)
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
    except OSError as e:
        log.error("snapshot_write_failed", path=str(path), error=str(e))
        return False
    log.info("snapshot_written", path=str(path), size=len(data))
    return True
