"""Tests for thread dump capture and snapshot persistence."""

from datetime import datetime, timezone
from pathlib import Path

import pytest

from cpu_watchdog.capture import (
    CaptureResult,
    run_capture_tool,
    snapshot_path,
    write_snapshot,
)


def write_script(path: Path, body: str) -> str:
    """Write an executable shell script standing in for the capture tool."""
    path.write_text(f"#!/bin/sh\n{body}\n")
    path.chmod(0o755)
    return str(path)


# === snapshot_path ===


def test_snapshot_path_layout(tmp_path: Path):
    when = datetime(2024, 1, 15, 10, 30, 45, 123456, tzinfo=timezone.utc)
    path = snapshot_path(tmp_path, "web-0", "jstack", when)

    expected_ts = when.astimezone().isoformat(timespec="seconds")
    assert path.parent == tmp_path
    assert path.name == f"web-0-{expected_ts}-jstack.txt"


def test_snapshot_path_has_second_precision(tmp_path: Path):
    when = datetime(2024, 1, 15, 10, 30, 45, 999999, tzinfo=timezone.utc)
    name = snapshot_path(tmp_path, "web-0", "jstack", when).name
    assert ".999999" not in name
    assert name.count(".") == 1


def test_snapshot_path_distinct_per_second(tmp_path: Path):
    first = datetime(2024, 1, 15, 10, 30, 45, tzinfo=timezone.utc)
    second = datetime(2024, 1, 15, 10, 30, 46, tzinfo=timezone.utc)
    assert snapshot_path(tmp_path, "p", "s", first) != snapshot_path(tmp_path, "p", "s", second)


# === CaptureResult ===


def test_capture_result_ok():
    assert CaptureResult(output=b"x", returncode=0).ok
    assert not CaptureResult(output=b"x", returncode=1, error="exit status 1").ok
    assert not CaptureResult(output=b"", returncode=None, error="missing").ok


# === run_capture_tool ===


@pytest.mark.asyncio
async def test_run_capture_tool_passes_pid_and_collects_stdout(tmp_path: Path):
    tool = write_script(tmp_path / "fakestack", 'echo "Full thread dump for $1"')

    result = await run_capture_tool(tool, 4242)

    assert result.ok
    assert result.returncode == 0
    assert result.output == b"Full thread dump for 4242\n"


@pytest.mark.asyncio
async def test_run_capture_tool_keeps_output_on_failure(tmp_path: Path):
    tool = write_script(
        tmp_path / "fakestack",
        'echo "partial dump"\necho "attach failed" >&2\nexit 3',
    )

    result = await run_capture_tool(tool, -1)

    assert not result.ok
    assert result.returncode == 3
    assert result.output == b"partial dump\n"
    assert result.error == "attach failed"


@pytest.mark.asyncio
async def test_run_capture_tool_failure_without_stderr(tmp_path: Path):
    tool = write_script(tmp_path / "fakestack", "exit 1")

    result = await run_capture_tool(tool, 1)

    assert result.output == b""
    assert result.error == "exit status 1"


@pytest.mark.asyncio
async def test_run_capture_tool_missing_binary(tmp_path: Path):
    result = await run_capture_tool(str(tmp_path / "no-such-tool"), 1)

    assert result.output == b""
    assert result.returncode is None
    assert result.error


@pytest.mark.asyncio
async def test_run_capture_tool_path_through_regular_file(tmp_path: Path):
    blocker = tmp_path / "bin"
    blocker.write_text("not a directory")

    result = await run_capture_tool(str(blocker / "jstack"), 1)

    assert result.output == b""
    assert result.returncode is None
    assert result.error


@pytest.mark.asyncio
async def test_run_capture_tool_unexecutable_format(tmp_path: Path):
    tool = tmp_path / "jstack"
    tool.write_bytes(b"\x00\x01\x02garbage\xff")
    tool.chmod(0o755)

    result = await run_capture_tool(str(tool), 1)

    assert result.output == b""
    assert result.returncode is None
    assert result.error


@pytest.mark.asyncio
async def test_run_capture_tool_times_out(tmp_path: Path):
    tool = write_script(tmp_path / "fakestack", "exec sleep 5")

    result = await run_capture_tool(tool, 1, timeout=0.2)

    assert result.output == b""
    assert result.returncode is None
    assert "timed out" in (result.error or "")


# === write_snapshot ===


def test_write_snapshot_creates_directory(tmp_path: Path):
    path = tmp_path / "logs" / "nested" / "snap.txt"

    assert write_snapshot(path, b"dump") is True
    assert path.read_bytes() == b"dump"


def test_write_snapshot_empty_output(tmp_path: Path):
    path = tmp_path / "snap.txt"

    assert write_snapshot(path, b"") is True
    assert path.exists()
    assert path.stat().st_size == 0


def test_write_snapshot_failure_returns_false(tmp_path: Path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("file")

    assert write_snapshot(blocker / "snap.txt", b"dump") is False
