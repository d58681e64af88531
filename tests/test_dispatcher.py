"""Tests for the capture dispatcher."""

import asyncio
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from cpu_watchdog.assessor import CaptureSignal
from cpu_watchdog.capture import CaptureResult
from cpu_watchdog.config import Config
from cpu_watchdog.dispatcher import CaptureDispatcher
from cpu_watchdog.process import NOT_FOUND

WHEN = datetime(2024, 1, 15, 10, 30, 45, tzinfo=timezone.utc)


def make_dispatcher(
    config: Config,
    pid: int = 42,
    result: CaptureResult | None = None,
    signals: asyncio.Queue | None = None,
) -> tuple[CaptureDispatcher, AsyncMock]:
    """Create a dispatcher with a fixed lookup and a mocked capture tool."""
    capture = AsyncMock(return_value=result or CaptureResult(output=b"dump", returncode=0))
    dispatcher = CaptureDispatcher(
        config,
        signals if signals is not None else asyncio.Queue(maxsize=1),
        lookup=lambda name: pid,
        capture=capture,
    )
    return dispatcher, capture


@pytest.mark.asyncio
async def test_dispatch_writes_snapshot(config: Config, store_dir: Path):
    dispatcher, capture = make_dispatcher(config)

    path = await dispatcher.dispatch(when=WHEN)

    assert path is not None
    assert path.parent == store_dir
    assert path.name.startswith("web-0-")
    assert path.name.endswith("-jstack.txt")
    assert path.read_bytes() == b"dump"
    capture.assert_awaited_once_with("jstack", 42, config.capture.timeout_seconds)
    assert dispatcher.capture_count == 1


@pytest.mark.asyncio
async def test_dispatch_passes_not_found_sentinel_to_tool(config: Config):
    dispatcher, capture = make_dispatcher(
        config,
        pid=NOT_FOUND,
        result=CaptureResult(output=b"", returncode=1, error="-1 not found"),
    )

    path = await dispatcher.dispatch(when=WHEN)

    capture.assert_awaited_once_with("jstack", -1, config.capture.timeout_seconds)
    assert path is not None
    assert path.exists()
    assert path.read_bytes() == b""


@pytest.mark.asyncio
async def test_dispatch_persists_partial_output_of_failed_tool(config: Config):
    dispatcher, _ = make_dispatcher(
        config,
        result=CaptureResult(output=b"partial", returncode=1, error="exit status 1"),
    )

    path = await dispatcher.dispatch(when=WHEN)

    assert path is not None
    assert path.read_bytes() == b"partial"


@pytest.mark.asyncio
async def test_dispatch_returns_none_when_write_fails(config: Config, tmp_path: Path):
    blocker = tmp_path / "blocker"
    blocker.write_text("file")
    config = replace(config, capture=replace(config.capture, store_dir=str(blocker / "logs")))
    dispatcher, _ = make_dispatcher(config)

    assert await dispatcher.dispatch(when=WHEN) is None


@pytest.mark.asyncio
@pytest.mark.parametrize("broken", ["under_file", "bad_format"])
async def test_dispatch_writes_snapshot_when_tool_cannot_start(
    config: Config, store_dir: Path, tmp_path: Path, broken: str
):
    """Spawn errors still leave an (empty) snapshot on disk."""
    if broken == "under_file":
        blocker = tmp_path / "bin"
        blocker.write_text("not a directory")
        tool = blocker / "jstack"
    else:
        tool = tmp_path / "jstack"
        tool.write_bytes(b"\x00\x01\x02garbage\xff")
        tool.chmod(0o755)
    config = replace(config, capture=replace(config.capture, tool=str(tool)))
    dispatcher = CaptureDispatcher(
        config, asyncio.Queue(maxsize=1), lookup=lambda name: 4242
    )

    path = await dispatcher.dispatch(when=WHEN)

    assert path is not None
    assert path.parent == store_dir
    assert path.read_bytes() == b""
    assert dispatcher.capture_count == 1


@pytest.mark.asyncio
async def test_dispatch_uses_configured_tool_and_suffix(config: Config, store_dir: Path):
    config = replace(config, capture=replace(config.capture, tool="jcmd", suffix="threads"))
    dispatcher, capture = make_dispatcher(config)

    path = await dispatcher.dispatch(when=WHEN)

    assert path is not None
    assert path.name.endswith("-threads.txt")
    assert capture.await_args.args[0] == "jcmd"


@pytest.mark.asyncio
async def test_run_dispatches_once_per_signal(config: Config, store_dir: Path):
    signals: asyncio.Queue[CaptureSignal] = asyncio.Queue(maxsize=1)
    dispatcher, capture = make_dispatcher(config, signals=signals)

    task = asyncio.create_task(dispatcher.run())
    try:
        await signals.put(CaptureSignal())
        await asyncio.wait_for(signals.join(), timeout=1.0)
        assert capture.await_count == 1
        assert dispatcher.capture_count == 1
        assert len(list(store_dir.iterdir())) == 1
    finally:
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task


@pytest.mark.asyncio
async def test_run_survives_dispatch_errors(config: Config):
    signals: asyncio.Queue[CaptureSignal] = asyncio.Queue(maxsize=1)
    dispatcher, capture = make_dispatcher(config, signals=signals)
    capture.side_effect = [
        RuntimeError("boom"),
        CaptureResult(output=b"dump", returncode=0),
    ]

    task = asyncio.create_task(dispatcher.run())
    try:
        await signals.put(CaptureSignal())
        await signals.put(CaptureSignal())
        await asyncio.wait_for(signals.join(), timeout=1.0)
        assert capture.await_count == 2
        assert dispatcher.capture_count == 1
    finally:
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
