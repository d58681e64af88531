"""Shared test fixtures for cpu-watchdog."""

from pathlib import Path

import pytest

from cpu_watchdog.config import AssessmentConfig, CaptureConfig, Config, TargetConfig


@pytest.fixture
def store_dir(tmp_path: Path) -> Path:
    """Snapshot directory inside the test's tmp path."""
    return tmp_path / "snapshots"


@pytest.fixture
def config(store_dir: Path) -> Config:
    """Config with fast timings and a temporary snapshot directory."""
    return Config(
        target=TargetConfig(pod_name="web-0", process_name="java", cpu_limit=8),
        assessment=AssessmentConfig(
            hit_threshold=2,
            rate_threshold=35.0,
            window_seconds=10.0,
            interval_seconds=0.01,
            silent_seconds=0.2,
        ),
        capture=CaptureConfig(tool="jstack", store_dir=str(store_dir), suffix="jstack"),
    )
