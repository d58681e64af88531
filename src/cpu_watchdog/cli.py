"""CLI commands for cpu-watchdog."""

from pathlib import Path

import click

from cpu_watchdog.config import Config


def _load_config(config_path: Path | None, **overrides) -> Config:
    """Load config from file, apply overrides and validate, exiting on errors."""
    from cpu_watchdog import logging as wlog

    try:
        config = Config.load(config_path).with_overrides(**overrides)
        config.validate()
    except ValueError as e:
        wlog.config_invalid(str(e))
        raise SystemExit(2) from e
    return config


config_option = click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    envvar="WATCHDOG_CONFIG",
    default=None,
    help="Config file (default: ~/.config/cpu-watchdog/config.toml)",
)


def target_options(func):
    """Options identifying the target and metrics source, shared by several commands."""
    options = [
        click.option("--pod-name", envvar="WATCHDOG_POD_NAME", help="Monitored pod name"),
        click.option(
            "--process-name",
            envvar="WATCHDOG_PROCESS_NAME",
            help="Substring of the target executable name",
        ),
        click.option(
            "--cpu-limit", envvar="WATCHDOG_CPU_LIMIT", type=int, help="CPU limit (cores)"
        ),
        click.option("--prometheus-url", envvar="WATCHDOG_PROMETHEUS_URL", help="Prometheus URL"),
        click.option("--store-dir", envvar="WATCHDOG_STORE_DIR", help="Snapshot directory"),
        config_option,
    ]
    for option in reversed(options):
        func = option(func)
    return func


@click.group()
@click.version_option(package_name="cpu-watchdog")
def main() -> None:
    """Capture thread dumps when a process stays CPU-hot."""
    pass


@main.command()
@target_options
@click.option("--hit-threshold", envvar="WATCHDOG_HIT_THRESHOLD", type=int)
@click.option("--rate-threshold", envvar="WATCHDOG_RATE_THRESHOLD", type=float)
@click.option("--window-seconds", envvar="WATCHDOG_WINDOW_SECONDS", type=float)
@click.option("--interval-seconds", envvar="WATCHDOG_INTERVAL_SECONDS", type=float)
@click.option("--silent-seconds", envvar="WATCHDOG_SILENT_SECONDS", type=float)
def run(
    config_path: Path | None,
    pod_name: str | None,
    process_name: str | None,
    cpu_limit: int | None,
    prometheus_url: str | None,
    store_dir: str | None,
    hit_threshold: int | None,
    rate_threshold: float | None,
    window_seconds: float | None,
    interval_seconds: float | None,
    silent_seconds: float | None,
) -> None:
    """Run the watchdog until SIGTERM/SIGINT."""
    import asyncio

    from cpu_watchdog import logging as wlog
    from cpu_watchdog.daemon import run_watchdog

    config = _load_config(
        config_path,
        target__pod_name=pod_name,
        target__process_name=process_name,
        target__cpu_limit=cpu_limit,
        prometheus__url=prometheus_url,
        capture__store_dir=store_dir,
        assessment__hit_threshold=hit_threshold,
        assessment__rate_threshold=rate_threshold,
        assessment__window_seconds=window_seconds,
        assessment__interval_seconds=interval_seconds,
        assessment__silent_seconds=silent_seconds,
    )
    wlog.configure(config)
    asyncio.run(run_watchdog(config))


@main.command()
@target_options
def probe(
    config_path: Path | None,
    pod_name: str | None,
    process_name: str | None,
    cpu_limit: int | None,
    prometheus_url: str | None,
    store_dir: str | None,
) -> None:
    """Fetch the current CPU rate once and compare it to the threshold."""
    import asyncio

    from cpu_watchdog import logging as wlog
    from cpu_watchdog.metrics import MetricsUnavailable, PrometheusClient

    config = _load_config(
        config_path,
        target__pod_name=pod_name,
        target__process_name=process_name,
        target__cpu_limit=cpu_limit,
        prometheus__url=prometheus_url,
        capture__store_dir=store_dir,
    )

    async def _probe() -> float:
        client = PrometheusClient(config.prometheus)
        try:
            return await client.current_rate(config.target)
        finally:
            await client.aclose()

    try:
        rate = asyncio.run(_probe())
    except MetricsUnavailable as e:
        wlog.probe_failed(str(e))
        raise SystemExit(1) from e

    wlog.probe_result(config.target.pod_name, rate, config.assessment.rate_threshold)


@main.command()
@target_options
def capture(
    config_path: Path | None,
    pod_name: str | None,
    process_name: str | None,
    cpu_limit: int | None,
    prometheus_url: str | None,
    store_dir: str | None,
) -> None:
    """Take one thread dump of the target now."""
    import asyncio

    from cpu_watchdog import logging as wlog
    from cpu_watchdog.dispatcher import CaptureDispatcher

    config = _load_config(
        config_path,
        target__pod_name=pod_name,
        target__process_name=process_name,
        target__cpu_limit=cpu_limit,
        prometheus__url=prometheus_url,
        capture__store_dir=store_dir,
    )

    dispatcher = CaptureDispatcher(config, asyncio.Queue(maxsize=1))
    path = asyncio.run(dispatcher.dispatch())
    if path is None:
        wlog.capture_not_written()
        raise SystemExit(1)
    wlog.capture_written(path, path.stat().st_size)


@main.group()
def config() -> None:
    """Manage configuration."""
    pass


@config.command("show")
@config_option
def config_show(config_path: Path | None) -> None:
    """Display the effective configuration."""
    from dataclasses import fields

    cfg = _load_config(config_path)
    path = config_path or cfg.config_path

    click.echo(f"Config file: {path}")
    click.echo(f"Exists: {path.exists()}")
    for section in ("target", "assessment", "prometheus", "capture", "logging"):
        values = getattr(cfg, section)
        click.echo()
        click.echo(f"[{section}]")
        for f in fields(values):
            click.echo(f"  {f.name} = {getattr(values, f.name)!r}")


@config.command("init")
@config_option
@click.option("--force", is_flag=True, help="Overwrite an existing config file")
def config_init(config_path: Path | None, force: bool) -> None:
    """Write the default configuration to the config file."""
    from cpu_watchdog import logging as wlog

    cfg = Config()
    path = config_path or cfg.config_path
    if path.exists() and not force:
        wlog.config_exists(path)
        raise SystemExit(1)
    cfg.save(path)
    wlog.config_written(path)


if __name__ == "__main__":
    main()
