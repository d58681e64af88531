"""Logging for cpu-watchdog.

This module provides:
1. Structlog configuration (configure): human-readable console output on
   stderr for the container log, plus optional JSON Lines file output
2. Rich console helpers (info, warn, error) for one-off CLI commands
3. Domain helpers used by the CLI (probe_result, capture_written, etc.)
"""

from __future__ import annotations

import logging
import logging.handlers
import sys
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

import structlog
from rich.console import Console

if TYPE_CHECKING:
    from cpu_watchdog.config import Config

_console = Console(highlight=False)


# ─────────────────────────────────────────────────────────────────────────────
# Icons
# ─────────────────────────────────────────────────────────────────────────────


class Icon:
    """Icon vocabulary for console output."""

    OK = "[bold green]✓[/]"
    FAIL = "[bold red]✗[/]"
    CAPTURE = "📸"
    SAVE = "💾"
    HOT = "[bright_red]▲[/]"
    COOL = "[green]▽[/]"


_LEVEL_STYLES = {
    "info": "[bright_blue]\\[info][/]",
    "warn": "[yellow]\\[warn][/]",
    "error": "[bold red]\\[err][/] ",
}


# ─────────────────────────────────────────────────────────────────────────────
# Core Functions
# ─────────────────────────────────────────────────────────────────────────────


def log(level: str, msg: str, icon: str = "") -> None:
    """Print a log message with timestamp and level.

    Args:
        level: Log level (info, warn, error)
        msg: Message to print (can include Rich markup)
        icon: Optional icon to show after level (e.g., Icon.OK)
    """
    ts = datetime.now().strftime("%H:%M:%S")
    lvl = _LEVEL_STYLES.get(level, f"[{level}]")
    icon_part = f" {icon}" if icon else ""
    _console.print(f"[dim]{ts}[/] {lvl}{icon_part} {msg}")


def info(msg: str, icon: str = "") -> None:
    """Log an info message."""
    log("info", msg, icon)


def warn(msg: str, icon: str = "") -> None:
    """Log a warning message."""
    log("warn", msg, icon)


def error(msg: str, icon: str = "") -> None:
    """Log an error message."""
    log("error", msg, icon)


# ─────────────────────────────────────────────────────────────────────────────
# Domain Helpers
# ─────────────────────────────────────────────────────────────────────────────


def probe_result(pod_name: str, rate: float, threshold: float) -> None:
    """Log a one-off CPU rate probe."""
    if rate >= threshold:
        info(
            f"[cyan]{pod_name}[/] rate [bright_red]{rate:.2f}%[/] "
            f"[dim](threshold {threshold}%, breach)[/]",
            Icon.HOT,
        )
    else:
        info(
            f"[cyan]{pod_name}[/] rate [green]{rate:.2f}%[/] [dim](threshold {threshold}%)[/]",
            Icon.COOL,
        )


def probe_failed(error_msg: str) -> None:
    """Log metrics source unavailable."""
    error(f"Metrics unavailable: {error_msg}", Icon.FAIL)


def capture_written(path: Path, size: int) -> None:
    """Log a snapshot written by a manual capture."""
    info(f"Snapshot written to [cyan]{path}[/] [dim]({size} bytes)[/]", Icon.CAPTURE)


def capture_not_written() -> None:
    """Log a manual capture whose snapshot could not be persisted."""
    error("Snapshot could not be written, see log output", Icon.FAIL)


def config_written(path: Path) -> None:
    """Log config file created."""
    info(f"Wrote config to [cyan]{path}[/]", Icon.SAVE)


def config_exists(path: Path) -> None:
    """Log config file already present."""
    warn(f"Config already exists at [cyan]{path}[/] [dim](use --force to overwrite)[/]")


def config_invalid(error_msg: str) -> None:
    """Log invalid configuration."""
    error(f"Invalid configuration: {error_msg}", Icon.FAIL)


# ─────────────────────────────────────────────────────────────────────────────
# Structlog Configuration
# ─────────────────────────────────────────────────────────────────────────────


def _add_source(source: str) -> structlog.types.Processor:
    """Create a processor that adds a source field to log events."""

    def processor(
        logger: structlog.types.WrappedLogger,
        method_name: str,
        event_dict: structlog.types.EventDict,
    ) -> structlog.types.EventDict:
        event_dict["source"] = source
        return event_dict

    return processor


def configure(config: Config) -> None:
    """Configure structlog with console output and an optional JSON file.

    Console output is human-readable and goes to stderr, which is what the
    container runtime collects. File output uses JSON Lines format for machine
    parsing and is only enabled when `logging.file` is set.

    Timestamps and the `source` field are added per handler at format time,
    so structlog events and plain stdlib records share one schema.

    Args:
        config: Application config with logging settings
    """
    level = getattr(logging, config.logging.level.upper())

    # Runs on stdlib records only; structlog events already went through
    # the chain passed to structlog.configure below
    foreign_pre_chain = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    stdlib_root = logging.getLogger()
    stdlib_root.setLevel(level)
    stdlib_root.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=foreign_pre_chain,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S", utc=False),
                structlog.dev.ConsoleRenderer(),
            ],
        )
    )
    stdlib_root.addHandler(console_handler)

    log_path = config.log_path
    if log_path is not None:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_path,
            maxBytes=config.logging.max_bytes,
            backupCount=config.logging.backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                foreign_pre_chain=foreign_pre_chain,
                processors=[
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    structlog.processors.TimeStamper(fmt="iso", utc=False, key="ts"),
                    _add_source("watchdog"),
                    structlog.processors.JSONRenderer(),
                ],
            )
        )
        stdlib_root.addHandler(file_handler)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
