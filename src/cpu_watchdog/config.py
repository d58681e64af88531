"""Configuration system for cpu-watchdog."""

from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

import tomlkit


@dataclass
class TargetConfig:
    """Identity of the monitored workload."""

    pod_name: str = "tuia-algo-engine-normal-prd-8484967c75-b58m5"
    process_name: str = "java"  # Substring matched against executable names
    cpu_limit: int = 8  # Cores; denominator of the usage rate


@dataclass
class AssessmentConfig:
    """Hit-counting thresholds and timing.

    A capture fires once `hit_threshold` samples at or above `rate_threshold`
    land inside one `window_seconds` window. Hits need not be consecutive.
    """

    hit_threshold: int = 5
    rate_threshold: float = 35.0  # Percent of the CPU limit
    window_seconds: float = 120.0
    interval_seconds: float = 15.0  # Seconds between samples
    silent_seconds: float = 120.0  # Cooldown after a capture fires


@dataclass
class PrometheusConfig:
    """Metrics source configuration."""

    url: str = "http://promtheus-0.promtheus-headless.thanos.svc.cluster.local:9090"
    metric: str = "container_cpu_usage_rate"
    timeout_seconds: float = 10.0


@dataclass
class CaptureConfig:
    """Thread dump tool and snapshot destination."""

    tool: str = "jstack"
    store_dir: str = "/root/logs"
    suffix: str = "jstack"
    timeout_seconds: float = 60.0


@dataclass
class LoggingConfig:
    """Log output configuration."""

    level: str = "info"
    file: str = ""  # Empty disables the JSON log file
    max_bytes: int = 5 * 1024 * 1024
    backup_count: int = 3


_SECTIONS = {
    "target": TargetConfig,
    "assessment": AssessmentConfig,
    "prometheus": PrometheusConfig,
    "capture": CaptureConfig,
    "logging": LoggingConfig,
}

_VALID_LEVELS = {"debug", "info", "warning", "error"}


def _dataclass_to_table(obj: object) -> tomlkit.items.Table:
    """Convert a section dataclass instance to a tomlkit Table."""
    table = tomlkit.table()
    for f in fields(obj):  # type: ignore[arg-type]
        table.add(f.name, getattr(obj, f.name))
    return table


def _load_section(name: str, cls: type, data: dict) -> Any:
    """Build a section dataclass from TOML data, using dataclass defaults for missing keys."""
    defaults = cls()
    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        raise ValueError(f"Unknown keys in [{name}]: {sorted(unknown)}")
    values = {}
    for f in fields(cls):
        default = getattr(defaults, f.name)
        value = data.get(f.name, default)
        # tomlkit items unwrap to plain Python values
        if hasattr(value, "unwrap"):
            value = value.unwrap()
        if isinstance(default, float) and isinstance(value, int) and not isinstance(value, bool):
            value = float(value)
        values[f.name] = value
    return cls(**values)


@dataclass
class Config:
    """Main configuration container."""

    target: TargetConfig = field(default_factory=TargetConfig)
    assessment: AssessmentConfig = field(default_factory=AssessmentConfig)
    prometheus: PrometheusConfig = field(default_factory=PrometheusConfig)
    capture: CaptureConfig = field(default_factory=CaptureConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @property
    def config_dir(self) -> Path:
        """Configuration directory."""
        return Path.home() / ".config" / "cpu-watchdog"

    @property
    def config_path(self) -> Path:
        """Path to config file."""
        return self.config_dir / "config.toml"

    @property
    def store_dir(self) -> Path:
        """Directory receiving thread dump snapshots."""
        return Path(self.capture.store_dir)

    @property
    def log_path(self) -> Path | None:
        """JSON log file path, if file logging is enabled."""
        return Path(self.logging.file) if self.logging.file else None

    def validate(self) -> None:
        """Raise ValueError if any value is out of range."""
        t = self.target
        a = self.assessment
        if not t.pod_name:
            raise ValueError("target.pod_name must not be empty")
        if not t.process_name:
            raise ValueError("target.process_name must not be empty")
        if t.cpu_limit <= 0:
            raise ValueError(f"target.cpu_limit must be > 0, got {t.cpu_limit}")
        if a.hit_threshold < 1:
            raise ValueError(f"assessment.hit_threshold must be >= 1, got {a.hit_threshold}")
        for name in ("rate_threshold", "window_seconds", "interval_seconds", "silent_seconds"):
            value = getattr(a, name)
            if value <= 0:
                raise ValueError(f"assessment.{name} must be > 0, got {value}")
        if self.prometheus.timeout_seconds <= 0:
            raise ValueError(
                f"prometheus.timeout_seconds must be > 0, got {self.prometheus.timeout_seconds}"
            )
        if self.capture.timeout_seconds <= 0:
            raise ValueError(
                f"capture.timeout_seconds must be > 0, got {self.capture.timeout_seconds}"
            )
        if not self.capture.tool:
            raise ValueError("capture.tool must not be empty")
        if self.logging.level not in _VALID_LEVELS:
            raise ValueError(
                f"Invalid logging.level: {self.logging.level!r}. Must be one of {_VALID_LEVELS}"
            )

    def with_overrides(self, **overrides: Any) -> "Config":
        """Return a copy with `section__key` overrides applied, skipping None values.

        Example: `config.with_overrides(target__pod_name="web-0")`.
        """
        sections: dict[str, Any] = {}
        for key, value in overrides.items():
            if value is None:
                continue
            section, _, name = key.partition("__")
            if section not in _SECTIONS or not name:
                raise ValueError(f"Invalid override key: {key!r}")
            sections.setdefault(section, {})[name] = value
        updated = {
            section: replace(getattr(self, section), **values)
            for section, values in sections.items()
        }
        return replace(self, **updated)

    def save(self, path: Path | None = None) -> None:
        """Save config to TOML file."""
        path = path or self.config_path
        path.parent.mkdir(parents=True, exist_ok=True)

        doc = tomlkit.document()
        for name in _SECTIONS:
            doc.add(name, _dataclass_to_table(getattr(self, name)))
            doc.add(tomlkit.nl())

        path.write_text(tomlkit.dumps(doc))

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Load config from TOML file, returning defaults for missing values.

        All defaults come from the dataclass definitions, so Config() and
        Config.load() on a missing file are identical.
        """
        defaults = cls()
        path = path or defaults.config_path
        if not path.exists():
            return defaults

        try:
            with open(path) as f:
                data = tomlkit.load(f)
        except tomlkit.exceptions.TOMLKitError as e:
            raise ValueError(f"Failed to parse config file {path}: {e}") from e

        config = cls(
            **{
                name: _load_section(name, section, data.get(name, {}))
                for name, section in _SECTIONS.items()
            }
        )
        config.validate()
        return config
