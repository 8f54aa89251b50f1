"""Configuration system for cpu-energy-exporter."""

import math
import os
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path

import tomlkit

from cpu_energy_exporter.errors import ConfigError

CONFIG_ENV_VAR = "CPU_ENERGY_EXPORTER_CONFIG"
LOG_LEVELS = ("debug", "info", "warning", "error")


def parse_address(address: str) -> tuple[str, int]:
    """Split ``host:port`` (or ``[v6host]:port``) into its parts.

    Raises:
        ValueError: If the address has no host or port, or the port is invalid.
    """
    host, sep, port_str = address.rpartition(":")
    if not sep or not host:
        raise ValueError(f"Invalid address {address!r}: expected host:port")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    try:
        port = int(port_str)
    except ValueError:
        raise ValueError(f"Invalid port in address {address!r}: {port_str!r}") from None
    if not 0 <= port <= 65535:
        raise ValueError(f"Port out of range in address {address!r}: {port}")
    return host, port


@dataclass
class ExporterConfig:
    """Metrics endpoint configuration."""

    metrics_address: str = "127.0.0.1:9090"  # host:port to serve /metrics and /ready on

    def bind_address(self) -> tuple[str, int]:
        """Return the parsed ``(host, port)`` of metrics_address."""
        return parse_address(self.metrics_address)


@dataclass
class SamplingConfig:
    """Process sampling configuration."""

    collection_interval: int = 100  # Milliseconds between sampling passes
    heartbeat_passes: int = 600  # Log heartbeat every N passes (~1 min at 100ms)
    proc_root: str = "/proc"

    @property
    def interval_seconds(self) -> float:
        """Sampling period in seconds."""
        return self.collection_interval / 1000


@dataclass
class PowerConfig:
    """Energy model configuration.

    average_die_power can be taken as the CPU's TDP when the host is well
    utilised (most cores active at close to their upper frequency).
    """

    average_die_power: float = 35.0  # Watts


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "info"
    json_file: bool = False  # Also write JSON Lines to log_path
    max_bytes: int = 5 * 1024 * 1024  # Max log file size (5MB)
    backup_count: int = 3  # Number of backup log files to keep


def _dataclass_to_table(obj: object) -> tomlkit.items.Table:
    """Convert a dataclass instance to a tomlkit Table recursively."""
    table = tomlkit.table()
    for f in fields(obj):  # type: ignore[arg-type]
        value = getattr(obj, f.name)
        if is_dataclass(value) and not isinstance(value, type):
            table.add(f.name, _dataclass_to_table(value))
        else:
            table.add(f.name, value)
    return table


def default_config_path() -> Path:
    """Config file path, honouring the CPU_ENERGY_EXPORTER_CONFIG override."""
    override = os.environ.get(CONFIG_ENV_VAR)
    if override:
        return Path(override)
    return Path.home() / ".config" / "cpu-energy-exporter" / "config.toml"


@dataclass
class Config:
    """Main configuration container."""

    exporter: ExporterConfig = field(default_factory=ExporterConfig)
    sampling: SamplingConfig = field(default_factory=SamplingConfig)
    power: PowerConfig = field(default_factory=PowerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @property
    def config_path(self) -> Path:
        """Path to config file."""
        return default_config_path()

    @property
    def state_dir(self) -> Path:
        """State directory for logs."""
        return Path.home() / ".local" / "state" / "cpu-energy-exporter"

    @property
    def log_path(self) -> Path:
        """JSON log file path."""
        return self.state_dir / "exporter.log"

    def validate(self) -> None:
        """Check value ranges.

        Raises:
            ConfigError: If any value is out of range.
        """
        _validate_exporter(self.exporter)
        _validate_sampling(self.sampling)
        _validate_power(self.power)
        _validate_logging(self.logging)

    def save(self, path: Path | None = None) -> None:
        """Save config to TOML file."""
        path = path or self.config_path
        path.parent.mkdir(parents=True, exist_ok=True)

        doc = tomlkit.document()
        for name in ("exporter", "sampling", "power", "logging"):
            doc.add(name, _dataclass_to_table(getattr(self, name)))
            doc.add(tomlkit.nl())

        path.write_text(tomlkit.dumps(doc))

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Load config from TOML file, returning defaults for missing values.

        All defaults come from the dataclass definitions, so Config() and
        Config.load() of a missing file are identical.

        Raises:
            ConfigError: If the file cannot be parsed or holds invalid values.
        """
        defaults = cls()
        path = path or defaults.config_path
        if not path.exists():
            return defaults

        try:
            with open(path) as f:
                data = tomlkit.load(f)
        except tomlkit.exceptions.TOMLKitError as e:
            raise ConfigError(f"Failed to parse config file {path}: {e}") from e

        exporter_data = _section(data, "exporter")
        sampling_data = _section(data, "sampling")
        power_data = _section(data, "power")
        logging_data = _section(data, "logging")

        exp_defaults = defaults.exporter
        smp_defaults = defaults.sampling
        pwr_defaults = defaults.power
        log_defaults = defaults.logging

        config = cls(
            exporter=ExporterConfig(
                metrics_address=_get_str(
                    exporter_data, "metrics_address", exp_defaults.metrics_address
                ),
            ),
            sampling=SamplingConfig(
                collection_interval=_get_int(
                    sampling_data, "collection_interval", smp_defaults.collection_interval
                ),
                heartbeat_passes=_get_int(
                    sampling_data, "heartbeat_passes", smp_defaults.heartbeat_passes
                ),
                proc_root=_get_str(sampling_data, "proc_root", smp_defaults.proc_root),
            ),
            power=PowerConfig(
                average_die_power=_get_float(
                    power_data, "average_die_power", pwr_defaults.average_die_power
                ),
            ),
            logging=LoggingConfig(
                level=_get_str(logging_data, "level", log_defaults.level).lower(),
                json_file=_get_bool(logging_data, "json_file", log_defaults.json_file),
                max_bytes=_get_int(logging_data, "max_bytes", log_defaults.max_bytes),
                backup_count=_get_int(logging_data, "backup_count", log_defaults.backup_count),
            ),
        )
        config.validate()
        return config


def _section(data: Mapping, name: str) -> Mapping:
    section = data.get(name, {})
    if not isinstance(section, Mapping):
        raise ConfigError(f"[{name}] must be a table, got {type(section).__name__}")
    return section


def _get_str(data: Mapping, key: str, default: str) -> str:
    value = data.get(key, default)
    if not isinstance(value, str):
        raise ConfigError(f"{key} must be a string, got {value!r}")
    return str(value)


def _get_int(data: Mapping, key: str, default: int) -> int:
    value = data.get(key, default)
    # bool is an int subclass but never a valid count
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{key} must be an integer, got {value!r}")
    return int(value)


def _get_float(data: Mapping, key: str, default: float) -> float:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{key} must be a number, got {value!r}")
    return float(value)


def _get_bool(data: Mapping, key: str, default: bool) -> bool:
    value = data.get(key, default)
    if not isinstance(value, bool):
        raise ConfigError(f"{key} must be true or false, got {value!r}")
    return value


def _validate_exporter(exporter: ExporterConfig) -> None:
    try:
        exporter.bind_address()
    except ValueError as e:
        raise ConfigError(f"Invalid metrics_address: {e}") from e


def _validate_sampling(sampling: SamplingConfig) -> None:
    if sampling.collection_interval < 1:
        raise ConfigError(
            f"collection_interval must be >= 1 ms, got {sampling.collection_interval}"
        )
    if sampling.heartbeat_passes < 1:
        raise ConfigError(f"heartbeat_passes must be >= 1, got {sampling.heartbeat_passes}")


def _validate_power(power: PowerConfig) -> None:
    if not math.isfinite(power.average_die_power) or power.average_die_power <= 0:
        raise ConfigError(
            f"average_die_power must be a positive number of Watts, "
            f"got {power.average_die_power}"
        )


def _validate_logging(logging_config: LoggingConfig) -> None:
    if logging_config.level not in LOG_LEVELS:
        raise ConfigError(
            f"Invalid log level: {logging_config.level!r}. Must be one of {LOG_LEVELS}"
        )
    if logging_config.max_bytes < 1:
        raise ConfigError(f"max_bytes must be >= 1, got {logging_config.max_bytes}")
    if logging_config.backup_count < 0:
        raise ConfigError(f"backup_count must be >= 0, got {logging_config.backup_count}")
