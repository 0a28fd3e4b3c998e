"""Configuration system for process-scout."""

from dataclasses import asdict, dataclass, field
from pathlib import Path

import yaml

DEFAULT_LISTEN_ADDRESS = ":9001"
DEFAULT_INCLUDE_TYPES = ("java", "python")

# Canonical label order. Gauge label names and per-process label values
# must both follow it since prometheus_client matches them by position.
LABEL_ORDER = ("cwd", "process_name", "type", "user")


class ConfigError(ValueError):
    """Raised when the config file is missing, unreadable or malformed."""


@dataclass
class LabelsConfig:
    """Which optional labels are attached to per-process gauges."""

    cwd: bool = False
    process_name: bool = False
    type: bool = False
    user: bool = False

    @property
    def names(self) -> tuple[str, ...]:
        """Enabled label names in canonical order."""
        return tuple(name for name in LABEL_ORDER if getattr(self, name))


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "INFO"
    file: str | None = None  # JSON Lines log file, console only when unset
    max_bytes: int = 5 * 1024 * 1024  # Max log file size (5MB)
    backup_count: int = 3  # Number of backup log files to keep


@dataclass
class Config:
    """Main configuration container."""

    listen_address: str = DEFAULT_LISTEN_ADDRESS
    include_types: list[str] = field(default_factory=lambda: list(DEFAULT_INCLUDE_TYPES))
    labels: LabelsConfig = field(default_factory=LabelsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    proc_root: Path = Path("/proc")  # Not read from the file

    @property
    def listen(self) -> tuple[str, int]:
        """Listen address split into (host, port)."""
        return parse_listen_address(self.listen_address)

    def dump(self) -> str:
        """Render the effective configuration as YAML."""
        data = {
            "listen_address": self.listen_address,
            "include_types": list(self.include_types),
            "labels": asdict(self.labels),
            "logging": asdict(self.logging),
        }
        return yaml.safe_dump(data, sort_keys=False)

    @classmethod
    def load(cls, path: Path) -> "Config":
        """Load config from a YAML file, filling in defaults for missing values.

        Unlike an optional user config, the file is mandatory: a missing or
        unreadable file is an error, as is malformed YAML.

        Raises:
            ConfigError: If the file cannot be read, parsed or has bad fields.
        """
        try:
            text = Path(path).read_text()
        except OSError as e:
            raise ConfigError(f"Failed to read config file {path}: {e}") from e

        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ConfigError(f"Failed to parse config file {path}: {e}") from e

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a mapping at the top level")

        defaults = cls()

        listen_address = data.get("listen_address") or defaults.listen_address
        if not isinstance(listen_address, str):
            raise ConfigError(f"listen_address must be a string, got {listen_address!r}")
        # Fail at startup rather than at bind time
        parse_listen_address(listen_address)

        include_types = data.get("include_types") or list(DEFAULT_INCLUDE_TYPES)
        if not isinstance(include_types, list) or not all(
            isinstance(t, str) for t in include_types
        ):
            raise ConfigError(f"include_types must be a list of strings, got {include_types!r}")

        return cls(
            listen_address=listen_address,
            include_types=include_types,
            labels=_load_labels_config(data.get("labels")),
            logging=_load_logging_config(data.get("logging")),
        )


def _load_labels_config(data: object) -> LabelsConfig:
    """Load label toggles, using dataclass defaults for missing fields."""
    if data is None:
        return LabelsConfig()
    if not isinstance(data, dict):
        raise ConfigError(f"labels must be a mapping, got {data!r}")

    d = LabelsConfig()
    values = {}
    for name in LABEL_ORDER:
        value = data.get(name, getattr(d, name))
        if value is None:
            value = False
        if not isinstance(value, bool):
            raise ConfigError(f"labels.{name} must be true or false, got {value!r}")
        values[name] = value
    return LabelsConfig(**values)


def _load_logging_config(data: object) -> LoggingConfig:
    """Load logging config, using dataclass defaults for missing fields."""
    if data is None:
        return LoggingConfig()
    if not isinstance(data, dict):
        raise ConfigError(f"logging must be a mapping, got {data!r}")

    d = LoggingConfig()
    level = str(data.get("level", d.level)).upper()
    if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        raise ConfigError(f"Invalid logging.level: {level!r}")

    max_bytes = data.get("max_bytes", d.max_bytes)
    backup_count = data.get("backup_count", d.backup_count)
    if not isinstance(max_bytes, int) or max_bytes < 0:
        raise ConfigError(f"logging.max_bytes must be >= 0, got {max_bytes!r}")
    if not isinstance(backup_count, int) or backup_count < 0:
        raise ConfigError(f"logging.backup_count must be >= 0, got {backup_count!r}")

    log_file = data.get("file", d.file)
    return LoggingConfig(
        level=level,
        file=str(log_file) if log_file else None,
        max_bytes=max_bytes,
        backup_count=backup_count,
    )


def parse_listen_address(address: str) -> tuple[str, int]:
    """Split a ``host:port`` listen address.

    An empty host (``":9001"``) means all interfaces. IPv6 hosts are written
    in brackets (``"[::1]:9001"``).

    Raises:
        ConfigError: If the port is missing or not a valid port number.
    """
    host, sep, port_str = address.rpartition(":")
    if not sep:
        raise ConfigError(f"Invalid listen_address {address!r}: expected host:port")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    try:
        port = int(port_str)
    except ValueError:
        raise ConfigError(f"Invalid port in listen_address {address!r}") from None
    if not 0 <= port <= 65535:
        raise ConfigError(f"Port out of range in listen_address {address!r}")
    return host, port
