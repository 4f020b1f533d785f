"""Configuration system for login-sentry."""

from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path

import tomlkit

from login_sentry.errors import ConfigError


def _default_capture_command() -> list[str]:
    return [
        "/usr/bin/ffmpeg",
        "-y",
        "-f",
        "video4linux2",
        "-i",
        "{device}",
        "-frames:v",
        "1",
        "{output}",
        "-loglevel",
        "quiet",
    ]


def _default_stream_command() -> list[str]:
    return ["journalctl", "-f", "-n", "0", "-q"]


@dataclass
class CaptureConfig:
    """Capture action and artifact layout.

    The command is an argv template: "{device}" and "{output}" are replaced
    per capture. It must contain "{output}" so the result lands where the
    artifact store expects it.
    """

    owner: str = "root"  # User (name or uid) that owns the captures
    group: str = "root"  # Group (name or gid) that owns the captures
    device: str = "/dev/video0"
    directory: str = "/var/lib/login-sentry/captures"
    prefix: str = "failed-login_"
    extension: str = ".jpg"
    timeout: float = 5.0  # Hard wall-clock bound for one capture (seconds)
    command: list[str] = field(default_factory=_default_capture_command)


@dataclass
class TriggerConfig:
    """What counts as an event, and how often it may be captured."""

    pattern: str = "authentication failure"  # Literal, case-sensitive substring
    debounce_seconds: float = 4.0  # Min seconds between two captures


@dataclass
class StreamConfig:
    """Live log follower. Must print one log line per stdout line, forever."""

    command: list[str] = field(default_factory=_default_stream_command)


@dataclass
class SystemConfig:
    """Daemon housekeeping."""

    log_max_bytes: int = 5 * 1024 * 1024  # Max log file size (5MB)
    log_backup_count: int = 3  # Number of backup log files to keep


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


@dataclass
class Config:
    """Main configuration container."""

    capture: CaptureConfig = field(default_factory=CaptureConfig)
    trigger: TriggerConfig = field(default_factory=TriggerConfig)
    stream: StreamConfig = field(default_factory=StreamConfig)
    system: SystemConfig = field(default_factory=SystemConfig)

    @property
    def config_dir(self) -> Path:
        """Configuration directory."""
        return Path("/etc/login-sentry")

    @property
    def config_path(self) -> Path:
        """Path to config file."""
        return self.config_dir / "config.toml"

    @property
    def state_dir(self) -> Path:
        """State directory for the daemon log."""
        return Path("/var/log/login-sentry")

    @property
    def runtime_dir(self) -> Path:
        """Runtime directory for the PID file, cleared on reboot."""
        return Path("/run/login-sentry")

    @property
    def log_path(self) -> Path:
        """Daemon log path."""
        return self.state_dir / "daemon.log"

    @property
    def pid_path(self) -> Path:
        """PID file path."""
        return self.runtime_dir / "daemon.pid"

    @property
    def capture_dir(self) -> Path:
        """Directory holding the captured artifacts."""
        return Path(self.capture.directory)

    def save(self, path: Path | None = None) -> None:
        """Save config to TOML file."""
        path = path or self.config_path
        path.parent.mkdir(parents=True, exist_ok=True)

        doc = tomlkit.document()
        for name in ("capture", "trigger", "stream", "system"):
            doc.add(name, _dataclass_to_table(getattr(self, name)))
            doc.add(tomlkit.nl())

        path.write_text(tomlkit.dumps(doc))

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Load config from TOML file, returning defaults for missing values.

        All defaults come from the dataclass definitions, so Config() and
        Config.load() of an empty file are identical.

        Raises:
            ConfigError: If the file cannot be parsed or a value is invalid.
        """
        defaults = cls()
        path = path or defaults.config_path
        if not path.exists():
            return defaults

        try:
            with open(path) as f:
                data = tomlkit.load(f).unwrap()
        except tomlkit.exceptions.TOMLKitError as e:
            raise ConfigError(f"Failed to parse config file {path}: {e}") from e

        return cls(
            capture=_load_capture_config(data.get("capture", {})),
            trigger=_load_trigger_config(data.get("trigger", {})),
            stream=_load_stream_config(data.get("stream", {})),
            system=_load_system_config(data.get("system", {})),
        )


def _load_command(data: dict, key: str, default: list[str]) -> list[str]:
    command = data.get(key, default)
    if not isinstance(command, list) or not command:
        raise ConfigError(f"{key} must be a non-empty list of strings, got {command!r}")
    if not all(isinstance(arg, str) for arg in command):
        raise ConfigError(f"{key} must contain only strings, got {command!r}")
    return list(command)


def _load_capture_config(data: dict) -> CaptureConfig:
    """Load capture config from TOML data, using dataclass defaults for missing fields."""
    d = CaptureConfig()

    timeout = data.get("timeout", d.timeout)
    if not isinstance(timeout, (int, float)) or timeout <= 0:
        raise ConfigError(f"capture.timeout must be > 0, got {timeout}")

    command = _load_command(data, "command", d.command)
    if not any("{output}" in arg for arg in command):
        raise ConfigError("capture.command must contain an {output} placeholder")

    prefix = data.get("prefix", d.prefix)
    if not prefix or "/" in prefix:
        raise ConfigError(f"capture.prefix must be a non-empty file name part, got {prefix!r}")

    return CaptureConfig(
        owner=str(data.get("owner", d.owner)),
        group=str(data.get("group", d.group)),
        device=data.get("device", d.device),
        directory=data.get("directory", d.directory),
        prefix=prefix,
        extension=data.get("extension", d.extension),
        timeout=float(timeout),
        command=command,
    )


def _load_trigger_config(data: dict) -> TriggerConfig:
    """Load trigger config from TOML data."""
    d = TriggerConfig()

    pattern = data.get("pattern", d.pattern)
    if not pattern:
        raise ConfigError("trigger.pattern must not be empty")

    debounce_seconds = data.get("debounce_seconds", d.debounce_seconds)
    if not isinstance(debounce_seconds, (int, float)) or debounce_seconds < 0:
        raise ConfigError(f"trigger.debounce_seconds must be >= 0, got {debounce_seconds}")

    return TriggerConfig(pattern=pattern, debounce_seconds=float(debounce_seconds))


def _load_stream_config(data: dict) -> StreamConfig:
    """Load stream config from TOML data."""
    d = StreamConfig()
    return StreamConfig(command=_load_command(data, "command", d.command))


def _load_system_config(data: dict) -> SystemConfig:
    """Load system config from TOML data."""
    d = SystemConfig()
    return SystemConfig(
        log_max_bytes=data.get("log_max_bytes", d.log_max_bytes),
        log_backup_count=data.get("log_backup_count", d.log_backup_count),
    )
