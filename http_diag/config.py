"""Runtime configuration for the diagnostic workflow.

``RuntimeConfig`` is built once at startup from defaults, an optional YAML
settings file and environment variables (in increasing precedence), then
passed explicitly to every component.
"""

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from http_diag.exceptions import ConfigurationError
from http_diag.utils import default_ca_bundle, local_addresses, terminal_columns

MAX_WIDTH_CAP = 120
MIN_WIDTH = 40
DEFAULT_MAX_ATTEMPTS = 3

ENV_PREFIX = "HTTP_DIAG_"

# Keys accepted in a settings file; each can also be set as HTTP_DIAG_<KEY>
SETTINGS_KEYS = frozenset({
    "work_dir", "log_dir", "max_width", "color", "ca_bundle",
    "hide_src_ip", "max_attempts", "command_timeout",
})


@dataclass
class RuntimeConfig:
    """Process-wide runtime state shared by all components."""

    work_dir: Path = field(default_factory=Path.cwd)
    log_dir: Optional[Path] = None
    temp_dir: Optional[Path] = None
    max_width: int = 80
    color: bool = True
    verbose: bool = False
    debug: bool = False
    ca_bundle: Optional[str] = None
    hide_source_ip: bool = False
    source_addresses: List[str] = field(default_factory=list)
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    command_timeout: Optional[float] = None
    poll_interval: float = 0.1

    def __post_init__(self) -> None:
        self.work_dir = Path(self.work_dir)
        if self.log_dir is None:
            self.log_dir = self.work_dir / "log"
        if self.temp_dir is None:
            self.temp_dir = self.work_dir / ".tmp"
        self.log_dir = Path(self.log_dir)
        self.temp_dir = Path(self.temp_dir)
        if self.max_attempts < 1:
            self.max_attempts = 1

    @property
    def log_path(self) -> Path:
        return self.log_dir / "http-diag.log"

    @property
    def buffer_path(self) -> Path:
        return self.temp_dir / "scan.out"

    @property
    def echo_logs(self) -> bool:
        """Whether log entries are also written to the terminal."""
        return self.verbose or self.debug

    def with_overrides(self, **overrides: Any) -> "RuntimeConfig":
        """Return a copy with the non-None overrides applied."""
        values = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **values)

    def environment(self, base: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        """Environment handed to child commands."""
        env = dict(os.environ if base is None else base)
        if self.ca_bundle:
            env["SSL_CERT_FILE"] = self.ca_bundle
            env["CURL_CA_BUNDLE"] = self.ca_bundle
        if not self.color:
            env["NO_COLOR"] = "1"
        return env

    @classmethod
    def for_reporting(cls, env: Optional[Mapping[str, str]] = None) -> "RuntimeConfig":
        """Minimal configuration for reporting a configuration failure.

        Only the log location and colour come from the environment; the
        settings file is skipped since it may be what failed to load.
        """
        env = os.environ if env is None else env
        log_dir = env.get(f"{ENV_PREFIX}LOG_DIR")
        return cls(
            log_dir=Path(log_dir) if log_dir else None,
            color=_as_bool(env.get(f"{ENV_PREFIX}COLOR") or True),
        )

    @classmethod
    def from_env(
        cls,
        env: Optional[Mapping[str, str]] = None,
        config_file: Optional[Path] = None,
        work_dir: Optional[Path] = None,
    ) -> "RuntimeConfig":
        """Load configuration from a settings file and the environment.

        Args:
            env: Environment mapping, defaults to ``os.environ``.
            config_file: Explicit YAML settings file. Falls back to
                ``HTTP_DIAG_CONFIG`` when not given.
            work_dir: Working directory, defaults to the current directory.

        Returns:
            A fully resolved RuntimeConfig.

        Raises:
            ConfigurationError: If a named settings file is missing or invalid.
        """
        env = os.environ if env is None else env

        if config_file is None and env.get(f"{ENV_PREFIX}CONFIG"):
            config_file = Path(env[f"{ENV_PREFIX}CONFIG"])
        settings = load_settings_file(config_file) if config_file else {}

        def setting(name: str, default: Any = None) -> Any:
            env_value = env.get(f"{ENV_PREFIX}{name.upper()}")
            if env_value is not None and env_value != "":
                return env_value
            return settings.get(name, default)

        base_dir = Path(work_dir or settings.get("work_dir") or Path.cwd())
        ca_bundle = setting("ca_bundle") or default_ca_bundle()
        hide_source_ip = _as_bool(setting("hide_src_ip", False))

        try:
            max_attempts = int(setting("max_attempts", DEFAULT_MAX_ATTEMPTS))
            timeout = setting("command_timeout")
            command_timeout = float(timeout) if timeout not in (None, "", 0, "0") else None
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid numeric setting: {e}")

        log_dir = setting("log_dir")
        return cls(
            work_dir=base_dir,
            log_dir=Path(log_dir) if log_dir else None,
            max_width=resolve_max_width(setting("max_width", "auto")),
            color=_as_bool(setting("color", True)),
            ca_bundle=str(ca_bundle) if ca_bundle else None,
            hide_source_ip=hide_source_ip,
            source_addresses=local_addresses() if hide_source_ip else [],
            max_attempts=max_attempts,
            command_timeout=command_timeout,
        )


def load_settings_file(path: Path) -> Dict[str, Any]:
    """Read a YAML settings file into a dict of known keys.

    Raises:
        ConfigurationError: If the file is missing, unreadable or not a mapping.
    """
    try:
        with open(path, encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except OSError as e:
        raise ConfigurationError(f"Cannot read settings file {path}: {e}")
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in settings file {path}: {e}")

    if not isinstance(data, dict):
        raise ConfigurationError(f"Settings file {path} must contain a mapping")

    unknown = sorted(set(data) - SETTINGS_KEYS)
    if unknown:
        raise ConfigurationError(f"Unknown setting(s) in {path}: {', '.join(unknown)}")
    return data


def resolve_max_width(value: Any, columns: Optional[int] = None) -> int:
    """Resolve the output width setting.

    ``auto`` uses the terminal width; numbers are taken as-is. Both are
    capped at ``MAX_WIDTH_CAP`` and never go below ``MIN_WIDTH``.
    """
    if value is None or str(value).strip().lower() in ("", "auto"):
        width = columns if columns is not None else terminal_columns()
    else:
        try:
            width = int(value)
        except (TypeError, ValueError):
            raise ConfigurationError(f"Invalid max width: {value!r} (expected 'auto' or a number)")
    return max(MIN_WIDTH, min(width, MAX_WIDTH_CAP))


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")
