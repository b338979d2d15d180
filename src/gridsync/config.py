"""gridsync configuration loading and validation.

Reads a ``gridsync.toml`` file, resolves ``${VAR_NAME}`` references against
the environment and returns a validated ``GridsyncConfig`` dataclass.
"""

from __future__ import annotations

import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from gridsync.retry import (
    DEFAULT_BACKOFF_MULTIPLIER,
    DEFAULT_INITIAL_BACKOFF_SECONDS,
    DEFAULT_MAX_BACKOFF_SECONDS,
    BackoffPolicy,
)
from gridsync.transport import DEFAULT_REQUEST_TIMEOUT_SECONDS, SENDGRID_API_BASE_URL

API_KEY_ENV = "SENDGRID_API_KEY"

# Default operation budget, matching the 20 minute default of most providers.
DEFAULT_OPERATION_TIMEOUT_SECONDS = 1200.0

_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")
_VALID_LOG_FORMATS = ("text", "json")


class ConfigError(Exception):
    """Raised when configuration is missing, malformed, or invalid."""


@dataclass
class LoggingConfig:
    """Logging configuration from the [logging] section."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    log_root: str | None = None


@dataclass
class SendGridConfig:
    """API access from the [sendgrid] section."""

    api_key: str
    base_url: str = SENDGRID_API_BASE_URL
    request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS


@dataclass
class RetryConfig:
    """Retry budgets and backoff from the [retry] section.

    Each budget bounds the total wall-clock time spent retrying a rate-limited
    operation of that kind.
    """

    create_timeout_seconds: float = DEFAULT_OPERATION_TIMEOUT_SECONDS
    update_timeout_seconds: float = DEFAULT_OPERATION_TIMEOUT_SECONDS
    delete_timeout_seconds: float = DEFAULT_OPERATION_TIMEOUT_SECONDS
    initial_backoff_seconds: float = DEFAULT_INITIAL_BACKOFF_SECONDS
    backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER
    max_backoff_seconds: float = DEFAULT_MAX_BACKOFF_SECONDS

    @property
    def backoff(self) -> BackoffPolicy:
        return BackoffPolicy(
            initial_seconds=self.initial_backoff_seconds,
            multiplier=self.backoff_multiplier,
            maximum_seconds=self.max_backoff_seconds,
        )


@dataclass
class GridsyncConfig:
    sendgrid: SendGridConfig
    retry: RetryConfig = field(default_factory=RetryConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ``${VAR_NAME}`` references in config values.

    Walks dicts, lists, and strings.  Non-string leaf values are returned
    unchanged.

    Raises
    ------
    ConfigError
        If a referenced environment variable is not set.
    """
    if isinstance(value, dict):
        return {k: resolve_env_vars(v) for k, v in value.items()}

    if isinstance(value, list):
        return [resolve_env_vars(item) for item in value]

    if isinstance(value, str):
        return _resolve_string(value)

    return value


def _resolve_string(s: str) -> str:
    """Replace all ``${VAR_NAME}`` occurrences in *s* with env var values.

    Collects all missing variable names and reports them in a single error.
    """
    missing: list[str] = []

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is None:
            missing.append(var_name)
            return match.group(0)
        return env_value

    result = _ENV_VAR_PATTERN.sub(_replace, s)

    if missing:
        vars_str = ", ".join(missing)
        raise ConfigError(f"Unresolved environment variable(s) in config value: {vars_str}")

    return result


def _positive_float(section: dict[str, Any], key: str, default: float, path: str) -> float:
    raw = section.get(key, default)
    if isinstance(raw, bool) or not isinstance(raw, int | float):
        raise ConfigError(f"{path}.{key} must be a number, got {raw!r}")
    if raw <= 0:
        raise ConfigError(f"{path}.{key} must be positive, got {raw!r}")
    return float(raw)


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    section = data.get(name, {})
    if not isinstance(section, dict):
        raise ConfigError(f"[{name}] must be a TOML table")
    return section


def _parse_sendgrid(data: dict[str, Any]) -> SendGridConfig:
    section = _section(data, "sendgrid")
    api_key = section.get("api_key")
    if not isinstance(api_key, str) or not api_key.strip():
        raise ConfigError("Missing required field: sendgrid.api_key")

    base_url = section.get("base_url", SENDGRID_API_BASE_URL)
    if not isinstance(base_url, str) or not base_url.startswith(("https://", "http://")):
        raise ConfigError(f"sendgrid.base_url must be an http(s) URL, got {base_url!r}")

    return SendGridConfig(
        api_key=api_key.strip(),
        base_url=base_url.rstrip("/"),
        request_timeout_seconds=_positive_float(
            section, "request_timeout_seconds", DEFAULT_REQUEST_TIMEOUT_SECONDS, "sendgrid"
        ),
    )


def _parse_retry(data: dict[str, Any]) -> RetryConfig:
    section = _section(data, "retry")
    defaults = RetryConfig()
    values = {
        key: _positive_float(section, key, getattr(defaults, key), "retry")
        for key in (
            "create_timeout_seconds",
            "update_timeout_seconds",
            "delete_timeout_seconds",
            "initial_backoff_seconds",
            "backoff_multiplier",
            "max_backoff_seconds",
        )
    }
    if values["backoff_multiplier"] < 1:
        raise ConfigError("retry.backoff_multiplier must be at least 1")
    return RetryConfig(**values)


def _parse_logging(data: dict[str, Any]) -> LoggingConfig:
    section = _section(data, "logging")
    level = section.get("level", "INFO")
    if not isinstance(level, str) or not level.strip():
        raise ConfigError("logging.level must be a non-empty string")
    fmt = section.get("format", "text")
    if fmt not in _VALID_LOG_FORMATS:
        raise ConfigError(
            f"logging.format must be one of {', '.join(_VALID_LOG_FORMATS)}, got {fmt!r}"
        )
    log_root = section.get("log_root")
    if log_root is not None and not isinstance(log_root, str):
        raise ConfigError("logging.log_root must be a string when set")
    return LoggingConfig(level=level.upper(), format=fmt, log_root=log_root)


def parse_config(data: dict[str, Any]) -> GridsyncConfig:
    """Validate an already-parsed TOML document."""
    data = resolve_env_vars(data)
    return GridsyncConfig(
        sendgrid=_parse_sendgrid(data),
        retry=_parse_retry(data),
        logging=_parse_logging(data),
    )


def load_config(path: Path) -> GridsyncConfig:
    """Load and validate a ``gridsync.toml`` file.

    Raises
    ------
    ConfigError
        If the file is missing, contains invalid TOML, or lacks required fields.
    """
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")

    try:
        data = tomllib.loads(path.read_bytes().decode())
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {path}: {exc}") from exc

    return parse_config(data)


def config_from_env() -> GridsyncConfig:
    """Build a default configuration with the API key taken from ``SENDGRID_API_KEY``."""
    api_key = os.environ.get(API_KEY_ENV, "").strip()
    if not api_key:
        raise ConfigError(f"{API_KEY_ENV} is not set and no config file was given")
    return GridsyncConfig(sendgrid=SendGridConfig(api_key=api_key))
