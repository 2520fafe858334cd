"""eventgate configuration loading and validation.

Reads ``eventgate.toml`` from a config directory, resolves ``${VAR}``
references against the environment, and returns a validated
:class:`EventGateConfig` dataclass.
"""

from __future__ import annotations

import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import ValidationError

from eventgate.channels.telegram import TelegramConfig

CONFIG_FILENAME = "eventgate.toml"

DEFAULT_CREDENTIALS_PATH = "~/.google-oauth/oauth.json"
DEFAULT_EXPIRY_HOURS = 24
DEFAULT_SWEEP_INTERVAL_SECONDS = 3600
DEFAULT_API_PORT = 40300

_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")
_DB_SCHEMA_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class ConfigError(Exception):
    """Raised when eventgate configuration is missing, malformed, or invalid."""


@dataclass
class LoggingConfig:
    """Logging configuration from the [eventgate.logging] section."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    log_root: str | None = None


@dataclass
class DatabaseConfig:
    name: str = "eventgate"
    schema: str | None = None


@dataclass
class ProposalsConfig:
    """Lifecycle knobs from [eventgate.proposals]."""

    expiry_hours: int = DEFAULT_EXPIRY_HOURS
    sweep_interval_seconds: int = DEFAULT_SWEEP_INTERVAL_SECONDS


@dataclass
class GoogleConfig:
    """Calendar write target and OAuth credential file location."""

    credentials_path: str = DEFAULT_CREDENTIALS_PATH
    calendar_id: str = "primary"
    request_timeout_seconds: float = 30.0

    @property
    def resolved_credentials_path(self) -> Path:
        return Path(self.credentials_path).expanduser()


@dataclass
class ApiConfig:
    host: str = "127.0.0.1"
    port: int = DEFAULT_API_PORT


@dataclass
class EventGateConfig:
    """Top-level parsed ``eventgate.toml``."""

    name: str = "eventgate"
    timezone: str = "UTC"
    db: DatabaseConfig = field(default_factory=DatabaseConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    proposals: ProposalsConfig = field(default_factory=ProposalsConfig)
    google: GoogleConfig = field(default_factory=GoogleConfig)
    telegram: dict[str, Any] = field(default_factory=dict)
    api: ApiConfig = field(default_factory=ApiConfig)


def resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ``${VAR_NAME}`` references in config values.

    Walks dicts, lists, and strings. Non-string leaves are returned unchanged.

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
    """Replace ``${VAR_NAME}`` occurrences in *s*, reporting all missing names at once."""
    missing: list[str] = []

    def _replace(match: re.Match) -> str:
        env_value = os.environ.get(match.group(1))
        if env_value is None:
            missing.append(match.group(1))
            return match.group(0)
        return env_value

    result = _ENV_VAR_PATTERN.sub(_replace, s)
    if missing:
        raise ConfigError(
            f"Unresolved environment variable(s) in config value: {', '.join(missing)} "
            f"(original: {s!r})"
        )
    return result


def _table(section: dict, key: str) -> dict:
    value = section.get(key, {})
    if not isinstance(value, dict):
        raise ConfigError(f"[eventgate.{key}] must be a table")
    return value


def _parse_telegram(section: dict) -> dict[str, Any]:
    try:
        TelegramConfig(**section)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in err['loc']) or 'telegram'}: {err['msg']}"
            for err in exc.errors()
        )
        raise ConfigError(f"Invalid [eventgate.telegram]: {problems}") from exc
    return dict(section)


def _positive_int(section: dict, key: str, default: int, label: str) -> int:
    raw = section.get(key, default)
    try:
        value = int(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid {label}: {raw!r}. Must be a positive integer.") from exc
    if value <= 0:
        raise ConfigError(f"Invalid {label}: {value!r}. Must be a positive integer.")
    return value


def _parse_db(section: dict) -> DatabaseConfig:
    db_name = str(section.get("name", "eventgate")).strip()
    if not db_name:
        raise ConfigError("eventgate.db.name must be a non-empty string")

    schema_raw = section.get("schema")
    schema: str | None = None
    if schema_raw is not None:
        if not isinstance(schema_raw, str) or not schema_raw.strip():
            raise ConfigError("eventgate.db.schema must be a non-empty string when set")
        schema = schema_raw.strip()
        if _DB_SCHEMA_PATTERN.fullmatch(schema) is None:
            raise ConfigError(
                f"Invalid eventgate.db.schema: {schema_raw!r}. "
                "Expected a valid SQL identifier-style value."
            )
    return DatabaseConfig(name=db_name, schema=schema)


def _parse_logging(section: dict) -> LoggingConfig:
    log_format = str(section.get("format", "text")).lower()
    if log_format not in ("text", "json"):
        raise ConfigError(
            f"Invalid eventgate.logging.format: {log_format!r}. Expected 'text' or 'json'."
        )
    return LoggingConfig(
        level=str(section.get("level", "INFO")).upper(),
        format=log_format,
        log_root=section.get("log_root"),
    )


def _parse_google(section: dict) -> GoogleConfig:
    credentials_path = str(section.get("credentials_path", DEFAULT_CREDENTIALS_PATH)).strip()
    if not credentials_path:
        raise ConfigError("eventgate.google.credentials_path must be a non-empty string")
    calendar_id = str(section.get("calendar_id", "primary")).strip()
    if not calendar_id:
        raise ConfigError("eventgate.google.calendar_id must be a non-empty string")
    raw_timeout = section.get("request_timeout_seconds", 30.0)
    try:
        timeout = float(raw_timeout)
    except (TypeError, ValueError) as exc:
        raise ConfigError(
            f"Invalid eventgate.google.request_timeout_seconds: {raw_timeout!r}"
        ) from exc
    if timeout <= 0:
        raise ConfigError("eventgate.google.request_timeout_seconds must be positive")
    return GoogleConfig(
        credentials_path=credentials_path,
        calendar_id=calendar_id,
        request_timeout_seconds=timeout,
    )


def load_config(config_dir: Path) -> EventGateConfig:
    """Load and validate ``eventgate.toml`` from *config_dir*.

    Parameters
    ----------
    config_dir:
        Directory containing ``eventgate.toml``.

    Returns
    -------
    EventGateConfig
        Fully parsed and validated configuration.

    Raises
    ------
    ConfigError
        If the file is missing, contains invalid TOML, or holds invalid values.
    """
    toml_path = Path(config_dir) / CONFIG_FILENAME
    if not toml_path.exists():
        raise ConfigError(f"Config file not found: {toml_path}")

    try:
        data = tomllib.loads(toml_path.read_bytes().decode())
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {toml_path}: {exc}") from exc

    data = resolve_env_vars(data)

    section = data.get("eventgate")
    if not isinstance(section, dict):
        raise ConfigError("Missing [eventgate] section in config")

    name = str(section.get("name", "eventgate")).strip() or "eventgate"

    timezone = str(section.get("timezone", "UTC")).strip() or "UTC"
    try:
        ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigError(f"Unknown eventgate.timezone: {timezone!r}") from exc

    proposals_section = _table(section, "proposals")
    proposals = ProposalsConfig(
        expiry_hours=_positive_int(
            proposals_section,
            "expiry_hours",
            DEFAULT_EXPIRY_HOURS,
            "eventgate.proposals.expiry_hours",
        ),
        sweep_interval_seconds=_positive_int(
            proposals_section,
            "sweep_interval_seconds",
            DEFAULT_SWEEP_INTERVAL_SECONDS,
            "eventgate.proposals.sweep_interval_seconds",
        ),
    )

    telegram = _parse_telegram(_table(section, "telegram"))

    api_section = _table(section, "api")
    api = ApiConfig(
        host=str(api_section.get("host", "127.0.0.1")),
        port=_positive_int(api_section, "port", DEFAULT_API_PORT, "eventgate.api.port"),
    )

    return EventGateConfig(
        name=name,
        timezone=timezone,
        db=_parse_db(_table(section, "db")),
        logging=_parse_logging(_table(section, "logging")),
        proposals=proposals,
        google=_parse_google(_table(section, "google")),
        telegram=telegram,
        api=api,
    )
