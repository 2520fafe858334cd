"""Tests for eventgate.toml loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from eventgate.config import ConfigError, load_config, resolve_env_vars

pytestmark = pytest.mark.unit


def _write(tmp_path: Path, body: str) -> Path:
    (tmp_path / "eventgate.toml").write_text(body, encoding="utf-8")
    return tmp_path


def test_minimal_config_uses_defaults(tmp_path):
    config = load_config(_write(tmp_path, "[eventgate]\n"))

    assert config.name == "eventgate"
    assert config.timezone == "UTC"
    assert config.proposals.expiry_hours == 24
    assert config.proposals.sweep_interval_seconds == 3600
    assert config.google.calendar_id == "primary"
    assert config.google.resolved_credentials_path == Path.home() / ".google-oauth" / "oauth.json"
    assert config.api.port == 40300
    assert config.telegram == {}


def test_full_config(tmp_path, monkeypatch):
    monkeypatch.setenv("EVENTGATE_CAL", "family@group.calendar.google.com")
    body = """
[eventgate]
name = "eventgate-home"
timezone = "Europe/Berlin"

[eventgate.db]
name = "eventgate_home"
schema = "proposals"

[eventgate.logging]
level = "debug"
format = "json"

[eventgate.proposals]
expiry_hours = 12
sweep_interval_seconds = 600

[eventgate.google]
credentials_path = "/etc/eventgate/oauth.json"
calendar_id = "${EVENTGATE_CAL}"

[eventgate.telegram]
mode = "webhook"
webhook_url = "https://example.com/api/telegram/webhook"
webhook_secret_env = "EVENTGATE_WEBHOOK_SECRET"

[eventgate.api]
port = 8080
"""
    config = load_config(_write(tmp_path, body))

    assert config.name == "eventgate-home"
    assert config.timezone == "Europe/Berlin"
    assert config.db.name == "eventgate_home"
    assert config.db.schema == "proposals"
    assert config.logging.level == "DEBUG"
    assert config.logging.format == "json"
    assert config.proposals.expiry_hours == 12
    assert config.google.calendar_id == "family@group.calendar.google.com"
    assert config.telegram["mode"] == "webhook"
    assert config.api.port == 8080


def test_missing_file(tmp_path):
    with pytest.raises(ConfigError, match="not found"):
        load_config(tmp_path)


def test_missing_section(tmp_path):
    with pytest.raises(ConfigError, match=r"\[eventgate\]"):
        load_config(_write(tmp_path, "[other]\nx = 1\n"))


def test_invalid_toml(tmp_path):
    with pytest.raises(ConfigError, match="Invalid TOML"):
        load_config(_write(tmp_path, "[eventgate\n"))


@pytest.mark.parametrize(
    "body",
    [
        '[eventgate]\ntimezone = "Mars/Olympus"\n',
        "[eventgate.proposals]\nexpiry_hours = 0\n",
        '[eventgate.logging]\nformat = "xml"\n',
        '[eventgate.db]\nschema = "bad-schema"\n',
        "[eventgate.google]\nrequest_timeout_seconds = -1\n",
    ],
)
def test_invalid_values(tmp_path, body):
    with pytest.raises(ConfigError):
        load_config(_write(tmp_path, body))


@pytest.mark.parametrize("key", ["proposals", "api", "db", "logging", "google", "telegram"])
def test_non_table_section_is_rejected(tmp_path, key):
    with pytest.raises(ConfigError, match=rf"\[eventgate\.{key}\] must be a table"):
        load_config(_write(tmp_path, f"[eventgate]\n{key} = 5\n"))


@pytest.mark.parametrize(
    ("body", "match"),
    [
        ('[eventgate.telegram]\nmode = "push"\n', "mode"),
        ('[eventgate.telegram]\nbot_token = "abc"\n', "bot_token"),
        ('[eventgate.telegram]\ntoken_env = "1BAD"\n', "token_env"),
    ],
)
def test_invalid_telegram_section(tmp_path, body, match):
    with pytest.raises(ConfigError, match=match):
        load_config(_write(tmp_path, body))


def test_unset_env_var_reports_all_missing(monkeypatch):
    monkeypatch.delenv("EG_A", raising=False)
    monkeypatch.delenv("EG_B", raising=False)

    with pytest.raises(ConfigError, match="EG_A, EG_B"):
        resolve_env_vars({"x": ["${EG_A}-${EG_B}"]})
