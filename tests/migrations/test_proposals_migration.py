"""Tests for the proposals migration chain and its runner configuration."""

from __future__ import annotations

import importlib.util
from pathlib import Path

import pytest

from eventgate.migrations import ALEMBIC_DIR, PROPOSALS_CHAIN, build_alembic_config

pytestmark = pytest.mark.unit

MIGRATION_FILE = ALEMBIC_DIR / "versions" / "proposals" / "proposals_001_create_event_proposals.py"


def _load_migration():
    spec = importlib.util.spec_from_file_location("proposals_001", MIGRATION_FILE)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_revision_metadata():
    module = _load_migration()

    assert module.revision == "proposals_001"
    assert module.down_revision is None
    assert module.branch_labels == ("proposals",)


def test_build_config_points_at_proposals_chain():
    config = build_alembic_config("postgresql://u:p%40ss@db:5432/eventgate", target_schema="gate")

    assert config.get_main_option("version_locations") == str(
        ALEMBIC_DIR / "versions" / PROPOSALS_CHAIN
    )
    assert config.get_main_option("sqlalchemy.url") == "postgresql://u:p%40ss@db:5432/eventgate"
    assert config.get_main_option("eventgate.target_schema") == "gate"
    assert config.get_main_option("version_table_schema") == "gate"


def test_build_config_rejects_bad_schema():
    with pytest.raises(ValueError):
        build_alembic_config("postgresql://localhost/eventgate", target_schema="x; drop")


def test_upgrade_creates_both_tables_and_guard(monkeypatch):
    module = _load_migration()
    executed: list[str] = []
    monkeypatch.setattr(module.op, "execute", executed.append)

    module.upgrade()

    sql = "\n".join(executed)
    assert "CREATE TABLE IF NOT EXISTS event_proposals" in sql
    assert "CREATE TABLE IF NOT EXISTS proposal_events" in sql
    assert "append-only" in sql


def test_migration_file_is_within_alembic_dir():
    assert Path(MIGRATION_FILE).is_file()
