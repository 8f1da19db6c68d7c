"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from profundo.db.connection import Database
from profundo.db.schema import initialize


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    """Point HOME at an empty directory so no real agent config is read."""
    home = tmp_path / "home"
    monkeypatch.setenv("HOME", str(home))
    return home


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / "memory" / "profundo.sqlite")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture
def isolated_config(tmp_path, monkeypatch):
    """Run with no global/project config files and no PROFUNDO_* env vars."""
    import profundo.config as config_module

    monkeypatch.setattr(config_module, "_GLOBAL_CONFIG_PATH", tmp_path / "global" / "config.yaml")
    for var in (
        "PROFUNDO_EMBEDDING_MODEL",
        "PROFUNDO_EXPANSION_MODEL",
        "PROFUNDO_HARVEST_MODEL",
        "PROFUNDO_SEMANTIC_ONLY",
        "PROFUNDO_SESSIONS_DIR",
        "PROFUNDO_MEMORY_DIR",
    ):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path
