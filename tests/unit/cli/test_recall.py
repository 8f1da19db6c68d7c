"""Tests for profundo recall command."""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from profundo.cli.main import app
from profundo.cli.recall import truncate_text
from profundo.db.connection import Database
from profundo.db.models import Fingerprint, Fragment
from profundo.db.schema import initialize
from profundo.db.store import ChunkStore

runner = CliRunner()

_QUERY_VEC = [1.0, 0.0, 0.0]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@pytest.fixture
def dirs(isolated_config, monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    mem = isolated_config / "mem"
    sessions = isolated_config / "sessions"
    sessions.mkdir()
    return mem, sessions


def _args(dirs, *extra: str) -> list[str]:
    mem, sessions = dirs
    return ["recall", *extra, "--memory-dir", str(mem), "--sessions-dir", str(sessions)]


def _seed(mem: Path, fragments: list[Fragment]) -> None:
    conn = Database(mem / "profundo.sqlite").connect()
    initialize(conn)
    store = ChunkStore(conn)
    by_session: dict[str, list[Fragment]] = {}
    for f in fragments:
        by_session.setdefault(f.session_id, []).append(f)
    for session_id, frags in by_session.items():
        store.replace_fragments(session_id, Fingerprint(size=1, mtime=1), frags)
    conn.close()


def _frag(text, start=0, end=1, vec=_QUERY_VEC, session="abcdef123456") -> Fragment:
    return Fragment(
        session_id=session,
        turn_start=start,
        turn_end=end,
        text=text,
        embedding=vec,
        timestamp="2026-05-04T12:00:00Z",
    )


def _write_session(path: Path, n_turns: int) -> None:
    lines = []
    for i in range(n_turns):
        lines.append({"type": "message", "message": {"role": "user", "content": f"question {i}"}})
        lines.append({"type": "message", "message": {"role": "assistant", "content": f"answer {i}"}})
    path.write_text("".join(json.dumps(line) + "\n" for line in lines))


# ---------------------------------------------------------------------------
# Failure paths
# ---------------------------------------------------------------------------


def test_recall_without_db_exits_1(dirs) -> None:
    result = runner.invoke(app, _args(dirs, "anything"))
    assert result.exit_code == 1
    assert "No memory database found" in result.output


def test_recall_without_api_key_exits_1(dirs, monkeypatch) -> None:
    _seed(dirs[0], [_frag("redis notes")])
    monkeypatch.delenv("OPENAI_API_KEY")
    result = runner.invoke(app, _args(dirs, "redis"))
    assert result.exit_code == 1
    assert "OPENAI_API_KEY" in result.output


def test_recall_embedding_failure_exits_1(dirs) -> None:
    _seed(dirs[0], [_frag("redis notes")])
    with patch("profundo.rag.retriever.embed", side_effect=RuntimeError("provider down")):
        result = runner.invoke(app, _args(dirs, "redis"))
    assert result.exit_code == 1
    assert "Could not embed the query" in result.output
    assert "provider down" in result.output


def test_recall_store_failure_reports_database(dirs) -> None:
    _seed(dirs[0], [_frag("redis notes")])
    with patch("profundo.rag.retriever.embed", return_value=_QUERY_VEC), patch.object(
        ChunkStore, "lexical_search", side_effect=sqlite3.OperationalError("database disk image is malformed")
    ):
        result = runner.invoke(app, _args(dirs, "redis"))
    assert result.exit_code == 1
    assert "Could not read the memory database" in result.output
    assert "Could not embed the query" not in result.output


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


def test_recall_prints_results(dirs) -> None:
    _seed(dirs[0], [_frag("User: how do I flush redis\n\nAssistant: use FLUSHDB")])
    with patch("profundo.rag.retriever.embed", return_value=_QUERY_VEC):
        result = runner.invoke(app, _args(dirs, "redis"))

    assert result.exit_code == 0, result.output
    assert "Found 1 results for:" in result.output
    assert "2026-05-04" in result.output
    assert "[abcdef12]" in result.output
    assert "100%" in result.output
    assert "use FLUSHDB" in result.output


def test_recall_labels_lexical_only_results(dirs) -> None:
    _seed(dirs[0], [_frag("pgbouncer pool mode", vec=[0.0, 1.0, 0.0])])
    with patch("profundo.rag.retriever.embed", return_value=_QUERY_VEC):
        result = runner.invoke(app, _args(dirs, "pgbouncer"))
    assert result.exit_code == 0, result.output
    assert "lexical" in result.output


def test_recall_no_results(dirs) -> None:
    _seed(dirs[0], [_frag("nothing relevant", vec=[0.0, 1.0, 0.0])])
    with patch("profundo.rag.retriever.embed", return_value=_QUERY_VEC):
        result = runner.invoke(app, _args(dirs, "zzzqqq"))
    assert result.exit_code == 0
    assert "No results found for:" in result.output


def test_recall_top_k_flag(dirs) -> None:
    _seed(dirs[0], [_frag(f"redis note {i}", i, i + 1) for i in range(5)])
    with patch("profundo.rag.retriever.embed", return_value=_QUERY_VEC):
        result = runner.invoke(app, _args(dirs, "redis", "-n", "2"))
    assert result.exit_code == 0, result.output
    assert "Found 2 results" in result.output


def test_recall_semantic_only_flag(dirs) -> None:
    _seed(dirs[0], [_frag("no overlapping words")])
    with patch("profundo.rag.retriever.embed", return_value=_QUERY_VEC), \
            patch("profundo.rag.retriever.hybrid_search") as mock_hybrid:
        result = runner.invoke(app, _args(dirs, "redis", "--semantic-only"))
    assert result.exit_code == 0, result.output
    mock_hybrid.assert_not_called()
    assert "Found 1 results" in result.output


# ---------------------------------------------------------------------------
# Context expansion
# ---------------------------------------------------------------------------


def test_recall_context_shows_surrounding_turns(dirs) -> None:
    mem, sessions = dirs
    _write_session(sessions / "sess-ctx.jsonl", 5)
    _seed(mem, [_frag("question 2 answer 2", 2, 3, session="sess-ctx")])
    with patch("profundo.rag.retriever.embed", return_value=_QUERY_VEC):
        result = runner.invoke(app, _args(dirs, "question", "-c", "1"))

    assert result.exit_code == 0, result.output
    assert "▶ Turn 2" in result.output
    assert "Turn 1" in result.output
    assert "Turn 3" in result.output
    assert "Turn 4" not in result.output
    assert "answer 1" in result.output


def test_recall_context_falls_back_when_session_missing(dirs) -> None:
    _seed(dirs[0], [_frag("stored fragment body", session="vanished")])
    with patch("profundo.rag.retriever.embed", return_value=_QUERY_VEC):
        result = runner.invoke(app, _args(dirs, "stored", "--context", "2"))
    assert result.exit_code == 0, result.output
    assert "Context unavailable" in result.output
    assert "stored fragment body" in result.output


# ---------------------------------------------------------------------------
# truncate_text
# ---------------------------------------------------------------------------


def test_truncate_text() -> None:
    assert truncate_text("short", 10) == "short"
    assert truncate_text("abcdefghij", 4) == "abcd..."
