"""Tests for profundo rich error messages."""

from __future__ import annotations

import pytest

from profundo.cli.errors import (
    err_config,
    err_embedding_failed,
    err_no_api_key,
    err_no_db,
    err_sessions_dir_missing,
    err_store_failed,
    warn_context_unavailable,
    warn_no_results,
)


def _has_action(msg: str) -> bool:
    """Every error must carry an actionable instruction."""
    lower = msg.lower()
    return any(kw in lower for kw in ["run:", "set:", "export ", "pass ", "fix ", "retry"])


@pytest.mark.parametrize("msg", [
    err_no_api_key("openai"),
    err_no_db("/tmp/memory/profundo.sqlite"),
    err_sessions_dir_missing("/tmp/sessions"),
    err_embedding_failed("openai/text-embedding-3-small", RuntimeError("timeout")),
    err_config(ValueError("bad value")),
    err_store_failed("/tmp/memory/profundo.sqlite", RuntimeError("database is locked")),
])
def test_errors_are_actionable(msg: str) -> None:
    assert msg.startswith("[red]Error:[/]")
    assert _has_action(msg)


def test_err_no_api_key_names_env_var() -> None:
    assert "OPENAI_API_KEY" in err_no_api_key("openai")
    assert "VOYAGE_API_KEY" in err_no_api_key("voyage")
    assert "DEEPSEEK_API_KEY" in err_no_api_key("deepseek")
    assert "ACME_API_KEY" in err_no_api_key("acme")


def test_err_no_db_points_at_embed() -> None:
    msg = err_no_db("/data/profundo.sqlite")
    assert "/data/profundo.sqlite" in msg
    assert "profundo embed" in msg


def test_messages_escape_markup() -> None:
    assert "\\[bold]" in err_embedding_failed("m", RuntimeError("[bold]oops"))
    assert "\\[x]" in warn_no_results("[x]")
    assert "\\[y]" in warn_context_unavailable("[y]")
