"""profundo recall — hybrid search over embedded session memory."""

from __future__ import annotations

import sqlite3
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape

from profundo.cli.common import MemoryDirOpt, SessionsDirOpt, open_db, require_api_key, resolve_config
from profundo.cli.errors import (
    err_embedding_failed,
    err_no_db,
    err_store_failed,
    warn_context_unavailable,
    warn_no_results,
)
from profundo.db.store import ChunkStore
from profundo.rag.context import ContextExpander, ContextWindow
from profundo.rag.retriever import SearchResult, search
from profundo.sessions.session import TurnLoader

console = Console()

_PREVIEW_CHARS = 300
_PREVIEW_LINES = 6
_TURN_CHARS = 500


def recall_cmd(
    query: Annotated[str, typer.Argument(help="Search query.")],
    top_k: Annotated[
        int | None,
        typer.Option("--top-k", "-n", min=1, help="Number of results to return."),
    ] = None,
    threshold: Annotated[
        float | None,
        typer.Option("--threshold", "-t", min=-1.0, max=1.0, help="Minimum cosine similarity."),
    ] = None,
    semantic_only: Annotated[
        bool | None,
        typer.Option(
            "--semantic-only/--hybrid",
            help="Exhaustive vector search without the lexical stage (default: config).",
        ),
    ] = None,
    expand: Annotated[
        bool | None,
        typer.Option("--expand/--no-expand", help="Widen lexical recall with LLM paraphrases."),
    ] = None,
    context: Annotated[
        int | None,
        typer.Option("--context", "-c", min=0, help="Show N surrounding turns per result."),
    ] = None,
    sessions_dir: SessionsDirOpt = None,
    memory_dir: MemoryDirOpt = None,
) -> None:
    """Search memory for fragments of past conversations."""
    cfg = resolve_config(console, sessions_dir, memory_dir)
    config = cfg.search_config(
        top_k=top_k,
        similarity_threshold=threshold,
        semantic_only=semantic_only,
        expand=expand,
        context_turns=context,
    )

    db_path = cfg.paths.db_path
    if not db_path.exists():
        console.print(err_no_db(str(db_path)))
        raise typer.Exit(1)

    require_api_key(console, config.embedding_model)

    conn = open_db(db_path)
    try:
        try:
            results = search(query, ChunkStore(conn), config)
        except sqlite3.Error as exc:
            console.print(err_store_failed(str(db_path), exc))
            raise typer.Exit(1)
        except Exception as exc:
            console.print(err_embedding_failed(config.embedding_model, exc))
            raise typer.Exit(1)
    finally:
        conn.close()

    if not results:
        console.print(warn_no_results(query))
        return

    console.print(
        f"\n[blue]→[/] Found [cyan]{len(results)}[/] results for: [italic]{escape(query)}[/]\n"
    )

    expander = ContextExpander(TurnLoader(cfg.paths.sessions_dir))
    for i, result in enumerate(results, start=1):
        _print_header(i, result)
        if config.context_turns is None:
            _print_preview(result.fragment.text)
        else:
            _print_window(expander.expand(result.fragment, config.context_turns))
        console.print()


# ------------------------------------------------------------------
# Rendering
# ------------------------------------------------------------------


def _print_header(position: int, result: SearchResult) -> None:
    fragment = result.fragment
    date = (fragment.timestamp or "unknown").split("T")[0]
    console.print(
        f"[bold]{position}.[/] [cyan]{escape(date)}[/] "
        f"[dim]\\[{escape(fragment.session_id[:8])}][/] "
        f"({_similarity_label(result)})"
    )


def _similarity_label(result: SearchResult) -> str:
    if result.semantic_rank is None:
        return "[magenta]lexical[/]"
    pct = int(result.similarity * 100)
    color = "green" if pct >= 80 else "yellow" if pct >= 60 else "red"
    return f"[{color}]{pct}%[/]"


def _print_preview(text: str) -> None:
    preview = truncate_text(text, _PREVIEW_CHARS)
    for line in preview.splitlines()[:_PREVIEW_LINES]:
        console.print(f"   [dim]{escape(line)}[/]")
    if len(text.splitlines()) > _PREVIEW_LINES:
        console.print("   [dim]...[/]")


def _print_window(window: ContextWindow) -> None:
    if window.is_fallback:
        console.print(f"   {warn_context_unavailable(window.warning or '')}")
        _print_preview(window.fallback_text or "")
        return

    for turn in window.turns:
        if turn.is_match:
            marker, style = "▶", "bold"
        else:
            marker, style = " ", "dim"
        console.print(f" {marker} [{style}]Turn {turn.index}[/]")
        console.print(f"     [{style}]User:[/] {escape(truncate_text(turn.user_text, _TURN_CHARS))}")
        if turn.assistant_text:
            console.print(
                f"     [{style}]Assistant:[/] {escape(truncate_text(turn.assistant_text, _TURN_CHARS))}"
            )


def truncate_text(text: str, max_len: int) -> str:
    """Cut *text* to *max_len* characters, appending '...' when shortened."""
    if len(text) <= max_len:
        return text
    return f"{text[:max_len]}..."
