"""profundo status — memory database, session logs, learnings and retrieval settings."""

from __future__ import annotations

from pathlib import Path

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

from profundo.cli.common import MemoryDirOpt, SessionsDirOpt, open_db, resolve_config
from profundo.config import ProfundoConfig
from profundo.db.store import ChunkStore
from profundo.sessions.harvest import load_learnings

console = Console()


def status_cmd(
    sessions_dir: SessionsDirOpt = None,
    memory_dir: MemoryDirOpt = None,
) -> None:
    """Show memory status: database, session logs, learnings and retrieval settings."""
    cfg = resolve_config(console, sessions_dir, memory_dir)

    _show_database_panel(cfg.paths.db_path)
    _show_sessions_panel(cfg.paths.sessions_dir)
    _show_learnings_panel(cfg.paths.learnings_path)
    _show_retrieval_panel(cfg)


# ---------------------------------------------------------------------------
# Panel renderers
# ---------------------------------------------------------------------------


def _show_database_panel(db_path: Path) -> None:
    if not db_path.exists():
        console.print(
            Panel(
                "[yellow]No embeddings database yet.[/]\n"
                "  Run:  profundo embed",
                title="[bold]Embeddings Database[/]",
                expand=False,
            )
        )
        return

    conn = open_db(db_path)
    try:
        store = ChunkStore(conn)
        stats = store.stats()
        dims = store.vector_dimensions() if stats.chunks_count else None
    finally:
        conn.close()

    lines = [
        f"Chunks: [bold]{stats.chunks_count:,}[/]  |  Sessions: [bold]{stats.sessions_count:,}[/]",
    ]
    if dims:
        lines.append(f"Vector dimensions: {dims}")
    if stats.last_processed:
        lines.append(f"Last processed: [dim]{stats.last_processed}[/]")
    lines.append(f"Path: [dim]{escape(str(db_path))}[/]")
    console.print(Panel("\n".join(lines), title="[bold]Embeddings Database[/]", expand=False))


def _show_sessions_panel(sessions_dir: Path) -> None:
    if not sessions_dir.is_dir():
        console.print(
            Panel(
                f"[red]✗[/] Sessions directory not found: {escape(str(sessions_dir))}",
                title="[bold]Session Logs[/]",
                expand=False,
            )
        )
        return

    logs = [p for p in sessions_dir.iterdir() if p.suffix == ".jsonl" and p.is_file()]
    total_mb = sum(p.stat().st_size for p in logs) / 1_000_000
    console.print(
        Panel(
            f"Sessions: [bold]{len(logs)}[/] ({total_mb:.1f} MB)\n"
            f"Path: [dim]{escape(str(sessions_dir))}[/]",
            title="[bold]Session Logs[/]",
            expand=False,
        )
    )


def _show_learnings_panel(learnings_path: Path) -> None:
    if not learnings_path.is_file():
        body = "[yellow]No learnings yet.[/]\n  Run:  profundo harvest"
    else:
        count = len(load_learnings(learnings_path))
        body = f"Entries: [bold]{count}[/]\nPath: [dim]{escape(str(learnings_path))}[/]"
    console.print(Panel(body, title="[bold]Learnings[/]", expand=False))


def _show_retrieval_panel(cfg: ProfundoConfig) -> None:
    r = cfg.retrieval
    mode = "semantic-only" if r.semantic_only else "hybrid (BM25 + vectors, RRF)"
    expansion = f"on ({cfg.expansion.model})" if cfg.expansion.enabled else "off"
    lines = [
        f"Mode: [bold]{mode}[/]",
        f"Embedding model: {escape(cfg.embedding.model)}",
        f"Query expansion: {escape(expansion)}",
        f"top_k={r.top_k}  threshold={r.similarity_threshold}  rrf_k={r.rrf_k}",
    ]
    console.print(Panel("\n".join(lines), title="[bold]Retrieval[/]", expand=False))
