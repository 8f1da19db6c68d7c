"""profundo embed — chunk and embed session logs into the memory database."""

from __future__ import annotations

from typing import Annotated

import typer
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn

from profundo.cli.common import MemoryDirOpt, SessionsDirOpt, open_db, require_api_key, resolve_config
from profundo.cli.errors import err_sessions_dir_missing
from profundo.db.store import ChunkStore
from profundo.sessions.embedder import (
    EmbedConfig,
    SessionFile,
    discover_sessions,
    embed_sessions,
    pending_sessions,
)

console = Console()


def embed_cmd(
    full: Annotated[
        bool,
        typer.Option("--full", help="Reprocess all sessions, even if already embedded."),
    ] = False,
    chunk_size: Annotated[
        int | None,
        typer.Option("--chunk-size", min=1, help="Conversation turns per fragment."),
    ] = None,
    overlap: Annotated[
        int | None,
        typer.Option("--overlap", min=0, help="Turns shared by consecutive fragments."),
    ] = None,
    sessions_dir: SessionsDirOpt = None,
    memory_dir: MemoryDirOpt = None,
) -> None:
    """Embed session logs for hybrid recall."""
    cfg = resolve_config(console, sessions_dir, memory_dir)

    if not cfg.paths.sessions_dir.is_dir():
        console.print(err_sessions_dir_missing(str(cfg.paths.sessions_dir)))
        raise typer.Exit(1)

    config = EmbedConfig(
        model=cfg.embedding.model,
        chunk_size=chunk_size if chunk_size is not None else cfg.chunking.chunk_size,
        overlap=overlap if overlap is not None else cfg.chunking.overlap,
        batch_size=cfg.embedding.batch_size,
        force=full,
    )

    sessions = discover_sessions(cfg.paths.sessions_dir)
    console.print(f"[blue]→[/] Found [cyan]{len(sessions)}[/] session files")

    conn = open_db(cfg.paths.db_path)
    try:
        store = ChunkStore(conn)
        todo, skipped = pending_sessions(store, sessions, force=config.force)

        if not todo:
            console.print("[green]✓[/] All sessions already processed")
            return

        require_api_key(console, config.model)
        console.print(
            f"[blue]→[/] Processing [cyan]{len(todo)}[/] sessions ([yellow]{skipped}[/] skipped)"
        )

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            transient=True,
            console=console,
        ) as prog:
            task = prog.add_task("Embedding…", total=len(todo))

            def _on_session(session_file: SessionFile) -> None:
                prog.update(task, advance=1, description=session_file.session_id)

            stats = embed_sessions(store, todo, config, on_progress=_on_session)
    finally:
        conn.close()

    console.print(
        f"\n[green]✓[/] Processed [cyan]{stats.processed}[/] sessions, "
        f"created [cyan]{stats.chunks_created}[/] chunks "
        f"([red]{stats.errors}[/] errors)"
    )
