"""profundo harvest — extract structured learnings from session logs."""

from __future__ import annotations

from datetime import datetime
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape

from profundo.cli.common import MemoryDirOpt, SessionsDirOpt, require_api_key, resolve_config
from profundo.cli.errors import err_sessions_dir_missing
from profundo.sessions.embedder import SessionFile
from profundo.sessions.harvest import (
    HarvestConfig,
    Learning,
    discover_harvestable,
    harvest_sessions,
    harvested_ids,
)

console = Console()


def harvest_cmd(
    since: Annotated[
        datetime | None,
        typer.Option("--since", formats=["%Y-%m-%d"], help="Only sessions started on or after YYYY-MM-DD."),
    ] = None,
    model: Annotated[
        str | None,
        typer.Option("--model", "-m", help="LiteLLM model used for extraction (default: config)."),
    ] = None,
    min_messages: Annotated[
        int | None,
        typer.Option("--min-messages", min=0, help="Skip sessions with fewer messages."),
    ] = None,
    sessions_dir: SessionsDirOpt = None,
    memory_dir: MemoryDirOpt = None,
) -> None:
    """Extract topics, decisions, facts and action items from new sessions."""
    cfg = resolve_config(console, sessions_dir, memory_dir)

    if not cfg.paths.sessions_dir.is_dir():
        console.print(err_sessions_dir_missing(str(cfg.paths.sessions_dir)))
        raise typer.Exit(1)

    config = HarvestConfig(
        model=model or cfg.harvest.model,
        min_messages=min_messages if min_messages is not None else cfg.harvest.min_messages,
        since=since.date() if since is not None else None,
    )

    learnings_path = cfg.paths.learnings_path
    done = harvested_ids(learnings_path)
    if done:
        console.print(f"[blue]→[/] [cyan]{len(done)}[/] sessions already harvested")

    todo = discover_harvestable(cfg.paths.sessions_dir, done, since=config.since)
    if not todo:
        console.print("[green]✓[/] Nothing new to harvest")
        return

    require_api_key(console, config.model)
    console.print(f"[blue]→[/] Found [cyan]{len(todo)}[/] sessions to harvest")

    def _on_result(session_file: SessionFile, learning: Learning | None, error: Exception | None) -> None:
        label = f"  [dim]{escape(session_file.session_id[:8])}[/]"
        if error is not None:
            console.print(f"{label} [red]error:[/] {escape(str(error))}")
        elif learning is None:
            console.print(f"{label} [yellow]skipped (too short)[/]")
        else:
            console.print(
                f"{label} {len(learning.topics)} topics, {len(learning.decisions)} decisions, "
                f"{len(learning.facts_learned)} facts"
            )

    stats = harvest_sessions(todo, learnings_path, config, on_result=_on_result)

    console.print(
        f"\n[green]✓[/] Harvested [cyan]{stats.harvested}[/] sessions "
        f"([yellow]{stats.skipped}[/] skipped, [red]{stats.errors}[/] errors)"
    )
