"""profundo learnings — browse and search harvested learnings."""

from __future__ import annotations

from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape

from profundo.cli.common import MemoryDirOpt, resolve_config
from profundo.sessions.harvest import Learning, load_learnings, search_learnings

console = Console()


def learnings_cmd(
    query: Annotated[
        str | None,
        typer.Argument(help="Case-insensitive text to look for in topics, summaries, facts and decisions."),
    ] = None,
    last: Annotated[
        int,
        typer.Option("--last", "-n", min=1, help="Show the N most recent matches."),
    ] = 10,
    memory_dir: MemoryDirOpt = None,
) -> None:
    """Show recent learnings, optionally filtered by QUERY."""
    cfg = resolve_config(console, memory_dir=memory_dir)
    path = cfg.paths.learnings_path

    if not path.is_file():
        console.print("[yellow]→[/] No learnings yet. Run [bold]profundo harvest[/] to create.")
        return

    shown = search_learnings(load_learnings(path), query, last)
    if not shown:
        if query:
            console.print(f"[yellow]→[/] No learnings found matching '{escape(query)}'")
        else:
            console.print("[yellow]→[/] No learnings yet. Run [bold]profundo harvest[/] to create.")
        return

    if query:
        console.print(f"\n[blue]→[/] [cyan]{len(shown)}[/] learnings matching '{escape(query)}'\n")

    for learning in shown:
        _print_learning(learning)


def _print_learning(learning: Learning) -> None:
    console.print(
        f"[bold]●[/] [cyan]{escape(learning.date)}[/] [dim]\\[{escape(learning.session_id[:8])}][/]"
    )
    if learning.topics:
        console.print(f"  [bold]Topics:[/] {escape(', '.join(learning.topics))}")
    for title, items in (
        ("Decisions", learning.decisions),
        ("Facts", learning.facts_learned),
        ("Actions", learning.action_items),
    ):
        if items:
            console.print(f"  [bold]{title}:[/]")
            for item in items:
                console.print(f"    • {escape(item)}")
    if learning.summary:
        console.print(f"  [bold]Summary:[/] [dim]{escape(learning.summary)}[/]")
    console.print()
