"""Profundo CLI entry point."""

from __future__ import annotations

import importlib.metadata
from typing import Annotated

import typer
from rich.console import Console

from profundo.cli.common import configure_logging
from profundo.cli.embed import embed_cmd
from profundo.cli.harvest import harvest_cmd
from profundo.cli.init import init_cmd
from profundo.cli.learnings import learnings_cmd
from profundo.cli.recall import recall_cmd
from profundo.cli.status import status_cmd


def _installed_version() -> str:
    try:
        return importlib.metadata.version("profundo")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"profundo {_installed_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="profundo",
    help=(
        "Profundo — hybrid recall over past agent sessions.\n\n"
        "  profundo embed     Chunk and embed new or changed session logs.\n"
        "  profundo recall    Search memory (BM25 candidates + vector re-ranking).\n"
        "  profundo harvest   Extract learnings from new sessions.\n"
        "  profundo learnings Browse harvested learnings."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show debug logging."),
    ] = False,
) -> None:
    """Profundo — hybrid recall over past agent sessions."""
    configure_logging(verbose, Console(stderr=True))


app.command("init")(init_cmd)
app.command("embed")(embed_cmd)
app.command("recall")(recall_cmd)
app.command("harvest")(harvest_cmd)
app.command("learnings")(learnings_cmd)
app.command("status")(status_cmd)


@app.command("version")
def version_cmd() -> None:
    """Show the installed Profundo version."""
    typer.echo(f"profundo {_installed_version()}")


if __name__ == "__main__":
    app()
