"""Options and helpers shared by the profundo commands."""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler

from profundo.cli.errors import err_config, err_no_api_key
from profundo.config import ConfigError, ProfundoConfig, load_config
from profundo.db.connection import Database
from profundo.db.schema import initialize
from profundo.rag.llm_client import provider_of, validate_api_key

SessionsDirOpt = Annotated[
    Path | None,
    typer.Option("--sessions-dir", help="Directory of <session>.jsonl logs (overrides config)."),
]
MemoryDirOpt = Annotated[
    Path | None,
    typer.Option("--memory-dir", help="Directory holding profundo.sqlite and learnings.jsonl (overrides config)."),
]


def configure_logging(verbose: bool, console: Console) -> None:
    """Route library log records through rich; WARNING by default, DEBUG if *verbose*."""
    root = logging.getLogger("profundo")
    root.handlers.clear()
    root.addHandler(RichHandler(console=console, show_path=False, markup=False))
    root.setLevel(logging.DEBUG if verbose else logging.WARNING)
    root.propagate = False


def resolve_config(
    console: Console,
    sessions_dir: Path | None = None,
    memory_dir: Path | None = None,
) -> ProfundoConfig:
    """Load config and apply the path flags; exit 1 on an invalid config."""
    try:
        cfg = load_config()
    except ConfigError as exc:
        console.print(err_config(exc))
        raise typer.Exit(1)

    if sessions_dir is not None:
        cfg.paths.sessions_dir = sessions_dir
    if memory_dir is not None:
        cfg.paths.memory_dir = memory_dir
    return cfg


def require_api_key(console: Console, model: str) -> None:
    """Exit 1 with an actionable message if *model*'s provider key is missing."""
    try:
        validate_api_key(model)
    except EnvironmentError:
        console.print(err_no_api_key(provider_of(model)))
        raise typer.Exit(1)


def open_db(db_path: Path) -> sqlite3.Connection:
    """Open (or create) the memory database and run migrations."""
    conn = Database(db_path).connect()
    initialize(conn)
    return conn
