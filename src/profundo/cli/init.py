"""profundo init — create the global config and an empty memory database."""

from __future__ import annotations

from rich.console import Console
from rich.markup import escape

from profundo.cli.common import MemoryDirOpt, SessionsDirOpt, open_db, resolve_config
from profundo.config import ensure_global_config

console = Console()


def init_cmd(
    sessions_dir: SessionsDirOpt = None,
    memory_dir: MemoryDirOpt = None,
) -> None:
    """Create ~/.profundo/config.yaml (once) and the memory database."""
    global_path = ensure_global_config()
    console.print(f"  [green]✓[/] {escape(str(global_path))}")

    cfg = resolve_config(console, sessions_dir, memory_dir)
    conn = open_db(cfg.paths.db_path)
    conn.close()
    console.print(f"  [green]✓[/] {escape(str(cfg.paths.db_path))}")

    if not cfg.paths.sessions_dir.is_dir():
        console.print(
            f"  [yellow]⚠[/] Sessions directory not found: {escape(str(cfg.paths.sessions_dir))}"
        )
    console.print("\nNext:  profundo embed")
