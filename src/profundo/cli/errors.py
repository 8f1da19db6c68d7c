"""Profundo rich error messages — actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from profundo.cli.errors import err_no_api_key, err_no_db
    console.print(err_no_api_key("openai"))
    raise typer.Exit(1)
"""

from __future__ import annotations

from rich.markup import escape

from profundo.rag.llm_client import provider_env_var


def err_no_api_key(provider: str) -> str:
    """No API key for *provider*.

    Example:
        No API key for 'openai'. Set:  export OPENAI_API_KEY=sk-...
    """
    env_var = provider_env_var(provider) or f"{provider.upper()}_API_KEY"
    return (
        f"[red]Error:[/] No API key for '{provider}'.\n"
        f"  Set:  export {env_var}=sk-..."
    )


def err_no_db(db_path: str) -> str:
    """No profundo.sqlite at the configured memory directory."""
    return (
        f"[red]Error:[/] No memory database found at '{escape(db_path)}'.\n"
        "  Run:  profundo embed"
    )


def err_sessions_dir_missing(path: str) -> str:
    """Configured sessions directory does not exist."""
    return (
        f"[red]Error:[/] Sessions directory not found: '{escape(path)}'\n"
        "  Pass --sessions-dir, set PROFUNDO_SESSIONS_DIR, or set paths.sessions_dir in profundo.yaml."
    )


def err_embedding_failed(model: str, exc: Exception) -> str:
    """The embedding call for the query failed — no search is possible without it."""
    return (
        f"[red]Error:[/] Could not embed the query with '{escape(model)}': {escape(str(exc))}\n"
        "  Check your network connection and API key, then retry."
    )


def err_store_failed(db_path: str, exc: Exception) -> str:
    """The memory database could not be read during a search."""
    return (
        f"[red]Error:[/] Could not read the memory database at '{escape(db_path)}': {escape(str(exc))}\n"
        "  Check that the file is not locked or corrupt, then retry."
    )


def err_config(exc: Exception) -> str:
    """A config file or environment variable is invalid."""
    return (
        f"[red]Error:[/] Invalid configuration: {escape(str(exc))}\n"
        "  Fix profundo.yaml / ~/.profundo/config.yaml or the PROFUNDO_* environment variables."
    )


def warn_context_unavailable(reason: str) -> str:
    """Context expansion fell back to the stored fragment text."""
    return f"[yellow]⚠[/] {escape(reason)}"


def warn_no_results(query: str) -> str:
    return f"[yellow]→[/] No results found for: [italic]{escape(query)}[/]"
