"""Session log parsing and the embedding pipeline."""

from profundo.sessions.session import (
    Session,
    SessionNotFoundError,
    Turn,
    TurnLoader,
    chunk_turns,
)

__all__ = [
    "Session",
    "SessionNotFoundError",
    "Turn",
    "TurnLoader",
    "chunk_turns",
]
