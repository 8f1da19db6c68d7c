"""Domain models for the Profundo chunk store."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class Fragment:
    """A stored, independently retrievable slice of a session.

    ``turn_start``/``turn_end`` form a half-open range of turn indices.
    ``id`` and ``rowid`` are assigned by the store; both are None for
    fragments that have not been written yet.
    """

    session_id: str
    turn_start: int
    turn_end: int
    text: str
    embedding: list[float] = field(default_factory=list)
    timestamp: str | None = None
    id: str | None = None
    rowid: int | None = None  # set after insert; key of the lexical index


@dataclass(frozen=True)
class Fingerprint:
    """Size/mtime of a session file at the time its fragments were generated."""

    size: int
    mtime: int
    path: str = ""


@dataclass
class ProcessedMarker:
    session_id: str
    file_path: str
    file_size: int
    file_mtime: int
    chunks_count: int
    processed_at: str | None = None


@dataclass
class StoreStats:
    chunks_count: int
    sessions_count: int
    last_processed: str | None = None
