"""Embedding pipeline: session files → fragments → vectors → chunk store.

A session is reprocessed only when its file size or mtime differs from the
stored marker (or when ``force`` is set). Reprocessing replaces the whole
fragment set of the session in one transaction.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from profundo.db.models import Fingerprint
from profundo.db.store import ChunkStore
from profundo.rag.llm_client import EMBED_BATCH_SIZE, embed_batch
from profundo.sessions.session import Session

logger = logging.getLogger(__name__)


@dataclass
class EmbedConfig:
    """Configuration for the embedding pipeline."""

    model: str = "openai/text-embedding-3-small"
    chunk_size: int = 3
    overlap: int = 1
    batch_size: int = EMBED_BATCH_SIZE
    force: bool = False


@dataclass(frozen=True)
class SessionFile:
    session_id: str
    path: Path
    size: int
    mtime: int

    @property
    def fingerprint(self) -> Fingerprint:
        return Fingerprint(size=self.size, mtime=self.mtime, path=str(self.path))


@dataclass
class EmbedStats:
    processed: int = 0
    skipped: int = 0
    chunks_created: int = 0
    errors: int = 0


def discover_sessions(sessions_dir: Path) -> list[SessionFile]:
    """Return the ``*.jsonl`` session files directly under *sessions_dir*.

    Files whose name contains ``.deleted`` are ignored. Results are sorted by
    mtime, oldest first.

    Raises:
        FileNotFoundError: If *sessions_dir* does not exist.
    """
    if not sessions_dir.is_dir():
        raise FileNotFoundError(f"Sessions directory not found: {sessions_dir}")

    sessions: list[SessionFile] = []
    for path in sessions_dir.iterdir():
        if path.suffix != ".jsonl" or ".deleted" in path.name or not path.is_file():
            continue
        st = path.stat()
        sessions.append(
            SessionFile(session_id=path.stem, path=path, size=st.st_size, mtime=int(st.st_mtime))
        )
    sessions.sort(key=lambda s: (s.mtime, s.session_id))
    return sessions


def pending_sessions(
    store: ChunkStore, sessions: list[SessionFile], force: bool = False
) -> tuple[list[SessionFile], int]:
    """Split *sessions* into (to_process, skipped_count)."""
    if force:
        return list(sessions), 0
    todo = [s for s in sessions if not store.is_processed(s.session_id, s.size, s.mtime)]
    return todo, len(sessions) - len(todo)


def process_session(store: ChunkStore, session_file: SessionFile, config: EmbedConfig) -> int:
    """Parse, chunk, embed and store one session. Returns the fragment count.

    Sessions that yield no fragments are still marked processed so they are
    not re-read on the next run.
    """
    session = Session.from_file(session_file.path)
    fragments = session.to_fragments(config.chunk_size, config.overlap)

    if fragments:
        vectors = embed_batch(
            config.model, [f.text for f in fragments], batch_size=config.batch_size
        )
        if len(vectors) != len(fragments):
            raise RuntimeError(
                f"Embedding returned {len(vectors)} vectors for {len(fragments)} fragments."
            )
        for fragment, vector in zip(fragments, vectors):
            fragment.embedding = vector

    return store.replace_fragments(session_file.session_id, session_file.fingerprint, fragments)


def embed_sessions(
    store: ChunkStore,
    sessions: list[SessionFile],
    config: EmbedConfig,
    on_progress: Callable[[SessionFile], None] | None = None,
) -> EmbedStats:
    """Embed and store each of *sessions* (use pending_sessions() to select them).

    A failure on one session is logged and counted; the run continues and
    that session keeps its previous fragments.
    """
    stats = EmbedStats()

    for session_file in sessions:
        try:
            stats.chunks_created += process_session(store, session_file, config)
            stats.processed += 1
        except Exception as exc:
            stats.errors += 1
            logger.error("Error processing session %s: %s", session_file.session_id, exc)
        if on_progress is not None:
            on_progress(session_file)

    return stats
