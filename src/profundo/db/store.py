"""Chunk store: fragment persistence, processed markers, and FTS5 search.

Single interface for everything the retriever and the embedding pipeline
read or write. The FTS5 index is maintained by triggers (see migrations), so
no method here touches ``chunks_fts`` except to query it.
"""

from __future__ import annotations

import sqlite3
import uuid
from collections.abc import Iterable, Sequence

from profundo.db.models import Fingerprint, Fragment, ProcessedMarker, StoreStats
from profundo.db.vectors import decode_vector, encode_vector

# Stay well below SQLite's host-parameter limit for IN (...) lists.
_KEY_BATCH = 500

_FRAGMENT_COLUMNS = "rowid, id, session_id, turn_start, turn_end, timestamp, text, embedding"


class ChunkStore:
    """Data access layer for fragments and processed-session markers.

    Wraps an open sqlite3.Connection; the connection is owned by the caller
    and must be closed after use.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with the schema initialised
                (see profundo.db.schema.initialize).
        """
        self._conn = conn

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def replace_fragments(
        self,
        session_id: str,
        fingerprint: Fingerprint,
        fragments: Sequence[Fragment],
    ) -> int:
        """Atomically replace every fragment of *session_id* and mark it processed.

        The delete, the inserts and the marker upsert share one transaction:
        on any error the transaction is rolled back and the previous fragment
        set stays intact.

        Args:
            session_id: Session whose fragments are replaced.
            fingerprint: Size/mtime (and path) of the session file.
            fragments: New fragments; ``id`` and ``rowid`` are assigned here.

        Returns:
            Number of fragments stored.
        """
        assigned: list[tuple[Fragment, str, int]] = []
        with self._conn:
            self._conn.execute("DELETE FROM chunks WHERE session_id = ?", (session_id,))
            for fragment in fragments:
                fragment_id = str(uuid.uuid4())
                cur = self._conn.execute(
                    """
                    INSERT INTO chunks (id, session_id, turn_start, turn_end, timestamp, text, embedding)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        fragment_id,
                        session_id,
                        fragment.turn_start,
                        fragment.turn_end,
                        fragment.timestamp,
                        fragment.text,
                        encode_vector(fragment.embedding),
                    ),
                )
                assigned.append((fragment, fragment_id, cur.lastrowid))
            self._conn.execute(
                """
                INSERT INTO sessions_processed (session_id, file_path, file_size, file_mtime, chunks_count)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(session_id) DO UPDATE SET
                    file_path = excluded.file_path,
                    file_size = excluded.file_size,
                    file_mtime = excluded.file_mtime,
                    chunks_count = excluded.chunks_count,
                    processed_at = datetime('now')
                """,
                (
                    session_id,
                    fingerprint.path,
                    fingerprint.size,
                    fingerprint.mtime,
                    len(fragments),
                ),
            )
        # Only committed fragments get keys.
        for fragment, fragment_id, rowid in assigned:
            fragment.id = fragment_id
            fragment.rowid = rowid
        return len(fragments)

    # ------------------------------------------------------------------
    # Processed markers
    # ------------------------------------------------------------------

    def is_processed(self, session_id: str, size: int, mtime: int) -> bool:
        """Return True only if a marker exists and both size and mtime match."""
        marker = self.get_marker(session_id)
        if marker is None:
            return False
        return marker.file_size == size and marker.file_mtime == mtime

    def get_marker(self, session_id: str) -> ProcessedMarker | None:
        row = self._conn.execute(
            """
            SELECT session_id, file_path, file_size, file_mtime, chunks_count, processed_at
            FROM sessions_processed WHERE session_id = ?
            """,
            (session_id,),
        ).fetchone()
        return _row_to_marker(row) if row else None

    # ------------------------------------------------------------------
    # FTS5 / BM25 search
    # ------------------------------------------------------------------

    def lexical_search(self, query: str, limit: int) -> list[tuple[int, float]]:
        """BM25 full-text search. Returns (rowid, rank) sorted best-first.

        bm25() returns negative values; lower (more negative) = better match.
        The query is sanitized so user text can never be parsed as FTS5
        syntax; an empty sanitized query returns [] without querying.
        """
        fts_query = sanitize_fts_query(query)
        if not fts_query or limit <= 0:
            return []
        rows = self._conn.execute(
            """
            SELECT rowid, bm25(chunks_fts) AS rank
            FROM chunks_fts
            WHERE chunks_fts MATCH ?
            ORDER BY rank
            LIMIT ?
            """,
            (fts_query, limit),
        ).fetchall()
        return [(row["rowid"], float(row["rank"])) for row in rows]

    # ------------------------------------------------------------------
    # Fragment loading
    # ------------------------------------------------------------------

    def load_by_keys(self, rowids: Iterable[int]) -> list[Fragment]:
        """Load only the fragments whose rowid is in *rowids* (with vectors).

        Returns an empty list, without querying, for empty input. Order of the
        result is by rowid, not by the order of *rowids*.
        """
        keys = sorted(set(rowids))
        if not keys:
            return []

        fragments: list[Fragment] = []
        for start in range(0, len(keys), _KEY_BATCH):
            batch = keys[start : start + _KEY_BATCH]
            placeholders = ",".join("?" * len(batch))
            rows = self._conn.execute(
                f"SELECT {_FRAGMENT_COLUMNS} FROM chunks WHERE rowid IN ({placeholders}) ORDER BY rowid",  # noqa: S608
                batch,
            ).fetchall()
            fragments.extend(_row_to_fragment(r) for r in rows)
        return fragments

    def load_all(self) -> list[Fragment]:
        """Load every fragment in the store. Used only as a fallback path."""
        rows = self._conn.execute(
            f"SELECT {_FRAGMENT_COLUMNS} FROM chunks ORDER BY rowid"  # noqa: S608
        ).fetchall()
        return [_row_to_fragment(r) for r in rows]

    def load_by_session(self, session_id: str) -> list[Fragment]:
        """Return the fragments of *session_id* ordered by turn_start."""
        rows = self._conn.execute(
            f"SELECT {_FRAGMENT_COLUMNS} FROM chunks WHERE session_id = ? ORDER BY turn_start, rowid",  # noqa: S608
            (session_id,),
        ).fetchall()
        return [_row_to_fragment(r) for r in rows]

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def stats(self) -> StoreStats:
        chunks_count = self._conn.execute("SELECT COUNT(*) FROM chunks").fetchone()[0]
        sessions_count = self._conn.execute(
            "SELECT COUNT(*) FROM sessions_processed"
        ).fetchone()[0]
        last_processed = self._conn.execute(
            "SELECT MAX(processed_at) FROM sessions_processed"
        ).fetchone()[0]
        return StoreStats(
            chunks_count=chunks_count,
            sessions_count=sessions_count,
            last_processed=last_processed,
        )

    def vector_dimensions(self) -> int | None:
        """Return the embedding length of the most recent fragment, or None if empty."""
        row = self._conn.execute(
            "SELECT length(embedding) FROM chunks ORDER BY rowid DESC LIMIT 1"
        ).fetchone()
        if row is None or row[0] is None:
            return None
        # Trailing partial floats are ignored, as in decode_vector.
        return row[0] // 4


# ------------------------------------------------------------------
# Query sanitization
# ------------------------------------------------------------------


def sanitize_fts_query(query: str) -> str:
    """Quote every whitespace-delimited token of *query* for FTS5 MATCH.

    Embedded double quotes are stripped first, so boolean operators
    (AND/OR/NOT/NEAR), unbalanced quotes, parentheses and column filters are
    all matched as literal strings instead of being parsed as syntax.

    Example:
        'AND "unterminated' -> '"AND" "unterminated"'
    """
    tokens = (token.replace('"', "") for token in query.split())
    return " ".join(f'"{token}"' for token in tokens if token)


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------


def _row_to_fragment(row: sqlite3.Row) -> Fragment:
    return Fragment(
        rowid=row["rowid"],
        id=row["id"],
        session_id=row["session_id"],
        turn_start=row["turn_start"],
        turn_end=row["turn_end"],
        timestamp=row["timestamp"],
        text=row["text"],
        embedding=decode_vector(row["embedding"]),
    )


def _row_to_marker(row: sqlite3.Row) -> ProcessedMarker:
    return ProcessedMarker(
        session_id=row["session_id"],
        file_path=row["file_path"],
        file_size=row["file_size"],
        file_mtime=row["file_mtime"],
        chunks_count=row["chunks_count"],
        processed_at=row["processed_at"],
    )
