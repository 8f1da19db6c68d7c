"""Forward-only migration runner for the Profundo store schema.

v1 is the plain fragment store. v2 adds the FTS5 lexical index over
``chunks.text`` and rebuilds it once so that fragments written by a v1
store become searchable; afterwards the triggers keep it in lockstep.
"""

from __future__ import annotations

import sqlite3

# schema_version is the bootstrap table, created before migrations run.
_CREATE_SCHEMA_VERSION = """
CREATE TABLE IF NOT EXISTS schema_version (
    version     INTEGER NOT NULL,
    applied_at  DATETIME NOT NULL DEFAULT (datetime('now'))
)
"""

_V1_SQL = """
CREATE TABLE IF NOT EXISTS chunks (
    id          TEXT PRIMARY KEY,
    session_id  TEXT NOT NULL,
    turn_start  INTEGER NOT NULL,
    turn_end    INTEGER NOT NULL,
    timestamp   TEXT,
    text        TEXT NOT NULL,
    embedding   BLOB NOT NULL,
    created_at  DATETIME NOT NULL DEFAULT (datetime('now')),
    CHECK (turn_start < turn_end)
);

CREATE INDEX IF NOT EXISTS idx_chunks_session_id ON chunks(session_id);
CREATE INDEX IF NOT EXISTS idx_chunks_timestamp ON chunks(timestamp);

CREATE TABLE IF NOT EXISTS sessions_processed (
    session_id    TEXT PRIMARY KEY,
    file_path     TEXT NOT NULL,
    file_size     INTEGER NOT NULL,
    file_mtime    INTEGER NOT NULL,
    chunks_count  INTEGER NOT NULL,
    processed_at  DATETIME NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS state (
    key    TEXT PRIMARY KEY,
    value  TEXT NOT NULL
);
"""

# External-content FTS5 index; rowid = chunks.rowid.
_V2_SQL = """
CREATE VIRTUAL TABLE IF NOT EXISTS chunks_fts USING fts5(
    text,
    content='chunks',
    content_rowid='rowid',
    tokenize='porter unicode61'
);

CREATE TRIGGER IF NOT EXISTS chunks_ai AFTER INSERT ON chunks BEGIN
    INSERT INTO chunks_fts(rowid, text) VALUES (new.rowid, new.text);
END;

CREATE TRIGGER IF NOT EXISTS chunks_ad AFTER DELETE ON chunks BEGIN
    INSERT INTO chunks_fts(chunks_fts, rowid, text) VALUES ('delete', old.rowid, old.text);
END;

CREATE TRIGGER IF NOT EXISTS chunks_au AFTER UPDATE ON chunks BEGIN
    INSERT INTO chunks_fts(chunks_fts, rowid, text) VALUES ('delete', old.rowid, old.text);
    INSERT INTO chunks_fts(rowid, text) VALUES (new.rowid, new.text);
END;

INSERT INTO chunks_fts(chunks_fts) VALUES ('rebuild');
INSERT OR REPLACE INTO state(key, value) VALUES ('chunks_fts_built', '1');
"""

# Append-only. Each entry: (version: int, sql: str).
# executescript() issues an implicit COMMIT before running.
MIGRATIONS: list[tuple[int, str]] = [
    (1, _V1_SQL),
    (2, _V2_SQL),
]


def current_version(conn: sqlite3.Connection) -> int:
    """Return the highest applied migration version (0 for a fresh database)."""
    conn.execute(_CREATE_SCHEMA_VERSION)
    conn.commit()
    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    return row[0] if row[0] is not None else 0


def run_migrations(conn: sqlite3.Connection, target: int | None = None) -> None:
    """Apply all pending migrations in ascending version order.

    Idempotent: safe to call on a database at any version.

    Args:
        conn: Open connection.
        target: Stop after this version (for tests that need an older schema).
    """
    current = current_version(conn)

    for version, sql in MIGRATIONS:
        if target is not None and version > target:
            break
        if version > current:
            conn.executescript(sql)
            conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (version,)
            )
            conn.commit()
