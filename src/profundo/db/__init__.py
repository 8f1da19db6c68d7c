"""Profundo chunk store."""

from profundo.db.connection import Database
from profundo.db.migrations import MIGRATIONS, run_migrations
from profundo.db.schema import initialize
from profundo.db.store import ChunkStore, sanitize_fts_query
from profundo.db.vectors import decode_vector, encode_vector

__all__ = [
    "ChunkStore",
    "Database",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
    "sanitize_fts_query",
    "encode_vector",
    "decode_vector",
]
