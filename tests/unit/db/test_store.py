"""Tests for the chunk store: atomic replacement, markers, FTS5 search, loading."""

from __future__ import annotations

import sqlite3

import pytest

from profundo.db.models import Fingerprint, Fragment
from profundo.db.store import ChunkStore, sanitize_fts_query
from profundo.db.vectors import encode_vector


@pytest.fixture
def store(tmp_db):
    return ChunkStore(tmp_db)


def _fragment(text="hello world", start=0, end=1, vec=None, session="sess-1", ts=None):
    return Fragment(
        session_id=session,
        turn_start=start,
        turn_end=end,
        text=text,
        embedding=vec if vec is not None else [0.1, 0.2, 0.3],
        timestamp=ts,
    )


_FP = Fingerprint(size=100, mtime=1_700_000_000, path="/tmp/sess-1.jsonl")


# ------------------------------------------------------------------
# replace_fragments
# ------------------------------------------------------------------


def test_replace_fragments_assigns_ids_and_rowids(store):
    frags = [_fragment("first", 0, 1), _fragment("second", 1, 2)]
    n = store.replace_fragments("sess-1", _FP, frags)
    assert n == 2
    assert all(f.id is not None for f in frags)
    assert all(isinstance(f.rowid, int) for f in frags)
    assert frags[0].id != frags[1].id


def test_replace_fragments_roundtrips_fields(store):
    store.replace_fragments(
        "sess-1", _FP, [_fragment("stored text", 2, 5, [1.0, -0.5, 0.25], ts="2026-01-02T10:00:00Z")]
    )
    [loaded] = store.load_by_session("sess-1")
    assert loaded.text == "stored text"
    assert (loaded.turn_start, loaded.turn_end) == (2, 5)
    assert loaded.timestamp == "2026-01-02T10:00:00Z"
    assert loaded.embedding == pytest.approx([1.0, -0.5, 0.25])


def test_replace_fragments_replaces_previous_set(store):
    store.replace_fragments("sess-1", _FP, [_fragment("old one"), _fragment("old two", 1, 2)])
    store.replace_fragments("sess-1", _FP, [_fragment("new only")])
    texts = [f.text for f in store.load_by_session("sess-1")]
    assert texts == ["new only"]


def test_replace_fragments_leaves_other_sessions_alone(store):
    store.replace_fragments("sess-1", _FP, [_fragment("one")])
    store.replace_fragments("sess-2", _FP, [_fragment("two", session="sess-2")])
    store.replace_fragments("sess-1", _FP, [])
    assert store.load_by_session("sess-1") == []
    assert [f.text for f in store.load_by_session("sess-2")] == ["two"]


def test_replace_fragments_keeps_lexical_index_in_sync(store):
    store.replace_fragments("sess-1", _FP, [_fragment("kubernetes deployment notes")])
    assert len(store.lexical_search("kubernetes", 10)) == 1

    store.replace_fragments("sess-1", _FP, [_fragment("terraform state migration")])
    assert store.lexical_search("kubernetes", 10) == []
    assert len(store.lexical_search("terraform", 10)) == 1


def test_replace_fragments_is_atomic_on_failure_mid_batch(store, monkeypatch):
    store.replace_fragments("sess-1", _FP, [_fragment("original alpha"), _fragment("original beta", 1, 2)])
    before = [(f.id, f.text) for f in store.load_by_session("sess-1")]

    calls = {"n": 0}

    def _failing_encode(vector):
        calls["n"] += 1
        if calls["n"] == 2:
            raise RuntimeError("disk on fire")
        return encode_vector(vector)

    monkeypatch.setattr("profundo.db.store.encode_vector", _failing_encode)
    new_fp = Fingerprint(size=999, mtime=1_800_000_000, path="/tmp/sess-1.jsonl")
    replacements = [_fragment("replacement one"), _fragment("replacement two", 1, 2)]
    with pytest.raises(RuntimeError, match="disk on fire"):
        store.replace_fragments("sess-1", new_fp, replacements)

    after = [(f.id, f.text) for f in store.load_by_session("sess-1")]
    assert after == before
    assert store.is_processed("sess-1", _FP.size, _FP.mtime)
    assert not store.is_processed("sess-1", new_fp.size, new_fp.mtime)
    assert store.lexical_search("replacement", 10) == []
    assert len(store.lexical_search("original", 10)) == 2
    assert all(f.id is None and f.rowid is None for f in replacements)


def test_replace_fragments_rejects_inverted_turn_range(store):
    store.replace_fragments("sess-1", _FP, [_fragment("keep me")])
    with pytest.raises(sqlite3.IntegrityError):
        store.replace_fragments("sess-1", _FP, [_fragment("bad", start=3, end=3)])
    assert [f.text for f in store.load_by_session("sess-1")] == ["keep me"]


# ------------------------------------------------------------------
# is_processed / markers
# ------------------------------------------------------------------


def test_is_processed_false_when_absent(store):
    assert store.is_processed("never-seen", 1, 1) is False


def test_is_processed_true_on_exact_match(store):
    store.replace_fragments("sess-1", _FP, [_fragment()])
    assert store.is_processed("sess-1", _FP.size, _FP.mtime) is True


@pytest.mark.parametrize("size, mtime", [(101, _FP.mtime), (_FP.size, _FP.mtime + 1), (0, 0)])
def test_is_processed_false_on_any_mismatch(store, size, mtime):
    store.replace_fragments("sess-1", _FP, [_fragment()])
    assert store.is_processed("sess-1", size, mtime) is False


def test_empty_fragment_set_still_marks_processed(store):
    store.replace_fragments("sess-empty", _FP, [])
    assert store.is_processed("sess-empty", _FP.size, _FP.mtime)
    marker = store.get_marker("sess-empty")
    assert marker is not None
    assert marker.chunks_count == 0
    assert marker.file_path == _FP.path


def test_marker_updated_on_reprocess(store):
    store.replace_fragments("sess-1", _FP, [_fragment()])
    store.replace_fragments("sess-1", Fingerprint(size=5, mtime=6), [_fragment(), _fragment("x", 1, 2)])
    marker = store.get_marker("sess-1")
    assert (marker.file_size, marker.file_mtime, marker.chunks_count) == (5, 6, 2)


# ------------------------------------------------------------------
# Lexical search
# ------------------------------------------------------------------


def test_sanitize_quotes_each_token():
    assert sanitize_fts_query("docker compose") == '"docker" "compose"'


def test_sanitize_neutralises_operators_and_unbalanced_quotes():
    assert sanitize_fts_query('AND "unterminated') == '"AND" "unterminated"'


def test_sanitize_drops_quote_only_tokens():
    assert sanitize_fts_query('" "" foo') == '"foo"'
    assert sanitize_fts_query("   ") == ""


@pytest.mark.parametrize(
    "query",
    [
        'AND "unterminated',
        "NOT",
        "foo OR",
        "(group",
        "NEAR(a b",
        "text:column",
        "star*",
        "a - b ^ c",
        "{curly} [brackets]",
    ],
)
def test_lexical_search_never_raises_on_syntax(store, query):
    store.replace_fragments("sess-1", _FP, [_fragment("plain text about foo and group")])
    results = store.lexical_search(query, 10)
    assert isinstance(results, list)


def test_lexical_search_empty_query_returns_empty(store):
    store.replace_fragments("sess-1", _FP, [_fragment("anything")])
    assert store.lexical_search("", 10) == []
    assert store.lexical_search('""', 10) == []


def test_lexical_search_returns_rowids_ranked_ascending(store):
    frags = [
        _fragment("python asyncio event loop", 0, 1),
        _fragment("rust borrow checker", 1, 2),
        _fragment("python python python packaging", 2, 3),
    ]
    store.replace_fragments("sess-1", _FP, frags)
    results = store.lexical_search("python", 10)
    rowids = {rowid for rowid, _ in results}
    assert rowids == {frags[0].rowid, frags[2].rowid}
    ranks = [rank for _, rank in results]
    assert ranks == sorted(ranks)


def test_lexical_search_respects_limit(store):
    store.replace_fragments(
        "sess-1", _FP, [_fragment(f"common word {i}", i, i + 1) for i in range(10)]
    )
    assert len(store.lexical_search("common", 3)) == 3
    assert store.lexical_search("common", 0) == []


def test_lexical_search_is_case_insensitive_and_stemmed(store):
    store.replace_fragments("sess-1", _FP, [_fragment("Deploying the services")])
    assert len(store.lexical_search("deploy", 5)) == 1


# ------------------------------------------------------------------
# Loading
# ------------------------------------------------------------------


def test_load_by_keys_empty_input_does_not_query(tmp_db):
    class _NoQuery:
        def execute(self, *args, **kwargs):
            raise AssertionError("store was queried")

    assert ChunkStore(_NoQuery()).load_by_keys([]) == []


def test_load_by_keys_loads_only_requested(store):
    frags = [_fragment(f"frag {i}", i, i + 1) for i in range(5)]
    store.replace_fragments("sess-1", _FP, frags)
    wanted = [frags[1].rowid, frags[3].rowid]
    loaded = store.load_by_keys(wanted)
    assert sorted(f.rowid for f in loaded) == sorted(wanted)
    assert all(f.embedding for f in loaded)


def test_load_by_keys_ignores_unknown_and_duplicate_keys(store):
    frags = [_fragment("only")]
    store.replace_fragments("sess-1", _FP, frags)
    loaded = store.load_by_keys([frags[0].rowid, frags[0].rowid, 987654])
    assert [f.rowid for f in loaded] == [frags[0].rowid]


def test_load_by_keys_batches_large_key_sets(store):
    frags = [_fragment(f"f{i}", i, i + 1) for i in range(1200)]
    store.replace_fragments("sess-1", _FP, frags)
    loaded = store.load_by_keys(f.rowid for f in frags)
    assert len(loaded) == 1200


def test_load_all_returns_every_fragment(store):
    store.replace_fragments("a", _FP, [_fragment("one", session="a")])
    store.replace_fragments("b", _FP, [_fragment("two", session="b"), _fragment("three", 1, 2, session="b")])
    assert {f.text for f in store.load_all()} == {"one", "two", "three"}


def test_load_all_empty_store(store):
    assert store.load_all() == []


def test_malformed_vector_blob_is_truncated(store, tmp_db):
    tmp_db.execute(
        "INSERT INTO chunks (id, session_id, turn_start, turn_end, text, embedding) VALUES (?, ?, ?, ?, ?, ?)",
        ("bad-1", "sess-x", 0, 1, "broken vector", encode_vector([1.0, 2.0]) + b"\x00\x01\x02"),
    )
    tmp_db.commit()
    [frag] = store.load_all()
    assert frag.embedding == pytest.approx([1.0, 2.0])


# ------------------------------------------------------------------
# Stats
# ------------------------------------------------------------------


def test_stats_empty(store):
    stats = store.stats()
    assert stats.chunks_count == 0
    assert stats.sessions_count == 0
    assert stats.last_processed is None


def test_stats_counts(store):
    store.replace_fragments("a", _FP, [_fragment(session="a"), _fragment("x", 1, 2, session="a")])
    store.replace_fragments("b", _FP, [])
    stats = store.stats()
    assert stats.chunks_count == 2
    assert stats.sessions_count == 2
    assert stats.last_processed is not None


def test_vector_dimensions(store):
    assert store.vector_dimensions() is None
    store.replace_fragments("a", _FP, [_fragment(vec=[0.0] * 8, session="a")])
    assert store.vector_dimensions() == 8


def test_vector_dimensions_with_malformed_blob(store, tmp_db):
    tmp_db.execute(
        "INSERT INTO chunks (id, session_id, turn_start, turn_end, text, embedding) VALUES (?, ?, ?, ?, ?, ?)",
        ("bad-1", "sess-x", 0, 1, "broken vector", encode_vector([1.0, 2.0]) + b"\x00\x01\x02"),
    )
    tmp_db.commit()
    assert store.vector_dimensions() == 2
