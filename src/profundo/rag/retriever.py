"""Hybrid retriever: BM25 (FTS5) candidate pool + cosine re-ranking, fused via RRF.

Per query:
  1. Lexical query strings: the query itself plus up to 2 LLM paraphrases
     (expansion is optional and never fatal).
  2. Each string fetches a pool of max(top_k * 40, 200) rowids from FTS5;
     pools are merged keeping each rowid's best (lowest) bm25 rank.
  3. Only the pooled fragments are loaded with their vectors. An empty pool
     falls back to loading the whole corpus.
  4. Candidates are cosine-scored against the query vector; those below the
     similarity threshold leave the semantic ranking.
  5. Reciprocal Rank Fusion:
       score(d) = 1 / (k + rank_semantic) + 1 / (k + rank_lexical)   k = 60
     A rowid missing from one ranking takes rank 10000 there.

The pure-semantic path (exhaustive cosine over every fragment) is selected
only by ``SearchConfig.semantic_only``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from profundo.db.models import Fragment
from profundo.db.store import ChunkStore
from profundo.rag.expansion import expand_query
from profundo.rag.llm_client import embed
from profundo.rag.similarity import cosine_similarity

logger = logging.getLogger(__name__)

RRF_K = 60
FALLBACK_RANK = 10_000


@dataclass
class SearchConfig:
    """Configuration for one search invocation.

    Attributes:
        top_k: Maximum number of results returned.
        similarity_threshold: Minimum cosine similarity for a candidate to
            enter the semantic ranking.
        semantic_only: Skip the lexical stage and score every fragment.
        expand: Widen lexical recall with LLM paraphrases of the query.
        context_turns: Turns of surrounding context to show per result
            (None = show the stored fragment text only).
        embedding_model: LiteLLM embedding model used for the query vector.
        expansion_model: LiteLLM chat model used for query expansion.
        rrf_k: RRF smoothing constant.
        fallback_rank: Rank assigned in a ranking the fragment is absent from.
        pool_multiplier: Lexical pool size per result requested.
        min_pool: Lower bound on the lexical pool size.
        max_variants: Maximum number of paraphrases used by expansion.
    """

    top_k: int = 5
    similarity_threshold: float = 0.3
    semantic_only: bool = False
    expand: bool = False
    context_turns: int | None = None
    embedding_model: str = "openai/text-embedding-3-small"
    expansion_model: str = "openai/gpt-4o-mini"
    rrf_k: int = RRF_K
    fallback_rank: int = FALLBACK_RANK
    pool_multiplier: int = 40
    min_pool: int = 200
    max_variants: int = 2


@dataclass
class SearchResult:
    """A retrieved fragment with its display similarity and fusion score.

    Attributes:
        fragment: The stored fragment (with vector).
        similarity: Raw cosine similarity, or 0.0 if the fragment did not
            enter (or did not pass) semantic scoring. Display only.
        score: Fused RRF score used for ordering (similarity in semantic-only mode).
        lexical_rank: 1-based rank in the merged lexical pool, None if absent.
        semantic_rank: 1-based rank among candidates passing the threshold,
            None if absent.
    """

    fragment: Fragment
    similarity: float
    score: float
    lexical_rank: int | None = None
    semantic_rank: int | None = None


def search(query: str, store: ChunkStore, config: SearchConfig) -> list[SearchResult]:
    """Embed *query* once and return the best fragments, best-first.

    Embedding failures propagate: no result can be produced without a query
    vector. Query-expansion failures are logged and ignored.
    """
    query_vector = embed(config.embedding_model, query)

    if config.semantic_only:
        return semantic_search(store, query_vector, config)

    queries = [query]
    if config.expand:
        queries = expand_query(query, config.expansion_model, config.max_variants)

    return hybrid_search(store, queries, query_vector, config)


# ------------------------------------------------------------------
# Hybrid path
# ------------------------------------------------------------------


def candidate_pool_size(config: SearchConfig) -> int:
    """Number of lexical candidates requested per query string."""
    return max(config.top_k * config.pool_multiplier, config.min_pool)


def hybrid_search(
    store: ChunkStore,
    queries: list[str],
    query_vector: list[float],
    config: SearchConfig,
) -> list[SearchResult]:
    """Lexical candidate generation, bounded cosine re-ranking, and RRF fusion."""
    if config.top_k <= 0:
        return []

    pool_size = candidate_pool_size(config)
    pool = merge_lexical_pools(store.lexical_search(q, pool_size) for q in queries)

    if pool:
        candidates = store.load_by_keys(pool)
    else:
        logger.debug("Lexical pool empty for %r; falling back to full scan", queries[0])
        candidates = store.load_all()

    if not candidates:
        return []

    lexical_ranking = sorted(pool, key=lambda rowid: (pool[rowid], rowid))

    similarities: dict[int, float] = {}
    for fragment in candidates:
        sim = cosine_similarity(query_vector, fragment.embedding)
        if sim >= config.similarity_threshold:
            similarities[fragment.rowid] = sim
    semantic_ranking = sorted(similarities, key=lambda rowid: (-similarities[rowid], rowid))

    fused = rrf_fuse(
        semantic_ranking,
        lexical_ranking,
        rrf_k=config.rrf_k,
        fallback_rank=config.fallback_rank,
    )

    by_rowid = {fragment.rowid: fragment for fragment in candidates}
    lexical_pos = {rowid: i + 1 for i, rowid in enumerate(lexical_ranking)}
    semantic_pos = {rowid: i + 1 for i, rowid in enumerate(semantic_ranking)}

    ordered = sorted(
        (rowid for rowid in fused if rowid in by_rowid),
        key=lambda rowid: (-fused[rowid], rowid),
    )
    return [
        SearchResult(
            fragment=by_rowid[rowid],
            similarity=similarities.get(rowid, 0.0),
            score=fused[rowid],
            lexical_rank=lexical_pos.get(rowid),
            semantic_rank=semantic_pos.get(rowid),
        )
        for rowid in ordered[: config.top_k]
    ]


def merge_lexical_pools(pools: Iterable[list[tuple[int, float]]]) -> dict[int, float]:
    """Merge (rowid, bm25) lists keeping the lowest (best) rank per rowid."""
    merged: dict[int, float] = {}
    for pool in pools:
        for rowid, rank in pool:
            if rowid not in merged or rank < merged[rowid]:
                merged[rowid] = rank
    return merged


def rrf_fuse(
    semantic_ranking: list[int],
    lexical_ranking: list[int],
    rrf_k: int = RRF_K,
    fallback_rank: int = FALLBACK_RANK,
) -> dict[int, float]:
    """Combine two best-first rowid rankings via Reciprocal Rank Fusion.

    score(d) = 1/(k + rank_semantic) + 1/(k + rank_lexical), ranks 1-based.
    A rowid absent from one ranking is given *fallback_rank* there rather
    than being dropped, so a fragment strong in a single signal can surface.
    """
    semantic_pos = {rowid: i + 1 for i, rowid in enumerate(semantic_ranking)}
    lexical_pos = {rowid: i + 1 for i, rowid in enumerate(lexical_ranking)}

    scores: dict[int, float] = {}
    for rowid in semantic_pos.keys() | lexical_pos.keys():
        sr = semantic_pos.get(rowid, fallback_rank)
        lr = lexical_pos.get(rowid, fallback_rank)
        scores[rowid] = 1.0 / (rrf_k + sr) + 1.0 / (rrf_k + lr)
    return scores


# ------------------------------------------------------------------
# Pure-semantic path
# ------------------------------------------------------------------


def semantic_search(
    store: ChunkStore,
    query_vector: list[float],
    config: SearchConfig,
) -> list[SearchResult]:
    """Exhaustive cosine similarity over every stored fragment."""
    if config.top_k <= 0:
        return []

    scored: list[tuple[Fragment, float]] = []
    for fragment in store.load_all():
        sim = cosine_similarity(query_vector, fragment.embedding)
        if sim >= config.similarity_threshold:
            scored.append((fragment, sim))

    scored.sort(key=lambda item: (-item[1], item[0].rowid))
    return [
        SearchResult(fragment=fragment, similarity=sim, score=sim, semantic_rank=i + 1)
        for i, (fragment, sim) in enumerate(scored[: config.top_k])
    ]
