"""LLM query expansion for lexical recall.

Paraphrases are only ever run through the lexical index; the vector used for
semantic scoring is always the embedding of the original query.
"""

from __future__ import annotations

import logging
import re

from profundo.rag.llm_client import complete_prompt

logger = logging.getLogger(__name__)

_EXPANSION_SYSTEM_PROMPT = (
    "You rewrite search queries for a keyword index over past chat conversations. "
    "Given a query, reply with {n} alternative phrasings that use different "
    "keywords or synonyms. One phrasing per line, no numbering, no commentary."
)

_LIST_MARKER_RE = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s*")


def expand_query(query: str, model: str, max_variants: int = 2) -> list[str]:
    """Return ``[query, *paraphrases]`` with at most *max_variants* paraphrases.

    Expansion failure of any kind is non-fatal: it is logged and the original
    query is returned alone.
    """
    if max_variants <= 0 or not query.strip():
        return [query]

    try:
        reply = complete_prompt(
            _EXPANSION_SYSTEM_PROMPT.format(n=max_variants), query, model
        )
    except Exception as exc:
        logger.warning("Query expansion failed, using original query only: %s", exc)
        return [query]

    variants = parse_variants(reply, query, max_variants)
    logger.debug("Expanded %r into %d variant(s): %s", query, len(variants), variants)
    return [query, *variants]


def parse_variants(reply: str, query: str, max_variants: int) -> list[str]:
    """Extract up to *max_variants* distinct paraphrases from an LLM reply.

    List markers and surrounding quotes are stripped; blank lines and lines
    equal to the original query (case-insensitively) are dropped.
    """
    seen = {query.strip().lower()}
    variants: list[str] = []
    for line in reply.splitlines():
        candidate = _LIST_MARKER_RE.sub("", line).strip().strip('"').strip()
        if not candidate or candidate.lower() in seen:
            continue
        seen.add(candidate.lower())
        variants.append(candidate)
        if len(variants) >= max_variants:
            break
    return variants
