"""Learning extraction: session logs → structured learnings → learnings.jsonl.

Each session is summarised once by an LLM into topics, decisions, facts and
action items. Results are appended to ``<memory_dir>/learnings.jsonl``; a
session whose id is already in that file is never harvested again.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable, Iterable
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any

from profundo.rag.llm_client import complete
from profundo.sessions.embedder import SessionFile, discover_sessions
from profundo.sessions.session import Session, extract_text

logger = logging.getLogger(__name__)

HARVEST_SYSTEM_PROMPT = "You are a helpful assistant that extracts structured information."

HARVEST_PROMPT = """Analyze this conversation and extract structured learnings. Return ONLY valid JSON with these fields:
- topics: array of 2-5 topic keywords
- decisions: array of explicit decisions made (only if clearly stated)
- facts_learned: array of new facts learned about the user (preferences, context, background)
- action_items: array of tasks or follow-ups identified
- summary: one or two sentence summary of the conversation

Use empty arrays when nothing fits. Do not include any text outside the JSON object.

Conversation:
"""

MAX_TRANSCRIPT_CHARS = 50_000

_LIST_FIELDS = ("topics", "decisions", "facts_learned", "action_items")
_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$")


@dataclass
class Learning:
    """Structured learnings extracted from one session."""

    session_id: str
    date: str
    topics: list[str] = field(default_factory=list)
    decisions: list[str] = field(default_factory=list)
    facts_learned: list[str] = field(default_factory=list)
    action_items: list[str] = field(default_factory=list)
    summary: str = ""
    message_count: int = 0
    cost: float = 0.0
    harvested_at: str = ""

    def to_json(self) -> str:
        return json.dumps(asdict(self), ensure_ascii=False)

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> Learning:
        """Build from a decoded learnings.jsonl line.

        Raises:
            ValueError: If ``session_id`` is missing.
        """
        session_id = data.get("session_id")
        if not isinstance(session_id, str) or not session_id:
            raise ValueError("learning has no session_id")
        return cls(
            session_id=session_id,
            date=str(data.get("date") or "unknown"),
            summary=str(data.get("summary") or ""),
            message_count=int(data.get("message_count") or 0),
            cost=float(data.get("cost") or 0.0),
            harvested_at=str(data.get("harvested_at") or ""),
            **{name: _str_list(data.get(name)) for name in _LIST_FIELDS},
        )

    def matches(self, query: str) -> bool:
        """Case-insensitive substring match on topics, summary, facts and decisions."""
        needle = query.lower()
        haystack = [self.summary, *self.topics, *self.facts_learned, *self.decisions]
        return any(needle in text.lower() for text in haystack)


@dataclass
class HarvestConfig:
    model: str = "openrouter/deepseek/deepseek-v3.2"
    min_messages: int = 4
    since: date | None = None


@dataclass
class HarvestStats:
    harvested: int = 0
    skipped: int = 0
    errors: int = 0


def _str_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if item is not None]


# ------------------------------------------------------------------
# Prompt building and reply parsing
# ------------------------------------------------------------------


def format_transcript(session: Session, max_chars: int = MAX_TRANSCRIPT_CHARS) -> str:
    """Render user/assistant text as ``ROLE: text`` paragraphs, truncated to *max_chars*."""
    parts: list[str] = []
    for msg in session.messages:
        if msg.type != "message" or msg.role not in ("user", "assistant"):
            continue
        text = extract_text(msg.content)
        if text:
            parts.append(f"{msg.role.upper()}: {text}")
    transcript = "\n\n".join(parts)
    if len(transcript) > max_chars:
        transcript = transcript[:max_chars] + "...\n[truncated]"
    return transcript


def strip_markdown_json(reply: str) -> str:
    """Remove a surrounding ```json fence, if any."""
    return _FENCE_RE.sub("", reply.strip()).strip()


def parse_learning_reply(reply: str) -> dict[str, Any]:
    """Decode the model's JSON reply.

    Raises:
        ValueError: If the reply is not a JSON object.
    """
    data = json.loads(strip_markdown_json(reply))
    if not isinstance(data, dict):
        raise ValueError("harvest reply is not a JSON object")
    return data


def session_date(session: Session) -> str:
    """``YYYY-MM-DD`` of the first event, or ``unknown``."""
    parsed = _parse_timestamp(session.first_timestamp)
    return parsed.strftime("%Y-%m-%d") if parsed else "unknown"


def _parse_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


# ------------------------------------------------------------------
# Harvesting
# ------------------------------------------------------------------


def harvest_session(session: Session, config: HarvestConfig) -> Learning | None:
    """Extract learnings from one parsed session.

    Returns None when the session has fewer than ``config.min_messages``
    messages. LLM and parse errors propagate.
    """
    if session.message_count < config.min_messages:
        return None

    reply = complete(
        config.model,
        [
            {"role": "system", "content": HARVEST_SYSTEM_PROMPT},
            {"role": "user", "content": HARVEST_PROMPT + format_transcript(session)},
        ],
        max_tokens=2000,
        temperature=0.3,
    )
    data = parse_learning_reply(reply)

    return Learning(
        session_id=session.id,
        date=session_date(session),
        summary=str(data.get("summary") or ""),
        message_count=session.message_count,
        cost=session.total_cost,
        harvested_at=datetime.now(timezone.utc).isoformat(),
        **{name: _str_list(data.get(name)) for name in _LIST_FIELDS},
    )


def load_learnings(path: Path) -> list[Learning]:
    """Read learnings.jsonl in file order. Unparseable lines are logged and skipped."""
    if not path.is_file():
        return []
    learnings: list[Learning] = []
    with path.open(encoding="utf-8") as fh:
        for lineno, line in enumerate(fh, start=1):
            if not line.strip():
                continue
            try:
                data = json.loads(line)
                if not isinstance(data, dict):
                    raise ValueError("line is not a JSON object")
                learnings.append(Learning.from_json(data))
            except (ValueError, TypeError) as exc:
                logger.warning("Skipping malformed learning at line %d in %s: %s", lineno, path.name, exc)
    return learnings


def harvested_ids(path: Path) -> set[str]:
    return {learning.session_id for learning in load_learnings(path)}


def _first_line_date(path: Path) -> date | None:
    try:
        with path.open(encoding="utf-8") as fh:
            first = fh.readline()
        data = json.loads(first)
    except (OSError, ValueError):
        return None
    parsed = _parse_timestamp(data.get("timestamp") if isinstance(data, dict) else None)
    return parsed.date() if parsed else None


def discover_harvestable(
    sessions_dir: Path,
    done: set[str],
    since: date | None = None,
) -> list[SessionFile]:
    """Session files not yet harvested, sorted by session id.

    With *since*, a session whose first event is dated before it is skipped;
    sessions without a readable first timestamp are kept.

    Raises:
        FileNotFoundError: If *sessions_dir* does not exist.
    """
    candidates: list[SessionFile] = []
    for session_file in discover_sessions(sessions_dir):
        if session_file.path.name.startswith("._") or session_file.session_id in done:
            continue
        if since is not None:
            started = _first_line_date(session_file.path)
            if started is not None and started < since:
                continue
        candidates.append(session_file)
    candidates.sort(key=lambda s: s.session_id)
    return candidates


def append_learning(path: Path, learning: Learning) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as fh:
        fh.write(learning.to_json() + "\n")


def harvest_sessions(
    sessions: Iterable[SessionFile],
    learnings_path: Path,
    config: HarvestConfig,
    on_result: Callable[[SessionFile, Learning | None, Exception | None], None] | None = None,
) -> HarvestStats:
    """Harvest each session and append its learning as soon as it is extracted.

    A failure on one session is logged and counted; the run continues.
    """
    stats = HarvestStats()
    for session_file in sessions:
        learning: Learning | None = None
        error: Exception | None = None
        try:
            learning = harvest_session(Session.from_file(session_file.path), config)
        except Exception as exc:
            error = exc
            stats.errors += 1
            logger.error("Error harvesting session %s: %s", session_file.session_id, exc)
        else:
            if learning is None:
                stats.skipped += 1
            else:
                append_learning(learnings_path, learning)
                stats.harvested += 1
        if on_result is not None:
            on_result(session_file, learning, error)
    return stats


def search_learnings(learnings: list[Learning], query: str | None = None, last: int = 10) -> list[Learning]:
    """Filter by *query* (if given) and keep the last *last* entries in file order."""
    if query:
        learnings = [learning for learning in learnings if learning.matches(query)]
    if last <= 0:
        return []
    return learnings[-last:]
