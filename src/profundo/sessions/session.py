"""Session log parsing.

A session file is JSONL: one event per line. Events of ``type == "message"``
carry a ``message`` object with a ``role`` and a list of content blocks.
Consecutive messages are grouped into turns (one user message plus the
assistant text that follows it) and turns are windowed into fragments.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Union

from profundo.db.models import Fragment

logger = logging.getLogger(__name__)

_TURN_SEPARATOR = "\n\n---\n\n"


# ------------------------------------------------------------------
# Content blocks
# ------------------------------------------------------------------


@dataclass(frozen=True)
class TextBlock:
    text: str


@dataclass(frozen=True)
class ToolCallBlock:
    name: str | None = None
    input: Any = None


@dataclass(frozen=True)
class ToolResultBlock:
    content: Any = None


@dataclass(frozen=True)
class OtherBlock:
    raw: Any = None


ContentBlock = Union[TextBlock, ToolCallBlock, ToolResultBlock, OtherBlock]

_TOOL_CALL_TYPES = frozenset({"toolCall", "tool_call", "tool_use"})
_TOOL_RESULT_TYPES = frozenset({"toolResult", "tool_result"})


def parse_content_block(raw: Any) -> ContentBlock:
    """Classify one raw content block by its ``type`` field."""
    if not isinstance(raw, dict):
        return OtherBlock(raw)

    kind = raw.get("type")
    if kind == "text" and isinstance(raw.get("text"), str):
        return TextBlock(raw["text"])
    if kind in _TOOL_CALL_TYPES:
        return ToolCallBlock(name=raw.get("name"), input=raw.get("input", raw.get("arguments")))
    if kind in _TOOL_RESULT_TYPES:
        return ToolResultBlock(content=raw.get("content"))
    return OtherBlock(raw)


def extract_text(blocks: list[ContentBlock]) -> str:
    """Join the text blocks of a message with newlines; other kinds are skipped."""
    parts: list[str] = []
    for block in blocks:
        match block:
            case TextBlock(text=text):
                parts.append(text)
            case ToolCallBlock() | ToolResultBlock() | OtherBlock():
                continue
    return "\n".join(parts)


# ------------------------------------------------------------------
# Messages, turns, sessions
# ------------------------------------------------------------------


@dataclass
class SessionMessage:
    type: str
    role: str | None = None
    timestamp: str | None = None
    content: list[ContentBlock] = field(default_factory=list)
    cost: float = 0.0

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> SessionMessage:
        """Build a message from one decoded event.

        Raises:
            ValueError: If ``message`` or its ``content`` has the wrong shape.
        """
        message = data.get("message")
        if message is None:
            message = {}
        elif not isinstance(message, dict):
            raise ValueError(f"message is {type(message).__name__}, expected an object")

        raw_content = message.get("content")
        if isinstance(raw_content, str):
            blocks: list[ContentBlock] = [TextBlock(raw_content)]
        elif isinstance(raw_content, list):
            blocks = [parse_content_block(b) for b in raw_content]
        elif raw_content is None:
            blocks = []
        else:
            raise ValueError(f"content is {type(raw_content).__name__}, expected a list or string")

        role = message.get("role")
        return cls(
            type=str(data.get("type", "")),
            role=role if isinstance(role, str) else None,
            timestamp=data.get("timestamp"),
            content=blocks,
            cost=_usage_cost(message.get("usage")),
        )


def _usage_cost(usage: Any) -> float:
    """Return ``usage.cost.total`` when present and numeric, else 0."""
    if not isinstance(usage, dict):
        return 0.0
    cost = usage.get("cost")
    if not isinstance(cost, dict):
        return 0.0
    total = cost.get("total")
    if isinstance(total, bool) or not isinstance(total, (int, float)):
        return 0.0
    return float(total)


@dataclass
class Turn:
    """One user message and the assistant response that follows it."""

    user_text: str
    assistant_text: str = ""
    timestamp: str | None = None


@dataclass
class Session:
    id: str
    messages: list[SessionMessage]

    @classmethod
    def from_file(cls, path: Path | str) -> Session:
        """Parse a JSONL session file. Malformed lines are logged and skipped.

        Raises:
            OSError: If the file cannot be read.
        """
        path = Path(path)
        messages: list[SessionMessage] = []
        with path.open(encoding="utf-8") as fh:
            for lineno, line in enumerate(fh, start=1):
                if not line.strip():
                    continue
                try:
                    data = json.loads(line)
                    if not isinstance(data, dict):
                        raise ValueError("line is not a JSON object")
                    messages.append(SessionMessage.from_json(data))
                except ValueError as exc:
                    logger.warning("Skipping malformed line %d in %s: %s", lineno, path.name, exc)
        return cls(id=path.stem, messages=messages)

    @property
    def message_count(self) -> int:
        return sum(1 for m in self.messages if m.type == "message")

    @property
    def first_timestamp(self) -> str | None:
        """Timestamp of the first event, if it carries one."""
        if not self.messages:
            return None
        return self.messages[0].timestamp

    @property
    def total_cost(self) -> float:
        return sum(m.cost for m in self.messages)

    def turns(self) -> list[Turn]:
        """Group messages into turns.

        A user message opens a new turn; assistant text is appended to the
        open turn. Assistant text before the first user message, other roles,
        and messages with no text are ignored.
        """
        turns: list[Turn] = []
        current: Turn | None = None

        for msg in self.messages:
            if msg.type != "message" or msg.role is None:
                continue
            text = extract_text(msg.content)
            if not text:
                continue

            if msg.role == "user":
                if current is not None:
                    turns.append(current)
                current = Turn(user_text=text, timestamp=msg.timestamp)
            elif msg.role == "assistant" and current is not None:
                if current.assistant_text:
                    current.assistant_text += "\n\n"
                current.assistant_text += text

        if current is not None:
            turns.append(current)
        return turns

    def to_fragments(self, chunk_size: int = 3, overlap: int = 1) -> list[Fragment]:
        """Window the session's turns into unembedded fragments."""
        return chunk_turns(self.id, self.turns(), chunk_size, overlap)


def chunk_turns(
    session_id: str,
    turns: list[Turn],
    chunk_size: int = 3,
    overlap: int = 1,
) -> list[Fragment]:
    """Slide a window of *chunk_size* turns over *turns*.

    Step is ``max(chunk_size - overlap, 1)``. Each fragment covers the
    half-open turn range ``[i, min(i + chunk_size, len(turns)))`` and carries
    the timestamp of its first turn.
    """
    if chunk_size < 1:
        raise ValueError("chunk_size must be >= 1")
    if overlap < 0:
        raise ValueError("overlap must be >= 0")

    step = max(chunk_size - overlap, 1)
    fragments: list[Fragment] = []
    for start in range(0, len(turns), step):
        end = min(start + chunk_size, len(turns))
        window = turns[start:end]
        text = _TURN_SEPARATOR.join(
            f"User: {t.user_text}\n\nAssistant: {t.assistant_text}" for t in window
        )
        fragments.append(
            Fragment(
                session_id=session_id,
                turn_start=start,
                turn_end=end,
                timestamp=window[0].timestamp,
                text=text,
            )
        )
    return fragments


class SessionNotFoundError(LookupError):
    """Raised when no session file exists for a session id."""


class TurnLoader:
    """Load the ordered turns of a session from the sessions directory."""

    def __init__(self, sessions_dir: Path | str) -> None:
        self.sessions_dir = Path(sessions_dir)

    def path_for(self, session_id: str) -> Path:
        return self.sessions_dir / f"{session_id}.jsonl"

    def __call__(self, session_id: str) -> list[Turn]:
        path = self.path_for(session_id)
        if not path.is_file():
            raise SessionNotFoundError(f"Session file not found: {path}")
        return Session.from_file(path).turns()
