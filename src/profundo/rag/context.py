"""Context expansion: surrounding turns for a matched fragment.

One ``ContextExpander`` lives for exactly one search invocation. It caches
each session's turn list so several results from the same session parse the
session file once.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from profundo.db.models import Fragment
from profundo.sessions.session import Turn

logger = logging.getLogger(__name__)

TurnSource = Callable[[str], list[Turn]]


@dataclass
class ContextTurn:
    index: int
    user_text: str
    assistant_text: str
    is_match: bool


@dataclass
class ContextWindow:
    """Turns to display for one result, or the stored text as a fallback.

    Exactly one of ``turns`` (non-empty) or ``fallback_text`` is meaningful;
    ``warning`` explains why the fallback was used.
    """

    session_id: str
    start: int = 0
    end: int = 0
    turns: list[ContextTurn] = field(default_factory=list)
    fallback_text: str | None = None
    warning: str | None = None

    @property
    def is_fallback(self) -> bool:
        return self.fallback_text is not None


def context_bounds(turn_start: int, turn_end: int, context_turns: int, total: int) -> tuple[int, int]:
    """Return the half-open display window ``[max(0, s-c), min(total, e+c))``."""
    return max(0, turn_start - context_turns), min(total, turn_end + context_turns)


class ContextExpander:
    """Expand fragments into windows of surrounding turns.

    Args:
        load_turns: Returns the ordered turns of a session id; may raise.
    """

    def __init__(self, load_turns: TurnSource) -> None:
        self._load_turns = load_turns
        self._cache: dict[str, list[Turn] | None] = {}

    def turns_for(self, session_id: str) -> list[Turn] | None:
        """Return the cached turns of *session_id*, or None if they could not be loaded."""
        if session_id not in self._cache:
            try:
                self._cache[session_id] = self._load_turns(session_id)
            except (OSError, LookupError, ValueError) as exc:
                logger.warning("Could not load turns for session %s: %s", session_id, exc)
                self._cache[session_id] = None
        return self._cache[session_id]

    def expand(self, fragment: Fragment, context_turns: int) -> ContextWindow:
        """Build the display window for *fragment* with *context_turns* on each side.

        Never raises for a missing session or a stale turn range; those fall
        back to the stored fragment text with a warning.
        """
        context_turns = max(0, context_turns)
        turns = self.turns_for(fragment.session_id)
        if turns is None:
            return self._fallback(fragment, "session log not found")

        if not 0 <= fragment.turn_start < fragment.turn_end <= len(turns):
            return self._fallback(
                fragment,
                f"turn range [{fragment.turn_start}, {fragment.turn_end}) is outside "
                f"the session's {len(turns)} turns",
            )

        start, end = context_bounds(fragment.turn_start, fragment.turn_end, context_turns, len(turns))
        if start >= end:
            return self._fallback(fragment, "empty context window")

        return ContextWindow(
            session_id=fragment.session_id,
            start=start,
            end=end,
            turns=[
                ContextTurn(
                    index=i,
                    user_text=turns[i].user_text,
                    assistant_text=turns[i].assistant_text,
                    is_match=fragment.turn_start <= i < fragment.turn_end,
                )
                for i in range(start, end)
            ],
        )

    @staticmethod
    def _fallback(fragment: Fragment, reason: str) -> ContextWindow:
        return ContextWindow(
            session_id=fragment.session_id,
            start=fragment.turn_start,
            end=fragment.turn_end,
            fallback_text=fragment.text,
            warning=f"Context unavailable ({reason}); showing stored fragment text.",
        )
