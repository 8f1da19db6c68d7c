"""Read-only access to the agent runtime's ``~/.clawdbot/clawdbot.json``.

Profundo never writes this file. Two hints are taken from it: the agent
workspace (where ``memory/`` lives) and provider API keys stored under
``models.providers.<provider>.apiKey``.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

CLAWDBOT_DIR: Path = Path(".clawdbot")
CLAWDBOT_CONFIG: Path = CLAWDBOT_DIR / "clawdbot.json"


def read_clawdbot_config(home: Path | None = None) -> dict[str, Any]:
    """Return the parsed config, or ``{}`` if it is missing or unreadable."""
    path = (home if home is not None else Path.home()) / CLAWDBOT_CONFIG
    if not path.is_file():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Ignoring unreadable %s: %s", path, exc)
        return {}
    return data if isinstance(data, dict) else {}


def _lookup(data: dict[str, Any], *keys: str) -> Any:
    node: Any = data
    for key in keys:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node


def workspace_hint(home: Path | None = None) -> Path | None:
    """``agents.defaults.workspace``, expanded, or None."""
    hint = _lookup(read_clawdbot_config(home), "agents", "defaults", "workspace")
    if isinstance(hint, str) and hint:
        return Path(hint).expanduser()
    return None


def provider_api_key(provider: str, home: Path | None = None) -> str | None:
    """``models.providers.<provider>.apiKey``, or None."""
    key = _lookup(read_clawdbot_config(home), "models", "providers", provider, "apiKey")
    return key if isinstance(key, str) and key else None
