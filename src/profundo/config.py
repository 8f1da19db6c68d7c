"""Profundo configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site — not in this module)
  2. Environment variables  (PROFUNDO_EMBEDDING_MODEL, PROFUNDO_EXPANSION_MODEL,
                             PROFUNDO_HARVEST_MODEL,
                             PROFUNDO_SEMANTIC_ONLY, PROFUNDO_SESSIONS_DIR,
                             PROFUNDO_MEMORY_DIR)
  3. Per-project profundo.yaml  (in the working directory)
  4. Global ~/.profundo/config.yaml  (model defaults only — no API keys)
  5. Hardcoded defaults

Environment toggles are resolved here, at the call boundary; the retrieval
core only ever sees the resulting config values.
All YAML reads use yaml.safe_load() — never yaml.load().
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from profundo.clawdbot import CLAWDBOT_DIR, workspace_hint
from profundo.rag.retriever import SearchConfig

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".profundo"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "profundo.yaml"
_DB_FILE_NAME: str = "profundo.sqlite"
_LEARNINGS_FILE_NAME: str = "learnings.jsonl"

_CLAWDBOT_SESSIONS: Path = CLAWDBOT_DIR / "agents" / "main" / "sessions"

# Fields that suggest an API key; forbidden in global config.
# Does NOT match legitimate config keys like max_tokens or rrf_k.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"  # api_key, api-key, api_secret, apikey
    r"|_token$"                  # github_token, access_token (suffix)
    r"|^token$"                  # exactly "token" (standalone)
    r"|_secret$"                 # client_secret (suffix)
    r"|^secret$"                 # exactly "secret" (standalone)
    r"|passw(?:ord|d)"           # password, passwd
    r"|credential",              # credential, credentials
    re.IGNORECASE,
)

# Known top-level sections. Unknown keys produce a warning.
_KNOWN_SECTIONS: frozenset[str] = frozenset(
    ["paths", "embedding", "expansion", "retrieval", "chunking", "harvest"]
)

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off", ""})


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file or environment variable has an invalid value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class PathsCfg:
    """Filesystem locations (profundo.yaml: paths:).

    Attributes:
        sessions_dir: Directory holding ``<session_id>.jsonl`` logs.
        memory_dir: Directory holding ``profundo.sqlite`` and ``learnings.jsonl``.
    """

    sessions_dir: Path = field(default_factory=lambda: Path.home() / _CLAWDBOT_SESSIONS)
    memory_dir: Path = field(default_factory=lambda: default_memory_dir(Path.home()))

    @property
    def db_path(self) -> Path:
        return self.memory_dir / _DB_FILE_NAME

    @property
    def learnings_path(self) -> Path:
        return self.memory_dir / _LEARNINGS_FILE_NAME


@dataclass
class EmbeddingCfg:
    """Embedding model configuration (profundo.yaml: embedding:)."""

    model: str = "openai/text-embedding-3-small"
    batch_size: int = 100


@dataclass
class ExpansionCfg:
    """LLM query expansion (profundo.yaml: expansion:)."""

    model: str = "openai/gpt-4o-mini"
    enabled: bool = False
    max_variants: int = 2


@dataclass
class RetrievalCfg:
    """Retrieval pipeline configuration (profundo.yaml: retrieval:)."""

    top_k: int = 5
    similarity_threshold: float = 0.3
    semantic_only: bool = False
    context_turns: int | None = None
    rrf_k: int = 60
    fallback_rank: int = 10_000
    pool_multiplier: int = 40
    min_pool: int = 200


@dataclass
class ChunkingCfg:
    """Turn windowing for the embedding pipeline (profundo.yaml: chunking:)."""

    chunk_size: int = 3
    overlap: int = 1


@dataclass
class HarvestCfg:
    """Learning extraction (profundo.yaml: harvest:)."""

    model: str = "openrouter/deepseek/deepseek-v3.2"
    min_messages: int = 4


@dataclass
class ProfundoConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    paths: PathsCfg = field(default_factory=PathsCfg)
    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    expansion: ExpansionCfg = field(default_factory=ExpansionCfg)
    retrieval: RetrievalCfg = field(default_factory=RetrievalCfg)
    chunking: ChunkingCfg = field(default_factory=ChunkingCfg)
    harvest: HarvestCfg = field(default_factory=HarvestCfg)

    def search_config(self, **overrides: Any) -> SearchConfig:
        """Build a SearchConfig from this config; *overrides* (e.g. CLI flags) win."""
        values: dict[str, Any] = {
            "top_k": self.retrieval.top_k,
            "similarity_threshold": self.retrieval.similarity_threshold,
            "semantic_only": self.retrieval.semantic_only,
            "expand": self.expansion.enabled,
            "context_turns": self.retrieval.context_turns,
            "embedding_model": self.embedding.model,
            "expansion_model": self.expansion.model,
            "rrf_k": self.retrieval.rrf_k,
            "fallback_rank": self.retrieval.fallback_rank,
            "pool_multiplier": self.retrieval.pool_multiplier,
            "min_pool": self.retrieval.min_pool,
            "max_variants": self.expansion.max_variants,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return SearchConfig(**values)


# ---------------------------------------------------------------------------
# Default paths
# ---------------------------------------------------------------------------


def default_memory_dir(home: Path) -> Path:
    """Return ``<workspace>/memory``.

    The workspace is read from ``~/.clawdbot/clawdbot.json``
    (``agents.defaults.workspace``); ``~/clawd`` is used when the file is
    missing, unreadable, or does not name a workspace.
    """
    workspace = workspace_hint(home) or home / "clawd"
    return workspace / "memory"


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any API-key-like key names.

    Global config must never store credentials; they belong in env vars.
    """

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else k
                if _API_KEY_RE.search(str(k)):
                    raise ConfigError(
                        f"Global config '{source}' contains a forbidden key '{full}'.\n"
                        f"  API keys must be set via environment variables, not config files.\n"
                        f"  Remove '{full}' from {source.name} and use:\n"
                        f"    export {str(k).upper().replace('-', '_')}=<value>"
                    )
                _scan(v, full)

    _scan(data, "")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}' — ignored.",
                UserWarning,
                stacklevel=4,
            )


def parse_bool(value: Any, name: str) -> bool:
    """Interpret YAML/env booleans ('1', 'true', 'yes', 'on' and their negations)."""
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ConfigError(f"'{name}' must be a boolean (true/false), got {value!r}")


def _validate(cfg: ProfundoConfig) -> None:
    r = cfg.retrieval
    if r.top_k < 1:
        raise ConfigError(f"retrieval.top_k must be >= 1, got {r.top_k}")
    if not -1.0 <= r.similarity_threshold <= 1.0:
        raise ConfigError(
            f"retrieval.similarity_threshold must be in [-1, 1], got {r.similarity_threshold}"
        )
    if r.context_turns is not None and r.context_turns < 0:
        raise ConfigError(f"retrieval.context_turns must be >= 0, got {r.context_turns}")
    if r.rrf_k < 0 or r.fallback_rank < 1:
        raise ConfigError("retrieval.rrf_k must be >= 0 and retrieval.fallback_rank >= 1")
    if cfg.chunking.chunk_size < 1:
        raise ConfigError(f"chunking.chunk_size must be >= 1, got {cfg.chunking.chunk_size}")
    if cfg.chunking.overlap < 0:
        raise ConfigError(f"chunking.overlap must be >= 0, got {cfg.chunking.overlap}")
    if cfg.harvest.min_messages < 0:
        raise ConfigError(f"harvest.min_messages must be >= 0, got {cfg.harvest.min_messages}")


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _cfg_from_dict(data: dict[str, Any]) -> ProfundoConfig:
    """Build a *ProfundoConfig* from a merged raw YAML dict."""
    cfg = ProfundoConfig()

    if "paths" in data:
        p = data["paths"] or {}
        cfg.paths = PathsCfg(
            sessions_dir=Path(p["sessions_dir"]).expanduser()
            if p.get("sessions_dir")
            else cfg.paths.sessions_dir,
            memory_dir=Path(p["memory_dir"]).expanduser()
            if p.get("memory_dir")
            else cfg.paths.memory_dir,
        )

    if "embedding" in data:
        e = data["embedding"] or {}
        cfg.embedding = EmbeddingCfg(
            model=str(e.get("model", cfg.embedding.model)),
            batch_size=int(e.get("batch_size", cfg.embedding.batch_size)),
        )

    if "expansion" in data:
        x = data["expansion"] or {}
        cfg.expansion = ExpansionCfg(
            model=str(x.get("model", cfg.expansion.model)),
            enabled=parse_bool(x.get("enabled", cfg.expansion.enabled), "expansion.enabled"),
            max_variants=int(x.get("max_variants", cfg.expansion.max_variants)),
        )

    if "retrieval" in data:
        r = data["retrieval"] or {}
        context_turns = r.get("context_turns", cfg.retrieval.context_turns)
        cfg.retrieval = RetrievalCfg(
            top_k=int(r.get("top_k", cfg.retrieval.top_k)),
            similarity_threshold=float(
                r.get("similarity_threshold", cfg.retrieval.similarity_threshold)
            ),
            semantic_only=parse_bool(
                r.get("semantic_only", cfg.retrieval.semantic_only), "retrieval.semantic_only"
            ),
            context_turns=int(context_turns) if context_turns is not None else None,
            rrf_k=int(r.get("rrf_k", cfg.retrieval.rrf_k)),
            fallback_rank=int(r.get("fallback_rank", cfg.retrieval.fallback_rank)),
            pool_multiplier=int(r.get("pool_multiplier", cfg.retrieval.pool_multiplier)),
            min_pool=int(r.get("min_pool", cfg.retrieval.min_pool)),
        )

    if "chunking" in data:
        c = data["chunking"] or {}
        cfg.chunking = ChunkingCfg(
            chunk_size=int(c.get("chunk_size", cfg.chunking.chunk_size)),
            overlap=int(c.get("overlap", cfg.chunking.overlap)),
        )

    if "harvest" in data:
        h = data["harvest"] or {}
        cfg.harvest = HarvestCfg(
            model=str(h.get("model", cfg.harvest.model)),
            min_messages=int(h.get("min_messages", cfg.harvest.min_messages)),
        )

    return cfg


def _apply_env_overrides(cfg: ProfundoConfig) -> ProfundoConfig:
    """Apply PROFUNDO_* environment variable overrides (layer 2)."""
    if model := os.environ.get("PROFUNDO_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if model := os.environ.get("PROFUNDO_EXPANSION_MODEL"):
        cfg.expansion.model = model
    if model := os.environ.get("PROFUNDO_HARVEST_MODEL"):
        cfg.harvest.model = model
    if (flag := os.environ.get("PROFUNDO_SEMANTIC_ONLY")) is not None:
        cfg.retrieval.semantic_only = parse_bool(flag, "PROFUNDO_SEMANTIC_ONLY")
    if sessions_dir := os.environ.get("PROFUNDO_SESSIONS_DIR"):
        cfg.paths.sessions_dir = Path(sessions_dir).expanduser()
    if memory_dir := os.environ.get("PROFUNDO_MEMORY_DIR"):
        cfg.paths.memory_dir = Path(memory_dir).expanduser()
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> ProfundoConfig:
    """Load and return a merged *ProfundoConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *profundo.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Raises:
        ConfigError: If global config contains API-key-like fields, or if a
            value is out of range.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    # Layer 1: global config
    if global_path.exists():
        raw_global = yaml.safe_load(global_path.read_text(encoding="utf-8")) or {}
        _check_no_api_keys(raw_global, global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    # Layer 2: per-project config
    project_cfg_path = search_dir / _PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = yaml.safe_load(project_cfg_path.read_text(encoding="utf-8")) or {}
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    cfg = _cfg_from_dict(merged)

    # Layer 3: env var overrides
    cfg = _apply_env_overrides(cfg)

    _validate(cfg)
    return cfg


def ensure_global_config(
    global_config_path: Path | None = None,
) -> Path:
    """Create ``~/.profundo/config.yaml`` with defaults if it does not exist.

    Creates parent directory with mode 0o700 and the config file with
    mode 0o600 (owner-readable only).
    """
    target = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    target.parent.mkdir(mode=0o700, parents=True, exist_ok=True)

    if not target.exists():
        content = (
            "# Profundo global configuration — model defaults only.\n"
            "# NEVER store API keys here — use environment variables:\n"
            "#   export OPENAI_API_KEY=sk-...\n"
            "#   export OPENROUTER_API_KEY=sk-or-...\n"
            "\n"
            "embedding:\n"
            "  model: openai/text-embedding-3-small\n"
            "\n"
            "expansion:\n"
            "  model: openai/gpt-4o-mini\n"
        )
        target.write_text(content, encoding="utf-8")
        target.chmod(0o600)

    return target
