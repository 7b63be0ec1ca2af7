"""MindCache configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site — not in this module)
  2. Environment variables  (MINDCACHE_EMBEDDING_MODEL, MINDCACHE_DB, MINDCACHE_LOG_LEVEL)
  3. Per-project mindcache.yaml  (current directory)
  4. Global ~/.mindcache/config.yaml  (defaults only — no API keys)
  5. Hardcoded defaults

Global config must never contain API keys; LiteLLM providers read them from
environment variables. All YAML reads use yaml.safe_load() — never yaml.load().
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from mindcache.embedding.backends import BACKENDS, DEFAULT_BACKEND, DEFAULT_MODEL
from mindcache.embedding.channel import DEFAULT_DIMENSIONS, ISOLATION_MODES
from mindcache.embedding.worker import DEFAULT_MAX_INPUT_CHARS
from mindcache.index.vector_index import (
    DEFAULT_TEXT_WEIGHT,
    DEFAULT_VECTOR_WEIGHT,
    HYBRID_MIN_SIMILARITY,
)
from mindcache.ingest.chunker import (
    DEFAULT_BOUNDARY,
    DEFAULT_EXCERPT_LENGTH,
    DEFAULT_MAX_LENGTH,
    DEFAULT_OVERLAP,
)
from mindcache.service import ORPHAN_POLICIES

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".mindcache"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "mindcache.yaml"

DEFAULT_DB_PATH = ".mindcache.db"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# Fields that suggest an API key are forbidden in global config.
# Does NOT match legitimate config keys like max_length or max_input_chars.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"
    r"|_token$"
    r"|^token$"
    r"|_secret$"
    r"|^secret$"
    r"|passw(?:ord|d)"
    r"|credential",
    re.IGNORECASE,
)

# Known top-level sections; unknown keys produce a warning
_KNOWN_SECTIONS: frozenset[str] = frozenset(
    ["embedding", "chunker", "retrieval", "storage", "ingest", "logging"]
)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class EmbeddingCfg:
    """Embedding channel configuration (mindcache.yaml: embedding:).

    Attributes:
        backend: ``fastembed`` (local ONNX) or ``litellm``.
        model: Model name for the backend.
        dimensions: Vector dimension D produced by the model.
        max_input_chars: Inputs are truncated to this many characters.
        isolation: Run the model in a ``process`` (default) or a ``thread``.
        cache_dir: Where downloaded model files are kept (fastembed only).
    """

    backend: str = DEFAULT_BACKEND
    model: str = DEFAULT_MODEL
    dimensions: int = DEFAULT_DIMENSIONS
    max_input_chars: int = DEFAULT_MAX_INPUT_CHARS
    isolation: str = "process"
    cache_dir: str | None = None


@dataclass
class ChunkerCfg:
    """Chunking configuration (mindcache.yaml: chunker:)."""

    max_length: int = DEFAULT_MAX_LENGTH
    overlap: int = DEFAULT_OVERLAP
    boundary: str = DEFAULT_BOUNDARY


@dataclass
class RetrievalCfg:
    """Search configuration (mindcache.yaml: retrieval:)."""

    limit: int = 10
    hybrid_min_similarity: float = HYBRID_MIN_SIMILARITY
    vector_weight: float = DEFAULT_VECTOR_WEIGHT
    text_weight: float = DEFAULT_TEXT_WEIGHT


@dataclass
class StorageCfg:
    """Durable storage location (mindcache.yaml: storage:)."""

    db_path: str = DEFAULT_DB_PATH


@dataclass
class IngestCfg:
    """Save-path behavior (mindcache.yaml: ingest:).

    Attributes:
        orphan_policy: What to do with a saved Document whose chunks could not
            be embedded or indexed: ``keep`` it chunk-less, or ``rollback``.
        excerpt_length: Maximum excerpt length before the ellipsis.
    """

    orphan_policy: str = "keep"
    excerpt_length: int = DEFAULT_EXCERPT_LENGTH


@dataclass
class LoggingCfg:
    """Log level for the CLI (mindcache.yaml: logging:)."""

    level: str = "WARNING"


@dataclass
class MindCacheConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    chunker: ChunkerCfg = field(default_factory=ChunkerCfg)
    retrieval: RetrievalCfg = field(default_factory=RetrievalCfg)
    storage: StorageCfg = field(default_factory=StorageCfg)
    ingest: IngestCfg = field(default_factory=IngestCfg)
    logging: LoggingCfg = field(default_factory=LoggingCfg)


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


def validate(cfg: MindCacheConfig) -> None:
    """Raise ConfigError if *cfg* holds values the pipeline cannot run with."""
    e = cfg.embedding
    if e.backend not in BACKENDS:
        raise ConfigError(
            f"embedding.backend must be one of {', '.join(BACKENDS)}, got '{e.backend}'"
        )
    if e.isolation not in ISOLATION_MODES:
        raise ConfigError(
            f"embedding.isolation must be one of {', '.join(ISOLATION_MODES)}, "
            f"got '{e.isolation}'"
        )
    if e.dimensions < 1:
        raise ConfigError(f"embedding.dimensions must be positive, got {e.dimensions}")
    if e.max_input_chars < 1:
        raise ConfigError(
            f"embedding.max_input_chars must be positive, got {e.max_input_chars}"
        )

    c = cfg.chunker
    if c.max_length < 1:
        raise ConfigError(f"chunker.max_length must be positive, got {c.max_length}")
    if not 0 <= c.overlap < c.max_length:
        raise ConfigError(
            f"chunker.overlap must be >= 0 and smaller than chunker.max_length "
            f"({c.max_length}), got {c.overlap}"
        )
    try:
        re.compile(c.boundary)
    except re.error as exc:
        raise ConfigError(f"chunker.boundary is not a valid regex: {exc}") from exc

    r = cfg.retrieval
    if r.limit < 1:
        raise ConfigError(f"retrieval.limit must be positive, got {r.limit}")
    if r.vector_weight < 0 or r.text_weight < 0:
        raise ConfigError("retrieval.vector_weight and retrieval.text_weight must be >= 0")

    if cfg.ingest.orphan_policy not in ORPHAN_POLICIES:
        raise ConfigError(
            f"ingest.orphan_policy must be one of {', '.join(ORPHAN_POLICIES)}, "
            f"got '{cfg.ingest.orphan_policy}'"
        )
    if cfg.ingest.excerpt_length < 1:
        raise ConfigError(
            f"ingest.excerpt_length must be positive, got {cfg.ingest.excerpt_length}"
        )

    if cfg.logging.level.upper() not in LOG_LEVELS:
        raise ConfigError(
            f"logging.level must be one of {', '.join(LOG_LEVELS)}, got '{cfg.logging.level}'"
        )


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


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    raw = data.get(name) or {}
    if not isinstance(raw, dict):
        raise ConfigError(f"Config section '{name}' must be a mapping, got {type(raw).__name__}")
    return raw


def _cfg_from_dict(data: dict[str, Any]) -> MindCacheConfig:
    """Build a *MindCacheConfig* from a merged raw YAML dict."""
    cfg = MindCacheConfig()

    try:
        e = _section(data, "embedding")
        cache_dir = e.get("cache_dir", cfg.embedding.cache_dir)
        cfg.embedding = EmbeddingCfg(
            backend=str(e.get("backend", cfg.embedding.backend)),
            model=str(e.get("model", cfg.embedding.model)),
            dimensions=int(e.get("dimensions", cfg.embedding.dimensions)),
            max_input_chars=int(e.get("max_input_chars", cfg.embedding.max_input_chars)),
            isolation=str(e.get("isolation", cfg.embedding.isolation)),
            cache_dir=str(cache_dir) if cache_dir is not None else None,
        )

        c = _section(data, "chunker")
        cfg.chunker = ChunkerCfg(
            max_length=int(c.get("max_length", cfg.chunker.max_length)),
            overlap=int(c.get("overlap", cfg.chunker.overlap)),
            boundary=str(c.get("boundary", cfg.chunker.boundary)),
        )

        r = _section(data, "retrieval")
        cfg.retrieval = RetrievalCfg(
            limit=int(r.get("limit", cfg.retrieval.limit)),
            hybrid_min_similarity=float(
                r.get("hybrid_min_similarity", cfg.retrieval.hybrid_min_similarity)
            ),
            vector_weight=float(r.get("vector_weight", cfg.retrieval.vector_weight)),
            text_weight=float(r.get("text_weight", cfg.retrieval.text_weight)),
        )

        s = _section(data, "storage")
        cfg.storage = StorageCfg(db_path=str(s.get("db_path", cfg.storage.db_path)))

        i = _section(data, "ingest")
        cfg.ingest = IngestCfg(
            orphan_policy=str(i.get("orphan_policy", cfg.ingest.orphan_policy)),
            excerpt_length=int(i.get("excerpt_length", cfg.ingest.excerpt_length)),
        )

        lg = _section(data, "logging")
        cfg.logging = LoggingCfg(level=str(lg.get("level", cfg.logging.level)).upper())
    except (TypeError, ValueError) as exc:
        if isinstance(exc, ConfigError):
            raise
        raise ConfigError(f"Invalid config value: {exc}") from exc

    return cfg


def _apply_env_overrides(cfg: MindCacheConfig) -> MindCacheConfig:
    """Apply MINDCACHE_* environment variable overrides (layer 2)."""
    if model := os.environ.get("MINDCACHE_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if db_path := os.environ.get("MINDCACHE_DB"):
        cfg.storage.db_path = db_path
    if level := os.environ.get("MINDCACHE_LOG_LEVEL"):
        cfg.logging.level = level.upper()
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> MindCacheConfig:
    """Load and return a merged, validated *MindCacheConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *mindcache.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Returns:
        Fully merged *MindCacheConfig* with env var overrides applied.

    Raises:
        ConfigError: If global config contains API-key-like fields, or if any
            value is out of range (see ``validate``).
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    # Layer 1: global config
    if global_path.exists():
        raw_global = _read_yaml(global_path)
        _check_no_api_keys(raw_global, global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    # Layer 2: per-project config
    project_cfg_path = search_dir / _PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = _read_yaml(project_cfg_path)
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    cfg = _cfg_from_dict(merged)

    # Layer 3: env var overrides
    cfg = _apply_env_overrides(cfg)

    validate(cfg)
    return cfg


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Could not parse '{path}': {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Config file '{path}' must contain a mapping at the top level")
    return data


def ensure_global_config(
    global_config_path: Path | None = None,
) -> Path:
    """Create ``~/.mindcache/config.yaml`` with defaults if it does not exist.

    Creates parent directory with mode 0o700 and the config file with
    mode 0o600 (owner-readable only).

    Args:
        global_config_path: Override path (for testing).

    Returns:
        Path to the global config file.
    """
    target = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    target.parent.mkdir(mode=0o700, parents=True, exist_ok=True)

    if not target.exists():
        content = (
            "# MindCache global configuration: defaults only.\n"
            "# NEVER store API keys here; use environment variables.\n"
            "\n"
            "embedding:\n"
            f"  backend: {DEFAULT_BACKEND}\n"
            f"  model: {DEFAULT_MODEL}\n"
            f"  dimensions: {DEFAULT_DIMENSIONS}\n"
            "\n"
            "chunker:\n"
            f"  max_length: {DEFAULT_MAX_LENGTH}\n"
            f"  overlap: {DEFAULT_OVERLAP}\n"
        )
        target.write_text(content, encoding="utf-8")
        target.chmod(0o600)

    return target
