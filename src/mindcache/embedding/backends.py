"""Embedding model backends, built and used inside the embedding worker.

Two backends are available:

- ``fastembed`` (default): a local ONNX model run by fastembed. The default
  model, sentence-transformers/all-MiniLM-L6-v2, mean-pools token states into
  384-dimensional vectors. Model files are downloaded once into ``cache_dir``.
- ``litellm``: any LiteLLM embedding model string (``provider/model``), e.g.
  ``ollama/nomic-embed-text`` for a model served on the same machine.

L2 normalization is applied by the worker, not here.
"""

from __future__ import annotations

import os
from collections.abc import Callable, Sequence
from functools import partial
from pathlib import Path
from typing import Optional, Protocol

import litellm

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True

BACKENDS = ("fastembed", "litellm")
DEFAULT_BACKEND = "fastembed"
DEFAULT_MODEL = "sentence-transformers/all-MiniLM-L6-v2"

ProgressCallback = Callable[[str, float, Optional[str]], None]


class EmbeddingBackend(Protocol):
    """A loaded embedding model."""

    def embed(self, text: str) -> Sequence[float]:
        """Return the raw (unnormalized) embedding of one text."""
        ...


BackendFactory = Callable[..., EmbeddingBackend]


class FastEmbedBackend:
    """Local ONNX embedding via fastembed's ``TextEmbedding``."""

    def __init__(self, model: str = DEFAULT_MODEL, cache_dir: str | Path | None = None) -> None:
        from fastembed import TextEmbedding

        kwargs = {}
        if cache_dir is not None:
            Path(cache_dir).mkdir(parents=True, exist_ok=True)
            os.environ.setdefault("FASTEMBED_CACHE_PATH", str(cache_dir))
            kwargs["cache_dir"] = str(cache_dir)
        self.model = model
        self._model = TextEmbedding(model_name=model, **kwargs)

    def embed(self, text: str) -> Sequence[float]:
        return next(iter(self._model.embed([text])))


class LiteLLMBackend:
    """Embedding through ``litellm.embedding()`` with LiteLLM's retry/backoff."""

    def __init__(self, model: str, num_retries: int = 3) -> None:
        self.model = model
        self.num_retries = num_retries

    def embed(self, text: str) -> Sequence[float]:
        response = litellm.embedding(
            model=self.model,
            input=[text],
            num_retries=self.num_retries,
        )
        return response.data[0]["embedding"]


def load_backend(
    backend: str,
    model: str,
    cache_dir: str | None = None,
    *,
    on_progress: ProgressCallback | None = None,
) -> EmbeddingBackend:
    """Build the named backend. Runs inside the worker, where loading may be slow.

    Raises:
        ValueError: If *backend* is not one of ``BACKENDS``.
    """
    if on_progress is not None:
        on_progress("download", 0.0, model)
    if backend == "fastembed":
        loaded: EmbeddingBackend = FastEmbedBackend(model, cache_dir=cache_dir)
    elif backend == "litellm":
        loaded = LiteLLMBackend(model)
    else:
        raise ValueError(f"Unknown embedding backend '{backend}'. Choose one of: {', '.join(BACKENDS)}")
    if on_progress is not None:
        on_progress("done", 100.0, model)
    return loaded


def backend_factory(backend: str, model: str, cache_dir: str | None = None) -> BackendFactory:
    """A picklable factory for ``run_worker`` that defers loading to the worker."""
    return partial(load_backend, backend, model, cache_dir)
