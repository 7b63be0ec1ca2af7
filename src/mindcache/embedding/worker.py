"""Embedding worker: the receive loop running in the isolated context.

The worker owns at most one model instance, loaded lazily on ``INIT`` or on
the first ``EMBED_BATCH``. Requests are handled one at a time, and the texts
of a batch are embedded serially. Communication happens only through the two
queues; a ``None`` on the inbox stops the loop.
"""

from __future__ import annotations

import logging
from typing import Any

import numpy as np

from mindcache.embedding.backends import BackendFactory, EmbeddingBackend
from mindcache.embedding.messages import (
    EmbedBatch,
    EmbeddingResult,
    Error,
    Init,
    Message,
    ModelLoaded,
    Progress,
    decode,
    encode,
)
from mindcache.errors import ProtocolError

logger = logging.getLogger(__name__)

DEFAULT_MAX_INPUT_CHARS = 2000

STOP = None


def normalize(vector: Any) -> list[float]:
    """L2-normalize *vector*; a zero vector is returned unchanged."""
    arr = np.asarray(vector, dtype=np.float32).reshape(-1)
    norm = float(np.linalg.norm(arr))
    if norm > 0:
        arr = arr / norm
    return arr.tolist()


class _Worker:
    def __init__(self, outbox: Any, backend_factory: BackendFactory, max_input_chars: int) -> None:
        self._outbox = outbox
        self._factory = backend_factory
        self._max_input_chars = max_input_chars
        self._backend: EmbeddingBackend | None = None

    def post(self, message: Message) -> None:
        self._outbox.put(encode(message))

    def handle(self, envelope: Any) -> None:
        try:
            message = decode(envelope)
        except ProtocolError as exc:
            msg_id = envelope.get("id") if isinstance(envelope, dict) else None
            self.post(Error(error=str(exc), id=msg_id if isinstance(msg_id, str) else None))
            return

        if isinstance(message, Init):
            try:
                self._ensure_loaded()
            except Exception as exc:
                self.post(Error(error=f"Model failed to load: {exc}"))
        elif isinstance(message, EmbedBatch):
            logger.debug("Embedding batch %s (%d texts)", message.id, len(message.texts))
            try:
                backend = self._ensure_loaded()
                embeddings = [self._embed_one(backend, text) for text in message.texts]
            except Exception as exc:
                self.post(Error(error=str(exc) or type(exc).__name__, id=message.id))
            else:
                self.post(EmbeddingResult(id=message.id, embeddings=tuple(map(tuple, embeddings))))
        else:
            self.post(Error(error=f"Unexpected message for the worker: {type(message).__name__}"))

    def _ensure_loaded(self) -> EmbeddingBackend:
        if self._backend is not None:
            return self._backend
        self.post(Progress(status="initiate", progress=0.0))
        self._backend = self._factory(on_progress=self._report_progress)
        self.post(Progress(status="ready", progress=100.0))
        self.post(ModelLoaded())
        return self._backend

    def _report_progress(self, status: str, progress: float, file: str | None = None) -> None:
        self.post(Progress(status=status, progress=min(max(progress, 0.0), 100.0), file=file))

    def _embed_one(self, backend: EmbeddingBackend, text: str) -> list[float]:
        return normalize(backend.embed(text[: self._max_input_chars]))


def run_worker(
    inbox: Any,
    outbox: Any,
    backend_factory: BackendFactory,
    max_input_chars: int = DEFAULT_MAX_INPUT_CHARS,
) -> None:
    """Serve requests from *inbox* until the stop sentinel arrives.

    Args:
        inbox: Queue of request envelopes (``queue.Queue`` or a multiprocessing queue).
        outbox: Queue receiving response envelopes.
        backend_factory: Callable building the model; receives ``on_progress=``.
        max_input_chars: Each text is truncated to this many characters.
    """
    worker = _Worker(outbox, backend_factory, max_input_chars)
    while True:
        envelope = inbox.get()
        if envelope is STOP:
            break
        worker.handle(envelope)
