"""Caller side of the embedding channel.

``EmbeddingChannel`` starts the worker (a separate process by default, or a
thread) and talks to it only through two queues. Each ``embed_batch`` call is
tagged with a correlation id and parked in a pending table as a future; a
single receive thread reads the worker's outbox and hands every envelope to
the event loop, where the matching future is resolved. Responses may arrive in
any order relative to submission.

Failure scope:
  - ``ERROR`` with a correlation id rejects only that request (EmbeddingError).
  - ``ERROR`` without an id while loading fails initialization.
  - The worker dying rejects every pending request (ChannelClosedError).

There is no timeout: a stalled worker leaves requests pending.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import multiprocessing
import queue
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

from mindcache.embedding.backends import BackendFactory, backend_factory
from mindcache.embedding.messages import (
    EmbedBatch,
    EmbeddingResult,
    Error,
    Init,
    ModelLoaded,
    Progress,
    decode,
    encode,
)
from mindcache.embedding.worker import DEFAULT_MAX_INPUT_CHARS, STOP, run_worker
from mindcache.errors import (
    ChannelClosedError,
    EmbeddingError,
    InitializationError,
    NotInitializedError,
    ProtocolError,
)

logger = logging.getLogger(__name__)

ISOLATION_MODES = ("process", "thread")
DEFAULT_DIMENSIONS = 384

ProgressHandler = Callable[[Progress], None]


@dataclass
class _PendingRequest:
    future: asyncio.Future[list[list[float]]]
    size: int


class EmbeddingChannel:
    """Async request/response channel to an isolated embedding worker.

    Args:
        factory: Picklable callable that builds the model inside the worker
            (see ``mindcache.embedding.backends.backend_factory``).
        dimensions: Expected vector dimension D; responses are validated against it.
        max_input_chars: Worker-side truncation of each input text.
        isolation: ``"process"`` (default) or ``"thread"``.
        poll_interval: Seconds between worker liveness checks while idle.
    """

    def __init__(
        self,
        factory: BackendFactory,
        *,
        dimensions: int = DEFAULT_DIMENSIONS,
        max_input_chars: int = DEFAULT_MAX_INPUT_CHARS,
        isolation: str = "process",
        poll_interval: float = 0.5,
    ) -> None:
        if isolation not in ISOLATION_MODES:
            raise ValueError(
                f"isolation must be one of {', '.join(ISOLATION_MODES)}, got '{isolation}'"
            )
        self.dimensions = dimensions
        self.max_input_chars = max_input_chars
        self.isolation = isolation
        self._factory = factory
        self._poll_interval = poll_interval

        self._loop: asyncio.AbstractEventLoop | None = None
        self._ready: asyncio.Future[None] | None = None
        self._on_progress: ProgressHandler | None = None
        self._pending: dict[str, _PendingRequest] = {}
        self._ids = itertools.count(1)
        self._closed_reason: str | None = None

        self._inbox: Any = None
        self._outbox: Any = None
        self._worker: threading.Thread | multiprocessing.process.BaseProcess | None = None
        self._receiver: threading.Thread | None = None
        self._stopping = threading.Event()

    @classmethod
    def from_config(cls, cfg: Any) -> EmbeddingChannel:
        """Build a channel from an ``EmbeddingCfg`` section."""
        return cls(
            backend_factory(cfg.backend, cfg.model, cfg.cache_dir),
            dimensions=cfg.dimensions,
            max_input_chars=cfg.max_input_chars,
            isolation=cfg.isolation,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def ready(self) -> bool:
        return (
            self._ready is not None
            and self._ready.done()
            and not self._ready.cancelled()
            and self._ready.exception() is None
            and self._closed_reason is None
        )

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def start(self, on_progress: ProgressHandler | None = None) -> None:
        """Start the worker and request the model load without waiting for it.

        Must be called from a running event loop. Later calls are no-ops.
        """
        if self._ready is not None:
            return
        if self._closed_reason is not None:
            raise ChannelClosedError(self._closed_reason)

        self._loop = asyncio.get_running_loop()
        self._ready = self._loop.create_future()
        # Mark the outcome as observed so an unawaited failure is not reported twice.
        self._ready.add_done_callback(lambda f: f.cancelled() or f.exception())
        self._on_progress = on_progress

        if self.isolation == "process":
            ctx = multiprocessing.get_context("spawn")
            self._inbox, self._outbox = ctx.Queue(), ctx.Queue()
            self._worker = ctx.Process(
                target=run_worker,
                args=(self._inbox, self._outbox, self._factory, self.max_input_chars),
                name="mindcache-embedding",
                daemon=True,
            )
        else:
            self._inbox, self._outbox = queue.Queue(), queue.Queue()
            self._worker = threading.Thread(
                target=run_worker,
                args=(self._inbox, self._outbox, self._factory, self.max_input_chars),
                name="mindcache-embedding",
                daemon=True,
            )
        self._worker.start()
        self._receiver = threading.Thread(
            target=self._receive_loop, name="mindcache-embedding-receiver", daemon=True
        )
        self._receiver.start()

        self._inbox.put(encode(Init()))
        logger.debug("Embedding worker started (%s isolation)", self.isolation)

    async def init(self, on_progress: ProgressHandler | None = None) -> None:
        """Start the worker if needed and wait until the model is loaded.

        Idempotent: every call observes the same readiness outcome.

        Raises:
            InitializationError: If the model failed to load or the worker died.
        """
        self.start(on_progress)
        assert self._ready is not None
        await asyncio.shield(self._ready)

    async def close(self) -> None:
        """Stop the worker and reject anything still pending."""
        if self._worker is None:
            self._closed_reason = self._closed_reason or "Embedding channel closed"
            return
        self._stopping.set()
        self._inbox.put(STOP)
        await asyncio.to_thread(self._join)
        self._fail("Embedding channel closed")
        self._worker = None

    async def __aenter__(self) -> EmbeddingChannel:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def embed(self, text: str) -> list[float]:
        """Embed one text; same as ``(await embed_batch([text]))[0]``."""
        return (await self.embed_batch([text]))[0]

    async def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed *texts*, returning one L2-normalized vector per text in input order.

        Waits for an in-flight initialization before dispatching.

        Raises:
            NotInitializedError: If ``init()``/``start()`` was never called.
            InitializationError: If the model failed to load.
            EmbeddingError: If this request failed in the worker.
            ChannelClosedError: If the worker died or the channel was closed.
        """
        if self._ready is None or self._loop is None:
            raise NotInitializedError("EmbeddingChannel not initialized. Call init() first.")
        if self._closed_reason is not None:
            raise ChannelClosedError(self._closed_reason)

        await asyncio.shield(self._ready)
        batch = list(texts)
        if not batch:
            return []
        if self._closed_reason is not None:
            raise ChannelClosedError(self._closed_reason)

        request_id = f"req_{next(self._ids)}"
        future: asyncio.Future[list[list[float]]] = self._loop.create_future()
        self._pending[request_id] = _PendingRequest(future=future, size=len(batch))
        try:
            self._inbox.put(encode(EmbedBatch(id=request_id, texts=tuple(batch))))
            return await future
        finally:
            self._pending.pop(request_id, None)

    # ------------------------------------------------------------------
    # Receive side (receive thread → event loop)
    # ------------------------------------------------------------------

    def _receive_loop(self) -> None:
        while not self._stopping.is_set():
            try:
                envelope = self._outbox.get(timeout=self._poll_interval)
            except queue.Empty:
                if not self._worker_alive():
                    self._call_soon(self._on_worker_exit)
                    return
                continue
            self._call_soon(self._dispatch, envelope)

    def _worker_alive(self) -> bool:
        worker = self._worker
        return worker is not None and worker.is_alive()

    def _call_soon(self, callback: Callable[..., None], *args: Any) -> None:
        assert self._loop is not None
        try:
            self._loop.call_soon_threadsafe(callback, *args)
        except RuntimeError:
            # Event loop already closed: nobody is left to receive.
            self._stopping.set()

    def _dispatch(self, envelope: Any) -> None:
        try:
            message = decode(envelope)
        except ProtocolError as exc:
            logger.warning("Malformed message from embedding worker: %s", exc)
            msg_id = envelope.get("id") if isinstance(envelope, dict) else None
            if isinstance(msg_id, str):
                self._reject(msg_id, EmbeddingError(f"Malformed response: {exc}"))
            return

        if isinstance(message, Progress):
            self._report_progress(message)
        elif isinstance(message, ModelLoaded):
            if self._ready is not None and not self._ready.done():
                self._ready.set_result(None)
                logger.info("Embedding model loaded")
        elif isinstance(message, EmbeddingResult):
            self._resolve(message)
        elif isinstance(message, Error):
            if message.id is not None:
                self._reject(message.id, EmbeddingError(message.error))
            elif self._ready is not None and not self._ready.done():
                self._ready.set_exception(InitializationError(message.error))
            else:
                logger.error("Embedding worker error: %s", message.error)
        else:
            logger.warning("Unexpected %s from embedding worker", type(message).__name__)

    def _resolve(self, message: EmbeddingResult) -> None:
        request = self._pending.pop(message.id, None)
        if request is None:
            logger.warning("Dropping response for unknown request %s", message.id)
            return
        if request.future.done():
            return
        try:
            request.future.set_result(self._validate(message, request.size))
        except EmbeddingError as exc:
            request.future.set_exception(exc)

    def _validate(self, message: EmbeddingResult, size: int) -> list[list[float]]:
        if len(message.embeddings) != size:
            raise EmbeddingError(
                f"Expected {size} embeddings for {message.id}, got {len(message.embeddings)}"
            )
        for vector in message.embeddings:
            if len(vector) != self.dimensions:
                raise EmbeddingError(
                    f"Embedding model returned {len(vector)} dimensions, expected {self.dimensions}"
                )
        return [list(v) for v in message.embeddings]

    def _reject(self, request_id: str, exc: Exception) -> None:
        request = self._pending.pop(request_id, None)
        if request is not None and not request.future.done():
            request.future.set_exception(exc)

    def _report_progress(self, progress: Progress) -> None:
        if self._on_progress is None:
            return
        try:
            self._on_progress(progress)
        except Exception:
            logger.exception("Progress callback raised")

    def _on_worker_exit(self) -> None:
        if self._stopping.is_set():
            return
        self._fail("Embedding worker exited unexpectedly")

    def _fail(self, reason: str) -> None:
        """Close the channel for good: fail readiness and reject all pending requests."""
        self._closed_reason = self._closed_reason or reason
        if self._ready is not None and not self._ready.done():
            self._ready.set_exception(InitializationError(reason))
        pending, self._pending = self._pending, {}
        for request in pending.values():
            if not request.future.done():
                request.future.set_exception(ChannelClosedError(reason))
        if pending:
            logger.error("%s; rejected %d pending request(s)", reason, len(pending))

    def _join(self) -> None:
        worker, receiver = self._worker, self._receiver
        if worker is not None:
            worker.join(timeout=5)
            if isinstance(worker, multiprocessing.process.BaseProcess) and worker.is_alive():
                worker.terminate()
                worker.join(timeout=5)
        if receiver is not None:
            receiver.join(timeout=self._poll_interval * 4)
        if self.isolation == "process":
            for q in (self._inbox, self._outbox):
                q.close()
                q.cancel_join_thread()
