"""Closed set of messages exchanged with the embedding worker.

On the wire every message is a plain envelope dict ``{type, id?, payload?}``
so it crosses thread and process queues unchanged. ``encode`` builds the
envelope from a typed message; ``decode`` validates an envelope and returns
the typed message, raising ``ProtocolError`` for anything outside the table:

==================  =============  =======================================
type                id             payload
==================  =============  =======================================
INIT                —              —
PROGRESS            —              {status, progress: 0-100, file?}
MODEL_LOADED        —              —
EMBED_BATCH         correlation    {texts: [str, ...]}
EMBEDDING_RESULT    correlation    {embeddings: [[float, ...], ...]}
ERROR               correlation?   {error: str}
==================  =============  =======================================
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

from mindcache.errors import ProtocolError


class MessageType(str, Enum):
    INIT = "INIT"
    PROGRESS = "PROGRESS"
    MODEL_LOADED = "MODEL_LOADED"
    EMBED_BATCH = "EMBED_BATCH"
    EMBEDDING_RESULT = "EMBEDDING_RESULT"
    ERROR = "ERROR"


@dataclass(frozen=True)
class Init:
    pass


@dataclass(frozen=True)
class Progress:
    status: str
    progress: float
    file: str | None = None


@dataclass(frozen=True)
class ModelLoaded:
    pass


@dataclass(frozen=True)
class EmbedBatch:
    id: str
    texts: tuple[str, ...]


@dataclass(frozen=True)
class EmbeddingResult:
    id: str
    embeddings: tuple[tuple[float, ...], ...]


@dataclass(frozen=True)
class Error:
    error: str
    id: str | None = None


Message = Union[Init, Progress, ModelLoaded, EmbedBatch, EmbeddingResult, Error]


def encode(message: Message) -> dict[str, Any]:
    """Return the wire envelope for *message*."""
    if isinstance(message, Init):
        return {"type": MessageType.INIT.value}
    if isinstance(message, ModelLoaded):
        return {"type": MessageType.MODEL_LOADED.value}
    if isinstance(message, Progress):
        payload: dict[str, Any] = {"status": message.status, "progress": message.progress}
        if message.file is not None:
            payload["file"] = message.file
        return {"type": MessageType.PROGRESS.value, "payload": payload}
    if isinstance(message, EmbedBatch):
        return {
            "type": MessageType.EMBED_BATCH.value,
            "id": message.id,
            "payload": {"texts": list(message.texts)},
        }
    if isinstance(message, EmbeddingResult):
        return {
            "type": MessageType.EMBEDDING_RESULT.value,
            "id": message.id,
            "payload": {"embeddings": [list(v) for v in message.embeddings]},
        }
    if isinstance(message, Error):
        envelope: dict[str, Any] = {
            "type": MessageType.ERROR.value,
            "payload": {"error": message.error},
        }
        if message.id is not None:
            envelope["id"] = message.id
        return envelope
    raise ProtocolError(f"Cannot encode {type(message).__name__}")


def decode(envelope: Any) -> Message:
    """Validate *envelope* and return the typed message it carries.

    Raises:
        ProtocolError: Unknown type, missing/extra correlation id, or a payload
            that does not match the fixed shape for its type.
    """
    if not isinstance(envelope, dict):
        raise ProtocolError(f"Envelope must be a dict, got {type(envelope).__name__}")
    try:
        kind = MessageType(envelope.get("type"))
    except ValueError:
        raise ProtocolError(f"Unknown message type: {envelope.get('type')!r}") from None

    msg_id = envelope.get("id")
    if msg_id is not None and not isinstance(msg_id, str):
        raise ProtocolError(f"{kind.value}: id must be a string")
    payload = envelope.get("payload")

    if kind is MessageType.INIT:
        return Init()
    if kind is MessageType.MODEL_LOADED:
        return ModelLoaded()
    if kind is MessageType.PROGRESS:
        body = _payload(kind, payload)
        status = body.get("status")
        progress = body.get("progress")
        file = body.get("file")
        if not isinstance(status, str):
            raise ProtocolError("PROGRESS: status must be a string")
        if not _is_number(progress) or not 0 <= progress <= 100:
            raise ProtocolError(f"PROGRESS: progress must be a number in [0, 100], got {progress!r}")
        if file is not None and not isinstance(file, str):
            raise ProtocolError("PROGRESS: file must be a string")
        return Progress(status=status, progress=float(progress), file=file)
    if kind is MessageType.EMBED_BATCH:
        body = _payload(kind, payload)
        texts = body.get("texts")
        if msg_id is None:
            raise ProtocolError("EMBED_BATCH: missing correlation id")
        if not isinstance(texts, list) or not all(isinstance(t, str) for t in texts):
            raise ProtocolError("EMBED_BATCH: texts must be a list of strings")
        return EmbedBatch(id=msg_id, texts=tuple(texts))
    if kind is MessageType.EMBEDDING_RESULT:
        body = _payload(kind, payload)
        embeddings = body.get("embeddings")
        if msg_id is None:
            raise ProtocolError("EMBEDDING_RESULT: missing correlation id")
        if not isinstance(embeddings, list) or not all(
            isinstance(v, (list, tuple)) and all(_is_number(x) for x in v) for v in embeddings
        ):
            raise ProtocolError("EMBEDDING_RESULT: embeddings must be a list of numeric vectors")
        return EmbeddingResult(
            id=msg_id, embeddings=tuple(tuple(float(x) for x in v) for v in embeddings)
        )
    # ERROR
    body = _payload(kind, payload)
    error = body.get("error")
    if not isinstance(error, str):
        raise ProtocolError("ERROR: error must be a string")
    return Error(error=error, id=msg_id)


def _payload(kind: MessageType, payload: Any) -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise ProtocolError(f"{kind.value}: payload must be a dict")
    return payload


def _is_number(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and not math.isnan(value)
    )
