"""MindCache embedding channel — isolated model worker plus async caller side."""

from mindcache.embedding.backends import (
    BACKENDS,
    DEFAULT_BACKEND,
    DEFAULT_MODEL,
    backend_factory,
    load_backend,
)
from mindcache.embedding.channel import ISOLATION_MODES, EmbeddingChannel
from mindcache.embedding.messages import MessageType, Progress

__all__ = [
    "BACKENDS",
    "DEFAULT_BACKEND",
    "DEFAULT_MODEL",
    "EmbeddingChannel",
    "ISOLATION_MODES",
    "MessageType",
    "Progress",
    "backend_factory",
    "load_backend",
]
