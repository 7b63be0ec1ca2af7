"""MindCache exception taxonomy.

Every failure surfaced by the library is a ``MindCacheError`` subclass so that
callers (the CLI, or any presentation layer) can report it inline without
terminating the process.
"""

from __future__ import annotations


class MindCacheError(Exception):
    """Base class for all MindCache errors."""


class InitializationError(MindCacheError):
    """The embedding model or the vector index failed to load.

    Fatal for the service instance that raised it; there is no automatic retry.
    """


class EmbeddingError(MindCacheError):
    """A single embedding request failed. Other in-flight requests are unaffected."""


class ChannelClosedError(EmbeddingError):
    """The embedding worker exited or was closed while requests were pending."""


class ProtocolError(MindCacheError, ValueError):
    """A message crossing the embedding channel boundary is malformed."""


class StorageError(MindCacheError):
    """A durable read or write failed."""


class NotInitializedError(MindCacheError, RuntimeError):
    """An operation was invoked before initialization completed."""
