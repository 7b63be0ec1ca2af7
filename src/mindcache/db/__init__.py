"""MindCache durable storage layer."""

from mindcache.db.connection import Database
from mindcache.db.documents import DocumentStore
from mindcache.db.metadata import MetadataStore
from mindcache.db.migrations import MIGRATIONS, run_migrations
from mindcache.db.schema import initialize

__all__ = [
    "Database",
    "DocumentStore",
    "MetadataStore",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
]
