"""Shared pytest fixtures."""

from __future__ import annotations

import logging
import re
import time
import zlib

import pytest

from mindcache.db.connection import Database
from mindcache.db.schema import initialize
from mindcache.embedding.channel import EmbeddingChannel

DIMENSIONS = 64

_TOKEN_RE = re.compile(r"\w+")


class FakeBackend:
    """Deterministic bag-of-words embedding: each token adds 1 to a hashed bucket."""

    def __init__(self, dimensions: int = DIMENSIONS) -> None:
        self.dimensions = dimensions
        self.calls: list[str] = []

    def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        vector = [0.0] * self.dimensions
        tokens = _TOKEN_RE.findall(text.lower())
        if not tokens:
            vector[0] = 1.0
            return vector
        for token in tokens:
            vector[zlib.crc32(token.encode("utf-8")) % self.dimensions] += 1.0
        return vector


class FailingBackend(FakeBackend):
    """Raises on any text containing *trigger*."""

    def __init__(self, trigger: str = "boom", dimensions: int = DIMENSIONS) -> None:
        super().__init__(dimensions)
        self.trigger = trigger

    def embed(self, text: str) -> list[float]:
        if self.trigger in text:
            raise RuntimeError(f"cannot embed '{self.trigger}'")
        return super().embed(text)


class CrashingBackend(FakeBackend):
    """Kills the worker thread the first time it is asked to embed."""

    def embed(self, text: str) -> list[float]:
        raise SystemExit(1)


class SlowBackend(FakeBackend):
    """Sleeps before every embedding; keeps requests in flight."""

    def __init__(self, delay: float, dimensions: int = DIMENSIONS) -> None:
        super().__init__(dimensions)
        self.delay = delay

    def embed(self, text: str) -> list[float]:
        time.sleep(self.delay)
        return super().embed(text)


class ProcessFactory:
    """Picklable backend factory for process-isolated channels."""

    def __init__(self, dimensions: int = DIMENSIONS, delay: float = 0.0) -> None:
        self.dimensions = dimensions
        self.delay = delay

    def __call__(self, on_progress=None) -> FakeBackend:
        if on_progress is not None:
            on_progress("download", 50.0, "model.onnx")
        if self.delay:
            return SlowBackend(self.delay, self.dimensions)
        return FakeBackend(self.dimensions)


def fake_factory(backend: FakeBackend | None = None, *, load_error: Exception | None = None):
    """Backend factory in the shape the worker expects (``on_progress=`` keyword)."""

    def factory(on_progress=None):
        if on_progress is not None:
            on_progress("download", 50.0, "model.onnx")
        if load_error is not None:
            raise load_error
        return backend if backend is not None else FakeBackend()

    return factory


@pytest.fixture(autouse=True)
def _reset_mindcache_logger():
    """Undo CLI logging setup so caplog sees mindcache records in every test."""
    yield
    logger = logging.getLogger("mindcache")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)
    logger.propagate = True


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / ".mindcache.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture
def make_channel():
    """Build thread-isolated channels over fake backends."""

    def _make(backend: FakeBackend | None = None, **kwargs) -> EmbeddingChannel:
        load_error = kwargs.pop("load_error", None)
        kwargs.setdefault("dimensions", DIMENSIONS)
        kwargs.setdefault("poll_interval", 0.05)
        return EmbeddingChannel(
            fake_factory(backend, load_error=load_error), isolation="thread", **kwargs
        )

    return _make


@pytest.fixture
def cli_home(tmp_path, monkeypatch):
    """Run CLI commands inside tmp_path with a private global config and a fake model."""
    import mindcache.config as config_module

    monkeypatch.chdir(tmp_path)
    for var in ("MINDCACHE_EMBEDDING_MODEL", "MINDCACHE_DB", "MINDCACHE_LOG_LEVEL"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setattr(
        config_module, "_GLOBAL_CONFIG_PATH", tmp_path / "home" / "config.yaml"
    )
    (tmp_path / "mindcache.yaml").write_text(
        f"embedding:\n  dimensions: {DIMENSIONS}\n", encoding="utf-8"
    )
    monkeypatch.setattr(
        EmbeddingChannel,
        "from_config",
        classmethod(
            lambda cls, cfg: cls(
                fake_factory(), dimensions=cfg.dimensions, isolation="thread", poll_interval=0.05
            )
        ),
    )
    return tmp_path
