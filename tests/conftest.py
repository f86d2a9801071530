"""
Shared pytest fixtures for pearls tests.

Provides a deterministic fake embedder so no ML model is downloaded.
"""

import hashlib

import numpy as np
import pytest

from pearls.config import init_catalog
from pearls.errors import EmbedError
from pearls.models import Pearl
from pearls.store import Store


class FakeEmbedder:
    """
    Deterministic embedder for testing.

    Same text, same vector; different text, (almost surely) a different one.
    """

    model = "fake/sha256"
    dimensions = 8

    def __init__(self):
        self.calls = 0

    def embed(self, text: str) -> np.ndarray:
        self.calls += 1
        digest = hashlib.sha256(text.encode()).digest()
        return np.frombuffer(digest[: self.dimensions], dtype=np.uint8).astype(np.float32) / 255.0

    def embed_query(self, text: str) -> np.ndarray:
        return self.embed(text)


class FailingEmbedder:
    dimensions = 8

    def embed(self, text: str) -> np.ndarray:
        raise EmbedError("model unavailable")

    def embed_query(self, text: str) -> np.ndarray:
        raise EmbedError("model unavailable")


def make_pearl(pearl_id: str, pearl_type: str = "table", **fields) -> Pearl:
    """Pearl.new with a fixed author so tests don't depend on the OS user."""
    return Pearl.new(pearl_id, pearl_type, created_by="tester", **fields)


@pytest.fixture
def catalog(tmp_path):
    """An initialized .pearls/ under tmp_path; returns its Paths."""
    return init_catalog(tmp_path, name="test-project")


@pytest.fixture
def store(catalog):
    s = Store.open(catalog)
    yield s
    s.close()


@pytest.fixture
def fake_embedder():
    return FakeEmbedder()


@pytest.fixture
def vstore(catalog, fake_embedder):
    """Store with the fake embedder attached."""
    s = Store.open(catalog)
    s.embedder = fake_embedder
    yield s
    s.close()
