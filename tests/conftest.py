"""
Shared test fixtures: a character tokenizer, a deterministic fake
embedder and a temporary vector store.
"""

import hashlib
import sys
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

import numpy as np
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from chatbot_rag.vector_store import VectorStore  # noqa: E402

DIMENSION = 8


class CharTokenizer:
    """One token per character, so token counts equal string lengths."""

    def encode(self, text: str) -> List[int]:
        return [ord(c) for c in text]

    def decode(self, tokens: Sequence[int]) -> str:
        return "".join(chr(t) for t in tokens)


class FakeEmbedder:
    """
    Deterministic pseudo-random vectors keyed on the text.

    Texts containing any of `fail_on` raise, texts containing any of
    `none_on` return None.
    """

    def __init__(
        self,
        dimension: int = DIMENSION,
        fail_on: Iterable[str] = (),
        none_on: Iterable[str] = (),
        model_version: str = "fake-v1",
    ):
        self.dimension = dimension
        self.fail_on = tuple(fail_on)
        self.none_on = tuple(none_on)
        self.model_version = model_version
        self.tokenizer = CharTokenizer()
        self.calls: List[str] = []

    def vector_for(self, text: str) -> np.ndarray:
        seed = int.from_bytes(hashlib.sha256(text.encode("utf-8")).digest()[:8], "little")
        return np.random.default_rng(seed).standard_normal(self.dimension).astype(np.float32)

    def encode(self, text: str) -> Optional[np.ndarray]:
        self.calls.append(text)
        if any(marker in text for marker in self.fail_on):
            raise RuntimeError("model exploded")
        if any(marker in text for marker in self.none_on):
            return None
        return self.vector_for(text)


def unit(*values: float) -> List[float]:
    """Pad `values` with zeros up to DIMENSION."""
    return list(values) + [0.0] * (DIMENSION - len(values))


def alphabet_text(length: int) -> str:
    """Separator-free text that does not repeat within 26 characters."""
    return "".join(chr(ord("a") + i % 26) for i in range(length))


@pytest.fixture
def tokenizer() -> CharTokenizer:
    return CharTokenizer()


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def store(tmp_path):
    vector_store = VectorStore(tmp_path / "vectors.db", dimension=DIMENSION)
    yield vector_store
    vector_store.close()
