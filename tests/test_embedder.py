"""
Tests for the sentence-transformers adapter, with the model replaced by a stub.
"""

import numpy as np
import pytest

from chatbot_rag import embedder as embedder_module
from chatbot_rag.embedder import SentenceTransformerEmbedder, TransformersTokenizer, get_model
from chatbot_rag.errors import EmbeddingError


class StubHFTokenizer:
    def __init__(self):
        self.encode_kwargs = None

    def encode(self, text, add_special_tokens=True):
        self.encode_kwargs = {"add_special_tokens": add_special_tokens}
        return [ord(c) for c in text]

    def decode(self, tokens, skip_special_tokens=False, clean_up_tokenization_spaces=False):
        return "".join(chr(t) for t in tokens)


class StubModel:
    instances = 0

    def __init__(self, model_name, device="cpu"):
        StubModel.instances += 1
        self.model_name = model_name
        self.device = device
        self.tokenizer = StubHFTokenizer()

    def get_sentence_embedding_dimension(self):
        return 4

    def encode(self, text, convert_to_numpy=True, batch_size=32):
        if isinstance(text, list):
            return np.array([self.encode(t) for t in text])
        if text == "explode":
            raise RuntimeError("CUDA out of memory")
        return np.array([len(text), 1.0, 0.0, 0.0], dtype=np.float64)


@pytest.fixture(autouse=True)
def stub_model(monkeypatch):
    StubModel.instances = 0
    monkeypatch.setattr(embedder_module, "SentenceTransformer", StubModel)
    monkeypatch.setattr(embedder_module, "_MODELS", {})
    return StubModel


class TestGetModel:
    def test_model_is_cached(self):
        first = get_model("some/model")
        second = get_model("some/model")

        assert first is second
        assert StubModel.instances == 1

    def test_device_is_part_of_cache_key(self):
        assert get_model("some/model", "cpu") is not get_model("some/model", "cuda")

    def test_missing_library(self, monkeypatch):
        monkeypatch.setattr(embedder_module, "SentenceTransformer", None)

        with pytest.raises(RuntimeError, match="sentence-transformers is not installed"):
            get_model("other/model")


class TestSentenceTransformerEmbedder:
    def test_encode_returns_float32(self):
        vector = SentenceTransformerEmbedder("some/model").encode("hello")

        assert vector.dtype == np.float32
        assert vector.tolist() == [5.0, 1.0, 0.0, 0.0]

    def test_encode_failure_wrapped(self):
        with pytest.raises(EmbeddingError):
            SentenceTransformerEmbedder("some/model").encode("explode")

    def test_encode_batch(self):
        vectors = SentenceTransformerEmbedder("some/model").encode_batch(["a", "abc"])

        assert [v.tolist() for v in vectors] == [[1.0, 1.0, 0.0, 0.0], [3.0, 1.0, 0.0, 0.0]]
        assert all(v.dtype == np.float32 for v in vectors)

    def test_encode_batch_empty(self):
        assert SentenceTransformerEmbedder("some/model").encode_batch([]) == []
        assert StubModel.instances == 0

    def test_model_version_defaults_to_short_name(self):
        assert SentenceTransformerEmbedder("org/msmarco-distilbert").model_version == "msmarco-distilbert"
        assert SentenceTransformerEmbedder("org/x", model_version="v2").model_version == "v2"

    def test_dimension(self):
        assert SentenceTransformerEmbedder("some/model").dimension == 4

    def test_model_loaded_lazily(self):
        SentenceTransformerEmbedder("some/model")
        assert StubModel.instances == 0


class TestTransformersTokenizer:
    def test_special_tokens_excluded(self):
        hf = StubHFTokenizer()
        tokenizer = TransformersTokenizer(hf)

        tokens = tokenizer.encode("hi")

        assert tokens == [104, 105]
        assert hf.encode_kwargs == {"add_special_tokens": False}
        assert tokenizer.decode(tokens) == "hi"

    def test_embedder_exposes_model_tokenizer(self):
        tokenizer = SentenceTransformerEmbedder("some/model").tokenizer
        assert tokenizer.decode(tokenizer.encode("abc")) == "abc"
