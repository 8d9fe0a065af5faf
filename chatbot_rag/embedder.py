import logging
import threading
from typing import Dict, List, Optional, Protocol, Sequence, Tuple

import numpy as np

from .errors import EmbeddingError

try:
    from sentence_transformers import SentenceTransformer
except Exception:  # pragma: no cover - optional dependency at dev time
    SentenceTransformer = None  # type: ignore[assignment]


DEFAULT_MODEL_NAME = "sentence-transformers/msmarco-distilbert-base-v4"

_MODELS: Dict[Tuple[str, str], "SentenceTransformer"] = {}
_MODELS_LOCK = threading.Lock()


class EmbeddingPort(Protocol):
    """
    What the pipelines need from an embedding model.

    `encode` must be deterministic for a given text and `model_version`.
    A failure is either an exception or a None return.
    """

    model_version: str

    def encode(self, text: str) -> Optional[Sequence[float]]:
        ...


def get_model(model_name: str = DEFAULT_MODEL_NAME, device: str = "cpu"):
    """
    Lazily create and return a shared SentenceTransformer encoder.

    Models stay in memory for the lifetime of the process so that
    ingestion and queries never pay the load cost twice.
    """
    key = (model_name, device)
    with _MODELS_LOCK:
        if key in _MODELS:
            return _MODELS[key]

        log = logging.getLogger("rag.embedder")

        if SentenceTransformer is None:
            raise RuntimeError(
                "sentence-transformers is not installed. "
                "Install it to enable RAG."
            )

        try:
            model = SentenceTransformer(model_name, device=device)
        except Exception as exc:  # pragma: no cover - runtime/hardware specific
            log.exception("Failed to load embedding model: %s", exc)
            raise

        log.info("Loaded embedding model %s on %s", model_name, device)
        _MODELS[key] = model
        return model


class TransformersTokenizer:
    """
    Adapts a Hugging Face tokenizer to the chunker's encode/decode contract.

    Special tokens ([CLS], [SEP], ...) are left out so that chunk sizes
    count only content tokens.
    """

    def __init__(self, hf_tokenizer) -> None:
        self._tokenizer = hf_tokenizer

    def encode(self, text: str) -> List[int]:
        return list(self._tokenizer.encode(text, add_special_tokens=False))

    def decode(self, tokens: Sequence[int]) -> str:
        return self._tokenizer.decode(
            list(tokens),
            skip_special_tokens=True,
            clean_up_tokenization_spaces=True,
        )


class SentenceTransformerEmbedder:
    """
    EmbeddingPort backed by sentence-transformers, running on CPU by default.
    """

    def __init__(
        self,
        model_name: str = DEFAULT_MODEL_NAME,
        device: str = "cpu",
        model_version: Optional[str] = None,
    ) -> None:
        self.log = logging.getLogger("rag.embedder")
        self.model_name = model_name
        self.device = device
        # Stored next to every vector; default to the model's short name.
        self.model_version = model_version or model_name.rsplit("/", 1)[-1]

    @property
    def model(self):
        return get_model(self.model_name, self.device)

    @property
    def dimension(self) -> int:
        return int(self.model.get_sentence_embedding_dimension())

    @property
    def tokenizer(self) -> TransformersTokenizer:
        """The model's own tokenizer, for sizing chunks."""
        return TransformersTokenizer(self.model.tokenizer)

    def encode(self, text: str) -> np.ndarray:
        """
        Encode one string into a float32 vector.

        Raises:
            EmbeddingError: If the model fails on this input
        """
        try:
            vector = self.model.encode(text, convert_to_numpy=True)
        except Exception as exc:
            raise EmbeddingError(f"Failed to encode text: {exc}") from exc
        return np.asarray(vector, dtype=np.float32)

    def encode_batch(self, texts: List[str], batch_size: int = 16) -> List[np.ndarray]:
        """Encode many strings in one model call; all of them fail together."""
        if not texts:
            return []
        try:
            vectors = self.model.encode(texts, batch_size=batch_size, convert_to_numpy=True)
        except Exception as exc:
            raise EmbeddingError(f"Failed to encode {len(texts)} texts: {exc}") from exc
        return [np.asarray(row, dtype=np.float32) for row in vectors]
