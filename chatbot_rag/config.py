import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Mapping, Optional

from .chunker import DEFAULT_CHUNK_SIZE, DEFAULT_OVERLAP
from .embedder import DEFAULT_MODEL_NAME
from .vector_store import (
    DEFAULT_DIMENSION,
    FILTER_CANDIDATE_LIMIT,
    SEARCH_CANDIDATE_LIMIT,
)

ENV_PREFIX = "RAG_"


@dataclass(frozen=True)
class RagSettings:
    # SQLite file holding chunk vectors and document metadata.
    db_path: Path = Path("vectors.db")

    # Must match the embedding model's output size.
    dimension: int = DEFAULT_DIMENSION

    embedding_model: str = DEFAULT_MODEL_NAME
    # Tag stored with each document; None uses the embedder's own.
    model_version: Optional[str] = None

    # Chunking, in tokenizer tokens.
    chunk_size: int = DEFAULT_CHUNK_SIZE
    chunk_overlap: int = DEFAULT_OVERLAP

    # Embedded chunks buffered per store transaction during ingestion.
    batch_size: int = 10

    top_k: int = 5
    search_candidate_limit: int = SEARCH_CANDIDATE_LIMIT
    filter_candidate_limit: int = FILTER_CANDIDATE_LIMIT

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "RagSettings":
        """
        Build settings from RAG_* environment variables.

        RAG_DB_PATH, RAG_DIMENSION, RAG_CHUNK_SIZE, ... map onto the field of
        the same name; anything unset keeps its default.
        """
        environ = os.environ if environ is None else environ
        values = {}
        for field in fields(cls):
            raw = environ.get(ENV_PREFIX + field.name.upper())
            if raw is None or raw == "":
                continue
            if field.name == "db_path":
                values[field.name] = Path(raw)
            elif isinstance(field.default, int):
                try:
                    values[field.name] = int(raw)
                except ValueError as exc:
                    raise ValueError(
                        f"{ENV_PREFIX}{field.name.upper()} must be an integer, got {raw!r}"
                    ) from exc
            else:
                values[field.name] = raw
        return cls(**values)
