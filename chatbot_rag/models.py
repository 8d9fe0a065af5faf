"""
Value types shared by the store and the pipelines.

All of them are frozen dataclasses: callers get copies of what the store
holds, never live references into it.
"""

from dataclasses import dataclass
from typing import Optional, Sequence


@dataclass(frozen=True)
class ChunkMetadata:
    id: int
    document_id: str
    chunk_index: int


@dataclass(frozen=True)
class SearchResult:
    """One ranked hit returned by a store search."""

    chunk_text: str
    score: float
    metadata: ChunkMetadata


@dataclass(frozen=True)
class ChunkInput:
    """A chunk ready to be persisted by `VectorStore.add_vectors_batch`."""

    index: int
    text: str
    embedding: Sequence[float]


@dataclass(frozen=True)
class Document:
    document_id: str
    title: Optional[str]
    total_chunks: int
    model_version: Optional[str]
    created_at: str


@dataclass(frozen=True)
class DocumentStats:
    """
    Per-document bookkeeping next to the live vector count.

    `total_chunks` is the recorded value, `actual_chunks` is counted from
    the vector table at read time. They only differ if the metadata row
    was edited outside this package.
    """

    document_id: str
    title: Optional[str]
    total_chunks: int
    actual_chunks: int
    model_version: Optional[str]
    created_at: str
