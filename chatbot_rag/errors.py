"""
Error types raised by the RAG core.

Store operations fail fast with one of the `VectorStoreError` subclasses.
Pipelines decide per policy which of these they absorb.
"""


class RagError(Exception):
    """Base class for every error raised by this package."""


class VectorStoreError(RagError):
    """Base class for vector store failures."""


class InvalidVectorError(VectorStoreError):
    """An embedding is not a flat vector of finite numbers."""


class InvalidDimensionError(InvalidVectorError):
    """An embedding does not have the store's fixed dimension."""

    def __init__(self, expected: int, actual: int):
        super().__init__(
            f"Invalid vector dimension: expected {expected}, got {actual}"
        )
        self.expected = expected
        self.actual = actual


class SerializationError(VectorStoreError):
    """Stored bytes cannot be decoded into a vector of the store dimension."""


class DatabaseError(VectorStoreError):
    """I/O or constraint failure inside SQLite."""


class StoreConnectionError(VectorStoreError):
    """
    The database could not be opened.

    Fatal for the store instance; build a new one to recover.
    """


class DocumentNotFoundError(VectorStoreError):
    def __init__(self, document_id: str):
        super().__init__(f"Document not found: {document_id}")
        self.document_id = document_id


class ChunkingConfigurationError(RagError):
    """Chunk size / overlap combination that cannot produce chunks."""


class EmbeddingError(RagError):
    """The embedding model failed to encode a text."""
