"""
On-device RAG core for the chat application.

This package provides:
- Token-aware overlapping chunking (`chunker.py`)
- A sentence-transformers embedding adapter (`embedder.py`)
- A SQLite vector store with precomputed norms (`vector_store.py`)
- Cosine ranking over a bounded candidate window (`similarity.py`)
- Ingestion and query pipelines (`ingestion.py`, `query.py`)
- A knowledge-base facade tying them together (`retriever.py`)
"""

from .chunker import TextChunker, Tokenizer, split_text
from .config import RagSettings
from .embedder import EmbeddingPort, SentenceTransformerEmbedder, TransformersTokenizer
from .errors import (
    ChunkingConfigurationError,
    DatabaseError,
    DocumentNotFoundError,
    EmbeddingError,
    InvalidDimensionError,
    InvalidVectorError,
    RagError,
    SerializationError,
    StoreConnectionError,
    VectorStoreError,
)
from .ingestion import IngestionPipeline, IngestionReport
from .models import ChunkInput, ChunkMetadata, Document, DocumentStats, SearchResult
from .prompts import build_prompt
from .query import QueryContext, QueryPipeline
from .retriever import RagRetriever
from .vector_store import VectorStore

__version__ = "0.1.0"
