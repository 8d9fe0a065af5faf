"""
Document ingestion: chunk, embed, store.

Embedding happens outside the store's write lock; only the batched
insert is serialized. Chunks that fail to embed are skipped and
reported, never retried.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union

from .chunker import TextChunker
from .embedder import EmbeddingPort
from .errors import InvalidVectorError, VectorStoreError
from .models import ChunkInput
from .serialization import as_vector
from .vector_store import VectorStore

DEFAULT_BATCH_SIZE = 10


@dataclass
class IngestionReport:
    """Outcome of ingesting one document."""

    document_id: str
    total_chunks: int = 0
    stored_chunks: int = 0
    failed_chunks: List[int] = field(default_factory=list)
    batches: int = 0
    # True once every chunk has been attempted, whatever the outcome.
    completed: bool = False
    skipped: bool = False

    @property
    def failure_count(self) -> int:
        return len(self.failed_chunks)


class IngestionPipeline:
    """
    TextChunker -> EmbeddingPort -> VectorStore.add_vectors_batch.

    Example:
        >>> pipeline = IngestionPipeline(chunker, embedder, store)
        >>> report = pipeline.ingest("kb_en", text, title="English KB")
        >>> report.failure_count
        0
    """

    def __init__(
        self,
        chunker: TextChunker,
        embedder: EmbeddingPort,
        store: VectorStore,
        batch_size: int = DEFAULT_BATCH_SIZE,
        model_version: Optional[str] = None,
    ) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")

        self.log = logging.getLogger("rag.ingestion")
        self.chunker = chunker
        self.embedder = embedder
        self.store = store
        self.batch_size = batch_size
        self.model_version = model_version or getattr(embedder, "model_version", None) or "unknown"

    def ingest(
        self,
        document_id: str,
        text: str,
        title: Optional[str] = None,
    ) -> IngestionReport:
        """
        Chunk, embed and store one document.

        Re-ingesting the same text upserts the same (document_id, chunk_index)
        rows, so repeated runs leave the store unchanged.
        """
        report = IngestionReport(document_id=document_id)
        chunks = self.chunker.split(text)
        report.total_chunks = len(chunks)

        buffer: List[ChunkInput] = []
        for index, chunk in enumerate(chunks):
            embedding = self._embed(document_id, index, chunk)
            if embedding is None:
                report.failed_chunks.append(index)
                continue

            buffer.append(ChunkInput(index=index, text=chunk, embedding=embedding))
            if len(buffer) >= self.batch_size:
                self._flush(document_id, buffer, title, report)
                buffer = []

        if buffer:
            self._flush(document_id, buffer, title, report)

        report.failed_chunks.sort()
        report.completed = True
        if report.failed_chunks:
            self.log.warning(
                "Document %s: %d of %d chunks failed",
                document_id,
                report.failure_count,
                report.total_chunks,
            )
        self.log.info(
            "Ingested document %s: %d/%d chunks stored in %d batches",
            document_id,
            report.stored_chunks,
            report.total_chunks,
            report.batches,
        )
        return report

    def ensure_ingested(
        self,
        document_id: str,
        text: str,
        title: Optional[str] = None,
    ) -> IngestionReport:
        """Ingest `text` only if the store has no record of `document_id` yet."""
        if self.store.document_exists(document_id):
            self.log.info("Document %s already in store, skipping", document_id)
            return IngestionReport(
                document_id=document_id,
                stored_chunks=self.store.get_vector_count(document_id),
                completed=True,
                skipped=True,
            )
        return self.ingest(document_id, text, title=title)

    def ingest_file(
        self,
        path: Union[str, Path],
        document_id: Optional[str] = None,
        title: Optional[str] = None,
    ) -> IngestionReport:
        """Ingest a UTF-8 text file; the document id defaults to the file stem."""
        path = Path(path)
        text = path.read_text(encoding="utf-8")
        return self.ingest(document_id or path.stem, text, title=title or path.name)

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #
    def _embed(self, document_id: str, index: int, chunk: str):
        try:
            embedding = self.embedder.encode(chunk)
        except Exception as exc:
            self.log.warning(
                "Embedding failed for %s chunk %d, skipping: %s", document_id, index, exc
            )
            return None

        if embedding is None:
            self.log.warning("No embedding for %s chunk %d, skipping", document_id, index)
            return None

        try:
            return as_vector(embedding, self.store.dimension)
        except InvalidVectorError as exc:
            self.log.warning("%s chunk %d: %s, skipping", document_id, index, exc)
            return None

    def _flush(
        self,
        document_id: str,
        buffer: List[ChunkInput],
        title: Optional[str],
        report: IngestionReport,
    ) -> None:
        try:
            written = self.store.add_vectors_batch(
                document_id, buffer, model_version=self.model_version, title=title
            )
        except VectorStoreError:
            self.log.exception(
                "Failed to store batch of %d chunks for %s", len(buffer), document_id
            )
            report.failed_chunks.extend(chunk.index for chunk in buffer)
            return

        report.stored_chunks += written
        report.batches += 1
