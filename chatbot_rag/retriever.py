import logging
from pathlib import Path
from typing import Dict, Optional, Union

from .chunker import TextChunker, Tokenizer
from .config import RagSettings
from .embedder import EmbeddingPort
from .ingestion import IngestionPipeline, IngestionReport
from .query import QueryContext, QueryPipeline
from .vector_store import VectorStore


class RagRetriever:
    """
    High-level RAG orchestration for the chat application.

    - Opens the vector store described by `RagSettings`.
    - Ingests the knowledge base once; later starts find it in the store.
    - Provides context retrieval for user questions.

    The store must open for the retriever to exist: a StoreConnectionError
    from the constructor is fatal until a new retriever is built.
    """

    def __init__(
        self,
        embedder: EmbeddingPort,
        settings: Optional[RagSettings] = None,
        tokenizer: Optional[Tokenizer] = None,
        store: Optional[VectorStore] = None,
    ) -> None:
        """
        Args:
            embedder: Embedding model used for both chunks and queries
            settings: Store, chunking and retrieval settings (defaults if omitted)
            tokenizer: Measures chunk sizes; defaults to `embedder.tokenizer`
            store: Pre-built store, mainly for tests
        """
        self.log = logging.getLogger("rag.retriever")
        self.settings = settings or RagSettings()

        if tokenizer is None:
            tokenizer = getattr(embedder, "tokenizer", None)
            if tokenizer is None:
                raise ValueError("A tokenizer is required when the embedder has none")

        chunker = TextChunker(
            tokenizer,
            chunk_size=self.settings.chunk_size,
            overlap=self.settings.chunk_overlap,
        )

        self.store = store or VectorStore(
            self.settings.db_path,
            dimension=self.settings.dimension,
            search_candidate_limit=self.settings.search_candidate_limit,
            filter_candidate_limit=self.settings.filter_candidate_limit,
        )
        self.ingestion = IngestionPipeline(
            chunker,
            embedder,
            self.store,
            batch_size=self.settings.batch_size,
            model_version=self.settings.model_version,
        )
        self.query = QueryPipeline(embedder, self.store, top_k=self.settings.top_k)

    # ------------------------------------------------------------------ #
    # Knowledge base indexing
    # ------------------------------------------------------------------ #
    def index_knowledge_base(self, kb_dir: Union[str, Path]) -> Dict[str, IngestionReport]:
        """
        Ingest every .txt file in `kb_dir` that the store does not hold yet.

        Each file becomes one document keyed by its stem. A file that cannot
        be read is logged and skipped; the others still load.
        """
        kb_dir = Path(kb_dir)
        reports: Dict[str, IngestionReport] = {}

        for txt_path in sorted(kb_dir.glob("*.txt")):
            try:
                content = txt_path.read_text(encoding="utf-8").strip()
            except (OSError, UnicodeDecodeError) as exc:
                self.log.exception("Failed to read %s: %s", txt_path, exc)
                continue

            if not content:
                continue

            reports[txt_path.stem] = self.ingestion.ensure_ingested(
                txt_path.stem, content, title=txt_path.name
            )

        if reports:
            self.log.info("Indexed %d knowledge base files from %s", len(reports), kb_dir)
        else:
            self.log.info("No knowledge base .txt files found in %s", kb_dir)
        return reports

    def ingest_text(
        self,
        document_id: str,
        text: str,
        title: Optional[str] = None,
    ) -> IngestionReport:
        return self.ingestion.ingest(document_id, text, title=title)

    # ------------------------------------------------------------------ #
    # Retrieval
    # ------------------------------------------------------------------ #
    def retrieve_context(
        self,
        query: str,
        corpus_id: Optional[str] = None,
        top_k: Optional[int] = None,
    ) -> QueryContext:
        return self.query.retrieve_context(query, corpus_id, top_k=top_k)

    def close(self) -> None:
        self.store.close()

    def __enter__(self) -> "RagRetriever":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
