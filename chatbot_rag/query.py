"""
Query-time retrieval: embed the question, search one corpus, assemble context.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from .embedder import EmbeddingPort
from .errors import InvalidVectorError
from .serialization import as_vector
from .vector_store import VectorStore

DEFAULT_TOP_K = 5
CONTEXT_SEPARATOR = "\n\n"


@dataclass(frozen=True)
class QueryContext:
    """
    Retrieved context for one query.

    `answered` is False when the query could not be embedded; callers
    should then fall back to a "cannot answer" reply instead of prompting
    the model with no context.
    """

    query: str
    corpus_id: Optional[str]
    passages: List[Tuple[str, float]] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def answered(self) -> bool:
        return self.error is None

    @property
    def text(self) -> str:
        """Passages joined in ranked order, ready for prompt assembly."""
        return CONTEXT_SEPARATOR.join(chunk for chunk, _ in self.passages)

    @classmethod
    def no_answer(cls, query: str, corpus_id: Optional[str], reason: str) -> "QueryContext":
        return cls(query=query, corpus_id=corpus_id, error=reason)


class QueryPipeline:
    def __init__(
        self,
        embedder: EmbeddingPort,
        store: VectorStore,
        top_k: int = DEFAULT_TOP_K,
    ) -> None:
        self.log = logging.getLogger("rag.query")
        self.embedder = embedder
        self.store = store
        self.top_k = top_k

    def retrieve_context(
        self,
        query: str,
        corpus_id: Optional[str] = None,
        top_k: Optional[int] = None,
    ) -> QueryContext:
        """
        Rank stored chunks of `corpus_id` against `query`.

        Embedding failures come back as a no-answer QueryContext and are
        never raised. Store errors propagate.
        """
        if not query or not query.strip():
            return QueryContext.no_answer(query, corpus_id, "empty query")

        try:
            embedding = self.embedder.encode(query)
        except Exception as exc:
            self.log.exception("Query embedding failed: %s", exc)
            return QueryContext.no_answer(query, corpus_id, f"embedding failed: {exc}")

        if embedding is None:
            self.log.error("Query embedding returned nothing")
            return QueryContext.no_answer(query, corpus_id, "embedding failed")

        try:
            vector = as_vector(embedding, self.store.dimension)
        except InvalidVectorError as exc:
            self.log.error("Query embedding rejected: %s", exc)
            return QueryContext.no_answer(query, corpus_id, str(exc))

        results = self.store.search(
            vector,
            top_k=self.top_k if top_k is None else top_k,
            document_id=corpus_id,
        )
        self.log.debug(
            "Retrieved %d chunks for query in corpus %s", len(results), corpus_id
        )
        return QueryContext(
            query=query,
            corpus_id=corpus_id,
            passages=[(result.chunk_text, result.score) for result in results],
        )
