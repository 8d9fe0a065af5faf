"""
SQLite-backed vector store.

Responsibilities:
- Persist chunk vectors and per-document metadata in two tables
- Keep (document_id, chunk_index) unique: re-inserting a chunk replaces it
- Precompute each vector's L2 norm at write time
- Serialize writers against everything and let readers run together
- Rank a bounded window of recent rows against a query vector
"""

import logging
import queue
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np

from .errors import (
    DatabaseError,
    DocumentNotFoundError,
    StoreConnectionError,
)
from .locking import ReadWriteLock
from .models import ChunkInput, ChunkMetadata, Document, DocumentStats, SearchResult
from .serialization import VectorLike, as_vector, deserialize_vector, l2_norm, serialize_vector
from .similarity import cosine_scores, top_k_indices

SCHEMA_VERSION = 1

DEFAULT_DIMENSION = 768
DEFAULT_MODEL_VERSION = "distilbert-v1"

# Candidate windows: only the most recent rows are scored per search.
SEARCH_CANDIDATE_LIMIT = 1000
FILTER_CANDIDATE_LIMIT = 2000

# Idle connections kept open; bursts above this open short-lived extras.
CONNECTION_POOL_SIZE = 4

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS chunk_vectors (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        document_id TEXT NOT NULL,
        chunk_index INTEGER NOT NULL,
        chunk_text TEXT NOT NULL,
        embedding BLOB NOT NULL,
        magnitude REAL NOT NULL,
        created_at TEXT NOT NULL,
        UNIQUE (document_id, chunk_index)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS documents (
        document_id TEXT PRIMARY KEY,
        title TEXT,
        total_chunks INTEGER NOT NULL,
        model_version TEXT,
        created_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_chunk_vectors_document_id ON chunk_vectors(document_id)",
    "CREATE INDEX IF NOT EXISTS idx_chunk_vectors_magnitude ON chunk_vectors(magnitude)",
    "CREATE INDEX IF NOT EXISTS idx_chunk_vectors_created_at ON chunk_vectors(created_at)",
)

_PRAGMAS = (
    "PRAGMA cache_size = -2000",
    "PRAGMA temp_store = MEMORY",
    "PRAGMA synchronous = NORMAL",
    "PRAGMA mmap_size = 30000000",
)

_CANDIDATE_COLUMNS = "id, document_id, chunk_index, chunk_text, embedding, magnitude"


def _utcnow() -> str:
    # Fixed width so that text ordering matches time ordering.
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


class VectorStore:
    """
    Durable store for chunk embeddings.

    Example:
        >>> store = VectorStore("vectors.db", dimension=768)
        >>> store.add_vector("kb_en", 0, "Hello", embedding)
        >>> hits = store.search(query_embedding, top_k=5, document_id="kb_en")

    Every mutation runs under the exclusive side of a reader/writer lock
    and inside one SQLite transaction. Connections come from a small pool
    and are borrowed only while the lock is held.
    """

    def __init__(
        self,
        db_path: Union[str, Path] = "vectors.db",
        dimension: int = DEFAULT_DIMENSION,
        search_candidate_limit: int = SEARCH_CANDIDATE_LIMIT,
        filter_candidate_limit: int = FILTER_CANDIDATE_LIMIT,
        pool_size: int = CONNECTION_POOL_SIZE,
    ) -> None:
        """
        Open (or create) the store.

        Args:
            db_path: SQLite file, or ":memory:" for a private in-memory database
            dimension: Fixed embedding length D for every vector in this store
            search_candidate_limit: Rows scored by `search`
            filter_candidate_limit: Rows scored by `search_with_filter`
            pool_size: Idle SQLite connections kept for reuse

        Raises:
            StoreConnectionError: If the database cannot be opened or initialised
        """
        self.log = logging.getLogger("rag.vector_store")

        if dimension <= 0:
            raise ValueError("dimension must be positive")
        if pool_size <= 0:
            raise ValueError("pool_size must be positive")

        self.dimension = dimension
        self.search_candidate_limit = search_candidate_limit
        self.filter_candidate_limit = filter_candidate_limit

        if str(db_path) == ":memory:":
            # Shared-cache URI so every pooled connection sees one database.
            self._database = f"file:rag-{uuid.uuid4().hex}?mode=memory&cache=shared"
            self._uri = True
            self.db_path = None
        else:
            self.db_path = Path(db_path)
            self._database = str(self.db_path)
            self._uri = False

        self._lock = ReadWriteLock()
        self._pool: "queue.LifoQueue[sqlite3.Connection]" = queue.LifoQueue(maxsize=pool_size)
        self._connections: List[sqlite3.Connection] = []
        self._connections_guard = threading.Lock()
        self._closed = False

        try:
            if self.db_path is not None:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._create_tables()
        except StoreConnectionError:
            self.log.error("Failed to open vector store at %s", db_path)
            self.close()
            raise
        except (OSError, sqlite3.Error) as exc:
            self.log.error("Failed to open vector store at %s: %s", db_path, exc)
            self.close()
            raise StoreConnectionError(f"Database connection error: {exc}") from exc

        self._optimize()
        self.migrate()
        self.log.info(
            "Vector store ready at %s (dimension=%d)", self._database, self.dimension
        )

    # ------------------------------------------------------------------ #
    # Connection handling
    # ------------------------------------------------------------------ #
    def _open_connection(self) -> sqlite3.Connection:
        try:
            # Autocommit mode; transactions are opened explicitly.
            conn = sqlite3.connect(
                self._database,
                uri=self._uri,
                isolation_level=None,
                check_same_thread=False,
            )
            for pragma in _PRAGMAS:
                conn.execute(pragma)
        except sqlite3.Error as exc:
            raise StoreConnectionError(f"Database connection error: {exc}") from exc

        with self._connections_guard:
            self._connections.append(conn)
        return conn

    def _discard(self, conn: sqlite3.Connection) -> None:
        with self._connections_guard:
            if conn in self._connections:
                self._connections.remove(conn)
        try:
            conn.close()
        except sqlite3.Error as exc:
            self.log.warning("Failed to close connection: %s", exc)

    @contextmanager
    def _checkout(self) -> Iterator[sqlite3.Connection]:
        """
        Borrow a pooled connection for the duration of one lock hold.

        Idle connections are kept up to `pool_size`; extras opened under
        load are closed when handed back.
        """
        if self._closed:
            raise StoreConnectionError("Vector store is closed")

        try:
            conn = self._pool.get_nowait()
        except queue.Empty:
            conn = self._open_connection()

        try:
            yield conn
        finally:
            try:
                self._pool.put_nowait(conn)
            except queue.Full:
                self._discard(conn)

    @property
    def open_connections(self) -> int:
        """SQLite connections currently open, pooled or in use."""
        with self._connections_guard:
            return len(self._connections)

    def _create_tables(self) -> None:
        with self._lock.write_locked(), self._checkout() as conn:
            for statement in _SCHEMA:
                conn.execute(statement)

    def _optimize(self) -> None:
        """Database-wide tuning; failure only costs performance."""
        with self._lock.write_locked(), self._checkout() as conn:
            try:
                conn.execute("PRAGMA journal_mode = WAL")
            except sqlite3.Error as exc:
                self.log.warning("Failed to apply database optimizations: %s", exc)

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Exclusive write lock plus one IMMEDIATE transaction, rolled back on error."""
        with self._lock.write_locked(), self._checkout() as conn:
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as exc:
                raise DatabaseError(f"Database error: {exc}") from exc
            try:
                yield conn
            except sqlite3.Error as exc:
                self._rollback(conn)
                raise DatabaseError(f"Database error: {exc}") from exc
            except BaseException:
                self._rollback(conn)
                raise
            else:
                try:
                    conn.execute("COMMIT")
                except sqlite3.Error as exc:
                    self._rollback(conn)
                    raise DatabaseError(f"Database error: {exc}") from exc

    def _rollback(self, conn: sqlite3.Connection) -> None:
        # SQLite may already have rolled back on its own (e.g. disk full).
        if not conn.in_transaction:
            return
        try:
            conn.execute("ROLLBACK")
        except sqlite3.Error as exc:
            self.log.warning("Rollback failed: %s", exc)

    @contextmanager
    def _reading(self) -> Iterator[sqlite3.Connection]:
        with self._lock.read_locked(), self._checkout() as conn:
            try:
                yield conn
            except sqlite3.Error as exc:
                raise DatabaseError(f"Database error: {exc}") from exc

    def close(self) -> None:
        """
        Close every connection opened by this store.

        Waits for in-flight reads and writes to finish first; afterwards
        every operation raises StoreConnectionError.
        """
        with self._lock.write_locked():
            self._closed = True
            while True:
                try:
                    self._pool.get_nowait()
                except queue.Empty:
                    break
            with self._connections_guard:
                connections, self._connections = self._connections, []
            for conn in connections:
                try:
                    conn.close()
                except sqlite3.Error as exc:
                    self.log.warning("Failed to close connection: %s", exc)

    def __enter__(self) -> "VectorStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------ #
    # Schema versioning
    # ------------------------------------------------------------------ #
    @property
    def schema_version(self) -> int:
        with self._reading() as conn:
            return int(conn.execute("PRAGMA user_version").fetchone()[0])

    def set_schema_version(self, version: int) -> None:
        with self._lock.write_locked(), self._checkout() as conn:
            try:
                conn.execute(f"PRAGMA user_version = {int(version)}")
            except sqlite3.Error as exc:
                raise DatabaseError(f"Database error: {exc}") from exc

    def migrate(self) -> None:
        """Bring an older database file up to SCHEMA_VERSION."""
        current = self.schema_version
        if current < SCHEMA_VERSION:
            # Version 0 is a fresh file: the tables above are already current.
            self.set_schema_version(SCHEMA_VERSION)
            self.log.info("Database schema at version %d", SCHEMA_VERSION)

    # ------------------------------------------------------------------ #
    # Writes
    # ------------------------------------------------------------------ #
    def _prepare(self, embedding: VectorLike) -> Tuple[bytes, float]:
        vector = as_vector(embedding, self.dimension)
        return serialize_vector(vector), l2_norm(vector)

    @staticmethod
    def _upsert_chunk(
        conn: sqlite3.Connection,
        document_id: str,
        chunk_index: int,
        chunk_text: str,
        blob: bytes,
        magnitude: float,
    ) -> None:
        conn.execute(
            """
            INSERT OR REPLACE INTO chunk_vectors
                (document_id, chunk_index, chunk_text, embedding, magnitude, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (document_id, chunk_index, chunk_text, blob, magnitude, _utcnow()),
        )

    @staticmethod
    def _update_document_metadata(
        conn: sqlite3.Connection,
        document_id: str,
        model_version: str,
        title: Optional[str],
    ) -> None:
        (chunk_count,) = conn.execute(
            "SELECT COUNT(*) FROM chunk_vectors WHERE document_id = ?",
            (document_id,),
        ).fetchone()
        conn.execute(
            """
            INSERT INTO documents (document_id, title, total_chunks, model_version, created_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(document_id) DO UPDATE SET
                title = COALESCE(excluded.title, documents.title),
                total_chunks = excluded.total_chunks,
                model_version = excluded.model_version
            """,
            (document_id, title, chunk_count, model_version, _utcnow()),
        )

    @staticmethod
    def _check_index(chunk_index: int) -> None:
        if chunk_index < 0:
            raise ValueError(f"chunk_index must be non-negative, got {chunk_index}")

    def add_vector(
        self,
        document_id: str,
        chunk_index: int,
        chunk_text: str,
        embedding: VectorLike,
        model_version: str = DEFAULT_MODEL_VERSION,
        title: Optional[str] = None,
    ) -> None:
        """
        Insert or replace one chunk and refresh its document's metadata.

        Raises:
            InvalidDimensionError: Embedding length differs from the store dimension
            InvalidVectorError: Embedding is not numeric or holds NaN/inf
            DatabaseError: SQLite rejected the write (nothing is persisted)
        """
        self._check_index(chunk_index)
        blob, magnitude = self._prepare(embedding)

        with self._transaction() as conn:
            self._upsert_chunk(conn, document_id, chunk_index, chunk_text, blob, magnitude)
            self._update_document_metadata(conn, document_id, model_version, title)

    def add_vectors_batch(
        self,
        document_id: str,
        chunks: Iterable[Union[ChunkInput, Tuple[int, str, VectorLike]]],
        model_version: str = DEFAULT_MODEL_VERSION,
        title: Optional[str] = None,
    ) -> int:
        """
        Upsert many chunks of one document atomically.

        Every chunk is validated before the transaction starts, so a bad
        embedding anywhere in the batch leaves the store untouched.

        Args:
            document_id: Owning document
            chunks: ChunkInput items or (index, text, embedding) tuples
            model_version: Tag of the model that produced the embeddings
            title: Optional document title; an existing title is kept when None

        Returns:
            Number of chunks written
        """
        prepared = []
        for chunk in chunks:
            if not isinstance(chunk, ChunkInput):
                chunk = ChunkInput(*chunk)
            self._check_index(chunk.index)
            blob, magnitude = self._prepare(chunk.embedding)
            prepared.append((chunk.index, chunk.text, blob, magnitude))

        if not prepared:
            return 0

        with self._transaction() as conn:
            for index, text, blob, magnitude in prepared:
                self._upsert_chunk(conn, document_id, index, text, blob, magnitude)
            self._update_document_metadata(conn, document_id, model_version, title)

        self.log.debug(
            "Batch inserted %d vectors for document %s", len(prepared), document_id
        )
        return len(prepared)

    def clear_document(self, document_id: str) -> int:
        """
        Remove a document's vectors and metadata row, all or nothing.

        Returns:
            Number of vectors deleted (0 when the document was unknown)
        """
        with self._transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM chunk_vectors WHERE document_id = ?", (document_id,)
            )
            conn.execute("DELETE FROM documents WHERE document_id = ?", (document_id,))
            deleted = cursor.rowcount

        self.log.info("Cleared document %s (%d vectors)", document_id, deleted)
        return deleted

    def delete_document(self, document_id: str) -> None:
        """Like `clear_document`, but a document that does not exist is an error."""
        with self._transaction() as conn:
            vectors = conn.execute(
                "DELETE FROM chunk_vectors WHERE document_id = ?", (document_id,)
            ).rowcount
            documents = conn.execute(
                "DELETE FROM documents WHERE document_id = ?", (document_id,)
            ).rowcount
            if not vectors and not documents:
                raise DocumentNotFoundError(document_id)

        self.log.info("Deleted document %s (%d vectors)", document_id, vectors)

    def clear_all(self) -> None:
        with self._transaction() as conn:
            conn.execute("DELETE FROM chunk_vectors")
            conn.execute("DELETE FROM documents")
        self.log.info("Cleared all data from vector store")

    # ------------------------------------------------------------------ #
    # Search
    # ------------------------------------------------------------------ #
    def _load_candidates(
        self,
        conn: sqlite3.Connection,
        limit: int,
        document_ids: Optional[Sequence[str]],
    ) -> list:
        sql = f"SELECT {_CANDIDATE_COLUMNS} FROM chunk_vectors"
        params: list = []
        if document_ids:
            placeholders = ", ".join("?" for _ in document_ids)
            sql += f" WHERE document_id IN ({placeholders})"
            params.extend(document_ids)
        sql += " ORDER BY created_at DESC, id DESC LIMIT ?"
        params.append(limit)
        return conn.execute(sql, params).fetchall()

    def _rank(
        self,
        query: np.ndarray,
        rows: list,
        top_k: int,
        min_score: Optional[float],
    ) -> List[SearchResult]:
        if not rows:
            return []

        vectors = np.vstack([deserialize_vector(row[4], self.dimension) for row in rows])
        magnitudes = np.fromiter((row[5] for row in rows), dtype=np.float64, count=len(rows))
        scores = cosine_scores(query, vectors, magnitudes)

        results = []
        for i in top_k_indices(scores, top_k, min_score=min_score):
            row_id, document_id, chunk_index, chunk_text = rows[i][:4]
            results.append(
                SearchResult(
                    chunk_text=chunk_text,
                    score=float(scores[i]),
                    metadata=ChunkMetadata(
                        id=int(row_id),
                        document_id=document_id,
                        chunk_index=int(chunk_index),
                    ),
                )
            )
        return results

    def search(
        self,
        query_embedding: VectorLike,
        top_k: int = 5,
        document_id: Optional[str] = None,
    ) -> List[SearchResult]:
        """
        Return up to `top_k` chunks most similar to the query, best first.

        Only the `search_candidate_limit` most recent rows (optionally of one
        document) are scored: large corpora trade completeness for latency.

        Raises:
            InvalidDimensionError: Query length differs from the store dimension
            SerializationError: A stored embedding has the wrong byte length
        """
        query = as_vector(query_embedding, self.dimension)
        if top_k <= 0:
            return []

        document_ids = [document_id] if document_id is not None else None
        with self._reading() as conn:
            rows = self._load_candidates(conn, self.search_candidate_limit, document_ids)

        return self._rank(query, rows, top_k, min_score=None)

    def search_with_filter(
        self,
        query_embedding: VectorLike,
        top_k: int = 5,
        document_ids: Optional[Sequence[str]] = None,
        min_score: float = 0.0,
    ) -> List[SearchResult]:
        """
        `search` with a document allow-list and a score floor.

        An empty or missing allow-list means every document. Rows scoring
        below `min_score` are dropped before the top-K cut.
        """
        query = as_vector(query_embedding, self.dimension)
        if top_k <= 0:
            return []

        with self._reading() as conn:
            rows = self._load_candidates(
                conn, self.filter_candidate_limit, list(document_ids or [])
            )

        return self._rank(query, rows, top_k, min_score=min_score)

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #
    def document_exists(self, document_id: str) -> bool:
        with self._reading() as conn:
            row = conn.execute(
                "SELECT 1 FROM documents WHERE document_id = ? LIMIT 1", (document_id,)
            ).fetchone()
        return row is not None

    def get_vector_count(self, document_id: Optional[str] = None) -> int:
        """Vectors stored for one document, or in total when `document_id` is None."""
        with self._reading() as conn:
            if document_id is None:
                (count,) = conn.execute("SELECT COUNT(*) FROM chunk_vectors").fetchone()
            else:
                (count,) = conn.execute(
                    "SELECT COUNT(*) FROM chunk_vectors WHERE document_id = ?",
                    (document_id,),
                ).fetchone()
        return int(count)

    def get_document(self, document_id: str) -> Document:
        with self._reading() as conn:
            row = conn.execute(
                """
                SELECT document_id, title, total_chunks, model_version, created_at
                FROM documents WHERE document_id = ?
                """,
                (document_id,),
            ).fetchone()
        if row is None:
            raise DocumentNotFoundError(document_id)
        return Document(
            document_id=row[0],
            title=row[1],
            total_chunks=int(row[2]),
            model_version=row[3],
            created_at=row[4],
        )

    def get_document_stats(self) -> List[DocumentStats]:
        """Recorded and live chunk counts per document, newest document first."""
        with self._reading() as conn:
            rows = conn.execute(
                """
                SELECT d.document_id, d.title, d.total_chunks, d.model_version,
                       d.created_at, COUNT(v.id) AS actual_chunks
                FROM documents d
                LEFT JOIN chunk_vectors v ON d.document_id = v.document_id
                GROUP BY d.document_id
                ORDER BY d.created_at DESC
                """
            ).fetchall()

        return [
            DocumentStats(
                document_id=row[0],
                title=row[1],
                total_chunks=int(row[2]),
                actual_chunks=int(row[5]),
                model_version=row[3],
                created_at=row[4],
            )
            for row in rows
        ]

    def get_all_document_ids(self) -> List[str]:
        with self._reading() as conn:
            rows = conn.execute(
                "SELECT document_id FROM documents ORDER BY document_id"
            ).fetchall()
        return [row[0] for row in rows]
