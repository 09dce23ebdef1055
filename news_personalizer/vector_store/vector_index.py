import logging
import time
from typing import Any

import numpy as np
import pandas as pd

from news_personalizer.embeddings.embedding_generator import validate_embedding
from news_personalizer.errors import ValidationError, VectorIndexError
from news_personalizer.ingestion.models import TextChunk
from news_personalizer.vector_store.locking import ReadWriteLock
from news_personalizer.vector_store.models import (
    InsertResult,
    SearchFilters,
    SearchMetrics,
    SearchResponse,
    SearchResult,
    TextQuery,
    VectorIndexConfig,
    VectorQuery,
)
from news_personalizer.vector_store.vector_store_manager import (
    BaseVectorIndex,
    IndexStorage,
)

logger = logging.getLogger(__name__)


class VectorIndex(BaseVectorIndex):
    """
    Exact cosine-similarity index held in memory as a normalized numpy matrix.

    Vectors are L2-normalized on insert so a search is a single matrix-vector
    product. Inserts upsert by chunk id. Searches share a read lock; inserts,
    deletes, clear and load take the write lock.
    """

    def __init__(
        self,
        config: VectorIndexConfig | None = None,
        storage: IndexStorage | None = None,
        query_embedder=None,
    ):
        """
        Args:
            config: Search tuning and optional fixed dimension
            storage: Backend used by persist() and load()
            query_embedder: Anything with ``embed_query(text)``, needed for text queries
        """
        self.config = config or VectorIndexConfig()
        self.storage = storage
        self.query_embedder = query_embedder
        self._lock = ReadWriteLock()
        self._reset()

    def _reset(self) -> None:
        self._dimension: int | None = self.config.dimensions
        self._ids: list[str] = []
        self._chunks: dict[str, TextChunk] = {}
        self._positions: dict[str, int] = {}
        self._matrix: np.ndarray | None = None

    @property
    def dimension(self) -> int | None:
        return self._dimension

    def __len__(self) -> int:
        return len(self._ids)

    def insert(self, chunks: list[TextChunk]) -> InsertResult:
        result = InsertResult()

        with self._lock.write_locked():
            rows: dict[str, np.ndarray] = {}
            accepted: dict[str, TextChunk] = {}
            dimension_before = self._dimension

            for chunk in chunks:
                reason = self._rejection_reason(chunk)
                if reason:
                    logger.warning(f"Skipping chunk {chunk.id}: {reason}")
                    result.skipped[chunk.id] = reason
                    continue

                vector = np.asarray(chunk.embedding, dtype=np.float32)
                if self._dimension is None:
                    self._dimension = len(vector)
                    logger.info(f"Created vector index with dimension {self._dimension}")
                elif len(vector) != self._dimension:
                    message = (
                        f"Chunk {chunk.id} has {len(vector)} dimensions, "
                        f"index has {self._dimension}"
                    )
                    self._dimension = dimension_before
                    raise VectorIndexError(message)

                rows[chunk.id] = vector / np.linalg.norm(vector)
                accepted[chunk.id] = chunk

            self._upsert(rows, accepted)
            result.inserted_ids = list(accepted)

        if result.inserted_ids:
            logger.info(
                f"Inserted {len(result.inserted_ids)} chunks "
                f"({len(result.skipped)} skipped, {len(self)} total)"
            )
        return result

    def search(
        self,
        query: TextQuery | VectorQuery,
        filters: SearchFilters | None = None,
        k: int = 10,
    ) -> SearchResponse:
        start = time.perf_counter()
        if k < 1:
            raise ValidationError(f"k must be at least 1, got {k}")
        filters = filters or SearchFilters()
        query_vector = self._resolve_query(query)

        with self._lock.read_locked():
            total = len(self._ids)
            metrics = SearchMetrics(total_vectors=total, filters_applied=filters.applied())
            if total == 0 or self._matrix is None:
                metrics.search_time_ms = (time.perf_counter() - start) * 1000
                return SearchResponse(results=[], metrics=metrics)

            if len(query_vector) != self._dimension:
                raise VectorIndexError(
                    f"Query has {len(query_vector)} dimensions, "
                    f"index has {self._dimension}"
                )

            query_vector = query_vector / np.linalg.norm(query_vector)
            scores = np.clip(self._matrix @ query_vector, -1.0, 1.0)

            pool_size = min(total, max(k * self.config.oversample_factor, self.config.max_results))
            order = sorted(
                self._top_positions(scores, pool_size),
                key=lambda i: (-scores[i], self._ids[i]),
            )
            candidates = [(self._chunks[self._ids[i]], float(scores[i])) for i in order]

        metrics.candidates_considered = len(candidates)
        results = []
        for chunk, score in candidates:
            if score < self.config.similarity_threshold:
                # candidates are sorted, nothing further can pass
                break
            if not filters.matches(chunk, score):
                continue
            results.append(SearchResult(chunk=chunk, relevance_score=score))
            if len(results) == k:
                break

        metrics.results_returned = len(results)
        metrics.similarity_scores = [r.relevance_score for r in results]
        metrics.search_time_ms = (time.perf_counter() - start) * 1000
        logger.debug(
            f"Search returned {len(results)} of {total} vectors "
            f"in {metrics.search_time_ms:.1f}ms"
        )
        return SearchResponse(results=results, metrics=metrics)

    def delete_article(self, article_id: str) -> int:
        with self._lock.write_locked():
            doomed = [
                chunk_id
                for chunk_id in self._ids
                if self._chunks[chunk_id].article_id == article_id
            ]
            if doomed:
                self._remove(set(doomed))
        logger.info(f"Deleted article {article_id} and its {len(doomed)} chunks")
        return len(doomed)

    def get_article_chunks(self, article_id: str) -> list[TextChunk]:
        with self._lock.read_locked():
            chunks = [c for c in self._chunks.values() if c.article_id == article_id]
        if not chunks:
            logger.warning(f"No chunks found for article {article_id}")
        return sorted(chunks, key=lambda c: c.metadata.chunk_index)

    def list_articles(self) -> list[dict[str, Any]]:
        df = self._to_frame()
        if df.empty:
            return []

        articles = []
        for article_id, article_chunks in df.groupby("article_id", sort=True):
            first_chunk = article_chunks.sort_values("chunk_index").iloc[0]
            articles.append(
                {
                    "article_id": article_id,
                    "source": first_chunk["source"],
                    "category": first_chunk["category"],
                    "published_at": first_chunk["published_at"],
                    "tags": first_chunk["tags"],
                    "chunk_count": len(article_chunks),
                }
            )
        return articles

    def stats(self) -> dict[str, Any]:
        df = self._to_frame()

        if df.empty:
            return {
                "total_chunks": 0,
                "unique_articles": 0,
                "total_characters": 0,
                "average_chunk_size": 0,
                "categories": {},
                "sources": {},
                "dimension": self._dimension,
            }

        return {
            "total_chunks": len(df),
            "unique_articles": int(df["article_id"].nunique()),
            "total_characters": int(df["text"].str.len().sum()),
            "average_chunk_size": round(float(df["text"].str.len().mean()), 2),
            "categories": df["category"].value_counts().to_dict(),
            "sources": df["source"].value_counts().to_dict(),
            "dimension": self._dimension,
        }

    def clear(self) -> None:
        with self._lock.write_locked():
            self._reset()
        logger.info("Cleared vector index")

    def persist(self) -> None:
        storage = self._require_storage()
        with self._lock.read_locked():
            chunks = [self._chunks[chunk_id] for chunk_id in self._ids]
            storage.save(chunks, self._dimension or 0)

    def load(self) -> None:
        storage = self._require_storage()
        chunks, dimension = storage.load()

        with self._lock.write_locked():
            if self.config.dimensions and chunks and dimension != self.config.dimensions:
                raise VectorIndexError(
                    f"Persisted index has dimension {dimension}, "
                    f"configured dimension is {self.config.dimensions}"
                )
            self._reset()
            if chunks:
                self._dimension = dimension
                rows = {}
                for chunk in chunks:
                    vector = np.asarray(chunk.embedding, dtype=np.float32)
                    norm = np.linalg.norm(vector)
                    if norm == 0:
                        raise VectorIndexError(f"Persisted chunk {chunk.id} has a zero vector")
                    rows[chunk.id] = vector / norm
                self._upsert(rows, {chunk.id: chunk for chunk in chunks})
        logger.info(f"Loaded vector index with {len(chunks)} chunks")

    def _require_storage(self) -> IndexStorage:
        if self.storage is None:
            raise VectorIndexError("No index storage configured")
        return self.storage

    def _rejection_reason(self, chunk: TextChunk) -> str | None:
        if not chunk.article_id:
            return "missing article id"
        is_valid, issues = validate_embedding(chunk.embedding)
        if not is_valid:
            return "; ".join(issues)
        return None

    def _resolve_query(self, query: TextQuery | VectorQuery) -> np.ndarray:
        if isinstance(query, TextQuery):
            if self.query_embedder is None:
                raise ValidationError("Text queries need a query embedder")
            vector = self.query_embedder.embed_query(query.text)
        elif isinstance(query, VectorQuery):
            vector = query.vector
        else:
            raise ValidationError(f"Unsupported query type {type(query).__name__}")

        is_valid, issues = validate_embedding(vector)
        if not is_valid:
            raise ValidationError(f"Invalid query vector: {'; '.join(issues)}")
        return np.asarray(vector, dtype=np.float32)

    def _top_positions(self, scores: np.ndarray, pool_size: int) -> list[int]:
        """Positions of the pool_size best scores; ties at the cut go to the lower chunk id."""
        if pool_size >= len(scores):
            return list(range(len(scores)))
        cut = scores[np.argpartition(-scores, pool_size - 1)[pool_size - 1]]
        above = np.flatnonzero(scores > cut).tolist()
        tied = sorted(np.flatnonzero(scores == cut).tolist(), key=lambda i: self._ids[i])
        return above + tied[: pool_size - len(above)]

    def _upsert(self, rows: dict[str, np.ndarray], chunks: dict[str, TextChunk]) -> None:
        """Caller holds the write lock."""
        if not rows:
            return
        new_rows = []
        for chunk_id, row in rows.items():
            self._chunks[chunk_id] = chunks[chunk_id]
            if chunk_id in self._positions:
                self._matrix[self._positions[chunk_id]] = row
            else:
                self._positions[chunk_id] = len(self._ids)
                self._ids.append(chunk_id)
                new_rows.append(row)

        if new_rows:
            block = np.vstack(new_rows)
            self._matrix = block if self._matrix is None else np.vstack([self._matrix, block])

    def _remove(self, chunk_ids: set[str]) -> None:
        """Caller holds the write lock."""
        keep = [i for i, chunk_id in enumerate(self._ids) if chunk_id not in chunk_ids]
        self._ids = [self._ids[i] for i in keep]
        for chunk_id in chunk_ids:
            del self._chunks[chunk_id]
        self._positions = {chunk_id: i for i, chunk_id in enumerate(self._ids)}
        self._matrix = self._matrix[keep] if keep else None

    def _to_frame(self) -> pd.DataFrame:
        with self._lock.read_locked():
            chunks = list(self._chunks.values())
        return pd.DataFrame(
            [
                {
                    "id": c.id,
                    "article_id": c.article_id,
                    "text": c.content,
                    "source": c.metadata.source,
                    "category": c.metadata.category,
                    "published_at": c.metadata.published_at,
                    "chunk_index": c.metadata.chunk_index,
                    "tags": c.metadata.tags,
                }
                for c in chunks
            ]
        )
