from abc import ABC, abstractmethod
from typing import Any

from news_personalizer.ingestion.models import TextChunk
from news_personalizer.vector_store.models import (
    InsertResult,
    SearchFilters,
    SearchResponse,
    TextQuery,
    VectorQuery,
)


class BaseVectorIndex(ABC):
    """Base class for vector indexes that defines the common interface."""

    @abstractmethod
    def insert(self, chunks: list[TextChunk]) -> InsertResult:
        """
        Add embedded chunks to the index, replacing chunks with the same id.

        Args:
            chunks: Chunks carrying embeddings

        Returns:
            InsertResult with the inserted ids and the skipped ids with reasons
        """
        pass

    @abstractmethod
    def search(
        self,
        query: TextQuery | VectorQuery,
        filters: SearchFilters | None = None,
        k: int = 10,
    ) -> SearchResponse:
        """
        Search for the chunks most similar to a query.

        Args:
            query: Text to embed or a ready query vector
            filters: Optional post-filters
            k: Maximum number of results to return

        Returns:
            SearchResponse with results sorted by relevance and search metrics
        """
        pass

    @abstractmethod
    def delete_article(self, article_id: str) -> int:
        """
        Delete all chunks of an article.

        Args:
            article_id: ID of the article to delete

        Returns:
            Number of chunks removed
        """
        pass

    @abstractmethod
    def get_article_chunks(self, article_id: str) -> list[TextChunk]:
        """
        Retrieve all chunks of a specific article.

        Args:
            article_id: ID of the article to retrieve

        Returns:
            Chunks ordered by chunk index
        """
        pass

    @abstractmethod
    def list_articles(self) -> list[dict[str, Any]]:
        """
        List all articles in the index with their metadata.

        Returns:
            List of dictionaries containing article metadata
        """
        pass

    @abstractmethod
    def stats(self) -> dict[str, Any]:
        """
        Get statistics about the index.

        Returns:
            Dictionary containing index statistics
        """
        pass

    @abstractmethod
    def clear(self) -> None:
        """Drop every vector and forget the dimension."""
        pass

    @abstractmethod
    def persist(self) -> None:
        pass

    @abstractmethod
    def load(self) -> None:
        pass


class IndexStorage(ABC):
    """Durable home for a vector index's chunks and vectors."""

    @abstractmethod
    def save(self, chunks: list[TextChunk], dimension: int) -> None:
        """
        Replace the persisted index with the given chunks.

        Args:
            chunks: Every chunk in the index, embeddings included
            dimension: Vector dimension of the index, 0 when empty
        """
        pass

    @abstractmethod
    def load(self) -> tuple[list[TextChunk], int]:
        """
        Read the persisted index back.

        Returns:
            Tuple of (chunks, dimension)

        Raises:
            VectorIndexError: If nothing is persisted or the data is corrupt
        """
        pass

    @abstractmethod
    def exists(self) -> bool:
        pass
