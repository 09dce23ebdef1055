import logging
from typing import Any

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from news_personalizer.embeddings.embedding_generator import EmbeddingGenerator
from news_personalizer.embeddings.models import EmbeddingMetrics
from news_personalizer.errors import ProcessingError, ValidationError, VectorIndexError
from news_personalizer.ingestion.article_processor import ArticleProcessor, article_id_of
from news_personalizer.ingestion.models import (
    ArticleProcessingError,
    ProcessingMetrics,
    RawArticle,
    TextChunk,
)
from news_personalizer.personalization.models import (
    ArticleAttributes,
    PreferenceUpdate,
    RankedResult,
    RankingWeights,
    UserInteraction,
    UserPreferences,
)
from news_personalizer.personalization.preference_service import PreferenceService
from news_personalizer.personalization.ranker import PersonalizationRanker
from news_personalizer.vector_store.models import (
    SearchFilters,
    SearchResponse,
    SearchResult,
    TextQuery,
    VectorQuery,
)
from news_personalizer.vector_store.vector_index import VectorIndex

logger = logging.getLogger(__name__)

FALLBACK_TOPICS = ["general news", "current events", "breaking news"]
TOPIC_REPETITIONS = 2
MAX_QUERY_LENGTH = 500


class IngestionSummary(BaseModel):
    total_articles: int = 0
    articles_ingested: int = 0
    chunks_inserted: int = 0
    # chunk id -> reason
    chunks_skipped: dict[str, str] = Field(default_factory=dict)
    embedding_retries: int = 0
    errors: list[ArticleProcessingError] = Field(default_factory=list)


class PreferenceFeed(BaseModel):
    """Ranked results for a user's standing preferences."""

    query_text: str
    fallback_used: bool = False
    results: list[RankedResult] = Field(default_factory=list)


class PersonalizationPipeline:
    """Entry points tying ingestion, search and personalization together."""

    def __init__(
        self,
        article_processor: ArticleProcessor,
        embedding_generator: EmbeddingGenerator,
        vector_index: VectorIndex,
        preference_service: PreferenceService,
        ranker: PersonalizationRanker,
        candidate_multiplier: int = 3,
        persist_on_ingest: bool = False,
    ):
        self.article_processor = article_processor
        self.embedding_generator = embedding_generator
        self.vector_index = vector_index
        self.preference_service = preference_service
        self.ranker = ranker
        self.candidate_multiplier = max(candidate_multiplier, 1)
        self.persist_on_ingest = persist_on_ingest

    def chunk_and_embed(
        self, article: RawArticle | dict[str, Any]
    ) -> tuple[list[TextChunk], ProcessingMetrics, EmbeddingMetrics]:
        """
        Normalize, chunk and embed one article.

        Chunks whose embedding failed come back with an empty embedding.

        Raises:
            ValidationError: If the article record is malformed
            ProcessingError: If normalization or chunking fails
        """
        chunks, processing_metrics = self.article_processor.process_article(article)
        embedded, embedding_metrics = self.embedding_generator.embed_chunks(chunks)
        return embedded, processing_metrics, embedding_metrics

    def ingest_articles(
        self, articles: list[RawArticle | dict[str, Any]]
    ) -> IngestionSummary:
        """Chunk, embed and index a batch; a bad article never fails the others."""
        summary = IngestionSummary(total_articles=len(articles))

        for article in articles:
            try:
                chunks, _, embedding_metrics = self.chunk_and_embed(article)
            except (ValidationError, ProcessingError) as e:
                article_id = getattr(e, "article_id", None) or article_id_of(article)
                logger.warning(f"Skipping article {article_id}: {e}")
                summary.errors.append(
                    ArticleProcessingError(article_id=article_id, error=str(e))
                )
                continue

            summary.embedding_retries += embedding_metrics.retry_count
            failed = embedding_metrics.failed_chunks
            if failed:
                summary.chunks_skipped.update(failed)
                summary.errors.extend(
                    ArticleProcessingError(
                        article_id=chunk.article_id,
                        error=f"Chunk {chunk.id} not embedded: {failed[chunk.id]}",
                    )
                    for chunk in chunks
                    if chunk.id in failed
                )

            try:
                result = self.vector_index.insert(
                    [chunk for chunk in chunks if chunk.id not in failed]
                )
            except VectorIndexError as e:
                article_id = chunks[0].article_id if chunks else article_id_of(article)
                logger.warning(f"Could not index article {article_id}: {e}")
                summary.errors.append(
                    ArticleProcessingError(article_id=article_id, error=str(e))
                )
                continue
            summary.chunks_inserted += len(result.inserted_ids)
            summary.chunks_skipped.update(result.skipped)
            if result.inserted_ids:
                summary.articles_ingested += 1

        logger.info(
            f"Ingested {summary.articles_ingested}/{summary.total_articles} articles "
            f"({summary.chunks_inserted} chunks, {len(summary.errors)} failures)"
        )
        if self.persist_on_ingest and summary.chunks_inserted:
            self.vector_index.persist()
        return summary

    def search(
        self,
        query: str | list[float] | TextQuery | VectorQuery,
        filters: SearchFilters | None = None,
        k: int = 10,
    ) -> SearchResponse:
        return self.vector_index.search(_as_query(query), filters=filters, k=k)

    def record_interactions(
        self,
        interactions: UserInteraction | dict[str, Any] | list[UserInteraction | dict[str, Any]],
        commit: bool = False,
    ) -> PreferenceUpdate:
        """
        Record interaction events and return the learner's proposal.

        Args:
            interactions: One event or a batch of events for a single user
            commit: Store the proposal right away when it changes anything

        Returns:
            The PreferenceUpdate computed from the user's full history
        """
        if not isinstance(interactions, list):
            interactions = [interactions]
        update = self.preference_service.record_interactions(
            interactions, self.article_catalog()
        )
        if commit and update.has_changes:
            committed = self.preference_service.commit(update)
            update = update.model_copy(update={"proposed": committed})
        return update

    def rank(
        self,
        results: list[SearchResult],
        preferences: UserPreferences,
        weights: RankingWeights | None = None,
        one_per_article: bool = False,
    ) -> list[RankedResult]:
        return self.ranker.rank(
            results, preferences, weights=weights, one_per_article=one_per_article
        )

    def personalized_search(
        self,
        user_id: str,
        query: str | list[float] | TextQuery | VectorQuery,
        filters: SearchFilters | None = None,
        k: int = 10,
        one_per_article: bool = False,
    ) -> list[RankedResult]:
        """Search, then re-rank the candidates for a user and keep the top k."""
        response = self.search(query, filters=filters, k=k * self.candidate_multiplier)
        preferences = self.preference_service.get_preferences(user_id)
        ranked = self.rank(response.results, preferences, one_per_article=one_per_article)
        return ranked[:k]

    def search_by_preferences(
        self,
        user_id: str,
        filters: SearchFilters | None = None,
        k: int = 10,
        one_per_article: bool = False,
    ) -> PreferenceFeed:
        """
        Build a feed for a user without an explicit query.

        The user's topics and preferred sources become the query text. When
        the user has no topics, or their query finds nothing, the fallback
        topics are searched instead.

        Args:
            user_id: User whose stored preferences drive the query
            filters: Extra search filters
            k: Number of ranked results to return
            one_per_article: Keep only the best chunk of each article

        Returns:
            PreferenceFeed with the query used and the ranked results
        """
        preferences = self.preference_service.get_preferences(user_id)
        query_text, fallback_used = preference_query_text(preferences)

        ranked = self.personalized_search(
            user_id, query_text, filters=filters, k=k, one_per_article=one_per_article
        )
        if not ranked and not fallback_used:
            logger.info(f"No results for preferences of {user_id}, using fallback topics")
            query_text, fallback_used = " ".join(FALLBACK_TOPICS), True
            ranked = self.personalized_search(
                user_id, query_text, filters=filters, k=k, one_per_article=one_per_article
            )

        return PreferenceFeed(query_text=query_text, fallback_used=fallback_used, results=ranked)

    def find_similar_articles(
        self, article_id: str, k: int = 5, filters: SearchFilters | None = None
    ) -> list[SearchResult]:
        """Best-matching chunk of each other article, using the article's first chunk as the query."""
        chunks = self.vector_index.get_article_chunks(article_id)
        if not chunks:
            logger.info(f"Article {article_id} is not indexed")
            return []

        response = self.search(
            VectorQuery(vector=chunks[0].embedding),
            filters=filters,
            k=(k + len(chunks)) * self.candidate_multiplier,
        )
        similar: dict[str, SearchResult] = {}
        for result in response.results:
            other = result.chunk.article_id
            if other != article_id and other not in similar:
                similar[other] = result
        return list(similar.values())[:k]

    def article_catalog(self) -> dict[str, ArticleAttributes]:
        """Category, source and tags of every indexed article."""
        return {
            article["article_id"]: ArticleAttributes(
                category=article["category"],
                source=article["source"],
                tags=list(article["tags"]),
            )
            for article in self.vector_index.list_articles()
        }

    def get_article_content(self, article_id: str) -> dict[str, Any] | None:
        """Get the indexed text of an article, overlaps included."""
        chunks = self.vector_index.get_article_chunks(article_id)
        if not chunks:
            return None

        metadata = chunks[0].metadata
        return {
            "article_id": article_id,
            "source": metadata.source,
            "category": metadata.category,
            "published_at": metadata.published_at,
            "tags": metadata.tags,
            "content": "\n\n".join(chunk.content for chunk in chunks),
            "chunk_count": len(chunks),
        }


def preference_query_text(preferences: UserPreferences) -> tuple[str, bool]:
    """
    Turn preferences into query text.

    Topics are repeated so they outweigh preferred sources in the embedding.

    Returns:
        Tuple of (query_text, fallback_used)
    """
    topics = sorted(topic.strip().lower() for topic in preferences.topics if topic.strip())
    fallback_used = not topics
    if fallback_used:
        topics = FALLBACK_TOPICS

    parts = [topic for topic in topics for _ in range(TOPIC_REPETITIONS)]
    parts.extend(sorted(source.strip().lower() for source in preferences.preferred_sources))
    query_text = " ".join(part for part in parts if part)

    if len(query_text) > MAX_QUERY_LENGTH:
        query_text = query_text[:MAX_QUERY_LENGTH].rsplit(" ", 1)[0]
    return query_text, fallback_used


def _as_query(query: str | list[float] | TextQuery | VectorQuery) -> TextQuery | VectorQuery:
    if isinstance(query, (TextQuery, VectorQuery)):
        return query
    if isinstance(query, str):
        if not query.strip():
            raise ValidationError("Query text must not be empty")
        return TextQuery(text=query)
    if isinstance(query, list) and query:
        try:
            return VectorQuery(vector=query)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid query vector: {e}") from e
    raise ValidationError(f"Unsupported query: {type(query).__name__}")
