"""Tests for the pipeline module."""

from datetime import timedelta

import pytest

from news_personalizer.embeddings.embedding_generator import EmbeddingGenerator
from news_personalizer.embeddings.models import EmbeddingConfig
from news_personalizer.errors import ValidationError
from news_personalizer.ingestion.article_processor import ArticleProcessor
from news_personalizer.ingestion.chunker import TextChunker
from news_personalizer.personalization.interaction_learner import InteractionLearner
from news_personalizer.personalization.models import (
    InteractionAction,
    UserInteraction,
    UserPreferences,
)
from news_personalizer.personalization.preference_service import PreferenceService
from news_personalizer.personalization.ranker import PersonalizationRanker
from news_personalizer.personalization.repositories import (
    InMemoryInteractionRepository,
    InMemoryPreferencesRepository,
)
from news_personalizer.pipeline import (
    FALLBACK_TOPICS,
    MAX_QUERY_LENGTH,
    PersonalizationPipeline,
    preference_query_text,
)
from news_personalizer.vector_store.lancedb import LanceDBIndexStorage
from news_personalizer.vector_store.models import SearchFilters, VectorQuery
from news_personalizer.vector_store.vector_index import VectorIndex

from helpers import NOW, KeywordEmbeddingsClient, make_article

USER = "reader-1"


def articles():
    return [
        make_article(
            "tech-1",
            "AI systems keep improving quickly. New AI chips were announced by several labs.",
            category="technology",
            source="wire",
            tags=["ai"],
        ),
        make_article(
            "sports-1",
            "The sports league finals drew record crowds. Fans celebrated sports history.",
            category="sports",
            source="stadium-news",
        ),
        make_article(
            "politics-1",
            "Politics dominated the evening news. Lawmakers debated politics for hours.",
            category="politics",
            source="capitol-daily",
        ),
    ]


def build_pipeline(
    client=None,
    storage=None,
    persist_on_ingest=False,
    expected_dimensions=KeywordEmbeddingsClient.dimensions,
) -> PersonalizationPipeline:
    generator = EmbeddingGenerator(
        client or KeywordEmbeddingsClient(),
        EmbeddingConfig(expected_dimensions=expected_dimensions, retry_delay=0.0, max_retries=0),
    )
    return PersonalizationPipeline(
        article_processor=ArticleProcessor(TextChunker()),
        embedding_generator=generator,
        vector_index=VectorIndex(storage=storage, query_embedder=generator),
        preference_service=PreferenceService(
            InteractionLearner(),
            InMemoryPreferencesRepository(),
            InMemoryInteractionRepository(),
        ),
        ranker=PersonalizationRanker(),
        persist_on_ingest=persist_on_ingest,
    )


def hide(article_id: str, minute: int) -> UserInteraction:
    return UserInteraction(
        user_id=USER,
        article_id=article_id,
        action=InteractionAction.HIDE,
        timestamp=NOW + timedelta(minutes=minute),
    )


@pytest.fixture
def pipeline() -> PersonalizationPipeline:
    pipeline = build_pipeline()
    pipeline.ingest_articles(articles())
    return pipeline


class TestIngestArticles:
    def test_ingests_and_reports_failures(self) -> None:
        pipeline = build_pipeline()

        summary = pipeline.ingest_articles(articles() + [{"id": "broken"}])

        assert summary.total_articles == 4
        assert summary.articles_ingested == 3
        assert summary.chunks_inserted == 3
        assert [e.article_id for e in summary.errors] == ["broken"]
        assert len(pipeline.vector_index) == 3

    def test_failed_embeddings_are_skipped_not_indexed(self) -> None:
        class FailingClient(KeywordEmbeddingsClient):
            def embed_texts(self, texts):
                if any("sports" in text for text in texts):
                    raise ConnectionError("backend unavailable")
                return super().embed_texts(texts)

        pipeline = build_pipeline(client=FailingClient())

        summary = pipeline.ingest_articles(articles())

        assert summary.articles_ingested == 2
        assert list(summary.chunks_skipped) == ["sports-1_chunk_0"]
        assert "backend unavailable" in summary.chunks_skipped["sports-1_chunk_0"]
        assert [e.article_id for e in summary.errors] == ["sports-1"]
        assert "backend unavailable" in summary.errors[0].error
        assert pipeline.vector_index.get_article_chunks("sports-1") == []

    def test_index_rejection_does_not_stop_the_batch(self, tmp_path) -> None:
        class WideSportsClient(KeywordEmbeddingsClient):
            def embed_texts(self, texts):
                vectors = super().embed_texts(texts)
                return [
                    vector + [0.2] if "sports" in text else vector
                    for text, vector in zip(texts, vectors)
                ]

        storage = LanceDBIndexStorage(str(tmp_path / "index"))
        pipeline = build_pipeline(
            client=WideSportsClient(),
            storage=storage,
            persist_on_ingest=True,
            expected_dimensions=0,
        )

        summary = pipeline.ingest_articles(articles())

        assert summary.total_articles == 3
        assert summary.articles_ingested == 2
        assert [e.article_id for e in summary.errors] == ["sports-1"]
        assert "dimensions" in summary.errors[0].error
        assert pipeline.get_article_content("politics-1") is not None
        assert storage.exists()
        chunks, _ = storage.load()
        assert {chunk.article_id for chunk in chunks} == {"tech-1", "politics-1"}

    def test_persists_when_configured(self, tmp_path) -> None:
        storage = LanceDBIndexStorage(str(tmp_path / "index"))
        pipeline = build_pipeline(storage=storage, persist_on_ingest=True)

        pipeline.ingest_articles(articles())

        chunks, dimension = storage.load()
        assert len(chunks) == 3
        assert dimension == KeywordEmbeddingsClient.dimensions


class TestSearch:
    def test_text_query(self, pipeline) -> None:
        response = pipeline.search("latest ai research", k=5)
        assert [r.chunk.article_id for r in response.results] == ["tech-1"]

    def test_vector_query(self, pipeline) -> None:
        response = pipeline.search([0.0, 1.0, 0.0, 0.0, 0.1], k=1)
        assert response.results[0].chunk.article_id == "sports-1"

    def test_tagged_query_and_filters(self, pipeline) -> None:
        response = pipeline.search(
            VectorQuery(vector=[1.0, 1.0, 1.0, 0.0, 0.1]),
            filters=SearchFilters.by_categories("sports", "politics"),
            k=5,
        )
        assert {r.chunk.article_id for r in response.results} == {"sports-1", "politics-1"}

    @pytest.mark.parametrize("query", ["", "   ", [], 42])
    def test_invalid_query_rejected(self, pipeline, query) -> None:
        with pytest.raises(ValidationError):
            pipeline.search(query)


class TestPersonalization:
    def test_new_user_sees_plain_relevance_order(self, pipeline) -> None:
        ranked = pipeline.personalized_search(USER, "politics and sports", k=5)

        assert {r.chunk.article_id for r in ranked} == {"politics-1", "sports-1"}
        assert all(r.topic_match == 0.0 for r in ranked)

    def test_hidden_category_excluded_after_commit(self, pipeline) -> None:
        update = pipeline.record_interactions(
            [hide("politics-1", minute) for minute in range(6)], commit=True
        )

        assert "politics" in update.proposed.excluded_categories
        assert update.proposed.version == 1
        ranked = pipeline.personalized_search(USER, "politics and sports", k=5)
        assert [r.chunk.article_id for r in ranked] == ["sports-1"]

    def test_uncommitted_proposal_does_not_change_ranking(self, pipeline) -> None:
        pipeline.record_interactions([hide("politics-1", minute) for minute in range(6)])

        ranked = pipeline.personalized_search(USER, "politics", k=5)

        assert [r.chunk.article_id for r in ranked] == ["politics-1"]

    def test_single_event_accepted(self, pipeline) -> None:
        update = pipeline.record_interactions(
            {"user_id": USER, "article_id": "tech-1", "action": "like"}
        )
        assert update.insights.total_interactions == 1
        assert not update.has_changes

    def test_article_catalog(self, pipeline) -> None:
        catalog = pipeline.article_catalog()
        assert set(catalog) == {"tech-1", "sports-1", "politics-1"}
        assert catalog["tech-1"].tags == ["ai"]
        assert catalog["politics-1"].source == "capitol-daily"

    def test_get_article_content(self, pipeline) -> None:
        content = pipeline.get_article_content("tech-1")
        assert content["chunk_count"] == 1
        assert content["content"].startswith("AI systems")
        assert pipeline.get_article_content("missing") is None


class TestPreferenceFeed:
    def test_topics_drive_the_query(self, pipeline) -> None:
        pipeline.preference_service.update_preferences(USER, topics={"sports"})

        feed = pipeline.search_by_preferences(USER, k=5)

        assert feed.query_text == "sports sports"
        assert not feed.fallback_used
        assert [r.chunk.article_id for r in feed.results] == ["sports-1"]
        assert feed.results[0].topic_match == 1.0

    def test_preferred_sources_join_the_query(self) -> None:
        preferences = UserPreferences(
            user_id=USER, topics={"Politics", "ai"}, preferred_sources={"capitol-daily"}
        )

        query_text, fallback_used = preference_query_text(preferences)

        assert query_text == "ai ai politics politics capitol-daily"
        assert not fallback_used

    def test_user_without_topics_gets_fallback_query(self, pipeline) -> None:
        pipeline.vector_index.config.similarity_threshold = 0.0

        feed = pipeline.search_by_preferences(USER, k=5)

        assert feed.fallback_used
        assert feed.query_text == " ".join(FALLBACK_TOPICS)
        assert {r.chunk.article_id for r in feed.results} == {"tech-1", "sports-1", "politics-1"}

    def test_empty_topic_search_falls_back(self, pipeline) -> None:
        pipeline.preference_service.update_preferences(USER, topics={"markets"})

        feed = pipeline.search_by_preferences(USER, k=5)

        assert feed.fallback_used
        assert feed.query_text == " ".join(FALLBACK_TOPICS)

    def test_long_query_cut_at_word_boundary(self) -> None:
        topics = {f"topic{i:03d}" for i in range(60)}

        query_text, _ = preference_query_text(UserPreferences(user_id=USER, topics=topics))

        assert len(query_text) <= MAX_QUERY_LENGTH
        assert all(word.startswith("topic") and len(word) == 8 for word in query_text.split())


class TestFindSimilarArticles:
    def test_excludes_the_article_itself(self) -> None:
        pipeline = build_pipeline()
        pipeline.ingest_articles(
            articles()
            + [
                make_article(
                    "tech-2",
                    "AI startups raised money for AI tools. Investors expect more AI growth.",
                    category="technology",
                    source="daily",
                )
            ]
        )

        similar = pipeline.find_similar_articles("tech-1", k=3)

        assert [r.chunk.article_id for r in similar] == ["tech-2"]

    def test_one_result_per_article(self, pipeline) -> None:
        pipeline.vector_index.config.similarity_threshold = 0.0

        similar = pipeline.find_similar_articles("sports-1", k=5)

        article_ids = [r.chunk.article_id for r in similar]
        assert sorted(article_ids) == ["politics-1", "tech-1"]
        scores = [r.relevance_score for r in similar]
        assert scores == sorted(scores, reverse=True)

    def test_unknown_article(self, pipeline) -> None:
        assert pipeline.find_similar_articles("missing") == []
