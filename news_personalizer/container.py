from dependency_injector import containers, providers

from news_personalizer.embeddings.embedding_generator import EmbeddingGenerator
from news_personalizer.embeddings.gemini import GeminiEmbeddingClient
from news_personalizer.embeddings.huggingface import HuggingFaceEmbeddingsClient
from news_personalizer.embeddings.models import EmbeddingConfig
from news_personalizer.ingestion.article_processor import ArticleProcessor
from news_personalizer.ingestion.chunker import TextChunker
from news_personalizer.ingestion.text_normalizer import TextNormalizer
from news_personalizer.personalization.interaction_learner import (
    InteractionLearner,
    LearnerConfig,
)
from news_personalizer.personalization.preference_service import PreferenceService
from news_personalizer.personalization.ranker import PersonalizationRanker
from news_personalizer.personalization.models import RankingWeights
from news_personalizer.personalization.repositories import (
    InMemoryInteractionRepository,
    InMemoryPreferencesRepository,
)
from news_personalizer.pipeline import PersonalizationPipeline
from news_personalizer.vector_store.lancedb import LanceDBIndexStorage
from news_personalizer.vector_store.models import VectorIndexConfig
from news_personalizer.vector_store.vector_index import VectorIndex


class Container(containers.DeclarativeContainer):
    config = providers.Configuration()

    text_normalizer = providers.Singleton(TextNormalizer)

    text_chunker = providers.Singleton(
        TextChunker,
        max_chunk_size=config.chunking.max_chunk_size,
        min_chunk_size=config.chunking.min_chunk_size,
        overlap_size=config.chunking.overlap_size,
        preserve_context=config.chunking.preserve_context,
        min_word_count=config.chunking.min_word_count,
        min_vocabulary_diversity=config.chunking.min_vocabulary_diversity,
    )

    article_processor = providers.Singleton(
        ArticleProcessor,
        chunker=text_chunker,
        normalizer=text_normalizer,
        enable_validation=config.ingestion.enable_validation,
    )

    gemini_embedding = providers.Singleton(
        GeminiEmbeddingClient,
        api_key=config.embeddings.gemini.api_key,
        model=config.embeddings.gemini.model,
        dimensions=config.embeddings.gemini.dimensions,
    )

    huggingface_embedding = providers.Singleton(
        HuggingFaceEmbeddingsClient,
        model_name=config.embeddings.huggingface.model_name,
    )

    embeddings_client = providers.Selector(
        config.embeddings.provider,
        gemini=gemini_embedding,
        huggingface=huggingface_embedding,
    )

    embedding_config = providers.Factory(
        EmbeddingConfig,
        batch_size=config.embeddings.batch_size,
        max_retries=config.embeddings.max_retries,
        retry_delay=config.embeddings.retry_delay,
        expected_dimensions=config.embeddings.expected_dimensions,
        validate_embeddings=config.embeddings.validate_embeddings,
        max_workers=config.embeddings.max_workers,
        batch_timeout=config.embeddings.batch_timeout,
    )

    embedding_generator = providers.Singleton(
        EmbeddingGenerator,
        embeddings_client=embeddings_client,
        config=embedding_config,
    )

    index_storage = providers.Singleton(
        LanceDBIndexStorage,
        db_path=config.vector_index.db_path,
        chunks_table=config.vector_index.chunks_table,
        manifest_table=config.vector_index.manifest_table,
    )

    vector_index_config = providers.Factory(
        VectorIndexConfig,
        similarity_threshold=config.vector_index.similarity_threshold,
        max_results=config.vector_index.max_results,
        oversample_factor=config.vector_index.oversample_factor,
        dimensions=config.vector_index.dimensions,
    )

    vector_index = providers.Singleton(
        VectorIndex,
        config=vector_index_config,
        storage=index_storage,
        query_embedder=embedding_generator,
    )

    learner_config = providers.Factory(LearnerConfig.model_validate, config.learning)

    interaction_learner = providers.Singleton(InteractionLearner, config=learner_config)

    preferences_repository = providers.Singleton(InMemoryPreferencesRepository)

    interaction_repository = providers.Singleton(InMemoryInteractionRepository)

    preference_service = providers.Singleton(
        PreferenceService,
        learner=interaction_learner,
        preferences_repository=preferences_repository,
        interaction_repository=interaction_repository,
    )

    ranking_weights = providers.Factory(RankingWeights.model_validate, config.ranking.weights)

    ranker = providers.Singleton(
        PersonalizationRanker,
        weights=ranking_weights,
        recency_half_life_hours=config.ranking.recency_half_life_hours,
    )

    pipeline = providers.Singleton(
        PersonalizationPipeline,
        article_processor=article_processor,
        embedding_generator=embedding_generator,
        vector_index=vector_index,
        preference_service=preference_service,
        ranker=ranker,
        candidate_multiplier=config.ranking.candidate_multiplier,
        persist_on_ingest=config.pipeline.persist_on_ingest,
    )
