from .embedding_generator import EmbeddingGenerator, validate_embedding
from .embeddings_client import BaseEmbeddingsClient
from .models import EmbeddingBatchResult, EmbeddingConfig, EmbeddingMetrics

__all__ = [
    "BaseEmbeddingsClient",
    "EmbeddingBatchResult",
    "EmbeddingConfig",
    "EmbeddingGenerator",
    "EmbeddingMetrics",
    "validate_embedding",
]
