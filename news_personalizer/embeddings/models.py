from pydantic import BaseModel, Field


class EmbeddingConfig(BaseModel):
    batch_size: int = Field(default=10, ge=1)
    max_retries: int = Field(default=3, ge=0)
    # seconds; attempt n waits retry_delay * n
    retry_delay: float = Field(default=1.0, ge=0.0)
    # 0 disables the dimension check
    expected_dimensions: int = Field(default=384, ge=0)
    validate_embeddings: bool = True
    max_workers: int = Field(default=2, ge=1)
    batch_timeout: float = Field(default=30.0, gt=0.0)


class EmbeddingMetrics(BaseModel):
    total_chunks: int = 0
    successful_embeddings: int = 0
    failed_embeddings: int = 0
    batch_count: int = 0
    retry_count: int = 0
    processing_time_ms: float = 0.0
    average_time_per_chunk_ms: float = 0.0
    errors: list[str] = Field(default_factory=list)
    # chunk id -> reason, filled by embed_chunks
    failed_chunks: dict[str, str] = Field(default_factory=dict)


class EmbeddingBatchResult(BaseModel):
    """Vectors index-aligned with the input texts.

    A failed item keeps an empty placeholder in ``embeddings`` and its
    reason in ``errors``; successful items have ``None`` there.
    """

    embeddings: list[list[float]]
    errors: list[str | None]
    metrics: EmbeddingMetrics

    @property
    def all_succeeded(self) -> bool:
        return all(error is None for error in self.errors)
