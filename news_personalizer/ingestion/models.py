from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, model_validator


class RawArticle(BaseModel):
    """An already-fetched article as handed over by the ingestion side."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    headline: str = Field(min_length=1, max_length=500)
    content: str = Field(min_length=1)
    source: str = Field(min_length=1)
    category: str = Field(min_length=1)
    published_at: datetime
    url: str = ""
    tags: list[str] = Field(default_factory=list)


class ChunkMetadata(BaseModel):
    source: str
    category: str
    published_at: datetime
    chunk_index: int = Field(ge=0)
    word_count: int = Field(ge=0)
    tags: list[str] = Field(default_factory=list)


class TextChunk(BaseModel):
    id: str = Field(min_length=1)
    article_id: str = Field(min_length=1)
    content: str
    embedding: list[float] = Field(default_factory=list)
    metadata: ChunkMetadata

    @property
    def has_embedding(self) -> bool:
        return len(self.embedding) > 0


class ChunkingConfig(BaseModel):
    max_chunk_size: int = Field(default=1000, gt=0)
    min_chunk_size: int = Field(default=200, ge=0)
    overlap_size: int = Field(default=100, ge=0)
    preserve_context: bool = True
    # word floor for the single chunk of a short article
    min_word_count: int = Field(default=3, ge=1)
    min_vocabulary_diversity: float = Field(default=0.2, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _check_sizes(self) -> "ChunkingConfig":
        if self.min_chunk_size > self.max_chunk_size:
            raise ValueError("min_chunk_size must be <= max_chunk_size")
        if self.overlap_size >= self.max_chunk_size:
            raise ValueError("overlap_size must be < max_chunk_size")
        return self


class ChunkValidationReport(BaseModel):
    is_valid: bool
    total_chunks: int
    valid_chunks: int
    average_word_count: int
    min_word_count: int
    max_word_count: int
    issues: list[str] = Field(default_factory=list)


class ProcessingMetrics(BaseModel):
    article_id: str
    original_length: int = 0
    cleaned_length: int = 0
    chunk_count: int = 0
    average_chunk_size: int = 0
    processing_time_ms: float = 0.0
    validation_passed: bool = False
    issues: list[str] = Field(default_factory=list)


class ArticleProcessingResult(BaseModel):
    article_id: str
    chunks: list[TextChunk]
    metrics: ProcessingMetrics


class ArticleProcessingError(BaseModel):
    article_id: str
    error: str


class BatchProcessingSummary(BaseModel):
    total_articles: int
    successfully_processed: int
    total_chunks: int
    average_processing_time_ms: float
    errors: list[ArticleProcessingError] = Field(default_factory=list)
