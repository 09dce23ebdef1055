from datetime import datetime
from typing import Annotated, Literal

from lancedb.pydantic import LanceModel, Vector
from pydantic import BaseModel, Field, model_validator

from news_personalizer.ingestion.models import TextChunk
from news_personalizer.utils.dates import to_utc


class DateRange(BaseModel):
    start: datetime
    end: datetime

    @model_validator(mode="after")
    def _check_order(self) -> "DateRange":
        if to_utc(self.start) > to_utc(self.end):
            raise ValueError("date range start must not be after its end")
        return self

    def contains(self, value: datetime) -> bool:
        return to_utc(self.start) <= to_utc(value) <= to_utc(self.end)


class SearchFilters(BaseModel):
    """Post-filters applied to similarity candidates. Unset fields match everything."""

    categories: list[str] | None = None
    sources: list[str] | None = None
    date_range: DateRange | None = None
    min_relevance_score: float | None = Field(default=None, ge=0.0, le=1.0)

    @staticmethod
    def by_categories(*categories: str) -> "SearchFilters":
        """Filter by article category (e.g. 'sports', 'technology')."""
        return SearchFilters(categories=list(categories))

    @staticmethod
    def by_sources(*sources: str) -> "SearchFilters":
        """Filter by publishing source."""
        return SearchFilters(sources=list(sources))

    @staticmethod
    def by_date_range(start: datetime, end: datetime) -> "SearchFilters":
        """Filter by publish date, both ends inclusive."""
        return SearchFilters(date_range=DateRange(start=start, end=end))

    @staticmethod
    def by_min_score(score: float) -> "SearchFilters":
        return SearchFilters(min_relevance_score=score)

    @staticmethod
    def combine(*filters: "SearchFilters") -> "SearchFilters":
        """Combine filters with AND logic; later filters win on conflicts."""
        values = {}
        for f in filters:
            for name in f.model_fields_set:
                values[name] = getattr(f, name)
        return SearchFilters(**values)

    def applied(self) -> list[str]:
        return [
            name
            for name in ("categories", "sources", "date_range", "min_relevance_score")
            if getattr(self, name) is not None
        ]

    def matches(self, chunk: TextChunk, score: float) -> bool:
        metadata = chunk.metadata
        if self.categories is not None and metadata.category not in self.categories:
            return False
        if self.sources is not None and metadata.source not in self.sources:
            return False
        if self.date_range is not None and not self.date_range.contains(
            metadata.published_at
        ):
            return False
        if self.min_relevance_score is not None and score < self.min_relevance_score:
            return False
        return True


class TextQuery(BaseModel):
    kind: Literal["text"] = "text"
    text: str = Field(min_length=1)


class VectorQuery(BaseModel):
    kind: Literal["vector"] = "vector"
    vector: list[float] = Field(min_length=1)


Query = Annotated[TextQuery | VectorQuery, Field(discriminator="kind")]


class SearchResult(BaseModel):
    chunk: TextChunk
    relevance_score: float


class SearchMetrics(BaseModel):
    search_time_ms: float = 0.0
    total_vectors: int = 0
    candidates_considered: int = 0
    results_returned: int = 0
    similarity_scores: list[float] = Field(default_factory=list)
    filters_applied: list[str] = Field(default_factory=list)


class SearchResponse(BaseModel):
    results: list[SearchResult] = Field(default_factory=list)
    metrics: SearchMetrics = Field(default_factory=SearchMetrics)


class InsertResult(BaseModel):
    inserted_ids: list[str] = Field(default_factory=list)
    # chunk id -> reason
    skipped: dict[str, str] = Field(default_factory=dict)


class VectorIndexConfig(BaseModel):
    similarity_threshold: float = Field(default=0.1, ge=-1.0, le=1.0)
    max_results: int = Field(default=50, ge=1)
    oversample_factor: int = Field(default=5, ge=1)
    # fixed by the first insert when unset
    dimensions: int | None = Field(default=None, ge=1)


class IndexManifest(LanceModel):
    dimension: int
    count: int
    saved_at: str
    format_version: int


def chunk_record_model(dimension: int) -> type[LanceModel]:
    """LanceDB row schema for persisted chunks with a fixed vector width."""

    class ChunkRecord(LanceModel):
        id: str
        article_id: str
        text: str
        vector: Vector(dimension)  # type: ignore
        source: str
        category: str
        published_at: str
        chunk_index: int
        word_count: int
        tags: list[str] = Field(default_factory=list)

    return ChunkRecord
