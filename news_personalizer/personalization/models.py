from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from news_personalizer.utils.dates import utc_now
from news_personalizer.vector_store.models import SearchResult


class InteractionAction(str, Enum):
    READ_MORE = "read_more"
    HIDE = "hide"
    LIKE = "like"
    SHARE = "share"

    @property
    def is_positive(self) -> bool:
        return self is not InteractionAction.HIDE


class UserInteraction(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str = Field(min_length=1)
    article_id: str = Field(min_length=1)
    action: InteractionAction
    timestamp: datetime = Field(default_factory=utc_now)


class UserPreferences(BaseModel):
    user_id: str = Field(min_length=1)
    topics: set[str] = Field(default_factory=set)
    preferred_sources: set[str] = Field(default_factory=set)
    excluded_sources: set[str] = Field(default_factory=set)
    excluded_categories: set[str] = Field(default_factory=set)
    tone: Literal["formal", "casual", "fun"] = "casual"
    # minutes
    reading_time: int = Field(default=5, ge=1, le=15)
    version: int = Field(default=0, ge=0)
    last_updated: datetime = Field(default_factory=utc_now)

    @classmethod
    def default(cls, user_id: str) -> "UserPreferences":
        return cls(user_id=user_id)


class ArticleAttributes(BaseModel):
    """What the learner needs to know about an article someone interacted with."""

    category: str
    source: str
    tags: list[str] = Field(default_factory=list)


class PreferenceChange(BaseModel):
    field: Literal[
        "topics", "preferred_sources", "excluded_sources", "excluded_categories"
    ]
    operation: Literal["add", "remove"]
    value: str
    reason: str
    confidence: float = Field(ge=0.0, le=1.0)


class InteractionStats(BaseModel):
    total: int = 0
    positive: int = 0
    negative: int = 0

    @property
    def positive_ratio(self) -> float:
        return self.positive / self.total if self.total else 0.0


class LearningInsights(BaseModel):
    total_interactions: int = 0
    duplicates_dropped: int = 0
    unknown_articles: int = 0
    learning_confidence: float = 0.0
    category_stats: dict[str, InteractionStats] = Field(default_factory=dict)
    source_stats: dict[str, InteractionStats] = Field(default_factory=dict)
    tag_stats: dict[str, InteractionStats] = Field(default_factory=dict)


class PreferenceUpdate(BaseModel):
    """A proposal computed by the learner; nothing is stored until it is committed."""

    proposed: UserPreferences
    base_version: int
    changes: list[PreferenceChange] = Field(default_factory=list)
    confidence: float = 0.0
    insights: LearningInsights = Field(default_factory=LearningInsights)

    @property
    def has_changes(self) -> bool:
        return bool(self.changes)


class RankingWeights(BaseModel):
    relevance: float = Field(default=0.4, ge=0.0)
    topic_match: float = Field(default=0.3, ge=0.0)
    recency: float = Field(default=0.2, ge=0.0)
    source_preference: float = Field(default=0.1, ge=0.0)

    @model_validator(mode="after")
    def _check_sum(self) -> "RankingWeights":
        if self.relevance + self.topic_match + self.recency + self.source_preference <= 0:
            raise ValueError("ranking weights must have a positive sum")
        return self


class RankedResult(SearchResult):
    composite_score: float
    topic_match: float
    recency: float
    source_preference: float

    @property
    def relevance(self) -> float:
        return self.relevance_score
