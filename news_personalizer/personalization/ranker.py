import logging
from datetime import datetime

from news_personalizer.errors import ValidationError
from news_personalizer.personalization.models import (
    RankedResult,
    RankingWeights,
    UserPreferences,
)
from news_personalizer.utils.dates import to_utc, utc_now
from news_personalizer.vector_store.models import SearchResult

logger = logging.getLogger(__name__)


class PersonalizationRanker:
    """Re-rank search candidates for one user with a weighted composite score."""

    def __init__(
        self,
        weights: RankingWeights | None = None,
        recency_half_life_hours: float = 24.0,
    ):
        if recency_half_life_hours <= 0:
            raise ValidationError("recency_half_life_hours must be positive")
        self.weights = weights or RankingWeights()
        self.recency_half_life_hours = recency_half_life_hours

    def rank(
        self,
        results: list[SearchResult],
        preferences: UserPreferences,
        weights: RankingWeights | None = None,
        one_per_article: bool = False,
        now: datetime | None = None,
    ) -> list[RankedResult]:
        """
        Score and order candidates for a user.

        Candidates from excluded sources or categories are dropped before
        scoring. The rest are ordered by composite score, then by the more
        recent publish date, then by chunk id.

        Args:
            results: Candidates from a similarity search
            preferences: The user's committed preferences
            weights: Overrides the ranker's default weights
            one_per_article: Keep only the best chunk of each article
            now: Reference time for recency, defaults to the current time

        Returns:
            Ranked results with their score components
        """
        weights = weights or self.weights
        now = to_utc(now) if now else utc_now()

        kept = [r for r in results if not self._is_excluded(r, preferences)]
        if len(kept) < len(results):
            logger.debug(
                f"Excluded {len(results) - len(kept)} candidates for user "
                f"{preferences.user_id}"
            )

        ranked = [self._score(r, preferences, weights, now) for r in kept]
        ranked.sort(
            key=lambda r: (
                -r.composite_score,
                -to_utc(r.chunk.metadata.published_at).timestamp(),
                r.chunk.id,
            )
        )

        if one_per_article:
            seen = set()
            best = []
            for r in ranked:
                if r.chunk.article_id in seen:
                    continue
                seen.add(r.chunk.article_id)
                best.append(r)
            ranked = best

        return ranked

    def recency_decay(self, published_at: datetime, now: datetime | None = None) -> float:
        now = to_utc(now) if now else utc_now()
        age_hours = (now - to_utc(published_at)).total_seconds() / 3600
        if age_hours <= 0:
            return 1.0
        return 0.5 ** (age_hours / self.recency_half_life_hours)

    @staticmethod
    def topic_match(result: SearchResult, preferences: UserPreferences) -> float:
        if not preferences.topics:
            return 0.0
        terms = {result.chunk.metadata.category, *result.chunk.metadata.tags}
        return len(terms & preferences.topics) / len(terms)

    @staticmethod
    def source_preference(result: SearchResult, preferences: UserPreferences) -> float:
        return 1.0 if result.chunk.metadata.source in preferences.preferred_sources else 0.0

    @staticmethod
    def _is_excluded(result: SearchResult, preferences: UserPreferences) -> bool:
        metadata = result.chunk.metadata
        return (
            metadata.source in preferences.excluded_sources
            or metadata.category in preferences.excluded_categories
        )

    def _score(
        self,
        result: SearchResult,
        preferences: UserPreferences,
        weights: RankingWeights,
        now: datetime,
    ) -> RankedResult:
        topic = self.topic_match(result, preferences)
        recency = self.recency_decay(result.chunk.metadata.published_at, now)
        source = self.source_preference(result, preferences)
        composite = (
            weights.relevance * result.relevance_score
            + weights.topic_match * topic
            + weights.recency * recency
            + weights.source_preference * source
        )
        return RankedResult(
            chunk=result.chunk,
            relevance_score=result.relevance_score,
            composite_score=composite,
            topic_match=topic,
            recency=recency,
            source_preference=source,
        )
