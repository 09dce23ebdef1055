import logging
import math
from collections import defaultdict
from typing import Any, Mapping

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from news_personalizer.errors import LearningError
from news_personalizer.personalization.models import (
    ArticleAttributes,
    InteractionStats,
    LearningInsights,
    PreferenceChange,
    PreferenceUpdate,
    UserInteraction,
    UserPreferences,
)

logger = logging.getLogger(__name__)


class LearnerConfig(BaseModel):
    min_interactions_for_learning: int = Field(default=5, ge=1)
    # positive events needed before a category, source or tag is promoted
    promote_threshold: int = Field(default=3, ge=1)
    promote_min_ratio: float = Field(default=0.6, ge=0.0, le=1.0)
    # negative events needed before a category or source is demoted
    demote_threshold: int = Field(default=3, ge=1)
    # negatives per positive
    demote_ratio: float = Field(default=3.0, gt=0.0)
    max_interaction_history: int = Field(default=1000, ge=1)
    max_topics: int = Field(default=10, ge=0)
    max_preferred_sources: int = Field(default=8, ge=0)
    max_excluded_sources: int = Field(default=5, ge=0)
    max_excluded_categories: int = Field(default=10, ge=0)
    category_learning_enabled: bool = True
    source_learning_enabled: bool = True
    topic_learning_enabled: bool = True


def validate_interaction(
    interaction: UserInteraction | dict[str, Any], user_id: str | None = None
) -> UserInteraction:
    """
    Coerce an interaction event and check it belongs to the expected user.

    Raises:
        LearningError: If the event is malformed or belongs to someone else
    """
    if not isinstance(interaction, UserInteraction):
        if not isinstance(interaction, dict):
            raise LearningError(
                f"Expected an interaction event, got {type(interaction).__name__}"
            )
        try:
            interaction = UserInteraction.model_validate(interaction)
        except PydanticValidationError as e:
            raise LearningError(f"Invalid interaction: {e}") from e

    if user_id is not None and interaction.user_id != user_id:
        raise LearningError(
            f"Interaction for user {interaction.user_id} handed to learner "
            f"for user {user_id}"
        )
    return interaction


def deduplicate(interactions: list[UserInteraction]) -> list[UserInteraction]:
    """Drop redelivered events, keeping the first occurrence."""
    seen = set()
    unique = []
    for interaction in interactions:
        key = (
            interaction.user_id,
            interaction.article_id,
            interaction.action,
            interaction.timestamp,
        )
        if key in seen:
            continue
        seen.add(key)
        unique.append(interaction)
    return unique


class InteractionLearner:
    """
    Propose preference changes from a user's interaction history.

    Learning is a pure function of the current preferences, the ordered
    history and the article catalog: the same inputs always give the same
    proposal, and redelivered events change nothing.
    """

    def __init__(self, config: LearnerConfig | None = None):
        self.config = config or LearnerConfig()

    def learn(
        self,
        current_preferences: UserPreferences,
        interactions: list[UserInteraction | dict[str, Any]],
        catalog: Mapping[str, ArticleAttributes],
    ) -> PreferenceUpdate:
        """
        Compute a preference proposal.

        Args:
            current_preferences: The user's committed preferences
            interactions: The user's history, oldest first
            catalog: Category, source and tags per article id

        Returns:
            PreferenceUpdate with the proposed preferences, the individual
            changes, an overall confidence and per-dimension insights

        Raises:
            LearningError: If any interaction is malformed
        """
        user_id = current_preferences.user_id
        validated = [validate_interaction(i, user_id) for i in interactions]
        unique = deduplicate(validated)
        history = unique[-self.config.max_interaction_history :]

        insights = self._tally(history, catalog)
        insights.duplicates_dropped = len(validated) - len(unique)
        insights.learning_confidence = self.learning_confidence(len(history))

        proposed = current_preferences.model_copy(deep=True)
        changes: list[PreferenceChange] = []

        if len(history) < self.config.min_interactions_for_learning:
            logger.debug(
                f"Not enough interactions to learn for user {user_id} "
                f"({len(history)} < {self.config.min_interactions_for_learning})"
            )
        else:
            if self.config.category_learning_enabled:
                changes += self._learn_categories(proposed, insights.category_stats)
            if self.config.source_learning_enabled:
                changes += self._learn_sources(proposed, insights.source_stats)
            if self.config.topic_learning_enabled:
                changes += self._learn_tags(proposed, insights.tag_stats)

        if changes:
            logger.info(
                f"Proposed {len(changes)} preference changes for user {user_id} "
                f"(confidence {insights.learning_confidence})"
            )

        return PreferenceUpdate(
            proposed=proposed,
            base_version=current_preferences.version,
            changes=changes,
            confidence=insights.learning_confidence,
            insights=insights,
        )

    def learning_confidence(self, total: int) -> float:
        minimum = self.config.min_interactions_for_learning
        if total < minimum:
            return 0.0
        return round(min(math.log10(total / minimum + 1), 1.0), 2)

    def _tally(
        self,
        history: list[UserInteraction],
        catalog: Mapping[str, ArticleAttributes],
    ) -> LearningInsights:
        categories: dict[str, InteractionStats] = defaultdict(InteractionStats)
        sources: dict[str, InteractionStats] = defaultdict(InteractionStats)
        tags: dict[str, InteractionStats] = defaultdict(InteractionStats)
        unknown = 0

        for interaction in history:
            attributes = catalog.get(interaction.article_id)
            if attributes is None:
                unknown += 1
                continue
            positive = interaction.action.is_positive
            _count(categories[attributes.category], positive)
            _count(sources[attributes.source], positive)
            if positive:
                for tag in dict.fromkeys(attributes.tags):
                    _count(tags[tag], positive)

        return LearningInsights(
            total_interactions=len(history),
            unknown_articles=unknown,
            category_stats=dict(categories),
            source_stats=dict(sources),
            tag_stats=dict(tags),
        )

    def _promotable(self, stats: InteractionStats) -> bool:
        return (
            stats.positive >= self.config.promote_threshold
            and stats.positive_ratio >= self.config.promote_min_ratio
        )

    def _demotable(self, stats: InteractionStats) -> bool:
        return (
            stats.negative >= self.config.demote_threshold
            and stats.negative / max(stats.positive, 1) >= self.config.demote_ratio
        )

    def _promotion_confidence(self, stats: InteractionStats) -> float:
        evidence = min(1.0, stats.positive / (2 * self.config.promote_threshold))
        dominance = stats.positive / stats.total if stats.total else 0.0
        return round(evidence * dominance, 2)

    def _demotion_confidence(self, stats: InteractionStats) -> float:
        evidence = min(1.0, stats.negative / (2 * self.config.demote_threshold))
        dominance = stats.negative / stats.total if stats.total else 0.0
        return round(evidence * dominance, 2)

    def _learn_categories(
        self, prefs: UserPreferences, stats: dict[str, InteractionStats]
    ) -> list[PreferenceChange]:
        changes = []

        for category, s in _by_evidence(stats, negative=True):
            if not self._demotable(s):
                continue
            confidence = self._demotion_confidence(s)
            reason = f"{s.negative} hides vs {s.positive} positive interactions"
            if category in prefs.topics:
                prefs.topics.discard(category)
                changes.append(_change("topics", "remove", category, reason, confidence))
            if (
                category not in prefs.excluded_categories
                and len(prefs.excluded_categories) < self.config.max_excluded_categories
            ):
                prefs.excluded_categories.add(category)
                changes.append(
                    _change("excluded_categories", "add", category, reason, confidence)
                )

        for category, s in _by_evidence(stats):
            if not self._promotable(s):
                continue
            confidence = self._promotion_confidence(s)
            reason = f"{s.positive} of {s.total} interactions were positive"
            if category in prefs.excluded_categories:
                prefs.excluded_categories.discard(category)
                changes.append(
                    _change("excluded_categories", "remove", category, reason, confidence)
                )
            if category not in prefs.topics and len(prefs.topics) < self.config.max_topics:
                prefs.topics.add(category)
                changes.append(_change("topics", "add", category, reason, confidence))

        return changes

    def _learn_sources(
        self, prefs: UserPreferences, stats: dict[str, InteractionStats]
    ) -> list[PreferenceChange]:
        changes = []

        for source, s in _by_evidence(stats, negative=True):
            if not self._demotable(s):
                continue
            confidence = self._demotion_confidence(s)
            reason = f"{s.negative} hides vs {s.positive} positive interactions"
            if source in prefs.preferred_sources:
                prefs.preferred_sources.discard(source)
                changes.append(
                    _change("preferred_sources", "remove", source, reason, confidence)
                )
            if (
                source not in prefs.excluded_sources
                and len(prefs.excluded_sources) < self.config.max_excluded_sources
            ):
                prefs.excluded_sources.add(source)
                changes.append(_change("excluded_sources", "add", source, reason, confidence))

        for source, s in _by_evidence(stats):
            if not self._promotable(s):
                continue
            confidence = self._promotion_confidence(s)
            reason = f"{s.positive} of {s.total} interactions were positive"
            if source in prefs.excluded_sources:
                prefs.excluded_sources.discard(source)
                changes.append(
                    _change("excluded_sources", "remove", source, reason, confidence)
                )
            if (
                source not in prefs.preferred_sources
                and len(prefs.preferred_sources) < self.config.max_preferred_sources
            ):
                prefs.preferred_sources.add(source)
                changes.append(
                    _change("preferred_sources", "add", source, reason, confidence)
                )

        return changes

    def _learn_tags(
        self, prefs: UserPreferences, stats: dict[str, InteractionStats]
    ) -> list[PreferenceChange]:
        changes = []
        for tag, s in _by_evidence(stats):
            if s.positive < self.config.promote_threshold:
                continue
            if tag in prefs.topics or tag in prefs.excluded_categories:
                continue
            if len(prefs.topics) >= self.config.max_topics:
                break
            prefs.topics.add(tag)
            changes.append(
                _change(
                    "topics",
                    "add",
                    tag,
                    f"{s.positive} positive interactions with articles tagged {tag}",
                    round(min(1.0, s.positive / (2 * self.config.promote_threshold)), 2),
                )
            )
        return changes


def _count(stats: InteractionStats, positive: bool) -> None:
    stats.total += 1
    if positive:
        stats.positive += 1
    else:
        stats.negative += 1


def _by_evidence(
    stats: dict[str, InteractionStats], negative: bool = False
) -> list[tuple[str, InteractionStats]]:
    """Strongest evidence first, then by name, so bounded sets fill deterministically."""
    if negative:
        return sorted(stats.items(), key=lambda item: (-item[1].negative, item[0]))
    return sorted(stats.items(), key=lambda item: (-item[1].positive, item[0]))


def _change(
    field: str, operation: str, value: str, reason: str, confidence: float
) -> PreferenceChange:
    return PreferenceChange(
        field=field, operation=operation, value=value, reason=reason, confidence=confidence
    )
