from .interaction_learner import InteractionLearner, LearnerConfig, validate_interaction
from .models import (
    ArticleAttributes,
    InteractionAction,
    PreferenceChange,
    PreferenceUpdate,
    RankedResult,
    RankingWeights,
    UserInteraction,
    UserPreferences,
)
from .preference_service import PreferenceService
from .ranker import PersonalizationRanker
from .repositories import (
    InMemoryInteractionRepository,
    InMemoryPreferencesRepository,
    InteractionRepository,
    PreferencesRepository,
)

__all__ = [
    "ArticleAttributes",
    "InMemoryInteractionRepository",
    "InMemoryPreferencesRepository",
    "InteractionAction",
    "InteractionLearner",
    "InteractionRepository",
    "LearnerConfig",
    "PersonalizationRanker",
    "PreferenceChange",
    "PreferenceService",
    "PreferenceUpdate",
    "PreferencesRepository",
    "RankedResult",
    "RankingWeights",
    "UserInteraction",
    "UserPreferences",
    "validate_interaction",
]
