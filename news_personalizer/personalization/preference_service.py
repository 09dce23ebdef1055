import logging
import threading
from collections import defaultdict
from typing import Any, Mapping

from pydantic import ValidationError as PydanticValidationError

from news_personalizer.errors import LearningError, ValidationError
from news_personalizer.personalization.interaction_learner import (
    InteractionLearner,
    validate_interaction,
)
from news_personalizer.personalization.models import (
    ArticleAttributes,
    PreferenceUpdate,
    UserInteraction,
    UserPreferences,
)
from news_personalizer.personalization.repositories import (
    InteractionRepository,
    PreferencesRepository,
)

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = {
    "topics",
    "preferred_sources",
    "excluded_sources",
    "excluded_categories",
    "tone",
    "reading_time",
}


class PreferenceService:
    """Serializes every read-learn-write cycle per user."""

    def __init__(
        self,
        learner: InteractionLearner,
        preferences_repository: PreferencesRepository,
        interaction_repository: InteractionRepository,
    ):
        self.learner = learner
        self.preferences_repository = preferences_repository
        self.interaction_repository = interaction_repository
        self._locks: dict[str, threading.Lock] = defaultdict(threading.Lock)
        self._locks_guard = threading.Lock()

    def _user_lock(self, user_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks[user_id]

    def get_preferences(self, user_id: str) -> UserPreferences:
        return self.preferences_repository.get(user_id) or UserPreferences.default(user_id)

    def record_interactions(
        self,
        interactions: list[UserInteraction | dict[str, Any]],
        catalog: Mapping[str, ArticleAttributes],
    ) -> PreferenceUpdate:
        """
        Append a batch of events for one user and propose updated preferences.

        The batch is validated in full before anything is stored. The proposal
        is computed from the user's whole stored history and is not committed.

        Raises:
            LearningError: If the batch is empty, malformed, or spans several users
        """
        if not interactions:
            raise LearningError("No interactions to record")
        validated = [validate_interaction(i) for i in interactions]
        user_ids = {i.user_id for i in validated}
        if len(user_ids) != 1:
            raise LearningError(
                f"Interaction batch spans {len(user_ids)} users, expected one"
            )
        user_id = user_ids.pop()

        with self._user_lock(user_id):
            self.interaction_repository.append(validated)
            history = self.interaction_repository.history(user_id)
            current = self.get_preferences(user_id)
            update = self.learner.learn(current, history, catalog)

        logger.info(
            f"Recorded {len(validated)} interactions for user {user_id}, "
            f"{len(update.changes)} changes proposed"
        )
        return update

    def commit(self, update: PreferenceUpdate) -> UserPreferences:
        """
        Store a learner proposal.

        Raises:
            StalePreferencesError: If preferences changed since the proposal was made
        """
        user_id = update.proposed.user_id
        with self._user_lock(user_id):
            saved = self.preferences_repository.save(update.proposed, update.base_version)
        logger.info(f"Committed preferences version {saved.version} for user {user_id}")
        return saved

    def update_preferences(self, user_id: str, **changes: Any) -> UserPreferences:
        """Apply explicit edits (topics, sources, tone, reading time) for a user."""
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot edit preference fields: {sorted(unknown)}")

        with self._user_lock(user_id):
            current = self.get_preferences(user_id)
            try:
                edited = UserPreferences.model_validate(
                    {**current.model_dump(), **changes}
                )
            except PydanticValidationError as e:
                raise ValidationError(f"Invalid preferences for user {user_id}: {e}") from e
            saved = self.preferences_repository.save(edited, current.version)

        logger.info(f"Updated preferences for user {user_id}: {sorted(changes)}")
        return saved
