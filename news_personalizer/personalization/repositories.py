import threading
from abc import ABC, abstractmethod

from news_personalizer.errors import StalePreferencesError
from news_personalizer.personalization.models import UserInteraction, UserPreferences
from news_personalizer.utils.dates import utc_now


class PreferencesRepository(ABC):
    """Where committed user preferences live."""

    @abstractmethod
    def get(self, user_id: str) -> UserPreferences | None:
        pass

    @abstractmethod
    def save(self, preferences: UserPreferences, expected_version: int) -> UserPreferences:
        """
        Store preferences if the stored version still equals ``expected_version``.

        Args:
            preferences: New preferences for the user
            expected_version: Version the caller based its change on

        Returns:
            The stored preferences with the version bumped and timestamp set

        Raises:
            StalePreferencesError: If another update was committed in between
        """
        pass


class InteractionRepository(ABC):
    """Append-only log of interaction events per user."""

    @abstractmethod
    def append(self, interactions: list[UserInteraction]) -> None:
        pass

    @abstractmethod
    def history(self, user_id: str, limit: int | None = None) -> list[UserInteraction]:
        """Return the user's events oldest first, the most recent ``limit`` only when given."""
        pass


class InMemoryPreferencesRepository(PreferencesRepository):
    def __init__(self):
        self._lock = threading.Lock()
        self._preferences: dict[str, UserPreferences] = {}

    def get(self, user_id: str) -> UserPreferences | None:
        with self._lock:
            stored = self._preferences.get(user_id)
            return stored.model_copy(deep=True) if stored else None

    def save(self, preferences: UserPreferences, expected_version: int) -> UserPreferences:
        with self._lock:
            stored = self._preferences.get(preferences.user_id)
            current_version = stored.version if stored else 0
            if current_version != expected_version:
                raise StalePreferencesError(
                    f"Preferences for user {preferences.user_id} are at version "
                    f"{current_version}, update was based on {expected_version}"
                )
            saved = preferences.model_copy(
                deep=True,
                update={"version": current_version + 1, "last_updated": utc_now()},
            )
            self._preferences[preferences.user_id] = saved
            return saved.model_copy(deep=True)


class InMemoryInteractionRepository(InteractionRepository):
    def __init__(self):
        self._lock = threading.Lock()
        self._events: dict[str, list[UserInteraction]] = {}

    def append(self, interactions: list[UserInteraction]) -> None:
        with self._lock:
            for interaction in interactions:
                self._events.setdefault(interaction.user_id, []).append(interaction)

    def history(self, user_id: str, limit: int | None = None) -> list[UserInteraction]:
        with self._lock:
            events = list(self._events.get(user_id, []))
        if limit is not None:
            return events[-limit:] if limit > 0 else []
        return events
