class NewsPersonalizerError(Exception):
    """Base class for errors raised by the personalization core."""


class ValidationError(NewsPersonalizerError):
    """Malformed article, interaction, query or config at a boundary."""


class ProcessingError(NewsPersonalizerError):
    """Normalization or chunking failed for a single article."""

    def __init__(self, message: str, article_id: str | None = None):
        super().__init__(message)
        self.article_id = article_id


class EmbeddingError(NewsPersonalizerError):
    """The embeddings backend kept failing after all retries."""

    def __init__(self, message: str, metrics=None):
        super().__init__(message)
        self.metrics = metrics


class VectorIndexError(NewsPersonalizerError):
    """Corrupt or missing persisted index, or a vector dimension mismatch."""


class LearningError(ValidationError):
    """Malformed interaction event handed to the learner."""


class StalePreferencesError(LearningError):
    """A preference proposal was computed against an outdated version."""
