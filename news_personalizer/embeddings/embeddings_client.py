from abc import ABC, abstractmethod


class BaseEmbeddingsClient(ABC):
    """Abstract base class for embedding compute backends."""

    @abstractmethod
    def embed_query(self, text: str) -> list[float]:
        """Embed a single piece of content.

        Args:
            text: The text content to embed

        Returns:
            List of floats representing the embedding vector
        """
        pass

    @abstractmethod
    def embed_texts(self, texts: list[str]) -> list[list[float]]:
        """Embed a batch of texts in one backend call.

        Args:
            texts: Texts to embed

        Returns:
            List of embedding vectors, one for each text, in input order
        """
        pass
