from google import genai
from google.genai import types

from news_personalizer.embeddings.embeddings_client import BaseEmbeddingsClient


class GeminiEmbeddingClient(BaseEmbeddingsClient):
    def __init__(self, api_key: str, model: str, dimensions: int | None = None):
        self.client = genai.Client(api_key=api_key)
        self.model = model
        self.dimensions = dimensions

    def _config(self) -> types.EmbedContentConfig:
        return types.EmbedContentConfig(
            task_type="SEMANTIC_SIMILARITY",
            output_dimensionality=self.dimensions,
        )

    def embed_query(self, text: str) -> list[float]:
        result = self.client.models.embed_content(
            model=self.model,
            contents=text,
            config=self._config(),
        )
        return list(result.embeddings[0].values)

    def embed_texts(self, texts: list[str]) -> list[list[float]]:
        """Embed a batch of chunk texts in a single request.

        Args:
            texts: Chunk texts to embed

        Returns:
            List of embedding vectors, one for each text
        """
        if not texts:
            return []
        result = self.client.models.embed_content(
            model=self.model,
            contents=texts,
            config=self._config(),
        )
        return [list(embedding.values) for embedding in result.embeddings]
