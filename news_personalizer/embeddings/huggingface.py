from langchain_huggingface import HuggingFaceEmbeddings

from news_personalizer.embeddings.embeddings_client import BaseEmbeddingsClient


class HuggingFaceEmbeddingsClient(BaseEmbeddingsClient):
    """Client for generating embeddings using HuggingFace sentence-transformers."""

    def __init__(self, model_name: str):
        """Initialize the HuggingFace embeddings client.

        Args:
            model_name: Name of the HuggingFace model to use
        """
        self.embeddings = HuggingFaceEmbeddings(
            model_name=model_name,
            model_kwargs={"device": "cpu"},  # Force CPU usage
            encode_kwargs={"normalize_embeddings": True},
        )

    def embed_query(self, text: str) -> list[float]:
        return self.embeddings.embed_query(text)

    def embed_texts(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        return self.embeddings.embed_documents(texts)
