"""Tests for the Gemini and HuggingFace embeddings clients."""

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

from news_personalizer.embeddings.gemini import GeminiEmbeddingClient
from news_personalizer.embeddings.huggingface import HuggingFaceEmbeddingsClient


def gemini_response(*vectors):
    return SimpleNamespace(
        embeddings=[SimpleNamespace(values=list(vector)) for vector in vectors]
    )


class TestGeminiEmbeddingClient:
    @patch("news_personalizer.embeddings.gemini.genai")
    def test_embed_texts_single_request(self, mock_genai) -> None:
        mock_client = MagicMock()
        mock_genai.Client.return_value = mock_client
        mock_client.models.embed_content.return_value = gemini_response([0.1, 0.2], [0.3, 0.4])

        client = GeminiEmbeddingClient(api_key="key", model="gemini-embedding-001", dimensions=2)
        vectors = client.embed_texts(["first", "second"])

        assert vectors == [[0.1, 0.2], [0.3, 0.4]]
        mock_genai.Client.assert_called_once_with(api_key="key")
        mock_client.models.embed_content.assert_called_once()
        kwargs = mock_client.models.embed_content.call_args.kwargs
        assert kwargs["model"] == "gemini-embedding-001"
        assert kwargs["contents"] == ["first", "second"]
        assert kwargs["config"].output_dimensionality == 2

    @patch("news_personalizer.embeddings.gemini.genai")
    def test_embed_query(self, mock_genai) -> None:
        mock_client = MagicMock()
        mock_genai.Client.return_value = mock_client
        mock_client.models.embed_content.return_value = gemini_response([0.5, 0.6])

        client = GeminiEmbeddingClient(api_key="key", model="gemini-embedding-001")

        assert client.embed_query("query") == [0.5, 0.6]

    @patch("news_personalizer.embeddings.gemini.genai")
    def test_empty_batch_skips_request(self, mock_genai) -> None:
        client = GeminiEmbeddingClient(api_key="key", model="gemini-embedding-001")
        assert client.embed_texts([]) == []
        mock_genai.Client.return_value.models.embed_content.assert_not_called()


class TestHuggingFaceEmbeddingsClient:
    @patch("news_personalizer.embeddings.huggingface.HuggingFaceEmbeddings")
    def test_uses_cpu_and_normalized_vectors(self, mock_embeddings) -> None:
        HuggingFaceEmbeddingsClient("sentence-transformers/all-MiniLM-L6-v2")

        kwargs = mock_embeddings.call_args.kwargs
        assert kwargs["model_name"] == "sentence-transformers/all-MiniLM-L6-v2"
        assert kwargs["model_kwargs"] == {"device": "cpu"}
        assert kwargs["encode_kwargs"] == {"normalize_embeddings": True}

    @patch("news_personalizer.embeddings.huggingface.HuggingFaceEmbeddings")
    def test_delegates_to_langchain(self, mock_embeddings) -> None:
        backend = mock_embeddings.return_value
        backend.embed_documents.return_value = [[1.0, 0.0]]
        backend.embed_query.return_value = [0.0, 1.0]

        client = HuggingFaceEmbeddingsClient("model")

        assert client.embed_texts(["text"]) == [[1.0, 0.0]]
        assert client.embed_query("query") == [0.0, 1.0]
        backend.embed_documents.assert_called_once_with(["text"])

    @patch("news_personalizer.embeddings.huggingface.HuggingFaceEmbeddings")
    def test_empty_batch(self, mock_embeddings) -> None:
        client = HuggingFaceEmbeddingsClient("model")
        assert client.embed_texts([]) == []
        mock_embeddings.return_value.embed_documents.assert_not_called()
