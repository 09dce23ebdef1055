import pytest

from helpers import KeywordEmbeddingsClient


@pytest.fixture
def keyword_client() -> KeywordEmbeddingsClient:
    return KeywordEmbeddingsClient()
