"""Record builders and a deterministic embeddings backend shared by the tests."""

from datetime import datetime, timedelta, timezone

from news_personalizer.embeddings.embeddings_client import BaseEmbeddingsClient
from news_personalizer.ingestion.models import ChunkMetadata, RawArticle, TextChunk

KEYWORDS = ["ai", "sports", "politics", "markets"]

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


class KeywordEmbeddingsClient(BaseEmbeddingsClient):
    """One dimension per keyword plus a constant bias so no vector is all zeros."""

    dimensions = len(KEYWORDS) + 1

    def __init__(self):
        self.calls: list[list[str]] = []

    def _vector(self, text: str) -> list[float]:
        words = [word.strip(".,!?") for word in text.lower().split()]
        return [float(words.count(keyword)) for keyword in KEYWORDS] + [0.1]

    def embed_query(self, text: str) -> list[float]:
        return self._vector(text)

    def embed_texts(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        return [self._vector(text) for text in texts]


def hours_ago(hours: float) -> datetime:
    return NOW - timedelta(hours=hours)


def make_chunk(
    chunk_id: str,
    vector: list[float],
    article_id: str | None = None,
    category: str = "technology",
    source: str = "wire",
    published_at: datetime = NOW,
    chunk_index: int = 0,
    tags: list[str] | None = None,
    content: str | None = None,
) -> TextChunk:
    content = content or f"Content of {chunk_id} with a few words"
    return TextChunk(
        id=chunk_id,
        article_id=article_id or chunk_id.split("_chunk_")[0],
        content=content,
        embedding=vector,
        metadata=ChunkMetadata(
            source=source,
            category=category,
            published_at=published_at,
            chunk_index=chunk_index,
            word_count=len(content.split()),
            tags=tags or [],
        ),
    )


def make_article(
    article_id: str = "a1",
    content: str = "AI models keep improving. Researchers published new results today.",
    category: str = "technology",
    source: str = "wire",
    tags: list[str] | None = None,
    published_at: datetime = NOW,
) -> RawArticle:
    return RawArticle(
        id=article_id,
        headline=f"Headline for {article_id}",
        content=content,
        source=source,
        category=category,
        published_at=published_at,
        url=f"https://example.com/{article_id}",
        tags=tags or [],
    )
