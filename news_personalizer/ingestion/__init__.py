from .article_processor import ArticleProcessor, ArticleValidator
from .chunker import TextChunker
from .models import ChunkingConfig, ChunkMetadata, RawArticle, TextChunk
from .text_normalizer import TextNormalizer, normalize_text, word_count

__all__ = [
    "ArticleProcessor",
    "ArticleValidator",
    "ChunkMetadata",
    "ChunkingConfig",
    "RawArticle",
    "TextChunk",
    "TextChunker",
    "TextNormalizer",
    "normalize_text",
    "word_count",
]
