import logging
import math
import re

from langchain_text_splitters import RecursiveCharacterTextSplitter
from pydantic import ValidationError as PydanticValidationError

from news_personalizer.errors import ValidationError
from news_personalizer.ingestion.models import (
    ChunkingConfig,
    ChunkMetadata,
    ChunkValidationReport,
    RawArticle,
    TextChunk,
)
from news_personalizer.ingestion.text_normalizer import word_count

logger = logging.getLogger(__name__)

PARAGRAPH_SEPARATOR = "\n\n"
SEPARATORS = ["\n\n", "\n", ". ", " ", ""]

SENTENCE_BOUNDARY = re.compile(r"[.!?]\s+")
WHITESPACE = re.compile(r"\s")


class TextChunker:
    """Split normalized article text into bounded, overlapping chunks."""

    def __init__(
        self,
        max_chunk_size: int = 1000,
        min_chunk_size: int = 200,
        overlap_size: int = 100,
        preserve_context: bool = True,
        min_word_count: int = 3,
        min_vocabulary_diversity: float = 0.2,
    ):
        try:
            self.config = ChunkingConfig(
                max_chunk_size=max_chunk_size,
                min_chunk_size=min_chunk_size,
                overlap_size=overlap_size,
                preserve_context=preserve_context,
                min_word_count=min_word_count,
                min_vocabulary_diversity=min_vocabulary_diversity,
            )
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid chunking config: {e}") from e

        self.splitter = RecursiveCharacterTextSplitter(
            chunk_size=self.unit_budget,
            chunk_overlap=0,
            length_function=len,
            separators=SEPARATORS,
            keep_separator="end",
        )

    @property
    def unit_budget(self) -> int:
        """Largest piece that still fits next to an overlap seed."""
        if not self.config.preserve_context:
            return self.config.max_chunk_size
        budget = (
            self.config.max_chunk_size
            - self.config.overlap_size
            - len(PARAGRAPH_SEPARATOR)
        )
        return max(budget, 1)

    def split_text(self, text: str) -> list[str]:
        """
        Split text into chunk strings.

        Text that fits in one chunk is returned whole. Longer text goes
        through the recursive splitter (paragraphs, lines, sentences, words,
        characters) sized to leave room for an overlap seed, and every piece
        after the first is prefixed with the tail of the chunk before it.

        Args:
            text: Normalized text

        Returns:
            Ordered list of chunk texts
        """
        if not text or not isinstance(text, str):
            return []
        text = text.strip()
        if not text:
            return []

        if len(text) <= self.config.max_chunk_size:
            if self._keeps_short_article(text):
                return [text]
            logger.debug("Dropping article text below the word floor: %r", text)
            return []

        chunks = self._seed_overlap(self.splitter.split_text(text))
        kept = [chunk for chunk in chunks if len(chunk) >= self.config.min_chunk_size]
        if len(kept) < len(chunks):
            logger.debug(
                f"Discarded {len(chunks) - len(kept)} chunks below "
                f"{self.config.min_chunk_size} characters"
            )
        return kept

    def overlap_text(self, chunk: str) -> str:
        """Tail of a chunk used to seed the next one, cut at a clean boundary."""
        size = self.config.overlap_size
        if not self.config.preserve_context or size == 0 or len(chunk) <= size:
            return ""

        window = chunk[-size:]

        boundary = SENTENCE_BOUNDARY.search(window)
        if boundary and boundary.end() < len(window):
            return window[boundary.end() :].strip()

        if chunk[-size - 1].isspace():
            return window.strip()

        space = WHITESPACE.search(window)
        if space:
            return window[space.end() :].strip()
        return window

    def chunk_article(
        self, article: RawArticle, text: str | None = None
    ) -> list[TextChunk]:
        """Chunk an article's (already normalized) text into TextChunks."""
        content = article.content if text is None else text
        return [
            self._create_chunk(article, chunk_text, index)
            for index, chunk_text in enumerate(self.split_text(content))
        ]

    def estimate_chunk_count(self, text: str) -> int:
        if not text:
            return 0
        if len(text) <= self.config.max_chunk_size:
            return 1
        effective = self.config.max_chunk_size - self.config.overlap_size
        return math.ceil(len(text) / effective)

    def validate_chunks(self, chunks: list[TextChunk]) -> ChunkValidationReport:
        """
        Report quality problems without blocking anything.

        Flags chunks above max_chunk_size, non-exempt chunks below
        min_chunk_size, and degenerate chunks (too few words or almost no
        vocabulary diversity).
        """
        issues = []
        valid_chunks = 0
        word_counts = [chunk.metadata.word_count for chunk in chunks]
        sole_chunk = len(chunks) == 1

        for chunk in chunks:
            content = chunk.content
            words = content.lower().split()
            chunk_ok = True

            if len(content) > self.config.max_chunk_size:
                issues.append(f"Chunk {chunk.id} exceeds maximum size")
                chunk_ok = False

            exempt = sole_chunk and len(words) >= self.config.min_word_count
            if len(content) < self.config.min_chunk_size and not exempt:
                issues.append(f"Chunk {chunk.id} below minimum size")
                chunk_ok = False

            if len(words) < self.config.min_word_count:
                issues.append(f"Chunk {chunk.id} has insufficient content")
                chunk_ok = False
            elif len(set(words)) / len(words) < self.config.min_vocabulary_diversity:
                issues.append(f"Chunk {chunk.id} has degenerate vocabulary")
                chunk_ok = False

            if chunk_ok:
                valid_chunks += 1

        for issue in issues:
            logger.warning(issue)

        return ChunkValidationReport(
            is_valid=not issues,
            total_chunks=len(chunks),
            valid_chunks=valid_chunks,
            average_word_count=round(sum(word_counts) / len(word_counts))
            if word_counts
            else 0,
            min_word_count=min(word_counts, default=0),
            max_word_count=max(word_counts, default=0),
            issues=issues,
        )

    def _keeps_short_article(self, text: str) -> bool:
        if len(text) >= self.config.min_chunk_size:
            return True
        return word_count(text) >= self.config.min_word_count

    def _seed_overlap(self, pieces: list[str]) -> list[str]:
        chunks = []
        for piece in pieces:
            # seed + separator + piece fits: piece <= unit_budget
            seed = self.overlap_text(chunks[-1]) if chunks else ""
            chunks.append(f"{seed}{PARAGRAPH_SEPARATOR}{piece}" if seed else piece)
        return chunks

    def _create_chunk(self, article: RawArticle, content: str, index: int) -> TextChunk:
        return TextChunk(
            id=f"{article.id}_chunk_{index}",
            article_id=article.id,
            content=content,
            metadata=ChunkMetadata(
                source=article.source,
                category=article.category,
                published_at=article.published_at,
                chunk_index=index,
                word_count=word_count(content),
                tags=list(article.tags),
            ),
        )
