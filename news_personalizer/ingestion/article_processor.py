import logging
import time
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from news_personalizer.errors import ProcessingError, ValidationError
from news_personalizer.ingestion.chunker import TextChunker
from news_personalizer.ingestion.models import (
    ArticleProcessingError,
    ArticleProcessingResult,
    BatchProcessingSummary,
    ProcessingMetrics,
    RawArticle,
    TextChunk,
)
from news_personalizer.ingestion.text_normalizer import TextNormalizer

logger = logging.getLogger(__name__)


class ArticleValidator:
    """Validate raw article records before they enter the pipeline."""

    @staticmethod
    def validate_article(article: RawArticle | dict[str, Any]) -> RawArticle:
        """
        Coerce and validate an article record.

        Args:
            article: A RawArticle or a mapping with the same fields

        Returns:
            The validated RawArticle

        Raises:
            ValidationError: If required fields are missing or malformed
        """
        if isinstance(article, RawArticle):
            return article
        if not isinstance(article, dict):
            raise ValidationError(
                f"Expected an article record, got {type(article).__name__}"
            )
        try:
            return RawArticle.model_validate(article)
        except PydanticValidationError as e:
            article_id = article.get("id") or "unknown"
            raise ValidationError(f"Invalid article {article_id}: {e}") from e


class ArticleProcessor:
    """Normalize and chunk articles for embedding and indexing."""

    def __init__(
        self,
        chunker: TextChunker,
        normalizer: TextNormalizer | None = None,
        enable_validation: bool = True,
    ):
        self.chunker = chunker
        self.normalizer = normalizer or TextNormalizer()
        self.enable_validation = enable_validation

    def process_article(
        self, article: RawArticle | dict[str, Any]
    ) -> tuple[list[TextChunk], ProcessingMetrics]:
        """
        Process a single article into clean, chunked text segments.

        Args:
            article: Raw article record

        Returns:
            Tuple of (chunks, processing metrics)

        Raises:
            ValidationError: If the article record is malformed
            ProcessingError: If normalization or chunking fails
        """
        article = ArticleValidator.validate_article(article)
        start = time.perf_counter()

        try:
            cleaned = self.normalizer.normalize(article.content)
            chunks = self.chunker.chunk_article(article, cleaned)
        except Exception as e:
            logger.error(f"Error processing article {article.id}: {str(e)}")
            raise ProcessingError(
                f"Failed to process article {article.id}: {e}", article_id=article.id
            ) from e

        validation_passed = True
        issues: list[str] = []
        if self.enable_validation:
            report = self.chunker.validate_chunks(chunks)
            validation_passed = report.is_valid
            issues = report.issues
        if not chunks:
            issues.append(f"Article {article.id} produced no chunks")

        metrics = ProcessingMetrics(
            article_id=article.id,
            original_length=len(article.content),
            cleaned_length=len(cleaned),
            chunk_count=len(chunks),
            average_chunk_size=round(sum(len(c.content) for c in chunks) / len(chunks))
            if chunks
            else 0,
            processing_time_ms=(time.perf_counter() - start) * 1000,
            validation_passed=validation_passed,
            issues=issues,
        )

        logger.info(
            f"Processed article '{article.headline}' into {len(chunks)} chunks"
        )
        return chunks, metrics

    def process_articles(
        self, articles: list[RawArticle | dict[str, Any]]
    ) -> tuple[list[ArticleProcessingResult], BatchProcessingSummary]:
        """Process a batch; one bad article never fails the others."""
        results: list[ArticleProcessingResult] = []
        errors: list[ArticleProcessingError] = []
        total_time = 0.0

        for article in articles:
            article_id = article_id_of(article)
            try:
                chunks, metrics = self.process_article(article)
            except (ValidationError, ProcessingError) as e:
                logger.warning(f"Skipping article {article_id}: {e}")
                errors.append(ArticleProcessingError(article_id=article_id, error=str(e)))
                continue
            results.append(
                ArticleProcessingResult(article_id=article_id, chunks=chunks, metrics=metrics)
            )
            total_time += metrics.processing_time_ms

        summary = BatchProcessingSummary(
            total_articles=len(articles),
            successfully_processed=len(results),
            total_chunks=sum(len(r.chunks) for r in results),
            average_processing_time_ms=total_time / len(results) if results else 0.0,
            errors=errors,
        )
        return results, summary


def article_id_of(article: Any) -> str:
    if isinstance(article, RawArticle):
        return article.id
    if isinstance(article, dict):
        return str(article.get("id") or "unknown")
    return "unknown"
