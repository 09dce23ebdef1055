import logging
import math
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError

from news_personalizer.embeddings.embeddings_client import BaseEmbeddingsClient
from news_personalizer.embeddings.models import (
    EmbeddingBatchResult,
    EmbeddingConfig,
    EmbeddingMetrics,
)
from news_personalizer.errors import EmbeddingError
from news_personalizer.ingestion.models import TextChunk

logger = logging.getLogger(__name__)


def validate_embedding(
    embedding: list[float], expected_dimensions: int = 0
) -> tuple[bool, list[str]]:
    """
    Check that an embedding vector is usable for similarity search.

    Args:
        embedding: The vector to check
        expected_dimensions: Required length, 0 to skip the length check

    Returns:
        Tuple of (is_valid, issues)
    """
    issues = []
    if not embedding:
        return False, ["Embedding is empty"]

    if expected_dimensions and len(embedding) != expected_dimensions:
        issues.append(
            f"Expected {expected_dimensions} dimensions, got {len(embedding)}"
        )

    try:
        values = [float(value) for value in embedding]
    except (TypeError, ValueError):
        issues.append("Embedding contains non-numeric values")
        return False, issues

    if not all(math.isfinite(value) for value in values):
        issues.append("Embedding contains non-finite values")
    elif all(value == 0.0 for value in values):
        issues.append("Embedding is all zeros")

    return not issues, issues


class EmbeddingGenerator:
    """Turn chunk texts into vectors in bounded, retried batches."""

    def __init__(
        self,
        embeddings_client: BaseEmbeddingsClient,
        config: EmbeddingConfig | None = None,
    ):
        self.embeddings_client = embeddings_client
        self.config = config or EmbeddingConfig()

    def generate(self, texts: list[str]) -> EmbeddingBatchResult:
        """
        Embed texts in batches through a bounded worker pool.

        Every batch gets up to ``max_retries`` more attempts after its first
        one. A batch that raises, times out, or returns the wrong number of
        vectors is retried; once it runs out of attempts its items get empty
        placeholders and the remaining batches carry on.

        Args:
            texts: Texts to embed

        Returns:
            EmbeddingBatchResult aligned with ``texts``
        """
        start = time.perf_counter()
        embeddings: list[list[float]] = [[] for _ in texts]
        errors: list[str | None] = [None for _ in texts]
        metrics = EmbeddingMetrics(total_chunks=len(texts))

        batches = [
            list(range(i, min(i + self.config.batch_size, len(texts))))
            for i in range(0, len(texts), self.config.batch_size)
        ]
        metrics.batch_count = len(batches)

        if batches:
            self._run_batches(texts, batches, embeddings, errors, metrics)

        metrics.failed_embeddings = sum(1 for error in errors if error is not None)
        metrics.successful_embeddings = len(texts) - metrics.failed_embeddings
        metrics.processing_time_ms = (time.perf_counter() - start) * 1000
        metrics.average_time_per_chunk_ms = (
            metrics.processing_time_ms / len(texts) if texts else 0.0
        )

        logger.info(
            f"Embedded {metrics.successful_embeddings}/{metrics.total_chunks} texts "
            f"in {metrics.batch_count} batches ({metrics.retry_count} retries)"
        )
        return EmbeddingBatchResult(embeddings=embeddings, errors=errors, metrics=metrics)

    def embed_chunks(
        self, chunks: list[TextChunk]
    ) -> tuple[list[TextChunk], EmbeddingMetrics]:
        """Return copies of the chunks with embeddings filled in where they succeeded."""
        result = self.generate([chunk.content for chunk in chunks])
        embedded = [
            chunk.model_copy(update={"embedding": vector})
            for chunk, vector in zip(chunks, result.embeddings)
        ]
        for chunk, error in zip(chunks, result.errors):
            if error is not None:
                logger.warning(f"Chunk {chunk.id} left without embedding: {error}")
                result.metrics.failed_chunks[chunk.id] = error
        return embedded, result.metrics

    def embed_query(self, text: str) -> list[float]:
        """
        Embed a single query string through the backend's query path.

        Failed calls are retried like a batch. An invalid vector is not
        retried.

        Raises:
            EmbeddingError: If every attempt fails or the vector is invalid
        """
        start = time.perf_counter()
        metrics = EmbeddingMetrics(total_chunks=1, batch_count=1)
        last_error = None

        for attempt in range(self.config.max_retries + 1):
            if attempt > 0:
                metrics.retry_count += 1
                time.sleep(self.config.retry_delay * attempt)
            try:
                vector = self.embeddings_client.embed_query(text)
            except Exception as e:
                last_error = str(e) or type(e).__name__
                logger.warning(f"Query embedding attempt {attempt + 1} failed: {last_error}")
                continue
            metrics.processing_time_ms = (time.perf_counter() - start) * 1000
            return self._checked_query_vector(vector, metrics)

        message = (
            f"Failed to embed query after {self.config.max_retries} retries: {last_error}"
        )
        metrics.failed_embeddings = 1
        metrics.errors.append(message)
        metrics.processing_time_ms = (time.perf_counter() - start) * 1000
        raise EmbeddingError(message, metrics=metrics)

    def _checked_query_vector(
        self, vector: list[float], metrics: EmbeddingMetrics
    ) -> list[float]:
        issues = []
        if self.config.validate_embeddings:
            _, issues = validate_embedding(vector, self.config.expected_dimensions)
        if not issues:
            try:
                metrics.successful_embeddings = 1
                return [float(value) for value in vector]
            except (TypeError, ValueError):
                issues = ["non-numeric values"]
        metrics.successful_embeddings = 0
        metrics.failed_embeddings = 1
        message = f"Invalid query embedding: {'; '.join(issues)}"
        metrics.errors.append(message)
        raise EmbeddingError(message, metrics=metrics)

    def _run_batches(
        self,
        texts: list[str],
        batches: list[list[int]],
        embeddings: list[list[float]],
        errors: list[str | None],
        metrics: EmbeddingMetrics,
    ) -> None:
        pending = list(range(len(batches)))
        last_errors: dict[int, str] = {}
        executor = ThreadPoolExecutor(max_workers=self.config.max_workers)

        try:
            for attempt in range(self.config.max_retries + 1):
                if not pending:
                    break
                if attempt > 0:
                    metrics.retry_count += len(pending)
                    logger.info(
                        f"Retrying {len(pending)} batches (attempt {attempt})"
                    )
                    time.sleep(self.config.retry_delay * attempt)

                futures: dict[int, Future] = {
                    batch_no: executor.submit(
                        self.embeddings_client.embed_texts,
                        [texts[i] for i in batches[batch_no]],
                    )
                    for batch_no in pending
                }

                failed = []
                for batch_no, future in futures.items():
                    error = self._collect(
                        future, batches[batch_no], embeddings, errors
                    )
                    if error is not None:
                        logger.warning(f"Batch {batch_no} failed: {error}")
                        last_errors[batch_no] = error
                        failed.append(batch_no)
                pending = failed
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        for batch_no in pending:
            message = (
                f"Batch {batch_no} failed after {self.config.max_retries} retries: "
                f"{last_errors[batch_no]}"
            )
            logger.error(message)
            metrics.errors.append(message)
            for i in batches[batch_no]:
                errors[i] = message

    def _collect(
        self,
        future: Future,
        indices: list[int],
        embeddings: list[list[float]],
        errors: list[str | None],
    ) -> str | None:
        """Store one batch's vectors; return an error message if the batch must be retried."""
        try:
            vectors = future.result(timeout=self.config.batch_timeout)
        except FuturesTimeoutError:
            future.cancel()
            return f"timed out after {self.config.batch_timeout}s"
        except Exception as e:
            return str(e) or type(e).__name__

        if vectors is None or len(vectors) != len(indices):
            got = 0 if vectors is None else len(vectors)
            return f"expected {len(indices)} vectors, got {got}"

        for i, vector in zip(indices, vectors):
            if self.config.validate_embeddings:
                is_valid, issues = validate_embedding(
                    vector, self.config.expected_dimensions
                )
                if not is_valid:
                    embeddings[i] = []
                    errors[i] = f"Invalid embedding: {'; '.join(issues)}"
                    continue
            try:
                embeddings[i] = [float(value) for value in vector]
            except (TypeError, ValueError):
                embeddings[i] = []
                errors[i] = "Invalid embedding: non-numeric values"
                continue
            errors[i] = None
        return None
