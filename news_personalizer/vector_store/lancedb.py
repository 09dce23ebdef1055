import json
import logging
import math
import threading
from typing import Any

import lancedb
import pandas as pd

from news_personalizer.errors import VectorIndexError
from news_personalizer.ingestion.models import ChunkMetadata, TextChunk
from news_personalizer.utils.dates import parse_datetime, to_utc, utc_now
from news_personalizer.vector_store.models import IndexManifest, chunk_record_model
from news_personalizer.vector_store.vector_store_manager import IndexStorage

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1

CHUNK_COLUMNS = [
    "id",
    "article_id",
    "text",
    "vector",
    "source",
    "category",
    "published_at",
    "chunk_index",
    "word_count",
    "tags",
]

_path_locks: dict[str, threading.Lock] = {}
_path_locks_guard = threading.Lock()


def _lock_for(path: str) -> threading.Lock:
    with _path_locks_guard:
        if path not in _path_locks:
            _path_locks[path] = threading.Lock()
        return _path_locks[path]


class LanceDBIndexStorage(IndexStorage):
    """Persist a vector index as a LanceDB chunks table plus a one-row manifest."""

    def __init__(
        self,
        db_path: str,
        chunks_table: str = "chunks",
        manifest_table: str = "manifest",
        storage_options: dict[str, str] | None = None,
    ):
        self.db_path = db_path
        self.chunks_table = chunks_table
        self.manifest_table = manifest_table
        self.storage_options = storage_options

    def _connect(self):
        logger.debug(f"Connecting to LanceDB at {self.db_path}")
        if self.storage_options:
            return lancedb.connect(self.db_path, storage_options=self.storage_options)
        return lancedb.connect(self.db_path)

    def exists(self) -> bool:
        with _lock_for(self.db_path):
            return self.manifest_table in self._connect().table_names()

    def save(self, chunks: list[TextChunk], dimension: int) -> None:
        records = [self._to_record(chunk) for chunk in chunks]
        manifest = IndexManifest(
            dimension=dimension if records else 0,
            count=len(records),
            saved_at=utc_now().isoformat(),
            format_version=FORMAT_VERSION,
        )

        with _lock_for(self.db_path):
            db = self._connect()
            if records:
                db.create_table(
                    self.chunks_table,
                    data=records,
                    schema=chunk_record_model(dimension),
                    mode="overwrite",
                )
            elif self.chunks_table in db.table_names():
                db.drop_table(self.chunks_table)
            # manifest last: a save interrupted before this point fails the count check on load
            db.create_table(
                self.manifest_table,
                data=[manifest.model_dump()],
                schema=IndexManifest,
                mode="overwrite",
            )

        logger.info(f"Persisted {len(records)} chunks to {self.db_path}")

    def load(self) -> tuple[list[TextChunk], int]:
        with _lock_for(self.db_path):
            db = self._connect()
            tables = db.table_names()
            if self.manifest_table not in tables:
                raise VectorIndexError(f"No persisted index found at {self.db_path}")

            manifest = self._read_manifest(db)
            if manifest.count == 0:
                logger.info(f"Loaded empty index from {self.db_path}")
                return [], manifest.dimension

            if self.chunks_table not in tables:
                raise VectorIndexError(
                    f"Index at {self.db_path} lists {manifest.count} chunks "
                    "but has no chunks table"
                )
            df = self._read_table(db, self.chunks_table)

        chunks = self._to_chunks(df, manifest)
        logger.info(f"Loaded {len(chunks)} chunks from {self.db_path}")
        return chunks, manifest.dimension

    def _read_table(self, db, name: str) -> pd.DataFrame:
        try:
            return db.open_table(name).to_pandas()
        except Exception as e:
            raise VectorIndexError(
                f"Failed to read table {name} at {self.db_path}: {e}"
            ) from e

    def _read_manifest(self, db) -> IndexManifest:
        df = self._read_table(db, self.manifest_table)
        if len(df) != 1:
            raise VectorIndexError(
                f"Corrupt manifest at {self.db_path}: expected 1 row, found {len(df)}"
            )
        try:
            manifest = IndexManifest.model_validate(json.loads(df.to_json(orient="records"))[0])
        except ValueError as e:
            raise VectorIndexError(f"Corrupt manifest at {self.db_path}: {e}") from e

        if manifest.format_version != FORMAT_VERSION:
            raise VectorIndexError(
                f"Unsupported index format version {manifest.format_version}"
            )
        if manifest.count < 0 or manifest.dimension < 0:
            raise VectorIndexError(f"Corrupt manifest at {self.db_path}")
        if manifest.count > 0 and manifest.dimension == 0:
            raise VectorIndexError(
                f"Corrupt manifest at {self.db_path}: chunks without a dimension"
            )
        return manifest

    def _to_chunks(self, df: pd.DataFrame, manifest: IndexManifest) -> list[TextChunk]:
        missing = [column for column in CHUNK_COLUMNS if column not in df.columns]
        if missing:
            raise VectorIndexError(
                f"Corrupt index at {self.db_path}: missing columns {missing}"
            )
        if len(df) != manifest.count:
            raise VectorIndexError(
                f"Corrupt index at {self.db_path}: manifest lists {manifest.count} "
                f"chunks, table holds {len(df)}"
            )

        chunks = []
        for _, row in df.iterrows():
            try:
                vector = [float(value) for value in row["vector"]]
            except (TypeError, ValueError) as e:
                raise VectorIndexError(
                    f"Corrupt index at {self.db_path}: chunk {row['id']} has "
                    "an unreadable vector"
                ) from e
            if len(vector) != manifest.dimension:
                raise VectorIndexError(
                    f"Corrupt index at {self.db_path}: chunk {row['id']} has "
                    f"{len(vector)} dimensions, expected {manifest.dimension}"
                )
            if not all(math.isfinite(value) for value in vector):
                raise VectorIndexError(
                    f"Corrupt index at {self.db_path}: chunk {row['id']} has "
                    "non-finite values"
                )
            try:
                chunks.append(self._from_record(row, vector))
            except (TypeError, ValueError) as e:
                raise VectorIndexError(
                    f"Corrupt index at {self.db_path}: chunk {row['id']}: {e}"
                ) from e
        return chunks

    @staticmethod
    def _to_record(chunk: TextChunk) -> dict[str, Any]:
        metadata = chunk.metadata
        return {
            "id": chunk.id,
            "article_id": chunk.article_id,
            "text": chunk.content,
            "vector": [float(value) for value in chunk.embedding],
            "source": metadata.source,
            "category": metadata.category,
            "published_at": to_utc(metadata.published_at).isoformat(),
            "chunk_index": metadata.chunk_index,
            "word_count": metadata.word_count,
            "tags": list(metadata.tags),
        }

    @staticmethod
    def _from_record(row: pd.Series, vector: list[float]) -> TextChunk:
        return TextChunk(
            id=str(row["id"]),
            article_id=str(row["article_id"]),
            content=str(row["text"]),
            embedding=vector,
            metadata=ChunkMetadata(
                source=str(row["source"]),
                category=str(row["category"]),
                published_at=parse_datetime(str(row["published_at"])),
                chunk_index=int(row["chunk_index"]),
                word_count=int(row["word_count"]),
                tags=[] if row["tags"] is None else [str(tag) for tag in row["tags"]],
            ),
        )
