"""Tests for vector_store.lancedb module."""

import lancedb
import pandas as pd
import pytest

from news_personalizer.errors import VectorIndexError
from news_personalizer.vector_store.lancedb import FORMAT_VERSION, LanceDBIndexStorage
from news_personalizer.vector_store.models import VectorIndexConfig, VectorQuery
from news_personalizer.vector_store.vector_index import VectorIndex

from helpers import NOW, hours_ago, make_chunk


@pytest.fixture
def storage(tmp_path) -> LanceDBIndexStorage:
    return LanceDBIndexStorage(str(tmp_path / "index"))


def populated_index(storage: LanceDBIndexStorage) -> VectorIndex:
    index = VectorIndex(storage=storage)
    index.insert(
        [
            make_chunk("a_chunk_0", [1.0, 0.0, 0.5], tags=["economy", "rates"]),
            make_chunk("a_chunk_1", [0.2, 1.0, 0.0], chunk_index=1),
            make_chunk(
                "b_chunk_0",
                [0.0, 0.3, 1.0],
                category="sports",
                source="daily",
                published_at=hours_ago(30),
            ),
        ]
    )
    return index


class TestLanceDBIndexStorage:
    def test_missing_index(self, storage) -> None:
        assert not storage.exists()
        with pytest.raises(VectorIndexError):
            storage.load()

    def test_round_trip_preserves_chunks(self, storage) -> None:
        index = populated_index(storage)
        index.persist()
        assert storage.exists()

        chunks, dimension = storage.load()

        assert dimension == 3
        by_id = {chunk.id: chunk for chunk in chunks}
        assert set(by_id) == {"a_chunk_0", "a_chunk_1", "b_chunk_0"}
        first = by_id["a_chunk_0"]
        assert first.embedding == pytest.approx([1.0, 0.0, 0.5])
        assert first.metadata.tags == ["economy", "rates"]
        assert first.metadata.published_at == NOW
        assert by_id["a_chunk_1"].metadata.chunk_index == 1
        assert by_id["b_chunk_0"].metadata.category == "sports"
        assert by_id["b_chunk_0"].metadata.published_at == hours_ago(30)

    def test_loaded_index_answers_like_original(self, storage) -> None:
        original = populated_index(storage)
        original.persist()

        restored = VectorIndex(storage=storage)
        restored.load()

        query = VectorQuery(vector=[0.1, 0.9, 0.2])
        before = original.search(query, k=3).results
        after = restored.search(query, k=3).results
        assert [r.chunk.id for r in after] == [r.chunk.id for r in before]
        assert [r.relevance_score for r in after] == pytest.approx(
            [r.relevance_score for r in before], abs=1e-6
        )
        assert restored.dimension == 3

    def test_save_overwrites_previous_state(self, storage) -> None:
        index = populated_index(storage)
        index.persist()
        index.delete_article("a")
        index.persist()

        chunks, _ = storage.load()

        assert [chunk.id for chunk in chunks] == ["b_chunk_0"]

    def test_empty_index_round_trip(self, storage) -> None:
        index = populated_index(storage)
        index.persist()
        index.clear()
        index.persist()

        restored = VectorIndex(storage=storage)
        restored.load()

        assert len(restored) == 0
        assert restored.dimension is None

    def test_manifest_count_mismatch_detected(self, storage) -> None:
        populated_index(storage).persist()
        db = lancedb.connect(storage.db_path)
        db.create_table(
            storage.manifest_table,
            data=[
                {
                    "dimension": 3,
                    "count": 5,
                    "saved_at": NOW.isoformat(),
                    "format_version": FORMAT_VERSION,
                }
            ],
            mode="overwrite",
        )

        with pytest.raises(VectorIndexError, match="manifest lists 5"):
            storage.load()

    def test_unknown_format_version_rejected(self, storage) -> None:
        populated_index(storage).persist()
        db = lancedb.connect(storage.db_path)
        db.create_table(
            storage.manifest_table,
            data=[
                {
                    "dimension": 3,
                    "count": 3,
                    "saved_at": NOW.isoformat(),
                    "format_version": FORMAT_VERSION + 1,
                }
            ],
            mode="overwrite",
        )

        with pytest.raises(VectorIndexError, match="format version"):
            storage.load()

    def test_configured_dimension_mismatch_on_load(self, storage) -> None:
        populated_index(storage).persist()
        index = VectorIndex(VectorIndexConfig(dimensions=8), storage=storage)

        with pytest.raises(VectorIndexError):
            index.load()
        assert len(index) == 0

    def test_chunks_table_has_vector_schema(self, storage) -> None:
        populated_index(storage).persist()

        schema = lancedb.connect(storage.db_path).open_table(storage.chunks_table).schema

        assert schema.field("vector").type.list_size == 3
        assert str(schema.field("tags").type.value_type) == "string"


def chunk_row(chunk_id: str, vector: list[float]) -> dict:
    return {
        "id": chunk_id,
        "article_id": chunk_id.split("_chunk_")[0],
        "text": f"Content of {chunk_id}",
        "vector": vector,
        "source": "wire",
        "category": "technology",
        "published_at": NOW.isoformat(),
        "chunk_index": 0,
        "word_count": 3,
        "tags": ["economy"],
    }


def overwrite_chunks(storage: LanceDBIndexStorage, rows: list[dict]) -> None:
    db = lancedb.connect(storage.db_path)
    db.create_table(storage.chunks_table, data=rows, mode="overwrite")


class TestCorruptChunksTable:
    def test_missing_columns_detected(self, storage) -> None:
        populated_index(storage).persist()
        rows = [chunk_row(f"{name}_chunk_0", [1.0, 0.0, 0.5]) for name in "abc"]
        for row in rows:
            del row["word_count"]
        overwrite_chunks(storage, rows)

        with pytest.raises(VectorIndexError, match="missing columns"):
            storage.load()

    def test_vector_length_mismatch_detected(self, storage) -> None:
        populated_index(storage).persist()
        overwrite_chunks(
            storage, [chunk_row(f"{name}_chunk_0", [1.0, 0.0, 0.5, 0.2]) for name in "abc"]
        )

        with pytest.raises(VectorIndexError, match="4 dimensions, expected 3"):
            storage.load()

    def test_non_finite_values_detected(self, storage, monkeypatch) -> None:
        populated_index(storage).persist()
        read_table = storage._read_table

        def tampered(db, name):
            df = read_table(db, name)
            if name == storage.chunks_table:
                vectors = [list(vector) for vector in df["vector"]]
                vectors[0][1] = float("inf")
                df["vector"] = pd.Series(vectors, index=df.index, dtype=object)
            return df

        monkeypatch.setattr(storage, "_read_table", tampered)

        with pytest.raises(VectorIndexError, match="non-finite"):
            storage.load()

    def test_corrupt_index_leaves_loaded_state_alone(self, storage) -> None:
        populated_index(storage).persist()
        index = VectorIndex(storage=storage)
        index.load()
        overwrite_chunks(
            storage, [chunk_row(f"{name}_chunk_0", [1.0, 0.0, 0.5, 0.2]) for name in "abc"]
        )

        with pytest.raises(VectorIndexError):
            index.load()

        assert len(index) == 3
        assert index.dimension == 3
