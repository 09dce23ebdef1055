from .vector_store_manager import BaseVectorIndex, IndexStorage
from .lancedb import LanceDBIndexStorage
from .models import (
    DateRange,
    InsertResult,
    SearchFilters,
    SearchResponse,
    SearchResult,
    TextQuery,
    VectorIndexConfig,
    VectorQuery,
)
from .vector_index import VectorIndex

__all__ = [
    "BaseVectorIndex",
    "DateRange",
    "IndexStorage",
    "InsertResult",
    "LanceDBIndexStorage",
    "SearchFilters",
    "SearchResponse",
    "SearchResult",
    "TextQuery",
    "VectorIndex",
    "VectorIndexConfig",
    "VectorQuery",
]
