# retrieval_sdk/vector/__init__.py
# SPDX-License-Identifier: Apache-2.0

"""
Vector store - Public API

All public types, errors, backends and helpers are re-exported here for
clean imports.
"""

from retrieval_sdk.vector.types import (
    # Enums
    Provider,
    DistanceMetric,

    # Data shapes
    VectorMetadata,
    Document,
    MetadataFilter,
    SearchQuery,
    HybridSearchQuery,
    MMRSearchQuery,
    SearchResult,
    CollectionOptions,
    CollectionStats,
    HealthStatus,
    EmbeddingProvider,
)
from retrieval_sdk.vector.config import (
    DEFAULT_DIMENSIONS,
    CacheConfig,
    SearchTuning,
    IndexConfig,
    PgVectorConfig,
    ChromaDBConfig,
    PineconeConfig,
    QdrantConfig,
    WeaviateConfig,
    StoreConfig,
)
from retrieval_sdk.vector.errors import (
    VectorStoreError,
    InvalidConfigError,
    NotInitializedError,
    CollectionNotFoundError,
    CollectionExistsError,
    InvalidEmbeddingDimensionsError,
    InvalidDocumentError,
    InvalidQueryError,
    InvalidFilterError,
    ConnectionError,
    DeadlineExceededError,
    ProviderError,
    ProviderNotSupportedError,
    ProviderNotImplementedError,
)
from retrieval_sdk.vector.distance import (
    distance_to_similarity,
    cosine_similarity,
    euclidean_distance,
    dot_product,
    normalize_vector,
)
from retrieval_sdk.vector.filters import (
    SqlFilter,
    validate_metadata_filter,
    is_empty_filter,
    to_document_store_filter,
    to_sql_filter,
    matches_filter,
    merge_filters,
    where_equals,
    where_in,
    where_range,
)
from retrieval_sdk.vector.cache import (
    CacheStats,
    QueryCache,
    NoopQueryCache,
    make_cache_key,
)
from retrieval_sdk.vector.ranking import (
    MMRCandidate,
    reciprocal_rank_fusion,
    maximal_marginal_relevance,
)
from retrieval_sdk.vector.vector_base import (
    MetricsSink,
    NoopMetrics,
    VectorStoreBackend,
    VectorStore,
)
from retrieval_sdk.vector.pgvector_adapter import PgVectorBackend
from retrieval_sdk.vector.chroma_adapter import ChromaBackend
from retrieval_sdk.vector.factory import (
    UnimplementedBackend,
    VectorStoreFactory,
    vector_store_factory,
    create_vector_store,
    create_pgvector_store,
    create_chroma_store,
)

__all__ = [
    "Provider",
    "DistanceMetric",
    "VectorMetadata",
    "Document",
    "MetadataFilter",
    "SearchQuery",
    "HybridSearchQuery",
    "MMRSearchQuery",
    "SearchResult",
    "CollectionOptions",
    "CollectionStats",
    "HealthStatus",
    "EmbeddingProvider",
    "DEFAULT_DIMENSIONS",
    "CacheConfig",
    "SearchTuning",
    "IndexConfig",
    "PgVectorConfig",
    "ChromaDBConfig",
    "PineconeConfig",
    "QdrantConfig",
    "WeaviateConfig",
    "StoreConfig",
    "VectorStoreError",
    "InvalidConfigError",
    "NotInitializedError",
    "CollectionNotFoundError",
    "CollectionExistsError",
    "InvalidEmbeddingDimensionsError",
    "InvalidDocumentError",
    "InvalidQueryError",
    "InvalidFilterError",
    "ConnectionError",
    "DeadlineExceededError",
    "ProviderError",
    "ProviderNotSupportedError",
    "ProviderNotImplementedError",
    "distance_to_similarity",
    "cosine_similarity",
    "euclidean_distance",
    "dot_product",
    "normalize_vector",
    "SqlFilter",
    "validate_metadata_filter",
    "is_empty_filter",
    "to_document_store_filter",
    "to_sql_filter",
    "matches_filter",
    "merge_filters",
    "where_equals",
    "where_in",
    "where_range",
    "CacheStats",
    "QueryCache",
    "NoopQueryCache",
    "make_cache_key",
    "MMRCandidate",
    "reciprocal_rank_fusion",
    "maximal_marginal_relevance",
    "MetricsSink",
    "NoopMetrics",
    "VectorStoreBackend",
    "VectorStore",
    "PgVectorBackend",
    "ChromaBackend",
    "UnimplementedBackend",
    "VectorStoreFactory",
    "vector_store_factory",
    "create_vector_store",
    "create_pgvector_store",
    "create_chroma_store",
]
