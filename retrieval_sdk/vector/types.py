# retrieval_sdk/vector/types.py
# SPDX-License-Identifier: Apache-2.0
"""
Typed contracts shared by the vector store, its backends and callers.

All shapes are plain dataclasses so they can be built directly, compared in
tests and turned into dicts with `dataclasses.asdict`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Sequence, TypedDict, runtime_checkable


class Provider(str, Enum):
    """Closed set of backends the factory knows about."""

    CHROMADB = "chromadb"
    PGVECTOR = "pgvector"
    PINECONE = "pinecone"
    QDRANT = "qdrant"
    WEAVIATE = "weaviate"


class DistanceMetric(str, Enum):
    COSINE = "cosine"
    EUCLIDEAN = "euclidean"
    DOT_PRODUCT = "dot_product"


class VectorMetadata(TypedDict, total=False):
    """
    Well-known metadata keys for code and document chunks.

    Arbitrary extra keys are allowed on `Document.metadata`; these are the
    ones the indexing pipeline fills in when it knows them.
    """

    file_path: str
    language: str
    chunk_type: str
    name: str
    start_line: int
    end_line: int
    parent_scope: str
    imports: List[str]
    exports: List[str]
    docstring: str
    hash: str
    indexed_at: str


@dataclass(frozen=True)
class Document:
    """
    A content-bearing embedding stored under a collection.

    Attributes:
        id: Unique identifier within the collection
        embedding: Vector of finite floats, length == store dimensions
        content: Text the embedding was computed from
        metadata: Open key-value map (see VectorMetadata for well-known keys)
    """

    id: str
    embedding: List[float]
    content: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class MetadataFilter:
    """
    Recursive boolean filter over document metadata.

    Leaf predicates are maps keyed by field name. All populated predicates
    and the `and_` children must hold; at least one `or_` child must hold
    when `or_` is non-empty. An empty filter matches everything.

        MetadataFilter(
            equals={"language": "python"},
            greater_or_equal={"start_line": 10},
            or_=[MetadataFilter(equals={"chunk_type": "function"}),
                 MetadataFilter(equals={"chunk_type": "class"})],
        )
    """

    equals: Dict[str, Any] = field(default_factory=dict)
    in_: Dict[str, List[Any]] = field(default_factory=dict)
    not_in: Dict[str, List[Any]] = field(default_factory=dict)
    greater_than: Dict[str, float] = field(default_factory=dict)
    greater_or_equal: Dict[str, float] = field(default_factory=dict)
    less_than: Dict[str, float] = field(default_factory=dict)
    less_or_equal: Dict[str, float] = field(default_factory=dict)
    contains: Dict[str, str] = field(default_factory=dict)
    and_: List["MetadataFilter"] = field(default_factory=list)
    or_: List["MetadataFilter"] = field(default_factory=list)


@dataclass(frozen=True)
class SearchQuery:
    """
    Nearest-neighbor query.

    Attributes:
        embedding: Query vector, length == store dimensions
        top_k: Maximum number of results (positive)
        score_threshold: Drop results whose normalized score is below this (0..1)
        filter: Optional metadata filter
        include_content / include_metadata / include_embedding: Echo flags
    """

    embedding: List[float]
    top_k: int = 10
    score_threshold: Optional[float] = None
    filter: Optional[MetadataFilter] = None
    include_content: bool = True
    include_metadata: bool = True
    include_embedding: bool = False


@dataclass(frozen=True)
class HybridSearchQuery(SearchQuery):
    """Keyword + vector query. alpha=1 is vector-only, alpha=0 keyword-only."""

    text: str = ""
    alpha: float = 0.5


@dataclass(frozen=True)
class MMRSearchQuery(SearchQuery):
    """
    Maximal-marginal-relevance query.

    lambda_=1 ranks purely by relevance, lambda_=0 purely by diversity.
    fetch_k defaults to top_k times the store's MMR fetch multiplier.
    """

    lambda_: float = 0.5
    fetch_k: Optional[int] = None


@dataclass(frozen=True)
class SearchResult:
    id: str
    score: float
    content: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    embedding: Optional[List[float]] = None


@dataclass(frozen=True)
class CollectionOptions:
    """Per-collection overrides applied when the collection is provisioned."""

    dimensions: Optional[int] = None
    distance_metric: Optional[DistanceMetric] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CollectionStats:
    name: str
    document_count: int
    dimensions: int
    index_size: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class HealthStatus:
    healthy: bool
    provider: str
    latency_ms: float
    details: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


@runtime_checkable
class EmbeddingProvider(Protocol):
    """
    Embedding source injected by callers.

    The vector layer never calls it; callers embed text and pass vectors in.
    """

    async def embed(self, text: str) -> List[float]: ...

    async def embed_batch(self, texts: Sequence[str]) -> List[List[float]]: ...

    def dimensions(self) -> int: ...


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
]
