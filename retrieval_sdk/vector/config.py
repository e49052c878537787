# retrieval_sdk/vector/config.py
# SPDX-License-Identifier: Apache-2.0
"""
Store configuration.

`StoreConfig.backend` is a tagged union: exactly one provider-specific
config variant, selected by `StoreConfig.provider`. The factory checks the
pairing against `BACKEND_CONFIG_TYPES` before building anything.

Environment fallbacks
---------------------
- pgvector: PG_DSN, or PGHOST / PGPORT / PGDATABASE / PGUSER / PGPASSWORD
- chromadb: CHROMA_PERSIST_PATH, CHROMA_HOST, CHROMA_PORT
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, Optional, Type, Union

from retrieval_sdk.vector.types import DistanceMetric, Provider

if TYPE_CHECKING:  # pragma: no cover
    from retrieval_sdk.vector.vector_base import MetricsSink

DEFAULT_DIMENSIONS = 1536
DEFAULT_DISTANCE_METRIC = DistanceMetric.COSINE


@dataclass(frozen=True)
class CacheConfig:
    """Query cache settings. Only plain `search` results are cached."""

    enabled: bool = True
    ttl_ms: int = 60_000
    max_entries: int = 1000


@dataclass(frozen=True)
class SearchTuning:
    """
    Ranking and batching constants.

    rrf_k:
        Smoothing offset of reciprocal rank fusion. Larger values flatten
        the difference between top and lower ranks.
    mmr_fetch_multiplier:
        MMR candidate pool size as a multiple of top_k when fetch_k is unset.
    hybrid_fetch_multiplier:
        Per-list candidate limit for hybrid search as a multiple of top_k.
    """

    rrf_k: int = 60
    mmr_fetch_multiplier: int = 4
    hybrid_fetch_multiplier: int = 2
    max_top_k: int = 10_000
    max_fetch_k: int = 40_000
    batch_size: int = 100


@dataclass(frozen=True)
class IndexConfig:
    """ANN index family for pgvector tables: "hnsw" (default) or "ivfflat"."""

    type: str = "hnsw"
    m: int = 16
    ef_construction: int = 64
    lists: int = 100


@dataclass(frozen=True)
class PgVectorConfig:
    connection_string: Optional[str] = None
    pool_size: int = 10
    schema: str = "public"
    index: IndexConfig = field(default_factory=IndexConfig)
    text_search_config: str = "english"
    connect_timeout_s: int = 10

    @classmethod
    def from_env(cls, **overrides) -> "PgVectorConfig":
        """Build a config from PG_DSN or the libpq PG* variables."""
        dsn = os.getenv("PG_DSN")
        if not dsn and os.getenv("PGHOST"):
            dsn = "host={} port={} dbname={} user={} password={}".format(
                os.getenv("PGHOST"),
                os.getenv("PGPORT", "5432"),
                os.getenv("PGDATABASE", "postgres"),
                os.getenv("PGUSER", "postgres"),
                os.getenv("PGPASSWORD", ""),
            )
        overrides.setdefault("connection_string", dsn)
        return cls(**overrides)


@dataclass(frozen=True)
class ChromaDBConfig:
    """Local persistent client when `host` is unset, HTTP client otherwise."""

    persist_path: Optional[str] = None
    host: Optional[str] = None
    port: int = 8000
    anonymized_telemetry: bool = False

    @classmethod
    def from_env(cls, **overrides) -> "ChromaDBConfig":
        overrides.setdefault("persist_path", os.getenv("CHROMA_PERSIST_PATH"))
        overrides.setdefault("host", os.getenv("CHROMA_HOST"))
        if os.getenv("CHROMA_PORT"):
            overrides.setdefault("port", int(os.environ["CHROMA_PORT"]))
        return cls(**overrides)


@dataclass(frozen=True)
class PineconeConfig:
    api_key: str = ""
    environment: str = ""
    index_name: str = ""


@dataclass(frozen=True)
class QdrantConfig:
    url: str = ""
    api_key: Optional[str] = None


@dataclass(frozen=True)
class WeaviateConfig:
    scheme: str = "http"
    host: str = ""
    api_key: Optional[str] = None


BackendConfig = Union[
    PgVectorConfig, ChromaDBConfig, PineconeConfig, QdrantConfig, WeaviateConfig
]

BACKEND_CONFIG_TYPES: Dict[Provider, Type] = {
    Provider.CHROMADB: ChromaDBConfig,
    Provider.PGVECTOR: PgVectorConfig,
    Provider.PINECONE: PineconeConfig,
    Provider.QDRANT: QdrantConfig,
    Provider.WEAVIATE: WeaviateConfig,
}


@dataclass(frozen=True)
class StoreConfig:
    """
    Top-level store configuration.

    Attributes:
        provider: Backend discriminant
        backend: Provider-specific config matching `provider`
        dimensions: Embedding width, fixed for the store's lifetime
            (defaults to DEFAULT_DIMENSIONS at the factory)
        distance_metric: Similarity metric (defaults to cosine at the factory)
        cache: Query cache settings; None disables caching
        tuning: Ranking and batching constants
        logger: Logger override; defaults to the module logger
        metrics: MetricsSink for operation timings
    """

    provider: Union[Provider, str]
    backend: Optional[BackendConfig] = None
    dimensions: Optional[int] = None
    distance_metric: Optional[Union[DistanceMetric, str]] = None
    cache: Optional[CacheConfig] = None
    tuning: SearchTuning = field(default_factory=SearchTuning)
    logger: Optional[logging.Logger] = None
    metrics: Optional["MetricsSink"] = None


__all__ = [
    "DEFAULT_DIMENSIONS",
    "DEFAULT_DISTANCE_METRIC",
    "CacheConfig",
    "SearchTuning",
    "IndexConfig",
    "PgVectorConfig",
    "ChromaDBConfig",
    "PineconeConfig",
    "QdrantConfig",
    "WeaviateConfig",
    "BackendConfig",
    "BACKEND_CONFIG_TYPES",
    "StoreConfig",
]
