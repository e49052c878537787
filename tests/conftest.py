# SPDX-License-Identifier: Apache-2.0
"""
Shared fixtures for the vector store tests.

Stores are built around the in-memory backend in `tests/mock/memory_backend.py`
with 4-dimensional embeddings so vectors stay readable. Set PG_DSN to also
run the live pgvector tests under `tests/live/`.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio

from retrieval_sdk.vector.config import CacheConfig, StoreConfig
from retrieval_sdk.vector.types import Document, DistanceMetric
from retrieval_sdk.vector.vector_base import VectorStore
from tests.mock.memory_backend import InMemoryBackend

DIMS = 4


class RecordingMetrics:
    """MetricsSink that keeps every observation for assertions."""

    def __init__(self) -> None:
        self.observations: List[Dict[str, Any]] = []
        self.counters: List[Dict[str, Any]] = []

    def observe(self, **kwargs: Any) -> None:
        self.observations.append(kwargs)

    def counter(self, **kwargs: Any) -> None:
        self.counters.append(kwargs)

    def ops(self, ok: Optional[bool] = None) -> List[str]:
        return [o["op"] for o in self.observations if ok is None or o["ok"] is ok]


def make_config(
    metric: DistanceMetric = DistanceMetric.COSINE,
    *,
    cache: Optional[CacheConfig] = None,
    metrics: Any = None,
) -> StoreConfig:
    # provider is informational here; the store is assembled directly, not by the factory
    return StoreConfig(
        provider="pgvector",
        dimensions=DIMS,
        distance_metric=metric,
        cache=cache,
        metrics=metrics,
        logger=logging.getLogger("tests.vector_store"),
    )


def doc(doc_id: str, embedding: List[float], content: str = "", **metadata: Any) -> Document:
    return Document(id=doc_id, embedding=embedding, content=content, metadata=metadata)


@pytest.fixture
def metrics() -> RecordingMetrics:
    return RecordingMetrics()


@pytest.fixture
def config(metrics) -> StoreConfig:
    return make_config(cache=CacheConfig(ttl_ms=60_000, max_entries=100), metrics=metrics)


@pytest.fixture
def backend(config) -> InMemoryBackend:
    return InMemoryBackend(config)


@pytest.fixture
def store(backend, config) -> VectorStore:
    """An uninitialized store."""
    return VectorStore(backend, config)


@pytest_asyncio.fixture
async def ready_store(store):
    """An initialized store with an empty `docs` collection."""
    await store.initialize()
    await store.create_collection("docs")
    yield store
    await store.dispose()
