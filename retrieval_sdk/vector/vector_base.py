# retrieval_sdk/vector/vector_base.py
# SPDX-License-Identifier: Apache-2.0
"""
Retrieval SDK — Vector store core

Purpose
-------
A provider-agnostic API for storing embeddings under named collections and
querying them by nearest neighbor, hybrid keyword + vector relevance, or
maximal marginal relevance.

This module provides:

- `VectorStoreBackend`, the narrow protocol a concrete backend implements
  (the `do_*` hooks)
- `VectorStore`, a single wrapper that adds lifecycle, validation,
  read-through caching, deadline enforcement, logging and metrics around
  any backend
- `MetricsSink` / `NoopMetrics`, the metrics seam

Design Philosophy
-----------------
- Composition over inheritance: backends carry no cross-cutting logic; the
  wrapper never contains backend-specific logic.
- Fail before I/O: every input is validated before a hook is called, so a
  rejected call never leaves partial state.
- Async-first: every hook is a coroutine; blocking clients are pushed onto
  worker threads by the backends.
- No hidden retries: errors carry a `retryable` hint and propagate.

Lifecycle
---------
A store starts uninitialized. `initialize()` is idempotent (a second call
logs a warning and returns). Every other operation except `dispose()` and
`health_check()` raises NotInitializedError until then. `dispose()` is
idempotent, releases backend resources, clears the cache and returns the
store to the uninitialized state.

Caching
-------
Only plain `search` is cached. Every write (upsert, delete, collection
create/delete) invalidates that collection's entries and no others.
"""

from __future__ import annotations

import asyncio
import dataclasses
import hashlib
import logging
import math
import re
import time
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Protocol,
    Sequence,
    runtime_checkable,
)

from retrieval_sdk.core.operation_context import OperationContext
from retrieval_sdk.vector.cache import Cache, CacheStats, QueryCache, make_cache_key
from retrieval_sdk.vector.config import (
    DEFAULT_DIMENSIONS,
    DEFAULT_DISTANCE_METRIC,
    SearchTuning,
    StoreConfig,
)
from retrieval_sdk.vector.errors import (
    DeadlineExceededError,
    InvalidConfigError,
    InvalidDocumentError,
    InvalidEmbeddingDimensionsError,
    InvalidQueryError,
    NotInitializedError,
    ProviderError,
    VectorStoreError,
)
from retrieval_sdk.vector.filters import is_empty_filter, validate_metadata_filter
from retrieval_sdk.vector.types import (
    CollectionOptions,
    CollectionStats,
    DistanceMetric,
    Document,
    HealthStatus,
    HybridSearchQuery,
    MetadataFilter,
    MMRSearchQuery,
    SearchQuery,
    SearchResult,
)

LOG = logging.getLogger(__name__)

COLLECTION_NAME_RE = re.compile(r"[A-Za-z0-9_-]+")

# =============================================================================
# Metrics Interface (low-cardinality)
# =============================================================================


class MetricsSink(Protocol):
    """
    Protocol for metrics collection implementations.

    Implementations must be cheap and must not raise; the store swallows
    sink failures so metrics never break an operation.
    """

    def observe(
        self,
        *,
        component: str,
        op: str,
        ms: float,
        ok: bool,
        code: str = "OK",
        extra: Optional[Mapping[str, Any]] = None,
    ) -> None:
        """Record an operation latency observation."""
        ...

    def counter(
        self,
        *,
        component: str,
        name: str,
        value: int = 1,
        extra: Optional[Mapping[str, Any]] = None,
    ) -> None:
        """Increment a counter metric."""
        ...


class NoopMetrics:
    """No-op metrics implementation for when metrics collection is disabled."""
    def observe(self, **_: Any) -> None: ...
    def counter(self, **_: Any) -> None: ...


# =============================================================================
# Backend protocol
# =============================================================================

BACKEND_HOOKS = (
    "do_initialize",
    "do_dispose",
    "do_health_check",
    "do_create_collection",
    "do_delete_collection",
    "do_list_collections",
    "do_get_collection_stats",
    "do_collection_exists",
    "do_upsert",
    "do_delete",
    "do_get",
    "do_count",
    "do_search",
    "do_hybrid_search",
    "do_mmr_search",
    "do_optimize",
    "do_vacuum",
)


@runtime_checkable
class VectorStoreBackend(Protocol):
    """
    The operations a concrete backend must provide.

    Hooks receive inputs that the wrapper has already validated, and must
    return normalized scores in [0, 1]. `ctx` carries the caller's deadline.
    """

    provider: str

    async def do_initialize(self, *, ctx: Optional[OperationContext] = None) -> None: ...
    async def do_dispose(self, *, ctx: Optional[OperationContext] = None) -> None: ...
    async def do_health_check(self, *, ctx: Optional[OperationContext] = None) -> Dict[str, Any]: ...

    async def do_create_collection(
        self, name: str, options: CollectionOptions, *, ctx: Optional[OperationContext] = None
    ) -> None: ...
    async def do_delete_collection(self, name: str, *, ctx: Optional[OperationContext] = None) -> None: ...
    async def do_list_collections(self, *, ctx: Optional[OperationContext] = None) -> List[str]: ...
    async def do_get_collection_stats(
        self, name: str, *, ctx: Optional[OperationContext] = None
    ) -> CollectionStats: ...
    async def do_collection_exists(self, name: str, *, ctx: Optional[OperationContext] = None) -> bool: ...

    async def do_upsert(
        self, collection: str, documents: Sequence[Document], *, ctx: Optional[OperationContext] = None
    ) -> None: ...
    async def do_delete(
        self, collection: str, ids: Sequence[str], *, ctx: Optional[OperationContext] = None
    ) -> None: ...
    async def do_get(
        self, collection: str, ids: Sequence[str], *, ctx: Optional[OperationContext] = None
    ) -> List[Document]: ...
    async def do_count(
        self, collection: str, filter: Optional[MetadataFilter], *, ctx: Optional[OperationContext] = None
    ) -> int: ...

    async def do_search(
        self, collection: str, query: SearchQuery, *, ctx: Optional[OperationContext] = None
    ) -> List[SearchResult]: ...
    async def do_hybrid_search(
        self, collection: str, query: HybridSearchQuery, *, ctx: Optional[OperationContext] = None
    ) -> List[SearchResult]: ...
    async def do_mmr_search(
        self, collection: str, query: MMRSearchQuery, *, ctx: Optional[OperationContext] = None
    ) -> List[SearchResult]: ...

    async def do_optimize(self, collection: str, *, ctx: Optional[OperationContext] = None) -> None: ...
    async def do_vacuum(self, collection: str, *, ctx: Optional[OperationContext] = None) -> None: ...


# =============================================================================
# Store wrapper
# =============================================================================


class VectorStore:
    """
    Cross-cutting wrapper around a `VectorStoreBackend`.

    Built by `VectorStoreFactory.create`; construct directly only when
    plugging in a custom backend:

        store = VectorStore(MyBackend(config), config)
        await store.initialize()
        await store.create_collection("docs")
        await store.upsert("docs", [Document(id="a", embedding=[...], content="...")])
        hits = await store.search("docs", SearchQuery(embedding=[...], top_k=5))
    """

    _component = "vector_store"

    def __init__(
        self,
        backend: VectorStoreBackend,
        config: StoreConfig,
        *,
        cache: Optional[Cache] = None,
    ) -> None:
        missing = [h for h in BACKEND_HOOKS if not callable(getattr(backend, h, None))]
        if missing:
            raise InvalidConfigError(
                f"backend {type(backend).__name__} is missing hooks: {', '.join(missing)}",
                details={"missing": missing},
            )
        self._backend = backend
        self._config = config
        self._dimensions = int(config.dimensions or DEFAULT_DIMENSIONS)
        self._metric = DistanceMetric(config.distance_metric or DEFAULT_DISTANCE_METRIC)
        self._tuning: SearchTuning = config.tuning
        self._log = config.logger or LOG
        self._metrics: MetricsSink = config.metrics or NoopMetrics()
        self._cache: Cache = cache if cache is not None else QueryCache.from_config(config.cache)
        self._initialized = False
        self._init_lock = asyncio.Lock()

    # ------------------------------------------------------------------ #
    # Properties
    # ------------------------------------------------------------------ #

    @property
    def provider(self) -> str:
        return str(getattr(self._backend, "provider", "unknown"))

    @property
    def dimensions(self) -> int:
        return self._dimensions

    @property
    def distance_metric(self) -> DistanceMetric:
        return self._metric

    @property
    def config(self) -> StoreConfig:
        return self._config

    @property
    def backend(self) -> VectorStoreBackend:
        return self._backend

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def cache_stats(self) -> CacheStats:
        return self._cache.stats()

    # ------------------------------------------------------------------ #
    # Validation
    # ------------------------------------------------------------------ #

    def ensure_initialized(self) -> None:
        if not self._initialized:
            raise NotInitializedError(provider=self.provider)

    def validate_collection_name(self, name: str) -> None:
        if not isinstance(name, str) or not name:
            raise InvalidConfigError("collection name must be a non-empty string", provider=self.provider)
        if not COLLECTION_NAME_RE.fullmatch(name):
            raise InvalidConfigError(
                f"invalid collection name '{name}': only letters, digits, '_' and '-' are allowed",
                provider=self.provider,
                details={"collection": name},
            )

    def _check_embedding(self, embedding: Any, error_cls: type, what: str) -> None:
        if not isinstance(embedding, (list, tuple)) or len(embedding) == 0:
            raise error_cls(f"{what} embedding must be a non-empty list of numbers", provider=self.provider)
        if len(embedding) != self._dimensions:
            raise InvalidEmbeddingDimensionsError(self._dimensions, len(embedding), provider=self.provider)
        for i, x in enumerate(embedding):
            if isinstance(x, bool) or not isinstance(x, (int, float)) or not math.isfinite(x):
                raise error_cls(
                    f"{what} embedding contains a non-finite or non-numeric value at index {i}",
                    provider=self.provider,
                    details={"index": i},
                )

    def validate_document(self, doc: Document) -> None:
        if not isinstance(doc, Document):
            raise InvalidDocumentError(f"expected Document, got {type(doc).__name__}", provider=self.provider)
        if not isinstance(doc.id, str) or not doc.id.strip():
            raise InvalidDocumentError("document id must be a non-empty string", provider=self.provider)
        self._check_embedding(doc.embedding, InvalidDocumentError, f"document '{doc.id}'")
        if not isinstance(doc.content, str):
            raise InvalidDocumentError(
                f"document '{doc.id}' content must be a string", provider=self.provider
            )
        if not isinstance(doc.metadata, Mapping):
            raise InvalidDocumentError(
                f"document '{doc.id}' metadata must be a mapping", provider=self.provider
            )

    def validate_search_query(self, query: SearchQuery) -> None:
        if not isinstance(query, SearchQuery):
            raise InvalidQueryError(f"expected SearchQuery, got {type(query).__name__}", provider=self.provider)
        self._check_embedding(query.embedding, InvalidQueryError, "query")
        if isinstance(query.top_k, bool) or not isinstance(query.top_k, int) or query.top_k <= 0:
            raise InvalidQueryError(
                "top_k must be a positive integer", provider=self.provider, details={"top_k": query.top_k}
            )
        if query.score_threshold is not None:
            self._check_unit_interval("score_threshold", query.score_threshold)
        if query.filter is not None:
            validate_metadata_filter(query.filter)

        if isinstance(query, HybridSearchQuery):
            if not isinstance(query.text, str) or not query.text.strip():
                raise InvalidQueryError("hybrid search requires a non-empty text query", provider=self.provider)
            self._check_unit_interval("alpha", query.alpha)

        if isinstance(query, MMRSearchQuery):
            self._check_unit_interval("lambda", query.lambda_)
            if query.fetch_k is not None and (
                isinstance(query.fetch_k, bool) or not isinstance(query.fetch_k, int) or query.fetch_k <= 0
            ):
                raise InvalidQueryError(
                    "fetch_k must be a positive integer", provider=self.provider, details={"fetch_k": query.fetch_k}
                )

    def _check_unit_interval(self, name: str, value: Any) -> None:
        if isinstance(value, bool) or not isinstance(value, (int, float)) or not (0.0 <= value <= 1.0):
            raise InvalidQueryError(
                f"{name} must be between 0 and 1", provider=self.provider, details={name: value}
            )

    # ------------------------------------------------------------------ #
    # Instrumentation and deadlines
    # ------------------------------------------------------------------ #

    @staticmethod
    def _tenant_hash(tenant: Optional[str]) -> Optional[str]:
        if not tenant:
            return None
        return hashlib.sha256(tenant.encode()).hexdigest()[:12]

    def _record(
        self,
        op: str,
        t0: float,
        ok: bool,
        *,
        code: str = "OK",
        ctx: Optional[OperationContext] = None,
        **extra: Any,
    ) -> float:
        """
        Record operation metrics; returns the elapsed milliseconds.
        """
        ms = (time.monotonic() - t0) * 1000.0
        try:
            x = dict(extra or {})
            x.setdefault("provider", self.provider)
            if ctx:
                tenant_h = self._tenant_hash(ctx.tenant)
                if tenant_h:
                    x.setdefault("tenant_hash", tenant_h)
            self._metrics.observe(
                component=self._component,
                op=op,
                ms=ms,
                ok=ok,
                code=code,
                extra=x or None,
            )
        except Exception:  # noqa: BLE001
            # Never let metrics recording break the operation
            self._log.debug("metrics sink failed for %s", op, exc_info=True)
        return ms

    def _fail_if_expired(self, ctx: Optional[OperationContext]) -> None:
        """
        Fail fast if ctx.deadline_ms is already expired.
        """
        if ctx is None or ctx.deadline_ms is None:
            return
        if ctx.remaining_ms() == 0:
            raise DeadlineExceededError(
                "operation timed out (preflight)", provider=self.provider, details={"preflight": True}
            )

    async def _apply_deadline(self, coro: Awaitable[Any], ctx: Optional[OperationContext]) -> Any:
        """
        Await `coro` within the remaining ctx budget; map timeouts to DeadlineExceededError.
        """
        rem = ctx.remaining_ms() if ctx is not None else None
        if rem is None:
            return await coro
        try:
            return await asyncio.wait_for(coro, timeout=rem / 1000.0)
        except asyncio.TimeoutError:
            raise DeadlineExceededError(
                "operation timed out", provider=self.provider, details={"budget_ms": rem}
            ) from None

    async def _execute(
        self,
        op: str,
        call: Callable[[], Awaitable[Any]],
        ctx: Optional[OperationContext],
        *,
        level: int = logging.DEBUG,
        **extra: Any,
    ) -> Any:
        """
        Run one backend hook with deadline, logging and metrics.

        Non-taxonomy exceptions escaping a hook are wrapped in ProviderError.
        """
        self._fail_if_expired(ctx)
        request_id = ctx.request_id if ctx else None
        self._log.debug("%s start provider=%s request_id=%s %s", op, self.provider, request_id, extra or "")
        t0 = time.monotonic()
        try:
            result = await self._apply_deadline(call(), ctx)
        except VectorStoreError as e:
            ms = self._record(op, t0, False, code=e.code, ctx=ctx, **extra)
            self._log.warning(
                "%s failed provider=%s code=%s ms=%.1f request_id=%s: %s",
                op, self.provider, e.code, ms, request_id, e.message,
            )
            raise
        except Exception as e:
            ms = self._record(op, t0, False, code="PROVIDER_ERROR", ctx=ctx, **extra)
            self._log.error(
                "%s failed provider=%s ms=%.1f request_id=%s: %r",
                op, self.provider, ms, request_id, e,
            )
            raise ProviderError(
                f"{op} failed: {e}", provider=self.provider, cause=e, details={"op": op}
            ) from e
        ms = self._record(op, t0, True, ctx=ctx, **extra)
        self._log.log(level, "%s done provider=%s ms=%.1f request_id=%s %s", op, self.provider, ms, request_id, extra or "")
        return result

    def _invalidate(self, collection: str) -> None:
        dropped = self._cache.invalidate(collection)
        if dropped:
            self._log.debug("invalidated %d cached queries for collection=%s", dropped, collection)

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def initialize(self, *, ctx: Optional[OperationContext] = None) -> None:
        async with self._init_lock:
            if self._initialized:
                self._log.warning("vector store already initialized provider=%s", self.provider)
                return
            await self._execute(
                "initialize",
                lambda: self._backend.do_initialize(ctx=ctx),
                ctx,
                level=logging.INFO,
                dimensions=self._dimensions,
                metric=self._metric.value,
            )
            self._initialized = True

    async def dispose(self, *, ctx: Optional[OperationContext] = None) -> None:
        async with self._init_lock:
            if not self._initialized:
                self._log.debug("dispose on uninitialized store provider=%s", self.provider)
                return
            try:
                await self._execute(
                    "dispose", lambda: self._backend.do_dispose(ctx=ctx), ctx, level=logging.INFO
                )
            finally:
                self._cache.clear()
                self._initialized = False

    async def health_check(self, *, ctx: Optional[OperationContext] = None) -> HealthStatus:
        """
        Check the backend. Never raises for backend failures; returns
        `healthy=False` with the error message instead.
        """
        t0 = time.monotonic()
        if not self._initialized:
            return HealthStatus(
                healthy=False,
                provider=self.provider,
                latency_ms=0.0,
                error="vector store is not initialized",
            )
        try:
            details = await self._apply_deadline(self._backend.do_health_check(ctx=ctx), ctx)
        except Exception as e:  # noqa: BLE001
            ms = self._record("health_check", t0, False, code=getattr(e, "code", "PROVIDER_ERROR"), ctx=ctx)
            message = e.message if isinstance(e, VectorStoreError) else str(e)
            self._log.error("health check failed provider=%s: %s", self.provider, message)
            return HealthStatus(healthy=False, provider=self.provider, latency_ms=ms, error=message)
        ms = self._record("health_check", t0, True, ctx=ctx)
        return HealthStatus(healthy=True, provider=self.provider, latency_ms=ms, details=dict(details or {}))

    # ------------------------------------------------------------------ #
    # Collections
    # ------------------------------------------------------------------ #

    async def create_collection(
        self,
        name: str,
        options: Optional[CollectionOptions] = None,
        *,
        ctx: Optional[OperationContext] = None,
    ) -> None:
        self.ensure_initialized()
        self.validate_collection_name(name)
        opts = options or CollectionOptions()
        dims = opts.dimensions if opts.dimensions is not None else self._dimensions
        if isinstance(dims, bool) or not isinstance(dims, int) or dims <= 0:
            raise InvalidConfigError(
                "collection dimensions must be a positive integer",
                provider=self.provider,
                details={"dimensions": dims},
            )
        opts = dataclasses.replace(
            opts,
            dimensions=dims,
            distance_metric=DistanceMetric(opts.distance_metric or self._metric),
        )
        await self._execute(
            "create_collection",
            lambda: self._backend.do_create_collection(name, opts, ctx=ctx),
            ctx,
            level=logging.INFO,
            collection=name,
        )
        self._invalidate(name)

    async def delete_collection(self, name: str, *, ctx: Optional[OperationContext] = None) -> None:
        self.ensure_initialized()
        self.validate_collection_name(name)
        await self._execute(
            "delete_collection",
            lambda: self._backend.do_delete_collection(name, ctx=ctx),
            ctx,
            level=logging.INFO,
            collection=name,
        )
        self._invalidate(name)

    async def list_collections(self, *, ctx: Optional[OperationContext] = None) -> List[str]:
        self.ensure_initialized()
        return await self._execute("list_collections", lambda: self._backend.do_list_collections(ctx=ctx), ctx)

    async def get_collection_stats(self, name: str, *, ctx: Optional[OperationContext] = None) -> CollectionStats:
        self.ensure_initialized()
        self.validate_collection_name(name)
        return await self._execute(
            "get_collection_stats",
            lambda: self._backend.do_get_collection_stats(name, ctx=ctx),
            ctx,
            collection=name,
        )

    async def collection_exists(self, name: str, *, ctx: Optional[OperationContext] = None) -> bool:
        self.ensure_initialized()
        self.validate_collection_name(name)
        return await self._execute(
            "collection_exists",
            lambda: self._backend.do_collection_exists(name, ctx=ctx),
            ctx,
            collection=name,
        )

    # ------------------------------------------------------------------ #
    # Documents
    # ------------------------------------------------------------------ #

    async def upsert(
        self,
        collection: str,
        documents: Sequence[Document],
        *,
        ctx: Optional[OperationContext] = None,
    ) -> None:
        self.ensure_initialized()
        self.validate_collection_name(collection)
        if not documents:
            return
        for doc in documents:
            self.validate_document(doc)

        # last occurrence of a repeated id wins, as a later upsert would
        by_id: Dict[str, Document] = {}
        for doc in documents:
            by_id.pop(doc.id, None)
            by_id[doc.id] = doc
        docs = list(by_id.values())
        if len(docs) != len(documents):
            self._log.debug("collapsed %d duplicate ids in upsert batch", len(documents) - len(docs))

        await self._execute(
            "upsert",
            lambda: self._backend.do_upsert(collection, docs, ctx=ctx),
            ctx,
            level=logging.INFO,
            collection=collection,
            count=len(docs),
        )
        self._invalidate(collection)

    async def delete(
        self,
        collection: str,
        ids: Sequence[str],
        *,
        ctx: Optional[OperationContext] = None,
    ) -> None:
        self.ensure_initialized()
        self.validate_collection_name(collection)
        if not ids:
            return
        await self._execute(
            "delete",
            lambda: self._backend.do_delete(collection, list(ids), ctx=ctx),
            ctx,
            level=logging.INFO,
            collection=collection,
            count=len(ids),
        )
        self._invalidate(collection)

    async def get(
        self,
        collection: str,
        ids: Sequence[str],
        *,
        ctx: Optional[OperationContext] = None,
    ) -> List[Document]:
        self.ensure_initialized()
        self.validate_collection_name(collection)
        if not ids:
            return []
        return await self._execute(
            "get",
            lambda: self._backend.do_get(collection, list(ids), ctx=ctx),
            ctx,
            collection=collection,
            count=len(ids),
        )

    async def count(
        self,
        collection: str,
        filter: Optional[MetadataFilter] = None,
        *,
        ctx: Optional[OperationContext] = None,
    ) -> int:
        self.ensure_initialized()
        self.validate_collection_name(collection)
        if filter is not None:
            validate_metadata_filter(filter)
        return await self._execute(
            "count",
            lambda: self._backend.do_count(collection, filter, ctx=ctx),
            ctx,
            collection=collection,
        )

    # ------------------------------------------------------------------ #
    # Search
    # ------------------------------------------------------------------ #

    async def search(
        self,
        collection: str,
        query: SearchQuery,
        *,
        ctx: Optional[OperationContext] = None,
    ) -> List[SearchResult]:
        """Nearest-neighbor search. Results are cached per collection."""
        self.ensure_initialized()
        self.validate_collection_name(collection)
        self.validate_search_query(query)

        key = make_cache_key(collection, query)
        cached = await self._cache.get(key)
        if cached is not None:
            self._log.debug("cache hit collection=%s key=%s", collection, key)
            try:
                self._metrics.counter(component=self._component, name="cache_hits", value=1, extra={"op": "search"})
            except Exception:  # noqa: BLE001
                self._log.debug("metrics sink failed for cache_hits", exc_info=True)
            return list(cached)

        results = await self._execute(
            "search",
            lambda: self._backend.do_search(collection, query, ctx=ctx),
            ctx,
            collection=collection,
            top_k=query.top_k,
            filtered=not is_empty_filter(query.filter),
        )
        await self._cache.set(key, list(results))
        return results

    async def hybrid_search(
        self,
        collection: str,
        query: HybridSearchQuery,
        *,
        ctx: Optional[OperationContext] = None,
    ) -> List[SearchResult]:
        """Weighted reciprocal rank fusion of vector and full-text rankings."""
        self.ensure_initialized()
        self.validate_collection_name(collection)
        if not isinstance(query, HybridSearchQuery):
            raise InvalidQueryError("hybrid_search requires a HybridSearchQuery", provider=self.provider)
        self.validate_search_query(query)
        return await self._execute(
            "hybrid_search",
            lambda: self._backend.do_hybrid_search(collection, query, ctx=ctx),
            ctx,
            collection=collection,
            top_k=query.top_k,
            alpha=query.alpha,
        )

    async def mmr_search(
        self,
        collection: str,
        query: MMRSearchQuery,
        *,
        ctx: Optional[OperationContext] = None,
    ) -> List[SearchResult]:
        """Maximal-marginal-relevance re-ranking of the nearest candidates."""
        self.ensure_initialized()
        self.validate_collection_name(collection)
        if not isinstance(query, MMRSearchQuery):
            raise InvalidQueryError("mmr_search requires an MMRSearchQuery", provider=self.provider)
        self.validate_search_query(query)
        if query.fetch_k is None:
            query = dataclasses.replace(query, fetch_k=query.top_k * self._tuning.mmr_fetch_multiplier)
        resolved = query
        return await self._execute(
            "mmr_search",
            lambda: self._backend.do_mmr_search(collection, resolved, ctx=ctx),
            ctx,
            collection=collection,
            top_k=resolved.top_k,
            fetch_k=resolved.fetch_k,
        )

    # ------------------------------------------------------------------ #
    # Maintenance
    # ------------------------------------------------------------------ #

    async def optimize(self, collection: str, *, ctx: Optional[OperationContext] = None) -> None:
        self.ensure_initialized()
        self.validate_collection_name(collection)
        await self._execute(
            "optimize", lambda: self._backend.do_optimize(collection, ctx=ctx), ctx,
            level=logging.INFO, collection=collection,
        )

    async def vacuum(self, collection: str, *, ctx: Optional[OperationContext] = None) -> None:
        self.ensure_initialized()
        self.validate_collection_name(collection)
        await self._execute(
            "vacuum", lambda: self._backend.do_vacuum(collection, ctx=ctx), ctx,
            level=logging.INFO, collection=collection,
        )

    def __repr__(self) -> str:
        state = "initialized" if self._initialized else "uninitialized"
        return f"<VectorStore provider={self.provider} dims={self._dimensions} metric={self._metric.value} {state}>"


__all__ = [
    "COLLECTION_NAME_RE",
    "BACKEND_HOOKS",
    "MetricsSink",
    "NoopMetrics",
    "VectorStoreBackend",
    "VectorStore",
]
