# retrieval_sdk/vector/pgvector_adapter.py
# SPDX-License-Identifier: Apache-2.0
"""
PostgreSQL + pgvector backend for `VectorStore`.

Goals
-----
- One table per collection: `"<schema>"."vector_<collection>"` with
  `id`, `embedding vector(dims)`, `content`, `metadata jsonb` and timestamps.
- HNSW (default) or IVFFlat ANN index with the operator class of the
  configured metric, plus a GIN index on metadata.
- Nearest-neighbor, hybrid (weighted RRF in SQL) and MMR (in process) search.
- Every value is a bound parameter. Identifiers go through `quote_identifier`
  and integers that end up in DDL through `safe_positive_int`.

Usage
-----
    from retrieval_sdk.vector.factory import create_pgvector_store
    from retrieval_sdk.vector.types import Document, SearchQuery

    store = create_pgvector_store("postgresql://user:pw@localhost:5432/app", dimensions=768)
    await store.initialize()
    await store.create_collection("docs")
    await store.upsert("docs", [Document(id="a", embedding=[...], content="hello")])
    hits = await store.search("docs", SearchQuery(embedding=[...], top_k=5))
    await store.dispose()

Concurrency
-----------
psycopg2 is blocking, so every unit of work runs on a worker thread via
`asyncio.to_thread`. A `ThreadedConnectionPool` of `pool_size` connections
is the only shared resource; checkout waits on a bounded semaphore for at
most the caller's remaining deadline.
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
import re
import threading
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence

from retrieval_sdk.core.operation_context import OperationContext
from retrieval_sdk.vector.config import IndexConfig, PgVectorConfig, SearchTuning, StoreConfig
from retrieval_sdk.vector.distance import (
    distance_to_similarity,
    pgvector_index_ops,
    pgvector_operator,
)
from retrieval_sdk.vector.errors import (
    CollectionExistsError,
    CollectionNotFoundError,
    ConnectionError,
    DeadlineExceededError,
    InvalidConfigError,
    ProviderError,
    VectorStoreError,
)
from retrieval_sdk.vector.filters import to_sql_filter
from retrieval_sdk.vector.ranking import MMRCandidate, maximal_marginal_relevance
from retrieval_sdk.vector.types import (
    CollectionOptions,
    CollectionStats,
    DistanceMetric,
    Document,
    HybridSearchQuery,
    MetadataFilter,
    MMRSearchQuery,
    SearchQuery,
    SearchResult,
)

logger = logging.getLogger(__name__)

try:  # pragma: no cover - import surface only
    import psycopg2  # type: ignore
    import psycopg2.pool  # type: ignore
    from psycopg2.extras import Json, RealDictCursor  # type: ignore
except Exception:  # pragma: no cover
    psycopg2 = None  # type: ignore[assignment]
    Json = None  # type: ignore[assignment]
    RealDictCursor = None  # type: ignore[assignment]

TABLE_PREFIX = "vector_"
REGISTRY_TABLE = "vector_collections_metadata"

# pgvector limits
MAX_DIMENSIONS = 16000
HNSW_M_RANGE = (2, 100)
HNSW_EF_CONSTRUCTION_RANGE = (16, 500)
IVFFLAT_LISTS_RANGE = (1, 32768)

_TABLE_CHARS_RE = re.compile(r"[^A-Za-z0-9_-]")


def quote_identifier(identifier: str) -> str:
    """Double-quote an SQL identifier, doubling embedded quotes."""
    if "\x00" in identifier:
        raise InvalidConfigError("identifier must not contain NUL", provider="pgvector")
    return '"' + identifier.replace('"', '""') + '"'


def safe_positive_int(value: Any, minimum: int, maximum: int, name: str = "value") -> int:
    """
    Floor `value` and clamp it into [minimum, maximum].

    Raises InvalidConfigError for non-finite or non-numeric input.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise InvalidConfigError(f"{name} must be a finite number, got {value!r}", provider="pgvector")
    return max(minimum, min(maximum, int(math.floor(value))))


def vector_literal(embedding: Sequence[float]) -> str:
    """pgvector text form: '[1.0,2.0,3.0]'."""
    return "[" + ",".join(repr(float(x)) for x in embedding) + "]"


def parse_vector(text: Any) -> List[float]:
    if text is None:
        return []
    if isinstance(text, (list, tuple)):
        return [float(x) for x in text]
    return [float(x) for x in json.loads(text)]


def _batches(items: Sequence[Any], size: int) -> Iterator[Sequence[Any]]:
    for i in range(0, len(items), size):
        yield items[i:i + size]


class PgVectorBackend:
    """
    VectorStoreBackend backed by PostgreSQL with the pgvector extension.

    `pool_factory` builds the connection pool and defaults to
    `psycopg2.pool.ThreadedConnectionPool`; it is called as
    `pool_factory(minconn, maxconn, dsn=..., connect_timeout=...)`.
    """

    provider = "pgvector"

    def __init__(
        self,
        config: StoreConfig,
        *,
        pool_factory: Optional[Callable[..., Any]] = None,
    ) -> None:
        if not isinstance(config.backend, PgVectorConfig):
            raise InvalidConfigError("pgvector configuration is required", provider=self.provider)
        if pool_factory is None and psycopg2 is None:
            raise RuntimeError(
                "PgVectorBackend requires the `psycopg2` Python package. "
                "Install via `pip install psycopg2-binary`."
            )
        pg: PgVectorConfig = config.backend
        if not pg.connection_string:
            raise InvalidConfigError("pgvector connection_string is required", provider=self.provider)

        self._pg = pg
        self._schema = pg.schema or "public"
        self._dimensions = int(config.dimensions or 0)
        self._metric = DistanceMetric(config.distance_metric or DistanceMetric.COSINE)
        self._tuning: SearchTuning = config.tuning
        self._pool_size = safe_positive_int(pg.pool_size, 1, 1000, "pool_size")
        self._pool_factory = pool_factory or psycopg2.pool.ThreadedConnectionPool
        self._pool: Any = None
        self._slots = threading.BoundedSemaphore(self._pool_size)
        self._in_use = 0
        self._in_use_lock = threading.Lock()

    # ------------------------------------------------------------------ #
    # Internal helpers
    # ------------------------------------------------------------------ #

    def table_name(self, collection: str) -> str:
        """Fully qualified, quoted table name for a collection."""
        sanitized = _TABLE_CHARS_RE.sub("", collection)
        return f"{quote_identifier(self._schema)}.{quote_identifier(TABLE_PREFIX + sanitized)}"

    def _registry(self) -> str:
        return f"{quote_identifier(self._schema)}.{quote_identifier(REGISTRY_TABLE)}"

    @staticmethod
    async def _run_in_thread(func, *args, **kwargs):
        """Run blocking driver calls on a worker thread."""
        return await asyncio.to_thread(func, *args, **kwargs)

    async def _call(
        self,
        func: Callable[..., Any],
        op: str,
        ctx: Optional[OperationContext],
        *args: Any,
        collection: Optional[str] = None,
    ) -> Any:
        """
        Run `func(ctx, *args)` on a worker thread and translate driver errors.
        """
        try:
            return await self._run_in_thread(func, ctx, *args)
        except VectorStoreError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise self._translate_error(exc, op=op, collection=collection) from exc

    def _translate_error(
        self, err: Exception, *, op: str, collection: Optional[str] = None
    ) -> VectorStoreError:
        """
        Map psycopg2 exceptions into the vector store error taxonomy.
        """
        logger.debug("pgvector error in %s: %r", op, err)
        details: Dict[str, Any] = {"op": op}
        pgcode = getattr(err, "pgcode", None)
        if pgcode:
            details["pgcode"] = pgcode

        if psycopg2 is not None and isinstance(err, (psycopg2.OperationalError, psycopg2.InterfaceError)):
            return ConnectionError(
                f"PostgreSQL connection failed during {op}: {err}".strip(),
                provider=self.provider,
                cause=err,
                details=details,
            )
        if pgcode == "42P01" and collection is not None:
            return CollectionNotFoundError(collection, provider=self.provider, cause=err, details=details)
        if pgcode == "42P07" and collection is not None:
            return CollectionExistsError(collection, provider=self.provider, cause=err, details=details)
        if pgcode == "57014":
            return DeadlineExceededError(
                f"statement cancelled during {op}", provider=self.provider, cause=err, details=details
            )
        return ProviderError(
            f"PostgreSQL error during {op}: {err}".strip(),
            provider=self.provider,
            cause=err,
            details=details,
        )

    def _require_pool(self) -> Any:
        if self._pool is None:
            raise ProviderError("connection pool is not initialized", provider=self.provider)
        return self._pool

    @contextmanager
    def _connection(self, ctx: Optional[OperationContext], *, autocommit: bool = False, pool: Any = None):
        """
        Check out a pooled connection, waiting at most the ctx budget.
        """
        pool = pool if pool is not None else self._require_pool()
        timeout = ctx.remaining_s() if ctx is not None else None
        acquired = self._slots.acquire(timeout=timeout) if timeout is not None else self._slots.acquire()
        if not acquired:
            raise DeadlineExceededError(
                "timed out waiting for a pooled connection",
                provider=self.provider,
                details={"pool_size": self._pool_size},
            )
        with self._in_use_lock:
            self._in_use += 1
        broken = False
        conn = None
        try:
            conn = pool.getconn()
            conn.autocommit = autocommit
            yield conn
        except Exception as exc:
            if psycopg2 is not None and isinstance(exc, (psycopg2.OperationalError, psycopg2.InterfaceError)):
                broken = True
            raise
        finally:
            try:
                if conn is not None:
                    if autocommit:
                        conn.autocommit = False
                    pool.putconn(conn, close=broken)
            finally:
                with self._in_use_lock:
                    self._in_use -= 1
                self._slots.release()

    @contextmanager
    def _transaction(self, ctx: Optional[OperationContext], *, pool: Any = None):
        """
        A cursor inside one transaction: COMMIT on success, ROLLBACK on error.
        """
        with self._connection(ctx, pool=pool) as conn:
            try:
                with conn.cursor(cursor_factory=RealDictCursor) as cur:
                    rem = ctx.remaining_ms() if ctx is not None else None
                    if rem is not None:
                        cur.execute("SET LOCAL statement_timeout = %s", (max(1, rem),))
                    yield cur
                conn.commit()
            except BaseException:
                conn.rollback()
                raise

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def _open(self, ctx: Optional[OperationContext]) -> None:
        """
        Build a pool and check the vector extension on one of its connections.

        The pool is published on `self._pool` only once the check passes; on
        any failure it is closed before the error propagates.
        """
        pool = self._pool_factory(
            1,
            self._pool_size,
            dsn=self._pg.connection_string,
            connect_timeout=self._pg.connect_timeout_s,
        )
        try:
            with self._transaction(ctx, pool=pool) as cur:
                cur.execute("CREATE EXTENSION IF NOT EXISTS vector")
                cur.execute("SELECT vector_dims(%s::vector) AS dims", (vector_literal([0.0, 0.0, 0.0]),))
                cur.fetchone()
        except BaseException:
            pool.closeall()
            raise
        self._pool = pool

    async def do_initialize(self, *, ctx: Optional[OperationContext] = None) -> None:
        if self._pool is not None:
            # An earlier initialize finished its worker thread after timing out.
            stale, self._pool = self._pool, None
            logger.debug("closing pool left by an earlier initialize")
            await self._run_in_thread(stale.closeall)
        try:
            await self._run_in_thread(self._open, ctx)
        except DeadlineExceededError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise ConnectionError(
                f"failed to connect to PostgreSQL: {exc}",
                provider=self.provider,
                cause=exc,
            ) from exc
        logger.info(
            "pgvector connection established schema=%s pool_size=%d", self._schema, self._pool_size
        )

    async def do_dispose(self, *, ctx: Optional[OperationContext] = None) -> None:
        pool, self._pool = self._pool, None
        if pool is not None:
            await self._run_in_thread(pool.closeall)

    def _health(self, ctx: Optional[OperationContext]) -> Dict[str, Any]:
        with self._transaction(ctx) as cur:
            cur.execute(
                "SELECT current_database() AS database, current_schema() AS schema, "
                "version() AS version, "
                "(SELECT extversion FROM pg_extension WHERE extname = 'vector') AS vector_version"
            )
            row = cur.fetchone() or {}
        with self._in_use_lock:
            in_use = self._in_use
        return {
            "database": row.get("database"),
            "schema": row.get("schema"),
            "version": row.get("version"),
            "vector_extension_version": row.get("vector_version"),
            "pool_size": self._pool_size,
            "pool_in_use": in_use,
        }

    async def do_health_check(self, *, ctx: Optional[OperationContext] = None) -> Dict[str, Any]:
        return await self._call(self._health, "health_check", ctx)

    # ------------------------------------------------------------------ #
    # Collections
    # ------------------------------------------------------------------ #

    def _exists(self, cur: Any, collection: str) -> bool:
        cur.execute(
            "SELECT EXISTS (SELECT 1 FROM information_schema.tables "
            "WHERE table_schema = %s AND table_name = %s) AS exists",
            (self._schema, TABLE_PREFIX + _TABLE_CHARS_RE.sub("", collection)),
        )
        row = cur.fetchone() or {}
        return bool(row.get("exists"))

    def _index_sql(self, table: str, metric: DistanceMetric, index: IndexConfig) -> str:
        ops = pgvector_index_ops(metric)
        kind = (index.type or "hnsw").lower()
        if kind == "hnsw":
            m = safe_positive_int(index.m, *HNSW_M_RANGE, name="m")
            ef = safe_positive_int(index.ef_construction, *HNSW_EF_CONSTRUCTION_RANGE, name="ef_construction")
            return f"CREATE INDEX ON {table} USING hnsw (embedding {ops}) WITH (m = {m}, ef_construction = {ef})"
        if kind == "ivfflat":
            lists = safe_positive_int(index.lists, *IVFFLAT_LISTS_RANGE, name="lists")
            return f"CREATE INDEX ON {table} USING ivfflat (embedding {ops}) WITH (lists = {lists})"
        raise InvalidConfigError(
            f"unsupported index type '{index.type}'", provider=self.provider, details={"index_type": index.type}
        )

    def _create_collection(self, ctx: Optional[OperationContext], name: str, options: CollectionOptions) -> None:
        if TABLE_PREFIX + name == REGISTRY_TABLE:
            raise InvalidConfigError(f"collection name '{name}' is reserved", provider=self.provider)
        table = self.table_name(name)
        dims = safe_positive_int(options.dimensions or self._dimensions, 1, MAX_DIMENSIONS, "dimensions")
        metric = DistanceMetric(options.distance_metric or self._metric)
        index_sql = self._index_sql(table, metric, self._pg.index)
        registry_metadata = dict(options.metadata or {})
        registry_metadata.update(
            {"dimensions": dims, "distance_metric": metric.value, "index_type": self._pg.index.type}
        )

        with self._transaction(ctx) as cur:
            if self._exists(cur, name):
                raise CollectionExistsError(name, provider=self.provider)
            cur.execute(
                f"CREATE TABLE {table} ("
                "id TEXT PRIMARY KEY, "
                f"embedding vector({dims}) NOT NULL, "
                "content TEXT NOT NULL DEFAULT '', "
                "metadata JSONB NOT NULL DEFAULT '{}'::jsonb, "
                "created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP, "
                "updated_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP)"
            )
            cur.execute(index_sql)
            cur.execute(f"CREATE INDEX ON {table} USING GIN (metadata)")
            cur.execute(
                f"CREATE TABLE IF NOT EXISTS {self._registry()} ("
                "name TEXT PRIMARY KEY, "
                "metadata JSONB NOT NULL DEFAULT '{}'::jsonb, "
                "created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP)"
            )
            cur.execute(
                f"INSERT INTO {self._registry()} (name, metadata) VALUES (%s, %s) "
                "ON CONFLICT (name) DO UPDATE SET metadata = EXCLUDED.metadata, "
                "created_at = CURRENT_TIMESTAMP",
                (name, Json(registry_metadata)),
            )

    async def do_create_collection(
        self, name: str, options: CollectionOptions, *, ctx: Optional[OperationContext] = None
    ) -> None:
        await self._call(self._create_collection, "create_collection", ctx, name, options, collection=name)
        logger.info("pgvector collection created name=%s table=%s", name, self.table_name(name))

    def _delete_collection(self, ctx: Optional[OperationContext], name: str) -> None:
        with self._transaction(ctx) as cur:
            if not self._exists(cur, name):
                raise CollectionNotFoundError(name, provider=self.provider)
            cur.execute(f"DROP TABLE IF EXISTS {self.table_name(name)}")
            cur.execute(f"DELETE FROM {self._registry()} WHERE name = %s", (name,))

    async def do_delete_collection(self, name: str, *, ctx: Optional[OperationContext] = None) -> None:
        await self._call(self._delete_collection, "delete_collection", ctx, name, collection=name)

    def _list_collections(self, ctx: Optional[OperationContext]) -> List[str]:
        with self._transaction(ctx) as cur:
            cur.execute(
                "SELECT table_name FROM information_schema.tables "
                "WHERE table_schema = %s AND table_name LIKE %s AND table_name <> %s "
                "ORDER BY table_name",
                (self._schema, TABLE_PREFIX.replace("_", "\\_") + "%", REGISTRY_TABLE),
            )
            rows = cur.fetchall()
        return [r["table_name"][len(TABLE_PREFIX):] for r in rows]

    async def do_list_collections(self, *, ctx: Optional[OperationContext] = None) -> List[str]:
        return await self._call(self._list_collections, "list_collections", ctx)

    def _collection_exists(self, ctx: Optional[OperationContext], name: str) -> bool:
        with self._transaction(ctx) as cur:
            return self._exists(cur, name)

    async def do_collection_exists(self, name: str, *, ctx: Optional[OperationContext] = None) -> bool:
        return await self._call(self._collection_exists, "collection_exists", ctx, name)

    def _stats(self, ctx: Optional[OperationContext], name: str) -> CollectionStats:
        table = self.table_name(name)
        with self._transaction(ctx) as cur:
            if not self._exists(cur, name):
                raise CollectionNotFoundError(name, provider=self.provider)
            cur.execute(
                f"SELECT (SELECT count(*) FROM {table}) AS count, "
                "pg_total_relation_size(%s::regclass) AS size, "
                f"(SELECT max(updated_at) FROM {table}) AS updated_at",
                (table,),
            )
            row = cur.fetchone() or {}
            cur.execute(f"SELECT metadata, created_at FROM {self._registry()} WHERE name = %s", (name,))
            reg = cur.fetchone() or {}
        meta = reg.get("metadata") or {}
        return CollectionStats(
            name=name,
            document_count=int(row.get("count") or 0),
            dimensions=int(meta.get("dimensions") or self._dimensions),
            index_size=int(row.get("size") or 0),
            created_at=reg.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    async def do_get_collection_stats(
        self, name: str, *, ctx: Optional[OperationContext] = None
    ) -> CollectionStats:
        return await self._call(self._stats, "get_collection_stats", ctx, name, collection=name)

    # ------------------------------------------------------------------ #
    # Documents
    # ------------------------------------------------------------------ #

    def _upsert(self, ctx: Optional[OperationContext], collection: str, documents: Sequence[Document]) -> None:
        table = self.table_name(collection)
        with self._transaction(ctx) as cur:
            if not self._exists(cur, collection):
                raise CollectionNotFoundError(collection, provider=self.provider)
            for batch in _batches(documents, self._tuning.batch_size):
                values = ", ".join(["(%s, %s::vector, %s, %s)"] * len(batch))
                params: List[Any] = []
                for doc in batch:
                    params.extend([doc.id, vector_literal(doc.embedding), doc.content, Json(dict(doc.metadata))])
                cur.execute(
                    f"INSERT INTO {table} (id, embedding, content, metadata) VALUES {values} "
                    "ON CONFLICT (id) DO UPDATE SET "
                    "embedding = EXCLUDED.embedding, "
                    "content = EXCLUDED.content, "
                    "metadata = EXCLUDED.metadata, "
                    "updated_at = CURRENT_TIMESTAMP",
                    params,
                )

    async def do_upsert(
        self, collection: str, documents: Sequence[Document], *, ctx: Optional[OperationContext] = None
    ) -> None:
        await self._call(self._upsert, "upsert", ctx, collection, documents, collection=collection)

    def _delete(self, ctx: Optional[OperationContext], collection: str, ids: Sequence[str]) -> None:
        table = self.table_name(collection)
        with self._transaction(ctx) as cur:
            for batch in _batches(list(ids), self._tuning.batch_size):
                cur.execute(f"DELETE FROM {table} WHERE id = ANY(%s)", (list(batch),))

    async def do_delete(
        self, collection: str, ids: Sequence[str], *, ctx: Optional[OperationContext] = None
    ) -> None:
        await self._call(self._delete, "delete", ctx, collection, ids, collection=collection)

    def _get(self, ctx: Optional[OperationContext], collection: str, ids: Sequence[str]) -> List[Document]:
        table = self.table_name(collection)
        found: Dict[str, Document] = {}
        with self._transaction(ctx) as cur:
            for batch in _batches(list(ids), self._tuning.batch_size):
                cur.execute(
                    f"SELECT id, embedding::text AS embedding_text, content, metadata "
                    f"FROM {table} WHERE id = ANY(%s)",
                    (list(batch),),
                )
                for r in cur.fetchall():
                    found[r["id"]] = Document(
                        id=r["id"],
                        embedding=parse_vector(r["embedding_text"]),
                        content=r.get("content") or "",
                        metadata=dict(r.get("metadata") or {}),
                    )
        # requested order, missing ids skipped
        return [found[i] for i in dict.fromkeys(ids) if i in found]

    async def do_get(
        self, collection: str, ids: Sequence[str], *, ctx: Optional[OperationContext] = None
    ) -> List[Document]:
        return await self._call(self._get, "get", ctx, collection, ids, collection=collection)

    def _count(self, ctx: Optional[OperationContext], collection: str, flt: Optional[MetadataFilter]) -> int:
        sql_filter = to_sql_filter(flt)
        with self._transaction(ctx) as cur:
            cur.execute(
                f"SELECT count(*) AS count FROM {self.table_name(collection)}{sql_filter.where()}",
                sql_filter.params,
            )
            row = cur.fetchone() or {}
        return int(row.get("count") or 0)

    async def do_count(
        self, collection: str, filter: Optional[MetadataFilter], *, ctx: Optional[OperationContext] = None
    ) -> int:
        return await self._call(self._count, "count", ctx, collection, filter, collection=collection)

    # ------------------------------------------------------------------ #
    # Search
    # ------------------------------------------------------------------ #

    @staticmethod
    def _projection(query: SearchQuery, prefix: str = "") -> str:
        cols = ""
        if query.include_content:
            cols += f", {prefix}content"
        if query.include_metadata:
            cols += f", {prefix}metadata"
        if query.include_embedding:
            cols += f", {prefix}embedding::text AS embedding_text"
        return cols

    @staticmethod
    def _result(row: Dict[str, Any], score: float, query: SearchQuery) -> SearchResult:
        return SearchResult(
            id=row["id"],
            score=score,
            content=row.get("content") if query.include_content else None,
            metadata=dict(row.get("metadata") or {}) if query.include_metadata else None,
            embedding=parse_vector(row.get("embedding_text")) if query.include_embedding else None,
        )

    def _search(self, ctx: Optional[OperationContext], collection: str, query: SearchQuery) -> List[SearchResult]:
        table = self.table_name(collection)
        op = pgvector_operator(self._metric)
        top_k = safe_positive_int(query.top_k, 1, self._tuning.max_top_k, "top_k")
        sql_filter = to_sql_filter(query.filter, 2)
        params: List[Any] = [vector_literal(query.embedding), *sql_filter.params, top_k]
        sql = (
            f"SELECT id, embedding {op} %s::vector AS distance{self._projection(query)} "
            f"FROM {table}{sql_filter.where()} "
            "ORDER BY distance "
            "LIMIT %s"
        )
        with self._transaction(ctx) as cur:
            cur.execute(sql, params)
            rows = cur.fetchall()

        results: List[SearchResult] = []
        for r in rows:
            score = distance_to_similarity(r["distance"], self._metric)
            if query.score_threshold is not None and score < query.score_threshold:
                continue
            results.append(self._result(r, score, query))
        return results

    async def do_search(
        self, collection: str, query: SearchQuery, *, ctx: Optional[OperationContext] = None
    ) -> List[SearchResult]:
        return await self._call(self._search, "search", ctx, collection, query, collection=collection)

    def _hybrid_search(
        self, ctx: Optional[OperationContext], collection: str, query: HybridSearchQuery
    ) -> List[SearchResult]:
        """
        Vector and full-text rankings fused in SQL:

            score = alpha / (K + vector_rank) + (1 - alpha) / (K + text_rank)

        An id missing from one list takes rank `fetch_limit + 1` there. The
        fused score is divided by its maximum `1 / (K + 1)` to land in [0, 1].
        """
        table = self.table_name(collection)
        op = pgvector_operator(self._metric)
        top_k = safe_positive_int(query.top_k, 1, self._tuning.max_top_k, "top_k")
        fetch_limit = top_k * max(1, self._tuning.hybrid_fetch_multiplier)
        rrf_k = max(1, int(self._tuning.rrf_k))
        missing_rank = fetch_limit + 1
        alpha = float(query.alpha)
        sql_filter = to_sql_filter(query.filter)

        params: List[Any] = []
        # vector_results
        params.append(vector_literal(query.embedding))
        params.extend(sql_filter.params)
        params.append(fetch_limit)
        # ts
        params.extend([self._pg.text_search_config, query.text])
        # text_results
        params.extend(sql_filter.params)
        params.append(fetch_limit)
        # combined
        params.extend([alpha, rrf_k, missing_rank, 1.0 - alpha, rrf_k, missing_rank])
        # final
        params.append(top_k)

        sql = (
            "WITH vector_results AS ("
            " SELECT id, ROW_NUMBER() OVER (ORDER BY distance) AS vector_rank FROM ("
            f"  SELECT id, embedding {op} %s::vector AS distance FROM {table}{sql_filter.where()}"
            "  ORDER BY distance LIMIT %s"
            " ) v"
            "), ts AS ("
            " SELECT %s::regconfig AS cfg, %s::text AS q"
            "), text_results AS ("
            " SELECT id, ROW_NUMBER() OVER (ORDER BY text_score DESC, id) AS text_rank FROM ("
            "  SELECT id, ts_rank_cd(to_tsvector(ts.cfg, content), plainto_tsquery(ts.cfg, ts.q)) AS text_score"
            f"  FROM {table} CROSS JOIN ts"
            f"  WHERE to_tsvector(ts.cfg, content) @@ plainto_tsquery(ts.cfg, ts.q){sql_filter.and_()}"
            "  ORDER BY text_score DESC LIMIT %s"
            " ) t"
            "), combined AS ("
            " SELECT COALESCE(v.id, t.id) AS id,"
            "  %s::float8 / (%s + COALESCE(v.vector_rank, %s)) +"
            "  %s::float8 / (%s + COALESCE(t.text_rank, %s)) AS fused"
            " FROM vector_results v FULL OUTER JOIN text_results t ON v.id = t.id"
            ") "
            f"SELECT c.id, c.fused AS fused{self._projection(query, 'd.')} "
            f"FROM combined c JOIN {table} d ON d.id = c.id "
            "ORDER BY c.fused DESC, c.id "
            "LIMIT %s"
        )
        with self._transaction(ctx) as cur:
            cur.execute(sql, params)
            rows = cur.fetchall()

        scale = float(rrf_k + 1)
        results: List[SearchResult] = []
        for r in rows:
            score = max(0.0, min(1.0, float(r["fused"]) * scale))
            if query.score_threshold is not None and score < query.score_threshold:
                continue
            results.append(self._result(r, score, query))
        return results

    async def do_hybrid_search(
        self, collection: str, query: HybridSearchQuery, *, ctx: Optional[OperationContext] = None
    ) -> List[SearchResult]:
        return await self._call(self._hybrid_search, "hybrid_search", ctx, collection, query, collection=collection)

    def _mmr_candidates(
        self, ctx: Optional[OperationContext], collection: str, query: MMRSearchQuery
    ) -> List[Dict[str, Any]]:
        table = self.table_name(collection)
        op = pgvector_operator(self._metric)
        top_k = safe_positive_int(query.top_k, 1, self._tuning.max_top_k, "top_k")
        fetch_k = safe_positive_int(
            query.fetch_k or top_k * self._tuning.mmr_fetch_multiplier, 1, self._tuning.max_fetch_k, "fetch_k"
        )
        sql_filter = to_sql_filter(query.filter, 2)
        params: List[Any] = [vector_literal(query.embedding), *sql_filter.params, fetch_k]
        sql = (
            f"SELECT id, embedding {op} %s::vector AS distance, content, metadata, "
            "embedding::text AS embedding_text "
            f"FROM {table}{sql_filter.where()} "
            "ORDER BY distance "
            "LIMIT %s"
        )
        with self._transaction(ctx) as cur:
            cur.execute(sql, params)
            return list(cur.fetchall())

    async def do_mmr_search(
        self, collection: str, query: MMRSearchQuery, *, ctx: Optional[OperationContext] = None
    ) -> List[SearchResult]:
        rows = await self._call(self._mmr_candidates, "mmr_search", ctx, collection, query, collection=collection)
        candidates = [
            MMRCandidate(
                id=r["id"],
                relevance=distance_to_similarity(r["distance"], self._metric),
                embedding=parse_vector(r["embedding_text"]),
                payload=r,
            )
            for r in rows
        ]
        selected = maximal_marginal_relevance(
            candidates,
            top_k=query.top_k,
            lambda_=float(query.lambda_),
            score_threshold=query.score_threshold,
        )
        return [
            SearchResult(
                id=c.id,
                score=c.relevance,
                content=c.payload.get("content") if query.include_content else None,
                metadata=dict(c.payload.get("metadata") or {}) if query.include_metadata else None,
                embedding=list(c.embedding) if query.include_embedding else None,
            )
            for c in selected
        ]

    # ------------------------------------------------------------------ #
    # Maintenance (outside transactions)
    # ------------------------------------------------------------------ #

    def _maintain(self, ctx: Optional[OperationContext], statements: Sequence[str]) -> None:
        with self._connection(ctx, autocommit=True) as conn:
            with conn.cursor() as cur:
                for stmt in statements:
                    cur.execute(stmt)

    async def do_optimize(self, collection: str, *, ctx: Optional[OperationContext] = None) -> None:
        table = self.table_name(collection)
        await self._call(
            self._maintain, "optimize", ctx, (f"REINDEX TABLE {table}", f"ANALYZE {table}"), collection=collection
        )

    async def do_vacuum(self, collection: str, *, ctx: Optional[OperationContext] = None) -> None:
        table = self.table_name(collection)
        await self._call(self._maintain, "vacuum", ctx, (f"VACUUM ANALYZE {table}",), collection=collection)


__all__ = [
    "PgVectorBackend",
    "quote_identifier",
    "safe_positive_int",
    "vector_literal",
    "parse_vector",
]
