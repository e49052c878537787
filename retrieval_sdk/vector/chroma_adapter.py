# retrieval_sdk/vector/chroma_adapter.py
# SPDX-License-Identifier: Apache-2.0
"""
ChromaDB backend for `VectorStore`.

Maps collections one-to-one onto Chroma collections, created with the
`hnsw:space` of the configured metric. Metadata filters use the
document-store JSON translation. Hybrid search fuses Chroma's vector
ranking with a keyword ranking (documents containing the query terms) by
weighted reciprocal rank fusion in process; MMR re-ranks Chroma's nearest
candidates in process.

Usage
-----
    from retrieval_sdk.vector.factory import create_chroma_store

    store = create_chroma_store("./.chroma", dimensions=384)
    await store.initialize()

Notes
-----
- Chroma metadata values must be scalars; lists and dicts are stored as
  JSON strings and come back as strings.
- Keyword matching uses `$contains`, which is case-sensitive. Query terms
  are matched as typed and lowercased, so "Postgres" finds "postgres" but
  "postgres" does not find "POSTGRES".
- `optimize` and `vacuum` are no-ops; Chroma maintains its index itself.
"""

from __future__ import annotations

import asyncio
import builtins
import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from retrieval_sdk.core.operation_context import OperationContext
from retrieval_sdk.vector.config import ChromaDBConfig, SearchTuning, StoreConfig
from retrieval_sdk.vector.distance import chroma_distance_to_similarity, chroma_space
from retrieval_sdk.vector.errors import (
    CollectionExistsError,
    CollectionNotFoundError,
    ConnectionError,
    InvalidConfigError,
    ProviderError,
    VectorStoreError,
)
from retrieval_sdk.vector.filters import is_empty_filter, to_document_store_filter
from retrieval_sdk.vector.ranking import (
    MMRCandidate,
    maximal_marginal_relevance,
    reciprocal_rank_fusion,
)
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
    import chromadb  # type: ignore
    from chromadb.config import Settings  # type: ignore
except Exception:  # pragma: no cover
    chromadb = None  # type: ignore[assignment]
    Settings = None  # type: ignore[assignment]

_TERM_RE = re.compile(r"\w+", re.UNICODE)


def _first(result: Any, key: str) -> List[Any]:
    """Unwrap `query()` results, which are nested one level per query embedding."""
    value = result.get(key) if result is not None else None
    if value is None or len(value) == 0:
        return []
    return list(value[0]) if value[0] is not None else []


def _column(result: Any, key: str) -> List[Any]:
    value = result.get(key) if result is not None else None
    return list(value) if value is not None else []


def _to_floats(embedding: Any) -> List[float]:
    return [float(x) for x in embedding] if embedding is not None else []


def _flatten_metadata(metadata: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    if not metadata:
        return None
    flat: Dict[str, Any] = {}
    for key, value in metadata.items():
        if value is None:
            continue
        if isinstance(value, (str, int, float, bool)):
            flat[key] = value
        else:
            flat[key] = json.dumps(value, default=str)
    return flat or None


class ChromaBackend:
    """
    VectorStoreBackend backed by a Chroma client.

    `client_factory`, when given, is called with no arguments and must return
    a Chroma-compatible client. By default a `PersistentClient` is built for
    `persist_path`, an `HttpClient` when `host` is set, else an
    in-memory `EphemeralClient`.
    """

    provider = "chromadb"

    def __init__(
        self,
        config: StoreConfig,
        *,
        client_factory: Optional[Callable[[], Any]] = None,
    ) -> None:
        if not isinstance(config.backend, ChromaDBConfig):
            raise InvalidConfigError("chromadb configuration is required", provider=self.provider)
        if client_factory is None and chromadb is None:
            raise RuntimeError(
                "ChromaBackend requires the `chromadb` Python package. "
                "Install via `pip install chromadb`."
            )
        self._chroma: ChromaDBConfig = config.backend
        self._dimensions = int(config.dimensions or 0)
        self._metric = DistanceMetric(config.distance_metric or DistanceMetric.COSINE)
        self._tuning: SearchTuning = config.tuning
        self._client_factory = client_factory or self._default_client
        self._client: Any = None
        self._collections: Dict[str, Any] = {}

    # ------------------------------------------------------------------ #
    # Internal helpers
    # ------------------------------------------------------------------ #

    def _default_client(self) -> Any:
        settings = Settings(anonymized_telemetry=self._chroma.anonymized_telemetry)
        if self._chroma.host:
            return chromadb.HttpClient(host=self._chroma.host, port=self._chroma.port, settings=settings)
        if self._chroma.persist_path:
            return chromadb.PersistentClient(path=self._chroma.persist_path, settings=settings)
        return chromadb.EphemeralClient(settings=settings)

    @staticmethod
    async def _run_in_thread(func, *args, **kwargs):
        """Run blocking client calls on a worker thread."""
        return await asyncio.to_thread(func, *args, **kwargs)

    async def _call(
        self,
        func: Callable[..., Any],
        op: str,
        *args: Any,
        collection: Optional[str] = None,
        **kwargs: Any,
    ) -> Any:
        try:
            return await self._run_in_thread(func, *args, **kwargs)
        except VectorStoreError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise self._translate_error(exc, op=op, collection=collection) from exc

    def _translate_error(
        self, err: Exception, *, op: str, collection: Optional[str] = None
    ) -> VectorStoreError:
        """
        Map Chroma client exceptions into the vector store error taxonomy.
        Chroma's exception classes differ between releases, so this matches
        on message text as well as type.
        """
        msg = str(err) or f"Chroma error during {op}"
        logger.debug("Chroma error in %s: %r", op, err)
        lowered = msg.lower()
        details = {"op": op}

        if isinstance(err, (builtins.ConnectionError, TimeoutError)) or "could not connect" in lowered:
            return ConnectionError(f"Chroma connection failed: {msg}", provider=self.provider, cause=err, details=details)
        if collection is not None and ("does not exist" in lowered or "not found" in lowered):
            return CollectionNotFoundError(collection, provider=self.provider, cause=err, details=details)
        if collection is not None and "already exists" in lowered:
            return CollectionExistsError(collection, provider=self.provider, cause=err, details=details)
        return ProviderError(msg, provider=self.provider, cause=err, details=details)

    def _require_client(self) -> Any:
        if self._client is None:
            raise ProviderError("Chroma client is not initialized", provider=self.provider)
        return self._client

    def _collection_names(self) -> List[str]:
        names = []
        for c in self._require_client().list_collections():
            names.append(c if isinstance(c, str) else c.name)
        return names

    def _get_collection(self, name: str) -> Any:
        col = self._collections.get(name)
        if col is not None:
            return col
        if name not in self._collection_names():
            raise CollectionNotFoundError(name, provider=self.provider)
        col = self._require_client().get_collection(name=name)
        self._collections[name] = col
        return col

    def _include(self, query: SearchQuery, *, distances: bool = True, embeddings: bool = False) -> List[str]:
        include = ["distances"] if distances else []
        if query.include_metadata:
            include.append("metadatas")
        if query.include_content:
            include.append("documents")
        if query.include_embedding or embeddings:
            include.append("embeddings")
        return include

    @staticmethod
    def _where(flt: Optional[MetadataFilter]) -> Optional[Dict[str, Any]]:
        return None if is_empty_filter(flt) else to_document_store_filter(flt)

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def _connect(self) -> None:
        client = self._client_factory()
        client.heartbeat()
        self._client = client

    async def do_initialize(self, *, ctx: Optional[OperationContext] = None) -> None:
        try:
            await self._run_in_thread(self._connect)
        except Exception as exc:  # noqa: BLE001
            raise ConnectionError(
                f"failed to connect to Chroma: {exc}", provider=self.provider, cause=exc
            ) from exc
        logger.info(
            "chroma client ready path=%s host=%s", self._chroma.persist_path, self._chroma.host
        )

    async def do_dispose(self, *, ctx: Optional[OperationContext] = None) -> None:
        self._collections.clear()
        self._client = None

    def _health(self) -> Dict[str, Any]:
        client = self._require_client()
        heartbeat = client.heartbeat()
        version = client.get_version() if hasattr(client, "get_version") else None
        return {
            "heartbeat": heartbeat,
            "version": version,
            "collections": len(self._collection_names()),
        }

    async def do_health_check(self, *, ctx: Optional[OperationContext] = None) -> Dict[str, Any]:
        return await self._call(self._health, "health_check")

    # ------------------------------------------------------------------ #
    # Collections
    # ------------------------------------------------------------------ #

    def _create_collection(self, name: str, options: CollectionOptions) -> None:
        if name in self._collection_names():
            raise CollectionExistsError(name, provider=self.provider)
        metric = DistanceMetric(options.distance_metric or self._metric)
        metadata = _flatten_metadata(dict(options.metadata or {})) or {}
        metadata.update(
            {
                "hnsw:space": chroma_space(metric),
                "dimensions": int(options.dimensions or self._dimensions),
                "distance_metric": metric.value,
                "created_at": datetime.now(timezone.utc).isoformat(),
            }
        )
        self._collections[name] = self._require_client().create_collection(name=name, metadata=metadata)

    async def do_create_collection(
        self, name: str, options: CollectionOptions, *, ctx: Optional[OperationContext] = None
    ) -> None:
        await self._call(self._create_collection, "create_collection", name, options, collection=name)

    def _delete_collection(self, name: str) -> None:
        if name not in self._collection_names():
            raise CollectionNotFoundError(name, provider=self.provider)
        self._require_client().delete_collection(name=name)
        self._collections.pop(name, None)

    async def do_delete_collection(self, name: str, *, ctx: Optional[OperationContext] = None) -> None:
        await self._call(self._delete_collection, "delete_collection", name, collection=name)

    async def do_list_collections(self, *, ctx: Optional[OperationContext] = None) -> List[str]:
        return sorted(await self._call(self._collection_names, "list_collections"))

    async def do_collection_exists(self, name: str, *, ctx: Optional[OperationContext] = None) -> bool:
        return name in await self._call(self._collection_names, "collection_exists")

    def _stats(self, name: str) -> CollectionStats:
        col = self._get_collection(name)
        meta = dict(col.metadata or {})
        created = meta.get("created_at")
        return CollectionStats(
            name=name,
            document_count=int(col.count()),
            dimensions=int(meta.get("dimensions") or self._dimensions),
            created_at=datetime.fromisoformat(created) if isinstance(created, str) else None,
        )

    async def do_get_collection_stats(
        self, name: str, *, ctx: Optional[OperationContext] = None
    ) -> CollectionStats:
        return await self._call(self._stats, "get_collection_stats", name, collection=name)

    # ------------------------------------------------------------------ #
    # Documents
    # ------------------------------------------------------------------ #

    def _upsert(self, collection: str, documents: Sequence[Document]) -> None:
        col = self._get_collection(collection)
        size = max(1, self._tuning.batch_size)
        for i in range(0, len(documents), size):
            batch = documents[i:i + size]
            metadatas = [_flatten_metadata(dict(d.metadata)) for d in batch]
            kwargs: Dict[str, Any] = {
                "ids": [d.id for d in batch],
                "embeddings": [[float(x) for x in d.embedding] for d in batch],
                "documents": [d.content for d in batch],
            }
            if any(m is not None for m in metadatas):
                kwargs["metadatas"] = metadatas
            col.upsert(**kwargs)

    async def do_upsert(
        self, collection: str, documents: Sequence[Document], *, ctx: Optional[OperationContext] = None
    ) -> None:
        await self._call(self._upsert, "upsert", collection, documents, collection=collection)

    def _delete(self, collection: str, ids: Sequence[str]) -> None:
        col = self._get_collection(collection)
        size = max(1, self._tuning.batch_size)
        for i in range(0, len(ids), size):
            col.delete(ids=list(ids[i:i + size]))

    async def do_delete(
        self, collection: str, ids: Sequence[str], *, ctx: Optional[OperationContext] = None
    ) -> None:
        await self._call(self._delete, "delete", collection, list(ids), collection=collection)

    def _get(self, collection: str, ids: Sequence[str]) -> List[Document]:
        col = self._get_collection(collection)
        res = col.get(ids=list(ids), include=["embeddings", "documents", "metadatas"])
        found: Dict[str, Document] = {}
        got_ids = _column(res, "ids")
        embeddings = _column(res, "embeddings")
        docs = _column(res, "documents")
        metas = _column(res, "metadatas")
        for i, doc_id in enumerate(got_ids):
            found[doc_id] = Document(
                id=doc_id,
                embedding=_to_floats(embeddings[i]) if i < len(embeddings) else [],
                content=(docs[i] if i < len(docs) else None) or "",
                metadata=dict((metas[i] if i < len(metas) else None) or {}),
            )
        return [found[i] for i in dict.fromkeys(ids) if i in found]

    async def do_get(
        self, collection: str, ids: Sequence[str], *, ctx: Optional[OperationContext] = None
    ) -> List[Document]:
        return await self._call(self._get, "get", collection, ids, collection=collection)

    def _count(self, collection: str, flt: Optional[MetadataFilter]) -> int:
        col = self._get_collection(collection)
        where = self._where(flt)
        if where is None:
            return int(col.count())
        return len(_column(col.get(where=where, include=[]), "ids"))

    async def do_count(
        self, collection: str, filter: Optional[MetadataFilter], *, ctx: Optional[OperationContext] = None
    ) -> int:
        return await self._call(self._count, "count", collection, filter, collection=collection)

    # ------------------------------------------------------------------ #
    # Search
    # ------------------------------------------------------------------ #

    def _query(self, collection: str, query: SearchQuery, n_results: int, include: List[str]) -> List[Dict[str, Any]]:
        """Nearest neighbors as row dicts, closest first."""
        col = self._get_collection(collection)
        n = min(n_results, int(col.count()))
        if n <= 0:
            return []
        kwargs: Dict[str, Any] = {
            "query_embeddings": [[float(x) for x in query.embedding]],
            "n_results": n,
            "include": include,
        }
        where = self._where(query.filter)
        if where is not None:
            kwargs["where"] = where
        res = col.query(**kwargs)
        ids = _first(res, "ids")
        distances = _first(res, "distances")
        docs = _first(res, "documents")
        metas = _first(res, "metadatas")
        embeddings = _first(res, "embeddings")
        rows = []
        for i, doc_id in enumerate(ids):
            rows.append(
                {
                    "id": doc_id,
                    "distance": distances[i] if i < len(distances) else None,
                    "content": docs[i] if i < len(docs) else None,
                    "metadata": metas[i] if i < len(metas) else None,
                    "embedding": embeddings[i] if i < len(embeddings) else None,
                }
            )
        return rows

    def _result(self, row: Dict[str, Any], score: float, query: SearchQuery) -> SearchResult:
        return SearchResult(
            id=row["id"],
            score=score,
            content=row.get("content") if query.include_content else None,
            metadata=dict(row.get("metadata") or {}) if query.include_metadata else None,
            embedding=_to_floats(row.get("embedding")) if query.include_embedding else None,
        )

    def _score(self, row: Dict[str, Any]) -> float:
        if row.get("distance") is None:
            return 0.0
        return chroma_distance_to_similarity(row["distance"], self._metric)

    def _search(self, collection: str, query: SearchQuery) -> List[SearchResult]:
        rows = self._query(collection, query, query.top_k, self._include(query))
        results = []
        for row in rows:
            score = self._score(row)
            if query.score_threshold is not None and score < query.score_threshold:
                continue
            results.append(self._result(row, score, query))
        return results

    async def do_search(
        self, collection: str, query: SearchQuery, *, ctx: Optional[OperationContext] = None
    ) -> List[SearchResult]:
        return await self._call(self._search, "search", collection, query, collection=collection)

    def _keyword_rows(self, collection: str, query: HybridSearchQuery, limit: int) -> List[Dict[str, Any]]:
        """
        Documents containing any query term, ranked by term occurrences.

        Chroma's `$contains` is case-sensitive, so each term is matched as
        typed and lowercased. At most `max_fetch_k` matches, or `limit` if
        larger, are loaded for ranking; the best `limit` are returned.
        """
        terms = list(dict.fromkeys(_TERM_RE.findall(query.text)))
        if not terms:
            return []
        lowered = list(dict.fromkeys(t.lower() for t in terms))
        variants = list(dict.fromkeys(terms + lowered))
        col = self._get_collection(collection)
        if len(variants) == 1:
            where_document: Dict[str, Any] = {"$contains": variants[0]}
        else:
            where_document = {"$or": [{"$contains": t} for t in variants]}
        kwargs: Dict[str, Any] = {
            "where_document": where_document,
            "include": ["documents", "metadatas"] + (["embeddings"] if query.include_embedding else []),
            "limit": max(limit, self._tuning.max_fetch_k),
        }
        where = self._where(query.filter)
        if where is not None:
            kwargs["where"] = where
        res = col.get(**kwargs)
        ids = _column(res, "ids")
        docs = _column(res, "documents")
        metas = _column(res, "metadatas")
        embeddings = _column(res, "embeddings")

        ranked: List[Tuple[int, int, Dict[str, Any]]] = []
        for i, doc_id in enumerate(ids):
            text = (docs[i] if i < len(docs) else None) or ""
            hits = sum(text.lower().count(t) for t in lowered)
            ranked.append(
                (
                    -hits,
                    i,
                    {
                        "id": doc_id,
                        "content": text,
                        "metadata": metas[i] if i < len(metas) else None,
                        "embedding": embeddings[i] if i < len(embeddings) else None,
                    },
                )
            )
        ranked.sort(key=lambda item: (item[0], item[1]))
        return [row for _, _, row in ranked[:limit]]

    def _hybrid_search(self, collection: str, query: HybridSearchQuery) -> List[SearchResult]:
        fetch_limit = query.top_k * max(1, self._tuning.hybrid_fetch_multiplier)
        include = self._include(query, distances=False) + ["documents"]
        vector_rows = self._query(collection, query, fetch_limit, list(dict.fromkeys(include)))
        text_rows = self._keyword_rows(collection, query, fetch_limit)

        rows: Dict[str, Dict[str, Any]] = {}
        for row in text_rows + vector_rows:
            rows[row["id"]] = row
        fused = reciprocal_rank_fusion(
            [r["id"] for r in vector_rows],
            [r["id"] for r in text_rows],
            alpha=float(query.alpha),
            k=max(1, int(self._tuning.rrf_k)),
            fetch_limit=fetch_limit,
        )
        results = []
        for doc_id, score in fused[: query.top_k]:
            if query.score_threshold is not None and score < query.score_threshold:
                continue
            results.append(self._result(rows[doc_id], score, query))
        return results

    async def do_hybrid_search(
        self, collection: str, query: HybridSearchQuery, *, ctx: Optional[OperationContext] = None
    ) -> List[SearchResult]:
        return await self._call(self._hybrid_search, "hybrid_search", collection, query, collection=collection)

    async def do_mmr_search(
        self, collection: str, query: MMRSearchQuery, *, ctx: Optional[OperationContext] = None
    ) -> List[SearchResult]:
        fetch_k = min(query.fetch_k or query.top_k * self._tuning.mmr_fetch_multiplier, self._tuning.max_fetch_k)
        include = list(dict.fromkeys(self._include(query, embeddings=True) + ["documents", "metadatas"]))
        rows = await self._call(self._query, "mmr_search", collection, query, fetch_k, include, collection=collection)
        candidates = [
            MMRCandidate(id=r["id"], relevance=self._score(r), embedding=_to_floats(r["embedding"]), payload=r)
            for r in rows
        ]
        selected = maximal_marginal_relevance(
            candidates,
            top_k=query.top_k,
            lambda_=float(query.lambda_),
            score_threshold=query.score_threshold,
        )
        return [self._result(c.payload, c.relevance, query) for c in selected]

    # ------------------------------------------------------------------ #
    # Maintenance
    # ------------------------------------------------------------------ #

    async def do_optimize(self, collection: str, *, ctx: Optional[OperationContext] = None) -> None:
        logger.debug("chroma optimize is a no-op collection=%s", collection)

    async def do_vacuum(self, collection: str, *, ctx: Optional[OperationContext] = None) -> None:
        logger.debug("chroma vacuum is a no-op collection=%s", collection)


__all__ = ["ChromaBackend"]
