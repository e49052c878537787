# tests/mock/fake_chroma.py
# SPDX-License-Identifier: Apache-2.0
"""
In-process stand-in for a Chroma client.

Implements the slice of the client and collection API that ChromaBackend
uses, with Chroma's distance conventions per `hnsw:space` (cosine is
1 - cos, l2 is squared euclidean, ip is 1 - dot) and the `where` /
`where_document` operators. Client and collection calls are recorded in
`FakeChromaClient.calls` as `(method, kwargs)`.
"""

from __future__ import annotations

import math
from typing import Any, Dict, List, Optional, Tuple

_COMPARE = {
    "$eq": lambda a, b: a == b,
    "$ne": lambda a, b: a != b,
    "$gt": lambda a, b: a is not None and a > b,
    "$gte": lambda a, b: a is not None and a >= b,
    "$lt": lambda a, b: a is not None and a < b,
    "$lte": lambda a, b: a is not None and a <= b,
    "$in": lambda a, b: a in b,
    "$nin": lambda a, b: a not in b,
    "$contains": lambda a, b: isinstance(a, str) and b in a,
}


def matches_where(metadata: Optional[Dict[str, Any]], where: Dict[str, Any]) -> bool:
    md = metadata or {}
    for key, cond in where.items():
        if key == "$and":
            if not all(matches_where(md, c) for c in cond):
                return False
        elif key == "$or":
            if not any(matches_where(md, c) for c in cond):
                return False
        else:
            for op, expected in cond.items():
                if key not in md and op not in ("$ne", "$nin"):
                    return False
                if not _COMPARE[op](md.get(key), expected):
                    return False
    return True


def matches_document(text: Optional[str], where_document: Dict[str, Any]) -> bool:
    text = text or ""
    if "$or" in where_document:
        return any(matches_document(text, c) for c in where_document["$or"])
    if "$and" in where_document:
        return all(matches_document(text, c) for c in where_document["$and"])
    return where_document["$contains"] in text


def _distance(space: str, a: List[float], b: List[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    if space == "l2":
        return sum((x - y) ** 2 for x, y in zip(a, b))
    if space == "ip":
        return 1.0 - dot
    na = math.sqrt(sum(x * x for x in a))
    nb = math.sqrt(sum(y * y for y in b))
    if na == 0 or nb == 0:
        return 1.0
    return 1.0 - dot / (na * nb)


class FakeCollection:
    def __init__(self, client: "FakeChromaClient", name: str, metadata: Optional[Dict[str, Any]]) -> None:
        self.client = client
        self.name = name
        self.metadata = dict(metadata or {})
        self.rows: Dict[str, Dict[str, Any]] = {}

    @property
    def space(self) -> str:
        return self.metadata.get("hnsw:space", "l2")

    def _record(self, method: str, **kwargs: Any) -> None:
        self.client.calls.append((f"{self.name}.{method}", kwargs))

    def upsert(self, ids, embeddings, documents=None, metadatas=None) -> None:
        self._record("upsert", ids=ids, embeddings=embeddings, documents=documents, metadatas=metadatas)
        for i, doc_id in enumerate(ids):
            for value in (metadatas[i] if metadatas and metadatas[i] else {}).values():
                if not isinstance(value, (str, int, float, bool)):
                    raise ValueError(f"Expected metadata value to be a str, int, float or bool, got {value!r}")
            self.rows[doc_id] = {
                "embedding": list(embeddings[i]),
                "document": documents[i] if documents else None,
                "metadata": dict(metadatas[i]) if metadatas and metadatas[i] else None,
            }

    def delete(self, ids=None) -> None:
        self._record("delete", ids=ids)
        for doc_id in ids or []:
            self.rows.pop(doc_id, None)

    def count(self) -> int:
        return len(self.rows)

    def _select(self, ids=None, where=None, where_document=None) -> List[Tuple[str, Dict[str, Any]]]:
        picked = []
        for doc_id, row in self.rows.items():
            if ids is not None and doc_id not in ids:
                continue
            if where and not matches_where(row["metadata"], where):
                continue
            if where_document and not matches_document(row["document"], where_document):
                continue
            picked.append((doc_id, row))
        return picked

    def get(self, ids=None, where=None, where_document=None, include=None, limit=None) -> Dict[str, Any]:
        kwargs = dict(ids=ids, where=where, where_document=where_document, include=include)
        if limit is not None:
            kwargs["limit"] = limit
        self._record("get", **kwargs)
        include = ["documents", "metadatas"] if include is None else include
        picked = self._select(ids, where, where_document)
        if limit is not None:
            picked = picked[:limit]
        return {
            "ids": [doc_id for doc_id, _ in picked],
            "embeddings": [r["embedding"] for _, r in picked] if "embeddings" in include else None,
            "documents": [r["document"] for _, r in picked] if "documents" in include else None,
            "metadatas": [r["metadata"] for _, r in picked] if "metadatas" in include else None,
        }

    def query(self, query_embeddings, n_results=10, where=None, include=None) -> Dict[str, Any]:
        self._record("query", query_embeddings=query_embeddings, n_results=n_results, where=where, include=include)
        include = ["distances", "documents", "metadatas"] if include is None else include
        q = query_embeddings[0]
        scored = sorted(
            ((_distance(self.space, q, r["embedding"]), doc_id, r) for doc_id, r in self._select(where=where)),
            key=lambda item: (item[0], item[1]),
        )[:n_results]

        def column(name: str, pick) -> Optional[List[List[Any]]]:
            return [[pick(d, r) for d, _, r in scored]] if name in include else None

        return {
            "ids": [[doc_id for _, doc_id, _ in scored]],
            "distances": column("distances", lambda d, r: d),
            "documents": column("documents", lambda d, r: r["document"]),
            "metadatas": column("metadatas", lambda d, r: r["metadata"]),
            "embeddings": column("embeddings", lambda d, r: r["embedding"]),
        }


class FakeChromaClient:
    def __init__(self, *, version: str = "0.5.0") -> None:
        self.calls: List[Tuple[str, Dict[str, Any]]] = []
        self.collections: Dict[str, FakeCollection] = {}
        self.version = version
        self.heartbeat_error: Optional[BaseException] = None

    def heartbeat(self) -> int:
        self.calls.append(("heartbeat", {}))
        if self.heartbeat_error is not None:
            raise self.heartbeat_error
        return 1_700_000_000_000_000_000

    def get_version(self) -> str:
        return self.version

    def list_collections(self) -> List[FakeCollection]:
        return list(self.collections.values())

    def create_collection(self, name: str, metadata: Optional[Dict[str, Any]] = None) -> FakeCollection:
        self.calls.append(("create_collection", {"name": name, "metadata": metadata}))
        if name in self.collections:
            raise ValueError(f"Collection {name} already exists")
        col = FakeCollection(self, name, metadata)
        self.collections[name] = col
        return col

    def get_collection(self, name: str) -> FakeCollection:
        if name not in self.collections:
            raise ValueError(f"Collection {name} does not exist.")
        return self.collections[name]

    def delete_collection(self, name: str) -> None:
        self.calls.append(("delete_collection", {"name": name}))
        if name not in self.collections:
            raise ValueError(f"Collection {name} does not exist.")
        del self.collections[name]

    def methods(self, suffix: str) -> List[Dict[str, Any]]:
        """kwargs of every recorded call whose name ends with `suffix`."""
        return [kwargs for method, kwargs in self.calls if method.endswith(suffix)]
