# SPDX-License-Identifier: Apache-2.0
"""
Vector Store — Input validation before any backend call.
"""

import math

import pytest

from retrieval_sdk.vector.errors import (
    InvalidConfigError,
    InvalidDocumentError,
    InvalidEmbeddingDimensionsError,
    InvalidFilterError,
    InvalidQueryError,
)
from retrieval_sdk.vector.types import (
    CollectionOptions,
    Document,
    HybridSearchQuery,
    MetadataFilter,
    MMRSearchQuery,
    SearchQuery,
)
from tests.conftest import doc

pytestmark = pytest.mark.asyncio


def _data_calls(backend):
    return [c for c in backend.calls if c not in ("initialize", "create_collection", "dispose")]


@pytest.mark.parametrize("name", ["x!bad", "", "has space", "semi;colon", "dot.name", "quote\"d", "docs\n", "\ndocs"])
async def test_collection_name_rejected_before_backend(ready_store, backend, name):
    """Names outside [A-Za-z0-9_-] fail and create nothing."""
    before = list(backend.calls)
    with pytest.raises(InvalidConfigError):
        await ready_store.create_collection(name)
    assert backend.calls == before
    assert name not in backend.collections


async def test_trailing_newline_name_cannot_reach_existing_collection(ready_store, backend):
    """A newline-suffixed name is rejected rather than aliasing `docs`."""
    await ready_store.upsert("docs", [doc("a", [1.0, 0.0, 0.0, 0.0])])
    before = list(backend.calls)
    with pytest.raises(InvalidConfigError):
        await ready_store.delete_collection("docs\n")
    with pytest.raises(InvalidConfigError):
        await ready_store.count("docs\n")
    assert backend.calls == before
    assert await ready_store.count("docs") == 1


@pytest.mark.parametrize("name", ["docs_v2", "Docs-2024", "a", "under_score-dash"])
async def test_collection_name_accepted(ready_store, name):
    await ready_store.create_collection(name)
    assert await ready_store.collection_exists(name)


async def test_collection_options_resolved_from_store(ready_store, backend):
    """Unset options take the store's dimensions and metric."""
    await ready_store.create_collection("other")
    opts = backend.options["other"]
    assert opts.dimensions == 4
    assert opts.distance_metric.value == "cosine"


async def test_collection_options_invalid_dimensions(ready_store, backend):
    with pytest.raises(InvalidConfigError):
        await ready_store.create_collection("bad", CollectionOptions(dimensions=0))
    assert "bad" not in backend.collections


async def test_upsert_dimension_mismatch_never_reaches_backend(ready_store, backend):
    """Wrong-length embeddings are rejected with expected/actual details."""
    with pytest.raises(InvalidEmbeddingDimensionsError) as exc_info:
        await ready_store.upsert("docs", [doc("a", [1.0, 0.0, 0.0])])
    err = exc_info.value
    assert err.expected == 4
    assert err.actual == 3
    assert err.details == {"expected": 4, "actual": 3}
    assert "upsert" not in backend.calls


async def test_upsert_rejects_whole_batch_on_one_bad_document(ready_store, backend):
    """A single invalid document fails the batch and nothing is written."""
    good = doc("a", [1, 0, 0, 0])
    bad = doc("b", [1, 0, 0])
    with pytest.raises(InvalidEmbeddingDimensionsError):
        await ready_store.upsert("docs", [good, bad])
    assert backend.collections["docs"] == {}


@pytest.mark.parametrize("value", [math.nan, math.inf, -math.inf, "1.0", None, True])
async def test_upsert_rejects_non_finite_components(ready_store, backend, value):
    with pytest.raises(InvalidDocumentError):
        await ready_store.upsert("docs", [doc("a", [0.1, value, 0.2, 0.3])])
    assert "upsert" not in backend.calls


@pytest.mark.parametrize("doc_id", ["", "   ", None, 7])
async def test_upsert_rejects_blank_ids(ready_store, doc_id):
    with pytest.raises(InvalidDocumentError):
        await ready_store.upsert("docs", [Document(id=doc_id, embedding=[1, 0, 0, 0])])


async def test_upsert_rejects_empty_embedding(ready_store):
    with pytest.raises(InvalidDocumentError):
        await ready_store.upsert("docs", [Document(id="a", embedding=[])])


async def test_upsert_rejects_non_document(ready_store):
    with pytest.raises(InvalidDocumentError):
        await ready_store.upsert("docs", [{"id": "a", "embedding": [1, 0, 0, 0]}])


async def test_upsert_empty_batch_is_noop(ready_store, backend):
    await ready_store.upsert("docs", [])
    assert "upsert" not in backend.calls


async def test_delete_and_get_with_no_ids_skip_backend(ready_store, backend):
    await ready_store.delete("docs", [])
    assert await ready_store.get("docs", []) == []
    assert _data_calls(backend) == []


async def test_search_top_k_zero_rejected_before_query(ready_store, backend):
    """top_k=0 fails with InvalidQueryError and no query is sent."""
    with pytest.raises(InvalidQueryError):
        await ready_store.search("docs", SearchQuery(embedding=[1, 0, 0, 0], top_k=0))
    assert "search" not in backend.calls


@pytest.mark.parametrize("top_k", [-1, 1.5, True, "3"])
async def test_search_top_k_must_be_positive_int(ready_store, top_k):
    with pytest.raises(InvalidQueryError):
        await ready_store.search("docs", SearchQuery(embedding=[1, 0, 0, 0], top_k=top_k))


@pytest.mark.parametrize("threshold", [-0.01, 1.01, math.nan])
async def test_search_score_threshold_must_be_unit_interval(ready_store, threshold):
    with pytest.raises(InvalidQueryError):
        await ready_store.search(
            "docs", SearchQuery(embedding=[1, 0, 0, 0], score_threshold=threshold)
        )


async def test_search_query_dimension_mismatch(ready_store, backend):
    with pytest.raises(InvalidEmbeddingDimensionsError):
        await ready_store.search("docs", SearchQuery(embedding=[1, 0]))
    assert "search" not in backend.calls


async def test_search_invalid_filter_rejected(ready_store, backend):
    flt = MetadataFilter(greater_than={"line": "ten"})
    with pytest.raises(InvalidFilterError):
        await ready_store.search("docs", SearchQuery(embedding=[1, 0, 0, 0], filter=flt))
    assert "search" not in backend.calls


async def test_count_invalid_filter_rejected(ready_store, backend):
    with pytest.raises(InvalidFilterError):
        await ready_store.count("docs", MetadataFilter(in_={"lang": "python"}))
    assert "count" not in backend.calls


@pytest.mark.parametrize("text", ["", "   "])
async def test_hybrid_requires_text(ready_store, backend, text):
    with pytest.raises(InvalidQueryError):
        await ready_store.hybrid_search("docs", HybridSearchQuery(embedding=[1, 0, 0, 0], text=text))
    assert "hybrid_search" not in backend.calls


@pytest.mark.parametrize("alpha", [-0.1, 1.1])
async def test_hybrid_alpha_range(ready_store, alpha):
    with pytest.raises(InvalidQueryError):
        await ready_store.hybrid_search(
            "docs", HybridSearchQuery(embedding=[1, 0, 0, 0], text="q", alpha=alpha)
        )


async def test_hybrid_requires_hybrid_query_type(ready_store):
    with pytest.raises(InvalidQueryError):
        await ready_store.hybrid_search("docs", SearchQuery(embedding=[1, 0, 0, 0]))


@pytest.mark.parametrize("lam", [-0.5, 1.5])
async def test_mmr_lambda_range(ready_store, lam):
    with pytest.raises(InvalidQueryError):
        await ready_store.mmr_search("docs", MMRSearchQuery(embedding=[1, 0, 0, 0], lambda_=lam))


async def test_mmr_fetch_k_must_be_positive(ready_store):
    with pytest.raises(InvalidQueryError):
        await ready_store.mmr_search("docs", MMRSearchQuery(embedding=[1, 0, 0, 0], fetch_k=0))


async def test_mmr_requires_mmr_query_type(ready_store):
    with pytest.raises(InvalidQueryError):
        await ready_store.mmr_search("docs", SearchQuery(embedding=[1, 0, 0, 0]))
