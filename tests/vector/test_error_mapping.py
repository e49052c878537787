# SPDX-License-Identifier: Apache-2.0
"""
Vector Store — Error taxonomy, codes and retryability.
"""

import builtins

import pytest

from retrieval_sdk.vector.errors import (
    CollectionExistsError,
    CollectionNotFoundError,
    ConnectionError,
    DeadlineExceededError,
    InvalidConfigError,
    InvalidDocumentError,
    InvalidEmbeddingDimensionsError,
    InvalidFilterError,
    InvalidQueryError,
    NotInitializedError,
    ProviderError,
    ProviderNotImplementedError,
    ProviderNotSupportedError,
    VectorStoreError,
)

pytestmark = pytest.mark.asyncio


@pytest.mark.parametrize(
    "err, code, retryable",
    [
        (InvalidConfigError("bad"), "INVALID_CONFIG", False),
        (NotInitializedError(), "NOT_INITIALIZED", False),
        (CollectionNotFoundError("docs"), "COLLECTION_NOT_FOUND", False),
        (CollectionExistsError("docs"), "COLLECTION_ALREADY_EXISTS", False),
        (InvalidEmbeddingDimensionsError(4, 3), "INVALID_EMBEDDING_DIMENSIONS", False),
        (InvalidDocumentError("bad"), "INVALID_DOCUMENT", False),
        (InvalidQueryError("bad"), "INVALID_QUERY", False),
        (InvalidFilterError("bad"), "INVALID_FILTER", False),
        (ConnectionError("down"), "CONNECTION_FAILED", True),
        (DeadlineExceededError(), "DEADLINE_EXCEEDED", True),
        (ProviderError("boom"), "PROVIDER_ERROR", False),
        (ProviderNotSupportedError("faiss"), "PROVIDER_NOT_SUPPORTED", False),
        (ProviderNotImplementedError("qdrant", "search"), "PROVIDER_NOT_IMPLEMENTED", False),
    ],
)
async def test_error_codes_and_retryability(err, code, retryable):
    assert isinstance(err, VectorStoreError)
    assert err.code == code
    assert err.retryable is retryable


async def test_error_str_includes_code_and_provider():
    err = CollectionNotFoundError("docs", provider="pgvector")
    assert str(err) == "[COLLECTION_NOT_FOUND] collection 'docs' not found (provider: pgvector)"


async def test_error_asdict_shape():
    cause = OSError("reset by peer")
    err = ConnectionError("lost connection", provider="pgvector", cause=cause, details={"op": "search"})
    d = err.asdict()
    assert d == {
        "error": "ConnectionError",
        "message": "lost connection",
        "code": "CONNECTION_FAILED",
        "provider": "pgvector",
        "retryable": True,
        "details": {"op": "search"},
        "cause": repr(cause),
    }
    assert err.__cause__ is cause


async def test_dimension_error_details():
    err = InvalidEmbeddingDimensionsError(1536, 768, provider="chromadb")
    assert (err.expected, err.actual) == (1536, 768)
    assert err.details == {"expected": 1536, "actual": 768}
    assert "expected 1536, got 768" in err.message


async def test_not_implemented_names_operation():
    err = ProviderNotImplementedError("weaviate", "hybrid_search")
    assert err.provider == "weaviate"
    assert err.operation == "hybrid_search"
    assert err.details["operation"] == "hybrid_search"


async def test_code_override_is_respected():
    err = ProviderError("throttled", code="RATE_LIMITED", retryable=True)
    assert err.code == "RATE_LIMITED"
    assert err.retryable is True


async def test_connection_error_is_not_builtin_subclass():
    assert not issubclass(ConnectionError, builtins.ConnectionError)
