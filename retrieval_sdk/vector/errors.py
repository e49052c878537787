# retrieval_sdk/vector/errors.py
# SPDX-License-Identifier: Apache-2.0
"""
Normalized vector store errors.

Every error raised by the vector layer derives from `VectorStoreError` and
carries a machine-readable `code`, the originating `provider`, optional
structured `details`, the wrapped `cause` and a `retryable` hint. The store
never retries on its own; `retryable` is guidance for callers.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional


class VectorStoreError(Exception):
    """
    Base exception for all vector store errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (UPPER_SNAKE_CASE)
        provider: Name of the provider that raised the error ("unknown" when
            raised before a provider is involved)
        details: Additional context-specific details (JSON-serializable)
        cause: Underlying exception, when wrapping a backend failure
        retryable: Whether the caller may reasonably retry the operation
    """

    def __init__(
        self,
        message: str = "",
        *,
        code: Optional[str] = None,
        provider: str = "unknown",
        details: Optional[Mapping[str, Any]] = None,
        cause: Optional[BaseException] = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or "UNKNOWN_ERROR"
        self.provider = provider
        self.details = dict(details or {})
        self.cause = cause
        self.retryable = retryable
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        return f"[{self.code}] {self.message} (provider: {self.provider})"

    def asdict(self) -> Dict[str, Any]:
        """Convert error to dictionary for serialization and logging."""
        return {
            "error": type(self).__name__,
            "message": self.message,
            "code": self.code,
            "provider": self.provider,
            "retryable": self.retryable,
            "details": {k: self.details[k] for k in sorted(self.details)},
            "cause": repr(self.cause) if self.cause is not None else None,
        }


# Subclasses set default `code` in UPPER_SNAKE_CASE where not explicitly provided.

class InvalidConfigError(VectorStoreError):
    """Store configuration is invalid (dimensions, provider sub-config, names)."""
    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("code", "INVALID_CONFIG")
        super().__init__(message, **kwargs)


class NotInitializedError(VectorStoreError):
    """Operation attempted before initialize()."""
    def __init__(self, message: str = "vector store is not initialized; call initialize() first", **kwargs: Any):
        kwargs.setdefault("code", "NOT_INITIALIZED")
        super().__init__(message, **kwargs)


class CollectionNotFoundError(VectorStoreError):
    def __init__(self, collection: str, **kwargs: Any):
        kwargs.setdefault("code", "COLLECTION_NOT_FOUND")
        details = dict(kwargs.pop("details", None) or {})
        details.setdefault("collection", collection)
        super().__init__(f"collection '{collection}' not found", details=details, **kwargs)
        self.collection = collection


class CollectionExistsError(VectorStoreError):
    def __init__(self, collection: str, **kwargs: Any):
        kwargs.setdefault("code", "COLLECTION_ALREADY_EXISTS")
        details = dict(kwargs.pop("details", None) or {})
        details.setdefault("collection", collection)
        super().__init__(f"collection '{collection}' already exists", details=details, **kwargs)
        self.collection = collection


class InvalidEmbeddingDimensionsError(VectorStoreError):
    """Embedding length does not match the configured dimensions."""
    def __init__(self, expected: int, actual: int, **kwargs: Any):
        kwargs.setdefault("code", "INVALID_EMBEDDING_DIMENSIONS")
        details = dict(kwargs.pop("details", None) or {})
        details.update({"expected": expected, "actual": actual})
        super().__init__(
            f"invalid embedding dimensions: expected {expected}, got {actual}",
            details=details,
            **kwargs,
        )
        self.expected = expected
        self.actual = actual


class InvalidDocumentError(VectorStoreError):
    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("code", "INVALID_DOCUMENT")
        super().__init__(message, **kwargs)


class InvalidQueryError(VectorStoreError):
    """Query parameters out of range (top_k, score_threshold, alpha, lambda, text)."""
    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("code", "INVALID_QUERY")
        super().__init__(message, **kwargs)


class InvalidFilterError(VectorStoreError):
    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("code", "INVALID_FILTER")
        super().__init__(message, **kwargs)


class ConnectionError(VectorStoreError):  # noqa: A001 - mirrors the taxonomy name
    """Transport or authentication failure reaching the backend. Retryable by default."""
    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("code", "CONNECTION_FAILED")
        kwargs.setdefault("retryable", True)
        super().__init__(message, **kwargs)


class DeadlineExceededError(VectorStoreError):
    """Operation exceeded ctx.deadline_ms budget."""
    def __init__(self, message: str = "operation timed out", **kwargs: Any):
        kwargs.setdefault("code", "DEADLINE_EXCEEDED")
        kwargs.setdefault("retryable", True)
        super().__init__(message, **kwargs)


class ProviderError(VectorStoreError):
    """Generic backend failure (bad SQL, constraint violation, client error)."""
    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("code", "PROVIDER_ERROR")
        super().__init__(message, **kwargs)


class ProviderNotSupportedError(VectorStoreError):
    def __init__(self, provider: str, **kwargs: Any):
        kwargs.setdefault("code", "PROVIDER_NOT_SUPPORTED")
        super().__init__(f"provider '{provider}' is not supported", provider=str(provider), **kwargs)


class ProviderNotImplementedError(VectorStoreError):
    """A recognised provider without a real implementation was asked to do work."""
    def __init__(self, provider: str, operation: str, **kwargs: Any):
        kwargs.setdefault("code", "PROVIDER_NOT_IMPLEMENTED")
        details = dict(kwargs.pop("details", None) or {})
        details.setdefault("operation", operation)
        super().__init__(
            f"operation '{operation}' is not implemented for provider '{provider}'",
            provider=provider,
            details=details,
            **kwargs,
        )
        self.operation = operation


__all__ = [
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
]
