# retrieval_sdk/vector/factory.py
# SPDX-License-Identifier: Apache-2.0
"""
Vector store factory.

`VectorStoreFactory.create(config)` validates the config, applies defaults
and wraps the right backend in a `VectorStore`. Providers form a closed
set (`Provider`); the ones without a real backend are served by
`UnimplementedBackend`, whose every hook raises ProviderNotImplementedError,
so callers can check `implemented_providers()` before `initialize()`.

Usage
-----
    from retrieval_sdk.vector.factory import create_vector_store
    from retrieval_sdk.vector.config import StoreConfig, PgVectorConfig

    store = create_vector_store(
        StoreConfig(provider="pgvector", backend=PgVectorConfig.from_env(), dimensions=768)
    )
"""

from __future__ import annotations

import dataclasses
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from retrieval_sdk.core.operation_context import OperationContext
from retrieval_sdk.vector.cache import Cache
from retrieval_sdk.vector.chroma_adapter import ChromaBackend
from retrieval_sdk.vector.config import (
    BACKEND_CONFIG_TYPES,
    DEFAULT_DIMENSIONS,
    DEFAULT_DISTANCE_METRIC,
    CacheConfig,
    ChromaDBConfig,
    PgVectorConfig,
    StoreConfig,
)
from retrieval_sdk.vector.errors import (
    InvalidConfigError,
    ProviderNotImplementedError,
    ProviderNotSupportedError,
)
from retrieval_sdk.vector.pgvector_adapter import PgVectorBackend
from retrieval_sdk.vector.types import DistanceMetric, Provider
from retrieval_sdk.vector.vector_base import BACKEND_HOOKS, VectorStore, VectorStoreBackend

LOG = logging.getLogger(__name__)

BackendBuilder = Callable[..., VectorStoreBackend]

IMPLEMENTED_BACKENDS: Dict[Provider, BackendBuilder] = {
    Provider.CHROMADB: ChromaBackend,
    Provider.PGVECTOR: PgVectorBackend,
}


def _not_implemented(hook: str):
    operation = hook[len("do_"):]

    async def method(self, *args: Any, ctx: Optional[OperationContext] = None, **kwargs: Any) -> Any:
        raise ProviderNotImplementedError(self.provider, operation)

    method.__name__ = hook
    method.__qualname__ = f"UnimplementedBackend.{hook}"
    return method


class UnimplementedBackend:
    """Backend for a recognised provider that has no implementation yet."""

    def __init__(self, provider: Provider) -> None:
        self.provider = provider.value

    def __repr__(self) -> str:
        return f"<UnimplementedBackend provider={self.provider}>"


for _hook in BACKEND_HOOKS:
    setattr(UnimplementedBackend, _hook, _not_implemented(_hook))
del _hook


class VectorStoreFactory:
    """
    Builds `VectorStore` instances from `StoreConfig`.

    `backends` maps providers to backend builders, each called as
    `builder(config, **backend_options)`; it defaults to IMPLEMENTED_BACKENDS.
    """

    def __init__(self, backends: Optional[Mapping[Provider, BackendBuilder]] = None) -> None:
        self._backends: Dict[Provider, BackendBuilder] = dict(
            IMPLEMENTED_BACKENDS if backends is None else backends
        )

    @staticmethod
    def _resolve_provider(provider: Union[Provider, str]) -> Provider:
        try:
            return provider if isinstance(provider, Provider) else Provider(str(provider).strip().lower())
        except ValueError:
            raise ProviderNotSupportedError(str(provider)) from None

    def resolve_config(self, config: StoreConfig) -> StoreConfig:
        """Validate `config` and return a copy with defaults applied."""
        provider = self._resolve_provider(config.provider)

        dims = DEFAULT_DIMENSIONS if config.dimensions is None else config.dimensions
        if isinstance(dims, bool) or not isinstance(dims, int) or dims <= 0:
            raise InvalidConfigError(
                f"dimensions must be a positive integer, got {dims!r}",
                provider=provider.value,
                details={"dimensions": repr(dims)},
            )

        try:
            metric = DistanceMetric(config.distance_metric or DEFAULT_DISTANCE_METRIC)
        except ValueError:
            raise InvalidConfigError(
                f"unsupported distance metric {config.distance_metric!r}",
                provider=provider.value,
            ) from None

        expected = BACKEND_CONFIG_TYPES[provider]
        if not isinstance(config.backend, expected):
            raise InvalidConfigError(
                f"{provider.value} configuration is required ({expected.__name__})",
                provider=provider.value,
                details={"got": type(config.backend).__name__},
            )

        if config.cache is not None and config.cache.enabled:
            if config.cache.max_entries <= 0 or config.cache.ttl_ms <= 0:
                raise InvalidConfigError(
                    "cache ttl_ms and max_entries must be positive", provider=provider.value
                )

        for tuning_field in dataclasses.fields(config.tuning):
            value = getattr(config.tuning, tuning_field.name)
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise InvalidConfigError(
                    f"tuning {tuning_field.name} must be a positive integer, got {value!r}",
                    provider=provider.value,
                    details={tuning_field.name: repr(value)},
                )

        return dataclasses.replace(config, provider=provider, dimensions=dims, distance_metric=metric)

    def create(
        self,
        config: StoreConfig,
        *,
        cache: Optional[Cache] = None,
        **backend_options: Any,
    ) -> VectorStore:
        """
        Build an uninitialized store. Call `await store.initialize()` next.
        """
        resolved = self.resolve_config(config)
        provider = Provider(resolved.provider)
        builder = self._backends.get(provider)
        if builder is None:
            LOG.warning("provider %s is not implemented; every operation will fail", provider.value)
            backend: VectorStoreBackend = UnimplementedBackend(provider)
        else:
            backend = builder(resolved, **backend_options)
        LOG.debug(
            "created vector store provider=%s dims=%d metric=%s",
            provider.value, resolved.dimensions, DistanceMetric(resolved.distance_metric).value,
        )
        return VectorStore(backend, resolved, cache=cache)

    def supported_providers(self) -> List[str]:
        return [p.value for p in Provider]

    def implemented_providers(self) -> List[str]:
        return [p.value for p in Provider if p in self._backends]

    def is_provider_supported(self, provider: Union[Provider, str]) -> bool:
        try:
            self._resolve_provider(provider)
        except ProviderNotSupportedError:
            return False
        return True

    def is_provider_implemented(self, provider: Union[Provider, str]) -> bool:
        try:
            return self._resolve_provider(provider) in self._backends
        except ProviderNotSupportedError:
            return False


vector_store_factory = VectorStoreFactory()


def create_vector_store(config: StoreConfig, **backend_options: Any) -> VectorStore:
    return vector_store_factory.create(config, **backend_options)


def create_pgvector_store(
    connection_string: str,
    dimensions: int = DEFAULT_DIMENSIONS,
    *,
    distance_metric: Union[DistanceMetric, str] = DEFAULT_DISTANCE_METRIC,
    cache: Optional[CacheConfig] = None,
    **pg_options: Any,
) -> VectorStore:
    """Shorthand for a pgvector store; `pg_options` are PgVectorConfig fields."""
    return create_vector_store(
        StoreConfig(
            provider=Provider.PGVECTOR,
            backend=PgVectorConfig(connection_string=connection_string, **pg_options),
            dimensions=dimensions,
            distance_metric=distance_metric,
            cache=cache,
        )
    )


def create_chroma_store(
    persist_path: Optional[str] = None,
    dimensions: int = DEFAULT_DIMENSIONS,
    *,
    distance_metric: Union[DistanceMetric, str] = DEFAULT_DISTANCE_METRIC,
    cache: Optional[CacheConfig] = None,
    **chroma_options: Any,
) -> VectorStore:
    """Shorthand for a Chroma store; `chroma_options` are ChromaDBConfig fields."""
    return create_vector_store(
        StoreConfig(
            provider=Provider.CHROMADB,
            backend=ChromaDBConfig(persist_path=persist_path, **chroma_options),
            dimensions=dimensions,
            distance_metric=distance_metric,
            cache=cache,
        )
    )


__all__ = [
    "IMPLEMENTED_BACKENDS",
    "UnimplementedBackend",
    "VectorStoreFactory",
    "vector_store_factory",
    "create_vector_store",
    "create_pgvector_store",
    "create_chroma_store",
]
