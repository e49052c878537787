# retrieval_sdk/vector/distance.py
# SPDX-License-Identifier: Apache-2.0
"""
Distance / similarity utilities.

Backends report raw engine distances; `distance_to_similarity` maps them
into a normalized score in [0, 1] (higher is better) per metric:

- cosine:      engine distance in [0, 2]        -> 1 - d/2
- euclidean:   engine distance in [0, inf)      -> 1 / (1 + d)
- dot_product: engine returns negated inner product -> -d

Every result is clamped into [0, 1].
"""

from __future__ import annotations

import math
from typing import List, Sequence, Union

from retrieval_sdk.vector.types import DistanceMetric

_PGVECTOR_OPERATORS = {
    DistanceMetric.COSINE: "<=>",
    DistanceMetric.EUCLIDEAN: "<->",
    DistanceMetric.DOT_PRODUCT: "<#>",
}

_PGVECTOR_INDEX_OPS = {
    DistanceMetric.COSINE: "vector_cosine_ops",
    DistanceMetric.EUCLIDEAN: "vector_l2_ops",
    DistanceMetric.DOT_PRODUCT: "vector_ip_ops",
}

_CHROMA_SPACES = {
    DistanceMetric.COSINE: "cosine",
    DistanceMetric.EUCLIDEAN: "l2",
    DistanceMetric.DOT_PRODUCT: "ip",
}


def clamp(value: float, lo: float = 0.0, hi: float = 1.0) -> float:
    if math.isnan(value):
        return lo
    return max(lo, min(hi, value))


def _metric(metric: Union[DistanceMetric, str]) -> DistanceMetric:
    return metric if isinstance(metric, DistanceMetric) else DistanceMetric(metric)


def distance_to_similarity(distance: float, metric: Union[DistanceMetric, str]) -> float:
    """Convert an engine distance into a normalized similarity in [0, 1]."""
    d = float(distance)
    m = _metric(metric)
    if m is DistanceMetric.COSINE:
        return clamp(1.0 - d / 2.0)
    if m is DistanceMetric.EUCLIDEAN:
        return clamp(1.0 / (1.0 + max(0.0, d)))
    return clamp(-d)


def dot_product(a: Sequence[float], b: Sequence[float]) -> float:
    return math.fsum(x * y for x, y in zip(a, b))


def vector_magnitude(v: Sequence[float]) -> float:
    return math.sqrt(math.fsum(x * x for x in v))


def normalize_vector(v: Sequence[float]) -> List[float]:
    """Scale to unit length; a zero vector is returned unchanged."""
    mag = vector_magnitude(v)
    if mag == 0.0:
        return list(v)
    return [x / mag for x in v]


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Dot product over norms.

    Returns 0.0 for empty, zero-norm or length-mismatched inputs. Independent
    of the store's configured metric.
    """
    if not a or not b or len(a) != len(b):
        return 0.0
    na = vector_magnitude(a)
    nb = vector_magnitude(b)
    if na == 0.0 or nb == 0.0:
        return 0.0
    return dot_product(a, b) / (na * nb)


def euclidean_distance(a: Sequence[float], b: Sequence[float]) -> float:
    if len(a) != len(b):
        raise ValueError(f"vector length mismatch: {len(a)} != {len(b)}")
    return math.sqrt(math.fsum((x - y) ** 2 for x, y in zip(a, b)))


def raw_distance(a: Sequence[float], b: Sequence[float], metric: Union[DistanceMetric, str]) -> float:
    """Distance as pgvector computes it for `metric` (used by in-process backends)."""
    m = _metric(metric)
    if m is DistanceMetric.COSINE:
        return 1.0 - cosine_similarity(a, b)
    if m is DistanceMetric.EUCLIDEAN:
        return euclidean_distance(a, b)
    return -dot_product(a, b)


def pgvector_operator(metric: Union[DistanceMetric, str]) -> str:
    return _PGVECTOR_OPERATORS[_metric(metric)]


def pgvector_index_ops(metric: Union[DistanceMetric, str]) -> str:
    return _PGVECTOR_INDEX_OPS[_metric(metric)]


def chroma_space(metric: Union[DistanceMetric, str]) -> str:
    return _CHROMA_SPACES[_metric(metric)]


def chroma_distance_to_similarity(distance: float, metric: Union[DistanceMetric, str]) -> float:
    """
    Chroma reports l2 as squared euclidean and ip as `1 - <a,b>`; bring both
    onto the pgvector distance scale before normalizing.
    """
    d = float(distance)
    m = _metric(metric)
    if m is DistanceMetric.EUCLIDEAN:
        return distance_to_similarity(math.sqrt(max(0.0, d)), m)
    if m is DistanceMetric.DOT_PRODUCT:
        return distance_to_similarity(d - 1.0, m)
    return distance_to_similarity(d, m)


__all__ = [
    "clamp",
    "distance_to_similarity",
    "chroma_distance_to_similarity",
    "cosine_similarity",
    "dot_product",
    "vector_magnitude",
    "normalize_vector",
    "euclidean_distance",
    "raw_distance",
    "pgvector_operator",
    "pgvector_index_ops",
    "chroma_space",
]
