# retrieval_sdk/vector/ranking.py
# SPDX-License-Identifier: Apache-2.0
"""
In-process re-ranking: weighted reciprocal rank fusion and maximal marginal
relevance. Backends that cannot fuse or diversify server-side call these on
candidate lists they have already fetched.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from retrieval_sdk.vector.distance import cosine_similarity


def rrf_score(alpha: float, vector_rank: int, text_rank: int, k: int = 60) -> float:
    return alpha / (k + vector_rank) + (1.0 - alpha) / (k + text_rank)


def reciprocal_rank_fusion(
    vector_ids: Sequence[str],
    text_ids: Sequence[str],
    *,
    alpha: float = 0.5,
    k: int = 60,
    fetch_limit: Optional[int] = None,
    normalize: bool = True,
) -> List[Tuple[str, float]]:
    """
    Fuse two ranked id lists.

    Ranks are 1-based. An id missing from a list is ranked `fetch_limit + 1`
    in it (fetch_limit defaults to the longer list's length). With
    `normalize`, scores are divided by the best attainable score `1/(k+1)`
    so they fall in [0, 1].

    Returns (id, score) pairs, best first; ties keep first-seen order.
    """
    limit = fetch_limit if fetch_limit is not None else max(len(vector_ids), len(text_ids))
    missing = limit + 1

    vrank: Dict[str, int] = {}
    for i, doc_id in enumerate(vector_ids, start=1):
        vrank.setdefault(doc_id, i)
    trank: Dict[str, int] = {}
    for i, doc_id in enumerate(text_ids, start=1):
        trank.setdefault(doc_id, i)

    order: Dict[str, int] = {}
    for doc_id in list(vector_ids) + list(text_ids):
        order.setdefault(doc_id, len(order))

    scale = float(k + 1) if normalize else 1.0
    fused = [
        (doc_id, min(1.0, scale * rrf_score(alpha, vrank.get(doc_id, missing), trank.get(doc_id, missing), k)))
        for doc_id in order
    ]
    fused.sort(key=lambda pair: (-pair[1], order[pair[0]]))
    return fused


@dataclass(frozen=True)
class MMRCandidate:
    """A candidate with its normalized relevance and raw embedding."""

    id: str
    relevance: float
    embedding: Sequence[float]
    payload: Any = None


def maximal_marginal_relevance(
    candidates: Sequence[MMRCandidate],
    *,
    top_k: int,
    lambda_: float = 0.5,
    score_threshold: Optional[float] = None,
) -> List[MMRCandidate]:
    """
    Greedy MMR selection.

    Each step picks the remaining candidate maximizing
    `lambda_ * relevance - (1 - lambda_) * max(cosine(c, s) for s in selected)`
    (the max term is 0 while nothing is selected). Candidates whose
    relevance is below `score_threshold` are never selected. Ties go to the
    earlier candidate, so with lambda_=1 the output follows input order for
    candidates sorted by relevance.
    """
    pool = [
        c for c in candidates
        if score_threshold is None or c.relevance >= score_threshold
    ]
    selected: List[MMRCandidate] = []
    while pool and len(selected) < top_k:
        best_idx = 0
        best_score = float("-inf")
        for idx, cand in enumerate(pool):
            if selected:
                redundancy = max(cosine_similarity(cand.embedding, s.embedding) for s in selected)
            else:
                redundancy = 0.0
            score = lambda_ * cand.relevance - (1.0 - lambda_) * redundancy
            if score > best_score:
                best_score = score
                best_idx = idx
        selected.append(pool.pop(best_idx))
    return selected


__all__ = [
    "rrf_score",
    "reciprocal_rank_fusion",
    "MMRCandidate",
    "maximal_marginal_relevance",
]
