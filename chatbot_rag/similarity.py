"""
Cosine similarity scoring and top-K selection.

Stored vectors carry their L2 norm, computed once at ingest time, so a
query only pays for the dot products and its own norm.
"""

import heapq
from typing import List, Optional, Sequence

import numpy as np

# Keeps degenerate (all-zero) vectors from dividing by zero.
EPSILON = 1e-8


def cosine_scores(
    query: np.ndarray,
    vectors: np.ndarray,
    magnitudes: np.ndarray,
    epsilon: float = EPSILON,
) -> np.ndarray:
    """
    Score every row of `vectors` against `query`.

    Args:
        query: Query vector, shape (D,)
        vectors: Candidate matrix, shape (N, D)
        magnitudes: Precomputed L2 norm of each candidate row, shape (N,)
        epsilon: Added to the denominator

    Returns:
        float64 scores, shape (N,). Values can land marginally outside
        [-1, 1] through rounding; they are not clipped.
    """
    if vectors.shape[0] == 0:
        return np.zeros(0, dtype=np.float64)

    q = query.astype(np.float64)
    query_norm = float(np.linalg.norm(q))
    dots = vectors.astype(np.float64) @ q
    return dots / (query_norm * magnitudes.astype(np.float64) + epsilon)


def top_k_indices(
    scores: Sequence[float],
    top_k: int,
    min_score: Optional[float] = None,
) -> List[int]:
    """
    Indices of the `top_k` best scores, best first.

    Candidates are expected in most-recent-first order, so on equal scores
    the lower index (the more recent row) wins. Uses a bounded heap:
    O(N log K) rather than a full sort.
    """
    if top_k <= 0:
        return []

    eligible = range(len(scores))
    if min_score is not None:
        eligible = [i for i in eligible if scores[i] >= min_score]

    return heapq.nlargest(top_k, eligible, key=lambda i: (scores[i], -i))
