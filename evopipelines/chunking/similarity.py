"""Vector similarity helpers for embedding-based chunking."""

import math
from typing import List, Sequence

import numpy as np


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity of two embedding vectors.

    Vectors of different lengths are compared over their common prefix. A zero
    vector has similarity 0 with anything. NaN components give NaN.
    """
    n = min(len(a), len(b))
    va = np.asarray(a[:n], dtype=float)
    vb = np.asarray(b[:n], dtype=float)

    sum_sq_a = float(np.dot(va, va))
    sum_sq_b = float(np.dot(vb, vb))
    if sum_sq_a == 0 or sum_sq_b == 0:
        return 0.0
    return float(np.dot(va, vb)) / math.sqrt(sum_sq_a * sum_sq_b)


def consecutive_distances(embeddings: Sequence[Sequence[float]]) -> List[float]:
    """Cosine distance (1 - similarity) between each pair of neighbours, skipping NaN."""
    distances = []
    for i in range(len(embeddings) - 1):
        sim = cosine_similarity(embeddings[i], embeddings[i + 1])
        if not math.isnan(sim):
            distances.append(1 - sim)
    return distances


def percentile_threshold(distances: Sequence[float], percentile: float) -> float:
    """
    Distance at ``percentile`` of the sorted distances.

    Uses the lower nearest rank, ``sorted[floor(p / 100 * (n - 1))]``.
    """
    ordered = np.sort(np.asarray(distances, dtype=float))
    index = math.floor((percentile / 100) * (len(ordered) - 1))
    return float(ordered[index])
