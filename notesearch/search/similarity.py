"""Vector similarity metrics used by semantic retrieval."""

from __future__ import annotations

from collections.abc import Sequence
from enum import StrEnum

import numpy as np


def _as_pair(a: Sequence[float] | None, b: Sequence[float] | None) -> tuple[np.ndarray, np.ndarray] | None:
    """Return both vectors as float arrays, or ``None`` when they cannot be compared."""
    if a is None or b is None or len(a) == 0 or len(a) != len(b):
        return None
    return np.asarray(a, dtype=np.float64), np.asarray(b, dtype=np.float64)


def cosine_similarity(a: Sequence[float] | None, b: Sequence[float] | None) -> float:
    """Cosine similarity in ``[-1, 1]``.

    Returns 0.0 when either vector is missing, the lengths differ or either
    vector has zero magnitude.
    """
    pair = _as_pair(a, b)
    if pair is None:
        return 0.0
    va, vb = pair
    norm = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if norm == 0.0:
        return 0.0
    return float(np.dot(va, vb)) / norm


def euclidean_similarity(a: Sequence[float] | None, b: Sequence[float] | None) -> float:
    """``1 / (1 + distance)``, so identical vectors score 1.0."""
    pair = _as_pair(a, b)
    if pair is None:
        return 0.0
    va, vb = pair
    return 1.0 / (1.0 + float(np.linalg.norm(va - vb)))


def dot_product(a: Sequence[float] | None, b: Sequence[float] | None) -> float:
    pair = _as_pair(a, b)
    if pair is None:
        return 0.0
    return float(np.dot(*pair))


class SimilarityMetric(StrEnum):
    """Selectable similarity metric."""

    COSINE = "cosine"
    EUCLIDEAN = "euclidean"
    DOT_PRODUCT = "dot_product"

    def similarity(self, a: Sequence[float] | None, b: Sequence[float] | None) -> float:
        if self is SimilarityMetric.EUCLIDEAN:
            return euclidean_similarity(a, b)
        if self is SimilarityMetric.DOT_PRODUCT:
            return dot_product(a, b)
        return cosine_similarity(a, b)
