"""Centralized search parameter management.

All ranking parameters (RRF constant, boost magnitudes, recency decay,
diversification limits) live in one dict and can be overridden through the
``SEARCH_PARAMS`` setting without code changes.

Usage::

    from notesearch.search.params import get_rerank_config
    reranker = Reranker(get_rerank_config())
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict

from notesearch.config import get_settings

DEFAULT_SEARCH_PARAMS: dict[str, float | int] = {
    # Fusion
    "rrf_k": 60,
    # Boosts
    "title_boost": 2.0,
    "recent_boost": 1.5,
    "tag_boost": 1.8,
    "exact_boost": 3.0,
    # Recency decay per month of age
    "decay_factor": 0.9,
    # Diversification
    "diversity_threshold": 0.8,
    "diversity_max_results": 20,
}


class RerankConfig(BaseModel):
    """Tunable constants for fusion and boosting."""

    model_config = ConfigDict(frozen=True)

    rrf_k: int = 60
    title_boost: float = 2.0
    recent_boost: float = 1.5
    tag_boost: float = 1.8
    exact_boost: float = 3.0
    decay_factor: float = 0.9
    diversity_threshold: float = 0.8
    diversity_max_results: int = 20


def get_search_params() -> dict[str, Any]:
    """Return current search parameters, merging configured overrides with defaults.

    Unknown keys in ``SEARCH_PARAMS`` are ignored.
    """
    saved: dict[str, Any] = get_settings().SEARCH_PARAMS
    merged = {**DEFAULT_SEARCH_PARAMS}
    if isinstance(saved, dict):
        for key in DEFAULT_SEARCH_PARAMS:
            if key in saved:
                merged[key] = saved[key]
    return merged


def get_rerank_config() -> RerankConfig:
    """Build a :class:`RerankConfig` from the current search parameters."""
    return RerankConfig(**get_search_params())
