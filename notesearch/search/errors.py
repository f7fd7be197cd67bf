"""Error taxonomy for the search engine.

Every error carries a human-readable ``detail``. The engine never retries;
callers decide how to surface or retry these.
"""

from __future__ import annotations


class SearchError(Exception):
    """Base class for all search and indexing failures."""

    default_detail = "Search failed"

    def __init__(self, detail: str | None = None) -> None:
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class DatabaseUnavailableError(SearchError):
    """Raised when no text index is configured or it cannot be reached."""

    default_detail = "Search database is not available"


class EmbeddingNotAvailableError(SearchError):
    """Raised when semantic search runs without an embedding provider."""

    default_detail = "Embedding provider not configured for semantic search"


class FullTextSearchError(SearchError):
    """Raised when a full-text query fails to execute."""

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(f"Full-text search failed: {detail}" if detail else None)


class SemanticSearchError(SearchError):
    """Raised when the embedding provider fails during semantic search."""

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(f"Semantic search failed: {detail}" if detail else None)


class TagSearchError(SearchError):
    """Raised when the tag lookup fails against the text index."""

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(f"Tag search failed: {detail}" if detail else None)


class DateSearchError(SearchError):
    """Raised when the date-range lookup fails against the text index."""

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(f"Date search failed: {detail}" if detail else None)


class IndexingError(SearchError):
    """Raised when an index mutation fails."""

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(f"Indexing failed: {detail}" if detail else None)
