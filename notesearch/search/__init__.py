"""Search engine package for hybrid full-text and semantic note search."""

from notesearch.search.embeddings import (
    EmbeddingError,
    EmbeddingProvider,
    HttpEmbeddingProvider,
    OpenAIEmbeddingProvider,
    get_embedding_provider,
)
from notesearch.search.engine import SearchEngine
from notesearch.search.errors import (
    DatabaseUnavailableError,
    DateSearchError,
    EmbeddingNotAvailableError,
    FullTextSearchError,
    IndexingError,
    SearchError,
    SemanticSearchError,
    TagSearchError,
)
from notesearch.search.models import (
    DateRange,
    Note,
    NoteIndexEntry,
    ParsedQuery,
    RankingFeature,
    SearchOptions,
    SearchResult,
)
from notesearch.search.params import RerankConfig, get_rerank_config
from notesearch.search.query_parser import QueryParser, resolve_date_range
from notesearch.search.reranker import Reranker
from notesearch.search.similarity import SimilarityMetric
from notesearch.search.text_index import TextIndex

__all__ = [
    "DatabaseUnavailableError",
    "DateRange",
    "DateSearchError",
    "EmbeddingError",
    "EmbeddingNotAvailableError",
    "EmbeddingProvider",
    "FullTextSearchError",
    "HttpEmbeddingProvider",
    "IndexingError",
    "Note",
    "NoteIndexEntry",
    "OpenAIEmbeddingProvider",
    "ParsedQuery",
    "QueryParser",
    "RankingFeature",
    "RerankConfig",
    "Reranker",
    "SearchEngine",
    "SearchError",
    "SearchOptions",
    "SearchResult",
    "SemanticSearchError",
    "SimilarityMetric",
    "TagSearchError",
    "TextIndex",
    "get_embedding_provider",
    "get_rerank_config",
    "resolve_date_range",
]
