"""Search API endpoints.

Provides:
- ``GET /search`` -- Search notes (auto, hybrid, full-text, semantic, tag or date).
- ``PUT /search/index/{note_id}`` -- Add or replace one note in the index.
- ``DELETE /search/index/{note_id}`` -- Remove one note from the index.
- ``POST /search/reindex`` -- Replace the whole index with the given notes.

Errors from the engine are mapped to HTTP status codes: a missing text
index or embedding provider is ``503``, any other search failure ``500``.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, Field

from notesearch.constants import SearchMode
from notesearch.search.engine import SearchEngine
from notesearch.search.errors import DatabaseUnavailableError, EmbeddingNotAvailableError, SearchError
from notesearch.search.models import Note, SearchOptions, SearchResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/search", tags=["search"])


# ---------------------------------------------------------------------------
# Request & response schemas
# ---------------------------------------------------------------------------


class SearchResultResponse(BaseModel):
    """A single search result in the API response."""

    id: str
    note_id: str
    title: str
    content: str
    snippet: str
    score: float
    match_type: str
    matched_terms: list[str] = []
    updated_at: datetime
    tags: list[str] = []
    path: str = ""

    @classmethod
    def from_result(cls, result: SearchResult) -> SearchResultResponse:
        return cls(
            id=result.id,
            note_id=result.note_id,
            title=result.title,
            content=result.content,
            snippet=result.snippet,
            score=result.score,
            match_type=result.match_type.value,
            matched_terms=result.matched_terms,
            updated_at=result.updated_at,
            tags=result.tags,
            path=result.path,
        )


class SearchResponse(BaseModel):
    """Search API response containing results and metadata."""

    results: list[SearchResultResponse]
    query: str
    mode: str
    total: int


class IndexNoteRequest(BaseModel):
    """A note to index. Timestamps default to now."""

    title: str = ""
    content: str = ""
    tags: list[str] = Field(default_factory=list)
    path: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None
    embedding: list[float] | None = None

    def to_note(self, note_id: str) -> Note:
        now = datetime.now(UTC)
        return Note(
            id=note_id,
            title=self.title,
            content=self.content,
            tags=self.tags,
            created_at=self.created_at or now,
            updated_at=self.updated_at or self.created_at or now,
        )


class IndexNoteResponse(BaseModel):
    note_id: str
    indexed: bool


class ReindexNote(IndexNoteRequest):
    id: str


class ReindexRequest(BaseModel):
    notes: list[ReindexNote]


class ReindexResponse(BaseModel):
    indexed: int


# ---------------------------------------------------------------------------
# Dependencies & helpers
# ---------------------------------------------------------------------------


def get_search_engine(request: Request) -> SearchEngine:
    """Return the engine created during application startup."""
    return request.app.state.search_engine


def _to_http_error(exc: SearchError) -> HTTPException:
    if isinstance(exc, (DatabaseUnavailableError, EmbeddingNotAvailableError)):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=exc.detail)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=exc.detail)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("", response_model=SearchResponse)
async def search(
    q: str = Query(..., min_length=1, description="Search query"),  # noqa: B008
    mode: SearchMode = Query(SearchMode.AUTO, description="Search mode"),  # noqa: B008
    limit: int = Query(20, ge=1, le=100, description="Maximum number of results"),  # noqa: B008
    offset: int = Query(0, ge=0, description="Number of results to skip for pagination"),  # noqa: B008
    snippet_length: int = Query(150, ge=1, le=2000, description="Snippet length in characters"),  # noqa: B008
    include_content: bool = Query(True, description="Include full note content"),  # noqa: B008
    diversify: bool = Query(False, description="Drop near-duplicate results"),  # noqa: B008
    engine: SearchEngine = Depends(get_search_engine),  # noqa: B008
) -> SearchResponse:
    """Search notes.

    Args:
        q: The raw query; supports ``tag:``, ``in:``, ``date:``,
            ``before:``, ``after:``, ``from:``, ``to:`` and quoted phrases.
        mode: Retrieval mode (default: auto-detected from the query).
        limit: Maximum number of results (1-100, default: 20).
        offset: Number of results to skip for pagination (default: 0).
        snippet_length: Snippet length in characters (default: 150).
        include_content: Whether results carry the full note content.
        diversify: Whether to drop near-duplicate results.
        engine: Injected search engine.

    Returns:
        SearchResponse with matching results, query echo, and result count.
    """
    logger.info("Search request: query=%r, mode=%s, limit=%d, offset=%d", q, mode.value, limit, offset)

    options = SearchOptions(
        limit=limit,
        offset=offset,
        snippet_length=snippet_length,
        include_content=include_content,
        diversify=diversify,
    )
    try:
        results = await engine.search(q, mode=mode, options=options)
    except SearchError as exc:
        logger.warning("Search failed for %r: %s", q, exc.detail)
        raise _to_http_error(exc) from exc

    return SearchResponse(
        results=[SearchResultResponse.from_result(r) for r in results],
        query=q,
        mode=mode.value,
        total=len(results),
    )


@router.put("/index/{note_id}", response_model=IndexNoteResponse)
async def index_note(
    note_id: str,
    request: IndexNoteRequest,
    engine: SearchEngine = Depends(get_search_engine),  # noqa: B008
) -> IndexNoteResponse:
    """Add or replace a note in the index.

    When no embedding is supplied and an embedding provider is configured,
    the note's title and content are embedded before indexing.
    """
    note = request.to_note(note_id)
    try:
        embedding = request.embedding
        if embedding is None:
            embedding = await engine.embed_note(note)
        await engine.index_note(note, path=request.path, embedding=embedding)
    except SearchError as exc:
        raise _to_http_error(exc) from exc

    return IndexNoteResponse(note_id=note_id, indexed=True)


@router.delete("/index/{note_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_note(
    note_id: str,
    engine: SearchEngine = Depends(get_search_engine),  # noqa: B008
) -> None:
    """Remove a note from the index. Removing an unknown note is not an error."""
    try:
        removed = await engine.remove_from_index(note_id)
    except SearchError as exc:
        raise _to_http_error(exc) from exc
    if not removed:
        logger.debug("Note %s was not indexed", note_id)


@router.post("/reindex", response_model=ReindexResponse)
async def reindex(
    request: ReindexRequest,
    engine: SearchEngine = Depends(get_search_engine),  # noqa: B008
) -> ReindexResponse:
    """Clear the index and index every note in the request body."""
    notes = [item.to_note(item.id) for item in request.notes]
    paths = {item.id: item.path for item in request.notes if item.path}
    embeddings = {item.id: item.embedding for item in request.notes if item.embedding is not None}

    try:
        count = await engine.reindex_all(notes, paths=paths, embeddings=embeddings)
    except SearchError as exc:
        raise _to_http_error(exc) from exc

    logger.info("Reindexed %d notes via API", count)
    return ReindexResponse(indexed=count)
