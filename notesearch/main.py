from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from notesearch.config import get_settings
from notesearch.database import async_session_factory, engine
from notesearch.search.embeddings import get_embedding_provider
from notesearch.search.engine import SearchEngine
from notesearch.search.params import get_rerank_config
from notesearch.search.reranker import Reranker
from notesearch.search.text_index import TextIndex


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifespan: startup and shutdown events."""
    # Startup: create the FTS5 table and warm the in-memory index from it
    text_index = TextIndex(async_session_factory)
    await text_index.create_schema()

    search_engine = SearchEngine(
        text_index=text_index,
        embedding_provider=get_embedding_provider(get_settings()),
        reranker=Reranker(get_rerank_config()),
    )
    await search_engine.load_index()
    app.state.search_engine = search_engine

    yield
    # Shutdown: dispose the async engine connection pool
    await engine.dispose()


app = FastAPI(
    title="Notesearch",
    description="Hybrid full-text and semantic search for personal notes",
    version="0.1.0",
    lifespan=lifespan,
)

# --- Router includes ---
from notesearch.api.search import router as search_router  # noqa: E402

app.include_router(search_router, prefix="/api")


@app.get("/api/health", tags=["health"])
async def health_check(request: Request) -> dict[str, str | int | bool]:
    """Health check endpoint.

    Reports whether semantic search is available and how many notes are indexed.
    """
    search_engine: SearchEngine | None = getattr(request.app.state, "search_engine", None)
    if search_engine is None:
        return {"status": "starting"}
    return {
        "status": "ok",
        "indexed_notes": search_engine.indexed_count,
        "semantic_search": search_engine.has_embedding_provider,
    }
