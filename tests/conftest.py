from __future__ import annotations

import os
from collections.abc import AsyncGenerator
from typing import TYPE_CHECKING

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

if TYPE_CHECKING:
    from notesearch.search.text_index import TextIndex

# Set test environment variables before importing app modules
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("OPENAI_API_KEY", "")
os.environ.setdefault("EMBEDDING_SERVICE_URL", "")


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest_asyncio.fixture(scope="function")
async def text_index(tmp_path) -> AsyncGenerator[TextIndex, None]:
    """Provide an FTS5 text index backed by a fresh SQLite file.

    Uses a per-test engine to avoid event loop issues.
    """
    from notesearch.search.text_index import TextIndex

    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'notes.db'}",
        echo=False,
    )
    session_factory = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    index = TextIndex(session_factory)
    await index.create_schema()

    yield index

    await engine.dispose()
