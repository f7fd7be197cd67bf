"""Persistent full-text index backed by an SQLite FTS5 virtual table.

One row per note. ``title`` and ``content`` are indexed for ``MATCH``
queries; the remaining columns are stored unindexed so tag, date and path
lookups can be served from the same table:

* ``tags`` -- comma-joined tag list, matched with ``LIKE``
* ``created_at`` / ``updated_at`` -- Unix timestamps (REAL)
* ``path`` -- folder label used by ``in:`` filters

Relevance uses the FTS5 ``bm25()`` function, which returns *negative*
values where lower is better, so matches are ordered ascending.

All methods let :class:`sqlalchemy.exc.SQLAlchemyError` propagate; the
engine translates them into search errors.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import NamedTuple

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from notesearch.search.models import NoteIndexEntry
from notesearch.utils.datetime_utils import datetime_to_unix, unix_to_datetime

logger = logging.getLogger(__name__)

TABLE_NAME = "notes_fts"

CREATE_TEXT_INDEX = text(
    f"""
    CREATE VIRTUAL TABLE IF NOT EXISTS {TABLE_NAME} USING fts5(
        note_id UNINDEXED,
        title,
        content,
        tags UNINDEXED,
        path UNINDEXED,
        created_at UNINDEXED,
        updated_at UNINDEXED,
        tokenize='unicode61'
    )
    """
)

_COLUMNS = "note_id, title, content, tags, path, created_at, updated_at"


class IndexRow(NamedTuple):
    """A stored index row.

    ``score`` is the raw ``bm25()`` value for ``MATCH`` queries and 0.0
    otherwise.
    """

    note_id: str
    title: str
    content: str
    tags: list[str]
    path: str
    created_at: datetime
    updated_at: datetime
    score: float = 0.0


def _split_tags(value: str | None) -> list[str]:
    if not value:
        return []
    return [tag for tag in value.split(",") if tag]


def _to_row(record) -> IndexRow:
    mapping = record._mapping
    return IndexRow(
        note_id=mapping["note_id"],
        title=mapping["title"] or "",
        content=mapping["content"] or "",
        tags=_split_tags(mapping["tags"]),
        path=mapping["path"] or "",
        created_at=unix_to_datetime(mapping["created_at"]),
        updated_at=unix_to_datetime(mapping["updated_at"]),
        score=float(mapping.get("score") or 0.0),
    )


def escape_like(value: str) -> str:
    """Escape ``LIKE`` wildcards so *value* matches literally (escape char ``\\``)."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class TextIndex:
    """Async access to the FTS5 note index.

    Args:
        session_factory: Session factory bound to an SQLite (aiosqlite) engine.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create_schema(self) -> None:
        """Create the virtual table if it does not exist yet."""
        logger.info("Initializing SQLite FTS5 text index")
        async with self._session_factory() as session:
            await session.execute(CREATE_TEXT_INDEX)
            await session.commit()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def upsert(self, entry: NoteIndexEntry) -> None:
        """Replace the row for ``entry.note_id`` in a single transaction.

        FTS5 tables have no unique constraint, so the previous row is
        deleted explicitly before the insert.
        """
        async with self._session_factory() as session:
            await session.execute(
                text(f"DELETE FROM {TABLE_NAME} WHERE note_id = :note_id"),
                {"note_id": entry.note_id},
            )
            await session.execute(
                text(
                    f"INSERT INTO {TABLE_NAME} ({_COLUMNS}) "
                    "VALUES (:note_id, :title, :content, :tags, :path, :created_at, :updated_at)"
                ),
                {
                    "note_id": entry.note_id,
                    "title": entry.title,
                    "content": entry.content,
                    "tags": ",".join(entry.tags),
                    "path": entry.path,
                    "created_at": datetime_to_unix(entry.created_at),
                    "updated_at": datetime_to_unix(entry.updated_at),
                },
            )
            await session.commit()

    async def delete(self, note_id: str) -> bool:
        """Delete a note's row. Returns whether a row was removed."""
        async with self._session_factory() as session:
            result = await session.execute(
                text(f"DELETE FROM {TABLE_NAME} WHERE note_id = :note_id"),
                {"note_id": note_id},
            )
            await session.commit()
            return result.rowcount > 0

    async def clear(self) -> None:
        async with self._session_factory() as session:
            await session.execute(text(f"DELETE FROM {TABLE_NAME}"))
            await session.commit()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def match(self, expression: str, limit: int, offset: int = 0) -> list[IndexRow]:
        """Run an FTS5 ``MATCH`` query, best match first."""
        sql = text(
            f"SELECT {_COLUMNS}, bm25({TABLE_NAME}) AS score "
            f"FROM {TABLE_NAME} WHERE {TABLE_NAME} MATCH :expression "
            "ORDER BY score ASC, updated_at DESC "
            "LIMIT :limit OFFSET :offset"
        )
        async with self._session_factory() as session:
            result = await session.execute(sql, {"expression": expression, "limit": limit, "offset": offset})
            return [_to_row(record) for record in result.fetchall()]

    async def all_rows(self, limit: int = -1, offset: int = 0) -> list[IndexRow]:
        """Every row, most recently updated first. ``limit=-1`` means no limit."""
        sql = text(f"SELECT {_COLUMNS} FROM {TABLE_NAME} ORDER BY updated_at DESC LIMIT :limit OFFSET :offset")
        async with self._session_factory() as session:
            result = await session.execute(sql, {"limit": limit, "offset": offset})
            return [_to_row(record) for record in result.fetchall()]

    async def by_tag(self, tag: str, limit: int = -1) -> list[IndexRow]:
        """Rows whose stored tag string contains *tag* (case-insensitive for ASCII)."""
        sql = text(
            f"SELECT {_COLUMNS} FROM {TABLE_NAME} "
            "WHERE tags LIKE :pattern ESCAPE '\\' "
            "ORDER BY updated_at DESC LIMIT :limit"
        )
        async with self._session_factory() as session:
            result = await session.execute(sql, {"pattern": f"%{escape_like(tag)}%", "limit": limit})
            return [_to_row(record) for record in result.fetchall()]

    async def by_updated_range(self, start: datetime, end: datetime, limit: int = -1) -> list[IndexRow]:
        """Rows with ``start <= updated_at <= end``, newest first."""
        sql = text(
            f"SELECT {_COLUMNS} FROM {TABLE_NAME} "
            "WHERE updated_at >= :start AND updated_at <= :end "
            "ORDER BY updated_at DESC LIMIT :limit"
        )
        params = {"start": datetime_to_unix(start), "end": datetime_to_unix(end), "limit": limit}
        async with self._session_factory() as session:
            result = await session.execute(sql, params)
            return [_to_row(record) for record in result.fetchall()]

    async def count(self) -> int:
        async with self._session_factory() as session:
            result = await session.execute(text(f"SELECT COUNT(*) FROM {TABLE_NAME}"))
            return int(result.scalar() or 0)
