"""Search engine orchestrator.

Full-text search: SQLite FTS5 ``MATCH`` ranked by ``bm25()``.
Semantic search: cosine similarity over the in-memory note-embedding map.
Hybrid search: both paths run concurrently, merged with weighted RRF.
Tag / date search: lookups against the stored tag string and update time.

Every mode finishes the same way: ``in:`` path filter, additive boost
rerank, optional diversification, then ``include_content`` is applied.

Index mutations are serialised by one ``asyncio.Lock``; the text index is
written first, then the in-memory map. Searches never take the lock and
read a snapshot of the map.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Callable, Iterable, Mapping, Sequence
from datetime import UTC, datetime

from sqlalchemy.exc import SQLAlchemyError

from notesearch.constants import MatchType, SearchMode
from notesearch.search.embeddings import EmbeddingError, EmbeddingProvider
from notesearch.search.errors import (
    DatabaseUnavailableError,
    DateSearchError,
    EmbeddingNotAvailableError,
    FullTextSearchError,
    IndexingError,
    SemanticSearchError,
    TagSearchError,
)
from notesearch.search.models import (
    Note,
    NoteIndexEntry,
    ParsedQuery,
    SearchOptions,
    SearchResult,
    is_phrase,
    unwrap_phrase,
)
from notesearch.search.query_parser import QueryParser, resolve_date_range
from notesearch.search.reranker import Reranker
from notesearch.search.similarity import SimilarityMetric
from notesearch.search.text_index import IndexRow, TextIndex

logger = logging.getLogger(__name__)

_WORD_RE = re.compile(r"\w")


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _quote(value: str) -> str:
    return '"' + value.replace('"', '""') + '"'


def build_match_expression(terms: Iterable[str]) -> str:
    """Build an FTS5 ``MATCH`` expression from parsed plain terms.

    Terms become quoted prefix queries (``"term"*``) and phrases become
    quoted phrases; terms are implicitly AND-ed. Terms without any word
    character cannot match anything and are skipped.
    """
    parts: list[str] = []
    for term in terms:
        if is_phrase(term):
            phrase = unwrap_phrase(term)
            if _WORD_RE.search(phrase):
                parts.append(_quote(phrase))
        elif _WORD_RE.search(term):
            parts.append(_quote(term) + "*")
    return " ".join(parts)


def generate_snippet(content: str, terms: Sequence[str], length: int) -> str:
    """Excerpt of ``length`` characters around the first term found in *content*.

    Terms are tried in order. The window starts ``length // 2`` characters
    before the match and gets a trailing ``...`` when content continues.
    Without a match the leading ``length`` characters are returned.
    """
    for term in terms:
        if not term:
            continue
        match = re.search(re.escape(term), content, re.IGNORECASE)
        if match is None:
            continue
        start = max(0, match.start() - length // 2)
        snippet = content[start : start + length]
        if start + length < len(content):
            snippet += "..."
        return snippet
    return content[:length]


def _matched_terms(terms: Sequence[str], *fields: str) -> list[str]:
    haystack = " ".join(fields).lower()
    return [term for term in terms if term and term.lower() in haystack]


def _normalised_weights(fts_weight: float, semantic_weight: float) -> tuple[float, float]:
    """Scale the two list weights so they sum to 2 (equal weights -> 1.0 each)."""
    total = fts_weight + semantic_weight
    if total <= 0:
        return 1.0, 1.0
    return 2 * fts_weight / total, 2 * semantic_weight / total


class SearchEngine:
    """Hybrid note search.

    Args:
        text_index: Persistent FTS5 index. Without it, full-text, tag and
            date searches raise :class:`DatabaseUnavailableError` and
            indexing only maintains the in-memory map.
        embedding_provider: Source of query vectors. Without it, semantic
            and hybrid searches raise :class:`EmbeddingNotAvailableError`.
        reranker: Fusion and boost reranker.
        parser: Query parser used for raw string queries.
        clock: Returns the current time; used for recency and date ranges.
    """

    def __init__(
        self,
        text_index: TextIndex | None = None,
        embedding_provider: EmbeddingProvider | None = None,
        reranker: Reranker | None = None,
        parser: QueryParser | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._text_index = text_index
        self._embedding_provider = embedding_provider
        self.reranker = reranker or Reranker()
        self.parser = parser or QueryParser()
        self._clock = clock
        self._entries: dict[str, NoteIndexEntry] = {}
        self._lock = asyncio.Lock()

    @property
    def has_text_index(self) -> bool:
        return self._text_index is not None

    @property
    def has_embedding_provider(self) -> bool:
        return self._embedding_provider is not None

    @property
    def indexed_count(self) -> int:
        return len(self._entries)

    def get_entry(self, note_id: str) -> NoteIndexEntry | None:
        return self._entries.get(note_id)

    def _parse(self, query: str | ParsedQuery) -> ParsedQuery:
        if isinstance(query, ParsedQuery):
            return query
        return self.parser.parse(query)

    # ------------------------------------------------------------------
    # Public search API
    # ------------------------------------------------------------------

    async def search(
        self,
        query: str | ParsedQuery,
        mode: SearchMode = SearchMode.AUTO,
        options: SearchOptions | None = None,
    ) -> list[SearchResult]:
        """Search with an explicit mode, or pick one when ``mode`` is ``auto``.

        Returns ``[]`` for an empty query.
        """
        parsed = self._parse(query)
        if parsed.is_empty:
            return []

        options = options or SearchOptions()
        if mode == SearchMode.AUTO:
            mode = self.parser.detect_search_mode(parsed)
            logger.debug("Auto-detected search mode %s for %r", mode, parsed.raw_query)

        if mode == SearchMode.FULL_TEXT:
            return await self.search_full_text(parsed, options)
        if mode == SearchMode.SEMANTIC:
            return await self.search_semantic(parsed, options)
        if mode == SearchMode.TAG:
            return await self.search_by_tag(parsed, options)
        if mode == SearchMode.DATE:
            return await self.search_by_date(parsed, options)
        return await self.search_hybrid(parsed, options)

    async def search_full_text(
        self,
        query: str | ParsedQuery,
        options: SearchOptions | None = None,
    ) -> list[SearchResult]:
        """BM25 search over the FTS5 index.

        Offset and limit are applied in SQL unless ``in:`` filters are
        present; those are applied to every match before slicing.
        """
        parsed = self._parse(query)
        options = options or SearchOptions()
        if parsed.paths:
            results = await self._retrieve_full_text(parsed, -1, 0, options.snippet_length)
            return self._finish(self._filter_paths(results, parsed), parsed, options, window=self._window(options))
        results = await self._retrieve_full_text(parsed, options.limit, options.offset, options.snippet_length)
        return self._finish(results, parsed, options)

    async def search_semantic(
        self,
        query: str | ParsedQuery,
        options: SearchOptions | None = None,
    ) -> list[SearchResult]:
        """Cosine-similarity search over the in-memory embedding map.

        This is a linear O(n) scan over every indexed note, which is fine
        for personal-scale collections of a few thousand notes.
        """
        parsed = self._parse(query)
        options = options or SearchOptions()
        if parsed.paths:
            results = await self._retrieve_semantic(parsed, -1, 0, options.snippet_length)
            return self._finish(self._filter_paths(results, parsed), parsed, options, window=self._window(options))
        results = await self._retrieve_semantic(parsed, options.limit, options.offset, options.snippet_length)
        return self._finish(results, parsed, options)

    async def search_hybrid(
        self,
        query: str | ParsedQuery,
        options: SearchOptions | None = None,
    ) -> list[SearchResult]:
        """Run full-text and semantic search concurrently and fuse them.

        Pagination uses merge-then-slice: each path fetches
        ``offset + limit`` results (offset 0, or everything when ``in:``
        filters apply), and the fused, reranked list is sliced at
        ``[offset:offset + limit]``.

        An empty list from one path falls back to the other. An error from
        either path is raised once both have finished; errors never trigger
        the fallback.
        """
        parsed = self._parse(query)
        options = options or SearchOptions()
        fetch_limit = self._fetch_limit(parsed, options)

        fts_outcome, semantic_outcome = await asyncio.gather(
            self._retrieve_full_text(parsed, fetch_limit, 0, options.snippet_length),
            self._retrieve_semantic(parsed, fetch_limit, 0, options.snippet_length),
            return_exceptions=True,
        )
        for label, outcome in (("Full-text", fts_outcome), ("Semantic", semantic_outcome)):
            if isinstance(outcome, BaseException):
                logger.warning("%s path failed for hybrid query %r: %s", label, parsed.raw_query, outcome)
                raise outcome

        fts_results = self._filter_paths(fts_outcome, parsed)
        semantic_results = self._filter_paths(semantic_outcome, parsed)

        if not semantic_results:
            candidates = fts_results
        elif not fts_results:
            candidates = semantic_results
        else:
            weights = _normalised_weights(options.fts_weight, options.semantic_weight)
            candidates = self.reranker.reciprocal_rank_fusion([fts_results, semantic_results], weights=weights)

        return self._finish(candidates, parsed, options, window=self._window(options))

    async def search_by_tag(
        self,
        query: str | ParsedQuery,
        options: SearchOptions | None = None,
    ) -> list[SearchResult]:
        """Notes whose tags contain any query tag (or any plain term when no tags)."""
        parsed = self._parse(query)
        options = options or SearchOptions()
        text_index = self._require_text_index()
        fetch_limit = self._fetch_limit(parsed, options)
        tags = list(parsed.tags) or parsed.search_terms

        unique: dict[str, SearchResult] = {}
        try:
            for tag in tags:
                for row in await text_index.by_tag(tag, fetch_limit):
                    if row.note_id in unique:
                        continue
                    unique[row.note_id] = self._row_to_result(
                        row,
                        MatchType.TAG,
                        score=1.0,
                        matched_terms=[tag],
                        snippet=row.content[: options.snippet_length],
                    )
        except SQLAlchemyError as exc:
            logger.error("Tag search failed for %r: %s", parsed.raw_query, exc)
            raise TagSearchError(str(exc)) from exc

        results = sorted(unique.values(), key=lambda result: result.updated_at, reverse=True)
        return self._finish(self._filter_paths(results, parsed), parsed, options, window=self._window(options))

    async def search_by_date(
        self,
        query: str | ParsedQuery,
        options: SearchOptions | None = None,
    ) -> list[SearchResult]:
        """Notes updated within the query's date range, newest first.

        Returns ``[]`` when the query has no date range.
        """
        parsed = self._parse(query)
        options = options or SearchOptions()
        if parsed.date_range is None:
            return []

        text_index = self._require_text_index()
        fetch_limit = self._fetch_limit(parsed, options)
        start, end = resolve_date_range(parsed.date_range, now=self._clock())

        try:
            rows = await text_index.by_updated_range(start, end, fetch_limit)
        except SQLAlchemyError as exc:
            logger.error("Date search failed for %r: %s", parsed.raw_query, exc)
            raise DateSearchError(str(exc)) from exc

        results = [
            self._row_to_result(row, MatchType.DATE, score=1.0, snippet=row.content[: options.snippet_length])
            for row in rows
        ]
        return self._finish(self._filter_paths(results, parsed), parsed, options, window=self._window(options))

    # ------------------------------------------------------------------
    # Retrieval paths (no filtering or reranking)
    # ------------------------------------------------------------------

    async def _retrieve_full_text(
        self,
        query: ParsedQuery,
        limit: int,
        offset: int,
        snippet_length: int,
    ) -> list[SearchResult]:
        text_index = self._require_text_index()
        terms = query.search_terms
        expression = build_match_expression(query.plain_terms)

        try:
            if expression:
                rows = await text_index.match(expression, limit, offset)
            elif not query.plain_terms:
                rows = await text_index.all_rows(limit, offset)
            else:
                rows = []
        except SQLAlchemyError as exc:
            logger.error("Full-text search failed for %r: %s", query.raw_query, exc)
            raise FullTextSearchError(str(exc)) from exc

        return [
            self._row_to_result(
                row,
                MatchType.FULL_TEXT,
                score=abs(row.score),
                matched_terms=_matched_terms(terms, row.title, row.content),
                snippet=generate_snippet(row.content, terms, snippet_length),
            )
            for row in rows
        ]

    async def _retrieve_semantic(
        self,
        query: ParsedQuery,
        limit: int,
        offset: int,
        snippet_length: int,
    ) -> list[SearchResult]:
        if self._embedding_provider is None:
            raise EmbeddingNotAvailableError()

        terms = query.search_terms
        query_text = " ".join(terms).strip()
        if not query_text:
            return []

        try:
            query_vector = await self._embedding_provider.embed(query_text)
        except EmbeddingError as exc:
            raise SemanticSearchError(str(exc)) from exc

        # Snapshot; indexing may replace entries while we score
        entries = [entry for entry in list(self._entries.values()) if entry.embedding is not None]
        scored = [(entry, SimilarityMetric.COSINE.similarity(query_vector, entry.embedding)) for entry in entries]
        scored.sort(key=lambda item: item[1], reverse=True)
        # limit -1 keeps everything after offset, as in SQL
        page = scored[offset:] if limit < 0 else scored[offset : offset + limit]

        return [
            SearchResult(
                note_id=entry.note_id,
                title=entry.title,
                content=entry.content,
                snippet=generate_snippet(entry.content, terms, snippet_length),
                score=score,
                match_type=MatchType.SEMANTIC,
                matched_terms=list(terms),
                updated_at=entry.updated_at,
                tags=list(entry.tags),
                path=entry.path,
            )
            for entry, score in page
        ]

    # ------------------------------------------------------------------
    # Shared post-processing
    # ------------------------------------------------------------------

    def _finish(
        self,
        results: Sequence[SearchResult],
        query: ParsedQuery,
        options: SearchOptions,
        window: tuple[int, int] | None = None,
    ) -> list[SearchResult]:
        """Rerank, optionally diversify, slice ``window`` and apply ``include_content``."""
        ranked = self.reranker.rerank(results, query, options, now=self._clock())
        if options.diversify:
            ranked = self.reranker.diversify(ranked)
        if window is not None:
            start, stop = window
            ranked = ranked[start:stop]
        if not options.include_content:
            ranked = [result.model_copy(update={"content": ""}) for result in ranked]
        return ranked

    @staticmethod
    def _fetch_limit(query: ParsedQuery, options: SearchOptions) -> int:
        """Rows a path fetches from the top; ``-1`` (all) when ``in:`` filters run afterwards."""
        if query.paths:
            return -1
        return options.offset + options.limit

    @staticmethod
    def _window(options: SearchOptions) -> tuple[int, int]:
        return options.offset, options.offset + options.limit

    @staticmethod
    def _filter_paths(results: Sequence[SearchResult], query: ParsedQuery) -> list[SearchResult]:
        """Keep results whose path contains any ``in:`` value (case-insensitive)."""
        if not query.paths:
            return list(results)
        needles = [path.lower() for path in query.paths]
        return [result for result in results if any(needle in result.path.lower() for needle in needles)]

    @staticmethod
    def _row_to_result(
        row: IndexRow,
        match_type: MatchType,
        score: float,
        snippet: str,
        matched_terms: list[str] | None = None,
    ) -> SearchResult:
        return SearchResult(
            note_id=row.note_id,
            title=row.title,
            content=row.content,
            snippet=snippet,
            score=score,
            match_type=match_type,
            matched_terms=matched_terms or [],
            updated_at=row.updated_at,
            tags=row.tags,
            path=row.path,
        )

    def _require_text_index(self) -> TextIndex:
        if self._text_index is None:
            raise DatabaseUnavailableError()
        return self._text_index

    # ------------------------------------------------------------------
    # Indexing
    # ------------------------------------------------------------------

    async def embed_note(self, note: Note) -> list[float] | None:
        """Embed a note's title and content with the configured provider.

        Returns ``None`` without a provider or for a note with no text.

        Raises:
            IndexingError: If the provider fails.
        """
        if self._embedding_provider is None:
            return None
        text = f"{note.title} {note.content}".strip()
        if not text:
            return None
        try:
            return await self._embedding_provider.embed(text)
        except EmbeddingError as exc:
            logger.error("Embedding failed for note %s: %s", note.id, exc)
            raise IndexingError(str(exc)) from exc

    async def index_note(
        self,
        note: Note,
        path: str = "",
        embedding: Sequence[float] | None = None,
    ) -> NoteIndexEntry:
        """Add or replace a note in the text index and the in-memory map."""
        entry = NoteIndexEntry.from_note(note, path=path, embedding=list(embedding) if embedding is not None else None)
        async with self._lock:
            await self._write_entry(entry)
        logger.debug("Indexed note %s", note.id)
        return entry

    async def remove_from_index(self, note_id: str) -> bool:
        """Remove a note everywhere. Returns whether it was indexed."""
        async with self._lock:
            removed = False
            if self._text_index is not None:
                try:
                    removed = await self._text_index.delete(note_id)
                except SQLAlchemyError as exc:
                    logger.error("Failed to remove note %s from index: %s", note_id, exc)
                    raise IndexingError(str(exc)) from exc
            removed = self._entries.pop(note_id, None) is not None or removed
        return removed

    async def reindex_all(
        self,
        notes: Iterable[Note],
        paths: Mapping[str, str] | None = None,
        embeddings: Mapping[str, Sequence[float]] | None = None,
    ) -> int:
        """Clear everything and index *notes* one by one.

        A note's path and embedding are carried over from its previous
        entry unless supplied in ``paths`` / ``embeddings``.
        """
        paths = paths or {}
        embeddings = embeddings or {}
        count = 0

        async with self._lock:
            previous = dict(self._entries)
            if self._text_index is not None:
                try:
                    await self._text_index.clear()
                except SQLAlchemyError as exc:
                    logger.error("Failed to clear text index: %s", exc)
                    raise IndexingError(str(exc)) from exc
            self._entries.clear()

            for note in notes:
                prior = previous.get(note.id)
                path = paths.get(note.id, prior.path if prior else "")
                embedding = embeddings.get(note.id)
                if embedding is None and prior is not None:
                    embedding = prior.embedding
                entry = NoteIndexEntry.from_note(
                    note, path=path, embedding=list(embedding) if embedding is not None else None
                )
                await self._write_entry(entry)
                count += 1

        logger.info("Reindexed %d notes", count)
        return count

    async def load_index(self) -> int:
        """Rebuild the in-memory map from the text index.

        Embeddings are not persisted; entries keep any embedding already
        held in memory for the same note.
        """
        if self._text_index is None:
            return len(self._entries)

        async with self._lock:
            try:
                rows = await self._text_index.all_rows()
            except SQLAlchemyError as exc:
                logger.error("Failed to load text index: %s", exc)
                raise IndexingError(str(exc)) from exc

            loaded: dict[str, NoteIndexEntry] = {}
            for row in rows:
                prior = self._entries.get(row.note_id)
                note = Note(
                    id=row.note_id,
                    title=row.title,
                    content=row.content,
                    tags=row.tags,
                    created_at=row.created_at,
                    updated_at=row.updated_at,
                )
                loaded[row.note_id] = NoteIndexEntry.from_note(
                    note, path=row.path, embedding=prior.embedding if prior else None
                )
            self._entries = loaded

        logger.info("Loaded %d notes from text index", len(loaded))
        return len(loaded)

    async def _write_entry(self, entry: NoteIndexEntry) -> None:
        """Text index first, then the map. Caller holds the lock."""
        if self._text_index is not None:
            try:
                await self._text_index.upsert(entry)
            except SQLAlchemyError as exc:
                logger.error("Failed to index note %s: %s", entry.note_id, exc)
                raise IndexingError(str(exc)) from exc
        self._entries[entry.note_id] = entry
