"""End-to-end tests for the search engine orchestrator.

Runs against a real FTS5 index in a temporary SQLite file. The embedding
provider is always mocked.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from notesearch.constants import MatchType, SearchMode
from notesearch.search.embeddings import EmbeddingError, EmbeddingProvider
from notesearch.search.engine import SearchEngine, build_match_expression, generate_snippet
from notesearch.search.errors import (
    DatabaseUnavailableError,
    EmbeddingNotAvailableError,
    FullTextSearchError,
    IndexingError,
    SemanticSearchError,
    TagSearchError,
)
from notesearch.search.models import Note, SearchOptions
from notesearch.search.text_index import TextIndex

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _note(
    note_id: str,
    title: str,
    content: str = "",
    tags: list[str] | None = None,
    updated_at: datetime = NOW,
) -> Note:
    return Note(
        id=note_id,
        title=title,
        content=content,
        tags=tags or [],
        created_at=updated_at,
        updated_at=updated_at,
    )


def _make_provider(vector: list[float] | None = None, side_effect=None) -> AsyncMock:
    """Build a mock EmbeddingProvider returning a fixed query vector."""
    provider = AsyncMock(spec=EmbeddingProvider)
    if side_effect is not None:
        provider.embed.side_effect = side_effect
    else:
        provider.embed.return_value = vector if vector is not None else [1.0, 0.0]
    return provider


def _engine(text_index: TextIndex | None, provider=None) -> SearchEngine:
    return SearchEngine(text_index=text_index, embedding_provider=provider, clock=lambda: NOW)


# ---------------------------------------------------------------------------
# 1. Scenario checks
# ---------------------------------------------------------------------------


class TestScenarios:
    @pytest.mark.asyncio
    async def test_tag_boost_ranks_swift_note_first(self, text_index: TextIndex):
        engine = _engine(text_index)
        await engine.index_note(_note("A", "Swift Basics", "getting started", ["swift"]))
        await engine.index_note(_note("B", "Rust Basics", "getting started", ["rust"], NOW - timedelta(days=30)))

        results = await engine.search("basics tag:swift", mode=SearchMode.FULL_TEXT)

        assert [r.note_id for r in results] == ["A", "B"]
        assert results[0].score > results[1].score

    @pytest.mark.asyncio
    async def test_before_query_uses_date_mode(self, text_index: TextIndex):
        engine = _engine(text_index)
        await engine.index_note(_note("old", "Old", updated_at=datetime(2023, 12, 31, 10, 0, tzinfo=UTC)))
        await engine.index_note(_note("boundary", "Boundary", updated_at=datetime(2024, 1, 1, tzinfo=UTC)))
        await engine.index_note(_note("new", "New", updated_at=datetime(2024, 3, 1, tzinfo=UTC)))

        results = await engine.search("before:2024-01-01")

        assert [r.note_id for r in results] == ["old"]
        assert results[0].match_type == MatchType.DATE

    @pytest.mark.asyncio
    async def test_hybrid_without_provider_raises_even_with_matches(self, text_index: TextIndex):
        engine = _engine(text_index)
        await engine.index_note(_note("A", "Swift Basics"))

        assert await engine.search("swift", mode=SearchMode.FULL_TEXT)
        with pytest.raises(EmbeddingNotAvailableError):
            await engine.search("swift")

    @pytest.mark.asyncio
    async def test_empty_query_returns_nothing(self, text_index: TextIndex):
        engine = _engine(text_index)
        await engine.index_note(_note("A", "Swift"))

        assert await engine.search("") == []
        assert await engine.search("   ", mode=SearchMode.FULL_TEXT) == []


# ---------------------------------------------------------------------------
# 2. Full-text
# ---------------------------------------------------------------------------


class TestFullText:
    @pytest.mark.asyncio
    async def test_results_have_snippet_and_matched_terms(self, text_index: TextIndex):
        engine = _engine(text_index)
        content = "x" * 200 + " the actor model keeps state isolated " + "y" * 200
        await engine.index_note(_note("A", "Concurrency", content))

        results = await engine.search_full_text("actor")

        assert len(results) == 1
        result = results[0]
        assert result.match_type == MatchType.FULL_TEXT
        assert result.matched_terms == ["actor"]
        assert "actor model" in result.snippet
        assert result.snippet.endswith("...")
        assert result.score > 0

    @pytest.mark.asyncio
    async def test_phrase_query(self, text_index: TextIndex):
        engine = _engine(text_index)
        await engine.index_note(_note("A", "Errors", "error handling in swift"))
        await engine.index_note(_note("B", "Other", "handling of an error"))

        results = await engine.search_full_text('"error handling"')

        assert [r.note_id for r in results] == ["A"]

    @pytest.mark.asyncio
    async def test_quotes_in_terms_are_safe(self, text_index: TextIndex):
        engine = _engine(text_index)
        await engine.index_note(_note("A", "Quotes"))

        assert await engine.search_full_text('say"hello') == []

    @pytest.mark.asyncio
    async def test_path_only_query_lists_matching_folder(self, text_index: TextIndex):
        engine = _engine(text_index)
        await engine.index_note(_note("A", "Plan"), path="Projects/App")
        await engine.index_note(_note("B", "Diary"), path="Personal")

        results = await engine.search("in:projects")

        assert [r.note_id for r in results] == ["A"]
        assert results[0].path == "Projects/App"

    @pytest.mark.asyncio
    async def test_path_filter_sees_rows_beyond_limit(self, text_index: TextIndex):
        engine = _engine(text_index)
        for i in range(25):
            await engine.index_note(_note(f"p{i}", f"Diary {i}"), path="Personal")
        await engine.index_note(_note("proj", "Roadmap", updated_at=NOW - timedelta(days=60)), path="Projects")

        results = await engine.search("in:projects")

        assert [r.note_id for r in results] == ["proj"]

    @pytest.mark.asyncio
    async def test_path_filter_with_terms_pages_after_filtering(self, text_index: TextIndex):
        engine = _engine(text_index)
        for i in range(5):
            await engine.index_note(_note(f"p{i}", f"Swift diary {i}"), path="Personal")
        for i in range(3):
            await engine.index_note(_note(f"w{i}", f"Swift work {i}", updated_at=NOW - timedelta(days=60)), path="Work")

        first = await engine.search_full_text("swift in:work", SearchOptions(limit=2))
        second = await engine.search_full_text("swift in:work", SearchOptions(limit=2, offset=2))

        assert len(first) == 2
        assert len(second) == 1
        assert {r.note_id for r in first + second} == {"w0", "w1", "w2"}

    @pytest.mark.asyncio
    async def test_include_content_false_strips_content(self, text_index: TextIndex):
        engine = _engine(text_index)
        await engine.index_note(_note("A", "Swift", "swift body text"))

        results = await engine.search_full_text("swift", SearchOptions(include_content=False))

        assert results[0].content == ""
        assert results[0].snippet == "swift body text"

    @pytest.mark.asyncio
    async def test_limit_and_offset(self, text_index: TextIndex):
        engine = _engine(text_index)
        for i in range(5):
            await engine.index_note(_note(f"n{i}", f"Swift note {i}"))

        page = await engine.search_full_text("swift", SearchOptions(limit=2, offset=4))

        assert len(page) == 1

    @pytest.mark.asyncio
    async def test_database_error_is_wrapped(self, text_index: TextIndex):
        engine = _engine(text_index)
        error = OperationalError("SELECT", {}, Exception("disk I/O error"))

        with patch.object(text_index, "match", new_callable=AsyncMock, side_effect=error), pytest.raises(
            FullTextSearchError, match="Full-text search failed"
        ):
            await engine.search_full_text("swift")

    @pytest.mark.asyncio
    async def test_without_text_index(self):
        engine = _engine(None)

        with pytest.raises(DatabaseUnavailableError):
            await engine.search_full_text("swift")


# ---------------------------------------------------------------------------
# 3. Semantic
# ---------------------------------------------------------------------------


class TestSemantic:
    @pytest.mark.asyncio
    async def test_orders_by_cosine(self, text_index: TextIndex):
        engine = _engine(text_index, _make_provider([1.0, 0.0]))
        await engine.index_note(_note("far", "Far"), embedding=[0.0, 1.0])
        await engine.index_note(_note("near", "Near"), embedding=[1.0, 0.1])
        await engine.index_note(_note("none", "No vector"))

        results = await engine.search_semantic("query", SearchOptions(boost_recent=False, boost_title_matches=False))

        assert [r.note_id for r in results] == ["near", "far"]
        assert results[0].match_type == MatchType.SEMANTIC
        assert results[0].score == pytest.approx(1.0 / (1.01**0.5))

    @pytest.mark.asyncio
    async def test_offset_and_limit(self, text_index: TextIndex):
        engine = _engine(text_index, _make_provider([1.0, 0.0]))
        for i, vector in enumerate([[1.0, 0.0], [1.0, 0.5], [1.0, 1.0]]):
            await engine.index_note(_note(f"n{i}", f"Note {i}"), embedding=vector)

        results = await engine.search_semantic("q", SearchOptions(limit=1, offset=1, boost_recent=False))

        assert [r.note_id for r in results] == ["n1"]

    @pytest.mark.asyncio
    async def test_path_filter_applies_before_limit(self, text_index: TextIndex):
        engine = _engine(text_index, _make_provider([1.0, 0.0]))
        for i in range(5):
            await engine.index_note(_note(f"p{i}", f"Diary {i}"), path="Personal", embedding=[1.0, 0.0])
        await engine.index_note(_note("proj", "Roadmap"), path="Projects", embedding=[0.0, 1.0])

        results = await engine.search_semantic("plans in:projects", SearchOptions(limit=2))

        assert [r.note_id for r in results] == ["proj"]

    @pytest.mark.asyncio
    async def test_query_text_joins_terms_without_markers(self, text_index: TextIndex):
        provider = _make_provider()
        engine = _engine(text_index, provider)

        await engine.search_semantic('"exact phrase" more tag:x')

        provider.embed.assert_awaited_once_with("exact phrase more")

    @pytest.mark.asyncio
    async def test_no_terms_returns_empty(self, text_index: TextIndex):
        provider = _make_provider()
        engine = _engine(text_index, provider)

        assert await engine.search_semantic("tag:x") == []
        provider.embed.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_provider_error_is_wrapped(self, text_index: TextIndex):
        engine = _engine(text_index, _make_provider(side_effect=EmbeddingError("quota")))

        with pytest.raises(SemanticSearchError, match="quota"):
            await engine.search_semantic("swift")

    @pytest.mark.asyncio
    async def test_without_provider(self, text_index: TextIndex):
        with pytest.raises(EmbeddingNotAvailableError):
            await _engine(text_index).search_semantic("swift")


# ---------------------------------------------------------------------------
# 4. Hybrid
# ---------------------------------------------------------------------------


class TestHybrid:
    @pytest.mark.asyncio
    async def test_fuses_both_paths(self, text_index: TextIndex):
        engine = _engine(text_index, _make_provider([1.0, 0.0]))
        await engine.index_note(_note("A", "Swift concurrency"), embedding=[1.0, 0.0])
        await engine.index_note(_note("B", "Swift"), embedding=[0.0, 1.0])
        await engine.index_note(_note("C", "Gardening"), embedding=[0.9, 0.1])

        results = await engine.search("swift")

        assert {r.note_id for r in results} == {"A", "B", "C"}
        assert all(r.match_type == MatchType.HYBRID for r in results)

    @pytest.mark.asyncio
    async def test_falls_back_to_full_text_when_semantic_is_empty(self, text_index: TextIndex):
        engine = _engine(text_index, _make_provider())
        await engine.index_note(_note("A", "Swift"))

        results = await engine.search("swift", mode=SearchMode.HYBRID)

        assert [r.note_id for r in results] == ["A"]
        assert results[0].match_type == MatchType.FULL_TEXT

    @pytest.mark.asyncio
    async def test_falls_back_to_semantic_when_full_text_is_empty(self, text_index: TextIndex):
        engine = _engine(text_index, _make_provider([1.0, 0.0]))
        await engine.index_note(_note("A", "Gardening"), embedding=[1.0, 0.0])

        results = await engine.search("swift", mode=SearchMode.HYBRID)

        assert [r.note_id for r in results] == ["A"]
        assert results[0].match_type == MatchType.SEMANTIC

    @pytest.mark.asyncio
    async def test_pagination_is_merge_then_slice(self, text_index: TextIndex):
        engine = _engine(text_index, _make_provider([1.0, 0.0]))
        for i, vector in enumerate([[1.0, 0.0], [0.5, 0.5], [0.0, 1.0]]):
            await engine.index_note(_note(f"n{i}", f"Swift note {i}"), embedding=vector)

        full = await engine.search("swift", options=SearchOptions(limit=3))
        page = await engine.search("swift", options=SearchOptions(limit=1, offset=1))

        assert [r.note_id for r in page] == [full[1].note_id]

    @pytest.mark.asyncio
    async def test_semantic_error_propagates_after_full_text_runs(self, text_index: TextIndex):
        engine = _engine(text_index, _make_provider(side_effect=EmbeddingError("down")))
        await engine.index_note(_note("A", "Swift"))

        with patch.object(text_index, "match", wraps=text_index.match) as spy, pytest.raises(SemanticSearchError):
            await engine.search("swift")

        spy.assert_called_once()

    @pytest.mark.asyncio
    async def test_full_text_error_is_raised_first(self):
        engine = _engine(None)

        with pytest.raises(DatabaseUnavailableError):
            await engine.search("swift", mode=SearchMode.HYBRID)


# ---------------------------------------------------------------------------
# 5. Tag and date
# ---------------------------------------------------------------------------


class TestTagAndDate:
    @pytest.mark.asyncio
    async def test_tag_search_dedups_and_prefers_recent(self, text_index: TextIndex):
        engine = _engine(text_index)
        await engine.index_note(_note("old", "Old", tags=["swift"], updated_at=NOW - timedelta(days=90)))
        await engine.index_note(_note("new", "New", tags=["swift", "ios"]))
        await engine.index_note(_note("other", "Other", tags=["rust"]))

        results = await engine.search("tag:swift tag:ios")

        assert [r.note_id for r in results] == ["new", "old"]
        assert all(r.match_type == MatchType.TAG for r in results)
        assert results[1].matched_terms == ["swift"]

    @pytest.mark.asyncio
    async def test_tag_mode_falls_back_to_plain_terms(self, text_index: TextIndex):
        engine = _engine(text_index)
        await engine.index_note(_note("A", "A", tags=["swift"]))

        results = await engine.search("swift", mode=SearchMode.TAG)

        assert [r.note_id for r in results] == ["A"]

    @pytest.mark.asyncio
    async def test_tag_path_filter_applies_before_limit(self, text_index: TextIndex):
        engine = _engine(text_index)
        for i in range(4):
            await engine.index_note(_note(f"p{i}", f"Diary {i}", tags=["swift"]), path="Personal")
        await engine.index_note(
            _note("proj", "Roadmap", tags=["swift"], updated_at=NOW - timedelta(days=60)), path="Projects"
        )

        results = await engine.search("tag:swift in:projects", options=SearchOptions(limit=2))

        assert [r.note_id for r in results] == ["proj"]

    @pytest.mark.asyncio
    async def test_tag_search_error(self, text_index: TextIndex):
        engine = _engine(text_index)
        error = OperationalError("SELECT", {}, Exception("locked"))

        with patch.object(text_index, "by_tag", new_callable=AsyncMock, side_effect=error), pytest.raises(
            TagSearchError
        ):
            await engine.search("tag:swift")

    @pytest.mark.asyncio
    async def test_date_keyword(self, text_index: TextIndex):
        engine = _engine(text_index)
        await engine.index_note(_note("recent", "Recent", updated_at=NOW - timedelta(hours=1)))
        await engine.index_note(_note("last_year", "Last year", updated_at=datetime(2023, 6, 1, tzinfo=UTC)))

        results = await engine.search("date:year")

        assert [r.note_id for r in results] == ["recent"]

    @pytest.mark.asyncio
    async def test_date_mode_without_range_is_empty(self, text_index: TextIndex):
        engine = _engine(text_index)
        await engine.index_note(_note("A", "A"))

        assert await engine.search("swift", mode=SearchMode.DATE) == []


# ---------------------------------------------------------------------------
# 6. Indexing
# ---------------------------------------------------------------------------


class TestIndexing:
    @pytest.mark.asyncio
    async def test_index_and_remove(self, text_index: TextIndex):
        engine = _engine(text_index)
        entry = await engine.index_note(_note("A", "Swift Basics", "Learning Swift!"), path="Work")

        assert entry.tokens == ["swift", "basics", "learning", "swift"]
        assert engine.get_entry("A") == entry
        assert await text_index.count() == 1

        assert await engine.remove_from_index("A") is True
        assert engine.get_entry("A") is None
        assert await text_index.count() == 0
        assert await engine.remove_from_index("A") is False

    @pytest.mark.asyncio
    async def test_reindex_all_carries_path_and_embedding(self, text_index: TextIndex):
        engine = _engine(text_index)
        await engine.index_note(_note("A", "Old title"), path="Work", embedding=[1.0, 0.0])
        await engine.index_note(_note("gone", "Removed"))

        count = await engine.reindex_all([_note("A", "New title"), _note("B", "Fresh")], paths={"B": "Inbox"})

        assert count == 2
        assert engine.indexed_count == 2
        assert engine.get_entry("A").path == "Work"
        assert engine.get_entry("A").embedding == [1.0, 0.0]
        assert engine.get_entry("B").path == "Inbox"
        assert engine.get_entry("gone") is None
        assert await engine.search_full_text("old") == []
        assert [r.note_id for r in await engine.search_full_text("new")] == ["A"]

    @pytest.mark.asyncio
    async def test_load_index_rebuilds_map(self, text_index: TextIndex):
        writer = _engine(text_index)
        await writer.index_note(_note("A", "Swift", tags=["ios"]), path="Work", embedding=[1.0, 0.0])

        reader = _engine(text_index)
        count = await reader.load_index()

        entry = reader.get_entry("A")
        assert count == 1
        assert entry.path == "Work"
        assert entry.tags == ["ios"]
        assert entry.embedding is None

    @pytest.mark.asyncio
    async def test_indexing_error_leaves_map_unchanged(self, text_index: TextIndex):
        engine = _engine(text_index)
        error = OperationalError("INSERT", {}, Exception("read-only"))

        with patch.object(text_index, "upsert", new_callable=AsyncMock, side_effect=error), pytest.raises(
            IndexingError, match="Indexing failed"
        ):
            await engine.index_note(_note("A", "Swift"))

        assert engine.get_entry("A") is None

    @pytest.mark.asyncio
    async def test_without_text_index_only_map_is_maintained(self):
        engine = _engine(None, _make_provider([1.0, 0.0]))
        await engine.index_note(_note("A", "Swift"), embedding=[1.0, 0.0])

        results = await engine.search_semantic("swift")

        assert [r.note_id for r in results] == ["A"]
        assert await engine.load_index() == 1

    @pytest.mark.asyncio
    async def test_concurrent_mutations_do_not_interleave(self, text_index: TextIndex):
        engine = _engine(text_index)
        events: list[tuple[str, str]] = []
        upsert = text_index.upsert
        delete = text_index.delete

        async def slow_upsert(entry):
            events.append(("start", entry.note_id))
            await asyncio.sleep(0)
            await upsert(entry)
            await asyncio.sleep(0)
            events.append(("end", entry.note_id))

        async def slow_delete(note_id):
            events.append(("start", note_id))
            await asyncio.sleep(0)
            removed = await delete(note_id)
            events.append(("end", note_id))
            return removed

        with patch.object(text_index, "upsert", slow_upsert), patch.object(text_index, "delete", slow_delete):
            await asyncio.gather(
                engine.index_note(_note("a", "Alpha")),
                engine.index_note(_note("b", "Beta")),
                engine.remove_from_index("a"),
                engine.reindex_all([_note("c", "Gamma"), _note("d", "Delta")]),
                engine.index_note(_note("e", "Epsilon")),
            )

        starts = events[0::2]
        ends = events[1::2]
        assert all(kind == "start" for kind, _ in starts)
        assert [note_id for _, note_id in starts] == [note_id for _, note_id in ends]

        rows = await text_index.all_rows()
        assert {row.note_id for row in rows} == {"c", "d", "e"}
        assert engine.indexed_count == len(rows)
        assert all(engine.get_entry(row.note_id) is not None for row in rows)

    @pytest.mark.asyncio
    async def test_embed_note(self):
        provider = _make_provider([0.3, 0.4])
        engine = _engine(None, provider)

        assert await engine.embed_note(_note("A", "Title", "Body")) == [0.3, 0.4]
        provider.embed.assert_awaited_once_with("Title Body")
        assert await _engine(None).embed_note(_note("A", "Title")) is None


# ---------------------------------------------------------------------------
# 7. Helpers
# ---------------------------------------------------------------------------


class TestHelpers:
    def test_build_match_expression(self):
        assert build_match_expression(["swift", "❗exact phrase❗", 'say"hi']) == '"swift"* "exact phrase" "say""hi"*'

    def test_build_match_expression_skips_punctuation(self):
        assert build_match_expression(["!!!", "--"]) == ""

    def test_snippet_centres_on_first_found_term(self):
        content = "abcdefghij" * 5
        snippet = generate_snippet(content, ["missing", "FGH"], 10)

        assert snippet == "abcdefghij..."

    def test_snippet_without_match(self):
        assert generate_snippet("short text", ["zzz"], 5) == "short"

    def test_snippet_no_ellipsis_at_end(self):
        assert generate_snippet("hello world", ["world"], 20) == "hello world"
