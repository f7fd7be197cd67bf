"""Data model shared by the parser, retrieval paths, reranker and API.

``ParsedQuery`` and ``DateRange`` are lightweight ``NamedTuple`` values
produced by the parser. Everything else is a frozen pydantic model so
results and options cannot be mutated once built.
"""

from __future__ import annotations

import re
import uuid
from collections.abc import Mapping
from datetime import UTC, datetime
from types import MappingProxyType
from typing import NamedTuple

from pydantic import BaseModel, ConfigDict, Field

from notesearch.constants import PHRASE_MARKER, DateModifier, MatchType

_PUNCTUATION_RE = re.compile(r"[^\w\s]")


def _utcnow() -> datetime:
    return datetime.now(UTC)


def tokenize(text: str) -> list[str]:
    """Lower-case, replace punctuation with spaces, keep tokens longer than 2 chars."""
    cleaned = _PUNCTUATION_RE.sub(" ", text.lower())
    return [token for token in cleaned.split() if len(token) > 2]


def is_phrase(term: str) -> bool:
    """Whether a plain term is a marker-wrapped exact phrase."""
    return len(term) > 2 and term.startswith(PHRASE_MARKER) and term.endswith(PHRASE_MARKER)


def unwrap_phrase(term: str) -> str:
    """Strip the phrase marker from a term, returning other terms unchanged."""
    if is_phrase(term):
        return term[len(PHRASE_MARKER) : -len(PHRASE_MARKER)]
    return term


class DateRange(NamedTuple):
    """A date filter extracted from a query.

    Attributes:
        start: Inclusive lower bound, unset for ``before`` and keyword ranges.
        end: Upper bound, unset for ``after`` and keyword ranges.
        modifier: How the bounds are to be resolved.
    """

    start: datetime | None
    end: datetime | None
    modifier: DateModifier


class ParsedQuery(NamedTuple):
    """Structured result of parsing a raw query string.

    Attributes:
        raw_query: The query exactly as submitted.
        plain_terms: Free-text terms left after operator extraction.
            Quoted phrases are wrapped in ``PHRASE_MARKER``.
        tags: Values of ``tag:`` (and ``#tag``) operators.
        paths: Values of ``in:`` operators.
        date_range: Date filter, if any date operator was recognized.
        operators: Raw values of the date operators (``before``, ``after``,
            ``from``, ``to``) as typed.
        links: ``[[wikilink]]`` targets captured by the alternate grammar.
    """

    raw_query: str
    plain_terms: tuple[str, ...] = ()
    tags: tuple[str, ...] = ()
    paths: tuple[str, ...] = ()
    date_range: DateRange | None = None
    operators: Mapping[str, str] = MappingProxyType({})
    links: tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.plain_terms and not self.tags and not self.paths and self.date_range is None

    @property
    def phrases(self) -> list[str]:
        """Exact phrases (marker removed) among the plain terms."""
        return [unwrap_phrase(term) for term in self.plain_terms if is_phrase(term)]

    @property
    def search_terms(self) -> list[str]:
        """Plain terms with phrase markers removed."""
        return [unwrap_phrase(term) for term in self.plain_terms]


class Note(BaseModel):
    """A note record as supplied by the note store for indexing."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str = ""
    content: str = ""
    tags: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class NoteIndexEntry(BaseModel):
    """Index-facing projection of a note.

    Built with :meth:`from_note` so ``tokens`` always reflects the current
    title and content.
    """

    model_config = ConfigDict(frozen=True)

    note_id: str
    title: str
    content: str
    tokens: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    path: str = ""
    created_at: datetime
    updated_at: datetime
    embedding: list[float] | None = None

    @classmethod
    def from_note(
        cls,
        note: Note,
        path: str = "",
        embedding: list[float] | None = None,
    ) -> NoteIndexEntry:
        return cls(
            note_id=note.id,
            title=note.title,
            content=note.content,
            tokens=tokenize(f"{note.title} {note.content}"),
            tags=list(note.tags),
            path=path,
            created_at=note.created_at,
            updated_at=note.updated_at,
            embedding=list(embedding) if embedding is not None else None,
        )


class SearchResult(BaseModel):
    """A single ranked hit.

    Two results are equal only when both ``id`` and ``note_id`` match, so
    the same note returned by two retrieval paths stays two distinct results
    until fusion merges them.

    Attributes:
        id: Fresh identifier generated per query.
        note_id: Identifier of the matching note.
        snippet: Excerpt around the first matched term.
        score: Relevance score; meaning depends on ``match_type`` until reranked.
        match_type: Retrieval path that produced the result.
        matched_terms: Query terms found in the note.
        path: Folder label from the index, used by ``in:`` filters.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    note_id: str
    title: str
    content: str = ""
    snippet: str = ""
    score: float = 0.0
    match_type: MatchType = MatchType.FULL_TEXT
    matched_terms: list[str] = Field(default_factory=list)
    updated_at: datetime = Field(default_factory=_utcnow)
    tags: list[str] = Field(default_factory=list)
    path: str = ""

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SearchResult):
            return NotImplemented
        return self.id == other.id and self.note_id == other.note_id

    def __hash__(self) -> int:
        return hash((self.id, self.note_id))


class SearchOptions(BaseModel):
    """Per-request search configuration.

    ``title_weight`` is the additive boost for a title match; unset, the
    reranker's configured ``title_boost`` applies. ``fts_weight``
    and ``semantic_weight`` weigh the two lists against each other during
    hybrid fusion; equal weights reproduce the plain ``1 / (k + rank)`` law.
    """

    model_config = ConfigDict(frozen=True)

    limit: int = Field(default=20, ge=1)
    offset: int = Field(default=0, ge=0)
    include_content: bool = True
    snippet_length: int = Field(default=150, ge=1)
    boost_recent: bool = True
    boost_title_matches: bool = True
    boost_tags: bool = True
    boost_exact_phrases: bool = True
    title_weight: float | None = None
    fts_weight: float = 0.5
    semantic_weight: float = 0.5
    diversify: bool = False


class RankingFeature(BaseModel):
    """Per-result features for the linear reranker."""

    model_config = ConfigDict(frozen=True)

    result_id: str
    bm25_score: float = 0.0
    semantic_score: float = 0.0
    title_match: bool = False
    tag_match_count: int = 0
    days_since_update: int = 0
    content_length: int = 0
    match_count: int = 0
