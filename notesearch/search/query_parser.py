"""Query parser for the search operator grammar.

Turns a raw query string into a :class:`ParsedQuery`. Operators are pulled
out by an ordered tuple of extraction rules; each rule extracts its values
and strips its syntax before the next rule sees the text, so later rules
never match already-consumed operators:

1. ``tag:<word>``      -> tags
2. ``in:<path>``       -> paths
3. ``date:<keyword>``  -> keyword date range
4. ``before:<date>``   -> open-ended range ending at the date
5. ``after:<date>``    -> open-ended range starting at the date
6. ``from:`` / ``to:`` -> explicit range, overriding 3-5

A date operator whose value is not an ISO date is removed and ignored.

Whatever remains is split into plain terms. ``"quoted phrases"`` become a
single marker-wrapped term and ``AND`` / ``OR`` / ``NOT`` are treated as
separators only: no boolean expression tree is built.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta
from typing import NamedTuple

from notesearch.constants import PHRASE_MARKER, DateModifier, SearchMode
from notesearch.search.models import DateRange, ParsedQuery
from notesearch.utils.datetime_utils import (
    DISTANT_FUTURE,
    DISTANT_PAST,
    ensure_utc,
    parse_iso_date,
    start_of_day,
    start_of_month,
    start_of_week,
    start_of_year,
)

_ISO_DATE = r"\d{4}-\d{2}-\d{2}"


class _ExtractionRule(NamedTuple):
    """One operator: ``pattern`` captures the value in group 1."""

    key: str
    pattern: re.Pattern[str]
    first_only: bool = False


_RULES: tuple[_ExtractionRule, ...] = (
    _ExtractionRule("tag", re.compile(r"tag:(\S+)", re.IGNORECASE)),
    _ExtractionRule("path", re.compile(r"in:(\S+)", re.IGNORECASE)),
    _ExtractionRule("date", re.compile(r"date:(\w+)", re.IGNORECASE), first_only=True),
    _ExtractionRule("before", re.compile(rf"before:({_ISO_DATE})", re.IGNORECASE), first_only=True),
    _ExtractionRule("after", re.compile(rf"after:({_ISO_DATE})", re.IGNORECASE), first_only=True),
    _ExtractionRule("from", re.compile(rf"from:({_ISO_DATE})", re.IGNORECASE), first_only=True),
    _ExtractionRule("to", re.compile(rf"to:({_ISO_DATE})", re.IGNORECASE), first_only=True),
)

# Alternate grammar, extracted before the base rules run on the remainder.
# The hyphen only counts at the start of a token so dates and
# hyphenated words are left alone.
_QMD_RULES: tuple[_ExtractionRule, ...] = (
    _ExtractionRule("tag", re.compile(r"#(\w+)")),
    _ExtractionRule("link", re.compile(r"\[\[([^\]]+)\]\]")),
    _ExtractionRule("caret", re.compile(r"\^(\w+)")),
    _ExtractionRule("exclude", re.compile(r"(?<!\S)-(\S+)")),
)

# "today" maps to this_week and "this month" can never match the \w+
# keyword pattern. Both are kept as shipped.
DATE_KEYWORDS: dict[str, DateModifier] = {
    "today": DateModifier.THIS_WEEK,
    "yesterday": DateModifier.YESTERDAY,
    "thisweek": DateModifier.THIS_WEEK,
    "this month": DateModifier.THIS_MONTH,
    "thisyear": DateModifier.THIS_YEAR,
    "week": DateModifier.THIS_WEEK,
    "month": DateModifier.THIS_MONTH,
    "year": DateModifier.THIS_YEAR,
}

_BOOLEAN_KEYWORDS = frozenset({"AND", "OR", "NOT"})

# Date operators whose value is not an ISO date; dropped without a range
_MALFORMED_DATE_OPERATOR = re.compile(r"(?<!\S)(?:before|after|from|to):\S*", re.IGNORECASE)

_TERM_RE = re.compile(
    rf"{PHRASE_MARKER}[^{PHRASE_MARKER}]+{PHRASE_MARKER}"  # phrase already marked
    r'|"([^"]+)"'  # quoted phrase
    r"|\S+"
)


def _apply_rule(rule: _ExtractionRule, text: str) -> tuple[list[str], str]:
    """Return the rule's captured values and the text with its syntax removed."""
    values = rule.pattern.findall(text)
    if not values:
        return [], text
    if rule.first_only:
        values = values[:1]
    return values, rule.pattern.sub("", text)


def _split_terms(text: str) -> list[str]:
    """Split leftover text into plain terms, keeping phrases atomic."""
    terms: list[str] = []
    for match in _TERM_RE.finditer(text):
        token = match.group(0)
        quoted = match.group(1)
        if quoted is not None:
            phrase = quoted.strip()
            if phrase:
                terms.append(f"{PHRASE_MARKER}{phrase}{PHRASE_MARKER}")
            continue
        if token.upper() in _BOOLEAN_KEYWORDS:
            continue
        terms.append(token)
    return terms


class QueryParser:
    """Parses search queries with operator support.

    Supports ``tag:``, ``in:``, ``date:``, ``before:``, ``after:``,
    ``from:``, ``to:``, ``"exact phrase"`` and the ``AND`` / ``OR`` / ``NOT``
    separators. :meth:`parse_qmd` adds ``#tag``, ``[[link]]``, ``^term``
    and ``-term``.
    """

    def parse(self, query: str) -> ParsedQuery:
        """Parse a raw query into its structured components.

        Example: ``"tag:swift in:Projects date:thisweek api"`` gives tags
        ``("swift",)``, paths ``("Projects",)``, a ``this_week`` range and the
        plain term ``"api"``.
        """
        if not query:
            return ParsedQuery(raw_query="", operators={})

        remaining = query
        extracted: dict[str, list[str]] = {}
        for rule in _RULES:
            extracted[rule.key], remaining = _apply_rule(rule, remaining)
        remaining = _MALFORMED_DATE_OPERATOR.sub("", remaining)

        operators: dict[str, str] = {}
        date_range: DateRange | None = None

        if extracted["date"]:
            modifier = DATE_KEYWORDS.get(extracted["date"][0].lower())
            if modifier is not None:
                date_range = DateRange(start=None, end=None, modifier=modifier)

        if extracted["before"]:
            operators["before"] = extracted["before"][0]
            before = parse_iso_date(operators["before"])
            if before is not None:
                date_range = DateRange(start=None, end=before, modifier=DateModifier.BEFORE)

        if extracted["after"]:
            operators["after"] = extracted["after"][0]
            after = parse_iso_date(operators["after"])
            if after is not None:
                date_range = DateRange(start=after, end=None, modifier=DateModifier.AFTER)

        from_date = to_date = None
        if extracted["from"]:
            operators["from"] = extracted["from"][0]
            from_date = parse_iso_date(operators["from"])
        if extracted["to"]:
            operators["to"] = extracted["to"][0]
            to_date = parse_iso_date(operators["to"])
        if from_date is not None or to_date is not None:
            date_range = DateRange(start=from_date, end=to_date, modifier=DateModifier.RANGE)

        return ParsedQuery(
            raw_query=query,
            plain_terms=tuple(_split_terms(remaining)),
            tags=tuple(extracted["tag"]),
            paths=tuple(extracted["path"]),
            date_range=date_range,
            operators=operators,
        )

    def parse_qmd(self, query: str) -> ParsedQuery:
        """Parse the qmd-style grammar on top of :meth:`parse`.

        ``#tag`` behaves like ``tag:``, ``[[link]]`` targets are captured in
        ``links``. ``^term`` and ``-term`` are both appended to the plain
        terms; neither builds a real exclusion.
        """
        remaining = query
        extracted: dict[str, list[str]] = {}
        for rule in _QMD_RULES:
            extracted[rule.key], remaining = _apply_rule(rule, remaining)

        base = self.parse(remaining.strip())
        auxiliary = extracted["caret"] + extracted["exclude"]

        return base._replace(
            raw_query=query,
            plain_terms=base.plain_terms + tuple(auxiliary),
            tags=tuple(extracted["tag"]) + base.tags,
            links=tuple(extracted["link"]),
        )

    def expand(self, query: ParsedQuery) -> list[str]:
        """Expand a query into the joined terms, each term and naive stems."""
        expansions = [" ".join(query.plain_terms)]
        expansions.extend(query.plain_terms)

        for term in query.plain_terms:
            if len(term) > 4:
                expansions.append(term[:-1])

        return expansions

    def detect_search_mode(self, query: ParsedQuery) -> SearchMode:
        """Pick a retrieval mode from the shape of the parsed query."""
        if query.tags and not query.plain_terms and query.date_range is None:
            return SearchMode.TAG

        if query.date_range is not None and not query.plain_terms:
            return SearchMode.DATE

        # Paths are a filter, not a retrieval path of their own
        if query.paths and not query.plain_terms:
            return SearchMode.FULL_TEXT

        return SearchMode.HYBRID


def resolve_date_range(date_range: DateRange, now: datetime | None = None) -> tuple[datetime, datetime]:
    """Resolve a date range to concrete, inclusive ``(start, end)`` bounds in UTC.

    ``before:`` excludes its own date and ``to:`` includes the whole of its
    day. Missing bounds fall back to ``DISTANT_PAST`` / ``DISTANT_FUTURE``.
    """
    now = ensure_utc(now) if now is not None else ensure_utc(datetime.now().astimezone())
    one_tick = timedelta(microseconds=1)
    modifier = date_range.modifier

    if modifier == DateModifier.TODAY:
        return start_of_day(now), now
    if modifier == DateModifier.YESTERDAY:
        today = start_of_day(now)
        return today - timedelta(days=1), today - one_tick
    if modifier == DateModifier.THIS_WEEK:
        return start_of_week(now), now
    if modifier == DateModifier.THIS_MONTH:
        return start_of_month(now), now
    if modifier == DateModifier.THIS_YEAR:
        return start_of_year(now), now
    if modifier == DateModifier.BEFORE:
        end = ensure_utc(date_range.end) if date_range.end is not None else now
        return DISTANT_PAST, end - one_tick
    if modifier == DateModifier.AFTER:
        start = ensure_utc(date_range.start) if date_range.start is not None else now
        return start, DISTANT_FUTURE

    start = ensure_utc(date_range.start) if date_range.start is not None else DISTANT_PAST
    if date_range.end is None:
        return start, DISTANT_FUTURE
    return start, start_of_day(date_range.end) + timedelta(days=1) - one_tick
