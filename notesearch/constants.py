from enum import StrEnum


class SearchMode(StrEnum):
    FULL_TEXT = "fts"
    SEMANTIC = "semantic"
    HYBRID = "hybrid"
    TAG = "tag"
    DATE = "date"
    AUTO = "auto"


class MatchType(StrEnum):
    FULL_TEXT = "fts"
    SEMANTIC = "semantic"
    HYBRID = "hybrid"
    TAG = "tag"
    DATE = "date"


class DateModifier(StrEnum):
    TODAY = "today"
    YESTERDAY = "yesterday"
    THIS_WEEK = "this_week"
    THIS_MONTH = "this_month"
    THIS_YEAR = "this_year"
    BEFORE = "before"
    AFTER = "after"
    RANGE = "range"


# Wraps quoted phrases in parsed plain terms so scoring treats them atomically
PHRASE_MARKER = "❗"
