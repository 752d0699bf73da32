"""Search package: query normalisation, tiered ranking, snippets and the
Elasticsearch mirror."""

from search.query import (
    ABBREVIATIONS,
    QueryEngine,
    SearchResult,
    get_doc,
    latest_schedule,
    list_schedules,
    normalize_query,
)
from search.rank import blended_score
from search.snippet import build_snippet

__all__ = [
    "ABBREVIATIONS",
    "QueryEngine",
    "SearchResult",
    "get_doc",
    "latest_schedule",
    "list_schedules",
    "normalize_query",
    "blended_score",
    "build_snippet",
]
