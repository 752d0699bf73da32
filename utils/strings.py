"""String processing utilities for the PBS search tools.

The composer calls these once per source row, and the query engine once per
request, so patterns come pre-compiled from utils.patterns.
"""

from bs4 import BeautifulSoup

from utils.patterns import FTS5_SPECIAL_CHARS, NON_ALNUM, WHITESPACE

# Optimization: Try to use lxml parser (3-5x faster), fall back to html.parser
try:
    import lxml  # noqa: F401
    PARSER = "lxml"
except ImportError:
    PARSER = "html.parser"

_FTS5_KEYWORDS = {"AND", "OR", "NOT", "NEAR"}

# Sentinel cell values treated as "absent" after trimming
NULL_SENTINELS = frozenset({"", "null"})


def normalize_whitespace(s: str) -> str:
    """Normalize multiple whitespace characters to single spaces.

    Example:
        "Severe   active\\n  rheumatoid arthritis" -> "Severe active rheumatoid arthritis"
    """
    return WHITESPACE.sub(' ', s).strip()


def clean_cell(value) -> str | None:
    """Trim a CSV cell and map sentinel strings to None."""
    if value is None:
        return None
    text = str(value).strip()
    if text.lower() in NULL_SENTINELS:
        return None
    return text


def strip_markup(text: str | None) -> str:
    """Reduce an HTML fragment to plain display text.

    Tags are removed, entities decoded and whitespace collapsed. Restriction
    texts in the schedule are published as HTML snippets, e.g.::

        "<p>Severe&nbsp;active <b>rheumatoid</b> arthritis</p>"
        -> "Severe active rheumatoid arthritis"
    """
    if not text:
        return ""
    if "<" not in text and "&" not in text:
        return normalize_whitespace(text)
    plain = BeautifulSoup(text, PARSER).get_text(" ")
    return normalize_whitespace(plain.replace("\xa0", " "))


def fts5_terms(query: str) -> list[str]:
    """Split a normalized query into FTS5-safe literal terms."""
    cleaned = FTS5_SPECIAL_CHARS.sub(" ", query)
    return [
        t for t in cleaned.split()
        if t.upper() not in _FTS5_KEYWORDS and t.strip("-")
    ]


def sanitize_fts5_query(query: str) -> str:
    """Build an FTS5 MATCH expression requiring every term.

    Each term is quoted for literal matching and the terms are joined with
    AND, mirroring web-search semantics where every word must appear.

    Example:
        'rheumatoid arthritis flare' -> '"rheumatoid" AND "arthritis" AND "flare"'

    Returns:
        The MATCH expression, or "" when nothing searchable remains.
    """
    terms = fts5_terms(query)
    if not terms:
        return ""
    return " AND ".join(f'"{t}"' for t in terms)


def build_prefix_query(query: str) -> str:
    """Rewrite a normalized query into an FTS5 prefix-matching expression.

    Each token is stripped to letters and digits, suffixed with ``*`` and the
    tokens are joined with AND. Tokens that are empty after stripping are
    dropped.

    Example:
        'adalim* rheum.' -> 'adalim* AND rheum*'

    Returns:
        The MATCH expression, or "" when no token survives.
    """
    tokens = []
    for raw in query.split():
        token = NON_ALNUM.sub("", raw).lower()
        if token:
            tokens.append(f"{token}*")
    return " AND ".join(tokens)
