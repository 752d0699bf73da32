"""Excerpt a document body around the first query term it contains."""

import re
import unicodedata

DEFAULT_SNIPPET_LENGTH = 320
ELLIPSIS = "…"


def build_snippet(body: str | None, query: str, max_length: int = DEFAULT_SNIPPET_LENGTH) -> str:
    """Return a window of *body* of at most *max_length* characters.

    Query terms are tried in query order; the first one found
    (case-insensitively) anchors the window, which starts a quarter of
    *max_length* before the hit. With no hit the window starts at 0.
    An ellipsis marks each side where the window does not reach the body's
    start or end.

    Example:
        build_snippet("AAAA BBBB target CCCC DDDD", "target", 10) -> "…B target C…"
    """
    if not body:
        return ""
    text = unicodedata.normalize("NFKC", body)
    terms = unicodedata.normalize("NFKC", query).split()

    # Matched on text itself: lower() can change length ("İ" -> "i̇")
    hit = -1
    for term in terms:
        match = re.search(re.escape(term), text, re.IGNORECASE)
        if match:
            hit = match.start()
            break

    start = 0 if hit == -1 else max(0, hit - max_length // 4)
    end = start + max_length
    prefix = ELLIPSIS if start > 0 else ""
    suffix = ELLIPSIS if end < len(text) else ""
    return f"{prefix}{text[start:end]}{suffix}"
