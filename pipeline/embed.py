"""Embedding hook for a future semantic-search stage.

Vector search is not implemented. The hook exists so the ingest pipeline has
a fixed place to call once a provider is wired in; until then it reports how
many documents would need vectors and does nothing else.
"""

import logging
import sqlite3

logger = logging.getLogger(__name__)

SUPPORTED_PROVIDERS: frozenset[str] = frozenset()


def embed_missing_docs(conn: sqlite3.Connection, schedule_code: str,
                       provider: str | None = None) -> int:
    """Embed documents of *schedule_code* lacking vectors. Returns the count embedded."""
    if not provider:
        logger.info("No EMBEDDINGS_PROVIDER configured; skipping embeddings for %s", schedule_code)
        return 0

    pending = conn.execute(
        "SELECT COUNT(*) FROM pbs_doc WHERE schedule_code = ?", (schedule_code,)
    ).fetchone()[0]
    if provider.lower() not in SUPPORTED_PROVIDERS:
        logger.warning(
            "Embeddings provider %r is not supported; %d documents for %s left without vectors",
            provider, pending, schedule_code,
        )
    return 0
