"""
Query engine: tiered hybrid search over composed PBS documents.

A query is normalised once, then handed to an ordered list of strategies.
The first strategy returning a non-empty result set answers the request:

    external  — Elasticsearch alias (only when SEARCH_BACKEND=elasticsearch
                and a client is configured); failures are logged and skipped
    fulltext  — FTS5 MATCH of every term; 0.7 * bm25 relevance + 0.3 * fuzzy
                similarity against title/body
    prefix    — FTS5 prefix terms ("adalim*"); 0.6 * bm25 + 0.4 * similarity
    trigram   — pure fuzzy similarity, no text-index requirement

Scores are only comparable within one response; each result records the
stage that produced it.

Relational errors in the SQLite stages are not caught: with the primary
store failing there is nothing left to fall back to.
"""

import json
import logging
import sqlite3
import unicodedata
from dataclasses import asdict, dataclass
from typing import Any, Callable, Optional

from search.rank import blended_score
from search.snippet import build_snippet
from utils.config import AppConfig
from utils.strings import build_prefix_query, sanitize_fts5_query

logger = logging.getLogger(__name__)

ABBREVIATIONS: dict[str, str] = {
    "ra": "rheumatoid arthritis",
    "psa": "psoriatic arthritis",
    "as": "ankylosing spondylitis",
    "gca": "giant cell arteritis",
    "jia": "juvenile idiopathic arthritis",
    "sle": "systemic lupus erythematosus",
    "toci": "tocilizumab",
}

STOPWORDS = frozenset({
    "a", "an", "the", "and", "or", "of", "for", "in", "on", "with", "to", "by", "is", "at",
})

# (text relevance, similarity) weights per FTS stage
FULLTEXT_WEIGHTS = (0.7, 0.3)
PREFIX_WEIGHTS = (0.6, 0.4)

_RESULT_COLUMNS = """
    d.id, d.title, d.body, d.schedule_code, d.pbs_code, d.res_code, d.drug_name,
    d.brand_name, d.formulation, d.program_code, d.hospital_type,
    d.authority_method, d.treatment_phase, d.streamlined_code
"""

Stage = Callable[[str, Optional[str], int], Optional[list["SearchResult"]]]


@dataclass
class SearchResult:
    id: str
    title: str
    snippet: str
    schedule_code: str
    drug_name: str
    stage: str
    score: float
    pbs_code: str | None = None
    res_code: str | None = None
    brand_name: str | None = None
    formulation: str | None = None
    program_code: str | None = None
    hospital_type: str | None = None
    authority_method: str | None = None
    treatment_phase: str | None = None
    streamlined_code: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def normalize_query(raw: str | None) -> str:
    """Normalise a user query for matching.

    NFKC-normalise and trim, split on whitespace, expand clinical
    abbreviations (exact token, case-insensitive), drop stopwords among the
    remaining tokens and lower-case. When every token is a stopword the
    tokens are kept rather than returning an empty query.

    Example:
        "RA flare" -> "rheumatoid arthritis flare"
    """
    text = unicodedata.normalize("NFKC", raw or "").strip()
    if not text:
        return ""

    tokens = [t.lower() for t in text.split()]
    words: list[str] = []
    for token in tokens:
        expansion = ABBREVIATIONS.get(token)
        if expansion:
            words.append(expansion)
        elif token not in STOPWORDS:
            words.append(token)

    return " ".join(words or tokens)


# ── Read helpers ──────────────────────────────────────────────────────────────


def latest_schedule(conn: sqlite3.Connection) -> dict[str, Any] | None:
    """The schedule with the greatest effective date, or None before any ingest."""
    row = conn.execute(
        "SELECT schedule_code, effective_date, source_url, ingested_at "
        "FROM pbs_schedule ORDER BY effective_date DESC LIMIT 1"
    ).fetchone()
    return dict(row) if row else None


def latest_schedule_code(conn: sqlite3.Connection) -> str | None:
    latest = latest_schedule(conn)
    return latest["schedule_code"] if latest else None


def list_schedules(conn: sqlite3.Connection) -> list[dict[str, Any]]:
    """All schedules, newest first, with their document counts."""
    rows = conn.execute(
        """
        SELECT s.schedule_code, s.effective_date, s.source_url, s.ingested_at,
               (SELECT COUNT(*) FROM pbs_doc d WHERE d.schedule_code = s.schedule_code)
                   AS doc_count
        FROM pbs_schedule s
        ORDER BY s.effective_date DESC
        """
    ).fetchall()
    return [dict(r) for r in rows]


def get_doc(conn: sqlite3.Connection, doc_id: str) -> dict[str, Any] | None:
    """Full document by id with ``source_json`` decoded, or None."""
    row = conn.execute(
        f"SELECT {_RESULT_COLUMNS}, d.source_json FROM pbs_doc d WHERE d.id = ?",
        (doc_id,),
    ).fetchone()
    if row is None:
        return None
    doc = dict(row)
    doc["source_json"] = json.loads(doc["source_json"]) if doc["source_json"] else None
    return doc


# ── Engine ────────────────────────────────────────────────────────────────────


class QueryEngine:
    """Tiered search over one SQLite connection and an optional external backend.

    Args:
        conn: Connection with the ``similarity`` function registered.
        config: Limits, backend selector and similarity floor.
        external: Object with ``search(query, schedule, limit)`` returning
            ``list[SearchResult]``, e.g. ``search.elasticsearch.ElasticsearchSearch``.
    """

    def __init__(self, conn: sqlite3.Connection, config: AppConfig | None = None,
                 external=None):
        self.conn = conn
        self.config = config or AppConfig.from_env()
        self.external = external

    def strategies(self) -> list[tuple[str, Stage]]:
        """Stages in the order they are tried."""
        return [
            ("external", self._search_external),
            ("fulltext", self._search_fulltext),
            ("prefix", self._search_prefix),
            ("trigram", self._search_trigram),
        ]

    def clamp_limit(self, limit: int | None) -> int:
        if limit is None or limit <= 0:
            return self.config.search_default_limit
        return min(limit, self.config.search_max_limit)

    def search(self, q: str, schedule: str | None = None,
               limit: int | None = None) -> list[SearchResult]:
        """Run the tiered search.

        Args:
            q: Raw user query.
            schedule: Schedule code filter; defaults to the latest schedule.
            limit: Maximum results, clamped to the configured maximum.
        """
        normalized = normalize_query(q)
        if not normalized:
            return []
        limit = self.clamp_limit(limit)
        if schedule is None:
            schedule = latest_schedule_code(self.conn)

        for name, stage in self.strategies():
            results = stage(normalized, schedule, limit)
            if results:
                logger.debug("Query %r answered by %s stage (%d results)",
                             normalized, name, len(results))
                return results
        return []

    # ── stages ────────────────────────────────────────────────────────────

    def _search_external(self, query: str, schedule: str | None,
                         limit: int) -> list[SearchResult] | None:
        if self.config.search_backend != "elasticsearch" or self.external is None:
            return None
        try:
            return self.external.search(query, schedule, limit)
        except Exception as exc:  # any backend failure falls through to SQLite
            logger.warning("External search failed, falling back to SQLite: %s", exc)
            return None

    def _search_fulltext(self, query: str, schedule: str | None,
                         limit: int) -> list[SearchResult] | None:
        match = sanitize_fts5_query(query)
        if not match:
            return None
        return self._ranked_match("fulltext", match, query, schedule, limit, FULLTEXT_WEIGHTS)

    def _search_prefix(self, query: str, schedule: str | None,
                       limit: int) -> list[SearchResult] | None:
        match = build_prefix_query(query)
        if not match:
            return None
        return self._ranked_match("prefix", match, query, schedule, limit, PREFIX_WEIGHTS)

    def _search_trigram(self, query: str, schedule: str | None,
                        limit: int) -> list[SearchResult] | None:
        rows = self.conn.execute(
            f"""
            SELECT * FROM (
                SELECT {_RESULT_COLUMNS},
                       max(similarity(d.title, :q), similarity(d.body, :q)) AS score
                FROM pbs_doc d
                WHERE (:schedule IS NULL OR d.schedule_code = :schedule)
            )
            WHERE score > :floor
            ORDER BY score DESC, id
            LIMIT :limit
            """,
            {"q": query, "schedule": schedule, "floor": self.config.min_similarity,
             "limit": limit},
        ).fetchall()
        return [self._to_result(r, query, "trigram") for r in rows]

    def _ranked_match(self, stage: str, match: str, query: str, schedule: str | None,
                      limit: int, weights: tuple[float, float]) -> list[SearchResult]:
        text_weight, sim_weight = weights
        rows = self.conn.execute(
            f"""
            SELECT {_RESULT_COLUMNS},
                   (:tw * -bm25(pbs_doc_fts)
                    + :sw * max(similarity(d.title, :q), similarity(d.body, :q))) AS score
            FROM pbs_doc_fts
            JOIN pbs_doc d ON d.doc_rowid = pbs_doc_fts.rowid
            WHERE pbs_doc_fts MATCH :match
              AND (:schedule IS NULL OR d.schedule_code = :schedule)
            ORDER BY score DESC, d.id
            LIMIT :limit
            """,
            {"tw": text_weight, "sw": sim_weight, "q": query, "match": match,
             "schedule": schedule, "limit": limit},
        ).fetchall()
        return [self._to_result(r, query, stage) for r in rows]

    @staticmethod
    def _to_result(row: sqlite3.Row, query: str, stage: str) -> SearchResult:
        return SearchResult(
            id=row["id"],
            title=row["title"],
            snippet=build_snippet(row["body"], query),
            schedule_code=row["schedule_code"],
            drug_name=row["drug_name"],
            stage=stage,
            score=blended_score(float(row["score"])),
            pbs_code=row["pbs_code"],
            res_code=row["res_code"],
            brand_name=row["brand_name"],
            formulation=row["formulation"],
            program_code=row["program_code"],
            hospital_type=row["hospital_type"],
            authority_method=row["authority_method"],
            treatment_phase=row["treatment_phase"],
            streamlined_code=row["streamlined_code"],
        )
