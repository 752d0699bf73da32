"""Database utilities for the PBS search tools.

Provides reusable functions for:
- Connection factory (pragmas, row factory, the ``similarity`` SQL function)
- Versioned schema migrations (schedules, documents, FTS5 index + triggers)
- Chunked multi-row insert helpers
- Small introspection helpers used by the API health check and tests
"""

import logging
import sqlite3
from pathlib import Path
from typing import Any, Dict, Iterator, List, Sequence

from rapidfuzz import fuzz
from rapidfuzz.utils import default_process

logger = logging.getLogger(__name__)

# SQLITE_MAX_VARIABLE_NUMBER on older builds; newer builds allow 32766 but
# the conservative bound keeps multi-row INSERTs portable.
SQLITE_MAX_VARIABLES = 999


# ── Connection ────────────────────────────────────────────────────────────────

def similarity(a: str | None, b: str | None) -> float:
    """Fuzzy similarity of two strings in [0, 1].

    Best partial alignment of the shorter string inside the longer one, after
    lower-casing and stripping punctuation. ``None`` on either side scores 0.
    Registered as the SQL function ``similarity(a, b)`` on every connection.
    """
    if not a or not b:
        return 0.0
    return fuzz.partial_ratio(a, b, processor=default_process) / 100.0


def init_pragmas(conn: sqlite3.Connection) -> None:
    """Initialize SQLite performance and reliability pragmas.

    - WAL mode for concurrent read (API) / write (ingest)
    - NORMAL synchronous mode for speed without data loss
    - Memory temp store and a larger page cache

    Args:
        conn: SQLite connection to configure
    """
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA synchronous=NORMAL")
    conn.execute("PRAGMA temp_store=MEMORY")
    conn.execute("PRAGMA cache_size=-64000")


def register_functions(conn: sqlite3.Connection) -> None:
    """Register the Python-backed SQL functions the query engine relies on."""
    conn.create_function("similarity", 2, similarity, deterministic=True)


def connect(db_path: Path | str, check_same_thread: bool = True) -> sqlite3.Connection:
    """Open a connection ready for ingest or search.

    Sets ``row_factory`` to ``sqlite3.Row``, applies pragmas (skipped for
    in-memory databases, where WAL is meaningless) and registers
    ``similarity``. The schema is not created here; call ``migrate()``.

    Args:
        db_path: Filesystem path, or ":memory:".
        check_same_thread: Passed through to ``sqlite3.connect``.
    """
    conn = sqlite3.connect(str(db_path), check_same_thread=check_same_thread)
    conn.row_factory = sqlite3.Row
    if str(db_path) != ":memory:":
        init_pragmas(conn)
    register_functions(conn)
    return conn


# ── Schema ────────────────────────────────────────────────────────────────────

DOC_COLUMNS: List[str] = [
    "id",
    "schedule_code",
    "dedup_key",
    "pbs_code",
    "res_code",
    "drug_name",
    "brand_name",
    "formulation",
    "program_code",
    "hospital_type",
    "authority_method",
    "treatment_phase",
    "streamlined_code",
    "title",
    "body",
    "source_json",
]

_DDL_SCHEMA_VERSION = """
CREATE TABLE IF NOT EXISTS schema_version (
    version     INTEGER NOT NULL,
    description TEXT,
    applied_at  TEXT    DEFAULT (datetime('now'))
);
"""

_DDL_001_CORE = """
CREATE TABLE IF NOT EXISTS pbs_schedule (
    schedule_code  TEXT PRIMARY KEY,          -- "YYYY-MM"
    effective_date TEXT NOT NULL,             -- ISO date, first of month
    source_url     TEXT NOT NULL,
    ingested_at    TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS pbs_doc (
    doc_rowid        INTEGER PRIMARY KEY AUTOINCREMENT,
    id               TEXT NOT NULL UNIQUE,
    schedule_code    TEXT NOT NULL REFERENCES pbs_schedule(schedule_code),
    dedup_key        TEXT NOT NULL,
    pbs_code         TEXT,
    res_code         TEXT NOT NULL,
    drug_name        TEXT NOT NULL,
    brand_name       TEXT,
    formulation      TEXT,
    program_code     TEXT,
    hospital_type    TEXT,
    authority_method TEXT,
    treatment_phase  TEXT,
    streamlined_code TEXT,
    title            TEXT NOT NULL,
    body             TEXT NOT NULL,
    source_json      TEXT NOT NULL,
    UNIQUE (schedule_code, dedup_key)
);

CREATE INDEX IF NOT EXISTS idx_pbs_doc_schedule ON pbs_doc(schedule_code);
CREATE INDEX IF NOT EXISTS idx_pbs_doc_drug ON pbs_doc(drug_name);
CREATE INDEX IF NOT EXISTS idx_pbs_schedule_effective ON pbs_schedule(effective_date);
"""

_DDL_002_FTS = """
CREATE VIRTUAL TABLE IF NOT EXISTS pbs_doc_fts USING fts5(
    title,
    body,
    drug_name,
    brand_name,
    content='pbs_doc',
    content_rowid='doc_rowid',
    tokenize='porter unicode61 remove_diacritics 2'
);

-- Sync trigger: INSERT
CREATE TRIGGER IF NOT EXISTS pbs_doc_ai AFTER INSERT ON pbs_doc BEGIN
    INSERT INTO pbs_doc_fts(rowid, title, body, drug_name, brand_name)
    VALUES (new.doc_rowid, new.title, new.body, new.drug_name, new.brand_name);
END;

-- Sync trigger: DELETE
CREATE TRIGGER IF NOT EXISTS pbs_doc_ad AFTER DELETE ON pbs_doc BEGIN
    INSERT INTO pbs_doc_fts(pbs_doc_fts, rowid, title, body, drug_name, brand_name)
    VALUES ('delete', old.doc_rowid, old.title, old.body, old.drug_name, old.brand_name);
END;

-- Sync trigger: UPDATE
CREATE TRIGGER IF NOT EXISTS pbs_doc_au AFTER UPDATE ON pbs_doc BEGIN
    INSERT INTO pbs_doc_fts(pbs_doc_fts, rowid, title, body, drug_name, brand_name)
    VALUES ('delete', old.doc_rowid, old.title, old.body, old.drug_name, old.brand_name);
    INSERT INTO pbs_doc_fts(rowid, title, body, drug_name, brand_name)
    VALUES (new.doc_rowid, new.title, new.body, new.drug_name, new.brand_name);
END;
"""

# Migration SQL ordered by version number.
# Each entry: (version, description, sql)
_MIGRATIONS = [
    (1, "001_core_tables: pbs_schedule + pbs_doc", _DDL_001_CORE),
    (2, "002_fts5_index: pbs_doc_fts + sync triggers", _DDL_002_FTS),
]


def _current_version(conn: sqlite3.Connection) -> int:
    """Return the highest applied migration version (0 if none applied)."""
    try:
        row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
        return row[0] or 0
    except sqlite3.OperationalError:
        # schema_version table doesn't exist yet
        return 0


def migrate(conn: sqlite3.Connection) -> int:
    """Apply all pending migrations in order.

    Idempotent: already-applied migrations are skipped and the
    schema_version table is created if absent.

    Returns:
        Number of migrations applied in this call (0 if already up to date).
    """
    conn.execute(_DDL_SCHEMA_VERSION)
    conn.commit()

    current = _current_version(conn)
    applied = 0

    for version, description, sql in _MIGRATIONS:
        if version <= current:
            continue
        conn.executescript(sql)
        conn.execute(
            "INSERT INTO schema_version (version, description) VALUES (?, ?)",
            (version, description),
        )
        conn.commit()
        logger.info("Applied migration %s", description)
        applied += 1

    return applied


# ── Inserts ───────────────────────────────────────────────────────────────────

def max_rows_per_insert(column_count: int,
                        max_variables: int = SQLITE_MAX_VARIABLES) -> int:
    """Largest row count a single multi-row INSERT can bind.

    Example:
        16 columns -> 62 rows per statement (62 * 16 = 992 <= 999)
    """
    if column_count <= 0:
        raise ValueError("column_count must be positive")
    return max(1, max_variables // column_count)


def chunked(rows: Sequence[Any], size: int) -> Iterator[Sequence[Any]]:
    """Yield consecutive slices of *rows* of at most *size* items."""
    if size <= 0:
        raise ValueError("chunk size must be positive")
    for i in range(0, len(rows), size):
        yield rows[i:i + size]


def multi_row_insert_sql(table: str, columns: Sequence[str], row_count: int) -> str:
    """Build ``INSERT INTO table (cols) VALUES (?, ...), (?, ...)`` for *row_count* rows."""
    cols_str = ", ".join(columns)
    group = "(" + ", ".join("?" * len(columns)) + ")"
    values = ", ".join([group] * row_count)
    return f"INSERT INTO {table} ({cols_str}) VALUES {values}"


# ── Introspection ─────────────────────────────────────────────────────────────

def get_table_count(conn: sqlite3.Connection, table: str) -> int:
    """Get row count for a table."""
    result = conn.execute(f"SELECT COUNT(*) AS cnt FROM {table}").fetchone()
    return result[0] if result else 0


def table_exists(conn: sqlite3.Connection, table: str) -> bool:
    """Check if a table (or virtual table) exists in the database."""
    cursor = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?",
        (table,)
    )
    return cursor.fetchone() is not None


def query_to_dicts(conn: sqlite3.Connection, query: str,
                   params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
    """Execute query and return results as list of dicts."""
    cursor = conn.execute(query, tuple(params))
    return [dict(row) for row in cursor.fetchall()]
