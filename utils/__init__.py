"""Shared utilities for the PBS search tools."""

# Configuration
from utils.config import AppConfig, Config

# Error hierarchy
from utils.errors import (
    PbsSearchError,
    ScheduleResolutionError,
    ScheduleDownloadError,
    ArchiveError,
    TableParseError,
    MissingTableError,
    PersistenceError,
    IndexWriteError,
)

# Pattern definitions
from utils.patterns import (
    CSV_EXTENSION,
    SCHEDULE_DATE_TOKEN,
    FTS5_SPECIAL_CHARS,
)

# String utilities
from utils.strings import (
    clean_cell,
    normalize_whitespace,
    strip_markup,
    sanitize_fts5_query,
    build_prefix_query,
)

# Database utilities
from utils.database import (
    connect,
    migrate,
    similarity,
    init_pragmas,
    get_table_count,
    table_exists,
    query_to_dicts,
)

# HTTP utilities
from utils.http import RetryStrategy, SessionManager, fetch_bytes

__all__ = [
    "AppConfig",
    "Config",
    "PbsSearchError",
    "ScheduleResolutionError",
    "ScheduleDownloadError",
    "ArchiveError",
    "TableParseError",
    "MissingTableError",
    "PersistenceError",
    "IndexWriteError",
    "CSV_EXTENSION",
    "SCHEDULE_DATE_TOKEN",
    "FTS5_SPECIAL_CHARS",
    "clean_cell",
    "normalize_whitespace",
    "strip_markup",
    "sanitize_fts5_query",
    "build_prefix_query",
    "connect",
    "migrate",
    "similarity",
    "init_pragmas",
    "get_table_count",
    "table_exists",
    "query_to_dicts",
    "RetryStrategy",
    "SessionManager",
    "fetch_bytes",
]
