"""
Pipeline package -- PBS schedule ingest.

Re-exports the per-stage entry points so callers can do::

    from pipeline import parse_csv_table, build_docs_from_tables, upsert_schedule_and_docs

The orchestrator lives in ``pipeline.ingest`` (``IngestPipeline``).
"""

from pipeline.compose import ComposedDoc, build_docs_from_tables
from pipeline.parse import ParsedTable, parse_csv_table
from pipeline.upsert import upsert_schedule_and_docs

__all__ = [
    "ComposedDoc",
    "build_docs_from_tables",
    "ParsedTable",
    "parse_csv_table",
    "upsert_schedule_and_docs",
]
