"""Transactional replacement of one schedule's documents in SQLite."""

import json
import logging
import sqlite3
from datetime import datetime, timezone
from typing import Sequence

from downloader.resolver import ResolvedSchedule
from pipeline.compose import ComposedDoc
from utils.database import DOC_COLUMNS, chunked, max_rows_per_insert, multi_row_insert_sql
from utils.errors import PersistenceError

logger = logging.getLogger(__name__)


def doc_to_row(doc: ComposedDoc) -> tuple:
    """Values for one ``pbs_doc`` row, in ``DOC_COLUMNS`` order."""
    record = {
        "id": doc.id,
        "schedule_code": doc.schedule_code,
        "dedup_key": doc.dedup_key,
        "pbs_code": doc.pbs_code,
        "res_code": doc.res_code,
        "drug_name": doc.drug_name,
        "brand_name": doc.brand_name,
        "formulation": doc.formulation,
        "program_code": doc.program_code,
        "hospital_type": doc.hospital_type,
        "authority_method": doc.authority_method,
        "treatment_phase": doc.treatment_phase,
        "streamlined_code": doc.streamlined_code,
        "title": doc.title,
        "body": doc.body,
        "source_json": json.dumps(doc.source_json, sort_keys=True, ensure_ascii=False),
    }
    return tuple(record[c] for c in DOC_COLUMNS)


def upsert_schedule_and_docs(conn: sqlite3.Connection, schedule: ResolvedSchedule,
                             docs: Sequence[ComposedDoc],
                             chunk_size: int | None = None) -> int:
    """Replace every document of *schedule* with *docs* in one transaction.

    The schedule row is inserted or updated (effective date, source URL,
    ingestion time), the schedule's existing documents are deleted and the
    new ones inserted with one multi-row INSERT per chunk. Any failure rolls
    the whole transaction back.

    Args:
        conn: Open connection with the schema migrated.
        schedule: Resolved schedule the documents belong to.
        docs: Composed documents, all for ``schedule.schedule_code``.
        chunk_size: Rows per INSERT; capped by the bound-parameter limit.

    Returns:
        Number of documents persisted.

    Raises:
        PersistenceError: the write failed and was rolled back.
    """
    limit = max_rows_per_insert(len(DOC_COLUMNS))
    size = min(chunk_size, limit) if chunk_size else limit
    code = schedule.schedule_code
    ingested_at = datetime.now(timezone.utc).isoformat()

    for doc in docs:
        if doc.schedule_code != code:
            raise ValueError(
                f"Document {doc.id} belongs to {doc.schedule_code}, not {code}"
            )

    rows = [doc_to_row(doc) for doc in docs]
    try:
        with conn:
            conn.execute(
                """
                INSERT INTO pbs_schedule (schedule_code, effective_date, source_url, ingested_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(schedule_code) DO UPDATE SET
                    effective_date = excluded.effective_date,
                    source_url = excluded.source_url,
                    ingested_at = excluded.ingested_at
                """,
                (code, schedule.effective_date.isoformat(), schedule.url, ingested_at),
            )
            deleted = conn.execute(
                "DELETE FROM pbs_doc WHERE schedule_code = ?", (code,)
            ).rowcount
            for chunk in chunked(rows, size):
                conn.execute(
                    multi_row_insert_sql("pbs_doc", DOC_COLUMNS, len(chunk)),
                    [value for row in chunk for value in row],
                )
    except sqlite3.Error as exc:
        raise PersistenceError(f"Failed to persist schedule {code}: {exc}") from exc

    logger.info("Persisted %d documents for %s (replaced %d)", len(rows), code, deleted)
    return len(rows)
