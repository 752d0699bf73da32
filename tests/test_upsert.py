"""
Tests for pipeline/upsert.py — transactional replacement of a schedule's
documents.
"""
import json
import sys
from dataclasses import replace
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from conftest import SCHEDULE_CODE, fixture_tables, resolved
from pipeline.compose import build_docs_from_tables
from pipeline.upsert import doc_to_row, upsert_schedule_and_docs
from utils.database import DOC_COLUMNS, get_table_count, query_to_dicts
from utils.errors import PersistenceError


def _doc_rows(conn, code=SCHEDULE_CODE):
    cols = ", ".join(DOC_COLUMNS)
    return query_to_dicts(
        conn, f"SELECT {cols} FROM pbs_doc WHERE schedule_code = ? ORDER BY id", (code,)
    )


@pytest.fixture()
def docs():
    return build_docs_from_tables(fixture_tables(), SCHEDULE_CODE)


class TestUpsert:
    def test_persists_schedule_and_docs(self, db, docs):
        count = upsert_schedule_and_docs(db, resolved(), docs)
        assert count == 2
        assert get_table_count(db, "pbs_doc") == 2
        schedule = dict(db.execute("SELECT * FROM pbs_schedule").fetchone())
        assert schedule["schedule_code"] == SCHEDULE_CODE
        assert schedule["effective_date"] == "2024-07-01"
        assert schedule["ingested_at"]

    def test_source_json_round_trips(self, db, docs):
        upsert_schedule_and_docs(db, resolved(), docs)
        ada = next(d for d in docs if d.drug_name == "Adalimumab")
        stored = db.execute("SELECT source_json FROM pbs_doc WHERE id = ?", (ada.id,)).fetchone()[0]
        assert json.loads(stored) == ada.source_json

    def test_reingest_is_idempotent(self, db, docs):
        upsert_schedule_and_docs(db, resolved(), docs)
        first = _doc_rows(db)
        again = build_docs_from_tables(fixture_tables(), SCHEDULE_CODE)
        upsert_schedule_and_docs(db, resolved(), again)
        assert _doc_rows(db) == first
        assert get_table_count(db, "pbs_schedule") == 1

    def test_reingest_replaces_stale_docs(self, db, docs):
        upsert_schedule_and_docs(db, resolved(), docs)
        fewer = [d for d in docs if d.drug_name == "Adalimumab"]
        upsert_schedule_and_docs(db, resolved(), fewer)
        assert [r["drug_name"] for r in _doc_rows(db)] == ["Adalimumab"]

    def test_other_schedules_untouched(self, db, docs):
        upsert_schedule_and_docs(db, resolved(), docs)
        june = build_docs_from_tables(fixture_tables(), "2024-06")
        upsert_schedule_and_docs(db, resolved("2024-06"), june)
        upsert_schedule_and_docs(db, resolved(), docs[:1])
        assert len(_doc_rows(db, "2024-06")) == 2
        assert len(_doc_rows(db)) == 1

    def test_fts_index_follows_replacement(self, db, docs):
        upsert_schedule_and_docs(db, resolved(), docs)
        upsert_schedule_and_docs(db, resolved(), [d for d in docs if d.drug_name == "Methotrexate"])
        hits = db.execute(
            "SELECT COUNT(*) FROM pbs_doc_fts WHERE pbs_doc_fts MATCH 'adalimumab'"
        ).fetchone()[0]
        assert hits == 0

    def test_small_chunks(self, db, docs):
        assert upsert_schedule_and_docs(db, resolved(), docs, chunk_size=1) == 2
        assert get_table_count(db, "pbs_doc") == 2

    def test_empty_docs_clears_schedule(self, db, docs):
        upsert_schedule_and_docs(db, resolved(), docs)
        assert upsert_schedule_and_docs(db, resolved(), []) == 0
        assert get_table_count(db, "pbs_doc") == 0
        assert get_table_count(db, "pbs_schedule") == 1

    def test_wrong_schedule_rejected(self, db, docs):
        with pytest.raises(ValueError):
            upsert_schedule_and_docs(db, resolved("2024-06"), docs)
        assert get_table_count(db, "pbs_schedule") == 0


class TestRollback:
    def test_failure_rolls_back_everything(self, db, docs):
        upsert_schedule_and_docs(db, resolved(), docs)
        before = _doc_rows(db)
        before_schedule = dict(db.execute("SELECT * FROM pbs_schedule").fetchone())

        # Two documents with one dedup key violate UNIQUE(schedule_code, dedup_key)
        clash = replace(docs[0], id="another-id")
        with pytest.raises(PersistenceError):
            upsert_schedule_and_docs(db, resolved(url="https://example.test/new.zip"),
                                     [docs[0], clash])

        assert _doc_rows(db) == before
        assert dict(db.execute("SELECT * FROM pbs_schedule").fetchone()) == before_schedule

    def test_failure_on_empty_database_leaves_nothing(self, db, docs):
        clash = replace(docs[0], id="another-id")
        with pytest.raises(PersistenceError):
            upsert_schedule_and_docs(db, resolved(), [docs[0], clash], chunk_size=1)
        assert get_table_count(db, "pbs_doc") == 0
        assert get_table_count(db, "pbs_schedule") == 0


class TestDocToRow:
    def test_column_order(self, docs):
        row = doc_to_row(docs[0])
        assert len(row) == len(DOC_COLUMNS)
        assert row[DOC_COLUMNS.index("id")] == docs[0].id
        assert row[DOC_COLUMNS.index("dedup_key")] == docs[0].dedup_key
