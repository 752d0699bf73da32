"""
Tests for utils/database.py — connection factory, migrations, insert helpers
and the similarity SQL function.
"""
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from utils.database import (
    DOC_COLUMNS,
    chunked,
    connect,
    max_rows_per_insert,
    migrate,
    multi_row_insert_sql,
    similarity,
    table_exists,
)


class TestMigrate:
    def test_creates_schema(self, db):
        for table in ("schema_version", "pbs_schedule", "pbs_doc", "pbs_doc_fts"):
            assert table_exists(db, table)

    def test_idempotent(self, db):
        assert migrate(db) == 0
        versions = [r[0] for r in db.execute("SELECT version FROM schema_version ORDER BY version")]
        assert versions == [1, 2]

    def test_fresh_database_applies_all(self):
        conn = connect(":memory:")
        try:
            assert migrate(conn) == 2
        finally:
            conn.close()

    def test_file_database_uses_wal(self, tmp_path):
        conn = connect(tmp_path / "x.sqlite")
        try:
            assert conn.execute("PRAGMA journal_mode").fetchone()[0] == "wal"
        finally:
            conn.close()


class TestSimilarity:
    def test_identical(self):
        assert similarity("Adalimumab", "adalimumab") == 1.0

    def test_none_scores_zero(self):
        assert similarity(None, "x") == 0.0
        assert similarity("x", "") == 0.0

    def test_typo_scores_high(self):
        assert similarity("adalimumob", "Adalimumab — Initial treatment") > 0.8

    def test_unrelated_scores_low(self):
        assert similarity("zzzz", "Methotrexate") < 0.5

    def test_registered_as_sql_function(self, db):
        value = db.execute("SELECT similarity('adalimumab', 'Adalimumab')").fetchone()[0]
        assert value == 1.0


class TestInsertHelpers:
    def test_max_rows_per_insert(self):
        assert max_rows_per_insert(len(DOC_COLUMNS)) == 62
        assert max_rows_per_insert(2000) == 1

    def test_max_rows_rejects_zero_columns(self):
        with pytest.raises(ValueError):
            max_rows_per_insert(0)

    def test_chunked(self):
        assert list(chunked([1, 2, 3, 4, 5], 2)) == [[1, 2], [3, 4], [5]]
        assert list(chunked([], 3)) == []

    def test_chunked_rejects_zero(self):
        with pytest.raises(ValueError):
            list(chunked([1], 0))

    def test_multi_row_insert_sql(self):
        sql = multi_row_insert_sql("t", ["a", "b"], 2)
        assert sql == "INSERT INTO t (a, b) VALUES (?, ?), (?, ?)"


class TestFtsTriggers:
    def _insert(self, db, doc_id, title):
        db.execute(
            "INSERT INTO pbs_schedule VALUES ('2024-07', '2024-07-01', 'u', 'now') "
            "ON CONFLICT DO NOTHING"
        )
        db.execute(
            "INSERT INTO pbs_doc (id, schedule_code, dedup_key, res_code, drug_name, "
            "title, body, source_json) VALUES (?, '2024-07', ?, 'R1', 'Generic', ?, 'body', '{}')",
            (doc_id, doc_id, title),
        )

    def _matches(self, db, term):
        return db.execute(
            "SELECT COUNT(*) FROM pbs_doc_fts WHERE pbs_doc_fts MATCH ?", (term,)
        ).fetchone()[0]

    def test_insert_update_delete_sync(self, db):
        self._insert(db, "a", "Tocilizumab")
        assert self._matches(db, "tocilizumab") == 1

        db.execute("UPDATE pbs_doc SET title = 'Etanercept' WHERE id = 'a'")
        assert self._matches(db, "tocilizumab") == 0
        assert self._matches(db, "etanercept") == 1

        db.execute("DELETE FROM pbs_doc WHERE id = 'a'")
        assert self._matches(db, "etanercept") == 0

    def test_porter_stemming(self, db):
        self._insert(db, "a", "Arteritis treatments")
        assert self._matches(db, "treatment") == 1
