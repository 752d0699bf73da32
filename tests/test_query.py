"""
Tests for search/query.py — query normalisation and the tiered query engine

Each stage is exercised on the fixture schedule:
  fulltext  — every term present ("RA" expands to "rheumatoid arthritis")
  prefix    — truncated drug name ("adalim")
  trigram   — misspelt drug name ("adalimumob")
  external  — fake backend returning hits, raising, or returning nothing
"""
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from conftest import load_schedule, make_config
from search.query import (
    QueryEngine,
    SearchResult,
    get_doc,
    latest_schedule,
    list_schedules,
    normalize_query,
)


class FakeExternal:
    def __init__(self, results=None, error=None):
        self.results = results or []
        self.error = error
        self.calls = []

    def search(self, query, schedule, limit):
        self.calls.append((query, schedule, limit))
        if self.error:
            raise self.error
        return self.results


def _external_hit():
    return SearchResult(id="es-1", title="From ES", snippet="...", schedule_code="2024-07",
                        drug_name="Adalimumab", stage="external", score=12.5)


# ── normalize_query ──────────────────────────────────────────────────────────

class TestNormalizeQuery:
    def test_abbreviation_expansion(self):
        assert normalize_query("RA flare") == "rheumatoid arthritis flare"

    def test_abbreviations_case_insensitive_exact_token(self):
        assert normalize_query("psa") == "psoriatic arthritis"
        assert normalize_query("GCA relapse") == "giant cell arteritis relapse"
        assert normalize_query("rash") == "rash"

    def test_stopwords_removed(self):
        assert normalize_query("treatment of the arthritis") == "treatment arthritis"

    def test_all_stopwords_kept(self):
        assert normalize_query("The Of") == "the of"

    def test_nfkc_and_trim(self):
        assert normalize_query("  ＡＤＡＬＩＭＵＭＡＢ  ") == "adalimumab"

    def test_blank(self):
        assert normalize_query("   ") == ""
        assert normalize_query(None) == ""


# ── read helpers ─────────────────────────────────────────────────────────────

class TestReadHelpers:
    def test_latest_schedule_none_before_ingest(self, db):
        assert latest_schedule(db) is None

    def test_latest_and_list(self, db):
        load_schedule(db, "2024-06")
        load_schedule(db, "2024-07")
        assert latest_schedule(db)["schedule_code"] == "2024-07"
        schedules = list_schedules(db)
        assert [s["schedule_code"] for s in schedules] == ["2024-07", "2024-06"]
        assert schedules[0]["doc_count"] == 2

    def test_get_doc(self, loaded_db):
        doc_id = loaded_db.execute(
            "SELECT id FROM pbs_doc WHERE drug_name = 'Adalimumab'"
        ).fetchone()[0]
        doc = get_doc(loaded_db, doc_id)
        assert doc["drug_name"] == "Adalimumab"
        assert doc["source_json"]["aggregated"]["pbsCodes"] == ["10227Y", "11616J"]

    def test_get_doc_missing(self, loaded_db):
        assert get_doc(loaded_db, "nope") is None


# ── QueryEngine ──────────────────────────────────────────────────────────────

class TestTieredSearch:
    def test_fulltext_stage(self, loaded_db):
        results = QueryEngine(loaded_db, make_config()).search("RA")
        assert results
        assert results[0].stage == "fulltext"
        assert results[0].drug_name == "Adalimumab"
        assert "rheumatoid arthritis" in results[0].snippet.lower()

    def test_fulltext_requires_every_term(self, loaded_db):
        results = QueryEngine(loaded_db, make_config()).search("giant cell arteritis")
        assert [r.drug_name for r in results] == ["Methotrexate"]
        assert results[0].stage == "fulltext"

    def test_prefix_stage(self, loaded_db):
        results = QueryEngine(loaded_db, make_config()).search("adalim")
        assert results
        assert results[0].stage == "prefix"
        assert results[0].drug_name == "Adalimumab"

    def test_trigram_stage(self, loaded_db):
        results = QueryEngine(loaded_db, make_config()).search("adalimumob")
        assert results
        assert results[0].stage == "trigram"
        assert results[0].drug_name == "Adalimumab"
        assert 0 < results[0].score <= 1

    def test_similarity_floor(self, loaded_db):
        engine = QueryEngine(loaded_db, make_config(min_similarity=0.99))
        assert engine.search("adalimumob") == []

    def test_results_carry_document_fields(self, loaded_db):
        hit = QueryEngine(loaded_db, make_config()).search("adalimumab")[0]
        assert hit.pbs_code == "10227Y, 11616J"
        assert hit.schedule_code == "2024-07"
        assert hit.streamlined_code == "14470"
        assert hit.to_dict()["brand_name"] == "Amgevita, Humira"

    def test_defaults_to_latest_schedule(self, db):
        load_schedule(db, "2024-06")
        load_schedule(db, "2024-07")
        results = QueryEngine(db, make_config()).search("adalimumab")
        assert {r.schedule_code for r in results} == {"2024-07"}

    def test_explicit_schedule(self, db):
        load_schedule(db, "2024-06")
        load_schedule(db, "2024-07")
        results = QueryEngine(db, make_config()).search("adalimumab", schedule="2024-06")
        assert {r.schedule_code for r in results} == {"2024-06"}

    def test_unknown_schedule_returns_nothing(self, loaded_db):
        assert QueryEngine(loaded_db, make_config()).search("adalimumab", schedule="1999-01") == []

    def test_blank_query(self, loaded_db):
        assert QueryEngine(loaded_db, make_config()).search("  ") == []

    def test_empty_database(self, db):
        assert QueryEngine(db, make_config()).search("adalimumab") == []

    @pytest.mark.parametrize("requested,expected", [(None, 20), (0, 20), (5, 5), (1000, 200)])
    def test_clamp_limit(self, db, requested, expected):
        assert QueryEngine(db, make_config()).clamp_limit(requested) == expected

    def test_limit_applied(self, loaded_db):
        results = QueryEngine(loaded_db, make_config()).search("adalimumab", limit=1)
        assert len(results) <= 1

    def test_strategy_order(self, db):
        names = [name for name, _ in QueryEngine(db, make_config()).strategies()]
        assert names == ["external", "fulltext", "prefix", "trigram"]

    def test_relational_errors_propagate(self, db):
        db.execute("DROP TABLE pbs_doc_fts")
        with pytest.raises(Exception):
            QueryEngine(db, make_config()).search("adalimumab")


class TestExternalStage:
    def test_external_answers_first(self, loaded_db):
        external = FakeExternal(results=[_external_hit()])
        engine = QueryEngine(loaded_db, make_config(search_backend="elasticsearch"),
                             external=external)
        results = engine.search("RA")
        assert [r.stage for r in results] == ["external"]
        assert external.calls == [("rheumatoid arthritis", "2024-07", 20)]

    def test_external_failure_falls_through(self, loaded_db):
        external = FakeExternal(error=ConnectionError("es down"))
        engine = QueryEngine(loaded_db, make_config(search_backend="elasticsearch"),
                             external=external)
        results = engine.search("RA")
        assert results[0].stage == "fulltext"
        assert external.calls

    def test_external_empty_falls_through(self, loaded_db):
        engine = QueryEngine(loaded_db, make_config(search_backend="elasticsearch"),
                             external=FakeExternal())
        assert engine.search("adalim")[0].stage == "prefix"

    def test_external_ignored_for_sqlite_backend(self, loaded_db):
        external = FakeExternal(results=[_external_hit()])
        engine = QueryEngine(loaded_db, make_config(), external=external)
        assert engine.search("RA")[0].stage == "fulltext"
        assert external.calls == []
