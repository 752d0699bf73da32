"""
Tests for downloader/archive.py — zip extraction
"""
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from conftest import build_zip
from downloader.archive import extract_csv_entries
from utils.errors import ArchiveError


class TestExtractCsvEntries:
    def test_only_csv_entries_in_archive_order(self):
        data = build_zip({
            "tables/items.csv": "a\n1\n",
            "README.txt": "hello",
            "tables/Restrictions.CSV": "b\n2\n",
        })
        entries = extract_csv_entries(data)
        assert [e.path for e in entries] == ["tables/items.csv", "tables/Restrictions.CSV"]
        assert entries[0].contents == "a\n1\n"

    def test_directories_skipped(self):
        data = build_zip({"tables/": b"", "tables/items.csv": "a\n"})
        assert [e.path for e in extract_csv_entries(data)] == ["tables/items.csv"]

    def test_utf8_bom_dropped(self):
        data = build_zip({"items.csv": "\ufeffpbs_code\n1\n".encode("utf-8")})
        assert extract_csv_entries(data)[0].contents.startswith("pbs_code")

    def test_invalid_bytes_replaced(self):
        data = build_zip({"items.csv": b"name\ncaf\xe9\n"})
        assert "caf\ufffd" in extract_csv_entries(data)[0].contents

    def test_not_a_zip(self):
        with pytest.raises(ArchiveError):
            extract_csv_entries(b"<html>maintenance page</html>")

    def test_empty_archive(self):
        assert extract_csv_entries(build_zip({})) == []
