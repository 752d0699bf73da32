"""
Tests for search/snippet.py and search/rank.py
"""
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from search.rank import blended_score
from search.snippet import ELLIPSIS, build_snippet


class TestBuildSnippet:
    def test_window_flanked_by_ellipses(self):
        snippet = build_snippet("AAAA BBBB target CCCC DDDD", "target", 10)
        assert snippet == f"{ELLIPSIS}B target C{ELLIPSIS}"

    def test_no_hit_starts_at_beginning(self):
        snippet = build_snippet("AAAA BBBB CCCC DDDD", "zzz", 8)
        assert snippet == f"AAAA BBB{ELLIPSIS}"

    def test_short_body_unchanged(self):
        assert build_snippet("Giant cell arteritis", "cell", 320) == "Giant cell arteritis"

    def test_first_query_term_found_wins(self):
        body = "x" * 100 + "alpha" + "y" * 100 + "beta" + "z" * 100
        snippet = build_snippet(body, "missing beta alpha", 20)
        assert "beta" in snippet
        assert "alpha" not in snippet

    def test_case_insensitive(self):
        snippet = build_snippet("." * 50 + "Rheumatoid" + "." * 50, "RHEUMATOID", 20)
        assert "Rheumatoid" in snippet

    def test_window_aligned_after_length_changing_lowercase(self):
        # "İ".lower() is two characters long
        body = "İ" * 40 + "." * 20 + "target" + "z" * 100
        snippet = build_snippet(body, "Target", 20)
        assert snippet == ELLIPSIS + "....." + "target" + "z" * 9 + ELLIPSIS

    def test_hit_near_start_has_no_leading_ellipsis(self):
        snippet = build_snippet("ab target " + "c" * 50, "target", 12)
        assert not snippet.startswith(ELLIPSIS)
        assert snippet.endswith(ELLIPSIS)

    def test_empty_body(self):
        assert build_snippet("", "x") == ""
        assert build_snippet(None, "x") == ""


class TestBlendedScore:
    def test_lexical_only(self):
        assert blended_score(3.5) == 3.5

    def test_blend(self):
        assert abs(blended_score(1.0, 0.5) - 0.7) < 1e-9
