"""Unit tests for the link graph index."""

import pytest

from miniwiki.core.graph import LinkIndex, collation_key


@pytest.fixture
def pages():
    return {
        "Home": "Welcome. See [[Notes]] and [[Ideas|my ideas]].",
        "Notes": "Back to [[Home]]. Also [ideas](Ideas).",
        "Ideas": "Nothing links out, except [site](https://example.com).",
    }


@pytest.fixture
def index(pages):
    idx = LinkIndex()
    idx.rebuild_all(pages)
    return idx


class TestRebuild:
    def test_outgoing_links(self, index):
        assert index.outgoing("Home") == ["Notes", "Ideas"]
        assert index.outgoing("Notes") == ["Home", "Ideas"]
        assert index.outgoing("Ideas") == []

    def test_rebuild_discards_stale_entries(self, index):
        index.rebuild_all({"Only": "[[Home]]"})
        assert "Notes" not in index
        assert index.backlinks_of("Home") == ["Only"]

    def test_link_count(self, index):
        assert index.link_count() == 4


class TestBacklinks:
    def test_backlinks_sorted(self, index):
        assert index.backlinks_of("Ideas") == ["Home", "Notes"]

    def test_no_backlinks(self, index):
        assert index.backlinks_of("Unknown") == []

    def test_self_link_excluded(self):
        idx = LinkIndex()
        idx.update_one("Loop", "I link to [[Loop]]")
        assert idx.backlinks_of("Loop") == []

    def test_update_one_adds_backlink(self, index):
        index.update_one("Ideas", "Go [[Notes]]")
        assert index.backlinks_of("Notes") == ["Home", "Ideas"]

    def test_update_one_removes_backlink(self, index):
        index.update_one("Home", "No links any more")
        assert index.backlinks_of("Notes") == []
        assert index.backlinks_of("Ideas") == ["Notes"]

    def test_bracketed_target_with_parentheses(self):
        index = LinkIndex()
        index.update_one("P", "see [x](<A (b)>)")
        assert index.outgoing("P") == ["A (b)"]
        assert index.backlinks_of("A (b)") == ["P"]

    def test_backlinks_case_insensitive_order(self):
        idx = LinkIndex({"beta": ["X"], "Alpha": ["X"], "Émile": ["X"], "delta": ["X"]})
        assert idx.backlinks_of("X") == ["Alpha", "beta", "delta", "Émile"]


class TestSerialization:
    def test_round_trip_dict(self, index):
        copy = LinkIndex(index.to_dict())
        assert copy.to_dict() == index.to_dict()
        assert copy.backlinks_of("Home") == ["Notes"]


def test_collation_key_folds_case_and_accents():
    assert collation_key("Émile")[0] == collation_key("emile")[0]
    assert sorted(["b", "A", "a"], key=collation_key) == ["A", "a", "b"]
