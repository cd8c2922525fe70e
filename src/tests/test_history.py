"""Unit tests for the revision log."""

from datetime import datetime, timedelta, timezone

import pytest

from miniwiki.core.history import RevisionLog
from miniwiki.core.models import Revision


class FakeClock:
    def __init__(self):
        self.now = datetime(2025, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        self.now += timedelta(seconds=1)
        return self.now


@pytest.fixture
def log():
    return RevisionLog(limit=100, clock=FakeClock())


class TestAppend:
    def test_append_records_page_and_content(self, log):
        rev = log.append("A", "v1")
        assert rev.page == "A"
        assert rev.content == "v1"
        assert len(log) == 1

    def test_timestamps_increase(self, log):
        first = log.append("A", "v1")
        second = log.append("A", "v2")
        assert second.time > first.time

    def test_cap_is_never_exceeded(self, log):
        for i in range(150):
            log.append("A", f"v{i}")
            assert len(log) <= 100
        assert len(log) == 100

    def test_oldest_entries_evicted_across_pages(self, log):
        log.append("Rare", "only version")
        for i in range(100):
            log.append("Busy", f"v{i}")
        assert log.versions_for("Rare") == []
        assert log.entries[0].content == "v0"
        assert log.entries[-1].content == "v99"

    def test_invalid_limit(self):
        with pytest.raises(ValueError):
            RevisionLog(limit=0)


class TestVersionsFor:
    def test_most_recent_first(self, log):
        log.append("A", "v1")
        log.append("A", "v2")
        assert [v.content for v in log.versions_for("A")] == ["v2", "v1"]

    def test_original_index(self, log):
        log.append("A", "a1")
        log.append("B", "b1")
        log.append("A", "a2")
        versions = log.versions_for("A")
        assert [v.original_index for v in versions] == [2, 0]
        assert log.get(versions[0].original_index).content == "a2"

    def test_unknown_page_is_empty(self, log):
        assert log.versions_for("Nobody") == []


class TestGetAndRestore:
    def test_get_out_of_range(self, log):
        log.append("A", "v1")
        assert log.get(5) is None
        assert log.get(-1) is None

    def test_restore_appends_snapshot(self, log):
        log.append("A", "v1")
        log.append("A", "v2")
        restored = log.restore(0)
        assert restored.content == "v1"
        versions = log.versions_for("A")
        assert versions[0].content == "v1"
        assert len(versions) == 3

    def test_restore_missing_index_is_noop(self, log):
        log.append("A", "v1")
        assert log.restore(10) is None
        assert len(log) == 1


class TestReplace:
    def test_replace_truncates_to_limit(self):
        entries = [
            Revision(page="A", time=datetime(2025, 1, 1, tzinfo=timezone.utc), content=str(i))
            for i in range(12)
        ]
        log = RevisionLog(entries, limit=10)
        assert len(log) == 10
        assert log.entries[0].content == "2"

    def test_to_list_shape(self, log):
        log.append("A", "v1")
        [item] = log.to_list()
        assert set(item) == {"page", "time", "content"}
        assert item["time"].startswith("2025-01-01T00:00:01")
