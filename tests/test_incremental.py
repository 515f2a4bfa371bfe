"""Tests for the incremental boundary tracker."""

from __future__ import annotations

from datetime import datetime

from journeys.incremental import IncrementalBoundaryTracker
from journeys.models.schema import ClusterBoundaryRecord
from journeys.store.sqlite import SQLiteStore

BASE_TIME = datetime(2024, 5, 3, 10, 0, 0)


class TestLowWaterMark:
    """Tests for low_water_mark."""

    def test_no_records(self, store: SQLiteStore) -> None:
        """A user never processed should have no mark."""
        assert IncrementalBoundaryTracker(store, store).low_water_mark("alice") is None

    def test_latest_end(self, store: SQLiteStore) -> None:
        """The mark should be the latest recorded end."""
        tracker = IncrementalBoundaryTracker(store, store)
        tracker.record("alice", 1, "A", None, datetime(2024, 1, 1), datetime(2024, 1, 3))
        tracker.record("alice", 2, "B", None, datetime(2024, 2, 1), datetime(2024, 2, 4, 18, 0))

        assert tracker.low_water_mark("alice") == datetime(2024, 2, 4, 18, 0)

    def test_derived_from_album_members(self, store: SQLiteStore, make_item) -> None:
        """Without stored ends the mark should come from tracked album members."""
        items = [make_item(minutes=m) for m in (0, 10, 20, 30)]
        album_id = store.create_album("alice", "Trip", None, [items[0].id, items[2].id])
        store.upsert(ClusterBoundaryRecord(user_id="alice", album_id=album_id, name="Trip"))
        tracker = IncrementalBoundaryTracker(store, store)

        assert tracker.low_water_mark("alice", items) == items[2].timestamp

    def test_derived_without_matching_items(self, store: SQLiteStore, make_item) -> None:
        """Records whose members are gone should give no mark."""
        store.upsert(ClusterBoundaryRecord(user_id="alice", album_id=42))
        tracker = IncrementalBoundaryTracker(store, store)

        assert tracker.low_water_mark("alice", [make_item()]) is None


class TestFilterAndReset:
    """Tests for filter_unprocessed, record and reset."""

    def test_filter_strictly_after(self, make_item) -> None:
        """Items at the mark itself count as processed."""
        items = [make_item(minutes=m) for m in (0, 10, 20)]

        pending = IncrementalBoundaryTracker.filter_unprocessed(items, items[1].timestamp)

        assert pending == [items[2]]
        assert IncrementalBoundaryTracker.filter_unprocessed(items, None) == items

    def test_record_upserts(self, store: SQLiteStore) -> None:
        """Recording an album twice should keep one record."""
        tracker = IncrementalBoundaryTracker(store, store)
        tracker.record("alice", 1, "A", "Lisbon", BASE_TIME, BASE_TIME)
        tracker.record("alice", 1, "A", "Lisbon", BASE_TIME, datetime(2024, 5, 4))

        records = store.list_records("alice")
        assert len(records) == 1
        assert records[0].place == "Lisbon"
        assert records[0].end == datetime(2024, 5, 4)

    def test_reset(self, store: SQLiteStore) -> None:
        """Reset should delete tracked albums and records but keep untracked albums."""
        tracker = IncrementalBoundaryTracker(store, store)
        tracked = store.create_album("alice", "Tracked", None, [1])
        store.create_album("alice", "Manual", None, [2])
        tracker.record("alice", tracked, "Tracked", None, BASE_TIME, BASE_TIME)

        assert tracker.reset("alice") == 1
        assert [a.name for a in store.list_albums("alice")] == ["Manual"]
        assert tracker.low_water_mark("alice") is None
