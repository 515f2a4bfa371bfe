"""Tests for the SQLite store."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

import pytest

from journeys.models.schema import ClusterBoundaryRecord
from journeys.store.base import AlbumCreationError, StoreError
from journeys.store.sqlite import SQLiteStore


class TestSettings:
    """Tests for per-user key/value settings."""

    def test_get_missing(self, store: SQLiteStore) -> None:
        """Unset keys should read as None."""
        assert store.get_value("alice", "homeAware") is None

    def test_set_and_overwrite(self, store: SQLiteStore) -> None:
        """Setting a key twice should keep the last value."""
        store.set_value("alice", "homeAware", "true")
        store.set_value("alice", "homeAware", "false")

        assert store.get_value("alice", "homeAware") == "false"
        assert store.get_value("bob", "homeAware") is None

    def test_persisted_to_file(self, temp_dir: Path) -> None:
        """Values should survive reopening a file database."""
        path = temp_dir / "nested" / "journeys.db"
        with SQLiteStore(path) as db:
            db.set_value("alice", "boostFaces", "false")

        with SQLiteStore(path) as db:
            assert db.get_value("alice", "boostFaces") == "false"


class TestAlbums:
    """Tests for album storage."""

    def test_create_and_list(self, store: SQLiteStore) -> None:
        """Albums should be listed in creation order with their item counts."""
        first = store.create_album("alice", "Lisbon May 2024 (3-7)", "Lisbon", [3, 1, 2])
        second = store.create_album("alice", "Porto May 2024 (9)", None, [7])

        albums = store.list_albums("alice")

        assert [a.album_id for a in albums] == [first, second]
        assert albums[0].item_count == 3
        assert albums[0].place == "Lisbon"
        assert store.album_item_ids("alice", first) == [3, 1, 2]

    def test_duplicate_name(self, store: SQLiteStore) -> None:
        """A user cannot have two albums with the same name."""
        store.create_album("alice", "Trip", None, [1])

        with pytest.raises(AlbumCreationError):
            store.create_album("alice", "Trip", None, [2])

        assert store.create_album("bob", "Trip", None, [2]) > 0

    def test_delete_cascades(self, store: SQLiteStore) -> None:
        """Deleting an album should remove its members."""
        album_id = store.create_album("alice", "Trip", None, [1, 2])

        store.delete_album("alice", album_id)

        assert store.list_albums("alice") == []
        assert store.album_item_ids("alice", album_id) == []

    def test_delete_other_user(self, store: SQLiteStore) -> None:
        """Users cannot delete each other's albums."""
        album_id = store.create_album("alice", "Trip", None, [1])

        store.delete_album("bob", album_id)

        assert len(store.list_albums("alice")) == 1
        assert store.album_item_ids("bob", album_id) == []


class TestBoundaries:
    """Tests for cluster boundary records."""

    def _record(self, album_id: int, end: datetime | None) -> ClusterBoundaryRecord:
        return ClusterBoundaryRecord(
            user_id="alice", album_id=album_id, name=f"A{album_id}", start=datetime(2024, 1, album_id), end=end
        )

    def test_max_end(self, store: SQLiteStore) -> None:
        """The latest end across records should be reported."""
        store.upsert(self._record(1, datetime(2024, 1, 3, 18, 0)))
        store.upsert(self._record(2, datetime(2024, 1, 12, 9, 30)))
        store.upsert(self._record(3, None))

        assert store.max_end("alice") == datetime(2024, 1, 12, 9, 30)
        assert store.max_end("bob") is None

    def test_upsert_replaces(self, store: SQLiteStore) -> None:
        """Recording the same album again should update it."""
        store.upsert(self._record(1, datetime(2024, 1, 3)))
        store.upsert(self._record(1, datetime(2024, 1, 5)))

        records = store.list_records("alice")
        assert len(records) == 1
        assert records[0].end == datetime(2024, 1, 5)

    def test_records_without_end(self, store: SQLiteStore) -> None:
        """Records without an end should still count as records."""
        store.upsert(self._record(1, None))

        assert store.has_records("alice")
        assert store.max_end("alice") is None

    def test_delete_all(self, store: SQLiteStore) -> None:
        """delete_all should remove only the user's records."""
        store.upsert(self._record(1, None))
        store.upsert(self._record(2, None))
        store.upsert(ClusterBoundaryRecord(user_id="bob", album_id=9))

        assert store.delete_all("alice") == 2
        assert not store.has_records("alice")
        assert store.has_records("bob")


class TestFacesAndPlaces:
    """Tests for face flags and place lookup."""

    def test_has_faces(self, store: SQLiteStore) -> None:
        """Items without face data should read as having no faces."""
        store.set_face_count("alice", 1, 2)
        store.set_face_count("alice", 2, 0)

        assert store.has_faces("alice", [1, 2, 3]) == {1: True, 2: False, 3: False}
        assert store.has_faces("bob", [1]) == {1: False}

    def test_has_faces_large_batch(self, store: SQLiteStore) -> None:
        """Lookups should work beyond the parameter batch size."""
        store.set_face_count("alice", 1200, 1)

        flags = store.has_faces("alice", range(1, 1201))

        assert len(flags) == 1200
        assert flags[1200] is True

    def test_place_query(self, store: SQLiteStore) -> None:
        """Places containing the point should be returned, most specific first."""
        store.add_place(1, 2, "Portugal", (36.9, -9.6, 42.2, -6.2))
        store.add_place(2, 8, "Lisbon", (38.6, -9.3, 38.8, -9.0))
        store.add_place(3, 8, "Porto", (41.1, -8.7, 41.2, -8.5))

        assert store.query(38.72, -9.14) == [(2, 8, "Lisbon"), (1, 2, "Portugal")]
        assert store.query(0.0, 0.0) == []

    def test_list_users(self, store: SQLiteStore) -> None:
        """Users known to any table should be listed once, sorted."""
        store.set_value("carol", "homeAware", "true")
        store.create_album("alice", "Trip", None, [1])
        store.upsert(ClusterBoundaryRecord(user_id="bob", album_id=1))
        store.set_value("alice", "boostFaces", "true")

        assert store.list_users() == ["alice", "bob", "carol"]


class TestStoreErrors:
    """Tests for SQLite failures surfacing as StoreError."""

    @pytest.fixture
    def closed_store(self) -> SQLiteStore:
        store = SQLiteStore(":memory:")
        store.close()
        return store

    @pytest.mark.parametrize(
        "call",
        [
            lambda s: s.get_value("alice", "home"),
            lambda s: s.set_value("alice", "home", "{}"),
            lambda s: s.list_users(),
            lambda s: s.delete_album("alice", 1),
            lambda s: s.list_albums("alice"),
            lambda s: s.album_item_ids("alice", 1),
            lambda s: s.upsert(ClusterBoundaryRecord(user_id="alice", album_id=1)),
            lambda s: s.max_end("alice"),
            lambda s: s.has_records("alice"),
            lambda s: s.list_records("alice"),
            lambda s: s.delete_all("alice"),
            lambda s: s.set_face_count("alice", 1, 2),
            lambda s: s.has_faces("alice", [1]),
            lambda s: s.add_place(1, 8, "Lisbon", (38.6, -9.3, 38.8, -9.0)),
        ],
    )
    def test_wrapped(self, closed_store: SQLiteStore, call) -> None:
        """Operations on an unusable database should raise StoreError."""
        with pytest.raises(StoreError):
            call(closed_store)

    def test_album_creation_failure(self, closed_store: SQLiteStore) -> None:
        """Album creation failures stay AlbumCreationError so a run can skip the cluster."""
        with pytest.raises(AlbumCreationError):
            closed_store.create_album("alice", "Trip", None, [1])

    def test_place_query_fails_closed(self, closed_store: SQLiteStore) -> None:
        """Reverse geocoding should answer no places instead of raising."""
        assert closed_store.query(38.72, -9.14) == []
