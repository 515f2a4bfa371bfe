"""SQLite-backed persistence for Journeys.

One database file holds everything the clustering runs persist between
invocations: per-user settings, albums and their members, cluster
boundaries, face-presence flags and an optional table of place areas used
for reverse geocoding.
"""

from __future__ import annotations

import logging
import sqlite3
import time
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

from journeys.models.schema import AlbumInfo, ClusterBoundaryRecord, utc_now
from journeys.store.base import AlbumCreationError, StoreError

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS settings (
    user_id TEXT NOT NULL,
    key TEXT NOT NULL,
    value TEXT NOT NULL,
    PRIMARY KEY (user_id, key)
);

CREATE TABLE IF NOT EXISTS albums (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    name TEXT NOT NULL,
    place TEXT,
    created_at TEXT NOT NULL,
    UNIQUE (user_id, name)
);

CREATE TABLE IF NOT EXISTS album_items (
    album_id INTEGER NOT NULL,
    item_id INTEGER NOT NULL,
    position INTEGER NOT NULL,
    PRIMARY KEY (album_id, item_id),
    FOREIGN KEY (album_id) REFERENCES albums (id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS cluster_boundaries (
    user_id TEXT NOT NULL,
    album_id INTEGER NOT NULL,
    name TEXT NOT NULL DEFAULT '',
    place TEXT,
    start_time TEXT,
    end_time TEXT,
    PRIMARY KEY (user_id, album_id)
);

CREATE TABLE IF NOT EXISTS faces (
    user_id TEXT NOT NULL,
    item_id INTEGER NOT NULL,
    face_count INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (user_id, item_id)
);

CREATE TABLE IF NOT EXISTS places (
    place_id INTEGER PRIMARY KEY,
    admin_level INTEGER NOT NULL,
    name TEXT NOT NULL,
    min_lat REAL NOT NULL,
    min_lon REAL NOT NULL,
    max_lat REAL NOT NULL,
    max_lon REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_places_bbox ON places (min_lat, max_lat, min_lon, max_lon);
"""


def _to_text(value: datetime | None) -> str | None:
    return value.isoformat(sep=" ") if value is not None else None


def _from_text(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        logger.warning(f"Ignoring unparseable stored timestamp: {value!r}")
        return None


@contextmanager
def _store_errors(action: str) -> Iterator[None]:
    """Re-raise SQLite failures as StoreError."""
    try:
        yield
    except sqlite3.Error as e:
        raise StoreError(f"Failed to {action}: {e}") from e


class SQLiteStore:
    """SQLite implementation of the config, album, boundary, face and place stores.

    Example:
        >>> store = SQLiteStore("journeys.db")
        >>> store.set_value("alice", "homeAware", "true")
        >>> store.max_end("alice")
    """

    def __init__(self, path: str | Path = ":memory:") -> None:
        """Open (and create if needed) the database.

        Args:
            path: Database file, or ``":memory:"`` for a throwaway store.

        Raises:
            StoreError: If the database cannot be opened.
        """
        self.path = str(path)
        start_time = time.perf_counter()

        try:
            if self.path != ":memory:":
                Path(self.path).parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self.path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
            with self._conn:
                self._conn.executescript(SCHEMA)
        except sqlite3.Error as e:
            raise StoreError(f"Failed to open database {self.path}: {e}") from e

        elapsed = time.perf_counter() - start_time
        logger.debug(f"SQLite store ready at {self.path} in {elapsed:.3f}s")

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> SQLiteStore:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # Config store

    def get_value(self, user_id: str, key: str) -> str | None:
        with _store_errors(f"read setting {key!r} for {user_id}"):
            row = self._conn.execute(
                "SELECT value FROM settings WHERE user_id = ? AND key = ?", (user_id, key)
            ).fetchone()
        return row["value"] if row else None

    def set_value(self, user_id: str, key: str, value: str) -> None:
        with _store_errors(f"write setting {key!r} for {user_id}"), self._conn:
            self._conn.execute(
                "INSERT INTO settings (user_id, key, value) VALUES (?, ?, ?) "
                "ON CONFLICT (user_id, key) DO UPDATE SET value = excluded.value",
                (user_id, key, value),
            )

    def list_users(self) -> list[str]:
        """List every user with settings, albums or boundaries."""
        with _store_errors("list users"):
            rows = self._conn.execute(
                "SELECT user_id FROM settings UNION SELECT user_id FROM albums "
                "UNION SELECT user_id FROM cluster_boundaries ORDER BY user_id"
            ).fetchall()
        return [row["user_id"] for row in rows]

    # Album store

    def create_album(self, user_id: str, name: str, place: str | None, item_ids: list[int]) -> int:
        """Create an album with the given members.

        Raises:
            AlbumCreationError: If the user already has an album with this name.
        """
        try:
            with self._conn:
                cursor = self._conn.execute(
                    "INSERT INTO albums (user_id, name, place, created_at) VALUES (?, ?, ?, ?)",
                    (user_id, name, place, _to_text(utc_now())),
                )
                album_id = int(cursor.lastrowid or 0)
                self._conn.executemany(
                    "INSERT OR IGNORE INTO album_items (album_id, item_id, position) VALUES (?, ?, ?)",
                    [(album_id, item_id, pos) for pos, item_id in enumerate(item_ids)],
                )
        except sqlite3.IntegrityError as e:
            raise AlbumCreationError(f"Album '{name}' already exists for {user_id}") from e
        except sqlite3.Error as e:
            raise AlbumCreationError(f"Failed to create album '{name}': {e}") from e

        logger.debug(f"Created album {album_id} '{name}' with {len(item_ids)} items for {user_id}")
        return album_id

    def delete_album(self, user_id: str, album_id: int) -> None:
        with _store_errors(f"delete album {album_id} for {user_id}"), self._conn:
            self._conn.execute(
                "DELETE FROM albums WHERE id = ? AND user_id = ?", (album_id, user_id)
            )

    def list_albums(self, user_id: str) -> list[AlbumInfo]:
        with _store_errors(f"list albums for {user_id}"):
            rows = self._conn.execute(
                "SELECT a.id, a.name, a.place, COUNT(ai.item_id) AS item_count "
                "FROM albums a LEFT JOIN album_items ai ON ai.album_id = a.id "
                "WHERE a.user_id = ? GROUP BY a.id ORDER BY a.id",
                (user_id,),
            ).fetchall()
        return [
            AlbumInfo(album_id=row["id"], name=row["name"], place=row["place"], item_count=row["item_count"])
            for row in rows
        ]

    def album_item_ids(self, user_id: str, album_id: int) -> list[int]:
        with _store_errors(f"list items of album {album_id}"):
            rows = self._conn.execute(
                "SELECT ai.item_id FROM album_items ai JOIN albums a ON a.id = ai.album_id "
                "WHERE a.user_id = ? AND ai.album_id = ? ORDER BY ai.position",
                (user_id, album_id),
            ).fetchall()
        return [row["item_id"] for row in rows]

    # Boundary store

    def upsert(self, record: ClusterBoundaryRecord) -> None:
        with _store_errors(f"record boundary of album {record.album_id}"), self._conn:
            self._conn.execute(
                "INSERT INTO cluster_boundaries (user_id, album_id, name, place, start_time, end_time) "
                "VALUES (?, ?, ?, ?, ?, ?) "
                "ON CONFLICT (user_id, album_id) DO UPDATE SET name = excluded.name, "
                "place = excluded.place, start_time = excluded.start_time, end_time = excluded.end_time",
                (
                    record.user_id,
                    record.album_id,
                    record.name,
                    record.place,
                    _to_text(record.start),
                    _to_text(record.end),
                ),
            )

    def max_end(self, user_id: str) -> datetime | None:
        # ISO timestamps with a fixed format sort lexicographically
        with _store_errors(f"read latest boundary for {user_id}"):
            row = self._conn.execute(
                "SELECT MAX(end_time) AS max_end FROM cluster_boundaries "
                "WHERE user_id = ? AND end_time IS NOT NULL AND end_time != ''",
                (user_id,),
            ).fetchone()
        return _from_text(row["max_end"]) if row else None

    def has_records(self, user_id: str) -> bool:
        with _store_errors(f"check boundaries for {user_id}"):
            row = self._conn.execute(
                "SELECT 1 FROM cluster_boundaries WHERE user_id = ? LIMIT 1", (user_id,)
            ).fetchone()
        return row is not None

    def list_records(self, user_id: str) -> list[ClusterBoundaryRecord]:
        with _store_errors(f"list boundaries for {user_id}"):
            rows = self._conn.execute(
                "SELECT * FROM cluster_boundaries WHERE user_id = ? ORDER BY start_time, album_id",
                (user_id,),
            ).fetchall()
        return [
            ClusterBoundaryRecord(
                user_id=row["user_id"],
                album_id=row["album_id"],
                name=row["name"],
                place=row["place"],
                start=_from_text(row["start_time"]),
                end=_from_text(row["end_time"]),
            )
            for row in rows
        ]

    def delete_all(self, user_id: str) -> int:
        with _store_errors(f"delete boundaries for {user_id}"), self._conn:
            cursor = self._conn.execute(
                "DELETE FROM cluster_boundaries WHERE user_id = ?", (user_id,)
            )
        return cursor.rowcount

    # Face presence

    def set_face_count(self, user_id: str, item_id: int, face_count: int) -> None:
        with _store_errors(f"record faces of item {item_id}"), self._conn:
            self._conn.execute(
                "INSERT INTO faces (user_id, item_id, face_count) VALUES (?, ?, ?) "
                "ON CONFLICT (user_id, item_id) DO UPDATE SET face_count = excluded.face_count",
                (user_id, item_id, face_count),
            )

    def has_faces(self, user_id: str, item_ids: Iterable[int]) -> dict[int, bool]:
        ids = list(item_ids)
        result = {item_id: False for item_id in ids}
        # Stay under SQLite's bound-parameter limit
        for offset in range(0, len(ids), 500):
            batch = ids[offset : offset + 500]
            placeholders = ",".join("?" for _ in batch)
            with _store_errors(f"read faces for {user_id}"):
                rows = self._conn.execute(
                    f"SELECT item_id, face_count FROM faces WHERE user_id = ? AND item_id IN ({placeholders})",
                    (user_id, *batch),
                ).fetchall()
            for row in rows:
                result[row["item_id"]] = row["face_count"] > 0
        return result

    # Place resolver

    def add_place(
        self,
        place_id: int,
        admin_level: int,
        name: str,
        bbox: tuple[float, float, float, float],
    ) -> None:
        """Register a place area.

        Args:
            place_id: Unique place identifier.
            admin_level: Administrative level (2 = country ... 8 = city, 9-12 = districts).
            name: Display name.
            bbox: ``(min_lat, min_lon, max_lat, max_lon)``.
        """
        min_lat, min_lon, max_lat, max_lon = bbox
        with _store_errors(f"add place {place_id}"), self._conn:
            self._conn.execute(
                "INSERT OR REPLACE INTO places "
                "(place_id, admin_level, name, min_lat, min_lon, max_lat, max_lon) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (place_id, admin_level, name, min_lat, min_lon, max_lat, max_lon),
            )

    def query(self, lat: float, lon: float) -> list[tuple[int, int, str]]:
        try:
            rows = self._conn.execute(
                "SELECT place_id, admin_level, name FROM places "
                "WHERE ? BETWEEN min_lat AND max_lat AND ? BETWEEN min_lon AND max_lon "
                "ORDER BY admin_level DESC, place_id",
                (lat, lon),
            ).fetchall()
        except sqlite3.Error as e:
            logger.warning(f"Place lookup failed for ({lat}, {lon}): {e}")
            return []
        return [(row["place_id"], row["admin_level"], row["name"]) for row in rows]
