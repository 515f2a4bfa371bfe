"""Tests for the local filesystem index and storage."""

from __future__ import annotations

import os
from datetime import datetime, timezone
from pathlib import Path

import pytest
from PIL import Image

from journeys.store.base import StoreError
from journeys.store.local import (
    FilesystemImageIndex,
    LocalFileStorage,
    LoggingNotifier,
    gps_to_decimal,
    parse_exif_datetime,
    read_media_item,
    stable_item_id,
)


def _write_dated_image(path: Path, taken: str | None, size: tuple[int, int] = (64, 48)) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    image = Image.new("RGB", size, "green")
    if taken is None:
        image.save(path, "JPEG")
    else:
        exif = Image.Exif()
        exif[0x0132] = taken
        image.save(path, "JPEG", exif=exif.tobytes())
    return path


class TestExifParsing:
    """Tests for EXIF value conversion."""

    def test_stable_item_id(self) -> None:
        """Ids should be deterministic and differ per user."""
        assert stable_item_id("alice", "a.jpg") == stable_item_id("alice", "a.jpg")
        assert stable_item_id("alice", "a.jpg") != stable_item_id("bob", "a.jpg")
        assert 0 < stable_item_id("alice", "a.jpg") < 2**60

    def test_gps_to_decimal(self) -> None:
        """Southern and western hemispheres should be negative."""
        assert gps_to_decimal((38, 43, 12), "N") == pytest.approx(38.72)
        assert gps_to_decimal((9, 8, 24), b"W") == pytest.approx(-9.14)
        assert gps_to_decimal(("x", 0, 0), "N") is None

    def test_parse_local_time(self) -> None:
        """Without an offset the camera's local time should be kept."""
        assert parse_exif_datetime("2024:05:03 10:00:00") == datetime(2024, 5, 3, 10, 0, 0)

    def test_parse_with_offset(self) -> None:
        """An offset should convert the time to UTC."""
        assert parse_exif_datetime("2024:05:03 10:00:00", "+02:00") == datetime(2024, 5, 3, 8, 0, 0)
        assert parse_exif_datetime(b"2024:05:03 10:00:00\x00", "-05:30") == datetime(2024, 5, 3, 15, 30, 0)

    def test_parse_invalid(self) -> None:
        """Blank or malformed values should give None."""
        assert parse_exif_datetime(None) is None
        assert parse_exif_datetime("0000:00:00 00:00:00") is None
        assert parse_exif_datetime("") is None


class TestReadMediaItem:
    """Tests for read_media_item."""

    def test_exif_timestamp(self, temp_dir: Path) -> None:
        """The EXIF capture time and pixel size should be read."""
        path = _write_dated_image(temp_dir / "a.jpg", "2023:09:01 12:30:00", size=(60, 80))

        item = read_media_item("alice", path, "a.jpg")

        assert item.timestamp == datetime(2023, 9, 1, 12, 30, 0)
        assert (item.width, item.height) == (60, 80)
        assert item.lat is None and item.lon is None
        assert item.id == stable_item_id("alice", "a.jpg")

    def test_mtime_fallback(self, temp_dir: Path) -> None:
        """Images without a capture time should use the modification time in UTC."""
        path = _write_dated_image(temp_dir / "b.jpg", None)
        mtime = datetime(2022, 2, 2, 2, 2, 2, tzinfo=timezone.utc).timestamp()
        os.utime(path, (mtime, mtime))

        item = read_media_item("alice", path, "b.jpg")

        assert item.timestamp == datetime(2022, 2, 2, 2, 2, 2)

    def test_missing_file(self, temp_dir: Path) -> None:
        """Files that cannot be stat'ed should be skipped."""
        assert read_media_item("alice", temp_dir / "gone.jpg", "gone.jpg") is None


class TestFilesystemImageIndex:
    """Tests for FilesystemImageIndex."""

    @pytest.fixture
    def roots(self, temp_dir: Path) -> tuple[Path, Path]:
        root = temp_dir / "files"
        secondary = temp_dir / "sd"
        _write_dated_image(root / "alice" / "Photos" / "b.jpg", "2024:05:03 12:00:00")
        _write_dated_image(root / "alice" / "Photos" / "a.jpg", "2024:05:03 09:00:00")
        _write_dated_image(root / "alice" / ".thumbnails" / "t.jpg", "2024:05:03 09:00:00")
        (root / "alice" / "notes.txt").write_text("x")
        _write_dated_image(secondary / "DCIM" / "c.jpg", "2024:05:04 08:00:00")
        return root, secondary

    def test_primary_items(self, roots: tuple[Path, Path]) -> None:
        """Only supported images outside hidden folders should be indexed, in time order."""
        root, secondary = roots
        index = FilesystemImageIndex(root, [secondary])

        items = index.fetch_for_user("alice")

        assert [item.path for item in items] == ["Photos/a.jpg", "Photos/b.jpg"]

    def test_secondary_items(self, roots: tuple[Path, Path]) -> None:
        """Secondary storage should only be listed on request, by absolute path."""
        root, secondary = roots
        index = FilesystemImageIndex(root, [secondary])

        items = index.fetch_for_user("alice", include_secondary=True)

        assert len(items) == 3
        assert items[-1].path == str((secondary / "DCIM" / "c.jpg").resolve())

    def test_fetch_by_ids(self, roots: tuple[Path, Path]) -> None:
        """Items should be found by id, including secondary ones."""
        root, secondary = roots
        index = FilesystemImageIndex(root, [secondary])
        wanted = [item.id for item in index.fetch_for_user("alice", include_secondary=True)][1:]

        assert [item.id for item in index.fetch_by_ids("alice", wanted)] == wanted

    def test_unknown_user(self, roots: tuple[Path, Path]) -> None:
        """A user without a directory should have no items."""
        root, _ = roots
        assert FilesystemImageIndex(root).fetch_for_user("nobody") == []


class TestLocalFileStorage:
    """Tests for LocalFileStorage."""

    def test_resolve_within_user_root(self, temp_dir: Path) -> None:
        """Relative paths should resolve under the user's directory."""
        storage = LocalFileStorage(temp_dir)
        assert storage.resolve("alice", "Photos/a.jpg") == (temp_dir / "alice" / "Photos" / "a.jpg").resolve()

    def test_resolve_rejects_traversal(self, temp_dir: Path) -> None:
        """Paths escaping the user's directory should be refused."""
        storage = LocalFileStorage(temp_dir)

        with pytest.raises(StoreError):
            storage.resolve("alice", "../bob/a.jpg")
        with pytest.raises(StoreError):
            storage.resolve("alice", "/etc/passwd")

    def test_resolve_secondary(self, temp_dir: Path) -> None:
        """Absolute paths inside a secondary root should be allowed."""
        storage = LocalFileStorage(temp_dir / "files", [temp_dir / "sd"])
        path = str(temp_dir / "sd" / "c.jpg")

        assert storage.resolve("alice", path) == Path(path).resolve()

    def test_open_missing(self, temp_dir: Path) -> None:
        """Reading a missing file should raise StoreError."""
        with pytest.raises(StoreError):
            LocalFileStorage(temp_dir).open_read("alice", "missing.jpg")

    def test_store_file(self, temp_dir: Path) -> None:
        """Stored files should be copied and addressed by their virtual path."""
        storage = LocalFileStorage(temp_dir / "files")
        source = temp_dir / "final.mp4"
        source.write_bytes(b"video")

        virtual = storage.store_file("alice", "Documents/Journeys Movies", "trip.mp4", source)

        assert virtual == "Documents/Journeys Movies/trip.mp4"
        assert storage.exists("alice", virtual)
        assert (temp_dir / "files" / "alice" / "Documents" / "Journeys Movies" / "trip.mp4").read_bytes() == b"video"
        assert not storage.exists("alice", "../escape.mp4")


class TestLoggingNotifier:
    """Tests for LoggingNotifier."""

    def test_records_notifications(self) -> None:
        """Notifications should be kept for inspection."""
        notifier = LoggingNotifier()
        notifier.notify("alice", "New journeys", "1 new journey album created: Trip", link="/albums")

        assert notifier.sent == [("alice", "New journeys", "1 new journey album created: Trip", "/albums")]
