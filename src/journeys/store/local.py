"""Local filesystem implementations of the image index, file storage and notifier.

Each user's managed storage is a directory under a storage root
(``<root>/<user_id>/``). Secondary roots are extra mounted directories whose
items are only listed when a run asks for secondary storage.
"""

from __future__ import annotations

import hashlib
import logging
import os
import shutil
from collections.abc import Iterable, Iterator
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import BinaryIO

from PIL import Image, UnidentifiedImageError

from journeys.models.schema import MediaItem, sort_items
from journeys.store.base import StoreError

logger = logging.getLogger(__name__)

SUPPORTED_IMAGE_FORMATS = {".jpg", ".jpeg", ".png", ".heic", ".heif", ".tif", ".tiff", ".webp"}

# EXIF tag ids
TAG_ORIENTATION = 0x0112
TAG_MAKE = 0x010F
TAG_MODEL = 0x0110
TAG_DATETIME = 0x0132
TAG_EXIF_IFD = 0x8769
TAG_GPS_IFD = 0x8825
TAG_DATETIME_ORIGINAL = 0x9003
TAG_OFFSET_TIME_ORIGINAL = 0x9011

# GPS IFD tag ids
GPS_LATITUDE_REF = 1
GPS_LATITUDE = 2
GPS_LONGITUDE_REF = 3
GPS_LONGITUDE = 4

# Orientations 5-8 rotate the image by 90 degrees
ROTATED_ORIENTATIONS = {5, 6, 7, 8}


def stable_item_id(user_id: str, path: str) -> int:
    """Derive a stable 60-bit item id from the owner and storage path."""
    digest = hashlib.sha1(f"{user_id}:{path}".encode("utf-8")).hexdigest()
    return int(digest[:15], 16)


def _decode(value: object) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="ignore").strip("\x00 ").strip()
    return str(value).strip("\x00 ").strip()


def gps_to_decimal(dms: tuple, ref: object) -> float | None:
    """Convert an EXIF degrees/minutes/seconds triple to decimal degrees.

    Args:
        dms: ``(degrees, minutes, seconds)``; rationals or numbers.
        ref: Hemisphere reference (``N``/``S``/``E``/``W``), str or bytes.

    Returns:
        Signed decimal degrees, or None if the value is malformed.
    """
    try:
        degrees, minutes, seconds = (float(v) for v in dms)
    except (TypeError, ValueError, ZeroDivisionError):
        return None

    value = degrees + minutes / 60 + seconds / 3600
    if _decode(ref).upper() in ("S", "W"):
        value = -value
    return value


def parse_exif_datetime(value: object, offset: object = None) -> datetime | None:
    """Parse an EXIF ``YYYY:MM:DD HH:MM:SS`` string into a naive UTC datetime.

    When an ``OffsetTimeOriginal`` like ``+02:00`` is available the result is
    converted to UTC; otherwise the camera clock is taken as UTC.
    """
    text = _decode(value) if value is not None else ""
    if not text:
        return None
    try:
        parsed = datetime.strptime(text[:19], "%Y:%m:%d %H:%M:%S")
    except ValueError:
        return None

    offset_text = _decode(offset) if offset is not None else ""
    if len(offset_text) == 6 and offset_text[0] in "+-" and offset_text[3] == ":":
        try:
            hours, minutes = int(offset_text[1:3]), int(offset_text[4:6])
        except ValueError:
            return parsed
        delta = timedelta(hours=hours, minutes=minutes)
        if offset_text[0] == "-":
            delta = -delta
        aware = parsed.replace(tzinfo=timezone(delta))
        return aware.astimezone(timezone.utc).replace(tzinfo=None)

    return parsed


def read_media_item(user_id: str, file_path: Path, virtual_path: str) -> MediaItem | None:
    """Build a MediaItem from an image file's EXIF data.

    Falls back to the file's modification time when no capture time is
    recorded, and leaves location and dimensions unset when unavailable.

    Returns:
        The item, or None if the file cannot be read at all.
    """
    try:
        mtime = datetime.fromtimestamp(file_path.stat().st_mtime, tz=timezone.utc).replace(tzinfo=None)
    except OSError as e:
        logger.warning(f"Skipping unreadable file {file_path}: {e}")
        return None

    timestamp: datetime | None = None
    lat = lon = None
    width = height = None
    make = model = None

    try:
        with Image.open(file_path) as img:
            width, height = img.size
            exif = img.getexif()

            if exif.get(TAG_ORIENTATION) in ROTATED_ORIENTATIONS:
                width, height = height, width

            exif_ifd = exif.get_ifd(TAG_EXIF_IFD)
            timestamp = parse_exif_datetime(
                exif_ifd.get(TAG_DATETIME_ORIGINAL), exif_ifd.get(TAG_OFFSET_TIME_ORIGINAL)
            )
            if timestamp is None:
                timestamp = parse_exif_datetime(exif.get(TAG_DATETIME))

            gps = exif.get_ifd(TAG_GPS_IFD)
            if GPS_LATITUDE in gps and GPS_LONGITUDE in gps:
                lat = gps_to_decimal(gps[GPS_LATITUDE], gps.get(GPS_LATITUDE_REF, "N"))
                lon = gps_to_decimal(gps[GPS_LONGITUDE], gps.get(GPS_LONGITUDE_REF, "E"))
                if lat is None or lon is None or not (-90 <= lat <= 90 and -180 <= lon <= 180):
                    lat = lon = None
                elif lat == 0.0 and lon == 0.0:
                    # Null island: cameras write zeros when they have no fix
                    lat = lon = None

            make = _decode(exif[TAG_MAKE]) if TAG_MAKE in exif else None
            model = _decode(exif[TAG_MODEL]) if TAG_MODEL in exif else None
    except (UnidentifiedImageError, OSError, ValueError) as e:
        logger.debug(f"No image metadata for {file_path}: {e}")

    return MediaItem(
        id=stable_item_id(user_id, virtual_path),
        path=virtual_path,
        timestamp=timestamp or mtime,
        lat=lat,
        lon=lon,
        width=width,
        height=height,
        camera_make=make or None,
        camera_model=model or None,
    )


def _walk_images(root: Path) -> Iterator[Path]:
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
        for filename in sorted(filenames):
            if Path(filename).suffix.lower() in SUPPORTED_IMAGE_FORMATS:
                yield Path(dirpath) / filename


class FilesystemImageIndex:
    """Image index over per-user directories plus optional secondary roots.

    Primary items get paths relative to the user's directory; secondary items
    keep their absolute path so :class:`LocalFileStorage` can resolve them.
    """

    def __init__(self, storage_root: str | Path, secondary_roots: Iterable[str | Path] = ()) -> None:
        self.storage_root = Path(storage_root)
        self.secondary_roots = [Path(p) for p in secondary_roots]
        self._cache: dict[tuple[str, bool], list[MediaItem]] = {}

    def fetch_for_user(self, user_id: str, include_secondary: bool = False) -> list[MediaItem]:
        key = (user_id, include_secondary)
        if key in self._cache:
            return list(self._cache[key])

        items: list[MediaItem] = []
        user_root = self.storage_root / user_id
        if user_root.is_dir():
            for file_path in _walk_images(user_root):
                virtual = file_path.relative_to(user_root).as_posix()
                item = read_media_item(user_id, file_path, virtual)
                if item is not None:
                    items.append(item)
        else:
            logger.info(f"No storage directory for {user_id} at {user_root}")

        if include_secondary:
            for root in self.secondary_roots:
                if not root.is_dir():
                    logger.warning(f"Secondary storage root missing: {root}")
                    continue
                for file_path in _walk_images(root):
                    item = read_media_item(user_id, file_path, str(file_path.resolve()))
                    if item is not None:
                        items.append(item)

        items = sort_items(items)
        self._cache[key] = items
        logger.info(f"Indexed {len(items)} images for {user_id}")
        return list(items)

    def fetch_by_ids(self, user_id: str, item_ids: Iterable[int]) -> list[MediaItem]:
        wanted = set(item_ids)
        return [item for item in self.fetch_for_user(user_id, include_secondary=True) if item.id in wanted]

    def invalidate(self, user_id: str | None = None) -> None:
        """Drop cached scans for one user, or all users."""
        if user_id is None:
            self._cache.clear()
            return
        for key in [k for k in self._cache if k[0] == user_id]:
            del self._cache[key]


class LocalFileStorage:
    """Managed per-user storage under a root directory."""

    def __init__(self, storage_root: str | Path, secondary_roots: Iterable[str | Path] = ()) -> None:
        self.storage_root = Path(storage_root)
        self.secondary_roots = [Path(p).resolve() for p in secondary_roots]

    def user_root(self, user_id: str) -> Path:
        return self.storage_root / user_id

    def resolve(self, user_id: str, path: str) -> Path:
        """Map a virtual path to a local file.

        Raises:
            StoreError: If the path escapes the user's storage and every
                secondary root.
        """
        candidate = Path(path)
        if candidate.is_absolute():
            resolved = candidate.resolve()
            for root in self.secondary_roots:
                if resolved.is_relative_to(root):
                    return resolved
            raise StoreError(f"Path outside of managed storage: {path}")

        user_root = self.user_root(user_id).resolve()
        resolved = (user_root / candidate).resolve()
        if not resolved.is_relative_to(user_root):
            raise StoreError(f"Path outside of managed storage: {path}")
        return resolved

    def open_read(self, user_id: str, path: str) -> BinaryIO:
        resolved = self.resolve(user_id, path)
        try:
            return open(resolved, "rb")
        except OSError as e:
            raise StoreError(f"Cannot read {path} for {user_id}: {e}") from e

    def exists(self, user_id: str, path: str) -> bool:
        try:
            return self.resolve(user_id, path).exists()
        except StoreError:
            return False

    def store_file(self, user_id: str, folder: str, file_name: str, source: Path) -> str:
        """Copy a local file into the user's storage.

        Returns:
            The stored file's virtual path (``folder/file_name``).
        """
        target_dir = self.resolve(user_id, folder)
        try:
            target_dir.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, target_dir / file_name)
        except OSError as e:
            raise StoreError(f"Failed to store {file_name} for {user_id}: {e}") from e
        return f"{folder.rstrip('/')}/{file_name}"


class LoggingNotifier:
    """Notifier that writes notifications to the log."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str, str | None]] = []

    def notify(self, user_id: str, subject: str, message: str, link: str | None = None) -> None:
        self.sent.append((user_id, subject, message, link))
        suffix = f" ({link})" if link else ""
        logger.info(f"Notification for {user_id}: {subject}: {message}{suffix}")
