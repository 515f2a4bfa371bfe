"""Contracts for the collaborators the clustering and video code consume.

Concrete implementations live in :mod:`journeys.store.sqlite` and
:mod:`journeys.store.local`; tests substitute in-memory fakes.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from pathlib import Path
from typing import BinaryIO, Protocol, runtime_checkable

from journeys.models.schema import AlbumInfo, ClusterBoundaryRecord, MediaItem


class StoreError(Exception):
    """Error reading or writing persisted state."""

    pass


class AlbumCreationError(StoreError):
    """An album could not be created (e.g. its name is already taken)."""

    pass


@runtime_checkable
class ImageIndex(Protocol):
    """Lists a user's media items."""

    def fetch_for_user(self, user_id: str, include_secondary: bool = False) -> list[MediaItem]: ...

    def fetch_by_ids(self, user_id: str, item_ids: Iterable[int]) -> list[MediaItem]: ...


@runtime_checkable
class FacePresenceService(Protocol):
    """Reports which items contain detected faces."""

    def has_faces(self, user_id: str, item_ids: Iterable[int]) -> dict[int, bool]: ...


@runtime_checkable
class PlaceResolver(Protocol):
    """Reverse-geocodes a point into administrative areas.

    Results are ``(place_id, admin_level, name)`` tuples, most specific first.
    Implementations return an empty list rather than raising when lookups fail.
    """

    def query(self, lat: float, lon: float) -> list[tuple[int, int, str]]: ...


@runtime_checkable
class ConfigStore(Protocol):
    """Per-user key/value settings. JSON blobs are stored as strings."""

    def get_value(self, user_id: str, key: str) -> str | None: ...

    def set_value(self, user_id: str, key: str, value: str) -> None: ...


@runtime_checkable
class AlbumStore(Protocol):
    """Creates and lists albums."""

    def create_album(self, user_id: str, name: str, place: str | None, item_ids: list[int]) -> int: ...

    def delete_album(self, user_id: str, album_id: int) -> None: ...

    def list_albums(self, user_id: str) -> list[AlbumInfo]: ...

    def album_item_ids(self, user_id: str, album_id: int) -> list[int]: ...


@runtime_checkable
class BoundaryStore(Protocol):
    """Persisted cluster boundaries, keyed by (user, album)."""

    def upsert(self, record: ClusterBoundaryRecord) -> None: ...

    def max_end(self, user_id: str) -> datetime | None: ...

    def has_records(self, user_id: str) -> bool: ...

    def list_records(self, user_id: str) -> list[ClusterBoundaryRecord]: ...

    def delete_all(self, user_id: str) -> int: ...


@runtime_checkable
class FileStorage(Protocol):
    """A user's managed file storage."""

    def open_read(self, user_id: str, path: str) -> BinaryIO: ...

    def store_file(self, user_id: str, folder: str, file_name: str, source: Path) -> str: ...

    def exists(self, user_id: str, path: str) -> bool: ...


@runtime_checkable
class Notifier(Protocol):
    """Posts user-facing notifications."""

    def notify(self, user_id: str, subject: str, message: str, link: str | None = None) -> None: ...
