"""Persistence and collaborator implementations for Journeys."""

from journeys.store.base import AlbumCreationError, StoreError
from journeys.store.local import FilesystemImageIndex, LocalFileStorage, LoggingNotifier
from journeys.store.sqlite import SQLiteStore

__all__ = [
    "AlbumCreationError",
    "FilesystemImageIndex",
    "LocalFileStorage",
    "LoggingNotifier",
    "SQLiteStore",
    "StoreError",
]
