"""Pytest configuration and fixtures for Journeys tests."""

from __future__ import annotations

import tempfile
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta
from pathlib import Path

import pytest
from PIL import Image

from journeys.models.schema import MediaItem
from journeys.store.sqlite import SQLiteStore

BASE_TIME = datetime(2024, 5, 3, 10, 0, 0)


@pytest.fixture
def temp_dir() -> Path:
    """Create a temporary directory for test outputs."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def make_item() -> Callable[..., MediaItem]:
    """Factory for media items; ``minutes`` offsets from a fixed base time."""
    counter = {"next": 1}

    def _make(
        minutes: float = 0,
        lat: float | None = None,
        lon: float | None = None,
        item_id: int | None = None,
        width: int | None = 4000,
        height: int | None = 3000,
        has_faces: bool | None = None,
        path: str | None = None,
    ) -> MediaItem:
        if item_id is None:
            item_id = counter["next"]
        counter["next"] = max(counter["next"], item_id) + 1
        return MediaItem(
            id=item_id,
            path=path or f"Photos/IMG_{item_id:04d}.jpg",
            timestamp=BASE_TIME + timedelta(minutes=minutes),
            lat=lat,
            lon=lon,
            width=width,
            height=height,
            has_faces=has_faces,
        )

    return _make


@pytest.fixture
def store() -> SQLiteStore:
    """An in-memory SQLite store."""
    with SQLiteStore(":memory:") as db:
        yield db


@pytest.fixture
def write_image() -> Callable[..., Path]:
    """Write a small solid-color JPEG."""

    def _write(path: Path, size: tuple[int, int] = (64, 48), color: str = "blue") -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        Image.new("RGB", size, color).save(path, "JPEG")
        return path

    return _write


class FakeIndex:
    """In-memory image index."""

    def __init__(self, items: Iterable[MediaItem] = (), secondary: Iterable[MediaItem] = ()) -> None:
        self.items = list(items)
        self.secondary = list(secondary)
        self.calls: list[tuple[str, bool]] = []

    def fetch_for_user(self, user_id: str, include_secondary: bool = False) -> list[MediaItem]:
        self.calls.append((user_id, include_secondary))
        return self.items + (self.secondary if include_secondary else [])

    def fetch_by_ids(self, user_id: str, item_ids: Iterable[int]) -> list[MediaItem]:
        wanted = set(item_ids)
        return [item for item in self.items + self.secondary if item.id in wanted]


class FakeResolver:
    """Place resolver answering from a list of (lat_min, lat_max, places) bands."""

    def __init__(self, bands: list[tuple[float, float, list[tuple[int, int, str]]]]) -> None:
        self.bands = bands
        self.queries = 0

    def query(self, lat: float, lon: float) -> list[tuple[int, int, str]]:
        self.queries += 1
        for low, high, places in self.bands:
            if low <= lat <= high:
                return places
        return []


@pytest.fixture
def fake_index() -> type[FakeIndex]:
    return FakeIndex


@pytest.fixture
def fake_resolver() -> type[FakeResolver]:
    return FakeResolver
