"""Pydantic models defining the Journeys data schema."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class MediaItem(BaseModel):
    """One photo or video in a user's library.

    Items are immutable; stages that enrich them (interpolation, face flags)
    return copies.
    """

    model_config = ConfigDict(frozen=True)

    id: int = Field(..., description="Stable identifier from the image index")
    path: str = Field(..., description="Storage path, relative to the user's storage root")
    timestamp: datetime = Field(..., description="Capture time as a naive UTC instant")
    lat: float | None = Field(default=None, ge=-90, le=90, description="Latitude in degrees")
    lon: float | None = Field(default=None, ge=-180, le=180, description="Longitude in degrees")
    width: int | None = Field(default=None, ge=0, description="Pixel width")
    height: int | None = Field(default=None, ge=0, description="Pixel height")
    has_faces: bool | None = Field(default=None, description="Whether faces were detected")
    camera_make: str | None = Field(default=None, description="Camera make from EXIF")
    camera_model: str | None = Field(default=None, description="Camera model from EXIF")

    @field_validator("timestamp")
    @classmethod
    def _normalize_timestamp(cls, value: datetime) -> datetime:
        if value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    @model_validator(mode="after")
    def _check_coordinates(self) -> MediaItem:
        if (self.lat is None) != (self.lon is None):
            raise ValueError("lat and lon must be both set or both unset")
        return self

    @property
    def has_location(self) -> bool:
        return self.lat is not None and self.lon is not None

    @property
    def sort_key(self) -> tuple[datetime, int]:
        return (self.timestamp, self.id)

    @property
    def is_portrait(self) -> bool:
        return bool(self.width and self.height and self.height > self.width)


def utc_now() -> datetime:
    """Current time as a naive UTC instant, the form every timestamp is kept in."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def sort_items(items: list[MediaItem]) -> list[MediaItem]:
    """Return items in capture order, ties broken by id."""
    return sorted(items, key=lambda item: item.sort_key)


class Cluster(BaseModel):
    """A journey: a contiguous run of time-ordered items from one trip."""

    items: list[MediaItem] = Field(..., min_length=1, description="Items in capture order")
    place_name: str | None = Field(default=None, description="Resolved place name")

    @property
    def start(self) -> datetime:
        return self.items[0].timestamp

    @property
    def end(self) -> datetime:
        return self.items[-1].timestamp

    @property
    def size(self) -> int:
        return len(self.items)

    @property
    def has_geolocated_item(self) -> bool:
        return any(item.has_location for item in self.items)

    @property
    def geolocated_items(self) -> list[MediaItem]:
        return [item for item in self.items if item.has_location]


class HomeSource(str, Enum):
    """Where a home location came from."""

    PROVIDED = "provided"
    STORED = "stored"
    DETECTED = "detected"
    NONE = "none"


class HomeLocation(BaseModel):
    """A user's home, used to switch between near and away thresholds."""

    lat: float = Field(..., ge=-90, le=90)
    lon: float = Field(..., ge=-180, le=180)
    radius_km: float = Field(default=50.0, gt=0, description="Radius counted as near home")
    name: str | None = Field(default=None, description="Display name")

    def to_blob(self) -> dict:
        """Serialize to the stored settings blob."""
        return {"lat": self.lat, "lon": self.lon, "radiusKm": self.radius_km, "name": self.name}

    @classmethod
    def from_blob(cls, blob: dict) -> HomeLocation:
        """Parse a stored settings blob."""
        return cls(
            lat=blob["lat"],
            lon=blob["lon"],
            radius_km=blob.get("radiusKm", blob.get("radius_km", 50.0)),
            name=blob.get("name"),
        )


class ClusterBoundaryRecord(BaseModel):
    """Persisted boundary of the cluster that produced an album."""

    user_id: str
    album_id: int
    name: str = ""
    place: str | None = None
    start: datetime | None = None
    end: datetime | None = None


class AlbumInfo(BaseModel):
    """An album as listed by the album store."""

    album_id: int
    name: str
    place: str | None = None
    item_count: int = 0


class CreatedAlbum(BaseModel):
    """An album materialized from a cluster during a run."""

    album_id: int
    name: str
    place: str | None = None
    start: datetime
    end: datetime
    item_count: int


class ClusteringRunResult(BaseModel):
    """Outcome of one clustering run for one user."""

    user_id: str
    clusters_found: int = Field(default=0, description="Clusters produced by the clusterer")
    albums: list[CreatedAlbum] = Field(default_factory=list, description="Albums created")
    skipped_too_small: int = 0
    skipped_no_location: int = 0
    skipped_recent: int = 0
    skipped_failed: int = 0
    processed_items: int = Field(default=0, description="Items considered after the boundary filter")
    low_water_mark: datetime | None = None
    home: HomeLocation | None = None
    home_source: HomeSource = HomeSource.NONE
    error: str | None = Field(default=None, description="Non-fatal reason nothing was done")

    @property
    def albums_created(self) -> int:
        return len(self.albums)


class VideoSelection(BaseModel):
    """The story subset chosen for a journey video."""

    items: list[MediaItem] = Field(default_factory=list)
    cluster_index: int | None = Field(default=None, description="1-based cluster or album position")
    cluster_name: str | None = None
    location: str | None = None
    start: datetime | None = None
    end: datetime | None = None
    boost_faces: bool = False
    faces_selected: int = 0

    @property
    def selected_count(self) -> int:
        return len(self.items)


class RenderResult(BaseModel):
    """Outcome of composing a journey video."""

    path: str = Field(..., description="Local output path, or the virtual path when stored")
    stored_in_user_files: bool = False
    duration: float = Field(default=0.0, ge=0)
    segment_count: int = 0
    chunk_count: int = 0
    width: int = 0
    height: int = 0
    audio_track: str | None = None
