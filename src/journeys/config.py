"""Configuration and settings for Journeys."""

from __future__ import annotations

import json
import os
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from journeys.models.schema import HomeLocation

if TYPE_CHECKING:
    from journeys.store.base import ConfigStore


class Orientation(str, Enum):
    """Output canvas orientation for journey videos."""

    PORTRAIT = "portrait"
    LANDSCAPE = "landscape"


class ThresholdPair(BaseModel):
    """Time/distance split thresholds."""

    time_gap_seconds: int = Field(..., gt=0, description="Maximum gap between items in seconds")
    max_distance_km: float = Field(..., gt=0, description="Maximum distance from the cluster anchor")


class ClusterThresholds(BaseModel):
    """Near-home and away-from-home thresholds for home-aware clustering."""

    near: ThresholdPair = Field(
        default_factory=lambda: ThresholdPair(time_gap_seconds=21600, max_distance_km=3.0),
        description="Thresholds for items within the home radius (day trips)",
    )
    away: ThresholdPair = Field(
        default_factory=lambda: ThresholdPair(time_gap_seconds=129600, max_distance_km=50.0),
        description="Thresholds for items outside the home radius (travel)",
    )


class ClusteringOptions(BaseModel):
    """Options for one clustering run."""

    max_time_gap: int = Field(default=86400, gt=0, description="Flat-mode time gap in seconds")
    max_distance_km: float = Field(default=100.0, gt=0, description="Flat-mode distance in km")
    min_cluster_size: int = Field(default=3, ge=1, description="Smallest cluster turned into an album")
    home_aware: bool = Field(default=True, description="Use near/away thresholds around home")
    home: HomeLocation | None = Field(default=None, description="Explicit home, overrides stored/detected")
    thresholds: ClusterThresholds | None = Field(
        default=None, description="Near/away thresholds, defaults when unset"
    )
    from_scratch: bool = Field(
        default=False, description="Delete tracked albums and re-cluster the whole library"
    )
    recent_cutoff_days: int = Field(
        default=0, ge=0, description="Skip clusters ending within the last N days (0 disables)"
    )
    include_secondary_storage: bool = Field(
        default=False, description="Also index secondary mounted storage"
    )
    interpolate: bool = Field(default=True, description="Fill missing coordinates from neighbors")
    interpolation_max_gap_seconds: int = Field(default=21600, gt=0)
    interpolation_max_distance_km: float = Field(default=1.0, gt=0)

    @classmethod
    def daily(cls) -> ClusteringOptions:
        """Options used by the scheduled daily run.

        Home awareness is left unset so each user's stored setting applies.
        """
        return cls(
            max_time_gap=24 * 3600,
            max_distance_km=50.0,
            min_cluster_size=3,
            recent_cutoff_days=5,
        )


class VideoOptions(BaseModel):
    """Options for rendering a journey video."""

    duration_per_image: float = Field(default=2.5, gt=0, description="Seconds each segment is held")
    width: int = Field(default=1920, ge=320, description="Long edge of the output in pixels")
    fps: int = Field(default=30, ge=1, le=120, description="Output frame rate")
    min_gap_seconds: int = Field(default=5, ge=0, description="Burst de-duplication gap")
    max_images: int = Field(default=80, ge=1, description="Maximum items in the story")
    include_audio: bool = Field(default=True, description="Mix in a background track")
    include_motion: bool = Field(default=True, description="Use companion motion clips")
    show_title: bool = Field(default=True, description="Overlay the journey name")
    boost_faces: bool = Field(default=True, description="Prefer items with detected faces")
    orientation: Orientation = Field(default=Orientation.PORTRAIT, description="Canvas orientation")
    renderer_verbose: bool = Field(default=False, description="Pass renderer log output through")


class JourneysConfig(BaseModel):
    """Application-level configuration for Journeys."""

    data_dir: str = Field(default="./journeys_data", description="Directory for the state database")
    storage_root: str = Field(
        default="./journeys_data/files", description="Root of per-user managed storage"
    )
    secondary_roots: list[str] = Field(
        default_factory=list, description="Secondary mounted storage roots shared by all users"
    )
    music_dir: str | None = Field(default=None, description="Directory of local background tracks")
    music_urls: list[str] = Field(default_factory=list, description="Remote background tracks")
    music_cache_dir: str | None = Field(default=None, description="Cache for downloaded tracks")
    ffmpeg_binary: str = Field(default="ffmpeg")
    ffprobe_binary: str = Field(default="ffprobe")
    title_font: str = Field(
        default="/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",
        description="Font file used for the title overlay",
    )
    notification_link: str = Field(
        default="/apps/photos/albums", description="Deep link attached to run notifications"
    )

    @property
    def database_path(self) -> Path:
        return Path(self.data_dir) / "journeys.db"

    def get_music_cache_dir(self) -> Path:
        """Get the track download cache, defaulting to a folder in the data dir."""
        if self.music_cache_dir is not None:
            return Path(self.music_cache_dir)
        return Path(self.data_dir) / "audio-cache"

    @classmethod
    def from_env(cls, **overrides: object) -> JourneysConfig:
        """Build a config from ``JOURNEYS_*`` environment variables.

        Explicit keyword overrides win over the environment; ``None``
        overrides are ignored.
        """
        values: dict[str, object] = {}
        env = os.environ

        if "JOURNEYS_DATA_DIR" in env:
            values["data_dir"] = env["JOURNEYS_DATA_DIR"]
        if "JOURNEYS_STORAGE_ROOT" in env:
            values["storage_root"] = env["JOURNEYS_STORAGE_ROOT"]
        if "JOURNEYS_SECONDARY_ROOTS" in env:
            values["secondary_roots"] = [p for p in env["JOURNEYS_SECONDARY_ROOTS"].split(os.pathsep) if p]
        if "JOURNEYS_MUSIC_DIR" in env:
            values["music_dir"] = env["JOURNEYS_MUSIC_DIR"]
        if "JOURNEYS_MUSIC_URLS" in env:
            values["music_urls"] = [u for u in env["JOURNEYS_MUSIC_URLS"].split() if u]
        if "JOURNEYS_FFMPEG" in env:
            values["ffmpeg_binary"] = env["JOURNEYS_FFMPEG"]
        if "JOURNEYS_FFPROBE" in env:
            values["ffprobe_binary"] = env["JOURNEYS_FFPROBE"]
        if "JOURNEYS_TITLE_FONT" in env:
            values["title_font"] = env["JOURNEYS_TITLE_FONT"]

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


class UserSettings(BaseModel):
    """Per-user settings persisted in the config store."""

    home: HomeLocation | None = None
    thresholds: ClusterThresholds | None = None
    home_aware: bool = True
    show_video_title: bool = True
    boost_faces: bool = True
    include_secondary_storage: bool = False


# Config store keys for each UserSettings field
SETTING_KEYS = {
    "home": "home",
    "thresholds": "thresholds",
    "home_aware": "homeAware",
    "show_video_title": "showVideoTitle",
    "boost_faces": "boostFaces",
    "include_secondary_storage": "includeSecondaryStorage",
}


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


def load_user_settings(store: ConfigStore, user_id: str) -> UserSettings:
    """Load a user's settings, falling back to defaults for unset or invalid keys.

    Args:
        store: Config store holding per-user key/value settings.
        user_id: User to load.

    Returns:
        The user's settings.
    """
    settings = UserSettings()

    raw_home = store.get_value(user_id, SETTING_KEYS["home"])
    if raw_home:
        try:
            settings.home = HomeLocation.from_blob(json.loads(raw_home))
        except (ValueError, KeyError, TypeError):
            settings.home = None

    raw_thresholds = store.get_value(user_id, SETTING_KEYS["thresholds"])
    if raw_thresholds:
        try:
            settings.thresholds = ClusterThresholds.model_validate_json(raw_thresholds)
        except ValueError:
            settings.thresholds = None

    for field_name in ("home_aware", "show_video_title", "boost_faces", "include_secondary_storage"):
        raw = store.get_value(user_id, SETTING_KEYS[field_name])
        if raw is not None and raw != "":
            setattr(settings, field_name, _parse_bool(raw))

    return settings


def save_home(store: ConfigStore, user_id: str, home: HomeLocation) -> None:
    """Persist a user's home location blob."""
    store.set_value(user_id, SETTING_KEYS["home"], json.dumps(home.to_blob()))


def save_user_flag(store: ConfigStore, user_id: str, field_name: str, value: bool) -> None:
    """Persist one boolean user setting.

    Raises:
        KeyError: If ``field_name`` is not a boolean setting.
    """
    if field_name not in ("home_aware", "show_video_title", "boost_faces", "include_secondary_storage"):
        raise KeyError(f"Unknown boolean setting: {field_name}")
    store.set_value(user_id, SETTING_KEYS[field_name], "true" if value else "false")


def apply_clustering_settings(options: ClusteringOptions, settings: UserSettings) -> ClusteringOptions:
    """Fill options the caller left at their defaults from a user's settings."""
    update: dict[str, object] = {}
    if "home_aware" not in options.model_fields_set:
        update["home_aware"] = settings.home_aware
    if options.thresholds is None and settings.thresholds is not None:
        update["thresholds"] = settings.thresholds
    if "include_secondary_storage" not in options.model_fields_set:
        update["include_secondary_storage"] = settings.include_secondary_storage
    return options.model_copy(update=update)


def apply_video_settings(options: VideoOptions, settings: UserSettings) -> VideoOptions:
    """Fill video options the caller left at their defaults from a user's settings."""
    update: dict[str, object] = {}
    if "show_title" not in options.model_fields_set:
        update["show_title"] = settings.show_video_title
    if "boost_faces" not in options.model_fields_set:
        update["boost_faces"] = settings.boost_faces
    return options.model_copy(update=update)
