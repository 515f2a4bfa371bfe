"""Data models for Journeys."""

from journeys.models.schema import (
    Cluster,
    ClusterBoundaryRecord,
    ClusteringRunResult,
    HomeLocation,
    HomeSource,
    MediaItem,
    RenderResult,
    VideoSelection,
)

__all__ = [
    "Cluster",
    "ClusterBoundaryRecord",
    "ClusteringRunResult",
    "HomeLocation",
    "HomeSource",
    "MediaItem",
    "RenderResult",
    "VideoSelection",
]
