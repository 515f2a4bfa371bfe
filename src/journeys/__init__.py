"""Journeys: discover trips in a photo timeline and render them as highlight videos."""

from journeys.config import ClusteringOptions, JourneysConfig, VideoOptions
from journeys.models.schema import Cluster, ClusteringRunResult, HomeLocation, MediaItem, RenderResult
from journeys.orchestrator import ClusteringOrchestrator, OrchestratorError
from journeys.stages.compose import ChunkedVideoComposer, CompositionError
from journeys.video import ClusterNotFoundError, ClusterVideoService, NoImagesFoundError

__version__ = "0.1.0"

__all__ = [
    "ClusteringOrchestrator",
    "ClusteringOptions",
    "ClusteringRunResult",
    "Cluster",
    "ClusterNotFoundError",
    "ClusterVideoService",
    "ChunkedVideoComposer",
    "CompositionError",
    "HomeLocation",
    "JourneysConfig",
    "MediaItem",
    "NoImagesFoundError",
    "OrchestratorError",
    "RenderResult",
    "VideoOptions",
    "__version__",
]
