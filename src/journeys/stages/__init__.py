"""Processing stages for Journeys.

Clustering stages:
- geo: Great-circle distance
- interpolate: Filling missing coordinates from neighbors
- cluster: Flat and home-aware time/distance clustering
- home: Home detection and resolution
- places: Place-name vote and album naming

Video stages:
- story: Picking the items of a journey video
- media: Staging files and extracting motion photo clips
- segments: Planning stills, stacks and motion clips
- title: Title overlay text
- music: Background track pool
- compose: Chunked rendering, merging and audio mux
"""

__all__ = [
    "geo",
    "interpolate",
    "cluster",
    "home",
    "places",
    "story",
    "media",
    "segments",
    "title",
    "music",
    "compose",
]
