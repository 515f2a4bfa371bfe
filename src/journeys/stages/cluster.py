"""Journey clustering: split a time-ordered item stream into trips.

Flat mode starts a new cluster whenever the time gap to the previous item or
the distance to the cluster's last geotagged item exceeds a threshold.
Home-aware mode first cuts the timeline into runs of items near home and
away from home, then flat-clusters each run with its own thresholds.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from journeys.config import ClusterThresholds, ThresholdPair
from journeys.models.schema import Cluster, HomeLocation, MediaItem
from journeys.stages.geo import haversine_km

logger = logging.getLogger(__name__)


class SplitReason(str, Enum):
    """Why a cluster boundary was placed."""

    TIME_GAP = "time_gap"
    DISTANCE = "distance"
    SEGMENT_CHANGE = "segment_change"


class HomeTag(str, Enum):
    """Whether an item was taken near home or away."""

    NEAR = "near"
    AWAY = "away"


@dataclass
class SplitEvent:
    """One boundary decision, reported to a :class:`ClusterEventSink`."""

    reason: SplitReason
    index: int
    previous: MediaItem | None
    current: MediaItem
    time_gap_seconds: float | None
    distance_km: float | None
    thresholds: ThresholdPair | None
    tag: HomeTag | None = None


class ClusterEventSink(Protocol):
    """Observer for clustering split decisions."""

    def on_split(self, event: SplitEvent) -> None: ...


class LoggingEventSink:
    """Event sink that logs every split at DEBUG level."""

    def __init__(self, log: logging.Logger | None = None) -> None:
        self.log = log or logger

    def on_split(self, event: SplitEvent) -> None:
        gap = f"{event.time_gap_seconds:.0f}s" if event.time_gap_seconds is not None else "n/a"
        dist = f"{event.distance_km:.2f}km" if event.distance_km is not None else "n/a"
        tag = f" [{event.tag.value}]" if event.tag else ""
        self.log.debug(
            f"Split{tag} at #{event.index} ({event.current.timestamp}): "
            f"{event.reason.value}, gap={gap}, distance={dist}"
        )


def _seconds_between(a: MediaItem, b: MediaItem) -> float | None:
    """Absolute time gap in seconds, or None if either timestamp is unusable."""
    try:
        return abs((b.timestamp - a.timestamp).total_seconds())
    except (TypeError, AttributeError, OverflowError):
        return None


def _has_location(item: MediaItem) -> bool:
    return item.lat is not None and item.lon is not None


def cluster_items(
    items: Sequence[MediaItem],
    max_time_gap: float = 86400,
    max_distance_km: float = 100.0,
    sink: ClusterEventSink | None = None,
    _tag: HomeTag | None = None,
    _offset: int = 0,
) -> list[Cluster]:
    """Split time-sorted items into clusters.

    Args:
        items: Items sorted by timestamp.
        max_time_gap: Maximum seconds between consecutive items in a cluster.
        max_distance_km: Maximum distance from the cluster's last geotagged item.
        sink: Optional observer for split decisions.

    Returns:
        Clusters whose concatenation is exactly ``items``.
    """
    thresholds = None
    if sink is not None:
        thresholds = ThresholdPair.model_construct(
            time_gap_seconds=max_time_gap, max_distance_km=max_distance_km
        )
    clusters: list[Cluster] = []
    current: list[MediaItem] = []
    prev: MediaItem | None = None
    prev_geo: MediaItem | None = None

    for i, item in enumerate(items):
        if prev is not None:
            gap = _seconds_between(prev, item)
            distance = None
            if _has_location(item) and prev_geo is not None:
                distance = haversine_km(prev_geo.lat, prev_geo.lon, item.lat, item.lon)

            reason = None
            if gap is not None and gap > max_time_gap:
                reason = SplitReason.TIME_GAP
            elif distance is not None and distance > max_distance_km:
                reason = SplitReason.DISTANCE

            if reason is not None:
                clusters.append(Cluster(items=current))
                current = []
                prev_geo = None
                if sink is not None:
                    sink.on_split(
                        SplitEvent(
                            reason=reason,
                            index=_offset + i,
                            previous=prev,
                            current=item,
                            time_gap_seconds=gap,
                            distance_km=distance,
                            thresholds=thresholds,
                            tag=_tag,
                        )
                    )

        current.append(item)
        if _has_location(item):
            prev_geo = item
        prev = item

    if current:
        clusters.append(Cluster(items=current))
    return clusters


def tag_items(items: Sequence[MediaItem], home: HomeLocation) -> list[HomeTag]:
    """Tag each item near or away from home.

    Items without coordinates inherit the previous item's tag; a leading
    run of such items counts as near.
    """
    tags: list[HomeTag] = []
    last = HomeTag.NEAR
    for item in items:
        if _has_location(item):
            distance = haversine_km(home.lat, home.lon, item.lat, item.lon)
            last = HomeTag.NEAR if distance <= home.radius_km else HomeTag.AWAY
        tags.append(last)
    return tags


def cluster_items_home_aware(
    items: Sequence[MediaItem],
    home: HomeLocation | None,
    thresholds: ClusterThresholds | None = None,
    sink: ClusterEventSink | None = None,
) -> list[Cluster]:
    """Cluster with near-home and away thresholds.

    Args:
        items: Items sorted by timestamp.
        home: The user's home, or None to flat-cluster with the away thresholds.
        thresholds: Near/away thresholds; defaults when None.
        sink: Optional observer for split decisions.

    Returns:
        Clusters in original order; no cluster spans a near/away change.
    """
    thresholds = thresholds or ClusterThresholds()

    if home is None:
        return cluster_items(
            items,
            max_time_gap=thresholds.away.time_gap_seconds,
            max_distance_km=thresholds.away.max_distance_km,
            sink=sink,
        )

    if not items:
        return []

    tags = tag_items(items, home)
    clusters: list[Cluster] = []
    start = 0

    for i in range(1, len(items) + 1):
        if i < len(items) and tags[i] == tags[start]:
            continue

        tag = tags[start]
        pair = thresholds.near if tag == HomeTag.NEAR else thresholds.away
        if start > 0 and sink is not None:
            sink.on_split(
                SplitEvent(
                    reason=SplitReason.SEGMENT_CHANGE,
                    index=start,
                    previous=items[start - 1],
                    current=items[start],
                    time_gap_seconds=_seconds_between(items[start - 1], items[start]),
                    distance_km=None,
                    thresholds=pair,
                    tag=tag,
                )
            )
        clusters.extend(
            cluster_items(
                items[start:i],
                max_time_gap=pair.time_gap_seconds,
                max_distance_km=pair.max_distance_km,
                sink=sink,
                _tag=tag,
                _offset=start,
            )
        )
        start = i

    logger.debug(
        f"Home-aware clustering: {len(items)} items, "
        f"{sum(1 for t in tags if t == HomeTag.AWAY)} away, {len(clusters)} clusters"
    )
    return clusters
