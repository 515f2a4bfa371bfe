"""Location interpolation: fill missing coordinates from geotagged neighbors.

An item without coordinates takes a position interpolated between the
nearest geotagged items before and after it, as long as both are close in
time and the two neighbors are close to each other (the user was standing
still or moving slowly). With only one neighbor the coordinates are copied
when that neighbor is within an hour.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from journeys.models.schema import MediaItem
from journeys.stages.geo import haversine_km

logger = logging.getLogger(__name__)

DEFAULT_MAX_GAP_SECONDS = 6 * 3600
DEFAULT_MAX_DISTANCE_KM = 1.0
SINGLE_NEIGHBOR_MAX_GAP_SECONDS = 3600


def interpolate_locations(
    items: Sequence[MediaItem],
    max_gap_seconds: float = DEFAULT_MAX_GAP_SECONDS,
    max_distance_km: float = DEFAULT_MAX_DISTANCE_KM,
) -> list[MediaItem]:
    """Fill missing coordinates on time-sorted items.

    Args:
        items: Items sorted by timestamp.
        max_gap_seconds: Maximum time to either neighbor when interpolating.
        max_distance_km: Maximum distance between the two neighbors.

    Returns:
        A new list; items that already had coordinates are passed through
        unchanged, filled items are copies.
    """
    n = len(items)
    prev_geo: list[int | None] = [None] * n
    next_geo: list[int | None] = [None] * n

    last: int | None = None
    for i, item in enumerate(items):
        prev_geo[i] = last
        if item.has_location:
            last = i

    last = None
    for i in range(n - 1, -1, -1):
        next_geo[i] = last
        if items[i].has_location:
            last = i

    result: list[MediaItem] = []
    filled = 0

    for i, item in enumerate(items):
        if item.has_location:
            result.append(item)
            continue

        p = items[prev_geo[i]] if prev_geo[i] is not None else None
        f = items[next_geo[i]] if next_geo[i] is not None else None
        coords = _interpolate_one(item, p, f, max_gap_seconds, max_distance_km)

        if coords is None:
            result.append(item)
        else:
            result.append(item.model_copy(update={"lat": coords[0], "lon": coords[1]}))
            filled += 1

    if filled:
        logger.debug(f"Interpolated coordinates for {filled} of {n} items")
    return result


def _interpolate_one(
    item: MediaItem,
    p: MediaItem | None,
    f: MediaItem | None,
    max_gap_seconds: float,
    max_distance_km: float,
) -> tuple[float, float] | None:
    t = item.timestamp

    if p is not None and f is not None:
        before = (t - p.timestamp).total_seconds()
        after = (f.timestamp - t).total_seconds()
        if before > max_gap_seconds or after > max_gap_seconds:
            return None
        if haversine_km(p.lat, p.lon, f.lat, f.lon) > max_distance_km:
            return None

        span = (f.timestamp - p.timestamp).total_seconds()
        if span < 0:
            return None
        fraction = 0.5 if span == 0 else before / span
        return (
            p.lat + (f.lat - p.lat) * fraction,
            p.lon + (f.lon - p.lon) * fraction,
        )

    neighbor = p if p is not None else f
    if neighbor is None:
        return None
    if abs((t - neighbor.timestamp).total_seconds()) <= SINGLE_NEIGHBOR_MAX_GAP_SECONDS:
        return (neighbor.lat, neighbor.lon)
    return None
