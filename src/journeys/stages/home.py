"""Home location detection and resolution."""

from __future__ import annotations

import logging
from collections.abc import Sequence

import numpy as np

from journeys.config import load_user_settings, save_home
from journeys.models.schema import HomeLocation, HomeSource, MediaItem
from journeys.stages.places import resolve_place_name
from journeys.store.base import ConfigStore, PlaceResolver

logger = logging.getLogger(__name__)

DEFAULT_HOME_RADIUS_KM = 50.0
BUCKET_DECIMALS = 1


def detect_home(
    items: Sequence[MediaItem],
    resolver: PlaceResolver | None = None,
    radius_km: float = DEFAULT_HOME_RADIUS_KM,
) -> HomeLocation | None:
    """Guess a home location from where most photos were taken.

    Coordinates are bucketed to 0.1 degree; the home is the centroid of the
    items in the densest bucket.

    Args:
        items: Items to inspect; only geotagged ones count.
        resolver: Optional reverse geocoder used to name the home.
        radius_km: Radius assigned to the detected home.

    Returns:
        The detected home, or None if no item is geotagged.
    """
    geotagged = [item for item in items if item.lat is not None and item.lon is not None]
    if not geotagged:
        return None

    coords = np.array([(item.lat, item.lon) for item in geotagged], dtype=float)
    buckets = np.round(coords, BUCKET_DECIMALS)
    unique, inverse, counts = np.unique(buckets, axis=0, return_inverse=True, return_counts=True)
    inverse = np.asarray(inverse).reshape(-1)

    densest = int(np.argmax(counts))
    members = inverse == densest
    lat, lon = coords[members].mean(axis=0)

    bucket_items = [item for item, member in zip(geotagged, members) if member]
    name = resolve_place_name(bucket_items, resolver) if resolver is not None else None

    logger.info(
        f"Detected home at ({lat:.4f}, {lon:.4f}) from {int(counts[densest])} of "
        f"{len(geotagged)} geotagged items" + (f" ({name})" if name else "")
    )
    return HomeLocation(lat=float(lat), lon=float(lon), radius_km=radius_km, name=name)


def resolve_home(
    user_id: str,
    items: Sequence[MediaItem],
    provided: HomeLocation | None,
    config_store: ConfigStore | None,
    resolver: PlaceResolver | None = None,
) -> tuple[HomeLocation | None, HomeSource]:
    """Resolve the home to use for a run.

    Precedence is an explicitly provided home, then the stored one, then a
    detected one. A detected home is stored so detection only runs once.

    Returns:
        ``(home, source)``; home is None when nothing could be resolved.
    """
    if provided is not None:
        return provided, HomeSource.PROVIDED

    if config_store is not None:
        stored = load_user_settings(config_store, user_id).home
        if stored is not None:
            return stored, HomeSource.STORED

    detected = detect_home(items, resolver)
    if detected is None:
        return None, HomeSource.NONE

    if config_store is not None:
        save_home(config_store, user_id, detected)
        logger.info(f"Stored detected home for {user_id}")
    return detected, HomeSource.DETECTED
