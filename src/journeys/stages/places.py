"""Place resolution and album naming for clusters."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime

from journeys.models.schema import Cluster, MediaItem
from journeys.store.base import PlaceResolver

logger = logging.getLogger(__name__)

# Administrative levels up to city; finer levels are districts and suburbs
MAX_PLACE_ADMIN_LEVEL = 8


def _place_votes(
    items: Sequence[MediaItem], resolver: PlaceResolver
) -> tuple[dict[tuple[str, int], int], int]:
    """Count, per (name, admin level), how many geotagged items fall inside it."""
    votes: dict[tuple[str, int], int] = {}
    lookups: dict[tuple[float, float], list[tuple[int, int, str]]] = {}
    geolocated = 0

    for item in items:
        if item.lat is None or item.lon is None:
            continue
        geolocated += 1

        key = (round(item.lat, 4), round(item.lon, 4))
        if key not in lookups:
            lookups[key] = resolver.query(item.lat, item.lon)

        seen: set[tuple[str, int]] = set()
        for _place_id, level, name in lookups[key]:
            if level > MAX_PLACE_ADMIN_LEVEL or not name:
                continue
            seen.add((name, level))
        for place in seen:
            votes[place] = votes.get(place, 0) + 1

    return votes, geolocated


def resolve_place_name(
    items: Sequence[MediaItem],
    resolver: PlaceResolver | None,
    prefer_broader: bool = True,
) -> str | None:
    """Pick a display place for a group of items by majority vote.

    With ``prefer_broader`` the broadest administrative area that contains at
    least half of the geotagged items wins; if no area reaches half, the
    broadest area seen at all is used. Otherwise the most common area wins,
    ties going to the broader one.

    Args:
        items: Items to vote.
        resolver: Reverse geocoder; None disables place names.
        prefer_broader: Use the broadest-majority rule.

    Returns:
        The place name, or None if nothing resolves.
    """
    if resolver is None:
        return None

    votes, geolocated = _place_votes(items, resolver)
    if not votes:
        return None

    # Lower admin levels are broader (2 = country)
    ordered = sorted(votes.items(), key=lambda kv: (kv[0][1], -kv[1]))

    if prefer_broader:
        threshold = geolocated / 2
        for (name, _level), count in ordered:
            if count >= threshold:
                return name
        return ordered[0][0][0]

    best = max(ordered, key=lambda kv: kv[1])
    return best[0][0]


def format_day_range(start: datetime, end: datetime) -> str:
    """Format the days a journey spans, e.g. ``3``, ``3-7`` or ``28 Feb-3 Mar``."""
    if start.date() == end.date():
        return f"{start.day}"
    if (start.year, start.month) == (end.year, end.month):
        return f"{start.day}-{end.day}"
    return f"{start.day} {start.strftime('%b')}-{end.day} {end.strftime('%b')}"


def format_album_name(cluster: Cluster, place: str | None, index: int) -> str:
    """Build an album name for a cluster.

    Args:
        cluster: The cluster being materialized.
        place: Resolved place name, if any.
        index: 1-based position among the clusters accepted in this run.

    Returns:
        ``"<place> <Month Year> (<days>)"`` or ``"Journey <n> <Month Year> (<days>)"``.
    """
    month_year = cluster.start.strftime("%B %Y")
    days = format_day_range(cluster.start, cluster.end)
    if place:
        return f"{place} {month_year} ({days})"
    return f"Journey {index} {month_year} ({days})"
