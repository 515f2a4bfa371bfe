"""Story selection: pick the items that make up a journey video.

Bursts of near-identical shots are thinned first, then the remainder is
sampled evenly across the journey so the video covers the whole trip. With
face boost, each sample may shift up to two positions to land on a photo
with people in it.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from journeys.models.schema import MediaItem, sort_items

logger = logging.getLogger(__name__)

DEFAULT_MIN_GAP_SECONDS = 5
DEFAULT_MAX_IMAGES = 80
FACE_WINDOW = 2
BASE_SCORE = 1.0
FACE_BONUS = 2.0


@dataclass
class StorySelection:
    """Items chosen for a story plus face-boost bookkeeping."""

    items: list[MediaItem]
    candidates: int
    faces_selected: int = 0

    @property
    def selected_count(self) -> int:
        return len(self.items)


def dedupe_bursts(items: Sequence[MediaItem], min_gap_seconds: float) -> list[MediaItem]:
    """Keep an item only if ``min_gap_seconds`` passed since the last kept one."""
    kept: list[MediaItem] = []
    for item in items:
        if not kept or (item.timestamp - kept[-1].timestamp).total_seconds() >= min_gap_seconds:
            kept.append(item)
    return kept


def even_indices(count: int, n: int) -> list[int]:
    """Evenly spaced indices ``floor(i * (count - 1) / (n - 1))`` for ``i < n``."""
    if count <= 0 or n <= 0:
        return []
    return [(i * (count - 1)) // max(1, n - 1) for i in range(n)]


def _score(item: MediaItem) -> float:
    return BASE_SCORE + (FACE_BONUS if item.has_faces else 0.0)


def face_boosted_indices(candidates: Sequence[MediaItem], n: int) -> list[int]:
    """Even sampling where each pick may move within +-2 to an item with faces.

    Ties go to the position closest to the even-sampling target. An index
    already picked is only reused when its whole window is taken. When
    ``n`` covers every candidate, all of them are returned.
    """
    count = len(candidates)
    if n >= count:
        return list(range(count))

    used: set[int] = set()
    picks: list[int] = []

    for target in even_indices(count, n):
        lo = max(0, target - FACE_WINDOW)
        hi = min(count - 1, target + FACE_WINDOW)
        window = range(lo, hi + 1)
        unused = [j for j in window if j not in used]
        pool = unused or list(window)

        best = min(pool, key=lambda j: (-_score(candidates[j]), abs(j - target), j))
        picks.append(best)
        used.add(best)

    return picks


def select_story(
    items: Sequence[MediaItem],
    min_gap_seconds: float = DEFAULT_MIN_GAP_SECONDS,
    max_images: int = DEFAULT_MAX_IMAGES,
    boost_faces: bool = False,
) -> StorySelection:
    """Select the items of a journey video.

    Args:
        items: One cluster's items, any order.
        min_gap_seconds: Burst de-duplication gap.
        max_images: Maximum items to return.
        boost_faces: Prefer items with ``has_faces`` set.

    Returns:
        A StorySelection whose items are in capture order and at most
        ``max_images`` long.
    """
    ordered = sort_items(list(items))
    candidates = dedupe_bursts(ordered, min_gap_seconds)
    if not candidates:
        candidates = ordered
    if not candidates:
        return StorySelection(items=[], candidates=0)

    n = min(max_images, len(candidates))
    if boost_faces:
        indices = face_boosted_indices(candidates, n)
    else:
        indices = even_indices(len(candidates), n)

    chosen = sorted(set(indices))
    selected = [candidates[i] for i in chosen]
    faces = sum(1 for item in selected if item.has_faces)

    logger.debug(
        f"Story selection: {len(ordered)} items, {len(candidates)} after burst filter, "
        f"{len(selected)} selected"
    )
    return StorySelection(items=selected, candidates=len(candidates), faces_selected=faces)
