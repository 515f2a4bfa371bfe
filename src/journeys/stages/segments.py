"""Segment planning: turn selected items into an ordered render plan.

Portraits become full-frame Ken Burns stills. Landscapes are grouped three at
a time into sliding stacks, interleaved after every four portraits. Stills
with a valid companion motion clip become motion segments.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Union

from PIL import Image, UnidentifiedImageError

from journeys.config import Orientation

logger = logging.getLogger(__name__)

PORTRAITS_PER_STACK = 4
STACK_SIZE = 3

MOTION_MIN_BYTES = 10 * 1024
MOTION_HEADER_BYTES = 64
MOTION_BRAND_BYTES = 4
MOTION_BRANDS = {b"isom", b"mp42", b"iso5", b"avc1"}
MOTION_SOURCE_SUFFIXES = {".jpg", ".jpeg", ".heic"}

ORIENTATION_TAG = 0x0112
ROTATED_ORIENTATIONS = {5, 6, 7, 8}


@dataclass(frozen=True)
class PreparedMedia:
    """A selected item staged as a local file."""

    path: Path
    width: int
    height: int
    item_id: int | None = None

    @property
    def is_portrait(self) -> bool:
        return self.height > self.width


@dataclass(frozen=True)
class Still:
    """A single image rendered with a slow pan/zoom."""

    image_path: Path


@dataclass(frozen=True)
class Stack:
    """Three landscape images stacked in rows that slide in and out."""

    image_paths: tuple[Path, Path, Path]


@dataclass(frozen=True)
class Motion:
    """A short clip shown in place of a still."""

    video_path: Path
    source_image: Path | None = None


RenderSegment = Union[Still, Stack, Motion]


def probe_image_size(path: str | Path) -> tuple[int, int]:
    """Read an image's displayed size, honoring the EXIF orientation.

    Returns:
        ``(width, height)``, or ``(0, 0)`` if the file is not a readable image.
    """
    try:
        with Image.open(path) as img:
            width, height = img.size
            if img.getexif().get(ORIENTATION_TAG) in ROTATED_ORIENTATIONS:
                width, height = height, width
            return width, height
    except (UnidentifiedImageError, OSError) as e:
        logger.warning(f"Cannot read image size of {path}: {e}")
        return 0, 0


def is_valid_motion_clip(path: str | Path) -> bool:
    """Check that a file looks like a playable MP4 clip.

    The file must be at least 10 KB and carry an ``ftyp`` box with a known
    brand within its first 64 bytes; the brand itself may run past them.
    """
    path = Path(path)
    try:
        if path.stat().st_size < MOTION_MIN_BYTES:
            return False
        with open(path, "rb") as f:
            header = f.read(MOTION_HEADER_BYTES + MOTION_BRAND_BYTES)
    except OSError:
        return False

    pos = header.find(b"ftyp", 0, MOTION_HEADER_BYTES)
    if pos < 0:
        return False
    brand = header[pos + 4 : pos + 4 + MOTION_BRAND_BYTES]
    return brand in MOTION_BRANDS


def find_motion_companion(image_path: str | Path) -> Path | None:
    """Return the same-named ``.mp4`` beside an image if it validates."""
    image_path = Path(image_path)
    if image_path.suffix.lower() not in MOTION_SOURCE_SUFFIXES:
        return None
    for suffix in (".mp4", ".MP4"):
        candidate = image_path.with_suffix(suffix)
        if candidate.exists() and is_valid_motion_clip(candidate):
            return candidate
    return None


def _move_last_still_to_end(segments: list[RenderSegment]) -> None:
    """End the plan on a frozen frame when the last segment is not a still."""
    if not segments or isinstance(segments[-1], Still):
        return

    preferred = (Still,) if isinstance(segments[-1], Motion) else (Still, Motion)
    for kinds in (preferred[:1], preferred):
        for i in range(len(segments) - 2, -1, -1):
            if isinstance(segments[i], kinds):
                segments.append(segments.pop(i))
                return


def plan_segments(
    media: Sequence[PreparedMedia],
    include_motion: bool = True,
    orientation: Orientation = Orientation.PORTRAIT,
) -> list[RenderSegment]:
    """Plan the render segments for a story.

    Args:
        media: Selected items in capture order, staged locally.
        include_motion: Substitute companion motion clips for stills.
        orientation: Portrait plans interleave stills and stacks; landscape
            plans use only landscape images, each as a still.

    Returns:
        Segments in display order.
    """
    if orientation == Orientation.LANDSCAPE:
        segments: list[RenderSegment] = [Still(m.path) for m in media if not m.is_portrait]
    else:
        segments = _plan_portrait(media)

    if include_motion:
        segments = [_substitute_motion(s) for s in segments]

    _move_last_still_to_end(segments)

    kinds = {"still": 0, "stack": 0, "motion": 0}
    for segment in segments:
        if isinstance(segment, Still):
            kinds["still"] += 1
        elif isinstance(segment, Stack):
            kinds["stack"] += 1
        elif isinstance(segment, Motion):
            kinds["motion"] += 1
        else:
            raise TypeError(f"Unknown segment type: {type(segment).__name__}")
    logger.info(
        f"Planned {len(segments)} segments "
        f"({kinds['still']} stills, {kinds['stack']} stacks, {kinds['motion']} motion)"
    )
    return segments


def _plan_portrait(media: Sequence[PreparedMedia]) -> list[RenderSegment]:
    portraits = [m for m in media if m.is_portrait]
    landscapes = [m for m in media if not m.is_portrait]

    segments: list[RenderSegment] = []
    next_portrait = 0
    next_landscape = 0
    since_stack = 0

    if not portraits:
        if len(landscapes) >= STACK_SIZE:
            segments.append(_stack(landscapes[:STACK_SIZE]))
        return segments

    while next_portrait < len(portraits) or len(landscapes) - next_landscape >= STACK_SIZE:
        if next_portrait < len(portraits):
            segments.append(Still(portraits[next_portrait].path))
            next_portrait += 1
            since_stack += 1

        portraits_done = next_portrait >= len(portraits)
        landscapes_left = len(landscapes) - next_landscape
        if (since_stack >= PORTRAITS_PER_STACK or portraits_done) and landscapes_left >= STACK_SIZE:
            segments.append(_stack(landscapes[next_landscape : next_landscape + STACK_SIZE]))
            next_landscape += STACK_SIZE
            since_stack = 0

    return segments


def _stack(group: Sequence[PreparedMedia]) -> Stack:
    return Stack((group[0].path, group[1].path, group[2].path))


def _substitute_motion(segment: RenderSegment) -> RenderSegment:
    if not isinstance(segment, Still):
        return segment
    companion = find_motion_companion(segment.image_path)
    if companion is None:
        return segment
    return Motion(companion, source_image=segment.image_path)
