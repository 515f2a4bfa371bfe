"""Media preparation: stage selected items as local files for rendering.

Files are copied into the job's private working directory under sequential
names. Motion photos (JPEGs with an embedded MP4 trailer, as written by
Google Camera) get their clip extracted to a same-named ``.mp4`` so the
segment planner can pick it up.
"""

from __future__ import annotations

import logging
import re
import shutil
from collections.abc import Sequence
from pathlib import Path

from journeys.models.schema import MediaItem
from journeys.stages.segments import PreparedMedia, is_valid_motion_clip, probe_image_size
from journeys.store.base import FileStorage, StoreError

logger = logging.getLogger(__name__)

TRAILER_SEARCH_BYTES = 32 * 1024 * 1024
XMP_SEARCH_BYTES = 256 * 1024
MOTION_BRANDS = (b"isom", b"mp42", b"iso5", b"avc1")

_MICRO_VIDEO_OFFSET = re.compile(rb'MicroVideoOffset(?:="|>)(\d+)')
_MOTION_ITEM_LENGTH = re.compile(
    rb'Item:Semantic="MotionPhoto"[^>]*?Item:Length="(\d+)"|Item:Length="(\d+)"[^>]*?Item:Semantic="MotionPhoto"'
)


class MediaPreparationError(Exception):
    """Error staging media for rendering."""

    pass


def _find_trailer_by_xmp(data: bytes) -> int | None:
    """Locate the clip start from the XMP ``MicroVideoOffset`` or ``Item:Length``."""
    head = data[:XMP_SEARCH_BYTES]
    match = _MICRO_VIDEO_OFFSET.search(head)
    if match is None:
        match = _MOTION_ITEM_LENGTH.search(head)
    if match is None:
        return None

    length = int(next(g for g in match.groups() if g))
    if length <= 0 or length >= len(data):
        return None
    start = len(data) - length
    return start if _is_ftyp_box(data, start) else None


def _is_ftyp_box(data: bytes, start: int) -> bool:
    return data[start + 4 : start + 8] == b"ftyp" and data[start + 8 : start + 12] in MOTION_BRANDS


def _find_trailer_by_scan(data: bytes) -> int | None:
    """Find the last ``ftyp`` box with a known brand in the file's tail."""
    tail_start = max(0, len(data) - TRAILER_SEARCH_BYTES)
    pos = data.rfind(b"ftyp", tail_start)
    while pos >= 4 and pos >= tail_start:
        start = pos - 4
        if start > 0 and _is_ftyp_box(data, start):
            return start
        pos = data.rfind(b"ftyp", tail_start, pos)
    return None


def extract_motion_trailer(image_path: Path) -> Path | None:
    """Extract an embedded motion clip from a motion photo.

    Args:
        image_path: A local JPEG.

    Returns:
        Path to the extracted ``.mp4`` beside the image, or None if the
        image carries no valid clip.
    """
    if image_path.suffix.lower() not in (".jpg", ".jpeg"):
        return None

    try:
        data = image_path.read_bytes()
    except OSError as e:
        logger.warning(f"Cannot read {image_path} for motion extraction: {e}")
        return None

    start = _find_trailer_by_xmp(data)
    if start is None:
        start = _find_trailer_by_scan(data)
    if start is None:
        return None

    target = image_path.with_suffix(".mp4")
    try:
        target.write_bytes(data[start:])
    except OSError as e:
        logger.warning(f"Cannot write motion clip {target}: {e}")
        return None

    if not is_valid_motion_clip(target):
        target.unlink(missing_ok=True)
        return None

    logger.debug(f"Extracted motion clip from {image_path.name} ({len(data) - start} bytes)")
    return target


def prepare_media(
    items: Sequence[MediaItem],
    storage: FileStorage,
    user_id: str,
    working_dir: Path,
    extract_motion: bool = True,
) -> list[PreparedMedia]:
    """Copy selected items into the working directory.

    Items that cannot be read are skipped with a warning. Missing
    dimensions are probed from the copied file.

    Args:
        items: Selected items in capture order.
        storage: File storage the item paths belong to.
        user_id: Owner of the items.
        working_dir: The job's private temporary directory.
        extract_motion: Extract embedded motion clips from motion photos.

    Returns:
        Staged files in the same order as ``items``.

    Raises:
        MediaPreparationError: If no item could be staged.
    """
    working_dir.mkdir(parents=True, exist_ok=True)
    prepared: list[PreparedMedia] = []

    for index, item in enumerate(items):
        suffix = Path(item.path).suffix.lower() or ".jpg"
        target = working_dir / f"{index:05d}{suffix}"

        try:
            with storage.open_read(user_id, item.path) as src, open(target, "wb") as dst:
                shutil.copyfileobj(src, dst)
        except (StoreError, OSError) as e:
            logger.warning(f"Skipping {item.path}: {e}")
            continue

        if extract_motion:
            extract_motion_trailer(target)

        width, height = item.width, item.height
        if not width or not height:
            width, height = probe_image_size(target)
        if not width or not height:
            logger.warning(f"Skipping {item.path}: unknown dimensions")
            target.unlink(missing_ok=True)
            continue

        prepared.append(PreparedMedia(path=target, width=width, height=height, item_id=item.id))

    if items and not prepared:
        raise MediaPreparationError(f"None of the {len(items)} selected items could be read")

    logger.info(f"Prepared {len(prepared)} of {len(items)} files in {working_dir}")
    return prepared
