"""Renderer detection utilities for Journeys."""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass

from journeys.utils.ffmpeg import FFmpegRunner

logger = logging.getLogger(__name__)


@dataclass
class RendererInfo:
    """Information about the detected external renderer."""

    ffmpeg_path: str | None
    ffprobe_path: str | None
    ffmpeg_version: str | None = None
    ffprobe_version: str | None = None

    @property
    def is_available(self) -> bool:
        return self.ffmpeg_path is not None and self.ffprobe_path is not None


def detect_renderer(ffmpeg: str = "ffmpeg", ffprobe: str = "ffprobe") -> RendererInfo:
    """Locate ffmpeg and ffprobe and read their versions.

    Args:
        ffmpeg: ffmpeg binary name or path.
        ffprobe: ffprobe binary name or path.

    Returns:
        RendererInfo describing what was found.
    """
    ffmpeg_path = shutil.which(ffmpeg)
    ffprobe_path = shutil.which(ffprobe)

    if ffmpeg_path is None:
        logger.warning(f"{ffmpeg} not found on PATH, video rendering is unavailable")
    if ffprobe_path is None:
        logger.warning(f"{ffprobe} not found on PATH, motion clips cannot be probed")

    runner = FFmpegRunner(ffmpeg=ffmpeg, ffprobe=ffprobe)
    return RendererInfo(
        ffmpeg_path=ffmpeg_path,
        ffprobe_path=ffprobe_path,
        ffmpeg_version=runner.version(ffmpeg) if ffmpeg_path else None,
        ffprobe_version=runner.version(ffprobe) if ffprobe_path else None,
    )
