"""Pytest configuration and fixtures for integration tests."""

from __future__ import annotations

import shutil
from collections.abc import Callable
from pathlib import Path

import pytest
from PIL import Image

from journeys.utils.ffmpeg import FFmpegRunner


@pytest.fixture(scope="session")
def ffmpeg_runner() -> FFmpegRunner:
    """A real renderer; integration tests skip when it is not installed."""
    if shutil.which("ffmpeg") is None or shutil.which("ffprobe") is None:
        pytest.skip("ffmpeg and ffprobe are required for render tests")
    return FFmpegRunner()


@pytest.fixture
def write_photo() -> Callable[..., Path]:
    """Write a JPEG with a gradient so encoded frames are not trivially empty."""

    def _write(path: Path, size: tuple[int, int], hue: int = 0) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        width, height = size
        image = Image.new("RGB", size)
        image.putdata(
            [((x * 255 // width + hue) % 256, y * 255 // height, hue) for y in range(height) for x in range(width)]
        )
        image.save(path, "JPEG", quality=85)
        return path

    return _write


@pytest.fixture
def sine_track(ffmpeg_runner: FFmpegRunner, temp_dir: Path) -> Path:
    """A short generated audio track."""
    music_dir = temp_dir / "music"
    music_dir.mkdir()
    track = music_dir / "tone.m4a"
    ffmpeg_runner.run_command(
        [
            ffmpeg_runner.ffmpeg, "-y", "-hide_banner", "-loglevel", "error",
            "-f", "lavfi", "-i", "sine=frequency=440:duration=1",
            "-c:a", "aac", str(track),
        ],
        description="generate tone",
    )
    return track
