"""End-to-end render tests with a real ffmpeg."""

from __future__ import annotations

import os
from datetime import datetime
from pathlib import Path

import pytest

from journeys.config import Orientation, VideoOptions
from journeys.stages.compose import MANAGED_FOLDER, ChunkedVideoComposer
from journeys.stages.media import prepare_media
from journeys.stages.music import MusicProvider
from journeys.stages.segments import Stack, plan_segments
from journeys.store.local import FilesystemImageIndex, LocalFileStorage
from journeys.store.sqlite import SQLiteStore
from journeys.utils.ffmpeg import FFmpegRunner
from journeys.video import ClusterVideoService

SMALL_VIDEO = {
    "duration_per_image": 0.5,
    "width": 320,
    "fps": 10,
    "show_title": False,
    "boost_faces": False,
}


@pytest.fixture
def library(temp_dir: Path, write_photo) -> Path:
    """Four portraits followed by three landscapes in one user's storage."""
    root = temp_dir / "files"
    start = datetime(2024, 4, 1, 9, 0).timestamp()
    sizes = [(120, 160)] * 4 + [(160, 120)] * 3
    for i, size in enumerate(sizes):
        path = write_photo(root / "alice" / "Photos" / f"IMG_{i:04d}.jpg", size, hue=i * 35)
        # No EXIF, so capture times come from the modification time
        os.utime(path, (start + i * 60, start + i * 60))
    return root


@pytest.mark.integration
@pytest.mark.slow
class TestEndToEndRender:
    """Full render with real files."""

    def test_compose_with_merge_and_audio(
        self,
        ffmpeg_runner: FFmpegRunner,
        library: Path,
        sine_track: Path,
        temp_dir: Path,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """Chunks should merge into one video whose length matches the plan."""
        monkeypatch.setattr("journeys.stages.compose.determine_chunk_size", lambda count, pixels: 4)
        storage = LocalFileStorage(library)
        items = FilesystemImageIndex(library).fetch_for_user("alice")
        media = prepare_media(items, storage, "alice", temp_dir / "media")
        segments = plan_segments(media)
        composer = ChunkedVideoComposer(
            ffmpeg_runner, music=MusicProvider(sine_track.parent), show_progress=False
        )
        output = temp_dir / "out" / "journey.mp4"

        result = composer.compose(segments, temp_dir / "render", VideoOptions(**SMALL_VIDEO), output_path=output)

        assert [type(s) for s in segments].count(Stack) == 1
        assert result.chunk_count == 2
        assert result.duration == pytest.approx(5 * 0.5 + 0.2)
        assert result.audio_track == str(sine_track)
        assert output.exists()
        assert ffmpeg_runner.probe_duration(output) == pytest.approx(result.duration, abs=0.3)
        assert list((temp_dir / "render").glob("chunk_*.mp4")) == []

    def test_render_album_into_managed_storage(
        self, ffmpeg_runner: FFmpegRunner, library: Path, temp_dir: Path
    ) -> None:
        """Rendering an album should store the video in the user's movies folder."""
        storage = LocalFileStorage(library)
        index = FilesystemImageIndex(library)
        with SQLiteStore(temp_dir / "journeys.db") as store:
            items = index.fetch_for_user("alice")
            album_id = store.create_album("alice", "Garden April 2024 (1)", None, [i.id for i in items])
            service = ClusterVideoService(
                index, store, storage, composer=ChunkedVideoComposer(ffmpeg_runner, storage=storage, show_progress=False)
            )

            result = service.render_for_album(
                "alice", album_id, VideoOptions(orientation=Orientation.LANDSCAPE, include_audio=False, **SMALL_VIDEO)
            )

        assert result.stored_in_user_files
        assert result.path.startswith(f"{MANAGED_FOLDER}/01 - Garden April 2024 (1) (landscape) ")
        assert (result.width, result.height) == (320, 180)
        assert result.segment_count == 3
        assert storage.resolve("alice", result.path).stat().st_size > 0
