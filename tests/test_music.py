"""Tests for background music selection."""

from __future__ import annotations

import random
from pathlib import Path
from unittest.mock import MagicMock, patch

import requests

from journeys.stages.music import MIN_TRACK_BYTES, MusicProvider

URL = "https://example.com/tracks/summer%20day.mp3"


def _response(body: bytes, content_type: str = "audio/mpeg", status: int = 200) -> MagicMock:
    response = MagicMock()
    response.status_code = status
    response.headers = {"Content-Type": content_type, "Content-Length": str(len(body))}
    response.iter_content.return_value = [body[i : i + 65536] for i in range(0, len(body), 65536)]
    return response


def _mock_get(response: MagicMock) -> MagicMock:
    mock_get = MagicMock()
    mock_get.return_value.__enter__.return_value = response
    return mock_get


class TestMusicPool:
    """Tests for the track pool."""

    def test_empty_pool(self) -> None:
        """No local directory and no URLs should give no track."""
        assert MusicProvider().pick_random_track() is None

    def test_local_tracks(self, temp_dir: Path) -> None:
        """Only audio files from the music directory should be offered."""
        (temp_dir / "a.mp3").write_bytes(b"x")
        (temp_dir / "b.M4A").write_bytes(b"x")
        (temp_dir / "notes.txt").write_text("x")

        provider = MusicProvider(music_dir=temp_dir, rng=random.Random(1))

        assert [Path(p).name for p in provider.pool()] == ["a.mp3", "b.M4A"]
        assert provider.pick_random_track().parent == temp_dir

    def test_urls_included(self, temp_dir: Path) -> None:
        """Remote URLs should join the pool."""
        provider = MusicProvider(music_dir=temp_dir / "missing", urls=[URL, ""])
        assert provider.pool() == [URL]


class TestRemoteTracks:
    """Tests for downloading and caching remote tracks."""

    def test_download_and_cache(self, temp_dir: Path) -> None:
        """A valid download should be cached under the URL's file name and reused."""
        body = b"\x01" * (MIN_TRACK_BYTES + 1000)
        mock_get = _mock_get(_response(body))
        provider = MusicProvider(urls=[URL], cache_dir=temp_dir)

        with patch("journeys.stages.music.requests.get", mock_get):
            first = provider.pick_random_track()
            second = provider.pick_random_track()

        assert first == temp_dir / "summer day.mp3"
        assert first.read_bytes() == body
        assert second == first
        mock_get.assert_called_once()

    def test_wrong_content_type(self, temp_dir: Path) -> None:
        """Non-audio responses should be rejected."""
        mock_get = _mock_get(_response(b"<html>", content_type="text/html"))
        provider = MusicProvider(urls=[URL], cache_dir=temp_dir)

        with patch("journeys.stages.music.requests.get", mock_get):
            assert provider.pick_random_track() is None

        assert list(temp_dir.iterdir()) == []

    def test_too_small(self, temp_dir: Path) -> None:
        """Truncated downloads should be discarded."""
        mock_get = _mock_get(_response(b"\x01" * 1000))
        provider = MusicProvider(urls=[URL], cache_dir=temp_dir)

        with patch("journeys.stages.music.requests.get", mock_get):
            assert provider.pick_random_track() is None

        assert list(temp_dir.iterdir()) == []

    def test_http_error(self, temp_dir: Path) -> None:
        """Non-200 responses should give no track."""
        mock_get = _mock_get(_response(b"", status=404))
        provider = MusicProvider(urls=[URL], cache_dir=temp_dir)

        with patch("journeys.stages.music.requests.get", mock_get):
            assert provider.pick_random_track() is None

    def test_network_failure(self, temp_dir: Path) -> None:
        """Connection errors should be logged, not raised."""
        mock_get = MagicMock(side_effect=requests.ConnectionError("offline"))
        provider = MusicProvider(urls=[URL], cache_dir=temp_dir)

        with patch("journeys.stages.music.requests.get", mock_get):
            assert provider.pick_random_track() is None

    def test_cache_name_without_extension(self, temp_dir: Path) -> None:
        """URLs without an audio extension should get a hashed .mp3 name."""
        provider = MusicProvider(cache_dir=temp_dir)

        path = provider._cache_path("https://example.com/stream?id=4")

        assert path.parent == temp_dir
        assert path.suffix == ".mp3"
        assert len(path.stem) == 16
