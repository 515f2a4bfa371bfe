"""Tests for the command-line interface."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from journeys import __version__
from journeys.cli import app
from journeys.utils.tools import RendererInfo

runner = CliRunner()

LISBON = (38.72, -9.14)
PORTO = (41.15, -8.61)


@pytest.fixture
def base_args(temp_dir: Path) -> list[str]:
    (temp_dir / "files" / "alice").mkdir(parents=True)
    return ["--data-dir", str(temp_dir / "data"), "--storage-root", str(temp_dir / "files")]


@pytest.fixture
def index(fake_index, make_item, monkeypatch: pytest.MonkeyPatch):
    """Replace the filesystem index with two short trips."""
    items = [make_item(minutes=m, lat=LISBON[0], lon=LISBON[1]) for m in (0, 10, 20)]
    items += [make_item(minutes=4320 + m, lat=PORTO[0], lon=PORTO[1]) for m in (0, 10, 20)]
    fake = fake_index(items)
    monkeypatch.setattr("journeys.cli.FilesystemImageIndex", lambda *args, **kwargs: fake)
    return fake


class TestGeneral:
    """Tests for global options and info."""

    def test_version(self) -> None:
        """--version should print the version."""
        result = runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert f"journeys {__version__}" in result.output

    def test_info_without_renderer(self, base_args: list[str]) -> None:
        """info should report a missing renderer."""
        missing = RendererInfo(ffmpeg_path=None, ffprobe_path=None)
        with patch("journeys.cli.detect_renderer", return_value=missing):
            result = runner.invoke(app, [*base_args, "info"])

        assert result.exit_code == 0
        assert "ffmpeg: not found" in result.output
        assert "Video rendering is unavailable" in result.output


class TestClusterCommands:
    """Tests for cluster, list-clusters, latest-end and remove-albums."""

    def test_cluster_flat(self, base_args: list[str], index) -> None:
        """cluster should create one album per trip."""
        result = runner.invoke(app, [*base_args, "cluster", "alice", "--flat"])

        assert result.exit_code == 0, result.output
        assert "alice: 6 new items, 2 clusters, 2 album(s) created" in result.output
        assert "Journey 1 May 2024 (3) (3 items)" in result.output
        assert "Journey 2 May 2024 (6) (3 items)" in result.output

    def test_cluster_bad_home(self, base_args: list[str], index) -> None:
        """A malformed --home should be a usage error."""
        result = runner.invoke(app, [*base_args, "cluster", "alice", "--home", "north"])

        assert result.exit_code == 2

    def test_cluster_empty_library(self, base_args: list[str], fake_index, monkeypatch: pytest.MonkeyPatch) -> None:
        """An empty library should be reported without failing."""
        monkeypatch.setattr("journeys.cli.FilesystemImageIndex", lambda *args, **kwargs: fake_index([]))

        result = runner.invoke(app, [*base_args, "cluster", "alice"])

        assert result.exit_code == 0
        assert "alice: No images found" in result.output

    def test_list_and_latest_end(self, base_args: list[str], index) -> None:
        """Listed albums should show their spans; latest-end the last boundary."""
        runner.invoke(app, [*base_args, "cluster", "alice", "--flat"])

        listed = runner.invoke(app, [*base_args, "list-clusters", "alice"])
        latest = runner.invoke(app, [*base_args, "latest-end", "alice"])

        assert "1. [1] Journey 1 May 2024 (3) (3 items)  2024-05-03 10:00 -> 2024-05-03 10:20" in listed.output
        assert latest.output.strip().splitlines()[-1] == "2024-05-06T10:20:00"

    def test_list_empty(self, base_args: list[str]) -> None:
        """Users without albums should be told so."""
        result = runner.invoke(app, [*base_args, "list-clusters", "bob"])
        assert "No journey albums for bob" in result.output

    def test_remove_albums(self, base_args: list[str], index) -> None:
        """remove-albums --yes should delete tracked albums and reset the boundary."""
        runner.invoke(app, [*base_args, "cluster", "alice", "--flat"])

        removed = runner.invoke(app, [*base_args, "remove-albums", "alice", "--yes"])
        latest = runner.invoke(app, [*base_args, "latest-end", "alice"])

        assert "Removed 2 album(s)" in removed.output
        assert latest.output.strip().splitlines()[-1] == "none"

    def test_remove_albums_declined(self, base_args: list[str], index) -> None:
        """Declining the confirmation should abort."""
        result = runner.invoke(app, [*base_args, "remove-albums", "alice"], input="n\n")

        assert result.exit_code == 1
        assert "Removed" not in result.output

    def test_cluster_all(self, base_args: list[str], index) -> None:
        """cluster-all should process users found in storage."""
        result = runner.invoke(app, [*base_args, "cluster-all"])

        assert result.exit_code == 0, result.output
        assert "alice:" in result.output
        assert index.calls and index.calls[0][0] == "alice"


class TestHomeCommand:
    """Tests for the home command."""

    def test_set_and_show(self, base_args: list[str]) -> None:
        """A stored home should be shown afterwards."""
        stored = runner.invoke(app, [*base_args, "home", "alice", "--set", "48.1,11.6", "--name", "Munich"])
        shown = runner.invoke(app, [*base_args, "home", "alice"])

        assert stored.exit_code == 0
        assert "48.10000,11.60000 radius 50 km (Munich)" in shown.output

    def test_no_home(self, base_args: list[str]) -> None:
        """Users without a home should be told so."""
        assert "No home set for bob" in runner.invoke(app, [*base_args, "home", "bob"]).output

    def test_detect(self, base_args: list[str], index) -> None:
        """--detect should store the densest location."""
        result = runner.invoke(app, [*base_args, "home", "alice", "--detect", "--radius", "20"])

        assert result.exit_code == 0
        assert "radius 20 km" in result.output

    def test_invalid_latitude(self, base_args: list[str]) -> None:
        """Out-of-range coordinates should fail."""
        result = runner.invoke(app, [*base_args, "home", "alice", "--set", "95,10"])
        assert result.exit_code == 1


class TestVideoCommands:
    """Tests for render and playlist."""

    def test_render_unknown_album(self, base_args: list[str], index) -> None:
        """Rendering a missing album should exit with an error."""
        result = runner.invoke(app, [*base_args, "render", "alice", "99"])

        assert result.exit_code == 1
        assert "Not found" in result.output

    def test_playlist(self, base_args: list[str], index, temp_dir: Path) -> None:
        """playlist should write the selected items of a cluster."""
        output = temp_dir / "trip.m3u"

        result = runner.invoke(app, [*base_args, "playlist", "alice", "2", "-o", str(output)])

        assert result.exit_code == 0, result.output
        assert "Journey 2 May 2024 (6): 3 items written to" in result.output
        assert output.read_text(encoding="utf-8").startswith("#EXTM3U\n#PLAYLIST:Journey 2 May 2024 (6)")

    def test_playlist_out_of_range(self, base_args: list[str], index) -> None:
        """Unknown cluster numbers should exit with an error."""
        result = runner.invoke(app, [*base_args, "playlist", "alice", "7"])

        assert result.exit_code == 1
        assert "Not found" in result.output
