"""Journey videos: from an album or cluster to a rendered highlight video."""

from __future__ import annotations

import logging
import shutil
import tempfile
from collections.abc import Callable, Sequence
from pathlib import Path

from journeys.config import (
    Orientation,
    UserSettings,
    VideoOptions,
    apply_video_settings,
    load_user_settings,
)
from journeys.models.schema import AlbumInfo, MediaItem, RenderResult, VideoSelection, sort_items
from journeys.stages.cluster import cluster_items
from journeys.stages.compose import ChunkedVideoComposer, CompositionError
from journeys.stages.media import prepare_media
from journeys.stages.places import format_album_name
from journeys.stages.segments import plan_segments
from journeys.stages.story import select_story
from journeys.store.base import AlbumStore, ConfigStore, FacePresenceService, FileStorage, ImageIndex
from journeys.utils.ffmpeg import OutputObserver

logger = logging.getLogger(__name__)

# Flat thresholds used when addressing clusters by number
PLAYLIST_TIME_GAP = 24 * 3600
PLAYLIST_DISTANCE_KM = 50.0


class NoImagesFoundError(Exception):
    """The user has no items to build a video from."""

    pass


class ClusterNotFoundError(Exception):
    """The requested album or cluster does not exist."""

    pass


def preferred_file_name(position: int, name: str, orientation: Orientation) -> str:
    """Stored file name base, e.g. ``"03 - Lisbon May 2024 (3-7)"``."""
    base = "%02d - %s" % (position, name)
    if orientation == Orientation.LANDSCAPE:
        base += " (landscape)"
    return base


class ClusterVideoService:
    """Selects, stages, plans and renders journey videos.

    Example:
        >>> service = ClusterVideoService(index, albums=store, storage=storage, composer=composer)
        >>> result = service.render_for_album("alice", album_id=4, options=VideoOptions())
        >>> result.path
        'Documents/Journeys Movies/04 - Lisbon May 2024 (3-7) 20240611-101500.mp4'
    """

    def __init__(
        self,
        index: ImageIndex,
        albums: AlbumStore,
        storage: FileStorage,
        composer: ChunkedVideoComposer | None = None,
        faces: FacePresenceService | None = None,
        config_store: ConfigStore | None = None,
    ) -> None:
        self.index = index
        self.albums = albums
        self.storage = storage
        self.composer = composer or ChunkedVideoComposer(storage=storage)
        self.faces = faces
        self.config_store = config_store

    def _settings(self, user_id: str) -> UserSettings:
        if self.config_store is None:
            return UserSettings()
        return load_user_settings(self.config_store, user_id)

    def _find_album(self, user_id: str, album_id: int) -> tuple[int, AlbumInfo]:
        for position, album in enumerate(self.albums.list_albums(user_id), start=1):
            if album.album_id == album_id:
                return position, album
        raise ClusterNotFoundError(f"Album {album_id} not found for {user_id}")

    def _with_faces(self, user_id: str, items: list[MediaItem]) -> list[MediaItem]:
        if self.faces is None:
            return items
        flags = self.faces.has_faces(user_id, [item.id for item in items])
        return [
            item.model_copy(update={"has_faces": flags[item.id]}) if item.id in flags else item
            for item in items
        ]

    def _select(
        self,
        user_id: str,
        items: Sequence[MediaItem],
        options: VideoOptions,
    ) -> VideoSelection:
        items = sort_items(list(items))
        if options.orientation == Orientation.LANDSCAPE:
            items = [item for item in items if not item.is_portrait]
        if options.boost_faces:
            items = self._with_faces(user_id, items)

        story = select_story(
            items,
            min_gap_seconds=options.min_gap_seconds,
            max_images=options.max_images,
            boost_faces=options.boost_faces,
        )
        if options.boost_faces:
            logger.info(
                f"Face boost enabled: {story.faces_selected} of {story.selected_count} "
                f"selected images contain faces"
            )

        selection = VideoSelection(
            items=story.items,
            boost_faces=options.boost_faces,
            faces_selected=story.faces_selected,
        )
        if story.items:
            selection.start = story.items[0].timestamp
            selection.end = story.items[-1].timestamp
        return selection

    def select_for_album(
        self,
        user_id: str,
        album_id: int,
        options: VideoOptions | None = None,
    ) -> VideoSelection:
        """Pick the story items of a tracked album.

        Raises:
            ClusterNotFoundError: If the user has no such album.
            NoImagesFoundError: If none of the album's items can be found.
        """
        options = apply_video_settings(options or VideoOptions(), self._settings(user_id))
        position, album = self._find_album(user_id, album_id)

        items = self.index.fetch_by_ids(user_id, self.albums.album_item_ids(user_id, album_id))
        if not items:
            raise NoImagesFoundError(f"Album {album.name!r} has no readable items")

        selection = self._select(user_id, items, options)
        selection.cluster_index = position
        selection.cluster_name = album.name
        selection.location = album.place
        return selection

    def select_for_cluster_index(
        self,
        user_id: str,
        cluster_number: int,
        options: VideoOptions | None = None,
        include_secondary: bool = False,
    ) -> VideoSelection:
        """Re-cluster a user's library (24 h / 50 km) and pick a cluster's story items.

        Args:
            user_id: Owner of the library.
            cluster_number: 1-based cluster position.
            options: Selection options.
            include_secondary: Also index secondary storage.

        Raises:
            NoImagesFoundError: If the library is empty.
            ClusterNotFoundError: If ``cluster_number`` is out of range.
        """
        options = apply_video_settings(options or VideoOptions(), self._settings(user_id))
        items = self.index.fetch_for_user(user_id, include_secondary=include_secondary)
        if not items:
            raise NoImagesFoundError(f"No images found for {user_id}")

        clusters = cluster_items(
            sort_items(items), max_time_gap=PLAYLIST_TIME_GAP, max_distance_km=PLAYLIST_DISTANCE_KM
        )
        if not 1 <= cluster_number <= len(clusters):
            raise ClusterNotFoundError(
                f"Cluster {cluster_number} not found ({len(clusters)} clusters for {user_id})"
            )

        cluster = clusters[cluster_number - 1]
        selection = self._select(user_id, cluster.items, options)
        selection.cluster_index = cluster_number
        selection.cluster_name = format_album_name(cluster, None, cluster_number)
        return selection

    def render_for_album(
        self,
        user_id: str,
        album_id: int,
        options: VideoOptions | None = None,
        output_path: Path | None = None,
        on_output: OutputObserver | None = None,
    ) -> RenderResult:
        """Render a tracked album into a journey video.

        Files are staged in a private temporary directory that is removed
        whether or not the render succeeds.

        Args:
            user_id: Owner of the album.
            album_id: Album to render.
            options: Render options; unset fields fall back to the user's settings.
            output_path: Explicit output file; otherwise the video is stored
                in the user's managed storage.
            on_output: Observer for renderer progress and diagnostics.

        Returns:
            RenderResult describing the written video.
        """
        options = apply_video_settings(options or VideoOptions(), self._settings(user_id))
        selection = self.select_for_album(user_id, album_id, options)
        if not selection.items:
            raise NoImagesFoundError(f"No items selected from album {album_id}")

        working_dir = Path(tempfile.mkdtemp(prefix="journeys-"))
        try:
            media = prepare_media(
                selection.items,
                self.storage,
                user_id,
                working_dir / "media",
                extract_motion=options.include_motion,
            )
            segments = plan_segments(media, include_motion=options.include_motion, orientation=options.orientation)
            if not segments:
                raise CompositionError(
                    f"Nothing to render from {len(media)} items in {options.orientation.value} mode"
                )

            return self.composer.compose(
                segments,
                working_dir / "render",
                options,
                title=selection.cluster_name,
                output_path=output_path,
                user_id=user_id,
                preferred_file_name=preferred_file_name(
                    selection.cluster_index or 1, selection.cluster_name or "Journey", options.orientation
                ),
                on_output=on_output,
            )
        finally:
            shutil.rmtree(working_dir, ignore_errors=True)

    @staticmethod
    def write_playlist(
        selection: VideoSelection,
        output: Path,
        path_for: Callable[[str], str] | None = None,
    ) -> Path:
        """Write a selection as an extended M3U playlist.

        Args:
            selection: Story selection to list.
            output: Playlist file to write.
            path_for: Maps an item's storage path to the entry written.

        Returns:
            The playlist path.
        """
        lines = ["#EXTM3U"]
        if selection.cluster_name:
            lines.append(f"#PLAYLIST:{selection.cluster_name}")
        for item in selection.items:
            lines.append(f"#EXTINF:-1,{Path(item.path).name} ({item.timestamp.isoformat(sep=' ')})")
            lines.append(path_for(item.path) if path_for else item.path)

        output = Path(output)
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text("\n".join(lines) + "\n", encoding="utf-8")
        logger.info(f"Wrote playlist of {selection.selected_count} items to {output}")
        return output
