"""Clustering orchestration: one end-to-end journey discovery run per user."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from datetime import datetime, timedelta

from tqdm import tqdm

from journeys.config import ClusteringOptions, UserSettings, apply_clustering_settings, load_user_settings
from journeys.incremental import IncrementalBoundaryTracker
from journeys.models.schema import Cluster, ClusteringRunResult, CreatedAlbum, sort_items, utc_now
from journeys.stages.cluster import ClusterEventSink, cluster_items, cluster_items_home_aware
from journeys.stages.home import resolve_home
from journeys.stages.interpolate import interpolate_locations
from journeys.stages.places import format_album_name, resolve_place_name
from journeys.store.base import (
    AlbumCreationError,
    AlbumStore,
    BoundaryStore,
    ConfigStore,
    ImageIndex,
    Notifier,
    PlaceResolver,
    StoreError,
)

logger = logging.getLogger(__name__)

NO_IMAGES_FOUND = "No images found"
NOTIFICATION_SUBJECT = "New journeys"
MAX_NOTIFIED_NAMES = 5


class OrchestratorError(Exception):
    """Error during a clustering run."""

    pass


def format_summary_message(names: Sequence[str], max_names: int = MAX_NOTIFIED_NAMES) -> str:
    """Summarize created albums for the run notification.

    Example:
        >>> format_summary_message(["Lisbon May 2024 (3-7)"])
        '1 new journey album created: Lisbon May 2024 (3-7)'
    """
    count = len(names)
    noun = "album" if count == 1 else "albums"
    message = f"{count} new journey {noun} created: {', '.join(names[:max_names])}"
    if count > max_names:
        message += f" + {count - max_names} more"
    return message


class ClusteringOrchestrator:
    """Discovers journeys in a user's library and materializes them as albums.

    A run fetches the user's items, drops those an earlier run already
    handled, fills missing coordinates, clusters (home-aware when a home is
    known) and turns each accepted cluster into an album whose boundary is
    recorded for the next run.

    Example:
        >>> store = SQLiteStore("journeys.db")
        >>> orchestrator = ClusteringOrchestrator(index, albums=store, boundaries=store, config_store=store)
        >>> result = orchestrator.run("alice", ClusteringOptions.daily())
        >>> result.albums_created
        2
    """

    def __init__(
        self,
        index: ImageIndex,
        albums: AlbumStore,
        boundaries: BoundaryStore,
        config_store: ConfigStore | None = None,
        places: PlaceResolver | None = None,
        notifier: Notifier | None = None,
        notification_link: str | None = None,
    ) -> None:
        self.index = index
        self.albums = albums
        self.config_store = config_store
        self.places = places
        self.notifier = notifier
        self.notification_link = notification_link
        self.tracker = IncrementalBoundaryTracker(boundaries, albums)

    def run(
        self,
        user_id: str,
        options: ClusteringOptions | None = None,
        sink: ClusterEventSink | None = None,
        now: datetime | None = None,
    ) -> ClusteringRunResult:
        """Run clustering for one user.

        Args:
            user_id: User to process.
            options: Run options; unset fields fall back to the user's settings.
            sink: Optional observer for split decisions.
            now: Reference time for the recent-cluster cutoff, as naive UTC.

        Returns:
            Counts and the albums created. An empty library is reported
            through ``error`` rather than raised.

        Raises:
            OrchestratorError: If the image index or stores fail.
        """
        options = options or ClusteringOptions()
        settings = load_user_settings(self.config_store, user_id) if self.config_store else UserSettings()
        options = apply_clustering_settings(options, settings)
        result = ClusteringRunResult(user_id=user_id)

        try:
            items = self.index.fetch_for_user(user_id, include_secondary=options.include_secondary_storage)
        except StoreError as e:
            raise OrchestratorError(f"Cannot list items for {user_id}: {e}") from e

        if not items:
            logger.info(f"{user_id}: no images found")
            result.error = NO_IMAGES_FOUND
            return result

        items = sort_items(items)

        try:
            if options.from_scratch:
                self.tracker.reset(user_id)
                mark = None
            else:
                mark = self.tracker.low_water_mark(user_id, items)
        except StoreError as e:
            raise OrchestratorError(f"Cannot read clustering state for {user_id}: {e}") from e
        result.low_water_mark = mark

        if options.home_aware:
            result.home, result.home_source = resolve_home(
                user_id, items, options.home, self.config_store, self.places
            )

        if options.interpolate:
            items = interpolate_locations(
                items,
                max_gap_seconds=options.interpolation_max_gap_seconds,
                max_distance_km=options.interpolation_max_distance_km,
            )

        pending = self.tracker.filter_unprocessed(items, mark)
        result.processed_items = len(pending)
        if not pending:
            logger.info(f"{user_id}: no new items since {mark.isoformat() if mark else 'the beginning'}")
            return result

        if options.home_aware:
            clusters = cluster_items_home_aware(pending, result.home, options.thresholds, sink=sink)
        else:
            clusters = cluster_items(
                pending,
                max_time_gap=options.max_time_gap,
                max_distance_km=options.max_distance_km,
                sink=sink,
            )
        result.clusters_found = len(clusters)
        logger.info(
            f"{user_id}: {len(pending)} new items in {len(clusters)} clusters "
            f"(home {result.home_source.value})"
        )

        self._materialize(user_id, clusters, options, result, now or utc_now())

        if result.albums and self.notifier is not None:
            self.notifier.notify(
                user_id,
                NOTIFICATION_SUBJECT,
                format_summary_message([album.name for album in result.albums]),
                link=self.notification_link,
            )

        logger.info(
            f"{user_id}: created {result.albums_created} album(s), skipped "
            f"{result.skipped_too_small} small, {result.skipped_no_location} without location, "
            f"{result.skipped_recent} recent, {result.skipped_failed} failed"
        )
        return result

    def _materialize(
        self,
        user_id: str,
        clusters: list[Cluster],
        options: ClusteringOptions,
        result: ClusteringRunResult,
        now: datetime,
    ) -> None:
        cutoff = now - timedelta(days=options.recent_cutoff_days) if options.recent_cutoff_days > 0 else None
        accepted = 0

        for cluster in clusters:
            if cluster.size < options.min_cluster_size:
                result.skipped_too_small += 1
                continue
            if not cluster.has_geolocated_item:
                result.skipped_no_location += 1
                continue
            if cutoff is not None and cluster.end > cutoff:
                result.skipped_recent += 1
                continue

            accepted += 1
            cluster.place_name = resolve_place_name(cluster.items, self.places)
            name = format_album_name(cluster, cluster.place_name, accepted)

            try:
                album_id = self.albums.create_album(
                    user_id, name, cluster.place_name, [item.id for item in cluster.items]
                )
            except AlbumCreationError as e:
                logger.warning(f"Skipping cluster {name!r}: {e}")
                result.skipped_failed += 1
                continue

            try:
                self.tracker.record(user_id, album_id, name, cluster.place_name, cluster.start, cluster.end)
            except StoreError as e:
                raise OrchestratorError(f"Cannot record boundary of album {album_id}: {e}") from e

            result.albums.append(
                CreatedAlbum(
                    album_id=album_id,
                    name=name,
                    place=cluster.place_name,
                    start=cluster.start,
                    end=cluster.end,
                    item_count=cluster.size,
                )
            )

    def run_for_users(
        self,
        user_ids: Iterable[str],
        options: ClusteringOptions | None = None,
        show_progress: bool = True,
    ) -> dict[str, ClusteringRunResult]:
        """Run clustering for several users; one failure does not stop the batch.

        Returns:
            Results by user; a failed user's result carries the error message.
        """
        users = list(user_ids)
        results: dict[str, ClusteringRunResult] = {}

        for user_id in tqdm(users, desc="Clustering users", unit="user", disable=not show_progress):
            try:
                results[user_id] = self.run(user_id, options)
            except Exception as e:
                logger.error(f"Clustering failed for {user_id}: {e}")
                results[user_id] = ClusteringRunResult(user_id=user_id, error=str(e))

        return results
