"""Incremental clustering state: which items earlier runs already processed."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime

from journeys.models.schema import ClusterBoundaryRecord, MediaItem
from journeys.store.base import AlbumStore, BoundaryStore

logger = logging.getLogger(__name__)


class IncrementalBoundaryTracker:
    """Tracks the low-water mark below which a user's items are already clustered.

    The mark is the latest ``end`` over the persisted boundary records. When
    no record carries an end but tracked albums exist, it is derived from the
    newest item among those albums' members.
    """

    def __init__(self, boundaries: BoundaryStore, albums: AlbumStore) -> None:
        self.boundaries = boundaries
        self.albums = albums

    def low_water_mark(self, user_id: str, items: Sequence[MediaItem] = ()) -> datetime | None:
        """Get the timestamp up to which items count as processed.

        Args:
            user_id: User to look up.
            items: The user's items, used to derive the mark from tracked
                album members when no boundary end is stored.

        Returns:
            The mark, or None if nothing was processed yet.
        """
        mark = self.boundaries.max_end(user_id)
        if mark is not None:
            return mark

        if not self.boundaries.has_records(user_id):
            return None

        tracked = {record.album_id for record in self.boundaries.list_records(user_id)}
        member_ids: set[int] = set()
        for album_id in tracked:
            member_ids.update(self.albums.album_item_ids(user_id, album_id))

        timestamps = [item.timestamp for item in items if item.id in member_ids]
        if not timestamps:
            return None

        derived = max(timestamps)
        logger.info(f"Derived low-water mark {derived.isoformat()} from {len(tracked)} tracked album(s)")
        return derived

    @staticmethod
    def filter_unprocessed(items: Sequence[MediaItem], mark: datetime | None) -> list[MediaItem]:
        """Keep items strictly newer than the mark."""
        if mark is None:
            return list(items)
        return [item for item in items if item.timestamp > mark]

    def reset(self, user_id: str) -> int:
        """Delete every tracked album and boundary record of a user.

        Returns:
            Number of albums deleted.
        """
        records = self.boundaries.list_records(user_id)
        deleted = 0
        for record in records:
            self.albums.delete_album(user_id, record.album_id)
            deleted += 1
        self.boundaries.delete_all(user_id)
        logger.info(f"Removed {deleted} tracked album(s) for {user_id}")
        return deleted

    def record(
        self,
        user_id: str,
        album_id: int,
        name: str,
        place: str | None,
        start: datetime,
        end: datetime,
    ) -> None:
        """Persist the boundary of a materialized cluster."""
        self.boundaries.upsert(
            ClusterBoundaryRecord(user_id=user_id, album_id=album_id, name=name, place=place, start=start, end=end)
        )
