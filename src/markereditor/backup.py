"""Action log of marker edits, used to find and restore purged markers.

Plex drops user-created markers when it re-analyzes an item. Every add,
edit, delete, and restore made through the editor is recorded here so
markers that disappeared can be found and put back.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import IntEnum
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from markereditor.db import Database, RepositoryError
from markereditor.errors import ServerError
from markereditor.models import MarkerAction, MarkerData, RestoreResult
from markereditor.plex.markers import MarkerEnum, MarkerType, MetadataType, extra_data_for
from markereditor.plex.queries import PlexQueryManager

logger = logging.getLogger(__name__)

# show id -> season id -> episode id -> marker id -> latest action
PurgeMap = Dict[int, Dict[int, Dict[int, Dict[int, MarkerAction]]]]


class MarkerOp(IntEnum):
    """Operations recorded in the actions table."""

    ADD = 1
    EDIT = 2
    DELETE = 3
    RESTORE = 4


_ID_COLUMNS = {
    MetadataType.MOVIE: "episode_id",
    MetadataType.EPISODE: "episode_id",
    MetadataType.SEASON: "season_id",
    MetadataType.SHOW: "show_id",
}


def _timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


def _placeholders(values) -> str:
    return ", ".join("?" for _ in values)


class MarkerBackupManager:
    """Records marker actions and reconciles them with the Plex database."""

    def __init__(self, db: Database, queries: PlexQueryManager) -> None:
        """Initialize the backup manager and apply pending migrations.

        Args:
            db: Database holding the actions table
            queries: Query manager for the Plex database
        """
        self.db = db.initialize()
        self.queries = queries
        self._uuids = queries.section_uuids()
        self._purge_cache: Dict[int, PurgeMap] = {}

    @classmethod
    def open(cls, backup_path: Path, queries: PlexQueryManager) -> "MarkerBackupManager":
        """Open (creating if needed) the backup database at backup_path."""
        logger.info(f"Opening marker backup database {backup_path}")
        return cls(Database(backup_path), queries)

    def close(self) -> None:
        """Close the backup database connection."""
        self.db.close()

    def _section_uuid(self, section_id: int) -> str:
        uuid = self._uuids.get(section_id)
        if uuid is None:
            raise ServerError(f"Unexpected section id: {section_id}", 400)
        return uuid

    def _action_from_row(self, row) -> MarkerAction:
        data = dict(row)
        data.pop("max_id", None)
        return MarkerAction(**data)

    # Recording

    def _record(
        self,
        op: MarkerOp,
        marker: MarkerData,
        old_start: Optional[int] = None,
        old_end: Optional[int] = None,
        restores_id: Optional[int] = None,
    ) -> Optional[int]:
        uuid = self._uuids.get(marker.section_id)
        if uuid is None:
            logger.error(
                f"Unable to record {op.name.lower()} of marker {marker.id}: "
                f"unexpected section id {marker.section_id}"
            )
            return None

        now = _timestamp()
        modified_at = now + ("*" if marker.created_by_user else "")
        created_at = (
            datetime.fromtimestamp(marker.create_date, timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
            if marker.create_date
            else now
        )
        try:
            with self.db.transaction() as cursor:
                cursor.execute(
                    """
                    INSERT INTO actions
                    (op, marker_id, marker_type, final, episode_id, season_id, show_id,
                     start, end, old_start, old_end, modified_at, created_at,
                     extra_data, section_uuid, restores_id)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        int(op),
                        marker.id,
                        marker.marker_type.value,
                        int(marker.is_final),
                        marker.parent_id,
                        marker.season_id,
                        marker.show_id,
                        marker.start,
                        marker.end,
                        old_start,
                        old_end,
                        modified_at,
                        created_at,
                        extra_data_for(marker.marker_type, marker.is_final),
                        uuid,
                        restores_id,
                    ),
                )
                action_id = cursor.lastrowid
        except Exception as e:
            # The Plex database was already updated, so don't fail the request
            logger.error(f"Unable to record {op.name.lower()} of marker {marker.id}: {e}")
            return None

        logger.debug(f"Marker {op.name.lower()} of id {marker.id} added to backup")
        return action_id

    def record_add(self, marker: MarkerData) -> Optional[int]:
        """Record a marker that was added to the Plex database."""
        return self._record(MarkerOp.ADD, marker)

    def record_edit(self, marker: MarkerData, old_start: int, old_end: int) -> Optional[int]:
        """Record a marker that was edited, along with its previous bounds."""
        return self._record(MarkerOp.EDIT, marker, old_start, old_end)

    def record_delete(self, marker: MarkerData) -> Optional[int]:
        """Record a marker that was deleted from the Plex database."""
        return self._record(MarkerOp.DELETE, marker)

    def record_restore(self, new_marker: MarkerData, old_marker_id: int, section_id: int) -> None:
        """Record a restored marker and link the purged marker's actions to it.

        Args:
            new_marker: The marker that was re-added
            old_marker_id: ID of the purged marker it replaces
            section_id: Library section of both markers
        """
        if self._record(MarkerOp.RESTORE, new_marker, restores_id=old_marker_id) is None:
            return
        self._set_restored_id([old_marker_id], self._section_uuid(section_id), new_marker.id)

    def _set_restored_id(self, marker_ids: List[int], uuid: str, restored_id: int) -> int:
        try:
            with self.db.transaction() as cursor:
                cursor.execute(
                    f"UPDATE actions SET restored_id = ? "
                    f"WHERE section_uuid = ? AND marker_id IN ({_placeholders(marker_ids)})",
                    (restored_id, uuid, *marker_ids),
                )
                return cursor.rowcount
        except Exception as e:
            msg = f"Failed to update restored markers: {e}"
            raise RepositoryError(msg) from e

    # Purge detection

    def _latest_actions(self, where: str, params: tuple) -> List[MarkerAction]:
        """Latest unrestored action for every marker matching ``where``."""
        try:
            rows = self.db.connection.execute(
                f"""
                SELECT *, MAX(id) AS max_id FROM actions
                WHERE {where} AND restored_id IS NULL
                GROUP BY marker_id, section_uuid
                ORDER BY id DESC
                """,
                params,
            ).fetchall()
        except Exception as e:
            msg = f"Failed to query marker actions: {e}"
            raise RepositoryError(msg) from e
        return [self._action_from_row(row) for row in rows]

    def check_for_purges(self, metadata_id: int) -> List[MarkerAction]:
        """Find markers under an item that were recorded but no longer exist.

        Args:
            metadata_id: Movie, episode, season, or show id

        Returns:
            Latest action of every purged marker, newest first. Markers whose
            last recorded action was a delete are not purged.
        """
        metadata_type, section_id = self.queries.get_metadata_type(metadata_id)
        uuid = self._uuids.get(section_id)
        if uuid is None:
            logger.warning(f"No section uuid for section {section_id}, nothing to check")
            return []

        existing = {marker.id for marker in self.queries.get_markers_auto(metadata_id)[0]}
        column = _ID_COLUMNS[metadata_type]
        actions = self._latest_actions(
            f"{column} = ? AND section_uuid = ?", (metadata_id, uuid)
        )
        purged = [
            action
            for action in actions
            if action.marker_id not in existing and action.op != MarkerOp.DELETE
        ]
        logger.info(f"Found {len(purged)} purged markers for item {metadata_id}")
        return purged

    def purges_for_section(self, section_id: int) -> PurgeMap:
        """Build the purge map of a whole library section.

        Returns:
            show id -> season id -> episode id -> marker id -> action.
            Movies are stored under show and season id -1.
        """
        uuid = self._section_uuid(section_id)
        existing = {marker.id for marker in self.queries.get_section_markers(section_id)}
        purge_map: PurgeMap = {}
        for action in self._latest_actions("section_uuid = ?", (uuid,)):
            if action.marker_id in existing or action.op == MarkerOp.DELETE:
                continue
            purge_map.setdefault(action.show_id, {}).setdefault(
                action.season_id, {}
            ).setdefault(action.episode_id, {})[action.marker_id] = action

        self._purge_cache[section_id] = purge_map
        return purge_map

    def purge_count(self) -> int:
        """Number of purged markers found by purges_for_section so far."""
        return sum(
            len(markers)
            for purge_map in self._purge_cache.values()
            for show in purge_map.values()
            for season in show.values()
            for markers in season.values()
        )

    def _latest_action(self, marker_id: int, uuid: str) -> Optional[MarkerAction]:
        try:
            row = self.db.connection.execute(
                "SELECT * FROM actions WHERE marker_id = ? AND section_uuid = ? "
                "ORDER BY id DESC LIMIT 1",
                (marker_id, uuid),
            ).fetchone()
        except Exception as e:
            msg = f"Failed to query marker actions: {e}"
            raise RepositoryError(msg) from e
        return self._action_from_row(row) if row else None

    def _drop_cached(self, section_id: int, marker_ids: Iterable[int]) -> int:
        """Remove markers from the purge cache, pruning empty groups."""
        purge_map = self._purge_cache.get(section_id)
        if not purge_map:
            return 0

        targets = set(marker_ids)
        removed = 0
        for show_id in list(purge_map):
            show = purge_map[show_id]
            for season_id in list(show):
                season = show[season_id]
                for episode_id in list(season):
                    episode = season[episode_id]
                    for marker_id in targets.intersection(episode):
                        del episode[marker_id]
                        removed += 1
                    if not episode:
                        del season[episode_id]
                if not season:
                    del show[season_id]
            if not show:
                del purge_map[show_id]
        return removed

    def restore_markers(self, old_marker_ids: List[int], section_id: int) -> RestoreResult:
        """Re-add purged markers using their latest recorded bounds.

        Args:
            old_marker_ids: IDs of the purged markers
            section_id: Library section the markers belonged to

        Returns:
            The re-added markers, and existing markers that already matched
            a purged marker's bounds

        Raises:
            ServerError: If a marker has no recorded actions
        """
        uuid = self._section_uuid(section_id)
        by_item: Dict[int, List[MarkerAction]] = {}
        for marker_id in old_marker_ids:
            action = self._latest_action(marker_id, uuid)
            if action is None:
                raise ServerError(f"No markers found with id {marker_id} to restore.", 400)
            by_item.setdefault(action.episode_id, []).append(action)

        restored, identical = self.queries.bulk_restore(by_item)
        for action, marker in restored:
            self.record_restore(marker, action.marker_id, section_id)
        for action, marker in identical:
            self._set_restored_id([action.marker_id], uuid, marker.id)

        self._drop_cached(section_id, old_marker_ids)
        logger.info(
            f"Restored {len(restored)} markers, {len(identical)} already existed"
        )
        return RestoreResult(
            new_markers=[marker for _, marker in restored],
            existing_markers=[marker for _, marker in identical],
        )

    def ignore_purged_markers(self, old_marker_ids: List[int], section_id: int) -> None:
        """Hide purged markers from future purge queries."""
        if not old_marker_ids:
            return
        uuid = self._section_uuid(section_id)
        self._set_restored_id(list(old_marker_ids), uuid, -1)
        self._drop_cached(section_id, old_marker_ids)
        logger.info(f"Ignoring {len(old_marker_ids)} purged markers in section {section_id}")

    def nuke_section(self, section_id: int, delete_type: int) -> Tuple[int, int]:
        """Forget every action of the selected marker types in a section.

        Returns:
            (backup actions deleted, cached purges dropped)
        """
        uuid = self._section_uuid(section_id)
        types = [t.value for t in MarkerType if MarkerEnum.type_match(t, delete_type)]
        if not types:
            return 0, 0

        cached_ids = [
            marker_id
            for show in self._purge_cache.get(section_id, {}).values()
            for season in show.values()
            for episode in season.values()
            for marker_id, action in episode.items()
            if action.marker_type.value in types
        ]
        try:
            with self.db.transaction() as cursor:
                cursor.execute(
                    f"DELETE FROM actions WHERE section_uuid = ? "
                    f"AND marker_type IN ({_placeholders(types)})",
                    (uuid, *types),
                )
                backup_deleted = cursor.rowcount
        except Exception as e:
            msg = f"Failed to delete backed up actions: {e}"
            raise RepositoryError(msg) from e

        cache_deleted = self._drop_cached(section_id, cached_ids)
        logger.info(
            f"Removed {backup_deleted} backed up actions and {cache_deleted} "
            f"cached purges from section {section_id}"
        )
        return backup_deleted, cache_deleted
