"""Queries against the Plex Media Server library database."""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from markereditor.db import Database, RepositoryError
from markereditor.errors import ServerError
from markereditor.models import (
    ChapterData,
    EpisodeData,
    LibrarySection,
    MarkerAction,
    MarkerData,
    MovieData,
    SeasonData,
    ShowData,
)
from markereditor.plex.markers import (
    MARKER_TAG_TYPE,
    MarkerEnum,
    MarkerType,
    MetadataType,
    extra_data_for,
    group_by_parent,
    is_final,
    reindex,
)

logger = logging.getLogger(__name__)

_EPISODE_MARKER_FIELDS = """
    taggings.id,
    taggings.`index`,
    taggings.text AS marker_type,
    taggings.time_offset AS start,
    taggings.end_time_offset AS end,
    taggings.thumb_url AS modified_date,
    taggings.created_at,
    taggings.extra_data,
    episodes.id AS parent_id,
    seasons.id AS season_id,
    seasons.parent_id AS show_id,
    seasons.library_section_id AS section_id,
    episodes.guid AS parent_guid
FROM taggings
    INNER JOIN metadata_items episodes ON taggings.metadata_item_id = episodes.id
    INNER JOIN metadata_items seasons ON episodes.parent_id = seasons.id
"""

_MOVIE_MARKER_FIELDS = """
    taggings.id,
    taggings.`index`,
    taggings.text AS marker_type,
    taggings.time_offset AS start,
    taggings.end_time_offset AS end,
    taggings.thumb_url AS modified_date,
    taggings.created_at,
    taggings.extra_data,
    movies.id AS parent_id,
    -1 AS season_id,
    -1 AS show_id,
    movies.library_section_id AS section_id,
    movies.guid AS parent_guid
FROM taggings
    INNER JOIN metadata_items movies ON taggings.metadata_item_id = movies.id
"""

_EPISODE_DATA_FIELDS = """
    e.id AS id,
    e.title AS title,
    e.`index` AS `index`,
    p.id AS season_id,
    p.title AS season,
    p.`index` AS season_index,
    g.id AS show_id,
    g.title AS show,
    MAX(m.duration) AS duration
FROM metadata_items e
    INNER JOIN metadata_items p ON e.parent_id = p.id
    INNER JOIN metadata_items g ON p.parent_id = g.id
    INNER JOIN media_items m ON e.id = m.metadata_item_id
"""


def _placeholders(values: Sequence) -> str:
    return ", ".join("?" for _ in values)


def _parse_epoch(value) -> Optional[int]:
    """Parse an epoch timestamp stored as text, or None if it isn't one."""
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _marker_from_row(row) -> MarkerData:
    modified = _parse_epoch(row["modified_date"])
    return MarkerData(
        id=row["id"],
        parent_id=row["parent_id"],
        season_id=row["season_id"],
        show_id=row["show_id"],
        section_id=row["section_id"],
        start=int(row["start"]),
        end=int(row["end"]),
        index=row["index"] if row["index"] is not None else 0,
        marker_type=row["marker_type"],
        is_final=is_final(row["extra_data"]),
        created_by_user=modified is not None and modified < 0,
        modified_date=abs(modified) if modified is not None else None,
        create_date=_parse_epoch(row["created_at"]),
        parent_guid=row["parent_guid"],
    )


def _episode_from_row(row) -> EpisodeData:
    return EpisodeData(
        metadata_id=row["id"],
        title=row["title"] or "",
        index=row["index"] or 0,
        season_id=row["season_id"],
        season_index=row["season_index"] or 0,
        season_title=row["season"] or "",
        show_id=row["show_id"],
        show_title=row["show"] or "",
        duration=row["duration"] or 0,
    )


class PlexQueryManager:
    """Reads and writes markers in the Plex library database."""

    def __init__(self, db: Database, pure_mode: bool = False) -> None:
        """Initialize the query manager.

        Args:
            db: Database wrapping the Plex library database
            pure_mode: If True, never write edit times to taggings.thumb_url
        """
        self.db = db
        self.pure_mode = pure_mode
        self._marker_tag_id: Optional[int] = None

    @classmethod
    def open(cls, database_path: Path, pure_mode: bool = False) -> "PlexQueryManager":
        """Open and verify an existing Plex database.

        Args:
            database_path: Path to com.plexapp.plugins.library.db
            pure_mode: If True, never write edit times to taggings.thumb_url

        Returns:
            A verified query manager

        Raises:
            RepositoryError: If the database is missing or has no marker tag
        """
        logger.info(f"Verifying Plex database {database_path}")
        queries = cls(Database(database_path, allow_create=False), pure_mode)
        queries.verify()
        logger.info("Plex database verified")
        return queries

    @property
    def marker_tag_id(self) -> int:
        """The tags.id that marker taggings reference.

        Raises:
            RepositoryError: If the database has no marker tag
        """
        if self._marker_tag_id is None:
            row = self._fetch_one(
                "SELECT id FROM tags WHERE tag_type = ?", (MARKER_TAG_TYPE,)
            )
            if row is None:
                msg = (
                    "Plex database must contain the marker tag (tag_type 12). "
                    "Add at least one intro marker in Plex first."
                )
                logger.error(msg)
                raise RepositoryError(msg)
            self._marker_tag_id = row["id"]
        return self._marker_tag_id

    def verify(self) -> None:
        """Check that the database looks like a Plex library database.

        Raises:
            RepositoryError: If a required table or the marker tag is missing
        """
        required = {"tags", "taggings", "metadata_items", "media_items", "library_sections"}
        rows = self._fetch_all("SELECT name FROM sqlite_master WHERE type = 'table'")
        missing = required - {row["name"] for row in rows}
        if missing:
            msg = f"Not a Plex database, missing tables: {', '.join(sorted(missing))}"
            logger.error(msg)
            raise RepositoryError(msg)
        self._marker_tag_id = None
        logger.debug(f"Marker tag id is {self.marker_tag_id}")

    def close(self) -> None:
        """Close the Plex database connection."""
        logger.debug("Closing Plex database connection")
        self.db.close()

    def _fetch_all(self, query: str, params: Sequence = ()) -> list:
        try:
            return self.db.connection.execute(query, tuple(params)).fetchall()
        except RepositoryError:
            raise
        except Exception as e:
            msg = f"Failed to query Plex database: {e}"
            raise RepositoryError(msg) from e

    def _fetch_one(self, query: str, params: Sequence = ()):
        try:
            return self.db.connection.execute(query, tuple(params)).fetchone()
        except RepositoryError:
            raise
        except Exception as e:
            msg = f"Failed to query Plex database: {e}"
            raise RepositoryError(msg) from e

    def _now(self) -> int:
        return int(time.time())

    def _thumb_url(self, user_created: bool) -> str:
        """Value for taggings.thumb_url; negative marks a user-created marker."""
        if self.pure_mode:
            return ""
        now = self._now()
        return str(-now if user_created else now)

    # Library structure

    def get_libraries(self) -> List[LibrarySection]:
        """Get all movie and TV libraries."""
        rows = self._fetch_all(
            "SELECT id, section_type AS type, name FROM library_sections "
            "WHERE section_type = 1 OR section_type = 2 ORDER BY id"
        )
        return [LibrarySection(**dict(row)) for row in rows]

    def section_uuids(self) -> Dict[int, str]:
        """Map every library section id to its uuid."""
        rows = self._fetch_all("SELECT id, uuid FROM library_sections")
        return {row["id"]: row["uuid"] for row in rows}

    def get_shows(self, section_id: int) -> List[ShowData]:
        """Get all shows in a TV library with season and episode counts."""
        query = """
SELECT
    shows.id,
    shows.title,
    shows.title_sort,
    shows.original_title,
    COUNT(shows.id) AS season_count,
    SUM(seasons.episode_count) AS episode_count
FROM metadata_items shows
    INNER JOIN (
        SELECT seasons.id, seasons.parent_id AS show_id, COUNT(episodes.id) AS episode_count
        FROM metadata_items seasons
        INNER JOIN metadata_items episodes ON episodes.parent_id = seasons.id
        WHERE seasons.library_section_id = ? AND seasons.metadata_type = 3
        GROUP BY seasons.id
    ) seasons
WHERE shows.metadata_type = 2 AND shows.id = seasons.show_id
GROUP BY shows.id
ORDER BY shows.title_sort, shows.title"""
        return [ShowData(**dict(row)) for row in self._fetch_all(query, (section_id,))]

    def get_movies(self, section_id: int) -> List[MovieData]:
        """Get all movies in a movie library."""
        query = """
SELECT movies.id AS id,
    movies.title AS title,
    movies.title_sort AS title_sort,
    movies.original_title AS original_title,
    movies.year AS year,
    MAX(files.duration) AS duration
FROM metadata_items movies
    INNER JOIN media_items files ON movies.id = files.metadata_item_id
WHERE movies.metadata_type = 1 AND movies.library_section_id = ?
GROUP BY movies.id
ORDER BY movies.title_sort, movies.title"""
        return [MovieData(**dict(row)) for row in self._fetch_all(query, (section_id,))]

    def get_seasons(self, show_id: int) -> List[SeasonData]:
        """Get all seasons of a show with their episode counts."""
        query = """
SELECT
    seasons.id,
    seasons.title,
    seasons.`index`,
    COUNT(episodes.id) AS episode_count
FROM metadata_items seasons
    INNER JOIN metadata_items episodes ON episodes.parent_id = seasons.id
WHERE seasons.parent_id = ? AND seasons.metadata_type = 3
GROUP BY seasons.id
ORDER BY seasons.`index` ASC"""
        rows = self._fetch_all(query, (show_id,))
        return [
            SeasonData(
                id=row["id"],
                title=row["title"] or "",
                index=row["index"] or 0,
                episode_count=row["episode_count"],
            )
            for row in rows
        ]

    def get_episodes(self, season_id: int) -> List[EpisodeData]:
        """Get all episodes of a season, ordered by episode number."""
        query = (
            f"SELECT {_EPISODE_DATA_FIELDS} "
            "WHERE e.parent_id = ? AND e.metadata_type = 4 "
            "GROUP BY e.id ORDER BY e.`index` ASC"
        )
        return [_episode_from_row(row) for row in self._fetch_all(query, (season_id,))]

    def get_episodes_from_list(self, episode_ids: Iterable[int]) -> Dict[int, EpisodeData]:
        """Get episode data keyed by episode id."""
        ids = list(dict.fromkeys(episode_ids))
        if not ids:
            return {}
        query = (
            f"SELECT {_EPISODE_DATA_FIELDS} "
            f"WHERE e.id IN ({_placeholders(ids)}) AND e.metadata_type = 4 "
            "GROUP BY e.id"
        )
        return {row["id"]: _episode_from_row(row) for row in self._fetch_all(query, ids)}

    def get_metadata_type(self, metadata_id: int) -> Tuple[MetadataType, int]:
        """Get the metadata type and section id of an item.

        Raises:
            ServerError: If the item does not exist or has an unsupported type
        """
        row = self._fetch_one(
            "SELECT metadata_type, library_section_id AS section_id "
            "FROM metadata_items WHERE id = ?",
            (metadata_id,),
        )
        if row is None:
            raise ServerError(f"Metadata item {metadata_id} not found in database.", 400)
        try:
            return MetadataType(row["metadata_type"]), row["section_id"]
        except ValueError as e:
            msg = f"Item {metadata_id} is not a movie, episode, season, or show"
            raise ServerError(msg, 400) from e

    def get_section_type(self, section_id: int) -> Optional[int]:
        """Get the section_type of a library, or None if it doesn't exist."""
        row = self._fetch_one(
            "SELECT section_type FROM library_sections WHERE id = ?", (section_id,)
        )
        return row["section_type"] if row else None

    def get_episode_ids(self, metadata_id: int) -> List[int]:
        """Get the ids of every episode under a show, season, or episode.

        Raises:
            ServerError: If the item is not part of a TV library
        """
        metadata_type, _ = self.get_metadata_type(metadata_id)
        if metadata_type == MetadataType.EPISODE:
            return [metadata_id]
        if metadata_type == MetadataType.SEASON:
            query = (
                "SELECT id FROM metadata_items WHERE parent_id = ? "
                "AND metadata_type = 4 ORDER BY `index`"
            )
        elif metadata_type == MetadataType.SHOW:
            query = """
SELECT episodes.id FROM metadata_items episodes
    INNER JOIN metadata_items seasons ON episodes.parent_id = seasons.id
WHERE seasons.parent_id = ? AND episodes.metadata_type = 4
ORDER BY seasons.`index`, episodes.`index`"""
        else:
            raise ServerError(f"Item {metadata_id} is not an episode, season, or show", 400)
        return [row["id"] for row in self._fetch_all(query, (metadata_id,))]

    # Markers

    def _marker_query(self, fields: str, where: str, params: Sequence) -> List[MarkerData]:
        rows = self._fetch_all(
            f"SELECT {fields} WHERE {where} AND taggings.tag_id = ? "
            "ORDER BY taggings.time_offset ASC",
            (*params, self.marker_tag_id),
        )
        try:
            return [_marker_from_row(row) for row in rows]
        except ValueError as e:
            msg = f"Found a malformed marker in the Plex database: {e}"
            raise RepositoryError(msg) from e

    def get_markers_auto(self, metadata_id: int) -> Tuple[List[MarkerData], MetadataType]:
        """Get every marker under a movie, show, season, or episode.

        Returns:
            Markers ordered by start time, and the item's metadata type
        """
        metadata_type, _ = self.get_metadata_type(metadata_id)
        if metadata_type == MetadataType.MOVIE:
            fields, where = _MOVIE_MARKER_FIELDS, "movies.id = ?"
        elif metadata_type == MetadataType.SHOW:
            fields, where = _EPISODE_MARKER_FIELDS, "seasons.parent_id = ?"
        elif metadata_type == MetadataType.SEASON:
            fields, where = _EPISODE_MARKER_FIELDS, "seasons.id = ?"
        else:
            fields, where = _EPISODE_MARKER_FIELDS, "taggings.metadata_item_id = ?"
        return self._marker_query(fields, where, (metadata_id,)), metadata_type

    def get_base_type_markers(self, metadata_id: int) -> List[MarkerData]:
        """Get the markers of a single episode or movie.

        Raises:
            ServerError: If the item is not an episode or movie
        """
        markers, metadata_type = self.get_markers_auto(metadata_id)
        if not metadata_type.is_base_type:
            raise ServerError(f"Item {metadata_id} is not an episode or movie", 400)
        return markers

    def get_markers_for_items(self, metadata_ids: Sequence[int]) -> List[MarkerData]:
        """Get the markers of several episodes, or several movies.

        Raises:
            ServerError: If the ids are unknown, or mix episodes and movies
        """
        ids = list(dict.fromkeys(metadata_ids))
        if not ids:
            return []
        rows = self._fetch_all(
            f"SELECT DISTINCT metadata_type FROM metadata_items WHERE id IN ({_placeholders(ids)})",
            ids,
        )
        types = {row["metadata_type"] for row in rows}
        if len(types) != 1:
            raise ServerError("Marker queries require ids of a single metadata type", 400)
        metadata_type = types.pop()
        if metadata_type == MetadataType.MOVIE:
            fields, column = _MOVIE_MARKER_FIELDS, "movies.id"
        elif metadata_type == MetadataType.EPISODE:
            fields, column = _EPISODE_MARKER_FIELDS, "episodes.id"
        else:
            raise ServerError("Marker queries only accept movie or episode ids", 400)
        return self._marker_query(fields, f"{column} IN ({_placeholders(ids)})", ids)

    def get_section_markers(self, section_id: int) -> List[MarkerData]:
        """Get every marker in a library section."""
        if self.get_section_type(section_id) == MetadataType.MOVIE:
            return self._marker_query(
                _MOVIE_MARKER_FIELDS, "movies.library_section_id = ?", (section_id,)
            )
        return self._marker_query(
            _EPISODE_MARKER_FIELDS, "seasons.library_section_id = ?", (section_id,)
        )

    def get_single_marker(self, marker_id: int) -> Optional[MarkerData]:
        """Get a marker by id, or None if it doesn't exist."""
        row = self._fetch_one(
            "SELECT metadata_items.metadata_type FROM taggings "
            "INNER JOIN metadata_items ON taggings.metadata_item_id = metadata_items.id "
            "WHERE taggings.id = ? AND taggings.tag_id = ?",
            (marker_id, self.marker_tag_id),
        )
        if row is None:
            return None
        fields = (
            _MOVIE_MARKER_FIELDS
            if row["metadata_type"] == MetadataType.MOVIE
            else _EPISODE_MARKER_FIELDS
        )
        markers = self._marker_query(fields, "taggings.id = ?", (marker_id,))
        return markers[0] if markers else None

    def get_duration(self, metadata_id: int) -> int:
        """Get the longest media duration of an episode or movie, in milliseconds."""
        row = self._fetch_one(
            "SELECT MAX(duration) AS duration FROM media_items WHERE metadata_item_id = ?",
            (metadata_id,),
        )
        return (row["duration"] or 0) if row else 0

    def get_chapters(self, metadata_id: int) -> Dict[int, List[ChapterData]]:
        """Get chapters for every episode or movie under an item.

        Chapters are read from the ``chapters`` list in the JSON extra data
        of the item's media parts.

        Returns:
            Map of episode/movie id to its chapters, ordered by start time
        """
        metadata_type, _ = self.get_metadata_type(metadata_id)
        if metadata_type == MetadataType.MOVIE:
            base_ids = [metadata_id]
        else:
            base_ids = self.get_episode_ids(metadata_id)

        chapters: Dict[int, List[ChapterData]] = {base_id: [] for base_id in base_ids}
        if not base_ids:
            return chapters

        rows = self._fetch_all(
            "SELECT m.metadata_item_id AS id, p.extra_data AS extra_data "
            "FROM media_parts p INNER JOIN media_items m ON p.media_item_id = m.id "
            f"WHERE m.metadata_item_id IN ({_placeholders(base_ids)}) ORDER BY p.id",
            base_ids,
        )
        for row in rows:
            if chapters[row["id"]] or not row["extra_data"]:
                continue
            try:
                raw_chapters = json.loads(row["extra_data"]).get("chapters", [])
            except (ValueError, AttributeError):
                logger.warning(f"Ignoring unreadable media part data for item {row['id']}")
                continue
            ordered = sorted(raw_chapters, key=lambda c: c.get("start", 0))
            chapters[row["id"]] = [
                ChapterData(
                    name=chapter.get("name", ""),
                    index=index,
                    start=chapter["start"],
                    end=chapter["end"],
                )
                for index, chapter in enumerate(ordered)
            ]
        return chapters

    # Marker writes

    def insert_marker(
        self,
        metadata_id: int,
        index: int,
        start: int,
        end: int,
        marker_type: MarkerType | str,
        final: bool = False,
    ) -> int:
        """Insert a marker row without reindexing its siblings.

        Returns:
            ID of the new marker

        Raises:
            RepositoryError: If insertion fails
        """
        try:
            with self.db.transaction() as cursor:
                cursor.execute(
                    """
                    INSERT INTO taggings
                    (metadata_item_id, tag_id, `index`, text, time_offset,
                     end_time_offset, thumb_url, created_at, extra_data)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        metadata_id,
                        self.marker_tag_id,
                        index,
                        MarkerType(marker_type).value,
                        start,
                        end,
                        self._thumb_url(user_created=True),
                        self._now(),
                        extra_data_for(marker_type, final),
                    ),
                )
                return cursor.lastrowid
        except RepositoryError:
            raise
        except Exception as e:
            msg = f"Failed to add marker to item {metadata_id}: {e}"
            raise RepositoryError(msg) from e

    def add_marker(
        self,
        metadata_id: int,
        start: int,
        end: int,
        marker_type: MarkerType | str,
        final: bool = False,
    ) -> MarkerData:
        """Add a marker to an episode or movie and reindex its markers.

        Returns:
            The new marker with its final index
        """
        with self.db.transaction():
            marker_id = self.insert_marker(metadata_id, 0, start, end, marker_type, final)
            self.reindex(metadata_id)
        return self.get_single_marker(marker_id)

    def edit_marker(
        self,
        marker_id: int,
        index: int,
        start: int,
        end: int,
        user_created: bool,
        marker_type: MarkerType | str,
        final: bool = False,
    ) -> None:
        """Update every editable field of a marker.

        Raises:
            RepositoryError: If the marker doesn't exist or the update fails
        """
        try:
            with self.db.transaction() as cursor:
                cursor.execute(
                    """
                    UPDATE taggings
                    SET `index` = ?, text = ?, time_offset = ?, end_time_offset = ?,
                        thumb_url = ?, extra_data = ?
                    WHERE id = ?
                    """,
                    (
                        index,
                        MarkerType(marker_type).value,
                        start,
                        end,
                        self._thumb_url(user_created),
                        extra_data_for(marker_type, final),
                        marker_id,
                    ),
                )
                if cursor.rowcount == 0:
                    msg = f"No marker found with ID {marker_id}"
                    raise RepositoryError(msg)
        except RepositoryError:
            raise
        except Exception as e:
            msg = f"Failed to edit marker {marker_id}: {e}"
            raise RepositoryError(msg) from e

    def update_marker_bounds(self, marker: MarkerData, start: int, end: int) -> None:
        """Move a marker, keeping its type, final flag, and creator."""
        self.edit_marker(
            marker.id,
            marker.index,
            start,
            end,
            marker.created_by_user,
            marker.marker_type,
            marker.is_final,
        )

    def delete_markers(self, marker_ids: Iterable[int]) -> int:
        """Delete markers by id without reindexing.

        Returns:
            Number of markers deleted

        Raises:
            RepositoryError: If deletion fails
        """
        ids = list(marker_ids)
        if not ids:
            return 0
        try:
            with self.db.transaction() as cursor:
                cursor.execute(
                    f"DELETE FROM taggings WHERE tag_id = ? AND id IN ({_placeholders(ids)})",
                    (self.marker_tag_id, *ids),
                )
                return cursor.rowcount
        except RepositoryError:
            raise
        except Exception as e:
            msg = f"Failed to delete markers: {e}"
            raise RepositoryError(msg) from e

    def delete_marker(self, marker_id: int) -> None:
        """Delete a marker.

        Raises:
            RepositoryError: If the marker doesn't exist
        """
        if self.delete_markers([marker_id]) == 0:
            msg = f"No marker found with ID {marker_id}"
            raise RepositoryError(msg)

    def reindex(self, metadata_id: int) -> List[MarkerData]:
        """Make marker indexes contiguous for every item under metadata_id.

        Returns:
            All markers under the item, with up-to-date indexes
        """
        markers, _ = self.get_markers_auto(metadata_id)
        self._write_indexes(markers)
        return markers

    def reindex_items(self, parent_ids: Iterable[int]) -> List[MarkerData]:
        """Make marker indexes contiguous for the given episodes or movies."""
        markers = self.get_markers_for_items(list(parent_ids))
        self._write_indexes(markers)
        return markers

    def _write_indexes(self, markers: List[MarkerData]) -> None:
        changed = []
        for siblings in group_by_parent(markers).values():
            changed.extend(reindex(siblings))
        if not changed:
            return
        logger.debug(f"Reindexing {len(changed)} markers")
        try:
            with self.db.transaction() as cursor:
                cursor.executemany(
                    "UPDATE taggings SET `index` = ? WHERE id = ?",
                    [(marker.index, marker.id) for marker in changed],
                )
        except Exception as e:
            msg = f"Failed to reindex markers: {e}"
            raise RepositoryError(msg) from e

    def bulk_restore(
        self, actions: Dict[int, List[MarkerAction]]
    ) -> Tuple[List[Tuple[MarkerAction, MarkerData]], List[Tuple[MarkerAction, MarkerData]]]:
        """Re-add markers recorded in the backup database.

        Markers whose start and end match an existing marker of the same
        item are not added again.

        Args:
            actions: Map of episode/movie id to the actions to restore

        Returns:
            (action, new marker) pairs for restored markers, and
            (action, existing marker) pairs for markers that already existed
        """
        if not actions:
            return [], []

        existing = group_by_parent(self.get_markers_for_items(list(actions)))
        restored = []
        identical = []
        # Markers restored earlier in this batch count as existing.
        with self.db.transaction():
            for parent_id, parent_actions in actions.items():
                current = {(m.start, m.end): m.id for m in existing.get(parent_id, [])}
                for action in parent_actions:
                    match_id = current.get((action.start, action.end))
                    if match_id is not None:
                        logger.debug(
                            f"Purged marker {action.marker_id} matches existing marker {match_id}"
                        )
                        identical.append((action, match_id))
                        continue
                    new_id = self.insert_marker(
                        parent_id,
                        0,
                        action.start,
                        action.end,
                        action.marker_type,
                        action.final,
                    )
                    current[(action.start, action.end)] = new_id
                    restored.append((action, new_id))
            self.reindex_items(actions)

        markers = {
            marker.id: marker
            for marker in self.get_markers_for_items(list(actions))
        }
        return (
            [(action, markers[new_id]) for action, new_id in restored],
            [(action, markers[marker_id]) for action, marker_id in identical],
        )

    def delete_section_markers(self, section_id: int, delete_type: int) -> List[MarkerData]:
        """Delete every marker of the selected types in a library section.

        Returns:
            The markers that were deleted
        """
        to_delete = [
            marker
            for marker in self.get_section_markers(section_id)
            if MarkerEnum.type_match(marker.marker_type, delete_type)
        ]
        with self.db.transaction():
            self.delete_markers([marker.id for marker in to_delete])
            self.reindex_items({marker.parent_id for marker in to_delete})
        logger.info(f"Deleted {len(to_delete)} markers from section {section_id}")
        return to_delete
