"""Marker add, edit, delete, and bulk commands."""

from __future__ import annotations

import logging
from typing import Iterable, List, Mapping, Optional, Tuple

from markereditor.bulk import check_bounds, parse_marker_type
from markereditor.commands.context import ServerContext
from markereditor.conflicts import find_conflicts
from markereditor.errors import ServerError
from markereditor.models import (
    BulkAddResult,
    BulkDeleteResult,
    MarkerData,
    NukeResult,
    ShiftResult,
)
from markereditor.plex.markers import BulkMarkerResolveType, MarkerEnum, MarkerType

logger = logging.getLogger(__name__)


def _check_overlap(start: int, end: int, markers: List[MarkerData], exclude_id: Optional[int] = None):
    conflicts = find_conflicts(start, end, markers, exclude_id)
    if conflicts:
        existing = conflicts[0]
        raise ServerError(
            f"Overlapping markers. The existing marker is [{existing.start}-{existing.end}]", 400
        )


def _check_final(final: bool, start: int, markers: List[MarkerData], exclude_id: Optional[int] = None):
    if final and any(m.start > start for m in markers if m.id != exclude_id):
        raise ServerError("Final credits must be the last marker of the item.", 400)


class CoreCommands:
    """Commands that create, change, or remove markers."""

    def __init__(self, context: ServerContext):
        self.context = context
        self.queries = context.queries
        self.backup = context.backup

    def add_marker(
        self,
        metadata_id: int,
        start: int,
        end: int,
        marker_type: MarkerType | str = MarkerType.INTRO,
        final: bool = False,
    ) -> MarkerData:
        """Add a marker to an episode or movie.

        Args:
            metadata_id: Episode or movie id
            start: Start time in milliseconds
            end: End time in milliseconds, clamped to the item's duration
            marker_type: Type of the new marker
            final: Whether a credits marker is the final credits

        Returns:
            The new marker

        Raises:
            ServerError: If the bounds are invalid or overlap an existing marker
        """
        marker_type = parse_marker_type(marker_type)
        check_bounds(start, end)
        if final and marker_type != MarkerType.CREDITS:
            logger.warning(f"Only credits markers can be final, ignoring final for {marker_type.value}")
            final = False

        markers = self.queries.get_base_type_markers(metadata_id)
        end = self._clamp_end(metadata_id, start, end)
        _check_overlap(start, end, markers)
        _check_final(final, start, markers)

        marker = self.queries.add_marker(metadata_id, start, end, marker_type, final)
        if self.backup:
            self.backup.record_add(marker)
        logger.info(f"Added {marker_type.value} marker {marker.id} to item {metadata_id}")
        return marker

    def edit_marker(
        self,
        marker_id: int,
        start: int,
        end: int,
        user_created: bool,
        marker_type: Optional[MarkerType | str] = None,
        final: Optional[bool] = None,
    ) -> MarkerData:
        """Change the bounds, type, or final flag of a marker.

        Raises:
            ServerError: If the marker doesn't exist, or the new bounds are
                invalid or overlap another marker
        """
        marker = self.queries.get_single_marker(marker_id)
        if marker is None:
            raise ServerError("Marker not found", 400)

        marker_type = parse_marker_type(marker_type) if marker_type else marker.marker_type
        final = marker.is_final if final is None else final
        if final and marker_type != MarkerType.CREDITS:
            logger.warning(f"Clearing final flag of {marker_type.value} marker {marker_id}")
            final = False

        check_bounds(start, end)
        end = self._clamp_end(marker.parent_id, start, end)
        siblings = self.queries.get_base_type_markers(marker.parent_id)
        _check_overlap(start, end, siblings, exclude_id=marker_id)
        _check_final(final, start, siblings, exclude_id=marker_id)

        with self.queries.db.transaction():
            self.queries.edit_marker(
                marker_id, marker.index, start, end, user_created, marker_type, final
            )
            self.queries.reindex(marker.parent_id)
        edited = self.queries.get_single_marker(marker_id)
        if self.backup:
            self.backup.record_edit(edited, marker.start, marker.end)
        logger.info(f"Edited marker {marker_id}: [{marker.start}-{marker.end}] -> [{start}-{end}]")
        return edited

    def delete_marker(self, marker_id: int) -> MarkerData:
        """Delete a marker and return it as it was before deletion.

        Raises:
            ServerError: If the marker doesn't exist
        """
        marker = self.queries.get_single_marker(marker_id)
        if marker is None:
            raise ServerError("Could not find marker", 400)

        with self.queries.db.transaction():
            self.queries.delete_marker(marker_id)
            self.queries.reindex(marker.parent_id)
        if self.backup:
            self.backup.record_delete(marker)
        logger.info(f"Deleted marker {marker_id} from item {marker.parent_id}")
        return marker

    def _clamp_end(self, metadata_id: int, start: int, end: int) -> int:
        duration = self.queries.get_duration(metadata_id)
        if duration and end > duration:
            logger.debug(f"Clamping end {end} to duration {duration} of item {metadata_id}")
            end = duration
        if start >= end:
            raise ServerError(f"Start time ({start}) must be less than the item's duration", 400)
        return end

    # Bulk operations

    def check_shift(
        self, metadata_id: int, start_shift: int, end_shift: int, apply_to: int, ignored: Iterable[int] = ()
    ) -> ShiftResult:
        """Report what shifting the markers under an item would do."""
        return self.context.bulk.check_shift(metadata_id, start_shift, end_shift, apply_to, ignored)

    def shift(
        self,
        metadata_id: int,
        start_shift: int,
        end_shift: int,
        apply_to: int,
        force: bool = False,
        ignored: Iterable[int] = (),
    ) -> ShiftResult:
        """Shift the markers under an item."""
        return self.context.bulk.shift(
            metadata_id, start_shift, end_shift, force, apply_to, ignored
        )

    def bulk_delete(
        self, metadata_id: int, dry_run: bool, apply_to: int, ignored: Iterable[int] = ()
    ) -> BulkDeleteResult:
        """Delete the markers under an item."""
        return self.context.bulk.bulk_delete(metadata_id, dry_run, apply_to, ignored)

    def bulk_add(
        self,
        metadata_id: int,
        start: int,
        end: int,
        marker_type: MarkerType | str,
        final: bool,
        resolve_type: int,
        ignored: Iterable[int] = (),
    ) -> BulkAddResult:
        """Add a marker to every episode under an item."""
        return self.context.bulk.bulk_add(
            metadata_id, start, end, marker_type, final, self._resolve_type(resolve_type), ignored
        )

    def add_custom(
        self,
        metadata_id: int,
        marker_type: MarkerType | str,
        resolve_type: int,
        markers: Mapping[int, Tuple[int, int]],
    ) -> BulkAddResult:
        """Add a marker with per-episode bounds to episodes under an item."""
        return self.context.bulk.add_custom(
            metadata_id, marker_type, self._resolve_type(resolve_type), markers
        )

    @staticmethod
    def _resolve_type(value: int) -> BulkMarkerResolveType:
        try:
            return BulkMarkerResolveType(value)
        except ValueError as e:
            raise ServerError(f"Unexpected bulk add resolve type: {value}", 400) from e

    def nuke_section(self, section_id: int, delete_type: int) -> NukeResult:
        """Delete every marker of the selected types in a library section.

        Args:
            section_id: Library section id
            delete_type: MarkerEnum flags of the marker types to delete

        Returns:
            Counts of deleted markers, backup actions, and cached purges
        """
        if self.queries.get_section_type(section_id) is None:
            raise ServerError(f"Section {section_id} does not exist", 400)
        if delete_type <= 0 or delete_type > MarkerEnum.ALL:
            raise ServerError(f"Unexpected delete type: {delete_type}", 400)

        deleted = self.queries.delete_section_markers(section_id, delete_type)
        backup_deleted, cache_deleted = (0, 0)
        if self.backup:
            backup_deleted, cache_deleted = self.backup.nuke_section(section_id, delete_type)
        return NukeResult(
            deleted=len(deleted), backup_deleted=backup_deleted, cache_deleted=cache_deleted
        )
