"""Shift, bulk add, and bulk delete across an episode, season, or show."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Dict, Iterable, List, Mapping, Optional, Tuple

from markereditor.conflicts import Resolution, ResolutionOutcome, resolve
from markereditor.errors import ServerError
from markereditor.models import (
    BulkAddEpisode,
    BulkAddResult,
    BulkDeleteResult,
    EpisodeData,
    MarkerData,
    ShiftResult,
)
from markereditor.plex.markers import (
    BulkMarkerResolveType,
    MarkerEnum,
    MarkerType,
    MetadataType,
    ShiftApplyType,
    group_by_parent,
    sort_markers,
)
from markereditor.plex.queries import PlexQueryManager

if TYPE_CHECKING:
    from markereditor.backup import MarkerBackupManager

logger = logging.getLogger(__name__)


def parse_marker_type(marker_type) -> MarkerType:
    """Convert a request value to a MarkerType, rejecting unknown types."""
    try:
        return MarkerType(marker_type)
    except ValueError as e:
        raise ServerError(f"Unexpected marker type '{marker_type}'", 400) from e


def check_bounds(start: int, end: int) -> None:
    """Reject negative starts and empty or inverted intervals."""
    if start < 0:
        raise ServerError(f"Start time must be non-negative, found {start}", 400)
    if end <= start:
        raise ServerError(f"Start time ({start}) must be less than the end time ({end})", 400)


class BulkOperations:
    """Fans marker operations out over every episode under a root item."""

    def __init__(
        self, queries: PlexQueryManager, backup: Optional[MarkerBackupManager] = None
    ) -> None:
        """Initialize the orchestrator.

        Args:
            queries: Query manager for the Plex database
            backup: Optional MarkerBackupManager that records every change
        """
        self.queries = queries
        self.backup = backup

    def _markers_under(self, metadata_id: int, operation: str) -> List[MarkerData]:
        markers, metadata_type = self.queries.get_markers_auto(metadata_id)
        if metadata_type == MetadataType.MOVIE:
            raise ServerError(f"{operation} is not supported for movies.", 400)
        return markers

    def _episode_data(
        self, episode_ids: Iterable[int], markers: List[MarkerData]
    ) -> Dict[int, EpisodeData]:
        """Episode data for the given episodes, each holding its markers."""
        groups = group_by_parent(markers)
        episodes = self.queries.get_episodes_from_list(episode_ids)
        for episode_id, episode in episodes.items():
            episode.markers = sort_markers(groups.get(episode_id, []))
        return episodes

    # Shift

    def check_shift(
        self,
        metadata_id: int,
        start_shift: int,
        end_shift: int,
        apply_to: int = MarkerEnum.ALL,
        ignored: Iterable[int] = (),
    ) -> ShiftResult:
        """Report what a shift would do without writing anything."""
        return self._shift(
            metadata_id, start_shift, end_shift, ShiftApplyType.DONT_APPLY, apply_to, ignored
        )

    def shift(
        self,
        metadata_id: int,
        start_shift: int,
        end_shift: int,
        force: bool = False,
        apply_to: int = MarkerEnum.ALL,
        ignored: Iterable[int] = (),
    ) -> ShiftResult:
        """Shift every matching marker under an item.

        Args:
            metadata_id: Episode, season, or show id
            start_shift: Milliseconds added to each start
            end_shift: Milliseconds added to each end
            force: Shift even when an episode has several matching markers
            apply_to: MarkerEnum flags of the marker types to shift
            ignored: Marker ids to leave alone

        Returns:
            ShiftResult. If not applied, ``all_markers`` and ``episode_data``
            hold everything needed to customize the request.
        """
        apply_type = ShiftApplyType.FORCE_APPLY if force else ShiftApplyType.TRY_APPLY
        return self._shift(metadata_id, start_shift, end_shift, apply_type, apply_to, ignored)

    def _shift(
        self,
        metadata_id: int,
        start_shift: int,
        end_shift: int,
        apply_type: ShiftApplyType,
        apply_to: int,
        ignored: Iterable[int],
    ) -> ShiftResult:
        markers = self._markers_under(metadata_id, "Shifting")
        ignored_ids = set(ignored)
        targets = [
            marker
            for marker in markers
            if MarkerEnum.type_match(marker.marker_type, apply_to)
            and marker.id not in ignored_ids
        ]
        episode_data = self._episode_data({m.parent_id for m in targets}, markers)

        per_episode = group_by_parent(targets)
        conflict = any(len(siblings) > 1 for siblings in per_episode.values())
        overflow = False
        for marker in targets:
            duration = episode_data[marker.parent_id].duration
            new_start = marker.start + start_shift
            new_end = marker.end + end_shift
            if new_end <= 0 or new_start >= duration or new_end <= new_start:
                logger.debug(f"Shifting marker {marker.id} would overflow its episode")
                overflow = True

        if (
            apply_type == ShiftApplyType.DONT_APPLY
            or overflow
            or (apply_type == ShiftApplyType.TRY_APPLY and conflict)
        ):
            return ShiftResult(
                applied=False,
                conflict=conflict,
                overflow=overflow,
                all_markers=markers,
                episode_data=episode_data,
            )

        old_bounds: Dict[int, Tuple[int, int]] = {}
        with self.queries.db.transaction():
            for marker in targets:
                duration = episode_data[marker.parent_id].duration
                new_start = max(0, min(marker.start + start_shift, duration))
                new_end = max(0, min(marker.end + end_shift, duration))
                if new_start == new_end:
                    raise ServerError(
                        f"Shifting marker {marker.id} would make its start and end equal", 400
                    )
                self.queries.update_marker_bounds(marker, new_start, new_end)
                old_bounds[marker.id] = (marker.start, marker.end)
            current = self.queries.reindex_items(per_episode)

        shifted = [marker for marker in current if marker.id in old_bounds]
        if self.backup:
            for marker in shifted:
                self.backup.record_edit(marker, *old_bounds[marker.id])

        logger.info(f"Shifted {len(shifted)} markers under item {metadata_id}")
        return ShiftResult(
            applied=True,
            conflict=conflict,
            overflow=False,
            all_markers=sort_markers(shifted),
            episode_data=self._episode_data(per_episode, current),
        )

    # Bulk delete

    def bulk_delete(
        self,
        metadata_id: int,
        dry_run: bool = False,
        apply_to: int = MarkerEnum.ALL,
        ignored: Iterable[int] = (),
    ) -> BulkDeleteResult:
        """Delete every matching marker under an item.

        Args:
            metadata_id: Episode, season, or show id
            dry_run: Only report which markers would be deleted
            apply_to: MarkerEnum flags of the marker types to delete
            ignored: Marker ids to keep

        Returns:
            Kept and deleted markers. When applied, ``markers`` is every
            marker left under the item.
        """
        markers = self._markers_under(metadata_id, "Bulk delete")
        ignored_ids = set(ignored)
        kept: List[MarkerData] = []
        deleted: List[MarkerData] = []
        for marker in markers:
            if MarkerEnum.type_match(marker.marker_type, apply_to) and marker.id not in ignored_ids:
                deleted.append(marker)
            else:
                kept.append(marker)

        episode_data = self._episode_data({m.parent_id for m in markers}, markers)
        if dry_run:
            return BulkDeleteResult(
                applied=False, markers=kept, deleted_markers=deleted, episode_data=episode_data
            )

        with self.queries.db.transaction():
            self.queries.delete_markers([marker.id for marker in deleted])
            self.queries.reindex_items({marker.parent_id for marker in kept})

        if self.backup:
            for marker in deleted:
                self.backup.record_delete(marker)

        survivors, _ = self.queries.get_markers_auto(metadata_id)
        logger.info(f"Deleted {len(deleted)} markers under item {metadata_id}")
        return BulkDeleteResult(
            applied=True,
            markers=survivors,
            deleted_markers=deleted,
            episode_data=self._episode_data(episode_data, survivors),
        )

    # Bulk add

    def bulk_add(
        self,
        metadata_id: int,
        start: int,
        end: int,
        marker_type: MarkerType | str,
        final: bool = False,
        resolve_type: BulkMarkerResolveType = BulkMarkerResolveType.FAIL,
        ignored: Iterable[int] = (),
    ) -> BulkAddResult:
        """Add the same marker to every episode under an item.

        Args:
            metadata_id: Episode, season, or show id
            start: Marker start in milliseconds
            end: Marker end in milliseconds, clamped to each episode's duration
            marker_type: Type of the new markers
            final: Flag credits markers as the final credits
            resolve_type: Policy for overlap with existing markers
            ignored: Episode ids to skip

        Raises:
            ServerError: If the bounds or type are invalid, or the item is
                not a TV item
        """
        resolve_type = BulkMarkerResolveType(resolve_type)
        if resolve_type != BulkMarkerResolveType.DRY_RUN:
            check_bounds(start, end)
        marker_type = parse_marker_type(marker_type)
        if final and marker_type != MarkerType.CREDITS:
            logger.warning(f"Only credits markers can be final, ignoring final for {marker_type.value}")
            final = False

        ignored_ids = set(ignored)
        requests = {
            episode_id: (start, end)
            for episode_id in self.queries.get_episode_ids(metadata_id)
            if episode_id not in ignored_ids
        }
        return self._apply_bulk_add(requests, marker_type, final, resolve_type)

    def add_custom(
        self,
        metadata_id: int,
        marker_type: MarkerType | str,
        resolve_type: BulkMarkerResolveType,
        markers: Mapping[int, Tuple[int, int]],
    ) -> BulkAddResult:
        """Add a marker with its own bounds to each listed episode.

        Args:
            metadata_id: Episode, season, or show id every episode belongs to
            marker_type: Type of the new markers
            resolve_type: Policy for overlap with existing markers
            markers: Map of episode id to (start, end)

        Raises:
            ServerError: If an episode is not under the item, or has invalid bounds
        """
        resolve_type = BulkMarkerResolveType(resolve_type)
        marker_type = parse_marker_type(marker_type)
        allowed = set(self.queries.get_episode_ids(metadata_id))
        for episode_id, (start, end) in markers.items():
            if episode_id not in allowed:
                raise ServerError(f"Episode {episode_id} is not part of item {metadata_id}", 400)
            if resolve_type != BulkMarkerResolveType.DRY_RUN:
                check_bounds(start, end)
        return self._apply_bulk_add(dict(markers), marker_type, False, resolve_type)

    def _apply_bulk_add(
        self,
        requests: Dict[int, Tuple[int, int]],
        marker_type: MarkerType,
        final: bool,
        resolve_type: BulkMarkerResolveType,
    ) -> BulkAddResult:
        episode_ids = list(requests)
        episodes = self.queries.get_episodes_from_list(episode_ids)
        existing = group_by_parent(self.queries.get_markers_for_items(episode_ids))

        plans: Dict[int, Resolution] = {}
        for episode_id in episode_ids:
            episode = episodes.get(episode_id)
            if episode is None:
                logger.warning(f"Episode {episode_id} has no media, skipping")
                continue
            current = sort_markers(existing.get(episode_id, []))
            episode.markers = current
            start, end = requests[episode_id]
            plans[episode_id] = resolve(start, end, current, resolve_type, episode.duration)

        conflict = any(plan.conflicts for plan in plans.values())
        skipped = sorted(
            episode_id
            for episode_id, plan in plans.items()
            if plan.outcome == ResolutionOutcome.SKIP
        )

        if resolve_type == BulkMarkerResolveType.DRY_RUN or (
            resolve_type == BulkMarkerResolveType.FAIL and conflict
        ):
            return BulkAddResult(
                applied=False,
                conflict=conflict,
                episode_map={
                    episode_id: self._episode_entry(episodes[episode_id], plan)
                    for episode_id, plan in plans.items()
                },
                ignored_episodes=skipped,
            )

        changed_ids: Dict[int, int] = {}
        with self.queries.db.transaction():
            for episode_id, plan in plans.items():
                if not plan.mutates:
                    continue
                self.queries.delete_markers([marker.id for marker in plan.deleted])
                if plan.outcome == ResolutionOutcome.MERGE:
                    self.queries.update_marker_bounds(
                        plan.retained, plan.merged_start, plan.merged_end
                    )
                    changed_ids[episode_id] = plan.retained.id
                else:
                    final_actual = marker_type == MarkerType.CREDITS and (
                        final or plan.end >= episodes[episode_id].duration
                    )
                    changed_ids[episode_id] = self.queries.insert_marker(
                        episode_id, 0, plan.start, plan.end, marker_type, final_actual
                    )
            current = self.queries.reindex_items(changed_ids) if changed_ids else []

        by_id = {marker.id: marker for marker in current}
        current_by_episode = group_by_parent(current)
        episode_map: Dict[int, BulkAddEpisode] = {}
        for episode_id, plan in plans.items():
            if plan.outcome == ResolutionOutcome.SKIP:
                continue
            changed = by_id.get(changed_ids[episode_id]) if episode_id in changed_ids else None
            episode_map[episode_id] = self._episode_entry(
                episodes[episode_id],
                plan,
                changed,
                current_by_episode.get(episode_id),
            )
            if self.backup and changed is not None:
                self._record_bulk_add(plan, changed)

        logger.info(
            f"Bulk added {len(changed_ids)} markers, skipped {len(skipped)} conflicting episodes"
        )
        return BulkAddResult(
            applied=True,
            conflict=conflict,
            episode_map=episode_map,
            ignored_episodes=skipped,
        )

    def _episode_entry(
        self,
        episode: EpisodeData,
        plan: Resolution,
        changed: Optional[MarkerData] = None,
        current: Optional[List[MarkerData]] = None,
    ) -> BulkAddEpisode:
        existing = list(episode.markers)
        if current is not None:
            episode = episode.model_copy(update={"markers": sort_markers(current)})
        return BulkAddEpisode(
            episode_data=episode,
            existing_markers=existing,
            changed_marker=changed,
            is_add=None if changed is None else plan.outcome != ResolutionOutcome.MERGE,
            deleted_markers=plan.deleted if changed is not None else [],
            conflict=bool(plan.conflicts),
            overflow=plan.outcome == ResolutionOutcome.OVERFLOW,
        )

    def _record_bulk_add(self, plan: Resolution, changed: MarkerData) -> None:
        for marker in plan.deleted:
            self.backup.record_delete(marker)
        if plan.outcome == ResolutionOutcome.MERGE:
            self.backup.record_edit(changed, plan.retained.start, plan.retained.end)
        else:
            self.backup.record_add(changed)
