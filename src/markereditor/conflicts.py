"""Overlap resolution between a requested marker and existing markers."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence, Tuple

from markereditor.models import MarkerData
from markereditor.plex.markers import BulkMarkerResolveType, sort_markers


class ResolutionOutcome(str, Enum):
    """What should happen to one episode."""

    ADD = "add"
    CONFLICT = "conflict"
    SKIP = "skip"
    MERGE = "merge"
    OVERWRITE = "overwrite"
    OVERFLOW = "overflow"


@dataclass
class Resolution:
    """Resolved plan for adding one marker to one episode.

    ``start``/``end`` are the clamped bounds of the requested marker. For a
    merge, ``merged_start``/``merged_end`` are the new bounds of ``retained``.
    """

    outcome: ResolutionOutcome
    start: int
    end: int
    conflicts: List[MarkerData] = field(default_factory=list)
    retained: Optional[MarkerData] = None
    merged_start: Optional[int] = None
    merged_end: Optional[int] = None
    deleted: List[MarkerData] = field(default_factory=list)

    @property
    def mutates(self) -> bool:
        """Whether applying this resolution writes to the database."""
        return self.outcome in (
            ResolutionOutcome.ADD,
            ResolutionOutcome.MERGE,
            ResolutionOutcome.OVERWRITE,
        )


def overlaps(start: int, end: int, marker: MarkerData) -> bool:
    """Check whether [start, end) overlaps an existing marker."""
    return start < marker.end and marker.start < end


def find_conflicts(
    start: int, end: int, markers: Sequence[MarkerData], exclude_id: Optional[int] = None
) -> List[MarkerData]:
    """Get the markers that overlap [start, end), ordered by start time."""
    return [
        marker
        for marker in sort_markers(markers)
        if marker.id != exclude_id and overlaps(start, end, marker)
    ]


def clamp_interval(start: int, end: int, duration: int) -> Tuple[int, int]:
    """Clamp start to 0 and end to the item's duration."""
    return max(0, start), min(end, duration)


def resolve(
    start: int,
    end: int,
    markers: Sequence[MarkerData],
    resolve_type: BulkMarkerResolveType,
    duration: int,
) -> Resolution:
    """Decide how to add [start, end) to an episode with existing markers.

    Args:
        start: Requested start in milliseconds
        end: Requested end in milliseconds
        markers: The episode's current markers
        resolve_type: Policy for overlapping markers
        duration: Episode duration in milliseconds

    Returns:
        The plan for this episode. ``CONFLICT`` means the caller asked not to
        resolve overlaps (Fail or DryRun); ``SKIP`` means Ignore chose to leave
        the episode alone.
    """
    start, end = clamp_interval(start, end, duration)
    if start >= end:
        return Resolution(ResolutionOutcome.OVERFLOW, start, end)

    conflicts = find_conflicts(start, end, markers)
    if not conflicts:
        return Resolution(ResolutionOutcome.ADD, start, end)

    if resolve_type == BulkMarkerResolveType.IGNORE:
        return Resolution(ResolutionOutcome.SKIP, start, end, conflicts=conflicts)

    if resolve_type == BulkMarkerResolveType.OVERWRITE:
        return Resolution(
            ResolutionOutcome.OVERWRITE,
            start,
            end,
            conflicts=conflicts,
            deleted=list(conflicts),
        )

    if resolve_type == BulkMarkerResolveType.MERGE:
        # The earliest overlapping marker absorbs the request and every other
        # overlapping marker.
        retained = conflicts[0]
        return Resolution(
            ResolutionOutcome.MERGE,
            start,
            end,
            conflicts=conflicts,
            retained=retained,
            merged_start=min(start, *(marker.start for marker in conflicts)),
            merged_end=max(end, *(marker.end for marker in conflicts)),
            deleted=conflicts[1:],
        )

    return Resolution(ResolutionOutcome.CONFLICT, start, end, conflicts=conflicts)
