"""Marker types, filters, and ordering helpers."""

from __future__ import annotations

from enum import Enum, IntEnum, IntFlag
from typing import Iterable, List, Protocol, Sequence, TypeVar


# tags.tag_type of the row that every marker tagging points at
MARKER_TAG_TYPE = 12


class MarkerType(str, Enum):
    """Types of markers that can be stored in the Plex database."""

    INTRO = "intro"
    CREDITS = "credits"
    COMMERCIAL = "commercial"


class MarkerEnum(IntFlag):
    """Bit flags used to select a subset of marker types."""

    INTRO = 1
    CREDITS = 2
    AD = 4
    ALL = INTRO | CREDITS | AD

    @classmethod
    def from_type(cls, marker_type: MarkerType | str) -> "MarkerEnum":
        """Get the flag that corresponds to a single marker type."""
        return {
            MarkerType.INTRO: cls.INTRO,
            MarkerType.CREDITS: cls.CREDITS,
            MarkerType.COMMERCIAL: cls.AD,
        }[MarkerType(marker_type)]

    @classmethod
    def type_match(cls, marker_type: MarkerType | str, flags: int) -> bool:
        """Check whether a marker type is selected by the given flags."""
        return bool(cls.from_type(marker_type) & flags)


class MetadataType(IntEnum):
    """metadata_items.metadata_type values used by Plex."""

    MOVIE = 1
    SHOW = 2
    SEASON = 3
    EPISODE = 4

    @property
    def is_base_type(self) -> bool:
        """Whether items of this type own markers directly."""
        return self in (MetadataType.MOVIE, MetadataType.EPISODE)


class BulkMarkerResolveType(IntEnum):
    """How a bulk add handles overlap with existing markers."""

    DRY_RUN = 0
    FAIL = 1
    MERGE = 2
    IGNORE = 3
    OVERWRITE = 4


class ShiftApplyType(IntEnum):
    """Whether a shift request should be written to the database."""

    DONT_APPLY = 1
    TRY_APPLY = 2
    FORCE_APPLY = 3


def extra_data_for(marker_type: MarkerType | str, final: bool) -> str:
    """Build the taggings.extra_data value Plex expects for a marker.

    Args:
        marker_type: Type of the marker
        final: Whether a credits marker runs to the end of the item

    Returns:
        URL-encoded extra data string
    """
    if MarkerType(marker_type) == MarkerType.INTRO:
        return "pv%3Aversion=5"
    if final and MarkerType(marker_type) == MarkerType.CREDITS:
        return "pv%3Afinal=1&pv%3Aversion=4"
    return "pv%3Aversion=4"


def is_final(extra_data: str | None) -> bool:
    """Check whether extra_data flags a marker as final credits."""
    return extra_data is not None and "final=1" in extra_data


class _Ordered(Protocol):
    start: int
    end: int
    index: int


M = TypeVar("M", bound=_Ordered)


def sort_markers(markers: Iterable[M]) -> List[M]:
    """Sort markers by start time, then end time."""
    return sorted(markers, key=lambda marker: (marker.start, marker.end))


def reindex(markers: Iterable[M]) -> List[M]:
    """Assign contiguous 0-based indexes ordered by start time.

    Args:
        markers: Markers that all belong to the same episode or movie

    Returns:
        The markers whose index changed, with the new index already set
    """
    changed = []
    for new_index, marker in enumerate(sort_markers(markers)):
        if marker.index != new_index:
            marker.index = new_index
            changed.append(marker)
    return changed


def group_by_parent(markers: Sequence) -> dict:
    """Group markers by the episode or movie they belong to."""
    groups: dict = {}
    for marker in markers:
        groups.setdefault(marker.parent_id, []).append(marker)
    return groups
