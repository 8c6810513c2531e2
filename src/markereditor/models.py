"""Data models for the marker editor."""

import json
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from markereditor.plex.markers import MarkerType


class MarkerData(BaseModel):
    """A single marker attached to an episode or movie."""

    id: int
    parent_id: int = Field(..., description="Episode or movie metadata id")
    season_id: int = -1
    show_id: int = -1
    section_id: int
    start: int = Field(..., ge=0, description="Start time in milliseconds")
    end: int = Field(..., description="End time in milliseconds")
    index: int = Field(..., ge=0, description="0-based order within the parent")
    marker_type: MarkerType
    is_final: bool = False
    created_by_user: bool = False
    modified_date: Optional[int] = None
    create_date: Optional[int] = None
    parent_guid: Optional[str] = None

    @field_validator("end")
    @classmethod
    def end_after_start(cls, v, info):
        """Validate that end > start."""
        if "start" in info.data and v <= info.data["start"]:
            raise ValueError("end must be greater than start")
        return v


class EpisodeData(BaseModel):
    """An episode, with the duration that bounds its markers."""

    metadata_id: int
    title: str = ""
    index: int = 0
    season_id: int = -1
    season_index: int = 0
    season_title: str = ""
    show_id: int = -1
    show_title: str = ""
    duration: int = Field(..., ge=0, description="Duration in milliseconds")
    markers: List[MarkerData] = Field(default_factory=list)


class MovieData(BaseModel):
    """A movie in a library section."""

    id: int
    title: str
    title_sort: Optional[str] = None
    original_title: Optional[str] = None
    year: Optional[int] = None
    duration: int = 0


class ShowData(BaseModel):
    """A TV show with its season and episode counts."""

    id: int
    title: str
    title_sort: Optional[str] = None
    original_title: Optional[str] = None
    season_count: int = 0
    episode_count: int = 0


class SeasonData(BaseModel):
    """A season of a TV show."""

    id: int
    title: str = ""
    index: int = 0
    episode_count: int = 0


class LibrarySection(BaseModel):
    """A movie or TV library."""

    id: int
    type: int
    name: str


class ChapterData(BaseModel):
    """A chapter of a media item."""

    name: str = ""
    index: int
    start: int
    end: int


class MarkerAction(BaseModel):
    """A recorded marker add, edit, delete or restore."""

    id: int
    op: int
    marker_id: int
    marker_type: MarkerType = MarkerType.INTRO
    final: bool = False
    episode_id: int
    season_id: int
    show_id: int
    start: int
    end: int
    old_start: Optional[int] = None
    old_end: Optional[int] = None
    modified_at: Optional[str] = None
    created_at: Optional[str] = None
    recorded_at: Optional[str] = None
    extra_data: str = ""
    section_uuid: str
    restores_id: Optional[int] = None
    restored_id: Optional[int] = None


class _ResultModel(BaseModel):
    """Shared JSON helpers for operation results."""

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return self.model_dump_json()

    @classmethod
    def from_json(cls, json_str: str):
        """Deserialize from JSON string."""
        data = json.loads(json_str)
        return cls.model_validate(data)

    def to_file(self, path: Path) -> None:
        """Save to JSON file."""
        path.write_text(self.to_json())


class ShiftResult(_ResultModel):
    """Outcome of a shift or shift check."""

    applied: bool
    conflict: bool = False
    overflow: bool = False
    all_markers: List[MarkerData] = Field(default_factory=list)
    episode_data: Dict[int, EpisodeData] = Field(default_factory=dict)


class BulkAddEpisode(BaseModel):
    """Per-episode outcome of a bulk add."""

    episode_data: EpisodeData
    existing_markers: List[MarkerData] = Field(default_factory=list)
    changed_marker: Optional[MarkerData] = None
    is_add: Optional[bool] = None
    deleted_markers: List[MarkerData] = Field(default_factory=list)
    conflict: bool = False
    overflow: bool = False


class BulkAddResult(_ResultModel):
    """Outcome of a bulk add across an episode, season, or show."""

    applied: bool
    conflict: bool = False
    episode_map: Dict[int, BulkAddEpisode] = Field(default_factory=dict)
    ignored_episodes: List[int] = Field(default_factory=list)


class BulkDeleteResult(_ResultModel):
    """Outcome of a bulk delete.

    ``markers`` holds the markers that are (or would be) kept, and
    ``deleted_markers`` the ones that are (or would be) removed.
    """

    applied: bool
    markers: List[MarkerData] = Field(default_factory=list)
    deleted_markers: List[MarkerData] = Field(default_factory=list)
    episode_data: Dict[int, EpisodeData] = Field(default_factory=dict)


class RestoreResult(_ResultModel):
    """Outcome of restoring purged markers."""

    new_markers: List[MarkerData] = Field(default_factory=list)
    existing_markers: List[MarkerData] = Field(default_factory=list)


class NukeResult(_ResultModel):
    """Counts of everything removed by a section-wide delete."""

    deleted: int = 0
    backup_deleted: int = 0
    cache_deleted: int = 0
