"""Read-only library and marker queries."""

from __future__ import annotations

from typing import Dict, List, Sequence, Union

from markereditor.commands.context import ServerContext
from markereditor.errors import ServerError
from markereditor.models import (
    ChapterData,
    EpisodeData,
    LibrarySection,
    MarkerData,
    MovieData,
    SeasonData,
    ShowData,
)
from markereditor.plex.markers import MetadataType, group_by_parent


class QueryCommands:
    """Commands that read library structure and markers."""

    def __init__(self, context: ServerContext):
        self.queries = context.queries

    def query_ids(self, keys: Sequence[int]) -> Dict[int, List[MarkerData]]:
        """Get the markers of several episodes or movies.

        Returns:
            Map of every requested id to its markers, empty if it has none
        """
        grouped = group_by_parent(self.queries.get_markers_for_items(keys))
        return {key: grouped.get(key, []) for key in keys}

    def get_sections(self) -> List[LibrarySection]:
        """Get every movie and TV library."""
        return self.queries.get_libraries()

    def get_section(self, section_id: int) -> Union[List[ShowData], List[MovieData]]:
        """Get the shows of a TV library, or the movies of a movie library.

        Raises:
            ServerError: If the section doesn't exist or isn't a movie or TV library
        """
        section_type = self.queries.get_section_type(section_id)
        if section_type == MetadataType.MOVIE:
            return self.queries.get_movies(section_id)
        if section_type == MetadataType.SHOW:
            return self.queries.get_shows(section_id)
        raise ServerError(f"Section {section_id} is not a movie or TV library", 400)

    def get_seasons(self, show_id: int) -> List[SeasonData]:
        """Get the seasons of a show."""
        return self.queries.get_seasons(show_id)

    def get_episodes(self, season_id: int) -> List[EpisodeData]:
        """Get the episodes of a season."""
        return self.queries.get_episodes(season_id)

    def get_chapters(self, metadata_id: int) -> Dict[int, List[ChapterData]]:
        """Get chapters of every episode or movie under an item."""
        return self.queries.get_chapters(metadata_id)
