"""Client-side cache of purged markers.

Purged markers are cached in a tree mirroring the library:
server -> section -> show -> season -> episode -> marker action. Every node
keeps a count of the live purged markers below it, and a status telling
whether all of its purged markers have been fetched.
"""

from __future__ import annotations

import logging
from enum import IntEnum
from typing import TYPE_CHECKING, Dict, Iterable, Iterator, List, Optional

from markereditor.models import MarkerAction, RestoreResult

if TYPE_CHECKING:
    from markereditor.client import MarkerEditorClient

logger = logging.getLogger(__name__)


class PurgeCacheStatus(IntEnum):
    """How much of a node's data has been fetched from the server."""

    UNINITIALIZED = 0
    PARTIALLY_INITIALIZED = 1
    COMPLETE = 2


class PurgedGroup:
    """A node of the purge tree.

    Attributes:
        id: Metadata id (or section id) of the node, -1 if unknown
        parent: Parent node, None for the root
        status: Fetch status of the node
        count: Number of purged markers in this subtree
        data: Child nodes keyed by id
    """

    child_type: Optional[type] = None

    def __init__(self, key: int = -1, parent: Optional["PurgedGroup"] = None):
        self.id = key
        self.parent = parent
        self.status = PurgeCacheStatus.UNINITIALIZED
        self.count = 0
        self.data: Dict[int, object] = {}

    def get(self, key: int):
        """Get a child, or None."""
        return self.data.get(key)

    def get_or_add(self, key: int) -> "PurgedGroup":
        """Get a child group, creating it if it doesn't exist."""
        child = self.data.get(key)
        return child if child is not None else self.add_new_group(key)

    def add_new_group(self, key: int) -> "PurgedGroup":
        """Create an empty child group, replacing any existing one."""
        if self.child_type is None:
            raise TypeError(f"{type(self).__name__} cannot hold child groups")
        old = self.data.get(key)
        if old is not None:
            logger.debug(f"Replacing cached purge data for {key}")
            self.data.pop(key)
            if old.count:
                self.update_count(-old.count)
        return self.add_internal(key, self.child_type(key, self))

    def add_internal(self, key: int, value):
        """Store a child under key."""
        if key in self.data:
            logger.warning(f"Overwriting existing purge data at {key}")
        self.data[key] = value
        return value

    def update_count(self, delta: int) -> None:
        """Adjust the count of this node and every ancestor."""
        self.count += delta
        if self.status == PurgeCacheStatus.UNINITIALIZED:
            self.status = PurgeCacheStatus.PARTIALLY_INITIALIZED
        if self.parent is not None:
            self.parent.update_count(delta)

    def prune(self) -> None:
        """Detach this node and any ancestors left without purged markers."""
        node = self
        while node.parent is not None and node.count <= 0:
            if node.parent.data.get(node.id) is node:
                del node.parent.data[node.id]
            node = node.parent

    def groups(self) -> Iterator["PurgedGroup"]:
        """Iterate over this node and every group below it."""
        yield self
        for child in self.data.values():
            if isinstance(child, PurgedGroup):
                yield from child.groups()

    def actions(self) -> Iterator[MarkerAction]:
        """Iterate over every cached marker action below this node."""
        for child in self.data.values():
            if isinstance(child, PurgedGroup):
                yield from child.actions()
            else:
                yield child


class PurgedEpisode(PurgedGroup):
    """Purged markers of one episode or movie, keyed by marker id."""

    def add_new_marker(self, action: MarkerAction) -> None:
        """Cache a purged marker, counting it only if it is new."""
        is_new = action.marker_id not in self.data
        self.data[action.marker_id] = action
        if is_new:
            self.update_count(1)

    def remove_if_present(self, marker_id: int) -> bool:
        """Drop a marker from the cache, returning whether it was cached."""
        if marker_id not in self.data:
            return False
        del self.data[marker_id]
        self.update_count(-1)
        self.prune()
        return True


class PurgedSeason(PurgedGroup):
    child_type = PurgedEpisode


class PurgedShow(PurgedGroup):
    child_type = PurgedSeason


class PurgedSection(PurgedGroup):
    child_type = PurgedShow


class PurgedServer(PurgedGroup):
    child_type = PurgedSection


class AgnosticPurgeCache:
    """Flat index of show, season, and episode groups by metadata id."""

    def __init__(self):
        self.data: Dict[int, PurgedGroup] = {}

    def get(self, key: int) -> Optional[PurgedGroup]:
        return self.data.get(key)

    def lazy_set(self, key: int, value: PurgedGroup) -> None:
        """Index a group unless the key is already taken."""
        if key not in self.data:
            self.data[key] = value

    def remove(self, key: int) -> None:
        self.data.pop(key, None)


class PurgedMarkerManager:
    """Finds, restores, and ignores purged markers through the HTTP API.

    One manager holds the purge tree of every section it has seen. Cached
    sections and shows are only fetched again if they were never fully
    fetched.
    """

    def __init__(self, client: MarkerEditorClient, section_id: int):
        """Initialize the manager.

        Args:
            client: Client for the marker editor server
            section_id: Library section used when an operation isn't given one
        """
        self.client = client
        self.section_id = section_id
        self.server = PurgedServer()
        self._index = AgnosticPurgeCache()
        self._marker_episodes: Dict[int, PurgedEpisode] = {}

    def _section(self, section_id: Optional[int]) -> int:
        return self.section_id if section_id is None else section_id

    def _add_to_cache(self, action: MarkerAction, section_id: int) -> None:
        section = self.server.get_or_add(section_id)
        show = section.get_or_add(action.show_id)
        season = show.get_or_add(action.season_id)
        episode = season.get_or_add(action.episode_id)
        for group in (show, season, episode):
            # Movies have no show or season
            if group.id != -1:
                self._index.lazy_set(group.id, group)
        if episode.get(action.marker_id) is not None:
            logger.warning(f"Purged marker {action.marker_id} is already cached, overwriting")
        episode.add_new_marker(action)
        self._marker_episodes[action.marker_id] = episode

    def _forget(self, group: PurgedGroup) -> None:
        """Drop a group and its descendants from the flat indexes."""
        for node in group.groups():
            if self._index.get(node.id) is node:
                self._index.remove(node.id)
        for action in group.actions():
            self._marker_episodes.pop(action.marker_id, None)

    def find_purged_markers(self, section_id: Optional[int] = None) -> PurgedSection:
        """Get every purged marker of a section, fetching it if needed.

        Returns:
            The section's purge tree
        """
        section_id = self._section(section_id)
        cached = self.server.get(section_id)
        if cached is not None and cached.status == PurgeCacheStatus.COMPLETE:
            logger.debug(f"Using cached purge data for section {section_id}")
            return cached

        purges = self.client.all_purges(section_id)
        for show_id, show in purges.items():
            cached_show = self._index.get(show_id)
            if cached_show is not None and cached_show.status == PurgeCacheStatus.COMPLETE:
                continue
            for season in show.values():
                for episode in season.values():
                    for action in episode.values():
                        self._add_to_cache(action, section_id)

        section = self.server.get_or_add(section_id)
        for group in section.groups():
            group.status = PurgeCacheStatus.COMPLETE
        logger.info(f"Found {section.count} purged markers in section {section_id}")
        return section

    def get_purged_show_markers(self, show_id: int, section_id: Optional[int] = None) -> PurgedShow:
        """Get the purged markers of one show, fetching them if needed.

        A show that was only partially cached is discarded and fetched again.
        """
        section = self.server.get_or_add(self._section(section_id))
        show = section.get(show_id)
        if show is not None:
            if show.status == PurgeCacheStatus.COMPLETE:
                return show
            self._forget(show)
            del section.data[show_id]
            if show.count:
                section.update_count(-show.count)

        for action in self.client.purge_check(show_id):
            self._add_to_cache(action, section.id)

        show = section.get(show_id)
        if show is None:
            # Shows without purges aren't kept in the tree
            show = PurgedShow(show_id, section)
        for group in show.groups():
            group.status = PurgeCacheStatus.COMPLETE
        return show

    def purge_check(self, metadata_id: int, section_id: Optional[int] = None) -> List[MarkerAction]:
        """Fetch the purged markers under any item and add them to the cache."""
        actions = self.client.purge_check(metadata_id)
        for action in actions:
            self._add_to_cache(action, self._section(section_id))
        return actions

    def count(self, metadata_id: int) -> int:
        """Number of cached purged markers under a show, season, or episode."""
        group = self._index.get(metadata_id)
        return group.count if group is not None else 0

    def section_count(self, section_id: Optional[int] = None) -> int:
        """Number of cached purged markers in a section."""
        section = self.server.get(self._section(section_id))
        return section.count if section is not None else 0

    def get(self, metadata_id: int) -> Optional[PurgedGroup]:
        """Get the cached group of a show, season, or episode."""
        return self._index.get(metadata_id)

    def get_section(self, section_id: Optional[int] = None) -> Optional[PurgedSection]:
        """Get the cached tree of a section."""
        return self.server.get(self._section(section_id))

    def get_show(self, show_id: int) -> Optional[PurgedShow]:
        """Get the cached group of a show."""
        group = self._index.get(show_id)
        return group if isinstance(group, PurgedShow) else None

    def restore_markers(self, marker_ids: Iterable[int], section_id: Optional[int] = None) -> RestoreResult:
        """Restore purged markers and remove them from the cache."""
        marker_ids = list(marker_ids)
        result = self.client.restore_purge(marker_ids, self._section(section_id))
        self._remove(marker_ids)
        return result

    def ignore_purged_markers(self, marker_ids: Iterable[int], section_id: Optional[int] = None) -> None:
        """Permanently ignore purged markers and remove them from the cache."""
        marker_ids = list(marker_ids)
        self.client.ignore_purge(marker_ids, self._section(section_id))
        self._remove(marker_ids)

    def _remove(self, marker_ids: List[int]) -> None:
        for marker_id in marker_ids:
            episode = self._marker_episodes.pop(marker_id, None)
            if episode is None or not episode.remove_if_present(marker_id):
                logger.debug(f"Purged marker {marker_id} was not cached")
                continue
            node = episode
            while node is not None and node.parent is not None:
                if node.count <= 0 and self._index.get(node.id) is node:
                    self._index.remove(node.id)
                node = node.parent
