"""Commands for finding, restoring, and ignoring purged markers."""

from __future__ import annotations

import logging
from typing import List

from markereditor.backup import MarkerBackupManager, PurgeMap
from markereditor.commands.context import ServerContext
from markereditor.errors import ServerError
from markereditor.models import MarkerAction, RestoreResult

logger = logging.getLogger(__name__)


class PurgeCommands:
    """Commands backed by the marker action log."""

    def __init__(self, context: ServerContext):
        self.context = context

    @property
    def backup(self) -> MarkerBackupManager:
        """The backup manager.

        Raises:
            ServerError: If backups are disabled
        """
        if self.context.backup is None:
            raise ServerError("Action is not enabled due to configuration settings.", 400)
        return self.context.backup

    def purge_check(self, metadata_id: int) -> List[MarkerAction]:
        """Find purged markers under a movie, episode, season, or show."""
        return self.backup.check_for_purges(metadata_id)

    def all_purges(self, section_id: int) -> PurgeMap:
        """Find every purged marker in a library section."""
        return self.backup.purges_for_section(section_id)

    def restore_purge(self, marker_ids: List[int], section_id: int) -> RestoreResult:
        """Re-add purged markers."""
        return self.backup.restore_markers(marker_ids, section_id)

    def ignore_purge(self, marker_ids: List[int], section_id: int) -> None:
        """Stop reporting the given purged markers."""
        self.backup.ignore_purged_markers(marker_ids, section_id)
