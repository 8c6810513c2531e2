"""Shared state for request handlers."""

from __future__ import annotations

import logging
from typing import Optional

from markereditor.backup import MarkerBackupManager
from markereditor.bulk import BulkOperations
from markereditor.config import Settings
from markereditor.plex.queries import PlexQueryManager

logger = logging.getLogger(__name__)


class ServerContext:
    """Database handles and settings, created once and passed to every command.

    Attributes:
        settings: Application settings
        queries: Query manager for the Plex database
        backup: Backup manager, or None when backups are disabled
        bulk: Bulk operation orchestrator
    """

    def __init__(
        self,
        settings: Settings,
        queries: PlexQueryManager,
        backup: Optional[MarkerBackupManager] = None,
    ):
        self.settings = settings
        self.queries = queries
        self.backup = backup
        self.bulk = BulkOperations(queries, backup)

    @classmethod
    def from_settings(cls, settings: Settings) -> "ServerContext":
        """Open the Plex and backup databases described by settings.

        Raises:
            RepositoryError: If the Plex database is missing or invalid
        """
        queries = PlexQueryManager.open(settings.database_path, settings.pure_mode)
        backup = None
        if settings.backup_actions:
            backup = MarkerBackupManager.open(settings.backup_database_path, queries)
        else:
            logger.info("Marker backups are disabled")
        return cls(settings, queries, backup)

    def close(self) -> None:
        """Close every open database."""
        if self.backup:
            self.backup.close()
        self.queries.close()

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
