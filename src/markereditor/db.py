"""SQLite database manager with migration support."""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

logger = logging.getLogger(__name__)


class RepositoryError(Exception):
    """Exception raised for repository operation failures."""

    pass


class Database:
    """SQLite database manager with migration support."""

    def __init__(
        self,
        db_path: Path,
        allow_create: bool = True,
        migrations_dir: Optional[Path] = None,
    ):
        """Initialize database manager.

        Args:
            db_path: Path to the SQLite database file.
            allow_create: Whether a missing database file may be created.
                The Plex database must already exist, the backup database
                is created on demand.
            migrations_dir: Directory holding the ``.sql`` migrations applied
                by ``initialize()``. Defaults to the bundled migrations.
        """
        self.db_path = Path(db_path)
        self.allow_create = allow_create
        self.migrations_dir = (
            Path(migrations_dir)
            if migrations_dir
            else Path(__file__).parent / "migrations"
        )
        self._connection = None
        self._transaction_depth = 0

    @property
    def connection(self):
        """Get or create database connection.

        Raises:
            RepositoryError: If the database does not exist and may not be created
        """
        if self._connection is None:
            if not self.allow_create and not self.db_path.exists():
                msg = f"Database '{self.db_path}' does not exist"
                raise RepositoryError(msg)
            # Async handlers run on the event loop thread, which need not be
            # the thread that opened the connection. Access stays serialized.
            self._connection = sqlite3.connect(
                str(self.db_path), check_same_thread=False
            )
            # Enable dict-like row access
            self._connection.row_factory = sqlite3.Row
        return self._connection

    def initialize(self):
        """Run all migration SQL files in order.

        This method:
        1. Creates the _migrations tracking table
        2. Finds all .sql files in the migrations directory
        3. Applies each migration only once
        4. Records applied migrations in the _migrations table
        """
        self.connection.execute(
            """
            CREATE TABLE IF NOT EXISTS _migrations (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL UNIQUE
            )
            """
        )
        self.connection.commit()

        for migration_file in sorted(self.migrations_dir.glob("*.sql")):
            name = migration_file.name

            cursor = self.connection.execute(
                "SELECT * FROM _migrations WHERE name = ?", (name,)
            )
            if cursor.fetchone():
                continue

            logger.info(f"Applying migration {name} to {self.db_path}")
            with open(migration_file, "r") as f:
                sql = f.read()
            self.connection.executescript(sql)

            self.connection.execute(
                "INSERT INTO _migrations (name) VALUES (?)", (name,)
            )
            self.connection.commit()

        return self

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Cursor]:
        """Group statements into a single commit.

        Nested calls join the outermost transaction, which commits on success
        and rolls back everything if any statement fails.

        Yields:
            Cursor to execute statements with
        """
        cursor = self.connection.cursor()
        self._transaction_depth += 1
        try:
            yield cursor
        except Exception:
            self._transaction_depth -= 1
            if self._transaction_depth == 0:
                self.connection.rollback()
            raise
        else:
            self._transaction_depth -= 1
            if self._transaction_depth == 0:
                self.connection.commit()

    def close(self):
        """Close database connection."""
        if self._connection:
            self._connection.close()
            self._connection = None

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
