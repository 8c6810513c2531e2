"""Pytest configuration and fixtures."""

import json
import sqlite3
import tempfile
from pathlib import Path

import pytest

from markereditor.backup import MarkerBackupManager
from markereditor.bulk import BulkOperations
from markereditor.commands import ServerContext
from markereditor.config import Settings
from markereditor.plex.queries import PlexQueryManager

EPISODE_DURATION = 600000

INTRO_EXTRA = "pv%3Aversion=5"
CREDITS_EXTRA = "pv%3Aversion=4"
FINAL_EXTRA = "pv%3Afinal=1&pv%3Aversion=4"

PLEX_SCHEMA = """
CREATE TABLE library_sections (
    id INTEGER PRIMARY KEY, section_type INTEGER, name TEXT, uuid TEXT
);
CREATE TABLE metadata_items (
    id INTEGER PRIMARY KEY, metadata_type INTEGER, parent_id INTEGER,
    library_section_id INTEGER, `index` INTEGER, title TEXT, title_sort TEXT,
    original_title TEXT, year INTEGER, guid TEXT
);
CREATE TABLE media_items (id INTEGER PRIMARY KEY, metadata_item_id INTEGER, duration INTEGER);
CREATE TABLE media_parts (id INTEGER PRIMARY KEY, media_item_id INTEGER, extra_data TEXT);
CREATE TABLE tags (id INTEGER PRIMARY KEY, tag TEXT, tag_type INTEGER);
CREATE TABLE taggings (
    id INTEGER PRIMARY KEY AUTOINCREMENT, metadata_item_id INTEGER, tag_id INTEGER,
    `index` INTEGER, text TEXT, time_offset INTEGER, end_time_offset INTEGER,
    thumb_url TEXT, created_at TEXT, extra_data TEXT
);
"""

# id, type, parent, section, index, title
METADATA = [
    (1, 2, None, 1, 1, "Show 1"),
    (2, 3, 1, 1, 1, "Season 1"),
    (3, 4, 2, 1, 1, "Episode 1"),
    (4, 4, 2, 1, 2, "Episode 2"),
    (5, 2, None, 1, 1, "Show 2"),
    (6, 3, 5, 1, 1, "Season 1"),
    (7, 4, 6, 1, 1, "Episode 1"),
    (8, 2, None, 1, 1, "Show 3"),
    (9, 3, 8, 1, 1, "Season 1"),
    (10, 4, 9, 1, 1, "Episode 1"),
    (11, 4, 9, 1, 2, "Episode 2"),
    (12, 3, 8, 1, 2, "Season 2"),
    (13, 4, 12, 1, 1, "Episode 1"),
    (100, 1, None, 2, 1, "Movie 1"),
]

# id, item, text, start, end, index, extra_data
MARKERS = [
    (1, 4, "intro", 15000, 45000, 0, INTRO_EXTRA),
    (2, 10, "intro", 15000, 45000, 0, INTRO_EXTRA),
    (3, 11, "intro", 15000, 45000, 0, INTRO_EXTRA),
    (4, 11, "credits", 300000, 345000, 1, CREDITS_EXTRA),
    (5, 11, "credits", 500000, 600000, 2, FINAL_EXTRA),
    (6, 13, "intro", 15000, 45000, 0, INTRO_EXTRA),
    (7, 100, "intro", 15000, 45000, 0, INTRO_EXTRA),
]

CHAPTERS = {
    "chapters": [
        {"name": "Main", "start": 60000, "end": 600000},
        {"name": "Opening", "start": 0, "end": 60000},
    ]
}


def seed_plex_database(db_path: Path) -> Path:
    """Create a small Plex library database.

    Three shows and one movie, every item 600000ms long:
    show 1 (season 2: episodes 3, 4), show 5 (season 6: episode 7), and
    show 8 (season 9: episodes 10, 11; season 12: episode 13).
    """
    connection = sqlite3.connect(str(db_path))
    connection.executescript(PLEX_SCHEMA)
    connection.executemany(
        "INSERT INTO library_sections VALUES (?, ?, ?, ?)",
        [(1, 2, "TV Shows", "tv-uuid"), (2, 1, "Movies", "movie-uuid")],
    )
    connection.executemany(
        "INSERT INTO metadata_items VALUES (?, ?, ?, ?, ?, ?, ?, NULL, ?, ?)",
        [
            (
                item_id,
                metadata_type,
                parent,
                section,
                index,
                title,
                title,
                2000 if metadata_type == 1 else None,
                f"plex://item/{item_id}",
            )
            for item_id, metadata_type, parent, section, index, title in METADATA
        ],
    )
    connection.executemany(
        "INSERT INTO media_items VALUES (?, ?, ?)",
        [
            (item_id, item_id, EPISODE_DURATION)
            for item_id, metadata_type, *_ in METADATA
            if metadata_type in (1, 4)
        ],
    )
    connection.execute(
        "INSERT INTO media_parts VALUES (1, 4, ?)", (json.dumps(CHAPTERS),)
    )
    connection.executemany(
        "INSERT INTO tags VALUES (?, ?, ?)", [(1, None, 12), (2, "Comedy", 1)]
    )
    connection.executemany(
        "INSERT INTO taggings VALUES (?, ?, 1, ?, ?, ?, ?, '', '1600000000', ?)",
        [
            (marker_id, item, index, text, start, end, extra)
            for marker_id, item, text, start, end, index, extra in MARKERS
        ],
    )
    # A non-marker tag on an episode
    connection.execute(
        "INSERT INTO taggings (id, metadata_item_id, tag_id, `index`) VALUES (8, 4, 2, 0)"
    )
    connection.commit()
    connection.close()
    return db_path


@pytest.fixture
def tmp_db():
    """Create a temporary database file for testing."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = Path(f.name)
    yield db_path
    # Cleanup
    if db_path.exists():
        db_path.unlink()


@pytest.fixture
def tmp_dir():
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def plex_db(tmp_dir):
    """Path to a seeded Plex library database."""
    return seed_plex_database(tmp_dir / "com.plexapp.plugins.library.db")


@pytest.fixture
def queries(plex_db):
    """Query manager over the seeded Plex database."""
    manager = PlexQueryManager.open(plex_db)
    yield manager
    manager.close()


@pytest.fixture
def backup(queries, tmp_dir):
    """Backup manager with an empty action log."""
    manager = MarkerBackupManager.open(tmp_dir / "markerActions.db", queries)
    yield manager
    manager.close()


@pytest.fixture
def bulk(queries, backup):
    """Bulk operations that record to the backup database."""
    return BulkOperations(queries, backup)


@pytest.fixture
def settings(plex_db, tmp_dir):
    """Settings pointing at the temporary databases."""
    return Settings(
        database_path=plex_db,
        backup_database_path=tmp_dir / "markerActions.db",
    )


@pytest.fixture
def context(settings, queries, backup):
    """Server context sharing the queries and backup fixtures."""
    return ServerContext(settings, queries, backup)
