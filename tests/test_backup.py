"""Tests for the marker action log and purge detection."""

import pytest

from markereditor.backup import MarkerBackupManager, MarkerOp
from markereditor.errors import ServerError
from markereditor.models import MarkerData
from markereditor.plex.markers import MarkerEnum, MarkerType


@pytest.fixture
def purged(queries, backup):
    """A user-created marker on episode 3 that Plex has since removed."""
    marker = queries.add_marker(3, 100000, 130000, MarkerType.CREDITS)
    backup.record_add(marker)
    queries.delete_marker(marker.id)
    return marker


class TestRecording:
    """Test recording marker actions."""

    def test_record_add(self, queries, backup):
        """Test that an add is recorded with the marker's location."""
        marker = queries.get_single_marker(5)
        action_id = backup.record_add(marker)
        row = backup.db.connection.execute("SELECT * FROM actions WHERE id = ?", (action_id,)).fetchone()
        assert row["op"] == MarkerOp.ADD
        assert (row["episode_id"], row["season_id"], row["show_id"]) == (11, 9, 8)
        assert row["final"] == 1
        assert row["extra_data"] == "pv%3Afinal=1&pv%3Aversion=4"
        assert row["section_uuid"] == "tv-uuid"
        assert row["restored_id"] is None

    def test_user_created_flag(self, queries, backup):
        """Test that user-created markers are flagged in modified_at."""
        marker = queries.add_marker(3, 1000, 2000, MarkerType.INTRO)
        action_id = backup.record_add(marker)
        row = backup.db.connection.execute("SELECT modified_at FROM actions WHERE id = ?", (action_id,)).fetchone()
        assert row["modified_at"].endswith("*")

    def test_unknown_section_not_recorded(self, backup):
        """Test that markers from unknown sections are logged, not raised."""
        marker = MarkerData(id=50, parent_id=3, section_id=42, start=0, end=1000, index=0, marker_type="intro")
        assert backup.record_add(marker) is None

    def test_reopen_keeps_actions(self, queries, backup, tmp_dir):
        """Test that actions persist across managers."""
        backup.record_delete(queries.get_single_marker(1))
        backup.close()

        reopened = MarkerBackupManager.open(tmp_dir / "markerActions.db", queries)
        count = reopened.db.connection.execute("SELECT COUNT(*) FROM actions").fetchone()[0]
        assert count == 1
        reopened.close()


class TestPurgeDetection:
    """Test finding purged markers."""

    def test_check_episode(self, backup, purged):
        """Test a purged marker is found on its episode."""
        actions = backup.check_for_purges(3)
        assert [a.marker_id for a in actions] == [purged.id]
        assert actions[0].marker_type == MarkerType.CREDITS
        assert (actions[0].start, actions[0].end) == (100000, 130000)

    def test_check_season_and_show(self, backup, purged):
        """Test a purged marker is found from its season and show."""
        assert [a.marker_id for a in backup.check_for_purges(2)] == [purged.id]
        assert [a.marker_id for a in backup.check_for_purges(1)] == [purged.id]
        assert backup.check_for_purges(8) == []

    def test_existing_marker_not_purged(self, queries, backup):
        """Test that recorded markers still in Plex aren't purged."""
        backup.record_add(queries.get_single_marker(1))
        assert backup.check_for_purges(4) == []

    def test_deleted_marker_not_purged(self, queries, backup):
        """Test that markers deleted through the editor aren't purged."""
        marker = queries.get_single_marker(1)
        backup.record_add(marker)
        queries.delete_marker(1)
        backup.record_delete(marker)
        assert backup.check_for_purges(4) == []

    def test_latest_action_wins(self, queries, backup, purged):
        """Test that the latest recorded bounds are reported."""
        edited = purged.model_copy(update={"start": 110000})
        backup.record_edit(edited, purged.start, purged.end)
        actions = backup.check_for_purges(3)
        assert len(actions) == 1
        assert actions[0].op == MarkerOp.EDIT
        assert actions[0].start == 110000

    def test_purges_for_section(self, backup, purged):
        """Test the section purge map layout."""
        purge_map = backup.purges_for_section(1)
        assert list(purge_map) == [1]
        assert purge_map[1][2][3][purged.id].marker_id == purged.id
        assert backup.purge_count() == 1

    def test_movie_purges(self, queries, backup):
        """Test movie purges are stored under show and season -1."""
        marker = queries.add_marker(100, 500000, 550000, MarkerType.CREDITS)
        backup.record_add(marker)
        queries.delete_marker(marker.id)
        purge_map = backup.purges_for_section(2)
        assert marker.id in purge_map[-1][-1][100]

    def test_unknown_section(self, backup):
        """Test that unknown sections are a 400 error."""
        with pytest.raises(ServerError) as exc_info:
            backup.purges_for_section(99)
        assert exc_info.value.code == 400


class TestRestore:
    """Test restoring and ignoring purged markers."""

    def test_restore(self, queries, backup, purged):
        """Test that a purged marker is re-added and no longer reported."""
        backup.purges_for_section(1)
        result = backup.restore_markers([purged.id], 1)
        assert len(result.new_markers) == 1
        restored = result.new_markers[0]
        assert (restored.parent_id, restored.start, restored.end) == (3, 100000, 130000)
        assert restored.marker_type == MarkerType.CREDITS
        assert restored.id != purged.id

        assert backup.check_for_purges(3) == []
        assert backup.purge_count() == 0
        row = backup.db.connection.execute(
            "SELECT * FROM actions WHERE op = ?", (int(MarkerOp.RESTORE),)
        ).fetchone()
        assert row["restores_id"] == purged.id
        assert row["marker_id"] == restored.id

    def test_restore_identical(self, queries, backup, purged):
        """Test that a marker matching an existing one isn't duplicated."""
        existing = queries.add_marker(3, 100000, 130000, MarkerType.CREDITS)
        result = backup.restore_markers([purged.id], 1)
        assert result.new_markers == []
        assert [m.id for m in result.existing_markers] == [existing.id]
        assert len(queries.get_base_type_markers(3)) == 1
        assert backup.check_for_purges(3) == []

    def test_restore_duplicate_purges(self, queries, backup, purged):
        """Test that two purges with the same bounds restore one marker."""
        twin = queries.add_marker(3, 100000, 130000, MarkerType.CREDITS)
        backup.record_add(twin)
        queries.delete_marker(twin.id)

        result = backup.restore_markers([purged.id, twin.id], 1)
        assert len(result.new_markers) == 1
        assert [m.id for m in result.existing_markers] == [result.new_markers[0].id]
        markers = [(m.start, m.end) for m in queries.get_base_type_markers(3)]
        assert markers.count((100000, 130000)) == 1
        assert backup.check_for_purges(3) == []

    def test_restore_unknown(self, backup):
        """Test restoring a marker with no recorded actions."""
        with pytest.raises(ServerError, match="No markers found with id 999"):
            backup.restore_markers([999], 1)

    def test_ignore(self, backup, purged):
        """Test that ignored purges aren't reported again."""
        backup.purges_for_section(1)
        backup.ignore_purged_markers([purged.id], 1)
        assert backup.check_for_purges(3) == []
        assert backup.purges_for_section(1) == {}
        row = backup.db.connection.execute("SELECT restored_id FROM actions").fetchone()
        assert row["restored_id"] == -1


class TestNukeSection:
    """Test removing a section's actions."""

    def test_nuke_by_type(self, queries, backup, purged):
        """Test that only the selected types are forgotten."""
        backup.record_add(queries.get_single_marker(1))
        backup.purges_for_section(1)

        assert backup.nuke_section(1, MarkerEnum.CREDITS) == (1, 1)
        assert backup.purge_count() == 0
        remaining = backup.db.connection.execute("SELECT marker_type FROM actions").fetchall()
        assert [row["marker_type"] for row in remaining] == ["intro"]
