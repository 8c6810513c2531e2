"""Tests for data models."""

import pytest
from pydantic import ValidationError

from markereditor.models import BulkAddResult, EpisodeData, MarkerData, ShiftResult
from markereditor.plex.markers import MarkerType


class TestMarkerData:
    """Test MarkerData model."""

    def test_valid_marker(self):
        """Test creating a valid marker."""
        marker = MarkerData(
            id=1, parent_id=4, section_id=1, start=0, end=1000, index=0, marker_type="credits"
        )
        assert marker.marker_type == MarkerType.CREDITS
        assert marker.season_id == -1
        assert not marker.is_final

    def test_end_must_follow_start(self):
        """Test that end <= start is rejected."""
        with pytest.raises(ValidationError):
            MarkerData(id=1, parent_id=4, section_id=1, start=1000, end=1000, index=0, marker_type="intro")

    def test_negative_start_rejected(self):
        """Test that a negative start is rejected."""
        with pytest.raises(ValidationError):
            MarkerData(id=1, parent_id=4, section_id=1, start=-1, end=1000, index=0, marker_type="intro")

    def test_unknown_type_rejected(self):
        """Test that unknown marker types are rejected."""
        with pytest.raises(ValidationError):
            MarkerData(id=1, parent_id=4, section_id=1, start=0, end=1000, index=0, marker_type="recap")


class TestResults:
    """Test result serialization."""

    def test_shift_result_json_round_trip(self):
        """Test ShiftResult survives to_json/from_json with int episode keys."""
        marker = MarkerData(
            id=1, parent_id=4, section_id=1, start=0, end=1000, index=0, marker_type="intro"
        )
        result = ShiftResult(
            applied=True,
            all_markers=[marker],
            episode_data={4: EpisodeData(metadata_id=4, duration=600000, markers=[marker])},
        )

        restored = ShiftResult.from_json(result.to_json())
        assert restored.episode_data[4].markers[0].end == 1000
        assert restored.all_markers == [marker]

    def test_to_file(self, tmp_dir):
        """Test writing a result to disk."""
        path = tmp_dir / "result.json"
        BulkAddResult(applied=False, conflict=True, ignored_episodes=[3]).to_file(path)

        loaded = BulkAddResult.from_json(path.read_text())
        assert loaded.conflict
        assert loaded.ignored_episodes == [3]
