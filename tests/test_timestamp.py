"""Tests for timestamp parsing and expressions."""

import pytest

from markereditor.models import MarkerData
from markereditor.plex.markers import MarkerType
from markereditor.timestamp import (
    ExpressionError,
    TimestampExpression,
    ms_to_hms,
    parse_expression,
    time_to_ms,
)


@pytest.fixture
def markers():
    """Intro, credits, and final credits of a 600000ms episode."""
    return [
        MarkerData(id=5, parent_id=11, section_id=1, start=500000, end=600000, index=2, marker_type="credits", is_final=True),
        MarkerData(id=3, parent_id=11, section_id=1, start=15000, end=45000, index=0, marker_type="intro"),
        MarkerData(id=4, parent_id=11, section_id=1, start=300000, end=345000, index=1, marker_type="credits"),
    ]


class TestTimeToMs:
    """Test time_to_ms function."""

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("90000", 90000),
            ("1:30", 90000),
            ("01:30.5", 90500),
            ("1:00:00", 3600000),
            ("5.5", 5500),
            ("5.05", 5050),
            (".5", 500),
        ],
    )
    def test_valid(self, text, expected):
        """Test parsing valid timestamps."""
        assert time_to_ms(text) == expected

    @pytest.mark.parametrize("text", ["1:60", "1:60:00", "abc", "1:2:3:4", "", "5.1234"])
    def test_invalid(self, text):
        """Test that malformed timestamps return None."""
        assert time_to_ms(text) is None

    def test_negative(self):
        """Test that negative values need allow_negative."""
        assert time_to_ms("-5") is None
        assert time_to_ms("-1:30") is None
        assert time_to_ms("-5", allow_negative=True) == -5
        assert time_to_ms("-1:30", allow_negative=True) == -90000


class TestMsToHms:
    """Test ms_to_hms function."""

    def test_full_format(self):
        """Test the default zero-padded format."""
        assert ms_to_hms(90500) == "01:30.500"
        assert ms_to_hms(3723000) == "1:02:03.000"
        assert ms_to_hms(-1500) == "-00:01.500"

    def test_minify(self):
        """Test dropping leading zeroes and empty fractions."""
        assert ms_to_hms(90500, minify=True) == "1:30.5"
        assert ms_to_hms(5000, minify=True) == "5.0"
        assert ms_to_hms(120000, minify=True) == "2:00"
        assert ms_to_hms(3723000, minify=True) == "1:02:03"


class TestParseExpression:
    """Test the expression parser."""

    def test_type_tag_on_end_rejected(self):
        """Test that type tags are only accepted for start times."""
        with pytest.raises(ExpressionError, match="only allowed for start times"):
            parse_expression("I@5", is_end=True)

    def test_type_tag_must_come_first(self):
        """Test that a type tag after other terms is rejected."""
        with pytest.raises(ExpressionError, match="must be the first part"):
            parse_expression("5+I@")

    def test_trailing_operator(self):
        """Test that an expression can't end with an operator."""
        with pytest.raises(ExpressionError, match="cannot end with an operator"):
            parse_expression("I1+")

    def test_unexpected_character(self):
        """Test that unknown characters report their position."""
        with pytest.raises(ExpressionError, match="position 6"):
            parse_expression("1:30x")


class TestTimestampExpression:
    """Test TimestampExpression class."""

    def test_plain(self):
        """Test plain timestamps resolve without markers."""
        expression = TimestampExpression()
        state = expression.parse("1:30")
        assert state.valid
        assert state.plain
        assert expression.ms() == 90000
        assert str(expression) == "01:30.000"

    def test_plain_invalid(self):
        """Test that unparseable text is invalid."""
        expression = TimestampExpression()
        state = expression.parse("1:99")
        assert not state.valid
        assert expression.ms() is None

    def test_plain_only_rejects_expressions(self):
        """Test that plain_only refuses '=' syntax."""
        state = TimestampExpression(plain_only=True).parse("=I1")
        assert not state.valid
        assert "=" in state.invalid_reason

    def test_allow_negative(self):
        """Test negative plain values for shift fields."""
        expression = TimestampExpression(plain_only=True, allow_negative=True)
        expression.parse("-2.5")
        assert expression.ms() == -2500

    def test_implicit_reference_on_start(self, markers):
        """Test that a start field without S/E refers to the marker end."""
        expression = TimestampExpression(markers)
        expression.parse("=I1")
        assert expression.is_advanced()
        assert expression.ms() == 45000
        assert expression.ms(final=True) == 45001

    def test_implicit_reference_on_end(self, markers):
        """Test that an end field without S/E refers to the marker start."""
        expression = TimestampExpression(markers, is_end=True)
        expression.parse("=C1")
        assert expression.ms() == 300000
        assert expression.ms(final=True) == 299999

    def test_explicit_start_reference(self, markers):
        """Test an explicit S reference."""
        expression = TimestampExpression(markers)
        expression.parse("=C1S")
        assert expression.ms() == 300000
        assert expression.ms(final=True) == 299999

    def test_nudge_never_negative(self):
        """Test that nudging a reference to a marker at 0 stays at 0."""
        marker = MarkerData(id=7, parent_id=11, section_id=1, start=0, end=30000, index=0, marker_type="intro")
        expression = TimestampExpression([marker])
        expression.parse("=I1S")
        assert expression.ms() == 0
        assert expression.ms(final=True) == 0

    def test_offset_is_not_nudged(self, markers):
        """Test that a reference with an offset resolves exactly."""
        expression = TimestampExpression(markers)
        expression.parse("=I1+5000")
        assert expression.ms() == 50000
        assert expression.ms(final=True) == 50000
        assert str(expression) == "=I1+5000"

    def test_negative_index_and_type_tag(self, markers):
        """Test counting back from the last marker with a type tag."""
        expression = TimestampExpression(markers)
        state = expression.parse("=I@C-1S-2:00")
        assert state.marker_type == MarkerType.INTRO
        assert state.hms
        assert expression.ms() == 380000

    def test_any_type_reference(self, markers):
        """Test M references count markers of every type."""
        expression = TimestampExpression(markers)
        expression.parse("=M2E")
        assert expression.ms() == 345000

    def test_index_zero(self, markers):
        """Test that references are 1-based."""
        state = TimestampExpression(markers).parse("=I0")
        assert not state.valid
        assert state.invalid_reason == "Marker index 0 is invalid, use 1-based indexing."

    def test_not_enough_markers(self, markers):
        """Test referencing a marker that doesn't exist."""
        state = TimestampExpression(markers).parse("=I3")
        assert not state.valid
        assert "not enough intro markers" in state.invalid_reason

    @pytest.mark.parametrize(
        "text,reason",
        [
            ("=I1+C1", "Expressions can only reference a single marker."),
            ("=5000-I1", "Marker references cannot be subtracted."),
            ("=1++2", "Invalid operator sequence"),
            ("=", "Expression is empty."),
            ("=I@C@I1", "Marker type references must be the first part of the expression."),
        ],
    )
    def test_invalid_expressions(self, markers, text, reason):
        """Test expressions that can't be parsed."""
        state = TimestampExpression(markers).parse(text)
        assert not state.valid
        assert reason in state.invalid_reason

    def test_unresolved_until_markers_known(self, markers):
        """Test that references resolve once markers are provided."""
        expression = TimestampExpression()
        state = expression.parse("=I1+1:00")
        assert state.valid
        assert expression.ms() is None

        expression.update_markers(markers)
        assert expression.ms() == 105000

    def test_update_state(self, markers):
        """Test applying one parsed state to another item's markers."""
        state = TimestampExpression().parse("=C-1S")
        expression = TimestampExpression(markers).update_state(state)
        assert expression.ms() == 500000

    def test_whitespace_ignored(self):
        """Test that spaces are stripped before parsing."""
        expression = TimestampExpression()
        expression.parse("= 1:00 + 500")
        assert expression.ms() == 60500
