# ABOUTME: Tests for duration parsing utility
# ABOUTME: Verifies "<integer><unit>" strings parse to timedelta and malformed strings are rejected

from datetime import timedelta

import pytest

from teardrop.switch.duration import InvalidDuration, parse_duration


class TestParseDuration:
    """Test suite for duration parsing."""

    def test_parse_seconds(self):
        assert parse_duration("45s") == timedelta(seconds=45)

    def test_parse_minutes(self):
        assert parse_duration("30m") == timedelta(minutes=30)

    def test_parse_hours(self):
        assert parse_duration("1h") == timedelta(hours=1)

    def test_parse_days_are_24_hours(self):
        assert parse_duration("2d") == timedelta(hours=48)

    def test_parse_weeks_are_7_days(self):
        assert parse_duration("1w") == timedelta(days=7)
        assert parse_duration("3w") == timedelta(days=21)

    def test_surrounding_whitespace_ignored(self):
        assert parse_duration("  10m ") == timedelta(minutes=10)

    @pytest.mark.parametrize("value", [1, 7, 90, 1000])
    @pytest.mark.parametrize(
        "unit,length",
        [
            ("s", timedelta(seconds=1)),
            ("m", timedelta(minutes=1)),
            ("h", timedelta(hours=1)),
            ("d", timedelta(days=1)),
            ("w", timedelta(weeks=1)),
        ],
    )
    def test_value_times_unit_length(self, value, unit, length):
        """Any positive integer with a known unit yields value * unit length."""
        assert parse_duration(f"{value}{unit}") == value * length


class TestParseDurationErrors:
    """Test suite for rejected duration strings."""

    def test_zero_rejected(self):
        with pytest.raises(InvalidDuration, match="greater than zero"):
            parse_duration("0h")

    def test_missing_integer_rejected(self):
        with pytest.raises(InvalidDuration):
            parse_duration("h")

    def test_unknown_unit_rejected(self):
        with pytest.raises(InvalidDuration, match="Bad time unit"):
            parse_duration("5y")

    def test_missing_unit_rejected(self):
        with pytest.raises(InvalidDuration):
            parse_duration("10")

    @pytest.mark.parametrize("value", ["", "   ", "abc", "-1h", "1.5h", "h1", "1h30m", "ten m"])
    def test_malformed_rejected(self, value):
        with pytest.raises(InvalidDuration):
            parse_duration(value)

    def test_none_rejected(self):
        with pytest.raises(InvalidDuration):
            parse_duration(None)  # type: ignore[arg-type]

    def test_is_value_error(self):
        """InvalidDuration is a ValueError so pydantic validators report it."""
        assert issubclass(InvalidDuration, ValueError)

    @pytest.mark.parametrize("value", ["99999999999w", "999999999999999999999s"])
    def test_out_of_range_rejected(self, value):
        """Values past what timedelta can hold are reported, not raised as OverflowError."""
        with pytest.raises(InvalidDuration, match="too large"):
            parse_duration(value)
