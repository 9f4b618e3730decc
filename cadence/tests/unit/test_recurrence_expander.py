"""
Unit tests for recurrence expansion.

Tests window bounds, COUNT/UNTIL handling, DST behaviour, determinism and
the occurrence cap.
"""

import pytest
from datetime import date, datetime, timedelta, timezone

from cadence.src.services.exceptions import (
    InvalidRuleError,
    UnsupportedFrequencyError,
    ValidationError,
)
from cadence.src.services.recurrence_expander import (
    end_of_local_day,
    expand_occurrences,
    local_date_of,
)


MONDAY_9AM = datetime(2026, 3, 2, 9, 0)
ONE_HOUR = timedelta(hours=1)
TWO_WEEKS = end_of_local_day(date(2026, 3, 15))


class TestExpandOccurrences:
    """Tests for expand_occurrences."""

    def test_mon_wed_fri_two_weeks(self):
        """Test MO/WE/FR at 09:00 for 1h over two weeks yields 6 occurrences."""
        occurrences = expand_occurrences(
            "FREQ=WEEKLY;BYDAY=MO,WE,FR;COUNT=12", MONDAY_9AM, ONE_HOUR, None, TWO_WEEKS
        )

        assert [o.local_date for o in occurrences] == [
            date(2026, 3, 2), date(2026, 3, 4), date(2026, 3, 6),
            date(2026, 3, 9), date(2026, 3, 11), date(2026, 3, 13),
        ]
        first = occurrences[0]
        assert first.start == datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
        assert first.end == datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)

    def test_count_bounds_expansion(self):
        """Test COUNT stops expansion before the window end."""
        occurrences = expand_occurrences(
            "FREQ=DAILY;COUNT=3", MONDAY_9AM, ONE_HOUR, None, MONDAY_9AM + timedelta(days=30)
        )

        assert len(occurrences) == 3

    def test_until_bounds_expansion(self):
        """Test UNTIL stops expansion before the window end."""
        occurrences = expand_occurrences(
            "FREQ=DAILY;UNTIL=20260304T235959Z", MONDAY_9AM, ONE_HOUR, None,
            MONDAY_9AM + timedelta(days=30),
        )

        assert [o.local_date.day for o in occurrences] == [2, 3, 4]

    def test_window_end_inclusive(self):
        """Test an occurrence starting exactly at window_end is included."""
        occurrences = expand_occurrences(
            "FREQ=DAILY", MONDAY_9AM, ONE_HOUR, None, MONDAY_9AM + timedelta(days=2)
        )

        assert len(occurrences) == 3

    def test_ranges_half_open_and_ordered(self):
        """Test every range has start < end and ranges are ordered."""
        occurrences = expand_occurrences(
            "FREQ=HOURLY;INTERVAL=5", MONDAY_9AM, ONE_HOUR, None, MONDAY_9AM + timedelta(days=2)
        )

        assert all(o.start < o.end for o in occurrences)
        starts = [o.start for o in occurrences]
        assert starts == sorted(starts)

    def test_later_window_extends_earlier_results(self):
        """Test expanding further reproduces the earlier results as a prefix."""
        rule = "FREQ=WEEKLY;BYDAY=TU,TH"
        short = expand_occurrences(rule, MONDAY_9AM, ONE_HOUR, "Europe/Paris", TWO_WEEKS)
        longer = expand_occurrences(
            rule, MONDAY_9AM, ONE_HOUR, "Europe/Paris", TWO_WEEKS + timedelta(days=21)
        )

        assert len(longer) > len(short)
        assert longer[:len(short)] == short

    def test_deterministic(self):
        """Test the same inputs give the same output."""
        args = ("FREQ=MONTHLY;BYMONTHDAY=2", MONDAY_9AM, ONE_HOUR, None, datetime(2026, 12, 31))

        assert expand_occurrences(*args) == expand_occurrences(*args)

    def test_wall_clock_preserved_across_dst(self):
        """Test a 09:00 New York meeting stays at 09:00 local after DST starts."""
        # 09:00 EST on Monday 2026-03-02 is 14:00 UTC; DST starts 2026-03-08
        anchor = datetime(2026, 3, 2, 14, 0)
        occurrences = expand_occurrences(
            "FREQ=WEEKLY;BYDAY=MO;COUNT=3", anchor, ONE_HOUR, "America/New_York",
            datetime(2026, 4, 1),
        )

        assert [o.start.hour for o in occurrences] == [14, 13, 13]
        assert [o.local_date for o in occurrences] == [
            date(2026, 3, 2), date(2026, 3, 9), date(2026, 3, 16),
        ]

    def test_weekday_kept_in_local_time(self):
        """Test weekdays are evaluated in the series timezone."""
        # Monday 23:30 in Los Angeles is Tuesday in UTC
        anchor = datetime(2026, 3, 3, 7, 30)
        occurrences = expand_occurrences(
            "FREQ=WEEKLY;BYDAY=MO;COUNT=2", anchor, ONE_HOUR, "America/Los_Angeles",
            datetime(2026, 4, 1),
        )

        assert [o.local_date.weekday() for o in occurrences] == [0, 0]

    def test_aware_anchor(self):
        """Test aware anchors are converted to UTC."""
        anchor = datetime(2026, 3, 2, 10, 0, tzinfo=timezone(timedelta(hours=1)))
        occurrences = expand_occurrences("FREQ=DAILY;COUNT=1", anchor, ONE_HOUR, None, TWO_WEEKS)

        assert occurrences[0].start == datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

    def test_occurrence_cap(self):
        """Test max_occurrences bounds unbounded rules."""
        occurrences = expand_occurrences(
            "FREQ=HOURLY", MONDAY_9AM, ONE_HOUR, None, datetime(2030, 1, 1), max_occurrences=50
        )

        assert len(occurrences) == 50

    def test_configured_cap(self, monkeypatch):
        """Test CADENCE_MAX_OCCURRENCES is the default cap."""
        monkeypatch.setenv("CADENCE_MAX_OCCURRENCES", "7")

        occurrences = expand_occurrences("FREQ=DAILY", MONDAY_9AM, ONE_HOUR, None, datetime(2030, 1, 1))

        assert len(occurrences) == 7

    def test_window_start_skips_earlier_occurrences(self):
        """Test a window start drops occurrences before it without shifting the rule."""
        occurrences = expand_occurrences(
            "FREQ=DAILY", MONDAY_9AM, ONE_HOUR, None, TWO_WEEKS,
            window_start=datetime(2026, 3, 10),
        )

        assert [o.local_date for o in occurrences][0] == date(2026, 3, 10)
        assert occurrences[0].start == datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc)
        assert len(occurrences) == 6

    def test_cap_counts_from_window_start(self):
        """Test the cap bounds each call, not the whole history since the anchor."""
        window_start = datetime(2028, 9, 1)
        occurrences = expand_occurrences(
            "FREQ=DAILY", MONDAY_9AM, ONE_HOUR, None, end_of_local_day(date(2029, 1, 1)),
            max_occurrences=1000, window_start=window_start,
        )

        assert occurrences[0].local_date == date(2028, 9, 1)
        assert occurrences[-1].local_date == date(2029, 1, 1)

    def test_window_start_honours_count(self):
        """Test COUNT still counts from the anchor when a window start is given."""
        occurrences = expand_occurrences(
            "FREQ=DAILY;COUNT=10", MONDAY_9AM, ONE_HOUR, None, TWO_WEEKS,
            window_start=datetime(2026, 3, 8),
        )

        assert [o.local_date for o in occurrences] == [
            date(2026, 3, 8), date(2026, 3, 9), date(2026, 3, 10), date(2026, 3, 11),
        ]

    def test_empty_window(self):
        """Test a window ending before the anchor yields nothing."""
        assert expand_occurrences(
            "FREQ=DAILY", MONDAY_9AM, ONE_HOUR, None, MONDAY_9AM - timedelta(days=1)
        ) == []

    def test_to_dict_includes_local_date(self):
        """Test serialized occurrences carry their local date."""
        occurrence = expand_occurrences(
            "FREQ=DAILY;COUNT=1", MONDAY_9AM, ONE_HOUR, None, TWO_WEEKS
        )[0]

        assert occurrence.to_dict() == {
            "start": "2026-03-02T09:00:00+00:00",
            "end": "2026-03-02T10:00:00+00:00",
            "occurrence_date": "2026-03-02",
        }


class TestExpansionErrors:
    """Tests for rejected expansion inputs."""

    def test_blocked_frequency(self):
        """Test sub-hourly rules are rejected before expansion."""
        with pytest.raises(UnsupportedFrequencyError):
            expand_occurrences("FREQ=MINUTELY", MONDAY_9AM, ONE_HOUR, None, TWO_WEEKS)

    def test_invalid_rule(self):
        """Test unparseable rules are rejected."""
        with pytest.raises(InvalidRuleError):
            expand_occurrences("FREQ=DAILY;INTERVAL=abc", MONDAY_9AM, ONE_HOUR, None, TWO_WEEKS)

    @pytest.mark.parametrize("duration", [timedelta(0), timedelta(minutes=-30)])
    def test_non_positive_duration(self, duration):
        """Test empty or negative durations are rejected."""
        with pytest.raises(ValidationError) as exc_info:
            expand_occurrences("FREQ=DAILY", MONDAY_9AM, duration, None, TWO_WEEKS)

        assert exc_info.value.field == "duration"

    def test_unknown_timezone(self):
        """Test unknown timezones are rejected."""
        with pytest.raises(ValidationError) as exc_info:
            expand_occurrences("FREQ=DAILY", MONDAY_9AM, ONE_HOUR, "Mars/Olympus", TWO_WEEKS)

        assert exc_info.value.field == "timezone"


class TestLocalDates:
    """Tests for local date helpers."""

    def test_local_date_of(self):
        """Test UTC instants map to the local calendar date."""
        assert local_date_of(datetime(2026, 3, 3, 2, 0), "America/New_York") == date(2026, 3, 2)
        assert local_date_of(datetime(2026, 3, 3, 2, 0)) == date(2026, 3, 3)

    def test_end_of_local_day(self):
        """Test the end of day is the last instant in the zone."""
        end = end_of_local_day(date(2026, 3, 2), "Asia/Tokyo")

        assert (end.hour, end.minute, end.second) == (23, 59, 59)
        assert end.utcoffset() == timedelta(hours=9)
