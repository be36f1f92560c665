"""Weekly streak tests: Monday-start weeks in UTC."""

from datetime import date, datetime, timedelta, timezone

from tarbiya.engagement.week_utils import as_utc, compute_weekly_streak, get_monday

NOW = datetime(2024, 3, 13, 12, 0, tzinfo=timezone.utc)  # Wednesday
PLUS_FIVE = timezone(timedelta(hours=5))


def _weeks_ago(n: int) -> datetime:
    return NOW - timedelta(weeks=n)


class TestGetMonday:
    def test_wednesday_maps_to_monday(self):
        """Midweek dates map back to their Monday."""
        assert get_monday(NOW) == date(2024, 3, 11)

    def test_monday_returns_itself(self):
        """A Monday date is its own week start."""
        assert get_monday(date(2024, 3, 11)) == date(2024, 3, 11)

    def test_sunday_belongs_to_previous_monday(self):
        """Sunday closes the week that started six days earlier."""
        assert get_monday(datetime(2024, 3, 17, 23, 59, tzinfo=timezone.utc)) == date(2024, 3, 11)

    def test_offset_datetime_uses_utc_date(self):
        """Monday 02:00 at +05:00 is still Sunday in UTC."""
        assert get_monday(datetime(2024, 3, 18, 2, 0, tzinfo=PLUS_FIVE)) == date(2024, 3, 11)


class TestAsUtc:
    def test_naive_is_taken_as_utc(self):
        """Naive values get the UTC zone without shifting."""
        assert as_utc(datetime(2024, 3, 1, 2, 0)) == datetime(2024, 3, 1, 2, 0, tzinfo=timezone.utc)

    def test_aware_is_converted(self):
        """Aware values are shifted to UTC."""
        converted = as_utc(datetime(2024, 3, 1, 2, 0, tzinfo=PLUS_FIVE))
        assert converted.tzinfo is timezone.utc
        assert converted == datetime(2024, 2, 29, 21, 0, tzinfo=timezone.utc)


class TestComputeWeeklyStreak:
    """Consecutive active weeks ending with the current week."""

    def test_no_activity(self):
        """No events means no streak."""
        assert compute_weekly_streak([], NOW) == 0

    def test_current_week_only(self):
        """Activity this week alone is a streak of 1."""
        assert compute_weekly_streak([NOW], NOW) == 1

    def test_gap_stops_the_walk(self):
        """Activity in W, W-1 and W-3 gives a streak of 2."""
        times = [_weeks_ago(0), _weeks_ago(1), _weeks_ago(3)]
        assert compute_weekly_streak(times, NOW) == 2

    def test_idle_current_week_is_zero(self):
        """History without activity this week does not count."""
        times = [_weeks_ago(1), _weeks_ago(2), _weeks_ago(3)]
        assert compute_weekly_streak(times, NOW) == 0

    def test_multiple_events_in_one_week_count_once(self):
        """Several events inside one week still make one active week."""
        monday = datetime(2024, 3, 11, 0, 0, tzinfo=timezone.utc)
        times = [monday, monday + timedelta(days=2), monday + timedelta(days=6, hours=23)]
        assert compute_weekly_streak(times, NOW) == 1

    def test_naive_timestamps_and_none_are_accepted(self):
        """Naive values count as UTC and None entries are skipped."""
        times = [None, datetime(2024, 3, 12, 8, 0), datetime(2024, 3, 5, 8, 0)]
        assert compute_weekly_streak(times, NOW) == 2

    def test_offset_clock_is_read_in_utc(self):
        """Sunday 20:00Z activity with now at Monday 02:00+05:00 is the same UTC week."""
        activity = [datetime(2024, 3, 17, 20, 0, tzinfo=timezone.utc)]
        now = datetime(2024, 3, 18, 2, 0, tzinfo=PLUS_FIVE)
        assert compute_weekly_streak(activity, now) == 1
