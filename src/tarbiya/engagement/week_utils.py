"""Week boundary utilities and weekly streak computation.

Weeks start on Monday (ISO). All timestamps are read in UTC: naive values
are taken as UTC and aware values are converted before their date is used.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date, datetime, timedelta, timezone


def as_utc(dt: datetime) -> datetime:
    """Naive datetimes are UTC; aware ones are converted to UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def get_monday(dt: datetime | date) -> date:
    """Get the Monday of the ISO week containing dt (UTC date for datetimes)."""
    d = as_utc(dt).date() if isinstance(dt, datetime) else dt
    return d - timedelta(days=d.weekday())


def compute_weekly_streak(
    activity_times: Iterable[datetime | date | None],
    now: datetime | None = None,
) -> int:
    """Count consecutive active weeks ending with the week containing ``now``.

    A week is active when at least one timestamp falls inside it. The walk
    starts at the current week and stops at the first week with no activity,
    so a student idle this week has a streak of 0 regardless of history.
    """
    now = datetime.now(timezone.utc) if now is None else as_utc(now)

    active_weeks = {get_monday(ts) for ts in activity_times if ts is not None}
    if not active_weeks:
        return 0

    streak = 0
    expected = get_monday(now)
    while expected in active_weeks:
        streak += 1
        expected -= timedelta(weeks=1)
    return streak
