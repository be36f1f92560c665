"""Calendar-month helpers. A month key is a 'YYYY-MM' string."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date, datetime, timezone

from tarbiya.engagement.week_utils import as_utc


def month_key(dt: datetime | date) -> str:
    """'2024-03' for any moment in March 2024."""
    if isinstance(dt, datetime):
        dt = as_utc(dt)
    return f"{dt.year:04d}-{dt.month:02d}"


def shift_month(dt: datetime | date, delta: int) -> datetime:
    """First instant (UTC) of the month ``delta`` months away from dt's month."""
    if isinstance(dt, datetime):
        dt = as_utc(dt)
    index = dt.year * 12 + (dt.month - 1) + delta
    return datetime(index // 12, index % 12 + 1, 1, tzinfo=timezone.utc)


def previous_month(now: datetime) -> datetime:
    """First instant of the calendar month before ``now``."""
    return shift_month(now, -1)


def month_bounds(month: datetime | date) -> tuple[datetime, datetime]:
    """Half-open [start, end) bounds of the month containing ``month``."""
    start = shift_month(month, 0)
    return start, shift_month(start, 1)


def month_from_key(raw: str | None) -> datetime | None:
    """Parse 'YYYY-MM'. Returns None for anything malformed."""
    if not raw or not isinstance(raw, str):
        return None
    parts = raw.split("-")
    if len(parts) != 2:
        return None
    try:
        year, month = int(parts[0]), int(parts[1])
    except ValueError:
        return None
    if not 1 <= month <= 12 or year < 1:
        return None
    return datetime(year, month, 1, tzinfo=timezone.utc)


def month_key_diff(a: str, b: str) -> int | None:
    """Number of months from b to a ('2024-03' minus '2024-01' is 2)."""
    ad, bd = month_from_key(a), month_from_key(b)
    if ad is None or bd is None:
        return None
    return (ad.year - bd.year) * 12 + (ad.month - bd.month)


def is_consecutive_month_keys(keys: Sequence[str]) -> bool:
    """True when keys are in descending order, each exactly one month before the previous."""
    for newer, older in zip(keys, keys[1:]):
        if month_key_diff(newer, older) != 1:
            return False
    return True
