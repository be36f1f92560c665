"""Lenient integer coercion for limits and counters coming from callers."""

from __future__ import annotations

import math


def to_int(value: object, fallback: int = 0) -> int:
    """Coerce to int, truncating floats. Returns fallback for empty or non-numeric input."""
    if value is None or value == "":
        return fallback
    try:
        parsed = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return fallback
    if not math.isfinite(parsed):
        return fallback
    return int(parsed)


def clamp(value: int, minimum: int, maximum: int) -> int:
    return min(maximum, max(minimum, value))


def normalize_limit(raw: object, minimum: int = 1, maximum: int = 50, default: int = 10) -> int:
    """Clamp a requested page size into [minimum, maximum]."""
    return clamp(to_int(raw, default), minimum, maximum)
