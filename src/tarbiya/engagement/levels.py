"""Level computation from the running score.

Levels are a fixed step ladder: every LEVEL_STEP points is one level.
"""

from __future__ import annotations

LEVEL_STEP = 20


def compute_level(score: int | None) -> dict:
    """Compute level info from a score. Negative or missing scores count as 0."""
    safe_score = max(0, int(score or 0))
    level = safe_score // LEVEL_STEP + 1
    current_floor = (level - 1) * LEVEL_STEP
    progress = min(1.0, max(0.0, (safe_score - current_floor) / LEVEL_STEP))

    return {
        "level": level,
        "score": safe_score,
        "next_level_at": level * LEVEL_STEP,
        "progress_percent": round(progress * 100),
    }
