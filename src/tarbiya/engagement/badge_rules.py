"""Static milestone badge rules.

Rules are evaluated against a metrics snapshot, never stored. Adding a rule
here is enough for the next snapshot sync to grant it.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Literal

MetricKind = Literal["score", "streak", "wins", "certificates"]


@dataclass(frozen=True)
class BadgeRule:
    code: str
    metric: MetricKind
    threshold: int
    name: str
    icon: str | None = None
    description: str | None = None

    def as_badge(self) -> dict:
        data = asdict(self)
        data.pop("metric")
        data.pop("threshold")
        return data


BADGE_RULES: tuple[BadgeRule, ...] = (
    BadgeRule("score_10", "score", 10, "First Step", "star-outline", "10+ points collected"),
    BadgeRule("score_30", "score", 30, "Active Student", "flash", "30+ points collected"),
    BadgeRule("score_60", "score", 60, "Impact Leader", "trophy", "60+ points collected"),
    BadgeRule("score_100", "score", 100, "Campus Legend", "crown", "100+ points collected"),
    BadgeRule("streak_2", "streak", 2, "Two Week Sprint", "timeline", "2 week streak reached"),
    BadgeRule("streak_4", "streak", 4, "Consistency Master", "whatshot", "4 week streak reached"),
    BadgeRule("challenge_winner", "wins", 1, "Weekly Champion", "military_tech", "Won at least one weekly challenge"),
    BadgeRule(
        "certified", "certificates", 1, "Certified Talent", "workspace_premium", "Received at least one certificate"
    ),
)

# Granted by the monthly pipeline, one per streak month (code gets a _YYYY-MM suffix).
TOP_STREAK_BADGE = {
    "code": "top_streak",
    "name": "Grand Certificate",
    "icon": "verified",
    "description": "Ranked #1 three months in a row",
}

CHALLENGE_WIN_BADGE = {
    "code": "challenge_win",
    "name": "Challenge 1st Place",
    "icon": "emoji_events",
    "description": "Weekly challenge winner",
}


def rules_met(metrics: dict[str, int], rules: tuple[BadgeRule, ...] = BADGE_RULES) -> list[BadgeRule]:
    """Return every rule whose metric meets or exceeds its threshold."""
    return [rule for rule in rules if max(0, int(metrics.get(rule.metric, 0) or 0)) >= rule.threshold]
