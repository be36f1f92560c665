"""Engagement error types."""

from __future__ import annotations


class EngagementError(Exception):
    """Base class for engagement engine errors."""


class LedgerWriteError(EngagementError):
    """The cached score changed but the ledger row could not be written.

    The surrounding transaction has been rolled back. Fatal for the current
    request, never for the process.
    """

    def __init__(self, student_id: str, delta: int) -> None:
        super().__init__(f"Could not record {delta:+d} points for student {student_id}")
        self.student_id = student_id
        self.delta = delta


class InvalidStatusError(EngagementError, ValueError):
    """A grading transition named a status the workflow does not know."""

    def __init__(self, status: str, allowed: tuple[str, ...]) -> None:
        super().__init__(f"Invalid status {status!r}; expected one of {', '.join(allowed)}")
        self.status = status
        self.allowed = allowed


class InvalidScoreError(EngagementError, ValueError):
    """A grade fell outside the accepted range."""

    def __init__(self, score: object, minimum: int, maximum: int) -> None:
        super().__init__(f"Score {score!r} must be between {minimum} and {maximum}")
        self.score = score
        self.minimum = minimum
        self.maximum = maximum
