"""Speed axis: how long an issue took from creation to close.

Deterministic, no AI. Canonical A-E table by elapsed days:
    <= 2 days -> A / 100
    <= 3 days -> B / 80
    <= 4 days -> C / 60
    <= 5 days -> D / 40
    otherwise -> E / 20
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sprintscore.evaluation.grade import Grade, grade_for

SPEED_THRESHOLDS: tuple[tuple[float, int], ...] = (
    (2, 100),
    (3, 80),
    (4, 60),
    (5, 40),
)
SLOWEST_SCORE = 20


@dataclass(frozen=True)
class SpeedResult:
    score: int
    grade: Grade
    lead_time_hours: float
    lead_time_days: float

    @property
    def message(self) -> str:
        days = round(self.lead_time_days, 1)
        for max_days, score in SPEED_THRESHOLDS:
            if self.score == score:
                return f"Closed in {days} days (within {max_days:g} days)"
        return f"Closed in {days} days (over {SPEED_THRESHOLDS[-1][0]:g} days)"


def score_for_days(days: float) -> int:
    if days < 0:
        raise ValueError(f"Lead time cannot be negative: {days}")
    for max_days, score in SPEED_THRESHOLDS:
        if days <= max_days:
            return score
    return SLOWEST_SCORE


def evaluate_hours(hours: float) -> SpeedResult:
    if hours < 0:
        raise ValueError(f"Lead time cannot be negative: {hours}")
    days = hours / 24
    score = score_for_days(days)
    return SpeedResult(
        score=score,
        grade=grade_for(score),
        lead_time_hours=hours,
        lead_time_days=days,
    )


def evaluate_speed(created_at: datetime, closed_at: datetime) -> SpeedResult:
    """Score the elapsed time between creation and close."""
    hours = (closed_at - created_at).total_seconds() / 3600
    return evaluate_hours(hours)


def evaluate_issue_speed(issue) -> SpeedResult | None:
    """Speed for a stored issue, or None if it is open or has no close time."""
    if issue.state != "closed" or issue.tracker_closed_at is None:
        return None
    return evaluate_speed(issue.tracker_created_at, issue.tracker_closed_at)
