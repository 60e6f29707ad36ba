"""Score → grade value model shared by every evaluation axis.

Grades and their score bands:
    A: 81-100
    B: 61-80
    C: 41-60
    D: 21-40
    E: 0-20
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Iterable

MIN_SCORE = 0
MAX_SCORE = 100


class Grade(str, Enum):
    A = "A"
    B = "B"
    C = "C"
    D = "D"
    E = "E"

    @property
    def rank(self) -> int:
        """5 for A down to 1 for E."""
        return _RANK[self]

    @property
    def label(self) -> str:
        return _LABELS[self]

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Grade):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, Grade):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, Grade):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, Grade):
            return NotImplemented
        return self.rank >= other.rank

    def __str__(self) -> str:
        return self.value


_RANK = {Grade.A: 5, Grade.B: 4, Grade.C: 3, Grade.D: 2, Grade.E: 1}

_LABELS = {
    Grade.A: "Excellent",
    Grade.B: "Good",
    Grade.C: "Fair",
    Grade.D: "Needs improvement",
    Grade.E: "Poor",
}

# (min, max, grade), highest band first
GRADE_THRESHOLDS: tuple[tuple[int, int, Grade], ...] = (
    (81, 100, Grade.A),
    (61, 80, Grade.B),
    (41, 60, Grade.C),
    (21, 40, Grade.D),
    (0, 20, Grade.E),
)


def validate_score(score: int) -> int:
    """Return ``score`` unchanged if it is an integer in [0, 100].

    Raises:
        TypeError: for non-integers (bools included).
        ValueError: for integers outside the range.
    """
    if isinstance(score, bool) or not isinstance(score, int):
        raise TypeError(f"Score must be an integer, got {score!r}")
    if score < MIN_SCORE or score > MAX_SCORE:
        raise ValueError(f"Score must be between {MIN_SCORE} and {MAX_SCORE}, got {score}")
    return score


def grade_for(score: int) -> Grade:
    """Map a 0-100 integer score to its grade."""
    validate_score(score)
    for low, high, grade in GRADE_THRESHOLDS:
        if low <= score <= high:
            return grade
    raise AssertionError(f"No grade band covers {score}")  # thresholds are contiguous


def compare_grades(a: Grade, b: Grade) -> int:
    """-1, 0 or 1 as ``a`` is worse than, equal to, or better than ``b``."""
    return (a.rank > b.rank) - (a.rank < b.rank)


def average_score(scores: Iterable[int]) -> int | None:
    """Average raw scores, rounding half away from zero. None for no scores."""
    values = [validate_score(s) for s in scores]
    if not values:
        return None
    mean = Decimal(sum(values)) / Decimal(len(values))
    return int(mean.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def average_grade(scores: Iterable[int]) -> Grade | None:
    """Grade of the rounded average score. Grades are never averaged directly."""
    avg = average_score(scores)
    return grade_for(avg) if avg is not None else None


def empty_distribution() -> dict[str, int]:
    return {grade.value: 0 for grade in Grade}
