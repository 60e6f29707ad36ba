"""Tests for sprintscore.evaluation.grade."""

from __future__ import annotations

import pytest

from sprintscore.evaluation.grade import (
    GRADE_THRESHOLDS,
    Grade,
    average_grade,
    average_score,
    compare_grades,
    empty_distribution,
    grade_for,
    validate_score,
)


class TestGradeFor:
    @pytest.mark.parametrize(
        "score,expected",
        [
            (100, Grade.A),
            (81, Grade.A),
            (80, Grade.B),
            (61, Grade.B),
            (60, Grade.C),
            (41, Grade.C),
            (40, Grade.D),
            (21, Grade.D),
            (20, Grade.E),
            (0, Grade.E),
        ],
    )
    def test_band_edges(self, score, expected):
        assert grade_for(score) is expected

    def test_every_score_maps_to_exactly_one_band(self):
        for score in range(0, 101):
            matches = [g for low, high, g in GRADE_THRESHOLDS if low <= score <= high]
            assert len(matches) == 1
            assert grade_for(score) is matches[0]

    def test_rejects_out_of_range(self):
        with pytest.raises(ValueError):
            grade_for(101)
        with pytest.raises(ValueError):
            grade_for(-1)

    def test_rejects_non_integers(self):
        with pytest.raises(TypeError):
            grade_for(88.5)
        with pytest.raises(TypeError):
            grade_for("88")
        with pytest.raises(TypeError):
            grade_for(True)

    def test_validate_score_returns_value(self):
        assert validate_score(42) == 42


class TestGradeOrdering:
    def test_total_order(self):
        assert Grade.A > Grade.B > Grade.C > Grade.D > Grade.E
        assert sorted([Grade.C, Grade.A, Grade.E]) == [Grade.E, Grade.C, Grade.A]
        assert max([Grade.D, Grade.B]) is Grade.B

    def test_compare_grades(self):
        assert compare_grades(Grade.A, Grade.B) == 1
        assert compare_grades(Grade.E, Grade.D) == -1
        assert compare_grades(Grade.C, Grade.C) == 0

    def test_str_is_letter(self):
        assert str(Grade.A) == "A"
        assert Grade("B") is Grade.B

    def test_rank(self):
        assert Grade.A.rank == 5
        assert Grade.E.rank == 1


class TestAverages:
    def test_average_rounds_half_away_from_zero(self):
        assert average_score([80, 81]) == 81  # 80.5
        assert average_score([60, 61, 61, 61]) == 61  # 60.75
        assert average_score([1, 2]) == 2  # 1.5

    def test_average_of_nothing(self):
        assert average_score([]) is None
        assert average_grade([]) is None

    def test_grade_comes_from_average_score_not_grades(self):
        # 100 (A) and 21 (D) average to 60.5 -> 61 -> B
        assert average_grade([100, 21]) is Grade.B

    def test_average_validates_scores(self):
        with pytest.raises(ValueError):
            average_score([50, 150])

    def test_empty_distribution(self):
        assert empty_distribution() == {"A": 0, "B": 0, "C": 0, "D": 0, "E": 0}
