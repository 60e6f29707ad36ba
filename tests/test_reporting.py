"""Tests for sprintscore.reporting."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from sprintscore.errors import NotFoundError
from sprintscore.models import Repository
from sprintscore.reporting import AxisStats, sprint_history, sprint_report
from sprintscore.storage.store import Store

NOW = datetime(2024, 1, 10, 12, tzinfo=timezone.utc)
CREATED = datetime(2024, 1, 8, 9, tzinfo=timezone.utc)


@pytest.fixture
def sprint_one(store: Store, add_issue):
    """alice closes #1 in a day, bob closes #2 in 100 hours; bob's #3 is open."""
    first = add_issue(1, author="alice", closed_at=CREATED + timedelta(hours=24))
    second = add_issue(2, author="bob", closed_at=CREATED + timedelta(hours=100))
    add_issue(3, author="bob", state="open")
    store.save_quality_evaluation(first.id, 85, "A", {})
    store.save_quality_evaluation(second.id, 60, "C", {})
    store.save_consistency_evaluation(first.id, 90, "A", {})
    return first, second


class TestAxisStats:
    def test_average_is_graded_after_rounding(self):
        stats = AxisStats.from_scores([85, 60])
        assert stats.average_score == 73
        assert stats.average_grade == "B"
        assert stats.distribution == {"A": 1, "B": 0, "C": 1, "D": 0, "E": 0}

    def test_empty(self):
        stats = AxisStats.from_scores([])
        assert stats.evaluated == 0
        assert stats.average_score is None
        assert stats.average_grade is None
        assert sum(stats.distribution.values()) == 0


class TestSprintReport:
    def test_current_sprint(self, store: Store, repository: Repository, sprint_one):
        report = sprint_report(store, repository.id, now=NOW)

        assert report.sprint_number == 1
        assert report.is_current
        assert report.label == "1/6(Sat) - 1/12(Fri)"
        assert report.team.total_issues == 3
        assert report.team.closed_issues == 2
        assert report.team.open_issues == 1
        assert report.team.average_lead_time_hours == 62.0
        assert report.team.quality.average_score == 73
        assert report.team.consistency.evaluated == 1

    def test_speed_computed_when_not_persisted(self, store: Store, repository: Repository, sprint_one):
        report = sprint_report(store, repository.id, now=NOW)
        assert report.team.speed.evaluated == 2
        assert report.team.speed.average_score == 70
        assert report.team.speed.distribution["A"] == 1
        assert report.team.speed.distribution["D"] == 1

    def test_persisted_speed_wins(self, store: Store, repository: Repository, sprint_one):
        first, second = sprint_one
        store.save_speed_evaluation(first.id, 20, "E")
        report = sprint_report(store, repository.id, now=NOW)
        assert report.team.speed.average_score == 30

    def test_users_sorted_by_name_without_tracking(self, store: Store, repository: Repository, sprint_one):
        report = sprint_report(store, repository.id, now=NOW)
        assert [u.user_name for u in report.users] == ["alice", "bob"]
        assert not any(u.is_tracked for u in report.users)
        bob = report.users[1]
        assert bob.stats.total_issues == 2
        assert bob.stats.quality.average_score == 60

    def test_tracked_users_first_and_filtered(self, store: Store, repository: Repository, sprint_one):
        store.track_collaborator(repository.id, "carol")
        store.track_collaborator(repository.id, "alice")

        report = sprint_report(store, repository.id, now=NOW)

        assert [u.user_name for u in report.users] == ["carol", "alice"]
        assert all(u.is_tracked for u in report.users)
        assert report.users[0].stats.total_issues == 0
        assert report.team.total_issues == 1

    def test_offset_into_empty_sprint(self, store: Store, repository: Repository, sprint_one):
        report = sprint_report(store, repository.id, offset=1, now=NOW)
        assert report.sprint_number == 2
        assert not report.is_current
        assert report.offset == 1
        assert report.team.total_issues == 0
        assert report.team.average_lead_time_hours is None
        assert report.team.quality.average_grade is None
        assert report.users == []

    def test_unknown_repository(self, store: Store):
        with pytest.raises(NotFoundError):
            sprint_report(store, 404, now=NOW)


class TestSprintHistory:
    def test_newest_first(self, store: Store, repository: Repository, add_issue):
        add_issue(1, sprint_number=1)
        add_issue(2, sprint_number=2)
        add_issue(3, sprint_number=2)
        add_issue(4, sprint_number=3)

        history = sprint_history(store, repository.id, count=3, now=datetime(2024, 1, 20, tzinfo=timezone.utc))

        assert [r.sprint_number for r in history] == [3, 2, 1]
        assert [r.offset for r in history] == [0, -1, -2]
        assert [r.is_current for r in history] == [True, False, False]
        assert [r.team.total_issues for r in history] == [1, 2, 1]

    def test_count_must_be_positive(self, store: Store, repository: Repository):
        with pytest.raises(ValueError):
            sprint_history(store, repository.id, count=0)
