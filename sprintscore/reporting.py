"""Sprint dashboards and history, aggregated from the store.

Averages are taken over raw scores and graded afterwards. Speed is read from
the store when it has been persisted and computed on the fly otherwise.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

from sprintscore.evaluation.grade import average_score, empty_distribution, grade_for
from sprintscore.evaluation.speed import evaluate_issue_speed
from sprintscore.models import IssueWithEvaluation, Repository
from sprintscore.sprint.calculator import Sprint, SprintCalculator, SprintPeriod
from sprintscore.storage.store import Store


@dataclass
class AxisStats:
    evaluated: int = 0
    average_score: int | None = None
    average_grade: str | None = None
    distribution: dict[str, int] = field(default_factory=empty_distribution)

    @classmethod
    def from_scores(cls, scores: list[int]) -> AxisStats:
        stats = cls(evaluated=len(scores))
        for score in scores:
            stats.distribution[grade_for(score).value] += 1
        stats.average_score = average_score(scores)
        if stats.average_score is not None:
            stats.average_grade = grade_for(stats.average_score).value
        return stats


@dataclass
class GroupStats:
    total_issues: int = 0
    open_issues: int = 0
    closed_issues: int = 0
    average_lead_time_hours: float | None = None
    speed: AxisStats = field(default_factory=AxisStats)
    quality: AxisStats = field(default_factory=AxisStats)
    consistency: AxisStats = field(default_factory=AxisStats)


@dataclass
class UserReport:
    user_name: str
    is_tracked: bool
    stats: GroupStats
    issues: list[IssueWithEvaluation] = field(default_factory=list)


@dataclass
class SprintReport:
    repository_id: int
    sprint_number: int
    period: SprintPeriod
    label: str
    is_current: bool
    offset: int
    team: GroupStats
    users: list[UserReport]
    issues: list[IssueWithEvaluation] = field(default_factory=list)


def _speed(row: IssueWithEvaluation) -> tuple[int | None, float | None]:
    """(score, lead time hours) of a row, persisted score preferred."""
    try:
        result = evaluate_issue_speed(row.issue)
    except ValueError:
        result = None
    hours = result.lead_time_hours if result else None
    if row.evaluation is not None and row.evaluation.speed_score is not None:
        return row.evaluation.speed_score, hours
    return (result.score if result else None), hours


def group_stats(rows: list[IssueWithEvaluation]) -> GroupStats:
    speed_scores: list[int] = []
    quality_scores: list[int] = []
    consistency_scores: list[int] = []
    lead_times: list[float] = []
    closed = 0

    for row in rows:
        if row.issue.state == "closed":
            closed += 1
        score, hours = _speed(row)
        if score is not None:
            speed_scores.append(score)
        if hours is not None:
            lead_times.append(hours)
        evaluation = row.evaluation
        if evaluation is None:
            continue
        if evaluation.quality_score is not None:
            quality_scores.append(evaluation.quality_score)
        if evaluation.consistency_score is not None:
            consistency_scores.append(evaluation.consistency_score)

    return GroupStats(
        total_issues=len(rows),
        open_issues=len(rows) - closed,
        closed_issues=closed,
        average_lead_time_hours=round(sum(lead_times) / len(lead_times), 1) if lead_times else None,
        speed=AxisStats.from_scores(speed_scores),
        quality=AxisStats.from_scores(quality_scores),
        consistency=AxisStats.from_scores(consistency_scores),
    )


def _build_report(
    repository: Repository,
    sprint: Sprint,
    offset: int,
    rows: list[IssueWithEvaluation],
    tracked: list[str],
) -> SprintReport:
    if tracked:
        rows = [r for r in rows if r.author in tracked]

    by_author: dict[str, list[IssueWithEvaluation]] = {name: [] for name in tracked}
    for row in rows:
        if row.author is not None:
            by_author.setdefault(row.author, []).append(row)

    # tracked users first in registration order, then everyone else by name
    others = sorted(name for name in by_author if name not in tracked)
    users = [
        UserReport(
            user_name=name,
            is_tracked=name in tracked,
            stats=group_stats(by_author[name]),
            issues=by_author[name],
        )
        for name in [*tracked, *others]
    ]

    return SprintReport(
        repository_id=repository.id,
        sprint_number=sprint.number.value,
        period=sprint.period,
        label=sprint.period.format(),
        is_current=sprint.is_current,
        offset=offset,
        team=group_stats(rows),
        users=users,
        issues=rows,
    )


def sprint_report(
    store: Store, repository_id: int, offset: int = 0, now: datetime | None = None
) -> SprintReport:
    """Dashboard for the sprint ``offset`` sprints away from the current one.

    Raises NotFoundError for an unknown repository.
    """
    repository = store.require_repository(repository_id)
    calculator = SprintCalculator(repository.sprint_config())
    sprint = calculator.sprint_with_offset(now or datetime.now(timezone.utc), offset)

    rows = store.get_issues_with_evaluations(
        repository_id, min_sprint=sprint.number.value, max_sprint=sprint.number.value
    )
    tracked = store.get_tracked_usernames(repository_id)
    return _build_report(repository, sprint, offset, rows, tracked)


def sprint_history(
    store: Store, repository_id: int, count: int = 12, now: datetime | None = None
) -> list[SprintReport]:
    """Reports for the current sprint and the ``count - 1`` before it, newest first."""
    if count < 1:
        raise ValueError(f"count must be at least 1, got {count}")

    repository = store.require_repository(repository_id)
    calculator = SprintCalculator(repository.sprint_config())
    moment = now or datetime.now(timezone.utc)
    sprints = [calculator.sprint_with_offset(moment, -k) for k in range(count)]

    rows = store.get_issues_with_evaluations(
        repository_id,
        min_sprint=sprints[-1].number.value,
        max_sprint=sprints[0].number.value,
    )
    by_sprint: dict[int, list[IssueWithEvaluation]] = {}
    for row in rows:
        by_sprint.setdefault(row.issue.sprint_number, []).append(row)

    tracked = store.get_tracked_usernames(repository_id)
    return [
        _build_report(repository, sprint, -k, by_sprint.get(sprint.number.value, []), tracked)
        for k, sprint in enumerate(sprints)
    ]
