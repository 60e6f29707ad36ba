"""Tests for sprintscore.batch.orchestrator."""

from __future__ import annotations

import threading
from unittest.mock import MagicMock

import pytest

from sprintscore.batch.orchestrator import (
    CONSISTENCY,
    QUALITY,
    BatchEvaluator,
    ItemStatus,
)
from sprintscore.errors import EvaluatorError, NotFoundError, RateLimitError, TrackerError
from sprintscore.evaluation.consistency import ConsistencyResult
from sprintscore.evaluation.grade import grade_for
from sprintscore.evaluation.quality import QualityEvaluator, QualityResult
from sprintscore.github.fetcher import LinkedPullRequest
from sprintscore.models import Repository
from sprintscore.storage.store import Store


class FakeQualityEvaluator:
    """Scores 75 unless told to fail on a given call (1-based) or issue number."""

    def __init__(
        self,
        fail_on: dict[int, Exception] | None = None,
        score: int = 75,
        fail_numbers: set[int] | None = None,
    ):
        self.fail_on = fail_on or {}
        self.fail_numbers = fail_numbers or set()
        self.score = score
        self.seen = []

    def evaluate(self, issue):
        self.seen.append(issue)
        error = self.fail_on.get(len(self.seen))
        if error is None and issue.number in self.fail_numbers:
            error = EvaluatorError(f"cannot score #{issue.number}")
        if error is not None:
            raise error
        return QualityResult(
            total_score=self.score,
            grade=grade_for(self.score),
            categories=[],
            overall_feedback="ok",
        )


class FakeConsistencyEvaluator:
    def __init__(self, score: int = 90):
        self.score = score
        self.seen = []

    def evaluate(self, issue, pull_requests):
        self.seen.append((issue.number, [pr.number for pr in pull_requests]))
        return ConsistencyResult(
            total_score=self.score,
            grade=grade_for(self.score),
            categories=[],
            overall_feedback="matches",
            linked_pull_requests=[pr.reference() for pr in pull_requests],
        )


class FakeFetcher:
    def __init__(self, linked: dict[int, list[int]] | None = None, fail_for: set[int] | None = None):
        self.linked = linked or {}
        self.fail_for = fail_for or set()

    def list_linked_merged_pull_requests(self, owner, repo, issue_number):
        if issue_number in self.fail_for:
            raise TrackerError(f"timeline for #{issue_number} unavailable", status=502)
        return [
            LinkedPullRequest(
                number=n,
                title=f"PR {n}",
                url=f"https://github.com/{owner}/{repo}/pull/{n}",
                body="",
                diff="+ change",
                diff_summary="[modified] app.py (+1/-0)",
            )
            for n in self.linked.get(issue_number, [])
        ]


def _model_replying(text: str) -> MagicMock:
    block = MagicMock()
    block.text = text
    client = MagicMock()
    client.messages.create.return_value.content = [block]
    return client


class Sleeper:
    def __init__(self):
        self.calls: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def _batch(store, quality=None, consistency=None, fetcher=None, sleep=None, clock=None):
    kwargs = {}
    if clock is not None:
        kwargs["clock"] = clock
    return BatchEvaluator(
        store,
        quality if quality is not None else FakeQualityEvaluator(),
        consistency if consistency is not None else FakeConsistencyEvaluator(),
        fetcher if fetcher is not None else FakeFetcher(),
        quality_delay=1.0,
        consistency_delay=2.0,
        sleep=sleep or Sleeper(),
        **kwargs,
    )


class TestQualityBatch:
    def test_evaluates_up_to_limit(self, store: Store, repository: Repository, add_issue):
        for n in range(1, 8):
            add_issue(n, state="open")
        sleeper = Sleeper()
        result = _batch(store, sleep=sleeper).run(repository.id, QUALITY, limit=5)

        assert result.evaluated == 5
        assert result.remaining == 2
        assert not result.is_complete
        assert [i.tracker_number for i in result.items] == [1, 2, 3, 4, 5]
        assert store.get_evaluation(result.items[0].issue_id).quality_score == 75

    def test_delay_between_items_not_after_last(self, store: Store, repository: Repository, add_issue):
        for n in range(1, 4):
            add_issue(n)
        sleeper = Sleeper()
        _batch(store, sleep=sleeper).run(repository.id, QUALITY, limit=10)
        assert sleeper.calls == [1.0, 1.0]

    def test_rate_limit_stops_and_resumes(self, store: Store, repository: Repository, add_issue):
        for n in range(1, 13):
            add_issue(n)
        quality = FakeQualityEvaluator(fail_on={3: RateLimitError("slow down")})
        batch = _batch(store, quality=quality)

        first = batch.run(repository.id, QUALITY, limit=5)
        assert (first.evaluated, first.errors, first.remaining) == (2, 0, 10)
        assert first.stopped_reason == "rate_limited"
        assert first.items[-1].status is ItemStatus.RATE_LIMITED
        assert len(first.items) == 3

        second = batch.run(repository.id, QUALITY, limit=5)
        assert second.items[0].tracker_number == 3
        assert second.evaluated == 5
        assert second.remaining == 5

    def test_errors_continue_and_stay_pending(self, store: Store, repository: Repository, add_issue):
        for n in range(1, 4):
            add_issue(n)
        quality = FakeQualityEvaluator(fail_on={2: EvaluatorError("bad JSON")})
        sleeper = Sleeper()
        batch = _batch(store, quality=quality, sleep=sleeper)

        result = batch.run(repository.id, QUALITY, limit=10)
        assert (result.evaluated, result.errors, result.remaining) == (2, 1, 1)
        assert result.stopped_reason is None
        assert result.items[1].status is ItemStatus.ERROR
        assert "bad JSON" in result.items[1].error
        assert sleeper.calls == [1.0]
        assert [i.tracker_number for i in batch.pending(repository.id, QUALITY)] == [2]

    def test_wrongly_shaped_model_reply_is_an_item_error(self, store: Store, repository: Repository, add_issue):
        for n in range(1, 4):
            add_issue(n)
        quality = QualityEvaluator(_model_replying('{"categories": 5}'))

        result = _batch(store, quality=quality).run(repository.id, QUALITY, limit=3)

        assert (result.evaluated, result.errors, result.remaining) == (0, 3, 3)
        assert all(i.status is ItemStatus.ERROR for i in result.items)

    def test_unreadable_category_ids_score_zero(self, store: Store, repository: Repository, add_issue):
        issue = add_issue(1)
        quality = QualityEvaluator(_model_replying('{"categories": [{"categoryId": ["a"], "score": 1}]}'))

        result = _batch(store, quality=quality).run(repository.id, QUALITY, limit=3)

        assert result.evaluated == 1
        assert store.get_evaluation(issue.id).quality_score == 0

    def test_failed_issues_retried_after_fresh_ones(self, store: Store, repository: Repository, add_issue):
        for n in range(1, 4):
            add_issue(n)
        quality = FakeQualityEvaluator(fail_numbers={1, 2})
        batch = _batch(store, quality=quality)

        first = batch.run(repository.id, QUALITY, limit=2)
        assert [i.tracker_number for i in first.items] == [1, 2]
        assert not first.stalled

        second = batch.run(repository.id, QUALITY, limit=2)
        assert [i.tracker_number for i in second.items] == [3, 1]
        assert [i.status for i in second.items] == [ItemStatus.EVALUATED, ItemStatus.ERROR]
        assert not second.stalled

    def test_stalled_when_only_failed_issues_are_left(self, store: Store, repository: Repository, add_issue):
        for n in range(1, 3):
            add_issue(n)
        batch = _batch(store, quality=FakeQualityEvaluator(fail_numbers={1, 2}))

        first = batch.run(repository.id, QUALITY, limit=5)
        second = batch.run(repository.id, QUALITY, limit=5)

        assert not first.stalled
        assert second.stalled
        assert (second.errors, second.remaining) == (2, 2)

    def test_success_clears_earlier_failure(self, store: Store, repository: Repository, add_issue):
        add_issue(1)
        add_issue(2)
        quality = FakeQualityEvaluator(fail_on={1: EvaluatorError("flaky")})
        batch = _batch(store, quality=quality)

        batch.run(repository.id, QUALITY, limit=1)
        second = batch.run(repository.id, QUALITY, limit=2)

        assert [i.tracker_number for i in second.items] == [2, 1]
        assert second.evaluated == 2
        assert not second.stalled

    def test_nothing_pending(self, store: Store, repository: Repository, add_issue):
        issue = add_issue(1)
        store.save_quality_evaluation(issue.id, 60, "C", {})
        result = _batch(store).run(repository.id, QUALITY, limit=5)
        assert result.is_complete
        assert result.items == []

    def test_passes_assignee_name(self, store: Store, repository: Repository, add_issue):
        add_issue(1, assignee="bob")
        add_issue(2)
        quality = FakeQualityEvaluator()
        _batch(store, quality=quality).run(repository.id, QUALITY, limit=5)
        assert [i.assignee for i in quality.seen] == ["bob", None]

    def test_speed_columns_untouched(self, store: Store, repository: Repository, add_issue):
        issue = add_issue(1)
        store.save_speed_evaluation(issue.id, 100, "A")
        _batch(store).run(repository.id, QUALITY, limit=1)
        evaluation = store.get_evaluation(issue.id)
        assert (evaluation.speed_score, evaluation.quality_score) == (100, 75)


class TestConsistencyBatch:
    def test_only_closed_issues_are_pending(self, store: Store, repository: Repository, add_issue):
        add_issue(1, state="open")
        add_issue(2)
        batch = _batch(store, fetcher=FakeFetcher({2: [20]}))
        assert [i.tracker_number for i in batch.pending(repository.id, CONSISTENCY)] == [2]

    def test_evaluates_with_linked_prs(self, store: Store, repository: Repository, add_issue):
        issue = add_issue(2)
        consistency = FakeConsistencyEvaluator()
        batch = _batch(store, consistency=consistency, fetcher=FakeFetcher({2: [20, 21]}))

        result = batch.run(repository.id, CONSISTENCY, limit=5)

        assert result.evaluated == 1
        assert consistency.seen == [(2, [20, 21])]
        evaluation = store.get_evaluation(issue.id)
        assert evaluation.consistency_score == 90
        assert [pr["number"] for pr in evaluation.consistency_details["linkedPRs"]] == [20, 21]

    def test_skip_without_linked_prs_is_persisted(self, store: Store, repository: Repository, add_issue):
        issue = add_issue(1)
        consistency = FakeConsistencyEvaluator()
        sleeper = Sleeper()
        batch = _batch(store, consistency=consistency, sleep=sleeper)

        first = batch.run(repository.id, CONSISTENCY, limit=5)
        assert (first.evaluated, first.skipped, first.remaining) == (0, 1, 0)
        assert consistency.seen == []
        assert sleeper.calls == []
        assert store.get_evaluation(issue.id).consistency_skipped_at is not None

        second = batch.run(repository.id, CONSISTENCY, limit=5)
        assert second.items == []
        assert second.remaining == 0

    def test_cleared_skips_become_pending_again(self, store: Store, repository: Repository, add_issue):
        add_issue(1)
        batch = _batch(store)
        batch.run(repository.id, CONSISTENCY, limit=5)

        assert store.clear_consistency_skips(repository.id) == 1
        assert len(batch.pending(repository.id, CONSISTENCY)) == 1

    def test_resolver_failure_is_an_item_error(self, store: Store, repository: Repository, add_issue):
        add_issue(1)
        add_issue(2)
        batch = _batch(store, fetcher=FakeFetcher({2: [20]}, fail_for={1}))

        result = batch.run(repository.id, CONSISTENCY, limit=5)

        assert [i.status for i in result.items] == [ItemStatus.ERROR, ItemStatus.EVALUATED]
        assert result.remaining == 1

    def test_longer_delay(self, store: Store, repository: Repository, add_issue):
        add_issue(1)
        add_issue(2)
        sleeper = Sleeper()
        _batch(store, fetcher=FakeFetcher({1: [10], 2: [20]}), sleep=sleeper).run(
            repository.id, CONSISTENCY, limit=5
        )
        assert sleeper.calls == [2.0]


class TestStopping:
    def test_deadline_checked_between_items(self, store: Store, repository: Repository, add_issue):
        for n in range(1, 5):
            add_issue(n)
        ticks = iter([0.0, 5.0, 11.0, 12.0])
        batch = _batch(store, clock=lambda: next(ticks))

        result = batch.run(repository.id, QUALITY, limit=10, deadline=10.0)

        assert result.evaluated == 2
        assert result.stopped_reason == "deadline"
        assert result.remaining == 2

    def test_cancel(self, store: Store, repository: Repository, add_issue):
        for n in range(1, 4):
            add_issue(n)
        cancel = threading.Event()

        def sleep(_seconds):
            cancel.set()

        result = _batch(store, sleep=sleep).run(repository.id, QUALITY, limit=10, cancel=cancel)
        assert result.evaluated == 1
        assert result.stopped_reason == "cancelled"


class TestValidation:
    @pytest.mark.parametrize("limit", [0, 21, -1, True, 2.5])
    def test_bad_limit(self, store: Store, repository: Repository, limit):
        with pytest.raises(ValueError):
            _batch(store).run(repository.id, QUALITY, limit=limit)

    def test_bad_axis(self, store: Store, repository: Repository):
        with pytest.raises(ValueError):
            _batch(store).run(repository.id, "speed", limit=5)

    def test_unknown_repository(self, store: Store):
        with pytest.raises(NotFoundError):
            _batch(store).run(42, QUALITY, limit=5)

    def test_missing_evaluator(self, store: Store, repository: Repository):
        batch = BatchEvaluator(store, None, None, None)
        with pytest.raises(ValueError):
            batch.run(repository.id, CONSISTENCY, limit=5)
