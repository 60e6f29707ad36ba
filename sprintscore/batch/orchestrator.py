"""Resumable, rate-limit-aware batch evaluation of the AI-scored axes.

Each call works through at most ``limit`` pending issues and reports how many
are left. "Pending" is re-derived from the store on every call, so callers
simply call again until ``remaining`` is 0.

Per-item policy:
    evaluated     score persisted, then a fixed pause before the next item
    skipped       consistency only: no linked merged PR, persisted as skipped
    error         logged and counted; the issue stays pending, and later calls on
                  the same evaluator try it after issues that have not failed
    rate_limited  the batch stops at once; this and later items stay pending
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from sprintscore.errors import RateLimitError, SprintScoreError
from sprintscore.evaluation.consistency import ConsistencyEvaluator, ConsistencyInput
from sprintscore.evaluation.quality import QualityEvaluator, QualityInput
from sprintscore.github.fetcher import Fetcher
from sprintscore.models import Evaluation, Issue, Repository
from sprintscore.storage.store import Store

logger = logging.getLogger(__name__)

QUALITY = "quality"
CONSISTENCY = "consistency"
AXES = (QUALITY, CONSISTENCY)

MAX_BATCH_LIMIT = 20
DEFAULT_QUALITY_DELAY = 1.0
DEFAULT_CONSISTENCY_DELAY = 2.0


class ItemStatus(str, Enum):
    EVALUATED = "evaluated"
    SKIPPED = "skipped"
    ERROR = "error"
    RATE_LIMITED = "rate_limited"


@dataclass
class ItemOutcome:
    issue_id: int
    tracker_number: int
    status: ItemStatus
    score: int | None = None
    grade: str | None = None
    error: str | None = None


@dataclass
class BatchResult:
    axis: str
    evaluated: int = 0
    errors: int = 0
    skipped: int = 0
    remaining: int = 0
    stopped_reason: str | None = None  # rate_limited | deadline | cancelled
    stalled: bool = False  # every item tried had already failed before
    items: list[ItemOutcome] = field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        return self.remaining == 0


def _is_done(axis: str, evaluation: Evaluation | None) -> bool:
    if evaluation is None:
        return False
    if axis == QUALITY:
        return evaluation.quality_score is not None
    return (
        evaluation.consistency_score is not None
        or evaluation.consistency_skipped_at is not None
    )


class BatchEvaluator:
    def __init__(
        self,
        store: Store,
        quality_evaluator: QualityEvaluator | None,
        consistency_evaluator: ConsistencyEvaluator | None,
        fetcher: Fetcher | None,
        quality_delay: float = DEFAULT_QUALITY_DELAY,
        consistency_delay: float = DEFAULT_CONSISTENCY_DELAY,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._quality = quality_evaluator
        self._consistency = consistency_evaluator
        self._fetcher = fetcher
        self._delays = {QUALITY: quality_delay, CONSISTENCY: consistency_delay}
        self._sleep = sleep
        self._clock = clock
        self._failed: set[tuple[str, int]] = set()

    def pending(self, repository_id: int, axis: str) -> list[Issue]:
        """Issues still missing a result on ``axis``, in tracker-number order."""
        state = "closed" if axis == CONSISTENCY else None
        issues = self._store.get_issues(repository_id, state=state)
        evaluations = self._store.get_evaluations(repository_id)
        return [i for i in issues if not _is_done(axis, evaluations.get(i.id))]

    def run(
        self,
        repository_id: int,
        axis: str,
        limit: int,
        deadline: float | None = None,
        cancel: threading.Event | None = None,
    ) -> BatchResult:
        """Evaluate up to ``limit`` pending issues on ``axis``.

        ``deadline`` is a value of the injected monotonic clock. It and
        ``cancel`` are checked between items, never in the middle of one.

        Raises:
            ValueError: unknown axis or limit outside 1-20.
            NotFoundError: unknown repository id.
        """
        if axis not in AXES:
            raise ValueError(f"Unknown axis {axis!r}, expected one of {AXES}")
        if isinstance(limit, bool) or not isinstance(limit, int) or not 1 <= limit <= MAX_BATCH_LIMIT:
            raise ValueError(f"limit must be between 1 and {MAX_BATCH_LIMIT}, got {limit!r}")
        self._require_evaluator(axis)

        repository = self._store.require_repository(repository_id)
        pending = self.pending(repository_id, axis)
        # stable: tracker-number order is kept within each group
        pending.sort(key=lambda i: (axis, i.id) in self._failed)
        batch = pending[:limit]
        result = BatchResult(axis=axis)

        logger.info(
            f"Evaluating {axis} for {repository.full_name}: "
            f"{len(batch)} of {len(pending)} pending"
        )

        failed_before = {i.id for i in batch if (axis, i.id) in self._failed}

        for index, issue in enumerate(batch):
            if cancel is not None and cancel.is_set():
                result.stopped_reason = "cancelled"
                break
            if deadline is not None and self._clock() >= deadline:
                result.stopped_reason = "deadline"
                break

            outcome = self._evaluate_item(repository, issue, axis)
            result.items.append(outcome)

            if outcome.status is ItemStatus.RATE_LIMITED:
                result.stopped_reason = "rate_limited"
                break
            if outcome.status is ItemStatus.ERROR:
                self._failed.add((axis, issue.id))
            else:
                self._failed.discard((axis, issue.id))

            if outcome.status is ItemStatus.EVALUATED:
                result.evaluated += 1
                if index < len(batch) - 1:
                    self._sleep(self._delays[axis])
            elif outcome.status is ItemStatus.SKIPPED:
                result.skipped += 1
            else:
                result.errors += 1

        result.remaining = len(pending) - result.evaluated - result.skipped
        result.stalled = bool(result.items) and all(
            item.status is ItemStatus.ERROR and item.issue_id in failed_before
            for item in result.items
        )

        if result.stopped_reason:
            logger.warning(
                f"Stopped {axis} batch early ({result.stopped_reason}); "
                f"{result.remaining} remaining"
            )
        logger.info(
            f"{axis.capitalize()} batch done: {result.evaluated} evaluated, "
            f"{result.skipped} skipped, {result.errors} errors, {result.remaining} remaining"
        )
        return result

    def _require_evaluator(self, axis: str) -> None:
        if axis == QUALITY and self._quality is None:
            raise ValueError("No quality evaluator configured")
        if axis == CONSISTENCY and (self._consistency is None or self._fetcher is None):
            raise ValueError("Consistency needs an evaluator and a fetcher")

    def _evaluate_item(self, repository: Repository, issue: Issue, axis: str) -> ItemOutcome:
        try:
            if axis == QUALITY:
                return self._evaluate_quality(issue)
            return self._evaluate_consistency(repository, issue)
        except RateLimitError as e:
            logger.warning(f"Rate limited at issue #{issue.tracker_number}")
            return ItemOutcome(
                issue_id=issue.id,
                tracker_number=issue.tracker_number,
                status=ItemStatus.RATE_LIMITED,
                error=str(e),
            )
        except (SprintScoreError, sqlite3.Error) as e:
            logger.exception(f"Failed to evaluate {axis} for issue #{issue.tracker_number}")
            return ItemOutcome(
                issue_id=issue.id,
                tracker_number=issue.tracker_number,
                status=ItemStatus.ERROR,
                error=str(e),
            )

    def _evaluate_quality(self, issue: Issue) -> ItemOutcome:
        assignee = None
        if issue.assignee_collaborator_id is not None:
            collaborator = self._store.get_collaborator(issue.assignee_collaborator_id)
            assignee = collaborator.user_name if collaborator else None

        evaluation = self._quality.evaluate(
            QualityInput(
                number=issue.tracker_number,
                title=issue.title,
                body=issue.body,
                assignee=assignee,
            )
        )
        self._store.save_quality_evaluation(
            issue.id, evaluation.total_score, evaluation.grade, evaluation.details()
        )
        logger.info(f"Issue #{issue.tracker_number} quality {evaluation.total_score} ({evaluation.grade})")
        return ItemOutcome(
            issue_id=issue.id,
            tracker_number=issue.tracker_number,
            status=ItemStatus.EVALUATED,
            score=evaluation.total_score,
            grade=str(evaluation.grade),
        )

    def _evaluate_consistency(self, repository: Repository, issue: Issue) -> ItemOutcome:
        linked = self._fetcher.list_linked_merged_pull_requests(
            repository.owner_name, repository.repo_name, issue.tracker_number
        )
        if not linked:
            self._store.mark_consistency_skipped(issue.id)
            logger.warning(f"Issue #{issue.tracker_number} has no linked merged PR, skipped")
            return ItemOutcome(
                issue_id=issue.id,
                tracker_number=issue.tracker_number,
                status=ItemStatus.SKIPPED,
            )

        evaluation = self._consistency.evaluate(
            ConsistencyInput(number=issue.tracker_number, title=issue.title, body=issue.body),
            linked,
        )
        self._store.save_consistency_evaluation(
            issue.id, evaluation.total_score, evaluation.grade, evaluation.details()
        )
        logger.info(
            f"Issue #{issue.tracker_number} consistency {evaluation.total_score} ({evaluation.grade})"
        )
        return ItemOutcome(
            issue_id=issue.id,
            tracker_number=issue.tracker_number,
            status=ItemStatus.EVALUATED,
            score=evaluation.total_score,
            grade=str(evaluation.grade),
        )
