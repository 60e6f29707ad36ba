"""Persists the speed axis for closed issues."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sprintscore.evaluation.speed import evaluate_issue_speed
from sprintscore.storage.store import Store

logger = logging.getLogger(__name__)


@dataclass
class SpeedRunResult:
    scored: int
    skipped: int


class SpeedScorer:
    """Scores every closed issue of a repository. Only speed columns are written."""

    def __init__(self, store: Store) -> None:
        self._store = store

    def run(self, repository_id: int) -> SpeedRunResult:
        repository = self._store.require_repository(repository_id)

        scored = skipped = 0
        for issue in self._store.get_issues(repository_id, state="closed"):
            try:
                result = evaluate_issue_speed(issue)
            except ValueError as e:
                # closed before created: tracker data we cannot score
                logger.warning(f"Skipping speed for issue #{issue.tracker_number}: {e}")
                skipped += 1
                continue
            if result is None:
                skipped += 1
                continue
            self._store.save_speed_evaluation(issue.id, result.score, result.grade)
            scored += 1

        logger.info(f"Speed scored for {repository.full_name}: {scored} issues, {skipped} skipped")
        return SpeedRunResult(scored=scored, skipped=skipped)
