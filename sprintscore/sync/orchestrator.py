"""Pulls issues and pull requests from the tracker into the store.

A run is full when forced or when the repository has never been synced, and
differential (items updated since the last sync) otherwise. Every issue is
tagged with the sprint its creation time falls in.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterator

from sprintscore.github.fetcher import Fetcher, IssueData, PullRequestData
from sprintscore.models import Repository
from sprintscore.sprint.calculator import SprintCalculator
from sprintscore.storage.store import Store

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RepositoryLocks:
    """One lock per repository id, so runs for the same repository never overlap."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[int, threading.Lock] = {}

    def for_repository(self, repository_id: int) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(repository_id)
            if lock is None:
                lock = self._locks[repository_id] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, repository_id: int) -> Iterator[None]:
        lock = self.for_repository(repository_id)
        if not lock.acquire(blocking=False):
            logger.info(f"Waiting for the running sync of repository {repository_id}")
            lock.acquire()
        try:
            yield
        finally:
            lock.release()


default_locks = RepositoryLocks()


@dataclass
class SyncContext:
    """State private to one sync run."""

    repository: Repository
    calculator: SprintCalculator
    tracked_usernames: frozenset[str]
    collaborator_ids: dict[str, int] = field(default_factory=dict)

    def is_in_scope(self, user_name: str | None) -> bool:
        if not self.tracked_usernames:
            return True
        return user_name is not None and user_name in self.tracked_usernames


@dataclass
class SyncResult:
    repository_id: int
    synced_count: int
    skipped_count: int
    is_full_sync: bool
    last_synced_at: datetime
    pull_requests_synced: int = 0
    failed_count: int = 0


class SyncOrchestrator:
    def __init__(
        self,
        store: Store,
        fetcher: Fetcher,
        locks: RepositoryLocks | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._fetcher = fetcher
        self._locks = locks or default_locks
        self._clock = clock

    def run(
        self,
        repository_id: int,
        force_full_sync: bool = False,
        include_pull_requests: bool = True,
    ) -> SyncResult:
        """Sync one repository.

        Raises:
            NotFoundError: unknown repository id.
            TrackerError: the tracker could not be read. Nothing about the run
                is recorded, so the next run covers the same window.
        """
        repository = self._store.require_repository(repository_id)

        with self._locks.hold(repository_id):
            metadata = self._store.get_sync_metadata(repository_id)
            is_full_sync = force_full_sync or metadata is None
            since = None if is_full_sync else metadata.last_sync_at

            # recorded as the sync time, so changes made during the fetch are picked up next run
            started_at = self._clock()
            logger.info(
                f"Syncing {repository.full_name} "
                f"({'full' if is_full_sync else f'since {since.isoformat()}'})"
            )

            issues = self._fetcher.list_issues(repository.owner_name, repository.repo_name, since)
            pull_requests: list[PullRequestData] = []
            if include_pull_requests:
                pull_requests = self._fetcher.list_pull_requests(
                    repository.owner_name, repository.repo_name, since
                )

            context = SyncContext(
                repository=repository,
                calculator=SprintCalculator(repository.sprint_config()),
                tracked_usernames=frozenset(self._store.get_tracked_usernames(repository_id)),
            )

            synced = skipped = failed = 0
            for issue in issues:
                if not context.is_in_scope(issue.creator):
                    skipped += 1
                    continue
                try:
                    self._sync_issue(context, issue)
                    synced += 1
                except sqlite3.Error:
                    logger.exception(f"Failed to store issue #{issue.number}")
                    failed += 1

            pull_requests_synced = 0
            for pr in pull_requests:
                try:
                    self._sync_pull_request(context, pr)
                    pull_requests_synced += 1
                except sqlite3.Error:
                    logger.exception(f"Failed to store pull request #{pr.number}")
                    failed += 1

            self._store.upsert_sync_metadata(repository_id, started_at)

        logger.info(
            f"Synced {repository.full_name}: {synced} issues, {skipped} skipped, "
            f"{pull_requests_synced} pull requests, {failed} failed"
        )
        return SyncResult(
            repository_id=repository_id,
            synced_count=synced,
            skipped_count=skipped,
            is_full_sync=is_full_sync,
            last_synced_at=started_at,
            pull_requests_synced=pull_requests_synced,
            failed_count=failed,
        )

    def _collaborator_id(self, context: SyncContext, user_name: str | None) -> int | None:
        if not user_name:
            return None
        if user_name not in context.collaborator_ids:
            collaborator = self._store.find_or_create_collaborator(
                context.repository.id, user_name
            )
            context.collaborator_ids[user_name] = collaborator.id
        return context.collaborator_ids[user_name]

    def _sync_issue(self, context: SyncContext, issue: IssueData) -> None:
        sprint_number = context.calculator.sprint_number(issue.created_at)
        self._store.upsert_issue(
            repository_id=context.repository.id,
            tracker_number=issue.number,
            title=issue.title,
            body=issue.body,
            state=issue.state,
            author_collaborator_id=self._collaborator_id(context, issue.creator),
            assignee_collaborator_id=self._collaborator_id(context, issue.assignee),
            sprint_number=sprint_number.value,
            tracker_created_at=issue.created_at,
            tracker_closed_at=issue.closed_at,
        )

    def _sync_pull_request(self, context: SyncContext, pr: PullRequestData) -> None:
        issue_id = None
        for number in pr.linked_issue_numbers:
            linked = self._store.get_issue_by_number(context.repository.id, number)
            if linked is not None:
                issue_id = linked.id
                break

        self._store.upsert_pull_request(
            repository_id=context.repository.id,
            tracker_number=pr.number,
            title=pr.title,
            state=pr.state,
            author_collaborator_id=self._collaborator_id(context, pr.author),
            issue_id=issue_id,
            tracker_created_at=pr.created_at,
            tracker_merged_at=pr.merged_at,
        )

    def recompute_sprint_numbers(self, repository_id: int) -> int:
        """Re-tag every stored issue with the repository's current sprint settings.

        Returns the number of issues whose sprint changed.
        """
        repository = self._store.require_repository(repository_id)
        calculator = SprintCalculator(repository.sprint_config())

        changed = 0
        with self._locks.hold(repository_id):
            for issue in self._store.get_issues(repository_id):
                number = calculator.sprint_number(issue.tracker_created_at).value
                if number != issue.sprint_number:
                    self._store.set_sprint_number(issue.id, number)
                    changed += 1

        logger.info(f"Recomputed sprint numbers for {repository.full_name}: {changed} changed")
        return changed
