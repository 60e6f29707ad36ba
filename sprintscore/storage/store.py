"""CRUD operations for repositories, issues, pull requests and evaluations."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import date, datetime, timezone
from typing import Iterator

from sprintscore.errors import NotFoundError
from sprintscore.models import (
    Collaborator,
    Evaluation,
    Issue,
    IssueWithEvaluation,
    PullRequest,
    Repository,
    SyncMetadata,
)
from sprintscore.sprint.calculator import SprintConfig

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _ts(value: datetime | None) -> str | None:
    """Serialize a timestamp as ISO-8601 in UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _parse_ts(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_json(value: str | None) -> dict | None:
    if not value:
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        logger.warning(f"Discarding unreadable evaluation details: {value[:100]}")
        return None


class Store:
    """Data access layer for the sprintscore SQLite database.

    Every write commits on its own. One lock serializes reads and writes on
    the connection, which may be shared across threads.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._lock = threading.RLock()

    @contextmanager
    def _write(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                yield self._conn
            except Exception:
                self._conn.rollback()
                raise
            self._conn.commit()

    def _fetchone(self, sql: str, params: tuple | list = ()) -> sqlite3.Row | None:
        with self._lock:
            return self._conn.execute(sql, params).fetchone()

    def _fetchall(self, sql: str, params: tuple | list = ()) -> list[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(sql, params).fetchall()

    # -- repositories -------------------------------------------------------

    def add_repository(
        self,
        owner_name: str,
        repo_name: str,
        sprint_start_day_of_week: int = 6,
        sprint_duration_weeks: int = 1,
        tracking_start_date: date | None = None,
        timezone_name: str = "UTC",
    ) -> Repository:
        # anchor sprint 1 at registration unless told otherwise
        config = SprintConfig(
            start_day_of_week=sprint_start_day_of_week,
            duration_weeks=sprint_duration_weeks,
            base_date=tracking_start_date or date.today(),
            timezone=timezone_name,
        )
        now = _ts(_now())
        with self._write() as conn:
            cursor = conn.execute(
                """INSERT INTO repositories
                (owner_name, repo_name, sprint_start_day_of_week, sprint_duration_weeks,
                 tracking_start_date, timezone, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    owner_name,
                    repo_name,
                    config.start_day_of_week,
                    config.duration_weeks,
                    config.base_date.isoformat(),
                    config.timezone,
                    now,
                    now,
                ),
            )
            repository_id = cursor.lastrowid
        return self.require_repository(repository_id)

    def get_repository(self, repository_id: int) -> Repository | None:
        row = self._fetchone(
            "SELECT * FROM repositories WHERE id = ?", (repository_id,)
        )
        return self._row_to_repository(row) if row else None

    def require_repository(self, repository_id: int) -> Repository:
        repository = self.get_repository(repository_id)
        if repository is None:
            raise NotFoundError(f"Repository {repository_id} not found")
        return repository

    def list_repositories(self) -> list[Repository]:
        rows = self._fetchall("SELECT * FROM repositories ORDER BY id")
        return [self._row_to_repository(row) for row in rows]

    def update_sprint_settings(
        self,
        repository_id: int,
        sprint_start_day_of_week: int | None = None,
        sprint_duration_weeks: int | None = None,
        tracking_start_date: date | None = None,
        timezone_name: str | None = None,
    ) -> Repository:
        """Change sprint settings. Stored sprint numbers are left as they are.

        Raises ConfigurationError before writing anything if the new settings
        are invalid.
        """
        current = self.require_repository(repository_id)
        config = SprintConfig(
            start_day_of_week=current.sprint_start_day_of_week
            if sprint_start_day_of_week is None
            else sprint_start_day_of_week,
            duration_weeks=current.sprint_duration_weeks
            if sprint_duration_weeks is None
            else sprint_duration_weeks,
            base_date=tracking_start_date or current.tracking_start_date or date.today(),
            timezone=timezone_name or current.timezone,
        )
        with self._write() as conn:
            conn.execute(
                """UPDATE repositories SET
                    sprint_start_day_of_week = ?,
                    sprint_duration_weeks = ?,
                    tracking_start_date = ?,
                    timezone = ?,
                    updated_at = ?
                WHERE id = ?""",
                (
                    config.start_day_of_week,
                    config.duration_weeks,
                    config.base_date.isoformat(),
                    config.timezone,
                    _ts(_now()),
                    repository_id,
                ),
            )
        return self.require_repository(repository_id)

    def delete_repository(self, repository_id: int) -> bool:
        with self._write() as conn:
            cursor = conn.execute("DELETE FROM repositories WHERE id = ?", (repository_id,))
        return cursor.rowcount > 0

    # -- collaborators ------------------------------------------------------

    def find_or_create_collaborator(self, repository_id: int, user_name: str) -> Collaborator:
        with self._write() as conn:
            conn.execute(
                """INSERT OR IGNORE INTO collaborators (repository_id, user_name, created_at)
                VALUES (?, ?, ?)""",
                (repository_id, user_name, _ts(_now())),
            )
            row = conn.execute(
                "SELECT * FROM collaborators WHERE repository_id = ? AND user_name = ?",
                (repository_id, user_name),
            ).fetchone()
        return self._row_to_collaborator(row)

    def get_collaborator(self, collaborator_id: int) -> Collaborator | None:
        row = self._fetchone(
            "SELECT * FROM collaborators WHERE id = ?", (collaborator_id,)
        )
        return self._row_to_collaborator(row) if row else None

    def list_collaborators(self, repository_id: int) -> list[Collaborator]:
        rows = self._fetchall(
            "SELECT * FROM collaborators WHERE repository_id = ? ORDER BY user_name",
            (repository_id,),
        )
        return [self._row_to_collaborator(row) for row in rows]

    def track_collaborator(self, repository_id: int, user_name: str) -> Collaborator:
        """Add a user to the repository's tracked set (idempotent)."""
        collaborator = self.find_or_create_collaborator(repository_id, user_name)
        with self._write() as conn:
            position = conn.execute(
                "SELECT COALESCE(MAX(position), -1) + 1 FROM tracked_collaborators WHERE repository_id = ?",
                (repository_id,),
            ).fetchone()[0]
            conn.execute(
                """INSERT OR IGNORE INTO tracked_collaborators (repository_id, collaborator_id, position)
                VALUES (?, ?, ?)""",
                (repository_id, collaborator.id, position),
            )
        return collaborator

    def untrack_collaborator(self, repository_id: int, user_name: str) -> bool:
        with self._write() as conn:
            cursor = conn.execute(
                """DELETE FROM tracked_collaborators
                WHERE repository_id = ? AND collaborator_id IN (
                    SELECT id FROM collaborators WHERE repository_id = ? AND user_name = ?
                )""",
                (repository_id, repository_id, user_name),
            )
        return cursor.rowcount > 0

    def get_tracked_usernames(self, repository_id: int) -> list[str]:
        """Tracked user names in registration order. Empty means everyone is in scope."""
        rows = self._fetchall(
            """SELECT c.user_name FROM tracked_collaborators t
            JOIN collaborators c ON c.id = t.collaborator_id
            WHERE t.repository_id = ?
            ORDER BY t.position, c.user_name""",
            (repository_id,),
        )
        return [row["user_name"] for row in rows]

    # -- issues -------------------------------------------------------------

    def upsert_issue(
        self,
        repository_id: int,
        tracker_number: int,
        title: str,
        body: str | None,
        state: str,
        author_collaborator_id: int | None,
        assignee_collaborator_id: int | None,
        sprint_number: int,
        tracker_created_at: datetime,
        tracker_closed_at: datetime | None,
    ) -> Issue:
        """Insert or update an issue keyed by (repository, tracker number).

        Never touches the evaluations table. An already stored sprint number
        is kept; it is only changed through ``set_sprint_number``.
        """
        now = _ts(_now())
        with self._write() as conn:
            conn.execute(
                """INSERT INTO issues
                (repository_id, tracker_number, title, body, state,
                 author_collaborator_id, assignee_collaborator_id, sprint_number,
                 tracker_created_at, tracker_closed_at, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (repository_id, tracker_number) DO UPDATE SET
                    title = excluded.title,
                    body = excluded.body,
                    state = excluded.state,
                    author_collaborator_id = excluded.author_collaborator_id,
                    assignee_collaborator_id = excluded.assignee_collaborator_id,
                    sprint_number = COALESCE(issues.sprint_number, excluded.sprint_number),
                    tracker_closed_at = excluded.tracker_closed_at,
                    updated_at = excluded.updated_at""",
                (
                    repository_id,
                    tracker_number,
                    title,
                    body,
                    state,
                    author_collaborator_id,
                    assignee_collaborator_id,
                    sprint_number,
                    _ts(tracker_created_at),
                    _ts(tracker_closed_at),
                    now,
                    now,
                ),
            )
        issue = self.get_issue_by_number(repository_id, tracker_number)
        if issue is None:
            raise NotFoundError(
                f"Issue #{tracker_number} of repository {repository_id} not found after upsert"
            )
        return issue

    def get_issue(self, issue_id: int) -> Issue | None:
        row = self._fetchone("SELECT * FROM issues WHERE id = ?", (issue_id,))
        return self._row_to_issue(row) if row else None

    def get_issue_by_number(self, repository_id: int, tracker_number: int) -> Issue | None:
        row = self._fetchone(
            "SELECT * FROM issues WHERE repository_id = ? AND tracker_number = ?",
            (repository_id, tracker_number),
        )
        return self._row_to_issue(row) if row else None

    def get_issues(
        self,
        repository_id: int,
        state: str | None = None,
        min_sprint: int | None = None,
        max_sprint: int | None = None,
    ) -> list[Issue]:
        """Issues of a repository in ascending tracker-number order."""
        query = "SELECT * FROM issues WHERE repository_id = ?"
        params: list = [repository_id]

        if state:
            query += " AND state = ?"
            params.append(state)
        if min_sprint is not None:
            query += " AND sprint_number >= ?"
            params.append(min_sprint)
        if max_sprint is not None:
            query += " AND sprint_number <= ?"
            params.append(max_sprint)

        query += " ORDER BY tracker_number"
        rows = self._fetchall(query, params)
        return [self._row_to_issue(row) for row in rows]

    def get_issues_with_evaluations(
        self,
        repository_id: int,
        min_sprint: int | None = None,
        max_sprint: int | None = None,
    ) -> list[IssueWithEvaluation]:
        """Issues joined with author/assignee names and evaluations, for reporting."""
        query = """
            SELECT i.*, a.user_name AS author_name, s.user_name AS assignee_name,
                   e.issue_id AS e_issue_id, e.speed_score, e.speed_grade,
                   e.quality_score, e.quality_grade, e.quality_details,
                   e.consistency_score, e.consistency_grade, e.consistency_details,
                   e.consistency_skipped_at
            FROM issues i
            LEFT JOIN collaborators a ON a.id = i.author_collaborator_id
            LEFT JOIN collaborators s ON s.id = i.assignee_collaborator_id
            LEFT JOIN evaluations e ON e.issue_id = i.id
            WHERE i.repository_id = ?
        """
        params: list = [repository_id]
        if min_sprint is not None:
            query += " AND i.sprint_number >= ?"
            params.append(min_sprint)
        if max_sprint is not None:
            query += " AND i.sprint_number <= ?"
            params.append(max_sprint)
        query += " ORDER BY i.tracker_number"

        results: list[IssueWithEvaluation] = []
        for row in self._fetchall(query, params):
            evaluation = None
            if row["e_issue_id"] is not None:
                evaluation = self._row_to_evaluation(row, issue_id=row["id"])
            results.append(
                IssueWithEvaluation(
                    issue=self._row_to_issue(row),
                    author=row["author_name"],
                    assignee=row["assignee_name"],
                    evaluation=evaluation,
                )
            )
        return results

    def set_sprint_number(self, issue_id: int, sprint_number: int) -> None:
        with self._write() as conn:
            conn.execute(
                "UPDATE issues SET sprint_number = ?, updated_at = ? WHERE id = ?",
                (sprint_number, _ts(_now()), issue_id),
            )

    # -- pull requests ------------------------------------------------------

    def upsert_pull_request(
        self,
        repository_id: int,
        tracker_number: int,
        title: str,
        state: str,
        author_collaborator_id: int | None,
        issue_id: int | None,
        tracker_created_at: datetime,
        tracker_merged_at: datetime | None,
    ) -> PullRequest:
        now = _ts(_now())
        with self._write() as conn:
            conn.execute(
                """INSERT INTO pull_requests
                (repository_id, tracker_number, title, state, author_collaborator_id,
                 issue_id, tracker_created_at, tracker_merged_at, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (repository_id, tracker_number) DO UPDATE SET
                    title = excluded.title,
                    state = excluded.state,
                    author_collaborator_id = excluded.author_collaborator_id,
                    issue_id = COALESCE(excluded.issue_id, pull_requests.issue_id),
                    tracker_merged_at = excluded.tracker_merged_at,
                    updated_at = excluded.updated_at""",
                (
                    repository_id,
                    tracker_number,
                    title,
                    state,
                    author_collaborator_id,
                    issue_id,
                    _ts(tracker_created_at),
                    _ts(tracker_merged_at),
                    now,
                    now,
                ),
            )
            row = conn.execute(
                "SELECT * FROM pull_requests WHERE repository_id = ? AND tracker_number = ?",
                (repository_id, tracker_number),
            ).fetchone()
        return self._row_to_pull_request(row)

    def get_pull_requests(self, repository_id: int, issue_id: int | None = None) -> list[PullRequest]:
        query = "SELECT * FROM pull_requests WHERE repository_id = ?"
        params: list = [repository_id]
        if issue_id is not None:
            query += " AND issue_id = ?"
            params.append(issue_id)
        query += " ORDER BY tracker_number"
        rows = self._fetchall(query, params)
        return [self._row_to_pull_request(row) for row in rows]

    # -- evaluations --------------------------------------------------------

    def get_evaluation(self, issue_id: int) -> Evaluation | None:
        row = self._fetchone(
            "SELECT * FROM evaluations WHERE issue_id = ?", (issue_id,)
        )
        return self._row_to_evaluation(row, issue_id=issue_id) if row else None

    def get_evaluations(self, repository_id: int) -> dict[int, Evaluation]:
        """Evaluations of a repository's issues, keyed by issue id."""
        rows = self._fetchall(
            """SELECT e.* FROM evaluations e
            JOIN issues i ON i.id = e.issue_id
            WHERE i.repository_id = ?""",
            (repository_id,),
        )
        return {row["issue_id"]: self._row_to_evaluation(row, issue_id=row["issue_id"]) for row in rows}

    def _update_axis(self, issue_id: int, assignments: dict[str, object]) -> Evaluation:
        """Write only the given columns on the issue's evaluation row."""
        now = _ts(_now())
        columns = ", ".join(f"{name} = ?" for name in assignments)
        with self._write() as conn:
            conn.execute(
                """INSERT OR IGNORE INTO evaluations (issue_id, created_at, updated_at)
                VALUES (?, ?, ?)""",
                (issue_id, now, now),
            )
            conn.execute(
                f"UPDATE evaluations SET {columns}, updated_at = ? WHERE issue_id = ?",
                (*assignments.values(), now, issue_id),
            )
        evaluation = self.get_evaluation(issue_id)
        if evaluation is None:
            raise NotFoundError(f"Evaluation of issue {issue_id} not found")
        return evaluation

    def save_speed_evaluation(self, issue_id: int, score: int, grade: str) -> Evaluation:
        return self._update_axis(
            issue_id,
            {
                "speed_score": score,
                "speed_grade": str(grade),
                "speed_calculated_at": _ts(_now()),
            },
        )

    def save_quality_evaluation(
        self, issue_id: int, score: int, grade: str, details: dict
    ) -> Evaluation:
        return self._update_axis(
            issue_id,
            {
                "quality_score": score,
                "quality_grade": str(grade),
                "quality_details": json.dumps(details),
                "quality_calculated_at": _ts(_now()),
            },
        )

    def save_consistency_evaluation(
        self, issue_id: int, score: int, grade: str, details: dict
    ) -> Evaluation:
        return self._update_axis(
            issue_id,
            {
                "consistency_score": score,
                "consistency_grade": str(grade),
                "consistency_details": json.dumps(details),
                "consistency_calculated_at": _ts(_now()),
                "consistency_skipped_at": None,
            },
        )

    def mark_consistency_skipped(self, issue_id: int) -> Evaluation:
        """Record that the issue had no linked merged PR, so it is not retried."""
        return self._update_axis(issue_id, {"consistency_skipped_at": _ts(_now())})

    def clear_consistency_skips(self, repository_id: int) -> int:
        with self._write() as conn:
            cursor = conn.execute(
                """UPDATE evaluations SET consistency_skipped_at = NULL
                WHERE consistency_skipped_at IS NOT NULL
                AND issue_id IN (SELECT id FROM issues WHERE repository_id = ?)""",
                (repository_id,),
            )
        return cursor.rowcount

    # -- sync metadata ------------------------------------------------------

    def get_sync_metadata(self, repository_id: int) -> SyncMetadata | None:
        row = self._fetchone(
            "SELECT * FROM sync_metadata WHERE repository_id = ?", (repository_id,)
        )
        if row is None:
            return None
        return SyncMetadata(
            repository_id=row["repository_id"],
            last_sync_at=_parse_ts(row["last_sync_at"]),
        )

    def upsert_sync_metadata(self, repository_id: int, last_sync_at: datetime) -> SyncMetadata:
        with self._write() as conn:
            conn.execute(
                """INSERT INTO sync_metadata (repository_id, last_sync_at) VALUES (?, ?)
                ON CONFLICT (repository_id) DO UPDATE SET last_sync_at = excluded.last_sync_at""",
                (repository_id, _ts(last_sync_at)),
            )
        return SyncMetadata(repository_id=repository_id, last_sync_at=last_sync_at)

    # -- stats --------------------------------------------------------------

    def get_stats(self, repository_id: int) -> dict:
        """Summary counts for one repository."""

        def count(sql: str) -> int:
            return self._fetchone(sql, (repository_id,))[0]

        return {
            "issues": count("SELECT COUNT(*) FROM issues WHERE repository_id = ?"),
            "closed_issues": count(
                "SELECT COUNT(*) FROM issues WHERE repository_id = ? AND state = 'closed'"
            ),
            "pull_requests": count("SELECT COUNT(*) FROM pull_requests WHERE repository_id = ?"),
            "collaborators": count("SELECT COUNT(*) FROM collaborators WHERE repository_id = ?"),
            "quality_evaluated": count(
                """SELECT COUNT(*) FROM evaluations e JOIN issues i ON i.id = e.issue_id
                WHERE i.repository_id = ? AND e.quality_score IS NOT NULL"""
            ),
            "consistency_evaluated": count(
                """SELECT COUNT(*) FROM evaluations e JOIN issues i ON i.id = e.issue_id
                WHERE i.repository_id = ? AND e.consistency_score IS NOT NULL"""
            ),
        }

    # -- row mapping --------------------------------------------------------

    def _row_to_repository(self, row: sqlite3.Row) -> Repository:
        tracking = row["tracking_start_date"]
        return Repository(
            id=row["id"],
            owner_name=row["owner_name"],
            repo_name=row["repo_name"],
            sprint_start_day_of_week=row["sprint_start_day_of_week"],
            sprint_duration_weeks=row["sprint_duration_weeks"],
            tracking_start_date=date.fromisoformat(tracking) if tracking else None,
            timezone=row["timezone"],
        )

    def _row_to_collaborator(self, row: sqlite3.Row) -> Collaborator:
        return Collaborator(
            id=row["id"],
            repository_id=row["repository_id"],
            user_name=row["user_name"],
        )

    def _row_to_issue(self, row: sqlite3.Row) -> Issue:
        return Issue(
            id=row["id"],
            repository_id=row["repository_id"],
            tracker_number=row["tracker_number"],
            title=row["title"],
            body=row["body"],
            state=row["state"],
            author_collaborator_id=row["author_collaborator_id"],
            assignee_collaborator_id=row["assignee_collaborator_id"],
            sprint_number=row["sprint_number"],
            tracker_created_at=_parse_ts(row["tracker_created_at"]),
            tracker_closed_at=_parse_ts(row["tracker_closed_at"]),
        )

    def _row_to_pull_request(self, row: sqlite3.Row) -> PullRequest:
        return PullRequest(
            id=row["id"],
            repository_id=row["repository_id"],
            tracker_number=row["tracker_number"],
            title=row["title"],
            state=row["state"],
            author_collaborator_id=row["author_collaborator_id"],
            issue_id=row["issue_id"],
            tracker_created_at=_parse_ts(row["tracker_created_at"]),
            tracker_merged_at=_parse_ts(row["tracker_merged_at"]),
        )

    def _row_to_evaluation(self, row: sqlite3.Row, issue_id: int) -> Evaluation:
        return Evaluation(
            issue_id=issue_id,
            speed_score=row["speed_score"],
            speed_grade=row["speed_grade"],
            quality_score=row["quality_score"],
            quality_grade=row["quality_grade"],
            quality_details=_parse_json(row["quality_details"]),
            consistency_score=row["consistency_score"],
            consistency_grade=row["consistency_grade"],
            consistency_details=_parse_json(row["consistency_details"]),
            consistency_skipped_at=_parse_ts(row["consistency_skipped_at"]),
        )
