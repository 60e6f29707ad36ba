"""Shared test fixtures for sprintscore."""

from __future__ import annotations

import sqlite3
from datetime import date, datetime, timedelta, timezone
from pathlib import Path

import pytest

from sprintscore.models import Repository
from sprintscore.storage.db import get_connection
from sprintscore.storage.store import Store


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "test.db"


@pytest.fixture
def db_conn(db_path: Path) -> sqlite3.Connection:
    conn = get_connection(db_path)
    yield conn
    conn.close()


@pytest.fixture
def store(db_conn: sqlite3.Connection) -> Store:
    return Store(db_conn)


@pytest.fixture
def repository(store: Store) -> Repository:
    """acme/webapp with weekly sprints starting Saturday 2024-01-06."""
    return store.add_repository(
        "acme",
        "webapp",
        sprint_start_day_of_week=6,
        sprint_duration_weeks=1,
        tracking_start_date=date(2024, 1, 6),
    )


def _utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def add_issue(store: Store, repository: Repository):
    """Factory storing an issue in ``repository``; returns the stored Issue."""

    def _add(
        number: int,
        state: str = "closed",
        author: str | None = "alice",
        assignee: str | None = None,
        created_at: datetime | None = None,
        closed_at: datetime | None = None,
        sprint_number: int = 1,
        title: str | None = None,
        body: str | None = "Body",
    ):
        created_at = created_at or _utc(2024, 1, 8, 9)
        if state == "closed" and closed_at is None:
            closed_at = created_at + timedelta(days=1)
        author_id = store.find_or_create_collaborator(repository.id, author).id if author else None
        assignee_id = (
            store.find_or_create_collaborator(repository.id, assignee).id if assignee else None
        )
        return store.upsert_issue(
            repository_id=repository.id,
            tracker_number=number,
            title=title or f"Issue {number}",
            body=body,
            state=state,
            author_collaborator_id=author_id,
            assignee_collaborator_id=assignee_id,
            sprint_number=sprint_number,
            tracker_created_at=created_at,
            tracker_closed_at=closed_at if state == "closed" else None,
        )

    return _add
