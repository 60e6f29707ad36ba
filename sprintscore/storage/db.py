"""SQLite database setup and schema management."""

from __future__ import annotations

import sqlite3
from pathlib import Path

SCHEMA_VERSION = 1

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS repositories (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    owner_name TEXT NOT NULL,
    repo_name TEXT NOT NULL,
    sprint_start_day_of_week INTEGER NOT NULL DEFAULT 6,
    sprint_duration_weeks INTEGER NOT NULL DEFAULT 1,
    tracking_start_date TEXT,
    timezone TEXT NOT NULL DEFAULT 'UTC',
    created_at TIMESTAMP,
    updated_at TIMESTAMP,
    UNIQUE (owner_name, repo_name)
);

CREATE TABLE IF NOT EXISTS collaborators (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    repository_id INTEGER NOT NULL REFERENCES repositories(id) ON DELETE CASCADE,
    user_name TEXT NOT NULL,
    created_at TIMESTAMP,
    UNIQUE (repository_id, user_name)
);

CREATE TABLE IF NOT EXISTS tracked_collaborators (
    repository_id INTEGER NOT NULL REFERENCES repositories(id) ON DELETE CASCADE,
    collaborator_id INTEGER NOT NULL REFERENCES collaborators(id) ON DELETE CASCADE,
    position INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (repository_id, collaborator_id)
);

CREATE TABLE IF NOT EXISTS issues (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    repository_id INTEGER NOT NULL REFERENCES repositories(id) ON DELETE CASCADE,
    tracker_number INTEGER NOT NULL,
    title TEXT NOT NULL,
    body TEXT,
    state TEXT NOT NULL,
    author_collaborator_id INTEGER REFERENCES collaborators(id) ON DELETE SET NULL,
    assignee_collaborator_id INTEGER REFERENCES collaborators(id) ON DELETE SET NULL,
    sprint_number INTEGER,
    tracker_created_at TIMESTAMP NOT NULL,
    tracker_closed_at TIMESTAMP,
    created_at TIMESTAMP,
    updated_at TIMESTAMP,
    UNIQUE (repository_id, tracker_number)
);

CREATE TABLE IF NOT EXISTS pull_requests (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    repository_id INTEGER NOT NULL REFERENCES repositories(id) ON DELETE CASCADE,
    tracker_number INTEGER NOT NULL,
    title TEXT NOT NULL,
    state TEXT NOT NULL,
    author_collaborator_id INTEGER REFERENCES collaborators(id) ON DELETE SET NULL,
    issue_id INTEGER REFERENCES issues(id) ON DELETE SET NULL,
    tracker_created_at TIMESTAMP NOT NULL,
    tracker_merged_at TIMESTAMP,
    created_at TIMESTAMP,
    updated_at TIMESTAMP,
    UNIQUE (repository_id, tracker_number)
);

CREATE TABLE IF NOT EXISTS evaluations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    issue_id INTEGER NOT NULL UNIQUE REFERENCES issues(id) ON DELETE CASCADE,
    speed_score INTEGER,
    speed_grade TEXT,
    speed_calculated_at TIMESTAMP,
    quality_score INTEGER,
    quality_grade TEXT,
    quality_details TEXT,
    quality_calculated_at TIMESTAMP,
    consistency_score INTEGER,
    consistency_grade TEXT,
    consistency_details TEXT,
    consistency_calculated_at TIMESTAMP,
    consistency_skipped_at TIMESTAMP,
    created_at TIMESTAMP,
    updated_at TIMESTAMP
);

CREATE TABLE IF NOT EXISTS sync_metadata (
    repository_id INTEGER PRIMARY KEY REFERENCES repositories(id) ON DELETE CASCADE,
    last_sync_at TIMESTAMP NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_issues_repo_sprint ON issues(repository_id, sprint_number);
CREATE INDEX IF NOT EXISTS idx_issues_repo_state ON issues(repository_id, state);
CREATE INDEX IF NOT EXISTS idx_pull_requests_issue ON pull_requests(issue_id);
CREATE INDEX IF NOT EXISTS idx_collaborators_repo ON collaborators(repository_id);
"""


def get_connection(db_path: Path) -> sqlite3.Connection:
    """Create or open a SQLite database with the sprintscore schema."""
    # check_same_thread off: sync runs for different repositories may share a store
    conn = sqlite3.connect(str(db_path), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")

    conn.executescript(SCHEMA_SQL)
    conn.execute(f"PRAGMA user_version={SCHEMA_VERSION}")
    conn.commit()

    return conn
