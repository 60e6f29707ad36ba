"""Core records for sprintscore, as read back from the store."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime

from sprintscore.sprint.calculator import SprintConfig


@dataclass
class Repository:
    id: int
    owner_name: str
    repo_name: str
    sprint_start_day_of_week: int = 6  # 0=Sunday ... 6=Saturday
    sprint_duration_weeks: int = 1
    tracking_start_date: date | None = None
    timezone: str = "UTC"

    @property
    def full_name(self) -> str:
        return f"{self.owner_name}/{self.repo_name}"

    def sprint_config(self, today: date | None = None) -> SprintConfig:
        """Sprint settings for this repository; base date falls back to ``today``."""
        return SprintConfig(
            start_day_of_week=self.sprint_start_day_of_week,
            duration_weeks=self.sprint_duration_weeks,
            base_date=self.tracking_start_date or today or date.today(),
            timezone=self.timezone,
        )


@dataclass
class Collaborator:
    id: int
    repository_id: int
    user_name: str


@dataclass
class Issue:
    id: int
    repository_id: int
    tracker_number: int
    title: str
    body: str | None
    state: str  # "open" | "closed"
    author_collaborator_id: int | None
    assignee_collaborator_id: int | None
    sprint_number: int | None
    tracker_created_at: datetime
    tracker_closed_at: datetime | None = None


@dataclass
class PullRequest:
    id: int
    repository_id: int
    tracker_number: int
    title: str
    state: str  # "open" | "closed" | "merged"
    author_collaborator_id: int | None
    issue_id: int | None
    tracker_created_at: datetime
    tracker_merged_at: datetime | None = None


@dataclass
class CategoryScore:
    category_id: str
    category_name: str
    score: int
    max_score: int
    feedback: str

    def to_dict(self) -> dict:
        return {
            "categoryId": self.category_id,
            "categoryName": self.category_name,
            "score": self.score,
            "maxScore": self.max_score,
            "feedback": self.feedback,
        }

    @classmethod
    def from_dict(cls, data: dict) -> CategoryScore:
        return cls(
            category_id=data["categoryId"],
            category_name=data.get("categoryName", data["categoryId"]),
            score=int(data.get("score", 0)),
            max_score=int(data.get("maxScore", 0)),
            feedback=data.get("feedback", ""),
        )


@dataclass
class Evaluation:
    """One row per issue. Each axis is independently nullable."""

    issue_id: int
    speed_score: int | None = None
    speed_grade: str | None = None
    quality_score: int | None = None
    quality_grade: str | None = None
    quality_details: dict | None = None
    consistency_score: int | None = None
    consistency_grade: str | None = None
    consistency_details: dict | None = None
    consistency_skipped_at: datetime | None = None


@dataclass
class SyncMetadata:
    repository_id: int
    last_sync_at: datetime


@dataclass
class IssueWithEvaluation:
    """An issue joined with its author's name and its evaluation, for reporting."""

    issue: Issue
    author: str | None = None
    assignee: str | None = None
    evaluation: Evaluation | None = None
