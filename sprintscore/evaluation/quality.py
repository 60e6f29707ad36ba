"""Issue description quality, scored by Claude.

Claude scores each category of the fixed quality catalog; the total and the
grade are computed here, never taken from the model.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

import anthropic

from sprintscore.evaluation.ai import (
    DEFAULT_MODEL,
    call_model,
    categories_json,
    parse_json_reply,
    score_categories,
    suggestions,
)
from sprintscore.evaluation.criteria import QUALITY_CATEGORIES, describe_categories
from sprintscore.evaluation.grade import Grade, grade_for
from sprintscore.models import CategoryScore

logger = logging.getLogger(__name__)

QUALITY_PROMPT = """\
You review GitHub issues for a software team. Rate how well the following issue \
is written, so that someone else could pick it up and finish it without asking.

## Categories and maximum points
{categories}

## Issue
- Number: #{number}
- Title: {title}
- Assignee: {assignee}
- Body:
{body}

## Instructions

Score each category from 0 up to its maximum. Be strict: do not give full marks \
unless the issue is genuinely complete. Feedback must be concrete and actionable. \
List at most 3 improvement suggestions, most valuable first.

Respond with a JSON object:
{{"categories": [
    {category_format}
  ],
  "overallFeedback": "Two or three sentences on the issue as a whole",
  "improvementSuggestions": ["..."]
}}

Respond ONLY with valid JSON, no other text.
"""


@dataclass
class QualityInput:
    number: int
    title: str
    body: str | None
    assignee: str | None = None


@dataclass
class QualityResult:
    total_score: int
    grade: Grade
    categories: list[CategoryScore]
    overall_feedback: str
    improvement_suggestions: list[str] = field(default_factory=list)
    evaluated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def details(self) -> dict:
        """JSON-ready breakdown stored alongside the score."""
        return {
            "categories": [c.to_dict() for c in self.categories],
            "overallFeedback": self.overall_feedback,
            "improvementSuggestions": self.improvement_suggestions,
            "evaluatedAt": self.evaluated_at.isoformat(),
        }


class QualityEvaluator:
    def __init__(self, client: anthropic.Anthropic, model: str = DEFAULT_MODEL) -> None:
        self._client = client
        self._model = model

    def evaluate(self, issue: QualityInput) -> QualityResult:
        label = f"issue #{issue.number} quality"
        prompt = build_quality_prompt(issue)
        text = call_model(self._client, self._model, prompt, max_tokens=2048, label=label)
        data = parse_json_reply(text, label)

        categories = score_categories(QUALITY_CATEGORIES, data)
        total = sum(c.score for c in categories)
        result = QualityResult(
            total_score=total,
            grade=grade_for(total),
            categories=categories,
            overall_feedback=str(data.get("overallFeedback") or ""),
            improvement_suggestions=suggestions(data, "improvementSuggestions"),
        )
        logger.debug(f"Issue #{issue.number} quality: {total} ({result.grade})")
        return result


def build_quality_prompt(issue: QualityInput) -> str:
    return QUALITY_PROMPT.format(
        categories=describe_categories(QUALITY_CATEGORIES),
        number=issue.number,
        title=issue.title,
        assignee=issue.assignee or "(unassigned)",
        body=issue.body or "(no description)",
        category_format=categories_json(QUALITY_CATEGORIES),
    )
