"""Issue / pull request consistency, scored by Claude.

Judges whether the merged PRs linked to a closed issue actually deliver what
the issue asked for, and whether the issue was written well enough to tell.
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
from sprintscore.evaluation.criteria import CONSISTENCY_CATEGORIES, describe_categories
from sprintscore.evaluation.grade import Grade, grade_for
from sprintscore.github.fetcher import LinkedPullRequest
from sprintscore.models import CategoryScore

logger = logging.getLogger(__name__)

CONSISTENCY_PROMPT = """\
You are the code reviewer for a software team. Judge how consistent the \
following GitHub issue is with the merged pull requests linked to it.

## Categories and maximum points
{categories}

## Issue
- Number: #{number}
- Title: {title}
- Body:
{body}

## Linked pull requests ({pr_count})
{pull_requests}

## Instructions

Score each category from 0 up to its maximum. Read the diffs and compare them \
against every requirement in the issue. Be strict: do not give full marks \
unless the PRs match the issue completely. If the issue itself is vague or \
lacks acceptance criteria, deduct for it and say how the issue should be \
improved in issueImprovementSuggestions (at most 3). Leave that list empty \
when the issue is fine.

Respond with a JSON object:
{{"categories": [
    {category_format}
  ],
  "overallFeedback": "Two or three sentences on the issue and PRs as a whole",
  "issueImprovementSuggestions": []
}}

Respond ONLY with valid JSON, no other text.
"""

PULL_REQUEST_SECTION = """\
### PR #{number}: {title}
- URL: {url}
- Changed files: {changed_files}
- Additions: {additions}, deletions: {deletions}
- Merged at: {merged_at}

#### Description
{body}

#### Changes
```
{diff}
```
"""


@dataclass
class ConsistencyInput:
    number: int
    title: str
    body: str | None


@dataclass
class ConsistencyResult:
    total_score: int
    grade: Grade
    categories: list[CategoryScore]
    overall_feedback: str
    linked_pull_requests: list[dict] = field(default_factory=list)
    issue_improvement_suggestions: list[str] = field(default_factory=list)
    evaluated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def details(self) -> dict:
        return {
            "categories": [c.to_dict() for c in self.categories],
            "overallFeedback": self.overall_feedback,
            "linkedPRs": self.linked_pull_requests,
            "issueImprovementSuggestions": self.issue_improvement_suggestions,
            "evaluatedAt": self.evaluated_at.isoformat(),
        }


class ConsistencyEvaluator:
    def __init__(self, client: anthropic.Anthropic, model: str = DEFAULT_MODEL) -> None:
        self._client = client
        self._model = model

    def evaluate(
        self, issue: ConsistencyInput, pull_requests: list[LinkedPullRequest]
    ) -> ConsistencyResult:
        if not pull_requests:
            raise ValueError("Consistency needs at least one linked pull request")

        label = f"issue #{issue.number} consistency"
        prompt = build_consistency_prompt(issue, pull_requests)
        text = call_model(self._client, self._model, prompt, max_tokens=2048, label=label)
        data = parse_json_reply(text, label)

        categories = score_categories(CONSISTENCY_CATEGORIES, data)
        total = sum(c.score for c in categories)
        result = ConsistencyResult(
            total_score=total,
            grade=grade_for(total),
            categories=categories,
            overall_feedback=str(data.get("overallFeedback") or ""),
            linked_pull_requests=[pr.reference() for pr in pull_requests],
            issue_improvement_suggestions=suggestions(data, "issueImprovementSuggestions"),
        )
        logger.debug(f"Issue #{issue.number} consistency: {total} ({result.grade})")
        return result


def _format_pull_request(pr: LinkedPullRequest) -> str:
    return PULL_REQUEST_SECTION.format(
        number=pr.number,
        title=pr.title,
        url=pr.url,
        changed_files=len(pr.changed_files),
        additions=pr.additions,
        deletions=pr.deletions,
        merged_at=pr.merged_at.isoformat() if pr.merged_at else "(unknown)",
        body=pr.body or "(no description)",
        diff=pr.diff or "(no diff)",
    )


def build_consistency_prompt(
    issue: ConsistencyInput, pull_requests: list[LinkedPullRequest]
) -> str:
    return CONSISTENCY_PROMPT.format(
        categories=describe_categories(CONSISTENCY_CATEGORIES),
        number=issue.number,
        title=issue.title,
        body=issue.body or "(no description)",
        pr_count=len(pull_requests),
        pull_requests="\n---\n".join(_format_pull_request(pr) for pr in pull_requests),
        category_format=categories_json(CONSISTENCY_CATEGORIES),
    )
