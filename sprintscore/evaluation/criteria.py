"""Fixed category catalogs for the AI-scored axes.

Each catalog's weights sum to 100, so the sum of per-category scores is
already a 0-100 total.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Category:
    id: str
    label: str
    weight: int  # max score for this category
    description: str


QUALITY_CATEGORIES: tuple[Category, ...] = (
    Category(
        id="context-goal",
        label="Context & Goal",
        weight=25,
        description=(
            "Is it clear why this work exists? Background, objective, and the reason "
            "it matters now."
        ),
    ),
    Category(
        id="implementation-details",
        label="Implementation Details",
        weight=25,
        description=(
            "Is it clear what has to be done? Listed requirements, technical "
            "constraints, links to related code or designs."
        ),
    ),
    Category(
        id="acceptance-criteria",
        label="Acceptance Criteria",
        weight=30,
        description=(
            "Is 'done' defined measurably? Checklists, error and edge-case behaviour, "
            "concrete thresholds."
        ),
    ),
    Category(
        id="structure-clarity",
        label="Structure & Clarity",
        weight=20,
        description=(
            "Can another person understand it at a glance? Headings, code blocks, "
            "screenshots where useful, no padding."
        ),
    ),
)

CONSISTENCY_CATEGORIES: tuple[Category, ...] = (
    Category(
        id="issue-evaluability",
        label="Issue Evaluability",
        weight=20,
        description=(
            "Are the issue's requirements clear enough to judge the PR against? "
            "Deduct for vague issues and say what is missing."
        ),
    ),
    Category(
        id="requirement-coverage",
        label="Requirement Coverage",
        weight=30,
        description="Is every requirement in the issue implemented by the PRs?",
    ),
    Category(
        id="scope-appropriateness",
        label="Scope Appropriateness",
        weight=20,
        description="Is the change neither short of nor beyond the issue's scope?",
    ),
    Category(
        id="acceptance-criteria-achievement",
        label="Acceptance Criteria Achievement",
        weight=20,
        description="Do the PRs meet the issue's acceptance criteria, where stated?",
    ),
    Category(
        id="pr-description-clarity",
        label="PR Description Clarity",
        weight=10,
        description="Does the PR description explain the change and its link to the issue?",
    ),
)


def validate_criteria() -> list[str]:
    """Return a list of problems with the catalogs (empty when valid)."""
    errors: list[str] = []
    for name, catalog in (
        ("quality", QUALITY_CATEGORIES),
        ("consistency", CONSISTENCY_CATEGORIES),
    ):
        total = sum(c.weight for c in catalog)
        if total != 100:
            errors.append(f"{name} category weights sum to {total}, expected 100")
        ids = [c.id for c in catalog]
        if len(set(ids)) != len(ids):
            errors.append(f"{name} categories contain duplicate ids")
    return errors


def describe_categories(catalog: tuple[Category, ...]) -> str:
    """Render a catalog as prompt bullet lines."""
    return "\n".join(
        f"- {c.id} ({c.label}, max {c.weight} points): {c.description}" for c in catalog
    )
