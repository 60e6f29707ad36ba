"""Shared plumbing for the Claude-scored axes: calling the model and reading its reply."""

from __future__ import annotations

import json
import logging
import math
from typing import Any

import anthropic

from sprintscore.errors import EvaluatorError, RateLimitError
from sprintscore.evaluation.criteria import Category
from sprintscore.models import CategoryScore

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-20250514"
MAX_SUGGESTIONS = 3
FALLBACK_FEEDBACK = "Could not be evaluated."


def call_model(
    client: anthropic.Anthropic, model: str, prompt: str, max_tokens: int, label: str
) -> str:
    """Send one prompt and return the reply text.

    No retries here: rate limits surface as ``RateLimitError`` so the batch
    can stop and be resumed later.
    """
    try:
        response = client.messages.create(
            model=model,
            max_tokens=max_tokens,
            messages=[{"role": "user", "content": prompt}],
        )
    except anthropic.RateLimitError as e:
        logger.warning(f"Rate limited while evaluating {label}")
        raise RateLimitError(f"Rate limited while evaluating {label}") from e
    except anthropic.APIStatusError as e:
        if e.status_code == 429:
            raise RateLimitError(f"Rate limited while evaluating {label}") from e
        raise EvaluatorError(f"API error evaluating {label}: {e}") from e
    except anthropic.APIError as e:
        raise EvaluatorError(f"API error evaluating {label}: {e}") from e

    if not response.content:
        raise EvaluatorError(f"Empty response for {label}")
    text = getattr(response.content[0], "text", None)
    if not isinstance(text, str):
        raise EvaluatorError(f"No text in the response for {label}")
    return text


def parse_json_reply(text: str, label: str) -> dict:
    """Parse the model's JSON reply, tolerating markdown code fences."""
    text = text.strip()

    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else text[3:]
        if text.endswith("```"):
            text = text[:-3]
        text = text.strip()

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        logger.warning(f"Failed to parse JSON for {label}: {text[:200]}")
        raise EvaluatorError(f"Unparseable reply for {label}") from e

    if not isinstance(data, dict):
        raise EvaluatorError(f"Expected a JSON object for {label}")
    return data


def _clamp_score(value: Any, max_score: int) -> int:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if math.isnan(number):
        return 0
    number = min(max(number, 0.0), float(max_score))
    return int(math.floor(number + 0.5))


def score_categories(catalog: tuple[Category, ...], data: dict) -> list[CategoryScore]:
    """Map the reply's categories onto the fixed catalog.

    Unknown ids are ignored; a missing category scores 0. Raises
    EvaluatorError when ``categories`` is not a list.
    """
    raw = data.get("categories") or []
    if not isinstance(raw, list):
        raise EvaluatorError(f"Expected a list of categories, got {type(raw).__name__}")

    by_id: dict[str, dict] = {}
    for item in raw:
        if isinstance(item, dict) and isinstance(item.get("categoryId"), str):
            by_id.setdefault(item["categoryId"], item)

    scores: list[CategoryScore] = []
    for category in catalog:
        item = by_id.get(category.id)
        if item is None:
            scores.append(
                CategoryScore(
                    category_id=category.id,
                    category_name=category.label,
                    score=0,
                    max_score=category.weight,
                    feedback=FALLBACK_FEEDBACK,
                )
            )
            continue
        scores.append(
            CategoryScore(
                category_id=category.id,
                category_name=category.label,
                score=_clamp_score(item.get("score"), category.weight),
                max_score=category.weight,
                feedback=str(item.get("feedback") or ""),
            )
        )
    return scores


def suggestions(data: dict, key: str) -> list[str]:
    items = data.get(key) or []
    if not isinstance(items, list):
        return []
    return [str(s) for s in items if s][:MAX_SUGGESTIONS]


def categories_json(catalog: tuple[Category, ...]) -> str:
    """Example ``categories`` array for the reply format in prompts."""
    return ",\n    ".join(
        f'{{"categoryId": "{c.id}", "score": <0-{c.weight}>, "feedback": "..."}}'
        for c in catalog
    )
