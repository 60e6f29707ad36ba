"""Exception hierarchy for sprintscore.

Orchestrators return structured results for expected conditions (rate limits,
skipped items, nothing pending). These exceptions cover everything else.
"""

from __future__ import annotations


class SprintScoreError(Exception):
    """Base class for all sprintscore errors."""


class ConfigurationError(SprintScoreError, ValueError):
    """Missing credentials or invalid sprint settings."""


class NotFoundError(SprintScoreError, LookupError):
    """A repository (or other record) does not exist."""


class TrackerError(SprintScoreError):
    """The issue tracker could not be reached or rejected the request."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class EvaluatorError(SprintScoreError):
    """The AI provider failed or returned something we could not use."""


class RateLimitError(EvaluatorError):
    """The AI provider signalled "too many requests"."""
