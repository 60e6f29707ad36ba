"""Configuration loading for sprintscore.

Config sources (in priority order):
1. Explicit arguments passed to functions or CLI options
2. Environment variables (SPRINTSCORE_GITHUB_TOKEN, etc.)
3. .env file in current directory

Sprint settings are per repository and live in the database, not here.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from sprintscore.batch.orchestrator import (
    DEFAULT_CONSISTENCY_DELAY,
    DEFAULT_QUALITY_DELAY,
    MAX_BATCH_LIMIT,
)
from sprintscore.evaluation.ai import DEFAULT_MODEL

load_dotenv()

DEFAULT_DB_PATH = Path("sprintscore.db")
DEFAULT_BATCH_LIMIT = 10


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return max(float(raw), 0.0)
    except ValueError:
        return default


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass
class Config:
    github_token: str = ""
    anthropic_api_key: str = ""
    db_path: Path = DEFAULT_DB_PATH
    model: str = DEFAULT_MODEL
    quality_delay: float = DEFAULT_QUALITY_DELAY
    consistency_delay: float = DEFAULT_CONSISTENCY_DELAY
    batch_limit: int = DEFAULT_BATCH_LIMIT

    @classmethod
    def load(cls) -> Config:
        return cls(
            github_token=os.getenv("SPRINTSCORE_GITHUB_TOKEN", ""),
            anthropic_api_key=os.getenv("ANTHROPIC_API_KEY", ""),
            db_path=Path(os.getenv("SPRINTSCORE_DB_PATH", str(DEFAULT_DB_PATH))),
            model=os.getenv("SPRINTSCORE_MODEL") or DEFAULT_MODEL,
            quality_delay=_float_env("SPRINTSCORE_QUALITY_DELAY", DEFAULT_QUALITY_DELAY),
            consistency_delay=_float_env(
                "SPRINTSCORE_CONSISTENCY_DELAY", DEFAULT_CONSISTENCY_DELAY
            ),
            batch_limit=min(
                max(_int_env("SPRINTSCORE_BATCH_LIMIT", DEFAULT_BATCH_LIMIT), 1),
                MAX_BATCH_LIMIT,
            ),
        )

    def validate(self, need_github: bool = True, need_anthropic: bool = True) -> list[str]:
        """Return a list of missing config issues."""
        issues = []
        if need_github and not self.github_token:
            issues.append("GitHub token not set (SPRINTSCORE_GITHUB_TOKEN)")
        if need_anthropic and not self.anthropic_api_key:
            issues.append("Anthropic API key not set (ANTHROPIC_API_KEY)")
        return issues
