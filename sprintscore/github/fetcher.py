"""Fetches issues, pull requests and linked merged PRs from GitHub."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterator

from github.GithubException import GithubException
from github.PullRequest import PullRequest

from sprintscore.errors import TrackerError
from sprintscore.github.client import GitHubClient

logger = logging.getLogger(__name__)

MAX_PATCH_LENGTH = 5000

FILE_STATUS_LABELS = {
    "added": "[added]",
    "removed": "[removed]",
    "renamed": "[renamed]",
}

CLOSING_REFERENCE = re.compile(
    r"\b(?:close[sd]?|fix(?:e[sd])?|resolve[sd]?)\s*:?\s+#(\d+)\b", re.IGNORECASE
)
BARE_REFERENCE = re.compile(r"(?<![\w/&])#(\d+)\b")


@dataclass
class IssueData:
    """Raw issue data as listed by the tracker."""

    number: int
    title: str
    body: str | None
    state: str
    creator: str | None
    assignee: str | None
    created_at: datetime
    closed_at: datetime | None
    updated_at: datetime | None = None


@dataclass
class PullRequestData:
    """Raw pull request data ready for sync."""

    number: int
    title: str
    body: str | None
    state: str  # open | closed | merged
    author: str | None
    created_at: datetime
    merged_at: datetime | None
    updated_at: datetime | None = None

    @property
    def linked_issue_numbers(self) -> list[int]:
        return extract_linked_issue_numbers(self.body)


@dataclass
class LinkedPullRequest:
    """A merged PR referencing an issue, with enough diff to judge it."""

    number: int
    title: str
    url: str
    body: str | None
    diff: str
    diff_summary: str
    changed_files: list[str] = field(default_factory=list)
    additions: int = 0
    deletions: int = 0
    merged_at: datetime | None = None

    def reference(self) -> dict:
        return {"number": self.number, "title": self.title, "url": self.url}


def extract_linked_issue_numbers(body: str | None) -> list[int]:
    """Issue numbers referenced by a PR body.

    Closing keywords ("Fixes #12") come first, then bare "#n" mentions, each
    number once.
    """
    if not body:
        return []

    numbers: list[int] = []
    for pattern in (CLOSING_REFERENCE, BARE_REFERENCE):
        for match in pattern.finditer(body):
            number = int(match.group(1))
            if number not in numbers:
                numbers.append(number)
    return numbers


def _login(user: Any) -> str | None:
    if user is None:
        return None
    return getattr(user, "login", None)


class Fetcher:
    """Reads issues and pull requests of GitHub repositories."""

    def __init__(self, client: GitHubClient) -> None:
        self._client = client

    def _pages(self, make_list: Callable[[], Any], what: str) -> Iterator[list]:
        """Yield pages until one comes back shorter than the page size."""
        page_size = self._client.page_size
        try:
            paginated = make_list()
            page_number = 0
            while True:
                page = list(paginated.get_page(page_number))
                logger.debug(f"Fetched {what} page {page_number}: {len(page)} entries")
                yield page
                if len(page) < page_size:
                    return
                page_number += 1
        except GithubException as e:
            raise TrackerError(f"Failed to list {what}: {e}", status=e.status) from e

    def list_issues(
        self, owner: str, repo: str, since: datetime | None = None
    ) -> list[IssueData]:
        """List issues, updated since ``since`` when given.

        The issues endpoint also returns pull requests; those are dropped.
        """
        kwargs: dict[str, Any] = {"state": "all", "sort": "updated", "direction": "desc"}
        if since is not None:
            kwargs["since"] = since

        def make_list():
            return self._client.get_repo(owner, repo).get_issues(**kwargs)

        results: list[IssueData] = []
        for page in self._pages(make_list, f"issues of {owner}/{repo}"):
            for item in page:
                if getattr(item, "pull_request", None) is not None:
                    continue
                results.append(
                    IssueData(
                        number=item.number,
                        title=item.title or "",
                        body=item.body,
                        state=item.state,
                        creator=_login(item.user),
                        assignee=_login(item.assignee),
                        created_at=item.created_at,
                        closed_at=item.closed_at,
                        updated_at=item.updated_at,
                    )
                )

        logger.info(f"Fetched {len(results)} issues from {owner}/{repo}")
        return results

    def list_pull_requests(
        self, owner: str, repo: str, since: datetime | None = None
    ) -> list[PullRequestData]:
        """List pull requests, most recently updated first.

        The pulls endpoint has no ``since`` filter, so older entries are dropped
        here and paging stops after the first page that reached them.
        """

        def make_list():
            return self._client.get_repo(owner, repo).get_pulls(
                state="all", sort="updated", direction="desc"
            )

        results: list[PullRequestData] = []
        for page in self._pages(make_list, f"pull requests of {owner}/{repo}"):
            reached_older = False
            for pr in page:
                if since is not None and pr.updated_at and pr.updated_at < since:
                    reached_older = True
                    continue
                results.append(self._to_pull_request_data(pr))
            if reached_older:
                break

        logger.info(f"Fetched {len(results)} pull requests from {owner}/{repo}")
        return results

    def list_linked_merged_pull_requests(
        self, owner: str, repo: str, issue_number: int
    ) -> list[LinkedPullRequest]:
        """Merged PRs of this repository that cross-reference the issue, with diff details.

        References from other repositories and forks are ignored. A PR that
        cannot be read is logged and left out.
        """
        full_name = f"{owner}/{repo}".lower()
        try:
            repository = self._client.get_repo(owner, repo)
            events = repository.get_issue(issue_number).get_timeline()

            pr_numbers: list[int] = []
            for event in events:
                if event.event != "cross-referenced" or event.source is None:
                    continue
                source_issue = getattr(event.source, "issue", None)
                if source_issue is None or source_issue.pull_request is None:
                    continue
                source_repo = getattr(source_issue, "repository", None)
                if source_repo is None or str(source_repo.full_name).lower() != full_name:
                    continue
                if source_issue.number not in pr_numbers:
                    pr_numbers.append(source_issue.number)
        except GithubException as e:
            raise TrackerError(
                f"Failed to resolve linked pull requests for {owner}/{repo}#{issue_number}: {e}",
                status=e.status,
            ) from e

        linked: list[LinkedPullRequest] = []
        for number in pr_numbers:
            try:
                pr = repository.get_pull(number)
                if not pr.merged:
                    continue
                linked.append(self._to_linked_pull_request(pr))
            except GithubException as e:
                logger.warning(f"Could not read PR #{number} linked to issue #{issue_number}: {e}")

        logger.debug(f"Issue #{issue_number} has {len(linked)} linked merged PRs")
        return linked

    def _to_pull_request_data(self, pr: PullRequest) -> PullRequestData:
        state = "merged" if pr.merged_at else pr.state
        return PullRequestData(
            number=pr.number,
            title=pr.title or "",
            body=pr.body,
            state=state,
            author=_login(pr.user),
            created_at=pr.created_at,
            merged_at=pr.merged_at,
            updated_at=pr.updated_at,
        )

    def _to_linked_pull_request(self, pr: PullRequest) -> LinkedPullRequest:
        files = list(pr.get_files())

        summary_lines = []
        patches = []
        for f in files:
            label = FILE_STATUS_LABELS.get(f.status, "[modified]")
            summary_lines.append(f"{label} {f.filename} (+{f.additions}/-{f.deletions})")
            if f.patch:
                patches.append(f"--- {f.filename} ---\n{f.patch}")
        diff_summary = "\n".join(summary_lines)

        patch = "\n\n".join(patches)
        if len(patch) > MAX_PATCH_LENGTH:
            patch = patch[:MAX_PATCH_LENGTH] + "\n... (truncated)"

        return LinkedPullRequest(
            number=pr.number,
            title=pr.title or "",
            url=pr.html_url,
            body=pr.body,
            diff=patch or diff_summary,
            diff_summary=diff_summary,
            changed_files=[f.filename for f in files],
            additions=pr.additions,
            deletions=pr.deletions,
            merged_at=pr.merged_at,
        )
