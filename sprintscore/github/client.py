"""Thin wrapper around PyGithub for authenticated GitHub API access."""

from __future__ import annotations

from github import Auth, Github
from github.Repository import Repository

from sprintscore.errors import ConfigurationError

PAGE_SIZE = 100


class GitHubClient:
    """Authenticated GitHub client shared by every tracked repository.

    Usage:
        client = GitHubClient(token="ghp_...")
        repo = client.get_repo("owner", "repo")  # PyGithub Repository object
    """

    def __init__(self, token: str, page_size: int = PAGE_SIZE) -> None:
        if not token:
            raise ConfigurationError("A GitHub token is required")
        self._gh = Github(auth=Auth.Token(token), per_page=page_size)
        self._page_size = page_size
        self._repos: dict[str, Repository] = {}

    @property
    def page_size(self) -> int:
        return self._page_size

    def get_repo(self, owner: str, name: str) -> Repository:
        full_name = f"{owner}/{name}"
        if full_name not in self._repos:
            self._repos[full_name] = self._gh.get_repo(full_name)
        return self._repos[full_name]

    def close(self) -> None:
        self._gh.close()
