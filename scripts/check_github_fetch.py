"""Manual verification: list issues and pull requests of a real repo.

Usage:
    SPRINTSCORE_GITHUB_TOKEN=ghp_... python scripts/check_github_fetch.py owner/repo [issue_number]

With an issue number, also lists the merged PRs linked to that issue.
"""

from __future__ import annotations

import sys

from sprintscore.config import Config
from sprintscore.github.client import GitHubClient
from sprintscore.github.fetcher import Fetcher


def main() -> None:
    config = Config.load()

    if len(sys.argv) < 2 or "/" not in sys.argv[1]:
        print("ERROR: Provide the repository as owner/repo")
        sys.exit(1)
    owner, repo = sys.argv[1].split("/", 1)

    if not config.github_token:
        print("ERROR: Set SPRINTSCORE_GITHUB_TOKEN environment variable")
        sys.exit(1)

    print(f"Connecting to {owner}/{repo}...")
    client = GitHubClient(token=config.github_token)

    try:
        fetcher = Fetcher(client)

        print("\n--- Issues (first 10) ---")
        issues = fetcher.list_issues(owner, repo)
        for issue in issues[:10]:
            print(f"  #{issue.number}: {issue.title}")
            print(f"    State: {issue.state}  Creator: {issue.creator}  Assignee: {issue.assignee}")
            print(f"    Created: {issue.created_at}  Closed: {issue.closed_at}")

        print("\n--- Pull requests (first 10) ---")
        pulls = fetcher.list_pull_requests(owner, repo)
        for pr in pulls[:10]:
            print(f"  #{pr.number}: {pr.title} [{pr.state}] -> issues {pr.linked_issue_numbers}")

        if len(sys.argv) > 2:
            number = int(sys.argv[2])
            print(f"\n--- Merged PRs linked to #{number} ---")
            for linked in fetcher.list_linked_merged_pull_requests(owner, repo, number):
                print(f"  #{linked.number}: {linked.title} ({linked.url})")
                print(f"    +{linked.additions}/-{linked.deletions} in {len(linked.changed_files)} files")
                print("    " + linked.diff_summary.replace("\n", "\n    "))

        print(f"\nSummary: {len(issues)} issues, {len(pulls)} pull requests")

    finally:
        client.close()


if __name__ == "__main__":
    main()
