"""CLI entry point for sprintscore."""

from __future__ import annotations

import logging
import sqlite3
import time
from datetime import datetime
from pathlib import Path

import anthropic
import typer
from rich import print as rprint
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from sprintscore.batch.orchestrator import AXES, MAX_BATCH_LIMIT, BatchEvaluator, BatchResult
from sprintscore.config import Config
from sprintscore.errors import ConfigurationError, NotFoundError, TrackerError
from sprintscore.evaluation.consistency import ConsistencyEvaluator
from sprintscore.evaluation.quality import QualityEvaluator
from sprintscore.github.client import GitHubClient
from sprintscore.github.fetcher import Fetcher
from sprintscore.reporting import GroupStats, SprintReport, sprint_history, sprint_report
from sprintscore.sprint.calculator import DAY_NAMES
from sprintscore.storage.db import get_connection
from sprintscore.storage.store import Store
from sprintscore.sync.orchestrator import SyncOrchestrator
from sprintscore.sync.speed import SpeedScorer

app = typer.Typer(help="Sprint-by-sprint speed, quality and consistency scores for GitHub issues.")
console = Console()


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def _load_config(need_github: bool = False, need_anthropic: bool = False) -> Config:
    config = Config.load()
    issues = config.validate(need_github=need_github, need_anthropic=need_anthropic)
    if issues:
        for issue in issues:
            rprint(f"[red]Config error: {issue}[/red]")
        raise typer.Exit(1)
    return config


def _db(config: Config, db_path: str | None) -> Path:
    return Path(db_path) if db_path else config.db_path


def _fail(message: str) -> None:
    rprint(f"[red]{message}[/red]")
    raise typer.Exit(1)


def _fmt(value: object) -> str:
    return "-" if value is None else str(value)


def _parse_repo(full_name: str) -> tuple[str, str]:
    owner, _, name = full_name.partition("/")
    if not owner or not name or "/" in name:
        _fail(f"Expected owner/repo, got {full_name!r}")
    return owner, name


@app.command("add-repo")
def add_repo(
    repo: str = typer.Argument(help="GitHub repository (owner/repo)"),
    start_day: int = typer.Option(6, help="Sprint start weekday, 0=Sun ... 6=Sat"),
    duration: int = typer.Option(1, help="Sprint length in weeks (1 or 2)"),
    tracking_start: datetime = typer.Option(
        None, formats=["%Y-%m-%d"], help="Date sprint 1 starts from (default: today)"
    ),
    timezone: str = typer.Option("UTC", help="IANA timezone used for sprint boundaries"),
    db_path: str = typer.Option(None, help="Database file path"),
) -> None:
    """Register a repository to track."""
    config = _load_config()
    owner, name = _parse_repo(repo)

    conn = get_connection(_db(config, db_path))
    try:
        store = Store(conn)
        repository = store.add_repository(
            owner,
            name,
            sprint_start_day_of_week=start_day,
            sprint_duration_weeks=duration,
            tracking_start_date=tracking_start.date() if tracking_start else None,
            timezone_name=timezone,
        )
        rprint(f"[green]Added {repository.full_name}[/green] (id {repository.id})")
    except ConfigurationError as e:
        _fail(f"Invalid sprint settings: {e}")
    except sqlite3.IntegrityError:
        _fail(f"{owner}/{name} is already registered")
    finally:
        conn.close()


@app.command()
def repos(
    db_path: str = typer.Option(None, help="Database file path"),
) -> None:
    """List tracked repositories."""
    config = _load_config()
    conn = get_connection(_db(config, db_path))
    try:
        store = Store(conn)
        table = Table(title="Repositories")
        for column in ("ID", "Repository", "Sprint start", "Weeks", "Since", "Timezone", "Last sync"):
            table.add_column(column)
        for repository in store.list_repositories():
            metadata = store.get_sync_metadata(repository.id)
            table.add_row(
                str(repository.id),
                repository.full_name,
                DAY_NAMES[repository.sprint_start_day_of_week],
                str(repository.sprint_duration_weeks),
                _fmt(repository.tracking_start_date),
                repository.timezone,
                metadata.last_sync_at.strftime("%Y-%m-%d %H:%M") if metadata else "never",
            )
        console.print(table)
    finally:
        conn.close()


@app.command("configure-sprint")
def configure_sprint(
    repository_id: int = typer.Argument(help="Repository id"),
    start_day: int = typer.Option(None, help="Sprint start weekday, 0=Sun ... 6=Sat"),
    duration: int = typer.Option(None, help="Sprint length in weeks (1 or 2)"),
    tracking_start: datetime = typer.Option(None, formats=["%Y-%m-%d"], help="Date sprint 1 starts from"),
    timezone: str = typer.Option(None, help="IANA timezone used for sprint boundaries"),
    db_path: str = typer.Option(None, help="Database file path"),
) -> None:
    """Change a repository's sprint settings.

    Issues already synced keep their sprint; run recompute-sprints to re-tag them.
    """
    config = _load_config()
    conn = get_connection(_db(config, db_path))
    try:
        repository = Store(conn).update_sprint_settings(
            repository_id,
            sprint_start_day_of_week=start_day,
            sprint_duration_weeks=duration,
            tracking_start_date=tracking_start.date() if tracking_start else None,
            timezone_name=timezone,
        )
        rprint(
            f"[green]Updated {repository.full_name}[/green]: "
            f"{repository.sprint_duration_weeks}-week sprints starting "
            f"{DAY_NAMES[repository.sprint_start_day_of_week]}, from {repository.tracking_start_date}"
        )
        rprint("[yellow]Existing issues keep their sprint numbers. Run recompute-sprints to update them.[/yellow]")
    except (ConfigurationError, NotFoundError) as e:
        _fail(str(e))
    finally:
        conn.close()


@app.command()
def track(
    repository_id: int = typer.Argument(help="Repository id"),
    usernames: list[str] = typer.Argument(help="GitHub user names"),
    db_path: str = typer.Option(None, help="Database file path"),
) -> None:
    """Add users to the tracked set. With none tracked, everyone is in scope."""
    config = _load_config()
    conn = get_connection(_db(config, db_path))
    try:
        store = Store(conn)
        store.require_repository(repository_id)
        for username in usernames:
            store.track_collaborator(repository_id, username)
        rprint(f"Tracked: {', '.join(store.get_tracked_usernames(repository_id))}")
    except NotFoundError as e:
        _fail(str(e))
    finally:
        conn.close()


@app.command()
def untrack(
    repository_id: int = typer.Argument(help="Repository id"),
    usernames: list[str] = typer.Argument(help="GitHub user names"),
    db_path: str = typer.Option(None, help="Database file path"),
) -> None:
    """Remove users from the tracked set."""
    config = _load_config()
    conn = get_connection(_db(config, db_path))
    try:
        store = Store(conn)
        for username in usernames:
            if not store.untrack_collaborator(repository_id, username):
                rprint(f"[yellow]{username} was not tracked[/yellow]")
        remaining = store.get_tracked_usernames(repository_id)
        rprint(f"Tracked: {', '.join(remaining) if remaining else '(everyone)'}")
    finally:
        conn.close()


@app.command()
def sync(
    repository_id: int = typer.Argument(help="Repository id"),
    full: bool = typer.Option(False, "--full", help="Ignore the last sync time and fetch everything"),
    pull_requests: bool = typer.Option(True, help="Also sync pull requests"),
    db_path: str = typer.Option(None, help="Database file path"),
) -> None:
    """Fetch issues (and pull requests) from GitHub."""
    config = _load_config(need_github=True)
    conn = get_connection(_db(config, db_path))
    client = GitHubClient(token=config.github_token)

    try:
        orchestrator = SyncOrchestrator(Store(conn), Fetcher(client))
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
        ) as progress:
            progress.add_task("Syncing from GitHub...", total=None)
            result = orchestrator.run(
                repository_id, force_full_sync=full, include_pull_requests=pull_requests
            )

        rprint(f"[bold]{'Full' if result.is_full_sync else 'Differential'} sync complete:[/bold]")
        rprint(f"  Issues synced:        {result.synced_count}")
        rprint(f"  Issues skipped:       {result.skipped_count}")
        rprint(f"  Pull requests synced: {result.pull_requests_synced}")
        if result.failed_count:
            rprint(f"  [red]Failed:               {result.failed_count}[/red]")
    except NotFoundError as e:
        _fail(str(e))
    except TrackerError as e:
        _fail(f"GitHub error: {e}")
    finally:
        client.close()
        conn.close()


def _print_batch(result: BatchResult) -> None:
    for item in result.items:
        if item.status.value == "evaluated":
            rprint(f"  #{item.tracker_number}: [green]{item.score} ({item.grade})[/green]")
        elif item.status.value == "skipped":
            rprint(f"  #{item.tracker_number}: [yellow]skipped (no linked merged PR)[/yellow]")
        elif item.status.value == "error":
            rprint(f"  #{item.tracker_number}: [red]error: {item.error}[/red]")


@app.command()
def evaluate(
    repository_id: int = typer.Argument(help="Repository id"),
    axis: str = typer.Option("quality", help="quality or consistency"),
    limit: int = typer.Option(None, help=f"Issues per batch (1-{MAX_BATCH_LIMIT})"),
    run_all: bool = typer.Option(False, "--all", help="Keep running batches until nothing is pending"),
    timeout: float = typer.Option(None, help="Stop starting new items after this many seconds"),
    retry_skipped: bool = typer.Option(
        False, "--retry-skipped", help="Retry issues previously skipped for lacking a linked PR"
    ),
    db_path: str = typer.Option(None, help="Database file path"),
) -> None:
    """Score issues with Claude, one bounded batch at a time."""
    if axis not in AXES:
        _fail(f"--axis must be one of {', '.join(AXES)}")
    config = _load_config(need_github=axis == "consistency", need_anthropic=True)
    batch_limit = limit or config.batch_limit
    if not 1 <= batch_limit <= MAX_BATCH_LIMIT:
        _fail(f"--limit must be between 1 and {MAX_BATCH_LIMIT}")

    conn = get_connection(_db(config, db_path))
    client = GitHubClient(token=config.github_token) if axis == "consistency" else None
    anthropic_client = anthropic.Anthropic(api_key=config.anthropic_api_key)

    try:
        store = Store(conn)
        if retry_skipped:
            cleared = store.clear_consistency_skips(repository_id)
            rprint(f"Cleared {cleared} skipped issue(s)")

        evaluator = BatchEvaluator(
            store,
            quality_evaluator=QualityEvaluator(anthropic_client, model=config.model),
            consistency_evaluator=ConsistencyEvaluator(anthropic_client, model=config.model),
            fetcher=Fetcher(client) if client else None,
            quality_delay=config.quality_delay,
            consistency_delay=config.consistency_delay,
        )
        deadline = time.monotonic() + timeout if timeout else None

        totals = {"evaluated": 0, "skipped": 0, "errors": 0}
        while True:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                console=console,
            ) as progress:
                progress.add_task(f"Evaluating {axis} (up to {batch_limit} issues)...", total=None)
                result = evaluator.run(repository_id, axis, batch_limit, deadline=deadline)
            _print_batch(result)
            totals["evaluated"] += result.evaluated
            totals["skipped"] += result.skipped
            totals["errors"] += result.errors

            if not run_all or result.remaining == 0 or result.stopped_reason or result.stalled:
                break

        rprint(f"\n[bold]{axis.capitalize()} evaluation:[/bold]")
        rprint(f"  Evaluated: {totals['evaluated']}")
        rprint(f"  Skipped:   {totals['skipped']}")
        rprint(f"  Errors:    {totals['errors']}")
        rprint(f"  Remaining: {result.remaining}")
        if result.stopped_reason == "rate_limited":
            rprint("[yellow]Rate limited. Run the same command again later to continue.[/yellow]")
        elif result.stopped_reason == "deadline":
            rprint("[yellow]Timed out. Run the same command again to continue.[/yellow]")
        elif result.stalled:
            rprint("[yellow]Only issues that keep failing are left; see the errors above.[/yellow]")
    except NotFoundError as e:
        _fail(str(e))
    finally:
        if client:
            client.close()
        conn.close()


@app.command()
def speed(
    repository_id: int = typer.Argument(help="Repository id"),
    db_path: str = typer.Option(None, help="Database file path"),
) -> None:
    """Store speed scores for every closed issue."""
    config = _load_config()
    conn = get_connection(_db(config, db_path))
    try:
        result = SpeedScorer(Store(conn)).run(repository_id)
        rprint(f"Speed scored for [bold]{result.scored}[/bold] issues ({result.skipped} skipped)")
    except NotFoundError as e:
        _fail(str(e))
    finally:
        conn.close()


def _stats_row(name: str, stats: GroupStats) -> list[str]:
    hours = stats.average_lead_time_hours
    return [
        name,
        str(stats.total_issues),
        str(stats.closed_issues),
        f"{_fmt(stats.speed.average_score)} {_fmt(stats.speed.average_grade)}",
        _fmt(hours if hours is None else f"{hours}h"),
        f"{_fmt(stats.quality.average_score)} {_fmt(stats.quality.average_grade)}",
        f"{_fmt(stats.consistency.average_score)} {_fmt(stats.consistency.average_grade)}",
    ]


def _print_report(report: SprintReport) -> None:
    title = f"Sprint {report.sprint_number}: {report.label}"
    if report.is_current:
        title += " (current)"
    table = Table(title=title)
    for column in ("User", "Issues", "Closed", "Speed", "Lead time", "Quality", "Consistency"):
        table.add_column(column)
    for user in report.users:
        table.add_row(*_stats_row(user.user_name, user.stats))
    table.add_section()
    table.add_row(*_stats_row("[bold]Team[/bold]", report.team))
    console.print(table)


@app.command()
def sprint(
    repository_id: int = typer.Argument(help="Repository id"),
    offset: int = typer.Option(0, help="0 = current sprint, -1 = previous, 1 = next"),
    db_path: str = typer.Option(None, help="Database file path"),
) -> None:
    """Show per-user stats for one sprint."""
    config = _load_config()
    conn = get_connection(_db(config, db_path))
    try:
        _print_report(sprint_report(Store(conn), repository_id, offset=offset))
    except NotFoundError as e:
        _fail(str(e))
    finally:
        conn.close()


@app.command()
def dashboard(
    repository_id: int = typer.Argument(help="Repository id"),
    offset: int = typer.Option(0, help="0 = current sprint, -1 = previous, 1 = next"),
    db_path: str = typer.Option(None, help="Database file path"),
) -> None:
    """Show the sprint's issues with their scores."""
    config = _load_config()
    conn = get_connection(_db(config, db_path))
    try:
        report = sprint_report(Store(conn), repository_id, offset=offset)
        _print_report(report)

        table = Table(title="Issues")
        for column in ("#", "Title", "Author", "State", "Speed", "Quality", "Consistency"):
            table.add_column(column)
        for row in report.issues:
            evaluation = row.evaluation
            table.add_row(
                str(row.issue.tracker_number),
                row.issue.title,
                _fmt(row.author),
                row.issue.state,
                _fmt(evaluation.speed_grade if evaluation else None),
                _fmt(evaluation.quality_grade if evaluation else None),
                _fmt(evaluation.consistency_grade if evaluation else None),
            )
        console.print(table)
    except NotFoundError as e:
        _fail(str(e))
    finally:
        conn.close()


@app.command()
def history(
    repository_id: int = typer.Argument(help="Repository id"),
    count: int = typer.Option(12, min=1, help="Number of sprints to show"),
    db_path: str = typer.Option(None, help="Database file path"),
) -> None:
    """Show team stats for recent sprints, newest first."""
    config = _load_config()
    conn = get_connection(_db(config, db_path))
    try:
        reports = sprint_history(Store(conn), repository_id, count=count)
        table = Table(title="Sprint history")
        for column in ("Sprint", "Period", "Issues", "Closed", "Speed", "Lead time", "Quality", "Consistency"):
            table.add_column(column)
        for report in reports:
            row = _stats_row(str(report.sprint_number), report.team)
            table.add_row(row[0], report.label, *row[1:])
        console.print(table)
    except NotFoundError as e:
        _fail(str(e))
    finally:
        conn.close()


@app.command()
def stats(
    repository_id: int = typer.Argument(help="Repository id"),
    db_path: str = typer.Option(None, help="Database file path"),
) -> None:
    """Show what is stored for a repository."""
    config = _load_config()
    conn = get_connection(_db(config, db_path))
    try:
        store = Store(conn)
        repository = store.require_repository(repository_id)
        s = store.get_stats(repository_id)
        rprint(f"[bold]{repository.full_name} statistics:[/bold]")
        rprint(f"  Issues:                 {s['issues']} ({s['closed_issues']} closed)")
        rprint(f"  Pull requests:          {s['pull_requests']}")
        rprint(f"  Collaborators:          {s['collaborators']}")
        rprint(f"  Quality evaluated:      {s['quality_evaluated']}")
        rprint(f"  Consistency evaluated:  {s['consistency_evaluated']}")
    except NotFoundError as e:
        _fail(str(e))
    finally:
        conn.close()


@app.command("remove-repo")
def remove_repo(
    repository_id: int = typer.Argument(help="Repository id"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
    db_path: str = typer.Option(None, help="Database file path"),
) -> None:
    """Delete a repository and everything stored for it."""
    config = _load_config()
    conn = get_connection(_db(config, db_path))
    try:
        store = Store(conn)
        repository = store.require_repository(repository_id)
        if not yes:
            typer.confirm(f"Delete {repository.full_name} and all of its issues and scores?", abort=True)
        store.delete_repository(repository_id)
        rprint(f"[green]Removed {repository.full_name}[/green]")
    except NotFoundError as e:
        _fail(str(e))
    finally:
        conn.close()


@app.command("recompute-sprints")
def recompute_sprints(
    repository_id: int = typer.Argument(help="Repository id"),
    db_path: str = typer.Option(None, help="Database file path"),
) -> None:
    """Re-tag every stored issue with the current sprint settings."""
    config = _load_config()
    conn = get_connection(_db(config, db_path))
    try:
        # the fetcher is never used when recomputing
        changed = SyncOrchestrator(Store(conn), fetcher=None).recompute_sprint_numbers(repository_id)
        rprint(f"Updated the sprint number of [bold]{changed}[/bold] issue(s)")
    except NotFoundError as e:
        _fail(str(e))
    finally:
        conn.close()


if __name__ == "__main__":
    app()
