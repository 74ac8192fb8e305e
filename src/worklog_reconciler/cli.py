"""Command-line interface for worklog reconciler."""

import logging
import sys
from concurrent.futures import Future, wait
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Iterator, Optional

import typer
from rich.console import Console
from rich.progress import Progress
from rich.prompt import Prompt
from rich.table import Table

from worklog_reconciler import __version__
from worklog_reconciler.config import Config
from worklog_reconciler.errors import WorklogError
from worklog_reconciler.jira import JiraClient
from worklog_reconciler.ledger.history import HistoryLedger
from worklog_reconciler.ledger.models import EntryStatus, HistoryBatch, Issue, WorklogEntry
from worklog_reconciler.ledger.staging import StagingManager, TransitionReport
from worklog_reconciler.ledger.store import WorklogStore
from worklog_reconciler.sources import JsonRecordSource
from worklog_reconciler.sync.gaps import GapFiller
from worklog_reconciler.sync.linker import AutoLinker
from worklog_reconciler.sync.pipeline import GuidedPipeline
from worklog_reconciler.sync.reconciler import PushReconciler
from worklog_reconciler.sync.recovery import RecoveryReconstructor
from worklog_reconciler.sync.worker import NotificationKind, ReconciliationWorker
from worklog_reconciler.utils import format_hours, get_logger, parse_duration, setup_logging

app = typer.Typer(help="Stage, push and revert Jira worklogs")
console = Console()
logger = get_logger(__name__)


@dataclass
class Workspace:
    """Configuration and local state opened for one command."""

    config: Config
    store: WorklogStore
    ledger: HistoryLedger


@app.callback()
def main_options(
    ctx: typer.Context,
    config_dir: Optional[Path] = typer.Option(
        None,
        "--config-dir",
        help="Configuration directory. Defaults to ~/.worklog-reconciler/",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose logging.",
    ),
) -> None:
    """Stage, push and revert Jira worklogs."""
    setup_logging(
        log_level=logging.DEBUG if verbose else logging.INFO,
        config_dir=config_dir,
    )
    ctx.obj = config_dir


def _open(ctx: typer.Context) -> Workspace:
    config = Config(ctx.obj)
    return Workspace(
        config=config,
        store=WorklogStore.load(config.storage),
        ledger=HistoryLedger.load(config.storage),
    )


def _remote_ledger(config: Config) -> JiraClient:
    token = config.get_api_token()
    if not config.jira.is_configured or not token:
        console.print("[yellow]Jira is not configured. Please configure it first.[/yellow]")
        console.print("Run: worklog-reconciler configure")
        raise typer.Exit(code=1)
    return JiraClient(
        base_url=config.jira.base_url,
        username=config.jira.username,
        api_token=token,
        timeout=config.jira.timeout,
    )


@contextmanager
def _reported_errors() -> Iterator[None]:
    try:
        yield
    except WorklogError as e:
        logger.error(f"{type(e).__name__}: {e}")
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1)


def _parse_day(value: str) -> date:
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        console.print("[red]Invalid date format. Use YYYY-MM-DD[/red]")
        raise typer.Exit(code=1)


def _parse_start(value: Optional[str], config: Config) -> datetime:
    if value is None:
        return datetime.now(timezone.utc).replace(microsecond=0)
    try:
        started = datetime.fromisoformat(value)
    except ValueError:
        console.print("[red]Invalid start time. Use ISO format, e.g. 2024-05-06T09:30[/red]")
        raise typer.Exit(code=1)
    if started.tzinfo is None:
        started = started.replace(tzinfo=config.gaps.tz)
    return started.astimezone(timezone.utc)


def _entries_table(entries: list[WorklogEntry], title: str) -> Table:
    table = Table(title=title)
    table.add_column("ID", style="cyan")
    table.add_column("Issue", style="magenta")
    table.add_column("Start")
    table.add_column("Hours", justify="right")
    table.add_column("Status")
    table.add_column("Source")
    table.add_column("Comment")

    for entry in entries:
        note = entry.comment
        if entry.last_error:
            note = f"[red]{entry.last_error}[/red]"
        table.add_row(
            entry.id,
            entry.issue_key,
            entry.started_at.strftime("%Y-%m-%d %H:%M"),
            format_hours(entry.duration_seconds),
            entry.status.value,
            entry.source.value,
            note,
        )
    return table


def _batches_table(batches: list[HistoryBatch]) -> Table:
    table = Table(title="Push History")
    table.add_column("Batch", style="cyan")
    table.add_column("Created")
    table.add_column("Worklogs", justify="right")
    table.add_column("Hours", justify="right", style="magenta")
    table.add_column("Status")
    table.add_column("Recovered")

    for batch in batches:
        table.add_row(
            batch.id,
            batch.created_at.strftime("%Y-%m-%d %H:%M"),
            str(len(batch.members)),
            format_hours(batch.total_seconds),
            batch.status.value,
            "yes" if batch.recovered else "",
        )
    return table


def _print_report(report: TransitionReport, verb: str) -> None:
    console.print(f"[green]{verb}: {len(report.changed)}[/green]  Unchanged: {len(report.unchanged)}")
    if report.failed:
        console.print("\n[red]Errors:[/red]")
        for entry_id, reason in report.failed.items():
            console.print(f"  - {entry_id}: {reason}")
        raise typer.Exit(code=1)


def _wait_for(worker: ReconciliationWorker, future: Future, description: str):
    """Drain worker notifications into a progress bar until the job ends."""
    with Progress(console=console, transient=True) as progress:
        task = progress.add_task(description, total=None)
        while not future.done():
            try:
                wait([future], timeout=0.1)
            except KeyboardInterrupt:
                console.print("[yellow]Cancelling after the current worklog...[/yellow]")
                worker.cancel()
            for note in worker.drain():
                if note.kind == NotificationKind.PROGRESS:
                    progress.update(task, completed=note.done, total=note.total)
    worker.drain()
    return future.result()


def _ask(label: str, current: str) -> str:
    if current:
        return Prompt.ask(label, default=current)
    return Prompt.ask(label)


@app.command()
def configure(ctx: typer.Context) -> None:
    """Configure Jira credentials."""
    config = Config(ctx.obj)

    console.print("[bold cyan]Worklog Reconciler Configuration[/bold cyan]")
    console.print()
    base_url = _ask("Jira site URL", config.jira.base_url)
    username = _ask("Jira account email", config.jira.username)
    token = Prompt.ask("Jira API token", password=True)

    config.update_section("jira", {"base_url": base_url, "username": username})
    config.storage.set_token("jira", token)
    console.print("[green]✓ Jira settings saved[/green]")

    console.print("[cyan]Testing connection...[/cyan]")
    try:
        with _remote_ledger(config) as client:
            user = client.myself()
        console.print(f"[green]✓ Connected to Jira as {user.get('displayName', username)}[/green]")
    except WorklogError as e:
        console.print(f"[red]✗ Failed to connect to Jira: {e}[/red]")


@app.command()
def add(
    ctx: typer.Context,
    issue_key: str = typer.Argument(..., help="Issue key, e.g. PROJ-123"),
    duration: str = typer.Argument(..., help="Duration, e.g. 1h30m or 1.5h"),
    start: Optional[str] = typer.Option(
        None,
        "--start",
        help="Start time (ISO format). Naive times use the configured timezone. Defaults to now.",
    ),
    comment: str = typer.Option("", "--comment", "-m", help="Worklog comment."),
    stage_now: bool = typer.Option(False, "--stage", help="Stage the new worklog right away."),
) -> None:
    """Add a draft worklog."""
    workspace = _open(ctx)
    with _reported_errors():
        staging = StagingManager(workspace.store)
        entry = staging.create_draft(
            issue_key=issue_key,
            duration_seconds=parse_duration(duration),
            started_at=_parse_start(start, workspace.config),
            comment=comment,
        )
        if stage_now:
            staging.stage([entry.id])

    console.print(
        f"[green]✓ Added {entry.id}: {format_hours(entry.duration_seconds)}h on {entry.issue_key}[/green]"
    )


@app.command("list")
def list_entries(
    ctx: typer.Context,
    status: Optional[EntryStatus] = typer.Option(None, "--status", "-s", help="Only show this status."),
) -> None:
    """List worklogs."""
    workspace = _open(ctx)
    entries = workspace.store.by_status(status) if status else workspace.store.all()
    if not entries:
        console.print("[yellow]No worklogs found.[/yellow]")
        return

    console.print(_entries_table(entries, "Worklogs"))
    total = sum(entry.duration_seconds for entry in entries)
    console.print(f"Total: [magenta]{format_hours(total)}h[/magenta] in {len(entries)} worklogs")


@app.command()
def stage(
    ctx: typer.Context,
    entry_ids: list[str] = typer.Argument(..., help="Worklog ids to stage."),
) -> None:
    """Mark draft worklogs as ready to push."""
    report = StagingManager(_open(ctx).store).stage(entry_ids)
    _print_report(report, "Staged")


@app.command()
def unstage(
    ctx: typer.Context,
    entry_ids: list[str] = typer.Argument(..., help="Worklog ids to unstage."),
) -> None:
    """Move staged worklogs back to draft."""
    report = StagingManager(_open(ctx).store).unstage(entry_ids)
    _print_report(report, "Unstaged")


@app.command("stage-all")
def stage_all(ctx: typer.Context) -> None:
    """Stage every draft worklog."""
    report = StagingManager(_open(ctx).store).stage_all()
    _print_report(report, "Staged")


@app.command()
def reset(
    ctx: typer.Context,
    entry_ids: list[str] = typer.Argument(..., help="Staged worklog ids to reset."),
) -> None:
    """Reset staged worklogs to draft. Fails for any other status."""
    report = StagingManager(_open(ctx).store).reset(entry_ids)
    _print_report(report, "Reset")


@app.command()
def discard(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
) -> None:
    """Delete every draft and staged worklog that was never pushed."""
    workspace = _open(ctx)
    pending = workspace.store.by_status(EntryStatus.DRAFT, EntryStatus.STAGED)
    if not pending:
        console.print("[yellow]Nothing to discard.[/yellow]")
        return

    if not yes and not typer.confirm(f"Discard {len(pending)} unpushed worklogs?"):
        raise typer.Exit(code=0)

    with _reported_errors():
        report = StagingManager(workspace.store).discard_drafts()
    console.print(f"[green]✓ Discarded {len(report.changed)} worklogs[/green]")


@app.command()
def fill(
    ctx: typer.Context,
    from_date: str = typer.Option(..., "--from-date", help="First day to fill (YYYY-MM-DD)."),
    to_date: Optional[str] = typer.Option(
        None,
        "--to-date",
        help="Last day to fill (YYYY-MM-DD). Defaults to the first day.",
    ),
    save: bool = typer.Option(False, "--save", help="Store the proposals as drafts."),
) -> None:
    """Propose drafts for uncovered working time."""
    workspace = _open(ctx)
    start_day = _parse_day(from_date)
    end_day = _parse_day(to_date) if to_date else start_day

    pipeline = GuidedPipeline(
        workspace.store,
        AutoLinker(workspace.config.linker),
        GapFiller(workspace.config.gaps),
    )
    with _reported_errors():
        state = pipeline.run(start_day, end_day)

    proposals = list(state.proposals)
    unassigned = [gap for result in state.fills for gap in result.unassigned]
    if proposals:
        console.print(_entries_table(proposals, "Gap Fill Proposals"))
    else:
        console.print("[yellow]No gaps to fill.[/yellow]")
    if unassigned:
        console.print(f"[yellow]{len(unassigned)} gaps have no issue to log against.[/yellow]")

    if save and proposals:
        with _reported_errors():
            StagingManager(workspace.store).add_drafts(proposals)
        console.print(f"[green]✓ Added {len(proposals)} drafts[/green]")


@app.command()
def sync(
    ctx: typer.Context,
    records: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON file with meetings and sessions."),
    from_date: str = typer.Option(..., "--from-date", help="First day (YYYY-MM-DD)."),
    to_date: Optional[str] = typer.Option(None, "--to-date", help="Last day (YYYY-MM-DD)."),
    exclude: list[str] = typer.Option([], "--exclude", help="Day to leave out (YYYY-MM-DD). Repeatable."),
    push: bool = typer.Option(False, "--push", help="Push the proposals after staging them."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show proposals without storing them."),
) -> None:
    """Turn meetings and coding sessions into staged worklogs."""
    workspace = _open(ctx)
    config = workspace.config
    start_day = _parse_day(from_date)
    end_day = _parse_day(to_date) if to_date else start_day
    excluded = [_parse_day(day) for day in exclude]

    with _reported_errors():
        source = JsonRecordSource(records)
    known = {entry.issue_key: Issue(key=entry.issue_key) for entry in workspace.store.all()}
    client = _remote_ledger(config) if config.jira.is_configured and config.get_api_token() else None
    try:
        with _reported_errors():
            if client is not None:
                for jira_issue in client.search_issues(config.jira.issue_query):
                    known[jira_issue.key] = jira_issue.to_issue()

            pipeline = GuidedPipeline(
                workspace.store,
                AutoLinker(config.linker),
                GapFiller(config.gaps),
                meeting_source=source,
                session_source=source,
            )
            state = pipeline.run(start_day, end_day, known.values(), excluded)

            if not state.proposals:
                console.print("[yellow]Nothing new to log.[/yellow]")
                return
            console.print(_entries_table(list(state.proposals), "Proposed Worklogs"))
            console.print(f"Total: [magenta]{format_hours(state.proposed_seconds)}h[/magenta]")
            if dry_run:
                return

            result = pipeline.commit(state, StagingManager(workspace.store))
            console.print(f"[green]✓ Staged {len(result.added)} worklogs[/green]")
    finally:
        if client is not None:
            client.close()

    if push:
        _push_ids(workspace, result.staging.changed)


def _push_ids(workspace: Workspace, entry_ids: list[str]) -> None:
    with _reported_errors(), _remote_ledger(workspace.config) as client:
        reconciler = PushReconciler(workspace.store, workspace.ledger, client, workspace.config.worklog)
        with ReconciliationWorker(reconciler) as worker:
            result = _wait_for(worker, worker.submit_push(entry_ids), "Pushing worklogs")

    table = Table(title="Push Results")
    table.add_column("Metric", style="cyan")
    table.add_column("Count", style="magenta")
    table.add_row("Pushed", str(len(result.succeeded)))
    table.add_row("Skipped", str(len(result.skipped)))
    table.add_row("Failed", str(len(result.failed)))
    table.add_row("Cancelled", str(len(result.cancelled)))
    console.print(table)

    if result.batch_id:
        console.print(f"Recorded batch [cyan]{result.batch_id}[/cyan]")
    if result.failed:
        console.print("\n[red]Errors:[/red]")
        for entry_id, reason in result.failed.items():
            console.print(f"  - {entry_id}: {reason}")
    raise typer.Exit(code=0 if not result.failed else 1)


@app.command("push")
def push_command(
    ctx: typer.Context,
    entry_ids: Optional[list[str]] = typer.Argument(None, help="Worklog ids. Defaults to every staged worklog."),
) -> None:
    """Push staged worklogs to Jira."""
    workspace = _open(ctx)
    ids = entry_ids or [entry.id for entry in workspace.store.by_status(EntryStatus.STAGED)]
    if not ids:
        console.print("[yellow]No staged worklogs to push.[/yellow]")
        return
    _push_ids(workspace, ids)


@app.command()
def history(ctx: typer.Context) -> None:
    """Show pushed batches."""
    batches = _open(ctx).ledger.all()
    if not batches:
        console.print("[yellow]No pushes recorded yet.[/yellow]")
        return
    console.print(_batches_table(batches))


@app.command()
def revert(
    ctx: typer.Context,
    batch_id: str = typer.Argument(..., help="Batch to revert."),
    confirm: Optional[str] = typer.Option(
        None,
        "--confirm",
        help="Total hours of the batch, as confirmation.",
    ),
) -> None:
    """Delete a pushed batch from Jira."""
    workspace = _open(ctx)
    with _reported_errors():
        batch = workspace.ledger.require(batch_id)
    console.print(_batches_table([batch]))

    if confirm is None:
        confirm = Prompt.ask("Type the batch total in hours to confirm")

    with _reported_errors(), _remote_ledger(workspace.config) as client:
        reconciler = PushReconciler(workspace.store, workspace.ledger, client, workspace.config.worklog)
        with ReconciliationWorker(reconciler) as worker:
            result = _wait_for(worker, worker.submit_revert(batch_id, confirm), "Reverting worklogs")

    console.print(
        f"Reverted: [green]{len(result.reverted)}[/green]  "
        f"Failed: [red]{len(result.failed)}[/red]  "
        f"Batch status: [cyan]{result.status.value}[/cyan]"
    )
    if result.failed:
        console.print("\n[red]Errors:[/red]")
        for entry_id, reason in result.failed.items():
            console.print(f"  - {entry_id}: {reason}")
        raise typer.Exit(code=1)


@app.command()
def reconstruct(ctx: typer.Context) -> None:
    """Rebuild history for pushed worklogs that no batch covers."""
    workspace = _open(ctx)
    with _reported_errors():
        created = RecoveryReconstructor(
            workspace.store, workspace.ledger, workspace.config.recovery
        ).reconstruct()

    if not created:
        console.print("[green]History is complete, nothing to recover.[/green]")
        return
    console.print(_batches_table(created))
    console.print(f"[green]✓ Recovered {len(created)} batches[/green]")


@app.command()
def version() -> None:
    """Show version information."""
    console.print(f"Worklog Reconciler v{__version__}")


def main() -> None:
    """Main entry point."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        sys.exit(0)
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        console.print(f"[red]Unexpected error: {e}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
