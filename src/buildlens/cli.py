"""
BuildLens CLI - operator commands.

Runs the API server and the maintenance jobs (Jenkins sync, retention,
view refresh) on demand.
"""

from typing import List, Optional

import typer
from rich.console import Console

from buildlens.logging_config import setup_logging

app = typer.Typer(
    name="buildlens",
    help="BuildLens - anomaly analytics for CI builds",
    no_args_is_help=True,
)

console = Console()


@app.command()
def sync(
    folder: Optional[str] = typer.Option(None, help="Jenkins folder (default: configured folder)"),
    max_delete_ratio: Optional[int] = typer.Option(
        None, help="Percent of local jobs one run may purge"
    ),
) -> None:
    """
    Reconcile stored conversations with the Jenkins job list.

    Conversations of jobs that no longer exist in Jenkins are purged.
    """
    from buildlens.jenkins.client import JenkinsClient
    from buildlens.sync import SyncOrchestrator, SyncOutcome

    setup_logging(context="cli")

    with JenkinsClient() as client:
        orchestrator = SyncOrchestrator(
            client, max_delete_ratio=max_delete_ratio, folder=folder
        )
        result = orchestrator.tick()

    if result.outcome == SyncOutcome.NO_UPSTREAM:
        console.print("[yellow]⚠ No Jenkins jobs found - sync skipped[/yellow]")
        raise typer.Exit(1)
    if result.outcome == SyncOutcome.REFUSED:
        console.print(
            f"[red]✗ Refusing to purge {len(result.stale_jobs)} of "
            f"{result.local_jobs} jobs (safety ratio exceeded)[/red]"
        )
        raise typer.Exit(1)

    console.print(f"  Jenkins jobs: {result.upstream_jobs}")
    console.print(f"  Local jobs: {result.local_jobs}")
    if result.stale_jobs:
        console.print(
            f"[green]✓ Purged {len(result.stale_jobs)} jobs "
            f"({result.deleted_messages} messages)[/green]"
        )
    else:
        console.print("[green]✓ Nothing to delete[/green]")


@app.command()
def trim(
    keep: Optional[int] = typer.Option(
        None, help="Messages kept per conversation (default: configured window)"
    ),
    conversation: Optional[str] = typer.Option(None, help="Trim only this conversation"),
) -> None:
    """Apply the retention window to stored conversations."""
    from buildlens.config import settings
    from buildlens.db.connection import db_session
    from buildlens.exceptions import InvalidQueryError
    from buildlens.retention import RetentionManager

    setup_logging(context="cli")

    try:
        with db_session() as session:
            manager = RetentionManager(session)
            if conversation:
                window = settings.retention_max_messages_per_conversation if keep is None else keep
                deleted = manager.trim(conversation, window)
                conversations = 1
            else:
                report = manager.trim_all(keep)
                deleted, conversations = report.deleted, report.conversations
    except InvalidQueryError as e:
        console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(1)

    console.print(
        f"[green]✓ Trimmed {conversations} conversations, deleted {deleted} messages[/green]"
    )


@app.command()
def purge(
    jobs: List[str] = typer.Argument(..., help="Job names whose messages are deleted"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Delete every stored message of the given jobs."""
    from buildlens.db.connection import db_session
    from buildlens.retention import RetentionManager

    setup_logging(context="cli")

    if not yes and not typer.confirm(f"Delete all messages of {', '.join(jobs)}?"):
        raise typer.Exit(1)

    with db_session() as session:
        deleted = RetentionManager(session).purge_conversations(set(jobs))

    console.print(f"[green]✓ Deleted {deleted} messages of {len(jobs)} jobs[/green]")


@app.command("refresh-views")
def refresh_views(
    with_jenkins: bool = typer.Option(
        True, help="Query Jenkins for in-flight builds"
    ),
) -> None:
    """Recompute the precomputed dashboard views."""
    from buildlens.db.connection import db_session
    from buildlens.jenkins.client import JenkinsClient
    from buildlens.views.refresher import ViewRefresher

    setup_logging(context="cli")

    active: dict[str, int] = {}
    if with_jenkins:
        with JenkinsClient() as client:
            active = client.running_builds()

    with db_session() as session:
        written = ViewRefresher(session).refresh_all(active)

    for table, count in written.items():
        console.print(f"  {table}: {count}")
    console.print("[green]✓ Views refreshed[/green]")


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, help="Host to bind to"),
    port: Optional[int] = typer.Option(None, help="Port to bind to"),
    reload: bool = typer.Option(False, help="Enable auto-reload"),
) -> None:
    """
    Start the FastAPI server.

    Runs the BuildLens dashboard API and its background tasks.
    """
    import uvicorn

    from buildlens.config import settings

    host = host or settings.api_host
    port = port or settings.api_port

    console.print("[bold green]Starting BuildLens API server...[/bold green]")
    console.print(f"  Host: {host}")
    console.print(f"  Port: {port}")
    console.print(f"  Reload: {reload}")
    console.print(f"\n  API docs: http://{host}:{port}/docs")

    uvicorn.run(
        "buildlens.api.app:app",
        host=host,
        port=port,
        reload=reload or settings.api_reload,
    )


if __name__ == "__main__":
    app()
