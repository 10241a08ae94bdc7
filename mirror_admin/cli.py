"""
Admin CLI for inspecting and managing mirror runs.

Operates directly on the run database, so it works without a running
server.
"""

import asyncio
import json
import os
import sys

import click

from mirror_common.models import FINISHED_STATUSES, RUN_STATUSES, MirrorRun
from mirror_persistence.sqlite_repository import SQLiteRunRepository


def get_db_path() -> str:
    """Get the database path from environment variable or default."""
    return os.environ.get("MIRROR_DB_PATH", "mirror_runs.db")


def get_repository() -> SQLiteRunRepository:
    """Get the repository instance."""
    return SQLiteRunRepository(get_db_path())


def run_async(coro):
    """Helper to run async functions in CLI commands."""
    return asyncio.run(coro)


def format_run_line(run: MirrorRun) -> str:
    success = "-" if run.success is None else ("✓" if run.success else "✗")
    commit = (run.trigger.head_commit_id or "-")[:8]
    created = run.created_at.strftime("%Y-%m-%d %H:%M:%S")
    return f"{run.id:<38} {run.status:<10} {commit:<10} {created:<20} {success:<8}"


@click.group()
def cli():
    """Mirror Admin - Inspect and manage subrepo mirror runs."""
    pass


@cli.group()
def runs():
    """Manage runs."""
    pass


@runs.command("list")
@click.option(
    "--status", type=click.Choice(RUN_STATUSES), help="Only list runs in this status"
)
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
def runs_list(status: str | None, json_output: bool):
    """List runs, newest first."""

    async def list_runs():
        repo = get_repository()
        await repo.initialize()

        try:
            all_runs = await repo.list_runs(status=status)

            if json_output:
                click.echo(json.dumps([r.to_summary_dict() for r in all_runs], indent=2))
                return

            if not all_runs:
                click.echo("No runs found.")
                return

            click.echo(
                f"\n{'ID':<38} {'Status':<10} {'Commit':<10} {'Created':<20} {'Success':<8}"
            )
            click.echo("-" * 90)
            for run in all_runs:
                click.echo(format_run_line(run))
            click.echo()

        finally:
            await repo.close()

    run_async(list_runs())


@runs.command("show")
@click.argument("run_id")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
def runs_show(run_id: str, json_output: bool):
    """Show a run and its log."""

    async def show_run():
        repo = get_repository()
        await repo.initialize()

        try:
            run = await repo.get_run(run_id)
            if not run:
                click.echo(f"Error: Run not found: {run_id}", err=True)
                sys.exit(1)

            if json_output:
                click.echo(json.dumps(run.to_dict(), indent=2))
                return

            click.echo("\nRun Details:")
            click.echo(f"  ID:             {run.id}")
            click.echo(f"  Status:         {run.status}")
            click.echo(f"  Branch:         {run.trigger.branch}")
            click.echo(f"  Head commit:    {run.trigger.head_commit_id or '-'}")
            click.echo(f"  Message:        {run.trigger.head_commit_message or '-'}")
            if run.skip_reason:
                click.echo(f"  Skip reason:    {run.skip_reason}")
            if run.parent_commit_id:
                click.echo(f"  Parent commit:  {run.parent_commit_id}")
                click.echo(f"  Integral msg:   {run.integral_commit_message}")
            click.echo(f"  Created:        {run.created_at.isoformat()}")
            click.echo()

            for event in run.events:
                if event.type == "step":
                    click.echo(f"==> {event.data}")
                elif event.type == "log":
                    click.echo(event.data or "", nl=False)

        finally:
            await repo.close()

    run_async(show_run())


@runs.command("requeue")
@click.argument("run_id")
def runs_requeue(run_id: str):
    """Put a finished run back in the queue."""

    async def requeue():
        repo = get_repository()
        await repo.initialize()

        try:
            run = await repo.get_run(run_id)
            if not run:
                click.echo(f"Error: Run not found: {run_id}", err=True)
                sys.exit(1)

            if run.status not in FINISHED_STATUSES:
                click.echo(
                    f"Error: Run {run_id} is {run.status}, only finished runs can be requeued",
                    err=True,
                )
                sys.exit(1)

            await repo.requeue_run(run_id)
            click.echo(f"✓ Run {run_id} requeued")

        finally:
            await repo.close()

    run_async(requeue())


@runs.command("prune")
@click.option(
    "--keep", type=click.IntRange(min=0), default=100, show_default=True,
    help="Number of finished runs to keep",
)
@click.option("--yes", is_flag=True, help="Skip confirmation prompt")
def runs_prune(keep: int, yes: bool):
    """Delete the oldest finished runs."""

    async def prune():
        repo = get_repository()
        await repo.initialize()

        try:
            finished = [r for r in await repo.list_runs() if r.finished]
            # list_runs is newest first
            doomed = finished[keep:]

            if not doomed:
                click.echo("Nothing to prune.")
                return

            if not yes and not click.confirm(f"Delete {len(doomed)} run(s)?"):
                click.echo("Cancelled.")
                return

            for run in doomed:
                await repo.delete_run(run.id)
            click.echo(f"✓ Deleted {len(doomed)} run(s)")

        finally:
            await repo.close()

    run_async(prune())


if __name__ == "__main__":
    cli()
