"""Operator CLI for inspecting and driving document imports."""

import asyncio
from enum import StrEnum

import typer
from rich.console import Console
from rich.table import Table

from liftsync.config.settings import settings
from liftsync.core.logger import setup_logger_from_settings
from liftsync.importer import progress_tracker as tracker
from liftsync.importer.errors import ConfigurationError, StepExecutionError
from liftsync.importer.orchestrator import ImportOrchestrator
from liftsync.importer.quota import QUOTA_USAGE_KEY
from liftsync.importer.steps import PIPELINE_ORDER, StepName
from liftsync.importer.store import (
    BaseProgressStore,
    InMemoryProgressStore,
    ProgressStore,
    RedisProgressStore,
    SqlProgressStore,
    create_store_engine,
)

console = Console()

SNAPSHOT_KEYS = (tracker.PROGRESS_KEY, tracker.ACTIVE_IMPORT_KEY, tracker.DEFERRED_OPERATIONS_KEY, QUOTA_USAGE_KEY)

app = typer.Typer(
    name="liftsync",
    help="Inspect, reset and run checkpointed workout imports",
    add_completion=False,
)


class Backend(StrEnum):
    REDIS = "redis"
    SQL = "sql"


def _open_store(document_id: str, backend: Backend) -> BaseProgressStore:
    if backend == Backend.SQL:
        return SqlProgressStore(document_id, create_store_engine(settings.database_url))
    return RedisProgressStore.from_url(document_id, settings.redis_url)


def _snapshot(store: ProgressStore) -> InMemoryProgressStore:
    """Copy the import keys into memory so a dry run never writes to the real store."""
    data = {key: value for key in SNAPSHOT_KEYS if (value := store.get(key)) is not None}
    return InMemoryProgressStore(store.document_id, data)


async def _dry_run_executor(step: StepName) -> int:
    return 0


def _build_orchestrator(store: ProgressStore) -> ImportOrchestrator:
    executors = {step: _dry_run_executor for step in PIPELINE_ORDER}
    return ImportOrchestrator.from_settings(store, executors)


@app.callback()
def main(debug: bool = typer.Option(False, "--debug", help="Enable debug logging")) -> None:
    setup_logger_from_settings(debug)


@app.command()
def status(
    document: str = typer.Option(..., "--document", "-d", help="Document identifier"),
    backend: Backend = typer.Option(Backend.REDIS, "--backend", "-b"),
) -> None:
    """Show checkpoint, heartbeat and deferred-operation state."""
    report = _build_orchestrator(_open_store(document, backend)).status()

    table = Table(title=f"Import status for {document}")
    table.add_column("Step")
    table.add_column("State")
    for step in PIPELINE_ORDER:
        done = step in report.completed_steps
        table.add_row(str(step), "[green]complete[/green]" if done else "[yellow]pending[/yellow]")
    console.print(table)

    console.print(f"Active run: {'[bold red]yes[/bold red]' if report.active else 'no'}")
    if report.last_checkpoint_at:
        console.print(f"Last checkpoint: {report.last_checkpoint_at.isoformat()}")
    if report.deferred_operations:
        console.print(f"Deferred operations: {', '.join(report.deferred_operations)}")


@app.command()
def reset(
    document: str = typer.Option(..., "--document", "-d", help="Document identifier"),
    backend: Backend = typer.Option(Backend.REDIS, "--backend", "-b"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Discard import progress so the next run starts from the first step."""
    if not yes:
        typer.confirm(f"Reset import progress for {document}?", abort=True)
    _build_orchestrator(_open_store(document, backend)).reset()
    console.print(f"[green]Import state cleared for {document}[/green]")


@app.command()
def run(
    document: str = typer.Option(..., "--document", "-d", help="Document identifier"),
    backend: Backend = typer.Option(Backend.REDIS, "--backend", "-b"),
) -> None:
    """Dry-run the pipeline with no-op executors against a copy of the stored state.

    The real store is only read; its checkpoint, heartbeat, quota usage and
    deferred operations are left untouched.
    """
    orchestrator = _build_orchestrator(_snapshot(_open_store(document, backend)))
    try:
        result = asyncio.run(orchestrator.run_once())
    except (ConfigurationError, StepExecutionError) as e:
        console.print(f"[bold red]Import failed:[/bold red] {e}")
        raise typer.Exit(code=1) from e

    console.print(f"Status: [bold]{result.status}[/bold]")
    if result.reason:
        console.print(f"Reason: {result.reason}")
    if result.remaining_steps:
        console.print(f"Remaining: {', '.join(str(s) for s in result.remaining_steps)}")
    console.print("[dim]Dry run: stored import state was not modified[/dim]")


if __name__ == "__main__":
    app()
