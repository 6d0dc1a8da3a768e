"""Cronstack jobs command - Inspect and run jobs."""

import asyncio
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from cronstack.cli.error_handler import handle_errors
from cronstack.cli.exit_codes import ExitCode
from cronstack.cli.progress import spinner, step_complete, step_failed

app = typer.Typer(help="Inspect and run jobs.")
console = Console()

_CWD_OPTION = typer.Option(
    None,
    "--cwd",
    help="Project directory containing services/ or src/services/.",
    exists=True,
    file_okay=False,
    dir_okay=True,
    resolve_path=True,
)


@app.command("list")
@handle_errors
def list_jobs(
    cwd: Optional[Path] = _CWD_OPTION,
) -> None:
    """List discovered jobs and their next run.

    Example:
        cronstack jobs list
        cronstack jobs list --cwd ./my-project
    """
    from cronstack.config import load_config
    from cronstack.scheduler.registry import build_records
    from cronstack.services.loader import load_descriptors

    config = load_config(cwd=cwd)
    records = build_records(
        load_descriptors(config.cwd),
        time_zone=config.supervisor.time_zone,
    )

    table = Table(title="Jobs")
    table.add_column("Name", style="cyan", no_wrap=True)
    table.add_column("Schedule", style="green", no_wrap=True)
    table.add_column("When")
    table.add_column("Overlap", style="magenta", no_wrap=True)
    table.add_column("Timeout", style="yellow", no_wrap=True)
    table.add_column("Next Run")

    for record in records:
        descriptor = record.descriptor
        overlap = "skip" if descriptor.prevent_overlapping else "allow"
        timeout = f"{descriptor.timeout:g}s" if descriptor.timeout else "none"
        next_run = record.trigger.next_occurrence().strftime("%Y-%m-%d %H:%M:%S %Z")

        table.add_row(
            descriptor.name,
            descriptor.schedule,
            record.trigger.description,
            overlap,
            timeout,
            next_run,
        )

    console.print(table)


@app.command("run")
@handle_errors
def run_job(
    name: str = typer.Argument(..., help="Name of the job to run."),
    cwd: Optional[Path] = _CWD_OPTION,
) -> None:
    """Run one job immediately, outside its schedule.

    Example:
        cronstack jobs run backup
    """
    from cronstack.config import load_config
    from cronstack.scheduler.supervisor import Supervisor
    from cronstack.services.loader import load_descriptors

    config = load_config(cwd=cwd)
    descriptors = load_descriptors(config.cwd)

    async def _run():
        supervisor = Supervisor(config.supervisor)
        supervisor.register(descriptors)
        try:
            return await supervisor.run_now(name)
        finally:
            await supervisor.shutdown()

    with spinner(f"Running {name}..."):
        result = asyncio.run(_run())

    if result is None:
        step_failed(name, "skipped")
        raise typer.Exit(code=ExitCode.GENERAL_ERROR)

    duration = f"{result.duration:.2f}s" if result.duration is not None else None
    if result.success:
        step_complete(name, duration)
    else:
        step_failed(name, result.error)
        raise typer.Exit(code=ExitCode.GENERAL_ERROR)
