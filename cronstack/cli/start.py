"""Cronstack start command - Run scheduled jobs in the foreground."""

import asyncio
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console

from cronstack.cli.error_handler import handle_errors
from cronstack.cli.exit_codes import ExitCode

app = typer.Typer(help="Start the job supervisor.")
console = Console()


@app.callback(invoke_without_command=True)
@handle_errors
def start(
    services: Optional[List[str]] = typer.Option(
        None,
        "--service",
        "-s",
        help="Only run this job (repeatable).",
    ),
    time_zone: Optional[str] = typer.Option(
        None,
        "--time-zone",
        "-t",
        help="Time zone for cron expressions (e.g. Europe/Berlin).",
    ),
    once: bool = typer.Option(
        False,
        "--once",
        help="Run each job at its next occurrence, then exit.",
    ),
    once_now: bool = typer.Option(
        False,
        "--once-now",
        help="Run every job immediately, once, then exit.",
    ),
    cwd: Optional[Path] = typer.Option(
        None,
        "--cwd",
        help="Project directory containing services/ or src/services/.",
        exists=True,
        file_okay=False,
        dir_okay=True,
        resolve_path=True,
    ),
    grace: Optional[float] = typer.Option(
        None,
        "--grace",
        "-g",
        help="Seconds running jobs get to stop on shutdown before being killed.",
        min=0,
    ),
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to configuration file.",
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
    ),
) -> None:
    """Start the supervisor and run jobs on their schedules.

    Jobs are discovered in services/ (or src/services/). SIGTERM and
    SIGINT drain running jobs and exit; SIGHUP reloads the job files.

    Example:
        cronstack start
        cronstack start -s backup -s cleanup --time-zone Europe/Berlin
        cronstack start --once-now
    """
    from cronstack.config import load_config
    from cronstack.daemon.service import run_daemon
    from cronstack.main import apply_logging_config

    if once and once_now:
        console.print("[red]Error:[/red] --once and --once-now are mutually exclusive")
        raise typer.Exit(code=ExitCode.INVALID_ARGUMENT)

    config = load_config(config_file, cwd=cwd)
    if time_zone:
        config.supervisor.time_zone = time_zone
    if once:
        config.supervisor.once = True
    if grace is not None:
        config.supervisor.drain_grace = grace

    apply_logging_config(config.logging)

    console.print("[bold green]Starting Cronstack...[/bold green]")
    console.print(f"[dim]Directory: {config.cwd}[/dim]")

    try:
        asyncio.run(run_daemon(config, {
            "names": services or None,
            "once_now": once_now,
        }))
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
