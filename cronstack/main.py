"""Main CLI entry point for Cronstack."""

import logging
import sys
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console

from cronstack import __app_name__, __version__
from cronstack.cli import jobs, start
from cronstack.cli.exit_codes import ExitCode
from cronstack.config import LoggingConfig
from cronstack.exceptions import ConfigurationError

# Create the main Typer app
app = typer.Typer(
    name=__app_name__,
    help="Cronstack - run cron-scheduled Python jobs in isolated worker processes.",
    add_completion=True,
    no_args_is_help=True,
    rich_markup_mode="rich",
)

# Console for CLI output
console = Console()

# Register command groups
app.add_typer(start.app, name="start")
app.add_typer(jobs.app, name="jobs")

# Global state for CLI options
_global_state: dict[str, Any] = {
    "verbose": False,
    "debug": False,
    "quiet": False,
    "log_file": None,
}


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"{__app_name__} v{__version__}")
        raise typer.Exit(code=ExitCode.SUCCESS)


def _setup_logging(
    verbose: bool = False,
    debug: bool = False,
    quiet: bool = False,
    log_file: Optional[Path] = None,
    default_level: int = logging.WARNING,
    format_str: Optional[str] = None,
) -> None:
    """Set up logging configuration based on CLI options.

    Args:
        verbose: Enable INFO level logging
        debug: Enable DEBUG level logging
        quiet: Suppress non-error output
        log_file: Optional log file path
        default_level: Level used when no flag is given
        format_str: Log format (default depends on debug)
    """
    # Determine log level
    if debug:
        level = logging.DEBUG
    elif verbose:
        level = logging.INFO
    elif quiet:
        level = logging.ERROR
    else:
        level = default_level

    # Configure format
    if format_str is None:
        if debug:
            format_str = "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"
        else:
            format_str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    handlers: list[logging.Handler] = []

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)  # Always log debug to file
        handlers.append(file_handler)

    if not quiet:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(level)
        handlers.append(console_handler)
    elif not log_file:
        # Quiet without log file, prevent "no handler" warnings
        handlers.append(logging.NullHandler())

    logging.basicConfig(
        level=logging.DEBUG if log_file else level,
        format=format_str,
        handlers=handlers,
        force=True,  # Override any existing configuration
    )

    logger = logging.getLogger(__name__)
    logger.debug(f"Logging configured: level={logging.getLevelName(level)}, debug={debug}")


def apply_logging_config(config: LoggingConfig) -> None:
    """Reconfigure logging from the loaded configuration.

    Command line flags win: with --verbose, --debug or --quiet the
    configured level is ignored.

    Raises:
        ConfigurationError: If the configured level is unknown
    """
    level = logging.getLevelName(config.level.upper())
    if not isinstance(level, int):
        raise ConfigurationError(f"Unknown log level: {config.level}")

    _setup_logging(
        verbose=_global_state["verbose"],
        debug=_global_state["debug"],
        quiet=_global_state["quiet"],
        log_file=_global_state["log_file"] or config.file,
        default_level=level,
        format_str=None if _global_state["debug"] else config.format,
    )


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-V",
        help="Enable verbose output (INFO level logging).",
    ),
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Enable debug mode (DEBUG level logging).",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet",
        "-q",
        help="Suppress non-error output.",
    ),
    log_file: Optional[Path] = typer.Option(
        None,
        "--log-file",
        help="Log to file (logs DEBUG level regardless of console settings).",
    ),
) -> None:
    """Cronstack - run cron-scheduled Python jobs in isolated worker processes.

    Each job is a Python file in [cyan]services/[/cyan] that declares its
    schedule with [cyan]define_service[/cyan]. Every occurrence runs in
    its own process.

    [bold]Commands:[/bold]

    • [cyan]start[/cyan] - Run jobs on their schedules
    • [cyan]jobs[/cyan] - List jobs or run one immediately

    [bold]Examples:[/bold]

        cronstack start
        cronstack start --once-now
        cronstack jobs list
        cronstack jobs run backup
    """
    _global_state["verbose"] = verbose
    _global_state["debug"] = debug
    _global_state["quiet"] = quiet
    _global_state["log_file"] = log_file

    # Validate mutually exclusive options
    if quiet and verbose:
        console.print("[red]Error:[/red] --quiet and --verbose are mutually exclusive")
        raise typer.Exit(code=ExitCode.INVALID_ARGUMENT)

    if quiet and debug:
        console.print("[red]Error:[/red] --quiet and --debug are mutually exclusive")
        raise typer.Exit(code=ExitCode.INVALID_ARGUMENT)

    _setup_logging(verbose=verbose, debug=debug, quiet=quiet, log_file=log_file)

    logger = logging.getLogger(__name__)
    logger.debug(f"Cronstack v{__version__} starting")
    logger.debug(f"Options: verbose={verbose}, debug={debug}, quiet={quiet}")


__all__ = [
    "app",
    "apply_logging_config",
    "main",
]


if __name__ == "__main__":
    app()
