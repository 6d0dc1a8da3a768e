"""Status output utilities for Cronstack CLI.

Spinners for operations of unknown length and one-line status messages,
rendered with Rich.
"""

from collections.abc import Generator
from contextlib import contextmanager

from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

# Default console for progress output
console = Console()


@contextmanager
def spinner(
    message: str,
    transient: bool = True,
    console_instance: Console | None = None,
) -> Generator[None, None, None]:
    """Show a spinner while a job runs.

    Args:
        message: The message to display next to the spinner
        transient: If True, remove the spinner after completion
        console_instance: Optional custom console instance

    Example:
        with spinner("Running backup..."):
            result = asyncio.run(supervisor.run_now("backup"))
    """
    prog_console = console_instance or console

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        TimeElapsedColumn(),
        transient=transient,
        console=prog_console,
    ) as progress:
        progress.add_task(description=message, total=None)
        yield


def step_complete(step_name: str, details: str | None = None) -> None:
    """Print a step completion message."""
    if details:
        console.print(f"  [green]✓[/green] {step_name} [dim]{details}[/dim]")
    else:
        console.print(f"  [green]✓[/green] {step_name}")


def step_failed(step_name: str, reason: str | None = None) -> None:
    """Print a step failure message."""
    if reason:
        console.print(f"  [red]✗[/red] {step_name} [dim]- {reason}[/dim]")
    else:
        console.print(f"  [red]✗[/red] {step_name}")
