"""Service definitions declared by job files.

A job file creates its job with ``define_service`` and assigns it to a
module-level ``service`` variable:

    from cronstack import define_service

    async def run() -> None:
        ...

    service = define_service(run, schedule="*/5 * * * *", timeout=30)

It can also be used as a decorator:

    @define_service(schedule="0 * * * *")
    def service() -> None:
        ...
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Optional, Union

if TYPE_CHECKING:
    from cronstack.scheduler.models import JobDescriptor


@dataclass
class ServiceDefinition:
    """What a job file declares about its job.

    Attributes:
        run: Callable executed in the worker (sync or async)
        schedule: Cron expression (5 fields, or 6 with leading seconds)
        prevent_overlapping: Skip ticks while a previous run is active
        timeout: Maximum run time in seconds (0 = unbounded)
        verbose: Log start, completion and skipped ticks
        stdio: "inherit" to show job output, "ignore" to discard it
    """

    run: Callable[[], Any]
    schedule: str
    prevent_overlapping: bool = True
    timeout: float = 0
    verbose: bool = False
    stdio: str = "inherit"

    def to_descriptor(self, name: str, entrypoint: str) -> "JobDescriptor":
        """Build the descriptor the supervisor schedules."""
        from cronstack.scheduler.models import JobDescriptor

        return JobDescriptor(
            name=name,
            schedule=self.schedule,
            entrypoint=entrypoint,
            prevent_overlapping=self.prevent_overlapping,
            timeout=self.timeout,
            verbose=self.verbose,
            stdio=self.stdio,
        )


def define_service(
    run: Optional[Callable[[], Any]] = None,
    *,
    schedule: str,
    prevent_overlapping: bool = True,
    timeout: float = 0,
    verbose: bool = False,
    stdio: str = "inherit",
) -> Union[ServiceDefinition, Callable[[Callable[[], Any]], ServiceDefinition]]:
    """Declare a scheduled job.

    Args:
        run: Job function; omit to use as a decorator
        schedule: Cron expression
        prevent_overlapping: Skip ticks while a previous run is active
        timeout: Maximum run time in seconds (0 = unbounded)
        verbose: Log start, completion and skipped ticks
        stdio: "inherit" or "ignore"

    Returns:
        A ServiceDefinition, or a decorator producing one
    """

    def build(func: Callable[[], Any]) -> ServiceDefinition:
        if not callable(func):
            raise TypeError(f"Service run must be callable, got {type(func).__name__}")
        return ServiceDefinition(
            run=func,
            schedule=schedule,
            prevent_overlapping=prevent_overlapping,
            timeout=timeout,
            verbose=verbose,
            stdio=stdio,
        )

    if run is None:
        return build
    return build(run)
