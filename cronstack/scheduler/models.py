"""Data model for scheduled jobs.

JobDescriptor is the immutable definition supplied by service discovery.
JobRecord is the supervisor's mutable view of one job: its trigger, its
run state and the worker processes currently executing it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from cronstack.exceptions import RegistryCorruptedError
from cronstack.scheduler.trigger import JobTrigger

if TYPE_CHECKING:
    from cronstack.worker.process import WorkerProcess


STDIO_MODES = ("inherit", "ignore")


class JobState(Enum):
    """Run state of a job."""

    IDLE = "idle"  # No worker is active
    RUNNING = "running"  # At least one worker is executing
    CANCELLING = "cancelling"  # Workers were asked to stop and have not exited yet


@dataclass(frozen=True)
class JobDescriptor:
    """Definition of a scheduled job.

    Attributes:
        name: Unique job name
        schedule: Cron expression (5 fields, or 6 with leading seconds)
        entrypoint: Path of the job file the worker runs
        prevent_overlapping: Skip ticks while a previous run is active
        timeout: Maximum run time in seconds (0 = unbounded)
        verbose: Log start, completion and skipped ticks
        stdio: "inherit" to show worker output, "ignore" to discard it
    """

    name: str
    schedule: str
    entrypoint: str
    prevent_overlapping: bool = True
    timeout: float = 0
    verbose: bool = False
    stdio: str = "inherit"

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise ValueError("Job name must not be empty")
        if self.timeout < 0:
            raise ValueError(f"Job {self.name}: timeout must be >= 0, got {self.timeout}")
        if self.stdio not in STDIO_MODES:
            raise ValueError(
                f"Job {self.name}: stdio must be one of {STDIO_MODES}, got {self.stdio!r}"
            )


@dataclass
class JobRecord:
    """Live state of one registered job.

    ``workers`` is non-empty exactly when ``state`` is not IDLE. With
    overlap prevention it never holds more than one worker.
    """

    descriptor: JobDescriptor
    trigger: JobTrigger
    state: JobState = JobState.IDLE
    workers: List["WorkerProcess"] = field(default_factory=list)
    run_count: int = 0
    error_count: int = 0
    skip_count: int = 0
    last_run: Optional[datetime] = None
    last_error: Optional[str] = None

    @classmethod
    def from_descriptor(
        cls,
        descriptor: JobDescriptor,
        time_zone: str = "UTC",
        misfire_grace_time: Optional[int] = 300,
    ) -> "JobRecord":
        """Build a record, parsing the schedule.

        Raises:
            InvalidScheduleError: If the schedule is not a valid expression
        """
        trigger = JobTrigger(
            descriptor.schedule,
            time_zone=time_zone,
            name=descriptor.name,
            misfire_grace_time=misfire_grace_time,
        )
        return cls(descriptor=descriptor, trigger=trigger)

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def worker(self) -> Optional["WorkerProcess"]:
        """The first active worker, if any."""
        return self.workers[0] if self.workers else None

    @property
    def is_idle(self) -> bool:
        return self.state is JobState.IDLE

    def check_invariants(self) -> None:
        """Verify the state/worker invariants.

        Raises:
            RegistryCorruptedError: If the record is inconsistent
        """
        if self.is_idle and self.workers:
            raise RegistryCorruptedError(
                f"Job {self.name} is idle but has {len(self.workers)} active worker(s)"
            )
        if not self.is_idle and not self.workers:
            raise RegistryCorruptedError(
                f"Job {self.name} is {self.state.value} without an active worker"
            )
        if self.descriptor.prevent_overlapping and len(self.workers) > 1:
            raise RegistryCorruptedError(
                f"Job {self.name} prevents overlapping but has {len(self.workers)} workers"
            )


@dataclass
class ExecutionResult:
    """Result of one occurrence.

    Attributes:
        name: Job name
        started_at: When the worker was launched
        completed_at: When the worker exited
        success: Whether the run succeeded
        status: Terminal worker state, or "timeout"
        error: Error description if the run failed
    """

    name: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    success: bool = False
    status: str = ""
    error: Optional[str] = None

    @property
    def duration(self) -> Optional[float]:
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()


@dataclass
class JobStatusInfo:
    """Status row for display."""

    name: str
    schedule: str
    description: str
    state: JobState
    next_occurrence: Optional[datetime]
    run_count: int = 0
    error_count: int = 0
    skip_count: int = 0
    last_run: Optional[datetime] = None
