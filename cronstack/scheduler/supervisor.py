"""Job supervisor.

The Supervisor owns the job registry and the APScheduler instance that
drives every trigger. On each tick it decides whether the job may run
(overlap prevention), launches a worker process for the occurrence,
enforces the job timeout and releases the slot once the worker is gone.

All state changes happen on the supervisor's event loop, so ticks,
worker completions, timeouts and drains never interleave mid-update.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import partial
from typing import Any, Callable, Iterable, List, Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_MISSED
from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from cronstack.config import SupervisorConfig
from cronstack.exceptions import (
    CronstackError,
    JobNotFoundError,
    JobTimeoutError,
    RegistryCorruptedError,
    ReloadValidationError,
    WorkerCrashError,
)
from cronstack.scheduler.models import (
    ExecutionResult,
    JobDescriptor,
    JobRecord,
    JobState,
    JobStatusInfo,
)
from cronstack.scheduler.registry import JobRegistry, build_records
from cronstack.scheduler.trigger import JobTrigger
from cronstack.worker.process import WorkerOutcome, WorkerProcess, WorkerState

logger = logging.getLogger(__name__)

WorkerFactory = Callable[[JobDescriptor], WorkerProcess]

SHUTDOWN_REASON = "shutdown"

# Upper bound on waiting for killed workers to be reaped
KILL_WAIT = 2.0


@dataclass
class DrainResult:
    """Summary of a drain.

    Attributes:
        cancelled: Workers asked to stop
        killed: Workers that outlived the grace period and were killed
    """

    cancelled: int = 0
    killed: int = 0

    @property
    def forced(self) -> bool:
        return self.killed > 0


class Supervisor:
    """Runs registered jobs on their cron schedules.

    Example:
        supervisor = Supervisor(SupervisorConfig(time_zone="Europe/Berlin"))
        supervisor.register(descriptors)
        await supervisor.start()
        ...
        await supervisor.shutdown()
    """

    def __init__(
        self,
        config: Optional[SupervisorConfig] = None,
        worker_factory: Optional[WorkerFactory] = None,
    ) -> None:
        self._config = config or SupervisorConfig()
        self._worker_factory = worker_factory or self._create_worker
        self._registry = JobRegistry()
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False
        self._closing = False

        self._tasks: set[asyncio.Task] = set()
        self._changed = asyncio.Condition()
        self._reload_lock = asyncio.Lock()
        self._complete = asyncio.Event()
        self._failed = asyncio.Event()
        self._fatal_error: Optional[RegistryCorruptedError] = None

        self._execution_history: List[ExecutionResult] = []
        self._max_history = self._config.max_history

    @property
    def config(self) -> SupervisorConfig:
        return self._config

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def registry(self) -> JobRegistry:
        return self._registry

    @property
    def fatal_error(self) -> Optional[RegistryCorruptedError]:
        """Set once the registry was found inconsistent."""
        return self._fatal_error

    # Registration

    def register(
        self,
        descriptors: Iterable[JobDescriptor],
        skip_invalid: bool = False,
    ) -> List[str]:
        """Validate and add jobs.

        The batch is all-or-nothing: a duplicate name or (unless
        ``skip_invalid``) an invalid schedule rejects every job in it.
        Triggers start immediately when the supervisor is running.

        Returns:
            Names of the registered jobs

        Raises:
            DuplicateNameError: If a name repeats or is already registered
            InvalidScheduleError: If a schedule is invalid
        """
        records = build_records(
            descriptors,
            time_zone=self._config.time_zone,
            misfire_grace_time=self._config.misfire_grace_time,
            skip_invalid=skip_invalid,
        )
        names = self._registry.add_all(records)

        if self._running:
            for record in records:
                self._start_trigger(record)

        if names:
            self._complete.clear()
            logger.info(f"Registered {len(names)} job(s): {', '.join(names)}")
        return names

    async def reload(self, descriptors: Iterable[JobDescriptor]) -> None:
        """Replace all jobs with a new set.

        The new set is validated before anything is touched; on rejection
        the current jobs keep running unchanged. Otherwise every trigger
        is stopped, running workers are drained, and the new jobs start.

        Raises:
            ReloadValidationError: If the new set is invalid
        """
        try:
            records = build_records(
                descriptors,
                time_zone=self._config.time_zone,
                misfire_grace_time=self._config.misfire_grace_time,
            )
        except CronstackError as e:
            raise ReloadValidationError(
                f"Reload rejected: {e.message}",
                details={"error": type(e).__name__},
            ) from e

        async with self._reload_lock:
            logger.info("Reloading jobs...")
            await self.drain_all()

            names = self._registry.replace(records)
            if self._running:
                for record in records:
                    self._start_trigger(record)

            self._complete.clear()
            self._update_completion()
            logger.info(f"Reloaded {len(names)} job(s)")

    # Lifecycle

    async def start(self) -> None:
        """Start the scheduler and every registered trigger."""
        if self._running:
            logger.warning("Supervisor already running")
            return

        logger.info("Starting supervisor...")
        self._closing = False
        self._scheduler = self._create_scheduler()
        self._setup_listeners()
        self._scheduler.start()

        for record in self._registry:
            self._start_trigger(record)

        self._running = True
        self._update_completion()
        logger.info(f"Supervisor started with {len(self._registry)} job(s)")

    async def shutdown(self, grace: Optional[float] = None) -> DrainResult:
        """Drain all jobs and stop the scheduler."""
        logger.info("Stopping supervisor...")
        self._closing = True
        result = await self.drain_all(grace)

        if self._scheduler is not None:
            if self._scheduler.running:
                self._scheduler.shutdown(wait=False)
            self._scheduler = None

        self._running = False
        logger.info("Supervisor stopped")
        return result

    async def drain_all(self, grace: Optional[float] = None) -> DrainResult:
        """Stop every trigger and bring all running workers down.

        Workers are cancelled and get ``grace`` seconds to exit; the rest
        are killed. Returns once no job is running.
        """
        if grace is None:
            grace = self._config.drain_grace

        for record in self._registry:
            record.trigger.stop()

        active = [(record, worker) for record in self._registry for worker in record.workers]
        if not active:
            return DrainResult()

        logger.info(f"Draining {len(active)} running job(s)...")
        for record, worker in active:
            worker.cancel(SHUTDOWN_REASON)
            self._refresh_state(record)

        result = DrainResult(cancelled=len(active))
        if await self.wait_until_idle(grace):
            logger.info("All running jobs stopped")
            return result

        stragglers = [worker for record in self._registry for worker in record.workers]
        logger.warning(
            f"{len(stragglers)} job(s) did not stop within {grace:g}s, forcing termination"
        )
        for worker in stragglers:
            worker.kill()
        result.killed = len(stragglers)

        if not await self.wait_until_idle(KILL_WAIT):
            logger.error("Some workers are still running after being killed")
        return result

    async def wait_until_idle(self, timeout: Optional[float] = None) -> bool:
        """Wait until no job has an active worker.

        Returns:
            True if idle, False if ``timeout`` expired first
        """

        async def _wait() -> None:
            async with self._changed:
                await self._changed.wait_for(self._registry.all_idle)

        try:
            await asyncio.wait_for(_wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False

    async def wait_until_complete(self) -> None:
        """In once mode, wait until every job has run once and gone idle."""
        await self._complete.wait()

    async def wait_for_failure(self) -> RegistryCorruptedError:
        """Wait until the supervisor hits an unrecoverable error."""
        await self._failed.wait()
        if self._fatal_error is None:
            raise RuntimeError("Supervisor failure signalled without an error")
        return self._fatal_error

    # Queries

    def status(self) -> List[JobStatusInfo]:
        """Current status of every registered job."""
        rows = []
        for record in self._registry:
            next_occurrence = None
            if not record.trigger.stopped:
                next_occurrence = record.trigger.next_occurrence()
            rows.append(
                JobStatusInfo(
                    name=record.name,
                    schedule=record.descriptor.schedule,
                    description=record.trigger.description,
                    state=record.state,
                    next_occurrence=next_occurrence,
                    run_count=record.run_count,
                    error_count=record.error_count,
                    skip_count=record.skip_count,
                    last_run=record.last_run,
                )
            )
        return rows

    def get_history(self, name: Optional[str] = None, limit: int = 10) -> List[ExecutionResult]:
        """Most recent execution results, newest last."""
        history = self._execution_history
        if name is not None:
            history = [r for r in history if r.name == name]
        return history[-limit:]

    # On-demand execution

    async def run_now(self, name: str) -> Optional[ExecutionResult]:
        """Run a job immediately, outside its schedule.

        Overlap prevention still applies.

        Returns:
            The execution result, or None if the run was skipped

        Raises:
            JobNotFoundError: If no job has that name
        """
        record = self._registry.get(name)
        if record is None:
            raise JobNotFoundError(name)

        task = self._dispatch(record)
        if task is None:
            return None
        return await task

    async def run_all_now(self) -> List[ExecutionResult]:
        """Run every registered job once, concurrently, and wait for all."""
        tasks = [task for record in self._registry if (task := self._dispatch(record)) is not None]
        if not tasks:
            return []
        return list(await asyncio.gather(*tasks))

    # Private methods

    def _create_worker(self, descriptor: JobDescriptor) -> WorkerProcess:
        return WorkerProcess(descriptor, python=self._config.python_executable)

    def _create_scheduler(self) -> AsyncIOScheduler:
        """Create and configure APScheduler instance."""
        jobstores = {"default": MemoryJobStore()}

        executors = {"default": AsyncIOExecutor()}

        job_defaults = {
            "coalesce": True,  # Combine missed runs
            "max_instances": 1,
            "misfire_grace_time": self._config.misfire_grace_time,
        }

        return AsyncIOScheduler(
            jobstores=jobstores,
            executors=executors,
            job_defaults=job_defaults,
            timezone=self._config.time_zone,
        )

    def _setup_listeners(self) -> None:
        if not self._scheduler:
            return

        def on_job_error(event: Any) -> None:
            logger.error(f"Trigger {event.job_id} failed: {event.exception}")

        def on_job_missed(event: Any) -> None:
            logger.warning(f"Trigger {event.job_id} missed scheduled run")

        self._scheduler.add_listener(on_job_error, EVENT_JOB_ERROR)
        self._scheduler.add_listener(on_job_missed, EVENT_JOB_MISSED)

    def _start_trigger(self, record: JobRecord) -> None:
        trigger = record.trigger
        if trigger.running or trigger.stopped or self._scheduler is None:
            return
        trigger.start(self._scheduler, partial(self._on_tick, record.name, trigger))

    def _on_tick(self, name: str, trigger: Optional[JobTrigger] = None) -> None:
        if self._closing:
            logger.debug(f"Tick for job {name} during shutdown, ignoring")
            return

        record = self._registry.get(name)
        if record is None or (trigger is not None and record.trigger is not trigger):
            # Submitted before the job was removed or replaced
            logger.debug(f"Tick for unknown job {name}, ignoring")
            return

        if self._config.once:
            record.trigger.stop()

        try:
            self._dispatch(record)
        except RegistryCorruptedError as e:
            self._abort(e)

    def _dispatch(self, record: JobRecord) -> Optional["asyncio.Task[ExecutionResult]"]:
        """Launch a worker for the job, or skip if it is still running."""
        descriptor = record.descriptor

        if not record.is_idle and descriptor.prevent_overlapping:
            record.skip_count += 1
            if descriptor.verbose:
                logger.warning(f'Job "{record.name}" skipped because it is already running.')
            return None

        worker = self._worker_factory(descriptor)
        record.workers.append(worker)
        record.state = JobState.RUNNING
        record.last_run = datetime.now(timezone.utc)
        record.check_invariants()

        task = asyncio.create_task(
            self._run_occurrence(record, worker),
            name=f"cronstack:{record.name}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    async def _run_occurrence(self, record: JobRecord, worker: WorkerProcess) -> ExecutionResult:
        descriptor = record.descriptor
        started_at = datetime.now(timezone.utc)
        timed_out = False

        if descriptor.verbose:
            logger.info(f"[{record.name}] Job has started.")

        try:
            await worker.start()
            if descriptor.timeout > 0:
                try:
                    outcome = await asyncio.wait_for(worker.wait(), timeout=descriptor.timeout)
                except asyncio.TimeoutError:
                    timed_out = True
                    outcome = await self._cancel_timed_out(record, worker)
            else:
                outcome = await worker.wait()
        except asyncio.CancelledError:
            worker.kill()
            self._release(record, worker)
            await self._notify_changed()
            raise

        result = self._record_result(record, worker, outcome, started_at, timed_out)
        self._release(record, worker)
        await self._notify_changed()
        return result

    async def _cancel_timed_out(self, record: JobRecord, worker: WorkerProcess) -> WorkerOutcome:
        timeout = record.descriptor.timeout
        error = JobTimeoutError(record.name, timeout)
        logger.error(error.message)

        worker.cancel(f"Timeout! Execution took longer than {timeout:g}s")
        self._refresh_state(record)
        return await worker.stop(worker.cancel_reason or "timeout", self._config.cancel_grace)

    def _record_result(
        self,
        record: JobRecord,
        worker: WorkerProcess,
        outcome: WorkerOutcome,
        started_at: datetime,
        timed_out: bool,
    ) -> ExecutionResult:
        record.run_count += 1
        error: Optional[str] = None

        if timed_out:
            status = "timeout"
            error = JobTimeoutError(record.name, record.descriptor.timeout).message
        else:
            status = outcome.state.name.lower()

        if outcome.success:
            if record.descriptor.verbose:
                logger.info(f"[{record.name}] Job has completed.")
        elif timed_out:
            pass
        elif outcome.state is WorkerState.FAILED:
            detail = str(outcome.error) if outcome.error else "unknown error"
            crash = WorkerCrashError(
                record.name,
                detail,
                stack=outcome.error.stack if outcome.error else None,
            )
            logger.error(crash.message)
            if crash.stack:
                logger.error(crash.stack.rstrip())
            error = detail
        else:
            reason = worker.cancel_reason or "cancelled"
            error = f"{status} ({reason})"
            logger.warning(f"[{record.name}] Job was {status}: {reason}")

        if error is not None:
            record.error_count += 1
            record.last_error = error

        result = ExecutionResult(
            name=record.name,
            started_at=outcome.started_at or started_at,
            completed_at=outcome.finished_at or datetime.now(timezone.utc),
            success=outcome.success,
            status=status,
            error=error,
        )
        self._record_execution(result)
        return result

    def _record_execution(self, result: ExecutionResult) -> None:
        self._execution_history.append(result)

        # Trim history if needed
        if len(self._execution_history) > self._max_history:
            self._execution_history = self._execution_history[-self._max_history:]

    def _refresh_state(self, record: JobRecord) -> None:
        if not record.workers:
            record.state = JobState.IDLE
        elif all(w.cancel_requested for w in record.workers):
            record.state = JobState.CANCELLING
        else:
            record.state = JobState.RUNNING

    def _release(self, record: JobRecord, worker: WorkerProcess) -> None:
        if worker in record.workers:
            record.workers.remove(worker)
        self._refresh_state(record)
        record.check_invariants()

        if self._config.once and record.is_idle and record.trigger.stopped:
            if self._registry.get(record.name) is record:
                self._registry.remove(record.name)
                logger.debug(f"Job {record.name} completed its single run")
            self._update_completion()

    async def _notify_changed(self) -> None:
        async with self._changed:
            self._changed.notify_all()

    def _update_completion(self) -> None:
        if self._config.once and self._running and len(self._registry) == 0:
            self._complete.set()

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is None:
            return
        if isinstance(error, RegistryCorruptedError):
            self._abort(error)
        else:
            logger.error(f"Unexpected error in {task.get_name()}: {error}", exc_info=error)

    def _abort(self, error: RegistryCorruptedError) -> None:
        logger.critical(f"Job registry is inconsistent, stopping: {error.message}")
        if self._fatal_error is None:
            self._fatal_error = error
        self._failed.set()
