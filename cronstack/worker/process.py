"""Worker process for a single job occurrence.

Each occurrence runs in its own Python subprocess so that a crash, an
endless loop or memory exhaustion in job code cannot take down the
supervisor. The child reports exactly one result line on its stdout
(its own prints are redirected to stderr); the supervisor side turns
that line, or the lack of it, into a WorkerOutcome.
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum, auto
from typing import Callable, Optional

from cronstack.scheduler.models import JobDescriptor
from cronstack.worker.protocol import ProtocolError, ResultMessage, WorkerError

logger = logging.getLogger(__name__)

RUNNER_MODULE = "cronstack.worker.runner"

# Environment passed to the child
ENV_SERVICE_NAME = "CRONSTACK_SERVICE_NAME"
ENV_MODULE_PATH = "CRONSTACK_MODULE_PATH"

# Result lines carry full tracebacks, allow more than asyncio's 64 KiB default
STREAM_LIMIT = 1024 * 1024


class WorkerState(Enum):
    """Lifecycle state of a worker process."""

    CREATED = auto()
    STARTED = auto()
    SUCCEEDED = auto()
    FAILED = auto()
    CANCELLED = auto()
    KILLED = auto()

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset(
    {WorkerState.SUCCEEDED, WorkerState.FAILED, WorkerState.CANCELLED, WorkerState.KILLED}
)


@dataclass
class WorkerOutcome:
    """Final outcome of a worker process."""

    state: WorkerState
    error: Optional[WorkerError] = None
    exit_code: Optional[int] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def success(self) -> bool:
        return self.state is WorkerState.SUCCEEDED

    @property
    def duration(self) -> Optional[float]:
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()


class WorkerProcess:
    """Runs one job occurrence in a separate Python process.

    Example:
        worker = WorkerProcess(descriptor)
        await worker.start()
        outcome = await worker.wait()
        if not outcome.success:
            print(outcome.error)

    ``cancel()`` asks the child to stop (SIGTERM, which the runner turns
    into a cancellation of the job); ``kill()`` terminates it outright.
    Both are no-ops once the worker has finished.
    """

    def __init__(
        self,
        descriptor: JobDescriptor,
        python: Optional[str] = None,
        env: Optional[dict[str, str]] = None,
    ) -> None:
        self._descriptor = descriptor
        self._python = python or sys.executable
        self._env = env or {}
        self._state = WorkerState.CREATED
        self._process: Optional[asyncio.subprocess.Process] = None
        self._watch_task: Optional[asyncio.Task] = None
        self._outcome: Optional[asyncio.Future] = None
        self._started_at: Optional[datetime] = None
        self._cancel_reason: Optional[str] = None
        self._killed = False

    @property
    def name(self) -> str:
        return self._descriptor.name

    @property
    def descriptor(self) -> JobDescriptor:
        return self._descriptor

    @property
    def state(self) -> WorkerState:
        return self._state

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process else None

    @property
    def finished(self) -> bool:
        return self._state.is_terminal

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_reason is not None

    @property
    def cancel_reason(self) -> Optional[str]:
        return self._cancel_reason

    async def start(self) -> None:
        """Spawn the worker process.

        A spawn failure does not raise: the worker finishes as FAILED and
        ``wait()`` reports the error.

        Raises:
            RuntimeError: If the worker was already started
        """
        if self._state is not WorkerState.CREATED or self._outcome is not None:
            raise RuntimeError(f"Worker for job {self.name} already started")

        loop = asyncio.get_running_loop()
        self._outcome = loop.create_future()
        self._started_at = datetime.now(timezone.utc)

        if self._killed:
            self._finish(
                WorkerState.KILLED,
                WorkerError(name="Killed", message="Process killed before it started"),
            )
            return
        if self._cancel_reason is not None:
            self._finish(
                WorkerState.CANCELLED,
                WorkerError(name="Cancelled", message=self._cancel_reason),
            )
            return

        stderr = None if self._descriptor.stdio == "inherit" else asyncio.subprocess.DEVNULL

        try:
            self._process = await asyncio.create_subprocess_exec(
                self._python,
                "-m",
                RUNNER_MODULE,
                self._descriptor.entrypoint,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=stderr,
                env=self._build_env(),
                limit=STREAM_LIMIT,
            )
        except OSError as e:
            logger.error(f"[{self.name}] Failed to spawn worker: {e}")
            self._finish(WorkerState.FAILED, WorkerError.from_exception(e))
            return

        self._state = WorkerState.STARTED
        logger.debug(f"[{self.name}] Worker started (pid {self._process.pid})")
        self._watch_task = asyncio.create_task(self._watch(self._process))

        # Requests that arrived while the process was being spawned
        if self._killed:
            self._signal(self._process.kill)
        elif self._cancel_reason is not None:
            self._signal(self._process.terminate)

    async def wait(self) -> WorkerOutcome:
        """Wait for the worker to finish.

        Resolves only after the process has exited. Cancelling the caller
        does not affect the worker.

        Raises:
            RuntimeError: If the worker was never started
        """
        if self._outcome is None:
            raise RuntimeError(f"Worker for job {self.name} not started")
        return await asyncio.shield(self._outcome)

    def cancel(self, reason: str = "cancelled") -> None:
        """Request cooperative termination."""
        if self.finished or self._cancel_reason is not None:
            return
        self._cancel_reason = reason

        if self._process is not None and self._process.returncode is None:
            logger.debug(f"[{self.name}] Cancelling worker: {reason}")
            self._signal(self._process.terminate)

    def kill(self) -> None:
        """Forcibly terminate the worker process.

        A kill requested before the process exists is applied as soon
        as it has been spawned.
        """
        if self.finished or self._killed:
            return
        if self._process is not None and self._process.returncode is not None:
            return

        self._killed = True
        if self._process is not None:
            logger.debug(f"[{self.name}] Killing worker (pid {self._process.pid})")
            self._signal(self._process.kill)

    async def stop(self, reason: str, grace: float) -> WorkerOutcome:
        """Cancel the worker and kill it if it outlives ``grace`` seconds."""
        self.cancel(reason)
        try:
            return await asyncio.wait_for(self.wait(), timeout=grace)
        except asyncio.TimeoutError:
            logger.warning(
                f"[{self.name}] Worker ignored cancellation for {grace:g}s, killing it"
            )
            self.kill()
            return await self.wait()

    # Private methods

    def _signal(self, send: Callable[[], None]) -> None:
        try:
            send()
        except ProcessLookupError:
            pass

    def _build_env(self) -> dict[str, str]:
        env = dict(os.environ)
        env.update(self._env)
        env[ENV_SERVICE_NAME] = self._descriptor.name
        env[ENV_MODULE_PATH] = self._descriptor.entrypoint
        env["PYTHONUNBUFFERED"] = "1"
        return env

    async def _watch(self, process: asyncio.subprocess.Process) -> None:
        """Read the result channel until EOF, then reap the process."""
        result: Optional[ResultMessage] = None

        try:
            if process.stdout is not None:
                while True:
                    line = await process.stdout.readline()
                    if not line:
                        break

                    text = line.decode(errors="replace").strip()
                    if not text:
                        continue
                    try:
                        message = ResultMessage.from_json(text)
                    except ProtocolError:
                        logger.debug(f"[{self.name}] {text}")
                        continue
                    if result is None:
                        result = message
        except (ValueError, OSError) as e:
            logger.error(f"[{self.name}] Error reading worker output: {e}")

        exit_code = await process.wait()
        self._resolve(result, exit_code)

    def _resolve(self, result: Optional[ResultMessage], exit_code: int) -> None:
        if self._killed:
            reason = self._cancel_reason or "forced termination"
            self._finish(
                WorkerState.KILLED,
                WorkerError(name="Killed", message=f"Process killed ({reason})"),
                exit_code,
            )
        elif result is not None and result.success:
            self._finish(WorkerState.SUCCEEDED, None, exit_code)
        elif result is not None and (result.cancelled or self.cancel_requested):
            self._finish(WorkerState.CANCELLED, result.error, exit_code)
        elif result is not None:
            self._finish(WorkerState.FAILED, result.error, exit_code)
        elif self.cancel_requested:
            self._finish(
                WorkerState.CANCELLED,
                WorkerError(name="Cancelled", message=self._cancel_reason or "cancelled"),
                exit_code,
            )
        else:
            self._finish(WorkerState.FAILED, WorkerError.crashed(exit_code), exit_code)

    def _finish(
        self,
        state: WorkerState,
        error: Optional[WorkerError],
        exit_code: Optional[int] = None,
    ) -> None:
        if self.finished:
            return
        self._state = state
        outcome = WorkerOutcome(
            state=state,
            error=error,
            exit_code=exit_code,
            started_at=self._started_at,
            finished_at=datetime.now(timezone.utc),
        )
        if self._outcome is not None and not self._outcome.done():
            self._outcome.set_result(outcome)
