"""Tests for the job supervisor."""

import asyncio
import logging
import sys
import textwrap
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

import pytest

from cronstack.config import SupervisorConfig
from cronstack.exceptions import (
    DuplicateNameError,
    InvalidScheduleError,
    JobNotFoundError,
    RegistryCorruptedError,
    ReloadValidationError,
)
from cronstack.scheduler.models import JobDescriptor, JobState
from cronstack.scheduler.supervisor import DrainResult, Supervisor
from cronstack.worker.process import WorkerOutcome, WorkerState
from cronstack.worker.protocol import WorkerError

# Never fires during a test run
YEARLY = "0 0 1 1 *"


class FakeWorker:
    """In-process stand-in for WorkerProcess.

    Finishes after ``duration`` seconds (never if None), honours cancel
    unless ``ignore_cancel`` is set, and always honours kill.
    """

    def __init__(
        self,
        descriptor: JobDescriptor,
        duration: Optional[float] = 0.05,
        fail: bool = False,
        ignore_cancel: bool = False,
    ) -> None:
        self.descriptor = descriptor
        self.duration = duration
        self.fail = fail
        self.ignore_cancel = ignore_cancel
        self.cancel_reason: Optional[str] = None
        self.killed = False
        self.started_at: Optional[datetime] = None
        self._future: Optional[asyncio.Future] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def cancel_requested(self) -> bool:
        return self.cancel_reason is not None

    @property
    def finished(self) -> bool:
        return self._future is not None and self._future.done()

    async def start(self) -> None:
        self._future = asyncio.get_running_loop().create_future()
        self.started_at = datetime.now(timezone.utc)
        if self.cancel_reason is not None:
            self._finish(WorkerState.CANCELLED)
            return
        if self.duration is not None:
            self._task = asyncio.create_task(self._run())

    async def wait(self) -> WorkerOutcome:
        assert self._future is not None
        return await asyncio.shield(self._future)

    def cancel(self, reason: str = "cancelled") -> None:
        if self.finished or self.cancel_reason is not None:
            return
        self.cancel_reason = reason
        if self._future is not None and not self.ignore_cancel:
            self._finish(WorkerState.CANCELLED)

    def kill(self) -> None:
        if self.finished or self._future is None:
            return
        self.killed = True
        self._finish(WorkerState.KILLED)

    async def stop(self, reason: str, grace: float) -> WorkerOutcome:
        self.cancel(reason)
        try:
            return await asyncio.wait_for(self.wait(), timeout=grace)
        except asyncio.TimeoutError:
            self.kill()
            return await self.wait()

    async def _run(self) -> None:
        await asyncio.sleep(self.duration)
        if self.fail:
            error = WorkerError(
                name="RuntimeError",
                message="boom",
                stack="Traceback (most recent call last):\nRuntimeError: boom\n",
            )
            self._finish(WorkerState.FAILED, error)
        else:
            self._finish(WorkerState.SUCCEEDED)

    def _finish(self, state: WorkerState, error: Optional[WorkerError] = None) -> None:
        if self._task is not None and self._task is not asyncio.current_task():
            self._task.cancel()
        if self._future is not None and not self._future.done():
            self._future.set_result(
                WorkerOutcome(
                    state=state,
                    error=error,
                    started_at=self.started_at,
                    finished_at=datetime.now(timezone.utc),
                )
            )


class FakeWorkerFactory:
    """Creates FakeWorkers and remembers them."""

    def __init__(self, **options) -> None:
        self.options = options
        self.workers: List[FakeWorker] = []

    def __call__(self, descriptor: JobDescriptor) -> FakeWorker:
        worker = FakeWorker(descriptor, **self.options)
        self.workers.append(worker)
        return worker


def make_descriptor(name: str = "ping", schedule: str = YEARLY, **kwargs) -> JobDescriptor:
    return JobDescriptor(name=name, schedule=schedule, entrypoint=f"/jobs/{name}.py", **kwargs)


def make_supervisor(factory: FakeWorkerFactory, **config) -> Supervisor:
    config.setdefault("cancel_grace", 0.2)
    config.setdefault("drain_grace", 0.2)
    return Supervisor(SupervisorConfig(**config), worker_factory=factory)


class TestRegister:
    """Tests for job registration."""

    def test_register_returns_names(self) -> None:
        """Test registering a batch of jobs."""
        supervisor = make_supervisor(FakeWorkerFactory())

        names = supervisor.register([make_descriptor("a"), make_descriptor("b")])

        assert names == ["a", "b"]
        assert supervisor.registry.names == ["a", "b"]
        assert all(r.state is JobState.IDLE for r in supervisor.registry)

    def test_duplicate_in_batch_registers_nothing(self) -> None:
        """Test that a duplicate name rejects the whole batch."""
        supervisor = make_supervisor(FakeWorkerFactory())

        with pytest.raises(DuplicateNameError) as exc_info:
            supervisor.register([make_descriptor("a"), make_descriptor("b"), make_descriptor("a")])

        assert exc_info.value.name == "a"
        assert len(supervisor.registry) == 0

    def test_duplicate_of_existing_registers_nothing(self) -> None:
        """Test that clashing with a registered job rejects the batch."""
        supervisor = make_supervisor(FakeWorkerFactory())
        supervisor.register([make_descriptor("a")])

        with pytest.raises(DuplicateNameError):
            supervisor.register([make_descriptor("b"), make_descriptor("a")])

        assert supervisor.registry.names == ["a"]

    def test_invalid_schedule_rejected(self) -> None:
        """Test that an invalid schedule rejects the batch."""
        supervisor = make_supervisor(FakeWorkerFactory())

        with pytest.raises(InvalidScheduleError):
            supervisor.register([make_descriptor("a"), make_descriptor("b", schedule="61 * * * *")])

        assert len(supervisor.registry) == 0

    def test_invalid_schedule_skipped(self, caplog) -> None:
        """Test skip_invalid drops only the bad job."""
        supervisor = make_supervisor(FakeWorkerFactory())

        with caplog.at_level(logging.ERROR):
            names = supervisor.register(
                [make_descriptor("a"), make_descriptor("b", schedule="nope")],
                skip_invalid=True,
            )

        assert names == ["a"]
        assert "Skipping job b" in caplog.text


class TestDispatch:
    """Tests for tick handling and overlap prevention."""

    @pytest.mark.asyncio
    async def test_tick_launches_worker(self) -> None:
        """Test that a tick on an idle job starts a worker."""
        factory = FakeWorkerFactory(duration=None)
        supervisor = make_supervisor(factory)
        supervisor.register([make_descriptor()])

        supervisor._on_tick("ping")
        await asyncio.sleep(0)

        record = supervisor.registry.get("ping")
        assert record.state is JobState.RUNNING
        assert len(record.workers) == 1
        assert record.last_run is not None

        await supervisor.drain_all()

    @pytest.mark.asyncio
    async def test_overlapping_tick_is_skipped(self, caplog) -> None:
        """Test that a tick while running is skipped and logged when verbose."""
        factory = FakeWorkerFactory(duration=None)
        supervisor = make_supervisor(factory)
        supervisor.register([make_descriptor(verbose=True)])

        with caplog.at_level(logging.WARNING):
            supervisor._on_tick("ping")
            supervisor._on_tick("ping")
            await asyncio.sleep(0)

        record = supervisor.registry.get("ping")
        assert len(factory.workers) == 1
        assert len(record.workers) == 1
        assert record.skip_count == 1
        assert 'Job "ping" skipped because it is already running.' in caplog.text

        await supervisor.drain_all()

    @pytest.mark.asyncio
    async def test_skip_not_logged_without_verbose(self, caplog) -> None:
        """Test that skipped ticks are silent for non-verbose jobs."""
        factory = FakeWorkerFactory(duration=None)
        supervisor = make_supervisor(factory)
        supervisor.register([make_descriptor(verbose=False)])

        with caplog.at_level(logging.WARNING):
            supervisor._on_tick("ping")
            supervisor._on_tick("ping")

        assert "skipped" not in caplog.text
        await supervisor.drain_all()

    @pytest.mark.asyncio
    async def test_overlap_allowed(self) -> None:
        """Test that overlapping runs are allowed when prevention is off."""
        factory = FakeWorkerFactory(duration=None)
        supervisor = make_supervisor(factory)
        supervisor.register([make_descriptor(prevent_overlapping=False)])

        supervisor._on_tick("ping")
        supervisor._on_tick("ping")
        await asyncio.sleep(0)

        record = supervisor.registry.get("ping")
        assert len(record.workers) == 2
        assert record.skip_count == 0

        await supervisor.drain_all()

    @pytest.mark.asyncio
    async def test_every_other_tick_skipped(self) -> None:
        """Test a job longer than its tick interval runs on every other tick."""
        factory = FakeWorkerFactory(duration=0.3)
        supervisor = make_supervisor(factory)
        supervisor.register([make_descriptor()])
        record = supervisor.registry.get("ping")

        for _ in range(4):
            supervisor._on_tick("ping")
            assert len(record.workers) <= 1
            await asyncio.sleep(0.2)

        assert len(factory.workers) == 2
        assert record.skip_count == 2

        assert await supervisor.wait_until_idle(2.0)
        assert record.run_count == 2

    @pytest.mark.asyncio
    async def test_completion_returns_to_idle(self, caplog) -> None:
        """Test that a finished occurrence frees the slot."""
        factory = FakeWorkerFactory(duration=0.01)
        supervisor = make_supervisor(factory)
        supervisor.register([make_descriptor(verbose=True)])

        with caplog.at_level(logging.INFO):
            supervisor._on_tick("ping")
            assert await supervisor.wait_until_idle(1.0)

        record = supervisor.registry.get("ping")
        assert record.state is JobState.IDLE
        assert record.workers == []
        assert record.run_count == 1
        assert record.error_count == 0
        assert "[ping] Job has started." in caplog.text
        assert "[ping] Job has completed." in caplog.text

    @pytest.mark.asyncio
    async def test_tick_for_unknown_job_ignored(self) -> None:
        """Test that a stale tick does nothing."""
        factory = FakeWorkerFactory()
        supervisor = make_supervisor(factory)

        supervisor._on_tick("missing")

        assert factory.workers == []


class TestFailures:
    """Tests for crashed and timed out occurrences."""

    @pytest.mark.asyncio
    async def test_crash_reported_and_job_keeps_firing(self, caplog) -> None:
        """Test that a failed occurrence is logged and does not disable the job."""
        factory = FakeWorkerFactory(duration=0.01, fail=True)
        supervisor = make_supervisor(factory)
        supervisor.register([make_descriptor()])

        with caplog.at_level(logging.ERROR):
            supervisor._on_tick("ping")
            assert await supervisor.wait_until_idle(1.0)

        record = supervisor.registry.get("ping")
        assert record.error_count == 1
        assert record.last_error == "RuntimeError: boom"
        assert 'Job "ping" has crashed: RuntimeError: boom' in caplog.text
        assert "Traceback" in caplog.text

        supervisor._on_tick("ping")
        assert len(factory.workers) == 2
        assert await supervisor.wait_until_idle(1.0)
        assert record.run_count == 2

    @pytest.mark.asyncio
    async def test_timeout_reported_once(self, caplog) -> None:
        """Test that a hung occurrence is cancelled and reported exactly once."""
        factory = FakeWorkerFactory(duration=None)
        supervisor = make_supervisor(factory)
        supervisor.register([make_descriptor(timeout=0.1)])

        with caplog.at_level(logging.ERROR):
            supervisor._on_tick("ping")
            assert await supervisor.wait_until_idle(2.0)

        timeouts = [r for r in caplog.records if "timed out" in r.getMessage()]
        assert len(timeouts) == 1
        assert 'Job "ping" timed out! Execution took longer than 0.1s' in timeouts[0].getMessage()

        history = supervisor.get_history("ping")
        assert len(history) == 1
        assert history[0].status == "timeout"
        assert history[0].success is False

        worker = factory.workers[0]
        assert worker.cancel_reason.startswith("Timeout!")
        assert worker.killed is False

        record = supervisor.registry.get("ping")
        assert record.state is JobState.IDLE
        assert record.error_count == 1

        # Fires again on the next tick
        supervisor._on_tick("ping")
        assert len(factory.workers) == 2
        await supervisor.drain_all()

    @pytest.mark.asyncio
    async def test_timeout_kills_worker_ignoring_cancel(self) -> None:
        """Test that a worker ignoring cancellation is killed after the grace."""
        factory = FakeWorkerFactory(duration=None, ignore_cancel=True)
        supervisor = make_supervisor(factory, cancel_grace=0.1)
        supervisor.register([make_descriptor(timeout=0.1)])
        record = supervisor.registry.get("ping")

        supervisor._on_tick("ping")
        await asyncio.sleep(0.15)

        # Cancelled but still alive
        assert record.state is JobState.CANCELLING
        assert len(record.workers) == 1

        assert await supervisor.wait_until_idle(2.0)
        assert factory.workers[0].killed is True
        assert supervisor.get_history("ping")[0].status == "timeout"


class TestDrain:
    """Tests for draining running jobs."""

    @pytest.mark.asyncio
    async def test_drain_with_nothing_running(self) -> None:
        """Test draining an idle supervisor."""
        supervisor = make_supervisor(FakeWorkerFactory())
        supervisor.register([make_descriptor()])

        result = await supervisor.drain_all()

        assert result == DrainResult()
        assert supervisor.registry.get("ping").trigger.stopped

    @pytest.mark.asyncio
    async def test_drain_cancels_cooperative_workers(self) -> None:
        """Test that cooperative workers stop within the grace period."""
        factory = FakeWorkerFactory(duration=None)
        supervisor = make_supervisor(factory)
        supervisor.register([make_descriptor("a"), make_descriptor("b")])
        supervisor._on_tick("a")
        supervisor._on_tick("b")

        result = await supervisor.drain_all(grace=1.0)

        assert result.cancelled == 2
        assert result.killed == 0
        assert supervisor.registry.all_idle()
        assert all(w.cancel_reason == "shutdown" for w in factory.workers)

    @pytest.mark.asyncio
    async def test_drain_kills_workers_ignoring_cancel(self, caplog) -> None:
        """Test that drain returns within the grace even if workers hang."""
        factory = FakeWorkerFactory(duration=None, ignore_cancel=True)
        supervisor = make_supervisor(factory)
        supervisor.register([make_descriptor("a"), make_descriptor("b")])
        supervisor._on_tick("a")
        supervisor._on_tick("b")
        await asyncio.sleep(0)

        loop = asyncio.get_running_loop()
        started = loop.time()
        with caplog.at_level(logging.WARNING):
            result = await supervisor.drain_all(grace=0.2)
        elapsed = loop.time() - started

        assert elapsed < 1.0
        assert result.killed == 2
        assert result.forced is True
        assert all(w.killed for w in factory.workers)
        assert supervisor.registry.all_idle()
        assert "forcing termination" in caplog.text

    @pytest.mark.asyncio
    async def test_cancelled_occurrence_wakes_idle_waiters(self) -> None:
        """Test that cancelling an occurrence task notifies idle waiters."""
        factory = FakeWorkerFactory(duration=None)
        supervisor = make_supervisor(factory)
        supervisor.register([make_descriptor()])
        supervisor._on_tick("ping")
        await asyncio.sleep(0)

        waiter = asyncio.create_task(supervisor.wait_until_idle(1.0))
        await asyncio.sleep(0.01)
        [task] = supervisor._tasks
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert await waiter is True
        assert factory.workers[0].killed is True
        assert supervisor.registry.get("ping").is_idle

    @pytest.mark.asyncio
    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals required")
    async def test_drain_reaches_worker_still_spawning(self, tmp_path: Path) -> None:
        """Test draining right after dispatch, before the process exists."""
        job = tmp_path / "slow.py"
        job.write_text(textwrap.dedent("""
            import time
            from cronstack import define_service

            def run():
                time.sleep(30)

            service = define_service(run, schedule="0 0 1 1 *")
        """))
        supervisor = Supervisor(SupervisorConfig(drain_grace=10.0))
        supervisor.register([
            JobDescriptor(name="slow", schedule=YEARLY, entrypoint=str(job), stdio="ignore")
        ])
        supervisor._on_tick("slow")
        await asyncio.sleep(0)
        worker = supervisor.registry.get("slow").worker

        result = await asyncio.wait_for(supervisor.drain_all(), timeout=15)

        assert result == DrainResult(cancelled=1, killed=0)
        assert supervisor.registry.all_idle()
        assert worker.state is WorkerState.CANCELLED
        assert supervisor.get_history("slow")[0].status == "cancelled"


class TestReload:
    """Tests for replacing the job set."""

    @pytest.mark.asyncio
    async def test_invalid_reload_leaves_state_unchanged(self) -> None:
        """Test that a rejected reload does not touch running jobs."""
        factory = FakeWorkerFactory(duration=None)
        supervisor = make_supervisor(factory)
        supervisor.register([make_descriptor("a")])
        supervisor._on_tick("a")
        await asyncio.sleep(0)

        with pytest.raises(ReloadValidationError) as exc_info:
            await supervisor.reload([make_descriptor("x"), make_descriptor("x")])

        assert isinstance(exc_info.value.__cause__, DuplicateNameError)
        assert supervisor.registry.names == ["a"]
        record = supervisor.registry.get("a")
        assert record.state is JobState.RUNNING
        assert factory.workers[0].cancel_requested is False
        assert not record.trigger.stopped

        await supervisor.drain_all()

    @pytest.mark.asyncio
    async def test_reload_with_bad_schedule_rejected(self) -> None:
        """Test that an invalid schedule in the new set is rejected."""
        supervisor = make_supervisor(FakeWorkerFactory())
        supervisor.register([make_descriptor("a")])

        with pytest.raises(ReloadValidationError):
            await supervisor.reload([make_descriptor("b", schedule="* *")])

        assert supervisor.registry.names == ["a"]

    @pytest.mark.asyncio
    async def test_reload_drains_and_swaps(self) -> None:
        """Test that a valid reload drains old workers and installs new jobs."""
        factory = FakeWorkerFactory(duration=None)
        supervisor = make_supervisor(factory)
        supervisor.register([make_descriptor("a")])
        await supervisor.start()
        try:
            old_trigger = supervisor.registry.get("a").trigger
            supervisor._on_tick("a")
            await asyncio.sleep(0)

            await supervisor.reload([make_descriptor("a"), make_descriptor("b")])

            assert old_trigger.stopped
            assert factory.workers[0].cancel_reason == "shutdown"
            assert supervisor.registry.names == ["a", "b"]
            assert all(r.trigger.running for r in supervisor.registry)
            assert supervisor.registry.all_idle()
        finally:
            await supervisor.shutdown()


class TestOnceMode:
    """Tests for running each job a single time."""

    @pytest.mark.asyncio
    async def test_once_mode_completes_after_first_run(self) -> None:
        """Test that jobs are removed after their first occurrence."""
        factory = FakeWorkerFactory(duration=0.05)
        supervisor = make_supervisor(factory, once=True)
        supervisor.register([make_descriptor("a"), make_descriptor("b")])
        await supervisor.start()
        try:
            record = supervisor.registry.get("a")
            supervisor._on_tick("a")
            assert record.trigger.stopped

            supervisor._on_tick("b")
            await asyncio.wait_for(supervisor.wait_until_complete(), timeout=2.0)

            assert len(supervisor.registry) == 0
            assert len(factory.workers) == 2
        finally:
            await supervisor.shutdown()

    @pytest.mark.asyncio
    async def test_once_mode_skip_counts_as_completion(self) -> None:
        """Test that a skipped tick does not start a second run."""
        factory = FakeWorkerFactory(duration=0.1)
        supervisor = make_supervisor(factory, once=True)
        supervisor.register([make_descriptor("a")])
        await supervisor.start()
        try:
            supervisor._on_tick("a")
            supervisor._on_tick("a")
            await asyncio.wait_for(supervisor.wait_until_complete(), timeout=2.0)

            assert len(factory.workers) == 1
        finally:
            await supervisor.shutdown()


class TestQueries:
    """Tests for status, history and on-demand runs."""

    @pytest.mark.asyncio
    async def test_status(self) -> None:
        """Test the status rows."""
        supervisor = make_supervisor(FakeWorkerFactory())
        supervisor.register([make_descriptor("a", schedule="*/5 * * * * *")])

        [row] = supervisor.status()

        assert row.name == "a"
        assert row.schedule == "*/5 * * * * *"
        assert row.description == "Every 5 seconds"
        assert row.state is JobState.IDLE
        assert row.next_occurrence > datetime.now(timezone.utc)
        assert row.run_count == 0

    @pytest.mark.asyncio
    async def test_run_now(self) -> None:
        """Test running a job on demand."""
        supervisor = make_supervisor(FakeWorkerFactory(duration=0.01))
        supervisor.register([make_descriptor("a")])

        result = await supervisor.run_now("a")

        assert result is not None
        assert result.success is True
        assert result.status == "succeeded"
        assert result.duration is not None
        assert supervisor.get_history() == [result]

    @pytest.mark.asyncio
    async def test_run_now_unknown_job(self) -> None:
        """Test running a job that does not exist."""
        supervisor = make_supervisor(FakeWorkerFactory())

        with pytest.raises(JobNotFoundError):
            await supervisor.run_now("missing")

    @pytest.mark.asyncio
    async def test_run_all_now(self) -> None:
        """Test running every job at once."""
        supervisor = make_supervisor(FakeWorkerFactory(duration=0.01))
        supervisor.register([make_descriptor("a"), make_descriptor("b")])

        results = await supervisor.run_all_now()

        assert sorted(r.name for r in results) == ["a", "b"]
        assert all(r.success for r in results)

    @pytest.mark.asyncio
    async def test_history_is_trimmed(self) -> None:
        """Test that history keeps only the newest entries."""
        supervisor = make_supervisor(FakeWorkerFactory(duration=0), max_history=2)
        supervisor.register([make_descriptor("a")])

        for _ in range(3):
            await supervisor.run_now("a")

        assert len(supervisor._execution_history) == 2
        assert len(supervisor.get_history(limit=10)) == 2


class TestLifecycle:
    """Tests for start and shutdown."""

    @pytest.mark.asyncio
    async def test_start_and_shutdown(self) -> None:
        """Test starting triggers and shutting down."""
        supervisor = make_supervisor(FakeWorkerFactory())
        supervisor.register([make_descriptor("a")])

        await supervisor.start()
        assert supervisor.is_running
        assert supervisor.registry.get("a").trigger.running

        await supervisor.shutdown()
        assert not supervisor.is_running
        assert supervisor.registry.get("a").trigger.stopped

    @pytest.mark.asyncio
    async def test_register_while_running_starts_trigger(self) -> None:
        """Test that jobs added after start are scheduled right away."""
        supervisor = make_supervisor(FakeWorkerFactory())
        await supervisor.start()
        try:
            supervisor.register([make_descriptor("late")])
            assert supervisor.registry.get("late").trigger.running
        finally:
            await supervisor.shutdown()

    @pytest.mark.asyncio
    async def test_scheduler_fires_ticks(self) -> None:
        """Test that a per-second schedule dispatches through APScheduler."""
        factory = FakeWorkerFactory(duration=0.01)
        supervisor = make_supervisor(factory)
        supervisor.register([make_descriptor("fast", schedule="* * * * * *")])

        await supervisor.start()
        try:
            await asyncio.sleep(2.2)
        finally:
            await supervisor.shutdown()

        assert len(factory.workers) >= 1

    @pytest.mark.asyncio
    async def test_corrupted_registry_is_fatal(self, caplog) -> None:
        """Test that an invariant violation is reported as fatal."""
        supervisor = make_supervisor(FakeWorkerFactory())
        supervisor.register([make_descriptor("a")])
        record = supervisor.registry.get("a")
        # Idle record that still holds a worker
        record.workers.append(FakeWorker(record.descriptor))

        with caplog.at_level(logging.CRITICAL):
            supervisor._on_tick("a")

        assert isinstance(supervisor.fatal_error, RegistryCorruptedError)
        error = await asyncio.wait_for(supervisor.wait_for_failure(), timeout=1.0)
        assert error is supervisor.fatal_error
        assert "inconsistent" in caplog.text

    @pytest.mark.asyncio
    async def test_failure_signal_without_error(self) -> None:
        """Test that a failure signal carrying no error is reported."""
        supervisor = make_supervisor(FakeWorkerFactory())
        supervisor._failed.set()

        with pytest.raises(RuntimeError):
            await supervisor.wait_for_failure()

    @pytest.mark.asyncio
    async def test_tick_from_replaced_trigger_ignored(self) -> None:
        """Test that a tick submitted before a reload does not run the new job."""
        factory = FakeWorkerFactory()
        supervisor = make_supervisor(factory)
        supervisor.register([make_descriptor("a")])
        old_trigger = supervisor.registry.get("a").trigger

        await supervisor.reload([make_descriptor("a")])
        supervisor._on_tick("a", old_trigger)

        assert factory.workers == []

    @pytest.mark.asyncio
    async def test_tick_during_shutdown_ignored(self) -> None:
        """Test that a late tick does not start a worker after shutdown."""
        factory = FakeWorkerFactory()
        supervisor = make_supervisor(factory)
        supervisor.register([make_descriptor("a")])
        await supervisor.start()
        trigger = supervisor.registry.get("a").trigger

        await supervisor.shutdown()
        supervisor._on_tick("a", trigger)

        assert factory.workers == []
