"""Main daemon service for Cronstack.

This module provides the long-running process behind ``cronstack start``:
- Job discovery and supervisor lifecycle (start/stop)
- Signal handling for graceful shutdown (SIGTERM, SIGINT)
- Reloading the job set on SIGHUP
- Once and once-now modes
"""

import asyncio
import logging
import signal
from typing import Any, Callable, Dict, List, Optional, Sequence

from cronstack.config import CronstackConfig
from cronstack.exceptions import CronstackError
from cronstack.scheduler.models import ExecutionResult, JobDescriptor
from cronstack.scheduler.supervisor import DrainResult, Supervisor
from cronstack.services.loader import load_descriptors

logger = logging.getLogger(__name__)

DescriptorLoader = Callable[..., List[JobDescriptor]]


class CronstackDaemon:
    """Runs the discovered jobs until asked to stop.

    Attributes:
        _config: Cronstack configuration
        _names: Job names to run (None = all discovered jobs)
        _supervisor: Job supervisor, created on start
        _shutdown_event: Event to signal shutdown

    Example:
        daemon = CronstackDaemon(config)

        # Discover jobs and start their triggers
        await daemon.start()

        # Run until shutdown signal (or, in once mode, until done)
        await daemon.run_until_shutdown()

        # Drain running jobs
        await daemon.stop()
    """

    def __init__(
        self,
        config: CronstackConfig,
        names: Optional[Sequence[str]] = None,
        loader: DescriptorLoader = load_descriptors,
        supervisor: Optional[Supervisor] = None,
    ):
        """Initialize the daemon service.

        Args:
            config: Cronstack configuration
            names: Restrict the daemon to these job names
            loader: Function discovering job descriptors in a directory
            supervisor: Supervisor to use instead of a new one
        """
        self._config = config
        self._names = list(names) if names else None
        self._loader = loader
        self._supervisor = supervisor
        self._running = False
        self._shutdown_event = asyncio.Event()
        self._reload_task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def supervisor(self) -> Optional[Supervisor]:
        """The job supervisor, or None if not started."""
        return self._supervisor

    def discover(self) -> List[JobDescriptor]:
        """Load job descriptors from the project directory."""
        return self._loader(self._config.cwd, self._names)

    async def start(self, schedule: bool = True) -> None:
        """Discover jobs and register them with a new supervisor.

        Args:
            schedule: Start the cron triggers. Once-now mode runs every
                job directly and leaves the triggers off.

        Raises:
            ServiceDiscoveryError: If job files cannot be loaded
            InvalidScheduleError: If a job has an invalid schedule
            DuplicateNameError: If two jobs share a name
        """
        logger.info("Starting Cronstack daemon...")

        descriptors = self.discover()
        if self._supervisor is None:
            self._supervisor = Supervisor(self._config.supervisor)
        self._supervisor.register(descriptors)

        if schedule:
            await self._supervisor.start()

        self._running = True
        logger.info(f"Cronstack daemon started with {len(descriptors)} job(s)")

    async def stop(self) -> DrainResult:
        """Drain running jobs and stop the supervisor."""
        logger.info("Stopping Cronstack daemon...")
        self._running = False

        if self._reload_task is not None and not self._reload_task.done():
            self._reload_task.cancel()
            try:
                await self._reload_task
            except asyncio.CancelledError:
                pass

        result = DrainResult()
        if self._supervisor is not None:
            result = await self._supervisor.shutdown(self._config.supervisor.drain_grace)
            if result.forced:
                logger.warning(f"Killed {result.killed} job(s) that ignored cancellation")

        logger.info("Cronstack daemon stopped")
        return result

    async def run_until_shutdown(self) -> None:
        """Block until shutdown is requested.

        In once mode this also returns when every job has run once.

        Raises:
            RegistryCorruptedError: If the supervisor hit a fatal error
        """
        if self._supervisor is None:
            await self._shutdown_event.wait()
            return

        waiters = [
            asyncio.create_task(self._shutdown_event.wait()),
            asyncio.create_task(self._supervisor.wait_for_failure()),
        ]
        if self._config.supervisor.once:
            waiters.append(asyncio.create_task(self._supervisor.wait_until_complete()))

        try:
            await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()

        if self._supervisor.fatal_error is not None:
            raise self._supervisor.fatal_error
        if self._config.supervisor.once and not self._shutdown_event.is_set():
            logger.info("All jobs completed")

    async def run_once_now(self) -> List[ExecutionResult]:
        """Run every job immediately, once, and wait for all of them."""
        if self._supervisor is None:
            raise RuntimeError("Daemon not started")
        return await self._supervisor.run_all_now()

    def request_shutdown(self) -> None:
        """Request daemon shutdown."""
        logger.info("Shutdown requested")
        self._shutdown_event.set()

    def request_reload(self) -> None:
        """Schedule a reload of the job files."""
        if self._reload_task is not None and not self._reload_task.done():
            logger.warning("Reload already in progress, ignoring")
            return
        self._reload_task = asyncio.create_task(self.reload())

    async def reload(self) -> bool:
        """Re-discover job files and swap them in.

        A failed reload is logged and the current jobs keep running.

        Returns:
            True if the new job set is active
        """
        if self._supervisor is None:
            return False

        logger.info("Reloading job files...")
        try:
            descriptors = self.discover()
            await self._supervisor.reload(descriptors)
        except CronstackError as e:
            logger.error(f"Reload failed, keeping current jobs: {e.message}")
            return False

        logger.info("Reload complete")
        return True


def _install_signal_handlers(daemon: CronstackDaemon) -> None:
    loop = asyncio.get_running_loop()

    def handle_signal(sig: signal.Signals) -> None:
        logger.info(f"Received signal {sig.name}, initiating shutdown...")
        daemon.request_shutdown()

    def handle_reload(sig: signal.Signals) -> None:
        logger.info(f"Received signal {sig.name}, reloading...")
        daemon.request_reload()

    handlers = [(signal.SIGTERM, handle_signal), (signal.SIGINT, handle_signal)]
    if hasattr(signal, "SIGHUP"):
        handlers.append((signal.SIGHUP, handle_reload))

    for sig, handler in handlers:
        try:
            loop.add_signal_handler(sig, lambda s=sig, h=handler: h(s))
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            signal.signal(
                sig,
                lambda signum, frame, h=handler: loop.call_soon_threadsafe(
                    h, signal.Signals(signum)
                ),
            )


async def run_daemon(config: CronstackConfig, options: Dict[str, Any]) -> None:
    """Run the Cronstack daemon with signal handling.

    Args:
        config: Cronstack configuration
        options: Daemon options including:
            - names: Job names to run (default: all)
            - once_now: Run every job immediately, once, then exit

    Example:
        await run_daemon(config, {"names": ["ping"], "once_now": False})

    Raises:
        RegistryCorruptedError: If the supervisor hit a fatal error
    """
    daemon = CronstackDaemon(config, names=options.get("names"))
    once_now = bool(options.get("once_now", False))

    _install_signal_handlers(daemon)

    try:
        await daemon.start(schedule=not once_now)
        if once_now:
            results = await daemon.run_once_now()
            failed = [r for r in results if not r.success]
            logger.info(f"Ran {len(results)} job(s), {len(failed)} failed")
        else:
            await daemon.run_until_shutdown()
    finally:
        await daemon.stop()
