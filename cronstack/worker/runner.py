"""Worker entry point.

Run by the supervisor as ``python -m cronstack.worker.runner <job file>``.
Loads the job file, executes its ``run`` callable once and writes a single
result line to the original stdout. Everything the job prints goes to
stderr so it cannot be mistaken for the result.

SIGTERM is the supervisor's cancel request: a sync job sees it as a
WorkerCancelled exception, an async job has its task cancelled.
"""

import asyncio
import inspect
import os
import signal
import sys
from pathlib import Path
from typing import Any, Callable, Optional, TextIO

from cronstack.services.definition import ServiceDefinition
from cronstack.services.loader import load_service
from cronstack.worker.process import ENV_SERVICE_NAME
from cronstack.worker.protocol import ResultMessage

CANCEL_MESSAGE = "Cancelled by supervisor"

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_CANCELLED = 130


class WorkerCancelled(Exception):
    """Raised inside a sync job when the supervisor cancels it."""


def _open_result_channel() -> TextIO:
    """Keep the original stdout for results and point fd 1 at stderr."""
    sys.stdout.flush()
    channel_fd = os.dup(sys.stdout.fileno())
    os.dup2(sys.stderr.fileno(), sys.stdout.fileno())
    return os.fdopen(channel_fd, "w", encoding="utf-8")


def _report(channel: TextIO, message: ResultMessage) -> None:
    channel.write(message.to_json() + "\n")
    channel.flush()


def _exit_code(message: ResultMessage) -> int:
    if message.success:
        return EXIT_SUCCESS
    if message.cancelled:
        return EXIT_CANCELLED
    return EXIT_FAILURE


async def _run_coroutine(run: Callable[[], Any]) -> Any:
    loop = asyncio.get_running_loop()
    task = asyncio.current_task()
    if task is not None:
        try:
            loop.add_signal_handler(signal.SIGTERM, task.cancel)
        except NotImplementedError:
            # Windows event loops have no signal handler support
            signal.signal(
                signal.SIGTERM,
                lambda signum, frame: loop.call_soon_threadsafe(task.cancel),
            )

    result = run()
    if inspect.isawaitable(result):
        result = await result
    return result


def _run_async(run: Callable[[], Any]) -> ResultMessage:
    try:
        asyncio.run(_run_coroutine(run))
    except asyncio.CancelledError:
        return ResultMessage.cancelled_by(CANCEL_MESSAGE)
    except SystemExit as e:
        if e.code in (0, None):
            return ResultMessage.succeeded()
        return ResultMessage.failed(e)
    except Exception as e:
        return ResultMessage.failed(e)
    return ResultMessage.succeeded()


def _raise_cancelled(signum: int, frame: Any) -> None:
    raise WorkerCancelled(CANCEL_MESSAGE)


def run_service(definition: ServiceDefinition) -> ResultMessage:
    """Execute a service once and describe the outcome."""
    if inspect.iscoroutinefunction(definition.run):
        return _run_async(definition.run)

    previous = signal.signal(signal.SIGTERM, _raise_cancelled)
    try:
        result = definition.run()
        if inspect.isawaitable(result):
            # Sync callable that hands back a coroutine
            signal.signal(signal.SIGTERM, previous)
            return _run_async(lambda: result)
        return ResultMessage.succeeded()
    except WorkerCancelled as e:
        return ResultMessage.cancelled_by(str(e))
    except SystemExit as e:
        if e.code in (0, None):
            return ResultMessage.succeeded()
        return ResultMessage.failed(e)
    except Exception as e:
        return ResultMessage.failed(e)
    finally:
        signal.signal(signal.SIGTERM, previous)


def main(argv: Optional[list[str]] = None) -> int:
    """Run the job file named on the command line."""
    args = sys.argv[1:] if argv is None else argv
    if len(args) != 1:
        print("usage: python -m cronstack.worker.runner <job file>", file=sys.stderr)
        return 2

    path = Path(args[0])
    name = os.environ.get(ENV_SERVICE_NAME) or path.stem
    channel = _open_result_channel()

    try:
        definition = load_service(name, path)
    except Exception as e:
        message = ResultMessage.failed(e)
    else:
        message = run_service(definition)

    _report(channel, message)
    channel.close()
    return _exit_code(message)


if __name__ == "__main__":
    sys.exit(main())
