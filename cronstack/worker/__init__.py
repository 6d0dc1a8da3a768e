"""Isolated worker processes.

Each job occurrence runs in its own Python subprocess started with
``python -m cronstack.worker.runner``; results come back over a JSON
line protocol.
"""

from cronstack.worker.process import (
    TERMINAL_STATES,
    WorkerOutcome,
    WorkerProcess,
    WorkerState,
)
from cronstack.worker.protocol import ProtocolError, ResultMessage, WorkerError

__all__ = [
    "TERMINAL_STATES",
    "ProtocolError",
    "ResultMessage",
    "WorkerError",
    "WorkerOutcome",
    "WorkerProcess",
    "WorkerState",
]
