"""Result protocol between a worker process and the supervisor.

A worker reports its outcome as a single JSON line on its result
channel. Exceptions raised by job code are serialized on the child side
and rebuilt as WorkerError on the supervisor side, keeping the original
type name, message and formatted traceback.
"""

from __future__ import annotations

import json
import traceback
from dataclasses import dataclass
from typing import Any, Optional


class MessageType:
    """Message types understood by the supervisor."""

    RESULT = "result"


class ProtocolError(Exception):
    """Raised when a line on the result channel is not a valid message."""


class WorkerError(Exception):
    """An error raised inside a worker, rebuilt on the supervisor side.

    Attributes:
        name: Type name of the original exception
        message: Original exception message
        stack: Formatted traceback from the worker, if available
        module: Module of the original exception type
    """

    def __init__(
        self,
        name: str,
        message: str,
        stack: Optional[str] = None,
        module: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.name = name
        self.message = message
        self.stack = stack
        self.module = module

    def __str__(self) -> str:
        if self.name and self.message:
            return f"{self.name}: {self.message}"
        return self.message or self.name

    def to_dict(self) -> dict[str, Any]:
        """Convert to the wire representation."""
        data: dict[str, Any] = {"name": self.name, "message": self.message}
        if self.stack is not None:
            data["stack"] = self.stack
        if self.module is not None:
            data["module"] = self.module
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WorkerError":
        """Create from the wire representation."""
        return cls(
            name=str(data.get("name", "Error")),
            message=str(data.get("message", "Unknown error")),
            stack=data.get("stack"),
            module=data.get("module"),
        )

    @classmethod
    def from_exception(cls, exc: BaseException) -> "WorkerError":
        """Capture an exception, including its traceback."""
        stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        return cls(
            name=type(exc).__name__,
            message=str(exc),
            stack=stack,
            module=type(exc).__module__,
        )

    @classmethod
    def crashed(cls, exit_code: Optional[int]) -> "WorkerError":
        """Error for a worker that exited without reporting a result."""
        if exit_code is None:
            detail = "Process crashed without reporting a result"
        elif exit_code < 0:
            detail = f"Process crashed (killed by signal {-exit_code})"
        else:
            detail = f"Process crashed (exit code {exit_code})"
        return cls(name="ProcessCrashed", message=detail)


@dataclass
class ResultMessage:
    """Final outcome reported by a worker."""

    success: bool
    cancelled: bool = False
    error: Optional[WorkerError] = None
    type: str = MessageType.RESULT

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-compatible dictionary."""
        data: dict[str, Any] = {
            "type": self.type,
            "success": self.success,
        }
        if self.cancelled:
            data["cancelled"] = True
        if self.error is not None:
            data["error"] = self.error.to_dict()
        return data

    def to_json(self) -> str:
        """Serialize to a single JSON line (without newline)."""
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ResultMessage":
        """Create from dictionary."""
        if data.get("type") != MessageType.RESULT or "success" not in data:
            raise ProtocolError(f"Not a result message: {data!r}")

        error = None
        if isinstance(data.get("error"), dict):
            error = WorkerError.from_dict(data["error"])

        return cls(
            success=bool(data["success"]),
            cancelled=bool(data.get("cancelled", False)),
            error=error,
        )

    @classmethod
    def from_json(cls, line: str) -> "ResultMessage":
        """Parse from a JSON line."""
        try:
            data = json.loads(line)
        except json.JSONDecodeError as e:
            raise ProtocolError(str(e)) from e
        if not isinstance(data, dict):
            raise ProtocolError(f"Not a result message: {line!r}")
        return cls.from_dict(data)

    @classmethod
    def succeeded(cls) -> "ResultMessage":
        """Create a success message."""
        return cls(success=True)

    @classmethod
    def failed(cls, exc: BaseException) -> "ResultMessage":
        """Create a failure message from an exception."""
        return cls(success=False, error=WorkerError.from_exception(exc))

    @classmethod
    def cancelled_by(cls, reason: str) -> "ResultMessage":
        """Create a message for a job that stopped on a cancel request."""
        return cls(
            success=False,
            cancelled=True,
            error=WorkerError(name="Cancelled", message=reason),
        )
