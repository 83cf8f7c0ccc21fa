"""
Error taxonomy and boundary results for the side-channel subsystem.

Internal code raises SideChannelError subclasses. Public entry points
convert them into Result values so that the player never sees an
exception for an expected failure (missing tool, timeout, busy guard...).
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ErrorKind(Enum):
    TOOL_UNAVAILABLE = "tool_unavailable"
    TIMEOUT = "timeout"
    MALFORMED_INPUT = "malformed_input"
    BUSY = "busy"
    CLEANUP_FAILED = "cleanup_failed"
    CANCELLED = "cancelled"
    NOT_READY = "not_ready"


class SideChannelError(RuntimeError):
    """Base class for expected failures inside the subsystem."""

    kind = ErrorKind.MALFORMED_INPUT

    def __init__(self, message: str = ""):
        super().__init__(message or self.kind.value)


class ToolUnavailableError(SideChannelError):
    kind = ErrorKind.TOOL_UNAVAILABLE


class ToolTimeoutError(SideChannelError):
    kind = ErrorKind.TIMEOUT


class ToolCancelledError(SideChannelError):
    kind = ErrorKind.CANCELLED


class MalformedInputError(SideChannelError):
    kind = ErrorKind.MALFORMED_INPUT


class BusyError(SideChannelError):
    kind = ErrorKind.BUSY


class NotReadyError(SideChannelError):
    kind = ErrorKind.NOT_READY


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of a public operation: a value, or an ErrorKind."""
    value: Optional[T] = None
    error: Optional[ErrorKind] = None
    detail: str = ""

    @classmethod
    def ok(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def fail(cls, kind: ErrorKind, detail: str = "") -> "Result[T]":
        return cls(error=kind, detail=detail)

    @classmethod
    def from_error(cls, exc: SideChannelError) -> "Result[T]":
        return cls(error=exc.kind, detail=str(exc))

    @property
    def is_ok(self) -> bool:
        return self.error is None

    def unwrap_or(self, default: Any) -> Any:
        """Return the value, or `default` when the operation failed."""
        if self.error is not None or self.value is None:
            return default
        return self.value

    def __repr__(self):
        if self.error is None:
            return f"Result.ok({self.value!r})"
        return f"Result.fail({self.error.value}, {self.detail!r})"
