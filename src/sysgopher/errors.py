"""Error taxonomy for sysgopher."""

from enum import Enum


class SysGopherError(Exception):
    """Base class for every error raised by sysgopher."""


class EnumerationFailure(SysGopherError):
    """The process or disk table could not be listed at all."""


class ProbeFailure(SysGopherError):
    """Enriching a single entity failed; callers default the affected fields."""


class ParseFailure(SysGopherError):
    """A field could not be parsed from tool output."""


class CommandError(ProbeFailure):
    """An external command is missing, timed out, or exited non-zero."""

    def __init__(self, command: str, message: str) -> None:
        super().__init__(f"error executing command {command}: {message}")
        self.command = command


class InitFailure(SysGopherError):
    """The toolkit or the platform provider could not be initialised."""


class TaskCancelled(SysGopherError):
    """Raised inside a background task that observed its cancellation token."""


class TerminationKind(Enum):
    """Why a process could not be terminated."""

    NOT_FOUND = "not_found"
    DENIED = "denied"
    INVALID = "invalid"


class TerminationError(SysGopherError):
    """End Process failed."""

    def __init__(self, pid: int, kind: TerminationKind, message: str | None = None) -> None:
        if message is None:
            message = {
                TerminationKind.NOT_FOUND: f"process with PID {pid} does not exist",
                TerminationKind.DENIED: f"permission denied for PID {pid}",
                TerminationKind.INVALID: f"invalid PID: {pid}",
            }[kind]
        super().__init__(message)
        self.pid = pid
        self.kind = kind
