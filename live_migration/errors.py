"""
Error taxonomy for the migration control plane.

Every failure surfaced to a migration caller derives from MigrationError.
None of these are retried automatically.
"""

from typing import Optional


class MigrationError(Exception):
    """Base class for all migration control plane errors."""


class EngineUnavailable(MigrationError):
    """The engine worker could not be spawned or the channel was lost."""


class ProtocolViolation(MigrationError):
    """The engine sent something the protocol does not allow."""


class UnexpectedNotification(ProtocolViolation):
    """A lifecycle notification arrived for a call issued without a sink."""

    def __init__(self, point: str):
        super().__init__(f"Unexpected notification '{point}' without a callback sink")
        self.point = point


class OperationFailed(MigrationError):
    """The engine reported a failed operation."""

    def __init__(self, code: int, message: str, kind: Optional[str] = None):
        label = f"{kind} " if kind else ""
        super().__init__(f"Engine {label}operation failed (errno {code}): {message}")
        self.code = code
        self.message = message
        self.kind = kind


class CallbackFailed(MigrationError):
    """A lifecycle callback raised; the sink's exception is the __cause__."""

    def __init__(self, point: str, reason: str):
        super().__init__(f"Lifecycle callback '{point}' failed: {reason}")
        self.point = point


class IterationFailed(MigrationError):
    """An auxiliary process exited abnormally."""

    def __init__(self, name: str, pid: int, status: Optional[int] = None, reason: str = ""):
        detail = reason or f"exit status {status}"
        super().__init__(f"{name} (pid {pid}) failed: {detail}")
        self.name = name
        self.pid = pid
        self.status = status


class AuxiliaryProcessError(MigrationError):
    """An auxiliary process handle was used out of order."""


class InvalidTransition(MigrationError):
    """A migration step was requested from a state that does not allow it."""

    def __init__(self, current, requested):
        super().__init__(f"Cannot move from {current.value} to {requested.value}")
        self.current = current
        self.requested = requested


class SnapshotIOError(MigrationError, OSError):
    """Filesystem failure while managing snapshot directories."""
