"""
Exceptions for the autoheal system.
"""
from .types import ErrorKind


class AutohealError(Exception):
    """Base exception for the autoheal system."""

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.UNKNOWN):
        super().__init__(message)
        self.kind = kind


class StrategyNotFoundError(AutohealError):
    """Raised when no recovery strategy is registered for an error kind."""

    def __init__(self, kind: ErrorKind):
        super().__init__(f"No recovery strategy defined for {kind.value}", kind)


class ErrorNotFoundError(AutohealError):
    """Raised when an error id is not present in the history store."""

    def __init__(self, error_id: str):
        super().__init__(f"Unknown error id: {error_id}")
        self.error_id = error_id


class RecoveryInProgressError(AutohealError):
    """Raised when a recovery is requested for an error that is already recovering."""

    def __init__(self, error_id: str):
        super().__init__(f"Recovery already in progress for {error_id}")
        self.error_id = error_id


class RecoveryExhaustedError(AutohealError):
    """Raised when all recovery attempts for an error have been used up."""

    def __init__(self, error_id: str, attempts: int):
        super().__init__(f"Recovery attempts exhausted for {error_id} after {attempts} attempts")
        self.error_id = error_id
        self.attempts = attempts


class CommandTimeoutError(AutohealError):
    """Raised when an external command does not finish in time."""

    def __init__(self, command: str, timeout: float):
        super().__init__(f"Command timed out after {timeout}s: {command}")
        self.command = command
        self.timeout = timeout


class ConfigurationError(AutohealError):
    """Raised when configuration values are invalid."""
