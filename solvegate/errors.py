from enum import Enum


class SolvegateError(Exception):
    """Base exception for solvegate errors."""


class ConfigError(SolvegateError):
    """Raised for invalid or inconsistent configuration."""


class ValidationError(SolvegateError):
    """Raised when a request fails shape or bounds checks."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class RejectReason(str, Enum):
    TIMEOUT = "timeout"
    OVERLOADED = "overloaded"


class AdmissionRejected(SolvegateError):
    """Raised when no solver slot could be granted."""

    def __init__(self, reason: RejectReason, message: str):
        super().__init__(message)
        self.reason = reason


class SolveCancelled(SolvegateError):
    """Raised when the caller cancelled a request before it could run."""


class SpawnError(SolvegateError):
    """Raised when the solver process could not be started."""


class BackendError(SolvegateError):
    """Raised for backend failures or invalid backend state."""


class OutputParseError(SolvegateError):
    """Raised when solver output does not match the expected grammar."""
