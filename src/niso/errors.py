"""Exception hierarchy.

Measurement and configuration problems are raised where they are detected.
Backend problems are grouped under ExecutionFailure so a search can treat
them as fatal to the current run without caring which backend raised them.
"""

from __future__ import annotations


class NisoError(Exception):
    """Base class for every error raised by this package."""


class InvalidMeasurement(NisoError):
    """Counts mapping that cannot be reduced to a parity value."""


class InsufficientSamples(NisoError):
    """A statistical comparison was requested with zero shots."""


class ConfigurationInvalid(NisoError):
    """Rejected configuration value.

    Raised eagerly when a config object is built, never mid-search.
    """

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__(f"{field}: {message}")


class CircuitInvalid(NisoError):
    """Gate or circuit construction error."""


class ExecutionFailure(NisoError):
    """An execution backend could not produce counts."""


class ExecutionTimeout(ExecutionFailure):
    """The backend's wall-clock ceiling was reached."""

    def __init__(self, message: str, elapsed_s: float | None = None) -> None:
        self.elapsed_s = elapsed_s
        super().__init__(message)


class RateLimited(ExecutionFailure):
    """The remote service asked the client to back off."""

    def __init__(self, retry_after: float, message: str | None = None) -> None:
        self.retry_after = retry_after
        super().__init__(message or f"Rate limited, retry after {retry_after:g}s")


class AuthenticationFailed(ExecutionFailure):
    """Credentials were missing, invalid or expired."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class ValidationFailed(ExecutionFailure):
    """The backend rejected the submitted job payload."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class TransportFailure(ExecutionFailure):
    """Network error or unexpected response from the backend."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)
