"""
Error taxonomy for the engagement core.

Generation-path errors are tagged at the call site (transient vs permanent)
so the retry layer classifies by type, never by message text.
Rate limiting is not an error: see `AdmissionResult`.
"""

from typing import Optional


class EngagementCoreError(Exception):
    """Base class for every error raised by this package."""


class InvalidInput(EngagementCoreError, ValueError):
    """Malformed learner signals (e.g. an unparseable last-login date)."""


class ExternalServiceError(EngagementCoreError):
    """A failed call to the external text generator."""

    def __init__(self, service: str, message: str, status_code: Optional[int] = None):
        super().__init__(f"{service} error: {message}")
        self.service = service
        self.status_code = status_code


class TransientExternalError(ExternalServiceError):
    """Timeout, network failure, 5xx or 429. Worth retrying."""


class PermanentExternalError(ExternalServiceError):
    """4xx other than 429, or a request the generator can never serve."""


class GenerationUnavailableError(EngagementCoreError):
    """The external path gave up. Carries the attempt count and the last cause."""

    def __init__(
        self,
        message: str,
        attempts: int = 0,
        last_error: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


class CircuitOpenError(GenerationUnavailableError):
    """Raised when the circuit breaker refuses a call."""
