"""Error taxonomy for the routing engine."""

from __future__ import annotations


class ValidationError(ValueError):
    """Malformed request input. Returned to the caller immediately, never retried."""


class ExternalServiceError(Exception):
    """A collaborator call failed (timeout, bad status, malformed payload)."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class RateLimitedError(ExternalServiceError):
    """The collaborator answered HTTP 429."""

    def __init__(self, message: str = "Rate limit exceeded") -> None:
        super().__init__(message, status_code=429)


class OptimizationFailure(RuntimeError):
    """Unexpected failure inside the genetic loop."""
