"""
Defines custom exceptions for the application to allow for more specific error handling.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from rangefetch.models.span import ByteSpan


class RangeFetchError(Exception):
    """Base exception for all application-specific errors."""


class ConfigurationError(RangeFetchError):
    """Raised for issues related to configuration loading or validation."""


class HandshakeError(RangeFetchError):
    """Raised when the blob's total length or digest cannot be learned."""


class TransportError(RangeFetchError):
    """Raised when a single request fails below the HTTP status level."""


class BoundsViolation(RangeFetchError):
    """
    Raised when the server reports or delivers bytes outside the blob.

    This is a broken server contract and is never retried.
    """

    def __init__(self, start: int, end: int, total_length: int):
        self.start = start
        self.end = end
        self.total_length = total_length
        super().__init__(
            f"Byte range [{start}, {end}) falls outside the blob of "
            f"{total_length} bytes."
        )


class StalledSpan(RangeFetchError):
    """Raised when a span keeps failing after the configured number of attempts."""

    def __init__(self, span: ByteSpan, attempts: int, last_error: str | None = None):
        self.span = span
        self.attempts = attempts
        self.last_error = last_error
        message = f"Span {span} yielded no new bytes after {attempts} attempts"
        if last_error:
            message += f" (last error: {last_error})"
        super().__init__(message + ".")


class DigestMismatch(RangeFetchError):
    """Raised when the assembled blob does not hash to the announced digest."""

    def __init__(self, algorithm: str, expected: str, actual: str):
        self.algorithm = algorithm
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"{algorithm} digest mismatch: expected {expected}, got {actual}."
        )


class Cancelled(RangeFetchError):
    """Raised when a session is stopped by a deadline, signal or attempt budget."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Download cancelled: {reason}.")


class OutputError(RangeFetchError):
    """Raised when the verified blob cannot be written to its destination."""
