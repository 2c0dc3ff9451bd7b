"""Spanline error hierarchy and exceptions."""

from __future__ import annotations


class SpanlineError(Exception):
    """Base exception for all Spanline errors."""

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class ConfigError(SpanlineError):
    """Raised when configuration is invalid or conflicting."""
    pass


class ValidationError(SpanlineError, ValueError):
    """Raised when a component is constructed with invalid settings."""
    pass


class ExportError(SpanlineError):
    """
    Raised by a sink when a batch could not be delivered.

    ``retryable`` tells the exporter queue whether the batch may be sent
    again (timeouts, 5xx, throttling) or must be dropped right away
    (malformed payload, rejected credentials).
    """

    def __init__(self, message: str, retryable: bool = True, details: dict = None):
        super().__init__(message, details)
        self.retryable = retryable


class InitializationError(SpanlineError):
    """Raised when pipeline initialization fails."""
    pass
