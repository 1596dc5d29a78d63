"""
Exception taxonomy for the AeroVision telemetry core.

Only ConfigurationError is ever raised to the host application.  Every other
error is recorded as state (last error, error count, diagnostic log) by the
component that caught it.
"""
from __future__ import annotations


class AeroVisionError(Exception):
    """Base class for all AeroVision errors."""


class TransportError(AeroVisionError):
    """Connect failure, timeout, or unexpected close/error on a transport."""

    def __init__(self, message: str, transport: str | None = None):
        self.transport = transport
        super().__init__(message)


class ApiResponseError(TransportError):
    """Exception raised when the pull endpoint returns an error response."""

    def __init__(self, error_json: dict):
        self.error_json = error_json
        error = error_json.get("error") if isinstance(error_json, dict) else None
        super().__init__(f"API Error: {error or error_json}", transport="pull")


class ValidationError(AeroVisionError):
    """Malformed or incomplete inbound telemetry."""

    def __init__(self, reason: str, field: str | None = None):
        self.field = field
        self.reason = reason
        if field:
            super().__init__(f"{field}: {reason}")
        else:
            super().__init__(reason)


class SubscriberError(AeroVisionError):
    """A consumer callback raised during notification."""

    def __init__(self, callback, original: BaseException):
        self.callback = callback
        self.original = original
        name = getattr(callback, "__qualname__", None) or repr(callback)
        super().__init__(f"Subscriber {name} raised {type(original).__name__}: {original}")


class ConfigurationError(AeroVisionError):
    """Invalid connector or state manager options."""

    def __init__(self, message: str, path: list | None = None):
        self.path = path or []
        super().__init__(message)
