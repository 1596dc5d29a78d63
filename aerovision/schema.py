"""
Schema checks for inbound telemetry.

Each check is a pure function returning a ValidationResult: truthy on
success, otherwise carrying the first violated field and the reason.  Nothing
here coerces or mutates its input; cleaning is the transformer's job.
"""
from __future__ import annotations

import dataclasses
from typing import Any

import voluptuous as vol

from .const import MESSAGE_TYPES
from .errors import ValidationError


def _number(value: Any):
    """Accept int/float but not bool (bool is an int subclass)."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise vol.Invalid("expected a number")
    return value


def _truthy_dict(value: Any):
    if not isinstance(value, dict) or not value:
        raise vol.Invalid("expected a non-empty mapping")
    return value


TELEMETRY_SCHEMA = vol.Schema(
    {
        vol.Required("system"): dict,
        vol.Required("tracks"): list,
        vol.Required("alerts"): list,
        vol.Required("timestamp"): str,
        vol.Optional("video"): vol.Any(None, dict),
    },
    extra=vol.ALLOW_EXTRA,
)

TRACK_SCHEMA = vol.Schema(
    {
        vol.Required("id"): _number,
        vol.Required("zone"): str,
        vol.Required("threat_score"): _number,
        vol.Required("threat_level"): str,
        vol.Required("detection_time"): _number,
        vol.Required("behavior"): _truthy_dict,
        vol.Required("prediction"): _truthy_dict,
        vol.Required("explanation"): list,
    },
    extra=vol.ALLOW_EXTRA,
)

ALERT_SCHEMA = vol.Schema(
    {
        vol.Optional("id"): vol.Any(None, str, _number),
        vol.Required("time"): str,
        vol.Required("message"): str,
        vol.Required("level"): str,
    },
    extra=vol.ALLOW_EXTRA,
)

ENVELOPE_SCHEMA = vol.Schema(
    {
        vol.Required("type"): vol.In(MESSAGE_TYPES),
        vol.Required("timestamp"): str,
        vol.Optional("data"): object,
    },
    extra=vol.ALLOW_EXTRA,
)

API_RESPONSE_SCHEMA = vol.Schema(
    {
        vol.Required("success"): bool,
        vol.Optional("timestamp"): vol.Any(None, str),
        vol.Optional("data"): vol.Any(None, dict),
        vol.Optional("error"): vol.Any(None, str),
        vol.Optional("version"): vol.Any(None, str),
    },
    extra=vol.ALLOW_EXTRA,
)


@dataclasses.dataclass(frozen=True)
class ValidationResult:
    """Outcome of a schema check; truthy only when the input is valid."""

    valid: bool
    field: str | None = None
    reason: str | None = None

    def __bool__(self) -> bool:
        return self.valid

    @classmethod
    def ok(cls) -> "ValidationResult":
        return cls(True)

    @classmethod
    def failure(cls, reason: str, field: str | None = None) -> "ValidationResult":
        return cls(False, field, reason)

    def raise_for_error(self) -> None:
        """Raise ValidationError when the check failed."""
        if not self.valid:
            raise ValidationError(self.reason or "invalid", self.field)


def _check(schema: vol.Schema, data: Any, prefix: str | None = None) -> ValidationResult:
    try:
        schema(data)
    except vol.Invalid as exc:
        parts = [str(p) for p in exc.path]
        if prefix:
            parts.insert(0, prefix)
        return ValidationResult.failure(exc.msg, ".".join(parts) or None)
    return ValidationResult.ok()


def validate_telemetry(data: Any) -> ValidationResult:
    """Check the top-level shape of one telemetry record."""
    return _check(TELEMETRY_SCHEMA, data)


def validate_track(data: Any) -> ValidationResult:
    """Check the shape of a single upstream track."""
    return _check(TRACK_SCHEMA, data)


def validate_alert(data: Any) -> ValidationResult:
    """Check the shape of a single upstream alert."""
    return _check(ALERT_SCHEMA, data)


def validate_envelope(data: Any) -> ValidationResult:
    """Check a push transport message wrapper."""
    return _check(ENVELOPE_SCHEMA, data)


def validate_api_response(data: Any) -> ValidationResult:
    """
    Check a pull transport response wrapper.

    A response is only usable when success is true and data is a valid
    telemetry record.
    """
    result = _check(API_RESPONSE_SCHEMA, data)
    if not result:
        return result
    if not data["success"]:
        return ValidationResult.failure(data.get("error") or "request was not successful", "success")
    if data.get("data") is None:
        return ValidationResult.failure("required key not provided", "data")
    return _check(TELEMETRY_SCHEMA, data["data"], prefix="data")
