"""Option schemas for the telemetry connector and the state manager."""
from __future__ import annotations

import dataclasses
import logging
import os
from collections.abc import Mapping
from typing import Any

import voluptuous as vol

from .const import (
    DEFAULT_BATCH_UPDATE_DELAY,
    DEFAULT_HEARTBEAT_INTERVAL,
    DEFAULT_MAX_ALERT_HISTORY,
    DEFAULT_MAX_HISTORY_SIZE,
    DEFAULT_MAX_RECONNECT_ATTEMPTS,
    DEFAULT_MAX_UPDATE_QUEUE_SIZE,
    DEFAULT_MEMORY_CLEANUP_INTERVAL,
    DEFAULT_PULL_URL,
    DEFAULT_PUSH_URL,
    DEFAULT_RECONNECT_DELAY,
    DEFAULT_REQUEST_ATTEMPTS,
    DEFAULT_TIMEOUT,
    DEFAULT_UPDATE_FREQUENCY,
    DEFAULT_UPDATE_WINDOW,
    ENV_PREFIX,
    MAX_UPDATE_FREQUENCY,
)
from .errors import ConfigurationError

_LOGGER = logging.getLogger(__name__)

push_url = vol.All(str, vol.Match(r"^wss?://\S+$", msg="expected a ws:// or wss:// URL"))
pull_url = vol.All(str, vol.Match(r"^https?://\S+$", msg="expected an http:// or https:// URL"))
positive_float = vol.All(vol.Coerce(float), vol.Range(min=0, min_included=False))
non_negative_float = vol.All(vol.Coerce(float), vol.Range(min=0))
non_negative_int = vol.All(vol.Coerce(int), vol.Range(min=0))
positive_int = vol.All(vol.Coerce(int), vol.Range(min=1))
update_frequency = vol.All(
    vol.Coerce(float), vol.Range(min=0, max=MAX_UPDATE_FREQUENCY, min_included=False)
)


@dataclasses.dataclass(frozen=True)
class ConnectorOptions:
    """Validated options of a TelemetryConnector."""

    push_url: str = DEFAULT_PUSH_URL
    pull_url: str = DEFAULT_PULL_URL
    prefer_push: bool = True
    update_frequency: float = DEFAULT_UPDATE_FREQUENCY     # Hz
    max_reconnect_attempts: int = DEFAULT_MAX_RECONNECT_ATTEMPTS
    reconnect_delay: float = DEFAULT_RECONNECT_DELAY
    timeout: float = DEFAULT_TIMEOUT
    heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL
    request_attempts: int = DEFAULT_REQUEST_ATTEMPTS
    enable_logging: bool = True

    @property
    def poll_interval(self) -> float:
        return 1.0 / self.update_frequency


@dataclasses.dataclass(frozen=True)
class StateManagerOptions:
    """Validated options of a StateManager."""

    max_history_size: int = DEFAULT_MAX_HISTORY_SIZE
    batch_update_delay: float = DEFAULT_BATCH_UPDATE_DELAY
    memory_cleanup_interval: float = DEFAULT_MEMORY_CLEANUP_INTERVAL
    max_update_queue_size: int = DEFAULT_MAX_UPDATE_QUEUE_SIZE
    max_alert_history: int = DEFAULT_MAX_ALERT_HISTORY
    update_window: float = DEFAULT_UPDATE_WINDOW
    # Upper bound on how long a pending update may wait; None never forces a flush
    max_batch_wait: float | None = None
    enable_logging: bool = False


CONNECTOR_VALIDATORS = {
    "push_url": push_url,
    "pull_url": pull_url,
    "prefer_push": vol.Boolean(),
    "update_frequency": update_frequency,
    "max_reconnect_attempts": non_negative_int,
    "reconnect_delay": non_negative_float,
    "timeout": positive_float,
    "heartbeat_interval": positive_float,
    "request_attempts": positive_int,
    "enable_logging": vol.Boolean(),
}

STATE_MANAGER_VALIDATORS = {
    "max_history_size": positive_int,
    "batch_update_delay": non_negative_float,
    "memory_cleanup_interval": positive_float,
    "max_update_queue_size": positive_int,
    "max_alert_history": positive_int,
    "update_window": positive_float,
    "max_batch_wait": vol.Any(None, positive_float),
    "enable_logging": vol.Boolean(),
}

# Partial schemas: every key optional, no defaults; used for hot updates.
CONNECTOR_SCHEMA = vol.Schema(
    {vol.Optional(key): validator for key, validator in CONNECTOR_VALIDATORS.items()}
)
STATE_MANAGER_SCHEMA = vol.Schema(
    {vol.Optional(key): validator for key, validator in STATE_MANAGER_VALIDATORS.items()}
)


def _validate(schema: vol.Schema, data: Any) -> dict:
    if data is None:
        return {}
    if dataclasses.is_dataclass(data) and not isinstance(data, type):
        data = dataclasses.asdict(data)
    if not isinstance(data, Mapping):
        raise ConfigurationError(f"Options must be a mapping, got {type(data).__name__}")
    try:
        return schema(dict(data))
    except vol.Invalid as exc:
        path = [str(p) for p in exc.path]
        where = ".".join(path) or "<options>"
        raise ConfigurationError(f"Invalid option {where}: {exc.msg}", path) from exc


def connector_options(
    options: Mapping | ConnectorOptions | None = None,
    base: ConnectorOptions | None = None,
) -> ConnectorOptions:
    """
    Validate options and apply them on top of base (defaults when omitted).

    Raises ConfigurationError without partially applying anything.
    """
    changes = _validate(CONNECTOR_SCHEMA, options)
    return dataclasses.replace(base or ConnectorOptions(), **changes)


def state_manager_options(
    options: Mapping | StateManagerOptions | None = None,
    base: StateManagerOptions | None = None,
) -> StateManagerOptions:
    """Same as connector_options(), for the state manager."""
    changes = _validate(STATE_MANAGER_SCHEMA, options)
    return dataclasses.replace(base or StateManagerOptions(), **changes)


def options_from_env(environ: Mapping[str, str] | None = None) -> dict:
    """
    Read connector options from AEROVISION_* environment variables.

    Only variables that are set are returned, already validated and coerced.
    """
    environ = os.environ if environ is None else environ
    raw = {}
    for key in ("push_url", "pull_url", "prefer_push", "update_frequency", "timeout", "enable_logging"):
        value = environ.get(ENV_PREFIX + key.upper())
        if value not in (None, ""):
            raw[key] = value
    if raw:
        _LOGGER.debug("Connector options from environment: %s", sorted(raw))
    return _validate(CONNECTOR_SCHEMA, raw)
