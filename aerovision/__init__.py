import logging

from .config import ConnectorOptions, StateManagerOptions, options_from_env
from .connector import TelemetryConnector
from .const import DOMAIN, VERSION
from .diagnostics import DiagnosticLog
from .errors import (
    AeroVisionError,
    ApiResponseError,
    ConfigurationError,
    SubscriberError,
    TransportError,
    ValidationError,
)
from .schema import ValidationResult
from .snapshot import Snapshot, default_snapshot
from .state_manager import StateManager
from .subscribers import SubscriberList
from .transformer import TelemetryTransformer

__version__ = VERSION

__all__ = [
    "AeroVisionError",
    "ApiResponseError",
    "ConfigurationError",
    "ConnectorOptions",
    "DiagnosticLog",
    "DOMAIN",
    "Snapshot",
    "StateManager",
    "StateManagerOptions",
    "SubscriberError",
    "SubscriberList",
    "TelemetryConnector",
    "TelemetryTransformer",
    "TransportError",
    "ValidationError",
    "ValidationResult",
    "async_setup",
    "async_unload",
    "default_snapshot",
    "options_from_env",
]

_LOGGER = logging.getLogger(__name__)


async def async_setup(
    connector_options=None,
    state_options=None,
    diagnostics: DiagnosticLog | None = None,
) -> TelemetryConnector:
    """Build a state manager and a connector wired to it."""
    state_manager = StateManager(state_options, diagnostics=diagnostics)
    try:
        connector = TelemetryConnector(state_manager, connector_options, diagnostics=diagnostics)
    except ConfigurationError:
        state_manager.cleanup()
        raise
    _LOGGER.debug("AeroVision %s set up with options %s", VERSION, connector.options)
    return connector


async def async_unload(connector: TelemetryConnector) -> None:
    """Shut the connector down and release its state manager."""
    await connector.async_shutdown()
    connector.state_manager.cleanup()
