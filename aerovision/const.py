DOMAIN = "aerovision"
VERSION = "0.3.0"

# Default endpoints of the detection backend
DEFAULT_PUSH_URL = "ws://localhost:8080/aerovision/stream"
DEFAULT_PULL_URL = "http://localhost:8080/aerovision/data"

# Connector defaults (seconds unless stated otherwise)
DEFAULT_UPDATE_FREQUENCY = 5.0       # Hz, pull transport polling rate
MAX_UPDATE_FREQUENCY = 60.0          # Hz
DEFAULT_MAX_RECONNECT_ATTEMPTS = 5
DEFAULT_RECONNECT_DELAY = 1.0        # base delay, doubled on every attempt
DEFAULT_TIMEOUT = 5.0                # push open timeout and pull request timeout
DEFAULT_HEARTBEAT_INTERVAL = 30.0
DEFAULT_REQUEST_ATTEMPTS = 1         # pull requests are retried on timeout only

# State manager defaults
DEFAULT_MAX_HISTORY_SIZE = 50
DEFAULT_BATCH_UPDATE_DELAY = 0.016   # ~60 flushes per second at most
DEFAULT_MEMORY_CLEANUP_INTERVAL = 30.0
DEFAULT_MAX_UPDATE_QUEUE_SIZE = 1000
DEFAULT_MAX_ALERT_HISTORY = 100
DEFAULT_UPDATE_WINDOW = 5.0          # update-tracking queue keeps this many seconds

# Diagnostics
DEFAULT_MAX_DIAGNOSTIC_ENTRIES = 100

# Transformer limits
MAX_TRANSFORMED_ALERTS = 10          # alerts kept from a single telemetry record
MAX_THREAT_SCORE = 100
MAX_PERCENTAGE = 100

# Connection status / data source
STATUS_CONNECTED = "connected"
STATUS_CONNECTING = "connecting"
STATUS_DISCONNECTED = "disconnected"

SOURCE_PUSH = "push"
SOURCE_PULL = "pull"
SOURCE_SYNTHETIC = "synthetic"

# Canonical enums, ordered by increasing severity where that applies
POWER_MODES = ("IDLE", "ACTIVE", "ALERT")
CAMERA_CONNECTED = "Connected"
CAMERA_LOST = "Lost"
ZONES = ("PUBLIC", "BUFFER", "RESTRICTED", "CRITICAL")
THREAT_LEVELS = ("LOW", "MEDIUM", "HIGH", "CRITICAL")
HIGH_THREAT_LEVELS = ("HIGH", "CRITICAL")
TRAJECTORY_STABILITIES = ("Stable", "Moderate", "Erratic")

# Upstream video source → canonical source
VIDEO_SOURCE_MAP: dict[str, str] = {
    "webcam": "webcam",
    "drone": "drone",
    "rtsp": "drone",
    "mjpeg": "drone",
}

# Upstream alert level → canonical alert type
ALERT_TYPE_MAP: dict[str, str] = {
    "CRITICAL": "critical",
    "WARNING": "warning",
    "INFO": "info",
}

# Prediction confidence buckets (lower bound, label), checked in order
CONFIDENCE_THRESHOLDS = ((0.8, "High"), (0.5, "Medium"))

# Push transport envelope types
MESSAGE_SYSTEM_UPDATE = "system_update"
MESSAGE_TRACK_UPDATE = "track_update"
MESSAGE_ALERT = "alert"
MESSAGE_HEARTBEAT = "heartbeat"
MESSAGE_TYPES = (MESSAGE_SYSTEM_UPDATE, MESSAGE_TRACK_UPDATE, MESSAGE_ALERT, MESSAGE_HEARTBEAT)
MESSAGE_PING = "ping"

# Display defaults
OFFLINE_PROCESSING_STATUS = "Offline"
UNKNOWN_PROCESSING_STATUS = "Unknown"
OFFLINE_RECOMMENDATION = "System offline - no active monitoring"
NO_PREDICTION = "No prediction available"
EMPTY_RESOLUTION = "0x0"

# Environment variables read by config.options_from_env()
ENV_PREFIX = "AEROVISION_"
