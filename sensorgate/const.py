"""Protocol constants and runtime defaults for the sensor gateway."""

from __future__ import annotations

from typing import Final

# --- Control traffic ---------------------------------------------------

CONTROL_PREFIX: Final[bytes] = b"\x00\x00\x01"
IDENTIFY_TEXT: Final[str] = CONTROL_PREFIX.decode("ascii") + "Identify"
HEARTBEAT_TEXT: Final[str] = CONTROL_PREFIX.decode("ascii") + "HB"

REPLY_MARKER: Final[bytes] = b"\xfe\xfe"
REPLY_KIND_IDENTIFY: Final[int] = 0x01
HEARTBEAT_ADDRESS: Final[str] = "fefe"
HEARTBEAT_ACK_BODY: Final[bytes] = b"\x01HB"

BROADCAST_ADDRESS: Final[str] = "ffff"
ADDRESS_BYTES: Final[int] = 2

# --- Heartbeat windows (multiples of the heartbeat interval) ------------

HEARTBEAT_WARN_LOW: Final[float] = 1.5
HEARTBEAT_WARN_HIGH: Final[float] = 2.5

# --- Defaults ----------------------------------------------------------

DEFAULT_CONFIG_PATH: Final[str] = "/etc/sensorgate/config.json"
DEFAULT_SERIAL_PORT: Final[str] = "auto"
DEFAULT_SERIAL_BAUD: Final[int] = 115200
DEFAULT_FRAME_MODE: Final[str] = "length"
DEFAULT_RX_LENGTH: Final[int] = 80
DEFAULT_TX_LENGTH: Final[int] = 80
DEFAULT_DELIMITER: Final[str] = "\r\n"
DEFAULT_HEARTBEAT_INTERVAL: Final[float] = 60.0
DEFAULT_IDENTIFY_DELAY: Final[float] = 1.0
DEFAULT_HANDSHAKE_TIMEOUT: Final[float] = 3.0
DEFAULT_CLOSE_SETTLE_DELAY: Final[float] = 1.5
DEFAULT_OPEN_ATTEMPTS: Final[int] = 3
DEFAULT_OPEN_RETRY_DELAY: Final[float] = 1.0
DEFAULT_DISCOVERY_INTERVAL: Final[float] = 2.0
DEFAULT_MAX_FRAME_BYTES: Final[int] = 1024
DEFAULT_READ_CHUNK: Final[int] = 256

DEFAULT_MQTT_HOST: Final[str] = "localhost"
DEFAULT_MQTT_PORT: Final[int] = 1883
DEFAULT_MQTT_TOPIC: Final[str] = "sensorgate"
DEFAULT_MQTT_COMMAND_TOPIC: Final[str] = "command"
DEFAULT_MQTT_QUEUE_LIMIT: Final[int] = 256
DEFAULT_MQTT_RECONNECT_DELAY: Final[float] = 2.0
DEFAULT_SHUTDOWN_FLUSH_TIMEOUT: Final[float] = 2.0

SUPERVISOR_MIN_BACKOFF: Final[float] = 0.5
SUPERVISOR_MAX_BACKOFF: Final[float] = 30.0
SUPERVISOR_HEALTHY_WINDOW: Final[float] = 30.0

FRAME_MODES: Final[frozenset[str]] = frozenset({"length", "delimiter"})
LOG_FORMATS: Final[frozenset[str]] = frozenset({"auto", "json", "text"})
