"""Settings loader for the sensor gateway.

Configuration lives in a single JSON (or TOML) file. The file is decoded with
msgspec and converted into a strongly typed ``RuntimeConfig``; validation
happens in ``RuntimeConfig.__post_init__`` so that directly constructed
configs (tests, embedding) get the same checks as loaded ones.
"""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import msgspec

from ..const import (
    DEFAULT_CLOSE_SETTLE_DELAY,
    DEFAULT_CONFIG_PATH,
    DEFAULT_DELIMITER,
    DEFAULT_DISCOVERY_INTERVAL,
    DEFAULT_FRAME_MODE,
    DEFAULT_HANDSHAKE_TIMEOUT,
    DEFAULT_HEARTBEAT_INTERVAL,
    DEFAULT_IDENTIFY_DELAY,
    DEFAULT_MAX_FRAME_BYTES,
    DEFAULT_MQTT_COMMAND_TOPIC,
    DEFAULT_MQTT_HOST,
    DEFAULT_MQTT_PORT,
    DEFAULT_MQTT_QUEUE_LIMIT,
    DEFAULT_MQTT_RECONNECT_DELAY,
    DEFAULT_MQTT_TOPIC,
    DEFAULT_OPEN_ATTEMPTS,
    DEFAULT_OPEN_RETRY_DELAY,
    DEFAULT_RX_LENGTH,
    DEFAULT_SERIAL_BAUD,
    DEFAULT_SERIAL_PORT,
    DEFAULT_TX_LENGTH,
    FRAME_MODES,
    LOG_FORMATS,
)

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "SENSORGATE_CONFIG"


class FieldSpec(msgspec.Struct, frozen=True):
    """One entry of the field-type table as written in the config file."""

    short_name: str
    name_in_db: str
    topics: tuple[str, ...] = ()
    force_send: bool = True
    decoder: str = "text"


@dataclass(slots=True)
class RuntimeConfig:
    """Strongly typed configuration for the gateway."""

    serial_port: str = DEFAULT_SERIAL_PORT
    port_hint: str = ""
    serial_baud: int = DEFAULT_SERIAL_BAUD
    frame_mode: str = DEFAULT_FRAME_MODE
    rx_length: int = DEFAULT_RX_LENGTH
    tx_length: int = DEFAULT_TX_LENGTH
    delimiter: str = DEFAULT_DELIMITER
    relay: bool = False
    heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL
    identify_delay: float = DEFAULT_IDENTIFY_DELAY
    handshake_timeout: float = DEFAULT_HANDSHAKE_TIMEOUT
    close_settle_delay: float = DEFAULT_CLOSE_SETTLE_DELAY
    open_attempts: int = DEFAULT_OPEN_ATTEMPTS
    open_retry_delay: float = DEFAULT_OPEN_RETRY_DELAY
    discovery_interval: float = DEFAULT_DISCOVERY_INTERVAL
    max_frame_bytes: int = DEFAULT_MAX_FRAME_BYTES

    mqtt_host: str = DEFAULT_MQTT_HOST
    mqtt_port: int = DEFAULT_MQTT_PORT
    mqtt_user: str | None = None
    mqtt_pass: str | None = field(default=None, repr=False)
    mqtt_tls: bool = False
    mqtt_cafile: str | None = None
    mqtt_topic: str = DEFAULT_MQTT_TOPIC
    mqtt_command_topic: str = DEFAULT_MQTT_COMMAND_TOPIC
    mqtt_queue_limit: int = DEFAULT_MQTT_QUEUE_LIMIT
    mqtt_reconnect_delay: float = DEFAULT_MQTT_RECONNECT_DELAY

    topics: tuple[str, ...] = ()
    fields: tuple[FieldSpec, ...] = ()

    console_enabled: bool = True
    debug_logging: bool = False
    log_format: str = "auto"

    @property
    def delimiter_bytes(self) -> bytes:
        return self.delimiter.encode("latin-1")

    @property
    def handshake_required(self) -> bool:
        """Only the relay side actively challenges a fixed-length link."""
        return self.relay and self.frame_mode == "length"

    def __post_init__(self) -> None:
        if self.frame_mode not in FRAME_MODES:
            raise ValueError(
                f"frame_mode must be one of {sorted(FRAME_MODES)}, got {self.frame_mode!r}"
            )
        if self.frame_mode == "delimiter" and not self.delimiter:
            raise ValueError("delimiter must be non-empty in delimiter mode")
        if self.log_format not in LOG_FORMATS:
            raise ValueError(f"log_format must be one of {sorted(LOG_FORMATS)}, got {self.log_format!r}")

        for name in ("serial_baud", "rx_length", "tx_length", "open_attempts", "max_frame_bytes", "mqtt_queue_limit"):
            self._require_positive(name, int(getattr(self, name)))
        for name in ("heartbeat_interval", "handshake_timeout", "discovery_interval"):
            self._require_positive_float(name, float(getattr(self, name)))
        for name in ("identify_delay", "close_settle_delay", "open_retry_delay", "mqtt_reconnect_delay"):
            if float(getattr(self, name)) < 0.0:
                raise ValueError(f"{name} must not be negative")

        if self.relay and self.tx_length <= 2:
            raise ValueError("tx_length must leave room for the 2-byte address in relay mode")

        self.mqtt_topic = self._build_topic_prefix(self.mqtt_topic)
        self.topics = tuple(topic.strip() for topic in self.topics)
        if any(not topic for topic in self.topics):
            raise ValueError("topic names must be non-empty")
        if any(mark in name for name in (*self.topics, self.mqtt_topic, self.mqtt_command_topic) for mark in "+#"):
            raise ValueError("MQTT wildcards are not allowed in topic names")
        self._validate_fields()

    def _validate_fields(self) -> None:
        seen: set[str] = set()
        known_topics = set(self.topics)
        for spec in self.fields:
            if not spec.short_name:
                raise ValueError("field short_name must be non-empty")
            if spec.short_name in seen:
                raise ValueError(f"duplicate field short_name {spec.short_name!r}")
            seen.add(spec.short_name)
            unknown = [topic for topic in spec.topics if topic not in known_topics]
            if unknown:
                raise ValueError(
                    f"field {spec.short_name!r} targets unconfigured topic(s): {', '.join(unknown)}"
                )

    @staticmethod
    def _build_topic_prefix(prefix: str) -> str:
        segments = [segment for segment in prefix.split("/") if segment]
        normalized = "/".join(segments)
        if not normalized:
            raise ValueError("mqtt_topic must contain at least one segment")
        return normalized

    @staticmethod
    def _require_positive(name: str, value: int) -> int:
        if value <= 0:
            raise ValueError(f"{name} must be a positive integer")
        return value

    @staticmethod
    def _require_positive_float(name: str, value: float) -> float:
        if value <= 0.0:
            raise ValueError(f"{name} must be a positive number")
        return value


def get_config_path(argv: list[str] | None = None) -> Path:
    """Resolve the config path from argv, then the environment, then the default."""
    args = sys.argv[1:] if argv is None else argv
    if args:
        return Path(args[0])
    return Path(os.environ.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH)


def _decode_raw(path: Path) -> dict[str, Any]:
    data = path.read_bytes()
    if path.suffix == ".toml":
        raw = msgspec.toml.decode(data)
    else:
        raw = msgspec.json.decode(data)
    if not isinstance(raw, dict):
        raise ValueError(f"{path}: top level must be a table/object")
    return raw


def load_runtime_config(path: Path | str | None = None) -> RuntimeConfig:
    """Load and validate the gateway configuration file."""
    config_path = Path(path) if path is not None else get_config_path()

    if not config_path.exists():
        logger.warning("Config file %s not found; using defaults.", config_path)
        return RuntimeConfig()

    try:
        raw = _decode_raw(config_path)
        return msgspec.convert(raw, RuntimeConfig, strict=False)
    except msgspec.ValidationError as exc:
        raise ValueError(f"Invalid configuration in {config_path}: {exc}") from exc
    except msgspec.DecodeError as exc:
        raise ValueError(f"Malformed configuration file {config_path}: {exc}") from exc


__all__ = ["CONFIG_ENV_VAR", "FieldSpec", "RuntimeConfig", "get_config_path", "load_runtime_config"]
