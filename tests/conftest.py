"""Pytest configuration for sensor gateway tests."""

from __future__ import annotations

import logging
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

PACKAGE_ROOT = Path(__file__).resolve().parents[1]
if str(PACKAGE_ROOT) not in sys.path:
    sys.path.insert(0, str(PACKAGE_ROOT))

from sensorgate.config.settings import FieldSpec, RuntimeConfig  # noqa: E402
from sensorgate.services.fields import FieldRegistry  # noqa: E402

TEST_TOPICS = ("alerts", "sensors", "status")
TEST_FIELDS = (
    FieldSpec(short_name="id", name_in_db="device_id"),
    FieldSpec(short_name="event", name_in_db="event", topics=("alerts",)),
    FieldSpec(short_name="light", name_in_db="light", topics=("sensors",)),
    FieldSpec(short_name="count", name_in_db="count", topics=("sensors",), decoder="int"),
    FieldSpec(short_name="quiet", name_in_db="quiet", topics=("status",), force_send=False),
    FieldSpec(short_name="ping", name_in_db="ping", decoder="ping"),
)


@pytest.fixture()
def make_config() -> Callable[..., RuntimeConfig]:
    """Build configs with the test field table and near-zero delays."""

    def _factory(**overrides: Any) -> RuntimeConfig:
        params: dict[str, Any] = {
            "serial_port": "/dev/ttyTEST0",
            "rx_length": 16,
            "tx_length": 16,
            "identify_delay": 0.0,
            "handshake_timeout": 0.05,
            "close_settle_delay": 0.0,
            "open_retry_delay": 0.0,
            "discovery_interval": 0.01,
            "topics": TEST_TOPICS,
            "fields": TEST_FIELDS,
            "console_enabled": False,
        }
        params.update(overrides)
        return RuntimeConfig(**params)

    return _factory


@pytest.fixture()
def runtime_config(make_config: Callable[..., RuntimeConfig]) -> RuntimeConfig:
    return make_config(frame_mode="delimiter")


@pytest.fixture()
def relay_config(make_config: Callable[..., RuntimeConfig]) -> RuntimeConfig:
    return make_config(relay=True)


@pytest.fixture()
def registry(runtime_config: RuntimeConfig) -> FieldRegistry:
    return FieldRegistry.from_config(runtime_config)


@pytest.fixture(autouse=True)
def reset_logging_handlers():
    """Close and remove all logging handlers after each test to prevent ResourceWarnings."""
    yield
    root = logging.getLogger()
    for handler in root.handlers[:]:
        try:
            handler.close()
        except (OSError, RuntimeError):
            pass
        root.removeHandler(handler)
