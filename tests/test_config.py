"""Tests for runtime configuration loading and validation."""

from __future__ import annotations

from pathlib import Path

import pytest

from sensorgate.config.settings import (
    CONFIG_ENV_VAR,
    FieldSpec,
    RuntimeConfig,
    get_config_path,
    load_runtime_config,
)
from sensorgate.const import DEFAULT_CONFIG_PATH

EXAMPLE_CONFIG = Path(__file__).resolve().parents[1] / "sensorgate.example.json"


def test_defaults_are_valid() -> None:
    config = RuntimeConfig()

    assert config.frame_mode == "length"
    assert config.handshake_required is False
    assert config.delimiter_bytes == b"\r\n"
    assert "hunter2" not in repr(RuntimeConfig(mqtt_pass="hunter2"))


def test_handshake_only_on_relay_fixed_length() -> None:
    assert RuntimeConfig(relay=True).handshake_required is True
    assert RuntimeConfig(relay=True, frame_mode="delimiter").handshake_required is False


def test_topic_prefix_is_normalised() -> None:
    assert RuntimeConfig(mqtt_topic="/home//sensors/").mqtt_topic == "home/sensors"


@pytest.mark.parametrize(
    "overrides",
    [
        {"frame_mode": "packet"},
        {"frame_mode": "delimiter", "delimiter": ""},
        {"rx_length": 0},
        {"heartbeat_interval": 0},
        {"close_settle_delay": -1.0},
        {"relay": True, "tx_length": 2},
        {"mqtt_topic": "///"},
        {"topics": ("alerts", " ")},
        {"topics": ("alerts/#",)},
        {"fields": (FieldSpec("a", "a"), FieldSpec("a", "b"))},
        {"topics": ("alerts",), "fields": (FieldSpec("a", "a", topics=("sensors",)),)},
    ],
)
def test_invalid_values_are_rejected(overrides) -> None:
    with pytest.raises(ValueError):
        RuntimeConfig(**overrides)


def test_load_json(tmp_path: Path) -> None:
    path = tmp_path / "gateway.json"
    path.write_text(
        '{"serial_port": "/dev/ttyUSB1", "relay": true, "topics": ["alerts"],'
        ' "fields": [{"short_name": "event", "name_in_db": "event", "topics": ["alerts"]}]}'
    )

    config = load_runtime_config(path)

    assert config.serial_port == "/dev/ttyUSB1"
    assert config.relay is True
    assert config.fields == (FieldSpec(short_name="event", name_in_db="event", topics=("alerts",)),)


def test_load_toml(tmp_path: Path) -> None:
    path = tmp_path / "gateway.toml"
    path.write_text(
        'frame_mode = "delimiter"\n'
        'delimiter = ";"\n'
        'topics = ["sensors"]\n'
        "\n"
        "[[fields]]\n"
        'short_name = "light"\n'
        'name_in_db = "light"\n'
        'topics = ["sensors"]\n'
        'decoder = "int"\n'
    )

    config = load_runtime_config(path)

    assert config.delimiter_bytes == b";"
    assert config.fields[0].decoder == "int"


def test_load_example_config() -> None:
    config = load_runtime_config(EXAMPLE_CONFIG)

    assert config.relay is True
    assert {spec.short_name for spec in config.fields} >= {"id", "event", "ping"}


def test_missing_file_uses_defaults(tmp_path: Path, caplog) -> None:
    config = load_runtime_config(tmp_path / "absent.json")

    assert config == RuntimeConfig()
    assert "not found" in caplog.text


@pytest.mark.parametrize(
    "content",
    ['{"frame_mode": "packet"}', '{"serial_baud": "fast"}', "{not json", "[1, 2]"],
)
def test_bad_files_raise_value_error(tmp_path: Path, content: str) -> None:
    path = tmp_path / "gateway.json"
    path.write_text(content)

    with pytest.raises(ValueError):
        load_runtime_config(path)


def test_config_path_resolution(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
    assert get_config_path([]) == Path(DEFAULT_CONFIG_PATH)

    monkeypatch.setenv(CONFIG_ENV_VAR, "/tmp/env.json")
    assert get_config_path([]) == Path("/tmp/env.json")
    assert get_config_path(["/tmp/arg.toml"]) == Path("/tmp/arg.toml")
