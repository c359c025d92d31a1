"""Tests for the MQTT publisher."""

from __future__ import annotations

import asyncio
import logging
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import aiomqtt
import msgspec
import pytest

from sensorgate.mqtt.messages import QueuedPublish, build_record_publishes
from sensorgate.transport.mqtt import MqttPublisher, configure_tls_context


def test_build_record_publishes_skips_null_records() -> None:
    messages = build_record_publishes("sensorgate", {"alerts": {"event": "UP"}, "sensors": None})

    assert messages == [QueuedPublish(topic_name="sensorgate/alerts", payload=b'{"event":"UP"}')]


def test_publish_queues_one_message_per_updated_topic(runtime_config) -> None:
    publisher = MqttPublisher(runtime_config)

    queued = publisher.publish({"alerts": {"event": "UP"}, "sensors": {"light": 32}, "status": None})

    assert queued == 2
    first = publisher.queue.get_nowait()
    assert first.topic_name == "sensorgate/alerts"
    assert msgspec.json.decode(publisher.queue.get_nowait().payload) == {"light": 32}


def test_full_queue_drops_oldest(make_config) -> None:
    publisher = MqttPublisher(make_config(mqtt_queue_limit=2))

    for index in range(3):
        publisher.enqueue(QueuedPublish(topic_name=f"t/{index}", payload=b"{}"))

    assert publisher.dropped == 1
    assert [publisher.queue.get_nowait().topic_name for _ in range(2)] == ["t/1", "t/2"]


@pytest.mark.asyncio
async def test_flush(runtime_config) -> None:
    publisher = MqttPublisher(runtime_config)
    assert await publisher.flush(0.01) is True

    publisher.enqueue(QueuedPublish(topic_name="t", payload=b"{}"))
    assert await publisher.flush(0.01) is False


@pytest.mark.asyncio
async def test_publisher_loop_drains_queue(runtime_config) -> None:
    publisher = MqttPublisher(runtime_config)
    client = MagicMock()
    client.publish = AsyncMock()
    publisher.publish({"alerts": {"event": "UP"}})

    task = asyncio.create_task(publisher._publisher_loop(client))
    assert await publisher.flush(1.0) is True
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)

    client.publish.assert_awaited_once_with("sensorgate/alerts", b'{"event":"UP"}', qos=0, retain=False)


@pytest.mark.asyncio
async def test_failed_publish_is_retried_before_newer_messages(runtime_config) -> None:
    publisher = MqttPublisher(runtime_config)
    client = MagicMock()
    client.publish = AsyncMock(side_effect=[aiomqtt.MqttError("gone"), None, None])
    publisher.enqueue(QueuedPublish(topic_name="t/1", payload=b"{}"))
    publisher.enqueue(QueuedPublish(topic_name="t/2", payload=b"{}"))

    with pytest.raises(aiomqtt.MqttError):
        await publisher._publisher_loop(client)
    assert await publisher.flush(0.01) is False

    task = asyncio.create_task(publisher._publisher_loop(client))
    assert await publisher.flush(1.0) is True
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)

    topics = [call.args[0] for call in client.publish.await_args_list]
    assert topics == ["t/1", "t/1", "t/2"]


@pytest.mark.asyncio
async def test_subscriber_loop_forwards_commands(runtime_config) -> None:
    on_command = AsyncMock()
    publisher = MqttPublisher(runtime_config, on_command=on_command)

    async def _messages():
        yield SimpleNamespace(topic="sensorgate/command", payload=b"00ab#on\n")
        yield SimpleNamespace(topic="sensorgate/command", payload=None)

    client = SimpleNamespace(messages=_messages())
    await publisher._subscriber_loop(client)

    on_command.assert_awaited_once_with("00ab#on")
    assert publisher.command_topic == "sensorgate/command"


@pytest.mark.parametrize(("muted", "level"), [(False, logging.WARNING), (True, logging.DEBUG)])
def test_retry_log_respects_mute(runtime_config, caplog, muted: bool, level: int) -> None:
    publisher = MqttPublisher(runtime_config)
    publisher.set_muted(muted)
    retry_state = MagicMock()
    retry_state.outcome.exception.return_value = OSError("refused")
    retry_state.next_action.sleep = 2.0

    with caplog.at_level(logging.DEBUG, logger="sensorgate.mqtt"):
        publisher._log_retry_attempt(retry_state)

    assert caplog.records[-1].levelno == level
    assert "Broker unreachable" in caplog.records[-1].getMessage()


def test_tls_context(make_config, tmp_path) -> None:
    assert configure_tls_context(make_config()) is None
    with pytest.raises(RuntimeError):
        configure_tls_context(make_config(mqtt_tls=True, mqtt_cafile=str(tmp_path / "missing.pem")))
    assert configure_tls_context(make_config(mqtt_tls=True)) is not None


def test_connection_state_machine(runtime_config) -> None:
    publisher = MqttPublisher(runtime_config)

    assert publisher.fsm_state == MqttPublisher.STATE_DISCONNECTED
    publisher.trigger("connected")
    assert publisher.fsm_state == MqttPublisher.STATE_DISCONNECTED
    publisher.trigger("connect")
    publisher.trigger("connected")
    assert publisher.fsm_state == MqttPublisher.STATE_READY
