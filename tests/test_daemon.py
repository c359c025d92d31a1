"""Tests for the daemon orchestration."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from sensorgate.daemon import GatewayDaemon, main


async def _forever() -> None:
    await asyncio.Event().wait()


def test_wiring(runtime_config) -> None:
    daemon = GatewayDaemon(runtime_config)

    assert daemon.gateway.publish == daemon.publisher.publish
    assert [spec.name for spec in daemon._setup_supervision()] == ["serial-link", "mqtt-link"]


def test_console_task_is_optional(make_config) -> None:
    daemon = GatewayDaemon(make_config(console_enabled=True))

    specs = daemon._setup_supervision()

    assert specs[-1].name == "console"
    assert not specs[-1].essential
    assert all(spec.essential for spec in specs[:-1])


@pytest.mark.asyncio
async def test_bus_commands_cannot_run_console_commands(runtime_config) -> None:
    daemon = GatewayDaemon(runtime_config)
    daemon.console.handle_line = AsyncMock(return_value=True)

    await daemon.handle_bus_command("00ab#on")

    daemon.console.handle_line.assert_awaited_once_with("00ab#on", allow_commands=False)


@pytest.mark.asyncio
async def test_stop_request_closes_link_and_flushes(runtime_config) -> None:
    daemon = GatewayDaemon(runtime_config)
    daemon.gateway.run = _forever
    daemon.publisher.run = _forever
    daemon.gateway.close = MagicMock()
    daemon.publisher.flush = AsyncMock(return_value=True)

    with patch.object(GatewayDaemon, "_install_signal_handlers"):
        task = asyncio.create_task(daemon.run())
        await asyncio.sleep(0.01)
        daemon.request_stop("SIGTERM")
        await asyncio.wait_for(task, timeout=1)

    daemon.gateway.close.assert_called_once_with()
    daemon.publisher.flush.assert_awaited_once()


@pytest.mark.asyncio
async def test_console_eof_keeps_links_running(make_config) -> None:
    daemon = GatewayDaemon(make_config(console_enabled=True))
    daemon._run_console = AsyncMock(return_value=None)
    daemon.gateway.run = AsyncMock(side_effect=_forever)
    daemon.publisher.run = AsyncMock(side_effect=_forever)
    daemon.publisher.flush = AsyncMock(return_value=True)

    with patch.object(GatewayDaemon, "_install_signal_handlers"):
        task = asyncio.create_task(daemon.run())
        await asyncio.sleep(0.05)

        daemon._run_console.assert_awaited_once()
        assert not task.done()

        daemon.request_stop("SIGTERM")
        await asyncio.wait_for(task, timeout=1)

    daemon.gateway.run.assert_awaited_once()
    daemon.publisher.run.assert_awaited_once()


@pytest.mark.asyncio
async def test_link_task_exit_stops_daemon(runtime_config) -> None:
    daemon = GatewayDaemon(runtime_config)
    daemon.gateway.run = AsyncMock(return_value=None)
    daemon.publisher.run = _forever
    daemon.publisher.flush = AsyncMock(return_value=True)

    with patch.object(GatewayDaemon, "_install_signal_handlers"):
        await asyncio.wait_for(daemon.run(), timeout=1)

    daemon.gateway.run.assert_awaited_once()


def test_main_exits_on_bad_config() -> None:
    with patch("sensorgate.daemon.load_runtime_config", side_effect=ValueError("bad")):
        with pytest.raises(SystemExit) as excinfo:
            main()

    assert excinfo.value.code == 1
