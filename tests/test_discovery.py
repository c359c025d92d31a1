"""Tests for serial port discovery."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from sensorgate.services.discovery import PortFinder


def _port(device: str, description: str = "n/a", hwid: str = "n/a") -> SimpleNamespace:
    return SimpleNamespace(device=device, description=description, hwid=hwid)


PORTS = [
    _port("/dev/ttyS0"),
    _port("/dev/ttyACM0", description="Arduino Leonardo", hwid="USB VID:PID=2341:8036"),
    _port("/dev/ttyUSB0", description="FT232R"),
]


def test_fixed_port_skips_enumeration(make_config) -> None:
    list_ports_ = MagicMock(return_value=PORTS)
    finder = PortFinder(make_config(serial_port="/dev/ttyAMA0"), list_ports_=list_ports_)

    assert finder.candidates() == ["/dev/ttyAMA0"]
    list_ports_.assert_not_called()


def test_hint_matches_are_tried_first(make_config) -> None:
    finder = PortFinder(make_config(serial_port="auto", port_hint="arduino"), list_ports_=lambda: PORTS)

    assert finder.candidates() == ["/dev/ttyACM0", "/dev/ttyS0", "/dev/ttyUSB0"]


@pytest.mark.asyncio
async def test_excluded_candidate_is_skipped_until_cleared(make_config) -> None:
    finder = PortFinder(make_config(serial_port="auto", port_hint="2341"), list_ports_=lambda: PORTS)

    assert await finder.find_port() == "/dev/ttyACM0"
    finder.exclude_current_candidate()
    assert finder.exclusions == {"/dev/ttyACM0"}
    assert await finder.find_port() == "/dev/ttyS0"

    finder.clear_exclusions()
    assert await finder.find_port() == "/dev/ttyACM0"


@pytest.mark.asyncio
async def test_all_excluded_resets_exclusions(make_config) -> None:
    finder = PortFinder(make_config(serial_port="/dev/ttyAMA0"))

    await finder.find_port()
    finder.exclude_current_candidate()

    assert await finder.find_port() == "/dev/ttyAMA0"
    assert finder.exclusions == frozenset()


@pytest.mark.asyncio
async def test_waits_for_a_port_to_appear(make_config, caplog) -> None:
    list_ports_ = MagicMock(side_effect=[[], [], [_port("/dev/ttyACM1")]])
    finder = PortFinder(make_config(serial_port="auto"), list_ports_=list_ports_)

    assert await finder.find_port() == "/dev/ttyACM1"
    assert list_ports_.call_count == 3
    assert caplog.text.count("No serial ports found") == 1


def test_exclude_without_candidate_is_noop(make_config) -> None:
    finder = PortFinder(make_config())
    finder.exclude_current_candidate()

    assert finder.exclusions == frozenset()
