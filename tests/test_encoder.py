"""Tests for the outbound encoder."""

from __future__ import annotations

import pytest

from sensorgate.const import HEARTBEAT_TEXT, IDENTIFY_TEXT
from sensorgate.protocol.encoder import OutboundMessage, encode_outbound, frame_text


def test_relay_message_starts_with_address() -> None:
    frame = encode_outbound(OutboundMessage(text="hi", address="00ab"), length=10, relay=True)

    assert len(frame) == 10
    assert frame[:2].hex() == "00ab"
    assert frame[2:] == b"hi" + b"\x00" * 6


def test_relay_message_without_address_is_broadcast() -> None:
    frame = encode_outbound(OutboundMessage(text="all"), length=8, relay=True)

    assert frame[:2] == b"\xff\xff"
    assert frame[2:5] == b"all"


def test_internal_message_skips_addressing_on_relay() -> None:
    frame = encode_outbound(OutboundMessage(text=IDENTIFY_TEXT, internal=True), length=16, relay=True)

    assert frame.startswith(b"\x00\x00\x01Identify")
    assert frame[11:] == b"\x00" * 5


def test_non_relay_writes_text_at_offset_zero() -> None:
    frame = encode_outbound(OutboundMessage(text="hello", address="0102"), length=8, relay=False)

    assert frame == b"hello\x00\x00\x00"


def test_text_is_truncated_to_frame_length() -> None:
    assert encode_outbound(OutboundMessage(text="abcdef"), length=4, relay=False) == b"abcd"
    assert encode_outbound(OutboundMessage(text="abcdef", address="1234"), length=4, relay=True) == b"\x12\x34ab"


def test_internal_text_survives_encode_and_trim() -> None:
    frame = encode_outbound(OutboundMessage(text=HEARTBEAT_TEXT, internal=True), length=12, relay=False)

    assert frame_text(frame) == HEARTBEAT_TEXT


def test_address_must_be_four_hex_digits() -> None:
    with pytest.raises(ValueError):
        OutboundMessage(text="x", address="12g4")
    with pytest.raises(ValueError):
        OutboundMessage(text="x", address="123")


def test_describe_names_address() -> None:
    assert OutboundMessage(text="on", address="00AB").describe() == "'on' to 0x00ab"
    assert OutboundMessage(text="raw", internal=True).describe() == "'raw'"
