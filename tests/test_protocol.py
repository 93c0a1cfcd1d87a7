"""Tests for the reader channel wire format."""

import json

import pytest

from narrator.errors import ProtocolError
from narrator.schemas.protocol import (
    IdentifyMessage,
    PlayMessage,
    ReaderStatusMessage,
    StatusRequestMessage,
    decode_message,
    encode_message,
    identify_message,
)


def test_identify_frame_wire_form():
    frame = json.loads(encode_message(identify_message()))

    assert frame == {"type": "identify", "value": "reader"}


def test_decode_play_message():
    message = decode_message('{"type": "play", "value": "Hello world"}')

    assert isinstance(message, PlayMessage)
    assert message.value == "Hello world"


def test_decode_accepts_bytes():
    message = decode_message(b'{"type": "status"}')

    assert isinstance(message, StatusRequestMessage)


def test_decode_reader_status():
    message = decode_message('{"type": "reader", "value": "connected"}')

    assert isinstance(message, ReaderStatusMessage)
    assert message.value == "connected"


def test_decode_ignores_extra_fields():
    message = decode_message('{"type": "identify", "value": "popup", "extra": 1}')

    assert message == IdentifyMessage(value="popup")


@pytest.mark.parametrize(
    "frame",
    [
        "not json",
        "[]",
        '{"value": "no type"}',
        '{"type": "dance", "value": "x"}',
        '{"type": "play"}',
        '{"type": "reader", "value": "maybe"}',
    ],
)
def test_decode_rejects_malformed_frames(frame):
    with pytest.raises(ProtocolError):
        decode_message(frame)
