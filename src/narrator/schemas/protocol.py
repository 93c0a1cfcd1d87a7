"""Tagged JSON messages exchanged over the reader channel."""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from ..errors import ProtocolError

READER_IDENTITY = "reader"


class _Message(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


class IdentifyMessage(_Message):
    type: Literal["identify"] = "identify"
    value: str


class PlayMessage(_Message):
    type: Literal["play"] = "play"
    value: str


class ReadMessage(_Message):
    type: Literal["read"] = "read"
    value: str


class ReaderStatusMessage(_Message):
    type: Literal["reader"] = "reader"
    value: Literal["connected", "disconnected"]


class StatusRequestMessage(_Message):
    type: Literal["status"] = "status"


ProtocolMessage = Annotated[
    Union[
        IdentifyMessage,
        PlayMessage,
        ReadMessage,
        ReaderStatusMessage,
        StatusRequestMessage,
    ],
    Field(discriminator="type"),
]

_ADAPTER: TypeAdapter[ProtocolMessage] = TypeAdapter(ProtocolMessage)


def decode_message(raw: str | bytes) -> ProtocolMessage:
    """Parse a single frame into a protocol message.

    Raises:
        ProtocolError: if the frame is not JSON or does not match any variant.
    """
    try:
        return _ADAPTER.validate_json(raw)
    except ValidationError as exc:
        raise ProtocolError(f"Unrecognised frame: {exc.errors(include_url=False)}") from exc


def encode_message(message: _Message) -> str:
    """Serialise a protocol message to its wire form."""
    return message.model_dump_json()


def identify_message() -> IdentifyMessage:
    return IdentifyMessage(value=READER_IDENTITY)


__all__ = [
    "READER_IDENTITY",
    "IdentifyMessage",
    "PlayMessage",
    "ReadMessage",
    "ReaderStatusMessage",
    "StatusRequestMessage",
    "ProtocolMessage",
    "decode_message",
    "encode_message",
    "identify_message",
]
