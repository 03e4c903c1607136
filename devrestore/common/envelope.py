"""Envelope helpers: codec, discriminants and typed field access."""
from __future__ import annotations

import plistlib
from enum import Enum
from typing import Any, Dict, Mapping, Protocol

from ..errors import ProtocolError

Envelope = Dict[str, Any]

MSG_TYPE_KEY = "MsgType"
DATA_TYPE_KEY = "DataType"
COMMAND_KEY = "Command"


class _Tag(str, Enum):
    """String-valued tag with an ``UNKNOWN`` fallback member."""

    @classmethod
    def parse(cls, value: Any) -> "_Tag":
        if isinstance(value, str):
            try:
                return cls(value)
            except ValueError:
                pass
        return cls["UNKNOWN"]


class MessageKind(_Tag):
    PROGRESS = "ProgressMsg"
    DATA_REQUEST = "DataRequestMsg"
    STATUS = "StatusMsg"
    UNKNOWN = "<unknown>"


class DataType(_Tag):
    SYSTEM_IMAGE = "SystemImageData"
    KERNEL_CACHE = "KernelCache"
    NOR_DATA = "NORData"
    UNKNOWN = "<unknown>"


class ASRCommand(_Tag):
    OOB_DATA = "OOBData"
    PAYLOAD = "Payload"
    UNKNOWN = "<unknown>"


class EnvelopeCodec(Protocol):
    """Serializes envelopes to and from bytes."""

    def encode(self, envelope: Mapping[str, Any]) -> bytes:
        ...

    def decode(self, data: bytes) -> Envelope:
        ...


class PlistCodec:
    """XML property list codec used by restored and ASR."""

    def __init__(self, fmt: plistlib.PlistFormat = plistlib.FMT_XML) -> None:
        self.fmt = fmt

    def encode(self, envelope: Mapping[str, Any]) -> bytes:
        return plistlib.dumps(dict(envelope), fmt=self.fmt, sort_keys=False)

    def decode(self, data: bytes) -> Envelope:
        try:
            value = plistlib.loads(data)
        except Exception as exc:  # plistlib surfaces malformed input as assorted error types
            raise ProtocolError(f"undecodable envelope: {exc}") from exc
        if not isinstance(value, dict):
            raise ProtocolError(f"envelope is a {type(value).__name__}, expected a dictionary")
        return value


def message_kind(envelope: Mapping[str, Any]) -> MessageKind:
    return MessageKind.parse(envelope.get(MSG_TYPE_KEY))


def data_type(envelope: Mapping[str, Any]) -> DataType:
    return DataType.parse(envelope.get(DATA_TYPE_KEY))


def asr_command(envelope: Mapping[str, Any]) -> ASRCommand:
    return ASRCommand.parse(envelope.get(COMMAND_KEY))


def require_str(envelope: Mapping[str, Any], key: str) -> str:
    value = envelope.get(key)
    if not isinstance(value, str):
        raise ProtocolError(f"envelope field {key!r} missing or not a string")
    return value


__all__ = [
    "ASRCommand",
    "DataType",
    "Envelope",
    "EnvelopeCodec",
    "MessageKind",
    "PlistCodec",
    "asr_command",
    "data_type",
    "message_kind",
    "require_str",
]
