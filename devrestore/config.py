"""Restore protocol defaults and ASR transfer parameters."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

RESTORED_SERVICE_PORT: int = 62078
LOCKDOWN_SERVICE_PORT: int = 62078
ASR_PORT: int = 12345
RESTORED_IDENTITY = "com.apple.mobile.restored"
CLIENT_LABEL = "devrestore"

PACKET_PAYLOAD_SIZE: int = 1450
FEC_SLICE_STRIDE: int = 40
PACKETS_PER_FEC: int = 25
ASR_STREAM_ID: int = 1
ASR_VERSION: int = 1
ASR_PAYLOAD_PORT: int = 1

ASR_CONNECT_ATTEMPTS: int = 5
ASR_RETRY_DELAY_SECONDS: float = 1.0
ASR_RECEIVE_BUFFER: int = 0x1000
PROGRESS_EVERY_CHUNKS: int = 1000

LOG_TIME_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


class PayloadDescriptor(BaseModel):
    """Describes the bulk payload announced to ASR."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    port: int = Field(ASR_PAYLOAD_PORT, alias="Port", ge=0)
    total_size: int = Field(..., alias="Size", ge=0)


class TransferParameters(BaseModel):
    """Initial ASR envelope negotiating framing and FEC striping.

    ``packet_payload_size`` doubles as the chunk size of the bulk stream, so
    the streamer always reads it back from the parameters it sent.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    fec_stripe_size: int = Field(FEC_SLICE_STRIDE, alias="FEC Slice Stride", ge=0)
    packet_payload_size: int = Field(PACKET_PAYLOAD_SIZE, alias="Packet Payload Size", gt=0)
    packets_per_fec: int = Field(PACKETS_PER_FEC, alias="Packets Per FEC", ge=0)
    stream_id: int = Field(ASR_STREAM_ID, alias="Stream ID", ge=0)
    version: int = Field(ASR_VERSION, alias="Version", ge=0)
    payload: PayloadDescriptor = Field(..., alias="Payload")

    @classmethod
    def for_image(cls, total_size: int, **overrides: Any) -> "TransferParameters":
        return cls(payload=PayloadDescriptor(total_size=total_size), **overrides)

    def to_envelope(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


@dataclass(frozen=True)
class RestoreTargets:
    """Local files served to the device during a restore."""

    filesystem: Optional[Path] = None
    kernelcache: Optional[Path] = None


__all__ = [
    "ASR_CONNECT_ATTEMPTS",
    "ASR_PORT",
    "ASR_RECEIVE_BUFFER",
    "ASR_RETRY_DELAY_SECONDS",
    "CLIENT_LABEL",
    "LOCKDOWN_SERVICE_PORT",
    "LOG_TIME_FORMAT",
    "PACKET_PAYLOAD_SIZE",
    "PROGRESS_EVERY_CHUNKS",
    "PayloadDescriptor",
    "RESTORED_IDENTITY",
    "RESTORED_SERVICE_PORT",
    "RestoreTargets",
    "TransferParameters",
]
