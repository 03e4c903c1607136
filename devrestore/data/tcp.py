"""TCP device transport and plist-framed service clients."""
from __future__ import annotations

import logging
import socket
import struct
from typing import Any, Mapping, Optional, Tuple

from ..common.envelope import Envelope, EnvelopeCodec, PlistCodec, require_str
from ..config import CLIENT_LABEL, LOCKDOWN_SERVICE_PORT, RESTORED_SERVICE_PORT
from ..errors import (
    ChannelClosedError,
    ConfigurationError,
    ConnectionFailedError,
    ProtocolError,
    RestoreStartError,
)
from ..logging_utils import extra_fields
from .base import Connection, DeviceTransport

_HEADER_STRUCT = struct.Struct("!I")
_MAX_MESSAGE_SIZE = 64 * 1024 * 1024
_LOGGER = logging.getLogger(__name__)


class TCPConnection:
    """``Connection`` backed by a connected stream socket."""

    def __init__(self, sock: socket.socket) -> None:
        self._sock = sock

    def send(self, data: bytes) -> int:
        self._sock.sendall(data)
        return len(data)

    def receive(self, max_len: int) -> bytes:
        return self._sock.recv(max_len)

    def close(self) -> None:
        try:
            self._sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self._sock.close()


class TCPDeviceTransport:
    """Reaches device service ports through TCP (e.g. a usbmux relay)."""

    def __init__(self, host: str = "127.0.0.1", *, connect_timeout: float = 10.0, io_timeout: Optional[float] = None) -> None:
        self.host = host
        self.connect_timeout = connect_timeout
        self.io_timeout = io_timeout

    def connect(self, port: int) -> Connection:
        try:
            sock = socket.create_connection((self.host, port), timeout=self.connect_timeout)
        except OSError as exc:
            raise ConnectionFailedError(f"unable to connect to {self.host}:{port}: {exc}") from exc
        sock.settimeout(self.io_timeout)
        return TCPConnection(sock)


class PlistServiceClient:
    """Exchanges length-prefixed envelopes over one ``Connection``."""

    def __init__(self, connection: Connection, *, codec: Optional[EnvelopeCodec] = None) -> None:
        self.connection = connection
        self.codec = codec or PlistCodec()

    def send(self, envelope: Mapping[str, Any]) -> None:
        body = self.codec.encode(envelope)
        frame = _HEADER_STRUCT.pack(len(body)) + body
        try:
            sent = self.connection.send(frame)
        except OSError as exc:
            raise ConnectionFailedError(f"send failed: {exc}") from exc
        if sent != len(frame):
            raise ConnectionFailedError(f"short write: sent {sent} of {len(frame)} bytes")

    def receive(self) -> Envelope:
        (length,) = _HEADER_STRUCT.unpack(self._recv_exact(_HEADER_STRUCT.size))
        if length > _MAX_MESSAGE_SIZE:
            raise ProtocolError(f"message of {length} bytes exceeds limit")
        return self.codec.decode(self._recv_exact(length))

    def request(self, envelope: Mapping[str, Any]) -> Envelope:
        self.send(envelope)
        return self.receive()

    def close(self) -> None:
        self.connection.close()

    def _recv_exact(self, size: int) -> bytes:
        buf = bytearray()
        while len(buf) < size:
            try:
                data = self.connection.receive(size - len(buf))
            except OSError as exc:
                raise ConnectionFailedError(f"receive failed: {exc}") from exc
            if not data:
                raise ChannelClosedError("peer closed the connection")
            buf.extend(data)
        return bytes(buf)


class RestoredClient(PlistServiceClient):
    """``ControlChannel`` speaking to the restore service."""

    def __init__(
        self,
        connection: Connection,
        *,
        label: str = CLIENT_LABEL,
        codec: Optional[EnvelopeCodec] = None,
    ) -> None:
        super().__init__(connection, codec=codec)
        self.label = label
        self.protocol_version: Optional[int] = None

    @classmethod
    def create(
        cls, transport: DeviceTransport, *, port: int = RESTORED_SERVICE_PORT, label: str = CLIENT_LABEL
    ) -> "RestoredClient":
        return cls(transport.connect(port), label=label)

    def query_type(self) -> Tuple[str, int]:
        reply = self.request({"Request": "QueryType", "Label": self.label})
        identity = require_str(reply, "Type")
        version = reply.get("RestoreProtocolVersion", 0)
        if not isinstance(version, int):
            raise ProtocolError(f"QueryType reply with invalid RestoreProtocolVersion: {version!r}")
        self.protocol_version = version
        return identity, version

    def start_restore(self) -> None:
        request: dict = {"Request": "StartRestore", "Label": self.label}
        if self.protocol_version is not None:
            request["RestoreProtocolVersion"] = self.protocol_version
        try:
            self.send(request)
        except ConnectionFailedError as exc:
            raise RestoreStartError(f"could not start restore: {exc}") from exc
        _LOGGER.debug("sent StartRestore", extra=extra_fields(version=self.protocol_version))


class LockdownClient(PlistServiceClient):
    """Minimal lockdown client able to reboot a device into recovery."""

    def __init__(self, connection: Connection, *, label: str = CLIENT_LABEL) -> None:
        super().__init__(connection)
        self.label = label

    @classmethod
    def create(
        cls, transport: DeviceTransport, *, port: int = LOCKDOWN_SERVICE_PORT, label: str = CLIENT_LABEL
    ) -> "LockdownClient":
        return cls(transport.connect(port), label=label)

    def enter_recovery(self) -> None:
        reply = self.request({"Request": "EnterRecovery", "Label": self.label})
        error = reply.get("Error")
        if error:
            raise ConfigurationError(f"failed to enter recovery mode: {error}")


__all__ = [
    "LockdownClient",
    "PlistServiceClient",
    "RestoredClient",
    "TCPConnection",
    "TCPDeviceTransport",
]
