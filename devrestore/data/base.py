"""Transport interfaces consumed by the restore core."""
from __future__ import annotations

from typing import Any, Mapping, Protocol, Tuple

from ..common.envelope import Envelope


class Connection(Protocol):
    """A connected byte stream to one device service port."""

    def send(self, data: bytes) -> int:
        """Send ``data`` and return the number of bytes written."""

    def receive(self, max_len: int) -> bytes:
        """Return up to ``max_len`` bytes; raise on error or closed peer."""

    def close(self) -> None:
        ...


class DeviceTransport(Protocol):
    """Opens connections to service ports on one device."""

    def connect(self, port: int) -> Connection:
        """Connect to ``port`` or raise ``ConnectionFailedError``."""


class ControlChannel(Protocol):
    """Session object for the device's restore service."""

    def query_type(self) -> Tuple[str, int]:
        """Return the peer identity and restore protocol version."""

    def start_restore(self) -> None:
        """Ask the peer to begin restoring; raise on refusal."""

    def receive(self) -> Envelope:
        ...

    def send(self, envelope: Mapping[str, Any]) -> None:
        ...

    def close(self) -> None:
        ...


__all__ = ["Connection", "ControlChannel", "DeviceTransport"]
