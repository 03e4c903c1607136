"""Error taxonomy shared by the restore control and data paths."""
from __future__ import annotations


class RestoreError(RuntimeError):
    """Base class for restore failures; ``code`` is shown to the user."""

    code: int = -1

    def __init__(self, message: str, *, code: int | None = None) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code

    def describe(self) -> str:
        return f"{self} (code {self.code})"


class ConnectionFailedError(RestoreError):
    """Transport level failure: connect, send or receive."""

    code = -2


class ChannelClosedError(ConnectionFailedError):
    """The peer closed the connection."""


class ProtocolError(RestoreError):
    """Malformed or unexpected envelope content."""

    code = -3


class ResourceError(RestoreError):
    """A local file could not be opened, read or fully served."""

    code = -4


class UnsupportedRequestError(RestoreError):
    """Unknown data type or message kind."""

    code = -5


class ConfigurationError(RestoreError):
    """The device is not in the state the session requires."""

    code = -6


class RestoreStartError(ConfigurationError):
    """The restore service refused to start the restore."""


__all__ = [
    "ChannelClosedError",
    "ConfigurationError",
    "ConnectionFailedError",
    "ProtocolError",
    "ResourceError",
    "RestoreError",
    "RestoreStartError",
    "UnsupportedRequestError",
]
