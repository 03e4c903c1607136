import sys
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import pytest

ROOT = Path(__file__).resolve().parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from devrestore.common.envelope import PlistCodec  # noqa: E402
from devrestore.errors import ChannelClosedError, ConnectionFailedError  # noqa: E402


class FakeConnection:
    """Scripted ``Connection``: ``receive`` pops from ``inbound``."""

    def __init__(self, inbound: Iterable[Union[bytes, Exception]] = (), *, send_limit: Optional[int] = None) -> None:
        self.inbound: List[Union[bytes, Exception]] = list(inbound)
        self.sent: List[bytes] = []
        self.send_limit = send_limit
        self.closed = False

    def send(self, data: bytes) -> int:
        if self.closed:
            raise OSError("connection closed")
        self.sent.append(bytes(data))
        if self.send_limit is not None:
            return min(len(data), self.send_limit)
        return len(data)

    def receive(self, max_len: int) -> bytes:
        if not self.inbound:
            return b""
        item = self.inbound.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def close(self) -> None:
        self.closed = True


class FakeTransport:
    """``DeviceTransport`` handing out scripted connections or failures."""

    def __init__(self, outcomes: Sequence[Union[FakeConnection, Exception]]) -> None:
        self.outcomes = list(outcomes)
        self.ports: List[int] = []

    def connect(self, port: int) -> FakeConnection:
        self.ports.append(port)
        if not self.outcomes:
            raise ConnectionFailedError("no more scripted connections")
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeChannel:
    """``ControlChannel`` replaying inbound envelopes, then reporting EOF."""

    def __init__(
        self,
        inbound: Iterable[Union[Mapping[str, Any], Exception]] = (),
        *,
        identity: Tuple[str, int] = ("com.apple.mobile.restored", 2),
        query_error: Optional[Exception] = None,
        start_error: Optional[Exception] = None,
        send_error: Optional[Exception] = None,
    ) -> None:
        self.inbound = list(inbound)
        self.identity = identity
        self.query_error = query_error
        self.start_error = start_error
        self.send_error = send_error
        self.started = False
        self.closed = False
        self.receive_calls = 0
        self.sent: List[Mapping[str, Any]] = []

    def query_type(self) -> Tuple[str, int]:
        if self.query_error:
            raise self.query_error
        return self.identity

    def start_restore(self) -> None:
        if self.start_error:
            raise self.start_error
        self.started = True

    def receive(self):
        self.receive_calls += 1
        if not self.inbound:
            raise ChannelClosedError("peer closed the connection")
        item = self.inbound.pop(0)
        if isinstance(item, Exception):
            raise item
        return dict(item)

    def send(self, envelope: Mapping[str, Any]) -> None:
        if self.send_error:
            raise self.send_error
        self.sent.append(dict(envelope))

    def close(self) -> None:
        self.closed = True


def asr_script(*commands: Mapping[str, Any], greeting: bytes = b"<greeting/>") -> List[bytes]:
    """Encode ASR peer envelopes the way the device would send them."""

    codec = PlistCodec()
    return [greeting] + [codec.encode(command) for command in commands]


@pytest.fixture
def make_image(tmp_path: Path):
    def _make(size: int, name: str = "rootfs.dmg") -> Tuple[Path, bytes]:
        payload = bytes(i % 251 for i in range(size))
        path = tmp_path / name
        path.write_bytes(payload)
        return path, payload

    return _make


@pytest.fixture
def no_sleep():
    delays: List[float] = []

    def _sleep(delay: float) -> None:
        delays.append(delay)

    _sleep.delays = delays  # type: ignore[attr-defined]
    return _sleep
