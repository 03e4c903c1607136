import socket
import struct
import threading

import pytest

from devrestore.common.envelope import PlistCodec
from devrestore.data.tcp import (
    LockdownClient,
    PlistServiceClient,
    RestoredClient,
    TCPConnection,
    TCPDeviceTransport,
)
from devrestore.errors import ChannelClosedError, ConfigurationError, ConnectionFailedError

_CODEC = PlistCodec()


def _frame(envelope: dict) -> bytes:
    body = _CODEC.encode(envelope)
    return struct.pack("!I", len(body)) + body


def _read_frame(sock: socket.socket) -> dict:
    header = sock.recv(4, socket.MSG_WAITALL)
    (length,) = struct.unpack("!I", header)
    return _CODEC.decode(sock.recv(length, socket.MSG_WAITALL))


@pytest.fixture
def socket_pair():
    ours, theirs = socket.socketpair()
    theirs.settimeout(5)
    yield TCPConnection(ours), theirs
    theirs.close()


def test_plist_client_frames_envelopes(socket_pair) -> None:
    connection, peer = socket_pair
    client = PlistServiceClient(connection)

    client.send({"MsgType": "Hello", "Blob": b"\x00\x01"})
    assert _read_frame(peer) == {"MsgType": "Hello", "Blob": b"\x00\x01"}

    peer.sendall(_frame({"MsgType": "ProgressMsg", "Operation": 13}))
    assert client.receive() == {"MsgType": "ProgressMsg", "Operation": 13}
    client.close()


def test_plist_client_reports_closed_peer(socket_pair) -> None:
    connection, peer = socket_pair
    client = PlistServiceClient(connection)
    peer.sendall(struct.pack("!I", 100) + b"short")
    peer.shutdown(socket.SHUT_WR)

    with pytest.raises(ChannelClosedError):
        client.receive()
    client.close()


def test_restored_client_query_and_start(socket_pair) -> None:
    connection, peer = socket_pair
    client = RestoredClient(connection, label="tests")
    requests = []

    def device() -> None:
        requests.append(_read_frame(peer))
        peer.sendall(_frame({"Type": "com.apple.mobile.restored", "RestoreProtocolVersion": 12}))
        requests.append(_read_frame(peer))

    thread = threading.Thread(target=device)
    thread.start()
    assert client.query_type() == ("com.apple.mobile.restored", 12)
    client.start_restore()
    thread.join(timeout=5)

    assert requests == [
        {"Request": "QueryType", "Label": "tests"},
        {"Request": "StartRestore", "Label": "tests", "RestoreProtocolVersion": 12},
    ]
    client.close()


def test_lockdown_enter_recovery_error(socket_pair) -> None:
    connection, peer = socket_pair
    client = LockdownClient(connection)
    peer.sendall(_frame({"Request": "EnterRecovery", "Error": "InvalidService"}))

    with pytest.raises(ConfigurationError, match="InvalidService"):
        client.enter_recovery()
    assert _read_frame(peer)["Request"] == "EnterRecovery"
    client.close()


def test_tcp_transport_connects_and_refuses() -> None:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as server:
        server.bind(("127.0.0.1", 0))
        server.listen(1)
        port = server.getsockname()[1]
        transport = TCPDeviceTransport("127.0.0.1", connect_timeout=2)
        connection = transport.connect(port)
        accepted, _ = server.accept()
        with accepted:
            assert connection.send(b"ping") == 4
            assert accepted.recv(4) == b"ping"
        connection.close()

    with pytest.raises(ConnectionFailedError):
        transport.connect(port)
