import logging
import struct

import pytest

from conftest import FakeChannel, FakeConnection, FakeTransport
from devrestore.common.envelope import MessageKind, PlistCodec
from devrestore.config import RestoreTargets
from devrestore.control.dispatcher import DataRequestDispatcher
from devrestore.control.session import CancellationToken, RestoreSession, SessionState
from devrestore.data.asr import ASRTransfer
from devrestore.data.tcp import RestoredClient
from devrestore.errors import (
    ConfigurationError,
    ConnectionFailedError,
    ProtocolError,
    RestoreStartError,
)


def _session(channel: FakeChannel, **kwargs) -> RestoreSession:
    asr = ASRTransfer(FakeTransport([]), sleep=lambda _: None)
    return RestoreSession(channel, DataRequestDispatcher(channel, asr, RestoreTargets()), **kwargs)


def test_identity_mismatch_terminates_before_start() -> None:
    channel = FakeChannel(identity=("com.apple.mobile.lockdown", 0))
    session = _session(channel)

    with pytest.raises(ConfigurationError, match="not in restore mode"):
        session.run()

    assert not channel.started
    assert channel.receive_calls == 0
    assert channel.closed
    assert session.state is SessionState.TERMINATED


def test_query_failure_is_configuration_error() -> None:
    channel = FakeChannel(query_error=ProtocolError("garbled"))

    with pytest.raises(ConfigurationError):
        _session(channel).run()

    assert not channel.started
    assert channel.closed


def test_start_restore_failure() -> None:
    channel = FakeChannel(start_error=ConnectionFailedError("reset"))

    with pytest.raises(RestoreStartError):
        _session(channel).run()

    assert channel.receive_calls == 0
    assert channel.closed


def test_loop_continues_past_failed_requests(caplog) -> None:
    channel = FakeChannel(
        [
            {"MsgType": "ProgressMsg", "Operation": 13, "Progress": 40},
            {"MsgType": "DataRequestMsg", "DataType": "Foo"},
            {"MsgType": "StatusMsg", "Status": 0},
        ]
    )

    with caplog.at_level(logging.INFO, logger="devrestore"):
        summary = _session(channel).run()

    assert [result.kind for result in summary.results] == [
        MessageKind.PROGRESS,
        MessageKind.DATA_REQUEST,
        MessageKind.STATUS,
    ]
    assert [result.success for result in summary.results] == [True, False, True]
    warnings = [record for record in caplog.records if record.levelno == logging.WARNING]
    assert len(warnings) == 1
    assert warnings[0].getMessage() == "unsupported request"
    assert summary.state is SessionState.TERMINATED
    assert summary.protocol_version == 2
    assert channel.started
    assert channel.closed


def test_unknown_message_kind_is_logged_and_skipped(caplog) -> None:
    channel = FakeChannel([{"MsgType": "CheckpointMsg"}, {"MsgType": "ProgressMsg", "Operation": 99}])

    with caplog.at_level(logging.WARNING, logger="devrestore"):
        summary = _session(channel).run()

    assert [result.kind for result in summary.results] == [MessageKind.UNKNOWN, MessageKind.PROGRESS]
    assert "CheckpointMsg" in str(summary.results[0].error)
    assert len([r for r in caplog.records if r.levelno == logging.WARNING]) == 1


def test_receive_errors_are_tolerated() -> None:
    channel = FakeChannel(
        [
            ProtocolError("undecodable envelope"),
            {"MsgType": "StatusMsg", "Status": 6},
        ]
    )

    summary = _session(channel).run()

    assert summary.receive_errors == 1
    assert [result.kind for result in summary.results] == [MessageKind.STATUS]


def _frames(*bodies: bytes) -> list:
    frames = []
    for body in bodies:
        frames += [struct.pack("!I", len(body)), body]
    return frames


def test_garbled_control_message_is_skipped() -> None:
    codec = PlistCodec()
    garbled = b'<plist version="1.0"><dict><key>MsgType</key><date>x</date></dict></plist>'
    connection = FakeConnection(
        _frames(
            codec.encode({"Type": "com.apple.mobile.restored", "RestoreProtocolVersion": 12}),
            garbled,
            codec.encode({"MsgType": "StatusMsg", "Status": 0}),
        )
    )
    channel = RestoredClient(connection)

    summary = _session(channel).run()

    assert summary.protocol_version == 12
    assert summary.receive_errors == 1
    assert [result.kind for result in summary.results] == [MessageKind.STATUS]
    assert summary.state is SessionState.TERMINATED
    assert connection.closed


def test_consecutive_receive_error_bound() -> None:
    channel = FakeChannel([ProtocolError("bad")] * 3 + [{"MsgType": "StatusMsg", "Status": 0}])

    summary = _session(channel, max_consecutive_receive_errors=2).run()

    assert summary.receive_errors == 2
    assert summary.results == []
    assert channel.closed


def test_cancelled_token_stops_before_receive() -> None:
    channel = FakeChannel([{"MsgType": "ProgressMsg"}])
    token = CancellationToken()
    token.cancel()

    summary = _session(channel).run(token)

    assert summary.cancelled
    assert channel.started
    assert channel.receive_calls == 0
    assert channel.closed


def test_cancellation_observed_between_messages() -> None:
    token = CancellationToken()

    class CancellingChannel(FakeChannel):
        def receive(self):
            message = super().receive()
            token.cancel()
            return message

    channel = CancellingChannel([{"MsgType": "ProgressMsg"}, {"MsgType": "StatusMsg", "Status": 0}])

    summary = _session(channel).run(token)

    assert len(summary.results) == 1
    assert summary.cancelled
    assert len(channel.inbound) == 1


def test_max_messages() -> None:
    channel = FakeChannel([{"MsgType": "ProgressMsg"}] * 5)

    summary = _session(channel, max_messages=2).run()

    assert len(summary.results) == 2
    assert channel.closed
