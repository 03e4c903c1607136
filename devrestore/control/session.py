"""Restore session controller."""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional

from ..common.envelope import MSG_TYPE_KEY, MessageKind, message_kind
from ..config import RESTORED_IDENTITY
from ..data.base import ControlChannel
from ..errors import (
    ChannelClosedError,
    ConfigurationError,
    RestoreError,
    RestoreStartError,
    UnsupportedRequestError,
)
from ..logging_utils import extra_fields
from .dispatcher import DataRequestDispatcher
from .handlers import handle_progress, handle_status

_LOGGER = logging.getLogger(__name__)


class SessionState(str, Enum):
    INIT = "INIT"
    TYPE_QUERIED = "TYPE_QUERIED"
    RESTORING = "RESTORING"
    TERMINATED = "TERMINATED"


class CancellationToken:
    """Cooperative cancellation flag, safe to set from a signal handler.

    The session only looks at it between messages; a blocking receive or an
    ASR transfer in progress is not interrupted.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class MessageResult:
    kind: MessageKind
    success: bool
    error: Optional[RestoreError] = None

    @property
    def code(self) -> int:
        return self.error.code if self.error else 0


@dataclass
class SessionSummary:
    state: SessionState
    protocol_version: Optional[int] = None
    cancelled: bool = False
    results: List[MessageResult] = field(default_factory=list)
    receive_errors: int = 0

    @property
    def failures(self) -> List[MessageResult]:
        return [result for result in self.results if not result.success]


class RestoreSession:
    """Drives one restore over a control channel.

    ``run`` queries the peer, starts the restore and then handles inbound
    messages until the channel closes or the token is cancelled. Failures of
    individual messages are recorded and logged; only configuration errors
    end the session early.
    """

    def __init__(
        self,
        channel: ControlChannel,
        dispatcher: DataRequestDispatcher,
        *,
        expected_identity: str = RESTORED_IDENTITY,
        max_messages: Optional[int] = None,
        max_consecutive_receive_errors: Optional[int] = None,
    ) -> None:
        self.channel = channel
        self.dispatcher = dispatcher
        self.expected_identity = expected_identity
        self.max_messages = max_messages
        self.max_consecutive_receive_errors = max_consecutive_receive_errors
        self.state = SessionState.INIT
        self.protocol_version: Optional[int] = None
        self._handlers: Dict[MessageKind, Callable[[Mapping[str, Any]], MessageResult]] = {
            MessageKind.PROGRESS: self._on_progress,
            MessageKind.DATA_REQUEST: self._on_data_request,
            MessageKind.STATUS: self._on_status,
            MessageKind.UNKNOWN: self._on_unknown,
        }

    def run(self, token: Optional[CancellationToken] = None) -> SessionSummary:
        token = token or CancellationToken()
        summary = SessionSummary(state=self.state)
        try:
            self._query_type()
            summary.protocol_version = self.protocol_version
            self._start_restore()
            self._receive_loop(token, summary)
        finally:
            self.state = SessionState.TERMINATED
            summary.state = self.state
            self.channel.close()
        summary.cancelled = token.cancelled
        return summary

    def handle_message(self, message: Mapping[str, Any]) -> MessageResult:
        return self._handlers[message_kind(message)](message)

    def _query_type(self) -> None:
        try:
            identity, version = self.channel.query_type()
        except (RestoreError, OSError) as exc:
            raise ConfigurationError(f"device is not in restore mode: QueryType failed: {exc}") from exc
        if identity != self.expected_identity:
            raise ConfigurationError(
                f"device is not in restore mode: QueryType returned {identity!r}"
            )
        self.protocol_version = version
        self.state = SessionState.TYPE_QUERIED
        _LOGGER.info("restore protocol version", extra=extra_fields(version=version))

    def _start_restore(self) -> None:
        try:
            self.channel.start_restore()
        except RestoreStartError:
            raise
        except (RestoreError, OSError) as exc:
            raise RestoreStartError(f"could not start restore: {exc}") from exc
        self.state = SessionState.RESTORING
        _LOGGER.info("restore started")

    def _receive_loop(self, token: CancellationToken, summary: SessionSummary) -> None:
        consecutive_errors = 0
        while not token.cancelled:
            if self.max_messages is not None and len(summary.results) >= self.max_messages:
                break
            try:
                message = self.channel.receive()
            except ChannelClosedError:
                _LOGGER.info("restore service closed the connection")
                break
            except (RestoreError, OSError) as exc:
                summary.receive_errors += 1
                consecutive_errors += 1
                _LOGGER.error("receive failed", extra=extra_fields(detail=str(exc)))
                if (
                    self.max_consecutive_receive_errors is not None
                    and consecutive_errors >= self.max_consecutive_receive_errors
                ):
                    break
                continue
            consecutive_errors = 0
            result = self.handle_message(message)
            summary.results.append(result)
            self._log_result(result)
        if token.cancelled:
            _LOGGER.info("restore session cancelled")

    def _on_progress(self, message: Mapping[str, Any]) -> MessageResult:
        handle_progress(message)
        return MessageResult(kind=MessageKind.PROGRESS, success=True)

    def _on_data_request(self, message: Mapping[str, Any]) -> MessageResult:
        outcome = self.dispatcher.dispatch(message)
        return MessageResult(kind=MessageKind.DATA_REQUEST, success=outcome.success, error=outcome.error)

    def _on_status(self, message: Mapping[str, Any]) -> MessageResult:
        handle_status(message)
        return MessageResult(kind=MessageKind.STATUS, success=True)

    def _on_unknown(self, message: Mapping[str, Any]) -> MessageResult:
        error = UnsupportedRequestError(f"unknown message type {message.get(MSG_TYPE_KEY)!r}")
        return MessageResult(kind=MessageKind.UNKNOWN, success=False, error=error)

    @staticmethod
    def _log_result(result: MessageResult) -> None:
        if result.success:
            return
        fields = extra_fields(kind=result.kind.value, code=result.code, detail=str(result.error))
        if isinstance(result.error, UnsupportedRequestError):
            _LOGGER.warning("unsupported request", extra=fields)
        else:
            _LOGGER.error("message handling failed", extra=fields)


__all__ = [
    "CancellationToken",
    "MessageResult",
    "RestoreSession",
    "SessionState",
    "SessionSummary",
]
