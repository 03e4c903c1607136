"""ASR filesystem image streaming."""
from __future__ import annotations

import logging
import time
from contextlib import closing
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from ..common.chunker import chunk_image
from ..common.envelope import ASRCommand, EnvelopeCodec, PlistCodec, asr_command
from ..common.source import SourceImage
from ..config import (
    ASR_CONNECT_ATTEMPTS,
    ASR_PORT,
    ASR_RECEIVE_BUFFER,
    ASR_RETRY_DELAY_SECONDS,
    PROGRESS_EVERY_CHUNKS,
    TransferParameters,
)
from ..errors import ChannelClosedError, ConnectionFailedError, ProtocolError
from ..logging_utils import extra_fields, log_progress
from .base import Connection, DeviceTransport
from .oob import parse_oob_request, serve_oob_request

_LOGGER = logging.getLogger(__name__)
_PLIST_END = b"</plist>"


class _ASRStream:
    """Splits the bytes read from ASR into whole plist documents.

    Bytes past the end of one document stay buffered for the next read.
    """

    def __init__(self, connection: Connection) -> None:
        self.connection = connection
        self._buf = bytearray()

    def read_greeting(self) -> bytes:
        self._fill("greeting")
        if not self._buf.lstrip().startswith((b"<?xml", b"<!DOCTYPE", b"<plist")):
            greeting = bytes(self._buf)
            self._buf.clear()
            return greeting
        return self.read_document("greeting")

    def read_document(self, what: str = "negotiation") -> bytes:
        while _PLIST_END not in self._buf:
            self._fill(what)
        end = self._buf.index(_PLIST_END) + len(_PLIST_END)
        document = bytes(self._buf[:end]).lstrip()
        del self._buf[:end]
        return document

    def _fill(self, what: str) -> None:
        try:
            data = self.connection.receive(ASR_RECEIVE_BUFFER)
        except OSError as exc:
            raise ConnectionFailedError(f"failed receiving ASR {what}: {exc}") from exc
        if not data:
            raise ChannelClosedError(f"ASR closed the connection during {what}")
        self._buf.extend(data)


@dataclass
class TransferSummary:
    bytes_sent: int = 0
    chunks_sent: int = 0
    oob_requests: int = 0


class ASRTransfer:
    """Streams one image to the device's ASR service.

    The peer first validates the image through out-of-band reads, then asks
    for the payload, which is sent sequentially in ``packet_payload_size``
    chunks.
    """

    def __init__(
        self,
        transport: DeviceTransport,
        *,
        port: int = ASR_PORT,
        codec: Optional[EnvelopeCodec] = None,
        connect_attempts: int = ASR_CONNECT_ATTEMPTS,
        retry_delay: float = ASR_RETRY_DELAY_SECONDS,
        max_oob_requests: Optional[int] = None,
        progress_every: int = PROGRESS_EVERY_CHUNKS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if connect_attempts < 1:
            raise ValueError("connect_attempts must be at least 1")
        self.transport = transport
        self.port = port
        self.codec = codec or PlistCodec()
        self.connect_attempts = connect_attempts
        self.retry_delay = retry_delay
        self.max_oob_requests = max_oob_requests
        self.progress_every = progress_every
        self._sleep = sleep

    def run(self, image_path: Path | str, *, port: Optional[int] = None) -> TransferSummary:
        connection = self._connect(self.port if port is None else port)
        with closing(connection):
            stream = _ASRStream(connection)
            greeting = stream.read_greeting()
            _LOGGER.debug("ASR greeting", extra=extra_fields(size=len(greeting)))
            with SourceImage.open(image_path) as source:
                return self.transfer(connection, source, stream=stream)

    def transfer(
        self,
        connection: Connection,
        source: SourceImage,
        *,
        params: Optional[TransferParameters] = None,
        stream: Optional[_ASRStream] = None,
    ) -> TransferSummary:
        """Negotiate and stream ``source`` over an already greeted connection.

        Payload chunks are cut to the ``packet_payload_size`` of ``params``.
        """

        summary = TransferSummary()
        params = params or TransferParameters.for_image(source.size)
        stream = stream or _ASRStream(connection)
        self._send_all(connection, self.codec.encode(params.to_envelope()), what="transfer parameters")
        _LOGGER.info(
            "sent ASR transfer parameters",
            extra=extra_fields(image=source.name, total_bytes=source.size),
        )
        summary.oob_requests = self._serve_oob_requests(connection, stream, source)
        self._stream_payload(connection, source, params.packet_payload_size, summary)
        return summary

    def _connect(self, port: int) -> Connection:
        last_error: Optional[Exception] = None
        for attempt in range(1, self.connect_attempts + 1):
            try:
                connection = self.transport.connect(port)
            except (ConnectionFailedError, OSError) as exc:
                last_error = exc
                _LOGGER.debug(
                    "ASR connect attempt failed",
                    extra=extra_fields(attempt=attempt, port=port, detail=str(exc)),
                )
                if attempt < self.connect_attempts:
                    self._sleep(self.retry_delay)
                continue
            _LOGGER.info("connected to ASR", extra=extra_fields(port=port, attempt=attempt))
            return connection
        raise ConnectionFailedError(
            f"unable to connect to ASR on port {port} after "
            f"{self.connect_attempts} attempts: {last_error}"
        )

    def _serve_oob_requests(self, connection: Connection, stream: _ASRStream, source: SourceImage) -> int:
        served = 0
        while True:
            envelope = self.codec.decode(stream.read_document())
            command = asr_command(envelope)
            if command is ASRCommand.PAYLOAD:
                _LOGGER.info("ASR requested payload", extra=extra_fields(oob_requests=served))
                return served
            if command is ASRCommand.OOB_DATA:
                if self.max_oob_requests is not None and served >= self.max_oob_requests:
                    raise ProtocolError(
                        f"peer exceeded {self.max_oob_requests} OOB requests without requesting payload"
                    )
                serve_oob_request(source, parse_oob_request(envelope), connection)
                served += 1
                continue
            _LOGGER.debug("ignoring ASR command", extra=extra_fields(command=envelope.get("Command")))

    def _stream_payload(
        self,
        connection: Connection,
        source: SourceImage,
        chunk_size: int,
        summary: TransferSummary,
    ) -> None:
        source.rewind()
        for chunk in chunk_image(source.size, chunk_size):
            data = source.read_next(chunk.length)
            self._send_all(connection, data, what=f"payload chunk {chunk.index}")
            summary.bytes_sent += chunk.length
            summary.chunks_sent += 1
            if summary.chunks_sent % self.progress_every == 0:
                log_progress(
                    _LOGGER,
                    operation="asr_payload",
                    bytes_transferred=summary.bytes_sent,
                    total_bytes=source.size,
                    state="IN_PROGRESS",
                )
        log_progress(
            _LOGGER,
            operation="asr_payload",
            bytes_transferred=summary.bytes_sent,
            total_bytes=source.size,
            state="SUCCESS",
            detail="done sending filesystem",
        )

    @staticmethod
    def _send_all(connection: Connection, data: bytes, *, what: str) -> None:
        try:
            sent = connection.send(data)
        except OSError as exc:
            raise ConnectionFailedError(f"failed sending {what}: {exc}") from exc
        if sent != len(data):
            raise ProtocolError(f"short write: sent {sent} of {len(data)} bytes of {what}")


__all__ = ["ASRTransfer", "TransferSummary"]
