"""Servicing of ASR out-of-band byte range reads."""
from __future__ import annotations

import logging
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, StrictInt, ValidationError

from ..common.source import SourceImage
from ..errors import ConnectionFailedError, ProtocolError
from ..logging_utils import extra_fields
from .base import Connection

_LOGGER = logging.getLogger(__name__)


class OOBRequest(BaseModel):
    """A peer-initiated read of ``length`` bytes at absolute ``offset``."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    offset: StrictInt = Field(..., alias="OOB Offset", ge=0)
    length: StrictInt = Field(..., alias="OOB Length", ge=0)

    @property
    def end(self) -> int:
        return self.offset + self.length


def parse_oob_request(envelope: Mapping[str, Any]) -> OOBRequest:
    try:
        return OOBRequest.model_validate(dict(envelope))
    except ValidationError as exc:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in exc.errors())
        raise ProtocolError(f"malformed OOB request ({fields})") from exc


def serve_oob_request(source: SourceImage, request: OOBRequest, connection: Connection) -> int:
    """Send the requested range of ``source`` on ``connection``.

    The range is read in full before anything is written, so a request past
    the end of the image fails without touching the connection.
    """

    data = source.read_at(request.offset, request.length)
    try:
        sent = connection.send(data)
    except OSError as exc:
        raise ConnectionFailedError(f"failed sending OOB data: {exc}") from exc
    if sent != request.length:
        raise ProtocolError(f"short write: sent {sent} of {request.length} OOB bytes")
    _LOGGER.debug(
        "served OOB request",
        extra=extra_fields(offset=request.offset, length=request.length),
    )
    return sent


__all__ = ["OOBRequest", "parse_oob_request", "serve_oob_request"]
