"""Routing of restore data requests to delivery actions."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional

from ..common.envelope import DATA_TYPE_KEY, DataType, data_type
from ..common.source import read_whole_file
from ..config import RestoreTargets
from ..data.asr import ASRTransfer
from ..data.base import ControlChannel
from ..errors import (
    ConnectionFailedError,
    ResourceError,
    RestoreError,
    UnsupportedRequestError,
)
from ..logging_utils import extra_fields

_LOGGER = logging.getLogger(__name__)

KERNEL_CACHE_KEY = "KernelCacheFile"
DATA_PORT_KEY = "DataPort"


@dataclass
class DispatchResult:
    data_type: DataType
    success: bool
    bytes_sent: int = 0
    error: Optional[RestoreError] = None

    @property
    def code(self) -> int:
        return self.error.code if self.error else 0

    @property
    def detail(self) -> str:
        return str(self.error) if self.error else ""


class DataRequestDispatcher:
    """Serves ``DataRequestMsg`` envelopes.

    Every failure is returned as an unsuccessful ``DispatchResult``; nothing
    raised by a delivery action escapes ``dispatch``.
    """

    def __init__(
        self,
        channel: ControlChannel,
        asr: ASRTransfer,
        targets: RestoreTargets,
    ) -> None:
        self.channel = channel
        self.asr = asr
        self.targets = targets
        self._actions: Dict[DataType, Callable[[Mapping[str, Any]], int]] = {
            DataType.SYSTEM_IMAGE: self.send_system_data,
            DataType.KERNEL_CACHE: self.send_kernel_data,
            DataType.NOR_DATA: self.send_nor_data,
            DataType.UNKNOWN: self._reject,
        }

    def dispatch(self, message: Mapping[str, Any]) -> DispatchResult:
        kind = data_type(message)
        try:
            sent = self._actions[kind](message)
        except RestoreError as exc:
            return DispatchResult(data_type=kind, success=False, error=exc)
        return DispatchResult(data_type=kind, success=True, bytes_sent=sent)

    def send_system_data(self, message: Mapping[str, Any]) -> int:
        image = self._require(self.targets.filesystem, "filesystem")
        _LOGGER.info("sending filesystem", extra=extra_fields(path=str(image)))
        port = message.get(DATA_PORT_KEY)
        summary = self.asr.run(image, port=port if isinstance(port, int) else None)
        return summary.bytes_sent

    def send_kernel_data(self, message: Mapping[str, Any]) -> int:
        kernel = self._require(self.targets.kernelcache, "kernelcache")
        _LOGGER.info("sending kernelcache", extra=extra_fields(path=str(kernel)))
        blob = read_whole_file(kernel)
        try:
            self.channel.send({KERNEL_CACHE_KEY: blob})
        except OSError as exc:
            raise ConnectionFailedError(f"unable to send kernelcache data: {exc}") from exc
        _LOGGER.info("done sending kernelcache", extra=extra_fields(size=len(blob)))
        return len(blob)

    def send_nor_data(self, message: Mapping[str, Any]) -> int:
        _LOGGER.info("NOR data requested; not implemented, sending nothing")
        return 0

    def _reject(self, message: Mapping[str, Any]) -> int:
        raise UnsupportedRequestError(f"unknown data type {message.get(DATA_TYPE_KEY)!r}")

    @staticmethod
    def _require(path: Optional[Path], what: str) -> Path:
        if path is None:
            raise ResourceError(f"device requested the {what} but none was configured")
        return path


__all__ = ["DataRequestDispatcher", "DispatchResult", "KERNEL_CACHE_KEY"]
