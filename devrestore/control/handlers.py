"""Handlers for informational restore messages."""
from __future__ import annotations

import logging
from typing import Any, Dict, Mapping

from ..logging_utils import extra_fields

_LOGGER = logging.getLogger(__name__)

# Operation codes reported in ProgressMsg envelopes.
OPERATIONS: Dict[int, str] = {
    11: "Creating partition map",
    12: "Creating filesystem",
    13: "Restoring image",
    14: "Verifying restore",
    15: "Checking filesystems",
    16: "Mounting filesystems",
    18: "Flashing NOR",
    19: "Updating baseband",
    20: "Finalizing NAND epoch update",
    25: "Modifying persistent boot-args",
    28: "Waiting for NAND",
    29: "Unmounting filesystems",
    32: "Waiting for Device...",
    35: "Loading NOR data to flash",
}

KNOWN_STATUS_ERRORS: Dict[int, str] = {
    0xFFFFFFFFFFFFFFFF: "verification error",
    6: "disk failure",
    14: "fail",
    27: "failed to mount filesystems",
    50: "failed to load SEP firmware",
    51: "failed to load SEP firmware",
    53: "failed to recover FDR data",
    1015: "X-Gold Baseband Update Failed. Defective Unit?",
}


def operation_name(code: Any) -> str:
    if isinstance(code, int):
        return OPERATIONS.get(code, "Unknown")
    return "Unknown"


def handle_progress(message: Mapping[str, Any]) -> None:
    operation = message.get("Operation")
    _LOGGER.info(
        "got progress message",
        extra=extra_fields(
            operation=operation_name(operation),
            operation_code=operation,
            progress=message.get("Progress"),
        ),
    )


def handle_status(message: Mapping[str, Any]) -> None:
    status = message.get("Status")
    log = message.get("Log")
    if log:
        _LOGGER.debug("device log", extra=extra_fields(log=log))
    if status == 0:
        _LOGGER.info("got status message", extra=extra_fields(status=status, detail="restore finished"))
        return
    description = KNOWN_STATUS_ERRORS.get(status, "unknown error") if isinstance(status, int) else None
    _LOGGER.info("got status message", extra=extra_fields(status=status, detail=description))


__all__ = [
    "KNOWN_STATUS_ERRORS",
    "OPERATIONS",
    "handle_progress",
    "handle_status",
    "operation_name",
]
