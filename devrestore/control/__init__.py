"""Restore control path exports."""
from .dispatcher import DataRequestDispatcher, DispatchResult
from .session import (
    CancellationToken,
    MessageResult,
    RestoreSession,
    SessionState,
    SessionSummary,
)

__all__ = [
    "CancellationToken",
    "DataRequestDispatcher",
    "DispatchResult",
    "MessageResult",
    "RestoreSession",
    "SessionState",
    "SessionSummary",
]
