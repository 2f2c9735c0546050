"""Scheduler module for invoice settlement polling."""

from scheduler.manager import PollAlreadyActiveError, PollManager, PollSession, SessionStatus
from scheduler.poller import (
    CancellationToken,
    InvoicePoller,
    PollOutcome,
    PollResult,
)

__all__ = [
    "InvoicePoller",
    "PollOutcome",
    "PollResult",
    "CancellationToken",
    "PollManager",
    "PollSession",
    "SessionStatus",
    "PollAlreadyActiveError",
]
