"""Background poll sessions, one per invoice."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional
from uuid import uuid4

from scheduler.poller import (
    DEFAULT_ERROR_BACKOFF,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_POLL_INTERVAL,
    CancellationToken,
    Clock,
    FetchStatus,
    InvoicePoller,
    PollOutcome,
    PollResult,
    Sleep,
    maybe_await,
)
from state_machine.models import Invoice

logger = logging.getLogger(__name__)

DEFAULT_RETENTION = 3600.0
DEFAULT_MAX_FINISHED = 1000


class SessionStatus(str, Enum):
    """Poll session status."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


ACTIVE_STATUSES = (SessionStatus.PENDING, SessionStatus.RUNNING)


class PollAlreadyActiveError(Exception):
    """Raised when an invoice already has a running poll."""

    def __init__(self, invoice_id: str):
        self.invoice_id = invoice_id
        super().__init__(f"Invoice {invoice_id} is already being polled")


@dataclass
class PollSession:
    """Tracks one background poll."""

    invoice_id: str
    id: str = field(default_factory=lambda: str(uuid4()))
    status: SessionStatus = SessionStatus.PENDING
    token: CancellationToken = field(default_factory=CancellationToken)
    attempts: int = 0
    last_state: Optional[str] = None
    result: Optional[PollResult] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    finished_at: Optional[float] = None
    task: Optional["asyncio.Task[Any]"] = field(default=None, repr=False)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "status": self.status.value,
            "attempts": self.attempts,
            "last_state": self.last_state,
            "result": self.result.to_dict() if self.result else None,
            "created_at": self.created_at.isoformat(),
        }


class PollManager:
    """
    Runs invoice polls as asyncio tasks without blocking the caller.

    Only one poll per invoice may be active. Listeners registered with
    ``add_listener`` receive every finished ``PollResult`` once.

    Only the latest session per invoice is kept. Finished sessions are
    dropped after ``retention`` seconds, and at most ``max_finished`` of
    them are kept at any time.
    """

    def __init__(
        self,
        fetch_status: FetchStatus,
        interval: float = DEFAULT_POLL_INTERVAL,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        error_backoff: float = DEFAULT_ERROR_BACKOFF,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
        retention: float = DEFAULT_RETENTION,
        max_finished: int = DEFAULT_MAX_FINISHED,
    ):
        self.fetch_status = fetch_status
        self.retention = retention
        self.max_finished = max_finished
        self.interval = interval
        self.max_attempts = max_attempts
        self.error_backoff = error_backoff
        self._clock = clock
        self._sleep = sleep
        self._sessions: dict[str, PollSession] = {}
        self._listeners: list[Callable[[PollResult], Any]] = []
        self._attempt_listeners: list[Callable[[int, Invoice], Any]] = []

    def add_listener(self, listener: Callable[[PollResult], Any]) -> None:
        """Register a callback (sync or async) for finished polls."""
        self._listeners.append(listener)

    def add_attempt_listener(self, listener: Callable[[int, Invoice], Any]) -> None:
        """Register a callback (sync or async) for every observed invoice."""
        self._attempt_listeners.append(listener)

    def start(self, invoice_id: str) -> PollSession:
        """
        Start polling an invoice in the background.

        Must be called from a running event loop.

        Raises:
            PollAlreadyActiveError: If the invoice already has an active poll.
            ValueError: If invoice_id is empty.
        """
        if not invoice_id or not invoice_id.strip():
            raise ValueError("invoice_id must not be empty")

        self._prune()
        existing = self._sessions.get(invoice_id)
        if existing and existing.is_active:
            raise PollAlreadyActiveError(invoice_id)

        session = PollSession(invoice_id=invoice_id)

        async def record_attempt(attempt: int, invoice: Invoice) -> None:
            session.attempts = attempt
            session.last_state = invoice.state
            for listener in self._attempt_listeners:
                await maybe_await(listener(attempt, invoice))

        async def finish(result: PollResult) -> None:
            await self._finish(session, result)

        poller = InvoicePoller(
            self.fetch_status,
            interval=self.interval,
            max_attempts=self.max_attempts,
            error_backoff=self.error_backoff,
            on_success=finish,
            on_failure=finish,
            on_attempt=record_attempt,
            clock=self._clock,
            sleep=self._sleep,
        )

        self._sessions[invoice_id] = session
        session.task = asyncio.create_task(self._run(session, poller))
        logger.info(f"Started poll session {session.id} for invoice {invoice_id}")

        return session

    async def _run(self, session: PollSession, poller: InvoicePoller) -> None:
        session.status = SessionStatus.RUNNING
        try:
            await poller.poll(session.invoice_id, token=session.token)
        except asyncio.CancelledError:
            session.status = SessionStatus.CANCELLED
            session.finished_at = self._clock()
            raise
        except Exception as e:
            logger.exception(f"Poll session {session.id} crashed: {e}")
            session.status = SessionStatus.FAILED
            session.finished_at = self._clock()

    async def _finish(self, session: PollSession, result: PollResult) -> None:
        session.result = result
        session.finished_at = self._clock()
        session.attempts = result.attempts
        if result.success:
            session.status = SessionStatus.COMPLETED
        elif result.outcome == PollOutcome.ABORTED:
            session.status = SessionStatus.CANCELLED
        else:
            session.status = SessionStatus.FAILED

        for listener in self._listeners:
            try:
                await maybe_await(listener(result))
            except Exception as e:
                logger.exception(f"Poll listener failed for {result.invoice_id}: {e}")

        self._prune()

    def _prune(self) -> None:
        """Drop finished sessions past retention, oldest first beyond the cap."""
        now = self._clock()
        finished = sorted(
            (s for s in self._sessions.values() if not s.is_active and s.finished_at is not None),
            key=lambda s: s.finished_at,
        )
        expired = [s for s in finished if now - s.finished_at >= self.retention]
        kept = [s for s in finished if now - s.finished_at < self.retention]
        if len(kept) > self.max_finished:
            expired.extend(kept[: len(kept) - self.max_finished])

        for session in expired:
            if self._sessions.get(session.invoice_id) is session:
                del self._sessions[session.invoice_id]
        if expired:
            logger.debug(f"Pruned {len(expired)} finished poll sessions")

    def cancel(self, invoice_id: str, reason: str = "cancelled") -> bool:
        """Cancel the active poll for an invoice."""
        session = self._sessions.get(invoice_id)
        if session and session.is_active:
            session.token.cancel(reason)
            logger.info(f"Cancelling poll session {session.id} for invoice {invoice_id}")
            return True
        return False

    def get_session(self, invoice_id: str) -> Optional[PollSession]:
        """Get the latest session for an invoice."""
        return self._sessions.get(invoice_id)

    def list_active(self) -> list[PollSession]:
        """List all active sessions."""
        return [s for s in self._sessions.values() if s.is_active]

    async def wait(self, invoice_id: str) -> Optional[PollResult]:
        """Wait for an invoice's current session to finish."""
        session = self._sessions.get(invoice_id)
        if not session:
            return None
        if session.task:
            await asyncio.shield(session.task)
        return session.result

    async def shutdown(self) -> None:
        """Cancel every active poll and wait for them to stop."""
        tasks = []
        for session in self.list_active():
            session.token.cancel("shutdown")
            if session.task:
                tasks.append(session.task)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Poll manager stopped")

    def get_stats(self) -> dict[str, Any]:
        """Get poll statistics."""
        status_counts: dict[str, int] = {}
        for session in self._sessions.values():
            status_counts[session.status.value] = status_counts.get(session.status.value, 0) + 1

        return {
            "total_sessions": len(self._sessions),
            "active": len(self.list_active()),
            "interval": self.interval,
            "max_attempts": self.max_attempts,
            "by_status": status_counts,
        }
