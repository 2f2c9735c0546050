"""Invoice settlement poller.

Observes one invoice through an async status fetch until it reaches a
terminal state, the attempt budget runs out, or the caller cancels.
"""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from state_machine.invoice_state import InvoiceState
from state_machine.models import Invoice

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 5.0
DEFAULT_MAX_ATTEMPTS = 60
DEFAULT_ERROR_BACKOFF = 2.0

FetchStatus = Callable[[str], Awaitable[Invoice]]
Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[Any]]


class PollOutcome(str, Enum):
    """Final outcome of a poll."""

    PAID = "paid"
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"
    ABORTED = "aborted"


FAILURE_REASONS: dict[PollOutcome, str] = {
    PollOutcome.CANCELLED: "payment cancelled",
    PollOutcome.TIMEOUT: "timeout",
    PollOutcome.ABORTED: "cancelled",
}


class CancellationToken:
    """Stops an in-flight poll at its next suspension point."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


@dataclass
class PollResult:
    """Result of a finished poll."""

    invoice_id: str
    outcome: PollOutcome
    attempts: int
    errors: int = 0
    elapsed: float = 0.0
    invoice: Optional[Invoice] = None
    last_error: Optional[str] = None
    finished_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def success(self) -> bool:
        return self.outcome == PollOutcome.PAID

    @property
    def reason(self) -> Optional[str]:
        """Human readable failure reason, None on success."""
        return FAILURE_REASONS.get(self.outcome)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "invoice_id": self.invoice_id,
            "outcome": self.outcome.value,
            "success": self.success,
            "reason": self.reason,
            "attempts": self.attempts,
            "errors": self.errors,
            "elapsed": round(self.elapsed, 3),
            "state": self.invoice.state if self.invoice else None,
            "last_error": self.last_error,
            "finished_at": self.finished_at.isoformat(),
        }


async def maybe_await(value: Any) -> None:
    if inspect.isawaitable(value):
        await value


class InvoicePoller:
    """
    Bounded, non-overlapping poll of an invoice's settlement state.

    Every query owns one interval slot. A PAID or CANCELLED observation ends
    the poll at once. Other states keep it going; states outside the known
    enumeration are logged and treated as transient. A failed fetch counts
    toward the attempt budget and owns an ``error_backoff`` slot instead
    of a full interval. Fetch time is spent inside the slot. When the
    budget is spent without a terminal state the poller waits out the
    wall-clock ceiling (``interval * max_attempts``) and then reports a
    timeout.

    Outcomes are reported exactly once through ``on_success`` or
    ``on_failure``; ``poll`` also returns the same ``PollResult``.
    """

    def __init__(
        self,
        fetch_status: FetchStatus,
        interval: float = DEFAULT_POLL_INTERVAL,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        error_backoff: float = DEFAULT_ERROR_BACKOFF,
        on_success: Optional[Callable[[PollResult], Any]] = None,
        on_failure: Optional[Callable[[PollResult], Any]] = None,
        on_attempt: Optional[Callable[[int, Invoice], Any]] = None,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ):
        """
        Initialize the poller.

        Args:
            fetch_status: Coroutine returning the current invoice for an id.
            interval: Seconds between the start of consecutive queries.
            max_attempts: Query budget.
            error_backoff: Wait after a failed query, capped at ``interval``.
            on_success: Called with the result when the invoice is paid.
            on_failure: Called with the result on cancel, timeout or abort.
            on_attempt: Called after every successful query.
            clock: Monotonic clock, injectable for tests.
            sleep: Sleep coroutine, injectable for tests.
        """
        if interval <= 0:
            raise ValueError("interval must be positive")
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if error_backoff < 0:
            raise ValueError("error_backoff must not be negative")

        self.fetch_status = fetch_status
        self.interval = interval
        self.max_attempts = max_attempts
        self.error_backoff = min(error_backoff, interval)
        self.on_success = on_success
        self.on_failure = on_failure
        self.on_attempt = on_attempt
        self._clock = clock
        self._sleep = sleep

    @property
    def ceiling(self) -> float:
        """Wall-clock budget of one poll in seconds."""
        return self.interval * self.max_attempts

    async def poll(
        self,
        invoice_id: str,
        token: Optional[CancellationToken] = None,
    ) -> PollResult:
        """
        Poll until a terminal state, budget exhaustion or cancellation.

        Raises:
            ValueError: If invoice_id is empty.
        """
        if not invoice_id or not invoice_id.strip():
            raise ValueError("invoice_id must not be empty")

        token = token or CancellationToken()
        started = self._clock()
        deadline = started + self.ceiling

        attempts = 0
        errors = 0
        last_invoice: Optional[Invoice] = None
        last_error: Optional[str] = None
        outcome: Optional[PollOutcome] = None

        logger.info(
            f"Polling invoice {invoice_id} every {self.interval}s "
            f"(max {self.max_attempts} attempts)"
        )

        while outcome is None:
            if token.cancelled:
                outcome = PollOutcome.ABORTED
                break

            if attempts >= self.max_attempts or (attempts and self._clock() >= deadline):
                outcome = PollOutcome.TIMEOUT
                break

            attempts += 1
            slot = self.interval
            attempt_start = self._clock()

            try:
                invoice = await self.fetch_status(invoice_id)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                errors += 1
                last_error = str(e) or type(e).__name__
                slot = self.error_backoff
                logger.warning(
                    f"Invoice {invoice_id}: status fetch failed on attempt "
                    f"{attempts}/{self.max_attempts}: {last_error}"
                )
            else:
                last_invoice = invoice
                await self._notify_attempt(attempts, invoice)

                if invoice.state == InvoiceState.PAID:
                    outcome = PollOutcome.PAID
                    break
                if invoice.state == InvoiceState.CANCELLED:
                    outcome = PollOutcome.CANCELLED
                    break
                if invoice.state not in InvoiceState.open_states():
                    logger.warning(
                        f"Invoice {invoice_id}: unrecognized state {invoice.state!r} "
                        f"on attempt {attempts}, continuing"
                    )

            # The slot starts with the query, so fetch time is part of it
            delay = slot - (self._clock() - attempt_start)
            if attempts >= self.max_attempts:
                delay = deadline - self._clock()

            if delay > 0 and await self._wait(delay, token):
                outcome = PollOutcome.ABORTED

        result = PollResult(
            invoice_id=invoice_id,
            outcome=outcome,
            attempts=attempts,
            errors=errors,
            elapsed=self._clock() - started,
            invoice=last_invoice,
            last_error=last_error,
        )
        await self._signal(result)
        return result

    async def _wait(self, delay: float, token: CancellationToken) -> bool:
        """Sleep for delay seconds. Returns True if cancelled meanwhile."""
        sleeper = asyncio.ensure_future(self._sleep(delay))
        waiter = asyncio.ensure_future(token.wait())
        try:
            await asyncio.wait({sleeper, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for pending in (sleeper, waiter):
                if not pending.done():
                    pending.cancel()
        return token.cancelled

    async def _notify_attempt(self, attempt: int, invoice: Invoice) -> None:
        if not self.on_attempt:
            return
        try:
            await maybe_await(self.on_attempt(attempt, invoice))
        except Exception as e:
            logger.exception(f"on_attempt callback failed: {e}")

    async def _signal(self, result: PollResult) -> None:
        if result.success:
            logger.info(
                f"Invoice {result.invoice_id} paid after {result.attempts} attempts"
            )
            callback = self.on_success
        else:
            logger.warning(
                f"Invoice {result.invoice_id} not paid ({result.reason}) "
                f"after {result.attempts} attempts"
            )
            callback = self.on_failure

        if not callback:
            return
        try:
            await maybe_await(callback(result))
        except Exception as e:
            logger.exception(f"Poll outcome callback failed: {e}")
