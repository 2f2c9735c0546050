"""Tests for the invoice settlement poller."""

import pytest

from scheduler.poller import CancellationToken, InvoicePoller, PollOutcome
from conftest import FakeClock, ScriptedStatusSource


def make_poller(source, clock: FakeClock, **kwargs) -> InvoicePoller:
    return InvoicePoller(source, clock=clock, sleep=clock.sleep, **kwargs)


class TestPollOutcomes:
    """Terminal outcomes and timing on a simulated clock."""

    @pytest.mark.asyncio
    async def test_paid_on_fifth_attempt(self, fake_clock: FakeClock) -> None:
        source = ScriptedStatusSource(["PENDING"] * 4 + ["PAID"], clock=fake_clock)
        succeeded, failed = [], []
        poller = make_poller(
            source, fake_clock,
            on_success=succeeded.append,
            on_failure=failed.append,
        )

        result = await poller.poll("inv_abc123")

        assert result.outcome == PollOutcome.PAID
        assert result.success
        assert result.reason is None
        assert result.attempts == 5
        assert len(source.calls) == 5
        assert result.elapsed == pytest.approx(20.0)
        assert source.calls == [0.0, 5.0, 10.0, 15.0, 20.0]
        assert succeeded == [result]
        assert failed == []

    @pytest.mark.asyncio
    async def test_never_paid_times_out_after_ceiling(self, fake_clock: FakeClock) -> None:
        source = ScriptedStatusSource(["UNPAID"], clock=fake_clock)
        failed = []
        poller = make_poller(source, fake_clock, on_failure=failed.append)

        result = await poller.poll("inv_xyz789")

        assert result.outcome == PollOutcome.TIMEOUT
        assert result.reason == "timeout"
        assert len(source.calls) == 60
        assert result.elapsed == pytest.approx(300.0)
        assert poller.ceiling == 300.0
        assert failed == [result]

    @pytest.mark.asyncio
    async def test_pending_for_whole_budget_times_out_once(self, fake_clock: FakeClock) -> None:
        source = ScriptedStatusSource(["PENDING"], clock=fake_clock)
        failed = []
        poller = make_poller(source, fake_clock, on_failure=failed.append)

        result = await poller.poll("inv-1")

        assert result.outcome == PollOutcome.TIMEOUT
        assert len(source.calls) == 60
        assert len(failed) == 1
        assert result.invoice.state == "PENDING"

    @pytest.mark.asyncio
    async def test_fetch_error_counts_toward_budget(self, fake_clock: FakeClock) -> None:
        source = ScriptedStatusSource(
            ["PENDING", "PENDING", RuntimeError("connection reset"), "PENDING"],
            clock=fake_clock,
        )
        poller = make_poller(source, fake_clock)

        result = await poller.poll("inv-1")

        assert result.outcome == PollOutcome.TIMEOUT
        assert result.errors == 1
        assert result.last_error == "connection reset"
        assert len(source.calls) == 60
        # The failed query is followed by the short backoff instead of a full interval
        assert source.calls[3] - source.calls[2] == pytest.approx(2.0)
        assert result.elapsed == pytest.approx(300.0)

    @pytest.mark.asyncio
    async def test_cancelled_invoice_stops_polling(self, fake_clock: FakeClock) -> None:
        source = ScriptedStatusSource(["PENDING", "CANCELLED"], clock=fake_clock)
        failed = []
        poller = make_poller(source, fake_clock, on_failure=failed.append)

        result = await poller.poll("inv-1")

        assert result.outcome == PollOutcome.CANCELLED
        assert result.reason == "payment cancelled"
        assert result.attempts == 2
        assert result.invoice.state == "CANCELLED"
        assert len(source.calls) == 2
        assert len(failed) == 1

    @pytest.mark.asyncio
    async def test_unknown_state_keeps_polling(self, fake_clock: FakeClock) -> None:
        source = ScriptedStatusSource(["EXPIRED", "UNPAID", "PAID"], clock=fake_clock)
        poller = make_poller(source, fake_clock)

        result = await poller.poll("inv-1")

        assert result.outcome == PollOutcome.PAID
        assert result.attempts == 3

    @pytest.mark.asyncio
    async def test_fetch_latency_stays_inside_the_slot(self, fake_clock: FakeClock) -> None:
        source = ScriptedStatusSource(["UNPAID"], clock=fake_clock, latency=1.0)
        poller = make_poller(source, fake_clock)

        result = await poller.poll("inv-1")

        assert result.outcome == PollOutcome.TIMEOUT
        assert len(source.calls) == 60
        assert source.calls[:3] == [0.0, 5.0, 10.0]
        assert source.calls[-1] == pytest.approx(295.0)
        assert result.elapsed == pytest.approx(300.0)

    @pytest.mark.asyncio
    async def test_slow_queries_never_overlap(self, fake_clock: FakeClock) -> None:
        source = ScriptedStatusSource(["UNPAID", "UNPAID", "PAID"], clock=fake_clock, latency=7.0)
        poller = make_poller(source, fake_clock)

        await poller.poll("inv-1")

        assert source.max_in_flight == 1
        # A query slower than the interval is followed at once by the next one
        assert source.calls == [0.0, 7.0, 14.0]


class TestCallbacks:
    """Outcome callbacks fire exactly once and never break the poll."""

    @pytest.mark.asyncio
    async def test_async_callback_awaited(self, fake_clock: FakeClock) -> None:
        calls = []

        async def on_success(result) -> None:
            calls.append(result.invoice_id)

        poller = make_poller(ScriptedStatusSource(["PAID"], clock=fake_clock), fake_clock, on_success=on_success)

        await poller.poll("inv-1")

        assert calls == ["inv-1"]

    @pytest.mark.asyncio
    async def test_callback_exception_is_swallowed(self, fake_clock: FakeClock) -> None:
        failed = []

        def on_success(result) -> None:
            raise RuntimeError("listener down")

        poller = make_poller(
            ScriptedStatusSource(["PAID"], clock=fake_clock), fake_clock,
            on_success=on_success,
            on_failure=failed.append,
        )

        result = await poller.poll("inv-1")

        assert result.success
        assert failed == []

    @pytest.mark.asyncio
    async def test_on_attempt_sees_every_observation(self, fake_clock: FakeClock) -> None:
        seen = []
        poller = make_poller(
            ScriptedStatusSource(["UNPAID", "PENDING", "PAID"], clock=fake_clock), fake_clock,
            on_attempt=lambda attempt, invoice: seen.append((attempt, invoice.state)),
        )

        await poller.poll("inv-1")

        assert seen == [(1, "UNPAID"), (2, "PENDING"), (3, "PAID")]


class TestCancellation:
    """Caller-driven cancellation."""

    @pytest.mark.asyncio
    async def test_pre_cancelled_token_aborts_without_querying(self, fake_clock: FakeClock) -> None:
        source = ScriptedStatusSource(["UNPAID"], clock=fake_clock)
        token = CancellationToken()
        token.cancel()
        failed = []
        poller = make_poller(source, fake_clock, on_failure=failed.append)

        result = await poller.poll("inv-1", token=token)

        assert result.outcome == PollOutcome.ABORTED
        assert result.reason == "cancelled"
        assert result.attempts == 0
        assert source.calls == []
        assert failed == [result]

    @pytest.mark.asyncio
    async def test_cancel_during_poll(self, fake_clock: FakeClock) -> None:
        source = ScriptedStatusSource(["UNPAID"], clock=fake_clock)
        token = CancellationToken()

        def on_attempt(attempt, invoice) -> None:
            if attempt == 2:
                token.cancel("user request")

        poller = make_poller(source, fake_clock, on_attempt=on_attempt)

        result = await poller.poll("inv-1", token=token)

        assert result.outcome == PollOutcome.ABORTED
        assert result.attempts == 2
        assert token.reason == "user request"


class TestValidation:
    """Constructor and argument validation."""

    def test_non_positive_interval_rejected(self) -> None:
        with pytest.raises(ValueError, match="interval"):
            InvoicePoller(ScriptedStatusSource(["PAID"]), interval=0)

    def test_zero_attempts_rejected(self) -> None:
        with pytest.raises(ValueError, match="max_attempts"):
            InvoicePoller(ScriptedStatusSource(["PAID"]), max_attempts=0)

    def test_error_backoff_capped_at_interval(self) -> None:
        poller = InvoicePoller(ScriptedStatusSource(["PAID"]), interval=1.0, error_backoff=10.0)
        assert poller.error_backoff == 1.0

    @pytest.mark.asyncio
    async def test_empty_invoice_id_rejected(self, fake_clock: FakeClock) -> None:
        poller = make_poller(ScriptedStatusSource(["PAID"]), fake_clock)

        with pytest.raises(ValueError, match="invoice_id"):
            await poller.poll("  ")

    @pytest.mark.asyncio
    async def test_result_to_dict(self, fake_clock: FakeClock) -> None:
        poller = make_poller(ScriptedStatusSource(["PAID"], clock=fake_clock), fake_clock)

        data = (await poller.poll("inv-1")).to_dict()

        assert data["outcome"] == "paid"
        assert data["success"] is True
        assert data["state"] == "PAID"
        assert data["attempts"] == 1
