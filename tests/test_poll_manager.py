"""Tests for background poll sessions."""

import asyncio

import pytest

from conftest import FakeClock, ScriptedStatusSource
from scheduler import PollAlreadyActiveError, PollManager, PollOutcome, SessionStatus


def make_manager(source, clock: FakeClock, **kwargs) -> PollManager:
    return PollManager(source, clock=clock, sleep=clock.sleep, **kwargs)


class TestPollManager:
    """Test PollManager session handling."""

    @pytest.mark.asyncio
    async def test_start_and_wait(self, fake_clock: FakeClock) -> None:
        source = ScriptedStatusSource(["UNPAID", "PENDING", "PAID"], clock=fake_clock)
        manager = make_manager(source, fake_clock)

        session = manager.start("inv-1")
        result = await manager.wait("inv-1")

        assert result.outcome == PollOutcome.PAID
        assert session.status == SessionStatus.COMPLETED
        assert session.attempts == 3
        assert session.last_state == "PAID"
        assert session.to_dict()["result"]["success"] is True

    @pytest.mark.asyncio
    async def test_duplicate_start_rejected(self, fake_clock: FakeClock) -> None:
        manager = make_manager(ScriptedStatusSource(["PAID"], clock=fake_clock), fake_clock)

        manager.start("inv-1")
        with pytest.raises(PollAlreadyActiveError):
            manager.start("inv-1")

        await manager.wait("inv-1")

    @pytest.mark.asyncio
    async def test_restart_after_finish(self, fake_clock: FakeClock) -> None:
        manager = make_manager(ScriptedStatusSource(["PAID"], clock=fake_clock), fake_clock)

        first = manager.start("inv-1")
        await manager.wait("inv-1")
        second = manager.start("inv-1")
        await manager.wait("inv-1")

        assert first.id != second.id
        assert manager.get_session("inv-1") is second

    @pytest.mark.asyncio
    async def test_empty_invoice_id_rejected(self, fake_clock: FakeClock) -> None:
        manager = make_manager(ScriptedStatusSource(["PAID"]), fake_clock)

        with pytest.raises(ValueError):
            manager.start("")

    @pytest.mark.asyncio
    async def test_listeners_receive_results(self, fake_clock: FakeClock) -> None:
        manager = make_manager(ScriptedStatusSource(["UNPAID", "PAID"], clock=fake_clock), fake_clock)
        finished, observed = [], []

        async def on_finished(result) -> None:
            finished.append(result.outcome)

        manager.add_listener(on_finished)
        manager.add_attempt_listener(lambda attempt, invoice: observed.append(invoice.state))

        manager.start("inv-1")
        await manager.wait("inv-1")

        assert finished == [PollOutcome.PAID]
        assert observed == ["UNPAID", "PAID"]

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_others(self, fake_clock: FakeClock) -> None:
        manager = make_manager(ScriptedStatusSource(["PAID"], clock=fake_clock), fake_clock)
        finished = []

        def broken(result) -> None:
            raise RuntimeError("boom")

        manager.add_listener(broken)
        manager.add_listener(finished.append)

        manager.start("inv-1")
        await manager.wait("inv-1")

        assert len(finished) == 1

    @pytest.mark.asyncio
    async def test_timeout_marks_session_failed(self, fake_clock: FakeClock) -> None:
        manager = make_manager(
            ScriptedStatusSource(["UNPAID"], clock=fake_clock), fake_clock,
            interval=1.0, max_attempts=3,
        )

        session = manager.start("inv-1")
        result = await manager.wait("inv-1")

        assert result.outcome == PollOutcome.TIMEOUT
        assert session.status == SessionStatus.FAILED

    @pytest.mark.asyncio
    async def test_cancel_active_poll(self) -> None:
        source = ScriptedStatusSource(["UNPAID"])
        manager = PollManager(source, interval=30.0, max_attempts=10)

        session = manager.start("inv-1")
        while not source.calls:
            await asyncio.sleep(0)

        assert manager.cancel("inv-1") is True
        result = await asyncio.wait_for(manager.wait("inv-1"), timeout=5)

        assert result.outcome == PollOutcome.ABORTED
        assert session.status == SessionStatus.CANCELLED
        assert manager.cancel("inv-1") is False

    def test_cancel_unknown_invoice(self) -> None:
        manager = PollManager(ScriptedStatusSource(["PAID"]))
        assert manager.cancel("missing") is False

    @pytest.mark.asyncio
    async def test_wait_unknown_invoice(self) -> None:
        manager = PollManager(ScriptedStatusSource(["PAID"]))
        assert await manager.wait("missing") is None

    @pytest.mark.asyncio
    async def test_shutdown_cancels_everything(self) -> None:
        manager = PollManager(ScriptedStatusSource(["UNPAID"]), interval=30.0, max_attempts=10)

        manager.start("inv-1")
        manager.start("inv-2")
        await asyncio.sleep(0)

        await asyncio.wait_for(manager.shutdown(), timeout=5)

        assert manager.list_active() == []
        stats = manager.get_stats()
        assert stats["total_sessions"] == 2
        assert stats["by_status"] == {"cancelled": 2}

    @pytest.mark.asyncio
    async def test_get_stats(self, fake_clock: FakeClock) -> None:
        manager = make_manager(ScriptedStatusSource(["PAID"], clock=fake_clock), fake_clock)

        manager.start("inv-1")
        await manager.wait("inv-1")
        stats = manager.get_stats()

        assert stats["total_sessions"] == 1
        assert stats["active"] == 0
        assert stats["interval"] == 5.0
        assert stats["max_attempts"] == 60
        assert stats["by_status"] == {"completed": 1}


class TestSessionRetention:
    """Finished sessions do not accumulate forever."""

    @pytest.mark.asyncio
    async def test_finished_sessions_expire(self, fake_clock: FakeClock) -> None:
        manager = make_manager(ScriptedStatusSource(["PAID"], clock=fake_clock), fake_clock, retention=60.0)

        manager.start("inv-1")
        await manager.wait("inv-1")
        fake_clock.now += 61.0
        manager.start("inv-2")
        await manager.wait("inv-2")

        assert manager.get_session("inv-1") is None
        assert manager.get_session("inv-2").status == SessionStatus.COMPLETED
        assert manager.get_stats()["total_sessions"] == 1

    @pytest.mark.asyncio
    async def test_finished_sessions_capped(self, fake_clock: FakeClock) -> None:
        manager = make_manager(ScriptedStatusSource(["PAID"], clock=fake_clock), fake_clock, max_finished=2)

        for invoice_id in ("inv-1", "inv-2", "inv-3"):
            manager.start(invoice_id)
            await manager.wait(invoice_id)
            fake_clock.now += 1.0

        assert manager.get_session("inv-1") is None
        assert manager.get_session("inv-2") is not None
        assert manager.get_session("inv-3") is not None

    @pytest.mark.asyncio
    async def test_active_sessions_are_never_pruned(self) -> None:
        clock = FakeClock()
        never = asyncio.Event()

        async def sleep(delay: float) -> None:
            await never.wait()

        manager = PollManager(ScriptedStatusSource(["UNPAID"]), clock=clock, sleep=sleep, retention=0.0)

        manager.start("inv-1")
        await asyncio.sleep(0)
        clock.now += 10_000.0
        manager.start("inv-2")

        assert manager.get_session("inv-1").is_active
        await manager.shutdown()
