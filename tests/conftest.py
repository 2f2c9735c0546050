"""
Pytest configuration and fixtures.

CRITICAL: This file is loaded BEFORE test collection.
Environment variables MUST be loaded here for pytest.mark.skipif to work correctly.
"""

from decimal import Decimal
from typing import Optional, Union

import pytest
from dotenv import load_dotenv

from state_machine.models import Invoice, Money

# Load environment variables before pytest collects tests
# This ensures skipif conditions can access environment variables
load_dotenv()


class FakeClock:
    """Monotonic clock whose sleep advances time instantly."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        self.now += delay


class ScriptedStatusSource:
    """
    Status fetch that replays a script of states or exceptions.

    The last entry repeats once the script runs out.
    """

    def __init__(
        self,
        script: list[Union[str, Exception]],
        clock: Optional[FakeClock] = None,
        latency: float = 0.0,
    ):
        self.script = script
        self.clock = clock
        self.latency = latency
        self.calls: list[float] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def __call__(self, invoice_id: str) -> Invoice:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.clock:
                self.calls.append(self.clock.now)
                if self.latency:
                    await self.clock.sleep(self.latency)
            else:
                self.calls.append(0.0)

            step = self.script[min(len(self.calls) - 1, len(self.script) - 1)]
            if isinstance(step, Exception):
                raise step
            return make_invoice(invoice_id, step)
        finally:
            self.in_flight -= 1


def make_invoice(invoice_id: str = "inv-1", state: str = "UNPAID", amount: str = "19.99") -> Invoice:
    return Invoice(
        invoice_id=invoice_id,
        amount=Money(amount=Decimal(amount), currency="USD"),
        state=state,
        description="CryptoQuest Legendary Warrior Subscription",
    )


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()
