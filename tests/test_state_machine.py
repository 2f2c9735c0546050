"""Tests for the settlement state machine and invoice models."""

from decimal import Decimal

import pytest
from pydantic import ValidationError

from state_machine import Invoice, InvoiceStatus, Money
from state_machine.invoice_state import InvoiceState, SettlementFSM, TransitionError


class TestSettlementFSM:
    """Test suite for SettlementFSM."""

    def test_initial_state(self) -> None:
        """Test that FSM starts UNPAID."""
        fsm = SettlementFSM(invoice_id="inv-1")
        assert fsm.current_state == InvoiceState.UNPAID
        assert not fsm.is_terminal

    def test_invalid_initial_state(self) -> None:
        with pytest.raises(ValueError, match="Invalid initial state"):
            SettlementFSM(invoice_id="inv-1", initial_state="REFUNDED")

    def test_unpaid_to_pending_to_paid(self) -> None:
        fsm = SettlementFSM(invoice_id="inv-1")

        fsm.trigger("mark_pending")
        assert fsm.current_state == InvoiceState.PENDING

        result = fsm.trigger("settle")
        assert result["previous_state"] == InvoiceState.PENDING
        assert fsm.current_state == InvoiceState.PAID
        assert fsm.is_terminal

    def test_unpaid_can_settle_directly(self) -> None:
        fsm = SettlementFSM(invoice_id="inv-1")
        fsm.trigger("settle")
        assert fsm.current_state == InvoiceState.PAID

    def test_cancel_from_open_states(self) -> None:
        for initial in InvoiceState.open_states():
            fsm = SettlementFSM(invoice_id="inv-1", initial_state=initial)
            fsm.trigger("cancel")
            assert fsm.current_state == InvoiceState.CANCELLED

    def test_terminal_state_rejects_transitions(self) -> None:
        fsm = SettlementFSM(invoice_id="inv-1", initial_state=InvoiceState.PAID)

        with pytest.raises(TransitionError, match="terminal state") as exc_info:
            fsm.trigger("cancel")

        assert exc_info.value.current_state == InvoiceState.PAID
        assert exc_info.value.attempted_trigger == "cancel"

    def test_pending_cannot_go_back(self) -> None:
        fsm = SettlementFSM(invoice_id="inv-1", initial_state=InvoiceState.PENDING)

        with pytest.raises(TransitionError, match="Available triggers"):
            fsm.trigger("mark_pending")

    def test_available_triggers(self) -> None:
        fsm = SettlementFSM(invoice_id="inv-1")
        assert set(fsm.get_available_triggers()) == {"mark_pending", "settle", "cancel"}

        fsm.trigger("settle")
        assert fsm.get_available_triggers() == []

    def test_history_and_callback(self) -> None:
        transitions = []
        fsm = SettlementFSM(
            invoice_id="inv-1",
            on_transition=lambda invoice_id, src, dst: transitions.append((invoice_id, src, dst)),
        )

        fsm.trigger("mark_pending")
        fsm.trigger("settle")

        assert transitions == [
            ("inv-1", InvoiceState.UNPAID, InvoiceState.PENDING),
            ("inv-1", InvoiceState.PENDING, InvoiceState.PAID),
        ]
        assert [entry["trigger"] for entry in fsm.history] == ["initialized", "mark_pending", "settle"]

    def test_to_dict_round_trip(self) -> None:
        fsm = SettlementFSM(invoice_id="inv-1")
        fsm.trigger("mark_pending")

        restored = SettlementFSM.from_dict(fsm.to_dict())

        assert restored.invoice_id == "inv-1"
        assert restored.current_state == InvoiceState.PENDING


class TestObserve:
    """Observed states only move the machine forward."""

    def test_observe_forward(self) -> None:
        fsm = SettlementFSM(invoice_id="inv-1")

        assert fsm.observe("PENDING") is True
        assert fsm.observe("PAID") is True
        assert fsm.current_state == InvoiceState.PAID

    def test_observe_same_state_is_noop(self) -> None:
        fsm = SettlementFSM(invoice_id="inv-1")
        assert fsm.observe("UNPAID") is False

        fsm.observe("PAID")
        assert fsm.observe("PAID") is False

    def test_observe_backward_is_ignored(self) -> None:
        fsm = SettlementFSM(invoice_id="inv-1", initial_state=InvoiceState.PENDING)

        assert fsm.observe("UNPAID") is False
        assert fsm.current_state == InvoiceState.PENDING

    def test_observe_unknown_state_is_ignored(self) -> None:
        fsm = SettlementFSM(invoice_id="inv-1")

        assert fsm.observe("EXPIRED") is False
        assert fsm.current_state == InvoiceState.UNPAID

    def test_terminal_state_is_immutable(self) -> None:
        fsm = SettlementFSM(invoice_id="inv-1", initial_state=InvoiceState.PAID)

        for observed in ("CANCELLED", "UNPAID", "PENDING", "EXPIRED"):
            with pytest.raises(TransitionError):
                fsm.observe(observed)
        assert fsm.current_state == InvoiceState.PAID


class TestInvoiceModel:
    """Test the Invoice and Money models."""

    def test_from_api_payload(self) -> None:
        invoice = Invoice.from_api({
            "invoiceId": "f1b2c3",
            "amount": {"amount": "19.99", "currency": "usd"},
            "state": "UNPAID",
            "description": "CryptoQuest Legendary Warrior Subscription",
            "created": "2026-01-01T00:00:00Z",
            "correlationId": "sub_1",
        })

        assert invoice.invoice_id == "f1b2c3"
        assert invoice.amount == Money(amount=Decimal("19.99"), currency="USD")
        assert invoice.status == InvoiceStatus.UNPAID
        assert not invoice.is_terminal

    def test_unknown_state_is_kept(self) -> None:
        invoice = Invoice(invoice_id="x", amount=Money(amount=Decimal("1")), state="EXPIRED")

        assert invoice.state == "EXPIRED"
        assert invoice.status is None
        assert not invoice.is_terminal

    def test_blank_invoice_id_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Invoice(invoice_id="   ", amount=Money(amount=Decimal("1")))

    def test_negative_amount_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Money(amount=Decimal("-1"))

    def test_to_dict_uses_wire_names(self) -> None:
        invoice = Invoice(invoice_id="x", amount=Money(amount=Decimal("9.99")), state="PAID")

        data = invoice.to_dict()

        assert data["invoiceId"] == "x"
        assert data["amount"] == {"amount": "9.99", "currency": "USD"}
        assert data["state"] == "PAID"
