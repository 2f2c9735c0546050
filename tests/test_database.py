"""Tests for database storage."""

import logging

import pytest

from conftest import make_invoice
from database import DatabaseInvoiceStore, get_engine, init_db, reset_engine
from payments.errors import InvoiceNotFoundError, InvoiceNotPayableError
from state_machine.invoice_state import InvoiceState, TransitionError


@pytest.fixture
def db_store():
    """Create a fresh database store for each test."""
    # Reset any existing engine
    reset_engine()

    # Initialize in-memory SQLite database
    init_db("sqlite:///:memory:")

    store = DatabaseInvoiceStore()
    yield store

    # Cleanup
    reset_engine()


def record(store: DatabaseInvoiceStore, invoice_id: str = "inv-1", email: str = "hero@example.com", plan: str = "premium"):
    return store.record_invoice(make_invoice(invoice_id), plan_id=plan, payer_email=email)


class TestInvoiceRecords:
    """Test invoice persistence."""

    def test_record_invoice(self, db_store):
        """Test recording a newly issued invoice."""
        stored = record(db_store)

        assert stored["invoice_id"] == "inv-1"
        assert stored["state"] == InvoiceState.UNPAID
        assert stored["amount"] == "19.99"
        assert stored["currency"] == "USD"
        assert stored["plan_id"] == "premium"
        assert stored["is_terminal"] is False
        assert stored["settled_at"] is None

    def test_record_duplicate_invoice_fails(self, db_store):
        """Test that duplicate invoice ids are rejected."""
        record(db_store)

        with pytest.raises(ValueError, match="already exists"):
            record(db_store)

    def test_get_invoice(self, db_store):
        record(db_store)

        assert db_store.get_invoice("inv-1")["payer_email"] == "hero@example.com"
        assert db_store.get_invoice("missing") is None

    def test_list_invoices_with_filters(self, db_store):
        record(db_store, "inv-1", email="a@example.com")
        record(db_store, "inv-2", email="b@example.com")
        record(db_store, "inv-3", email="a@example.com")
        db_store.apply_observation("inv-3", "PAID")

        assert [i["invoice_id"] for i in db_store.list_invoices()] == ["inv-3", "inv-2", "inv-1"]
        assert [i["invoice_id"] for i in db_store.list_invoices(payer_email="a@example.com")] == ["inv-3", "inv-1"]
        assert [i["invoice_id"] for i in db_store.list_invoices(state="PAID")] == ["inv-3"]
        assert [i["invoice_id"] for i in db_store.list_invoices(limit=1, offset=1)] == ["inv-2"]


class TestObservations:
    """Observed states move stored invoices forward only."""

    def test_forward_observations(self, db_store):
        record(db_store)

        assert db_store.apply_observation("inv-1", "PENDING") is True
        assert db_store.apply_observation("inv-1", "PAID") is True

        stored = db_store.get_invoice("inv-1")
        assert stored["state"] == InvoiceState.PAID
        assert stored["is_terminal"] is True
        assert stored["settled_at"] is not None

    def test_history(self, db_store):
        record(db_store)
        db_store.apply_observation("inv-1", "PENDING")
        db_store.apply_observation("inv-1", "PAID")

        history = db_store.get_history("inv-1")

        assert [(h["previous_state"], h["new_state"], h["trigger"]) for h in history] == [
            (None, "UNPAID", "issued"),
            ("UNPAID", "PENDING", "mark_pending"),
            ("PENDING", "PAID", "settle"),
        ]

    def test_repeated_and_backward_observations_are_noops(self, db_store):
        record(db_store)
        db_store.apply_observation("inv-1", "PENDING")

        assert db_store.apply_observation("inv-1", "PENDING") is False
        assert db_store.apply_observation("inv-1", "UNPAID") is False
        assert db_store.apply_observation("inv-1", "EXPIRED") is False
        assert db_store.get_invoice("inv-1")["state"] == InvoiceState.PENDING
        assert len(db_store.get_history("inv-1")) == 2

    def test_terminal_invoice_cannot_change(self, db_store):
        record(db_store)
        db_store.apply_observation("inv-1", "CANCELLED")

        with pytest.raises(TransitionError):
            db_store.apply_observation("inv-1", "PAID")

        assert db_store.get_invoice("inv-1")["state"] == InvoiceState.CANCELLED

    def test_unknown_invoice(self, db_store):
        with pytest.raises(InvoiceNotFoundError):
            db_store.apply_observation("missing", "PAID")


class TestSubscriptions:
    """Subscription activation from paid invoices."""

    def test_activate_paid_invoice(self, db_store):
        record(db_store)
        db_store.apply_observation("inv-1", "PAID")

        subscription = db_store.activate_subscription("inv-1")

        assert subscription["plan_id"] == "premium"
        assert subscription["status"] == "active"
        assert db_store.get_active_subscription("hero@example.com")["invoice_id"] == "inv-1"

    def test_activation_is_idempotent(self, db_store):
        record(db_store)
        db_store.apply_observation("inv-1", "PAID")

        first = db_store.activate_subscription("inv-1")
        second = db_store.activate_subscription("inv-1")

        assert first["id"] == second["id"]
        assert db_store.get_stats()["active_subscriptions"] == 1

    def test_unpaid_invoice_cannot_activate(self, db_store):
        record(db_store)

        with pytest.raises(InvoiceNotPayableError):
            db_store.activate_subscription("inv-1")

    def test_invoice_without_plan_cannot_activate(self, db_store):
        db_store.record_invoice(make_invoice("inv-merch"))
        db_store.apply_observation("inv-merch", "PAID")

        with pytest.raises(ValueError, match="not a subscription invoice"):
            db_store.activate_subscription("inv-merch")

    def test_new_plan_replaces_old(self, db_store):
        record(db_store, "inv-1", plan="basic")
        record(db_store, "inv-2", plan="ultimate")
        db_store.apply_observation("inv-1", "PAID")
        db_store.apply_observation("inv-2", "PAID")

        db_store.activate_subscription("inv-1")
        db_store.activate_subscription("inv-2")

        assert db_store.get_active_subscription("hero@example.com")["plan_id"] == "ultimate"
        assert db_store.get_stats()["active_subscriptions"] == 1

    def test_no_subscription(self, db_store):
        assert db_store.get_active_subscription("nobody@example.com") is None


class TestStats:
    def test_stats_by_state(self, db_store):
        record(db_store, "inv-1")
        record(db_store, "inv-2")
        db_store.apply_observation("inv-2", "PAID")

        stats = db_store.get_stats()

        assert stats["total_invoices"] == 2
        assert stats["by_state"] == {"UNPAID": 1, "PAID": 1}
        assert stats["active_subscriptions"] == 0


class TestEngine:
    def test_different_url_keeps_engine_and_warns(self, db_store, caplog):
        engine = get_engine()

        with caplog.at_level(logging.WARNING, logger="database.session"):
            assert init_db("sqlite:///./other.db") is engine

        assert "already bound to sqlite:///:memory:" in caplog.text
        assert db_store.get_stats()["total_invoices"] == 0

    def test_same_url_is_silent(self, db_store, caplog):
        with caplog.at_level(logging.WARNING, logger="database.session"):
            init_db("sqlite:///:memory:")

        assert caplog.text == ""
