"""Database-backed store for payment invoices and subscriptions."""

import logging
from datetime import datetime
from typing import Any, Optional

from database.models import InvoiceHistoryModel, PaymentInvoiceModel, SubscriptionModel
from database.session import session_scope
from payments.errors import InvoiceNotFoundError, InvoiceNotPayableError
from state_machine.invoice_state import InvoiceState, SettlementFSM
from state_machine.models import Invoice

logger = logging.getLogger(__name__)


def _invoice_dict(invoice: PaymentInvoiceModel) -> dict[str, Any]:
    return {
        "invoice_id": invoice.invoice_id,
        "correlation_id": invoice.correlation_id,
        "plan_id": invoice.plan_id,
        "payer_email": invoice.payer_email,
        "amount": str(invoice.amount),
        "currency": invoice.currency,
        "description": invoice.description,
        "state": invoice.state,
        "is_terminal": invoice.is_terminal,
        "created_at": invoice.created_at.isoformat(),
        "updated_at": invoice.updated_at.isoformat(),
        "settled_at": invoice.settled_at.isoformat() if invoice.settled_at else None,
    }


def _subscription_dict(subscription: SubscriptionModel) -> dict[str, Any]:
    return {
        "id": subscription.id,
        "email": subscription.email,
        "plan_id": subscription.plan_id,
        "status": subscription.status,
        "invoice_id": subscription.invoice_id,
        "activated_at": subscription.activated_at.isoformat(),
    }


class DatabaseInvoiceStore:
    """
    Persistent invoice store using SQLAlchemy.

    Observed states are replayed through SettlementFSM, so a stored
    invoice only ever moves forward.
    """

    def record_invoice(
        self,
        invoice: Invoice,
        plan_id: Optional[str] = None,
        payer_email: Optional[str] = None,
    ) -> dict[str, Any]:
        """
        Persist a newly issued invoice.

        Raises:
            ValueError: If the invoice id is already stored.
        """
        with session_scope() as session:
            existing = (
                session.query(PaymentInvoiceModel)
                .filter(PaymentInvoiceModel.invoice_id == invoice.invoice_id)
                .first()
            )
            if existing:
                raise ValueError(f"Invoice {invoice.invoice_id} already exists")

            state = invoice.state if invoice.state in InvoiceState.all_states() else InvoiceState.UNPAID
            record = PaymentInvoiceModel(
                invoice_id=invoice.invoice_id,
                correlation_id=invoice.correlation_id,
                plan_id=plan_id,
                payer_email=payer_email,
                amount=invoice.amount.amount,
                currency=invoice.amount.currency,
                description=invoice.description,
                state=state,
                is_terminal=InvoiceState.is_terminal(state),
            )
            session.add(record)
            session.add(
                InvoiceHistoryModel(
                    invoice_id=invoice.invoice_id,
                    previous_state=None,
                    new_state=state,
                    trigger="issued",
                )
            )
            session.flush()

            logger.info(f"Recorded invoice {invoice.invoice_id} (plan={plan_id}, state={state})")
            return _invoice_dict(record)

    def get_invoice(self, invoice_id: str) -> Optional[dict[str, Any]]:
        with session_scope() as session:
            invoice = (
                session.query(PaymentInvoiceModel)
                .filter(PaymentInvoiceModel.invoice_id == invoice_id)
                .first()
            )
            return _invoice_dict(invoice) if invoice else None

    def apply_observation(self, invoice_id: str, observed_state: str) -> bool:
        """
        Apply a state reported by the status source.

        Returns True when the stored state changed.

        Raises:
            InvoiceNotFoundError: If the invoice is not stored.
            TransitionError: If the stored invoice is terminal in another state.
        """
        with session_scope() as session:
            invoice = (
                session.query(PaymentInvoiceModel)
                .filter(PaymentInvoiceModel.invoice_id == invoice_id)
                .with_for_update()
                .first()
            )
            if not invoice:
                raise InvoiceNotFoundError(invoice_id)

            fsm = SettlementFSM(invoice_id=invoice_id, initial_state=invoice.state)
            if not fsm.observe(observed_state):
                return False

            # Skip the "initialized" entry of the rebuilt machine
            for entry in fsm.history[1:]:
                session.add(
                    InvoiceHistoryModel(
                        invoice_id=invoice_id,
                        previous_state=entry["source"],
                        new_state=entry["dest"],
                        trigger=entry["trigger"],
                    )
                )

            invoice.state = fsm.current_state
            invoice.is_terminal = fsm.is_terminal
            invoice.updated_at = datetime.utcnow()
            if fsm.current_state == InvoiceState.PAID:
                invoice.settled_at = datetime.utcnow()

            logger.info(f"Invoice {invoice_id} stored state is now {fsm.current_state}")
            return True

    def get_history(self, invoice_id: str) -> list[dict[str, Any]]:
        with session_scope() as session:
            records = (
                session.query(InvoiceHistoryModel)
                .filter(InvoiceHistoryModel.invoice_id == invoice_id)
                .order_by(InvoiceHistoryModel.id)
                .all()
            )
            return [
                {
                    "previous_state": record.previous_state,
                    "new_state": record.new_state,
                    "trigger": record.trigger,
                    "created_at": record.created_at.isoformat(),
                }
                for record in records
            ]

    def list_invoices(
        self,
        state: Optional[str] = None,
        payer_email: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """List invoices, newest first, with optional filtering."""
        with session_scope() as session:
            query = session.query(PaymentInvoiceModel)

            if state:
                query = query.filter(PaymentInvoiceModel.state == state)
            if payer_email:
                query = query.filter(PaymentInvoiceModel.payer_email == payer_email)

            query = query.order_by(PaymentInvoiceModel.id.desc())
            query = query.limit(limit).offset(offset)

            return [_invoice_dict(invoice) for invoice in query.all()]

    # Subscriptions

    def activate_subscription(self, invoice_id: str) -> dict[str, Any]:
        """
        Activate the plan bought with a paid invoice.

        Idempotent per invoice. Any other active subscription of the same
        email is marked ``replaced``.

        Raises:
            InvoiceNotFoundError: If the invoice is not stored.
            InvoiceNotPayableError: If the invoice is not PAID.
            ValueError: If the invoice carries no plan or payer.
        """
        with session_scope() as session:
            invoice = (
                session.query(PaymentInvoiceModel)
                .filter(PaymentInvoiceModel.invoice_id == invoice_id)
                .first()
            )
            if not invoice:
                raise InvoiceNotFoundError(invoice_id)
            if invoice.state != InvoiceState.PAID:
                raise InvoiceNotPayableError(invoice_id, invoice.state)
            if not invoice.plan_id or not invoice.payer_email:
                raise ValueError(f"Invoice {invoice_id} is not a subscription invoice")

            existing = (
                session.query(SubscriptionModel)
                .filter(SubscriptionModel.invoice_id == invoice_id)
                .first()
            )
            if existing:
                return _subscription_dict(existing)

            (
                session.query(SubscriptionModel)
                .filter(
                    SubscriptionModel.email == invoice.payer_email,
                    SubscriptionModel.status == "active",
                )
                .update({"status": "replaced"})
            )

            subscription = SubscriptionModel(
                email=invoice.payer_email,
                plan_id=invoice.plan_id,
                status="active",
                invoice_id=invoice_id,
            )
            session.add(subscription)
            session.flush()

            logger.info(f"Activated {invoice.plan_id} subscription for invoice {invoice_id}")
            return _subscription_dict(subscription)

    def get_active_subscription(self, email: str) -> Optional[dict[str, Any]]:
        with session_scope() as session:
            subscription = (
                session.query(SubscriptionModel)
                .filter(
                    SubscriptionModel.email == email,
                    SubscriptionModel.status == "active",
                )
                .order_by(SubscriptionModel.activated_at.desc())
                .first()
            )
            return _subscription_dict(subscription) if subscription else None

    def get_stats(self) -> dict[str, Any]:
        """Invoice counts by state plus active subscriptions."""
        with session_scope() as session:
            by_state = {}
            for state in InvoiceState.all_states():
                count = (
                    session.query(PaymentInvoiceModel)
                    .filter(PaymentInvoiceModel.state == state)
                    .count()
                )
                if count > 0:
                    by_state[state] = count

            active = (
                session.query(SubscriptionModel)
                .filter(SubscriptionModel.status == "active")
                .count()
            )

            return {
                "total_invoices": sum(by_state.values()),
                "by_state": by_state,
                "active_subscriptions": active,
            }
