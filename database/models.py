"""
SQLAlchemy models for CryptoQuest payments.

Tables:
- payment_invoices: Lightning invoices issued for subscriptions
- invoice_history: Observed settlement transitions
- subscriptions: Plans activated by paid invoices
"""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, relationship


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class PaymentInvoiceModel(Base):
    """Issued invoice and its last observed settlement state."""

    __tablename__ = "payment_invoices"

    id = Column(Integer, primary_key=True, autoincrement=True)
    invoice_id = Column(String(100), unique=True, nullable=False, index=True)
    correlation_id = Column(String(100), nullable=True)

    # What is being paid for
    plan_id = Column(String(50), nullable=True)
    payer_email = Column(String(255), nullable=True, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(8), default="USD", nullable=False)
    description = Column(Text, nullable=True)

    # State machine
    state = Column(String(20), default="UNPAID", nullable=False, index=True)
    is_terminal = Column(Boolean, default=False, nullable=False)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    settled_at = Column(DateTime, nullable=True)

    # Relationships
    history = relationship(
        "InvoiceHistoryModel",
        back_populates="invoice",
        order_by="InvoiceHistoryModel.id",
    )

    __table_args__ = (
        Index("ix_payment_invoices_email_state", "payer_email", "state"),
    )

    def __repr__(self) -> str:
        return f"<PaymentInvoice {self.invoice_id} state={self.state}>"


class InvoiceHistoryModel(Base):
    """Invoice state transition history."""

    __tablename__ = "invoice_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    invoice_id = Column(String(100), ForeignKey("payment_invoices.invoice_id"), nullable=False, index=True)

    # Transition details
    previous_state = Column(String(20), nullable=True)
    new_state = Column(String(20), nullable=False)
    trigger = Column(String(50), nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    invoice = relationship("PaymentInvoiceModel", back_populates="history")

    def __repr__(self) -> str:
        return f"<History {self.invoice_id}: {self.previous_state} -> {self.new_state}>"


class SubscriptionModel(Base):
    """A subscriber's plan, activated once its invoice is paid."""

    __tablename__ = "subscriptions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    email = Column(String(255), nullable=False, index=True)
    plan_id = Column(String(50), nullable=False)
    status = Column(String(20), default="active", nullable=False)  # active, replaced
    invoice_id = Column(String(100), ForeignKey("payment_invoices.invoice_id"), unique=True, nullable=False)
    activated_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("ix_subscriptions_email_status", "email", "status"),
    )

    def __repr__(self) -> str:
        return f"<Subscription {self.email} plan={self.plan_id} status={self.status}>"
