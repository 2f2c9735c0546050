"""Database module for persistent storage."""

from database.models import (
    Base,
    InvoiceHistoryModel,
    PaymentInvoiceModel,
    SubscriptionModel,
)
from database.session import get_engine, get_session, init_db, reset_engine, session_scope
from database.store import DatabaseInvoiceStore

__all__ = [
    "Base",
    "PaymentInvoiceModel",
    "InvoiceHistoryModel",
    "SubscriptionModel",
    "DatabaseInvoiceStore",
    "get_engine",
    "get_session",
    "session_scope",
    "init_db",
    "reset_engine",
]
