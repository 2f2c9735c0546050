"""State machine module for invoice settlement."""

from state_machine.invoice_state import InvoiceState, SettlementFSM, TransitionError
from state_machine.models import (
    CartLine,
    Invoice,
    InvoiceStatus,
    MerchItem,
    Money,
    Quote,
    SubscriptionPlan,
)

__all__ = [
    "SettlementFSM",
    "InvoiceState",
    "TransitionError",
    "Invoice",
    "InvoiceStatus",
    "Money",
    "Quote",
    "CartLine",
    "MerchItem",
    "SubscriptionPlan",
]
