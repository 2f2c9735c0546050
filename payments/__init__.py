"""Payment integrations: plan catalogue, Strike and Stripe clients."""

from payments.catalog import (
    MERCH_CATALOG,
    SUBSCRIPTION_PLANS,
    calculate_merch_total,
    get_merch_item,
    get_plan,
)
from payments.errors import (
    InvalidPlanError,
    InvoiceNotFoundError,
    InvoiceNotPayableError,
    PaymentError,
    PaymentProcessorNotConfiguredError,
    PaymentProviderError,
    PaymentValidationError,
    StrikeClientError,
    StripeClientError,
)
from payments.strike_client import SimulatedLedger, StrikeClient
from payments.stripe_client import StripeClient

__all__ = [
    "SUBSCRIPTION_PLANS",
    "MERCH_CATALOG",
    "get_plan",
    "get_merch_item",
    "calculate_merch_total",
    "StrikeClient",
    "SimulatedLedger",
    "StripeClient",
    "PaymentError",
    "PaymentValidationError",
    "InvalidPlanError",
    "InvoiceNotFoundError",
    "InvoiceNotPayableError",
    "PaymentProviderError",
    "StrikeClientError",
    "StripeClientError",
    "PaymentProcessorNotConfiguredError",
]
