"""Error types for payment integrations."""

from typing import Any, Optional


class PaymentError(Exception):
    """Base error for payment operations."""

    status_code: int = 400

    def to_dict(self) -> dict[str, Any]:
        return {"error": type(self).__name__, "message": str(self)}


class PaymentValidationError(PaymentError):
    """Request is missing or has malformed fields."""

    status_code = 400


class InvalidPlanError(PaymentError):
    """Unknown subscription plan."""

    status_code = 400

    def __init__(self, plan_id: str):
        self.plan_id = plan_id
        super().__init__(f"Invalid subscription plan: {plan_id}")


class InvoiceNotFoundError(PaymentError):
    """The issuer does not know the invoice or quote."""

    status_code = 404

    def __init__(self, invoice_id: str):
        self.invoice_id = invoice_id
        super().__init__(f"Invoice {invoice_id} not found")


class InvoiceNotPayableError(PaymentError):
    """The invoice already reached a terminal state."""

    status_code = 409

    def __init__(self, invoice_id: str, state: str):
        self.invoice_id = invoice_id
        self.state = state
        super().__init__(f"Invoice {invoice_id} is not payable (state {state})")


class PaymentProviderError(PaymentError):
    """Error communicating with an external payment provider."""

    status_code = 502

    def __init__(
        self,
        message: str,
        provider: str,
        status_code: Optional[int] = None,
        response: Optional[dict] = None,
    ):
        self.provider = provider
        self.upstream_status = status_code
        self.response = response
        super().__init__(message)


class StrikeClientError(PaymentProviderError):
    """Error communicating with the Strike API."""

    def __init__(self, message: str, status_code: Optional[int] = None, response: Optional[dict] = None):
        super().__init__(message, provider="strike", status_code=status_code, response=response)


class StripeClientError(PaymentProviderError):
    """Error communicating with the Stripe API."""

    def __init__(self, message: str, status_code: Optional[int] = None, response: Optional[dict] = None):
        super().__init__(message, provider="stripe", status_code=status_code, response=response)


class PaymentProcessorNotConfiguredError(PaymentError):
    """Provider credentials are missing."""

    status_code = 503

    def __init__(self, provider: str):
        self.provider = provider
        super().__init__(f"{provider} is not configured")
