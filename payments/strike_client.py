"""
Strike API client for Lightning invoices and quotes.

Documentation: https://docs.strike.me/api/
"""

import logging
import time
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Iterable, Optional
from uuid import uuid4

import httpx

from payments.catalog import calculate_merch_total, get_plan
from payments.errors import (
    InvoiceNotFoundError,
    InvoiceNotPayableError,
    InvalidPlanError,
    PaymentValidationError,
    StrikeClientError,
)
from state_machine.invoice_state import SettlementFSM, TransitionError
from state_machine.models import CartLine, Invoice, InvoiceStatus, Money, Quote

logger = logging.getLogger(__name__)

QUOTE_TTL = timedelta(minutes=15)


def _correlation_id(prefix: str) -> str:
    return f"{prefix}_{int(time.time() * 1000)}"


def _validate_email(user_email: str) -> str:
    email = (user_email or "").strip()
    if not email or "@" not in email:
        raise PaymentValidationError("A valid userEmail is required")
    return email


def _error_body(response: httpx.Response) -> dict[str, Any]:
    if not response.content:
        return {}
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _json_object(response: httpx.Response) -> dict[str, Any]:
    """Decode a success body, which must be a JSON object."""
    body = response.json()
    if not isinstance(body, dict):
        raise ValueError(f"expected a JSON object, got {type(body).__name__}")
    return body


def _error_message(error_data: dict[str, Any], key: str) -> Optional[str]:
    details = error_data.get(key)
    if isinstance(details, dict):
        return details.get("message")
    return None


def _parse_invoice(data: dict[str, Any]) -> Invoice:
    try:
        return Invoice.from_api(data)
    except ValueError as e:
        raise StrikeClientError(f"Malformed invoice in response: {e}") from e


def _parse_quote(data: dict[str, Any]) -> Quote:
    try:
        return Quote.model_validate(data)
    except ValueError as e:
        raise StrikeClientError(f"Malformed quote in response: {e}") from e


class SimulatedLedger:
    """
    In-memory stand-in for the Strike ledger.

    Used when no API key is configured. Invoices move only forward
    (enforced through SettlementFSM) and reads never change them.
    """

    def __init__(self) -> None:
        self._invoices: dict[str, Invoice] = {}
        self._machines: dict[str, SettlementFSM] = {}
        self._quotes: dict[str, Quote] = {}

    def create_invoice(self, amount: Money, description: str, correlation_id: str) -> Invoice:
        invoice = Invoice(
            invoice_id=f"mock_inv_{uuid4().hex[:12]}",
            amount=amount,
            description=description,
            correlation_id=correlation_id,
        )
        self._invoices[invoice.invoice_id] = invoice
        self._machines[invoice.invoice_id] = SettlementFSM(invoice.invoice_id)
        return invoice

    def get_invoice(self, invoice_id: str) -> Invoice:
        invoice = self._invoices.get(invoice_id)
        if invoice is None:
            raise InvoiceNotFoundError(invoice_id)
        return invoice

    def set_state(self, invoice_id: str, state: str) -> Invoice:
        """Move a simulated invoice to a new state."""
        invoice = self.get_invoice(invoice_id)
        fsm = self._machines[invoice_id]
        try:
            fsm.observe(state)
        except TransitionError as e:
            raise InvoiceNotPayableError(invoice_id, fsm.current_state) from e

        updated = invoice.model_copy(update={"state": fsm.current_state})
        self._invoices[invoice_id] = updated
        return updated

    def settle(self, invoice_id: str) -> Invoice:
        return self.set_state(invoice_id, InvoiceStatus.PAID.value)

    def cancel(self, invoice_id: str) -> Invoice:
        return self.set_state(invoice_id, InvoiceStatus.CANCELLED.value)

    def create_quote(self, amount: Money, description: str) -> Quote:
        quote = Quote(
            quote_id=f"mock_quote_{uuid4().hex[:12]}",
            description=description,
            ln_invoice=f"lnbc{uuid4().hex}",
            amount=amount,
            expiration=datetime.utcnow() + QUOTE_TTL,
        )
        self._quotes[quote.quote_id] = quote
        return quote

    def get_quote(self, quote_id: str) -> Quote:
        quote = self._quotes.get(quote_id)
        if quote is None:
            raise InvoiceNotFoundError(quote_id)
        return quote


class StrikeClient:
    """
    Client for the Strike payments API.

    Features:
    - Subscription invoices priced from the plan catalogue
    - Merchandise quotes
    - Invoice and quote status lookups
    - Simulated ledger when no API key is configured
    """

    BASE_URL = "https://api.strike.me/v1"

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        ledger: Optional[SimulatedLedger] = None,
    ):
        """
        Initialize Strike client.

        Args:
            api_key: Strike API key. Without it the client is simulated.
            base_url: Override for the API root.
            timeout: HTTP request timeout in seconds.
            transport: Optional httpx transport (tests).
            ledger: Ledger used in simulated mode.
        """
        self.api_key = api_key
        self.base_url = (base_url or self.BASE_URL).rstrip("/")
        self.timeout = timeout
        self.ledger = ledger or SimulatedLedger()

        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

        if not self.is_configured:
            logger.warning("Strike API key not configured - invoices will be simulated")

    @property
    def is_configured(self) -> bool:
        """Check if client is properly configured."""
        return bool(self.api_key)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                    "Accept": "application/json",
                },
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def create_subscription_invoice(
        self,
        plan_id: str,
        user_email: str,
        correlation_id: Optional[str] = None,
    ) -> Invoice:
        """
        Issue an invoice for a subscription plan.

        Raises:
            InvalidPlanError: If the plan does not exist.
            PaymentValidationError: If the email is missing.
            StrikeClientError: If the API call fails.
        """
        plan = get_plan(plan_id)
        if not plan:
            raise InvalidPlanError(plan_id)
        _validate_email(user_email)

        amount = Money(amount=plan.price, currency=plan.currency)
        description = f"CryptoQuest {plan.name} Subscription"
        correlation_id = correlation_id or _correlation_id("sub")

        if not self.is_configured:
            invoice = self.ledger.create_invoice(amount, description, correlation_id)
            logger.info(f"Simulated invoice {invoice.invoice_id} for plan {plan_id}")
            return invoice

        data = await self._make_request(
            "POST",
            "/invoices",
            json={
                "correlationId": correlation_id,
                "description": description,
                "amount": amount.to_dict(),
            },
        )
        invoice = _parse_invoice(data)
        logger.info(f"Created invoice {invoice.invoice_id} for plan {plan_id}")
        return invoice

    async def get_invoice_status(self, invoice_id: str) -> Invoice:
        """
        Fetch the current state of an invoice.

        Raises:
            InvoiceNotFoundError: If the invoice does not exist.
            StrikeClientError: If the API call fails.
        """
        if not invoice_id or not invoice_id.strip():
            raise PaymentValidationError("invoice_id is required")

        if not self.is_configured:
            return self.ledger.get_invoice(invoice_id)

        try:
            data = await self._make_request("GET", f"/invoices/{invoice_id}")
        except StrikeClientError as e:
            if e.upstream_status == 404:
                raise InvoiceNotFoundError(invoice_id) from e
            raise
        return _parse_invoice(data)

    async def create_merch_quote(
        self,
        lines: Iterable[CartLine],
        user_email: str,
    ) -> Quote:
        """Create a Lightning quote for a merchandise order."""
        lines = list(lines)
        if not lines:
            raise PaymentValidationError("At least one item is required")
        _validate_email(user_email)

        total = calculate_merch_total(lines)
        if total <= Decimal("0"):
            raise PaymentValidationError("Order contains no known items")

        amount = Money(amount=total, currency="USD")
        description = f"CryptoQuest Merchandise Order - {len(lines)} items"

        if not self.is_configured:
            return self.ledger.create_quote(amount, description)

        data = await self._make_request(
            "POST",
            "/quotes",
            json={"description": description, "amount": amount.to_dict()},
        )
        return _parse_quote({"amount": amount.to_dict(), **data})

    async def get_quote_status(self, quote_id: str) -> Quote:
        """Fetch a quote."""
        if not quote_id or not quote_id.strip():
            raise PaymentValidationError("quote_id is required")

        if not self.is_configured:
            return self.ledger.get_quote(quote_id)

        try:
            data = await self._make_request("GET", f"/quotes/{quote_id}")
        except StrikeClientError as e:
            if e.upstream_status == 404:
                raise InvoiceNotFoundError(quote_id) from e
            raise
        return _parse_quote(data)

    async def _make_request(
        self,
        method: str,
        path: str,
        **kwargs: Any,
    ) -> dict[str, Any]:
        """Make HTTP request to Strike API."""
        client = await self._get_client()

        try:
            response = await client.request(method, path, **kwargs)

            if response.status_code >= 400:
                error_data = _error_body(response)
                error_msg = _error_message(error_data, "data") or response.reason_phrase
                raise StrikeClientError(
                    f"Strike API error: {response.status_code} {error_msg}",
                    status_code=response.status_code,
                    response=error_data,
                )

            try:
                return _json_object(response)
            except ValueError as e:
                raise StrikeClientError(
                    f"Invalid response body: {e}", status_code=response.status_code
                ) from e

        except httpx.TimeoutException as e:
            raise StrikeClientError(f"Request timeout: {e}") from e
        except httpx.RequestError as e:
            raise StrikeClientError(f"Request error: {e}") from e
