"""
Stripe REST client for card subscriptions and merchandise payments.

Documentation: https://docs.stripe.com/api
"""

import json
import logging
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable, Optional

import httpx

from payments.catalog import calculate_merch_total, get_plan
from payments.errors import (
    InvalidPlanError,
    InvoiceNotFoundError,
    PaymentProcessorNotConfiguredError,
    PaymentValidationError,
    StripeClientError,
)
from payments.strike_client import _error_body, _error_message, _json_object, _validate_email
from state_machine.models import CartLine, PlanInterval

logger = logging.getLogger(__name__)


def to_cents(amount: Decimal) -> int:
    """Convert a decimal amount to the smallest currency unit."""
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def encode_form(params: dict[str, Any], prefix: str = "") -> list[tuple[str, str]]:
    """Flatten nested params into Stripe's bracketed form encoding."""
    pairs: list[tuple[str, str]] = []
    for key, value in params.items():
        name = f"{prefix}[{key}]" if prefix else str(key)
        if value is None:
            continue
        if isinstance(value, dict):
            pairs.extend(encode_form(value, name))
        elif isinstance(value, (list, tuple)):
            for index, element in enumerate(value):
                element_name = f"{name}[{index}]"
                if isinstance(element, dict):
                    pairs.extend(encode_form(element, element_name))
                else:
                    pairs.append((element_name, str(element)))
        elif isinstance(value, bool):
            pairs.append((name, "true" if value else "false"))
        else:
            pairs.append((name, str(value)))
    return pairs


class StripeClient:
    """
    Client for the Stripe API.

    Features:
    - Customer lookup/creation by email
    - Incomplete subscriptions returning a client secret
    - Payment intents for merchandise orders
    - Status lookups
    """

    BASE_URL = "https://api.stripe.com/v1"

    def __init__(
        self,
        secret_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.secret_key = secret_key
        self.base_url = (base_url or self.BASE_URL).rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def is_configured(self) -> bool:
        """Check if client is properly configured."""
        return bool(self.secret_key)

    async def _get_client(self) -> httpx.AsyncClient:
        if not self.is_configured:
            raise PaymentProcessorNotConfiguredError("stripe")
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
                headers={"Authorization": f"Bearer {self.secret_key}"},
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def create_subscription(self, plan_id: str, user_email: str) -> dict[str, Any]:
        """
        Create an incomplete subscription for a plan.

        The caller confirms payment on the client with the returned
        ``clientSecret``.
        """
        plan = get_plan(plan_id)
        if not plan:
            raise InvalidPlanError(plan_id)
        email = _validate_email(user_email)

        customer_id = await self._find_or_create_customer(email)

        subscription = await self._make_request(
            "POST",
            "/subscriptions",
            data={
                "customer": customer_id,
                "items": [
                    {
                        "price_data": {
                            "currency": plan.currency,
                            "product_data": {"name": plan.name},
                            "unit_amount": to_cents(plan.price),
                            "recurring": {
                                "interval": "year" if plan.interval == PlanInterval.YEARLY else "month",
                            },
                        },
                    }
                ],
                "payment_behavior": "default_incomplete",
                "metadata": {"planId": plan_id},
                "expand": ["latest_invoice.payment_intent"],
            },
        )

        latest_invoice = subscription.get("latest_invoice") or {}
        payment_intent = latest_invoice.get("payment_intent") if isinstance(latest_invoice, dict) else None
        client_secret = payment_intent.get("client_secret") if isinstance(payment_intent, dict) else None

        logger.info(f"Created Stripe subscription {subscription.get('id')} for plan {plan_id}")

        return {
            "subscriptionId": subscription.get("id"),
            "customerId": customer_id,
            "status": subscription.get("status"),
            "currentPeriodEnd": _timestamp(subscription.get("current_period_end")),
            "planId": plan_id,
            "clientSecret": client_secret,
        }

    async def create_merch_payment(
        self,
        lines: Iterable[CartLine],
        user_email: str,
    ) -> dict[str, Any]:
        """Create a payment intent for a merchandise order."""
        lines = list(lines)
        if not lines:
            raise PaymentValidationError("At least one item is required")
        email = _validate_email(user_email)

        total = calculate_merch_total(lines)
        if total <= Decimal("0"):
            raise PaymentValidationError("Order contains no known items")

        description = f"CryptoQuest Merchandise Order - {len(lines)} items"
        intent = await self._make_request(
            "POST",
            "/payment_intents",
            data={
                "amount": to_cents(total),
                "currency": "usd",
                "description": description,
                "metadata": {
                    "userEmail": email,
                    "items": json.dumps([line.model_dump(by_alias=True) for line in lines]),
                },
            },
        )

        return {
            "paymentIntentId": intent.get("id"),
            "amount": str(total),
            "currency": "usd",
            "status": intent.get("status"),
            "clientSecret": intent.get("client_secret"),
            "description": intent.get("description") or description,
        }

    async def get_subscription_status(self, subscription_id: str) -> dict[str, Any]:
        """Fetch a subscription."""
        subscription = await self._get_resource("/subscriptions", subscription_id)
        return {
            "subscriptionId": subscription.get("id"),
            "customerId": subscription.get("customer"),
            "status": subscription.get("status"),
            "currentPeriodEnd": _timestamp(subscription.get("current_period_end")),
            "planId": (subscription.get("metadata") or {}).get("planId", "unknown"),
        }

    async def get_payment_intent_status(self, payment_intent_id: str) -> dict[str, Any]:
        """Fetch a payment intent."""
        intent = await self._get_resource("/payment_intents", payment_intent_id)
        amount = Decimal(intent.get("amount", 0)) / 100
        return {
            "paymentIntentId": intent.get("id"),
            "amount": str(amount),
            "currency": intent.get("currency"),
            "status": intent.get("status"),
            "clientSecret": intent.get("client_secret"),
            "description": intent.get("description") or "",
        }

    async def _find_or_create_customer(self, email: str) -> str:
        existing = await self._make_request(
            "GET", "/customers", params={"email": email, "limit": 1}
        )
        customers = existing.get("data") or []
        if customers:
            return customers[0]["id"]

        customer = await self._make_request(
            "POST",
            "/customers",
            data={"email": email, "name": email.split("@")[0]},
        )
        return customer["id"]

    async def _get_resource(self, path: str, resource_id: str) -> dict[str, Any]:
        if not resource_id or not resource_id.strip():
            raise PaymentValidationError("An id is required")
        try:
            return await self._make_request("GET", f"{path}/{resource_id}")
        except StripeClientError as e:
            if e.upstream_status == 404:
                raise InvoiceNotFoundError(resource_id) from e
            raise

    async def _make_request(
        self,
        method: str,
        path: str,
        data: Optional[dict[str, Any]] = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        """Make HTTP request to Stripe API."""
        client = await self._get_client()
        if data is not None:
            kwargs["data"] = dict(encode_form(data))

        try:
            response = await client.request(method, path, **kwargs)

            if response.status_code >= 400:
                error_data = _error_body(response)
                error_msg = _error_message(error_data, "error") or "Unknown error"
                raise StripeClientError(
                    f"Stripe API error: {error_msg}",
                    status_code=response.status_code,
                    response=error_data,
                )

            try:
                return _json_object(response)
            except ValueError as e:
                raise StripeClientError(
                    f"Invalid response body: {e}", status_code=response.status_code
                ) from e

        except httpx.TimeoutException as e:
            raise StripeClientError(f"Request timeout: {e}") from e
        except httpx.RequestError as e:
            raise StripeClientError(f"Request error: {e}") from e


def _timestamp(value: Optional[int]) -> Optional[str]:
    if not value:
        return None
    return datetime.utcfromtimestamp(value).isoformat() + "Z"
