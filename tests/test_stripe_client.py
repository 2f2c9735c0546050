"""Tests for the Stripe client."""

from decimal import Decimal
from urllib.parse import parse_qs

import httpx
import pytest

from payments import (
    InvalidPlanError,
    InvoiceNotFoundError,
    PaymentProcessorNotConfiguredError,
    StripeClient,
    StripeClientError,
)
from payments.stripe_client import encode_form, to_cents
from state_machine.models import CartLine


def form(request: httpx.Request) -> dict[str, str]:
    return {key: values[0] for key, values in parse_qs(request.content.decode()).items()}


class StripeStub:
    """Routes requests to canned Stripe responses and records them."""

    def __init__(self, existing_customer: bool = False):
        self.existing_customer = existing_customer
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path == "/v1/customers" and request.method == "GET":
            data = [{"id": "cus_existing"}] if self.existing_customer else []
            return httpx.Response(200, json={"data": data})
        if path == "/v1/customers":
            return httpx.Response(200, json={"id": "cus_new"})
        if path == "/v1/subscriptions":
            return httpx.Response(200, json={
                "id": "sub_123",
                "status": "incomplete",
                "current_period_end": 1767225600,
                "latest_invoice": {"payment_intent": {"client_secret": "pi_secret"}},
            })
        if path == "/v1/payment_intents":
            return httpx.Response(200, json={
                "id": "pi_123",
                "status": "requires_payment_method",
                "client_secret": "pi_123_secret",
            })
        if path == "/v1/subscriptions/sub_123":
            return httpx.Response(200, json={
                "id": "sub_123",
                "customer": "cus_new",
                "status": "active",
                "metadata": {"planId": "premium"},
            })
        return httpx.Response(404, json={"error": {"message": "No such resource"}})


def make_client(stub: StripeStub) -> StripeClient:
    return StripeClient(secret_key="sk_test", transport=httpx.MockTransport(stub))


class TestHelpers:
    def test_to_cents(self) -> None:
        assert to_cents(Decimal("19.99")) == 1999
        assert to_cents(Decimal("0.005")) == 1

    def test_encode_form_nested(self) -> None:
        pairs = encode_form({
            "customer": "cus_1",
            "items": [{"price_data": {"unit_amount": 999}}],
            "expand": ["latest_invoice.payment_intent"],
            "skip": None,
            "flag": True,
        })

        assert pairs == [
            ("customer", "cus_1"),
            ("items[0][price_data][unit_amount]", "999"),
            ("expand[0]", "latest_invoice.payment_intent"),
            ("flag", "true"),
        ]


class TestStripeClient:
    """Test StripeClient against a stubbed API."""

    @pytest.mark.asyncio
    async def test_not_configured(self) -> None:
        client = StripeClient()

        with pytest.raises(PaymentProcessorNotConfiguredError) as exc_info:
            await client.create_subscription("premium", "hero@example.com")

        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_invalid_plan(self) -> None:
        with pytest.raises(InvalidPlanError):
            await make_client(StripeStub()).create_subscription("gold", "hero@example.com")

    @pytest.mark.asyncio
    async def test_subscription_creates_customer(self) -> None:
        stub = StripeStub()

        result = await make_client(stub).create_subscription("annual_premium", "hero@example.com")

        assert [r.method + " " + r.url.path for r in stub.requests] == [
            "GET /v1/customers",
            "POST /v1/customers",
            "POST /v1/subscriptions",
        ]
        body = form(stub.requests[-1])
        assert body["customer"] == "cus_new"
        assert body["items[0][price_data][unit_amount]"] == "19999"
        assert body["items[0][price_data][recurring][interval]"] == "year"
        assert body["payment_behavior"] == "default_incomplete"
        assert result["subscriptionId"] == "sub_123"
        assert result["customerId"] == "cus_new"
        assert result["clientSecret"] == "pi_secret"
        assert result["currentPeriodEnd"].startswith("2026-01-01")

    @pytest.mark.asyncio
    async def test_subscription_reuses_customer(self) -> None:
        stub = StripeStub(existing_customer=True)

        result = await make_client(stub).create_subscription("basic", "hero@example.com")

        assert result["customerId"] == "cus_existing"
        assert len(stub.requests) == 2

    @pytest.mark.asyncio
    async def test_merch_payment(self) -> None:
        stub = StripeStub()

        result = await make_client(stub).create_merch_payment(
            [CartLine(item_id="hoodie_guild", quantity=1)], "hero@example.com"
        )

        body = form(stub.requests[0])
        assert body["amount"] == "4999"
        assert body["metadata[userEmail]"] == "hero@example.com"
        assert result["amount"] == "49.99"
        assert result["clientSecret"] == "pi_123_secret"

    @pytest.mark.asyncio
    async def test_subscription_status(self) -> None:
        result = await make_client(StripeStub()).get_subscription_status("sub_123")

        assert result["status"] == "active"
        assert result["planId"] == "premium"
        assert result["currentPeriodEnd"] is None

    @pytest.mark.asyncio
    async def test_missing_resource(self) -> None:
        with pytest.raises(InvoiceNotFoundError):
            await make_client(StripeStub()).get_payment_intent_status("pi_missing")

    @pytest.mark.asyncio
    async def test_api_error(self) -> None:
        client = StripeClient(
            secret_key="sk_test",
            transport=httpx.MockTransport(
                lambda request: httpx.Response(402, json={"error": {"message": "Card declined"}})
            ),
        )

        with pytest.raises(StripeClientError, match="Card declined") as exc_info:
            await client.create_subscription("basic", "hero@example.com")

        assert exc_info.value.status_code == 502
        assert exc_info.value.upstream_status == 402

    @pytest.mark.asyncio
    async def test_non_json_body(self) -> None:
        client = StripeClient(
            secret_key="sk_test",
            transport=httpx.MockTransport(lambda request: httpx.Response(200, text="<html>proxy</html>")),
        )

        with pytest.raises(StripeClientError, match="Invalid response body"):
            await client.get_subscription_status("sub_1")

    @pytest.mark.asyncio
    async def test_error_without_details(self) -> None:
        client = StripeClient(
            secret_key="sk_test",
            transport=httpx.MockTransport(lambda request: httpx.Response(500, json={"error": None})),
        )

        with pytest.raises(StripeClientError, match="Unknown error"):
            await client.get_subscription_status("sub_1")
