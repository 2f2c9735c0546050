"""
FastAPI application for CryptoQuest payments, AI analysis and wallet agents.

Endpoints:
- GET  /health                                  - Health check
- GET  /api/strike/plans, /api/strike/merch     - Catalogue
- POST /api/strike/subscription/create          - Issue invoice and start settlement poll
- GET  /api/strike/invoice/{id}/status          - Invoice state
- POST /api/strike/merch/quote                  - Lightning quote for an order
- GET  /api/strike/quote/{id}/status            - Quote state
- GET|POST|DELETE /api/subscriptions/{id}/poll  - Settlement poll control
- GET  /api/user/subscription                   - Active subscription by email
- /api/stripe/*                                 - Card payments
- /api/ai/*                                     - Chat and analysis
- /api/agentkit, /api/superpay, /api/paymaster, /api/wallet/* - Wallet agents
- /api/moralis/*                                - Chain data (NFTs, tokens, portfolio)

Every response uses the envelope {"success": true, "data": ...} or
{"success": false, "error": "..."}.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ai_providers import AnalysisService, LLMError, ProviderRegistry
from database import DatabaseInvoiceStore, init_db
from payments import (
    MERCH_CATALOG,
    SUBSCRIPTION_PLANS,
    InvoiceNotFoundError,
    PaymentError,
    PaymentProviderError,
    StrikeClient,
    StripeClient,
    get_plan,
)
from scheduler import PollAlreadyActiveError, PollManager, PollResult
from server.config import Settings, get_settings
from server.schemas import (
    AgentActionRequest,
    ChatRequest,
    ContractAnalysisRequest,
    CreateSubscriptionRequest,
    CreateWalletRequest,
    GamingStrategyRequest,
    InvestmentAnalysisRequest,
    MarketInsightsRequest,
    MerchOrderRequest,
    PaymasterUpdateRequest,
    SuperPayRequest,
)
from state_machine import Invoice, TransitionError
from wallet import (
    AgentKitService,
    CdpWalletClient,
    InvalidAddressError,
    MoralisClient,
    MoralisClientError,
    MoralisNotConfiguredError,
    WalletClientError,
)

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


# ============================================================================
# Services
# ============================================================================


class Services:
    """Long-lived collaborators shared by the request handlers."""

    def __init__(
        self,
        settings: Settings,
        strike: StrikeClient,
        stripe: StripeClient,
        store: DatabaseInvoiceStore,
        providers: ProviderRegistry,
        wallet_client: CdpWalletClient,
        agentkit: AgentKitService,
        poll_manager: Optional[PollManager] = None,
        moralis: Optional[MoralisClient] = None,
    ):
        self.settings = settings
        self.strike = strike
        self.stripe = stripe
        self.store = store
        self.providers = providers
        self.wallet_client = wallet_client
        self.agentkit = agentkit
        self.moralis = moralis or MoralisClient()
        self.poll_manager = poll_manager or PollManager(
            strike.get_invoice_status,
            interval=settings.poll_interval_seconds,
            max_attempts=settings.poll_max_attempts,
            error_backoff=settings.poll_error_backoff,
        )
        self.poll_manager.add_attempt_listener(self.record_observation)
        self.poll_manager.add_listener(self._on_poll_finished)

    @classmethod
    def from_settings(cls, settings: Settings) -> "Services":
        wallet_client = CdpWalletClient(api_key=settings.cdp_api_key, base_url=settings.cdp_base_url)
        return cls(
            settings=settings,
            strike=StrikeClient(api_key=settings.strike_api_key, base_url=settings.strike_base_url),
            stripe=StripeClient(secret_key=settings.stripe_secret_key),
            store=DatabaseInvoiceStore(),
            providers=ProviderRegistry.from_keys(
                anthropic_api_key=settings.anthropic_api_key,
                deepseek_api_key=settings.deepseek_api_key,
                openai_api_key=settings.openai_api_key,
                xai_api_key=settings.xai_api_key,
            ),
            wallet_client=wallet_client,
            agentkit=AgentKitService(wallet_client),
            moralis=MoralisClient(api_key=settings.moralis_api_key),
        )

    def analysis(self, provider: Optional[str] = None) -> AnalysisService:
        """Analysis bound to a named provider, or the default one."""
        if provider is None and not self.providers.names:
            return AnalysisService(None)
        return AnalysisService(self.providers.get(provider))

    def record_observation(self, attempt: int, invoice: Invoice) -> None:
        """Apply an observed invoice state to the stored invoice."""
        try:
            self.store.apply_observation(invoice.invoice_id, invoice.state)
        except (InvoiceNotFoundError, TransitionError) as e:
            logger.warning(f"Observation of {invoice.invoice_id} not stored: {e}")

    def _on_poll_finished(self, result: PollResult) -> None:
        if not result.success:
            return
        try:
            self.store.activate_subscription(result.invoice_id)
        except (PaymentError, ValueError) as e:
            logger.error(f"Could not activate subscription for {result.invoice_id}: {e}")

    async def close(self) -> None:
        await self.poll_manager.shutdown()
        await self.strike.close()
        await self.stripe.close()
        await self.wallet_client.close()
        await self.moralis.close()


def get_services(request: Request) -> Services:
    """Dependency returning the app's services."""
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Service not ready")
    return services


def ok(data: Any) -> dict[str, Any]:
    return {"success": True, "data": data}


def fail(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


# ============================================================================
# Application Factory
# ============================================================================


def create_app(settings: Optional[Settings] = None, services: Optional[Services] = None) -> FastAPI:
    """
    Create FastAPI application.

    Args:
        settings: Configuration; loaded from the environment if omitted.
        services: Prebuilt services (tests); built from settings if omitted.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app_settings = settings or (services.settings if services else get_settings())

        logging.basicConfig(
            level=getattr(logging, app_settings.log_level.upper()),
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        )

        logger.info("Starting CryptoQuest server...")

        init_db(app_settings.database_url)
        app.state.services = services or Services.from_settings(app_settings)

        if app.state.services.wallet_client.is_configured:
            try:
                await app.state.services.agentkit.initialize()
            except WalletClientError as e:
                logger.error(f"Failed to initialize AgentKit: {e}")

        mode = "live" if app.state.services.strike.is_configured else "simulated"
        logger.info(f"Server ready on {app_settings.host}:{app_settings.port} (strike {mode})")

        yield

        logger.info("Shutting down...")
        await app.state.services.close()

    app = FastAPI(
        title="CryptoQuest API",
        description="Subscriptions, merchandise payments, AI analysis and wallet agents",
        version=VERSION,
        lifespan=lifespan,
    )

    register_exception_handlers(app)

    # Health
    app.add_api_route("/health", health_check, methods=["GET"])

    # Strike
    app.add_api_route("/api/strike/plans", list_plans, methods=["GET"])
    app.add_api_route("/api/strike/merch", list_merch, methods=["GET"])
    app.add_api_route("/api/strike/subscription/create", create_strike_subscription, methods=["POST"])
    app.add_api_route("/api/strike/invoice/{invoice_id}/status", get_invoice_status, methods=["GET"])
    app.add_api_route("/api/strike/merch/quote", create_merch_quote, methods=["POST"])
    app.add_api_route("/api/strike/quote/{quote_id}/status", get_quote_status, methods=["GET"])

    # Settlement polling and subscriptions
    app.add_api_route("/api/subscriptions/{invoice_id}/poll", get_poll, methods=["GET"])
    app.add_api_route("/api/subscriptions/{invoice_id}/poll", start_poll, methods=["POST"])
    app.add_api_route("/api/subscriptions/{invoice_id}/poll", cancel_poll, methods=["DELETE"])
    app.add_api_route("/api/user/subscription", get_user_subscription, methods=["GET"])

    # Stripe
    app.add_api_route("/api/stripe/subscription/create", create_stripe_subscription, methods=["POST"])
    app.add_api_route("/api/stripe/merch/payment", create_stripe_merch_payment, methods=["POST"])
    app.add_api_route("/api/stripe/subscription/{subscription_id}", get_stripe_subscription, methods=["GET"])
    app.add_api_route("/api/stripe/payment-intent/{payment_intent_id}", get_stripe_payment_intent, methods=["GET"])

    # AI
    app.add_api_route("/api/ai/chat", ai_chat, methods=["POST"])
    app.add_api_route("/api/ai/contract-analysis", ai_contract_analysis, methods=["POST"])
    app.add_api_route("/api/ai/market-insights", ai_market_insights, methods=["POST"])
    app.add_api_route("/api/ai/gaming-strategy", ai_gaming_strategy, methods=["POST"])
    app.add_api_route("/api/ai/investment-analysis", ai_investment_analysis, methods=["POST"])

    # Wallet agents
    app.add_api_route("/api/agentkit", get_agentkit, methods=["GET"])
    app.add_api_route("/api/agentkit", execute_agent_action, methods=["POST"])
    app.add_api_route("/api/superpay", create_superpay, methods=["POST"])
    app.add_api_route("/api/paymaster", get_paymaster, methods=["GET"])
    app.add_api_route("/api/paymaster", update_paymaster, methods=["PATCH"])
    app.add_api_route("/api/wallet/create", create_wallet, methods=["POST"])
    app.add_api_route("/api/wallet/{wallet_id}/balance", get_wallet_balance, methods=["GET"])

    # Chain data
    app.add_api_route("/api/moralis/wallet/{address}/nfts", get_wallet_nfts, methods=["GET"])
    app.add_api_route("/api/moralis/wallet/{address}/tokens", get_token_balances, methods=["GET"])
    app.add_api_route("/api/moralis/wallet/{address}/transactions", get_wallet_transactions, methods=["GET"])
    app.add_api_route("/api/moralis/wallet/{address}/defi", get_defi_positions, methods=["GET"])
    app.add_api_route("/api/moralis/wallet/{address}/net-worth", get_net_worth, methods=["GET"])
    app.add_api_route("/api/moralis/wallet/{address}/pnl", get_wallet_pnl, methods=["GET"])
    app.add_api_route("/api/moralis/token/{address}/price", get_token_price, methods=["GET"])
    app.add_api_route("/api/moralis/token/{address}/metadata", get_token_metadata, methods=["GET"])
    app.add_api_route("/api/moralis/token/{address}/transfers", get_token_transfers, methods=["GET"])
    app.add_api_route("/api/moralis/nft/{address}", get_contract_nfts, methods=["GET"])

    return app


# ============================================================================
# Error Handling
# ============================================================================


def register_exception_handlers(app: FastAPI) -> None:
    """Map errors onto the failure envelope."""

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        if errors:
            first = errors[0]
            field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
            message = f"{field}: {first.get('msg')}" if field else first.get("msg", "Invalid request")
        else:
            message = "Invalid request"
        return fail(400, message)

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return fail(exc.status_code, str(exc.detail))

    @app.exception_handler(PaymentError)
    async def payment_error(request: Request, exc: PaymentError) -> JSONResponse:
        if isinstance(exc, PaymentProviderError):
            logger.error(f"{exc.provider} request failed ({exc.upstream_status}): {exc}")
            return fail(502, "Payment provider request failed")
        return fail(exc.status_code, str(exc))

    @app.exception_handler(PollAlreadyActiveError)
    async def poll_active(request: Request, exc: PollAlreadyActiveError) -> JSONResponse:
        return fail(409, str(exc))

    @app.exception_handler(TransitionError)
    async def transition_error(request: Request, exc: TransitionError) -> JSONResponse:
        return fail(409, str(exc))

    @app.exception_handler(LLMError)
    async def llm_error(request: Request, exc: LLMError) -> JSONResponse:
        logger.error(f"AI provider {exc.provider} failed: {exc}")
        return fail(502, "AI provider request failed")

    @app.exception_handler(InvalidAddressError)
    async def invalid_address(request: Request, exc: InvalidAddressError) -> JSONResponse:
        return fail(400, str(exc))

    @app.exception_handler(MoralisClientError)
    async def moralis_error(request: Request, exc: MoralisClientError) -> JSONResponse:
        if isinstance(exc, MoralisNotConfiguredError):
            return fail(503, "moralis is not configured")
        logger.error(f"Moralis request failed ({exc.status_code}): {exc}")
        return fail(502, "Chain data provider request failed")

    @app.exception_handler(WalletClientError)
    async def wallet_error(request: Request, exc: WalletClientError) -> JSONResponse:
        logger.error(f"Wallet provider failed ({exc.status_code}): {exc}")
        return fail(502, "Wallet provider request failed")

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
        return fail(500, "Internal error")


# ============================================================================
# Health
# ============================================================================


async def health_check(services: Services = Depends(get_services)) -> dict[str, Any]:
    """Health check endpoint."""
    return ok({
        "status": "healthy",
        "version": VERSION,
        "strike": "live" if services.strike.is_configured else "simulated",
        "stripe": services.stripe.is_configured,
        "aiProviders": services.providers.names,
        "wallet": services.agentkit.is_ready,
        "moralis": services.moralis.is_configured,
        "polls": services.poll_manager.get_stats(),
        "invoices": services.store.get_stats(),
    })


# ============================================================================
# Strike
# ============================================================================


async def list_plans() -> dict[str, Any]:
    return ok([plan.model_dump(mode="json") for plan in SUBSCRIPTION_PLANS])


async def list_merch() -> dict[str, Any]:
    return ok([item.model_dump(mode="json") for item in MERCH_CATALOG])


async def create_strike_subscription(
    body: CreateSubscriptionRequest,
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    """
    Issue a subscription invoice and start watching it settle.

    The poll runs in the background; clients follow it through
    /api/subscriptions/{invoice_id}/poll.
    """
    invoice = await services.strike.create_subscription_invoice(body.plan_id, body.user_email)
    services.store.record_invoice(invoice, plan_id=body.plan_id, payer_email=body.user_email.strip())
    session = services.poll_manager.start(invoice.invoice_id)

    plan = get_plan(body.plan_id)
    return ok({
        **invoice.to_dict(),
        "planId": body.plan_id,
        "planName": plan.name,
        "poll": session.to_dict(),
    })


async def get_invoice_status(invoice_id: str, services: Services = Depends(get_services)) -> dict[str, Any]:
    invoice = await services.strike.get_invoice_status(invoice_id)
    if services.store.get_invoice(invoice_id):
        services.record_observation(0, invoice)
    return ok(invoice.to_dict())


async def create_merch_quote(body: MerchOrderRequest, services: Services = Depends(get_services)) -> dict[str, Any]:
    quote = await services.strike.create_merch_quote(body.items, body.user_email)
    return ok(quote.to_dict())


async def get_quote_status(quote_id: str, services: Services = Depends(get_services)) -> dict[str, Any]:
    quote = await services.strike.get_quote_status(quote_id)
    return ok(quote.to_dict())


# ============================================================================
# Settlement Polling
# ============================================================================


def _require_recorded(services: Services, invoice_id: str) -> None:
    if not services.store.get_invoice(invoice_id):
        raise InvoiceNotFoundError(invoice_id)


async def get_poll(invoice_id: str, services: Services = Depends(get_services)) -> dict[str, Any]:
    session = services.poll_manager.get_session(invoice_id)
    if not session:
        raise HTTPException(status_code=404, detail=f"No poll for invoice {invoice_id}")
    return ok(session.to_dict())


async def start_poll(invoice_id: str, services: Services = Depends(get_services)) -> dict[str, Any]:
    """Restart watching a recorded invoice, e.g. after a timeout."""
    _require_recorded(services, invoice_id)
    session = services.poll_manager.start(invoice_id)
    return ok(session.to_dict())


async def cancel_poll(invoice_id: str, services: Services = Depends(get_services)) -> dict[str, Any]:
    if not services.poll_manager.cancel(invoice_id):
        raise HTTPException(status_code=404, detail=f"No active poll for invoice {invoice_id}")
    return ok({"invoiceId": invoice_id, "cancelled": True})


async def get_user_subscription(
    email: str = Query(..., min_length=3),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    subscription = services.store.get_active_subscription(email.strip())
    if not subscription:
        return ok(None)

    plan = get_plan(subscription["plan_id"])
    return ok({
        **subscription,
        "plan": plan.model_dump(mode="json") if plan else None,
    })


# ============================================================================
# Stripe
# ============================================================================


async def create_stripe_subscription(
    body: CreateSubscriptionRequest,
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    return ok(await services.stripe.create_subscription(body.plan_id, body.user_email))


async def create_stripe_merch_payment(
    body: MerchOrderRequest,
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    return ok(await services.stripe.create_merch_payment(body.items, body.user_email))


async def get_stripe_subscription(subscription_id: str, services: Services = Depends(get_services)) -> dict[str, Any]:
    return ok(await services.stripe.get_subscription_status(subscription_id))


async def get_stripe_payment_intent(payment_intent_id: str, services: Services = Depends(get_services)) -> dict[str, Any]:
    return ok(await services.stripe.get_payment_intent_status(payment_intent_id))


# ============================================================================
# AI
# ============================================================================


async def ai_chat(body: ChatRequest, services: Services = Depends(get_services)) -> dict[str, Any]:
    provider = services.providers.get(body.provider)
    reply = await provider.complete(body.message, system=body.system)
    return ok({"provider": provider.name, "reply": reply})


async def ai_contract_analysis(
    body: ContractAnalysisRequest,
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    result = await services.analysis().analyze_smart_contract(body.contract_code, body.contract_address)
    return ok(result.to_dict())


async def ai_market_insights(
    body: MarketInsightsRequest,
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    result = await services.analysis().generate_market_insights(body.token_data, body.price_history)
    return ok(result.to_dict())


async def ai_gaming_strategy(
    body: GamingStrategyRequest,
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    result = await services.analysis().optimize_gaming_strategy(body.player_data, body.game_metrics)
    return ok(result.to_dict())


async def ai_investment_analysis(
    body: InvestmentAnalysisRequest,
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    result = await services.analysis().analyze_investment(body.project_data, body.market_context)
    return ok(result.to_dict())


# ============================================================================
# Wallet Agents
# ============================================================================


async def get_agentkit(services: Services = Depends(get_services)) -> dict[str, Any]:
    agentkit = services.agentkit
    return ok({
        "metrics": await agentkit.get_metrics(),
        "actions": [action.to_dict() for action in agentkit.list_actions()],
        "superPayTransactions": [tx.to_dict() for tx in agentkit.list_superpay_transactions()],
        "paymaster": agentkit.paymaster.to_dict(),
    })


async def execute_agent_action(body: AgentActionRequest, services: Services = Depends(get_services)) -> dict[str, Any]:
    action = await services.agentkit.execute_action(body.type, body.params)
    return ok(action.to_dict())


async def create_superpay(body: SuperPayRequest, services: Services = Depends(get_services)) -> dict[str, Any]:
    transaction = services.agentkit.create_superpay_transaction(
        to=body.to,
        amount=body.amount,
        currency=body.currency,
        gasless=body.gasless,
    )
    return ok(transaction.to_dict())


async def get_paymaster(services: Services = Depends(get_services)) -> dict[str, Any]:
    return ok(services.agentkit.paymaster.to_dict())


async def update_paymaster(body: PaymasterUpdateRequest, services: Services = Depends(get_services)) -> dict[str, Any]:
    changes = body.model_dump(exclude_none=True)
    if not changes:
        raise HTTPException(status_code=400, detail="No paymaster fields to update")
    config = services.agentkit.update_paymaster_config(**changes)
    return ok(config.to_dict())


async def create_wallet(body: CreateWalletRequest, services: Services = Depends(get_services)) -> dict[str, Any]:
    return ok(await services.wallet_client.create_wallet(name=body.name))


async def get_wallet_balance(
    wallet_id: str,
    asset: Optional[str] = None,
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    return ok(await services.wallet_client.get_balance(wallet_id, asset_id=asset))


# ============================================================================
# Chain Data
# ============================================================================


async def get_wallet_nfts(
    address: str,
    chain: str = MoralisClient.DEFAULT_CHAIN,
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    return ok(await services.moralis.get_wallet_nfts(address, chain))


async def get_token_balances(
    address: str,
    chain: str = MoralisClient.DEFAULT_CHAIN,
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    return ok(await services.moralis.get_token_balances(address, chain))


async def get_wallet_transactions(
    address: str,
    chain: str = MoralisClient.DEFAULT_CHAIN,
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    return ok(await services.moralis.get_wallet_transactions(address, chain))


async def get_defi_positions(
    address: str,
    chain: str = MoralisClient.DEFAULT_CHAIN,
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    return ok(await services.moralis.get_defi_positions(address, chain))


async def get_net_worth(
    address: str,
    chain: str = MoralisClient.DEFAULT_CHAIN,
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    return ok(await services.moralis.get_net_worth(address, chain))


async def get_wallet_pnl(
    address: str,
    chain: str = MoralisClient.DEFAULT_CHAIN,
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    return ok(await services.moralis.get_pnl(address, chain))


async def get_token_price(
    address: str,
    chain: str = MoralisClient.DEFAULT_CHAIN,
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    return ok(await services.moralis.get_token_price(address, chain))


async def get_token_metadata(
    address: str,
    chain: str = MoralisClient.DEFAULT_CHAIN,
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    return ok(await services.moralis.get_token_metadata(address, chain))


async def get_token_transfers(
    address: str,
    chain: str = MoralisClient.DEFAULT_CHAIN,
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    return ok(await services.moralis.get_token_transfers(address, chain))


async def get_contract_nfts(
    address: str,
    chain: str = MoralisClient.DEFAULT_CHAIN,
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    return ok(await services.moralis.get_contract_nfts(address, chain))


# ============================================================================
# App Instance
# ============================================================================


app = create_app()
