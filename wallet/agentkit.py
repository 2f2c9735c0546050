"""
Agent actions, gas sponsorship (paymaster) and SuperPay transfers.

Actions run against an injected wallet backend. A failing action is
recorded with status ``failed``; it never raises to the caller.
"""

import logging
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from wallet.cdp_client import CdpWalletClient, WalletClientError

logger = logging.getLogger(__name__)

SPONSOR_ADDRESS = "0xCc380FD8bfbdF0c020de64075b86C84c2BB0AE79"
DEFAULT_GAS_ESTIMATE = 50000
GASLESS_TRANSFER_GAS = 21000
SUPERPAY_FEE_RATE = Decimal("0.001")


class ActionType(str, Enum):
    TRANSFER = "transfer"
    DEPLOY = "deploy"
    STAKE = "stake"
    TRADE = "trade"
    FAUCET = "faucet"


class ActionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
        validate_assignment=True,
    )

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class AgentAction(_CamelModel):
    id: str
    type: str
    status: ActionStatus = ActionStatus.PENDING
    params: dict[str, Any] = Field(default_factory=dict)
    result: Optional[Any] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class PaymasterConfig(_CamelModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool = True
    sponsor_address: str = SPONSOR_ADDRESS
    max_gas_per_transaction: int = Field(100000, ge=0)
    daily_limit: int = Field(1000000, ge=0)
    used_today: int = Field(0, ge=0)


class SponsorshipResult(_CamelModel):
    success: bool
    tx_hash: Optional[str] = None
    error: Optional[str] = None


class SuperPayTransaction(_CamelModel):
    id: str
    from_address: str = Field(alias="from")
    to: str
    amount: Decimal
    currency: str
    status: ActionStatus = ActionStatus.PENDING
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    fees: Decimal
    gasless: bool = False


class ActionError(Exception):
    """An agent action could not be carried out."""


class AgentKitService:
    """
    Autonomous agent operations on an admin wallet.

    Features:
    - Transfer, deploy, stake, trade (simulated) and faucet actions
    - Paymaster gas sponsorship with per-transaction and daily caps
    - SuperPay transfers with a 0.1% fee unless gasless
    """

    def __init__(
        self,
        wallet_client: Optional[CdpWalletClient] = None,
        paymaster: Optional[PaymasterConfig] = None,
        today: Callable[[], date] = date.today,
    ):
        self.wallet_client = wallet_client
        self.paymaster = paymaster or PaymasterConfig()
        self._today = today
        self._usage_day = today()

        self.admin_wallet_id: Optional[str] = None
        self.admin_address_id: Optional[str] = None

        self._actions: list[AgentAction] = []
        self._superpay: list[SuperPayTransaction] = []

    @property
    def is_ready(self) -> bool:
        return bool(self.wallet_client and self.admin_wallet_id and self.admin_address_id)

    async def initialize(self) -> None:
        """
        Attach the admin wallet, creating it if the account has none.

        Raises:
            WalletClientError: If the wallet provider is unreachable or
                not configured.
        """
        if self.wallet_client is None or not self.wallet_client.is_configured:
            raise WalletClientError("Wallet provider not configured")

        try:
            wallet = await self.wallet_client.create_wallet(name="Admin Wallet")
        except WalletClientError as e:
            logger.warning(f"Could not create admin wallet, reusing an existing one: {e}")
            wallets = await self.wallet_client.list_wallets(limit=1)
            if not wallets:
                raise
            wallet = wallets[0]

        self.admin_wallet_id = wallet["id"]
        addresses = await self.wallet_client.list_addresses(self.admin_wallet_id)
        if addresses:
            address = addresses[0]
        else:
            address = await self.wallet_client.create_address(self.admin_wallet_id)
        self.admin_address_id = address.get("address_id") or address.get("id")

        logger.info(f"AgentKit initialized with admin wallet {self.admin_wallet_id}")

    # ------------------------------------------------------------------
    # Agent actions
    # ------------------------------------------------------------------

    async def execute_action(self, action_type: str, params: Optional[dict[str, Any]] = None) -> AgentAction:
        """Run an action and record it. Failures land in ``result.error``."""
        action = AgentAction(
            id=f"action_{uuid4().hex[:12]}",
            type=action_type,
            params=params or {},
        )
        self._actions.append(action)

        handlers = {
            ActionType.TRANSFER.value: self._transfer,
            ActionType.DEPLOY.value: self._deploy,
            ActionType.STAKE.value: self._stake,
            ActionType.TRADE.value: self._trade,
            ActionType.FAUCET.value: self._faucet,
        }

        try:
            handler = handlers.get(action_type)
            if handler is None:
                raise ActionError(f"Unknown action type: {action_type}")
            action.result = await handler(action.params)
            action.status = ActionStatus.COMPLETED
        except (ActionError, WalletClientError) as e:
            logger.warning(f"Agent action {action.id} ({action_type}) failed: {e}")
            action.status = ActionStatus.FAILED
            action.result = {"error": str(e)}

        return action

    def list_actions(self) -> list[AgentAction]:
        return list(self._actions)

    def _wallet(self) -> tuple[CdpWalletClient, str, str]:
        if not self.is_ready:
            raise ActionError("Wallet not initialized")
        return self.wallet_client, self.admin_wallet_id, self.admin_address_id

    @staticmethod
    def _require(params: dict[str, Any], *keys: str) -> None:
        missing = [key for key in keys if params.get(key) in (None, "")]
        if missing:
            raise ActionError(f"Missing parameters: {', '.join(missing)}")

    async def _transfer(self, params: dict[str, Any]) -> dict[str, Any]:
        self._require(params, "to", "amount", "asset")
        client, wallet_id, address_id = self._wallet()
        return await client.transfer(wallet_id, address_id, params["to"], params["amount"], params["asset"])

    async def _deploy(self, params: dict[str, Any]) -> dict[str, Any]:
        self._require(params, "abi", "bytecode")
        client, wallet_id, address_id = self._wallet()
        return await client.deploy_contract(wallet_id, address_id, params["abi"], params["bytecode"], params.get("args"))

    async def _stake(self, params: dict[str, Any]) -> dict[str, Any]:
        self._require(params, "amount", "asset")
        client, wallet_id, address_id = self._wallet()
        return await client.stake(wallet_id, address_id, params["amount"], params["asset"], params.get("mode", "default"))

    async def _trade(self, params: dict[str, Any]) -> dict[str, Any]:
        # Trades are simulated; no backend call is made.
        self._require(params, "fromAsset", "toAsset", "amount")
        return {
            "success": True,
            "fromAsset": params["fromAsset"],
            "toAsset": params["toAsset"],
            "amount": params["amount"],
            "executedAt": datetime.utcnow().isoformat(),
        }

    async def _faucet(self, params: dict[str, Any]) -> dict[str, Any]:
        client, wallet_id, address_id = self._wallet()
        return await client.request_faucet(wallet_id, address_id, params.get("asset", "eth"))

    # ------------------------------------------------------------------
    # Paymaster
    # ------------------------------------------------------------------

    def _roll_day(self) -> None:
        today = self._today()
        if today != self._usage_day:
            self._usage_day = today
            self.paymaster.used_today = 0

    def sponsor_transaction(self, gas_estimate: Optional[int] = None) -> SponsorshipResult:
        """Sponsor gas for a transaction if it fits within the paymaster limits."""
        self._roll_day()
        gas = DEFAULT_GAS_ESTIMATE if gas_estimate is None else gas_estimate
        config = self.paymaster

        if not config.enabled:
            return SponsorshipResult(success=False, error="Paymaster is disabled")
        if gas > config.max_gas_per_transaction:
            return SponsorshipResult(success=False, error="Transaction exceeds gas limit")
        if config.used_today + gas > config.daily_limit:
            return SponsorshipResult(success=False, error="Daily gas limit exceeded")

        config.used_today += gas
        tx_hash = f"0x{uuid4().hex}{uuid4().hex}"
        logger.info(f"Sponsored {gas} gas ({config.used_today}/{config.daily_limit} used today)")
        return SponsorshipResult(success=True, tx_hash=tx_hash)

    def update_paymaster_config(self, **changes: Any) -> PaymasterConfig:
        """Apply a partial update; unknown keys are rejected by validation."""
        merged = {**self.paymaster.model_dump(), **changes}
        self.paymaster = PaymasterConfig.model_validate(merged)
        return self.paymaster

    # ------------------------------------------------------------------
    # SuperPay
    # ------------------------------------------------------------------

    def create_superpay_transaction(
        self,
        to: str,
        amount: Decimal,
        currency: str,
        gasless: bool = False,
    ) -> SuperPayTransaction:
        """Create a SuperPay transfer; gasless transfers need sponsorship."""
        amount = Decimal(str(amount))
        if amount <= 0:
            raise ValueError("amount must be positive")

        transaction = SuperPayTransaction(
            id=f"spay_{uuid4().hex[:12]}",
            from_address=self.paymaster.sponsor_address,
            to=to,
            amount=amount,
            currency=currency,
            fees=Decimal("0") if gasless else amount * SUPERPAY_FEE_RATE,
            gasless=gasless,
        )
        self._superpay.append(transaction)

        if gasless:
            sponsorship = self.sponsor_transaction(GASLESS_TRANSFER_GAS)
            if not sponsorship.success:
                logger.warning(f"SuperPay {transaction.id} not sponsored: {sponsorship.error}")
                transaction.status = ActionStatus.FAILED
                return transaction

        transaction.status = ActionStatus.COMPLETED
        return transaction

    def list_superpay_transactions(self) -> list[SuperPayTransaction]:
        return list(self._superpay)

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------

    async def get_metrics(self) -> dict[str, Any]:
        balance = None
        addresses: list[dict[str, Any]] = []
        if self.is_ready:
            try:
                balance = await self.wallet_client.get_balance(self.admin_wallet_id)
                addresses = await self.wallet_client.list_addresses(self.admin_wallet_id)
            except WalletClientError as e:
                logger.error(f"Error getting wallet metrics: {e}")

        return {
            "walletReady": self.is_ready,
            "balance": balance,
            "addresses": addresses,
            "activeTransactions": sum(1 for t in self._superpay if t.status == ActionStatus.PENDING.value),
            "totalTransactions": len(self._superpay),
            "gasSponsored": self.paymaster.used_today,
            "agentActions": len(self._actions),
        }
