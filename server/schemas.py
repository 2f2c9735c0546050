"""Request bodies for the HTTP API."""

from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ai_providers.schemas import (
    GameMetrics,
    MarketContext,
    PlayerData,
    PricePoint,
    ProjectData,
    TokenData,
)
from state_machine.models import CartLine


class ApiRequest(BaseModel):
    """Accepts camelCase (wire) or snake_case field names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateSubscriptionRequest(ApiRequest):
    plan_id: str = Field(..., min_length=1)
    user_email: str = Field(..., min_length=3)


class MerchOrderRequest(ApiRequest):
    items: list[CartLine] = Field(..., min_length=1)
    user_email: str = Field(..., min_length=3)


class ChatRequest(ApiRequest):
    message: str = Field(..., min_length=1)
    system: Optional[str] = None
    provider: Optional[str] = None


class ContractAnalysisRequest(ApiRequest):
    contract_code: str = Field(..., min_length=1)
    contract_address: str = Field(..., min_length=1)


class MarketInsightsRequest(ApiRequest):
    token_data: TokenData
    price_history: list[PricePoint] = Field(default_factory=list)


class GamingStrategyRequest(ApiRequest):
    player_data: PlayerData
    game_metrics: GameMetrics = Field(default_factory=GameMetrics)


class InvestmentAnalysisRequest(ApiRequest):
    project_data: ProjectData
    market_context: MarketContext = Field(default_factory=MarketContext)


class AgentActionRequest(ApiRequest):
    type: str = Field(..., min_length=1)
    params: dict[str, Any] = Field(default_factory=dict)


class SuperPayRequest(ApiRequest):
    to: str = Field(..., min_length=1)
    amount: Decimal = Field(..., gt=0)
    currency: str = "USDC"
    gasless: bool = False


class PaymasterUpdateRequest(ApiRequest):
    enabled: Optional[bool] = None
    max_gas_per_transaction: Optional[int] = Field(None, ge=0)
    daily_limit: Optional[int] = Field(None, ge=0)


class CreateWalletRequest(ApiRequest):
    name: Optional[str] = None
