"""Schemas for AI analysis inputs and results."""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
    )

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class Sentiment(str, Enum):
    BULLISH = "Bullish"
    NEUTRAL = "Neutral"
    BEARISH = "Bearish"


class RiskLevel(str, Enum):
    LOW = "Low"
    MODERATE = "Moderate"
    HIGH = "High"


class Recommendation(str, Enum):
    STRONG_BUY = "Strong Buy"
    BUY = "Buy"
    HOLD = "Hold"
    SELL = "Sell"


def _clamp_score(v: int) -> int:
    return max(0, min(100, v))


# ============================================================================
# Inputs
# ============================================================================


class TokenData(_CamelModel):
    name: str = "Unknown"
    symbol: str = "N/A"
    price: float = 0.0
    volume24h: float = 0.0
    market_cap: float = 0.0


class PricePoint(_CamelModel):
    timestamp: Optional[str] = None
    price: float


class PlayerData(_CamelModel):
    level: int = 1
    experience: int = 0
    inventory: dict[str, Any] = Field(default_factory=dict)
    guild_status: str = "none"


class GameMetrics(_CamelModel):
    avg_session: float = 0.0
    win_rate: float = 0.0
    token_balance: float = 0.0


class ProjectData(_CamelModel):
    name: str = "Unknown"
    token: str = "N/A"
    market_cap: float = 0.0
    tvl: float = 0.0
    active_users: int = 0


class MarketContext(_CamelModel):
    sector_growth: float = 0.0
    competition: str = "unknown"
    regulatory: str = "unknown"


# ============================================================================
# Results
# ============================================================================


class ContractAnalysis(_CamelModel):
    """Security review of a smart contract. Scores range 0-100."""

    security_score: int
    gas_efficiency: int
    code_quality: int
    vulnerabilities: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    trust_score: int

    @field_validator("security_score", "gas_efficiency", "code_quality", "trust_score")
    @classmethod
    def clamp_scores(cls, v: int) -> int:
        return _clamp_score(v)


class MarketInsights(_CamelModel):
    sentiment: Sentiment
    price_target: str
    risk_level: RiskLevel
    recommendation: Recommendation
    key_factors: list[str] = Field(default_factory=list)
    timeframe: str = "30 days"


class GamingStrategy(_CamelModel):
    priority_actions: list[str] = Field(default_factory=list)
    resource_allocation: list[str] = Field(default_factory=list)
    risk_management: list[str] = Field(default_factory=list)
    expected_roi: int = Field(alias="expectedROI")
    timeframe: str = "1 week"


class InvestmentAnalysis(_CamelModel):
    overall_score: int
    recommendation: Recommendation
    risk_factors: list[str] = Field(default_factory=list)
    upside: int
    confidence: int

    @field_validator("overall_score", "confidence")
    @classmethod
    def clamp_scores(cls, v: int) -> int:
        return _clamp_score(v)
