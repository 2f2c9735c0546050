"""
AI analysis for contracts, markets, gaming strategy and investments.

Each analysis asks the provider for a JSON object, validates it against
the result schema, falls back to keyword/regex extraction from free text
and finally to fixed defaults. An analysis never raises because of the
provider.
"""

import json
import logging
import re
from typing import Optional, TypeVar

from pydantic import BaseModel, ValidationError

from ai_providers.providers import ChatProvider, LLMError
from ai_providers.schemas import (
    ContractAnalysis,
    GameMetrics,
    GamingStrategy,
    InvestmentAnalysis,
    MarketContext,
    MarketInsights,
    PlayerData,
    PricePoint,
    ProjectData,
    Recommendation,
    RiskLevel,
    Sentiment,
    TokenData,
)

logger = logging.getLogger(__name__)

ResultT = TypeVar("ResultT", bound=BaseModel)


# ============================================================================
# Defaults
# ============================================================================


DEFAULT_CONTRACT_ANALYSIS = ContractAnalysis(
    security_score=85,
    gas_efficiency=78,
    code_quality=82,
    vulnerabilities=["Minor access control improvements needed"],
    recommendations=["Add ReentrancyGuard", "Optimize gas usage"],
    trust_score=85,
)

DEFAULT_MARKET_INSIGHTS = MarketInsights(
    sentiment=Sentiment.BULLISH,
    price_target="$1.25",
    risk_level=RiskLevel.MODERATE,
    recommendation=Recommendation.BUY,
    key_factors=["Gaming sector growth", "Strong fundamentals"],
    timeframe="30 days",
)

DEFAULT_GAMING_STRATEGY = GamingStrategy(
    priority_actions=["Focus on character development", "Join competitive guild"],
    resource_allocation=["60% equipment", "30% guild", "10% trading"],
    risk_management=["Diversify holdings", "Set stop losses"],
    expected_roi=15,
    timeframe="1 week",
)

DEFAULT_INVESTMENT_ANALYSIS = InvestmentAnalysis(
    overall_score=75,
    recommendation=Recommendation.BUY,
    risk_factors=["Market volatility", "Regulatory changes"],
    upside=25,
    confidence=70,
)

KNOWN_VULNERABILITIES = ["reentrancy", "overflow", "access control", "front-running"]

CONTRACT_RECOMMENDATIONS = [
    "Implement ReentrancyGuard for external calls",
    "Add proper access control modifiers",
    "Optimize gas usage in loops",
    "Add comprehensive event logging",
]

MARKET_KEY_FACTORS = [
    "Strong gaming sector momentum",
    "Increasing institutional adoption",
    "Active development community",
    "Strategic partnerships in pipeline",
]

STRATEGY_ACTIONS = {
    "priority": ["Focus on character leveling", "Join active guild", "Complete daily quests"],
    "resource": ["Invest 60% in equipment", "Save 30% for guild activities", "Trade 10% actively"],
    "risk": ["Diversify token holdings", "Set stop-loss orders", "Monitor market conditions"],
}

INVESTMENT_RISK_FACTORS = [
    "Market volatility",
    "Regulatory uncertainty",
    "Competition pressure",
    "Technology risks",
]


# ============================================================================
# Text extraction
# ============================================================================


SCORE_PATTERNS: dict[str, re.Pattern[str]] = {
    "security": re.compile(r"security[\w ]*?[:\s]+(\d{1,3})", re.I),
    "gas": re.compile(r"gas[\w ]*?[:\s]+(\d{1,3})", re.I),
    "quality": re.compile(r"quality[\w ]*?[:\s]+(\d{1,3})", re.I),
    "trust": re.compile(r"trust[\w ]*?[:\s]+(\d{1,3})", re.I),
    "roi": re.compile(r"roi[\w ]*?[:\s]+(\d{1,3})", re.I),
    "overall": re.compile(r"overall[\w ]*?[:\s]+(\d{1,3})", re.I),
    "upside": re.compile(r"upside[\w ]*?[:\s]+(\d{1,3})", re.I),
    "confidence": re.compile(r"confidence[\w ]*?[:\s]+(\d{1,3})", re.I),
}

PRICE_TARGET_PATTERN = re.compile(r"price\s*target[^$\d]{0,20}\$?\s*(\d+(?:\.\d+)?)", re.I)
BULLET_PATTERN = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s+(.+?)\s*$", re.M)


def extract_score(text: str, kind: str) -> Optional[int]:
    """Find a labelled 0-100 score such as ``Security: 72`` in free text."""
    pattern = SCORE_PATTERNS.get(kind)
    if pattern is None:
        raise ValueError(f"Unknown score kind: {kind}")
    match = pattern.search(text)
    if not match:
        return None
    return min(int(match.group(1)), 100)


def extract_sentiment(text: str) -> Optional[Sentiment]:
    lowered = text.lower()
    for sentiment in (Sentiment.BEARISH, Sentiment.BULLISH, Sentiment.NEUTRAL):
        if sentiment.value.lower() in lowered:
            return sentiment
    return None


def extract_recommendation(text: str) -> Optional[Recommendation]:
    # "strong buy" must be tested before "buy"
    for recommendation in Recommendation:
        if re.search(rf"\b{recommendation.value}\b", text, re.I):
            return recommendation
    return None


def extract_risk_level(text: str) -> Optional[RiskLevel]:
    match = re.search(r"\b(low|moderate|medium|high)\s+risk\b|\brisk[\w ]*?:\s*(low|moderate|medium|high)\b", text, re.I)
    if not match:
        return None
    level = (match.group(1) or match.group(2)).lower()
    if level == "medium":
        level = "moderate"
    return RiskLevel(level.capitalize())


def extract_price_target(text: str) -> Optional[str]:
    match = PRICE_TARGET_PATTERN.search(text)
    return f"${match.group(1)}" if match else None


def extract_vulnerabilities(text: str) -> list[str]:
    lowered = text.lower()
    return [name for name in KNOWN_VULNERABILITIES if name in lowered]


def extract_bullets(text: str, limit: int = 5) -> list[str]:
    """Collect list items (``- item``, ``1. item``) from free text."""
    return [m.group(1) for m in BULLET_PATTERN.finditer(text)][:limit]


def extract_json(response: str) -> str:
    """Extract JSON from response, handling markdown code blocks."""
    code_block_match = re.search(r"```(?:json)?\s*([\s\S]*?)```", response)
    if code_block_match:
        return code_block_match.group(1).strip()

    json_match = re.search(r"\{[\s\S]*\}", response)
    if json_match:
        return json_match.group(0)

    return response.strip()


def parse_structured(response: str, model: type[ResultT]) -> Optional[ResultT]:
    """Validate a JSON answer against ``model``; None when it does not fit."""
    try:
        data = json.loads(extract_json(response))
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict):
        return None
    try:
        return model.model_validate(data)
    except ValidationError as e:
        logger.debug(f"Structured answer rejected by {model.__name__}: {e}")
        return None


def _schema_hint(model: type[BaseModel]) -> str:
    fields = ", ".join(
        f'"{info.alias or name}"' for name, info in model.model_fields.items()
    )
    return f"Respond with a single JSON object with the keys {fields}."


# ============================================================================
# Service
# ============================================================================


class AnalysisService:
    """
    Runs analysis prompts against an injected chat provider.

    Without a provider every analysis returns its default result.
    """

    def __init__(self, provider: Optional[ChatProvider] = None):
        self.provider = provider

    async def chat(self, message: str, system: Optional[str] = None) -> str:
        """
        Free-form chat completion.

        Raises:
            LLMError: If no provider is configured or the call fails.
        """
        if self.provider is None:
            raise LLMError("No AI provider configured", provider="none")
        return await self.provider.complete(message, system=system)

    async def _ask(self, prompt: str, system: str, model: type[BaseModel]) -> Optional[str]:
        if self.provider is None:
            return None
        try:
            return await self.provider.complete(prompt, system=f"{system}\n{_schema_hint(model)}")
        except LLMError as e:
            logger.error(f"{model.__name__} request failed ({e.provider}): {e}")
            return None

    async def analyze_smart_contract(self, contract_code: str, contract_address: str) -> ContractAnalysis:
        system = (
            "You are a smart contract security expert. Analyze the provided contract for "
            "security vulnerabilities (reentrancy, overflow, etc.), gas optimization "
            "opportunities and code quality, and give a trust score (0-100)."
        )
        prompt = (
            f"Analyze this smart contract:\n"
            f"Address: {contract_address}\n"
            f"Code: {contract_code}\n\n"
            "Focus on security, gas efficiency, and overall quality. Provide actionable recommendations."
        )
        response = await self._ask(prompt, system, ContractAnalysis)
        if response is None:
            return DEFAULT_CONTRACT_ANALYSIS
        return parse_structured(response, ContractAnalysis) or self._parse_contract_text(response)

    async def generate_market_insights(
        self,
        token: TokenData,
        price_history: list[PricePoint],
    ) -> MarketInsights:
        system = (
            "You are a crypto market analyst specializing in gaming tokens. Cover price "
            "movement, volume trends, market sentiment, gaming sector positioning and an "
            "investment recommendation."
        )
        history = json.dumps([point.model_dump(exclude_none=True) for point in price_history[-7:]])
        prompt = (
            f"Analyze this gaming token:\n"
            f"Token: {token.name} ({token.symbol})\n"
            f"Current Price: ${token.price}\n"
            f"24h Volume: ${token.volume24h}\n"
            f"Market Cap: ${token.market_cap}\n\n"
            f"Price History: {history}\n\n"
            "Provide comprehensive market analysis for gaming industry context."
        )
        response = await self._ask(prompt, system, MarketInsights)
        if response is None:
            return DEFAULT_MARKET_INSIGHTS
        return parse_structured(response, MarketInsights) or self._parse_market_text(response)

    async def optimize_gaming_strategy(self, player: PlayerData, metrics: GameMetrics) -> GamingStrategy:
        system = (
            "You are a gaming strategy AI specializing in blockchain MMORPGs. Recommend "
            "character optimization, resource allocation, guild participation, token "
            "earning and risk management."
        )
        prompt = (
            f"Optimize strategy for this player:\n"
            f"Level: {player.level}\n"
            f"Experience: {player.experience}\n"
            f"Resources: {json.dumps(player.inventory)}\n"
            f"Guild Status: {player.guild_status}\n\n"
            f"Game Metrics:\n"
            f"Average Session: {metrics.avg_session} minutes\n"
            f"Win Rate: {metrics.win_rate}%\n"
            f"Token Balance: {metrics.token_balance}\n\n"
            "Provide comprehensive optimization strategy."
        )
        response = await self._ask(prompt, system, GamingStrategy)
        if response is None:
            return DEFAULT_GAMING_STRATEGY
        return parse_structured(response, GamingStrategy) or self._parse_strategy_text(response)

    async def analyze_investment(self, project: ProjectData, context: MarketContext) -> InvestmentAnalysis:
        system = (
            "You are a Web3 investment analyst focusing on gaming projects. Evaluate "
            "technology, market positioning, team credibility, token economics and risk "
            "factors, and give an investment recommendation (Buy/Hold/Sell)."
        )
        prompt = (
            f"Evaluate this gaming investment:\n"
            f"Project: {project.name}\n"
            f"Token: {project.token}\n"
            f"Market Cap: ${project.market_cap}\n"
            f"TVL: ${project.tvl}\n"
            f"Active Users: {project.active_users}\n\n"
            f"Market Context:\n"
            f"Gaming Sector Growth: {context.sector_growth}%\n"
            f"Competition Level: {context.competition}\n"
            f"Regulatory Environment: {context.regulatory}\n\n"
            "Provide comprehensive investment analysis."
        )
        response = await self._ask(prompt, system, InvestmentAnalysis)
        if response is None:
            return DEFAULT_INVESTMENT_ANALYSIS
        return parse_structured(response, InvestmentAnalysis) or self._parse_investment_text(response)

    # ------------------------------------------------------------------
    # Free-text fallbacks
    # ------------------------------------------------------------------

    def _parse_contract_text(self, text: str) -> ContractAnalysis:
        default = DEFAULT_CONTRACT_ANALYSIS
        return ContractAnalysis(
            security_score=_or(extract_score(text, "security"), default.security_score),
            gas_efficiency=_or(extract_score(text, "gas"), default.gas_efficiency),
            code_quality=_or(extract_score(text, "quality"), default.code_quality),
            vulnerabilities=extract_vulnerabilities(text),
            recommendations=extract_bullets(text) or list(CONTRACT_RECOMMENDATIONS),
            trust_score=_or(extract_score(text, "trust"), default.trust_score),
        )

    def _parse_market_text(self, text: str) -> MarketInsights:
        default = DEFAULT_MARKET_INSIGHTS
        return MarketInsights(
            sentiment=extract_sentiment(text) or default.sentiment,
            price_target=extract_price_target(text) or default.price_target,
            risk_level=extract_risk_level(text) or default.risk_level,
            recommendation=extract_recommendation(text) or default.recommendation,
            key_factors=extract_bullets(text) or list(MARKET_KEY_FACTORS),
            timeframe=default.timeframe,
        )

    def _parse_strategy_text(self, text: str) -> GamingStrategy:
        return GamingStrategy(
            priority_actions=list(STRATEGY_ACTIONS["priority"]),
            resource_allocation=list(STRATEGY_ACTIONS["resource"]),
            risk_management=list(STRATEGY_ACTIONS["risk"]),
            expected_roi=_or(extract_score(text, "roi"), DEFAULT_GAMING_STRATEGY.expected_roi),
            timeframe=DEFAULT_GAMING_STRATEGY.timeframe,
        )

    def _parse_investment_text(self, text: str) -> InvestmentAnalysis:
        default = DEFAULT_INVESTMENT_ANALYSIS
        return InvestmentAnalysis(
            overall_score=_or(extract_score(text, "overall"), default.overall_score),
            recommendation=extract_recommendation(text) or default.recommendation,
            risk_factors=list(INVESTMENT_RISK_FACTORS),
            upside=_or(extract_score(text, "upside"), default.upside),
            confidence=_or(extract_score(text, "confidence"), default.confidence),
        )


def _or(value: Optional[int], fallback: int) -> int:
    return fallback if value is None else value
