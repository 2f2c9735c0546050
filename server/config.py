"""Server configuration using Pydantic Settings."""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Server
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port")
    debug: bool = Field(default=False, description="Debug mode")

    # Strike (Lightning invoices)
    strike_api_key: Optional[str] = Field(
        default=None,
        description="Strike API key; invoices are simulated without it",
    )
    strike_base_url: str = Field(
        default="https://api.strike.me/v1",
        description="Strike API root",
    )

    # Stripe (card payments)
    stripe_secret_key: Optional[str] = Field(default=None, description="Stripe secret key")

    # AI providers
    anthropic_api_key: Optional[str] = Field(default=None, description="Anthropic API key for Claude")
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API key")
    deepseek_api_key: Optional[str] = Field(default=None, description="DeepSeek API key")
    xai_api_key: Optional[str] = Field(default=None, description="xAI API key for Grok")

    # Wallet provider
    cdp_api_key: Optional[str] = Field(default=None, description="Coinbase Developer Platform API key")
    cdp_base_url: str = Field(
        default="https://api.cdp.coinbase.com/platform/v1",
        description="CDP wallet API root",
    )

    # Chain data
    moralis_api_key: Optional[str] = Field(default=None, description="Moralis Web3 data API key")

    # Settlement polling
    poll_interval_seconds: float = Field(default=5.0, gt=0, description="Seconds between status queries")
    poll_max_attempts: int = Field(default=60, ge=1, description="Status queries before timing out")
    poll_error_backoff: float = Field(default=2.0, ge=0, description="Slot length after a failed query")

    # Database
    database_url: str = Field(
        default="sqlite:///./cryptoquest.db",
        description="Database connection URL",
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
