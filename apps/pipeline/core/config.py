"""Centralized pipeline configuration via Pydantic Settings.

Loads all env vars into a typed Settings instance shared by the
normalization and categorization runs.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings

from packages.categorization.confidence import ConfidenceConfig
from packages.ingestion_engine.errors import ConfigurationError


class Settings(BaseSettings):
    """Pipeline settings loaded from environment variables."""

    # Supabase
    SUPABASE_URL: str = Field(default="", description="Supabase project URL")
    SUPABASE_SERVICE_KEY: str = Field(default="", description="Supabase service-role key")
    SUPABASE_TRANSACTIONS_TABLE: str = Field(default="transactions")
    SUPABASE_CATEGORIES_TABLE: str = Field(default="categories")

    # OpenAI
    OPENAI_API_KEY: str = Field(default="", description="OpenAI API key")
    OPENAI_MODEL: str = Field(default="gpt-4o-mini")
    OPENAI_TEMPERATURE: float = Field(default=0.3)
    OPENAI_MAX_TOKENS: int = Field(default=1000)

    # Exchange rates
    EXCHANGE_RATE_PROVIDER_URL: str = Field(
        default="https://api.exchangerate-api.com/v4/latest/",
        description="Base URL; the base currency code is appended",
    )
    EXCHANGE_RATE_TIMEOUT: float = Field(default=10.0, description="HTTP timeout in seconds")
    SETTLEMENT_CURRENCY: str = Field(default="GBP")

    # Retry policy for external calls
    RETRY_MAX_ATTEMPTS: int = Field(default=3, ge=1)
    RETRY_INITIAL_DELAY: float = Field(default=1.0, ge=0)
    RETRY_BACKOFF_MULTIPLIER: float = Field(default=2.0, ge=1)
    RETRY_MAX_DELAY: float = Field(default=32.0, ge=0)

    # Categorization
    CATEGORIZATION_BATCH_SIZE: int = Field(default=10, ge=1)
    HISTORICAL_CONTEXT_SIZE: int = Field(default=5, ge=0)
    HISTORICAL_LOOKBACK_DAYS: int = Field(default=90, ge=1)
    FALLBACK_CATEGORY_NAME: str = Field(default="Other")

    # Confidence tunables (bounds enforced by ConfidenceConfig.validate)
    CONFIDENCE_AI_WEIGHT: float = 0.6
    CONFIDENCE_HISTORICAL_WEIGHT: float = 0.4
    CONFIDENCE_CONSENSUS_BONUS: float = 15
    CONFIDENCE_CONFLICT_PENALTY: float = -15
    CONFIDENCE_MIN_HISTORICAL_MATCHES: int = 2
    CONFIDENCE_MANUAL_OVERRIDE_BOOST: float = 5

    # Logging
    LOG_LEVEL: str = Field(default="INFO", description="Python log level")
    ENVIRONMENT: str = Field(
        default="development",
        description="Runtime environment: development, staging, production",
    )

    ENABLED_SOURCES: str = Field(
        default="",
        description="Comma-separated bank source ids to process; empty means all",
    )

    @property
    def enabled_sources(self) -> Optional[list[str]]:
        """Parse ENABLED_SOURCES; None means every registered source."""
        sources = [s.strip().upper() for s in self.ENABLED_SOURCES.split(",") if s.strip()]
        return sources or None

    @property
    def json_logs(self) -> bool:
        return self.ENVIRONMENT == "production"

    def confidence_config(self) -> ConfidenceConfig:
        config = ConfidenceConfig(
            ai_weight=self.CONFIDENCE_AI_WEIGHT,
            historical_weight=self.CONFIDENCE_HISTORICAL_WEIGHT,
            consensus_bonus=self.CONFIDENCE_CONSENSUS_BONUS,
            conflict_penalty=self.CONFIDENCE_CONFLICT_PENALTY,
            min_historical_matches=self.CONFIDENCE_MIN_HISTORICAL_MATCHES,
            manual_override_boost=self.CONFIDENCE_MANUAL_OVERRIDE_BOOST,
        )
        config.validate()
        return config

    def require(self, *names: str) -> None:
        """Fail fast when settings needed by the current command are empty."""
        missing = [name for name in names if not getattr(self, name)]
        if missing:
            raise ConfigurationError(f"Missing required settings: {', '.join(missing)}")

    model_config = {"env_file": ".env", "extra": "ignore"}


def get_settings() -> Settings:
    """Factory for Settings; tests override it."""
    return Settings()
