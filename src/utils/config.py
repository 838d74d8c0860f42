"""
Configuration Management

Uses Pydantic Settings for environment-based configuration.
Loads from .env file automatically.
"""

from typing import Dict, List, Optional
from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # OpenAI (Required for chat completions)
    OPENAI_API_KEY: Optional[str] = None
    OPENAI_TIMEOUT: float = 180.0
    OPENAI_CONNECT_TIMEOUT: float = 10.0

    # DALL-E (Optional - falls back to the OpenAI key)
    DALLE_API_KEY: Optional[str] = None
    DALLE_TIMEOUT: float = 120.0

    # Perplexity (Optional - search disabled without a key)
    PERPLEXITY_API_KEY: Optional[str] = None
    PERPLEXITY_TIMEOUT: float = 60.0

    # Shared provider behaviour
    AI_VERIFY_SSL: bool = True
    AI_INLINE_RETRIES: int = 0
    AI_CIRCUIT_BREAKER_THRESHOLD: int = 5
    AI_CIRCUIT_BREAKER_TIMEOUT: int = 60
    AI_RESPONSE_CACHE_TTL: int = 86400

    # Budgets (USD)
    AI_DAILY_BUDGET: float = 50.0
    AI_MONTHLY_BUDGET: float = 1000.0
    AI_ALERT_WARNING: float = 80.0
    AI_ALERT_CRITICAL: float = 95.0
    AI_ALERT_EXCEEDED: float = 100.0
    AI_ALERT_EMAIL: Optional[str] = None
    AI_BLOCK_ON_EXCEEDED: bool = False

    # Pipeline flags
    AUTO_TRANSLATE: bool = False
    AUTO_GENERATE_IMAGE: bool = False
    AUTO_PUBLISH: bool = False
    MIN_QUALITY_SCORE: float = 75.0
    TRANSLATION_DELAY: int = 15
    ACTIVE_LANGUAGES: str = "fr,en,de,es,pt,ru,zh,ar,hi"

    # Publishing
    PUBLISH_PLATFORMS: Dict[str, Dict[str, str]] = {}  # JSON: {"1": {"api_url": ..., "api_key": ...}}
    PUBLISH_TIMEOUT: float = 30.0
    PUBLISH_MAX_PER_DAY: int = 20
    PUBLISH_MAX_PER_HOUR: int = 4
    PUBLISH_MIN_INTERVAL_MINUTES: int = 10
    PUBLISH_RESCHEDULE_DELAY: int = 900
    JOB_RETENTION_HOURS: float = 24.0
    INDEXNOW_KEY: Optional[str] = None

    # Infrastructure
    DATABASE_URL: Optional[str] = None  # PostgreSQL; SQLite file when unset
    SQLITE_PATH: str = "content_engine.db"
    SQL_DEBUG: bool = False
    REDIS_URL: Optional[str] = None
    CACHE_NAMESPACE: str = "content_engine"
    JOBS_STORAGE_PATH: Optional[str] = None
    TIMEZONE: str = "Europe/Paris"

    # Resend (Optional - for alert emails)
    RESEND_API_KEY: Optional[str] = None
    FROM_EMAIL: str = "alerts@content-engine.local"

    # Application Settings
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",  # Ignore extra fields in .env file
        case_sensitive=False,  # Allow both UPPERCASE and lowercase
    )

    @property
    def active_languages(self) -> List[str]:
        """Active target languages as a list of codes."""
        return [code.strip() for code in self.ACTIVE_LANGUAGES.split(",") if code.strip()]

    @property
    def verify_ssl(self) -> bool:
        """TLS verification is always off for local environments."""
        if self.ENVIRONMENT == "local":
            return False
        return self.AI_VERIFY_SSL


@lru_cache
def get_settings() -> Settings:
    """Get or create cached settings instance."""
    return Settings()
