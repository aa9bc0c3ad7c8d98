"""
Application configuration and environment settings.
"""
from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import List, Union


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "SplitLedger"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "sqlite:///./splitledger.db"
    DB_ECHO: bool = False

    # JWT (tokens are issued by the auth service, only verified here)
    SECRET_KEY: str = "your-secret-key-change-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_DAYS: int = 7

    # CORS
    CORS_ORIGINS: Union[List[str], str] = ["http://localhost:3000", "http://localhost:5173"]

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        """Parse CORS_ORIGINS from comma-separated string or list."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    # Money display
    CURRENCY_SYMBOL: str = "$"

    # Debt aging (days)
    OVERDUE_DAYS: int = 14
    URGENCY_MEDIUM_DAYS: int = 14
    URGENCY_HIGH_DAYS: int = 30
    URGENT_DEBTS_LIMIT: int = 10
    RECENT_ACTIVITY_DAYS: int = 30
    RECENT_ACTIVITY_LIMIT: int = 10

    # Cache
    DEBT_CACHE_TTL_SECONDS: int = 5 * 60
    SETTLEMENT_CACHE_TTL_SECONDS: int = 3 * 60

    # Settlements
    ALLOW_TRUSTED_SETTLEMENTS: bool = False  # Single-step settlements confirmed on creation
    SETTLEMENT_HISTORY_MAX_LIMIT: int = 100

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
