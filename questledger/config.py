"""Application configuration module."""

from typing import List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseSettings, validator

from questledger.common.logger import DEFAULT_LOG_FORMAT


class Settings(BaseSettings):
    """Application settings."""

    # Database settings
    # When unset, the URL is assembled from DB_* variables (see common.db.connection)
    DATABASE_URL: Optional[str] = None
    SQL_ECHO: bool = False
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT: int = 30
    # Create missing tables at startup; production schemas are managed by Alembic
    DB_CREATE_SCHEMA: bool = True

    # Logging settings
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = DEFAULT_LOG_FORMAT
    LOG_JSON: bool = False
    LOG_FILE: Optional[str] = None

    # API settings
    API_V1_STR: str = "/api/v1"
    PROJECT_NAME: str = "Quest Ledger"
    CORS_ORIGINS: List[str] = ["*"]

    # Ledger settings
    LEDGER_WRITE_TIMEOUT_SECONDS: float = 10.0
    LEDGER_TIMEZONE: str = "UTC"

    # Classroom sync settings
    CLASSROOM_API_BASE_URL: str = "https://classroom.googleapis.com/v1"
    CLASSROOM_HTTP_TIMEOUT: int = 15
    CLASSROOM_TARIFF_MODE: str = "fixed"
    CLASSROOM_XP_REWARD: int = 50
    CLASSROOM_COIN_REWARD: int = 20

    @validator("LOG_LEVEL")
    def validate_log_level(cls, v):
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v.upper()

    @validator("LEDGER_TIMEZONE")
    def validate_timezone(cls, v):
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone: {v}")
        return v

    @validator("LEDGER_WRITE_TIMEOUT_SECONDS")
    def validate_write_timeout(cls, v):
        if v <= 0:
            raise ValueError("LEDGER_WRITE_TIMEOUT_SECONDS must be positive")
        return v

    @validator("CLASSROOM_TARIFF_MODE")
    def validate_tariff_mode(cls, v):
        if v not in ("fixed", "weighted"):
            raise ValueError(f"Invalid tariff mode: {v}. Must be 'fixed' or 'weighted'")
        return v

    @validator("CLASSROOM_XP_REWARD", "CLASSROOM_COIN_REWARD")
    def validate_reward(cls, v):
        if v < 0:
            raise ValueError("Classroom rewards cannot be negative")
        return v

    class Config:
        """Pydantic settings config."""
        env_file = ".env"
        case_sensitive = True


# Create global settings instance
settings = Settings()
