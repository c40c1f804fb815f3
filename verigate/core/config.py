"""
verigate/core/config.py

Purpose: Application configuration

- Loads environment variables
- Centralizes config values (DB URI, upstream URLs, timeouts, limits)
- Captcha capability flag
- Validates configuration on startup
"""

from pydantic import Field, field_validator, ValidationInfo
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional, Literal


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Validates all required configs on startup.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Environment
    ENVIRONMENT: Literal["development", "staging", "production"] = "development"

    # MongoDB (verification sessions, rate limits, recovery passwords)
    MONGODB_URL: str = Field(
        default="mongodb://localhost:27017",
        description="MongoDB connection URI"
    )
    MONGODB_DB_NAME: str = Field(
        default="verigate",
        description="MongoDB database name"
    )
    SESSION_STORE_TIMEOUT_SECONDS: float = Field(
        default=5.0,
        description="Ceiling for a single session store read or write"
    )

    # Registration service (authoritative session owner)
    REGISTRATION_SERVICE_URL: str = Field(
        default="http://localhost:9090",
        description="Registration service base URL"
    )
    REGISTRATION_SERVICE_API_KEY: Optional[str] = Field(
        default=None,
        description="Bearer token presented to the registration service"
    )
    REGISTRATION_RPC_TIMEOUT_SECONDS: float = Field(
        default=15.0,
        description="Ceiling for a whole registration service round trip"
    )

    # Push challenge delivery
    PUSH_GATEWAY_URL: str = Field(
        default="http://localhost:9091",
        description="Push gateway base URL used to deliver challenges"
    )
    PUSH_GATEWAY_API_KEY: Optional[str] = Field(
        default=None,
        description="Push gateway API key"
    )
    PUSH_TIMEOUT_SECONDS: float = Field(
        default=10.0,
        description="Push gateway request timeout in seconds"
    )

    # Captcha gate
    CAPTCHA_ENABLED: bool = Field(
        default=False,
        description="Request and accept captchas as an alternative to push challenges"
    )
    CAPTCHA_SERVICE_URL: str = Field(
        default="http://localhost:9092",
        description="Captcha assessment service base URL"
    )
    CAPTCHA_SCORE_THRESHOLD: float = Field(
        default=0.5,
        description="Minimum assessment score for a captcha to count as valid"
    )
    CAPTCHA_TIMEOUT_SECONDS: float = Field(
        default=10.0,
        description="Captcha assessment request timeout in seconds"
    )

    # Rate Limiting (per session id)
    RATE_LIMIT_PUSH_CHALLENGE_ATTEMPTS: int = Field(
        default=10,
        description="Push challenge submissions allowed per window"
    )
    RATE_LIMIT_PUSH_CHALLENGE_WINDOW_SECONDS: int = Field(
        default=600,
        description="Push challenge rate limit window"
    )
    RATE_LIMIT_CAPTCHA_ATTEMPTS: int = Field(
        default=10,
        description="Captcha submissions allowed per window"
    )
    RATE_LIMIT_CAPTCHA_WINDOW_SECONDS: int = Field(
        default=600,
        description="Captcha rate limit window"
    )

    # Application
    DEBUG: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    API_PREFIX: str = Field(
        default="/v1/verification",
        description="API route prefix"
    )
    CORS_ORIGINS: list = Field(
        default=["*"],
        description="Allowed CORS origins"
    )

    @field_validator("REGISTRATION_SERVICE_API_KEY")
    @classmethod
    def validate_registration_key(cls, v, info: ValidationInfo):
        """Ensure the registration service key is set in production."""
        if info.data.get("ENVIRONMENT") == "production" and not v:
            raise ValueError("REGISTRATION_SERVICE_API_KEY is required in production environment")
        return v

    @field_validator("CAPTCHA_SCORE_THRESHOLD")
    @classmethod
    def validate_score_threshold(cls, v):
        if not 0.0 <= v <= 1.0:
            raise ValueError("CAPTCHA_SCORE_THRESHOLD must be between 0.0 and 1.0")
        return v

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.ENVIRONMENT == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENVIRONMENT == "production"


# Global settings instance
settings = Settings()


def validate_settings():
    """
    Validates critical settings on application startup.
    Raises ValueError if any required setting is missing or invalid.
    """
    errors = []

    if not settings.MONGODB_URL:
        errors.append("MONGODB_URL is required")

    if not settings.REGISTRATION_SERVICE_URL:
        errors.append("REGISTRATION_SERVICE_URL is required")

    if not settings.PUSH_GATEWAY_URL:
        errors.append("PUSH_GATEWAY_URL is required")

    if settings.CAPTCHA_ENABLED and not settings.CAPTCHA_SERVICE_URL:
        errors.append("CAPTCHA_SERVICE_URL is required when CAPTCHA_ENABLED is set")

    if settings.SESSION_STORE_TIMEOUT_SECONDS >= settings.REGISTRATION_RPC_TIMEOUT_SECONDS:
        errors.append("SESSION_STORE_TIMEOUT_SECONDS must be shorter than REGISTRATION_RPC_TIMEOUT_SECONDS")

    if errors:
        raise ValueError(f"Configuration validation failed: {', '.join(errors)}")

    return True
