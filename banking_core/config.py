"""
Application configuration.

All configuration is loaded from environment variables.
Never hardcode secrets or connection strings in code.
"""

import os
from decimal import Decimal
from functools import lru_cache

from dotenv import load_dotenv

# Load .env file into environment variables
load_dotenv()


class Settings:
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "Banking Core"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"

    # Server
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "8000"))

    # Database
    DATABASE_URL: str = os.getenv(
        "DATABASE_URL",
        "postgresql://localhost:5432/banking_core"
    )

    # Environment
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_JSON: bool = os.getenv("LOG_JSON", "true").lower() == "true"

    # Verification
    OTP_LENGTH: int = int(os.getenv("OTP_LENGTH", "6"))
    OTP_EXPIRY_MINUTES: int = int(os.getenv("OTP_EXPIRY_MINUTES", "10"))

    # Abandoned PENDING transfers are expired and refunded after this
    PENDING_TRANSFER_TTL_HOURS: int = int(
        os.getenv("PENDING_TRANSFER_TTL_HOURS", "72")
    )

    # References
    REFERENCE_MAX_ATTEMPTS: int = int(os.getenv("REFERENCE_MAX_ATTEMPTS", "10"))

    # Default transfer fee policy (percent of amount)
    LOCAL_TRANSFER_FEE_PERCENT: Decimal = Decimal(
        os.getenv("LOCAL_TRANSFER_FEE_PERCENT", "1")
    )
    INTERNATIONAL_TRANSFER_FEE_PERCENT: Decimal = Decimal(
        os.getenv("INTERNATIONAL_TRANSFER_FEE_PERCENT", "2")
    )

    # Background expiry sweep
    SCHEDULER_ENABLED: bool = (
        os.getenv("SCHEDULER_ENABLED", "true").lower() == "true"
    )
    EXPIRY_SWEEP_INTERVAL_MINUTES: int = int(
        os.getenv("EXPIRY_SWEEP_INTERVAL_MINUTES", "15")
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Return cached settings instance.

    Using lru_cache means the Settings object is created once
    and reused for all subsequent calls. This avoids reading
    environment variables repeatedly.
    """
    return Settings()
