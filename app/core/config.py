"""Application configuration settings."""

import os
from decimal import Decimal

from pydantic_settings import BaseSettings, SettingsConfigDict


def _get_default_database_url() -> str:
    """Get the default database URL, using the mounted volume path if available."""
    if os.path.isdir("/data"):
        return "sqlite:////data/rental.db"
    return "sqlite:///./rental.db"


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
    )

    PROJECT_NAME: str = "Rental Billing"
    VERSION: str = "0.1.0"
    DEBUG: bool = True
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Database - defaults to the volume path if /data exists
    DATABASE_URL: str = _get_default_database_url()

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""

    # Fallback unit prices when neither the reading nor the meter carries one
    DEFAULT_ELECTRICITY_PRICE: Decimal = Decimal("0.6")
    DEFAULT_WATER_PRICE: Decimal = Decimal("3.5")
    DEFAULT_GAS_PRICE: Decimal = Decimal("2.5")

    # Billing behaviour
    BILL_DUE_DAYS: int = 10
    DEFAULT_AGGREGATION_MODE: str = "AGGREGATED"
    ALLOW_OVERPAYMENT: bool = False
    AUTO_COMPLETE_ON_SETTLE: bool = True
    AMOUNT_EPSILON: Decimal = Decimal("0.01")


settings = Settings()
