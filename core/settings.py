import os
from typing import Literal

from dotenv import load_dotenv
from pydantic import ConfigDict
from pydantic_settings import BaseSettings

# Load .env file automatically
load_dotenv()


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str
    DATABASE_POOL_SIZE: int = 10
    DATABASE_MAX_OVERFLOW: int = 20
    DATABASE_POOL_TIMEOUT: int = 30
    DATABASE_POOL_RECYCLE: int = 3600

    # Pricing provider
    PRICING_API_URL: str = "https://api.coingecko.com/api/v3/simple/price"
    PRICING_TIMEOUT_SECONDS: float = 10.0
    RATE_STALENESS_SECONDS: int = 300

    # Payout rail
    PAYOUT_PROVIDER: Literal["simulated", "stripe"] = "simulated"
    PAYOUT_SUCCESS_RATE: float = 0.95
    PAYOUT_SIMULATED_DELAY_SECONDS: float = 2.0
    PAYOUT_TIMEOUT_SECONDS: float = 30.0
    PAYOUT_ESTIMATED_ARRIVAL_DAYS: int = 2
    STRIPE_API_KEY: str = ""

    # App settings
    APP_NAME: str = "VirdisPay Fiat Conversion"
    DEBUG: bool = False
    ENVIRONMENT: Literal["development", "production"] = "development"

    # Observability (Optional)
    OTEL_EXPORTER_OTLP_ENDPOINT: str = "http://localhost:4317"
    OTEL_SERVICE_NAME: str = "virdis-fiat-conversion"
    OTEL_RESOURCE_ATTRIBUTES: str = (
        "service.name=virdis-fiat-conversion,service.version=0.1.0"
    )

    # Metrics (Optional)
    METRICS_ENABLED: bool = True

    model_config = ConfigDict(env_file=".env", case_sensitive=True)

    def __init__(self, **kwargs):
        # Check for DATABASE_URL before calling parent constructor
        if not os.getenv("DATABASE_URL") and "DATABASE_URL" not in kwargs:
            raise RuntimeError(
                "DATABASE_URL not set; create .env or export the variable"
            )
        super().__init__(**kwargs)
