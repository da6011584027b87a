from typing import List

import structlog
from dotenv import load_dotenv
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()

logger = structlog.get_logger(__name__)

DEFAULT_RETENTION_MONTHS = 24


class Settings(BaseSettings):
    PROJECT_NAME: str = "PagePulse"
    ENVIRONMENT: str = "development"  # development, production, test

    # Persistence
    DATABASE_URL: str = "sqlite:///./pagepulse.db"
    DB_TRANSACTION_TIMEOUT_SECONDS: int = 10

    # Dedup / session store
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_SOCKET_TIMEOUT_SECONDS: float = 0.5

    # Keyed hash secret for visitor fingerprints (rotate to invalidate all of today's keys)
    VISITOR_HASH_SECRET: str = ""

    # MaxMind GeoLite2-Country database
    GEOIP_DATABASE_PATH: str = "data/GeoLite2-Country.mmdb"

    # Comma-separated list of origins allowed to post tracking data
    ALLOWED_ORIGINS: str = "https://example.com"

    # Retention
    DATA_RETENTION_MONTHS: int = DEFAULT_RETENTION_MONTHS
    RUN_SCHEDULER: bool = False
    RETENTION_SWEEP_HOUR: int = 3  # UTC

    # Error tracking
    SENTRY_DSN: str = ""

    model_config = SettingsConfigDict(case_sensitive=True, env_file=".env", extra="ignore")

    @field_validator("DATA_RETENTION_MONTHS", mode="before")
    @classmethod
    def _fallback_retention_months(cls, value):
        if value is None or value == "":
            return DEFAULT_RETENTION_MONTHS
        try:
            months = int(value)
        except (TypeError, ValueError):
            months = 0
        if months < 1:
            logger.warning(
                "Invalid DATA_RETENTION_MONTHS, using default",
                value=str(value),
                default=DEFAULT_RETENTION_MONTHS,
            )
            return DEFAULT_RETENTION_MONTHS
        return months

    @property
    def allowed_origins(self) -> List[str]:
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"


settings = Settings()
