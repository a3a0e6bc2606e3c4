from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_FILE = Path(__file__).resolve().parents[1] / ".env"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=str(ENV_FILE), case_sensitive=False)

    APP_NAME: str = "Task Ledger API"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: str = "*"
    # Required by X-Admin-Token on task creation, bonus credits and payout callbacks
    ADMIN_TOKEN: Optional[str] = None

    # Referral bonus = round_half_up(base package price * REFERRAL_RATE)
    REFERRAL_RATE: Decimal = Decimal("0.10")
    REFERRAL_BASE_PACKAGE: str = "starter"
    STRICT_REFERRAL_CODES: bool = False

    MIN_WITHDRAWAL_AMOUNT: int = 100
    LOCK_TIMEOUT_SECONDS: float = 5.0
    SEED_DEMO_DATA: bool = True

    @property
    def cors_origins(self) -> List[str]:
        return [value.strip().rstrip("/") for value in self.CORS_ORIGINS.split(",") if value.strip()]


@lru_cache
def get_settings() -> Settings:
    return Settings()
