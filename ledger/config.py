"""Economy and runtime configuration loaded from ``AURA_*`` environment variables."""

import logging
from enum import Enum
from functools import lru_cache
from logging.config import dictConfig

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class DustPolicy(str, Enum):
    BURN = "burn"
    LARGEST_WINNER = "largest_winner"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="AURA_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Wallet
    initial_balance: int = Field(default=1000, ge=0, description="Aura granted to a new wallet")
    daily_bonus_amount: int = Field(default=50, ge=0)
    daily_bonus_cooldown_hours: int = Field(default=24, ge=1)

    # Wagers
    bet_creation_cost: int = Field(default=10, ge=0)
    min_stake: int = Field(default=10, ge=1)
    min_deadline_hours: int = Field(default=1, ge=0)
    proof_grace_period_hours: int = Field(default=1, ge=0)
    max_description_length: int = Field(default=500, ge=1)
    max_caption_length: int = Field(default=500, ge=1)
    failure_penalty_percent: int = Field(default=10, ge=0, le=100)
    dust_policy: DustPolicy = Field(
        default=DustPolicy.BURN,
        description="What happens to the floor-rounding remainder of a pari-mutuel pot",
    )

    # Jobs
    auto_expire_interval_minutes: int = Field(default=5, ge=1)

    # Queries
    leaderboard_default_limit: int = Field(default=20, ge=1)
    leaderboard_max_limit: int = Field(default=100, ge=1)
    transaction_history_limit: int = Field(default=20, ge=1)
    transaction_history_max_limit: int = Field(default=100, ge=1)

    log_level: str = Field(default="INFO")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"Unknown log level: {v}")
        return level


@lru_cache()
def get_settings() -> Settings:
    """Get singleton Settings instance."""
    return Settings()


def configure_logging(settings: Settings) -> None:
    dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "format": "%(asctime)s %(levelname)s [%(name)s] %(message)s",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "default",
            },
        },
        "root": {
            "level": settings.log_level,
            "handlers": ["console"],
        },
    })
    logger.debug("Logging configured at %s", settings.log_level)
