# backend/mentorhub/core/config.py
import logging
import os
from typing import List

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    environment: str = Field(default="development", alias="ENVIRONMENT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    database_url: str = Field(
        default="sqlite+pysqlite:///./mentorhub.db",
        alias="DATABASE_URL",
        description="SQLAlchemy database URL",
    )
    database_pool_size: int = Field(default=5, description="Connection pool size (PostgreSQL)")
    database_max_overflow: int = Field(default=10, description="Pool overflow (PostgreSQL)")

    celery_broker_url: str = Field(
        default="redis://localhost:6379/0",
        alias="CELERY_BROKER_URL",
        description="Broker used for delayed jobs",
    )
    celery_result_backend: str | None = Field(default=None, alias="CELERY_RESULT_BACKEND")

    # Booking lifecycle
    no_show_wait_minutes: int = Field(
        default=15,
        alias="NO_SHOW_WAIT_MINUTES",
        description="Minutes after start before a no-show can be reported",
    )
    dev_mode_session_bypass: bool = Field(
        default=False,
        alias="DEV_MODE_SESSION_BYPASS",
        description="Skip the no-show wait window (never enable in production)",
    )
    pending_payment_expiry_minutes: int = Field(
        default=30, description="Minutes a booking may stay in PendingPayment"
    )
    min_booking_lead_hours: int = Field(default=2, description="Hard floor on booking notice")
    min_duration_minutes: int = 30
    max_duration_minutes: int = 180
    default_buffer_minutes: int = Field(
        default=15, description="Buffer used when no template defines one"
    )
    reschedule_limit_per_party: int = 2
    reschedule_min_lead_hours: int = 2
    reminder_offsets_minutes: List[int] = Field(default_factory=lambda: [1440, 60, 10])
    max_cancellation_reason_length: int = 500
    max_dispute_reason_length: int = 1000

    # Settlement
    mentor_commission_rate: float = Field(
        default=0.15,
        alias="MENTOR_COMMISSION_RATE",
        description="Platform share of each captured payment",
    )
    escrow_release_delay_hours: int = Field(
        default=24, description="Hours after completion before escrow is released"
    )
    minimum_payout_amount: int = Field(
        default=10000,
        alias="MINIMUM_PAYOUT_AMOUNT",
        description="Smallest payout request in minor currency units",
    )
    payout_currency: str = Field(default="TRY", alias="PAYOUT_CURRENCY")

    model_config = SettingsConfigDict(
        env_file=".env" if not os.getenv("CI") else None,
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("mentor_commission_rate")
    @classmethod
    def validate_commission_rate(cls, v: float) -> float:
        if not 0 <= v < 1:
            raise ValueError("MENTOR_COMMISSION_RATE must be in [0, 1)")
        return v

    @field_validator("dev_mode_session_bypass")
    @classmethod
    def warn_on_bypass(cls, v: bool) -> bool:
        if v:
            logger.warning("DEV_MODE_SESSION_BYPASS is enabled; no-show wait is skipped")
        return v

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


settings = Settings()
