"""Application configuration."""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Loads and validates application settings from the environment."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    DEFAULT_INVOICE_PREFIX: str = "INV"
    CREDIT_NOTE_PREFIX: str = "CN"
    CURRENCY_SYMBOL: str = "₹"

    INVOICE_RUN_CONCURRENCY: int = Field(default=4, ge=1)
    INVOICE_RUN_DAY: int = Field(default=25, ge=1, le=28)
    INVOICE_RUN_HOUR: int = Field(default=2, ge=0, le=23)
    AUTOMATIC_RUN_TIMING: Literal["advance", "arrears"] = "advance"
    OVERDUE_SCAN_HOUR: int = Field(default=6, ge=0, le=23)

    LOG_LEVEL: str = "INFO"


settings = Settings()
