from decimal import Decimal
from functools import lru_cache
from typing import List, Literal

from pydantic import AnyHttpUrl, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables.

    The business-rule values here only seed the invoice settings record when
    the store is first built; afterwards the record is changed through the
    settings endpoint.
    """

    app_name: str = Field(default="Salon Invoicing Service")
    cors_origins: List[AnyHttpUrl] = Field(
        default_factory=lambda: [
            "http://localhost:5500",
            "http://127.0.0.1:5500",
        ]
    )
    log_level: str = Field(
        default="INFO"
    )
    seed_demo_data: bool = Field(
        default=True
    )
    currency: str = Field(
        default="ZAR"
    )
    tax_enabled: bool = Field(
        default=True
    )
    tax_rate: Decimal = Field(
        default=Decimal("0.15"), ge=0, le=1
    )
    invoice_number_prefix: str = Field(
        default="INV"
    )
    overpayment_policy: Literal["credit", "reject"] = Field(
        default="credit"
    )
    stock_shortfall_policy: Literal["skip", "block"] = Field(
        default="skip"
    )

    model_config = SettingsConfigDict(env_prefix="SALON_", case_sensitive=False)

    @field_validator("cors_origins", mode="before")
    def _split_origins(cls, value):
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached application settings."""

    return Settings()
