"""
Payment-related settings using pydantic-settings v2 with nested env keys.

Read once at process start; the composition root hands the values to the
gateway adapter explicitly, so nothing below is consulted per request.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Literal, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field, field_validator


class PaymentRetry(BaseModel):
    max: int = 2
    base_backoff: float = 0.2


class WebhookSettings(BaseModel):
    tolerance_seconds: int = 300
    # ack: log handler failures and return 2xx; retry: return 5xx so Stripe redelivers
    on_handler_error: Literal["ack", "retry"] = "ack"


class StripeSettings(BaseModel):
    secret_key: Optional[str] = None
    webhook_secret: Optional[str] = None
    api_version: Optional[str] = None


class PlatformFeeSettings(BaseModel):
    percentage: Decimal = Decimal("2.9")
    fixed: Decimal = Decimal("0.30")

    @field_validator("percentage", "fixed")
    @classmethod
    def _non_negative(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("platform fee components must be non-negative")
        return v


class PaymentSettings(BaseSettings):
    retry: PaymentRetry = Field(default_factory=PaymentRetry)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)
    stripe: StripeSettings = Field(default_factory=StripeSettings)
    platform_fee: PlatformFeeSettings = Field(default_factory=PlatformFeeSettings)

    allowed_currencies: list[str] = Field(default_factory=lambda: ["gbp", "usd", "eur"])
    default_currency: str = "gbp"

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="allow",
        env_nested_delimiter="__",
    )


payment_settings = PaymentSettings()
