"""
Factory for the payment gateway client.
"""
from __future__ import annotations

from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from core.settings import PaymentSettings, payment_settings
from application.ports.payment_gateway import PaymentGateway
from infrastructure.repositories.venue_repository import SQLAlchemyVenueAccountResolver


def get_payment_gateway(
    session_factory: Callable[[], AsyncSession],
    cfg: Optional[PaymentSettings] = None,
) -> PaymentGateway:
    """Build the Stripe client from settings; called once by the composition root."""
    from .stripe_client import StripeClient

    cfg = cfg or payment_settings
    return StripeClient(
        cfg.stripe.secret_key or "",
        fee_percentage=cfg.platform_fee.percentage,
        fee_fixed=cfg.platform_fee.fixed,
        venue_accounts=SQLAlchemyVenueAccountResolver(session_factory),
        retry={"max": cfg.retry.max, "base": cfg.retry.base_backoff},
        webhook_tolerance=cfg.webhook.tolerance_seconds,
        api_version=cfg.stripe.api_version,
    )
