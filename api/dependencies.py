"""
API依赖项 - 认证与服务装配
"""
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from typing import Callable, Optional
import jwt

from application.ports.payment_gateway import PaymentGateway
from application.services.payment_service import PaymentApplicationService
from application.services.webhook_service import StripeWebhookService
from core.config import settings
from core.exceptions import UnauthorizedException
from core.logging_config import get_logger
from core.settings import payment_settings
from domain.common.exceptions import BusinessException
from domain.common.unit_of_work import AbstractUnitOfWork
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork
from shared.codes import BusinessCode

logger = get_logger(__name__)

# HTTP Bearer for direct API calls
http_bearer = HTTPBearer(
    scheme_name="Bearer",
    description="JWT Bearer token authentication",
    auto_error=False,
)


async def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
) -> str:
    """校验 Bearer 令牌并返回调用方用户ID（sub）。令牌签发由认证服务负责。"""
    if not credentials or not credentials.credentials:
        raise UnauthorizedException("Authentication credentials were not provided")
    try:
        payload = jwt.decode(
            credentials.credentials,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM],
        )
    except jwt.ExpiredSignatureError:
        raise UnauthorizedException("Token expired")
    except jwt.InvalidTokenError as e:
        logger.warning("invalid_access_token", error=str(e))
        raise UnauthorizedException("Invalid authentication credentials")

    if payload.get("type", "access") != "access":
        raise UnauthorizedException("Invalid token type")
    user_id = payload.get("sub") or payload.get("id")
    if not user_id:
        raise UnauthorizedException("Invalid authentication credentials")
    return str(user_id)


def get_uow_factory() -> Callable[..., AbstractUnitOfWork]:
    return SQLAlchemyUnitOfWork


def get_payment_gateway(request: Request) -> PaymentGateway:
    """由 lifespan 构建并挂在 app.state 上的唯一网关实例"""
    gateway = getattr(request.app.state, "payment_gateway", None)
    if gateway is None:
        raise BusinessException(
            code=BusinessCode.INTERNAL_ERROR,
            message="Payment provider is not configured",
            error_type="GatewayError",
        )
    return gateway


def get_webhook_secret() -> Optional[str]:
    return payment_settings.stripe.webhook_secret


async def get_payment_service(
    uow_factory: Callable[..., AbstractUnitOfWork] = Depends(get_uow_factory),
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> PaymentApplicationService:
    return PaymentApplicationService(uow_factory=uow_factory, gateway=gateway)


async def get_webhook_service(
    uow_factory: Callable[..., AbstractUnitOfWork] = Depends(get_uow_factory),
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> StripeWebhookService:
    return StripeWebhookService(
        uow_factory=uow_factory,
        gateway=gateway,
        on_handler_error=payment_settings.webhook.on_handler_error,
    )
