"""
Payments API routes.

Thin layer over the application services: authentication, request models,
response envelopes. The webhook endpoint is provider-signed and returns a
plain-text 400 on verification failure.
"""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import PlainTextResponse

from api.dependencies import (
    get_current_user_id,
    get_payment_service,
    get_webhook_secret,
    get_webhook_service,
)
from application.dtos.payments import (
    ConfirmPaymentRequest,
    ConfirmPaymentResponse,
    CreateIntentRequest,
    CreateIntentResponse,
    PartialRefundRequest,
    PartialRefundResponse,
    PaymentListItem,
    PaymentStatusResponse,
    RefundHistoryItem,
    RefundPaymentRequest,
    RefundPaymentResponse,
)
from application.services.payment_service import PaymentApplicationService
from application.services.webhook_service import StripeWebhookService
from core.config import settings
from core.logging_config import get_logger
from core.response import PaginatedData, Response as ApiResponse, paginated_response, success_response
from domain.common.exceptions import BusinessException
from domain.payment.entity import PaymentStatus


router = APIRouter(prefix="/payments", tags=["Payments"])
logger = get_logger(__name__)


@router.post("/create-intent", summary="创建支付意图", response_model=ApiResponse[CreateIntentResponse])
async def create_intent(
    body: CreateIntentRequest,
    user_id: str = Depends(get_current_user_id),
    service: PaymentApplicationService = Depends(get_payment_service),
):
    """
    为待支付的预订创建 Stripe PaymentIntent

    - **bookingId**: 预订ID（UUID，须属于当前用户且为 pending）
    - **amount**: 金额（主货币单位，> 0）
    - **currency**: gbp / usd / eur，默认 gbp
    - **venueId**: 可选，Connect 路由使用的场馆；缺省时使用预订所属场馆
    """
    result = await service.create_intent(user_id, body)
    return success_response(data=result, message="Payment intent created successfully")


@router.post("/confirm", summary="确认支付", response_model=ApiResponse[ConfirmPaymentResponse])
async def confirm_payment(
    body: ConfirmPaymentRequest,
    user_id: str = Depends(get_current_user_id),
    service: PaymentApplicationService = Depends(get_payment_service),
):
    result = await service.confirm(user_id, body)
    return success_response(data=result, message="Payment confirmed successfully")


@router.get("/{payment_id}/status", summary="查询支付状态", response_model=ApiResponse[PaymentStatusResponse])
async def payment_status(
    payment_id: str,
    user_id: str = Depends(get_current_user_id),
    service: PaymentApplicationService = Depends(get_payment_service),
):
    """本地状态 + Stripe 实时状态（获取失败时 stripeStatus 为 null）"""
    result = await service.get_status(user_id, payment_id)
    return success_response(data=result)


@router.get("", summary="支付列表", response_model=ApiResponse[PaginatedData[PaymentListItem]])
async def list_payments(
    page: int = Query(1, ge=1, description="页码"),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE, description="每页数量"),
    status: Optional[str] = Query(None, pattern="^(all|pending|completed|failed|refunded)$"),
    user_id: str = Depends(get_current_user_id),
    service: PaymentApplicationService = Depends(get_payment_service),
):
    status_filter = PaymentStatus(status) if status and status != "all" else None
    items, total = await service.list_payments(user_id, page=page, limit=limit, status=status_filter)
    return paginated_response(items=items, total=total, page=page, limit=limit)


@router.post("/refund", summary="全额/部分退款", response_model=ApiResponse[PartialRefundResponse])
async def refund(
    body: PartialRefundRequest,
    user_id: str = Depends(get_current_user_id),
    service: PaymentApplicationService = Depends(get_payment_service),
):
    """
    - **paymentId**: 支付ID
    - **amount**: 可选，退款金额；缺省为全额。仅全额退款会取消预订
    - **reason**: 可选，退款原因
    """
    result = await service.refund_partial(user_id, body)
    return success_response(data=result, message="Refund processed successfully")


@router.get("/{payment_id}/refunds", summary="退款记录", response_model=ApiResponse[list[RefundHistoryItem]])
async def refund_history(
    payment_id: str,
    user_id: str = Depends(get_current_user_id),
    service: PaymentApplicationService = Depends(get_payment_service),
):
    result = await service.list_refunds(user_id, payment_id)
    return success_response(data=result)


@router.post("/{payment_id}/refund", summary="退款", response_model=ApiResponse[RefundPaymentResponse])
async def refund_payment(
    payment_id: str,
    body: Optional[RefundPaymentRequest] = None,
    user_id: str = Depends(get_current_user_id),
    service: PaymentApplicationService = Depends(get_payment_service),
):
    """仅 completed 且完成时间在 7 天内（含）的支付可退款"""
    result = await service.refund(user_id, payment_id, body or RefundPaymentRequest())
    return success_response(data=result, message="Payment refunded successfully")


@router.post("/webhook", summary="Stripe Webhook", include_in_schema=False)
async def stripe_webhook(
    request: Request,
    service: StripeWebhookService = Depends(get_webhook_service),
    secret: Optional[str] = Depends(get_webhook_secret),
):
    payload = await request.body()
    try:
        event = service.verify(payload, request.headers.get("stripe-signature"), secret)
    except BusinessException as exc:
        logger.warning("webhook_rejected", code=exc.code, error=exc.message)
        return PlainTextResponse(f"Webhook Error: {exc.message}", status_code=400)

    outcome = await service.process(event)
    if service.should_retry(outcome):
        return PlainTextResponse("Webhook Error: event handling failed", status_code=500)
    return {"received": True}
