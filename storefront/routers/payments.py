from typing import Optional
from fastapi import APIRouter, Depends, Header, Request

from storefront.dependencies import get_current_user, get_payment_service, require_roles
from storefront.models import PaymentDB, PaymentStatus, UserRole
from storefront.schemas import (
    PaymentConfigResponse, PaymentIntentCreate, PaymentIntentResponse,
    PaymentResponse, PaymentVerify, RefundRequest,
)
from storefront.services import PaymentService
from storefront.shared.security_config import limiter
from storefront.shared.utils import SuccessResponse

router = APIRouter(tags=["payments"])


def to_response(payment: PaymentDB) -> PaymentResponse:
    return PaymentResponse(**payment.model_dump())


@router.get("/payments/config", response_model=SuccessResponse[PaymentConfigResponse])
async def payment_config(service: PaymentService = Depends(get_payment_service)):
    return SuccessResponse(data=service.config())


@router.post("/payments/intent", response_model=SuccessResponse[PaymentIntentResponse])
@limiter.limit("10/minute")
async def create_payment_intent(
    request: Request,
    payload: PaymentIntentCreate,
    user: dict = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    intent = await service.create_intent(user["sub"], payload.order_id)
    return SuccessResponse(data=intent, message="Payment intent created successfully")


# Unauthenticated: trust comes from the signature, checked on the raw body
@router.post("/payments/webhook", response_model=SuccessResponse[dict])
async def payment_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None),
    service: PaymentService = Depends(get_payment_service),
):
    payload = await request.body()
    message = await service.handle_webhook(payload, stripe_signature)
    return SuccessResponse(message=message)


@router.post("/payments/verify", response_model=SuccessResponse[PaymentResponse])
@limiter.limit("10/minute")
async def verify_payment(
    request: Request,
    payload: PaymentVerify,
    user: dict = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    payment = await service.verify_payment(user["sub"], payload.order_id)
    if payment.status == PaymentStatus.SUCCESS:
        message = "Payment verified successfully. Your order is now dispatched!"
    else:
        message = f"Payment {payment.status.value}"
    return SuccessResponse(data=to_response(payment), message=message)


@router.post("/payments/refund", response_model=SuccessResponse[PaymentResponse])
@limiter.limit("10/minute")
async def refund_payment(
    request: Request,
    payload: RefundRequest,
    user: dict = Depends(require_roles(UserRole.ADMIN)),
    service: PaymentService = Depends(get_payment_service),
):
    payment = await service.refund(payload.payment_id)
    return SuccessResponse(data=to_response(payment), message="Payment refunded successfully")


@router.get("/payments/order/{order_id}", response_model=SuccessResponse[PaymentResponse])
async def get_payment_by_order(
    order_id: str,
    user: dict = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    payment = await service.get_by_order(user, order_id)
    return SuccessResponse(data=to_response(payment), message="Payment retrieved successfully")
