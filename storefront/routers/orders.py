from typing import List
from fastapi import APIRouter, Depends, Request, status

from storefront.dependencies import get_current_user, get_order_service, require_roles
from storefront.models import OrderDB, UserRole
from storefront.schemas import OrderCreate, OrderResponse, OrderStatusUpdate
from storefront.services import OrderService
from storefront.shared.security_config import limiter
from storefront.shared.utils import SuccessResponse

router = APIRouter(tags=["orders"])


def to_response(order: OrderDB) -> OrderResponse:
    return OrderResponse(**order.model_dump())


@router.post("/order/create", response_model=SuccessResponse[OrderResponse], status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
async def create_order(
    request: Request,
    payload: OrderCreate,
    user: dict = Depends(get_current_user),
    service: OrderService = Depends(get_order_service),
):
    order = await service.create_order(user["sub"], payload.shipping_address_id, payload.payment_method)
    return SuccessResponse(data=to_response(order), message="Order created successfully")


# Role checks live in the service: a delivered order answers Conflict to every caller
@router.put("/order/status/update/{order_id}", response_model=SuccessResponse[OrderResponse])
async def update_order_status(
    order_id: str,
    payload: OrderStatusUpdate,
    user: dict = Depends(get_current_user),
    service: OrderService = Depends(get_order_service),
):
    order = await service.update_status(user, order_id, payload.order_status)
    return SuccessResponse(data=to_response(order), message="Order status updated successfully")


@router.delete("/orders/cancel/{order_id}", response_model=SuccessResponse[dict])
async def cancel_order(
    order_id: str,
    user: dict = Depends(get_current_user),
    service: OrderService = Depends(get_order_service),
):
    await service.cancel_order(user, order_id)
    return SuccessResponse(message="Order canceled successfully")


@router.get("/order/user", response_model=SuccessResponse[List[OrderResponse]])
async def list_user_orders(
    user: dict = Depends(get_current_user),
    service: OrderService = Depends(get_order_service),
):
    orders = await service.list_user_orders(user["sub"])
    return SuccessResponse(data=[to_response(o) for o in orders], message="Orders retrieved successfully")


@router.get("/orders/seller", response_model=SuccessResponse[List[OrderResponse]])
async def list_seller_orders(
    user: dict = Depends(require_roles(UserRole.SELLER, UserRole.ADMIN)),
    service: OrderService = Depends(get_order_service),
):
    orders = await service.list_seller_orders(user)
    return SuccessResponse(data=[to_response(o) for o in orders], message="Seller orders retrieved successfully")


@router.get("/order/get/{order_id}", response_model=SuccessResponse[OrderResponse])
async def get_order(
    order_id: str,
    user: dict = Depends(get_current_user),
    service: OrderService = Depends(get_order_service),
):
    order = await service.get_order(user, order_id)
    return SuccessResponse(data=to_response(order), message="Order retrieved successfully")
