from fastapi import APIRouter, Depends, Request

from storefront.dependencies import get_cart_service, get_current_user
from storefront.schemas import CartItemAdd, CartItemUpdate, CartResponse
from storefront.services import CartService
from storefront.shared.security_config import limiter
from storefront.shared.utils import SuccessResponse

router = APIRouter(tags=["cart"])


@router.get("/cart/get", response_model=SuccessResponse[CartResponse])
@limiter.limit("60/minute")
async def get_cart(
    request: Request,
    user: dict = Depends(get_current_user),
    service: CartService = Depends(get_cart_service),
):
    cart = await service.get_cart(user["sub"])
    message = "Cart retrieved successfully" if cart.items else "Cart is empty"
    return SuccessResponse(data=cart, message=message)


@router.post("/cart/add/item", response_model=SuccessResponse[CartResponse])
async def add_item(
    payload: CartItemAdd,
    user: dict = Depends(get_current_user),
    service: CartService = Depends(get_cart_service),
):
    cart = await service.add_item(user["sub"], payload.product_id, payload.quantity)
    return SuccessResponse(data=cart, message="Item added to cart successfully")


@router.put("/cart/update/item", response_model=SuccessResponse[CartResponse])
async def update_item(
    payload: CartItemUpdate,
    user: dict = Depends(get_current_user),
    service: CartService = Depends(get_cart_service),
):
    cart = await service.update_item(user["sub"], payload.product_id, payload.quantity)
    return SuccessResponse(data=cart, message="Item quantity updated successfully")


@router.delete("/cart/remove/item/{product_id}", response_model=SuccessResponse[CartResponse])
async def remove_item(
    product_id: str,
    user: dict = Depends(get_current_user),
    service: CartService = Depends(get_cart_service),
):
    cart = await service.remove_item(user["sub"], product_id)
    return SuccessResponse(data=cart, message="Item removed from cart successfully")


@router.delete("/cart/clear", response_model=SuccessResponse[CartResponse])
async def clear_cart(
    user: dict = Depends(get_current_user),
    service: CartService = Depends(get_cart_service),
):
    cart = await service.clear(user["sub"])
    return SuccessResponse(data=cart, message="Cart cleared successfully")
