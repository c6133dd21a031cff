from typing import Optional
from fastapi import Depends, Header, Request

from storefront.services import CartService, OrderService, PaymentService
from storefront.shared.utils import ForbiddenException, UnauthorizedException, verify_token


async def get_current_user(request: Request, authorization: Optional[str] = Header(None)) -> dict:
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise UnauthorizedException("Unauthorized: No token provided")

    payload = verify_token(token, request.app.state.settings)
    # Picked up by the request logging middleware
    request.state.user_id = payload["sub"]
    return payload


def require_roles(*roles: str):
    async def checker(user: dict = Depends(get_current_user)) -> dict:
        if user.get("role") not in roles:
            raise ForbiddenException(f"Unauthorized: {' or '.join(roles)} access required")
        return user
    return checker


def get_cart_service(request: Request) -> CartService:
    return request.app.state.container.cart_service


def get_order_service(request: Request) -> OrderService:
    return request.app.state.container.order_service


def get_payment_service(request: Request) -> PaymentService:
    return request.app.state.container.payment_service
