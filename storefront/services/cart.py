"""Cart maintenance.

Totals are never stored: every read prices the cart against the live catalog
and drops lines that can no longer be ordered.
"""

from decimal import Decimal
import logging

from storefront.models import CartItemDB, ProductDB, to_money
from storefront.repositories import CartRepository, ProductRepository
from storefront.schemas import CartItemResponse, CartResponse
from storefront.services.common import require_valid_id
from storefront.shared.utils import ConflictException, NotFoundException, ValidationException

logger = logging.getLogger(__name__)


def _check_quantity(quantity: int):
    if quantity < 1:
        raise ValidationException("Quantity must be at least 1")


class CartService:

    def __init__(self, carts: CartRepository, products: ProductRepository):
        self.carts = carts
        self.products = products

    async def get_cart(self, user_id: str) -> CartResponse:
        cart = await self.carts.get_by_user(user_id)
        if cart is None:
            return CartResponse(user_id=user_id, items=[], total_price=Decimal("0.00"))

        lines = []
        for item in cart.items:
            product = await self.products.get(item.product_id)
            if product is None or not product.is_active or product.stock < item.quantity:
                continue
            lines.append((item, product))

        if len(lines) != len(cart.items):
            logger.info(
                f"Pruned {len(cart.items) - len(lines)} unavailable item(s) from cart",
                extra={"user_id": user_id},
            )
            await self.carts.save_items(user_id, [item for item, _ in lines])

        return self._render(user_id, lines)

    async def add_item(self, user_id: str, product_id: str, quantity: int) -> CartResponse:
        require_valid_id(product_id, "product")
        _check_quantity(quantity)
        product = await self._active_product(product_id)

        cart = await self.carts.get_by_user(user_id)
        items = list(cart.items) if cart else []

        # One seller per cart, so the order's seller is unambiguous
        for item in items:
            if item.product_id == product_id:
                continue
            other = await self.products.get(item.product_id)
            if other is not None and other.seller_id != product.seller_id:
                raise ConflictException("Cart can only contain products from a single seller")
            break

        existing = next((item for item in items if item.product_id == product_id), None)
        new_quantity = quantity + (existing.quantity if existing else 0)
        if product.stock < new_quantity:
            raise ConflictException(f"Insufficient stock for {product.name}")

        if existing:
            existing.quantity = new_quantity
        else:
            items.append(CartItemDB(product_id=product_id, quantity=quantity))

        await self.carts.save_items(user_id, items)
        return await self.get_cart(user_id)

    async def update_item(self, user_id: str, product_id: str, quantity: int) -> CartResponse:
        require_valid_id(product_id, "product")
        _check_quantity(quantity)
        cart = await self.carts.get_by_user(user_id)
        if cart is None:
            raise NotFoundException("Cart not found")

        item = next((i for i in cart.items if i.product_id == product_id), None)
        if item is None:
            raise NotFoundException("Item not found in cart")

        product = await self._active_product(product_id)
        if product.stock < quantity:
            raise ConflictException(f"Insufficient stock for {product.name}")

        item.quantity = quantity
        await self.carts.save_items(user_id, cart.items)
        return await self.get_cart(user_id)

    async def remove_item(self, user_id: str, product_id: str) -> CartResponse:
        require_valid_id(product_id, "product")
        cart = await self.carts.get_by_user(user_id)
        if cart is None:
            raise NotFoundException("Cart not found")

        remaining = [i for i in cart.items if i.product_id != product_id]
        if len(remaining) == len(cart.items):
            raise NotFoundException("Item not found in cart")

        await self.carts.save_items(user_id, remaining)
        return await self.get_cart(user_id)

    async def clear(self, user_id: str) -> CartResponse:
        if await self.carts.get_by_user(user_id) is not None:
            await self.carts.save_items(user_id, [])
        return CartResponse(user_id=user_id, items=[], total_price=Decimal("0.00"))

    async def _active_product(self, product_id: str) -> ProductDB:
        product = await self.products.get(product_id)
        if product is None or not product.is_active:
            raise NotFoundException("Product not found or inactive")
        return product

    @staticmethod
    def _render(user_id: str, lines) -> CartResponse:
        items = []
        total = Decimal("0.00")
        for item, product in lines:
            unit_price = product.discounted_price()
            line_total = to_money(unit_price * item.quantity)
            total += line_total
            items.append(CartItemResponse(
                product_id=item.product_id,
                name=product.name,
                quantity=item.quantity,
                unit_price=unit_price,
                line_total=line_total,
            ))
        return CartResponse(user_id=user_id, items=items, total_price=to_money(total))
