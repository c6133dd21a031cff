"""Order placement, status lifecycle and cancellation.

Order creation runs as a sequence of single-document atomic steps with
compensation instead of a multi-document transaction:

1. validate address, cart and catalog (no writes yet)
2. reserve stock with conditional decrements
3. claim the cart (empty it only if it still holds the validated items)
4. insert the payment (online orders) and the order

A failure after step 2 undoes every earlier step before the error surfaces.
"""

from decimal import Decimal
from typing import List, Optional
import logging

from storefront.models import (
    OrderDB, OrderItemDB, OrderStatus, PaymentDB, PaymentMethod, ProductDB,
    new_id, next_order_status, to_money,
)
from storefront.repositories import (
    AddressRepository, CartRepository, OrderRepository, PaymentRepository,
    ProductRepository,
)
from storefront.services.common import is_admin, require_valid_id
from storefront.services.payments import check_payment_amount
from storefront.shared.utils import (
    ConflictException, ForbiddenException, InternalServerException,
    NotFoundException, ValidationException,
)

logger = logging.getLogger(__name__)


class OrderService:

    def __init__(
        self,
        orders: OrderRepository,
        products: ProductRepository,
        carts: CartRepository,
        addresses: AddressRepository,
        payments: PaymentRepository,
    ):
        self.orders = orders
        self.products = products
        self.carts = carts
        self.addresses = addresses
        self.payments = payments

    # --- Creation ---

    async def create_order(self, user_id: str, address_id: str, payment_method: PaymentMethod) -> OrderDB:
        require_valid_id(address_id, "shipping address")
        address = await self.addresses.get(address_id)
        if address is None:
            raise NotFoundException("Shipping address not found")
        if address.user_id != user_id:
            raise ForbiddenException("Not authorized to use this shipping address")

        cart = await self.carts.get_by_user(user_id)
        if cart is None or not cart.items:
            raise ConflictException("Cart is empty")

        products: List[ProductDB] = []
        for item in cart.items:
            product = await self.products.get(item.product_id)
            if product is None:
                raise ConflictException(f"Product {item.product_id} is no longer available")
            if not product.is_active:
                raise ConflictException(f"Product {product.name} is inactive")
            if product.stock < item.quantity:
                raise ConflictException(f"Insufficient stock for {product.name}")
            products.append(product)

        items = [
            OrderItemDB(product_id=p.id, quantity=item.quantity, unit_price=p.discounted_price())
            for item, p in zip(cart.items, products)
        ]
        total = to_money(sum((i.unit_price * i.quantity for i in items), Decimal("0")))

        seller_id = products[0].seller_id
        if any(p.seller_id != seller_id for p in products):
            logger.warning("Cart spans several sellers; order assigned to the first", extra={"user_id": user_id})

        order = OrderDB(
            id=new_id(),
            user_id=user_id,
            seller_id=seller_id,
            items=items,
            total_amount=total,
            shipping_address=address.snapshot(),
            payment_method=payment_method,
        )

        await self._reserve_stock(items, products)

        if not await self.carts.claim_items(user_id, cart.items):
            await self.products.release_stock(items)
            raise ConflictException("Cart changed while the order was being placed")

        payment: Optional[PaymentDB] = None
        if payment_method == PaymentMethod.ONLINE:
            payment = PaymentDB(user_id=user_id, order_id=order.id, amount=total, payment_method=payment_method)
            check_payment_amount(payment.payment_method, payment.amount, order.total_amount)

        try:
            if payment is not None:
                payment = await self.payments.insert(payment)
                order.payment_id = payment.id
            order = await self.orders.insert(order)
        except Exception as exc:
            logger.error("Order persistence failed; rolling back", exc_info=True, extra={"order_id": order.id})
            await self._compensate(user_id, cart.items, items, payment)
            raise InternalServerException("Failed to create order") from exc

        logger.info(
            f"Order created for {total} via {payment_method.value}",
            extra={"order_id": order.id, "user_id": user_id, "payment_id": order.payment_id},
        )
        return order

    async def _reserve_stock(self, items: List[OrderItemDB], products: List[ProductDB]):
        reserved = []
        for item, product in zip(items, products):
            if not await self.products.reserve_stock(item.product_id, item.quantity):
                if reserved:
                    await self.products.release_stock(reserved)
                raise ConflictException(f"Insufficient stock for {product.name}")
            reserved.append(item)

    async def _compensate(self, user_id, cart_items, items, payment: Optional[PaymentDB]):
        try:
            if payment is not None and payment.id:
                await self.payments.delete(payment.id)
            await self.carts.save_items(user_id, cart_items)
            await self.products.release_stock(items)
        except Exception:
            # Left for manual reconciliation
            logger.critical("Compensation failed after order creation error", exc_info=True, extra={"user_id": user_id})

    # --- Status lifecycle ---

    async def update_status(self, user: dict, order_id: str, new_status) -> OrderDB:
        order = await self._get_existing(order_id)

        if order.order_status == OrderStatus.DELIVERED:
            raise ConflictException("Cannot update status of a delivered order")

        if not is_admin(user) and order.seller_id != user["sub"]:
            raise ForbiddenException("Not authorized to update this order")

        try:
            new_status = OrderStatus(new_status)
        except ValueError:
            raise ValidationException("Invalid order status")

        if new_status == order.order_status:
            raise ConflictException(f"Order is already {new_status.value}")

        allowed = next_order_status(order.order_status)
        if new_status != allowed:
            raise ConflictException(
                f"Cannot move order from {order.order_status.value} to {new_status.value}; "
                f"next allowed status is {allowed.value}"
            )

        updated = await self.orders.transition_status(order.id, order.order_status, new_status)
        if updated is None:
            raise ConflictException("Order was modified concurrently, please retry")

        logger.info(f"Order moved to {new_status.value}", extra={"order_id": order.id, "user_id": user["sub"]})
        return updated

    # --- Cancellation ---

    async def cancel_order(self, user: dict, order_id: str) -> None:
        order = await self._get_existing(order_id)
        caller = user["sub"]

        if not is_admin(user) and caller not in (order.user_id, order.seller_id):
            raise ForbiddenException("Not authorized to cancel this order")

        if order.order_status != OrderStatus.PENDING or not await self._remove_and_restock(order):
            raise ConflictException("Only pending orders can be canceled")

        logger.info("Order canceled", extra={"order_id": order.id, "user_id": caller})

    async def expire_order(self, order: OrderDB) -> bool:
        return await self._remove_and_restock(order)

    async def _remove_and_restock(self, order: OrderDB) -> bool:
        # Deleting first means only one caller ever restocks a given order
        if not await self.orders.delete_if_pending(order.id):
            return False
        await self.products.release_stock(order.items)
        return True

    # --- Read models ---

    async def list_user_orders(self, user_id: str) -> List[OrderDB]:
        return await self.orders.list_by_user(user_id)

    async def list_seller_orders(self, user: dict) -> List[OrderDB]:
        return await self.orders.list_by_seller(None if is_admin(user) else user["sub"])

    async def get_order(self, user: dict, order_id: str) -> OrderDB:
        order = await self._get_existing(order_id)
        if not is_admin(user) and user["sub"] not in (order.user_id, order.seller_id):
            raise ForbiddenException("Not authorized to view this order")
        return order

    async def _get_existing(self, order_id: str) -> OrderDB:
        require_valid_id(order_id, "order")
        order = await self.orders.get(order_id)
        if order is None:
            raise NotFoundException("Order not found")
        return order
