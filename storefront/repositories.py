"""Persistence boundaries used by the order and payment workflow.

Each repository owns one MongoDB collection. The abstract classes keep the
services independent of Motor so they can be exercised against in-memory
implementations.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Iterable, Optional

from storefront.models import (
    AddressDB,
    CartDB,
    CartItemDB,
    OrderDB,
    OrderItemDB,
    OrderStatus,
    PaymentDB,
    PaymentStatus,
    ProductDB,
)


class ProductRepository(ABC):

    @abstractmethod
    async def get(self, product_id: str) -> Optional[ProductDB]: ...

    @abstractmethod
    async def reserve_stock(self, product_id: str, quantity: int) -> bool:
        """Decrement stock by *quantity* only if the product is active and has
        at least that much stock. Returns False when nothing was changed."""

    @abstractmethod
    async def release_stock(self, items: Iterable[OrderItemDB | CartItemDB]) -> None:
        """Increment stock for every item by its quantity."""


class AddressRepository(ABC):

    @abstractmethod
    async def get(self, address_id: str) -> Optional[AddressDB]: ...


class CartRepository(ABC):

    @abstractmethod
    async def get_by_user(self, user_id: str) -> Optional[CartDB]: ...

    @abstractmethod
    async def save_items(self, user_id: str, items: list[CartItemDB]) -> CartDB:
        """Replace the cart's items, creating the cart if needed."""

    @abstractmethod
    async def claim_items(self, user_id: str, expected: list[CartItemDB]) -> bool:
        """Empty the cart only if it still holds exactly *expected*."""


class OrderRepository(ABC):

    @abstractmethod
    async def insert(self, order: OrderDB) -> OrderDB: ...

    @abstractmethod
    async def get(self, order_id: str) -> Optional[OrderDB]: ...

    @abstractmethod
    async def list_by_user(self, user_id: str) -> list[OrderDB]: ...

    @abstractmethod
    async def list_by_seller(self, seller_id: Optional[str]) -> list[OrderDB]:
        """Orders of one seller, or every order when *seller_id* is None."""

    @abstractmethod
    async def list_pending_before(self, cutoff: datetime) -> list[OrderDB]: ...

    @abstractmethod
    async def transition_status(
        self, order_id: str, expected: OrderStatus, new_status: OrderStatus
    ) -> Optional[OrderDB]:
        """Set *new_status* only if the order is still in *expected*."""

    @abstractmethod
    async def set_payment(self, order_id: str, payment_id: str) -> None: ...

    @abstractmethod
    async def delete_if_pending(self, order_id: str) -> bool: ...


class PaymentRepository(ABC):

    @abstractmethod
    async def insert(self, payment: PaymentDB) -> PaymentDB: ...

    @abstractmethod
    async def get_by_order(self, order_id: str) -> Optional[PaymentDB]: ...

    @abstractmethod
    async def get_by_provider_id(self, provider_payment_id: str) -> Optional[PaymentDB]: ...

    @abstractmethod
    async def attach_provider_intent(self, payment_id: str, provider_payment_id: str) -> bool:
        """Record the provider intent id unless one is already attached."""

    @abstractmethod
    async def transition_status(
        self,
        payment_id: str,
        expected: Iterable[PaymentStatus],
        new_status: PaymentStatus,
        **fields,
    ) -> Optional[PaymentDB]:
        """Set *new_status* (and *fields*) only if the current status is one of
        *expected*."""

    @abstractmethod
    async def delete(self, payment_id: str) -> None: ...
