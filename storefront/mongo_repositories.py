from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Iterable, Optional
from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument, UpdateOne

from storefront.models import (
    AddressDB, CartDB, CartItemDB, OrderDB, OrderStatus,
    PaymentDB, PaymentStatus, ProductDB,
)
from storefront.repositories import (
    AddressRepository, CartRepository, OrderRepository, PaymentRepository,
    ProductRepository,
)


# --- Helpers ---
def to_oid(id: str) -> ObjectId:
    return ObjectId(id)

def encode(value):
    """Make model output storable: Decimal -> float, Enum -> value."""
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: encode(v) for k, v in value.items()}
    if isinstance(value, list):
        return [encode(v) for v in value]
    return value

def to_document(model) -> dict:
    doc = encode(model.model_dump(by_alias=True, exclude={"id"}))
    if model.id:
        doc["_id"] = to_oid(model.id)
    return doc

def from_document(model_cls, doc: Optional[dict]):
    if not doc:
        return None
    doc["_id"] = str(doc["_id"])
    return model_cls.model_validate(doc)

def items_document(items: Iterable[CartItemDB]) -> list:
    return [{"product_id": i.product_id, "quantity": i.quantity} for i in items]


async def create_indexes(db: AsyncIOMotorDatabase):
    await db.carts.create_index("user_id", unique=True)
    await db.addresses.create_index("user_id")
    await db.orders.create_index("user_id")
    await db.orders.create_index("seller_id")
    await db.orders.create_index([("order_status", ASCENDING), ("created_at", ASCENDING)])
    await db.payments.create_index("order_id", unique=True)
    # Payments created with the order have no provider intent yet
    await db.payments.create_index(
        "provider_payment_id",
        unique=True,
        partialFilterExpression={"provider_payment_id": {"$type": "string"}},
    )


class MongoProductRepository(ProductRepository):
    def __init__(self, db: AsyncIOMotorDatabase):
        self.collection = db.products

    async def get(self, product_id: str) -> Optional[ProductDB]:
        return from_document(ProductDB, await self.collection.find_one({"_id": to_oid(product_id)}))

    async def reserve_stock(self, product_id: str, quantity: int) -> bool:
        result = await self.collection.update_one(
            {"_id": to_oid(product_id), "is_active": True, "stock": {"$gte": quantity}},
            {"$inc": {"stock": -quantity}, "$set": {"updated_at": datetime.utcnow()}},
        )
        return result.modified_count == 1

    async def release_stock(self, items) -> None:
        updates = [
            UpdateOne({"_id": to_oid(item.product_id)}, {"$inc": {"stock": item.quantity}})
            for item in items
        ]
        if updates:
            await self.collection.bulk_write(updates, ordered=False)


class MongoAddressRepository(AddressRepository):
    def __init__(self, db: AsyncIOMotorDatabase):
        self.collection = db.addresses

    async def get(self, address_id: str) -> Optional[AddressDB]:
        return from_document(AddressDB, await self.collection.find_one({"_id": to_oid(address_id)}))


class MongoCartRepository(CartRepository):
    def __init__(self, db: AsyncIOMotorDatabase):
        self.collection = db.carts

    async def get_by_user(self, user_id: str) -> Optional[CartDB]:
        return from_document(CartDB, await self.collection.find_one({"user_id": user_id}))

    async def save_items(self, user_id: str, items: list) -> CartDB:
        doc = await self.collection.find_one_and_update(
            {"user_id": user_id},
            {"$set": {"items": items_document(items), "updated_at": datetime.utcnow()}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return from_document(CartDB, doc)

    async def claim_items(self, user_id: str, expected: list) -> bool:
        # Exact array match; items are always written with the same key order
        result = await self.collection.update_one(
            {"user_id": user_id, "items": items_document(expected)},
            {"$set": {"items": [], "updated_at": datetime.utcnow()}},
        )
        return result.modified_count == 1


class MongoOrderRepository(OrderRepository):
    def __init__(self, db: AsyncIOMotorDatabase):
        self.collection = db.orders

    async def insert(self, order: OrderDB) -> OrderDB:
        result = await self.collection.insert_one(to_document(order))
        order.id = str(result.inserted_id)
        return order

    async def get(self, order_id: str) -> Optional[OrderDB]:
        return from_document(OrderDB, await self.collection.find_one({"_id": to_oid(order_id)}))

    async def _find(self, query: dict, sort=("created_at", DESCENDING)) -> list:
        cursor = self.collection.find(query).sort(*sort)
        return [from_document(OrderDB, doc) async for doc in cursor]

    async def list_by_user(self, user_id: str) -> list:
        return await self._find({"user_id": user_id})

    async def list_by_seller(self, seller_id: Optional[str]) -> list:
        return await self._find({} if seller_id is None else {"seller_id": seller_id})

    async def list_pending_before(self, cutoff: datetime) -> list:
        return await self._find(
            {"order_status": OrderStatus.PENDING.value, "created_at": {"$lt": cutoff}},
            sort=("created_at", ASCENDING),
        )

    async def transition_status(self, order_id: str, expected: OrderStatus, new_status: OrderStatus) -> Optional[OrderDB]:
        doc = await self.collection.find_one_and_update(
            {"_id": to_oid(order_id), "order_status": expected.value},
            {"$set": {"order_status": new_status.value, "updated_at": datetime.utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        return from_document(OrderDB, doc)

    async def set_payment(self, order_id: str, payment_id: str) -> None:
        await self.collection.update_one(
            {"_id": to_oid(order_id)},
            {"$set": {"payment_id": payment_id, "updated_at": datetime.utcnow()}},
        )

    async def delete_if_pending(self, order_id: str) -> bool:
        result = await self.collection.delete_one(
            {"_id": to_oid(order_id), "order_status": OrderStatus.PENDING.value}
        )
        return result.deleted_count == 1


class MongoPaymentRepository(PaymentRepository):
    def __init__(self, db: AsyncIOMotorDatabase):
        self.collection = db.payments

    async def insert(self, payment: PaymentDB) -> PaymentDB:
        result = await self.collection.insert_one(to_document(payment))
        payment.id = str(result.inserted_id)
        return payment

    async def get_by_order(self, order_id: str) -> Optional[PaymentDB]:
        return from_document(PaymentDB, await self.collection.find_one({"order_id": order_id}))

    async def get_by_provider_id(self, provider_payment_id: str) -> Optional[PaymentDB]:
        return from_document(
            PaymentDB, await self.collection.find_one({"provider_payment_id": provider_payment_id})
        )

    async def attach_provider_intent(self, payment_id: str, provider_payment_id: str) -> bool:
        result = await self.collection.update_one(
            {"_id": to_oid(payment_id), "provider_payment_id": None},
            {"$set": {"provider_payment_id": provider_payment_id, "updated_at": datetime.utcnow()}},
        )
        return result.modified_count == 1

    async def transition_status(
        self,
        payment_id: str,
        expected: Iterable[PaymentStatus],
        new_status: PaymentStatus,
        **fields,
    ) -> Optional[PaymentDB]:
        update = {"status": new_status.value, "updated_at": datetime.utcnow()}
        update.update(encode(fields))
        doc = await self.collection.find_one_and_update(
            {"_id": to_oid(payment_id), "status": {"$in": [s.value for s in expected]}},
            {"$set": update},
            return_document=ReturnDocument.AFTER,
        )
        return from_document(PaymentDB, doc)

    async def delete(self, payment_id: str) -> None:
        await self.collection.delete_one({"_id": to_oid(payment_id)})
