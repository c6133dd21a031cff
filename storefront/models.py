from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Optional, List
from bson import ObjectId
from pydantic import BaseModel, Field, field_validator

CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    """Quantize a price to cents. Floats go through ``str`` to avoid binary noise."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Decimal) -> int:
    return int((to_money(amount) * 100).to_integral_value(rounding=ROUND_HALF_UP))


def from_minor_units(amount: int) -> Decimal:
    return to_money(Decimal(amount) / 100)


def new_id() -> str:
    return str(ObjectId())


def is_valid_id(value) -> bool:
    return isinstance(value, str) and ObjectId.is_valid(value)


class UserRole:
    USER = "user"
    SELLER = "seller"
    ADMIN = "admin"


class OrderStatus(str, Enum):
    PENDING = "pending"
    DISPATCHED = "dispatched"
    SHIPPED = "shipped"
    DELIVERED = "delivered"


# Forward-only lifecycle; each status may only advance to the next one
ORDER_STATUS_FLOW = [
    OrderStatus.PENDING,
    OrderStatus.DISPATCHED,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
]


def next_order_status(current: OrderStatus) -> Optional[OrderStatus]:
    index = ORDER_STATUS_FLOW.index(current)
    if index + 1 < len(ORDER_STATUS_FLOW):
        return ORDER_STATUS_FLOW[index + 1]
    return None


class PaymentStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentMethod(str, Enum):
    CASH_ON_DELIVERY = "cash_on_delivery"
    ONLINE = "online"


class ProductDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    seller_id: str
    name: str
    price: Decimal = Field(..., ge=0)
    stock: int = Field(0, ge=0)
    discount: int = Field(0, ge=0, le=100)
    is_active: bool = True

    class Config:
        populate_by_name = True

    @field_validator("price", mode="before")
    def quantize_price(cls, v):
        return to_money(v)

    def discounted_price(self) -> Decimal:
        if self.discount > 0:
            return to_money(self.price * (Decimal(100) - self.discount) / Decimal(100))
        return self.price


class CartItemDB(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)


class CartDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    user_id: str
    items: List[CartItemDB] = []
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        populate_by_name = True


class ShippingAddress(BaseModel):
    street: str
    city: str
    state: str
    country: str
    zip_code: str


class AddressDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    user_id: str
    street: str
    city: str
    state: str
    country: str
    zip_code: str

    class Config:
        populate_by_name = True

    def snapshot(self) -> ShippingAddress:
        return ShippingAddress(
            street=self.street,
            city=self.city,
            state=self.state,
            country=self.country,
            zip_code=self.zip_code,
        )


class OrderItemDB(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)
    unit_price: Decimal # Discounted price when the order was placed

    @field_validator("unit_price", mode="before")
    def quantize_price(cls, v):
        return to_money(v)


class OrderDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    user_id: Optional[str] # Null once the buyer account is deleted
    seller_id: str
    items: List[OrderItemDB]
    total_amount: Decimal
    shipping_address: ShippingAddress
    payment_method: PaymentMethod
    payment_id: Optional[str] = None
    order_status: OrderStatus = OrderStatus.PENDING
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: Optional[datetime] = None

    class Config:
        populate_by_name = True

    @field_validator("total_amount", mode="before")
    def quantize_total(cls, v):
        return to_money(v)


class PaymentDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    user_id: str
    order_id: str
    amount: Decimal
    provider_payment_id: Optional[str] = None
    status: PaymentStatus = PaymentStatus.PENDING
    payment_method: PaymentMethod = PaymentMethod.ONLINE
    transaction_date: Optional[datetime] = None
    refund_id: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: Optional[datetime] = None

    class Config:
        populate_by_name = True

    @field_validator("amount", mode="before")
    def quantize_amount(cls, v):
        return to_money(v)
