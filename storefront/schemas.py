from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
from decimal import Decimal
from datetime import datetime

from storefront.models import OrderStatus, PaymentMethod, PaymentStatus, ShippingAddress
from storefront.shared.security_config import sanitize_input

# --- Cart ---
class CartItemAdd(BaseModel):
    product_id: str
    quantity: int = Field(1, gt=0)

    @field_validator('product_id')
    def sanitize_product_id(cls, v):
        return sanitize_input(v)

class CartItemUpdate(BaseModel):
    product_id: str
    quantity: int = Field(..., gt=0)

    @field_validator('product_id')
    def sanitize_product_id(cls, v):
        return sanitize_input(v)

class CartItemResponse(BaseModel):
    product_id: str
    name: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal

class CartResponse(BaseModel):
    user_id: str
    items: List[CartItemResponse]
    total_price: Decimal

# --- Orders ---
class OrderCreate(BaseModel):
    shipping_address_id: str
    payment_method: PaymentMethod

    @field_validator('shipping_address_id')
    def sanitize_address(cls, v):
        return sanitize_input(v)

class OrderStatusUpdate(BaseModel):
    order_status: OrderStatus

class OrderItemResponse(BaseModel):
    product_id: str
    quantity: int
    unit_price: Decimal

class OrderResponse(BaseModel):
    id: str
    user_id: Optional[str] = None
    seller_id: str
    items: List[OrderItemResponse]
    total_amount: Decimal
    shipping_address: ShippingAddress
    payment_method: PaymentMethod
    payment_id: Optional[str] = None
    order_status: OrderStatus
    created_at: datetime
    updated_at: Optional[datetime] = None

# --- Payments ---
class PaymentIntentCreate(BaseModel):
    order_id: str

    @field_validator('order_id')
    def sanitize_order_id(cls, v):
        return sanitize_input(v)

class PaymentVerify(PaymentIntentCreate):
    pass

class RefundRequest(BaseModel):
    payment_id: str = Field(..., min_length=1) # Provider payment intent id

    @field_validator('payment_id')
    def sanitize_payment_id(cls, v):
        return sanitize_input(v)

class PaymentIntentResponse(BaseModel):
    payment_id: str
    client_secret: Optional[str] = None
    amount: Decimal
    currency: str

class PaymentResponse(BaseModel):
    id: str
    order_id: str
    user_id: str
    amount: Decimal
    provider_payment_id: Optional[str] = None
    status: PaymentStatus
    payment_method: PaymentMethod
    transaction_date: Optional[datetime] = None
    refund_id: Optional[str] = None
    created_at: datetime

class PaymentConfigResponse(BaseModel):
    publishable_key: str
    currency: str
