"""
Order schemas

Each command the order endpoints accept has its own request model so
handlers receive already-validated input.
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

PaymentMethod = Literal["razorpay", "stripe", "cod"]
OrderStatusValue = Literal["pending", "confirmed", "processing", "shipped", "delivered", "cancelled"]
PaymentStatusValue = Literal["pending", "paid", "failed", "refunded"]


class Address(BaseModel):
    full_name: str = Field(min_length=1, max_length=120)
    phone: str = Field(min_length=5, max_length=20)
    address_line1: str = Field(min_length=1, max_length=200)
    address_line2: Optional[str] = Field(default=None, max_length=200)
    city: str = Field(min_length=1, max_length=100)
    state: str = Field(min_length=1, max_length=100)
    postal_code: str = Field(min_length=3, max_length=12)
    country: str = "IN"


class OrderCreate(BaseModel):
    shipping_address: Address
    billing_address: Optional[Address] = None  # Defaults to shipping
    payment_method: PaymentMethod
    notes: Optional[str] = Field(default=None, max_length=1000)


class VerifyPaymentRequest(BaseModel):
    order_id: int
    razorpay_order_id: str = Field(min_length=1)
    razorpay_payment_id: str = Field(min_length=1)
    razorpay_signature: str = Field(min_length=1)


class OrderItemResponse(BaseModel):
    id: int
    product_id: int
    variant_sku: Optional[str] = None
    title: str
    sku: Optional[str] = None
    image: Optional[str] = None
    price: Decimal
    quantity: int
    subtotal: Decimal

    class Config:
        from_attributes = True


class TimelineEntryResponse(BaseModel):
    status: str
    payment_status: Optional[str] = None
    note: Optional[str] = None
    actor_id: Optional[int] = None
    created_at: datetime

    class Config:
        from_attributes = True


class OrderResponse(BaseModel):
    id: int
    order_number: str
    user_id: int
    status: str
    payment_status: str
    payment_method: str
    subtotal: Decimal
    discount: Decimal
    coupon_code: Optional[str] = None
    tax: Decimal
    shipping: Decimal
    total: Decimal
    shipping_address: dict
    billing_address: Optional[dict] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    notes: Optional[str] = None
    carrier: Optional[str] = None
    tracking_number: Optional[str] = None
    tracking_url: Optional[str] = None
    refund_amount: Optional[Decimal] = None
    refund_reason: Optional[str] = None
    created_at: datetime
    items: List[OrderItemResponse] = []
    timeline: List[TimelineEntryResponse] = []

    class Config:
        from_attributes = True


class CheckoutResponse(BaseModel):
    """Order plus whatever the client needs to open the payment sheet."""
    order: OrderResponse
    razorpay_order_id: Optional[str] = None
    razorpay_key_id: Optional[str] = None
    stripe_client_secret: Optional[str] = None


class OrderList(BaseModel):
    orders: List[OrderResponse]
    total: int
    page: int
    pages: int


# Admin commands

class StatusUpdate(BaseModel):
    status: OrderStatusValue
    note: Optional[str] = Field(default=None, max_length=500)


class PaymentStatusUpdate(BaseModel):
    payment_status: PaymentStatusValue
    note: Optional[str] = Field(default=None, max_length=500)


class TrackingUpdate(BaseModel):
    carrier: str = Field(min_length=1, max_length=100)
    tracking_number: str = Field(min_length=1, max_length=100)
    tracking_url: Optional[str] = Field(default=None, max_length=500)


class CancelOrderRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)
    refund_amount: Optional[Decimal] = Field(default=None, gt=0)


class OrderStats(BaseModel):
    by_status: dict
    by_payment_status: dict
    total_orders: int
    paid_revenue: Decimal
