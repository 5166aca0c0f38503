"""
Cart schemas
"""
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field


class CartItemAdd(BaseModel):
    product_id: int
    variant_sku: Optional[str] = None
    quantity: int = Field(default=1, ge=1, le=100)


class CartItemUpdate(BaseModel):
    quantity: int = Field(ge=0, le=100)  # 0 removes the line


class ApplyCouponRequest(BaseModel):
    code: str = Field(min_length=1, max_length=50)


class CartItemResponse(BaseModel):
    id: int
    product_id: int
    variant_sku: Optional[str] = None
    title: Optional[str] = None
    quantity: int
    price_at_add: Decimal
    line_total: Decimal


class CartResponse(BaseModel):
    id: Optional[int] = None
    items: List[CartItemResponse] = []
    coupon_code: Optional[str] = None
    subtotal: Decimal = Decimal("0")
    discount: Decimal = Decimal("0")
    tax: Decimal = Decimal("0")
    shipping: Decimal = Decimal("0")
    total: Decimal = Decimal("0")
    item_count: int = 0
