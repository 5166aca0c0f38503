"""
Coupon schemas
"""
from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from storefront.core.utils import as_utc


class CouponCreate(BaseModel):
    code: str = Field(min_length=3, max_length=50)
    description: Optional[str] = None
    discount_type: Literal["percentage", "fixed"]
    discount_value: Decimal = Field(gt=0)
    minimum_order_value: Decimal = Field(default=Decimal("0"), ge=0)
    maximum_discount: Optional[Decimal] = Field(default=None, gt=0)
    starts_at: datetime
    ends_at: datetime
    usage_limit: Optional[int] = Field(default=None, ge=1)
    is_active: bool = True

    @field_validator("code")
    @classmethod
    def normalize_code(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("starts_at", "ends_at")
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        return as_utc(v)

    @model_validator(mode="after")
    def check_rules(self):
        if self.ends_at <= self.starts_at:
            raise ValueError("ends_at must be after starts_at")
        if self.discount_type == "percentage" and self.discount_value > 100:
            raise ValueError("Percentage discount cannot exceed 100")
        return self


class CouponResponse(BaseModel):
    id: int
    code: str
    description: Optional[str] = None
    discount_type: str
    discount_value: Decimal
    minimum_order_value: Decimal
    maximum_discount: Optional[Decimal] = None
    starts_at: datetime
    ends_at: datetime
    usage_limit: Optional[int] = None
    usage_count: int
    is_active: bool

    class Config:
        from_attributes = True
