"""
Coupon model
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Numeric, Text, CheckConstraint

from storefront.core.database import Base
from storefront.core.utils import utcnow


class Coupon(Base):
    __tablename__ = "coupons"
    __table_args__ = (
        CheckConstraint("ends_at > starts_at", name="ck_coupons_window"),
        CheckConstraint(
            "usage_limit IS NULL OR usage_count <= usage_limit",
            name="ck_coupons_usage_within_limit",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(50), unique=True, index=True, nullable=False)  # Always uppercase
    description = Column(Text)

    discount_type = Column(String(20), nullable=False)  # percentage, fixed
    discount_value = Column(Numeric(12, 2), nullable=False)
    minimum_order_value = Column(Numeric(12, 2), default=0, nullable=False)
    maximum_discount = Column(Numeric(12, 2))  # Cap for percentage coupons

    starts_at = Column(DateTime(timezone=True), nullable=False)
    ends_at = Column(DateTime(timezone=True), nullable=False)

    usage_limit = Column(Integer)  # None = unlimited
    usage_count = Column(Integer, default=0, nullable=False)

    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)
