"""
Order models

Order items are a frozen snapshot of the cart at placement time; later
catalog edits never change a placed order. The timeline is append-only.
"""
from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Text, JSON, Numeric
from sqlalchemy.orm import relationship

from storefront.core.database import Base
from storefront.core.utils import utcnow


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    order_number = Column(String, unique=True, index=True, nullable=False)
    status = Column(String, default="pending", nullable=False, index=True)
    payment_status = Column(String, default="pending", nullable=False, index=True)

    # Pricing (total = subtotal - discount + tax + shipping)
    subtotal = Column(Numeric(12, 2), nullable=False)
    discount = Column(Numeric(12, 2), default=0, nullable=False)
    coupon_code = Column(String)
    tax = Column(Numeric(12, 2), default=0, nullable=False)
    shipping = Column(Numeric(12, 2), default=0, nullable=False)
    total = Column(Numeric(12, 2), nullable=False)

    # Addresses
    shipping_address = Column(JSON, nullable=False)
    billing_address = Column(JSON)

    # Contact
    customer_email = Column(String, index=True)
    customer_phone = Column(String, index=True)

    # Payment
    payment_method = Column(String, nullable=False)  # razorpay, stripe, cod
    razorpay_order_id = Column(String, index=True)
    razorpay_payment_id = Column(String)
    razorpay_signature = Column(String)
    stripe_payment_intent_id = Column(String, index=True)

    # Fulfilment
    carrier = Column(String)
    tracking_number = Column(String)
    tracking_url = Column(String)
    tracking_updated_at = Column(DateTime(timezone=True))

    # Refund
    refund_amount = Column(Numeric(12, 2))
    refund_reason = Column(Text)
    refunded_at = Column(DateTime(timezone=True))
    refunded_by = Column(Integer, ForeignKey("users.id"))

    notes = Column(Text)

    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    paid_at = Column(DateTime(timezone=True))
    cancelled_at = Column(DateTime(timezone=True))

    user = relationship("User", back_populates="orders", foreign_keys=[user_id])
    items = relationship(
        "OrderItem",
        back_populates="order",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )
    timeline = relationship(
        "OrderTimelineEntry",
        back_populates="order",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="OrderTimelineEntry.id",
    )


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    variant_sku = Column(String)

    # Snapshot of product at time of order
    title = Column(String, nullable=False)
    sku = Column(String)
    image = Column(String)
    price = Column(Numeric(12, 2), nullable=False)
    quantity = Column(Integer, nullable=False)
    subtotal = Column(Numeric(12, 2), nullable=False)

    order = relationship("Order", back_populates="items")


class OrderTimelineEntry(Base):
    __tablename__ = "order_timeline"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String, nullable=False)
    payment_status = Column(String)
    note = Column(Text)
    actor_id = Column(Integer, ForeignKey("users.id"))
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    order = relationship("Order", back_populates="timeline")
