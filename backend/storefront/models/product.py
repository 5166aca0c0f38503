"""
Product and variant models

A product either tracks a flat stock count or, when it has variants,
per-variant stock. Stock never goes below zero (enforced by the database
and by conditional decrements in the stock service).
"""
from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Numeric, JSON, ForeignKey,
    CheckConstraint, UniqueConstraint,
)
from sqlalchemy.orm import relationship

from storefront.core.database import Base
from storefront.core.utils import utcnow


class Product(Base):
    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    sku = Column(String, unique=True, index=True)
    title = Column(String, nullable=False)
    price = Column(Numeric(12, 2), nullable=False)
    stock = Column(Integer, default=0, nullable=False)
    image_url = Column(String)
    images = Column(JSON, default=list)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    variants = relationship(
        "ProductVariant",
        back_populates="product",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    def get_variant(self, sku: str):
        for variant in self.variants:
            if variant.sku == sku:
                return variant
        return None

    @property
    def primary_image(self):
        if self.image_url:
            return self.image_url
        return (self.images or [None])[0]


class ProductVariant(Base):
    __tablename__ = "product_variants"
    __table_args__ = (
        UniqueConstraint("product_id", "sku", name="uq_product_variants_product_sku"),
        CheckConstraint("stock >= 0", name="ck_product_variants_stock_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    sku = Column(String, nullable=False)
    attributes = Column(JSON, default=dict)  # {"size": "L", "color": "red"}
    price_delta = Column(Numeric(12, 2), default=0, nullable=False)
    stock = Column(Integer, default=0, nullable=False)

    product = relationship("Product", back_populates="variants")
