"""
Stock reservation

Stock changes are single conditional UPDATE statements. A decrement only
matches while enough stock remains, so two checkouts racing for the last
unit cannot both succeed and stock never goes negative.

A line targets the product's flat stock when it has no variant SKU, and
exactly one variant's stock otherwise.
"""
import logging
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.exceptions import InsufficientStockError, NotFoundError
from storefront.models.product import Product, ProductVariant

logger = logging.getLogger(__name__)


def _target(product_id: int, variant_sku: Optional[str]):
    """(model, where-clause) for the stock counter a line draws from."""
    if variant_sku:
        return ProductVariant, (
            ProductVariant.product_id == product_id,
            ProductVariant.sku == variant_sku,
        )
    return Product, (Product.id == product_id,)


class StockService:

    async def available(self, db: AsyncSession, product_id: int, variant_sku: Optional[str] = None) -> Optional[int]:
        """Current stock for the line's target, or None if it does not exist."""
        model, where = _target(product_id, variant_sku)
        result = await db.execute(select(model.stock).where(*where))
        return result.scalar_one_or_none()

    async def reserve(
        self,
        db: AsyncSession,
        product_id: int,
        variant_sku: Optional[str],
        quantity: int,
        title: Optional[str] = None,
    ) -> None:
        """
        Atomically take `quantity` units.

        Raises:
            InsufficientStockError: fewer than `quantity` units remain
            NotFoundError: product or variant does not exist
        """
        if quantity <= 0:
            raise ValueError("quantity must be positive")

        model, where = _target(product_id, variant_sku)
        result = await db.execute(
            update(model)
            .where(*where, model.stock >= quantity)
            .values(stock=model.stock - quantity)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            return

        available = await self.available(db, product_id, variant_sku)
        if available is None:
            raise NotFoundError(
                "Product not found",
                details={"product_id": product_id, "variant_sku": variant_sku},
            )
        name = title or f"product {product_id}"
        if variant_sku:
            name = f"{name} ({variant_sku})"
        logger.info(
            "Stock reservation rejected for product %s variant %s: requested %s, available %s",
            product_id, variant_sku, quantity, available,
        )
        raise InsufficientStockError(
            f"Insufficient stock for {name}: only {available} available",
            product_id=product_id,
            variant_sku=variant_sku,
            requested_qty=quantity,
            available_qty=available,
        )

    async def release(
        self,
        db: AsyncSession,
        product_id: int,
        variant_sku: Optional[str],
        quantity: int,
    ) -> None:
        """Atomically return `quantity` units."""
        if quantity <= 0:
            raise ValueError("quantity must be positive")

        model, where = _target(product_id, variant_sku)
        result = await db.execute(
            update(model)
            .where(*where)
            .values(stock=model.stock + quantity)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise NotFoundError(
                "Product not found",
                details={"product_id": product_id, "variant_sku": variant_sku},
            )


stock_service = StockService()
