"""
Cart Manager

Every mutation ends in `_reprice`, which recomputes totals from the
current lines and re-evaluates the applied coupon against the new
subtotal. A coupon that stops qualifying is detached rather than left
applied at a stale discount.
"""
import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.exceptions import (
    CouponError,
    EmptyCartError,
    InsufficientStockError,
    NotFoundError,
)
from storefront.core.utils import to_money
from storefront.models.cart import Cart, CartItem
from storefront.models.product import Product
from storefront.models.user import User
from storefront.schemas.cart import CartItemResponse, CartResponse
from storefront.services.coupon_service import CouponService, coupon_service
from storefront.services.pricing import ZERO, calculate_totals
from storefront.services.stock_service import StockService, stock_service

logger = logging.getLogger(__name__)


class CartService:

    def __init__(self, coupons: CouponService = coupon_service, stock: StockService = stock_service):
        self.coupons = coupons
        self.stock = stock

    async def load_cart(self, db: AsyncSession, user_id: int, for_update: bool = False) -> Optional[Cart]:
        query = select(Cart).where(Cart.user_id == user_id)
        if for_update:
            query = query.with_for_update()
        result = await db.execute(query)
        return result.scalar_one_or_none()

    async def _get_or_create(self, db: AsyncSession, user: User) -> Cart:
        cart = await self.load_cart(db, user.id, for_update=True)
        if cart is None:
            cart = Cart(user_id=user.id, items=[])
            db.add(cart)
            await db.flush()
        return cart

    async def _require_cart(self, db: AsyncSession, user: User) -> Cart:
        cart = await self.load_cart(db, user.id, for_update=True)
        if cart is None:
            raise NotFoundError("Cart not found")
        return cart

    def _find_item(self, cart: Cart, item_id: int) -> CartItem:
        for item in cart.items:
            if item.id == item_id:
                return item
        raise NotFoundError("Item not found in cart", details={"item_id": item_id})

    async def _check_stock(self, db: AsyncSession, product: Product, variant_sku: Optional[str], quantity: int) -> None:
        available = await self.stock.available(db, product.id, variant_sku)
        if available is None or available < quantity:
            available = available or 0
            name = f"{product.title} ({variant_sku})" if variant_sku else product.title
            raise InsufficientStockError(
                f"Insufficient stock for {name}: only {available} available",
                product_id=product.id,
                variant_sku=variant_sku,
                requested_qty=quantity,
                available_qty=available,
            )

    async def _reprice(self, db: AsyncSession, cart: Cart) -> Cart:
        subtotal = to_money(sum(
            (Decimal(item.price_at_add) * item.quantity for item in cart.items), ZERO
        ))

        discount = ZERO
        if cart.coupon_code:
            try:
                _, discount = await self.coupons.validate_coupon(db, cart.coupon_code, subtotal)
            except (CouponError, NotFoundError) as e:
                logger.warning(f"Coupon {cart.coupon_code} removed from cart {cart.id}: {e.message}")
                cart.coupon_code = None
                discount = ZERO

        totals = calculate_totals(
            ((item.price_at_add, item.quantity) for item in cart.items),
            discount,
        )
        cart.coupon_discount = totals.discount
        cart.subtotal = totals.subtotal
        cart.discount = totals.discount
        cart.tax = totals.tax
        cart.shipping = totals.shipping
        cart.total = totals.total
        await db.flush()
        return cart

    # Operations

    async def get_cart(self, db: AsyncSession, user: User) -> Optional[Cart]:
        return await self.load_cart(db, user.id)

    async def add_item(
        self,
        db: AsyncSession,
        user: User,
        product_id: int,
        variant_sku: Optional[str] = None,
        quantity: int = 1,
    ) -> Cart:
        if quantity < 1:
            raise ValueError("quantity must be at least 1")

        product = await db.get(Product, product_id)
        if not product or not product.is_active:
            raise NotFoundError("Product not found", details={"product_id": product_id})

        unit_price = Decimal(product.price)
        if variant_sku:
            variant = product.get_variant(variant_sku)
            if variant is None:
                raise NotFoundError(
                    "Variant not found",
                    details={"product_id": product_id, "variant_sku": variant_sku},
                )
            unit_price += Decimal(variant.price_delta or 0)

        cart = await self.load_cart(db, user.id, for_update=True)
        existing = None
        if cart is not None:
            existing = next(
                (i for i in cart.items if i.product_id == product_id and i.variant_sku == (variant_sku or None)),
                None,
            )
        new_quantity = quantity + (existing.quantity if existing else 0)
        await self._check_stock(db, product, variant_sku, new_quantity)

        if cart is None:
            cart = await self._get_or_create(db, user)

        if existing:
            existing.quantity = new_quantity
        else:
            cart.items.append(CartItem(
                product=product,
                variant_sku=variant_sku or None,
                quantity=quantity,
                price_at_add=to_money(unit_price),
            ))

        return await self._reprice(db, cart)

    async def update_item(self, db: AsyncSession, user: User, item_id: int, quantity: int) -> Cart:
        """Set a line's quantity; zero removes the line."""
        if quantity < 0:
            raise ValueError("quantity must not be negative")

        cart = await self._require_cart(db, user)
        item = self._find_item(cart, item_id)

        if quantity == 0:
            cart.items.remove(item)
        else:
            if quantity > item.quantity:
                product = await db.get(Product, item.product_id)
                await self._check_stock(db, product, item.variant_sku, quantity)
            item.quantity = quantity

        return await self._reprice(db, cart)

    async def remove_item(self, db: AsyncSession, user: User, item_id: int) -> Cart:
        cart = await self._require_cart(db, user)
        cart.items.remove(self._find_item(cart, item_id))
        return await self._reprice(db, cart)

    async def apply_coupon(self, db: AsyncSession, user: User, code: str) -> Cart:
        cart = await self.load_cart(db, user.id, for_update=True)
        if cart is None or not cart.items:
            raise EmptyCartError()

        # Validation errors propagate with the cart untouched
        coupon, _ = await self.coupons.validate_coupon(db, code, to_money(cart.subtotal))
        cart.coupon_code = coupon.code
        return await self._reprice(db, cart)

    async def remove_coupon(self, db: AsyncSession, user: User) -> Cart:
        cart = await self._require_cart(db, user)
        cart.coupon_code = None
        return await self._reprice(db, cart)

    async def clear(self, db: AsyncSession, user: User) -> None:
        cart = await self.load_cart(db, user.id, for_update=True)
        if cart is not None:
            await db.delete(cart)
            await db.flush()


def cart_to_response(cart: Optional[Cart]) -> CartResponse:
    if cart is None:
        return CartResponse()
    items = [
        CartItemResponse(
            id=item.id,
            product_id=item.product_id,
            variant_sku=item.variant_sku,
            title=item.product.title if item.product else None,
            quantity=item.quantity,
            price_at_add=to_money(item.price_at_add),
            line_total=to_money(Decimal(item.price_at_add) * item.quantity),
        )
        for item in cart.items
    ]
    return CartResponse(
        id=cart.id,
        items=items,
        coupon_code=cart.coupon_code,
        subtotal=to_money(cart.subtotal),
        discount=to_money(cart.discount),
        tax=to_money(cart.tax),
        shipping=to_money(cart.shipping),
        total=to_money(cart.total),
        item_count=sum(item.quantity for item in cart.items),
    )


cart_service = CartService()
