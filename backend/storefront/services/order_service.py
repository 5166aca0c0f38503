"""
Order Service

Turns a priced cart into an order. Stock decrements, coupon redemption,
the order row and cart removal share the caller's transaction and are
committed together; a failure at any step rolls all of them back.
Notifications and analytics run only after the commit.
"""
import itertools
import logging
import math
import secrets
import time
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core import background
from storefront.core.config import settings
from storefront.core.exceptions import (
    EmptyCartError,
    ForbiddenError,
    InsufficientStockError,
    NotFoundError,
    PaymentProviderError,
)
from storefront.core.utils import to_money, utcnow
from storefront.models.cart import Cart
from storefront.models.order import Order, OrderItem
from storefront.models.product import Product
from storefront.models.user import User
from storefront.schemas.order import OrderCreate
from storefront.services.analytics_service import AnalyticsSink, RequestContext
from storefront.services.cart_service import CartService, cart_service
from storefront.services.coupon_service import CouponService, coupon_service
from storefront.services.email_provider import EmailProvider
from storefront.services.order_status import (
    OrderEvent,
    OrderStatus,
    PaymentStatus,
    append_timeline,
    cancel_order,
    set_payment_status,
    status_event_for,
    transition,
)
from storefront.services.payment_service import PaymentGateway, ProviderOrder
from storefront.services.pricing import ZERO, calculate_totals
from storefront.services.stock_service import StockService, stock_service

logger = logging.getLogger(__name__)

# Random start per process
_order_sequence = itertools.count(secrets.randbelow(10000))

SORTABLE_FIELDS = {
    "created_at": Order.created_at,
    "total": Order.total,
    "order_number": Order.order_number,
    "status": Order.status,
}


def generate_order_number() -> str:
    """`ORD` + epoch milliseconds + 4-digit sequence + 4 random digits."""
    millis = int(time.time() * 1000)
    return f"ORD{millis}{next(_order_sequence) % 10000:04d}{secrets.randbelow(10000):04d}"


@dataclass
class OrderCreationResult:
    order: Order
    provider_order: Optional[ProviderOrder] = None


@dataclass
class OrderFilters:
    status: Optional[str] = None
    payment_status: Optional[str] = None
    search: Optional[str] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    sort: str = "created_at"
    descending: bool = True


class OrderService:
    """
    Order placement, lookup and lifecycle commands.

    Collaborators are injected so the API layer can swap payment
    gateways, notifier and analytics sink per environment.
    """

    def __init__(
        self,
        gateways: Optional[Dict[str, PaymentGateway]] = None,
        notifier: Optional[EmailProvider] = None,
        analytics: Optional[AnalyticsSink] = None,
        carts: CartService = cart_service,
        coupons: CouponService = coupon_service,
        stock: StockService = stock_service,
    ):
        self.gateways = gateways or {}
        self.notifier = notifier
        self.analytics = analytics
        self.carts = carts
        self.coupons = coupons
        self.stock = stock

    async def _snapshot_items(self, db: AsyncSession, cart: Cart) -> List[OrderItem]:
        """Freeze each cart line, checking the product is still sellable."""
        items = []
        for line in cart.items:
            product = await db.get(Product, line.product_id)
            if not product or not product.is_active:
                title = product.title if product else f"product {line.product_id}"
                raise NotFoundError(
                    f"{title} is no longer available",
                    details={"product_id": line.product_id},
                )

            sku = product.sku
            if line.variant_sku:
                variant = product.get_variant(line.variant_sku)
                if variant is None:
                    raise NotFoundError(
                        f"{product.title} ({line.variant_sku}) is no longer available",
                        details={"product_id": product.id, "variant_sku": line.variant_sku},
                    )
                sku = variant.sku

            available = await self.stock.available(db, product.id, line.variant_sku) or 0
            if available < line.quantity:
                raise InsufficientStockError(
                    f"Insufficient stock for {product.title}: only {available} available",
                    product_id=product.id,
                    variant_sku=line.variant_sku,
                    requested_qty=line.quantity,
                    available_qty=available,
                )

            price = to_money(line.price_at_add)
            items.append(OrderItem(
                product_id=product.id,
                variant_sku=line.variant_sku,
                title=product.title,
                sku=sku,
                image=product.primary_image,
                price=price,
                quantity=line.quantity,
                subtotal=to_money(price * line.quantity),
            ))
        return items

    def _gateway(self, method: str) -> PaymentGateway:
        gateway = self.gateways.get(method)
        if gateway is None:
            raise PaymentProviderError(f"Payment method '{method}' is not available", provider=method)
        return gateway

    async def place_order(
        self,
        db: AsyncSession,
        user: User,
        data: OrderCreate,
        context: Optional[RequestContext] = None,
    ) -> OrderCreationResult:
        """
        Create an order from the user's cart.

        The applied coupon is validated again and the totals are recomputed
        from the frozen lines, so the order never carries a stale discount.
        The provider order is created last, once stock and coupon usage are
        secured.

        Raises:
            EmptyCartError: no cart or no lines
            NotFoundError: a product or variant is gone or inactive
            InsufficientStockError: validation or the atomic decrement failed
            CouponError: the applied coupon no longer qualifies
            PaymentProviderError: the provider could not create its order
        """
        gateway = None if data.payment_method == "cod" else self._gateway(data.payment_method)

        cart = await self.carts.load_cart(db, user.id, for_update=True)
        if cart is None or not cart.items:
            raise EmptyCartError()

        items = await self._snapshot_items(db, cart)
        lines = [(item.price, item.quantity) for item in items]

        discount = ZERO
        if cart.coupon_code:
            subtotal = calculate_totals(lines).subtotal
            _, discount = await self.coupons.validate_coupon(db, cart.coupon_code, subtotal)
        totals = calculate_totals(lines, discount)

        shipping_address = data.shipping_address.model_dump()
        billing_address = data.billing_address.model_dump() if data.billing_address else shipping_address

        order = Order(
            user_id=user.id,
            order_number=generate_order_number(),
            status=OrderStatus.PENDING.value,
            payment_status=PaymentStatus.PENDING.value,
            subtotal=totals.subtotal,
            discount=totals.discount,
            coupon_code=cart.coupon_code,
            tax=totals.tax,
            shipping=totals.shipping,
            total=totals.total,
            shipping_address=shipping_address,
            billing_address=billing_address,
            customer_email=user.email,
            customer_phone=data.shipping_address.phone or user.phone,
            payment_method=data.payment_method,
            notes=data.notes,
            items=items,
            timeline=[],
        )
        append_timeline(order, "Order created", user.id)
        if gateway is None:
            transition(order, OrderEvent.CONFIRM, user.id, "Cash on Delivery order confirmed")

        db.add(order)
        await db.flush()

        for item in items:
            await self.stock.reserve(db, item.product_id, item.variant_sku, item.quantity, title=item.title)

        if order.coupon_code:
            await self.coupons.redeem(db, order.coupon_code)

        await db.delete(cart)

        provider_order = None
        if gateway is not None:
            provider_order = await gateway.create_order(order.total, settings.CURRENCY, order.order_number)
            if data.payment_method == "razorpay":
                order.razorpay_order_id = provider_order.provider_order_id
            else:
                order.stripe_payment_intent_id = provider_order.provider_order_id

        await db.commit()

        logger.info(
            "Order %s placed by user %s: %s items, total %s, method %s",
            order.order_number, user.id, len(items), order.total, order.payment_method,
        )
        self._after_commit(order, user, context)
        return OrderCreationResult(order=order, provider_order=provider_order)

    def _after_commit(self, order: Order, user: User, context: Optional[RequestContext]) -> None:
        if self.analytics is not None:
            background.spawn(
                self.analytics.track_event(
                    "purchase",
                    context or RequestContext(user_id=user.id),
                    {
                        "order_id": order.id,
                        "order_number": order.order_number,
                        "total": str(order.total),
                        "items": sum(item.quantity for item in order.items),
                    },
                ),
                name=f"analytics-purchase-{order.order_number}",
            )
        if self.notifier is not None and order.payment_method == "cod":
            background.spawn(
                self.notifier.send_order_confirmation(order, user),
                name=f"order-confirmation-{order.order_number}",
            )

    # Lookup

    async def get_order(self, db: AsyncSession, order_id: int, user: User) -> Order:
        """Owner or admin only."""
        order = await db.get(Order, order_id)
        if not order:
            raise NotFoundError("Order not found", details={"order_id": order_id})
        if order.user_id != user.id and not user.is_admin:
            raise ForbiddenError("Not authorized to view this order", details={"order_id": order_id})
        return order

    async def list_user_orders(
        self,
        db: AsyncSession,
        user: User,
        page: int = 1,
        limit: int = 10,
    ) -> Tuple[List[Order], int]:
        total = await db.scalar(
            select(func.count(Order.id)).where(Order.user_id == user.id)
        )
        result = await db.execute(
            select(Order)
            .where(Order.user_id == user.id)
            .order_by(Order.created_at.desc(), Order.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all()), total or 0

    async def list_orders(
        self,
        db: AsyncSession,
        filters: OrderFilters,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[Order], int]:
        conditions = []
        if filters.status:
            conditions.append(Order.status == filters.status)
        if filters.payment_status:
            conditions.append(Order.payment_status == filters.payment_status)
        if filters.search:
            pattern = f"%{filters.search.strip()}%"
            conditions.append(or_(
                Order.order_number.ilike(pattern),
                Order.customer_email.ilike(pattern),
                Order.customer_phone.ilike(pattern),
            ))
        if filters.date_from:
            conditions.append(Order.created_at >= filters.date_from)
        if filters.date_to:
            conditions.append(Order.created_at <= filters.date_to)

        column = SORTABLE_FIELDS.get(filters.sort, Order.created_at)
        ordering = column.desc() if filters.descending else column.asc()

        total = await db.scalar(select(func.count(Order.id)).where(*conditions))
        result = await db.execute(
            select(Order)
            .where(*conditions)
            .order_by(ordering, Order.id.desc() if filters.descending else Order.id.asc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all()), total or 0

    async def stats(self, db: AsyncSession) -> dict:
        status_rows = await db.execute(
            select(Order.status, func.count(Order.id)).group_by(Order.status)
        )
        payment_rows = await db.execute(
            select(Order.payment_status, func.count(Order.id)).group_by(Order.payment_status)
        )
        revenue = await db.scalar(
            select(func.coalesce(func.sum(Order.total), 0)).where(
                Order.payment_status == PaymentStatus.PAID.value
            )
        )
        by_status = {status: count for status, count in status_rows.all()}
        return {
            "by_status": by_status,
            "by_payment_status": {status: count for status, count in payment_rows.all()},
            "total_orders": sum(by_status.values()),
            "paid_revenue": to_money(revenue or 0),
        }

    # Admin lifecycle commands

    async def _admin_load(self, db: AsyncSession, order_id: int) -> Order:
        order = await db.get(Order, order_id)
        if not order:
            raise NotFoundError("Order not found", details={"order_id": order_id})
        return order

    async def update_status(
        self,
        db: AsyncSession,
        order_id: int,
        status: str,
        admin: User,
        note: Optional[str] = None,
    ) -> Order:
        order = await self._admin_load(db, order_id)
        event = status_event_for(OrderStatus(status))
        if event == OrderEvent.CANCEL:
            await cancel_order(db, order, admin.id, reason=note, stock=self.stock)
        else:
            transition(order, event, admin.id, note)
        await db.flush()
        return order

    async def update_payment_status(
        self,
        db: AsyncSession,
        order_id: int,
        payment_status: str,
        admin: User,
        note: Optional[str] = None,
    ) -> Order:
        order = await self._admin_load(db, order_id)
        set_payment_status(order, PaymentStatus(payment_status), admin.id, note)
        await db.flush()
        return order

    async def update_tracking(
        self,
        db: AsyncSession,
        order_id: int,
        carrier: str,
        tracking_number: str,
        tracking_url: Optional[str],
        admin: User,
    ) -> Order:
        """Record shipment details and move the order to shipped."""
        order = await self._admin_load(db, order_id)
        if order.status != OrderStatus.SHIPPED.value:
            transition(order, OrderEvent.SHIP, admin.id, f"Shipped via {carrier} ({tracking_number})")
        else:
            append_timeline(order, f"Tracking updated: {carrier} ({tracking_number})", admin.id)
        order.carrier = carrier
        order.tracking_number = tracking_number
        order.tracking_url = tracking_url
        order.tracking_updated_at = utcnow()
        await db.flush()
        return order

    async def cancel(
        self,
        db: AsyncSession,
        order_id: int,
        admin: User,
        reason: Optional[str] = None,
        refund_amount: Optional[Decimal] = None,
    ) -> Order:
        order = await self._admin_load(db, order_id)
        await cancel_order(db, order, admin.id, reason, refund_amount, stock=self.stock)
        await db.flush()
        return order


def page_count(total: int, limit: int) -> int:
    return max(1, math.ceil(total / limit)) if limit else 1
