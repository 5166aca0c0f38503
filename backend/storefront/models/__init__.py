from storefront.models.user import User
from storefront.models.product import Product, ProductVariant
from storefront.models.cart import Cart, CartItem
from storefront.models.coupon import Coupon
from storefront.models.order import Order, OrderItem, OrderTimelineEntry
from storefront.models.analytics import AnalyticsEvent

__all__ = [
    "User",
    "Product",
    "ProductVariant",
    "Cart",
    "CartItem",
    "Coupon",
    "Order",
    "OrderItem",
    "OrderTimelineEntry",
    "AnalyticsEvent",
]
