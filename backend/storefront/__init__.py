"""
Storefront checkout service

Cart pricing, coupon redemption, stock reservation, order placement,
payment verification and order lifecycle management.
"""
__version__ = "1.0.0"
