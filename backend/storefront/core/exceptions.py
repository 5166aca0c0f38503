"""
Storefront Exception Hierarchy

Every domain failure carries a machine-readable code, a human-readable
message and structured details, and maps onto one HTTP status.

Exception Hierarchy:
    StorefrontError
    ├── NotFoundError
    │   └── CouponNotFoundError
    ├── ForbiddenError
    ├── EmptyCartError
    ├── InsufficientStockError
    ├── CouponError
    │   ├── InvalidCouponError
    │   ├── UsageLimitReachedError
    │   └── MinimumOrderNotMetError
    ├── InvalidTransitionError
    └── PaymentError
        ├── PaymentVerificationFailedError
        └── PaymentProviderError
"""
import logging
from decimal import Decimal
from typing import Optional, Dict, Any

logger = logging.getLogger(__name__)


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    return value


class StorefrontError(Exception):
    """
    Base exception for all storefront errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code for programmatic handling
        details: Additional context for debugging/audit
        status_code: HTTP status the API layer responds with
    """

    default_code: str = "STOREFRONT_ERROR"
    status_code: int = 400

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error": self.code,
            "message": self.message,
            "details": {k: _jsonable(v) for k, v in self.details.items()},
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


class NotFoundError(StorefrontError):
    default_code = "NOT_FOUND"
    status_code = 404


class CouponNotFoundError(NotFoundError):
    default_code = "COUPON_NOT_FOUND"

    def __init__(self, code: str, **kwargs):
        details = kwargs.pop("details", {})
        details.update({"coupon_code": code})
        super().__init__("Coupon code not found", details=details, **kwargs)


class ForbiddenError(StorefrontError):
    default_code = "FORBIDDEN"
    status_code = 403


class EmptyCartError(StorefrontError):
    default_code = "EMPTY_CART"

    def __init__(self, message: str = "Cart is empty", **kwargs):
        super().__init__(message, **kwargs)


class InsufficientStockError(StorefrontError):
    """Requested quantity exceeds what is on hand."""
    default_code = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        message: str,
        product_id: Optional[int] = None,
        variant_sku: Optional[str] = None,
        requested_qty: Optional[int] = None,
        available_qty: Optional[int] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details.update({
            "product_id": product_id,
            "variant_sku": variant_sku,
            "requested_qty": requested_qty,
            "available_qty": available_qty,
        })
        self.product_id = product_id
        self.variant_sku = variant_sku
        self.requested_qty = requested_qty
        self.available_qty = available_qty
        super().__init__(message, details=details, **kwargs)


class CouponError(StorefrontError):
    """Base class for coupon rejections."""
    default_code = "COUPON_ERROR"


class InvalidCouponError(CouponError):
    """Coupon exists but is inactive, not yet started, or expired."""
    default_code = "INVALID_COUPON"


class UsageLimitReachedError(CouponError):
    default_code = "COUPON_USAGE_LIMIT_REACHED"

    def __init__(self, message: str = "This coupon has reached its usage limit", **kwargs):
        super().__init__(message, **kwargs)


class MinimumOrderNotMetError(CouponError):
    default_code = "MINIMUM_ORDER_NOT_MET"

    def __init__(self, minimum: Decimal, subtotal: Decimal, **kwargs):
        details = kwargs.pop("details", {})
        details.update({"minimum_order_value": minimum, "subtotal": subtotal})
        self.minimum = minimum
        super().__init__(f"Minimum order of {minimum:.2f} required", details=details, **kwargs)


class InvalidTransitionError(StorefrontError):
    """Order or payment status change not permitted from the current state."""
    default_code = "INVALID_TRANSITION"
    status_code = 409

    def __init__(
        self,
        current: str,
        requested: str,
        message: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details.update({"from": current, "to": requested})
        self.current = current
        self.requested = requested
        super().__init__(
            message or f"Cannot change status from '{current}' to '{requested}'",
            details=details,
            **kwargs,
        )


class PaymentError(StorefrontError):
    default_code = "PAYMENT_ERROR"


class PaymentVerificationFailedError(PaymentError):
    default_code = "PAYMENT_VERIFICATION_FAILED"

    def __init__(self, message: str = "Payment verification failed", order_id: Optional[int] = None, **kwargs):
        details = kwargs.pop("details", {})
        details.update({"order_id": order_id})
        super().__init__(message, details=details, **kwargs)


class PaymentProviderError(PaymentError):
    """Payment provider unreachable, unconfigured, or rejected the request."""
    default_code = "PAYMENT_PROVIDER_ERROR"
    status_code = 502

    def __init__(self, message: str, provider: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        details.update({"provider": provider})
        super().__init__(message, details=details, **kwargs)
