"""
API dependencies

Authentication plus providers for the services routes use, so tests and
deployments can override collaborators through `app.dependency_overrides`.
"""
from functools import lru_cache

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.database import get_db
from storefront.core.security import decode_token
from storefront.models.user import User
from storefront.services.analytics_service import analytics_sink
from storefront.services.email_provider import get_email_provider
from storefront.services.order_service import OrderService
from storefront.services.payment_service import PaymentService, RazorpayGateway, StripeGateway

security = HTTPBearer()


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> User:
    """Resolve the bearer token to an active user."""
    payload = decode_token(credentials.credentials)
    if not payload or payload.get("type") != "access":
        raise _unauthorized("Invalid or expired token")

    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise _unauthorized("Invalid or expired token")

    user = await db.get(User, user_id)
    if not user:
        raise _unauthorized("User not found")
    if not user.is_active:
        raise _unauthorized("Account is disabled")
    return user


async def get_current_admin(user: User = Depends(get_current_user)) -> User:
    if not user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return user


@lru_cache
def get_razorpay_gateway() -> RazorpayGateway:
    return RazorpayGateway()


@lru_cache
def get_stripe_gateway() -> StripeGateway:
    return StripeGateway()


def get_order_service() -> OrderService:
    return OrderService(
        gateways={
            "razorpay": get_razorpay_gateway(),
            "stripe": get_stripe_gateway(),
        },
        notifier=get_email_provider(),
        analytics=analytics_sink,
    )


def get_payment_service() -> PaymentService:
    return PaymentService(
        razorpay=get_razorpay_gateway(),
        stripe_gateway=get_stripe_gateway(),
        notifier=get_email_provider(),
    )
