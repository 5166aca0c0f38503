"""
Order routes

Checkout is rate limited. Payment verification settles Razorpay orders.
"""
from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.api.deps import get_current_user, get_order_service, get_payment_service
from storefront.core.config import settings
from storefront.core.database import get_db
from storefront.core.rate_limit import limiter
from storefront.models.user import User
from storefront.schemas.order import (
    CheckoutResponse,
    OrderCreate,
    OrderList,
    OrderResponse,
    VerifyPaymentRequest,
)
from storefront.services.analytics_service import RequestContext
from storefront.services.order_service import OrderService, page_count
from storefront.services.payment_service import PaymentService

router = APIRouter()


@router.post("", response_model=CheckoutResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.RATE_LIMIT_CHECKOUT)
async def create_order(
    request: Request,
    order_data: OrderCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    orders: OrderService = Depends(get_order_service),
):
    """Create order from cart"""
    result = await orders.place_order(
        db, user, order_data, RequestContext.from_request(request, user.id)
    )
    provider = result.provider_order
    return CheckoutResponse(
        order=OrderResponse.model_validate(result.order),
        razorpay_order_id=provider.provider_order_id if provider and provider.provider == "razorpay" else None,
        razorpay_key_id=provider.public_key if provider and provider.provider == "razorpay" else None,
        stripe_client_secret=provider.client_secret if provider and provider.provider == "stripe" else None,
    )


@router.post("/verify-payment", response_model=OrderResponse)
async def verify_payment(
    payload: VerifyPaymentRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    payments: PaymentService = Depends(get_payment_service),
):
    """Verify a Razorpay payment signature and settle the order"""
    return await payments.verify_razorpay_payment(
        db,
        user,
        payload.order_id,
        payload.razorpay_order_id,
        payload.razorpay_payment_id,
        payload.razorpay_signature,
    )


@router.get("/my", response_model=OrderList)
async def list_my_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=50),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    orders: OrderService = Depends(get_order_service),
):
    """Get current user's orders"""
    items, total = await orders.list_user_orders(db, user, page, limit)
    return OrderList(orders=items, total=total, page=page, pages=page_count(total, limit))


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    orders: OrderService = Depends(get_order_service),
):
    """Get single order (owner or admin)"""
    return await orders.get_order(db, order_id, user)
