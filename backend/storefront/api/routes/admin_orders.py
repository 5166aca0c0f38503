"""
Admin order management

Status changes go through the order state machine; every change is
recorded on the order timeline with the acting admin.
"""
from datetime import datetime
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.api.deps import get_current_admin, get_order_service
from storefront.core.database import get_db
from storefront.models.user import User
from storefront.schemas.order import (
    CancelOrderRequest,
    OrderList,
    OrderResponse,
    OrderStats,
    PaymentStatusUpdate,
    StatusUpdate,
    TrackingUpdate,
)
from storefront.services.order_service import OrderFilters, OrderService, page_count

router = APIRouter()


@router.get("", response_model=OrderList)
async def list_orders(
    status: Optional[str] = None,
    payment_status: Optional[str] = None,
    search: Optional[str] = Query(None, max_length=100),
    date_from: Optional[datetime] = Query(None, alias="from"),
    date_to: Optional[datetime] = Query(None, alias="to"),
    sort: str = "created_at",
    order: Literal["asc", "desc"] = "desc",
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
    orders: OrderService = Depends(get_order_service),
):
    filters = OrderFilters(
        status=status,
        payment_status=payment_status,
        search=search,
        date_from=date_from,
        date_to=date_to,
        sort=sort,
        descending=order == "desc",
    )
    items, total = await orders.list_orders(db, filters, page, limit)
    return OrderList(orders=items, total=total, page=page, pages=page_count(total, limit))


@router.get("/stats/summary", response_model=OrderStats)
async def order_stats(
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
    orders: OrderService = Depends(get_order_service),
):
    return await orders.stats(db)


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: int,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
    orders: OrderService = Depends(get_order_service),
):
    return await orders.get_order(db, order_id, admin)


@router.patch("/{order_id}/status", response_model=OrderResponse)
async def update_status(
    order_id: int,
    payload: StatusUpdate,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
    orders: OrderService = Depends(get_order_service),
):
    return await orders.update_status(db, order_id, payload.status, admin, payload.note)


@router.patch("/{order_id}/payment-status", response_model=OrderResponse)
async def update_payment_status(
    order_id: int,
    payload: PaymentStatusUpdate,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
    orders: OrderService = Depends(get_order_service),
):
    return await orders.update_payment_status(db, order_id, payload.payment_status, admin, payload.note)


@router.patch("/{order_id}/tracking", response_model=OrderResponse)
async def update_tracking(
    order_id: int,
    payload: TrackingUpdate,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
    orders: OrderService = Depends(get_order_service),
):
    return await orders.update_tracking(
        db, order_id, payload.carrier, payload.tracking_number, payload.tracking_url, admin
    )


@router.post("/{order_id}/cancel", response_model=OrderResponse)
async def cancel_order(
    order_id: int,
    payload: CancelOrderRequest,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
    orders: OrderService = Depends(get_order_service),
):
    return await orders.cancel(db, order_id, admin, payload.reason, payload.refund_amount)
