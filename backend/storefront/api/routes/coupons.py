"""
Admin coupon management
"""
from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.api.deps import get_current_admin
from storefront.core.database import get_db
from storefront.models.user import User
from storefront.schemas.coupon import CouponCreate, CouponResponse
from storefront.services.coupon_service import CouponService, get_coupon_service

router = APIRouter()


@router.get("", response_model=List[CouponResponse])
async def list_coupons(
    active_only: bool = False,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
    coupons: CouponService = Depends(get_coupon_service),
):
    return await coupons.list_coupons(db, active_only)


@router.post("", response_model=CouponResponse, status_code=status.HTTP_201_CREATED)
async def create_coupon(
    payload: CouponCreate,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
    coupons: CouponService = Depends(get_coupon_service),
):
    return await coupons.create_coupon(db, payload)


@router.patch("/{coupon_id}/toggle", response_model=CouponResponse)
async def toggle_coupon(
    coupon_id: int,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
    coupons: CouponService = Depends(get_coupon_service),
):
    return await coupons.toggle_active(db, coupon_id)
